from __future__ import annotations

import unittest
from unittest.mock import AsyncMock

from tests.fakes import make_context, make_services


class TestServicesClose(unittest.IsolatedAsyncioTestCase):
    async def test_each_resource_is_released_when_bsky_close_fails(self) -> None:
        services = make_services()
        services.bsky.close = AsyncMock(side_effect=RuntimeError("refresh task crashed"))
        services.browser.close = AsyncMock()

        with self.assertRaises(RuntimeError):
            await services.close()

        self.assertTrue(services.http.is_closed)
        services.browser.close.assert_awaited_once()

    async def test_browser_closes_when_http_close_fails(self) -> None:
        services = make_services()
        services.browser.close = AsyncMock()
        http = services.http
        services.http = AsyncMock()
        services.http.aclose.side_effect = RuntimeError("transport stuck")

        with self.assertRaises(RuntimeError):
            await services.close()

        services.browser.close.assert_awaited_once()
        await http.aclose()


class TestRequestContext(unittest.IsolatedAsyncioTestCase):
    async def test_second_browser_context_is_refused(self) -> None:
        services = make_services()
        ctx = make_context(services)
        try:
            await ctx.new_browser_context()
            with self.assertRaises(RuntimeError):
                await ctx.new_browser_context()

            await ctx.close_browser_context()
            await ctx.close_browser_context()
            self.assertEqual(services.browser.contexts[0].close_calls, 1)
        finally:
            await services.http.aclose()


if __name__ == "__main__":
    unittest.main()
