from __future__ import annotations

import unittest
from unittest.mock import AsyncMock, patch

import httpx

from tests.fakes import make_context, make_services

TWEET_URL = "https://x.com/someone/status/12345"


class TestRenderTweetFallback(unittest.IsolatedAsyncioTestCase):
    async def test_page_strategy_result_skips_embed(self) -> None:
        from twitshot.browser import ScreenshotConfig
        from twitshot.log import get_logger
        from twitshot.twitter import render_tweet

        with patch("twitshot.twitter.render_tweet_page", new=AsyncMock(return_value=b"page")), patch(
            "twitshot.twitter.render_tweet_embedded", new=AsyncMock(return_value=b"embed")
        ) as embedded:
            data = await render_tweet(object(), TWEET_URL, get_logger(), ScreenshotConfig.for_engine("chromium"))

        self.assertEqual(data, b"page")
        embedded.assert_not_called()

    async def test_absent_tweet_falls_back_to_embed_once(self) -> None:
        from twitshot.browser import ScreenshotConfig
        from twitshot.log import get_logger
        from twitshot.twitter import render_tweet

        context = object()
        with patch("twitshot.twitter.render_tweet_page", new=AsyncMock(return_value=None)), patch(
            "twitshot.twitter.render_tweet_embedded", new=AsyncMock(return_value=b"embed")
        ) as embedded:
            data = await render_tweet(context, TWEET_URL, get_logger(), ScreenshotConfig.for_engine("chromium"))

        self.assertEqual(data, b"embed")
        embedded.assert_awaited_once()
        self.assertIs(embedded.await_args.args[0], context)

    async def test_page_strategy_error_never_reaches_embed(self) -> None:
        from twitshot.browser import ScreenshotConfig
        from twitshot.log import get_logger
        from twitshot.twitter import render_tweet

        with patch("twitshot.twitter.render_tweet_page", new=AsyncMock(side_effect=RuntimeError("boom"))), patch(
            "twitshot.twitter.render_tweet_embedded", new=AsyncMock(return_value=b"embed")
        ) as embedded:
            with self.assertRaises(RuntimeError):
                await render_tweet(object(), TWEET_URL, get_logger(), ScreenshotConfig.for_engine("chromium"))

        embedded.assert_not_called()


class TestTweetPath(unittest.TestCase):
    def test_parse(self) -> None:
        from twitshot.twitter import parse_tweet_path

        self.assertEqual(parse_tweet_path("/someone/status/12345"), "12345")
        self.assertEqual(parse_tweet_path("/x/status/1/"), "1")
        self.assertIsNone(parse_tweet_path("/someone/likes"))
        self.assertIsNone(parse_tweet_path("/a_handle_way_too_long/status/1"))
        self.assertIsNone(parse_tweet_path("/someone/status/12345/photo/1"))


class TestHandleTwitterLifecycle(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.services = make_services()
        self.ctx = make_context(self.services)

    async def asyncTearDown(self) -> None:
        await self.services.http.aclose()

    async def _run(self, url: str = TWEET_URL):
        from twitshot.context import run_handler
        from twitshot.twitter import handle_twitter

        return await run_handler(self.ctx, handle_twitter, httpx.URL(url))

    async def test_preflight_failure_never_allocates_a_context(self) -> None:
        with patch("twitshot.twitter.fetch_tweet_info", new=AsyncMock(return_value=None)), patch(
            "twitshot.twitter.render_tweet", new=AsyncMock(return_value=b"img")
        ) as render:
            response = await self._run()

        self.assertEqual(response.status_code, 404)
        render.assert_not_called()
        self.assertEqual(self.services.browser.contexts, [])

    async def test_missing_tweet_is_404_and_context_closed_once(self) -> None:
        with patch("twitshot.twitter.fetch_tweet_info", new=AsyncMock(return_value={"id_str": "12345"})), patch(
            "twitshot.twitter.render_tweet", new=AsyncMock(return_value=None)
        ):
            response = await self._run()

        self.assertEqual(response.status_code, 404)
        self.assertEqual(len(self.services.browser.contexts), 1)
        self.assertEqual(self.services.browser.contexts[0].close_calls, 1)
        self.assertIsNone(self.ctx.browser_context)

    async def test_render_crash_is_500_and_context_closed_once(self) -> None:
        with patch("twitshot.twitter.fetch_tweet_info", new=AsyncMock(return_value={"id_str": "12345"})), patch(
            "twitshot.twitter.render_tweet", new=AsyncMock(side_effect=RuntimeError("navigation failed"))
        ):
            response = await self._run()

        self.assertEqual(response.status_code, 500)
        self.assertEqual(self.services.browser.contexts[0].close_calls, 1)

    async def test_invalid_path_is_422(self) -> None:
        response = await self._run("https://x.com/someone/likes")
        self.assertEqual(response.status_code, 422)
        self.assertEqual(self.services.browser.contexts, [])

    async def test_success_sets_image_headers(self) -> None:
        with patch("twitshot.twitter.fetch_tweet_info", new=AsyncMock(return_value={"id_str": "12345"})), patch(
            "twitshot.twitter.render_tweet", new=AsyncMock(return_value=b"\x89PNG")
        ):
            response = await self._run()

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.body, b"\x89PNG")
        self.assertEqual(response.headers["content-type"], "image/png")
        self.assertEqual(response.headers["access-control-allow-origin"], "*")
        self.assertEqual(response.headers["cache-control"], "public, max-age=900, s-max-age=900")
        self.assertEqual(response.headers["content-disposition"], 'inline; filename="tweet.12345.png"')
        self.assertEqual(response.headers["content-length"], "4")


if __name__ == "__main__":
    unittest.main()
