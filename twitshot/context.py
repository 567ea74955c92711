from __future__ import annotations

import secrets
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Awaitable, Callable

import httpx
from fastapi import HTTPException
from fastapi.responses import JSONResponse, Response
from playwright.async_api import BrowserContext

from .log import TaggedLogger

if TYPE_CHECKING:
    from .bluesky_session import BlueskySession
    from .browser import BrowserService
    from .config import Settings
    from .ratelimit import SlowDown, SlowDownInfo
    from .raw import Resolver


@dataclass
class Services:
    """Process-wide collaborators, built once at startup and shared by all requests."""

    settings: Settings
    browser: BrowserService
    http: httpx.AsyncClient
    bsky: BlueskySession
    limiter: SlowDown | None = None
    resolver: Resolver | None = None

    async def start(self, logger: TaggedLogger) -> None:
        await self.browser.start()
        logger.info("Browser %s started", self.browser.engine)
        if self.limiter is not None:
            await self.limiter.start(logger)
        await self.bsky.start(logger)

    async def close(self) -> None:
        try:
            try:
                await self.bsky.close()
            finally:
                await self.http.aclose()
        finally:
            await self.browser.close()


def new_request_id() -> str:
    return f"{int(time.time() * 1000):x}{secrets.token_hex(5)}"


@dataclass
class RequestContext:
    """State for a single inbound request, threaded through every handler."""

    id: str
    logger: TaggedLogger
    services: Services
    seen_urls: list[str] = field(default_factory=list)
    rate_limit: SlowDownInfo | None = None
    _browser_context: BrowserContext | None = field(default=None, repr=False)

    @property
    def browser_context(self) -> BrowserContext | None:
        return self._browser_context

    async def new_browser_context(self, **options: Any) -> BrowserContext:
        if self._browser_context is not None:
            raise RuntimeError("A browser context was already created for this request")
        self._browser_context = await self.services.browser.new_context(**options)
        return self._browser_context

    async def close_browser_context(self) -> None:
        context, self._browser_context = self._browser_context, None
        if context is None:
            return
        try:
            await context.close()
            self.logger.debug("Closed browser context")
        except Exception:
            self.logger.warning("Failed to close browser context", exc_info=True)


Handler = Callable[..., Awaitable[Response]]


async def run_handler(ctx: RequestContext, handler: Handler, *args: Any) -> Response:
    """Run a render handler and always release the request's browser context.

    This is the only place that turns an unexpected exception into a status
    code. ``HTTPException`` carries an intended client-facing status; anything
    else is a render failure and becomes a 500.
    """
    try:
        response = await handler(ctx, *args)
    except HTTPException as e:
        response = JSONResponse({"detail": e.detail}, status_code=e.status_code, headers=e.headers)
    except Exception:
        ctx.logger.warning("Handler failed", exc_info=True)
        response = Response(status_code=500)
    finally:
        await ctx.close_browser_context()

    if ctx.rate_limit is not None:
        response.headers.update(ctx.rate_limit.headers())
    return response
