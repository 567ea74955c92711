from __future__ import annotations

import json
from typing import Any, Awaitable, Callable, Optional

from fastapi.responses import PlainTextResponse, Response
from playwright.async_api import BrowserContext

from .browser import ScreenshotConfig
from .context import RequestContext
from .errors import ScreenshotResponseError
from .log import TaggedLogger
from .models import PostReference

SEND_CACHE_HEADER_FOR_SECONDS = 15 * 60

# (context, url, logger, screenshot config) -> image bytes, or None when the post is gone
Renderer = Callable[[BrowserContext, str, TaggedLogger, ScreenshotConfig], Awaitable[Optional[bytes]]]


def screenshot_response(
    buffer: bytes,
    *,
    filename: str,
    config: ScreenshotConfig,
    cache_for_secs: int = SEND_CACHE_HEADER_FOR_SECONDS,
) -> Response:
    return Response(
        content=buffer,
        media_type=config.media_type,
        headers={
            "Access-Control-Allow-Origin": "*",
            "Cache-Control": f"public, max-age={cache_for_secs}, s-max-age={cache_for_secs}",
            "Content-Disposition": f"inline; filename={json.dumps(f'{filename}.{config.type}')}",
        },
    )


async def respond_with_screenshot(
    ctx: RequestContext,
    post: PostReference,
    renderer: Renderer,
    *,
    logger: TaggedLogger,
    context_options: dict[str, Any] | None = None,
    cache_for_secs: int = SEND_CACHE_HEADER_FOR_SECONDS,
) -> Response:
    """Allocate the request's browser context, render ``post`` and build the image response.

    A renderer returning ``None`` means the post is not there (404). Other
    exceptions propagate to ``run_handler``, which also closes the context.
    """
    config = ctx.services.browser.screenshot_config
    context = await ctx.new_browser_context(**(context_options or {}))

    try:
        buffer = await renderer(context, post.url, logger, config)
    except ScreenshotResponseError as e:
        logger.debug("Renderer rejected request: %s %s", e.status_code, e.body)
        return PlainTextResponse(e.body or "", status_code=e.status_code)

    logger.debug("Screenshot taken: %s", bool(buffer))

    if not buffer:
        return Response(status_code=404)

    return screenshot_response(buffer, filename=post.filename, config=config, cache_for_secs=cache_for_secs)
