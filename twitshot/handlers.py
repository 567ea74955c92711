from __future__ import annotations

from typing import Any, Awaitable, Callable

import httpx
from fastapi import HTTPException
from fastapi.responses import HTMLResponse, RedirectResponse, Response

from .activitypub import handle_activitypub
from .assets import read_text
from .bluesky import handle_bluesky
from .classifier import classify
from .context import RequestContext
from .errors import InvalidUrlError
from .linkedin import handle_linkedin
from .models import Platform
from .tumblr import handle_tumblr
from .twitter import handle_twitter

PostHandler = Callable[[RequestContext, httpx.URL], Awaitable[Response]]

# Mastodon and Misskey are only reachable through NodeInfo discovery
POST_HANDLERS: dict[Platform, PostHandler] = {
    Platform.TWITTER: handle_twitter,
    Platform.TUMBLR: handle_tumblr,
    Platform.BSKY: handle_bluesky,
    Platform.LINKEDIN: handle_linkedin,
    Platform.ACTIVITYPUB: handle_activitypub,
}


async def handle_post(ctx: RequestContext, target: str) -> Response:
    ctx.logger.debug("Starting processing %s", target)

    try:
        classification = classify(target)
    except InvalidUrlError as e:
        ctx.logger.debug("URL parse failed %r: %s", target, e)
        raise HTTPException(status_code=400, detail="Invalid URL")

    ctx.logger.debug("Classified %s as %s", classification.url, classification.platform.value)
    return await POST_HANDLERS[classification.platform](ctx, classification.url)


def home() -> HTMLResponse:
    return HTMLResponse(read_text("index.html"))


def home_form_redirect(form: dict[str, Any]) -> Response:
    url = form.get("url")
    if not url:
        return Response(status_code=415)
    return RedirectResponse(f"/{url}", status_code=302)
