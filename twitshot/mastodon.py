from __future__ import annotations

import httpx
from fastapi import HTTPException
from fastapi.responses import Response
from playwright.async_api import BrowserContext, ElementHandle, Page

from .browser import ScreenshotConfig
from .context import RequestContext
from .log import TaggedLogger
from .models import Platform, PostReference
from .preflight import fetch_mastodon_status
from .respond import respond_with_screenshot

_TOOT_SELECTOR = "#mastodon .detailed-status__wrapper"
_CONTAINER_SELECTOR = "#mastodon .scrollable:has(.detailed-status__wrapper)"

_REMOVE_TOOLBARS_JS = """
() => {
  document.querySelector(".tabs-bar__wrapper")?.remove();
  document.querySelector(".ui__header")?.remove();
}
"""

# Replies come after the element holding the detailed status
_TRIM_REPLIES_JS = """
($container) => {
  const $main = $container.querySelector("*:has(.detailed-status__wrapper)");
  let $next = $main?.nextSibling;
  while ($next) {
    const $remove = $next;
    $next = $next.nextSibling;
    $remove.parentNode?.removeChild($remove);
  }
  $container.style.flex = "0";
}
"""

_REMOVE_ACTION_BARS_JS = """
($container) => {
  $container
    .querySelectorAll(".status__action-bar, .detailed-status__action-bar")
    .forEach(($actions) => $actions.remove());
}
"""

_EXPAND_CONTENT_WARNINGS_JS = """
($container) => {
  $container
    .querySelectorAll('button.status__content__spoiler-link[aria-expanded="false"]')
    .forEach(($button) => $button.click());
}
"""

_REVEAL_MEDIA_JS = """
($container) => {
  const $buttons = $container.querySelectorAll('.spoiler-button > button[class="spoiler-button__overlay"]');
  $buttons.forEach(($button) => $button.click());
  return $buttons.length;
}
"""

_REMOVE_MEDIA_SPOILER_BUTTONS_JS = """
($container) => {
  $container.querySelectorAll(".spoiler-button--minified").forEach(($button) => $button.remove());
}
"""


async def sanitize_toot(page: Page, container: ElementHandle, logger: TaggedLogger) -> None:
    await page.evaluate(_REMOVE_TOOLBARS_JS)
    await container.evaluate(_TRIM_REPLIES_JS)
    await container.evaluate(_REMOVE_ACTION_BARS_JS)
    await container.evaluate(_EXPAND_CONTENT_WARNINGS_JS)

    revealed = await container.evaluate(_REVEAL_MEDIA_JS)
    if revealed:
        logger.debug("Revealed %s sensitive media items", revealed)
        await page.wait_for_load_state("networkidle")

    await container.evaluate(_REMOVE_MEDIA_SPOILER_BUTTONS_JS)


async def render_toot(
    context: BrowserContext,
    url: str,
    logger: TaggedLogger,
    screenshot: ScreenshotConfig,
) -> bytes | None:
    logger.debug("Start rendering Mastodon page %s", url)
    page = await context.new_page()

    await page.goto(url)
    await page.wait_for_load_state("networkidle")

    toot = await page.query_selector(_TOOT_SELECTOR)
    if toot is None:
        logger.debug("Toot not available")
        return None

    container = await page.query_selector(_CONTAINER_SELECTOR) or toot

    await sanitize_toot(page, container, logger)

    return await container.screenshot(**screenshot.kwargs())


def parse_toot_id(path: str) -> str:
    return path.rstrip("/").split("/")[-1]


async def handle_mastodon(ctx: RequestContext, url: httpx.URL) -> Response:
    toot_id = parse_toot_id(url.path)
    logger = ctx.logger.sub_tagged({"mastodon": toot_id})
    logger.debug("Toot URL %s", url)

    if not toot_id.isdigit():
        logger.debug("Invalid toot ID %r", toot_id)
        raise HTTPException(status_code=422, detail=f"Invalid toot ID: {toot_id!r}")

    status = await fetch_mastodon_status(ctx.services.http, url.host, toot_id, logger)
    if status is None:
        logger.debug("Toot not found")
        return Response(status_code=404)

    toot_url = httpx.URL(str(status.url))
    if toot_url.host != url.host:
        logger.debug("Toot URL not from this instance, replacing %s -> %s", url.host, toot_url.host)
        from .activitypub import handle_activitypub

        return await handle_activitypub(ctx, toot_url)

    post = PostReference(Platform.MASTODON, str(url), (url.host, toot_id))
    return await respond_with_screenshot(ctx, post, render_toot, logger=logger)
