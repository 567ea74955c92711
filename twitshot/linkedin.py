from __future__ import annotations

import re

import httpx
from fastapi import HTTPException
from fastapi.responses import Response
from playwright.async_api import BrowserContext, ElementHandle, Page
from playwright.async_api import Error as PlaywrightError

from .browser import ScreenshotConfig
from .context import RequestContext
from .log import TaggedLogger
from .models import Platform, PostReference
from .respond import respond_with_screenshot

_POST_PATH_RE = re.compile(r"^/posts/(?P<username>[^_/]+)_(?P<slug>[^/]+)/?")

_REMOVE_BANNERS_JS = """
() => {
  document.querySelector(".top-level-modal-container")?.remove();
  document.querySelector(".global-alert-banner")?.remove();
}
"""

_EXPAND_TEXT_JS = """
($post) => {
  $post.querySelector('button[data-feed-action="see-more-post"]')?.click();
}
"""

_TRIM_AFTER_SOCIAL_ACTIONS_JS = """
($post) => {
  let $el = $post.querySelector(".main-feed-activity-card__social-actions")?.nextSibling;
  while ($el) {
    const $next = $el.nextSibling;
    $el.remove();
    $el = $next;
  }
}
"""

_REMOVE_MENU_JS = """
($post) => {
  $post.querySelector(".main-feed-activity-card__ellipsis-menu")?.remove();
}
"""

_REMOVE_PLAY_BUTTON_JS = """
($post) => {
  $post.querySelector('[aria-label="Video Player"] [title="Play Video"]')?.remove();
}
"""

FONT_CSS = """
@import "https://fonts.googleapis.com/css2?family=Roboto:ital,wght@0,100..900;1,100..900&display=swap";

body {
  font-family: "Roboto", sans-serif;
}

.font-sans {
  font-family: "Roboto", sans-serif !important;
}
"""

_FONTS_READY_JS = "async () => { await document.fonts.ready; }"


async def sanitize_linkedin_post(page: Page, post: ElementHandle, logger: TaggedLogger) -> None:
    steps = (
        ("Remove banners and overlays", page, _REMOVE_BANNERS_JS),
        ("Expand post text", post, _EXPAND_TEXT_JS),
        ("Remove stuff after post metrics", post, _TRIM_AFTER_SOCIAL_ACTIONS_JS),
        ("Remove ellipsis menu", post, _REMOVE_MENU_JS),
        ("Remove video play button", post, _REMOVE_PLAY_BUTTON_JS),
    )
    for name, target, script in steps:
        try:
            await target.evaluate(script)
        except PlaywrightError as e:
            logger.debug("%s failed: %s", name, e)

    await page.add_style_tag(content=FONT_CSS)
    await page.evaluate(_FONTS_READY_JS)


async def render_linkedin_post(
    context: BrowserContext,
    url: str,
    logger: TaggedLogger,
    screenshot: ScreenshotConfig,
) -> bytes | None:
    logger.debug("Start rendering LinkedIn page %s", url)
    page = await context.new_page()

    await page.goto(url)
    logger.debug("Wait for page to fully load")
    await page.wait_for_load_state("networkidle")

    post = await page.query_selector("article")
    if post is None:
        logger.debug("Post not found")
        return None

    await sanitize_linkedin_post(page, post, logger)

    logger.debug("Screenshot post")
    return await post.screenshot(**screenshot.kwargs())


def parse_post_path(path: str) -> tuple[str, str] | None:
    match = _POST_PATH_RE.match(path)
    if not match:
        return None
    return match.group("username"), match.group("slug")


async def handle_linkedin(ctx: RequestContext, url: httpx.URL) -> Response:
    logger = ctx.logger.sub_tagged("linkedin")
    logger.debug("LinkedIn post URL %s", url)

    parsed = parse_post_path(url.path)
    if parsed is None:
        logger.debug("Invalid LinkedIn post URL %s", url)
        raise HTTPException(
            status_code=422,
            detail="Invalid LinkedIn post URL. Should look something like https://www.linkedin.com/posts/username_some-random-slug-in-url/",
        )

    username, slug = parsed
    logger.set_tags({"linkedin": f"{slug}@{username}"})

    post = PostReference(Platform.LINKEDIN, str(url), (username, slug))
    return await respond_with_screenshot(ctx, post, render_linkedin_post, logger=logger)
