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

_POST_PATH_RE = re.compile(r"^/(?P<blog>[^/]+)/(?P<post_id>\d+)(?:/[^/]*)?/?$")

_CLEAN_HEADER_JS = """
($header) => {
  $header.querySelector('[aria-label="More options"]')?.remove();
  $header.querySelector('[aria-label="Follow"]')?.remove();
}
"""

# Prevent margin collapse so the bottom "padding" survives the crop
_KEEP_BOTTOM_MARGIN_JS = """
($post) => {
  $post.style.paddingBottom = "1px";
}
"""

_REMOVE_ALT_TEXT_POPOVERS_JS = """
() => {
  document.querySelectorAll('[data-alt-text-popover="true"]').forEach(($el) => $el.remove());
}
"""

_EXPAND_TAGS_JS = """
($post) => {
  $post.querySelector('[data-testid="tag-link"] + a[role="button"]')?.click();
}
"""

_CLEAN_FOOTER_JS = """
($footer) => {
  if ($footer.dataset.twitshotCleaned) {
    return;
  }
  $footer.dataset.twitshotCleaned = "true";
  $footer.firstElementChild?.remove();

  const $activity = $footer.querySelector('[aria-label="Post Activity"]');
  if (!$activity) {
    return;
  }
  $activity.style.height = "auto";
  $activity.querySelector('[data-testid="desktop-selector"], [data-testid="mobile-selector"]')?.remove();
  $activity.querySelector('[role="tab"][title="Reblog Graph"]')?.remove();
  $activity.querySelector('[data-testid="notes-root"]')?.remove();

  const $repliesTab = $activity.querySelector('[role="tab"][title="Replies"]');
  const $tabItem = $activity.querySelector('[role="tab"] + [role="tab"]');
  if ($repliesTab && $tabItem) {
    $repliesTab.className = $tabItem.className;
  }
}
"""

_REMOVE_OVERLAYS_JS = """
() => {
  document.querySelector(".components-modal__screen-overlay")?.remove();
  document.querySelector("body > #cmp-app-container")?.remove();

  let $signup = document.querySelector('[aria-label="Sign me up"] + [aria-label="Log in"]');
  while ($signup) {
    if ($signup.parentElement?.parentElement?.dataset?.testid === "scroll-container") {
      $signup.remove();
      break;
    }
    $signup = $signup.parentElement;
  }
}
"""


async def _step(name: str, logger: TaggedLogger, target: Page | ElementHandle, script: str) -> None:
    logger.debug(name)
    try:
        await target.evaluate(script)
    except PlaywrightError as e:
        logger.debug("%s failed: %s", name, e)


async def sanitize_post(page: Page, post: ElementHandle, logger: TaggedLogger) -> None:
    header = await post.query_selector('header[role="banner"]')
    if header is not None:
        await _step("Remove three dots and follow from post header", logger, header, _CLEAN_HEADER_JS)

    await _step("Prevent margin collapse on post", logger, post, _KEEP_BOTTOM_MARGIN_JS)
    await _step("Remove alt text popovers", logger, page, _REMOVE_ALT_TEXT_POPOVERS_JS)
    await _step("Expand tags", logger, post, _EXPAND_TAGS_JS)

    footer = await post.query_selector('footer[role="contentinfo"]')
    if footer is not None:
        await _step("Clean up notes/footer section", logger, footer, _CLEAN_FOOTER_JS)

    await _step("Remove screen overlay", logger, page, _REMOVE_OVERLAYS_JS)


def post_selector(post_id: str) -> str:
    return f'*[data-id="{post_id}"] article:has(header + div + div)'


async def render_tumblr_post(
    context: BrowserContext,
    url: str,
    logger: TaggedLogger,
    screenshot: ScreenshotConfig,
) -> bytes | None:
    post_id = parse_post_path(httpx.URL(url).path)[1]
    logger.debug("Start rendering Tumblr page %s", url)
    page = await context.new_page()

    await page.goto(url)
    logger.debug("Wait for page to fully load")
    await page.wait_for_load_state("networkidle")

    post = await page.query_selector(post_selector(post_id))
    if post is None:
        logger.debug("Post not found")
        return None

    await sanitize_post(page, post, logger)

    logger.debug("Screenshot post")
    return await post.screenshot(**screenshot.kwargs())


def parse_post_path(path: str) -> tuple[str, str]:
    """``/<blog>/<post id>(/<slug>)`` -> ``(blog, post id)``; raises ``ValueError`` otherwise."""
    match = _POST_PATH_RE.match(path)
    if not match:
        raise ValueError(f"Not a Tumblr post path: {path!r}")
    return match.group("blog"), match.group("post_id")


async def handle_tumblr(ctx: RequestContext, url: httpx.URL) -> Response:
    logger = ctx.logger.sub_tagged("tumblr")

    try:
        blog, post_id = parse_post_path(url.path)
    except ValueError:
        logger.debug("Invalid Tumblr URL %s", url)
        raise HTTPException(
            status_code=422,
            detail="Invalid Tumblr post URL. Should look something like https://www.tumblr.com/blog-name/1234567890",
        )

    logger.set_tags({"tumblr": f"{post_id}@{blog}"})
    logger.debug("Tumblr URL %s", url)

    post = PostReference(Platform.TUMBLR, str(url), (blog, post_id))
    return await respond_with_screenshot(ctx, post, render_tumblr_post, logger=logger)
