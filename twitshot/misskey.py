from __future__ import annotations

import httpx
from fastapi.responses import Response
from playwright.async_api import BrowserContext, ElementHandle, JSHandle, Page

from .browser import ScreenshotConfig
from .context import RequestContext
from .log import TaggedLogger
from .models import Platform, PostReference
from .respond import respond_with_screenshot

_REMOVE_STICKY_HEADER_JS = """
() => {
  const $main = document.querySelector("main");
  if (!$main || $main.dataset.twitshotCleaned) {
    return;
  }
  $main.dataset.twitshotCleaned = "true";
  $main.querySelector(":scope > div > div")?.remove();
}
"""

# The note's parent also holds the page's other notes and widgets
_KEEP_ONLY_POST_JS = """
($container, $post) => {
  let $next = $container.firstChild;
  while ($next) {
    const $remove = $next;
    $next = $next.nextSibling;
    if ($remove !== $post) {
      $container.removeChild($remove);
    }
  }
}
"""

_TRIM_FOOTER_ACTIONS_JS = """
($container) => {
  for (const $footer of $container.querySelectorAll("footer")) {
    let $next = $footer.querySelector(":scope > button")?.nextSibling?.nextSibling;
    while ($next) {
      const $remove = $next;
      $next = $next.nextSibling;
      $remove.parentNode?.removeChild($remove);
    }
    $footer.style.justifyContent = "flex-start";
  }
}
"""

_OPEN_SUMMARIES_JS = """
($container) => {
  const $summaries = $container.querySelectorAll("details:not([open]) > summary");
  $summaries.forEach(($summary) => $summary.click());
  $container.querySelectorAll("details > summary").forEach(($summary) => {
    $summary.style.display = "none";
  });
  return $summaries.length;
}
"""

_PARENT_JS = "($post) => $post.parentElement"


async def sanitize_note(page: Page, post: ElementHandle, container: JSHandle, logger: TaggedLogger) -> None:
    await page.evaluate(_REMOVE_STICKY_HEADER_JS)
    await container.evaluate(_KEEP_ONLY_POST_JS, post)
    await container.evaluate(_TRIM_FOOTER_ACTIONS_JS)

    opened = await container.evaluate(_OPEN_SUMMARIES_JS)
    if opened:
        logger.debug("Opened %s collapsed sections", opened)
        await page.wait_for_load_state("networkidle")


async def render_note(
    context: BrowserContext,
    url: str,
    logger: TaggedLogger,
    screenshot: ScreenshotConfig,
) -> bytes | None:
    logger.debug("Start rendering Misskey page %s", url)
    page = await context.new_page()

    await page.goto(url)
    await page.wait_for_load_state("networkidle")

    post = await page.query_selector("main article")
    if post is None:
        logger.debug("Post not available")
        return None

    container = (await post.evaluate_handle(_PARENT_JS)).as_element()
    if container is None:
        logger.debug("Container not found")
        return None

    await sanitize_note(page, post, container, logger)

    return await container.screenshot(**screenshot.kwargs())


async def handle_misskey(ctx: RequestContext, url: httpx.URL) -> Response:
    post_id = url.path.rstrip("/").split("/")[-1]
    logger = ctx.logger.sub_tagged({"misskey": str(url)})
    logger.debug("Misskey post %s", url)

    post = PostReference(Platform.MISSKEY, str(url), (url.host, post_id))
    return await respond_with_screenshot(ctx, post, render_note, logger=logger)
