from __future__ import annotations

import re
from functools import partial

import httpx
from fastapi import HTTPException
from fastapi.responses import Response
from playwright.async_api import BrowserContext, ElementHandle, Route
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from .bluesky_session import STORAGE_KEY
from .browser import ScreenshotConfig
from .context import RequestContext
from .log import TaggedLogger
from .models import Platform, PostReference
from .respond import respond_with_screenshot

_POST_PATH_RE = re.compile(r"^/profile/(?P<username>[^/]+)/post/(?P<post_id>[a-zA-Z0-9]+)")

BLOCKED_BSKY_URLS = frozenset(
    {
        "https://events.bsky.app/v2/rgstr",
        "https://statsigapi.net/v1/sdk_exception",
        "https://events.bsky.app/v2/initialize",
    }
)

# Returns true when the stored session belonged to someone else and was replaced
_INJECT_SESSION_JS = """
([key, data]) => {
  const newDid = JSON.parse(data)?.session?.currentAccount?.did;
  let prevData = null;
  try {
    prevData = JSON.parse(window.localStorage.getItem(key) ?? "{}");
  } catch (_e) {}
  if (prevData?.session?.currentAccount?.did === newDid) {
    return false;
  }
  window.localStorage.setItem(key, data);
  return true;
}
"""

_CLEAN_POST_JS = """
($post) => {
  if ($post.dataset.twitshotCleaned) {
    return;
  }
  $post.dataset.twitshotCleaned = "true";

  // Duplicate info toolbar (reply/repost/like counters)
  let $actions = $post.querySelector('[data-testid="replyBtn"]')?.parentElement;
  while ($actions && $actions.childElementCount <= 1) {
    $actions = $actions.parentElement;
  }
  if ($actions && $actions !== $post && $post.contains($actions.parentElement)) {
    $actions.parentElement.remove();
  }

  $post.querySelector('[data-testid="followBtn"]')?.remove();
  $post.querySelector('[aria-label="Who can reply"]')?.remove();

  // Bottom border and padding would otherwise end up in the crop
  $post.style.marginBottom = "1rem";
  const $last = $post.lastElementChild;
  if ($last) {
    $last.style.paddingBottom = "0";
    if ($last.lastElementChild) {
      $last.lastElementChild.style.borderBottom = "0";
    }
  }
}
"""


def storage_state(origin: str, session_data: str | None) -> dict:
    local_storage = []
    if session_data:
        local_storage.append({"name": STORAGE_KEY, "value": session_data})
    return {"cookies": [], "origins": [{"origin": origin, "localStorage": local_storage}]}


async def _block_analytics(route: Route) -> None:
    if route.request.url in BLOCKED_BSKY_URLS:
        await route.abort("blockedbyclient")
        return
    await route.continue_()


async def sanitize_bsky_post(post: ElementHandle) -> None:
    await post.evaluate(_CLEAN_POST_JS)


async def render_bsky_post(
    context: BrowserContext,
    url: str,
    logger: TaggedLogger,
    screenshot: ScreenshotConfig,
    *,
    username: str,
    session_data: str | None,
) -> bytes | None:
    logger.debug("Start rendering Bluesky page %s", url)
    page = await context.new_page()
    await page.route("**/*", _block_analytics)

    await page.goto(url)

    if session_data:
        logger.debug("Embedding Bluesky session data")
        if await page.evaluate(_INJECT_SESSION_JS, [STORAGE_KEY, session_data]):
            logger.debug("Bluesky data updated. Reloading page...")
            await page.reload()
        else:
            logger.debug("Bluesky data already up to date.")

    post_selector = f'[data-testid="postThreadItem-by-{username}"]'

    logger.debug("Waiting for page to load")
    try:
        post = await page.wait_for_selector(post_selector)
    except PlaywrightTimeoutError:
        post = None
    if post is None:
        logger.debug("Bluesky post not available")
        return None

    logger.debug("Waiting for page to finish loading assets")
    await page.wait_for_load_state("networkidle")

    await sanitize_bsky_post(post)

    logger.debug("Taking screenshot...")
    return await post.screenshot(**screenshot.kwargs())


def parse_post_path(path: str) -> tuple[str, str] | None:
    match = _POST_PATH_RE.match(path)
    if not match:
        return None
    return match.group("username"), match.group("post_id")


async def handle_bluesky(ctx: RequestContext, url: httpx.URL) -> Response:
    logger = ctx.logger.sub_tagged("bsky")
    logger.debug("BlueSky post URL %s", url)

    parsed = parse_post_path(url.path)
    if parsed is None:
        logger.debug("Invalid BlueSky post URL %s", url)
        raise HTTPException(
            status_code=422,
            detail="Invalid BlueSky post URL. Should look something like https://bsky.app/profile/some.username/post/randomP0stId",
        )

    username, post_id = parsed
    logger.set_tags({"bsky": f"{post_id}@{username}"})

    bsky = ctx.services.bsky
    post_view = await bsky.get_post_thread(username, post_id, logger)
    if not post_view:
        raise HTTPException(status_code=404, detail="Could not get post from the API")

    session_data = bsky.session_data
    post = PostReference(Platform.BSKY, str(url), (username.replace(".", "_"), post_id))
    return await respond_with_screenshot(
        ctx,
        post,
        partial(render_bsky_post, username=username, session_data=session_data),
        logger=logger,
        context_options={"storage_state": storage_state(f"{url.scheme}://{url.host}", session_data)},
    )
