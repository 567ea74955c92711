from __future__ import annotations

import html
import re

import httpx
from fastapi import HTTPException
from fastapi.responses import Response
from playwright.async_api import BrowserContext, ElementHandle, Page
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from . import assets
from .browser import ScreenshotConfig
from .context import RequestContext
from .log import TaggedLogger
from .models import Platform, PostReference
from .preflight import fetch_tweet_info
from .respond import respond_with_screenshot

_TWEET_PATH_RE = re.compile(r"^/(?P<user>\w{1,15})/status/(?P<id>\d+)/?$")

MEDIA_RESPONSE_GLOB = "https://*.twimg.com/**"

_TWEET_SELECTOR = "data-testid=cellInnerDiv >> nth=0 >> data-testid=tweet"

# Cookie banners, login nags and other bottom popups live here
_REMOVE_LAYERS_JS = """
() => {
  const $layers = document.querySelector("#layers");
  $layers?.parentNode?.removeChild($layers);
}
"""

_REMOVE_FOLLOW_BUTTON_JS = """
($username) => {
  if ($username.dataset.twitshotCleaned) {
    return;
  }
  $username.dataset.twitshotCleaned = "true";
  let $node = $username.parentNode;
  while ($node && $node !== document.body && $node.childElementCount === 1) {
    $node = $node.parentElement;
  }
  if (!$node || $node === document.body) {
    return;
  }
  const $lastChild = $node.lastChild;
  if ($lastChild && $lastChild !== $username && !$lastChild.contains($username)) {
    $lastChild.parentElement?.removeChild($lastChild);
  }
}
"""

# Everything below the tweet meta: repost/quote/like counters, reply box
_TRIM_AFTER_META_JS = """
($tweet) => {
  const $tweetMeta = $tweet.querySelector('*[role="group"]:has([role="separator"])');
  let $next = $tweetMeta?.nextSibling;
  while ($next) {
    const $remove = $next;
    $next = $next.nextSibling;
    $remove.parentNode?.removeChild($remove);
  }
}
"""

_HAS_SENSITIVE_GATE_JS = """
($tweet) => {
  const $settingsLink = $tweet.querySelector('a[href="/settings/content_you_see"]');
  const $popup = $settingsLink?.parentNode?.parentNode?.parentNode;
  return Boolean($popup?.querySelector('[role="button"]'));
}
"""

_CLICK_SENSITIVE_GATE_JS = """
($tweet) => {
  const $settingsLink = $tweet.querySelector('a[href="/settings/content_you_see"]');
  const $popup = $settingsLink?.parentNode?.parentNode?.parentNode;
  $popup?.querySelector('[role="button"]')?.click();
}
"""

_ROUND_CORNERS_JS = """
($tweet) => {
  $tweet.style.borderRadius = "12px";
  $tweet.style.marginBottom = "2px";
}
"""

_REMOVE_READ_REPLIES_JS = """
($tweet) => {
  $tweet.querySelector('[data-testid="logged_out_read_replies_pivot"]')?.remove();
}
"""

_REMOVE_SHARE_BUTTON_JS = """
($tweet) => {
  const $shareBtn = $tweet.querySelector('[aria-label="Share post"]')?.parentElement?.parentElement;
  const $parent = $shareBtn?.parentElement;
  $shareBtn?.remove();
  if (!$parent) {
    return;
  }
  for (const $sibling of Array.from($parent.children)) {
    $sibling.style.justifyContent = "center";
  }
}
"""

_REMOVE_TIMELINE_HEADER_JS = """
() => {
  document.querySelector('div[aria-label="Home timeline"] > :nth-child(1)')?.remove();
}
"""

# Embedded widget clean-up. These run inside the widget iframe.

_REMOVE_EMBED_RETWEET_JS = """
($link) => {
  const $retweetDiv = $link.parentNode;
  $retweetDiv?.parentNode?.removeChild($retweetDiv);
}
"""

_REMOVE_EMBED_COPY_LINK_JS = """
($like) => {
  const $copyLink = $like.parentNode?.querySelector('div[role="button"]');
  $copyLink?.parentNode?.removeChild($copyLink);
}
"""

_HAS_EMBED_SENSITIVE_GATE_JS = """
($tweetText) => {
  const $viewBtn = $tweetText.parentNode?.parentNode?.querySelector('[role="button"]');
  return Boolean($viewBtn && $viewBtn.innerText === "View");
}
"""

_CLICK_EMBED_SENSITIVE_GATE_JS = """
($tweetText) => {
  const $viewBtn = $tweetText.parentNode?.parentNode?.querySelector('[role="button"]');
  if ($viewBtn && $viewBtn.innerText === "View") {
    $viewBtn.click();
  }
}
"""

_REMOVE_EMBED_REPLIES_JS = """
($tweetText, data) => {
  for (const $backlink of document.querySelectorAll(`a[href*="twitter.com${data.pathname}"]`)) {
    if ($backlink.textContent === "Read the full conversation on Twitter") {
      const $container = $backlink.parentNode?.parentNode;
      $container?.parentNode?.removeChild($container);
      break;
    }
  }
  const $tweet = $tweetText.parentNode?.parentNode?.parentNode;
  if ($tweet && !$tweet.dataset.twitshotCleaned && $tweet.childNodes.length > 1) {
    $tweet.dataset.twitshotCleaned = "true";
    $tweet.removeChild($tweet.childNodes[0]);
  }
}
"""

_REMOVE_EMBED_BRANDING_JS = """
($body, data) => {
  for (const $backlink of $body.querySelectorAll(`a[href*="twitter.com${data.pathname}"]`)) {
    if ($backlink.textContent?.includes("·")) {
      continue;
    }
    if ($backlink.querySelector('img[src^="https://pbs.twimg.com"]')) {
      continue;
    }
    $backlink.parentNode?.removeChild($backlink);
  }
  $body.querySelector('[aria-label="Twitter Ads info and privacy"]')?.remove();
  const $followContainer = $body.querySelector('a[href^="https://twitter.com/intent/follow"]')?.parentNode;
  $followContainer?.parentNode?.removeChild($followContainer);
}
"""


async def sanitize_tweet_page(page: Page, tweet: ElementHandle, logger: TaggedLogger) -> None:
    await page.evaluate(_REMOVE_LAYERS_JS)

    username = await page.query_selector('[data-testid="User-Name"]')
    if username is not None:
        await username.evaluate(_REMOVE_FOLLOW_BUTTON_JS)

    await tweet.evaluate(_TRIM_AFTER_META_JS)

    if await tweet.evaluate(_HAS_SENSITIVE_GATE_JS):
        async with page.expect_response(MEDIA_RESPONSE_GLOB):
            await tweet.evaluate(_CLICK_SENSITIVE_GATE_JS)
        await page.wait_for_load_state("networkidle")
        logger.debug("Enabled sensitive content")

    await tweet.evaluate(_ROUND_CORNERS_JS)
    await tweet.evaluate(_REMOVE_READ_REPLIES_JS)
    await tweet.evaluate(_REMOVE_SHARE_BUTTON_JS)
    await page.evaluate(_REMOVE_TIMELINE_HEADER_JS)


async def render_tweet_page(
    context: BrowserContext,
    url: str,
    logger: TaggedLogger,
    screenshot: ScreenshotConfig,
) -> bytes | None:
    logger.debug("Start rendering twitter page %s", url)
    page = await context.new_page()

    await page.goto(url)
    await page.wait_for_load_state("networkidle")

    if await page.query_selector(_TWEET_SELECTOR) is None:
        cell = await page.query_selector("data-testid=cellInnerDiv >> nth=0")
        logger.debug("Tweet not available, reason: %r", await cell.inner_text() if cell else None)
        return None

    tweet = await page.query_selector(f"{_TWEET_SELECTOR} >> ..")
    if tweet is None:
        logger.warning("Tweet element not found")
        return None

    await sanitize_tweet_page(page, tweet, logger)

    return await tweet.screenshot(**screenshot.kwargs())


async def render_tweet_embedded(
    context: BrowserContext,
    url: str,
    logger: TaggedLogger,
    screenshot: ScreenshotConfig,
) -> bytes | None:
    logger.debug("Start rendering embedded page %s", url)
    pathname = httpx.URL(url).path

    page = await context.new_page()
    await page.set_content(assets.read_text("embed.html").replace("{{URL_FOR_TWITTER}}", html.escape(url)))
    await page.wait_for_load_state("networkidle")

    try:
        iframe = await page.wait_for_selector(".twitter-tweet-rendered iframe")
    except PlaywrightTimeoutError:
        logger.debug("Embedded tweet never rendered")
        return None
    frame = await iframe.content_frame() if iframe else None
    if frame is None:
        return None

    links = await frame.query_selector_all('a[role="link"]')
    if links:
        await links[-1].evaluate(_REMOVE_EMBED_RETWEET_JS)

    like = await frame.query_selector('a[role="link"][aria-label^="Like."]')
    if like is not None:
        await like.evaluate(_REMOVE_EMBED_COPY_LINK_JS)

    tweet_text = await frame.query_selector("data-testid=tweetText")
    if tweet_text is not None and await tweet_text.evaluate(_HAS_EMBED_SENSITIVE_GATE_JS):
        async with page.expect_response(MEDIA_RESPONSE_GLOB):
            await tweet_text.evaluate(_CLICK_EMBED_SENSITIVE_GATE_JS)
        await page.wait_for_load_state("networkidle")
        logger.debug("Enabled sensitive content")

    tweet_text = await frame.query_selector("data-testid=tweetText")
    if tweet_text is not None:
        await tweet_text.evaluate(_REMOVE_EMBED_REPLIES_JS, {"pathname": pathname})

    body = await frame.query_selector("body")
    if body is not None:
        await body.evaluate(_REMOVE_EMBED_BRANDING_JS, {"pathname": pathname})

    app = await frame.query_selector("#app")
    if app is None:
        return None
    return await app.screenshot(**screenshot.kwargs())


async def render_tweet(
    context: BrowserContext,
    url: str,
    logger: TaggedLogger,
    screenshot: ScreenshotConfig,
) -> bytes | None:
    """Render the tweet page, falling back to the embed widget.

    Only a ``None`` result from the page strategy triggers the fallback; an
    exception there is a real failure and propagates untouched.
    """
    data = await render_tweet_page(context, url, logger, screenshot)
    if data is not None:
        return data
    logger.debug("Tweet page had no tweet, trying embedded widget")
    return await render_tweet_embedded(context, url, logger, screenshot)


def parse_tweet_path(path: str) -> str | None:
    match = _TWEET_PATH_RE.match(path)
    return match.group("id") if match else None


async def handle_twitter(ctx: RequestContext, url: httpx.URL) -> Response:
    logger = ctx.logger.sub_tagged("twitter")

    tweet_id = parse_tweet_path(url.path)
    if tweet_id is None:
        logger.debug("Invalid tweet URL %s", url)
        raise HTTPException(
            status_code=422,
            detail="Invalid tweet URL. Should look something like https://x.com/username/status/1234567890",
        )

    logger.set_tags({"twitter": tweet_id})

    tweet_info = await fetch_tweet_info(ctx.services.http, tweet_id, logger)
    if tweet_info is None:
        logger.debug("Tweet info not available")
        return Response(status_code=404)

    post = PostReference(Platform.TWITTER, str(url), (tweet_id,))
    return await respond_with_screenshot(ctx, post, render_tweet, logger=logger)
