"""Generic "screenshot any page" mode.

The target is DNS-resolved before a browser context exists and refused when
any address falls in a private or reserved range, so the browser never gets
pointed at internal infrastructure. Screenshot knobs travel as ``$$``-prefixed
query parameters and are stripped from the URL that gets rendered.
"""
from __future__ import annotations

import asyncio
import html
import json
import socket
import time
from dataclasses import dataclass, field
from functools import partial
from typing import Any, Awaitable, Callable, Iterable
from urllib.parse import urlencode

import httpx
from fastapi.responses import HTMLResponse, PlainTextResponse, RedirectResponse, Response
from playwright.async_api import BrowserContext
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from .assets import read_text
from .bluesky import storage_state
from .browser import DEFAULT_HEIGHT, DEFAULT_WIDTH, ScreenshotConfig, browser_dimensions
from .classifier import parse_url
from .context import RequestContext
from .errors import InvalidUrlError, ScreenshotResponseError
from .ip_blocklist import BLOCKED_IPS_FILTER, IpBlockList
from .log import TaggedLogger
from .models import Platform, PostReference, RawScreenshotOptions, base64url
from .respond import respond_with_screenshot

RAW_CACHE_FOR_SECONDS = 30 * 60
RAW_DEFAULT_SCALE_FACTOR = 1.5
OPTION_PREFIX = "$$"

# host -> resolved addresses; raises OSError when the name does not resolve
Resolver = Callable[[str], Awaitable[list[str]]]


@dataclass(frozen=True)
class RawOption:
    name: str
    title: str
    description: str | None = None
    placeholder: str | None = None
    input_attrs: dict[str, Any] = field(default_factory=dict)


RAW_OPTIONS = (
    RawOption(
        "selectElement",
        "Element to screenshot",
        "CSS selector for which element to screenshot. Will capture the entire element irregardless of page size.",
    ),
    RawOption(
        "removeElements",
        "Elements to remove",
        "Comma-separated list of CSS selectors to remove from the page before taking the screenshot. "
        "Useful for removing annoying elements like login banners or simple ads.",
        placeholder="body > footer, #an-ad-banner, .my-annoying-element",
    ),
    RawOption(
        "waitForElement",
        "Wait for element to be present",
        "CSS selector which determines which element to wait for to be present on the page before taking "
        "the screenshot. Useful for SPAs where the page is loaded asynchronously.",
    ),
    RawOption(
        "pageWidthPx",
        "Page width",
        "Width of the page in pixels.",
        placeholder=str(DEFAULT_WIDTH),
        input_attrs={"type": "number", "min": 100, "max": 3000, "step": 10},
    ),
    RawOption(
        "pageHeightPx",
        "Page height",
        "Height of the page in pixels.",
        placeholder=str(DEFAULT_HEIGHT),
        input_attrs={"type": "number", "min": 100, "max": 3000, "step": 10},
    ),
    RawOption(
        "pageScaleFactor",
        "Page scale factor",
        'Scale factor of the page from 0.5 to 3. Used to "zoom" the page which in practice means smaller '
        "or clearer screenshots.",
        placeholder=str(RAW_DEFAULT_SCALE_FACTOR),
        input_attrs={"type": "number", "min": 0.5, "max": 3, "step": 0.5},
    ),
)


def _option_input(option: RawOption) -> str:
    placeholder = option.placeholder or "element#with-an-id.and-a-class-name"
    attrs = " ".join(f"{k}={json.dumps(v)}" for k, v in option.input_attrs.items())
    described_by = f'aria-describedby="_{option.name}-description"' if option.description else ""
    description = ""
    if option.description:
        description = (
            f'<span id="_{option.name}-description" style="font-size: 0.75em; margin-top: 0.5em; opacity: 0.75">'
            f"{html.escape(option.description, quote=False)}</span>"
        )
    return (
        "<p>\n"
        "  <label>\n"
        f"    {html.escape(option.title)}:\n"
        "    <br>\n"
        f'    <input name="{OPTION_PREFIX}{option.name}" placeholder="{html.escape(placeholder)}" '
        f'style="width: 100%" {attrs} {described_by}>\n'
        "  </label>\n"
        f"  {description}\n"
        "</p>"
    )


def render_raw_home() -> str:
    inputs = "\n".join(_option_input(option) for option in RAW_OPTIONS)
    return read_text("index_raw.html").replace("{{{ELEMENT_INPUTS}}}", inputs)


async def resolve_host(host: str) -> list[str]:
    loop = asyncio.get_running_loop()
    infos = await loop.getaddrinfo(host, None, type=socket.SOCK_STREAM, flags=socket.AI_ADDRCONFIG)
    addresses: list[str] = []
    for _family, _type, _proto, _canonname, sockaddr in infos:
        if sockaddr[0] not in addresses:
            addresses.append(sockaddr[0])
    return addresses


def split_options(query: Iterable[tuple[str, str]]) -> tuple[list[tuple[str, str]], RawScreenshotOptions]:
    """Separate ``$$`` screenshot options from the target's own query parameters."""
    passthrough: list[tuple[str, str]] = []
    options: dict[str, str] = {}
    for key, value in query:
        if key.startswith(OPTION_PREFIX):
            options[key[len(OPTION_PREFIX):]] = value
        else:
            passthrough.append((key, value))
    return passthrough, RawScreenshotOptions.model_validate(options)


def origin_of(url: httpx.URL) -> str:
    origin = f"{url.scheme}://{url.host}"
    if url.port is not None:
        origin += f":{url.port}"
    return origin


def base36(number: int) -> str:
    digits = "0123456789abcdefghijklmnopqrstuvwxyz"
    if number == 0:
        return "0"
    out = []
    while number:
        number, rem = divmod(number, 36)
        out.append(digits[rem])
    return "".join(reversed(out))


def raw_filename_ids(url: httpx.URL) -> tuple[str, str]:
    return base64url(origin_of(url)), base36(int(time.time() * 1000))


def _invalid_selector(selector: str | None, error: Exception, logger: TaggedLogger) -> ScreenshotResponseError:
    logger.debug("Invalid selector %r: %s", selector, error)
    return ScreenshotResponseError(400, f"Invalid selector: {selector}")


async def render_raw_page(
    context: BrowserContext,
    url: str,
    logger: TaggedLogger,
    screenshot: ScreenshotConfig,
    *,
    options: RawScreenshotOptions,
) -> bytes | None:
    """Screenshot ``url`` honouring the user's options.

    The selectors come straight from the query string, so a selector the
    browser cannot parse is a 400 and a wait that times out is a 404.
    """
    logger.debug("Start rendering raw page %s", url)
    page = await context.new_page()

    await page.goto(url)

    if options.wait_for_element:
        logger.debug("Waiting for element %s", options.wait_for_element)
        try:
            await page.wait_for_selector(options.wait_for_element)
        except PlaywrightTimeoutError:
            logger.debug("Element never appeared")
            raise ScreenshotResponseError(404, f"Element never appeared: {options.wait_for_element}")
        except PlaywrightError as e:
            raise _invalid_selector(options.wait_for_element, e, logger)

    logger.debug("Waiting for page to load")
    await page.wait_for_load_state("networkidle")

    remove_selectors = options.remove_selectors()
    if remove_selectors:
        logger.debug("Removing elements %s", remove_selectors)
        try:
            await page.evaluate(
                "(selectors) => selectors.forEach((s) => document.querySelectorAll(s).forEach(($el) => $el.remove()))",
                remove_selectors,
            )
        except PlaywrightError as e:
            raise _invalid_selector(options.remove_elements, e, logger)

    if options.select_element:
        try:
            element = await page.query_selector(options.select_element)
        except PlaywrightError as e:
            raise _invalid_selector(options.select_element, e, logger)
        if element is None:
            logger.debug("Element not found")
            raise ScreenshotResponseError(404, f"Selected element not found: {options.select_element}")
        logger.debug("Taking screenshot of element...")
        return await element.screenshot(**screenshot.kwargs())

    logger.debug("Taking screenshot...")
    return await page.screenshot(**screenshot.kwargs())


async def handle_raw(
    ctx: RequestContext,
    target: str,
    query: Iterable[tuple[str, str]],
    *,
    blocklist: IpBlockList = BLOCKED_IPS_FILTER,
) -> Response:
    logger = ctx.logger.sub_tagged("raw")

    try:
        url = parse_url(target)
    except InvalidUrlError as e:
        logger.debug("URL parse failed %r: %s", target, e)
        return Response(status_code=400)

    passthrough, options = split_options(query)
    url = url.copy_with(params=passthrough)
    logger.set_tags({"raw": str(url)})
    logger.debug("Raw URL %s", url)

    resolver = ctx.services.resolver or resolve_host
    try:
        addresses = await resolver(url.host)
    except OSError as e:
        logger.debug("DNS lookup failed: %s", e)
        addresses = []
    logger.debug("Resolved %s to %s", url.host, addresses)

    if not addresses:
        return PlainTextResponse(f"Could not resolve {json.dumps(url.host)}", status_code=400)

    if any(blocklist.check(address) for address in addresses):
        return PlainTextResponse(
            f"Some domain IPs resolve to restricted IPs: {', '.join(addresses)}",
            status_code=403,
        )

    dimensions = browser_dimensions(
        options.page_width_px,
        options.page_height_px,
        options.page_scale_factor or RAW_DEFAULT_SCALE_FACTOR,
    )
    logger.debug("Using browser dimensions %s", dimensions)

    post = PostReference(Platform.RAW, str(url), raw_filename_ids(url))
    return await respond_with_screenshot(
        ctx,
        post,
        partial(render_raw_page, options=options),
        logger=logger,
        context_options={
            "storage_state": storage_state(origin_of(url), ctx.services.bsky.session_data),
            **dimensions,
        },
        cache_for_secs=RAW_CACHE_FOR_SECONDS,
    )


def raw_home() -> HTMLResponse:
    return HTMLResponse(render_raw_home())


def raw_form_redirect(form: dict[str, Any]) -> Response:
    """``POST /raw``: send the form's URL and non-empty options to ``/http-raw/``."""
    url = form.get("url")
    if not url:
        return Response(status_code=415)

    try:
        parse_url(url)
    except InvalidUrlError:
        return Response(status_code=400)

    params = [(k, v) for k, v in form.items() if k != "url" and v]
    return RedirectResponse(f"/http-raw/{url}?{urlencode(params)}", status_code=302)
