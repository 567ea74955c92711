"""Route URLs on unknown hosts to the right ActivityPub server handler.

The server software is discovered through NodeInfo
(``/.well-known/nodeinfo`` -> schema 2.x document -> ``software.name``).
Handlers may redispatch here (a toot whose canonical URL lives on another
instance), so every request keeps the URLs it has already resolved and
bails out on repeats or long chains.
"""
from __future__ import annotations

from typing import Awaitable, Callable

import httpx
from fastapi import HTTPException
from fastapi.responses import Response
from pydantic import ValidationError

from .context import RequestContext
from .log import TaggedLogger
from .mastodon import handle_mastodon
from .misskey import handle_misskey
from .models import NodeInfo, NodeInfoList, Software
from .preflight import fetch_json

MAX_HOPS = 5

NODEINFO_SCHEMA_2_PREFIX = "http://nodeinfo.diaspora.software/ns/schema/2."

InstanceHandler = Callable[[RequestContext, httpx.URL], Awaitable[Response]]

INSTANCE_HANDLERS: dict[Software, InstanceHandler | None] = {
    Software.MASTODON: handle_mastodon,
    Software.MISSKEY: handle_misskey,
    Software.SHARKEY: handle_misskey,
    Software.UNSUPPORTED: None,
}


async def get_node_info(client: httpx.AsyncClient, url: httpx.URL, logger: TaggedLogger) -> NodeInfo | None:
    node_info_list_url = f"{url.scheme}://{url.host}/.well-known/nodeinfo"
    data = await fetch_json(client, node_info_list_url, logger)
    logger.debug("Got node info list from %s: %s", node_info_list_url, data)
    if data is None:
        return None

    try:
        node_info_list = NodeInfoList.model_validate(data)
    except ValidationError:
        return None

    href = next(
        (str(link.href) for link in node_info_list.links if link.rel.startswith(NODEINFO_SCHEMA_2_PREFIX)),
        None,
    )
    if href is None:
        return None

    data = await fetch_json(client, href, logger)
    logger.debug("Got node info from %s: %s", href, data)
    if data is None:
        return None

    try:
        return NodeInfo.model_validate(data)
    except ValidationError:
        return None


def check_loop(seen_urls: list[str], url: str) -> str | None:
    """Return why resolving ``url`` would loop, or ``None`` if it is safe."""
    if url in seen_urls:
        return f"Detected a loop in post URLs ({' -> '.join([*seen_urls, url])}). Aborting."
    if len(seen_urls) >= MAX_HOPS:
        return f"Too many redirects between post URLs ({' -> '.join(seen_urls)}). Aborting."
    return None


async def handle_activitypub(ctx: RequestContext, url: httpx.URL) -> Response:
    logger = ctx.logger.sub_tagged("activity-pub")

    loop_reason = check_loop(ctx.seen_urls, str(url))
    if loop_reason is not None:
        logger.debug(loop_reason)
        raise HTTPException(status_code=418, detail=loop_reason)

    node_info = await get_node_info(ctx.services.http, url, logger)
    if node_info is None:
        raise HTTPException(status_code=404, detail="Could not get node info from the server")

    software_name = node_info.software.name
    logger.debug("Getting %s instance handler", software_name)
    handler = INSTANCE_HANDLERS[Software.from_nodeinfo(software_name)]
    if handler is None:
        raise HTTPException(
            status_code=422,
            detail=f"Don't know how to handle {software_name!r} instances",
        )

    ctx.seen_urls.append(str(url))

    return await handler(ctx, url)
