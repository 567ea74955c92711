"""Cheap out-of-band existence checks run before paying for a browser render.

Any ambiguity (timeout, non-200, unparseable body) is reported as "not
found" by returning ``None``; these checks never raise.
"""
from __future__ import annotations

from typing import Any

import httpx
from pydantic import ValidationError

from .browser import DESKTOP_CHROME_UA
from .log import TaggedLogger
from .models import MastodonStatus

PREFLIGHT_TIMEOUT_S = 5.0

TWEET_INFO_URL = "https://cdn.syndication.twimg.com/tweet-result"


async def fetch_json(
    client: httpx.AsyncClient,
    url: str,
    logger: TaggedLogger,
    *,
    params: dict[str, str] | None = None,
    headers: dict[str, str] | None = None,
) -> Any | None:
    try:
        res = await client.get(
            url,
            params=params,
            headers={"accept": "application/json", **(headers or {})},
            timeout=PREFLIGHT_TIMEOUT_S,
            follow_redirects=True,
        )
    except httpx.HTTPError as e:
        logger.debug("Request to %s failed: %s", url, e)
        return None

    if res.status_code != 200:
        logger.debug("Request to %s returned %s", url, res.status_code)
        return None

    try:
        data = res.json()
    except ValueError:
        logger.debug("Request to %s returned invalid JSON", url)
        return None

    logger.trace("Response from %s: %s", url, data)
    return data


async def fetch_tweet_info(client: httpx.AsyncClient, tweet_id: str, logger: TaggedLogger) -> dict[str, Any] | None:
    logger.debug("Tweet info URL %s?id=%s", TWEET_INFO_URL, tweet_id)
    data = await fetch_json(
        client,
        TWEET_INFO_URL,
        logger,
        params={"id": tweet_id, "lang": "en"},
        headers={"user-agent": DESKTOP_CHROME_UA},
    )
    if not isinstance(data, dict) or not data:
        return None
    return data


async def fetch_mastodon_status(
    client: httpx.AsyncClient,
    host: str,
    toot_id: str,
    logger: TaggedLogger,
) -> MastodonStatus | None:
    data = await fetch_json(client, f"https://{host}/api/v1/statuses/{toot_id}", logger)
    if data is None:
        return None
    try:
        return MastodonStatus.model_validate(data)
    except ValidationError:
        logger.debug("Unexpected status payload for toot %s", toot_id)
        return None
