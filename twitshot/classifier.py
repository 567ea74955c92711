from __future__ import annotations

import re
from dataclasses import dataclass

import httpx

from .errors import InvalidUrlError
from .models import Platform

# alias host -> (platform, canonical host)
_HOST_ALIASES: dict[str, tuple[Platform, str]] = {
    "twitter.com": (Platform.TWITTER, "x.com"),
    "x.com": (Platform.TWITTER, "x.com"),
    "www.x.com": (Platform.TWITTER, "x.com"),
    "www.twitter.com": (Platform.TWITTER, "x.com"),
    "tumblr.com": (Platform.TUMBLR, "www.tumblr.com"),
    "www.tumblr.com": (Platform.TUMBLR, "www.tumblr.com"),
    "bsky.app": (Platform.BSKY, "bsky.app"),
    "linkedin.com": (Platform.LINKEDIN, "www.linkedin.com"),
    "www.linkedin.com": (Platform.LINKEDIN, "www.linkedin.com"),
}

_TUMBLR_SUBDOMAIN_POST_RE = re.compile(
    r"^https?://(?P<subdomain>[^\-][a-zA-Z0-9\-]{0,30}[^\-])\.tumblr\.com/post/(?P<post_id>\d+)(?:/(?P<post_slug>[^/?#]+))?",
    re.IGNORECASE,
)


@dataclass(frozen=True)
class Classification:
    platform: Platform
    url: httpx.URL


def parse_url(raw: str | None) -> httpx.URL:
    value = (raw or "").strip()
    if not value:
        raise InvalidUrlError("Empty URL")
    try:
        url = httpx.URL(value)
    except (httpx.InvalidURL, TypeError, ValueError) as e:
        raise InvalidUrlError(str(e)) from e
    if url.scheme not in ("http", "https") or not url.host:
        raise InvalidUrlError(f"Not an absolute http(s) URL: {value!r}")
    return url


def classify(raw: str | None) -> Classification:
    """Work out which platform handler should render ``raw``.

    Known hosts are matched exactly and rewritten to their canonical host
    over https. Tumblr blog subdomains are rewritten to the path-based
    ``www.tumblr.com/<blog>/<id>`` form. Anything else is an ActivityPub
    candidate whose server software gets probed later.

    Raises ``InvalidUrlError`` when ``raw`` is not an absolute http(s) URL.
    """
    url = parse_url(raw)
    host = url.host.lower()

    alias = _HOST_ALIASES.get(host)
    if alias is not None:
        platform, canonical_host = alias
        return Classification(platform, url.copy_with(scheme="https", host=canonical_host))

    match = _TUMBLR_SUBDOMAIN_POST_RE.match(str(url))
    if match:
        path = f"/{match.group('subdomain')}/{match.group('post_id')}"
        if match.group("post_slug"):
            path += f"/{match.group('post_slug')}"
        return Classification(
            Platform.TUMBLR,
            url.copy_with(scheme="https", host="www.tumblr.com", path=path),
        )

    return Classification(Platform.ACTIVITYPUB, url)
