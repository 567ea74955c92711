from __future__ import annotations

import base64
from dataclasses import dataclass
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, HttpUrl


class Platform(str, Enum):
    TWITTER = "twitter"
    MASTODON = "mastodon"
    MISSKEY = "misskey"
    TUMBLR = "tumblr"
    BSKY = "bsky"
    LINKEDIN = "linkedin"
    RAW = "raw"
    # Host we know nothing about yet; resolved through NodeInfo
    ACTIVITYPUB = "activitypub"


class Software(str, Enum):
    """ActivityPub server implementations we can render, keyed by NodeInfo name."""

    MASTODON = "mastodon"
    MISSKEY = "misskey"
    SHARKEY = "sharkey"
    UNSUPPORTED = "unsupported"

    @classmethod
    def from_nodeinfo(cls, name: str) -> "Software":
        try:
            software = cls(name.strip().lower())
        except ValueError:
            return cls.UNSUPPORTED
        return software


_FILENAME_PREFIXES = {
    Platform.TWITTER: "tweet",
    Platform.MASTODON: "toot",
    Platform.MISSKEY: "misskey-post",
    Platform.TUMBLR: "tumblr",
    Platform.BSKY: "bluesky-post",
    Platform.LINKEDIN: "linkedin",
    Platform.RAW: "raw",
}


@dataclass(frozen=True)
class PostReference:
    platform: Platform
    url: str
    ids: tuple[str, ...]

    @property
    def filename(self) -> str:
        return ".".join((_FILENAME_PREFIXES[self.platform], *self.ids))


def base64url(value: str) -> str:
    return base64.urlsafe_b64encode(value.encode("utf-8")).decode("ascii").rstrip("=")


# External API payloads. Only the fields we act on are declared.


class NodeInfoLink(BaseModel):
    rel: str
    href: HttpUrl


class NodeInfoList(BaseModel):
    links: list[NodeInfoLink]


class NodeInfoSoftware(BaseModel):
    name: str
    version: str


class NodeInfo(BaseModel):
    software: NodeInfoSoftware


class MastodonStatus(BaseModel):
    url: HttpUrl


class RawScreenshotOptions(BaseModel):
    """User-facing knobs for raw mode, passed as ``$$name=value`` query params."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    select_element: str | None = Field(None, alias="selectElement")
    remove_elements: str | None = Field(None, alias="removeElements")
    wait_for_element: str | None = Field(None, alias="waitForElement")
    page_width_px: str | None = Field(None, alias="pageWidthPx")
    page_height_px: str | None = Field(None, alias="pageHeightPx")
    page_scale_factor: str | None = Field(None, alias="pageScaleFactor")

    def remove_selectors(self) -> list[str]:
        if not self.remove_elements:
            return []
        return [s.strip() for s in self.remove_elements.split(",") if s.strip()]
