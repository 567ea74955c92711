"""Bluesky credential lifecycle.

Logs in once at startup (account password or refresh token), keeps the
session fresh on an hourly timer and exposes the serialized web-app storage
blob that gets injected into browser contexts so bsky.app renders the
logged-in view. Readers always see the last successfully refreshed value.
"""
from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from datetime import datetime, timezone

from atproto import AsyncClient, DidDocument, Session, SessionEvent, exceptions, models

from .log import TaggedLogger, get_logger

SESSION_REFRESH_INTERVAL_S = 60 * 60
STORAGE_KEY = "BSKY_STORAGE"


@dataclass(frozen=True)
class BskyAccount:
    email: str | None = None
    email_confirmed: bool | None = None
    email_auth_factor: bool | None = None


def build_storage_blob(session: Session, account: BskyAccount, service_url: str) -> str:
    current = {
        "accessJwt": session.access_jwt,
        "active": True,
        "did": session.did,
        "email": account.email,
        "emailAuthFactor": account.email_auth_factor,
        "emailConfirmed": account.email_confirmed,
        "handle": session.handle,
        "pdsUrl": session.pds_endpoint,
        "refreshJwt": session.refresh_jwt,
        "service": service_url,
        "signupQueued": False,
        "isSelfHosted": False,
    }
    return json.dumps(
        {
            "colorMode": "system",
            "reminders": {"lastEmailConfirm": datetime.now(timezone.utc).isoformat()},
            "languagePrefs": {
                "primaryLanguage": "en",
                "contentLanguages": ["en"],
                "postLanguage": "en",
                "postLanguageHistory": ["en"],
                "appLanguage": "en",
            },
            "requireAltTextEnabled": False,
            "mutedThreads": [],
            "invites": {"copiedInvites": []},
            "onboarding": {"step": "Home"},
            "hiddenPosts": [],
            "hasCheckedForStarterPack": True,
            "session": {"accounts": [current], "currentAccount": current},
        }
    )


class BlueskySession:
    """Thin wrapper over ``atproto.AsyncClient`` that keeps the browser blob in sync."""

    def __init__(
        self,
        service_url: str,
        *,
        identifier: str | None = None,
        password: str | None = None,
        refresh_token: str | None = None,
        refresh_interval_s: float = SESSION_REFRESH_INTERVAL_S,
        client: AsyncClient | None = None,
    ) -> None:
        self.service_url = service_url.rstrip("/")
        self._client = client or AsyncClient(base_url=f"{self.service_url}/xrpc")
        self._client.on_session_change(self._on_session_change)
        self._identifier = identifier
        self._password = password
        self._refresh_token = refresh_token
        self._refresh_interval_s = refresh_interval_s
        self._session: Session | None = None
        self._account = BskyAccount()
        self._refresh_task: asyncio.Task[None] | None = None
        self._logger = get_logger({"bsky-session": None})
        self.session_data: str | None = None

    @property
    def session(self) -> Session | None:
        return self._session

    async def start(self, logger: TaggedLogger | None = None) -> None:
        if logger is not None:
            self._logger = logger.sub_tagged({"bsky-session": None})
        logger = self._logger

        try:
            if self._identifier and self._password:
                logger.info("Logging into BSKY using credentials")
                logger.debug("Using BSKY credentials identifier=%s", self._identifier)
                await self._client.login(self._identifier, self._password)
            elif self._refresh_token:
                logger.info("Logging into BSKY using refresh token")
                await self._import_refresh_token(self._refresh_token)
            else:
                return
            info = await self._client.com.atproto.server.get_session()
        except exceptions.AtProtocolError as e:
            logger.error("Error logging into BSKY: %s", e)
            self._session = None
            self.session_data = None
            return

        self._account = BskyAccount(info.email, info.email_confirmed, info.email_auth_factor)
        logger.info("Successfully logged in to BSKY email=%s handle=%s", info.email, info.handle)
        self._publish()

        if self._refresh_task is None:
            self._refresh_task = asyncio.create_task(self._refresh_loop())

    async def close(self) -> None:
        task, self._refresh_task = self._refresh_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def refresh(self) -> bool:
        if self._session is None:
            return False
        self._logger.info("Refreshing BSKY credentials")
        previous = self._session
        try:
            await self._import_refresh_token(previous.refresh_jwt)
        except exceptions.AtProtocolError as e:
            self._logger.warning("Refreshing BSKY credentials failed, keeping previous session: %s", e)
            self._session = previous
            return False
        self._publish()
        return True

    async def get_post_thread(
        self, username: str, post_id: str, logger: TaggedLogger
    ) -> models.AppBskyFeedDefs.PostView | None:
        """Return the post view for ``at://<username>/app.bsky.feed.post/<post_id>`` or ``None``."""
        uri = f"at://{username}/app.bsky.feed.post/{post_id}"
        try:
            res = await self._client.app.bsky.feed.get_post_thread({"uri": uri, "depth": 0})
        except exceptions.AtProtocolError as e:
            logger.debug("getPostThread failed for %s: %s", uri, e)
            return None
        # NotFoundPost and BlockedPost carry no post view
        return getattr(res.thread, "post", None)

    async def _import_refresh_token(self, refresh_jwt: str) -> None:
        res = await self._client.com.atproto.server.refresh_session(
            headers={"Authorization": f"Bearer {refresh_jwt}"},
            session_refreshing=True,
        )
        pds_endpoint = self.service_url
        if res.did_doc:
            pds_endpoint = DidDocument.from_dict(res.did_doc).get_pds_endpoint() or pds_endpoint
        session = Session(res.handle, res.did, res.access_jwt, res.refresh_jwt, pds_endpoint)
        await self._client.login(session_string=session.encode())

    async def _on_session_change(self, event: SessionEvent, session: Session) -> None:
        self._logger.debug("BSKY session %s for %s", event.value, session.handle)
        self._session = session

    async def _refresh_loop(self) -> None:
        while True:
            await asyncio.sleep(self._refresh_interval_s)
            try:
                await self.refresh()
            except Exception:
                self._logger.exception("Unexpected error while refreshing BSKY credentials")

    def _publish(self) -> None:
        if self._session is not None:
            self.session_data = build_storage_blob(self._session, self._account, self.service_url)
