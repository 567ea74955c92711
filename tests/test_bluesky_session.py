from __future__ import annotations

import json
import unittest
from types import SimpleNamespace
from unittest.mock import AsyncMock

from atproto import Session, SessionEvent, exceptions

DID_DOC = {
    "id": "did:plc:abc",
    "service": [
        {"id": "#atproto_pds", "type": "AtprotoPersonalDataServer", "serviceEndpoint": "https://pds.example"}
    ],
}


class _FakeAtprotoClient:
    """Stands in for ``atproto.AsyncClient``: same call surface, session changes fire callbacks."""

    def __init__(self, *, login_ok: bool = True, refresh_ok: bool = True) -> None:
        self.login_ok = login_ok
        self.refresh_ok = refresh_ok
        self.callbacks = []
        self.logins: list[tuple] = []
        self.refresh_headers: list[dict] = []
        self.thread = SimpleNamespace(post={"uri": "at://someone.bsky.social/app.bsky.feed.post/3kabc"})
        self.thread_calls: list[dict] = []
        self._refreshes = 0

        self.com = SimpleNamespace(
            atproto=SimpleNamespace(
                server=SimpleNamespace(
                    get_session=AsyncMock(
                        return_value=SimpleNamespace(
                            email="bot@example.com",
                            email_confirmed=True,
                            email_auth_factor=False,
                            handle="bot.bsky.social",
                        )
                    ),
                    refresh_session=self._refresh_session,
                )
            )
        )
        self.app = SimpleNamespace(bsky=SimpleNamespace(feed=SimpleNamespace(get_post_thread=self._get_post_thread)))

    def on_session_change(self, callback) -> None:
        self.callbacks.append(callback)

    async def _emit(self, event: SessionEvent, session: Session) -> None:
        for callback in self.callbacks:
            await callback(event, session)

    async def login(self, login=None, password=None, session_string=None):
        self.logins.append((login, password, session_string))
        if session_string:
            await self._emit(SessionEvent.IMPORT, Session.decode(session_string))
            return None
        if not self.login_ok:
            raise exceptions.AtProtocolError("AuthenticationRequired")
        await self._emit(
            SessionEvent.CREATE,
            Session("bot.bsky.social", "did:plc:abc", "access-1", "refresh-1", "https://pds.example"),
        )
        return None

    async def _refresh_session(self, headers=None, session_refreshing=False):
        self.refresh_headers.append(headers)
        if not self.refresh_ok:
            raise exceptions.AtProtocolError("InvalidRequest")
        self._refreshes += 1
        return SimpleNamespace(
            handle="bot.bsky.social",
            did="did:plc:abc",
            access_jwt=f"access-{self._refreshes + 1}",
            refresh_jwt=f"refresh-{self._refreshes + 1}",
            did_doc=DID_DOC,
        )

    async def _get_post_thread(self, params):
        self.thread_calls.append(params)
        if self.thread is None:
            raise exceptions.AtProtocolError("InvalidRequest")
        return SimpleNamespace(thread=self.thread)


class TestBlueskySession(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.client = _FakeAtprotoClient()

    def _session(self, **kwargs):
        from twitshot.bluesky_session import BlueskySession

        return BlueskySession("https://bsky.social", client=self.client, **kwargs)

    async def test_no_credentials_stays_anonymous(self) -> None:
        session = self._session()
        await session.start()
        try:
            self.assertIsNone(session.session)
            self.assertIsNone(session.session_data)
            self.assertEqual(self.client.logins, [])
        finally:
            await session.close()

    async def test_login_builds_storage_blob(self) -> None:
        session = self._session(identifier="bot.bsky.social", password="hunter2")
        await session.start()
        try:
            blob = json.loads(session.session_data)
        finally:
            await session.close()

        self.assertEqual(self.client.logins, [("bot.bsky.social", "hunter2", None)])
        account = blob["session"]["currentAccount"]
        self.assertEqual(account["did"], "did:plc:abc")
        self.assertEqual(account["accessJwt"], "access-1")
        self.assertEqual(account["pdsUrl"], "https://pds.example")
        self.assertEqual(account["service"], "https://bsky.social")
        self.assertEqual(account["email"], "bot@example.com")
        self.assertTrue(account["emailConfirmed"])
        self.assertEqual(blob["session"]["accounts"], [account])

    async def test_refresh_token_login(self) -> None:
        session = self._session(refresh_token="refresh-0")
        await session.start()
        try:
            self.assertEqual(session.session.access_jwt, "access-2")
            self.assertEqual(session.session.pds_endpoint, "https://pds.example")
            self.assertEqual(self.client.refresh_headers[0], {"Authorization": "Bearer refresh-0"})
            self.assertIsNotNone(session.session_data)
        finally:
            await session.close()

    async def test_failed_refresh_keeps_previous_session(self) -> None:
        session = self._session(identifier="bot.bsky.social", password="hunter2")
        await session.start()
        try:
            before = session.session_data
            self.client.refresh_ok = False
            self.assertFalse(await session.refresh())
            self.assertEqual(session.session_data, before)
            self.assertEqual(session.session.access_jwt, "access-1")

            self.client.refresh_ok = True
            self.assertTrue(await session.refresh())
            self.assertEqual(session.session.access_jwt, "access-2")
            self.assertEqual(self.client.refresh_headers[-1], {"Authorization": "Bearer refresh-1"})
            self.assertIn("access-2", session.session_data)
        finally:
            await session.close()

    async def test_failed_login_does_not_raise(self) -> None:
        self.client.login_ok = False
        session = self._session(identifier="bot.bsky.social", password="wrong")
        await session.start()
        self.assertIsNone(session.session_data)
        await session.close()

    async def test_get_post_thread_returns_post_view(self) -> None:
        from twitshot.log import get_logger

        session = self._session()
        post = await session.get_post_thread("someone.bsky.social", "3kabc", get_logger())

        self.assertEqual(post, {"uri": "at://someone.bsky.social/app.bsky.feed.post/3kabc"})
        self.assertEqual(
            self.client.thread_calls, [{"uri": "at://someone.bsky.social/app.bsky.feed.post/3kabc", "depth": 0}]
        )

    async def test_get_post_thread_missing_post(self) -> None:
        from twitshot.log import get_logger

        session = self._session()
        self.client.thread = SimpleNamespace(not_found=True, uri="at://x")
        self.assertIsNone(await session.get_post_thread("someone.bsky.social", "3kabc", get_logger()))

        self.client.thread = None
        self.assertIsNone(await session.get_post_thread("someone.bsky.social", "3kabc", get_logger()))


if __name__ == "__main__":
    unittest.main()
