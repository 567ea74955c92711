from __future__ import annotations

import unittest
from unittest.mock import AsyncMock, patch

from fastapi.testclient import TestClient

from tests.fakes import FakeBskySession, make_services, make_settings


def _client(services=None, **settings_overrides) -> tuple[TestClient, object]:
    from twitshot.main import create_app

    settings = make_settings(**settings_overrides)
    services = services or make_services(settings=settings)
    return TestClient(create_app(settings, services), follow_redirects=False), services


class TestStaticRoutes(unittest.TestCase):
    def test_healthz(self) -> None:
        client, _ = _client()
        res = client.get("/healthz")
        self.assertEqual(res.status_code, 200)
        self.assertTrue(res.headers["x-twitshot-request-id"])

    def test_robots_disallows_everything(self) -> None:
        client, _ = _client()
        res = client.get("/robots.txt")
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.text, "User-agent: *\nDisallow: /")
        self.assertTrue(res.headers["content-type"].startswith("text/plain"))

    def test_favicon(self) -> None:
        client, _ = _client()
        res = client.get("/favicon.ico")
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.headers["content-type"], "image/x-icon")
        self.assertEqual(res.content[:4], b"\x00\x00\x01\x00")

    def test_home_page_is_html_form(self) -> None:
        client, _ = _client()
        res = client.get("/")
        self.assertEqual(res.status_code, 200)
        self.assertIn('name="url"', res.text)

    def test_home_post_redirects_to_url(self) -> None:
        client, _ = _client()
        res = client.post("/", data={"url": "https://x.com/someone/status/1"})
        self.assertEqual(res.status_code, 302)
        self.assertEqual(res.headers["location"], "/https://x.com/someone/status/1")

    def test_home_post_without_url_is_415(self) -> None:
        client, _ = _client()
        self.assertEqual(client.post("/", data={}).status_code, 415)


class TestPostRoutes(unittest.TestCase):
    def test_tweet_end_to_end(self) -> None:
        client, services = _client()
        with patch("twitshot.twitter.fetch_tweet_info", new=AsyncMock(return_value={"id_str": "12345"})), patch(
            "twitshot.twitter.render_tweet", new=AsyncMock(return_value=b"\x89PNG fake")
        ) as render:
            res = client.get("/https://twitter.com/someone/status/12345")

        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.headers["content-type"], "image/png")
        self.assertIn("tweet.12345", res.headers["content-disposition"])
        self.assertEqual(res.content, b"\x89PNG fake")
        self.assertEqual(render.await_args.args[1], "https://x.com/someone/status/12345")
        self.assertEqual(services.browser.contexts[0].close_calls, 1)

    def test_unparseable_target_is_400(self) -> None:
        client, services = _client()
        res = client.get("/definitely-not-a-url")
        self.assertEqual(res.status_code, 400)
        self.assertEqual(services.browser.contexts, [])

    def test_bluesky_without_thread_is_404(self) -> None:
        bsky = FakeBskySession(post=None)
        settings = make_settings()
        client, services = _client(make_services(bsky=bsky, settings=settings))

        res = client.get("/https://bsky.app/profile/someone.bsky.social/post/3kabc")

        self.assertEqual(res.status_code, 404)
        self.assertEqual(bsky.calls, [("someone.bsky.social", "3kabc")])
        self.assertEqual(services.browser.contexts, [])

    def test_bluesky_injects_session_storage(self) -> None:
        bsky = FakeBskySession(post={"uri": "at://x"}, session_data='{"session": {}}')
        client, services = _client(make_services(bsky=bsky, settings=make_settings()))

        with patch("twitshot.bluesky.render_bsky_post", new=AsyncMock(return_value=b"img")):
            res = client.get("/https://bsky.app/profile/someone.bsky.social/post/3kabc")

        self.assertEqual(res.status_code, 200)
        self.assertIn("bluesky-post.someone_bsky_social.3kabc", res.headers["content-disposition"])
        origins = services.browser.context_options[0]["storage_state"]["origins"]
        self.assertEqual(origins[0]["origin"], "https://bsky.app")
        self.assertEqual(origins[0]["localStorage"], [{"name": "BSKY_STORAGE", "value": '{"session": {}}'}])

    def test_linkedin_bad_path_is_422(self) -> None:
        client, _ = _client()
        self.assertEqual(client.get("/https://linkedin.com/feed/").status_code, 422)


class TestRawRoutes(unittest.TestCase):
    def test_private_address_is_403_before_navigation(self) -> None:
        resolver = AsyncMock(return_value=["127.0.0.1"])
        settings = make_settings(enable_raw_screenshots=True)
        client, services = _client(make_services(resolver=resolver, settings=settings))

        with patch("twitshot.raw.render_raw_page", new=AsyncMock(return_value=b"img")) as render:
            res = client.get("/http-raw/http://internal.example/admin", params={"$$selectElement": "body"})

        self.assertEqual(res.status_code, 403)
        self.assertIn("127.0.0.1", res.text)
        resolver.assert_awaited_once_with("internal.example")
        render.assert_not_called()
        self.assertEqual(services.browser.contexts, [])

    def test_unresolvable_host_is_400(self) -> None:
        resolver = AsyncMock(side_effect=OSError("Name or service not known"))
        settings = make_settings(enable_raw_screenshots=True)
        client, services = _client(make_services(resolver=resolver, settings=settings))

        res = client.get("/http-raw/https://nope.invalid/")

        self.assertEqual(res.status_code, 400)
        self.assertEqual(services.browser.contexts, [])

    def test_public_page_renders_with_options(self) -> None:
        resolver = AsyncMock(return_value=["93.184.216.34"])
        settings = make_settings(enable_raw_screenshots=True)
        client, services = _client(make_services(resolver=resolver, settings=settings))

        with patch("twitshot.raw.render_raw_page", new=AsyncMock(return_value=b"img")) as render:
            res = client.get(
                "/http-raw/https://example.com/page",
                params={"q": "1", "$$pageWidthPx": "800", "$$removeElements": "footer, .ad"},
            )

        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.headers["cache-control"], "public, max-age=1800, s-max-age=1800")
        self.assertIn('filename="raw.aHR0cHM6Ly9leGFtcGxlLmNvbQ.', res.headers["content-disposition"])
        self.assertEqual(render.await_args.args[1], "https://example.com/page?q=1")
        self.assertEqual(render.await_args.kwargs["options"].remove_selectors(), ["footer", ".ad"])
        options = services.browser.context_options[0]
        self.assertEqual(options["viewport"], {"width": 1200, "height": 2304})
        self.assertEqual(options["device_scale_factor"], 1.5)

    def test_raw_home_lists_options(self) -> None:
        client, _ = _client(enable_raw_screenshots=True)
        res = client.get("/raw")
        self.assertEqual(res.status_code, 200)
        self.assertIn('name="$$selectElement"', res.text)
        self.assertNotIn("{{{ELEMENT_INPUTS}}}", res.text)

    def test_raw_post_redirects_with_non_empty_options(self) -> None:
        client, _ = _client(enable_raw_screenshots=True)
        res = client.post(
            "/raw",
            data={"url": "https://example.com/", "$$selectElement": "main", "$$waitForElement": ""},
        )
        self.assertEqual(res.status_code, 302)
        self.assertEqual(res.headers["location"], "/http-raw/https://example.com/?%24%24selectElement=main")

    def test_raw_post_validation(self) -> None:
        client, _ = _client(enable_raw_screenshots=True)
        self.assertEqual(client.post("/raw", data={}).status_code, 415)
        self.assertEqual(client.post("/raw", data={"url": "not a url"}).status_code, 400)

    def test_raw_routes_absent_when_disabled(self) -> None:
        client, services = _client(enable_raw_screenshots=False)
        res = client.get("/http-raw/https://example.com/")
        # falls through to the post route, which cannot classify "http-raw/..."
        self.assertEqual(res.status_code, 400)
        self.assertEqual(services.browser.contexts, [])


if __name__ == "__main__":
    unittest.main()
