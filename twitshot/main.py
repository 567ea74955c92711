from __future__ import annotations

import time
from contextlib import asynccontextmanager
from pathlib import Path

import httpx
import uvicorn
from dotenv import load_dotenv
from fastapi import Depends, FastAPI, Request
from fastapi.responses import PlainTextResponse, Response

from .assets import read_bytes
from .bluesky_session import BlueskySession
from .browser import BrowserService
from .config import Settings, clear_console, get_settings
from .context import RequestContext, Services, new_request_id, run_handler
from .handlers import handle_post, home, home_form_redirect
from .log import get_logger, log_line, setup_logging
from .preflight import PREFLIGHT_TIMEOUT_S
from .ratelimit import SlowDown, SlowDownInfo, client_ip, storage_uri_for
from .raw import handle_raw, raw_form_redirect, raw_home

# Load environment variables from the repo root .env for local dev
_HERE = Path(__file__).resolve()
load_dotenv(_HERE.parents[1] / ".env", override=False)

_UVICORN_LOG_LEVELS = {"warn": "warning"}


def build_services(settings: Settings) -> Services:
    http = httpx.AsyncClient(timeout=PREFLIGHT_TIMEOUT_S, follow_redirects=True)
    return Services(
        settings=settings,
        browser=BrowserService(engine=settings.browser, application_info=settings.application_info),
        http=http,
        bsky=BlueskySession(
            settings.bsky_service_url,
            identifier=settings.bsky_account_identifier,
            password=settings.bsky_account_password,
            refresh_token=settings.bsky_refresh_token,
        ),
        limiter=SlowDown(storage_uri_for(settings.redis_url), trust_proxy=settings.trust_proxy),
    )


def get_request_context(request: Request) -> RequestContext:
    return request.state.ctx


async def slow_down(request: Request) -> SlowDownInfo | None:
    limiter = request.app.state.services.limiter
    if limiter is None:
        return None
    return await limiter(request)


def create_app(settings: Settings | None = None, services: Services | None = None) -> FastAPI:
    settings = settings or get_settings()
    services = services or build_services(settings)
    logger = get_logger()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await services.start(logger)
        logger.info("Server listening on http://%s:%s", settings.host, settings.port)
        try:
            yield
        finally:
            await services.close()

    app = FastAPI(title="twitshot", version="0.1.0", lifespan=lifespan, docs_url=None, redoc_url=None, openapi_url=None)
    app.state.services = services

    @app.middleware("http")
    async def request_context(request: Request, call_next):
        request_id = new_request_id()
        ctx = RequestContext(id=request_id, logger=get_logger({"$id": request_id}), services=services)
        request.state.ctx = ctx

        info = {
            "ip": client_ip(request, settings.trust_proxy),
            "method": request.method,
            "url": request.url.path + (f"?{request.url.query}" if request.url.query else ""),
            "ua": request.headers.get("user-agent"),
            "referer": request.headers.get("referer"),
        }
        ctx.logger.debug("START %s", log_line(info))

        start = time.perf_counter()
        response = await call_next(request)
        took = round((time.perf_counter() - start) * 1000, 2)

        response.headers["x-twitshot-request-id"] = request_id
        ctx.logger.info("END %s", log_line({"status": response.status_code, "took": took, **info}))
        return response

    @app.get("/healthz")
    def healthz():
        return Response(status_code=200)

    @app.get("/favicon.ico")
    def favicon():
        return Response(read_bytes("favicon.ico"), media_type="image/x-icon")

    @app.get("/robots.txt")
    def robots():
        return PlainTextResponse("User-agent: *\nDisallow: /")

    if settings.enable_raw_screenshots:

        @app.get("/raw")
        def raw_home_endpoint():
            return raw_home()

        @app.post("/raw")
        async def raw_form_endpoint(request: Request):
            form = await request.form()
            return raw_form_redirect(dict(form))

        @app.get("/http-raw/{target:path}")
        async def raw_endpoint(
            target: str,
            request: Request,
            ctx: RequestContext = Depends(get_request_context),
            rate_limit: SlowDownInfo | None = Depends(slow_down),
        ):
            ctx.rate_limit = rate_limit
            ctx.logger.info("Got request to render %s", target)
            try:
                return await run_handler(ctx, handle_raw, target, request.query_params.multi_items())
            finally:
                ctx.logger.info("Done with rendering %s", target)

    @app.get("/")
    def home_endpoint():
        return home()

    @app.post("/")
    async def home_form_endpoint(request: Request):
        form = await request.form()
        return home_form_redirect(dict(form))

    @app.get("/{target:path}")
    async def post_endpoint(
        target: str,
        ctx: RequestContext = Depends(get_request_context),
        rate_limit: SlowDownInfo | None = Depends(slow_down),
    ):
        ctx.rate_limit = rate_limit
        ctx.logger.info("Got request to render %s", target)
        try:
            return await run_handler(ctx, handle_post, target)
        finally:
            ctx.logger.info("Done with rendering %s", target)

    return app


def run() -> None:
    settings = get_settings()
    if settings.is_dev:
        clear_console()
    log_level = settings.effective_log_level
    setup_logging(log_level)

    uvicorn.run(
        create_app(settings),
        host=settings.host,
        port=settings.port,
        log_level=_UVICORN_LOG_LEVELS.get(log_level, log_level),
        access_log=False,
        proxy_headers=False,
    )


if __name__ == "__main__":
    run()
