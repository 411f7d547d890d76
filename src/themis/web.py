from __future__ import annotations

from datetime import datetime, timedelta
import hmac
import logging
from typing import Optional

from sanic import Request, Sanic, response
from sanic.log import logger
import sanic.log
import aiohttp
from prometheus_client import core
from prometheus_client.exposition import generate_latest

from themis import config
from themis.exceptions import AuthError, ThemisError, ValidationError
from themis.github import (
    GitHubInstallationLookup,
    GitHubRepositoryLookup,
    UnavailableInstallationLookup,
)
from themis.installation import InstallationCacheManager, utcnow
from themis.jobs import (
    DeferredDispatcher,
    HttpAnalyzer,
    InProcessDispatcher,
    JobTrigger,
    JobWorker,
    UnconfiguredAnalyzer,
    parse_trigger_request,
)
from themis.logger import LOG_FORMAT, get_log_handlers
from themis.metric import error_counter, request_counter
from themis.service import BulkInvalidator, StatusService
from themis.sessions import SessionStore, UserSession, get_session_store
from themis.stats import DashboardStatsReader
from themis.storage import CheckRunStore
from themis.storage.types import parse_utc_datetime
from themis.tagcache import TaggedCache


def parse_since(value: Optional[str]) -> datetime:
    if not value:
        raise ValidationError("Missing since parameter")
    try:
        return parse_utc_datetime(value)
    except ValueError:
        raise ValidationError(f"Invalid since parameter: {value}") from None


def _api_key_valid(app, api_key: str) -> bool:
    keys = getattr(app.config, "API_KEYS", None) or []
    return any(hmac.compare_digest(api_key, key) for key in keys)


def _session_id(app, request) -> Optional[str]:
    cookie = getattr(app.config, "SESSION_COOKIE", "themis_session")
    return request.cookies.get(cookie)


def require_session(app, request) -> tuple[str, UserSession]:
    session_id = _session_id(app, request)
    session = app.ctx.session_store.load_session(session_id)
    if session_id is None or session is None:
        raise AuthError("Not authenticated")
    return session_id, session


def require_caller(app, request) -> Optional[UserSession]:
    """Accept an API key or a logged in session.

    Returns the session, or ``None`` for API key callers.
    """
    api_key = request.headers.get("x-api-key")
    if api_key and _api_key_valid(app, api_key):
        return None
    _, session = require_session(app, request)
    return session


async def trigger_check(app, request) -> response.HTTPResponse:
    require_caller(app, request)
    trigger_request = parse_trigger_request(request.json)
    row = await app.ctx.job_trigger.trigger(trigger_request)
    return response.json(
        {"checkRunId": row.id, "status": row.status.value}, status=202
    )


async def get_check(app, request, check_run_id: str) -> response.HTTPResponse:
    require_caller(app, request)
    row = app.ctx.status_service.get(check_run_id)
    return response.json(row.to_payload())


async def completed_checks(app, request) -> response.HTTPResponse:
    require_caller(app, request)
    since = parse_since(request.args.get("since"))
    rows = app.ctx.status_service.list_completed_since(since)
    return response.json([row.to_payload() for row in rows])


async def running_checks(app, request) -> response.HTTPResponse:
    require_caller(app, request)
    rows = app.ctx.status_service.list_running()
    return response.json([row.to_payload() for row in rows])


async def bulk_delete(app, request) -> response.HTTPResponse:
    require_session(app, request)
    body = request.json
    if not isinstance(body, dict):
        raise ValidationError("Check run IDs are required")
    result = app.ctx.bulk_invalidator.bulk_delete(body.get("checkRunIds"))
    return response.json(result.to_payload())


async def check_history(app, request, owner: str, repo: str) -> response.HTTPResponse:
    require_caller(app, request)
    rows = app.ctx.status_service.history(owner, repo)
    return response.json({"checks": [row.to_payload() for row in rows]})


async def latest_check(app, request, owner: str, repo: str) -> response.HTTPResponse:
    require_caller(app, request)
    row = app.ctx.status_service.latest(owner, repo)
    return response.json(row.to_payload())


async def _current_user(app, session_id: str, session: UserSession) -> UserSession:
    current = await app.ctx.installation_manager.current_user(session)
    if current is not session:
        app.ctx.session_store.save_session(session_id, current)
    return current


async def dashboard_stats(app, request) -> response.HTTPResponse:
    session_id, session = require_session(app, request)
    user = await _current_user(app, session_id, session)
    total = user.installation.total_repositories if user.installation else 0
    stats = app.ctx.stats_reader.get(utcnow(), total)
    return response.json(
        stats.to_payload(),
        headers={"Cache-Control": "private, max-age=15"},
    )


async def current_user(app, request) -> response.HTTPResponse:
    session_id, session = require_session(app, request)
    user = await _current_user(app, session_id, session)
    return response.json(
        user.to_payload(),
        headers={"Cache-Control": "private, max-age=300, stale-while-revalidate=600"},
    )


async def refresh_installation_cache(app, request) -> response.HTTPResponse:
    session_id, session = require_session(app, request)
    try:
        refreshed = await app.ctx.installation_manager.refresh(session)
    except ThemisError:
        raise
    except Exception:  # noqa: BLE001
        error_counter.labels(context="installation_refresh").inc()
        logger.error("Error refreshing installation cache", exc_info=True)
        return response.json(
            {"error": "Failed to refresh installation cache", "kind": "internal"},
            status=500,
        )

    app.ctx.session_store.save_session(session_id, refreshed)
    installation = refreshed.installation
    if installation is None:
        return response.json(
            {
                "success": True,
                "installed": False,
                "message": "GitHub App is not installed",
            }
        )
    return response.json(
        {
            "success": True,
            "installed": True,
            "installationId": installation.installation_id,
            "totalRepositories": installation.total_repositories,
            "cachedAt": refreshed.to_payload()["installationCachedAt"],
        }
    )


def _installation_lookup(app):
    if app.config.GITHUB_APP_ID is None or app.config.GITHUB_PRIVATE_KEY is None:
        logger.warning("GitHub App not configured, installation lookups will fail")
        return UnavailableInstallationLookup()
    return GitHubInstallationLookup(
        app_id=app.config.GITHUB_APP_ID,
        private_key=app.config.GITHUB_PRIVATE_KEY,
        session=app.ctx.aiohttp_session,
    )


def create_app(
    store: Optional[CheckRunStore] = None,
    session_store: Optional[SessionStore] = None,
) -> Sanic:
    app = Sanic("themis")
    app.update_config(config)

    sanic.log.logger.handlers = []
    for handler in get_log_handlers(sanic.log.logger):
        handler.setFormatter(logging.Formatter(LOG_FORMAT))

    app.ctx.store = store or CheckRunStore(app.config.DB_PATH)
    app.ctx.session_store = session_store or get_session_store()
    app.ctx.tag_cache = TaggedCache(ttl=app.config.STATS_CACHE_TTL)
    app.ctx.status_service = StatusService(app.ctx.store)
    app.ctx.bulk_invalidator = BulkInvalidator(app.ctx.store, app.ctx.tag_cache)
    app.ctx.stats_reader = DashboardStatsReader(app.ctx.store, app.ctx.tag_cache)

    @app.listener("before_server_start")
    async def init(app, loop):
        app.ctx.store.initialize()

        logger.debug("Creating aiohttp session")
        app.ctx.aiohttp_session = aiohttp.ClientSession()

        if app.config.ANALYZER_URL:
            analyzer = HttpAnalyzer(
                app.config.ANALYZER_URL,
                session=app.ctx.aiohttp_session,
                timeout=app.config.ANALYZER_TIMEOUT,
            )
        else:
            logger.warning("ANALYZER_URL not set, every check run will fail")
            analyzer = UnconfiguredAnalyzer()

        if app.config.WORKER_IN_PROCESS:
            dispatcher = InProcessDispatcher(JobWorker(app.ctx.store, analyzer))
        else:
            dispatcher = DeferredDispatcher()
        app.ctx.dispatcher = dispatcher
        app.ctx.job_trigger = JobTrigger(
            app.ctx.store,
            dispatcher,
            resolver=GitHubRepositoryLookup(
                app.config.GITHUB_APP_ID,
                app.config.GITHUB_PRIVATE_KEY,
                session=app.ctx.aiohttp_session,
                installation_id=app.config.GITHUB_INSTALLATION_ID,
            ),
        )

        app.ctx.installation_manager = InstallationCacheManager(
            _installation_lookup(app),
            ttl=timedelta(seconds=app.config.INSTALLATION_CACHE_TTL),
        )

    @app.listener("after_server_stop")
    async def teardown(app, loop):
        if isinstance(app.ctx.dispatcher, InProcessDispatcher):
            logger.info(
                "Cancelling %d running check runs", app.ctx.dispatcher.running
            )
            await app.ctx.dispatcher.shutdown()
        await app.ctx.aiohttp_session.close()
        app.ctx.session_store.close()

    @app.on_request
    async def on_request(request: Request):
        if request.path == "/metrics":
            return
        request_counter.labels(path=request.path).inc()

    @app.exception(ThemisError)
    async def themis_error(request: Request, exception: ThemisError):
        error = exception.error
        if error.status_code >= 500:
            error_counter.labels(context="request").inc()
            logger.error("Request failed: %s", error.detail)
        return response.json(error.to_payload(), status=error.status_code)

    @app.get("/status")
    async def status(request):
        logger.debug("status check")
        return response.text("ok")

    @app.post("/api/v1/checks")
    async def post_check(request):
        return await trigger_check(request.app, request)

    @app.get("/api/v1/checks/completed")
    async def get_completed(request):
        return await completed_checks(request.app, request)

    @app.get("/api/v1/checks/running")
    async def get_running(request):
        return await running_checks(request.app, request)

    @app.delete("/api/v1/checks/bulk-delete")
    async def delete_checks(request):
        return await bulk_delete(request.app, request)

    @app.get("/api/v1/checks/history/<owner:str>/<repo:str>")
    async def get_history(request, owner: str, repo: str):
        return await check_history(request.app, request, owner, repo)

    @app.get("/api/v1/checks/latest/<owner:str>/<repo:str>")
    async def get_latest(request, owner: str, repo: str):
        return await latest_check(request.app, request, owner, repo)

    @app.get("/api/v1/checks/<check_run_id:str>")
    async def get_check_run(request, check_run_id: str):
        return await get_check(request.app, request, check_run_id)

    @app.get("/api/v1/stats/dashboard")
    async def get_dashboard_stats(request):
        return await dashboard_stats(request.app, request)

    @app.get("/api/v1/user/me")
    async def get_me(request):
        return await current_user(request.app, request)

    @app.post("/api/v1/user/refresh-cache")
    async def post_refresh_cache(request):
        return await refresh_installation_cache(request.app, request)

    @app.get("/metrics")
    async def metrics(request):
        return response.raw(generate_latest(core.REGISTRY))

    return app
