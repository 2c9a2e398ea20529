"""Gateway application: proxy and storage routes behind the auth gate."""

from __future__ import annotations

from contextlib import asynccontextmanager
from pathlib import Path

import aiosqlite
import httpx
import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from fastapi.staticfiles import StaticFiles

from tunegate.config import AppConfig
from tunegate.errors import GatewayError, UnsupportedMethod
from tunegate.logging import RequestLogContext
from tunegate.proxy import ApiForwarder, AudioProxy
from tunegate.server.auth import AuthGateMiddleware
from tunegate.storage import Database, PersistenceStore
from tunegate.storage.store import parse_key_list

log = structlog.get_logger(__name__)

PROXY_PATH = "/proxy"
STORAGE_PATH = "/api/storage"

_ALL_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]

PROXY_PREFLIGHT_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET,HEAD,OPTIONS",
    "Access-Control-Allow-Headers": "*",
    "Access-Control-Max-Age": "86400",
}

STORAGE_HEADERS = {
    "Content-Type": "application/json",
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET,POST,DELETE,OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
}


def _json(body: dict, status_code: int = 200) -> JSONResponse:
    return JSONResponse(body, status_code=status_code, headers=STORAGE_HEADERS)


async def _read_json_body(request: Request) -> object:
    """Return the decoded JSON body, or an empty dict when it is not JSON."""
    try:
        return await request.json()
    except ValueError:
        return {}


def create_app(
    config: AppConfig,
    store: PersistenceStore,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    """Build the gateway application.

    *store* carries the backend resolved at startup; *transport* lets tests
    replace the upstream network.
    """
    policy = config.proxy_policy()
    client_kw: dict = {"timeout": None, "follow_redirects": True}
    if transport is not None:
        client_kw["transport"] = transport
    client = httpx.AsyncClient(**client_kw)

    audio = AudioProxy(policy, client)
    api = ApiForwarder(policy, client)

    @asynccontextmanager
    async def lifespan(app: FastAPI):  # noqa: ARG001, ANN001
        log.info("gateway_started", storage=store.is_available(), allowed_host=policy.allowed_host)
        yield
        await client.aclose()

    app = FastAPI(title="tunegate", docs_url=None, redoc_url=None, lifespan=lifespan)
    app.state.store = store
    app.state.http_client = client

    if config.is_auth_enabled():
        app.add_middleware(AuthGateMiddleware, password=config.auth.password.get_secret_value())
    app.add_middleware(RequestLogContext)

    # -- error boundary -------------------------------------------------------

    @app.exception_handler(GatewayError)
    async def gateway_error_handler(request: Request, exc: GatewayError) -> Response:
        if request.url.path.startswith(STORAGE_PATH):
            return _json({"error": exc.detail}, exc.status_code)
        return PlainTextResponse(exc.detail, status_code=exc.status_code)

    # -- proxy ----------------------------------------------------------------

    @app.api_route(PROXY_PATH, methods=_ALL_METHODS)
    async def proxy(request: Request) -> Response:
        if request.method == "OPTIONS":
            return Response(status_code=204, headers=PROXY_PREFLIGHT_HEADERS)
        if request.method not in ("GET", "HEAD"):
            log.info("method_rejected")
            raise UnsupportedMethod

        target = request.query_params.get("target")
        if target:
            structlog.contextvars.bind_contextvars(route="audio")
            return await audio.fetch(target, request)
        structlog.contextvars.bind_contextvars(route="api")
        return await api.forward(request.query_params.multi_items(), request)

    # -- storage --------------------------------------------------------------

    @app.api_route(STORAGE_PATH, methods=_ALL_METHODS)
    async def storage(request: Request) -> Response:
        method = request.method
        if method == "OPTIONS":
            return Response(status_code=204, headers=STORAGE_HEADERS)
        if method not in ("GET", "POST", "DELETE"):
            log.info("method_rejected")
            raise UnsupportedMethod

        structlog.contextvars.bind_contextvars(route="storage")
        try:
            if method == "GET":
                return await _storage_get(request, store)
            if method == "POST":
                return await _storage_post(request, store)
            return await _storage_delete(request, store)
        except aiosqlite.Error as exc:
            log.error("storage_failed", method=method, error=str(exc))
            return _json({"error": "Storage error"}, 500)
        except GatewayError:
            raise
        except Exception:
            log.exception("storage_failed", method=method)
            return _json({"error": "Storage error"}, 500)

    @app.get("/health")
    async def health() -> dict:
        return {"ok": True, "d1Available": store.is_available()}

    # -- static files -----------------------------------------------------------

    static_dir = config.server.static_dir
    if static_dir and Path(static_dir).expanduser().is_dir():
        app.mount(
            "/",
            StaticFiles(directory=str(Path(static_dir).expanduser()), html=True),
            name="static",
        )

    return app


async def _storage_get(request: Request, store: PersistenceStore) -> JSONResponse:
    if not store.is_available():
        return _json({"d1Available": False, "data": {}})
    if request.query_params.get("status"):
        return _json({"d1Available": True})

    keys = parse_key_list(request.query_params.get("keys") or "")
    data = await store.get_many(keys) if keys else await store.get_all()
    return _json({"d1Available": True, "data": data})


async def _storage_post(request: Request, store: PersistenceStore) -> JSONResponse:
    if not store.is_available():
        return _json({"d1Available": False, "data": {}})
    body = await _read_json_body(request)
    payload = body.get("data") if isinstance(body, dict) else None
    updated = await store.put_many(payload)
    return _json({"d1Available": True, "updated": updated})


async def _storage_delete(request: Request, store: PersistenceStore) -> JSONResponse:
    if not store.is_available():
        return _json({"d1Available": False})
    body = await _read_json_body(request)
    keys = body.get("keys") if isinstance(body, dict) else None
    deleted = await store.delete_many(keys)
    return _json({"d1Available": True, "deleted": deleted})


def build_store(config: AppConfig) -> PersistenceStore:
    """Resolve the storage backend once, from configuration."""
    if not config.storage.enabled:
        return PersistenceStore(None)
    return PersistenceStore(Database(config.db_path))


def create_app_from_config(config: AppConfig) -> FastAPI:
    return create_app(config, build_store(config))
