"""FastAPI application serving the EventFlow webhooks.

Endpoints:
- POST /receive-invoice: supplier invoice ingestion
- POST /verify-sso-token: SSO session bootstrap via the identity hub
- POST /receive-user-sync: user create/update pushes from the hub
- Health, readiness and Prometheus metrics

Services are built per request from injected settings and collaborators
(see the ``get_*`` dependencies), so tests can override any of them.

Run with ``uvicorn webhooks.api.main:app``.

Based on FastAPI best practices:
https://fastapi.tiangolo.com/
"""

import json
import logging
import secrets
import time
from functools import lru_cache
from typing import Any

from fastapi import Depends, FastAPI, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError
from starlette.concurrency import run_in_threadpool

from webhooks.api import metrics
from webhooks.identity.user_sync import UserSyncError, UserSyncRequest, UserSyncService
from webhooks.invoices.schema import InvoicePayload
from webhooks.invoices.service import (
    InvoiceIngestionService,
    InvoicePersistenceError,
    InvoiceValidationError,
)
from webhooks.shared.config import Settings, get_settings
from webhooks.sso.hub import HubClient
from webhooks.sso.schema import SsoError, SsoVerifyRequest
from webhooks.sso.service import SsoSessionService
from webhooks.store.base import DataStore, StoreError
from webhooks.store.supabase import SupabaseStore

settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="EventFlow Webhooks",
    description="Invoice ingestion and SSO session bootstrap webhooks",
    version=settings.service_version,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def metrics_middleware(request: Request, call_next):  # type: ignore[no-untyped-def]
    """Middleware to collect request metrics.

    Tracks:
    - Request count by method, endpoint, and status
    - Request duration by method and endpoint
    """
    if request.url.path == "/metrics":
        return await call_next(request)

    start_time = time.time()
    response = await call_next(request)
    duration = time.time() - start_time

    metrics.http_requests_total.labels(
        method=request.method,
        endpoint=request.url.path,
        status=response.status_code,
    ).inc()

    metrics.http_request_duration_seconds.labels(
        method=request.method,
        endpoint=request.url.path,
    ).observe(duration)

    return response


# Dependencies


def get_app_settings() -> Settings:
    return settings


@lru_cache
def _default_store() -> DataStore:
    return SupabaseStore(settings)


@lru_cache
def _default_hub() -> HubClient:
    return HubClient(settings)


def get_store() -> DataStore:
    """Data store shared by all requests."""
    return _default_store()


def get_hub_client() -> HubClient:
    """Hub client shared by all requests."""
    return _default_hub()


def get_invoice_service(
    app_settings: Settings = Depends(get_app_settings),  # noqa: B008
    store: DataStore = Depends(get_store),  # noqa: B008
) -> InvoiceIngestionService:
    return InvoiceIngestionService(app_settings, store)


def get_sso_service(
    app_settings: Settings = Depends(get_app_settings),  # noqa: B008
    store: DataStore = Depends(get_store),  # noqa: B008
    hub: HubClient = Depends(get_hub_client),  # noqa: B008
) -> SsoSessionService:
    return SsoSessionService(app_settings, store, hub)


def get_user_sync_service(
    app_settings: Settings = Depends(get_app_settings),  # noqa: B008
    store: DataStore = Depends(get_store),  # noqa: B008
) -> UserSyncService:
    return UserSyncService(app_settings, store)


# Error handlers


@app.exception_handler(InvoiceValidationError)
async def invoice_validation_handler(request: Request, exc: InvoiceValidationError) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": str(exc)})


@app.exception_handler(InvoicePersistenceError)
async def invoice_persistence_handler(
    request: Request, exc: InvoicePersistenceError
) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": "Failed to insert invoice", "detail": exc.detail},
    )


@app.exception_handler(SsoError)
async def sso_error_handler(request: Request, exc: SsoError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_response())


@app.exception_handler(UserSyncError)
async def user_sync_error_handler(request: Request, exc: UserSyncError) -> JSONResponse:
    content: dict[str, Any] = {"error": exc.error}
    if exc.detail:
        content["details"] = exc.detail
    return JSONResponse(status_code=exc.status_code, content=content)


# Health


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    service: str


class ReadinessResponse(BaseModel):
    """Readiness check response."""

    ready: bool


@app.get("/health", response_model=HealthResponse, tags=["Health"])
def health_check() -> HealthResponse:
    """Health check endpoint for liveness probe.

    Returns:
        Health status information
    """
    return HealthResponse(
        status="healthy", version=settings.service_version, service=settings.service_name
    )


@app.get("/ready", response_model=ReadinessResponse, tags=["Health"])
def readiness_check(
    app_settings: Settings = Depends(get_app_settings),  # noqa: B008
) -> ReadinessResponse:
    """Readiness check endpoint for Kubernetes readiness probe.

    Ready once the data store and webhook secret are configured.
    """
    return ReadinessResponse(
        ready=bool(
            app_settings.supabase_url
            and app_settings.supabase_service_role_key
            and app_settings.webhook_secret
        )
    )


@app.get("/metrics", tags=["Monitoring"])
def get_metrics() -> Response:
    """Prometheus metrics endpoint.

    Returns:
        Prometheus metrics in text format
    """
    metrics_data, content_type = metrics.get_metrics()
    return Response(content=metrics_data, media_type=content_type)


# Webhooks


@app.options("/receive-invoice", include_in_schema=False)
@app.options("/verify-sso-token", include_in_schema=False)
@app.options("/receive-user-sync", include_in_schema=False)
def preflight() -> Response:
    return Response(status_code=status.HTTP_200_OK)


def _api_key(request: Request) -> str | None:
    api_key = request.headers.get("x-api-key")
    if api_key:
        return api_key
    authorization = request.headers.get("authorization")
    if authorization:
        return authorization.removeprefix("Bearer ")
    return None


def _secret_matches(provided: str | None, expected: str) -> bool:
    if not provided or not expected:
        return False
    return secrets.compare_digest(provided.encode(), expected.encode())


async def _json_object(request: Request) -> dict[str, Any] | None:
    try:
        body = await request.json()
    except ValueError:
        return None
    return body if isinstance(body, dict) else None


@app.post("/receive-invoice", tags=["Invoices"])
async def receive_invoice(
    request: Request,
    app_settings: Settings = Depends(get_app_settings),  # noqa: B008
    service: InvoiceIngestionService = Depends(get_invoice_service),  # noqa: B008
) -> JSONResponse:
    """Receive a supplier invoice and attach it to a project or packing job.

    ## Authentication

    `x-api-key: <secret>` or `Authorization: Bearer <secret>`.

    ## Responses

    - 200 `status: matched` with the inserted row id and table
    - 200 `status: unmatched` when no project could be found (payload is logged)
    - 400 when the body is not a JSON object or `SupplierName` is missing
    - 401 on a missing or wrong API key
    - 500 when the invoice row could not be stored
    """
    if not _secret_matches(_api_key(request), app_settings.webhook_secret):
        logger.error("Invalid or missing API key")
        return JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED, content={"error": "Unauthorized"}
        )

    body = await _json_object(request)
    if body is None:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "Request body must be a JSON object"},
        )
    logger.info(f"Received payload: {json.dumps(body, ensure_ascii=False)}")

    try:
        payload = InvoicePayload.model_validate(body)
    except ValidationError as e:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "Invalid invoice payload", "detail": str(e)},
        )

    try:
        result = await run_in_threadpool(service.ingest, payload)
    except (InvoiceValidationError, InvoicePersistenceError):
        raise
    except StoreError as e:
        logger.error(f"Unexpected error: {e.message}")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Internal server error", "detail": e.message},
        )
    except Exception as e:
        logger.exception("Unexpected error while ingesting invoice")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Internal server error", "detail": str(e)},
        )
    return JSONResponse(content=result.to_response())


@app.post("/verify-sso-token", tags=["SSO"])
async def verify_sso_token(
    request: Request,
    service: SsoSessionService = Depends(get_sso_service),  # noqa: B008
) -> JSONResponse:
    """Verify a hub-signed identity assertion and open a session.

    Body: `{payload, signature, target_view?}` where `target_view` is
    `planning` or `warehouse`.

    Every failure returns `{success: false, error_code, message?}`.
    """
    body = await _json_object(request)
    if body is None:
        raise SsoError("INVALID_REQUEST", 400, "Request body must be a JSON object")

    try:
        sso_request = SsoVerifyRequest.model_validate(body)
    except ValidationError as e:
        raise SsoError("INVALID_REQUEST", 400, str(e)) from e

    result = await run_in_threadpool(service.verify, sso_request)
    return JSONResponse(content=result.model_dump())


@app.post("/receive-user-sync", tags=["SSO"])
async def receive_user_sync(
    request: Request,
    app_settings: Settings = Depends(get_app_settings),  # noqa: B008
    service: UserSyncService = Depends(get_user_sync_service),  # noqa: B008
) -> JSONResponse:
    """Create or update a user pushed by the identity hub.

    Authenticated with the `x-webhook-secret` header.
    """
    if not app_settings.webhook_secret:
        logger.error("Webhook secret not configured")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Server configuration error"},
        )
    if not _secret_matches(request.headers.get("x-webhook-secret"), app_settings.webhook_secret):
        logger.error("Invalid or missing webhook secret")
        return JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED, content={"error": "Unauthorized"}
        )

    body = await _json_object(request)
    if body is None:
        raise UserSyncError("Request body must be a JSON object", status_code=400)
    try:
        sync_request = UserSyncRequest.model_validate(body)
    except ValidationError as e:
        raise UserSyncError("Invalid user sync payload", str(e), status_code=400) from e

    result = await run_in_threadpool(service.sync, sync_request)
    return JSONResponse(content=result.to_response())
