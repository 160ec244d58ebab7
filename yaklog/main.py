import logging
from contextlib import asynccontextmanager
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, FastAPI, Path, Query, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import PlainTextResponse

from yaklog import __version__
from yaklog.auth import require_api_key
from yaklog.config import Settings, get_settings
from yaklog.context import render_context
from yaklog.errors import NotFound, ValidationError, register_exception_handlers
from yaklog.logging_utils import RequestLoggingMiddleware, log_message_data, setup_logging
from yaklog.metrics import get_metrics, get_metrics_content_type, record_message_operation
from yaklog.middleware import BodySizeLimitMiddleware, SecurityHeadersMiddleware
from yaklog.schemas import (
    ChannelsListResponse,
    ContextResponse,
    ErrorResponse,
    HealthResponse,
    MessageCreate,
    MessageEnvelope,
    MessagesListResponse,
    MessageUpdate,
    ServiceInfo,
    is_valid_channel,
)
from yaklog.storage import MessageStore, get_store

logger = logging.getLogger(__name__)

SERVICE_NAME = "yaklog"
API_BASE = "/api/v1"

MESSAGES_DEFAULT_LIMIT, MESSAGES_MAX_LIMIT = 50, 200
CHANNELS_DEFAULT_LIMIT, CHANNELS_MAX_LIMIT = 100, 500
CONTEXT_DEFAULT_LIMIT, CONTEXT_MAX_LIMIT = 25, 200

ERROR_RESPONSES = {
    400: {"model": ErrorResponse, "description": "Validation error"},
    401: {"model": ErrorResponse, "description": "Missing or invalid API key"},
    503: {"model": ErrorResponse, "description": "No API keys configured"},
}


def clamp_limit(limit: Optional[int], default: int, maximum: int) -> int:
    """Apply the default when absent and cap at the route maximum."""
    if limit is None:
        return default
    return min(limit, maximum)


def validate_channel_param(channel: Optional[str]) -> Optional[str]:
    if not channel:
        return None
    if not is_valid_channel(channel):
        raise ValidationError("channel must match [a-zA-Z0-9._-] and be <= 64 chars.")
    return channel


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup and shutdown events.
    - Startup: Open the message store and apply schema updates
    - Shutdown: Close the store once the server has stopped serving requests
    """
    settings: Settings = app.state.settings
    if not settings.api_keys:
        logger.warning("YAKLOG_API_KEYS is empty; authenticated routes will return 503")

    app.state.store = MessageStore.open(settings.YAKLOG_DB_PATH)
    try:
        yield
    finally:
        logger.info(f"Shutting down {SERVICE_NAME}")
        app.state.store.close()


# =============================================================================
# Health Check Routes
# =============================================================================

public_router = APIRouter()


@public_router.get("/", response_model=ServiceInfo)
def service_info() -> ServiceInfo:
    return ServiceInfo(
        name=SERVICE_NAME,
        version=__version__,
        purpose="Internal coordination log for agent sessions.",
        health=f"{API_BASE}/health",
        api_base=API_BASE,
    )


@public_router.get(f"{API_BASE}/health", response_model=HealthResponse, response_model_exclude_none=True)
def health() -> HealthResponse:
    """Liveness probe - always returns 200 once the app is running."""
    return HealthResponse(status="ok", service=SERVICE_NAME)


@public_router.get(f"{API_BASE}/health/ready", response_model=HealthResponse, response_model_exclude_none=True)
def health_ready(
    request: Request,
    response: Response,
    store: MessageStore = Depends(get_store),
) -> HealthResponse:
    """
    Readiness probe - returns 200 only if:
    1. YAKLOG_API_KEYS is set (non-empty)
    2. DB is reachable and schema is applied

    Otherwise returns 503 (Service Unavailable).
    """
    if not request.app.state.settings.api_keys:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(status="not_ready", service=SERVICE_NAME, reason="YAKLOG_API_KEYS not configured")

    if not store.check_health():
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(
            status="not_ready",
            service=SERVICE_NAME,
            reason="Database not reachable or schema not applied",
        )

    return HealthResponse(status="ready", service=SERVICE_NAME)


@public_router.get("/metrics")
def metrics() -> Response:
    """Expose Prometheus-style metrics."""
    return Response(content=get_metrics(), media_type=get_metrics_content_type())


# =============================================================================
# Message Routes
# =============================================================================

router = APIRouter(
    prefix=API_BASE,
    dependencies=[Depends(require_api_key)],
    responses=ERROR_RESPONSES,
)


@router.get("/messages", response_model=MessagesListResponse)
def list_messages(
    channel: Annotated[Optional[str], Query(description="Exact channel match")] = None,
    limit: Annotated[Optional[int], Query(ge=1, description="Max messages, clamped to 200")] = None,
    after_id: Annotated[Optional[int], Query(ge=0, description="Only ids greater than this")] = None,
    before_id: Annotated[Optional[int], Query(ge=0, description="Only ids less than this")] = None,
    store: MessageStore = Depends(get_store),
) -> MessagesListResponse:
    """
    List messages, most recent `limit` matching rows, in ascending id order.

    Query Parameters:
        - channel: Filter by channel
        - limit: Default 50, values above 200 are clamped
        - after_id: Exclude ids <= after_id
        - before_id: Exclude ids >= before_id
    """
    channel = validate_channel_param(channel)
    limit = clamp_limit(limit, MESSAGES_DEFAULT_LIMIT, MESSAGES_MAX_LIMIT)

    messages = store.list_messages(channel=channel, limit=limit, after_id=after_id, before_id=before_id)
    return MessagesListResponse(messages=messages, count=len(messages))


@router.post("/messages", response_model=MessageEnvelope, status_code=status.HTTP_201_CREATED)
def create_message(
    request: Request,
    payload: MessageCreate,
    store: MessageStore = Depends(get_store),
) -> MessageEnvelope:
    """Append a message to a channel."""
    message = store.insert(
        channel=payload.channel,
        sender=payload.sender,
        body=payload.body,
        metadata=payload.metadata,
    )
    record_message_operation("create", "ok")
    log_message_data(request, message_id=message.id, channel=message.channel, result="created")
    return MessageEnvelope(message=message)


@router.get("/messages/{message_id}", response_model=MessageEnvelope, responses={404: {"model": ErrorResponse}})
def get_message(
    message_id: Annotated[int, Path(ge=1)],
    store: MessageStore = Depends(get_store),
) -> MessageEnvelope:
    message = store.get_message(message_id)
    if message is None:
        raise NotFound()
    return MessageEnvelope(message=message)


@router.patch("/messages/{message_id}", response_model=MessageEnvelope, responses={404: {"model": ErrorResponse}})
def update_message(
    request: Request,
    message_id: Annotated[int, Path(ge=1)],
    payload: MessageUpdate,
    store: MessageStore = Depends(get_store),
) -> MessageEnvelope:
    """Change body and/or metadata. Fields not sent are left untouched."""
    message = store.update_message(message_id, **payload.changes())
    if message is None:
        record_message_operation("update", "not_found")
        log_message_data(request, message_id=message_id, result="not_found")
        raise NotFound()

    record_message_operation("update", "ok")
    log_message_data(request, message_id=message_id, channel=message.channel, result="updated")
    return MessageEnvelope(message=message)


@router.delete(
    "/messages/{message_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    response_class=Response,
    responses={404: {"model": ErrorResponse}},
)
def delete_message(
    request: Request,
    message_id: Annotated[int, Path(ge=1)],
    store: MessageStore = Depends(get_store),
) -> Response:
    if not store.delete_message(message_id):
        record_message_operation("delete", "not_found")
        log_message_data(request, message_id=message_id, result="not_found")
        raise NotFound()

    record_message_operation("delete", "ok")
    log_message_data(request, message_id=message_id, result="deleted")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# =============================================================================
# Channel and Context Routes
# =============================================================================

@router.get("/channels", response_model=ChannelsListResponse)
def list_channels(
    limit: Annotated[Optional[int], Query(ge=1, description="Max channels, clamped to 500")] = None,
    store: MessageStore = Depends(get_store),
) -> ChannelsListResponse:
    """Channels ordered by most recent activity."""
    limit = clamp_limit(limit, CHANNELS_DEFAULT_LIMIT, CHANNELS_MAX_LIMIT)
    channels = store.list_channels(limit=limit)
    return ChannelsListResponse(channels=channels, count=len(channels))


@router.get(
    "/context",
    response_model=ContextResponse,
    responses={200: {"content": {"text/plain": {}}}},
)
def get_context(
    channel: Annotated[Optional[str], Query(description="Channel to render (required)")] = None,
    limit: Annotated[Optional[int], Query(ge=1, description="Max messages, clamped to 200")] = None,
    output_format: Annotated[str, Query(alias="format", description="text or json")] = "text",
    store: MessageStore = Depends(get_store),
):
    """
    Recent messages of one channel for an agent to read.

    format=text (default) returns the line-oriented dump, format=json the
    same messages as a JSON document.
    """
    if not channel or not is_valid_channel(channel):
        raise ValidationError(
            "channel query param is required and must match [a-zA-Z0-9._-] (1-64 chars)."
        )
    if output_format not in ("text", "json"):
        raise ValidationError('format must be "text" or "json".')

    limit = clamp_limit(limit, CONTEXT_DEFAULT_LIMIT, CONTEXT_MAX_LIMIT)
    messages = store.list_messages(channel=channel, limit=limit)

    if output_format == "json":
        return ContextResponse(channel=channel, count=len(messages), messages=messages)
    return PlainTextResponse(render_context(channel, messages))


# =============================================================================
# Application Factory
# =============================================================================

def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Build the FastAPI application. The store is opened by the lifespan."""
    settings = settings or get_settings()
    setup_logging(settings.LOG_LEVEL, json_output=settings.is_production)

    app = FastAPI(
        title="yaklog",
        description="Append-style coordination log for agents",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings

    # Last added runs first: logging wraps everything, including 413s
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(GZipMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["GET", "POST", "PATCH", "DELETE"],
        allow_headers=["Content-Type", "Authorization", "X-API-Key"],
    )
    app.add_middleware(BodySizeLimitMiddleware, max_body_bytes=settings.MAX_BODY_BYTES)
    app.add_middleware(RequestLoggingMiddleware)

    register_exception_handlers(app)
    app.include_router(public_router)
    app.include_router(router)
    return app


app = create_app()
