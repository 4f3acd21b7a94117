"""
FastAPI application entry point.

Activity tracking and recommendation lookup over REST. Recommendation
generation itself runs in the Celery worker (apps/worker); this process only
publishes activity events.
"""
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from routers import activities, recommendations
from core.config import settings
from core.database import check_db_connection
from core.exceptions import APIException
from core.logging import log_context, setup_logging
import logging
import time
import uuid

API_VERSION = "1.0.0"
REQUEST_ID_HEADER = "X-Request-ID"

setup_logging(service="api")
logger = logging.getLogger(__name__)


def _filter_sensitive_data(event, hint=None):
    """Strip credentials from Sentry events."""
    request = event.get("request") or {}
    headers = request.get("headers")
    if isinstance(headers, dict):
        for name in ("authorization", "cookie", "x-goog-api-key"):
            headers.pop(name, None)
    return event


if settings.SENTRY_DSN:
    import sentry_sdk
    from sentry_sdk.integrations.fastapi import FastApiIntegration
    from sentry_sdk.integrations.redis import RedisIntegration
    from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        environment=settings.ENVIRONMENT,
        release=API_VERSION,
        traces_sample_rate=settings.SENTRY_TRACES_SAMPLE_RATE,
        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            SqlalchemyIntegration(),
            RedisIntegration(),
        ],
        send_default_pii=False,
        before_send=_filter_sensitive_data,
    )
    logger.info(f"Sentry initialized for environment: {settings.ENVIRONMENT}")


app = FastAPI(
    title="Fitness Activity Recommendation API",
    description="Activity tracking with asynchronous AI coaching recommendations",
    version=API_VERSION,
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url="/redoc" if settings.DEBUG else None,
)


def _allowed_origins():
    # DEBUG allows everything; production sets CORS_ORIGINS (comma-separated)
    if settings.DEBUG:
        return ["*"]
    if settings.CORS_ORIGINS:
        return [o.strip() for o in settings.CORS_ORIGINS.split(",") if o.strip()]
    return ["http://localhost:3000", "http://127.0.0.1:3000"]


app.add_middleware(
    CORSMiddleware,
    allow_origins=_allowed_origins(),
    allow_credentials=False,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
    expose_headers=[REQUEST_ID_HEADER],
)


@app.middleware("http")
async def request_context(request: Request, call_next):
    """Tag every log line of a request with its id, and log one access line."""
    request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
    start = time.perf_counter()

    with log_context(request_id=request_id):
        response = await call_next(request)
        elapsed_ms = round((time.perf_counter() - start) * 1000, 2)
        logger.info(
            f"{request.method} {request.url.path} -> {response.status_code} ({elapsed_ms}ms)",
            extra={
                "extra_fields": {
                    "method": request.method,
                    "path": request.url.path,
                    "status_code": response.status_code,
                    "duration_ms": elapsed_ms,
                    "client_ip": request.client.host if request.client else None,
                }
            }
        )

    response.headers[REQUEST_ID_HEADER] = request_id
    return response


@app.exception_handler(APIException)
async def api_exception_handler(request: Request, exc: APIException):
    if exc.status_code >= 500:
        logger.warning(f"{request.method} {request.url.path}: {exc.detail}")
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_dict(),
        headers=exc.headers,
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Unhandled errors: log with traceback, answer with an opaque 500."""
    logger.error(
        f"Unhandled exception: {exc}",
        exc_info=True,
        extra={"extra_fields": {"method": request.method, "path": request.url.path}},
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error"},
    )


def _timed(check):
    start = time.perf_counter()
    result = check()
    result["latency_ms"] = round((time.perf_counter() - start) * 1000, 2)
    return result


def _database_check():
    return {"status": "healthy" if check_db_connection() else "unhealthy"}


def _redis_check():
    from core.cache import get_redis_client

    try:
        client = get_redis_client()
        if client is None:
            # Locks degrade to no-ops; not an outage
            return {"status": "unavailable"}
        client.ping()
        return {"status": "healthy"}
    except Exception as e:
        return {"status": "error", "error": str(e)}


def _broker_check():
    from tasks import celery_app

    try:
        with celery_app.connection_for_write() as conn:
            conn.ensure_connection(max_retries=1)
        return {"status": "healthy"}
    except Exception as e:
        return {"status": "error", "error": str(e)}


@app.get("/health")
async def health():
    """
    Liveness for load balancers.

    503 only when the database is down: tracking still works without Redis
    or the broker (recommendations are best-effort).
    """
    if not check_db_connection():
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "unhealthy", "database": "unavailable"},
        )
    return {"status": "healthy", "timestamp": time.time()}


@app.get("/health/detailed")
async def health_detailed():
    """Per-dependency status for dashboards. Always 200."""
    checks = {
        "database": _timed(_database_check),
        "redis": _timed(_redis_check),
        "broker": _timed(_broker_check),
    }

    statuses = {c["status"] for c in checks.values()}
    if statuses == {"healthy"}:
        overall = "healthy"
    elif checks["database"]["status"] != "healthy" or "error" in statuses:
        overall = "unhealthy"
    else:
        overall = "degraded"

    return {
        "status": overall,
        "version": API_VERSION,
        "environment": settings.ENVIRONMENT,
        "timestamp": time.time(),
        "checks": checks,
    }


@app.get("/ping")
async def ping():
    return {"pong": True}


app.include_router(activities.router)
app.include_router(recommendations.router)
