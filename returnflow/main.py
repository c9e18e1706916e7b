import logging
import uuid
from datetime import datetime

import sentry_sdk
import structlog
from fastapi import FastAPI, HTTPException, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from returnflow.api.v1 import exchanges, orders, refunds, returns
from returnflow.core.config import settings
from returnflow.core.exceptions import APIError
from returnflow.core.logging_config import configure_logging
from returnflow.core.rate_limiter import limiter
from returnflow.db.session import engine

API_VERSION = "1.0.0"

configure_logging()
logger = structlog.get_logger()

if settings.ENVIRONMENT == "production" and settings.SENTRY_DSN:
    try:
        sentry_sdk.init(
            dsn=settings.SENTRY_DSN,
            environment=settings.ENVIRONMENT,
            traces_sample_rate=0.1,
            integrations=[FastApiIntegration(), SqlalchemyIntegration()],
        )
    except Exception as e:
        logging.warning(f"Failed to initialize Sentry: {e}")


def error_response(status_code: int, message: str, errors=None) -> JSONResponse:
    """Failure envelope shared by every handler below."""
    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder(
            {
                "success": False,
                "message": message,
                "data": None,
                "errors": errors or [],
                "timestamp": f"{datetime.utcnow().isoformat()}Z",
            }
        ),
    )


app = FastAPI(
    title=settings.PROJECT_NAME,
    version=API_VERSION,
    openapi_url=f"{settings.API_V1_STR}/openapi.json",
    docs_url=f"{settings.API_V1_STR}/docs",
)

app.state.limiter = limiter
app.add_middleware(SlowAPIMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=list(settings.BACKEND_CORS_ORIGINS),
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Correlation-ID"],
    expose_headers=["X-Correlation-ID"],
)


@app.middleware("http")
async def correlate_and_log(request: Request, call_next):
    """Bind a correlation id for every log line of the request."""
    correlation_id = request.headers.get("X-Correlation-ID") or str(uuid.uuid4())
    structlog.contextvars.bind_contextvars(correlation_id=correlation_id)
    try:
        logger.info("request_started", method=request.method, path=request.url.path)
        response = await call_next(request)
        logger.info(
            "request_completed",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
        )
    finally:
        structlog.contextvars.unbind_contextvars("correlation_id")

    response.headers["X-Correlation-ID"] = correlation_id
    return response


app.include_router(returns.router, prefix=f"{settings.API_V1_STR}/returns", tags=["Returns"])
app.include_router(refunds.router, prefix=f"{settings.API_V1_STR}/refunds", tags=["Refunds"])
app.include_router(orders.router, prefix=f"{settings.API_V1_STR}/orders", tags=["Orders"])
app.include_router(exchanges.router, prefix=f"{settings.API_V1_STR}/exchanges", tags=["Exchanges"])


@app.get("/health")
def health_check():
    return {
        "status": "healthy",
        "environment": settings.ENVIRONMENT,
        "version": API_VERSION,
        "order_source": "remote" if settings.uses_remote_orders else "local",
    }


@app.get("/health/database")
def database_health_check():
    try:
        with engine.connect() as connection:
            connection.exec_driver_sql("SELECT 1")
    except Exception as exc:
        logger.error("database_health_check_failed", error=str(exc))
        return {"status": "unhealthy", "reason": "Database connectivity check failed"}
    return {"status": "healthy"}


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    return error_response(status.HTTP_429_TOO_MANY_REQUESTS, "Too many requests. Please try again later.")


@app.exception_handler(APIError)
async def api_error_handler(request: Request, exc: APIError):
    log = logger.warning if exc.status_code >= 500 else logger.info
    log("api_error", status_code=exc.status_code, message=exc.message, path=request.url.path)
    return error_response(exc.status_code, exc.message, exc.errors)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    if isinstance(exc.detail, str):
        return error_response(exc.status_code, exc.detail)
    return error_response(exc.status_code, "Request failed", exc.detail if isinstance(exc.detail, list) else [])


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return error_response(status.HTTP_422_UNPROCESSABLE_ENTITY, "Validation failed", exc.errors())


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.exception("unhandled_exception", error_type=type(exc).__name__, detail=str(exc))
    if settings.DEBUG and settings.ENVIRONMENT != "production":
        return error_response(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            f"Internal server error: {exc}",
            [{"type": type(exc).__name__}],
        )
    return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error")
