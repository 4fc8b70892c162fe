"""Payie Payment Gateway - Main Application."""

import asyncio
import logging.config
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from gateway.api.routes import payments, providers, sms, transactions, webhooks
from gateway.core.config import settings
from gateway.core.constants import ErrorMessage, StatusCode
from gateway.core.context import GatewayContext
from gateway.core.database import Base, engine
from gateway.core.errors import GatewayError
from gateway.core.logging import setup_logging
from gateway.core.logging_config import LOGGING_CONFIG
from gateway.core.responses import create_response, render

# Configure logging before anything else
logging.config.dictConfig(LOGGING_CONFIG)
logger = setup_logging(settings.log_level)

# Create all tables on startup
logger.info("Creating database tables...")
Base.metadata.create_all(bind=engine)
logger.info("Database tables ready")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the gateway context unless one was installed beforehand."""
    owned = getattr(app.state, "context", None) is None
    if owned:
        app.state.context = GatewayContext.build(settings)
    try:
        yield
    finally:
        if owned:
            await app.state.context.aclose()
            app.state.context = None


# -- OpenAPI tag metadata for Swagger grouping --
tags_metadata = [
    {
        "name": "Health",
        "description": "Service health and readiness checks.",
    },
    {
        "name": "Payments",
        "description": (
            "Collect from and pay out to mobile-money wallets and cards, "
            "validate account holders and check provider balances. The "
            "provider is picked with the `service-provider` header."
        ),
    },
    {
        "name": "Transactions",
        "description": (
            "Look up ledger records and reconcile PENDING transactions "
            "with the provider's status endpoint."
        ),
    },
    {
        "name": "Webhooks",
        "description": "Provider pushes that settle PENDING transactions.",
    },
    {
        "name": "SMS",
        "description": "Outbound SMS through a configured SMS provider.",
    },
]


app = FastAPI(
    title="Payie Payment Gateway",
    description=(
        "## Payment Gateway API\n\n"
        "One transaction model over several upstream payment networks. "
        "Every response is an envelope `{code, success, message, data}` "
        "whose `code` is also the HTTP status.\n\n"
        "### Transaction lifecycle\n"
        "- `PENDING` - recorded before the provider is called\n"
        "- `COMPLETED` / `FAILED` - settled by the initiating request, a "
        "webhook, or a status check\n"
        "- `CANCELLED` - reported by the provider's status endpoint\n"
        "- `LOGGED` - account validations\n\n"
        "### Quick Start\n"
        "```bash\n"
        "curl -X POST /api/v1/collect -H 'service-provider: mtn-momo' "
        "-H 'Content-Type: application/json' "
        "-d '{\"py_ref\":\"abc-1\",\"msisdn\":\"256770000000\",\"amount\":\"1000\",\"currency\":\"UGX\"}'\n\n"
        "curl '/api/v1/transaction/status?py_ref=abc-1' -H 'service-provider: mtn-momo'\n"
        "```\n"
    ),
    version="1.0.0",
    openapi_tags=tags_metadata,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)


@app.middleware("http")
async def response_timeout(request: Request, call_next):
    """Answer 504 after ``request_timeout_seconds``.

    The handler keeps running in the background and may still write to
    the ledger after the caller has been answered.
    """
    task = asyncio.ensure_future(call_next(request))
    try:
        return await asyncio.wait_for(
            asyncio.shield(task), timeout=settings.request_timeout_seconds
        )
    except asyncio.TimeoutError:
        logger.error(
            "Request timed out after %ss: %s %s",
            settings.request_timeout_seconds,
            request.method,
            request.url.path,
        )
        return render(
            create_response(StatusCode.GATEWAY_TIMEOUT, None, ErrorMessage.RESPONSE_TIMEOUT)
        )


@app.exception_handler(GatewayError)
async def gateway_error_handler(request: Request, exc: GatewayError) -> JSONResponse:
    return render(exc.to_response())


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    if exc.status_code == StatusCode.NOT_FOUND:
        return render(create_response(StatusCode.NOT_FOUND, None, ErrorMessage.ROUTE_NOT_FOUND))
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return render(
        create_response(StatusCode.INTERNAL_SERVER_ERROR, None, "Internal Server Error")
    )


app.include_router(providers.router, prefix="/api/v1", tags=["Payments"])
app.include_router(payments.router, prefix="/api/v1", tags=["Payments"])
app.include_router(transactions.router, prefix="/api/v1", tags=["Transactions"])
app.include_router(webhooks.router, prefix="/api/v1", tags=["Webhooks"])
app.include_router(sms.router, prefix="/api/v1", tags=["SMS"])

logger.info("Payie Gateway API ready - routes registered")


@app.get("/health", tags=["Health"])
def health_check():
    """Health check endpoint.

    Returns a simple JSON object confirming the service is running.
    Useful for load balancers and monitoring systems.
    """
    return {"status": "healthy", "service": "payie-gateway"}
