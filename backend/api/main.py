"""
FulfilOps API - FastAPI Application Entry Point
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException
from starlette.requests import Request

from core.config import get_settings
from core.errors import FulfilmentError, GatewayError

settings = get_settings()
logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    logger.info("FulfilOps API starting up", version=settings.app_version)
    yield
    logger.info("FulfilOps API shutting down")


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Payment reconciliation, courier booking and order ingestion for the distribution back office",
    lifespan=lifespan,
)


# ─── Error rendering ────────────────────────────────────────────────────────


@app.exception_handler(FulfilmentError)
async def fulfilment_error_handler(request: Request, exc: FulfilmentError):
    body: dict = {"error": exc.message}
    if isinstance(exc, GatewayError) and exc.details is not None:
        body["details"] = exc.details
        logger.error(
            "api.gateway_error",
            path=request.url.path,
            error=exc.message,
            upstream_status=exc.upstream_status,
        )
    return JSONResponse(status_code=exc.status_code, content=body)


@app.exception_handler(HTTPException)
async def http_error_handler(request: Request, exc: HTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = [
        f"{'.'.join(str(part) for part in error['loc'] if part != 'body')}: {error['msg']}"
        for error in exc.errors()
    ]
    return JSONResponse(
        status_code=422,
        content={"error": f"Validation failed: {', '.join(errors)}", "details": errors},
    )


# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Import and register routers
from api.v1.routers import (  # noqa: E402
    courier,
    logistics,
    payments_bayarcash,
    payments_billplz,
    webhooks,
)

app.include_router(payments_billplz.router)
app.include_router(payments_bayarcash.router)
app.include_router(courier.router)
app.include_router(webhooks.router)
app.include_router(logistics.router)


@app.get("/health")
async def health_check():
    """Health check endpoint for load balancers."""
    return {"status": "healthy", "version": settings.app_version}
