"""Entitlement API - Main Application.

FastAPI application that validates store purchases, reconciles App Store,
Google Play and Stripe notifications, and keeps one entitlement record per
user in Firestore.

Security: client endpoints require Firebase Auth; platform callbacks are
verified by signature (App Store JWS, Stripe HMAC).

Usage:
    uvicorn entitlement_api.main:app --host 0.0.0.0 --port 8080
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from time import perf_counter

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .billing.errors import BillingError
from .config import get_settings
from .dependencies import get_firebase_app, get_firestore
from .middleware.rate_limit import setup_rate_limiting
from .routers import account, health, notifications, purchases, stripe_billing, stripe_webhook
from .routers.health import API_VERSION

# =============================================================================
# CONFIGURATION
# =============================================================================

settings = get_settings()
DEBUG_MODE = settings.debug

# CORS - strict origin allowlist (web checkout and portal)
ALLOWED_ORIGINS = [
    "http://localhost:3000",
    "http://localhost:5173",
    settings.stripe_return_base_url,
]

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Cache-Control": "no-store",
}
HIDDEN_RESPONSE_HEADERS = ("server", "x-powered-by")

logging.basicConfig(
    level=logging.DEBUG if DEBUG_MODE else logging.INFO,
    format='%(asctime)s [%(name)s] %(levelname)s: %(message)s'
)
logger = logging.getLogger("entitlements.main")


# =============================================================================
# LIFESPAN (Startup/Shutdown)
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: startup and shutdown hooks."""
    logger.info("Starting Entitlement API v%s", API_VERSION)
    logger.info("Debug mode: %s", DEBUG_MODE)

    try:
        get_firebase_app()
        logger.info("Firebase initialized")

        get_firestore()
        logger.info("Firestore connected")
    except Exception as e:
        logger.error("Startup failed: %s", e)
        raise

    if not settings.apple_shared_secret:
        logger.warning("APPLE_SHARED_SECRET not set; iOS validation will fail")
    if not settings.stripe_webhook_secret:
        logger.warning("STRIPE_WEBHOOK_SECRET not set; Stripe webhooks will be rejected")

    yield

    logger.info("Shutting down Entitlement API")


# =============================================================================
# APPLICATION
# =============================================================================

# OpenAPI docs are only served in debug mode
_docs_kwargs = {} if DEBUG_MODE else {"docs_url": None, "redoc_url": None, "openapi_url": None}

app = FastAPI(title="Entitlement API", version=API_VERSION, lifespan=lifespan, **_docs_kwargs)


# =============================================================================
# MIDDLEWARE
# =============================================================================

setup_rate_limiting(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[origin for origin in ALLOWED_ORIGINS if origin],
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE"],
    allow_headers=["Authorization", "Content-Type", "X-Correlation-ID"],
    max_age=3600,
)


@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    response = await call_next(request)
    for name in HIDDEN_RESPONSE_HEADERS:
        if name in response.headers:
            del response.headers[name]
    response.headers.update(SECURITY_HEADERS)
    return response


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log every request (method, path, status, duration); never headers."""
    start = perf_counter()

    response = await call_next(request)

    duration_ms = (perf_counter() - start) * 1000
    logger.debug(
        "%s %s -> %s (%.0fms)",
        request.method,
        request.url.path,
        response.status_code,
        duration_ms,
    )

    return response


# =============================================================================
# EXCEPTION HANDLERS
# =============================================================================

@app.exception_handler(BillingError)
async def billing_exception_handler(request: Request, exc: BillingError):
    """Structured errors raised outside a router's own handling (auth dependency)."""
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    """Handle uncaught exceptions with generic error response."""
    logger.exception("Unhandled exception on %s", request.url.path)

    if DEBUG_MODE:
        return JSONResponse(
            status_code=500,
            content={
                "error": str(exc),
                "code": "INTERNAL_ERROR",
                "category": "internal",
                "type": type(exc).__name__
            }
        )
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "code": "INTERNAL_ERROR",
            "category": "internal",
        }
    )


# =============================================================================
# ROUTERS
# =============================================================================

app.include_router(health.router, prefix="/api", tags=["Health"])
app.include_router(purchases.router, prefix="/api", tags=["Purchases"])
app.include_router(notifications.router, prefix="/api", tags=["Notifications"])
app.include_router(stripe_webhook.router, prefix="/api", tags=["Stripe"])
app.include_router(stripe_billing.router, prefix="/api", tags=["Stripe"])
app.include_router(account.router, prefix="/api", tags=["Account"])


@app.get("/")
async def root():
    """Root endpoint - API info."""
    return {
        "name": "Entitlement API",
        "version": API_VERSION,
        "status": "running"
    }
