"""
Storefront API - Main FastAPI Application

Builds the app, wires process-wide objects onto app.state (database,
cache, metrics, password hasher, token service, mail transport, payment
client factory) and mounts the routers under /api.

All endpoints follow the same response envelope:
    success -> {"success": true, ...payload}
    failure -> {"success": false, "error": "...", "code": "..."}
"""

import time as _time
import traceback
from contextlib import asynccontextmanager
from typing import Callable, Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request as StarletteRequest
from starlette.responses import Response as StarletteResponse

from storefront import __version__
from storefront.api.routers import (
    account, admin, auth, cart, catalog, contact, health, orders, payments, reviews, settings, setup, subscriptions,
)
from storefront.core.config import StoreConfig, get_config
from storefront.core.errors import StoreError
from storefront.db.database import Database
from storefront.services.auth import PasswordHasher, TokenService
from storefront.services.cache import CacheClient
from storefront.services.email import SmtpTransport
from storefront.services.metrics import MetricsCollector
from storefront.services.payments import StripeClient
from storefront.utils.logger import get_logger, set_level

logger = get_logger("api")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create missing tables on startup; release connections on shutdown."""
    # In production, manage the schema with migrations instead
    try:
        app.state.db.create_all()
    except Exception as e:
        logger.warning("startup: could not create tables: %s. Tables should already exist.", e)
    logger.info("startup: storefront api ready env=%s", app.state.config.env)
    yield
    app.state.cache.close()
    app.state.db.dispose()
    logger.info("shutdown: storefront api stopped")


class LatencyLoggingMiddleware(BaseHTTPMiddleware):
    """Logs method, path, status and duration of every non-OPTIONS request."""

    async def dispatch(self, request: StarletteRequest, call_next) -> StarletteResponse:
        if request.method == "OPTIONS":
            return await call_next(request)
        t0 = _time.perf_counter()
        response = await call_next(request)
        duration_ms = round((_time.perf_counter() - t0) * 1000, 1)
        # Route template keeps per-endpoint metrics bounded (/api/products/{product_id})
        route = request.scope.get("route")
        endpoint = f"{request.method} {getattr(route, 'path', request.url.path)}"
        metrics = request.app.state.metrics
        metrics.record_latency(endpoint, duration_ms)
        if response.status_code >= 500:
            metrics.record_error(endpoint)
        logger.info(
            "[LATENCY] %s %s -> %d  %.1fms",
            request.method, request.url.path, response.status_code, duration_ms,
        )
        return response


async def store_error_handler(request: Request, exc: StoreError):
    if exc.status_code >= 500:
        logger.error("request_failed: path=%s code=%s error=%s", request.url.path, exc.code, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def validation_error_handler(request: Request, exc: RequestValidationError):
    fields = [
        {
            "field": ".".join(str(p) for p in err.get("loc", ()) if p != "body"),
            "message": err.get("msg", ""),
        }
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=422,
        content={"success": False, "error": "Invalid request", "code": "VALIDATION_ERROR",
                 "details": {"fields": fields}},
    )


def make_global_exception_handler(config: StoreConfig):
    async def global_exception_handler(request: Request, exc: Exception):
        """Log unhandled exceptions and return 500 so 'Internal server error' is debuggable."""
        logger.error("Unhandled exception: %s\n%s", exc, traceback.format_exc())
        # In development, include error detail in response to help debug
        detail = str(exc) if config.is_development else "Internal server error"
        return JSONResponse(
            status_code=500,
            content={"success": False, "error": "Internal server error", "code": "INTERNAL_ERROR",
                     "detail": detail, "type": type(exc).__name__},
        )
    return global_exception_handler


def create_app(
    config: Optional[StoreConfig] = None,
    *,
    mail_transport=None,
    payment_client_factory: Optional[Callable[[str], object]] = None,
) -> FastAPI:
    """
    Build the application.

    Args:
        config: Settings; defaults to the process-wide config (YAML + env).
        mail_transport: Object with send(message, smtp); defaults to SMTP.
        payment_client_factory: secret_key -> payment client; defaults to StripeClient.
    """
    config = config or get_config()
    set_level(config.log_level)

    app = FastAPI(
        title="Storefront API",
        description="Storefront and admin backend: catalog, cart pricing, checkout, payments and store administration",
        version=__version__,
        lifespan=lifespan,
    )

    metrics = MetricsCollector()
    app.state.config = config
    app.state.metrics = metrics
    app.state.db = Database(config.database_url)
    app.state.cache = CacheClient(
        config.redis_url,
        ttl_product=config.cache_ttl_product,
        ttl_categories=config.cache_ttl_categories,
        metrics=metrics,
    )
    app.state.hasher = PasswordHasher(config.bcrypt_rounds)
    app.state.tokens = TokenService(config.jwt_secret, config.token_ttl_minutes)
    app.state.mail_transport = mail_transport or SmtpTransport()
    app.state.payment_client_factory = payment_client_factory or StripeClient

    if not config.is_development and config.jwt_secret == StoreConfig.jwt_secret:
        logger.warning("startup: JWT_SECRET is the built-in default; set it before serving traffic")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(LatencyLoggingMiddleware)

    app.add_exception_handler(StoreError, store_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, make_global_exception_handler(config))

    for module in (health, setup, auth, account, catalog, cart, orders, payments, reviews,
                   subscriptions, contact, settings, admin):
        app.include_router(module.router)

    return app


app = create_app()


#
# Development Server
#

if __name__ == "__main__":
    _config = get_config()
    uvicorn.run(
        "storefront.api.server:app",
        host=_config.host,
        port=_config.port,
        reload=_config.is_development,
    )
