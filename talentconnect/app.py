from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from talentconnect.api.error_handling import rate_limited_response, register_exception_handlers
from talentconnect.api.routes import RateLimitInfo, auth_router, client_id, projects_router
from talentconnect.config import Settings, get_settings
from talentconnect.logging import bind_request_context, get_logger, set_correlation_id
from talentconnect.service.errors import RateLimitedError
from talentconnect.service.runtime import Runtime

logger = get_logger(__name__)

__version__ = "0.1.0"

HEALTH_CHECK_TIMEOUT_SECONDS = 3


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Connect the runtime on startup and release it on shutdown."""
    runtime = Runtime(app.state.settings)
    await runtime.connect()
    app.state.runtime = runtime
    try:
        yield
    finally:
        try:
            await runtime.close()
            logger.info("runtime_cleanup_complete")
        except Exception as exc:
            logger.error("shutdown_failed", error_type=type(exc).__name__, error=str(exc))


async def _run_bounded(label: str, func) -> bool:
    try:
        await asyncio.wait_for(asyncio.to_thread(func), HEALTH_CHECK_TIMEOUT_SECONDS)
        return True
    except asyncio.TimeoutError:
        logger.error("health_check_timeout", component=label, timeout=HEALTH_CHECK_TIMEOUT_SECONDS)
    except Exception as exc:
        logger.error("health_check_failed", component=label, error=str(exc))
    return False


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()
    app = FastAPI(title="TalentConnect API", version=__version__, lifespan=lifespan)
    app.state.settings = settings

    @app.middleware("http")
    async def enforce_api_rate_limit(request: Request, call_next):
        """Apply the general API ceiling to every /api/ request."""
        if not request.url.path.startswith("/api/") or request.method == "OPTIONS":
            return await call_next(request)
        runtime = request.app.state.runtime
        try:
            decision = await runtime.rate_limiter.enforce("api", client_id(request))
        except RateLimitedError as exc:
            return rate_limited_response(exc)
        response = await call_next(request)
        info = RateLimitInfo.from_decision(decision)
        # Route-level limits (auth, search) already set their own headers
        if "X-RateLimit-Limit" not in response.headers:
            info.apply_headers(response)
        return response

    @app.middleware("http")
    async def add_security_headers(request: Request, call_next):
        response = await call_next(request)
        response.headers.setdefault("X-Frame-Options", "DENY")
        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
        if request.url.path.startswith("/api/"):
            response.headers.setdefault("Cache-Control", "no-store")
        if request.url.scheme == "https" and settings.is_production:
            response.headers.setdefault(
                "Strict-Transport-Security", "max-age=63072000; includeSubDomains"
            )
        return response

    @app.middleware("http")
    async def add_correlation_id(request: Request, call_next):
        """Tag the request with X-Request-ID (client supplied or generated)."""
        correlation_id = set_correlation_id(request.headers.get("X-Request-ID"))
        bind_request_context(method=request.method, path=request.url.path)
        response = await call_next(request)
        response.headers["X-Request-ID"] = correlation_id
        return response

    # Outermost: rate-limit rejections also carry CORS headers
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.cors_origin],
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "X-Request-ID"],
        expose_headers=[
            "X-Request-ID",
            "X-RateLimit-Limit",
            "X-RateLimit-Remaining",
            "X-RateLimit-Reset",
            "Retry-After",
        ],
        max_age=3600,
    )

    register_exception_handlers(app)
    app.include_router(auth_router)
    app.include_router(projects_router)

    @app.get("/health")
    async def health(request: Request):
        """Liveness plus store and cache reachability; never rate limited."""
        runtime = request.app.state.runtime
        checks: Dict[str, Dict[str, Any]] = {}
        db_ok = await _run_bounded("database", runtime.store.verify_connection)
        checks["database"] = {"status": "healthy" if db_ok else "unhealthy"}
        cache_ok = await _run_bounded("cache", runtime.cache.verify_connection)
        checks["cache"] = {"status": "healthy" if cache_ok else "unhealthy"}
        healthy = db_ok and cache_ok
        return JSONResponse(
            status_code=200 if healthy else 503,
            content={
                "status": "ok" if healthy else "degraded",
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "checks": checks,
            },
        )

    return app


def main() -> None:
    """Serve the API with uvicorn on the configured port."""
    import uvicorn

    settings = get_settings()
    logger.info("server_starting", port=settings.port, environment=settings.environment.value)
    uvicorn.run(create_app(settings), host="0.0.0.0", port=settings.port, log_level="info")


if __name__ == "__main__":
    main()
