"""FastAPI application entry point for the token service."""

import logging
import sys

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware

from config import settings
from errors import register_error_handlers

# Structured logging: JSON for production, human-readable for local
if settings.is_production:
    logging.basicConfig(
        level=logging.INFO,
        format='{"time":"%(asctime)s","level":"%(levelname)s","logger":"%(name)s","message":"%(message)s"}',
        stream=sys.stdout,
    )
else:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    app = FastAPI(title="Token Service", version="1.0.0")

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Security headers
    @app.middleware("http")
    async def add_security_headers(request: Request, call_next):
        response: Response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        if settings.is_production:
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        return response

    # Centralized error handlers
    register_error_handlers(app)

    from routes.admin import router as admin_router
    from routes.health import router as health_router
    from routes.tokens import router as tokens_router
    from services.token_service import get_token_service

    app.include_router(health_router)
    app.include_router(tokens_router)
    app.include_router(admin_router)

    @app.on_event("startup")
    async def _startup() -> None:
        problems = settings.validate()
        if problems:
            logger.warning("Configuration problems: %s", "; ".join(problems))
        get_token_service().start()
        logger.info("Token service ready (extractor=%s, ttl=%dms)", settings.extractor, settings.token_ttl_ms)

    @app.on_event("shutdown")
    async def _shutdown() -> None:
        await get_token_service().stop()

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    logger.info("Token Service running on port %d", settings.port)
    logger.info("Health: http://localhost:%d/health", settings.port)
    logger.info("Stats: http://localhost:%d/stats", settings.port)
    uvicorn.run(app, host="0.0.0.0", port=settings.port)
