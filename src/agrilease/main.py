"""AgriLease main application."""

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from agrilease import __version__
from agrilease.api import router
from agrilease.api.deps import validate_auth_config
from agrilease.config import settings
from agrilease.db.base import close_db, init_db
from agrilease.engine import AgriLeaseError
from agrilease.events.dispatcher import get_event_dispatcher
from agrilease.integrations.sms_client import close_sms_client

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger("agrilease")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    logger.info("Starting AgriLease server...")
    logger.info(f"Environment: {settings.env.value}")
    logger.info(f"Order type strategy: {settings.order_type_strategy.value}")

    # Validate authentication configuration (fail fast if insecure)
    validate_auth_config()

    await init_db()
    logger.info("Database initialized")

    dispatcher = get_event_dispatcher()
    await dispatcher.start()

    yield

    logger.info("Shutting down AgriLease server...")
    await dispatcher.stop()
    await close_sms_client()
    await close_db()
    logger.info("Shutdown complete")


async def agrilease_error_handler(request: Request, exc: AgriLeaseError) -> JSONResponse:
    """Map engine errors onto their HTTP status with a uniform body."""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.code} {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} -> {exc.status_code} {exc.code}")
    return JSONResponse(status_code=exc.status_code, content={"error": exc.to_dict()})


def create_app() -> FastAPI:
    app = FastAPI(
        title="AgriLease",
        description="Equipment lease and rental coordination service",
        version=__version__,
        lifespan=lifespan,
    )

    # Explicit allowlist, no wildcards with credentials
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allowed_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=settings.cors_allowed_methods,
        allow_headers=settings.cors_allowed_headers,
    )
    app.add_exception_handler(AgriLeaseError, agrilease_error_handler)
    app.include_router(router)
    return app


app = create_app()


def main():
    """Entry point for the application."""
    uvicorn.run(
        "agrilease.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
