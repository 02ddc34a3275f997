import logging
import os
import time
from datetime import datetime, timezone

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import ValidationError

from portal.api.api_v1.api import api_router
from portal.core.config import settings
from portal.core.error_handlers import (
    general_exception_handler,
    membership_exception_handler,
    platform_exception_handler,
    validation_exception_handler,
)
from portal.core.events import lifespan
from portal.core.exceptions import MembershipError, PlatformAPIError

logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    """Create FastAPI application."""
    app = FastAPI(
        lifespan=lifespan,
        title=settings.PROJECT_NAME,
        openapi_url=f"{settings.API_V1_STR}/openapi.json",
    )

    # Health check endpoint
    @app.get("/healthz")
    async def health_check():
        """Health check endpoint for container orchestration."""
        return {
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "service": settings.PROJECT_NAME,
        }

    @app.middleware("http")
    async def request_logging_middleware(request: Request, call_next):
        start_time = time.time()

        # Mask sensitive headers (Authorization)
        auth_header = request.headers.get("authorization", "")
        masked = auth_header[:16] + "..." if len(auth_header) > 16 else auth_header

        response = await call_next(request)

        process_time = time.time() - start_time
        logger.info(
            f"{request.method} {request.url.path} -> {response.status_code} "
            f"in {process_time:.4f}s (auth: {masked or 'none'})"
        )
        return response

    # Add exception handlers
    app.add_exception_handler(MembershipError, membership_exception_handler)
    app.add_exception_handler(PlatformAPIError, platform_exception_handler)
    app.add_exception_handler(ValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    environment = os.getenv("ENV", "development")

    if environment == "development":
        logger.info("Development mode: Allowing all CORS origins")
        cors_origins = ["*"]
    else:
        cors_origins = settings.BACKEND_CORS_ORIGINS.copy()

    logger.info("Final CORS Origins: %s", cors_origins)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        max_age=600,  # Cache preflight requests for 10 minutes
    )

    # Include the routers
    app.include_router(api_router, prefix=settings.API_V1_STR)

    return app


app = create_app()

if __name__ == "__main__":
    host = "localhost"
    port = settings.SERVER_PORT
    uvicorn.run(app, host=host, port=port)
