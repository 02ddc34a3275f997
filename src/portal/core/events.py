"""
life span events
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from portal.clients.platform_api import create_http_client
from portal.services.session_registry import SessionRegistry

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """life span events"""
    http = getattr(app.state, "http_client", None) or create_http_client()
    app.state.http_client = http
    app.state.sessions = SessionRegistry(http)
    logger.info(f"Platform API client ready for {http.base_url}")
    try:
        yield
    finally:
        app.state.sessions.close()
        await http.aclose()
        logger.info("lifespan shutdown")
