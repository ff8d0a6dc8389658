"""
Dependency wiring for the FastAPI app.

The storage backend is built once per application by ``create_app`` and
kept on ``app.state``; handlers receive it through ``get_db_client``.
"""

from __future__ import annotations

import logging

from fastapi import Request

from backend.config import Settings, get_settings
from backend.db import DbClient, InMemoryDbClient, PostgresDbClient

logger = logging.getLogger(__name__)


def build_db_client(settings: Settings) -> DbClient:
    """Pick the storage backend the settings ask for."""
    if settings.use_memory_storage or not settings.database_url:
        logger.info("Using in-memory storage")
        return InMemoryDbClient()
    logger.info("Using relational storage")
    return PostgresDbClient(settings.database_url, echo=settings.database_echo)


def get_db_client(request: Request) -> DbClient:
    return request.app.state.db


def get_app_settings(request: Request) -> Settings:
    return getattr(request.app.state, "settings", None) or get_settings()
