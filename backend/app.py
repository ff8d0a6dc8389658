"""
FastAPI application entry point for the FinanceGuru backend.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from backend.config import Settings, get_settings
from backend.db import DbClient, PostgresDbClient
from backend.dependencies import build_db_client
from backend.routes import router


def create_app(
    db: Optional[DbClient] = None, settings: Optional[Settings] = None
) -> FastAPI:
    """
    Build the app around one storage backend for its whole lifetime.

    A backend passed in is used as is; otherwise one is built from settings
    and, if relational, its tables are created on startup.
    """
    settings = settings or get_settings()
    owns_db = db is None
    db = db or build_db_client(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if owns_db and isinstance(db, PostgresDbClient):
            await db.create_tables()
        yield
        if owns_db and isinstance(db, PostgresDbClient):
            await db.dispose()

    app = FastAPI(title="FinanceGuru Backend", version="0.1.0", lifespan=lifespan)
    app.state.db = db
    app.state.settings = settings
    app.include_router(router, prefix=settings.api_prefix)
    return app
