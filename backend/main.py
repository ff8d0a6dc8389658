"""
ASGI entry point: ``uvicorn backend.main:app``.
"""

from __future__ import annotations

import logging

from backend.app import create_app

logging.basicConfig(level=logging.INFO)

app = create_app()
