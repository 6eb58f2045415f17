"""Installable entry package for the LaneCache service.

``lanecache.app`` is the ASGI application served by ``python -m lanecache``.
"""

from __future__ import annotations

from app.config import get_settings
from app.main import app, create_app

__version__ = "1.0.0"

__all__ = ["__version__", "app", "create_app", "get_settings"]
