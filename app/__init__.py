"""LaneCache application package: recommendation cache, enrichment and lanes."""

from __future__ import annotations

from importlib import import_module
from typing import Any

# Attributes resolved lazily so importing a submodule does not build the app.
_LAZY_EXPORTS = {
    "app": "app.main",
    "create_app": "app.main",
    "RecommendationSession": "app.services.session",
    "SessionRegistry": "app.services.session",
}

__all__ = list(_LAZY_EXPORTS)


def __getattr__(name: str) -> Any:
    module_name = _LAZY_EXPORTS.get(name)
    if module_name is None:
        raise AttributeError(f"module 'app' has no attribute {name}")
    return getattr(import_module(module_name), name)
