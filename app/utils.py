"""Utility helpers for the LaneCache service."""

from __future__ import annotations

import ast
import json
import re
import unicodedata
from typing import Any


RECORD_RE = re.compile(r"\{.*\}", re.DOTALL)


def slugify(value: str) -> str:
    """Return a URL-friendly slug."""

    value = unicodedata.normalize("NFKD", value)
    value = value.encode("ascii", "ignore").decode("ascii")
    value = re.sub(r"[^a-zA-Z0-9]+", "-", value)
    value = value.strip("-")
    value = re.sub(r"-+", "-", value)
    return value.lower() or "all"


def parse_embedded_record(content: str) -> dict[str, Any] | None:
    """Parse an object serialised inside a string.

    Both JSON (``{"id": 18, "name": "Drama"}``) and Python literal reprs
    (``{'id': 18, 'name': 'Drama'}``) are accepted. Returns ``None`` when the
    string carries no parseable object.
    """

    match = RECORD_RE.search(content or "")
    if not match:
        return None
    payload = match.group(0)

    try:
        parsed = json.loads(payload)
    except json.JSONDecodeError:
        try:
            parsed = ast.literal_eval(payload)
        except (ValueError, SyntaxError, TypeError):
            return None
    if not isinstance(parsed, dict):
        return None
    return parsed


def looks_like_record(value: str) -> bool:
    """Return whether a string appears to embed a serialised object."""

    stripped = value.strip()
    return stripped.startswith("{") and stripped.endswith("}")
