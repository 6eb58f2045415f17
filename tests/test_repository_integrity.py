"""Repository-level integrity checks."""

from __future__ import annotations

import importlib
import re
from pathlib import Path

import app

CONFLICT_PATTERN = re.compile(r"^(<<<<<<<|=======|>>>>>>>)", re.MULTILINE)
CHECKED_SUFFIXES = {".py", ".toml", ".md", ".txt", ".cfg", ".ini"}
IGNORED_PARTS = {".git", "__pycache__", ".mypy_cache", ".pytest_cache", ".venv"}
REPO_ROOT = Path(__file__).resolve().parents[1]


def test_sources_have_no_merge_conflict_markers() -> None:
    """Source, config and doc files must not carry leftover conflict markers."""

    offending = [
        path.relative_to(REPO_ROOT)
        for path in REPO_ROOT.rglob("*")
        if path.is_file()
        and path.suffix in CHECKED_SUFFIXES
        and not any(part in IGNORED_PARTS for part in path.parts)
        and CONFLICT_PATTERN.search(path.read_text(encoding="utf-8", errors="ignore"))
    ]

    assert not offending, "Conflict markers found in: " + ", ".join(map(str, offending))


def test_every_application_module_imports() -> None:
    """Each module under ``app`` imports on its own, without circular imports."""

    package_root = REPO_ROOT / "app"
    names = sorted(
        ".".join(("app",) + path.relative_to(package_root).with_suffix("").parts)
        for path in package_root.rglob("*.py")
        if path.name != "__init__.py"
    )

    assert "app.services.snapshots" in names
    for name in names:
        importlib.import_module(name)


def test_lazy_package_exports_resolve() -> None:
    assert app.SessionRegistry.__name__ == "SessionRegistry"
    assert callable(app.create_app)
