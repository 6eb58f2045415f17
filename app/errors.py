"""Failure taxonomy shared by the cache components.

Components catch these at their own boundary and turn them into state flags;
they are never raised across a component interface.
"""

from __future__ import annotations


class LaneCacheError(Exception):
    """Base exception for the recommendation cache."""

    code = "error"


class TransientFetchFailure(LaneCacheError):
    """A single metadata fetch failed or timed out."""

    code = "transient_fetch_failure"


class RefreshFailure(LaneCacheError):
    """Refreshing a recommendation list failed; the last good snapshot stays."""

    code = "refresh_failure"


class NoSnapshotAvailable(LaneCacheError):
    """The first fetch for a filter failed and there is nothing to fall back to."""

    code = "no_snapshot_available"


class PersistenceFailure(LaneCacheError):
    """The durable blob store could not be read or written."""

    code = "persistence_failure"
