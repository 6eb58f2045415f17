"""Entry point for the FastAPI-powered recommendation cache."""

from __future__ import annotations

import logging
from contextlib import AsyncExitStack, asynccontextmanager
from typing import Any

import httpx
from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware

from .config import settings
from .database import Database
from .genres import ALL_GENRES, FILTER_GENRES, GenreResolver
from .models import ContentItem, HeroAndLanes, ItemKey, normalize_media_type
from .services.membership import WatchlistMembership
from .services.recommendations import RecommendationClient
from .services.session import RecommendationSession, SessionRegistry
from .services.snapshots import FilteredResult
from .services.tmdb import TMDBMetadataClient
from .storage import SqlBlobStore

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app: FastAPI

_resolver = GenreResolver()


@asynccontextmanager
async def lifespan(fastapi_app: FastAPI):
    exit_stack = AsyncExitStack()
    tmdb_http_client = await exit_stack.enter_async_context(
        httpx.AsyncClient(
            base_url=str(settings.tmdb_api_url),
            timeout=httpx.Timeout(15.0, connect=5.0),
        )
    )
    recommendation_http_client = await exit_stack.enter_async_context(
        httpx.AsyncClient(
            base_url=str(settings.recommendation_api_url or ""),
            timeout=httpx.Timeout(30.0, connect=10.0),
        )
    )
    try:
        # Both providers reject missing configuration before anything is served.
        metadata_provider = TMDBMetadataClient(settings, tmdb_http_client)
        recommendation_provider = RecommendationClient(recommendation_http_client)
    except ValueError:
        await exit_stack.aclose()
        raise

    database = Database(settings.database_url)
    await database.create_all()
    store = SqlBlobStore(database.session_factory)

    async def _session_factory(user_id: str) -> RecommendationSession:
        membership = WatchlistMembership(database.session_factory, user_id)
        return RecommendationSession.create(
            user_id,
            settings,
            metadata_provider=metadata_provider,
            recommendation_provider=recommendation_provider,
            store=store,
            membership=membership,
        )

    registry = SessionRegistry(_session_factory)
    fastapi_app.state.sessions = registry
    fastapi_app.state.database = database

    try:
        yield
    finally:  # pragma: no cover - teardown path exercised at runtime
        await registry.close_all()
        await database.dispose()
        await exit_stack.aclose()


def create_app() -> FastAPI:
    fastapi_app = FastAPI(
        title=settings.app_name,
        description="Instant recommendation lanes backed by a stale-while-revalidate cache",
        version="1.0.0",
        lifespan=lifespan,
    )

    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "DELETE"],
        allow_headers=["*"],
    )

    register_routes(fastapi_app)
    return fastapi_app


def get_session_registry(app: FastAPI) -> SessionRegistry:
    registry = getattr(app.state, "sessions", None)
    if not isinstance(registry, SessionRegistry):
        raise RuntimeError("Session registry not initialised")
    return registry


def _item_key(media_type: str, external_id: int) -> ItemKey:
    normalized = normalize_media_type(media_type)
    if normalized not in {"movie", "tv"}:
        raise HTTPException(status_code=400, detail="Unsupported media type")
    return ItemKey(str(normalized), external_id)


def _serialise_item(item: ContentItem) -> dict[str, object]:
    return item.to_payload(genre_names=_resolver.resolve_all(item.genres))


def _filtered_payload(result: FilteredResult) -> dict[str, Any]:
    return {
        "items": [_serialise_item(item) for item in result.items],
        "state": result.state.value,
        "fetchedAt": result.fetched_at.isoformat() if result.fetched_at else None,
        "loading": result.loading,
        "usingCached": result.using_cached,
        "error": result.error,
    }


def _lanes_payload(view: HeroAndLanes) -> dict[str, Any]:
    return {
        "hero": _serialise_item(view.hero) if view.hero else None,
        "lanes": [
            {
                "id": lane.key,
                "title": lane.title,
                "subtitle": lane.subtitle,
                "items": [_serialise_item(item) for item in lane.items],
                "showMatchScore": lane.display_hints.show_match_score,
                "showServiceBadge": lane.display_hints.show_service_badge,
                "showProgress": lane.display_hints.show_progress,
            }
            for lane in view.lanes
        ],
        "loading": view.loading,
        "usingCached": view.using_cached,
        "error": view.error,
    }


def register_routes(fastapi_app: FastAPI) -> None:
    async def _session(user_id: str) -> RecommendationSession:
        cleaned = user_id.strip()
        if not cleaned or len(cleaned) > 64:
            raise HTTPException(status_code=400, detail="Invalid user id")
        return await get_session_registry(fastapi_app).get(cleaned)

    @fastapi_app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    @fastapi_app.get("/genres")
    async def list_genres() -> dict[str, list[str]]:
        return {"genres": list(FILTER_GENRES)}

    @fastapi_app.get("/users/{user_id}/recommendations")
    async def recommendations(
        user_id: str,
        media_type: str = Query(default="all", alias="mediaType"),
        genre: str = Query(default=ALL_GENRES),
        wait: bool = Query(default=True),
    ) -> dict[str, Any]:
        session = await _session(user_id)
        try:
            result = await session.get_filtered(media_type, genre, wait=wait)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return _filtered_payload(result)

    @fastapi_app.get("/users/{user_id}/lanes")
    async def lanes(
        user_id: str,
        genre: str = Query(default=ALL_GENRES),
        media_type: str = Query(default="all", alias="mediaType"),
    ) -> dict[str, Any]:
        session = await _session(user_id)
        try:
            view = await session.get_hero_and_lanes(genre, media_type)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return _lanes_payload(view)

    @fastapi_app.post("/users/{user_id}/refresh")
    async def refresh(
        user_id: str,
        media_type: str = Query(default="all", alias="mediaType"),
        genre: str = Query(default=ALL_GENRES),
    ) -> dict[str, Any]:
        session = await _session(user_id)
        try:
            result = await session.refresh(media_type, genre)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return _filtered_payload(result)

    @fastapi_app.post("/users/{user_id}/items/{media_type}/{external_id}/pending")
    async def mark_pending(user_id: str, media_type: str, external_id: int) -> dict[str, Any]:
        key = _item_key(media_type, external_id)
        session = await _session(user_id)
        session.mark_pending_confirm(key)
        return {"id": str(key), "pending": True}

    @fastapi_app.delete("/users/{user_id}/items/{media_type}/{external_id}/pending")
    async def abandon_pending(
        user_id: str, media_type: str, external_id: int
    ) -> dict[str, Any]:
        key = _item_key(media_type, external_id)
        session = await _session(user_id)
        session.clear_pending(key)
        return {"id": str(key), "pending": False}

    @fastapi_app.post("/users/{user_id}/items/{media_type}/{external_id}/confirm")
    async def confirm(user_id: str, media_type: str, external_id: int) -> dict[str, Any]:
        key = _item_key(media_type, external_id)
        session = await _session(user_id)
        session.confirm_added(key)
        return {"id": str(key), "pending": False}

    @fastapi_app.post("/users/{user_id}/items/{media_type}/{external_id}/dismiss")
    async def dismiss(user_id: str, media_type: str, external_id: int) -> dict[str, Any]:
        key = _item_key(media_type, external_id)
        session = await _session(user_id)
        await session.mark_persisted_removed(key)
        return {"id": str(key), "dismissed": True}

    @fastapi_app.post("/users/{user_id}/watchlist/{media_type}/{external_id}")
    async def add_to_watchlist(
        user_id: str, media_type: str, external_id: int
    ) -> dict[str, Any]:
        key = _item_key(media_type, external_id)
        session = await _session(user_id)
        added = await _watchlist(session).add(key)
        session.confirm_added(key)
        return {"id": str(key), "added": added}

    @fastapi_app.delete("/users/{user_id}/watchlist/{media_type}/{external_id}")
    async def remove_from_watchlist(
        user_id: str, media_type: str, external_id: int
    ) -> dict[str, Any]:
        key = _item_key(media_type, external_id)
        session = await _session(user_id)
        removed = await _watchlist(session).remove(key)
        return {"id": str(key), "removed": removed}

    @fastapi_app.delete("/users/{user_id}/session")
    async def end_session(user_id: str) -> dict[str, Any]:
        closed = await get_session_registry(fastapi_app).end(user_id.strip())
        return {"closed": closed}


def _watchlist(session: RecommendationSession) -> WatchlistMembership:
    membership = session.membership
    if not isinstance(membership, WatchlistMembership):
        raise HTTPException(status_code=501, detail="Watchlist storage not configured")
    return membership


app = create_app()
