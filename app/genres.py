"""Genre references and the resolver that normalises them.

Providers describe genres in several shapes: bare TMDB ids, display names,
``{"id": .., "name": ..}`` objects and, in older persisted rows, those same
objects serialised into a string. Everything is parsed into the ``GenreRef``
union at ingestion time and only ever interpreted through ``GenreResolver``.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import TYPE_CHECKING, Annotated, Any, Callable, Iterable, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from .utils import looks_like_record, parse_embedded_record

if TYPE_CHECKING:
    from .models import ContentItem


ALL_GENRES = "All"
ANIME = "Anime"
ANIMATION = "Animation"


class NumericGenre(BaseModel):
    """Provider genre id, resolved through the lookup tables."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["numeric"] = "numeric"
    id: int


class NamedGenre(BaseModel):
    """Plain genre name string."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["name"] = "name"
    name: str


class EmbeddedGenre(BaseModel):
    """Genre object that arrived serialised inside a string."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["embedded"] = "embedded"
    raw: str


class StructuredGenre(BaseModel):
    """Genre object carrying an id, a name or both."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["structured"] = "structured"
    id: int | None = None
    name: str | None = None


GenreRef = Annotated[
    Union[NumericGenre, NamedGenre, EmbeddedGenre, StructuredGenre],
    Field(discriminator="kind"),
]

_GENRE_ADAPTER: TypeAdapter[Any] = TypeAdapter(GenreRef)
_GENRE_TYPES = (NumericGenre, NamedGenre, EmbeddedGenre, StructuredGenre)


MOVIE_GENRES: dict[int, str] = {
    28: "Action",
    12: "Adventure",
    16: "Animation",
    35: "Comedy",
    80: "Crime",
    99: "Documentary",
    18: "Drama",
    10751: "Family",
    14: "Fantasy",
    36: "History",
    27: "Horror",
    10402: "Music",
    9648: "Mystery",
    10749: "Romance",
    878: "Science Fiction",
    10770: "TV Movie",
    53: "Thriller",
    10752: "War",
    37: "Western",
}

TV_GENRES: dict[int, str] = {
    10759: "Action & Adventure",
    16: "Animation",
    35: "Comedy",
    80: "Crime",
    99: "Documentary",
    18: "Drama",
    10751: "Family",
    10762: "Kids",
    9648: "Mystery",
    10763: "News",
    10764: "Reality",
    10765: "Sci-Fi & Fantasy",
    10766: "Soap",
    10767: "Talk",
    10768: "War & Politics",
    37: "Western",
}

GENRE_ALIASES: dict[str, str] = {
    "science fiction": "Sci-Fi",
    "science-fiction": "Sci-Fi",
    "sci fi": "Sci-Fi",
    "scifi": "Sci-Fi",
    "sci-fi and fantasy": "Sci-Fi & Fantasy",
    "action and adventure": "Action & Adventure",
    "war and politics": "War & Politics",
    "documentaries": "Documentary",
    "animated": "Animation",
}

# Genre chips offered by the UI, in display order.
FILTER_GENRES: tuple[str, ...] = (
    ALL_GENRES,
    "Action",
    "Adventure",
    ANIMATION,
    ANIME,
    "Comedy",
    "Crime",
    "Documentary",
    "Drama",
    "Family",
    "Fantasy",
    "Horror",
    "Mystery",
    "Romance",
    "Sci-Fi",
    "Thriller",
)


def parse_genre_ref(raw: Any) -> NumericGenre | NamedGenre | EmbeddedGenre | StructuredGenre | None:
    """Tag a raw provider genre value, or return ``None`` when it is unusable."""

    if isinstance(raw, _GENRE_TYPES):
        return raw
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        return NumericGenre(id=raw)
    if isinstance(raw, float):
        return NumericGenre(id=int(raw)) if raw.is_integer() else None
    if isinstance(raw, str):
        text = raw.strip()
        if not text:
            return None
        if text.isdigit():
            return NumericGenre(id=int(text))
        if looks_like_record(text):
            return EmbeddedGenre(raw=text)
        return NamedGenre(name=text)
    if isinstance(raw, Mapping):
        if "kind" in raw:
            return _GENRE_ADAPTER.validate_python(dict(raw))
        return _structured_from_mapping(raw)
    genre_id = getattr(raw, "id", None)
    genre_name = getattr(raw, "name", None)
    if genre_id is None and genre_name is None:
        return None
    return _structured_from_mapping({"id": genre_id, "name": genre_name})


def parse_genre_refs(values: Iterable[Any] | None) -> list[Any]:
    """Tag a sequence of raw genre values, dropping unusable entries."""

    if values is None:
        return []
    if isinstance(values, (str, bytes, Mapping)):
        values = [values]
    parsed = (parse_genre_ref(value) for value in values)
    return [ref for ref in parsed if ref is not None]


def _structured_from_mapping(data: Mapping[str, Any]) -> StructuredGenre | None:
    raw_id = data.get("id")
    genre_id: int | None = None
    if isinstance(raw_id, int) and not isinstance(raw_id, bool):
        genre_id = raw_id
    elif isinstance(raw_id, str) and raw_id.strip().isdigit():
        genre_id = int(raw_id.strip())
    raw_name = data.get("name")
    name = raw_name.strip() if isinstance(raw_name, str) and raw_name.strip() else None
    if genre_id is None and name is None:
        return None
    return StructuredGenre(id=genre_id, name=name)


def genre_matches(candidate: str | None, target: str | None) -> bool:
    """Loose genre comparison: equal, or either contains the other (case-insensitive)."""

    if not candidate or not target:
        return False
    left = candidate.casefold()
    right = target.casefold()
    return left == right or left in right or right in left


def _is_anime(item: "ContentItem", names: list[str]) -> bool:
    folded = {name.casefold() for name in names}
    if ANIME.casefold() in folded:
        return True
    if ANIMATION.casefold() not in folded:
        return False
    if (item.original_language or "").lower() == "ja":
        return True
    return "JP" in {country.upper() for country in item.origin_country}


def _is_western_animation(item: "ContentItem", names: list[str]) -> bool:
    folded = {name.casefold() for name in names}
    if ANIMATION.casefold() not in folded:
        return False
    return not _is_anime(item, names)


# Both categories share TMDB id 16, so substring matching cannot separate them.
GENRE_OVERRIDES: dict[str, Callable[["ContentItem", list[str]], bool]] = {
    ANIME.casefold(): _is_anime,
    ANIMATION.casefold(): _is_western_animation,
}


class GenreResolver:
    """Normalises heterogeneous genre references into canonical names."""

    def __init__(
        self,
        id_tables: Iterable[Mapping[int, str]] = (MOVIE_GENRES, TV_GENRES),
        aliases: Mapping[str, str] | None = None,
    ) -> None:
        self._aliases = {
            key.casefold(): value
            for key, value in (GENRE_ALIASES if aliases is None else aliases).items()
        }
        self._by_id: dict[int, str] = {}
        for table in id_tables:
            for genre_id, name in table.items():
                self._by_id.setdefault(genre_id, self._alias(name))
        canonical = set(self._by_id.values()) | set(self._aliases.values())
        canonical.update(name for name in FILTER_GENRES if name != ALL_GENRES)
        self._canonical = {name.casefold(): name for name in canonical}

    def _alias(self, name: str) -> str:
        return self._aliases.get(name.casefold(), name)

    def canonical_name(self, name: str | None) -> str | None:
        """Return the canonical spelling of a genre name."""

        if not name or not name.strip():
            return None
        text = self._alias(name.strip())
        return self._canonical.get(text.casefold(), text)

    def is_known(self, name: str) -> bool:
        return self._alias(name.strip()).casefold() in self._canonical

    def resolve(self, raw: Any) -> str | None:
        """Return the canonical genre name for any supported representation."""

        ref = parse_genre_ref(raw)
        if ref is None:
            return None
        if isinstance(ref, NamedGenre):
            return self.canonical_name(ref.name)
        if isinstance(ref, NumericGenre):
            return self._by_id.get(ref.id)
        if isinstance(ref, EmbeddedGenre):
            record = parse_embedded_record(ref.raw)
            if record is None:
                return None
            structured = _structured_from_mapping(record)
            return self._resolve_structured(structured) if structured else None
        return self._resolve_structured(ref)

    def _resolve_structured(self, ref: StructuredGenre) -> str | None:
        if ref.name:
            return self.canonical_name(ref.name)
        if ref.id is not None:
            return self._by_id.get(ref.id)
        return None

    def resolve_all(self, refs: Iterable[Any]) -> list[str]:
        """Resolve every reference, skipping the ones that cannot be resolved."""

        names: list[str] = []
        for ref in refs:
            name = self.resolve(ref)
            if name and name not in names:
                names.append(name)
        return names

    def item_matches(
        self, item: "ContentItem", genre: str | None, *, primary_only: bool = False
    ) -> bool:
        """Return whether an item satisfies a genre filter.

        With ``primary_only`` only the first listed genre is considered.
        """

        target = self.canonical_name(genre)
        if target is None or target.casefold() == ALL_GENRES.casefold():
            return True
        if not item.genres:
            return False

        names = self.resolve_all(item.genres)
        first = self.resolve(item.genres[0])
        override = GENRE_OVERRIDES.get(target.casefold())
        if override is not None:
            if not override(item, names):
                return False
            if primary_only:
                return first is not None and first.casefold() in GENRE_OVERRIDES
            return True

        if primary_only:
            return genre_matches(first, target)
        return any(genre_matches(name, target) for name in names)
