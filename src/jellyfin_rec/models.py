"""
Catalog data model.

Items mirror the Jellyfin item JSON (PascalCase keys) but are held as
immutable dataclasses once parsed; the engine never mutates them.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Callable

logger = logging.getLogger(__name__)

DIRECTOR_WRITER_TYPES = frozenset({"Director", "Writer"})


@dataclass(frozen=True)
class Person:
    id: str
    name: str
    type: str = ""


@dataclass(frozen=True)
class Studio:
    id: str
    name: str


@dataclass(frozen=True)
class UserData:
    played: bool = False
    is_favorite: bool = False


def _to_float(value: Any, key: str) -> float | None:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        logger.debug(f"Ignoring non-numeric {key}={value!r}")
        return None


def _to_int(value: Any, key: str) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        logger.debug(f"Ignoring non-integer {key}={value!r}")
        return None


def _to_strings(values: Any, key: str) -> tuple[str, ...]:
    if not values:
        return ()
    if isinstance(values, str):
        return (values,)
    if not isinstance(values, (list, tuple)):
        raise ValueError(f"{key} must be a list of strings")
    return tuple(str(v) for v in values if v is not None and str(v).strip())


def _entries(payload: dict[str, Any], key: str) -> list[dict[str, Any]]:
    """Object entries of a People/Studios list; a non-list container is malformed."""
    values = payload.get(key) or []
    if not isinstance(values, list):
        raise ValueError(f"Item {payload.get('Id')}: {key} must be a list")
    return [v for v in values if isinstance(v, dict)]


def _ref_id(entry: dict[str, Any]) -> str:
    """Id of a person/studio reference, falling back to its name; "" when neither is set."""
    ref = entry.get("Id") or entry.get("Name")
    return str(ref) if ref else ""


def round_half_up(value: float) -> int:
    """Round halves towards +inf, like JavaScript's Math.round."""
    return math.floor(value + 0.5)


@dataclass(frozen=True)
class ContentItem:
    """A movie or series from the catalog, as seen by the scoring engine."""
    id: str
    name: str = ""
    genres: tuple[str, ...] = ()
    tags: tuple[str, ...] = ()
    people: tuple[Person, ...] = ()
    studios: tuple[Studio, ...] = ()
    community_rating: float | None = None
    critic_rating: float | None = None
    production_year: int | None = None
    user_data: UserData = field(default_factory=UserData)

    @property
    def played(self) -> bool:
        return self.user_data.played

    @property
    def is_favorite(self) -> bool:
        return self.user_data.is_favorite

    @property
    def genre_keys(self) -> frozenset[str]:
        return frozenset(g.lower() for g in self.genres)

    @property
    def tag_keys(self) -> frozenset[str]:
        return frozenset(t.lower() for t in self.tags)

    def people_of_type(self, *types: str) -> list[Person]:
        return [p for p in self.people if p.type in types]

    @property
    def actor_ids(self) -> frozenset[str]:
        return frozenset(p.id for p in self.people_of_type("Actor"))

    @property
    def director_writer_ids(self) -> frozenset[str]:
        return frozenset(p.id for p in self.people if p.type in DIRECTOR_WRITER_TYPES)

    @property
    def studio_ids(self) -> frozenset[str]:
        return frozenset(s.id for s in self.studios)

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "ContentItem":
        """
        Parse a Jellyfin item payload.

        Missing collections become empty tuples and missing numbers None.
        Raises ValueError when the payload has no Id.
        """
        item_id = payload.get("Id")
        if item_id is None or str(item_id) == "":
            raise ValueError(f"Item without Id: {payload.get('Name', '<unnamed>')!r}")

        people = tuple(
            Person(id=_ref_id(p), name=str(p.get("Name") or ""), type=str(p.get("Type") or ""))
            for p in _entries(payload, "People")
            if _ref_id(p)
        )
        studios = tuple(
            Studio(id=_ref_id(s), name=str(s.get("Name") or ""))
            for s in _entries(payload, "Studios")
            if _ref_id(s)
        )
        user_data = payload.get("UserData") or {}
        if not isinstance(user_data, dict):
            raise ValueError(f"Item {item_id}: UserData must be an object")

        return cls(
            id=str(item_id),
            name=str(payload.get("Name") or ""),
            genres=_to_strings(payload.get("Genres"), "Genres"),
            tags=_to_strings(payload.get("Tags"), "Tags"),
            people=people,
            studios=studios,
            community_rating=_to_float(payload.get("CommunityRating"), "CommunityRating"),
            critic_rating=_to_float(payload.get("CriticRating"), "CriticRating"),
            production_year=_to_int(payload.get("ProductionYear"), "ProductionYear"),
            user_data=UserData(
                played=bool(user_data.get("Played", False)),
                is_favorite=bool(user_data.get("IsFavorite", False)),
            ),
        )

    def to_record(
        self,
        score: float | None = None,
        image_resolver: Callable[[str], str] | None = None,
    ) -> dict[str, Any]:
        """Shape the item as an output record for display layers."""
        return {
            "Name": self.name,
            "Id": self.id,
            "Genres": list(self.genres),
            "CommunityRating": self.community_rating,
            "ProductionYear": self.production_year,
            "similarityScore": round_half_up(score) if score is not None else None,
            "ImageUrl": image_resolver(self.id) if image_resolver else None,
        }


@dataclass
class ScoredItem:
    item: ContentItem
    score: float


@dataclass
class RecommendationGroup:
    """Recommendations grouped under the watched item they were derived from."""
    anchor: ContentItem
    scored_candidates: list[ScoredItem] = field(default_factory=list)

    @property
    def candidate_ids(self) -> list[str]:
        return [s.item.id for s in self.scored_candidates]
