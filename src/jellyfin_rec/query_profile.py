"""
Structured summary of watch history as filter clauses.

The clauses are meant for an external query evaluator (search engine, server
side filter). This module only builds them; how an evaluator interprets each
operator, in particular whether "all" is a strict conjunction or a ranking
signal, is the evaluator's contract.
"""
from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Iterable, Iterator, Protocol, Sequence

import numpy as np

from .config import (
    QUERY_TOP_GENRES,
    QUERY_TOP_TAGS,
    QUERY_TOP_PEOPLE,
    QUERY_TOP_STUDIOS,
    QUERY_YEAR_WINDOW,
    QUERY_RATING_MARGIN,
    QUERY_MIN_RATING_FLOOR,
    QUERY_INCLUDE_PEOPLE,
    QUERY_INCLUDE_STUDIOS,
)
from .models import ContentItem, round_half_up

logger = logging.getLogger(__name__)

OPERATORS = ("all", "any", "between", ">")
SORT_DIRECTIONS = ("asc", "desc")


@dataclass(frozen=True)
class QueryClause:
    operator: str
    fields: tuple[str, ...]
    queries: tuple[Any, ...]

    def __post_init__(self) -> None:
        if self.operator not in OPERATORS:
            raise ValueError(f"Unsupported operator '{self.operator}' (expected one of {OPERATORS})")
        if self.operator == "between" and len(self.queries) != 2:
            raise ValueError("'between' needs exactly two bounds")

    def to_dict(self) -> dict[str, Any]:
        return {
            "operator": self.operator,
            "fields": list(self.fields),
            "queries": list(self.queries),
        }


@dataclass
class QueryProfile:
    """Ordered clauses; earlier clauses take precedence."""
    clauses: list[QueryClause] = field(default_factory=list)

    def __iter__(self) -> Iterator[QueryClause]:
        return iter(self.clauses)

    def __len__(self) -> int:
        return len(self.clauses)

    def for_field(self, name: str) -> QueryClause | None:
        for clause in self.clauses:
            if name in clause.fields:
                return clause
        return None

    def to_list(self) -> list[dict[str, Any]]:
        return [c.to_dict() for c in self.clauses]


@dataclass(frozen=True)
class SortSpec:
    fields: tuple[str, ...]
    direction: str = "desc"

    def __post_init__(self) -> None:
        if self.direction not in SORT_DIRECTIONS:
            raise ValueError(f"direction must be one of {SORT_DIRECTIONS}")


DEFAULT_SORT_SPEC: tuple[SortSpec, ...] = (
    SortSpec(("CommunityRating",), "desc"),
    SortSpec(("ProductionYear",), "desc"),
)


class QueryEvaluator(Protocol):
    """Executes a query profile against a corpus (implemented elsewhere)."""

    def evaluate(
        self,
        corpus: Sequence[ContentItem],
        profile: QueryProfile,
        sort_spec: Sequence[SortSpec],
    ) -> Sequence[ContentItem]:
        ...


class _DisplayCounter:
    """Case-insensitive counter that remembers the first spelling seen."""

    def __init__(self) -> None:
        self.counts: Counter = Counter()
        self.display: dict[str, str] = {}

    def add(self, value: str) -> None:
        key = value.lower()
        self.counts[key] += 1
        self.display.setdefault(key, value)

    def top(self, k: int) -> list[str]:
        # most_common is stable, so ties keep first-seen order
        return [self.display[key] for key, _ in self.counts.most_common(k)]

    def __len__(self) -> int:
        return len(self.counts)


@dataclass
class HistoryStats:
    """Frequency tables over played items."""
    genres: _DisplayCounter = field(default_factory=_DisplayCounter)
    tags: _DisplayCounter = field(default_factory=_DisplayCounter)
    studios: _DisplayCounter = field(default_factory=_DisplayCounter)
    directors: _DisplayCounter = field(default_factory=_DisplayCounter)
    writers: _DisplayCounter = field(default_factory=_DisplayCounter)
    actors: _DisplayCounter = field(default_factory=_DisplayCounter)
    years: Counter = field(default_factory=Counter)
    ratings: list[float] = field(default_factory=list)
    n_played: int = 0

    def mean_year(self) -> int | None:
        if not self.years:
            return None
        years = np.fromiter(self.years.keys(), dtype=float)
        counts = np.fromiter(self.years.values(), dtype=float)
        return round_half_up(float(np.average(years, weights=counts)))

    def mean_rating(self) -> float | None:
        if not self.ratings:
            return None
        return float(np.mean(self.ratings))


def collect_history_stats(items: Iterable[ContentItem]) -> HistoryStats:
    stats = HistoryStats()
    for item in items:
        if not item.played:
            continue
        stats.n_played += 1
        for genre in item.genres:
            stats.genres.add(genre)
        for tag in item.tags:
            stats.tags.add(tag)
        for studio in item.studios:
            if studio.name:
                stats.studios.add(studio.name)
        for person in item.people:
            if not person.name:
                continue
            if person.type == "Director":
                stats.directors.add(person.name)
            elif person.type == "Writer":
                stats.writers.add(person.name)
            elif person.type == "Actor":
                stats.actors.add(person.name)
        if item.production_year is not None:
            stats.years[item.production_year] += 1
        if item.community_rating is not None:
            stats.ratings.append(item.community_rating)
    return stats


@dataclass
class QueryProfileConfig:
    top_genres: int = QUERY_TOP_GENRES
    top_tags: int = QUERY_TOP_TAGS
    top_people: int = QUERY_TOP_PEOPLE
    top_studios: int = QUERY_TOP_STUDIOS
    year_window: int = QUERY_YEAR_WINDOW
    rating_margin: float = QUERY_RATING_MARGIN
    min_rating_floor: float = QUERY_MIN_RATING_FLOOR
    include_people: bool = QUERY_INCLUDE_PEOPLE
    include_studios: bool = QUERY_INCLUDE_STUDIOS
    genre_operator: str = "all"
    tag_operator: str = "any"

    def __post_init__(self) -> None:
        for name in ('top_genres', 'top_tags', 'top_people', 'top_studios'):
            value = getattr(self, name)
            if not (1 <= value <= 20):
                raise ValueError(f"{name} must be between 1 and 20")
        if self.year_window < 0:
            raise ValueError("year_window must be non-negative")
        if self.rating_margin < 0:
            raise ValueError("rating_margin must be non-negative")
        for name in ('genre_operator', 'tag_operator'):
            if getattr(self, name) not in ("all", "any"):
                raise ValueError(f"{name} must be 'all' or 'any'")


def build_query_profile(
    items: Iterable[ContentItem],
    config: QueryProfileConfig | None = None,
) -> QueryProfile:
    """
    Summarize played items as ordered filter clauses.

    Order: genres, tags, production year window, minimum rating, then
    studios and people when enabled. Clauses without data are omitted.
    """
    config = config or QueryProfileConfig()
    stats = collect_history_stats(items)
    clauses: list[QueryClause] = []

    if stats.genres:
        clauses.append(QueryClause(config.genre_operator, ("Genres",), tuple(stats.genres.top(config.top_genres))))
    if stats.tags:
        clauses.append(QueryClause(config.tag_operator, ("Tags",), tuple(stats.tags.top(config.top_tags))))

    mean_year = stats.mean_year()
    if mean_year is not None:
        clauses.append(QueryClause(
            "between", ("ProductionYear",),
            (mean_year - config.year_window, mean_year + config.year_window),
        ))

    mean_rating = stats.mean_rating()
    if mean_rating is not None:
        threshold = max(mean_rating - config.rating_margin, config.min_rating_floor)
        clauses.append(QueryClause(">", ("CommunityRating",), (round(threshold, 2),)))

    if config.include_studios and stats.studios:
        clauses.append(QueryClause("any", ("Studios",), tuple(stats.studios.top(config.top_studios))))

    if config.include_people:
        people: list[str] = []
        for table in (stats.directors, stats.writers, stats.actors):
            for name in table.top(config.top_people):
                if name not in people:
                    people.append(name)
        if people:
            clauses.append(QueryClause("any", ("People",), tuple(people)))

    logger.debug(f"Query profile from {stats.n_played} played items: {len(clauses)} clauses")
    return QueryProfile(clauses)
