import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Sequence

from .config import (
    TASTE_TAG_BOOST,
    TASTE_GENRE_MIX,
    TASTE_TAG_MIX,
    GENRE_DILUTION_THRESHOLD,
    GENRE_DILUTION_FACTOR,
    DEFAULT_TASTE_LIMIT,
)
from .models import ContentItem, ScoredItem
from .query_profile import (
    DEFAULT_SORT_SPEC,
    QueryEvaluator,
    QueryProfileConfig,
    SortSpec,
    build_query_profile,
)

logger = logging.getLogger(__name__)


@dataclass
class TasteProfile:
    """Distribution of genres and tags across played items."""
    genres: dict[str, float] = field(default_factory=dict)
    tags: dict[str, float] = field(default_factory=dict)
    n_played: int = 0

    # Raw occurrence counts, kept for display
    genre_counts: dict[str, int] = field(default_factory=dict)
    tag_counts: dict[str, int] = field(default_factory=dict)

    def top_genres(self, n: int = 10) -> list[tuple[str, float]]:
        return sorted(self.genres.items(), key=lambda x: -x[1])[:n]

    def top_tags(self, n: int = 10) -> list[tuple[str, float]]:
        return sorted(self.tags.items(), key=lambda x: -x[1])[:n]


@dataclass
class TasteConfig:
    tag_boost: float = TASTE_TAG_BOOST
    genre_mix: float = TASTE_GENRE_MIX
    tag_mix: float = TASTE_TAG_MIX
    dilution_threshold: int = GENRE_DILUTION_THRESHOLD
    dilution_factor: float = GENRE_DILUTION_FACTOR

    def __post_init__(self) -> None:
        if self.tag_boost < 0:
            raise ValueError("tag_boost must be non-negative")
        if self.genre_mix < 0 or self.tag_mix < 0:
            raise ValueError("genre_mix and tag_mix must be non-negative")
        if abs(self.genre_mix + self.tag_mix - 1.0) > 1e-9:
            raise ValueError("genre_mix and tag_mix must sum to 1")
        if self.dilution_threshold < 0:
            raise ValueError("dilution_threshold must be non-negative")
        if not (0 < self.dilution_factor <= 1):
            raise ValueError("dilution_factor must be in (0, 1]")


def _accumulate_counts(items: Sequence[str], counts: dict) -> None:
    """Count each case-folded value once per item."""
    for key in {v.lower() for v in items}:
        counts[key] += 1


def _normalize_counts(counts: dict) -> dict[str, float]:
    total = sum(counts.values())
    if total <= 0:
        return {}
    return {k: v / total for k, v in counts.items()}


def build_taste_profile(items: Sequence[ContentItem]) -> TasteProfile:
    """
    Build a taste profile from watch history.

    Only items marked played contribute. Each mapping is normalized by its
    own total so weights sum to 1 (or the mapping is empty).
    """
    genre_counts = defaultdict(int)
    tag_counts = defaultdict(int)
    n_played = 0

    for item in items:
        if not item.played:
            continue
        n_played += 1
        _accumulate_counts(item.genres, genre_counts)
        _accumulate_counts(item.tags, tag_counts)

    profile = TasteProfile(
        genres=_normalize_counts(genre_counts),
        tags=_normalize_counts(tag_counts),
        n_played=n_played,
        genre_counts=dict(genre_counts),
        tag_counts=dict(tag_counts),
    )
    logger.debug(
        f"Taste profile from {n_played} played items: "
        f"{len(profile.genres)} genres, {len(profile.tags)} tags"
    )
    return profile


def compute_taste_similarity(
    item: ContentItem,
    profile: TasteProfile,
    config: TasteConfig | None = None,
) -> float:
    """
    Affinity of an item to the taste profile, in [0, 1].

    Genre and tag weights are summed, tags boosted for specificity, and items
    carrying many genres are penalized so broadly-labelled titles do not win
    on volume alone.
    """
    config = config or TasteConfig()
    genres = item.genre_keys
    genre_score = sum(profile.genres.get(g, 0.0) for g in genres)
    tag_score = sum(profile.tags.get(t, 0.0) for t in item.tag_keys) * config.tag_boost

    penalty = 1.0
    if len(genres) > config.dilution_threshold:
        penalty = config.dilution_factor ** (len(genres) - config.dilution_threshold)

    score = (genre_score * config.genre_mix + tag_score * config.tag_mix) * penalty
    return min(max(score, 0.0), 1.0)


class TasteRecommender:
    """
    Rank unwatched items against the aggregate taste of the watch history.

    Lenient mode ranks every unwatched item. Strict mode first narrows the
    pool with a query evaluator using the history's query profile, then ranks
    only that subset.
    """

    def __init__(
        self,
        config: TasteConfig | None = None,
        query_config: QueryProfileConfig | None = None,
    ):
        self.config = config or TasteConfig()
        self.query_config = query_config or QueryProfileConfig()

    def rank(
        self,
        candidates: Sequence[ContentItem],
        profile: TasteProfile,
        limit: int = DEFAULT_TASTE_LIMIT,
    ) -> list[ScoredItem]:
        scored = []
        for item in candidates:
            if item.played:
                continue
            try:
                score = compute_taste_similarity(item, profile, self.config)
            except (TypeError, ValueError, AttributeError) as e:
                logger.warning(f"Skipping item {getattr(item, 'id', '?')}: {e}")
                continue
            if score > 0:
                scored.append(ScoredItem(item, score))

        # Stable: ties keep catalog order
        scored.sort(key=lambda s: -s.score)
        return scored[:limit]

    def recommend(
        self,
        watched: Sequence[ContentItem],
        unwatched: Sequence[ContentItem],
        limit: int = DEFAULT_TASTE_LIMIT,
        strict: bool = False,
        evaluator: QueryEvaluator | None = None,
        sort_spec: Sequence[SortSpec] = DEFAULT_SORT_SPEC,
    ) -> list[ScoredItem]:
        """Generate taste-based recommendations."""
        if strict and evaluator is None:
            raise ValueError("strict mode requires a query evaluator")

        if not watched:
            logger.warning("No watched items; cannot build a taste profile")
            return []
        if not unwatched:
            logger.warning("No unwatched items to rank")
            return []

        profile = build_taste_profile(watched)
        candidates: Sequence[ContentItem] = unwatched

        if strict:
            query_profile = build_query_profile(watched, self.query_config)
            try:
                candidates = list(evaluator.evaluate(unwatched, query_profile, list(sort_spec)))
            except Exception:
                logger.exception("Query evaluator failed; returning no taste recommendations")
                return []
            logger.info(f"Query profile narrowed {len(unwatched)} items to {len(candidates)}")

        results = self.rank(candidates, profile, limit)
        logger.info(f"Taste mode ({'strict' if strict else 'lenient'}): {len(results)} recommendations")
        return results
