from dataclasses import dataclass, field
import logging
import time
from typing import Any, Callable, Iterable, Iterator, Sequence

import numpy as np

from .models import ContentItem, RecommendationGroup, ScoredItem
from .rarity import build_rarity_profile
from .similarity import ScoringConfig, SimilarityScorer
from .config import (
    DEFAULT_ANCHOR_COUNT,
    DEFAULT_PER_ANCHOR,
    DEFAULT_SINGLE_APPEARANCE,
    RELEVANCE_FLOOR,
    MAX_ATTEMPTS_FACTOR,
    MAX_SCORING_SECONDS,
)

logger = logging.getLogger(__name__)

# Per-candidate failures that skip the candidate instead of the whole pass
SCORING_ERRORS = (TypeError, ValueError, AttributeError, KeyError, ZeroDivisionError)


@dataclass
class RecommendationSession:
    """
    Selection state for one recommendation session.

    Owned by the caller: pass the same session with continue_session=True to
    fetch further groups ("load more") without repeating anchors or items.
    """
    used_anchor_ids: set[str] = field(default_factory=set)
    recommended_ids: set[str] = field(default_factory=set)
    rng: np.random.Generator = field(default_factory=np.random.default_rng)

    @classmethod
    def seeded(cls, seed: int | None) -> "RecommendationSession":
        return cls(rng=np.random.default_rng(seed))

    def reset(self) -> None:
        self.used_anchor_ids.clear()
        self.recommended_ids.clear()

    def pick(self, pool: Sequence[ContentItem]) -> ContentItem:
        """Uniform random choice from a non-empty pool."""
        return pool[int(self.rng.integers(len(pool)))]


def _iter_unique(items: Iterable[ContentItem], exclude: Iterable[str] = ()) -> Iterator[ContentItem]:
    """First occurrence of each Id, skipping excluded Ids; lazy."""
    seen: set[str] = set(exclude)
    for item in items:
        if item.id in seen:
            continue
        seen.add(item.id)
        yield item


def _dedupe_by_id(items: Iterable[ContentItem]) -> list[ContentItem]:
    return list(_iter_unique(items))


class AnchorRecommender:
    """
    "Because you watched X" recommendations.

    Samples watched items as anchors and, for each, keeps the unwatched items
    most similar to it.
    """

    def __init__(
        self,
        scoring_config: ScoringConfig | None = None,
        relevance_floor: float = RELEVANCE_FLOOR,
        max_scoring_seconds: float | None = MAX_SCORING_SECONDS or None,
    ):
        if relevance_floor < 0 or relevance_floor >= 100:
            raise ValueError("relevance_floor must be in [0, 100)")
        if max_scoring_seconds is not None and max_scoring_seconds <= 0:
            raise ValueError("max_scoring_seconds must be positive")
        self.scoring_config = scoring_config or ScoringConfig()
        self.relevance_floor = relevance_floor
        self.max_scoring_seconds = max_scoring_seconds

    def build_scorer(self, corpus: Iterable[ContentItem]) -> SimilarityScorer:
        """Scorer whose rarity weights come from the given corpus (one count per Id)."""
        return SimilarityScorer(build_rarity_profile(_dedupe_by_id(corpus)), self.scoring_config)

    def _score_candidates(
        self,
        scorer: SimilarityScorer,
        anchor: ContentItem,
        candidates: Iterable[ContentItem],
        min_score: float,
    ) -> list[ScoredItem]:
        scored = []
        for candidate in candidates:
            try:
                score = scorer.score(anchor, candidate)
            except SCORING_ERRORS as e:
                logger.warning(f"Skipping candidate {getattr(candidate, 'id', '?')}: {e}")
                continue
            if score > min_score:
                scored.append(ScoredItem(candidate, score))

        # Stable sort: equal scores keep catalog order
        scored.sort(key=lambda s: -s.score)
        return scored

    def recommend(
        self,
        watched: Sequence[ContentItem],
        unwatched: Sequence[ContentItem],
        anchor_count: int = DEFAULT_ANCHOR_COUNT,
        per_anchor: int = DEFAULT_PER_ANCHOR,
        single_appearance: bool = DEFAULT_SINGLE_APPEARANCE,
        session: RecommendationSession | None = None,
        continue_session: bool = False,
    ) -> list[RecommendationGroup]:
        """
        Generate grouped recommendations.

        Args:
            watched: Played items, the anchor pool
            unwatched: Candidate items; any marked played are ignored
            anchor_count: Groups wanted
            per_anchor: Maximum candidates per group
            single_appearance: Never repeat a candidate across groups
            session: Selection state; a fresh one is created when omitted
            continue_session: Keep the session's used anchors/items instead of
                starting a new pass

        Returns:
            Groups in the order produced; shorter than anchor_count when
            anchors or matches run out, empty on failure.
        """
        if anchor_count < 1 or per_anchor < 1:
            raise ValueError("anchor_count and per_anchor must be positive")

        if session is None:
            session = RecommendationSession()
        elif not continue_session:
            session.reset()

        try:
            return self._run_pass(watched, unwatched, anchor_count, per_anchor, single_appearance, session)
        except Exception:
            logger.exception("Recommendation pass failed; returning no recommendations")
            return []

    def _run_pass(
        self,
        watched: Sequence[ContentItem],
        unwatched: Sequence[ContentItem],
        anchor_count: int,
        per_anchor: int,
        single_appearance: bool,
        session: RecommendationSession,
    ) -> list[RecommendationGroup]:
        if not watched:
            logger.warning("No watched items; cannot generate recommendations from history")
            return []
        if not unwatched:
            logger.warning("No unwatched items available")
            return []

        truly_unwatched = _dedupe_by_id([m for m in unwatched if not m.played])
        if not truly_unwatched:
            logger.warning("No truly unwatched items available after filtering")
            return []

        scorer = self.build_scorer([*watched, *truly_unwatched])
        started = time.monotonic()
        groups: list[RecommendationGroup] = []
        attempts = 0
        max_attempts = MAX_ATTEMPTS_FACTOR * len(watched)

        while len(groups) < anchor_count and attempts < max_attempts:
            anchor_pool = [w for w in watched if w.id not in session.used_anchor_ids]
            if not anchor_pool:
                break

            anchor = session.pick(anchor_pool)
            session.used_anchor_ids.add(anchor.id)
            attempts += 1

            candidates = [
                c for c in truly_unwatched
                if c.id != anchor.id
                and not (single_appearance and c.id in session.recommended_ids)
            ]
            top = self._score_candidates(scorer, anchor, candidates, self.relevance_floor)[:per_anchor]

            if top:
                if single_appearance:
                    session.recommended_ids.update(s.item.id for s in top)
                groups.append(RecommendationGroup(anchor=anchor, scored_candidates=top))
            else:
                logger.debug(f"No similar items found for '{anchor.name}', trying another")

            if self.max_scoring_seconds and time.monotonic() - started > self.max_scoring_seconds:
                logger.warning(
                    f"Scoring budget of {self.max_scoring_seconds:.1f}s exhausted after "
                    f"{attempts} anchors; returning {len(groups)} groups"
                )
                break

        if not groups:
            logger.warning("No recommendations could be generated")
        else:
            logger.info(
                f"Generated {len(groups)} groups from {attempts} anchors "
                f"({sum(len(g.scored_candidates) for g in groups)} items)"
            )
        return groups

    def similar_to(
        self,
        target: ContentItem,
        candidates: Iterable[ContentItem],
        limit: int = 10,
        min_score: float = 0.0,
        scorer: SimilarityScorer | None = None,
    ) -> list[ScoredItem]:
        """
        Rank candidates by similarity to a single item.

        Duplicates and the target itself are skipped. Pass a scorer built with
        build_scorer() to reuse it afterwards (e.g. for breakdowns); candidates
        are then consumed lazily, one pass.
        """
        if scorer is None:
            candidates = list(candidates)
            scorer = self.build_scorer([target, *candidates])
        pool = _iter_unique(candidates, exclude=[target.id])
        return self._score_candidates(scorer, target, pool, min_score)[:limit]


def format_groups(
    groups: Sequence[RecommendationGroup],
    image_resolver: Callable[[str], str] | None = None,
) -> list[dict[str, Any]]:
    """Output records for anchor-based recommendations."""
    return [
        {
            "Name": group.anchor.name,
            "Id": group.anchor.id,
            "Recommendations": [
                s.item.to_record(s.score, image_resolver) for s in group.scored_candidates
            ],
        }
        for group in groups
    ]


def format_items(
    scored: Sequence[ScoredItem],
    image_resolver: Callable[[str], str] | None = None,
    scale: float = 1.0,
) -> list[dict[str, Any]]:
    """Flat output records; taste scores (0-1) are shown with scale=100."""
    return [s.item.to_record(s.score * scale, image_resolver) for s in scored]
