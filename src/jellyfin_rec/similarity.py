"""
Item-to-item similarity.

Each factor compares one attribute of two items and returns a similarity in
[0, 1], or None when the factor does not apply to the pair (for example a
rating missing on either side). The scorer sums weight * similarity over
applicable factors and normalizes by the summed weight of those factors, so
missing data never drags a score down:

    score = raw / max * 100      (0 when no factor applies)
"""
from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass, field
from typing import Callable

from .config import (
    SIMILARITY_WEIGHTS,
    SIMILARITY_PRESETS,
    BASIC_TAG_WEIGHT,
    MAX_YEAR_DIFF,
    COMMUNITY_RATING_SCALE,
    CRITIC_RATING_SCALE,
    EPSILON,
    TITLE_STOPWORDS,
    EMPTY_POLICY_NO_EVIDENCE,
    EMPTY_POLICY_PERFECT_MATCH,
    CATEGORICAL_EMPTY_POLICY,
    RELATIONAL_EMPTY_POLICY,
)
from .models import ContentItem
from .rarity import RarityProfile

logger = logging.getLogger(__name__)

EMPTY_POLICIES = (EMPTY_POLICY_NO_EVIDENCE, EMPTY_POLICY_PERFECT_MATCH)

_NON_WORD = re.compile(r"[^\w\s]|_")
_WHITESPACE = re.compile(r"\s+")


def _empty_value(policy: str) -> float:
    return 1.0 if policy == EMPTY_POLICY_PERFECT_MATCH else 0.0


def jaccard(
    a: frozenset | set,
    b: frozenset | set,
    eps: float = EPSILON,
    empty_policy: str = RELATIONAL_EMPTY_POLICY,
) -> float:
    """Plain Jaccard overlap with an eps-smoothed union."""
    if not a and not b:
        return _empty_value(empty_policy)
    return len(a & b) / (len(a | b) + eps)


def rarity_jaccard(
    a: frozenset | set,
    b: frozenset | set,
    weights: dict[str, float],
    eps: float = EPSILON,
    empty_policy: str = CATEGORICAL_EMPTY_POLICY,
) -> float:
    """
    Jaccard overlap where each key counts with its rarity weight.

    Shared rare keys count for more than shared common ones. A union whose
    keys carry no rarity mass (present in every item) scores 0.
    """
    union = a | b
    if not union:
        return _empty_value(empty_policy)
    sum_total = sum(weights.get(k, 0.0) for k in union)
    if sum_total <= 0:
        return 0.0
    sum_shared = sum(weights.get(k, 0.0) for k in a & b)
    return sum_shared / (sum_total + eps)


def normalize_title(name: str | None) -> str:
    """Lowercase, drop punctuation, collapse whitespace."""
    if not name:
        return ""
    cleaned = _NON_WORD.sub("", name.lower())
    return _WHITESPACE.sub(" ", cleaned).strip()


def tokenize_title(name: str | None, stopwords: frozenset[str] = TITLE_STOPWORDS) -> set[str]:
    """Title tokens longer than one character, minus stopwords."""
    return {
        tok for tok in normalize_title(name).split()
        if len(tok) > 1 and tok not in stopwords
    }


def _present(value: float | int | None) -> bool:
    return value is not None and math.isfinite(value)


def _closeness(a: float | int | None, b: float | int | None, scale: float) -> float | None:
    if not (_present(a) and _present(b)):
        return None
    return max(0.0, 1.0 - abs(a - b) / scale)


def _default_weights() -> dict[str, float]:
    return {**SIMILARITY_WEIGHTS, 'tag': BASIC_TAG_WEIGHT}


@dataclass
class ScoringConfig:
    """
    Weights and policies for the similarity scorer.

    Validated eagerly: every enabled factor needs an explicit finite,
    non-negative weight, so a missing constant fails at construction rather
    than silently contributing nothing.
    """
    enabled_factors: tuple[str, ...] = SIMILARITY_PRESETS['extended']
    weights: dict[str, float] = field(default_factory=_default_weights)
    categorical_empty_policy: str = CATEGORICAL_EMPTY_POLICY
    relational_empty_policy: str = RELATIONAL_EMPTY_POLICY
    max_year_diff: float = MAX_YEAR_DIFF
    rating_scale: float = COMMUNITY_RATING_SCALE
    critic_rating_scale: float = CRITIC_RATING_SCALE
    epsilon: float = EPSILON
    stopwords: frozenset[str] = TITLE_STOPWORDS

    def __post_init__(self) -> None:
        self.enabled_factors = tuple(self.enabled_factors)
        self.stopwords = frozenset(s.lower() for s in self.stopwords)
        self.validate()

    @classmethod
    def preset(cls, name: str, **overrides) -> "ScoringConfig":
        """Build a config from a named preset ('basic', 'extended', 'full')."""
        if name not in SIMILARITY_PRESETS:
            raise ValueError(f"Unknown preset '{name}' (expected one of {sorted(SIMILARITY_PRESETS)})")
        weights = dict(SIMILARITY_WEIGHTS) if name == 'full' else _default_weights()
        weights.update(overrides.pop('weights', None) or {})
        return cls(enabled_factors=SIMILARITY_PRESETS[name], weights=weights, **overrides)

    def validate(self) -> None:
        if not self.enabled_factors:
            raise ValueError("enabled_factors must name at least one factor")
        unknown = [f for f in self.enabled_factors if f not in FACTORS]
        if unknown:
            raise ValueError(f"Unknown similarity factors: {unknown}")
        if len(set(self.enabled_factors)) != len(self.enabled_factors):
            raise ValueError("enabled_factors must not repeat a factor")
        if not isinstance(self.weights, dict):
            raise ValueError("weights must be a dict of factor weights")
        unknown_weights = [k for k in self.weights if k not in FACTORS]
        if unknown_weights:
            raise ValueError(f"weights reference unknown factors: {unknown_weights}")
        for name in self.enabled_factors:
            if name not in self.weights or self.weights[name] is None:
                raise ValueError(f"weight for enabled factor '{name}' is not defined")
            weight = self.weights[name]
            if not isinstance(weight, (int, float)) or not math.isfinite(weight):
                raise ValueError(f"weight for '{name}' must be a finite number")
            if weight < 0:
                raise ValueError(f"weight for '{name}' must be non-negative")
        for attr in ('categorical_empty_policy', 'relational_empty_policy'):
            if getattr(self, attr) not in EMPTY_POLICIES:
                raise ValueError(f"{attr} must be one of {EMPTY_POLICIES}")
        if self.max_year_diff <= 0 or self.rating_scale <= 0 or self.critic_rating_scale <= 0:
            raise ValueError("closeness scales must be positive")
        if self.epsilon <= 0:
            raise ValueError("epsilon must be positive")

    def weight(self, name: str) -> float:
        return float(self.weights[name])


@dataclass
class ScoringContext:
    """Everything a factor may consult besides the two items."""
    config: ScoringConfig
    rarity: RarityProfile


FactorFunc = Callable[[ContentItem, ContentItem, ScoringContext], "float | None"]


def _genre_factor(target: ContentItem, candidate: ContentItem, ctx: ScoringContext) -> float | None:
    """Rarity-weighted genre overlap; always applies."""
    return rarity_jaccard(
        target.genre_keys, candidate.genre_keys, ctx.rarity.weights_for("genre"),
        ctx.config.epsilon, ctx.config.categorical_empty_policy,
    )


def _tag_factor(target: ContentItem, candidate: ContentItem, ctx: ScoringContext) -> float | None:
    """Rarity-weighted tag overlap; always applies."""
    return rarity_jaccard(
        target.tag_keys, candidate.tag_keys, ctx.rarity.weights_for("tag"),
        ctx.config.epsilon, ctx.config.categorical_empty_policy,
    )


def _community_rating_factor(target: ContentItem, candidate: ContentItem, ctx: ScoringContext) -> float | None:
    return _closeness(target.community_rating, candidate.community_rating, ctx.config.rating_scale)


def _critic_rating_factor(target: ContentItem, candidate: ContentItem, ctx: ScoringContext) -> float | None:
    return _closeness(target.critic_rating, candidate.critic_rating, ctx.config.critic_rating_scale)


def _production_year_factor(target: ContentItem, candidate: ContentItem, ctx: ScoringContext) -> float | None:
    return _closeness(target.production_year, candidate.production_year, ctx.config.max_year_diff)


def _name_tokens_factor(target: ContentItem, candidate: ContentItem, ctx: ScoringContext) -> float | None:
    """Share of title words in common (sequels, franchises)."""
    tokens_a = tokenize_title(target.name, ctx.config.stopwords)
    tokens_b = tokenize_title(candidate.name, ctx.config.stopwords)
    return len(tokens_a & tokens_b) / max(len(tokens_a), len(tokens_b), 1)


def _prefix_bonus_factor(target: ContentItem, candidate: ContentItem, ctx: ScoringContext) -> float | None:
    """Full bonus when one title starts with the other, otherwise not counted."""
    a = normalize_title(target.name)
    b = normalize_title(candidate.name)
    if a and b and (a.startswith(b) or b.startswith(a)):
        return 1.0
    return None


def _relational_jaccard(a: frozenset, b: frozenset, ctx: ScoringContext) -> float | None:
    if not a and not b:
        return None
    return jaccard(a, b, ctx.config.epsilon, ctx.config.relational_empty_policy)


def _actor_factor(target: ContentItem, candidate: ContentItem, ctx: ScoringContext) -> float | None:
    return _relational_jaccard(target.actor_ids, candidate.actor_ids, ctx)


def _director_writer_factor(target: ContentItem, candidate: ContentItem, ctx: ScoringContext) -> float | None:
    return _relational_jaccard(target.director_writer_ids, candidate.director_writer_ids, ctx)


def _studio_factor(target: ContentItem, candidate: ContentItem, ctx: ScoringContext) -> float | None:
    return _relational_jaccard(target.studio_ids, candidate.studio_ids, ctx)


def _favorite_bonus_factor(target: ContentItem, candidate: ContentItem, ctx: ScoringContext) -> float | None:
    return 1.0 if candidate.is_favorite else None


FACTORS: dict[str, FactorFunc] = {
    'genre': _genre_factor,
    'tag': _tag_factor,
    'community_rating': _community_rating_factor,
    'critic_rating': _critic_rating_factor,
    'production_year': _production_year_factor,
    'name_tokens': _name_tokens_factor,
    'prefix_bonus': _prefix_bonus_factor,
    'actor': _actor_factor,
    'director_writer': _director_writer_factor,
    'studio': _studio_factor,
    'favorite_bonus': _favorite_bonus_factor,
}


class SimilarityScorer:
    """Composes the enabled factors into a 0-100 similarity score."""

    def __init__(self, rarity: RarityProfile | None = None, config: ScoringConfig | None = None):
        self.config = config or ScoringConfig()
        self.context = ScoringContext(config=self.config, rarity=rarity or RarityProfile())
        self._factors = [(name, FACTORS[name]) for name in self.config.enabled_factors]

    def breakdown(self, target: ContentItem, candidate: ContentItem) -> dict[str, tuple[float, float]]:
        """
        Per-factor (similarity, weight) for every factor that applies.

        Factors that do not apply to this pair are left out.
        """
        parts: dict[str, tuple[float, float]] = {}
        for name, factor in self._factors:
            similarity = factor(target, candidate, self.context)
            if similarity is None:
                continue
            parts[name] = (min(max(similarity, 0.0), 1.0), self.config.weight(name))
        return parts

    def score(self, target: ContentItem, candidate: ContentItem) -> float:
        raw_score = 0.0
        max_score = 0.0
        for similarity, weight in self.breakdown(target, candidate).values():
            raw_score += similarity * weight
            max_score += weight

        if max_score <= 0:
            return 0.0
        score = raw_score / max_score * 100
        return min(max(score, 0.0), 100.0)
