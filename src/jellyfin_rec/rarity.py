"""
Rarity (IDF-style) weights for categorical attributes.

Formula: rarity(key) = ln((N + 1) / (doc_count + 1))
where N = corpus size, doc_count = items carrying the key (case-folded).

The +1 smoothing keeps unseen keys finite and drives keys present in every
item towards zero.
"""
from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Iterable

import numpy as np

from .config import RARITY_DISTINCTIVE_THRESHOLD
from .models import ContentItem

logger = logging.getLogger(__name__)


@dataclass
class RarityProfile:
    """Rarity weights for genres and tags over one corpus snapshot."""
    genres: dict[str, float] = field(default_factory=dict)
    tags: dict[str, float] = field(default_factory=dict)
    n_items: int = 0

    def weights_for(self, kind: str) -> dict[str, float]:
        if kind == "genre":
            return self.genres
        if kind == "tag":
            return self.tags
        raise ValueError(f"Unknown rarity kind: {kind}")

    def weight(self, kind: str, key: str) -> float:
        """Case-insensitive lookup; keys never seen weigh 0."""
        return self.weights_for(kind).get(key.lower(), 0.0)

    def is_distinctive(self, kind: str, key: str, threshold: float = RARITY_DISTINCTIVE_THRESHOLD) -> bool:
        return self.weight(kind, key) > threshold

    def distinctive_shared(self, kind: str, a: frozenset[str], b: frozenset[str]) -> list[str]:
        """Keys both sets carry that are rare enough to explain a match, rarest first."""
        shared = [k for k in a & b if self.is_distinctive(kind, k)]
        return sorted(shared, key=lambda k: (-self.weight(kind, k), k))


def _rarity_table(doc_counts: Counter, n_items: int) -> dict[str, float]:
    if not doc_counts:
        return {}
    keys = list(doc_counts)
    freqs = np.fromiter((doc_counts[k] for k in keys), dtype=float, count=len(keys))
    weights = np.log((n_items + 1) / (freqs + 1))
    # doc_count <= N always holds, so weights are already >= 0; clip float noise
    weights = np.clip(weights, 0.0, None)
    return {k: float(w) for k, w in zip(keys, weights)}


def build_rarity_profile(corpus: Iterable[ContentItem]) -> RarityProfile:
    """Compute genre and tag rarity over the given corpus."""
    genre_counts: Counter = Counter()
    tag_counts: Counter = Counter()
    n_items = 0

    for item in corpus:
        n_items += 1
        # Sets: an item counts each key once
        genre_counts.update(item.genre_keys)
        tag_counts.update(item.tag_keys)

    profile = RarityProfile(
        genres=_rarity_table(genre_counts, n_items),
        tags=_rarity_table(tag_counts, n_items),
        n_items=n_items,
    )
    logger.debug(
        f"Rarity profile: {n_items} items, {len(profile.genres)} genres, {len(profile.tags)} tags"
    )
    return profile
