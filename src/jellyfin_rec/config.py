"""
Configuration constants for the Jellyfin recommender.

This module centralizes all magic numbers and configurable parameters.
Values can be overridden via environment variables.
"""
import os
import logging
from pathlib import Path

logger = logging.getLogger(__name__)


def _get_float_env(key: str, default: float, min_val: float = 0) -> float:
    """
    Safely parse float from environment variable with validation.

    Args:
        key: Environment variable name
        default: Default value if not set or invalid
        min_val: Minimum allowed value

    Returns:
        Validated float value
    """
    try:
        val = float(os.environ.get(key, default))
        if val < min_val:
            logger.warning(f"{key}={val} is below minimum {min_val}, using {min_val}")
            return min_val
        return val
    except ValueError:
        logger.warning(f"Invalid {key}='{os.environ.get(key)}', using default {default}")
        return default


def _get_int_env(key: str, default: int, min_val: int = 1) -> int:
    """
    Safely parse integer from environment variable with validation.

    Args:
        key: Environment variable name
        default: Default value if not set or invalid
        min_val: Minimum allowed value

    Returns:
        Validated integer value
    """
    try:
        val = int(os.environ.get(key, default))
        if val < min_val:
            logger.warning(f"{key}={val} is below minimum {min_val}, using {min_val}")
            return min_val
        return val
    except ValueError:
        logger.warning(f"Invalid {key}='{os.environ.get(key)}', using default {default}")
        return default


def _get_bool_env(key: str, default: bool) -> bool:
    """Parse a boolean flag ("1/0", "true/false", "yes/no", "on/off")."""
    raw = os.environ.get(key)
    if raw is None:
        return default
    value = raw.strip().lower()
    if value in ("1", "true", "yes", "on"):
        return True
    if value in ("0", "false", "no", "off"):
        return False
    logger.warning(f"Invalid {key}='{raw}', using default {default}")
    return default


# Catalog / server
CATALOG_PATH = Path(os.environ.get("JELLYFIN_REC_CATALOG", "data/catalog.json"))
SERVER_URL = os.environ.get("JELLYFIN_SERVER_URL", "http://localhost:8096").rstrip("/")
SERVER_ID = os.environ.get("JELLYFIN_SERVER_ID") or None

# Anchor-based recommendation
DEFAULT_ANCHOR_COUNT = _get_int_env("JELLYFIN_REC_ANCHORS", 10, min_val=1)
DEFAULT_PER_ANCHOR = _get_int_env("JELLYFIN_REC_PER_ANCHOR", 7, min_val=1)
DEFAULT_SINGLE_APPEARANCE = _get_bool_env("JELLYFIN_REC_SINGLE_APPEARANCE", True)
RELEVANCE_FLOOR = _get_float_env("JELLYFIN_REC_RELEVANCE_FLOOR", 15.0, min_val=0.0)
MAX_ATTEMPTS_FACTOR = 2  # Loop bound: attempts < factor * len(watched)

# Optional wall-clock budget for one pass, in seconds (0 = unlimited)
MAX_SCORING_SECONDS = _get_float_env("JELLYFIN_REC_MAX_SECONDS", 0.0, min_val=0.0)

# Taste-based recommendation
DEFAULT_TASTE_LIMIT = _get_int_env("JELLYFIN_REC_TASTE_LIMIT", 6, min_val=1)

# Similarity weights (full variant). Every enabled factor must appear here or
# be passed explicitly; a missing weight is a configuration error.
SIMILARITY_WEIGHTS = {
    'genre': 4.0,
    'tag': 4.0,
    'community_rating': 3.0,
    'critic_rating': 2.0,
    'production_year': 2.0,
    'name_tokens': 3.0,
    'prefix_bonus': 6.0,
    'actor': 3.0,
    'director_writer': 5.0,
    'studio': 1.0,
    'favorite_bonus': 0.0,  # Off unless configured
}

# Tags count for less in the rarity-aware variants
BASIC_TAG_WEIGHT = 2.5

# Factor presets, in evaluation order
SIMILARITY_PRESETS = {
    'basic': ('genre', 'tag', 'community_rating', 'production_year'),
    'extended': ('genre', 'tag', 'community_rating', 'production_year', 'name_tokens', 'prefix_bonus'),
    'full': (
        'genre', 'tag', 'community_rating', 'critic_rating', 'production_year',
        'name_tokens', 'prefix_bonus', 'actor', 'director_writer', 'studio', 'favorite_bonus',
    ),
}
DEFAULT_SIMILARITY_PRESET = os.environ.get("JELLYFIN_REC_PRESET", "extended")

# Closeness scales
MAX_YEAR_DIFF = 80            # Years apart at which year similarity reaches 0
COMMUNITY_RATING_SCALE = 10.0
CRITIC_RATING_SCALE = 100.0
EPSILON = 1e-6                # Keeps Jaccard unions away from zero

# Title tokens ignored by name overlap
TITLE_STOPWORDS = frozenset({"the", "part", "season", "episode"})

# Empty-set policies for set overlap factors
EMPTY_POLICY_NO_EVIDENCE = "no_evidence"      # two empty sets -> 0
EMPTY_POLICY_PERFECT_MATCH = "perfect_match"  # two empty sets -> 1
CATEGORICAL_EMPTY_POLICY = EMPTY_POLICY_NO_EVIDENCE  # genres, tags
RELATIONAL_EMPTY_POLICY = EMPTY_POLICY_PERFECT_MATCH  # people, studios

# Rarity above this marks an attribute as distinctive
RARITY_DISTINCTIVE_THRESHOLD = 1.5

# Taste profile scoring
TASTE_TAG_BOOST = 1.25        # Tags are more specific than genres
TASTE_GENRE_MIX = 0.65
TASTE_TAG_MIX = 0.35
GENRE_DILUTION_THRESHOLD = 4  # Genres allowed before the penalty kicks in
GENRE_DILUTION_FACTOR = 0.85  # Multiplier per extra genre

# Query profile extraction
QUERY_TOP_GENRES = 3
QUERY_TOP_TAGS = 5
QUERY_TOP_PEOPLE = 3
QUERY_TOP_STUDIOS = 2
QUERY_YEAR_WINDOW = 5
QUERY_RATING_MARGIN = 0.5
QUERY_MIN_RATING_FLOOR = 6.0
QUERY_INCLUDE_PEOPLE = False   # Person/studio clauses narrow results too much
QUERY_INCLUDE_STUDIOS = False
