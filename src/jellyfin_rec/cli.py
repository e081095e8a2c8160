import argparse
import json
import logging
from pathlib import Path

from tqdm import tqdm

from .catalog import Catalog, JellyfinLinks, load_catalog
from .config import (
    CATALOG_PATH,
    DEFAULT_ANCHOR_COUNT,
    DEFAULT_PER_ANCHOR,
    DEFAULT_SINGLE_APPEARANCE,
    DEFAULT_SIMILARITY_PRESET,
    DEFAULT_TASTE_LIMIT,
    SIMILARITY_PRESETS,
)
from .models import RecommendationGroup, ScoredItem
from .query_profile import build_query_profile
from .recommender import AnchorRecommender, RecommendationSession, format_groups, format_items
from .similarity import ScoringConfig
from .taste import TasteRecommender, build_taste_profile

logger = logging.getLogger(__name__)


def _load(args: argparse.Namespace) -> Catalog | None:
    """Load the catalog named on the command line, logging instead of raising."""
    path = Path(args.catalog) if args.catalog else CATALOG_PATH
    try:
        return load_catalog(path)
    except FileNotFoundError:
        logger.error(f"Catalog not found: {path}")
    except (json.JSONDecodeError, ValueError) as e:
        logger.error(f"Could not read catalog {path}: {e}")
    return None


def _output_groups(groups: list[RecommendationGroup], links: JellyfinLinks, output_format: str) -> None:
    if output_format == 'json':
        logger.info(json.dumps(format_groups(groups, links.make_image_url), indent=2))
        return

    for group in groups:
        logger.info(f"\nBecause you watched {group.anchor.name}:")
        for i, s in enumerate(group.scored_candidates, 1):
            year = s.item.production_year or "n/a"
            logger.info(f"{i}. {s.item.name} ({year}) - Score: {round(s.score)}%")
            logger.info(f"   {links.make_content_url(s.item.id)}")


def _output_items(items: list[ScoredItem], links: JellyfinLinks, output_format: str) -> None:
    if output_format == 'json':
        logger.info(json.dumps(format_items(items, links.make_image_url, scale=100), indent=2))
        return

    logger.info("\nBased on your general watched content:")
    for i, s in enumerate(items, 1):
        year = s.item.production_year or "n/a"
        logger.info(f"{i}. {s.item.name} ({year}) - Affinity: {s.score:.0%}")
        logger.info(f"   Genres: {', '.join(s.item.genres) or 'n/a'}")


def cmd_recommend(args: argparse.Namespace) -> None:
    """Anchor-based ("because you watched") recommendations."""
    catalog = _load(args)
    if catalog is None:
        return
    if not catalog.watched:
        logger.error("No watched items in catalog. Watch something first!")
        return

    recommender = AnchorRecommender(scoring_config=ScoringConfig.preset(args.preset))
    session = RecommendationSession.seeded(args.seed)
    groups = recommender.recommend(
        catalog.watched,
        catalog.unwatched,
        anchor_count=args.anchors,
        per_anchor=args.per_anchor,
        single_appearance=not args.allow_repeats,
        session=session,
    )

    if not groups:
        logger.info("No recommendations found. Try watching more content!")
        return

    _output_groups(groups, JellyfinLinks(), args.format)


def cmd_taste(args: argparse.Namespace) -> None:
    """Recommendations from the aggregate taste of the watch history."""
    catalog = _load(args)
    if catalog is None:
        return

    results = TasteRecommender().recommend(catalog.watched, catalog.unwatched, limit=args.limit)
    if not results:
        logger.info("No taste-based recommendations found.")
        return

    _output_items(results, JellyfinLinks(), args.format)


def cmd_profile(args: argparse.Namespace) -> None:
    """Show taste profile weights and the derived query profile."""
    catalog = _load(args)
    if catalog is None:
        return

    profile = build_taste_profile(catalog.watched)
    if profile.n_played == 0:
        logger.error("No played items in catalog.")
        return

    logger.info(f"\nTaste profile ({profile.n_played} played items)")
    if profile.genres:
        logger.info("\nTop genres:")
        for g, weight in profile.top_genres(args.top):
            logger.info(f"  {g}: {weight:.1%} ({profile.genre_counts[g]} items)")
    if profile.tags:
        logger.info("\nTop tags:")
        for t, weight in profile.top_tags(args.top):
            logger.info(f"  {t}: {weight:.1%} ({profile.tag_counts[t]} items)")

    query_profile = build_query_profile(catalog.watched)
    logger.info("\nQuery profile:")
    for clause in query_profile:
        values = ", ".join(str(q) for q in clause.queries)
        logger.info(f"  {'/'.join(clause.fields)} {clause.operator} [{values}]")


def cmd_similar(args: argparse.Namespace) -> None:
    """Find catalog items similar to one item, with per-factor detail."""
    catalog = _load(args)
    if catalog is None:
        return

    target = catalog.find(args.item_id)
    if target is None:
        logger.error(f"No item with Id '{args.item_id}' in catalog")
        return

    recommender = AnchorRecommender(scoring_config=ScoringConfig.preset(args.preset))
    candidates = [i for i in catalog.unwatched if not i.played] if args.unwatched_only else catalog.all_items
    scorer = recommender.build_scorer([target, *candidates])
    ranked = recommender.similar_to(
        target,
        tqdm(candidates, desc="Scoring", disable=not args.progress),
        limit=args.limit,
        scorer=scorer,
    )
    if not ranked:
        logger.info(f"No items similar to {target.name} found.")
        return

    rarity = scorer.context.rarity
    logger.info(f"\nItems similar to {target.name}:")
    for i, s in enumerate(ranked, 1):
        logger.info(f"{i}. {s.item.name} ({s.item.production_year or 'n/a'}) - Score: {s.score:.1f}")
        parts = scorer.breakdown(target, s.item)
        detail = ", ".join(f"{name} {sim:.2f}x{weight:g}" for name, (sim, weight) in parts.items())
        logger.info(f"   {detail}")
        shared = [
            *rarity.distinctive_shared("genre", target.genre_keys, s.item.genre_keys),
            *rarity.distinctive_shared("tag", target.tag_keys, s.item.tag_keys),
        ]
        if shared:
            logger.info(f"   Rare in common: {', '.join(shared)}")


def main():
    parser = argparse.ArgumentParser(description="Jellyfin Recommender")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    # Recommend command
    rec_parser = subparsers.add_parser("recommend", help="Recommend items similar to random watched ones")
    rec_parser.add_argument("catalog", nargs="?", help=f"Catalog JSON export (default: {CATALOG_PATH})")
    rec_parser.add_argument("--anchors", type=int, default=DEFAULT_ANCHOR_COUNT,
                            help="Number of watched items to base groups on")
    rec_parser.add_argument("--per-anchor", type=int, default=DEFAULT_PER_ANCHOR,
                            help="Recommendations per watched item")
    rec_parser.add_argument("--allow-repeats", action="store_true", default=not DEFAULT_SINGLE_APPEARANCE,
                            help="Allow an item to appear under more than one watched item")
    rec_parser.add_argument("--seed", type=int, help="Random seed for reproducible anchor selection")
    rec_parser.add_argument("--preset", choices=sorted(SIMILARITY_PRESETS), default=DEFAULT_SIMILARITY_PRESET,
                            help="Similarity factor preset")
    rec_parser.add_argument("--format", choices=['text', 'json'], default='text', help="Output format")
    rec_parser.set_defaults(func=cmd_recommend)

    # Taste command
    taste_parser = subparsers.add_parser("taste", help="Recommend items matching your overall taste")
    taste_parser.add_argument("catalog", nargs="?", help="Catalog JSON export")
    taste_parser.add_argument("--limit", type=int, default=DEFAULT_TASTE_LIMIT, help="Number of recommendations")
    taste_parser.add_argument("--format", choices=['text', 'json'], default='text', help="Output format")
    taste_parser.set_defaults(func=cmd_taste)

    # Profile command
    profile_parser = subparsers.add_parser("profile", help="Show taste and query profile")
    profile_parser.add_argument("catalog", nargs="?", help="Catalog JSON export")
    profile_parser.add_argument("--top", type=int, default=10, help="Entries per table")
    profile_parser.set_defaults(func=cmd_profile)

    # Similar command
    similar_parser = subparsers.add_parser("similar", help="Find items similar to a specific item")
    similar_parser.add_argument("item_id", help="Jellyfin item Id")
    similar_parser.add_argument("catalog", nargs="?", help="Catalog JSON export")
    similar_parser.add_argument("--limit", type=int, default=10, help="Number of similar items")
    similar_parser.add_argument("--preset", choices=sorted(SIMILARITY_PRESETS), default=DEFAULT_SIMILARITY_PRESET,
                                help="Similarity factor preset")
    similar_parser.add_argument("--unwatched-only", action="store_true", help="Only consider unwatched items")
    similar_parser.add_argument("--progress", action="store_true", help="Show a progress bar while scoring")
    similar_parser.set_defaults(func=cmd_similar)

    args = parser.parse_args()

    # Configure logging based on verbosity
    log_level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    args.func(args)
