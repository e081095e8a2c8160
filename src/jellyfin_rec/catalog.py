"""
Loading catalog exports and building Jellyfin links.

The engine consumes already-materialized collections; this module turns a
JSON export of the library into them. Nothing here talks to a server.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Iterable
from urllib.parse import quote

from .config import CATALOG_PATH, SERVER_URL, SERVER_ID
from .models import ContentItem, UserData

logger = logging.getLogger(__name__)


@dataclass
class Catalog:
    watched: list[ContentItem] = field(default_factory=list)
    unwatched: list[ContentItem] = field(default_factory=list)

    @property
    def all_items(self) -> list[ContentItem]:
        return [*self.watched, *self.unwatched]

    def find(self, item_id: str) -> ContentItem | None:
        for item in self.all_items:
            if item.id == item_id:
                return item
        return None


def parse_items(payloads: Iterable[Any]) -> list[ContentItem]:
    """Parse item payloads, skipping malformed entries."""
    items = []
    for payload in payloads:
        if not isinstance(payload, dict):
            logger.warning(f"Skipping non-object catalog entry: {payload!r}")
            continue
        try:
            items.append(ContentItem.from_dict(payload))
        except ValueError as e:
            logger.warning(f"Skipping catalog entry: {e}")
    return items


def _as_played(item: ContentItem) -> ContentItem:
    if item.played:
        return item
    return replace(item, user_data=UserData(played=True, is_favorite=item.is_favorite))


def split_by_played(items: Iterable[ContentItem]) -> Catalog:
    catalog = Catalog()
    for item in items:
        (catalog.watched if item.played else catalog.unwatched).append(item)
    return catalog


def load_catalog(path: str | Path | None = None) -> Catalog:
    """
    Load a catalog export.

    Accepted shapes:
    - a list of items
    - a Jellyfin query result {"Items": [...]}
    - {"watched": [...], "unwatched": [...]}

    In the first two shapes items are split on UserData.Played; in the third,
    everything under "watched" counts as played. Raises
    FileNotFoundError / json.JSONDecodeError for unreadable files and
    ValueError for an unrecognized layout.
    """
    catalog_path = Path(path) if path else CATALOG_PATH
    payload = json.loads(catalog_path.read_text(encoding="utf-8"))

    if isinstance(payload, dict) and ("watched" in payload or "unwatched" in payload):
        # The list an item sits in is authoritative over its UserData
        catalog = Catalog(
            watched=[_as_played(i) for i in parse_items(payload.get("watched") or [])],
            unwatched=parse_items(payload.get("unwatched") or []),
        )
    elif isinstance(payload, dict) and isinstance(payload.get("Items"), list):
        catalog = split_by_played(parse_items(payload["Items"]))
    elif isinstance(payload, list):
        catalog = split_by_played(parse_items(payload))
    else:
        raise ValueError(f"Unrecognized catalog layout in {catalog_path}")

    logger.debug(
        f"Loaded catalog {catalog_path}: {len(catalog.watched)} watched, "
        f"{len(catalog.unwatched)} unwatched"
    )
    return catalog


class JellyfinLinks:
    """Builds image and detail-page URLs for a Jellyfin server."""

    def __init__(self, server_url: str = SERVER_URL, server_id: str | None = SERVER_ID):
        self.server_url = server_url.rstrip("/")
        self.server_id = server_id

    def make_image_url(self, item_id: str) -> str:
        return f"{self.server_url}/Items/{quote(str(item_id), safe='')}/Images/Primary"

    def make_content_url(self, item_id: str) -> str:
        url = f"{self.server_url}/web/#/details?id={quote(str(item_id), safe='')}"
        if self.server_id:
            url += f"&serverId={quote(self.server_id, safe='')}"
        return url
