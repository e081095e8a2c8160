import importlib
import sys
from pathlib import Path

import pytest

# Ensure the package under test is importable without installation
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = PROJECT_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))


@pytest.fixture
def fresh_config(monkeypatch):
    """
    Reload config after environment changes; restores defaults afterwards.
    """
    import jellyfin_rec.config as config

    yield lambda: importlib.reload(config)

    monkeypatch.undo()
    importlib.reload(config)


@pytest.fixture
def make_item():
    """Factory for catalog items with sensible empty defaults."""
    from jellyfin_rec.models import ContentItem, Person, Studio, UserData

    def _make(
        item_id: str,
        name: str | None = None,
        genres=(),
        tags=(),
        rating=None,
        critic=None,
        year=None,
        played=False,
        favorite=False,
        actors=(),
        directors=(),
        writers=(),
        studios=(),
    ) -> ContentItem:
        people = (
            [Person(id=a, name=a, type="Actor") for a in actors]
            + [Person(id=d, name=d, type="Director") for d in directors]
            + [Person(id=w, name=w, type="Writer") for w in writers]
        )
        return ContentItem(
            id=item_id,
            name=name if name is not None else item_id,
            genres=tuple(genres),
            tags=tuple(tags),
            people=tuple(people),
            studios=tuple(Studio(id=s, name=s) for s in studios),
            community_rating=rating,
            critic_rating=critic,
            production_year=year,
            user_data=UserData(played=played, is_favorite=favorite),
        )

    return _make
