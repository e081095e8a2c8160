from pathlib import Path


def test_env_overrides_and_validation(monkeypatch, fresh_config):
    monkeypatch.setenv("JELLYFIN_REC_ANCHORS", "4")
    monkeypatch.setenv("JELLYFIN_REC_PER_ANCHOR", "0")  # should clamp to min
    monkeypatch.setenv("JELLYFIN_REC_RELEVANCE_FLOOR", "-5")
    monkeypatch.setenv("JELLYFIN_REC_SINGLE_APPEARANCE", "off")

    cfg = fresh_config()

    assert cfg.DEFAULT_ANCHOR_COUNT == 4
    assert cfg.DEFAULT_PER_ANCHOR == 1
    assert cfg.RELEVANCE_FLOOR == 0.0
    assert cfg.DEFAULT_SINGLE_APPEARANCE is False


def test_invalid_env_values_fall_back_to_defaults(monkeypatch, fresh_config, caplog):
    monkeypatch.setenv("JELLYFIN_REC_ANCHORS", "many")
    monkeypatch.setenv("JELLYFIN_REC_RELEVANCE_FLOOR", "high")
    monkeypatch.setenv("JELLYFIN_REC_SINGLE_APPEARANCE", "sometimes")

    cfg = fresh_config()

    assert cfg.DEFAULT_ANCHOR_COUNT == 10
    assert cfg.RELEVANCE_FLOOR == 15.0
    assert cfg.DEFAULT_SINGLE_APPEARANCE is True
    assert "Invalid JELLYFIN_REC_ANCHORS" in caplog.text


def test_paths_and_server_from_env(monkeypatch, fresh_config, tmp_path):
    catalog_path = tmp_path / "library.json"
    monkeypatch.setenv("JELLYFIN_REC_CATALOG", str(catalog_path))
    monkeypatch.setenv("JELLYFIN_SERVER_URL", "http://media.local:8096/")
    monkeypatch.setenv("JELLYFIN_SERVER_ID", "srv1")

    cfg = fresh_config()

    assert cfg.CATALOG_PATH == catalog_path
    assert cfg.SERVER_URL == "http://media.local:8096"
    assert cfg.SERVER_ID == "srv1"


def test_defaults(monkeypatch, fresh_config):
    for key in ("JELLYFIN_REC_CATALOG", "JELLYFIN_REC_ANCHORS", "JELLYFIN_REC_PER_ANCHOR",
                "JELLYFIN_REC_TASTE_LIMIT", "JELLYFIN_REC_PRESET", "JELLYFIN_SERVER_ID"):
        monkeypatch.delenv(key, raising=False)

    cfg = fresh_config()

    assert cfg.CATALOG_PATH == Path("data/catalog.json")
    assert cfg.DEFAULT_ANCHOR_COUNT == 10
    assert cfg.DEFAULT_PER_ANCHOR == 7
    assert cfg.DEFAULT_TASTE_LIMIT == 6
    assert cfg.DEFAULT_SIMILARITY_PRESET == "extended"
    assert cfg.SERVER_ID is None
    # Every preset factor has a weight
    for factors in cfg.SIMILARITY_PRESETS.values():
        assert set(factors) <= set(cfg.SIMILARITY_WEIGHTS)
