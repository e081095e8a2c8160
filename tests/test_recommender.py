import itertools
import logging
from types import SimpleNamespace

import pytest

import jellyfin_rec.recommender as rec_module
from jellyfin_rec.recommender import (
    AnchorRecommender,
    RecommendationSession,
    format_groups,
    format_items,
)
from jellyfin_rec.similarity import ScoringConfig, SimilarityScorer

NAMES = ["alpha", "bravo", "charlie", "delta", "echo", "foxtrot", "golf", "hotel",
         "india", "juliet", "kilo", "lima", "mike", "november", "oscar", "papa"]


def _library(make_item, n_watched=5, n_unwatched=10, genres=("Drama",)):
    names = iter(NAMES)
    watched = [make_item(f"w-{next(names)}", genres=genres, rating=7.0, year=2000, played=True)
               for _ in range(n_watched)]
    unwatched = [make_item(f"u-{next(names)}", genres=genres, rating=7.0, year=2001)
                 for _ in range(n_unwatched)]
    # Filler so the shared genre keeps some rarity mass
    unwatched.append(make_item("u-zulu", genres=["Western"]))
    return watched, unwatched


def test_action_item_ranks_above_comedy_for_action_anchor(make_item):
    watched = [
        make_item("w-action", name="Alpha", genres=["Action"], rating=7.0, year=2000, played=True),
        make_item("w-drama", name="Bravo", genres=["Drama"], rating=7.0, year=2000, played=True),
        make_item("w-both", name="Charlie", genres=["Action", "Drama"], rating=7.0, year=2000, played=True),
    ]
    unwatched = [
        make_item("u-comedy", name="Delta", genres=["Comedy"], rating=7.0, year=2000),
        make_item("u-action", name="Echo", genres=["Action"], rating=7.0, year=2000),
    ]

    groups = AnchorRecommender().recommend(
        watched, unwatched, anchor_count=3, per_anchor=5,
        single_appearance=False, session=RecommendationSession.seeded(1),
    )

    by_anchor = {g.anchor.id: g for g in groups}
    assert by_anchor["w-action"].candidate_ids == ["u-action", "u-comedy"]


def test_anchors_are_never_repeated(make_item):
    watched, unwatched = _library(make_item)

    groups = AnchorRecommender().recommend(
        watched, unwatched, anchor_count=10, per_anchor=2,
        single_appearance=False, session=RecommendationSession.seeded(7),
    )

    anchor_ids = [g.anchor.id for g in groups]
    assert len(anchor_ids) == len(set(anchor_ids))
    assert len(groups) == 5


def test_single_appearance_never_repeats_candidates(make_item):
    watched, unwatched = _library(make_item)

    groups = AnchorRecommender().recommend(
        watched, unwatched, anchor_count=5, per_anchor=3,
        single_appearance=True, session=RecommendationSession.seeded(3),
    )

    ids = [i for g in groups for i in g.candidate_ids]
    assert ids
    assert len(ids) == len(set(ids))


def test_repeats_allowed_when_single_appearance_off(make_item):
    watched, unwatched = _library(make_item)

    groups = AnchorRecommender().recommend(
        watched, unwatched, anchor_count=5, per_anchor=3,
        single_appearance=False, session=RecommendationSession.seeded(3),
    )

    assert len(groups) == 5
    assert all(len(g.scored_candidates) == 3 for g in groups)
    ids = [i for g in groups for i in g.candidate_ids]
    assert len(set(ids)) < len(ids)


def test_more_anchors_requested_than_watched(make_item):
    watched, unwatched = _library(make_item, n_watched=2)
    session = RecommendationSession.seeded(0)

    groups = AnchorRecommender().recommend(watched, unwatched, anchor_count=5, per_anchor=2, session=session)

    assert len(groups) == 2
    assert session.used_anchor_ids == {w.id for w in watched}


def test_played_items_in_unwatched_are_never_returned(make_item):
    watched, unwatched = _library(make_item, n_watched=3, n_unwatched=4)
    sneaky = make_item("u-played", genres=["Drama"], rating=7.0, year=2000, played=True)

    groups = AnchorRecommender().recommend(
        watched, [sneaky, *unwatched], anchor_count=3, per_anchor=10, single_appearance=False,
    )

    assert groups
    assert all("u-played" not in g.candidate_ids for g in groups)


def test_empty_inputs_return_empty_with_diagnostic(make_item, caplog):
    caplog.set_level(logging.WARNING)
    recommender = AnchorRecommender()
    watched, unwatched = _library(make_item, n_watched=1, n_unwatched=1)
    played_only = [make_item("u-seen", genres=["Drama"], played=True)]

    assert recommender.recommend([], unwatched) == []
    assert recommender.recommend(watched, []) == []
    assert recommender.recommend(watched, played_only) == []
    assert "No truly unwatched items" in caplog.text


def test_candidates_below_relevance_floor_are_dropped(make_item):
    watched = [make_item("w-alpha", genres=["Drama"], played=True)]
    unwatched = [make_item("u-bravo", genres=["Horror"]), make_item("u-charlie", genres=["Western"])]

    assert AnchorRecommender().recommend(watched, unwatched) == []


def test_equal_scores_keep_catalog_order(make_item):
    watched = [make_item("w-alpha", genres=["Drama"], rating=7.0, played=True)]
    unwatched = [
        make_item("u-bravo", genres=["Drama"], rating=7.0),
        make_item("u-charlie", genres=["Drama"], rating=7.0),
        make_item("u-delta", genres=["Horror"]),
    ]

    groups = AnchorRecommender().recommend(watched, unwatched, anchor_count=1, per_anchor=5)

    assert groups[0].candidate_ids == ["u-bravo", "u-charlie"]
    scores = [s.score for s in groups[0].scored_candidates]
    assert scores[0] == scores[1]


def test_seeded_sessions_are_reproducible(make_item):
    watched, unwatched = _library(make_item)
    recommender = AnchorRecommender()

    first = recommender.recommend(watched, unwatched, anchor_count=3, per_anchor=2,
                                  session=RecommendationSession.seeded(42))
    second = recommender.recommend(watched, unwatched, anchor_count=3, per_anchor=2,
                                   session=RecommendationSession.seeded(42))

    assert [g.anchor.id for g in first] == [g.anchor.id for g in second]
    assert [g.candidate_ids for g in first] == [g.candidate_ids for g in second]


def test_continued_session_loads_more_without_repeats(make_item):
    watched, unwatched = _library(make_item)
    recommender = AnchorRecommender()
    session = RecommendationSession.seeded(5)

    first = recommender.recommend(watched, unwatched, anchor_count=2, per_anchor=2, session=session)
    more = recommender.recommend(watched, unwatched, anchor_count=2, per_anchor=2,
                                 session=session, continue_session=True)

    first_anchors = {g.anchor.id for g in first}
    assert not first_anchors & {g.anchor.id for g in more}
    first_items = {i for g in first for i in g.candidate_ids}
    assert not first_items & {i for g in more for i in g.candidate_ids}

    # A new pass on the same session starts from scratch
    fresh = recommender.recommend(watched, unwatched, anchor_count=5, per_anchor=2, session=session)
    assert len(fresh) == 5
    assert len(session.used_anchor_ids) == 5


def test_repeated_calls_do_not_exhaust_pools(make_item):
    watched, unwatched = _library(make_item, n_watched=2)
    recommender = AnchorRecommender()

    for _ in range(3):
        assert len(recommender.recommend(watched, unwatched, anchor_count=2, per_anchor=2)) == 2


def test_bad_candidate_is_skipped_not_fatal(make_item, monkeypatch, caplog):
    caplog.set_level(logging.WARNING)
    watched, unwatched = _library(make_item, n_watched=1, n_unwatched=3)
    bad_id = unwatched[0].id
    original = SimilarityScorer.score

    def flaky(self, target, candidate):
        if candidate.id == bad_id:
            raise ValueError("malformed item")
        return original(self, target, candidate)

    monkeypatch.setattr(SimilarityScorer, "score", flaky)

    groups = AnchorRecommender().recommend(watched, unwatched, anchor_count=1, per_anchor=5)

    assert len(groups) == 1
    assert bad_id not in groups[0].candidate_ids
    assert len(groups[0].candidate_ids) == 2
    assert "malformed item" in caplog.text


def test_unexpected_failure_returns_empty(make_item, monkeypatch, caplog):
    watched, unwatched = _library(make_item, n_watched=2)

    def boom(corpus):
        raise RuntimeError("rarity exploded")

    monkeypatch.setattr(rec_module, "build_rarity_profile", boom)

    assert AnchorRecommender().recommend(watched, unwatched) == []
    assert "Recommendation pass failed" in caplog.text


def test_time_budget_stops_early(make_item, monkeypatch):
    watched, unwatched = _library(make_item)
    ticks = itertools.count(0, 100)
    monkeypatch.setattr(rec_module, "time", SimpleNamespace(monotonic=lambda: next(ticks)))

    groups = AnchorRecommender(max_scoring_seconds=1.0).recommend(
        watched, unwatched, anchor_count=5, per_anchor=2,
    )

    assert len(groups) == 1


def test_parameter_validation():
    with pytest.raises(ValueError):
        AnchorRecommender(relevance_floor=100)
    with pytest.raises(ValueError):
        AnchorRecommender(max_scoring_seconds=0)
    with pytest.raises(ValueError):
        AnchorRecommender().recommend([], [], anchor_count=0)


def test_similar_to_ranks_against_one_item(make_item):
    target = make_item("t-alpha", name="Toy Story", genres=["Animation"])
    sequel = make_item("c-bravo", name="Toy Story 2", genres=["Animation"])
    other = make_item("c-charlie", name="Heat", genres=["Crime"])

    ranked = AnchorRecommender(scoring_config=ScoringConfig.preset("extended")).similar_to(
        target, [other, sequel, target], limit=5,
    )

    assert [s.item.id for s in ranked] == ["c-bravo"]


def test_output_records(make_item):
    watched, unwatched = _library(make_item, n_watched=1, n_unwatched=2)
    groups = AnchorRecommender().recommend(watched, unwatched, anchor_count=1, per_anchor=2)

    records = format_groups(groups, lambda item_id: f"img/{item_id}")

    assert records[0]["Id"] == watched[0].id
    first = records[0]["Recommendations"][0]
    assert set(first) == {"Name", "Id", "Genres", "CommunityRating", "ProductionYear", "similarityScore", "ImageUrl"}
    assert isinstance(first["similarityScore"], int)
    assert first["ImageUrl"] == f"img/{first['Id']}"

    flat = format_items(groups[0].scored_candidates[:1], scale=1.0)
    assert flat[0]["ImageUrl"] is None


def test_similar_to_reuses_scorer_and_skips_duplicates(make_item):
    target = make_item("t-alpha", name="Toy Story", genres=["Animation"])
    sequel = make_item("c-bravo", name="Toy Story 2", genres=["Animation"])
    other = make_item("c-charlie", name="Heat", genres=["Crime"])
    recommender = AnchorRecommender(scoring_config=ScoringConfig.preset("extended"))
    scorer = recommender.build_scorer([target, sequel, other, sequel])

    ranked = recommender.similar_to(target, iter([sequel, target, sequel, other]), scorer=scorer)

    assert [s.item.id for s in ranked] == ["c-bravo"]
    assert ranked[0].score == scorer.score(target, sequel)
    # Duplicates count once towards rarity
    assert scorer.context.rarity.n_items == 3


def test_similar_to_skips_failing_candidates(make_item, monkeypatch, caplog):
    target = make_item("t-alpha", name="Toy Story", genres=["Animation"])
    sequel = make_item("c-bravo", name="Toy Story 2", genres=["Animation"])
    broken = make_item("c-broken", name="Toy Story 3", genres=["Animation"])
    other = make_item("c-charlie", name="Heat", genres=["Crime"])
    original = SimilarityScorer.score

    def flaky(self, a, b):
        if b.id == "c-broken":
            raise KeyError("Genres")
        return original(self, a, b)

    monkeypatch.setattr(SimilarityScorer, "score", flaky)

    ranked = AnchorRecommender(scoring_config=ScoringConfig.preset("extended")).similar_to(
        target, [broken, sequel, other],
    )

    assert [s.item.id for s in ranked] == ["c-bravo"]
    assert "Skipping candidate c-broken" in caplog.text
