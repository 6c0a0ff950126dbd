"""
Unit tests for the Leaderboard Ranker and the engine's leaderboard read path.
"""

from dataclasses import replace

import pytest

from crowdenergy.core.leaderboard import rank_of, rank_states, to_entries
from crowdenergy.core.models import Profile, ScoreState, fallback_display_name
from crowdenergy.utils.error_handling import InvalidPayload, NotFound


def state(user_id, score, active_seconds=0):
    return ScoreState("evt-1", user_id, score=score, active_seconds=active_seconds)


class TestRankStates:
    """Test ordering and rank assignment."""

    def test_ties_get_distinct_ranks_by_user_id(self):
        ranked = rank_states([state("b", 50.0), state("a", 50.0)])
        assert [(r.user_id, r.rank) for r in ranked] == [("a", 1), ("b", 2)]

    def test_dense_one_based_and_strict(self):
        states = [state("u3", 1.0), state("u1", 9.0), state("u2", 9.0), state("u4", 4.5)]
        ranked = rank_states(states)
        assert [r.rank for r in ranked] == [1, 2, 3, 4]
        assert [r.user_id for r in ranked] == ["u1", "u2", "u4", "u3"]
        for prev, nxt in zip(ranked, ranked[1:]):
            assert (prev.score > nxt.score) or (prev.score == nxt.score and prev.user_id < nxt.user_id)

    def test_empty(self):
        assert rank_states([]) == []

    def test_rank_of_agrees_with_full_ranking(self):
        states = [state(f"u{i:02d}", float(i % 4)) for i in range(12)]
        ranked = rank_states(states)
        for r in ranked:
            assert rank_of(states, r.user_id) == r.rank
        assert rank_of(states, "missing") is None

    def test_custom_score_view(self):
        ranked = rank_states([state("a", 1.0), state("b", 2.0)], score_of=lambda s: -s.score)
        assert ranked[0].user_id == "a"


class TestEntries:
    """Test profile joins and display-name fallback."""

    def test_fallback_display_name(self):
        assert fallback_display_name("abcdef123456wxyz") == "abcdef…wxyz"

    def test_profile_names(self):
        ranked = rank_states([state("u1", 2.0), state("u2", 1.0), state("user-without-profile", 0.5)])
        profiles = {
            "u1": Profile("u1", display_name="Runner One", avatar_ref="avatars/u1.png"),
            "u2": Profile("u2", first_name="Ada", last_name="Lovelace"),
        }
        entries = to_entries("evt-1", ranked, profiles)
        assert entries[0].display_name == "Runner One"
        assert entries[0].avatar_ref == "avatars/u1.png"
        assert entries[1].display_name == "Ada Lovelace"
        assert entries[2].display_name == fallback_display_name("user-without-profile")


class TestEngineLeaderboard:
    """Test EnergyEngine.get_leaderboard."""

    def _seed(self, engine, scores):
        for user_id, score in scores.items():
            engine.accumulator.apply("evt-1", user_id, score)

    def test_top_n_and_self_rank(self, engine):
        self._seed(engine, {"a": 50.0, "b": 50.0, "c": 10.0, "d": 70.0})
        view = engine.get_leaderboard("evt-1", top_n=2, user_id="c")
        assert [(e.user_id, e.rank) for e in view.entries] == [("d", 1), ("a", 2)]
        assert view.participant_count == 4
        assert view.self_rank == 4
        assert view.self_entry.user_id == "c"

    def test_top_n_larger_than_participants(self, engine):
        self._seed(engine, {"a": 1.0})
        assert len(engine.get_leaderboard("evt-1", top_n=50).entries) == 1

    def test_request_beyond_cache_size_is_ranked_directly(self, engine):
        engine.config = replace(engine.config, leaderboard_cache_size=2)
        self._seed(engine, {f"u{i}": float(i) for i in range(5)})
        view = engine.get_leaderboard("evt-1", top_n=4)
        assert [e.rank for e in view.entries] == [1, 2, 3, 4]

    def test_unknown_user_has_no_rank(self, engine):
        self._seed(engine, {"a": 1.0})
        view = engine.get_leaderboard("evt-1", top_n=10, user_id="zz")
        assert view.self_rank is None
        assert view.self_entry is None

    def test_negative_top_n(self, engine):
        with pytest.raises(InvalidPayload):
            engine.get_leaderboard("evt-1", top_n=-1)

    def test_unknown_event(self, engine):
        with pytest.raises(NotFound):
            engine.get_leaderboard("nope", top_n=10)

    def test_profiles_joined(self, engine):
        engine.gateway.profiles.put(Profile("a", display_name="Alpha"))
        self._seed(engine, {"a": 1.0})
        assert engine.get_leaderboard("evt-1", top_n=1).entries[0].display_name == "Alpha"

    def test_cached_snapshot_is_consistent(self, engine):
        engine.leaderboard_cache.ttl_seconds = 60.0
        self._seed(engine, {"a": 5.0, "b": 3.0})
        first = engine.get_leaderboard("evt-1", top_n=10)
        self._seed(engine, {"b": 10.0})
        stale = engine.get_leaderboard("evt-1", top_n=10)
        assert stale.generation == first.generation
        assert [e.rank for e in stale.entries] == [1, 2]
        assert len({e.rank for e in stale.entries}) == len(stale.entries)
        refreshed = engine.refresh_leaderboard("evt-1")
        assert refreshed.entries[0].user_id == "b"

    def test_self_rank_agrees_with_entries(self, engine):
        """Test that a warm cache never puts the caller and another user at the same rank."""
        engine.leaderboard_cache.ttl_seconds = 60.0
        self._seed(engine, {"a": 5.0, "b": 3.0})
        engine.get_leaderboard("evt-1", top_n=10)
        self._seed(engine, {"b": 10.0})
        view = engine.get_leaderboard("evt-1", top_n=10, user_id="b")
        assert [(e.user_id, e.rank) for e in view.entries] == [("b", 1), ("a", 2)]
        assert view.self_rank == 1
        owners = {}
        for entry in list(view.entries) + [view.self_entry]:
            assert owners.setdefault(entry.rank, entry.user_id) == entry.user_id

    def test_self_rank_publishes_fresh_snapshot(self, engine):
        engine.leaderboard_cache.ttl_seconds = 60.0
        self._seed(engine, {"a": 5.0, "b": 3.0})
        first = engine.get_leaderboard("evt-1", top_n=10)
        self._seed(engine, {"b": 10.0})
        engine.get_leaderboard("evt-1", top_n=10, user_id="a")
        after = engine.get_leaderboard("evt-1", top_n=10)
        assert after.generation == first.generation + 1
        assert after.entries[0].user_id == "b"

    def test_self_rank_beyond_cache_size(self, engine):
        engine.config = replace(engine.config, leaderboard_cache_size=1)
        self._seed(engine, {"a": 5.0, "b": 3.0, "c": 1.0})
        view = engine.get_leaderboard("evt-1", top_n=3, user_id="c")
        assert [e.rank for e in view.entries] == [1, 2, 3]
        assert view.self_rank == 3
        assert view.generation == 0
