"""
Leaderboard Ranker

Produces a strict total order over an event's participants:

- primary key: score, descending
- tie-break: user_id, ascending

Ranks are dense and 1-based, and participants with equal scores receive
distinct consecutive ranks under the tie-break; no two entries ever share a
rank. The single-user lookup (``rank_of``) counts against the full state set
so it agrees with ``rank_states`` on the same snapshot.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from crowdenergy.core.models import LeaderboardEntry, Profile, ScoreState, fallback_display_name

ScoreView = Callable[[ScoreState], float]


@dataclass(frozen=True)
class RankedScore:
    rank: int
    user_id: str
    score: float
    active_seconds: int = 0


def _stored_score(state: ScoreState) -> float:
    return state.score


def rank_key(score: float, user_id: str) -> Tuple[float, str]:
    """Sort key: higher score first, then lower user_id first."""
    return (-score, user_id)


def rank_states(states: Sequence[ScoreState], score_of: Optional[ScoreView] = None) -> List[RankedScore]:
    """Fully ordered, densely ranked view of ``states``."""
    score_of = score_of or _stored_score
    scored = [(score_of(s), s) for s in states]
    scored.sort(key=lambda pair: rank_key(pair[0], pair[1].user_id))
    return [
        RankedScore(rank=i + 1, user_id=s.user_id, score=score, active_seconds=s.active_seconds)
        for i, (score, s) in enumerate(scored)
    ]


def rank_of(states: Sequence[ScoreState], user_id: str, score_of: Optional[ScoreView] = None) -> Optional[int]:
    """
    Rank of one participant, computed from the full set in O(N).

    Returns None when the participant has no score state for the event.
    """
    score_of = score_of or _stored_score
    target = next((s for s in states if s.user_id == user_id), None)
    if target is None:
        return None
    target_key = rank_key(score_of(target), target.user_id)
    ahead = sum(1 for s in states if rank_key(score_of(s), s.user_id) < target_key)
    return ahead + 1


def to_entries(event_id: str, ranked: Sequence[RankedScore], profiles: Dict[str, Profile]) -> List[LeaderboardEntry]:
    """Join ranked scores with profile metadata; unnamed users get a shortened id."""
    entries = []
    for r in ranked:
        profile = profiles.get(r.user_id)
        name = profile.resolved_name() if profile else ""
        entries.append(
            LeaderboardEntry(
                event_id=event_id,
                user_id=r.user_id,
                score=r.score,
                rank=r.rank,
                display_name=name or fallback_display_name(r.user_id),
                avatar_ref=profile.avatar_ref if profile else None,
                active_seconds=r.active_seconds,
            )
        )
    return entries


@dataclass(frozen=True)
class LeaderboardSnapshot:
    """Immutable top-N projection of an event's ranking."""
    event_id: str
    entries: Tuple[LeaderboardEntry, ...]
    participant_count: int
    computed_at: datetime

    def top(self, n: int) -> List[LeaderboardEntry]:
        return list(self.entries[:max(n, 0)])
