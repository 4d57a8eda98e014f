"""Derived totals and flags.

Pure functions over a game snapshot; nothing here mutates state.
"""
from __future__ import annotations

import math
from typing import AbstractSet, Dict, Iterable, Optional, Sequence

from models import GameSettings, Player, PlayerTotals, Round

MIN_DROP_POINTS = 20


def suggested_drop_points(max_points: int) -> int:
    """Default drop penalty: 10% of the ceiling, rounded up, never below 20."""
    return max(MIN_DROP_POINTS, math.ceil(max_points * 0.1))


def player_totals(rounds: Iterable[Round]) -> Dict[str, int]:
    totals: Dict[str, int] = {}
    for rnd in rounds:
        for entry in rnd.scores:
            totals[entry.player_id] = totals.get(entry.player_id, 0) + entry.score
    return totals


def highest_active_total(players: Sequence[Player], totals: Dict[str, int]) -> int:
    return max((totals.get(p.id, 0) for p in players if not p.is_out), default=0)


def join_score(players: Sequence[Player], totals: Dict[str, int], max_points: Optional[int] = None) -> int:
    highest = highest_active_total(players, totals)
    score = highest + 1 if highest > 0 else 0
    if max_points is not None:
        # a joiner above the ceiling would be out on arrival
        score = min(score, max_points)
    return score


def totals_and_flags(
    players: Sequence[Player],
    rounds: Sequence[Round],
    settings: GameSettings,
    rejoin_eligible: AbstractSet[str],
) -> Dict[str, PlayerTotals]:
    totals = player_totals(rounds)
    active_count = sum(1 for p in players if not p.is_out)
    rejoin_score = highest_active_total(players, totals) + 1
    rejoin_affordable = rejoin_score + settings.drop_points <= settings.max_points

    result: Dict[str, PlayerTotals] = {}
    for player in players:
        total = totals.get(player.id, 0)
        result[player.id] = PlayerTotals(
            total=total,
            can_drop=total + settings.drop_points <= settings.max_points,
            can_rejoin=(
                player.is_out
                and player.id in rejoin_eligible
                and rejoin_affordable
                and active_count >= 2
            ),
            rejoin_score=rejoin_score,
        )
    return result
