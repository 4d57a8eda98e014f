from __future__ import annotations

import time
from typing import Callable, Iterable, List, Optional, Sequence

from errors import InvalidRoundError, InvalidScoreError
from models import Round, RoundScore


def now_ms() -> int:
    return int(time.time() * 1000)


def validate_score(value) -> int:
    # bool is an int subclass; True is not a score
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidScoreError(f"Score must be an integer, got {value!r}")
    if value < 0:
        raise InvalidScoreError(f"Score cannot be negative, got {value}")
    return value


def _winner_of(scores: Sequence[RoundScore]) -> Optional[str]:
    return next((entry.player_id for entry in scores if entry.score == 0), None)


def _resolve_winner(rnd: Round) -> Optional[str]:
    # the standing winner keeps the round while their score is still 0
    if rnd.winner_id is not None and rnd.score_for(rnd.winner_id) == 0:
        return rnd.winner_id
    return _winner_of(rnd.scores)


def _zero_count(scores: Sequence[RoundScore]) -> int:
    return sum(1 for entry in scores if entry.score == 0)


class RoundLedger:
    """Ordered round history of one game.

    Operates in place on the ``rounds`` list of a game snapshot. Round ids stay
    dense (1..N) across deletions.
    """

    def __init__(self, rounds: List[Round], clock: Callable[[], int] = now_ms):
        self.rounds = rounds
        self._clock = clock

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def get(self, round_id: int) -> Optional[Round]:
        return next((r for r in self.rounds if r.id == round_id), None)

    def last(self) -> Optional[Round]:
        return self.rounds[-1] if self.rounds else None

    def most_recent_round_id(self) -> Optional[int]:
        last = self.last()
        return last.id if last else None

    def total_for(self, player_id: str) -> int:
        return sum(r.score_for(player_id) or 0 for r in self.rounds)

    def score_for(self, round_id: int, player_id: str) -> Optional[int]:
        rnd = self.get(round_id)
        return rnd.score_for(player_id) if rnd else None

    def would_create_multiple_winners(self, round_id: int, player_id: str, new_score: int) -> bool:
        rnd = self.get(round_id)
        if rnd is None:
            return False
        if new_score != 0:
            return False
        return any(entry.score == 0 for entry in rnd.scores if entry.player_id != player_id)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------
    def append(self, scores: Iterable[RoundScore | dict], expected_ids: Optional[Iterable[str]] = None) -> Round:
        """Commit a round. With ``expected_ids`` the scores must cover exactly those players."""
        entries = [s if isinstance(s, RoundScore) else RoundScore.model_validate(s) for s in scores]
        if not entries:
            raise InvalidRoundError("Round must contain at least one score")
        allowed = set(expected_ids) if expected_ids is not None else None
        seen = set()
        for entry in entries:
            validate_score(entry.score)
            if entry.player_id in seen:
                raise InvalidRoundError(f"Duplicate score for player {entry.player_id}")
            if allowed is not None and entry.player_id not in allowed:
                raise InvalidRoundError(f"Unknown player {entry.player_id}")
            seen.add(entry.player_id)
        if allowed is not None and seen != allowed:
            missing = ", ".join(sorted(allowed - seen))
            raise InvalidRoundError(f"Round is missing scores for: {missing}")
        zeros = _zero_count(entries)
        if zeros != 1:
            raise InvalidRoundError(f"Round needs exactly one winner with 0 points, got {zeros}")

        rnd = Round(
            id=len(self.rounds) + 1,
            scores=entries,
            winner_id=_winner_of(entries),
            timestamp=self._clock(),
        )
        self.rounds.append(rnd)
        return rnd

    def edit_score(self, round_id: int, player_id: str, new_score: int) -> bool:
        validate_score(new_score)
        rnd = self.get(round_id)
        if rnd is None:
            return False
        entry = next((s for s in rnd.scores if s.player_id == player_id), None)
        if entry is None:
            return False
        if self.would_create_multiple_winners(round_id, player_id, new_score):
            raise InvalidRoundError(f"Round {round_id} would have more than one winner")
        entry.score = new_score
        rnd.winner_id = _resolve_winner(rnd)
        return True

    def delete_round(self, round_id: int) -> bool:
        remaining = [r for r in self.rounds if r.id != round_id]
        if len(remaining) == len(self.rounds):
            return False
        for idx, rnd in enumerate(remaining, start=1):
            rnd.id = idx
        self.rounds[:] = remaining
        return True

    def append_to_last_round(self, player_id: str, score: int) -> bool:
        """Insert or overwrite a synthetic score in the latest round.

        Used for mid-game joins and rejoins; no new round id is allocated.
        """
        rnd = self.last()
        if rnd is None:
            return False
        entry = next((s for s in rnd.scores if s.player_id == player_id), None)
        if entry is None:
            rnd.scores.append(RoundScore(player_id=player_id, score=score))
        else:
            entry.score = score
        rnd.winner_id = _resolve_winner(rnd)
        return True

    def strip_player(self, player_id: str) -> List[tuple[int, int]]:
        """Remove a player's entries from every round, returning (round_id, score) pairs."""
        removed: List[tuple[int, int]] = []
        for rnd in self.rounds:
            kept = []
            for entry in rnd.scores:
                if entry.player_id == player_id:
                    removed.append((rnd.id, entry.score))
                else:
                    kept.append(entry)
            rnd.scores = kept
            rnd.winner_id = _resolve_winner(rnd)
        return removed

    def restore_player(self, player_id: str, scores: Iterable[tuple[int, int]]) -> None:
        by_round = dict(scores)
        for rnd in self.rounds:
            if rnd.id in by_round and rnd.score_for(player_id) is None:
                rnd.scores.append(RoundScore(player_id=player_id, score=by_round[rnd.id]))
                rnd.winner_id = _resolve_winner(rnd)
