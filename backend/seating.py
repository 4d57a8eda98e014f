from __future__ import annotations

import logging
from typing import List, Optional, Sequence

from errors import DuplicateNameError, InvalidOrderError, InvalidPlayerError
from ledger import RoundLedger
from models import GameState, Player, RemovedPlayer, RemovedRoundScore

logger = logging.getLogger(__name__)


def normalize_name(name: str) -> str:
    return name.strip().lower()


class PlayerRegistry:
    """Player identity and seating for one game snapshot.

    Works in place on ``state.players`` and ``state.removed_players``; score
    history moves through a :class:`RoundLedger` over ``state.rounds``.
    """

    def __init__(self, state: GameState):
        self.state = state
        self.ledger = RoundLedger(state.rounds)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def get(self, player_id: str) -> Optional[Player]:
        return next((p for p in self.state.players if p.id == player_id), None)

    def active(self) -> List[Player]:
        return sorted((p for p in self.state.players if not p.is_out), key=lambda p: p.column_order)

    def out(self) -> List[Player]:
        return [p for p in self.state.players if p.is_out]

    def is_name_taken(self, name: str) -> bool:
        key = normalize_name(name)
        return any(normalize_name(p.name) == key for p in self.state.players)

    def find_tombstone(self, name: str) -> Optional[RemovedPlayer]:
        key = normalize_name(name)
        return next((rp for rp in self.state.removed_players if normalize_name(rp.player.name) == key), None)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------
    def add(self, name: str) -> str:
        display = (name or "").strip()
        if not display:
            raise InvalidPlayerError("Player name cannot be empty")
        if self.is_name_taken(display):
            raise DuplicateNameError(display)

        next_seat = len(self.active())
        tombstone = self.find_tombstone(display)
        if tombstone is not None:
            player = tombstone.player.model_copy(
                update={
                    "is_out": False,
                    "column_order": next_seat,
                    "original_column_order": None,
                }
            )
            self.state.players.append(player)
            self.ledger.restore_player(player.id, [(s.round_id, s.score) for s in tombstone.scores])
            self.state.removed_players.remove(tombstone)
            logger.info("Restored removed player %s (%s) with %d scores", player.name, player.id, len(tombstone.scores))
            return player.id

        player = Player(name=display, column_order=next_seat)
        self.state.players.append(player)
        logger.info("Added player %s (%s) at seat %d", player.name, player.id, next_seat)
        return player.id

    def remove(self, player_id: str) -> Optional[Player]:
        player = self.get(player_id)
        if player is None:
            return None
        scores = self.ledger.strip_player(player_id)
        key = normalize_name(player.name)
        self.state.removed_players = [
            rp for rp in self.state.removed_players if normalize_name(rp.player.name) != key
        ]
        self.state.removed_players.append(
            RemovedPlayer(
                player=player.model_copy(),
                scores=[RemovedRoundScore(round_id=rid, score=score) for rid, score in scores],
            )
        )
        self.state.players = [p for p in self.state.players if p.id != player_id]
        self.compact()
        logger.info("Removed player %s (%s)", player.name, player_id)
        return player

    def forget_round(self, round_id: int) -> None:
        """Keep tombstone round ids aligned with a ledger that just deleted ``round_id``."""
        for tombstone in self.state.removed_players:
            tombstone.scores = [
                RemovedRoundScore(round_id=s.round_id - 1 if s.round_id > round_id else s.round_id, score=s.score)
                for s in tombstone.scores
                if s.round_id != round_id
            ]

    def reorder(self, ordered_ids: Sequence[str]) -> None:
        active_ids = {p.id for p in self.active()}
        if len(ordered_ids) != len(set(ordered_ids)) or set(ordered_ids) != active_ids:
            raise InvalidOrderError("New order must list every active player exactly once")
        seat = {pid: idx for idx, pid in enumerate(ordered_ids)}
        for player in self.state.players:
            if player.id in seat:
                player.column_order = seat[player.id]

    def mark_out(self, player_id: str) -> bool:
        player = self.get(player_id)
        if player is None or player.is_out:
            return False
        player.is_out = True
        player.original_column_order = player.column_order
        return True

    def reinstate(self, player_id: str, at_column_order: Optional[int] = None, *, count_rejoin: bool = True) -> bool:
        player = self.get(player_id)
        if player is None or not player.is_out:
            return False
        if at_column_order is None:
            at_column_order = player.original_column_order
        if at_column_order is None:
            at_column_order = player.column_order
        for other in self.state.players:
            if other.id != player_id and not other.is_out and other.column_order >= at_column_order:
                other.column_order += 1
        player.is_out = False
        player.column_order = at_column_order
        player.original_column_order = None
        if count_rejoin:
            player.rejoin_count += 1
        self.compact()
        return True

    def compact(self) -> None:
        for seat, player in enumerate(self.active()):
            player.column_order = seat


class RotationEngine:
    """Open-card pointer over the active players sorted by seat.

    The stored index is validated against the live roster on every read and
    is never corrected eagerly when the roster changes.
    """

    def __init__(self, state: GameState):
        self.state = state

    def _active(self) -> List[Player]:
        return sorted((p for p in self.state.players if not p.is_out), key=lambda p: p.column_order)

    def _effective_index(self, active: Sequence[Player]) -> int:
        idx = self.state.rotation_index
        return idx if 0 <= idx < len(active) else 0

    def open_card_player(self) -> Optional[Player]:
        active = self._active()
        if not active:
            return None
        return active[self._effective_index(active)]

    def dealer(self) -> Optional[Player]:
        active = self._active()
        if len(active) < 2:
            return None
        return active[self._effective_index(active) - 1]  # -1 wraps to the last seat

    def advance(self) -> bool:
        active = self._active()
        if len(active) < 2:
            return False
        self.state.rotation_index = (self.state.rotation_index + 1) % len(active)
        return True

    def set_open_card_player(self, player_id: str) -> bool:
        active = self._active()
        idx = next((i for i, p in enumerate(active) if p.id == player_id), None)
        if idx is None:
            return False
        self.state.rotation_index = idx
        return True

    def set_dealer(self, player_id: str) -> bool:
        active = self._active()
        idx = next((i for i, p in enumerate(active) if p.id == player_id), None)
        if idx is None:
            return False
        self.state.rotation_index = (idx + 1) % len(active)
        return True
