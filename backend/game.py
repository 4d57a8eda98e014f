from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterator, List, Optional, Sequence, Set

from pydantic import ValidationError

from errors import InvalidRoundError, InvalidSettingsError
from ledger import RoundLedger, now_ms, validate_score
from models import (
    GameEvent,
    GameSettings,
    GameState,
    Player,
    PlayerStanding,
    PlayerTotals,
    Round,
    RoundScore,
    Scoreboard,
)
from scoring import (
    highest_active_total,
    join_score,
    player_totals,
    suggested_drop_points,
    totals_and_flags,
)
from seating import PlayerRegistry, RotationEngine

logger = logging.getLogger(__name__)

DEFAULT_KEY_PREFIX = "rummy_game_state"


@dataclass
class _Draft:
    """Working copy of a snapshot while one operation runs."""

    state: GameState
    eligible: Set[str]
    clock: Callable[[], int]
    events: List[GameEvent] = field(default_factory=list)

    def registry(self) -> PlayerRegistry:
        return PlayerRegistry(self.state)

    def ledger(self) -> RoundLedger:
        return RoundLedger(self.state.rounds, clock=self.clock)

    def rotation(self) -> RotationEngine:
        return RotationEngine(self.state)

    def emit(self, event_type: str, player: Optional[Player], round_id: Optional[int] = None) -> None:
        if player is None:
            return
        self.events.append(GameEvent(type=event_type, player_id=player.id, name=player.name, round_id=round_id))


class GameStateStore:
    def __init__(
        self,
        game_id: str = "default",
        *,
        backend=None,
        key: Optional[str] = None,
        state: Optional[GameState] = None,
        clock: Callable[[], int] = now_ms,
    ):
        self.id = game_id
        self.backend = backend
        self.key = key or f"{DEFAULT_KEY_PREFIX}:{game_id}"
        self.state = state or GameState()
        self.rejoin_eligible: Set[str] = set()
        self.version = 0
        self.events: List[GameEvent] = []
        self._clock = clock
        self._totals_cache: Optional[tuple[int, Dict[str, PlayerTotals]]] = None

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------
    @classmethod
    def load(cls, game_id: str, backend, key: Optional[str] = None, **kwargs) -> "GameStateStore":
        store = cls(game_id, backend=backend, key=key, **kwargs)
        try:
            payload = backend.get(store.key)
        except Exception:
            logger.exception("Failed to load game %s, starting from defaults", game_id)
            return store
        if not payload:
            return store
        try:
            store.state = GameState.model_validate_json(payload)
        except ValidationError as exc:
            logger.warning("Discarding unreadable snapshot for game %s: %s", game_id, exc)
        return store

    def _persist(self) -> None:
        if self.backend is None:
            return
        try:
            self.backend.set(self.key, self.state.model_dump_json(by_alias=True))
        except Exception:
            # in-memory state stays authoritative; the next mutation retries
            logger.exception("Failed to persist game %s (version %d)", self.id, self.version)

    def save(self) -> None:
        self._persist()

    @contextmanager
    def _mutation(self, action: str) -> Iterator[_Draft]:
        draft = _Draft(
            state=self.state.model_copy(deep=True),
            eligible=set(self.rejoin_eligible),
            clock=self._clock,
        )
        yield draft
        self.state = draft.state
        self.rejoin_eligible = draft.eligible
        self.events.extend(draft.events)
        self.version += 1
        logger.debug("Game %s: %s -> version %d", self.id, action, self.version)
        self._persist()

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------
    def initialize(self, max_points: int, drop_points: Optional[int] = None) -> GameSettings:
        settings = self._validated_settings(max_points, drop_points)
        with self._mutation("initialize") as d:
            d.state.settings = settings
            d.state.is_game_started = True
            if d.state.rounds:
                self._recompute_statuses(d)
        logger.info("Game %s initialized: max=%d drop=%d", self.id, settings.max_points, settings.drop_points)
        return settings

    def update_settings(self, max_points: Optional[int] = None, drop_points: Optional[int] = None) -> GameSettings:
        current = self.state.settings
        settings = self._validated_settings(
            current.max_points if max_points is None else max_points,
            current.drop_points if drop_points is None else drop_points,
        )
        with self._mutation("update_settings") as d:
            d.state.settings = settings
            self._recompute_statuses(d)
        return settings

    @staticmethod
    def _validated_settings(max_points: int, drop_points: Optional[int]) -> GameSettings:
        if isinstance(max_points, bool) or not isinstance(max_points, int) or max_points <= 0:
            raise InvalidSettingsError(f"maxPoints must be a positive integer, got {max_points!r}")
        if drop_points is None:
            drop_points = suggested_drop_points(max_points)
        if isinstance(drop_points, bool) or not isinstance(drop_points, int) or drop_points < 0:
            raise InvalidSettingsError(f"dropPoints must be a non-negative integer, got {drop_points!r}")
        return GameSettings(max_points=max_points, drop_points=drop_points)

    def needs_setup(self) -> bool:
        return not self.state.is_game_started

    # ------------------------------------------------------------------
    # Players
    # ------------------------------------------------------------------
    def add_player(self, name: str) -> str:
        restoring = PlayerRegistry(self.state).find_tombstone(name or "") is not None
        with self._mutation("add_player") as d:
            player_id = d.registry().add(name)
            if restoring:
                self._recompute_statuses(d)
        return player_id

    def join_mid_game(self, name: str, join_score: Optional[int] = None) -> str:
        """Add a player after rounds exist, seeding the last round with a join score.

        The joining player receives the open card. A player restored from a
        tombstone keeps their history instead of a join score.
        """
        if join_score is not None:
            validate_score(join_score)
        restoring = PlayerRegistry(self.state).find_tombstone(name or "") is not None
        score = self.join_score() if join_score is None else join_score
        with self._mutation("join_mid_game") as d:
            player_id = d.registry().add(name)
            if d.state.rounds:
                if not restoring:
                    if score > 0:
                        d.ledger().append_to_last_round(player_id, score)
                    d.rotation().set_open_card_player(player_id)
                self._recompute_statuses(d)
        if self.state.rounds and not restoring:
            logger.info("Game %s: %s joined mid-game with %d points", self.id, name.strip(), score)
        return player_id

    def remove_player(self, player_id: str) -> bool:
        if PlayerRegistry(self.state).get(player_id) is None:
            return False
        with self._mutation("remove_player") as d:
            d.registry().remove(player_id)
            d.eligible.discard(player_id)
            self._check_game_over(d)
        return True

    def reorder_players(self, ordered_ids: Sequence[str]) -> None:
        with self._mutation("reorder_players") as d:
            d.registry().reorder(list(ordered_ids))

    def is_name_taken(self, name: str) -> bool:
        return PlayerRegistry(self.state).is_name_taken(name)

    # ------------------------------------------------------------------
    # Rounds
    # ------------------------------------------------------------------
    def submit_round(self, scores: Sequence[RoundScore | dict]) -> Round:
        if not self.state.is_game_started:
            raise InvalidRoundError("Game has not been set up")
        if self.state.is_game_over:
            raise InvalidRoundError("Game is over")
        with self._mutation("submit_round") as d:
            d.eligible.clear()
            registry = d.registry()
            rnd = d.ledger().append(scores, expected_ids=[p.id for p in registry.active()])
            d.emit("round_won", registry.get(rnd.winner_id), rnd.id)
            went_out = self._eliminate_over_ceiling(d)
            d.eligible.update(went_out)
            self._check_game_over(d)
            d.rotation().advance()
        logger.info(
            "Game %s: round %d committed, winner=%s, out=%s",
            self.id,
            rnd.id,
            rnd.winner_id,
            went_out or "-",
        )
        return rnd

    def edit_score(self, round_id: int, player_id: str, new_score: int) -> bool:
        validate_score(new_score)
        with self._mutation("edit_score") as d:
            changed = d.ledger().edit_score(round_id, player_id, new_score)
            if changed:
                self._recompute_statuses(d)
        return changed

    def delete_round(self, round_id: int) -> bool:
        if RoundLedger(self.state.rounds).get(round_id) is None:
            return False
        with self._mutation("delete_round") as d:
            d.ledger().delete_round(round_id)
            d.registry().forget_round(round_id)
            d.eligible.clear()
            self._recompute_statuses(d)
        logger.info("Game %s: round %d deleted, %d rounds remain", self.id, round_id, len(self.state.rounds))
        return True

    def most_recent_round_id(self) -> Optional[int]:
        return RoundLedger(self.state.rounds).most_recent_round_id()

    def would_create_multiple_winners(self, round_id: int, player_id: str, new_score: int) -> bool:
        return RoundLedger(self.state.rounds).would_create_multiple_winners(round_id, player_id, new_score)

    def player_score(self, round_id: int, player_id: str) -> Optional[int]:
        return RoundLedger(self.state.rounds).score_for(round_id, player_id)

    def player_total(self, player_id: str) -> int:
        return RoundLedger(self.state.rounds).total_for(player_id)

    # ------------------------------------------------------------------
    # Elimination and rejoin
    # ------------------------------------------------------------------
    def _eliminate_over_ceiling(self, d: _Draft) -> List[str]:
        registry = d.registry()
        totals = player_totals(d.state.rounds)
        went_out: List[str] = []
        for player in registry.active():
            if totals.get(player.id, 0) > d.state.settings.max_points:
                registry.mark_out(player.id)
                went_out.append(player.id)
        if went_out:
            registry.compact()
        return went_out

    def _recompute_statuses(self, d: _Draft) -> None:
        """Re-derive every player's out flag from their current total.

        Players pushed over the ceiling go out; players brought back under it
        return to their saved seat without counting as a rejoin.
        """
        registry = d.registry()
        totals = player_totals(d.state.rounds)
        limit = d.state.settings.max_points

        for player in registry.active():
            if totals.get(player.id, 0) > limit:
                registry.mark_out(player.id)
                logger.info("Game %s: %s is out after recomputation", self.id, player.name)
        registry.compact()

        returning = [p for p in registry.out() if totals.get(p.id, 0) <= limit]
        returning.sort(key=lambda p: p.original_column_order if p.original_column_order is not None else p.column_order)
        for player in returning:
            registry.reinstate(player.id, count_rejoin=False)
            logger.info("Game %s: %s is back in after recomputation", self.id, player.name)
        registry.compact()

        d.eligible &= {p.id for p in registry.out()}
        self._check_game_over(d)

    def _check_game_over(self, d: _Draft) -> None:
        state = d.state
        was_over = state.is_game_over
        active = d.registry().active()
        if not state.rounds or len(active) >= 2:
            state.is_game_over = False
            state.game_winner_id = None
            return
        state.is_game_over = True
        state.game_winner_id = active[0].id if len(active) == 1 else None
        if not was_over:
            logger.info("Game %s over, winner=%s", self.id, state.game_winner_id)
            if active:
                d.emit("game_won", active[0])

    def rejoin_player(self, player_id: str) -> bool:
        standing = self._totals().get(player_id)
        if standing is None or not standing.can_rejoin or not self.state.rounds:
            logger.debug("Game %s: rejoin ignored for %s", self.id, player_id)
            return False
        with self._mutation("rejoin_player") as d:
            ledger = d.ledger()
            registry = d.registry()
            totals = player_totals(d.state.rounds)
            target = highest_active_total(d.state.players, totals) + 1
            current = totals.get(player_id, 0)
            last_score = ledger.last().score_for(player_id) or 0
            ledger.append_to_last_round(player_id, target - current + last_score)
            registry.reinstate(player_id)
            d.rotation().set_open_card_player(player_id)
            d.state.is_game_over = False
            d.state.game_winner_id = None
            d.eligible.discard(player_id)
        logger.info("Game %s: %s rejoined with %d points", self.id, player_id, target)
        return True

    # ------------------------------------------------------------------
    # Rotation
    # ------------------------------------------------------------------
    def dealer(self) -> Optional[Player]:
        return RotationEngine(self.state).dealer()

    def open_card_player(self) -> Optional[Player]:
        return RotationEngine(self.state).open_card_player()

    def advance_open_card(self) -> bool:
        if len(PlayerRegistry(self.state).active()) < 2:
            return False
        with self._mutation("advance_open_card") as d:
            d.rotation().advance()
        return True

    def _is_active(self, player_id: str) -> bool:
        return any(p.id == player_id for p in PlayerRegistry(self.state).active())

    def set_open_card_player(self, player_id: str) -> bool:
        if not self._is_active(player_id):
            return False
        with self._mutation("set_open_card_player") as d:
            d.rotation().set_open_card_player(player_id)
        return True

    def set_dealer(self, player_id: str) -> bool:
        if not self._is_active(player_id):
            return False
        with self._mutation("set_dealer") as d:
            d.rotation().set_dealer(player_id)
        return True

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def new_game(self) -> None:
        """Clear every round but keep players, seating and settings."""
        with self._mutation("new_game") as d:
            registry = d.registry()
            for seat, player in enumerate(registry.active() + registry.out()):
                player.is_out = False
                player.column_order = seat
                player.original_column_order = None
            d.state.rounds = []
            d.state.removed_players = []
            d.state.rotation_index = 0
            d.state.is_game_over = False
            d.state.game_winner_id = None
            d.eligible.clear()
        logger.info("Game %s: new game with %d players", self.id, len(self.state.players))

    def reset(self) -> None:
        self.state = GameState()
        self.rejoin_eligible = set()
        self.events = []
        self.version += 1
        if self.backend is not None:
            try:
                self.backend.delete(self.key)
            except Exception:
                logger.exception("Failed to delete stored game %s", self.id)
        logger.info("Game %s reset", self.id)

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------
    def _totals(self) -> Dict[str, PlayerTotals]:
        if self._totals_cache is None or self._totals_cache[0] != self.version:
            flags = totals_and_flags(
                self.state.players, self.state.rounds, self.state.settings, self.rejoin_eligible
            )
            self._totals_cache = (self.version, flags)
        return self._totals_cache[1]

    def highest_active_total(self) -> int:
        return highest_active_total(self.state.players, player_totals(self.state.rounds))

    def join_score(self) -> int:
        return join_score(self.state.players, player_totals(self.state.rounds), self.state.settings.max_points)

    def standings(self) -> List[PlayerStanding]:
        totals = self._totals()
        standings: List[PlayerStanding] = []
        for player in self.state.players:
            flags = totals[player.id]
            standings.append(
                PlayerStanding(
                    **player.model_dump(),
                    total_score=flags.total,
                    can_drop=flags.can_drop,
                    can_rejoin=flags.can_rejoin,
                    rejoin_score=flags.rejoin_score,
                )
            )
        return standings

    def active_standings(self) -> List[PlayerStanding]:
        return sorted((s for s in self.standings() if not s.is_out), key=lambda s: s.column_order)

    def out_standings(self) -> List[PlayerStanding]:
        return [s for s in self.standings() if s.is_out]

    def drain_events(self) -> List[GameEvent]:
        events, self.events = self.events, []
        return events

    def scoreboard(self) -> Scoreboard:
        standings = self.standings()
        dealer = self.dealer()
        open_card = self.open_card_player()
        return Scoreboard(
            game_id=self.id,
            settings=self.state.settings,
            is_game_started=self.state.is_game_started,
            is_game_over=self.state.is_game_over,
            game_winner_id=self.state.game_winner_id,
            players=standings,
            active_players=sorted((s for s in standings if not s.is_out), key=lambda s: s.column_order),
            out_players=[s for s in standings if s.is_out],
            rounds=list(self.state.rounds),
            dealer_id=dealer.id if dealer else None,
            open_card_player_id=open_card.id if open_card else None,
            most_recent_round_id=self.most_recent_round_id(),
            rejoin_eligible=sorted(self.rejoin_eligible),
            highest_active_total=self.highest_active_total(),
            join_score=self.join_score(),
            totals={s.id: s.total_score for s in standings},
        )
