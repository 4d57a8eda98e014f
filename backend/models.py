from __future__ import annotations

import secrets
import string
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_MAX_POINTS = 201
DEFAULT_DROP_POINTS = 20

_ID_ALPHABET = string.ascii_lowercase + string.digits


def generate_id(length: int = 7) -> str:
    return "".join(secrets.choice(_ID_ALPHABET) for _ in range(length))


class Player(BaseModel):
    id: str = Field(default_factory=generate_id)
    name: str
    is_out: bool = Field(default=False, alias="isOut")
    column_order: int = Field(default=0, alias="columnOrder")
    original_column_order: Optional[int] = Field(default=None, alias="originalColumnOrder")
    rejoin_count: int = Field(default=0, alias="rejoinCount")

    model_config = ConfigDict(populate_by_name=True)


class RoundScore(BaseModel):
    player_id: str = Field(alias="playerId")
    score: int

    model_config = ConfigDict(populate_by_name=True)


class Round(BaseModel):
    id: int
    scores: List[RoundScore] = Field(default_factory=list)
    winner_id: Optional[str] = Field(default=None, alias="winnerId")
    timestamp: int = 0  # ms since epoch

    model_config = ConfigDict(populate_by_name=True)

    def score_for(self, player_id: str) -> Optional[int]:
        for entry in self.scores:
            if entry.player_id == player_id:
                return entry.score
        return None


class GameSettings(BaseModel):
    max_points: int = Field(DEFAULT_MAX_POINTS, alias="maxPoints")
    drop_points: int = Field(DEFAULT_DROP_POINTS, alias="dropPoints")

    model_config = ConfigDict(populate_by_name=True)


class RemovedRoundScore(BaseModel):
    round_id: int = Field(alias="roundId")
    score: int

    model_config = ConfigDict(populate_by_name=True)


class RemovedPlayer(BaseModel):
    player: Player
    scores: List[RemovedRoundScore] = Field(default_factory=list)


class GameState(BaseModel):
    """The persisted snapshot of one game."""

    settings: GameSettings = Field(default_factory=GameSettings)
    players: List[Player] = Field(default_factory=list)
    rounds: List[Round] = Field(default_factory=list)
    rotation_index: int = Field(default=0, alias="currentOpenCardPlayerIndex")
    is_game_started: bool = Field(default=False, alias="isGameStarted")
    is_game_over: bool = Field(default=False, alias="isGameOver")
    game_winner_id: Optional[str] = Field(default=None, alias="gameWinnerId")
    removed_players: List[RemovedPlayer] = Field(default_factory=list, alias="removedPlayers")

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class PlayerTotals(BaseModel):
    total: int
    can_drop: bool = Field(alias="canDrop")
    can_rejoin: bool = Field(alias="canRejoin")
    rejoin_score: int = Field(alias="rejoinScore")

    model_config = ConfigDict(populate_by_name=True)


class PlayerStanding(Player):
    total_score: int = Field(default=0, alias="totalScore")
    can_drop: bool = Field(default=True, alias="canDrop")
    can_rejoin: bool = Field(default=False, alias="canRejoin")
    rejoin_score: int = Field(default=1, alias="rejoinScore")


class GameEvent(BaseModel):
    type: Literal["round_won", "game_won"]
    player_id: str = Field(alias="playerId")
    name: str
    round_id: Optional[int] = Field(default=None, alias="roundId")

    model_config = ConfigDict(populate_by_name=True)


class Scoreboard(BaseModel):
    game_id: str = Field(alias="gameId")
    settings: GameSettings
    is_game_started: bool = Field(alias="isGameStarted")
    is_game_over: bool = Field(alias="isGameOver")
    game_winner_id: Optional[str] = Field(default=None, alias="gameWinnerId")
    players: List[PlayerStanding] = Field(default_factory=list)
    active_players: List[PlayerStanding] = Field(default_factory=list, alias="activePlayers")
    out_players: List[PlayerStanding] = Field(default_factory=list, alias="outPlayers")
    rounds: List[Round] = Field(default_factory=list)
    dealer_id: Optional[str] = Field(default=None, alias="dealerId")
    open_card_player_id: Optional[str] = Field(default=None, alias="openCardPlayerId")
    most_recent_round_id: Optional[int] = Field(default=None, alias="mostRecentRoundId")
    rejoin_eligible: List[str] = Field(default_factory=list, alias="rejoinEligible")
    highest_active_total: int = Field(default=0, alias="highestActiveTotal")
    join_score: int = Field(default=0, alias="joinScore")
    totals: Dict[str, int] = Field(default_factory=dict)

    model_config = ConfigDict(populate_by_name=True)
