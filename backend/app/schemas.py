from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, NonNegativeInt, PositiveInt

from models import RoundScore


class CreateGameRequest(BaseModel):
    game_id: Optional[str] = Field(default=None, alias="gameId", pattern=r"^[A-Za-z0-9_-]{1,64}$")

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class InitializeGameRequest(BaseModel):
    max_points: PositiveInt = Field(alias="maxPoints")
    drop_points: Optional[NonNegativeInt] = Field(default=None, alias="dropPoints")

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class UpdateSettingsRequest(BaseModel):
    max_points: Optional[PositiveInt] = Field(default=None, alias="maxPoints")
    drop_points: Optional[NonNegativeInt] = Field(default=None, alias="dropPoints")

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class AddPlayerRequest(BaseModel):
    name: str = Field(min_length=1, max_length=40)
    join_score: Optional[NonNegativeInt] = Field(default=None, alias="joinScore")

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class ReorderPlayersRequest(BaseModel):
    player_ids: List[str] = Field(alias="playerIds")

    model_config = ConfigDict(populate_by_name=True)


class SubmitRoundRequest(BaseModel):
    scores: List[RoundScore]


class EditScoreRequest(BaseModel):
    score: NonNegativeInt


class PlayerRef(BaseModel):
    player_id: str = Field(alias="playerId")

    model_config = ConfigDict(populate_by_name=True)
