from __future__ import annotations

import logging
import uuid
from typing import Dict, List, Optional

from app.services.storage import get_backend
from app.settings import get_settings
from game import GameStateStore

logger = logging.getLogger(__name__)

GAMES: Dict[str, GameStateStore] = {}


def new_game_id() -> str:
    return str(uuid.uuid4())[:8]


def get_game(game_id: str, *, create: bool = False) -> Optional[GameStateStore]:
    """Return the live store for ``game_id``, loading its snapshot on first use.

    Without ``create`` an id that has never been saved returns None.
    """
    store = GAMES.get(game_id)
    if store is not None:
        return store
    backend = get_backend()
    key = f"{get_settings().snapshot_key_prefix}:{game_id}"
    if not create:
        try:
            exists = backend.get(key) is not None
        except Exception:
            logger.exception("Snapshot lookup failed for game %s", game_id)
            exists = False
        if not exists:
            return None
    store = GameStateStore.load(game_id, backend, key=key)
    GAMES[game_id] = store
    logger.info("Loaded game %s (%d players, %d rounds)", game_id, len(store.state.players), len(store.state.rounds))
    return store


def create_game(game_id: Optional[str] = None) -> GameStateStore:
    game_id = game_id or new_game_id()
    store = get_game(game_id, create=True)
    # write the default snapshot so the id survives a restart
    store.save()
    return store


def list_games_summary() -> List[dict]:
    res = []
    for store in GAMES.values():
        state = store.state
        res.append(
            {
                "game_id": store.id,
                "players": len(state.players),
                "active_players": sum(1 for p in state.players if not p.is_out),
                "rounds": len(state.rounds),
                "started": state.is_game_started,
                "game_over": state.is_game_over,
            }
        )
    return res
