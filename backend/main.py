from __future__ import annotations

import logging
from typing import Dict, List, Optional

from fastapi import FastAPI, HTTPException, Query, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.schemas import (
    AddPlayerRequest,
    CreateGameRequest,
    EditScoreRequest,
    InitializeGameRequest,
    PlayerRef,
    ReorderPlayersRequest,
    SubmitRoundRequest,
    UpdateSettingsRequest,
)
from app.services.games import create_game, get_game, list_games_summary
from app.services.storage import get_backend
from app.settings import get_settings
from errors import DuplicateNameError, RummyError
from game import GameStateStore
from scoring import suggested_drop_points

settings = get_settings()
logging.basicConfig(level=settings.log_level.upper(), format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

ALLOWED_ORIGINS = settings.allowed_origins()

app = FastAPI(title="Rummy Score Tracker API")
app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
    allow_credentials=True,
)

logger.info("[CORS] allow_origins: %s", ALLOWED_ORIGINS)


@app.on_event("startup")
async def _prepare_storage() -> None:
    get_backend()


@app.exception_handler(RummyError)
async def _rule_error(_request, exc: RummyError):
    status_code = 409 if isinstance(exc, DuplicateNameError) else 400
    return JSONResponse(status_code=status_code, content={"error": type(exc).__name__, "detail": str(exc)})


def _get_game_or_404(game_id: str) -> GameStateStore:
    store = get_game(game_id)
    if not store:
        raise HTTPException(status_code=404, detail="game_not_found")
    return store


def _state(store: GameStateStore) -> dict:
    return store.scoreboard().model_dump(by_alias=True)

# ---------- REST ----------
@app.get("/api/drop-points")
async def drop_points(max_points: int = Query(..., alias="maxPoints", gt=0)):
    return {"maxPoints": max_points, "dropPoints": suggested_drop_points(max_points)}


@app.get("/api/games")
async def games():
    return list_games_summary()


@app.post("/api/games")
async def new_game_record(req: Optional[CreateGameRequest] = None):
    if req and req.game_id and get_game(req.game_id):
        raise HTTPException(status_code=409, detail="game_exists")
    store = create_game(req.game_id if req else None)
    await broadcast_lobby()
    return {"game_id": store.id}


@app.get("/api/games/{game_id}/state")
async def game_state(game_id: str):
    return _state(_get_game_or_404(game_id))


@app.post("/api/games/{game_id}/init")
async def initialize_game(game_id: str, req: InitializeGameRequest):
    store = _get_game_or_404(game_id)
    store.initialize(req.max_points, req.drop_points)
    await broadcast_game(game_id)
    return _state(store)


@app.put("/api/games/{game_id}/settings")
async def update_settings(game_id: str, req: UpdateSettingsRequest):
    store = _get_game_or_404(game_id)
    store.update_settings(req.max_points, req.drop_points)
    await broadcast_game(game_id)
    return _state(store)


@app.post("/api/games/{game_id}/players")
async def add_player(game_id: str, req: AddPlayerRequest):
    store = _get_game_or_404(game_id)
    if store.state.rounds:
        player_id = store.join_mid_game(req.name, req.join_score)
    else:
        player_id = store.add_player(req.name)
    await broadcast_game(game_id)
    return {"player_id": player_id}


@app.delete("/api/games/{game_id}/players/{player_id}")
async def remove_player(game_id: str, player_id: str):
    store = _get_game_or_404(game_id)
    ok = store.remove_player(player_id)
    if ok:
        await broadcast_game(game_id)
    return {"ok": ok}


@app.put("/api/games/{game_id}/players/order")
async def reorder_players(game_id: str, req: ReorderPlayersRequest):
    store = _get_game_or_404(game_id)
    store.reorder_players(req.player_ids)
    await broadcast_game(game_id)
    return _state(store)


@app.post("/api/games/{game_id}/players/{player_id}/rejoin")
async def rejoin_player(game_id: str, player_id: str):
    store = _get_game_or_404(game_id)
    ok = store.rejoin_player(player_id)
    if ok:
        await broadcast_game(game_id)
    return {"ok": ok}


@app.post("/api/games/{game_id}/rounds")
async def submit_round(game_id: str, req: SubmitRoundRequest):
    store = _get_game_or_404(game_id)
    rnd = store.submit_round(req.scores)
    await broadcast_game(game_id)
    return rnd.model_dump(by_alias=True)


@app.patch("/api/games/{game_id}/rounds/{round_id}/scores/{player_id}")
async def edit_score(game_id: str, round_id: int, player_id: str, req: EditScoreRequest):
    store = _get_game_or_404(game_id)
    if get_settings().edit_latest_round_only and round_id != store.most_recent_round_id():
        raise HTTPException(status_code=409, detail="only_latest_round_editable")
    ok = store.edit_score(round_id, player_id, req.score)
    if ok:
        await broadcast_game(game_id)
    return {"ok": ok}


@app.get("/api/games/{game_id}/rounds/{round_id}/scores/{player_id}/check")
async def check_score(game_id: str, round_id: int, player_id: str, score: int = Query(..., ge=0)):
    store = _get_game_or_404(game_id)
    return {"multipleWinners": store.would_create_multiple_winners(round_id, player_id, score)}


@app.delete("/api/games/{game_id}/rounds/{round_id}")
async def delete_round(game_id: str, round_id: int):
    store = _get_game_or_404(game_id)
    ok = store.delete_round(round_id)
    if ok:
        await broadcast_game(game_id)
    return {"ok": ok}


@app.put("/api/games/{game_id}/dealer")
async def set_dealer(game_id: str, req: PlayerRef):
    store = _get_game_or_404(game_id)
    ok = store.set_dealer(req.player_id)
    if ok:
        await broadcast_game(game_id)
    return {"ok": ok}


@app.put("/api/games/{game_id}/open-card")
async def set_open_card(game_id: str, req: PlayerRef):
    store = _get_game_or_404(game_id)
    ok = store.set_open_card_player(req.player_id)
    if ok:
        await broadcast_game(game_id)
    return {"ok": ok}


@app.post("/api/games/{game_id}/open-card/advance")
async def advance_open_card(game_id: str):
    store = _get_game_or_404(game_id)
    ok = store.advance_open_card()
    if ok:
        await broadcast_game(game_id)
    return {"ok": ok}


@app.post("/api/games/{game_id}/new-game")
async def start_new_game(game_id: str):
    store = _get_game_or_404(game_id)
    store.new_game()
    await broadcast_game(game_id)
    return _state(store)


@app.post("/api/games/{game_id}/reset")
async def reset_game(game_id: str):
    store = _get_game_or_404(game_id)
    store.reset()
    await broadcast_game(game_id)
    return _state(store)

# ---------- WebSockets hub ----------
class Hub:
    def __init__(self):
        self.lobby: List[WebSocket] = []
        self.games: Dict[str, List[WebSocket]] = {}

    async def connect_lobby(self, ws: WebSocket):
        await ws.accept()
        self.lobby.append(ws)

    async def connect_game(self, game_id: str, ws: WebSocket):
        await ws.accept()
        self.games.setdefault(game_id, []).append(ws)

    def disconnect(self, ws: WebSocket):
        if ws in self.lobby:
            self.lobby.remove(ws)
        for game_id, sockets in list(self.games.items()):
            if ws in sockets:
                sockets.remove(ws)
            if not sockets:
                self.games.pop(game_id, None)

    async def send_lobby(self, message: dict):
        for ws in list(self.lobby):
            try:
                await ws.send_json(message)
            except RuntimeError:
                self.disconnect(ws)

    async def send_game_event(self, game_id: str, message: dict):
        for ws in list(self.games.get(game_id, [])):
            try:
                await ws.send_json(message)
            except RuntimeError:
                self.disconnect(ws)

hub = Hub()

# ---------- broadcasters ----------
async def broadcast_lobby():
    await hub.send_lobby({"type": "games", "payload": list_games_summary()})


async def broadcast_game(game_id: str):
    store = get_game(game_id)
    if store is None:
        return
    for event in store.drain_events():
        message = {"type": event.type.upper()}
        message.update(event.model_dump(by_alias=True, exclude={"type"}))
        await hub.send_game_event(game_id, message)
    await hub.send_game_event(game_id, {"type": "state", "payload": _state(store)})
    await broadcast_lobby()

# ---------- WS endpoints ----------
def _apply_ws_command(store: GameStateStore, data: dict) -> None:
    t = data.get("type")
    if t == "submit_round":
        store.submit_round(data.get("scores") or [])
    elif t == "advance":
        store.advance_open_card()
    elif t == "set_open_card":
        store.set_open_card_player(data["playerId"])
    elif t == "set_dealer":
        store.set_dealer(data["playerId"])
    elif t == "rejoin":
        store.rejoin_player(data["playerId"])
    else:
        raise ValueError(f"Unknown command: {t}")


@app.websocket("/ws/lobby")
async def ws_lobby(ws: WebSocket):
    await hub.connect_lobby(ws)
    try:
        await ws.send_json({"type": "games", "payload": list_games_summary()})
        while True:
            await ws.receive_text()
    except WebSocketDisconnect:
        hub.disconnect(ws)


@app.websocket("/ws/{game_id}")
async def ws_game(ws: WebSocket, game_id: str):
    if get_game(game_id) is None:
        await ws.close(code=1008, reason="game_not_found")
        return

    await hub.connect_game(game_id, ws)
    try:
        await ws.send_json({"type": "state", "payload": _state(get_game(game_id))})
        while True:
            data = await ws.receive_json()
            store = get_game(game_id)
            if store is None:
                await ws.close(code=1011, reason="game_not_found")
                hub.disconnect(ws)
                break
            try:
                _apply_ws_command(store, data)
            except (KeyError, ValueError) as exc:
                await ws.send_json({"type": "error", "error": str(exc)})
            else:
                await broadcast_game(game_id)
    except WebSocketDisconnect:
        hub.disconnect(ws)
