"""FastAPI relay: room channels over WebSocket and persisted room records."""

from __future__ import annotations

import json
import logging
import time
from typing import Any

from fastapi import Depends, FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from pydantic import BaseModel, Field

from coopsync.server.config import load_settings
from coopsync.server.models import RoomRecord
from coopsync.server.store import RoomStore, create_store
from coopsync.sync.errors import ConstraintError
from coopsync.sync.identifiers import is_valid_room_code

logger = logging.getLogger(__name__)

ROOM_CODE_PATTERN = r"^[A-Za-z0-9]{6}$"


class CreateRoomRequest(BaseModel):
    room_code: str = Field(pattern=ROOM_CODE_PATTERN)
    park_name: str = Field(min_length=1, max_length=200)
    game_state: str = Field(min_length=1)


class UpdateStateRequest(BaseModel):
    game_state: str = Field(min_length=1)


class UpdatePlayersRequest(BaseModel):
    player_count: int = Field(ge=0)


class RoomResponse(BaseModel):
    room_code: str
    park_name: str
    game_state: str
    player_count: int
    created_at: str
    updated_at: str


def _to_response(record: RoomRecord) -> RoomResponse:
    return RoomResponse(
        room_code=record.room_code,
        park_name=record.park_name,
        game_state=record.game_state,
        player_count=record.player_count,
        created_at=record.created_at,
        updated_at=record.updated_at,
    )


class RoomChannelHub:
    """Relays messages between the peers connected to each room."""

    def __init__(self) -> None:
        self._connections: dict[str, dict[str, tuple[WebSocket, dict[str, Any]]]] = {}

    def players(self, room_code: str) -> list[dict[str, Any]]:
        return [player for _, player in self._connections.get(room_code, {}).values()]

    async def connect(self, room_code: str, player: dict[str, Any], websocket: WebSocket) -> None:
        await websocket.accept()
        self._connections.setdefault(room_code, {})[player["id"]] = (websocket, player)
        await self.broadcast_presence(room_code)

    def disconnect(self, room_code: str, player_id: str, websocket: WebSocket | None = None) -> None:
        connections = self._connections.get(room_code)
        if connections is None or player_id not in connections:
            return
        if websocket is not None and connections[player_id][0] is not websocket:
            return
        del connections[player_id]
        if not connections:
            self._connections.pop(room_code, None)

    async def broadcast_presence(self, room_code: str) -> None:
        message = json.dumps({"type": "presence", "players": self.players(room_code)})
        await self._send_all(room_code, message, exclude=None, target=None)

    async def relay(self, room_code: str, sender_id: str, text: str) -> None:
        try:
            message = json.loads(text)
        except ValueError:
            logger.warning("Dropping non-JSON frame from %s in room %s", sender_id, room_code)
            return
        if not isinstance(message, dict):
            logger.warning("Dropping non-object frame from %s in room %s", sender_id, room_code)
            return
        target = message.get("to")
        await self._send_all(room_code, text, exclude=sender_id, target=target if isinstance(target, str) else None)

    async def _send_all(self, room_code: str, text: str, exclude: str | None, target: str | None) -> None:
        stale_players: list[str] = []
        for player_id, (websocket, _) in list(self._connections.get(room_code, {}).items()):
            if player_id == exclude or (target is not None and player_id != target):
                continue
            try:
                await websocket.send_text(text)
            except (RuntimeError, WebSocketDisconnect):
                stale_players.append(player_id)
        if not stale_players:
            return
        for player_id in stale_players:
            logger.info("Dropping stale connection for %s in room %s", player_id, room_code)
            self.disconnect(room_code=room_code, player_id=player_id)
        await self.broadcast_presence(room_code)


def _default_store() -> RoomStore:
    settings = load_settings()
    return create_store(database_url=settings.database_url, max_state_bytes=settings.max_state_bytes)


def create_app(store: RoomStore | None = None) -> FastAPI:
    app = FastAPI(title="Co-op Park Relay", version="0.1.0")
    room_store = store if store is not None else _default_store()
    hub = RoomChannelHub()
    app.state.channel_hub = hub

    def get_store() -> RoomStore:
        return room_store

    @app.post("/api/rooms", response_model=RoomResponse, status_code=201)
    def create_room(payload: CreateRoomRequest, local_store: RoomStore = Depends(get_store)) -> RoomResponse:
        try:
            record = local_store.create_room(
                room_code=payload.room_code,
                park_name=payload.park_name,
                game_state=payload.game_state,
            )
        except ConstraintError as exc:
            raise HTTPException(status_code=413, detail=str(exc)) from exc
        if record is None:
            raise HTTPException(status_code=409, detail="Room code already in use")
        return _to_response(record)

    @app.get("/api/rooms/{room_code}", response_model=RoomResponse)
    def get_room(room_code: str, local_store: RoomStore = Depends(get_store)) -> RoomResponse:
        record = local_store.get_room(room_code)
        if record is None:
            raise HTTPException(status_code=404, detail="Room not found")
        return _to_response(record)

    @app.put("/api/rooms/{room_code}/state", response_model=RoomResponse)
    def update_state(
        room_code: str,
        payload: UpdateStateRequest,
        local_store: RoomStore = Depends(get_store),
    ) -> RoomResponse:
        try:
            record = local_store.update_state(room_code=room_code, game_state=payload.game_state)
        except ConstraintError as exc:
            raise HTTPException(status_code=413, detail=str(exc)) from exc
        if record is None:
            raise HTTPException(status_code=404, detail="Room not found")
        return _to_response(record)

    @app.put("/api/rooms/{room_code}/players", response_model=RoomResponse)
    def update_players(
        room_code: str,
        payload: UpdatePlayersRequest,
        local_store: RoomStore = Depends(get_store),
    ) -> RoomResponse:
        record = local_store.update_player_count(room_code=room_code, player_count=payload.player_count)
        if record is None:
            raise HTTPException(status_code=404, detail="Room not found")
        return _to_response(record)

    @app.websocket("/ws/rooms/{room_code}")
    async def room_ws(websocket: WebSocket, room_code: str) -> None:
        code = room_code.upper()
        player_id = websocket.query_params.get("player_id")
        if not is_valid_room_code(code) or not player_id:
            await websocket.close(code=1008)
            return

        player = {
            "id": player_id,
            "name": websocket.query_params.get("name") or "Player",
            "color": websocket.query_params.get("color") or "#888888",
            "joinedAt": time.time() * 1000,
        }
        try:
            await hub.connect(room_code=code, player=player, websocket=websocket)
            while True:
                text = await websocket.receive_text()
                await hub.relay(room_code=code, sender_id=player_id, text=text)
        except WebSocketDisconnect:
            logger.debug("Player %s left room %s", player_id, code)
        finally:
            hub.disconnect(room_code=code, player_id=player_id, websocket=websocket)
            await hub.broadcast_presence(code)

    return app


app = create_app()
