"""Replicated world-edit actions.

The action set is closed: every variant below is a frozen pydantic model with
a literal ``type`` tag, and ``Action`` is their discriminated union. Wire
payloads are flat JSON objects ``{"type": ..., **fields}`` using camelCase
field names, optionally extended with ``timestamp`` and ``playerId`` by the
channel provider.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

SELECT_TOOL = "select"
BULLDOZE_TOOL = "bulldoze"


class _ActionModel(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)


class Placement(_ActionModel):
    x: int
    y: int
    tool: str = Field(min_length=1)


class Place(_ActionModel):
    type: Literal["place"] = "place"
    x: int
    y: int
    tool: str = Field(min_length=1)

    def placement(self) -> Placement:
        return Placement(x=self.x, y=self.y, tool=self.tool)


class PlaceBatch(_ActionModel):
    type: Literal["placeBatch"] = "placeBatch"
    placements: tuple[Placement, ...] = Field(min_length=1)


class Bulldoze(_ActionModel):
    type: Literal["bulldoze"] = "bulldoze"
    x: int
    y: int


class StartCoasterBuild(_ActionModel):
    type: Literal["startCoasterBuild"] = "startCoasterBuild"
    coaster_type: str = Field(alias="coasterType", min_length=1)
    coaster_id: str = Field(alias="coasterId", min_length=1)


class FinishCoasterBuild(_ActionModel):
    type: Literal["finishCoasterBuild"] = "finishCoasterBuild"


class CancelCoasterBuild(_ActionModel):
    type: Literal["cancelCoasterBuild"] = "cancelCoasterBuild"


class SetSpeed(_ActionModel):
    type: Literal["setSpeed"] = "setSpeed"
    speed: Literal[0, 1, 2, 3]


class SetParkSettings(_ActionModel):
    type: Literal["setParkSettings"] = "setParkSettings"
    settings: dict[str, Any]


Action = Annotated[
    Union[
        Place,
        PlaceBatch,
        Bulldoze,
        StartCoasterBuild,
        FinishCoasterBuild,
        CancelCoasterBuild,
        SetSpeed,
        SetParkSettings,
    ],
    Field(discriminator="type"),
]

ACTION_TYPES = frozenset(
    {
        "place",
        "placeBatch",
        "bulldoze",
        "startCoasterBuild",
        "finishCoasterBuild",
        "cancelCoasterBuild",
        "setSpeed",
        "setParkSettings",
    }
)

_action_adapter: TypeAdapter[Action] = TypeAdapter(Action)


@dataclass(frozen=True)
class RemoteAction:
    action: Action
    timestamp: float
    player_id: str


def parse_action(payload: dict[str, Any]) -> Action:
    """Validate a wire payload into an action. Raises ``pydantic.ValidationError``."""
    return _action_adapter.validate_python(payload)


def action_to_wire(action: Action) -> dict[str, Any]:
    return action.model_dump(mode="json", by_alias=True)


def action_key(action: Action) -> str:
    """Stable serialized form used to compare two actions."""
    return json.dumps(action_to_wire(action), sort_keys=True, separators=(",", ":"))


def parse_remote_action(message: dict[str, Any]) -> RemoteAction:
    fields = {key: value for key, value in message.items() if key not in ("timestamp", "playerId")}
    return RemoteAction(
        action=parse_action(fields),
        timestamp=float(message.get("timestamp", 0)),
        player_id=str(message.get("playerId", "")),
    )


def remote_action_to_wire(action: Action, timestamp: float, player_id: str) -> dict[str, Any]:
    message = action_to_wire(action)
    message["timestamp"] = timestamp
    message["playerId"] = player_id
    return message
