"""
WebSocket message models.

Inbound messages form a closed tagged union discriminated on ``type``;
outbound messages are a parallel set of models. Field names are snake_case
in Python and camelCase on the wire.
"""

from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel

from cards import Card

RequestId = Optional[Union[int, str]]


class WireModel(BaseModel):
    """Base model using camelCase aliases on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# =============================================================================
# Game configuration
# =============================================================================

class PlayerConfig(WireModel):
    name: str
    is_bot: bool = False


class GameConfig(WireModel):
    """Configuration of one game: its name, hand size and seating order."""

    game_name: str
    cards_per_hand: int
    players: list[PlayerConfig]


# =============================================================================
# Inbound messages
# =============================================================================

class InboundBase(WireModel):
    request_id: RequestId = None


class ConfigGameMessage(InboundBase):
    type: Literal["ConfigGame"]
    config: Optional[GameConfig] = None


class JoinGameMessage(InboundBase):
    type: Literal["JoinGame"]
    game_name: str
    player_name: str


class LeaveGameMessage(InboundBase):
    type: Literal["LeaveGame"]
    game_name: str
    player_name: str


class AbortGameMessage(InboundBase):
    type: Literal["AbortGame"]
    game_name: str


class DeleteGameMessage(InboundBase):
    type: Literal["DeleteGame"]
    game_name: str


class HandDoneMessage(InboundBase):
    """End of a player's turn: either the new hand or a request to draw."""

    type: Literal["HandDone"]
    game_name: str
    player_name: str
    hand_number: int
    board: list[Any]
    hand: Optional[list[Card]] = None
    draw_card: bool = False


class StateUpdateMessage(InboundBase):
    """Mid-turn board/bucket/hand change from the current player."""

    type: Literal["StateUpdate"]
    game_name: str
    player_name: str
    hand_number: int
    board: Optional[list[Any]] = None
    buckets: Optional[list[Any]] = None
    hand: Optional[list[Card]] = None


InboundMessage = Annotated[
    Union[
        ConfigGameMessage,
        JoinGameMessage,
        LeaveGameMessage,
        AbortGameMessage,
        DeleteGameMessage,
        HandDoneMessage,
        StateUpdateMessage,
    ],
    Field(discriminator="type"),
]

INBOUND_TYPES = (
    ConfigGameMessage,
    JoinGameMessage,
    LeaveGameMessage,
    AbortGameMessage,
    DeleteGameMessage,
    HandDoneMessage,
    StateUpdateMessage,
)

_inbound_adapter = TypeAdapter(InboundMessage)


def parse_inbound(data: Any) -> InboundMessage:
    """
    Decode a raw JSON object into its inbound message model.

    Raises:
        pydantic.ValidationError: Unknown type or malformed fields.
    """
    return _inbound_adapter.validate_python(data)


# =============================================================================
# Outbound messages
# =============================================================================

class GameStatus(str, Enum):
    """Externally visible status of a game, highest priority first."""

    PAUSED = "Paused"
    ACTIVE = "Active"
    CONNECTING = "Connecting"
    IDLE = "Idle"


class StatusMessage(WireModel):
    type: Literal["Status"] = "Status"
    request_id: RequestId = None
    status: Literal["Ok", "Error"]
    msg: str
    player_name: Optional[str] = None


class PlayerSummary(WireModel):
    name: str
    is_bot: bool
    connected: bool


class GameSummary(WireModel):
    game_name: str
    cards_per_hand: int
    players: list[PlayerSummary]
    status: GameStatus


class GameConfigsMessage(WireModel):
    type: Literal["GameConfigs"] = "GameConfigs"
    configs: list[GameSummary]


class PlayerInfo(WireModel):
    name: str
    hand: list[Card]
    is_bot: bool


class UpdateGameStateMessage(WireModel):
    type: Literal["UpdateGameState"] = "UpdateGameState"
    version: int
    hand_number: int
    board: list[Any]
    buckets: list[Any]
    player_info: list[PlayerInfo]


class PlayHandMessage(WireModel):
    type: Literal["PlayHand"] = "PlayHand"
    player_name: str
    is_bot: bool
    hand: list[Card]
    hand_number: int


OutboundMessage = Union[
    StatusMessage,
    GameConfigsMessage,
    UpdateGameStateMessage,
    PlayHandMessage,
]


def to_wire(message: OutboundMessage) -> dict:
    """Serialize an outbound message to a JSON-ready dict."""
    return message.model_dump(mode="json", by_alias=True)


def ok_status(request_id: RequestId, player_name: Optional[str] = None) -> StatusMessage:
    return StatusMessage(request_id=request_id, status="Ok", msg="Success", player_name=player_name)


def error_status(request_id: RequestId, msg: str, player_name: Optional[str] = None) -> StatusMessage:
    return StatusMessage(request_id=request_id, status="Error", msg=msg, player_name=player_name)
