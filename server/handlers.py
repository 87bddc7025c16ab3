"""WebSocket message handlers for the card table server.

Each handler corresponds to a single inbound message type. Handlers are
dispatched via the HANDLERS dict by the MessageRouter, which runs them one
at a time from a single queue so no two handlers ever interleave.

Every inbound message gets exactly one Status reply: handlers may reply
themselves, otherwise the router replies Ok on return or Error when a
GameError escapes.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Optional

from pydantic import ValidationError

from connections import Connection
from errors import GameError, GameInvariantError, StorageError
from logging_config import connection_id_var, game_name_var, player_name_var
from messages import (
    INBOUND_TYPES,
    AbortGameMessage,
    ConfigGameMessage,
    DeleteGameMessage,
    HandDoneMessage,
    InboundMessage,
    JoinGameMessage,
    LeaveGameMessage,
    StateUpdateMessage,
    error_status,
    ok_status,
    parse_inbound,
)
from registry import GameRegistry

logger = logging.getLogger(__name__)


@dataclass
class MessageContext:
    """State tracked while handling one inbound message."""

    connection: Connection
    message: InboundMessage
    replied: bool = False

    @property
    def player_name(self) -> Optional[str]:
        return getattr(self.message, "player_name", None)

    async def reply_ok(self) -> None:
        await self._reply(ok_status(self.message.request_id, self.player_name))

    async def reply_error(self, msg: str) -> None:
        await self._reply(error_status(self.message.request_id, msg, self.player_name))

    async def _reply(self, status) -> None:
        if self.replied:
            logger.warning(f"Dropping second status for {self.message.type}: {status.msg}")
            return
        self.replied = True
        await self.connection.send(status)


# ---------------------------------------------------------------------------
# Game configuration handlers
# ---------------------------------------------------------------------------

async def handle_config_game(msg: ConfigGameMessage, ctx: MessageContext, *, registry: GameRegistry) -> None:
    game = registry.configure(msg.config)
    failure = None
    try:
        await registry.save_config(game)
    except StorageError as e:
        failure = e
    await registry.broadcast_game_configs()

    # The new config is live in memory even when the save failed
    if failure:
        await ctx.reply_error(str(failure))
    else:
        await ctx.reply_ok()
    if await game.start_if_ready():
        await registry.broadcast_game_configs()


async def handle_delete_game(msg: DeleteGameMessage, ctx: MessageContext, *, registry: GameRegistry) -> None:
    await registry.delete(msg.game_name, msg.type)
    await registry.broadcast_game_configs()


async def handle_abort_game(msg: AbortGameMessage, ctx: MessageContext, *, registry: GameRegistry) -> None:
    game = registry.lookup(msg.game_name, msg.type)
    await game.abort()
    await registry.broadcast_game_configs()


# ---------------------------------------------------------------------------
# Joining and leaving
# ---------------------------------------------------------------------------

async def handle_join_game(msg: JoinGameMessage, ctx: MessageContext, *, registry: GameRegistry) -> None:
    game = registry.lookup(msg.game_name, msg.type)
    game.join(ctx.connection, msg.player_name)
    await ctx.reply_ok()

    await game.start_if_ready()
    await registry.broadcast_game_configs()


async def handle_leave_game(msg: LeaveGameMessage, ctx: MessageContext, *, registry: GameRegistry) -> None:
    game = registry.lookup(msg.game_name, msg.type)
    game.leave(ctx.connection, msg.player_name)
    await ctx.reply_ok()
    await registry.broadcast_game_configs()


# ---------------------------------------------------------------------------
# Turn handlers
# ---------------------------------------------------------------------------

async def handle_hand_done(msg: HandDoneMessage, ctx: MessageContext, *, registry: GameRegistry) -> None:
    game = registry.lookup(msg.game_name, msg.type)
    if await game.hand_done(msg, ctx.connection):
        await registry.broadcast_game_configs()


async def handle_state_update(msg: StateUpdateMessage, ctx: MessageContext, *, registry: GameRegistry) -> None:
    game = registry.lookup(msg.game_name, msg.type)
    if not game.active:
        raise GameError("Board update on inactive game")
    await ctx.reply_ok()
    await game.receive_state_update(msg, ctx.connection)


HANDLERS = {
    ConfigGameMessage: handle_config_game,
    DeleteGameMessage: handle_delete_game,
    AbortGameMessage: handle_abort_game,
    JoinGameMessage: handle_join_game,
    LeaveGameMessage: handle_leave_game,
    HandDoneMessage: handle_hand_done,
    StateUpdateMessage: handle_state_update,
}

_missing = set(INBOUND_TYPES) - set(HANDLERS)
if _missing:
    raise RuntimeError(f"No handler for {sorted(t.__name__ for t in _missing)}")


# ---------------------------------------------------------------------------
# Router
# ---------------------------------------------------------------------------

_OPENED = object()
_CLOSED = object()


def _request_id(data: Any):
    if isinstance(data, dict):
        request_id = data.get("requestId")
        if isinstance(request_id, (int, str)):
            return request_id
    return None


class MessageRouter:
    """
    Single consumer of every connection event.

    WebSocket reader tasks only enqueue; one worker task decodes and
    handles each event to completion before taking the next.
    """

    def __init__(self, registry: GameRegistry) -> None:
        self.registry = registry
        self.queue: asyncio.Queue = asyncio.Queue()
        self._task: Optional[asyncio.Task] = None

    async def start(self) -> None:
        self._task = asyncio.create_task(self._run())
        logger.info("Message router started")

    async def stop(self) -> None:
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
            logger.info("Message router stopped")

    async def submit(self, connection: Connection, data: Any) -> None:
        await self.queue.put((connection, data))

    async def submit_opened(self, connection: Connection) -> None:
        await self.queue.put((connection, _OPENED))

    async def submit_closed(self, connection: Connection) -> None:
        await self.queue.put((connection, _CLOSED))

    async def _run(self) -> None:
        while True:
            connection, data = await self.queue.get()
            try:
                await self.process(connection, data)
            except Exception:
                logger.exception(f"Unhandled error processing event from {connection}")
            finally:
                self.queue.task_done()

    async def process(self, connection: Connection, data: Any) -> None:
        token = connection_id_var.set(connection.id)
        try:
            if data is _OPENED:
                logger.debug("New client connected")
                await self.registry.connection_opened(connection)
            elif data is _CLOSED:
                logger.debug("Closing socket")
                await self.registry.connection_closed(connection)
            else:
                await self.dispatch(connection, data)
        finally:
            connection_id_var.reset(token)

    async def dispatch(self, connection: Connection, data: Any) -> None:
        """
        Decode one raw message and run its handler.

        Args:
            connection: Connection the message arrived on.
            data: JSON text, or an already decoded object.
        """
        if isinstance(data, (str, bytes)):
            try:
                data = json.loads(data)
            except ValueError as e:
                await connection.send(error_status(None, f"Invalid JSON: {e}"))
                return

        try:
            msg = parse_inbound(data)
        except ValidationError as e:
            first = e.errors()[0]
            where = ".".join(str(part) for part in first["loc"])
            logger.info(f"Rejecting malformed message: {where}: {first['msg']}")
            await connection.send(error_status(_request_id(data), f"Invalid message: {where}: {first['msg']}"))
            return

        ctx = MessageContext(connection=connection, message=msg)
        game_name = getattr(msg, "game_name", None) or (msg.config.game_name if getattr(msg, "config", None) else None)
        game_token = game_name_var.set(game_name)
        player_token = player_name_var.set(ctx.player_name)
        try:
            await HANDLERS[type(msg)](msg, ctx, registry=self.registry)
        except GameError as e:
            logger.info(f"{msg.type} rejected: {e}")
            await ctx.reply_error(str(e))
        except GameInvariantError as e:
            logger.exception(f"{msg.type} broke game {game_name}, resetting it")
            if game_name:
                await self.registry.reset_game(game_name)
                await self.registry.broadcast_game_configs()
            await ctx.reply_error(f"Internal error, {game_name} was reset: {e}")
        else:
            if not ctx.replied:
                await ctx.reply_ok()
        finally:
            game_name_var.reset(game_token)
            player_name_var.reset(player_token)
