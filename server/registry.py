"""
Registry of all configured games.

The registry maps game names to Game sessions, owns the set of open
connections, and pushes the full list of game summaries to every connection
whenever something visible in that list changes. It also rebuilds the games
from disk at startup: every configuration first, then the saved hands.
"""

import logging
from typing import Optional

from config import DeckSettings
from connections import Connection, ConnectionRegistry
from errors import GameError
from game import Game, validate_config
from messages import GameConfig, GameConfigsMessage, GameStatus, GameSummary
from persistence import GameStore

logger = logging.getLogger(__name__)


class GameRegistry:
    """
    Manages all configured games.

    A single GameRegistry instance is used by the server.
    """

    def __init__(
        self,
        store: Optional[GameStore] = None,
        deck_settings: Optional[DeckSettings] = None,
    ) -> None:
        """
        Initialize an empty registry.

        Args:
            store: Durable storage for configs and hands (None keeps everything in memory).
            deck_settings: Deck shape for every game.
        """
        self.games: dict[str, Game] = {}
        self.connections = ConnectionRegistry()
        self.store = store
        self.deck_settings = deck_settings or DeckSettings()

    # -------------------------------------------------------------------------
    # Lookup
    # -------------------------------------------------------------------------

    def get_game(self, game_name: str) -> Optional[Game]:
        return self.games.get(game_name)

    def lookup(self, game_name: str, msg_type: str) -> Game:
        """
        Get a game by name.

        Raises:
            GameError: If no such game is configured.
        """
        game = self.games.get(game_name)
        if game is None:
            raise GameError(f"{msg_type}: {game_name} doesn't exist")
        return game

    def new_game(self, config: GameConfig) -> Game:
        return Game(config, store=self.store, deck_settings=self.deck_settings)

    # -------------------------------------------------------------------------
    # Configure / delete
    # -------------------------------------------------------------------------

    def configure(self, config: Optional[GameConfig]) -> Game:
        """
        Register a new game or replace an idle one.

        Players already joined to the replaced game stay joined to the new one.

        Returns:
            The new Game.

        Raises:
            GameError: Invalid configuration, or the existing game cannot be replaced.
        """
        config = validate_config(config, self.deck_settings)

        carried = {}
        existing = self.games.get(config.game_name)
        if existing is not None:
            carried = existing.validate_new_config(config)

        game = self.new_game(config)
        game.adopt_connections(carried)
        self.games[config.game_name] = game
        logger.info(
            f"Configured {config.game_name}: {len(config.players)} players, "
            f"{config.cards_per_hand} cards per hand"
        )
        return game

    async def save_config(self, game: Game) -> None:
        """
        Raises:
            StorageError: If the config file could not be written.
        """
        if self.store:
            await self.store.save_config(game.config)

    async def delete(self, game_name: str, msg_type: str = "DeleteGame") -> None:
        """
        Remove an idle game nobody has joined, along with its files.

        Raises:
            GameError: Unknown game, active game, or joined players.
        """
        game = self.lookup(game_name, msg_type)
        game.check_can_delete()
        del self.games[game_name]
        if self.store:
            await self.store.delete_game(game_name)
        logger.info(f"Deleted {game_name}")

    async def reset_game(self, game_name: str) -> None:
        """Force a game back to idle, discarding its saved hand."""
        game = self.games.get(game_name)
        if game is not None:
            await game.finish_hand()

    # -------------------------------------------------------------------------
    # Connections and fan-out
    # -------------------------------------------------------------------------

    def summaries(self) -> list[GameSummary]:
        return [game.summary() for game in self.games.values()]

    def game_configs_message(self) -> GameConfigsMessage:
        return GameConfigsMessage(configs=self.summaries())

    async def send_game_configs(self, connection: Connection) -> None:
        await connection.send(self.game_configs_message())

    async def broadcast_game_configs(self) -> None:
        """Push the full game list to every open connection."""
        await self.connections.broadcast(self.game_configs_message())

    async def connection_opened(self, connection: Connection) -> None:
        self.connections.add(connection)
        await self.send_game_configs(connection)

    async def connection_closed(self, connection: Connection) -> None:
        """
        Release every player bound to a closed connection.

        Games with a hand in progress are paused.
        """
        self.connections.remove(connection)
        released = []
        for game in self.games.values():
            released.extend(game.release_connection(connection))
        if released:
            await self.broadcast_game_configs()

    def status_counts(self) -> dict[str, int]:
        counts = {status.value: 0 for status in GameStatus}
        for game in self.games.values():
            counts[game.status.value] += 1
        return counts

    # -------------------------------------------------------------------------
    # Startup recovery
    # -------------------------------------------------------------------------

    async def load(self) -> None:
        """
        Rebuild games from storage.

        All configurations are loaded before any saved hand is applied, so a
        hand always finds its game. Restored hands come back paused.
        """
        if not self.store:
            return
        await self.store.ensure_dirs()

        for config in await self.store.load_configs():
            try:
                validate_config(config, self.deck_settings)
            except GameError as e:
                logger.warning(f"Skipping config {config.game_name}: {e}")
                continue
            if config.game_name in self.games:
                logger.warning(f"Skipping duplicate config {config.game_name}")
                continue
            self.games[config.game_name] = self.new_game(config)

        restored = 0
        for record in await self.store.load_states():
            game = self.games.get(record.game_name)
            if game is None:
                logger.warning(f"Skipping state for {record.game_name}: no matching configuration")
                continue
            try:
                game.restore(record)
            except GameError as e:
                logger.warning(f"Skipping state: {e}")
                continue
            restored += 1

        logger.info(f"Loaded {len(self.games)} games, {restored} with a paused hand")
