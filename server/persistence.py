"""
File-backed durable storage for game configurations and in-flight hands.

Each game owns two files named after the game:
- {config_dir}/{game_name}  -> GameConfig JSON (players, hand size)
- {state_dir}/{game_name}   -> GameStateRecord JSON (deck, hands, board, turn)

Every write goes to a sibling temp file ("_" + name) that is then renamed
over the target, so a reader sees either the old or the new file, never a
partial one. Temp files found at startup were left by an interrupted write
and are deleted instead of parsed. A missing state file means the game is
idle.
"""

import logging
from pathlib import Path
from typing import Any, Union

import aiofiles
import aiofiles.os
from pydantic import ValidationError

from cards import Card
from errors import StorageError
from messages import GameConfig, WireModel

logger = logging.getLogger(__name__)

TEMP_PREFIX = "_"


def _reason(e: Exception) -> str:
    return getattr(e, "strerror", None) or str(e)


class GameStateRecord(WireModel):
    """Snapshot of an in-progress hand as written to the state file."""

    game_name: str
    players: list[str]
    hands: dict[str, list[Card]]
    deck: list[Card]
    board: list[Any]
    buckets: list[Any]
    hand_number: int
    state_version: int
    next_player_index: int


class GameStore:
    """
    Atomic per-game config and state files.

    Usage:
        store = GameStore("./game_config", "./game_state")
        await store.ensure_dirs()
        await store.save_config(config)
        configs = await store.load_configs()
    """

    def __init__(self, config_dir: Union[str, Path], state_dir: Union[str, Path]):
        self.config_dir = Path(config_dir)
        self.state_dir = Path(state_dir)

    async def ensure_dirs(self) -> None:
        """Create the storage directories if missing."""
        await aiofiles.os.makedirs(self.config_dir, exist_ok=True)
        await aiofiles.os.makedirs(self.state_dir, exist_ok=True)

    def config_path(self, game_name: str) -> Path:
        return self.config_dir / game_name

    def state_path(self, game_name: str) -> Path:
        return self.state_dir / game_name

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    async def save_config(self, config: GameConfig) -> None:
        """
        Persist a game configuration.

        Raises:
            StorageError: If the temp write or the rename fails.
        """
        await self._atomic_write(
            self.config_path(config.game_name),
            config.model_dump_json(by_alias=True),
        )

    async def save_state(self, record: GameStateRecord) -> None:
        """
        Persist the state of an in-progress hand.

        Raises:
            StorageError: If the temp write or the rename fails.
        """
        await self._atomic_write(
            self.state_path(record.game_name),
            record.model_dump_json(by_alias=True),
        )

    async def clear_state(self, game_name: str) -> None:
        """Remove a game's state file. Failures are only logged."""
        await self._remove(self.state_path(game_name))

    async def delete_game(self, game_name: str) -> None:
        """Remove both files of a deleted game. Failures are only logged."""
        await self._remove(self.config_path(game_name))
        await self._remove(self.state_path(game_name))

    async def _atomic_write(self, path: Path, content: str) -> None:
        tmp_path = path.with_name(TEMP_PREFIX + path.name)
        try:
            async with aiofiles.open(tmp_path, "w", encoding="utf-8") as f:
                await f.write(content)
                await f.flush()
        except (OSError, ValueError) as e:
            logger.error(f"Write of {tmp_path} failed: {e}")
            raise StorageError(f"Failed to write {path.name}: {_reason(e)}") from e

        try:
            await aiofiles.os.replace(tmp_path, path)
        except (OSError, ValueError) as e:
            logger.error(f"Rename of {tmp_path} to {path} failed: {e}")
            raise StorageError(f"Failed to save {path.name}: {_reason(e)}") from e

    async def _remove(self, path: Path) -> None:
        try:
            await aiofiles.os.remove(path)
        except FileNotFoundError:
            pass
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to remove {path}: {e}")

    # -------------------------------------------------------------------------
    # Startup scan
    # -------------------------------------------------------------------------

    async def load_configs(self) -> list[GameConfig]:
        """Read every config file, skipping unreadable ones."""
        configs = []
        for name, content in await self._read_dir(self.config_dir):
            try:
                config = GameConfig.model_validate_json(content)
            except ValidationError as e:
                logger.warning(f"Skipping unreadable config {name}: {e.error_count()} errors")
                continue
            if config.game_name != name:
                logger.warning(f"Skipping config {name}: it describes game {config.game_name}")
                continue
            configs.append(config)
        return configs

    async def load_states(self) -> list[GameStateRecord]:
        """Read every state file, skipping unreadable ones."""
        records = []
        for name, content in await self._read_dir(self.state_dir):
            try:
                record = GameStateRecord.model_validate_json(content)
            except ValidationError as e:
                logger.warning(f"Skipping unreadable state {name}: {e.error_count()} errors")
                continue
            records.append(record)
        return records

    async def _read_dir(self, directory: Path) -> list[tuple[str, str]]:
        """Return (file name, content) pairs, deleting stale temp files."""
        try:
            names = sorted(await aiofiles.os.listdir(directory))
        except FileNotFoundError:
            logger.info(f"{directory} does not exist yet, nothing to load")
            return []

        files = []
        for name in names:
            path = directory / name
            if name.startswith(TEMP_PREFIX):
                logger.info(f"Removing stale temp file {path}")
                await self._remove(path)
                continue
            if not await aiofiles.os.path.isfile(path):
                continue
            try:
                async with aiofiles.open(path, "r", encoding="utf-8") as f:
                    files.append((name, await f.read()))
            except (OSError, UnicodeDecodeError) as e:
                logger.warning(f"Error reading file {path}: {e}")
        return files
