"""
Centralized configuration for the card table server.

Configuration is loaded from (in order of precedence):
1. Environment variables
2. .env file (if exists)
3. Default values

Usage:
    from config import config
    print(config.PORT)
    print(config.deck.size)
"""

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

env_path = Path(__file__).parent.parent / ".env"
if env_path.exists():
    load_dotenv(env_path)


def get_env(key: str, default: str = "") -> str:
    """Get environment variable with default."""
    return os.environ.get(key, default)


def get_env_bool(key: str, default: bool = False) -> bool:
    """Get boolean environment variable."""
    val = os.environ.get(key, "").lower()
    if val in ("true", "1", "yes", "on"):
        return True
    if val in ("false", "0", "no", "off"):
        return False
    return default


def get_env_int(key: str, default: int = 0) -> int:
    """Get integer environment variable."""
    try:
        return int(os.environ.get(key, str(default)))
    except ValueError:
        return default


@dataclass
class DeckSettings:
    """Shape of the shared deck every game is dealt from."""
    num_decks: int = 2
    num_jokers: int = 4
    num_values: int = 13
    num_suits: int = 4

    @property
    def size(self) -> int:
        """Total number of cards in a freshly built deck."""
        return self.num_decks * self.num_values * self.num_suits + self.num_jokers


@dataclass
class ServerConfig:
    """Server configuration."""
    HOST: str = "0.0.0.0"
    PORT: int = 8080
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    ENVIRONMENT: str = "development"

    # Durable storage, one file per game in each directory
    GAME_CONFIG_DIR: str = "./game_config"
    GAME_STATE_DIR: str = "./game_state"

    deck: DeckSettings = field(default_factory=DeckSettings)

    @classmethod
    def from_env(cls) -> "ServerConfig":
        """Load configuration from environment variables."""
        return cls(
            HOST=get_env("HOST", "0.0.0.0"),
            PORT=get_env_int("PORT", 8080),
            DEBUG=get_env_bool("DEBUG", False),
            LOG_LEVEL=get_env("LOG_LEVEL", "INFO"),
            ENVIRONMENT=get_env("ENVIRONMENT", "development"),
            GAME_CONFIG_DIR=get_env("GAME_CONFIG_DIR", "./game_config"),
            GAME_STATE_DIR=get_env("GAME_STATE_DIR", "./game_state"),
            deck=DeckSettings(
                num_decks=get_env_int("DECK_COUNT", 2),
                num_jokers=get_env_int("DECK_JOKERS", 4),
                num_values=get_env_int("DECK_VALUES", 13),
                num_suits=get_env_int("DECK_SUITS", 4),
            ),
        )


# Global config instance - loaded once at module import
config = ServerConfig.from_env()


def reload_config() -> ServerConfig:
    """Reload configuration from environment (useful for testing)."""
    global config
    config = ServerConfig.from_env()
    return config
