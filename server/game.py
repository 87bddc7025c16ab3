"""
Game session state machine.

A Game owns the turn order, the shared deck, the board and bucket piles and
the per-player hands of one named game. It does not know the rules of the
card game being played: clients report boards and hands, the session only
checks that the report comes from the player whose turn it is, for the hand
number currently in play, and keeps every joined client in sync.

Lifecycle:
    Idle        no hand in progress, nobody joined
    Connecting  no hand in progress, some humans joined
    Active      hand in progress, every human joined
    Paused      hand in progress, a human dropped out

    Idle/Connecting -> Active   last human joins: deal, pick dealer, first turn
    Active -> Paused            a joined human leaves or disconnects
    Paused -> Active            last missing human rejoins: resend state and turn
    Active -> Idle              current player's hand is empty after HandDone
    Active/Paused -> Idle       operator abort

Bot players never hold a connection. Their turns are sent to the dealer, the
first connected human in seating order, whose client plays for them and
reports back with the bot's name.
"""

import logging
import random
import time
from dataclasses import dataclass, field
from typing import Optional

from cards import Card, cards_to_str, create_deck, shuffle_deck, sort_hand
from config import DeckSettings
from connections import Connection
from errors import GameError, GameInvariantError, StorageError
from messages import (
    GameConfig,
    GameStatus,
    GameSummary,
    HandDoneMessage,
    OutboundMessage,
    PlayerInfo,
    PlayerSummary,
    PlayHandMessage,
    StateUpdateMessage,
    UpdateGameStateMessage,
)
from persistence import TEMP_PREFIX, GameStateRecord, GameStore

logger = logging.getLogger(__name__)

# Characters that cannot appear in a file name on some platform
UNSAFE_NAME_CHARS = set("\\/:*?\"<>|\0")


def now_ms() -> int:
    """Current wall-clock time in milliseconds."""
    return int(time.time() * 1000)


@dataclass
class Player:
    """
    A seat in one game.

    Attributes:
        name: Display name, unique within the game and its only identity.
        is_bot: Whether the dealer's client plays this seat.
        hand: Cards currently held, kept sorted after draws.
        connection: The connection this player joined from, if any.
    """

    name: str
    is_bot: bool = False
    hand: list[Card] = field(default_factory=list)
    connection: Optional[Connection] = None

    @property
    def connected(self) -> bool:
        return self.connection is not None

    async def send(self, message: OutboundMessage) -> None:
        if self.connection:
            await self.connection.send(message)


def validate_config(config: Optional[GameConfig], deck: Optional[DeckSettings] = None) -> GameConfig:
    """
    Check a game configuration before it replaces anything.

    Args:
        config: Configuration from a ConfigGame message.
        deck: Deck shape the game will be dealt from.

    Returns:
        The same configuration.

    Raises:
        GameError: Describing the first problem found.
    """
    if config is None:
        raise GameError("Missing config property")

    name = config.game_name
    if not name:
        raise GameError("Empty game name in config msg")
    unsafe = any(c in UNSAFE_NAME_CHARS or ord(c) < 32 for c in name)
    if unsafe or name.startswith(TEMP_PREFIX) or name in (".", ".."):
        raise GameError(f"Invalid game name: {name!r}")
    if config.cards_per_hand < 1:
        raise GameError("cardsPerHand must be at least 1")
    if len(config.players) < 2:
        raise GameError("Must have at least 2 players")

    seen = set()
    for player in config.players:
        if not player.name:
            raise GameError("Empty player name in config msg")
        if player.name in seen:
            raise GameError(f"{player.name} is used more than once")
        seen.add(player.name)

    if all(p.is_bot for p in config.players):
        raise GameError("Need at least one real person in game")

    deck = deck or DeckSettings()
    needed = config.cards_per_hand * len(config.players)
    if needed > deck.size:
        raise GameError(f"Dealing {needed} cards needs more than the {deck.size} in the deck")
    return config


def join_names(names: list[str]) -> str:
    """Format ["A", "B", "C"] as "A, B and C"."""
    if len(names) <= 1:
        return "".join(names)
    return ", ".join(names[:-1]) + " and " + names[-1]


class Game:
    """
    One named game and its in-progress hand.

    Attributes:
        game_name: Unique key of the game.
        cards_per_hand: Cards dealt to every player at hand start.
        player_order: Seating order, fixed for the lifetime of this object.
        player_map: Player by name, same keys as player_order.
        board: Piles on the table as last reported by a client.
        buckets: Card groupings on the table as last reported by a client.
        deck: Undealt cards, top at index 0.
        state_version: Millisecond timestamp of the last state change.
        hand_number: Turn counter, seeded from state_version at reset.
        next_player_index: Index into player_order of the current player.
        dealer: Connected human relaying bot turns.
        active: A hand is in progress.
        paused: The hand is waiting for a human to rejoin.
    """

    def __init__(
        self,
        config: GameConfig,
        store: Optional[GameStore] = None,
        deck_settings: Optional[DeckSettings] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        """
        Create an idle game.

        Args:
            config: Validated game configuration.
            store: Where hand state is persisted (None keeps it in memory).
            deck_settings: Shape of the deck to deal from.
            rng: Random source for shuffling (tests pass a seeded one).
        """
        self.config = config
        self.game_name = config.game_name
        self.cards_per_hand = config.cards_per_hand
        self.player_order: list[str] = [p.name for p in config.players]
        self.player_map: dict[str, Player] = {
            p.name: Player(name=p.name, is_bot=p.is_bot) for p in config.players
        }
        self.store = store
        self.deck_settings = deck_settings or DeckSettings()
        self.rng = rng
        self.dealer: Optional[Player] = None
        self.reset_game_state(release_players=False)

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    def reset_game_state(self, release_players: bool = True) -> None:
        """
        Return to idle with a fresh shuffled deck.

        Args:
            release_players: Also unbind every joined player's connection,
                so everybody has to join again for the next hand.
        """
        self.board: list = []
        self.buckets: list = [[]]
        self.deck: list[Card] = shuffle_deck(create_deck(self.deck_settings), self.rng)
        self.state_version = now_ms()
        self.hand_number = self.state_version
        self.next_player_index = 0
        self.active = False
        self.paused = False
        self.dealer = None
        for player in self.player_map.values():
            player.hand = []
            if release_players:
                player.connection = None

    @property
    def current_player(self) -> Optional[Player]:
        """The player whose turn it is, while a hand is in progress."""
        if not self.active:
            return None
        return self.player_map[self.player_order[self.next_player_index]]

    @property
    def status(self) -> GameStatus:
        if self.paused:
            return GameStatus.PAUSED
        if self.active:
            return GameStatus.ACTIVE
        if self.connected_players():
            return GameStatus.CONNECTING
        return GameStatus.IDLE

    def get_player(self, name: str) -> Optional[Player]:
        return self.player_map.get(name)

    def players_in_order(self) -> list[Player]:
        return [self.player_map[name] for name in self.player_order]

    def connected_players(self) -> list[Player]:
        return [p for p in self.players_in_order() if p.connection is not None]

    def all_humans_connected(self) -> bool:
        return all(p.connected for p in self.player_map.values() if not p.is_bot)

    def total_cards(self) -> int:
        """Cards held by the deck and all hands (the board is client-owned)."""
        return len(self.deck) + sum(len(p.hand) for p in self.player_map.values())

    def summary(self) -> GameSummary:
        """Externally visible description used in the game list."""
        return GameSummary(
            game_name=self.game_name,
            cards_per_hand=self.cards_per_hand,
            players=[
                PlayerSummary(name=p.name, is_bot=p.is_bot, connected=p.connected)
                for p in self.players_in_order()
            ],
            status=self.status,
        )

    def _bump_version(self) -> None:
        self.state_version = max(now_ms(), self.state_version)

    # -------------------------------------------------------------------------
    # Cards
    # -------------------------------------------------------------------------

    def draw_card(self, hand: list[Card]) -> Card:
        """
        Move the top card of the deck into a hand.

        Raises:
            GameError: If the deck is empty.
        """
        if not self.deck:
            raise GameError(f"No cards left in the deck of {self.game_name}")
        card = self.deck.pop(0)
        hand.append(card)
        sort_hand(hand)
        return card

    def deal_cards(self) -> None:
        """Deal cards_per_hand cards to each player, one seat at a time."""
        for player in self.players_in_order():
            player.hand = []
            for _ in range(self.cards_per_hand):
                self.draw_card(player.hand)
            logger.debug(f"Dealt {player.name}: {cards_to_str(player.hand)}")

    # -------------------------------------------------------------------------
    # Outgoing messages
    # -------------------------------------------------------------------------

    def game_state_message(self) -> UpdateGameStateMessage:
        return UpdateGameStateMessage(
            version=self.state_version,
            hand_number=self.hand_number,
            board=self.board,
            buckets=self.buckets,
            player_info=[
                PlayerInfo(name=p.name, hand=p.hand, is_bot=p.is_bot)
                for p in self.players_in_order()
            ],
        )

    async def broadcast_game_state(self, skip: Optional[Connection] = None) -> None:
        """
        Send the full snapshot to every joined player.

        Args:
            skip: Connection that already has this state (the sender of an update).
        """
        message = self.game_state_message()
        sent: list[Connection] = []
        for player in self.players_in_order():
            conn = player.connection
            if conn is None or conn is skip or any(conn is s for s in sent):
                continue
            sent.append(conn)
            await conn.send(message)

    async def send_play_hand(self) -> None:
        """
        Tell the current player it is their turn.

        Bot turns go to the dealer instead.
        """
        current = self.current_player
        if current is None:
            raise GameInvariantError(f"{self.game_name}: turn requested with no hand in progress")

        message = PlayHandMessage(
            player_name=current.name,
            is_bot=current.is_bot,
            hand=current.hand,
            hand_number=self.hand_number,
        )
        if current.is_bot:
            if self.dealer is None:
                raise GameInvariantError(f"{self.game_name}: bot turn for {current.name} with no dealer")
            logger.debug(f"Sending {current.name}'s turn to dealer {self.dealer.name}")
            await self.dealer.send(message)
        else:
            logger.debug(f"Sending turn to {current.name}")
            await current.send(message)

    # -------------------------------------------------------------------------
    # Joining and leaving
    # -------------------------------------------------------------------------

    def join(self, connection: Connection, player_name: str) -> Player:
        """
        Bind a human player to a connection.

        Raises:
            GameError: Unknown player, already joined, or a bot.
        """
        player = self.player_map.get(player_name)
        if player is None:
            raise GameError(f"{player_name} is not in the game")
        if player.connection is not None:
            raise GameError(f"{player_name} has already joined the game")
        if player.is_bot:
            raise GameError(f"{player_name} is a bot")

        player.connection = connection
        logger.info(f"{player_name} joined {self.game_name}")
        return player

    def leave(self, connection: Connection, player_name: str) -> Player:
        """
        Unbind a player; pauses a hand in progress.

        Raises:
            GameError: Unknown player, not joined, a bot, or joined elsewhere.
        """
        player = self.player_map.get(player_name)
        if player is None:
            raise GameError(f"{player_name} is not in the game")
        if player.is_bot:
            raise GameError(f"{player_name} is a bot")
        if player.connection is None:
            raise GameError(f"{player_name} has not joined the game")
        if player.connection is not connection:
            raise GameError(f"{player_name} joined the game from another connection")

        player.connection = None
        if self.active:
            self.paused = True
            logger.info(f"{player_name} left {self.game_name}, pausing")
        else:
            logger.info(f"{player_name} left {self.game_name}")
        return player

    def release_connection(self, connection: Connection) -> list[Player]:
        """
        Unbind every player joined from a closed connection.

        Returns:
            The released players (empty if none were bound).
        """
        released = []
        for player in self.player_map.values():
            if player.connection is connection:
                player.connection = None
                released.append(player)
                logger.info(f"{player.name} disconnected from {self.game_name}")

        if released and self.active:
            self.paused = True
        return released

    def adopt_connections(self, connections: dict[str, Connection]) -> None:
        """Bind connections carried over from a replaced configuration."""
        for name, connection in connections.items():
            self.player_map[name].connection = connection

    def validate_new_config(self, new_config: GameConfig) -> dict[str, Connection]:
        """
        Check that a new configuration may replace this game.

        Args:
            new_config: The replacing configuration.

        Returns:
            Connections of currently joined players, by name, for the new game.

        Raises:
            GameError: If a hand is in progress or a joined player would be dropped.
        """
        if self.active:
            raise GameError(f"{self.game_name} is being played")

        new_players = {p.name: p for p in new_config.players}
        carried = {}
        for player in self.connected_players():
            new_player = new_players.get(player.name)
            if new_player is None:
                raise GameError(f"{player.name} has already joined but is missing from game config")
            if new_player.is_bot:
                raise GameError(f"{player.name} has already joined but is a bot in game config")
            carried[player.name] = player.connection
        return carried

    def check_can_delete(self) -> None:
        """
        Raises:
            GameError: If the game is active or anyone has joined.
        """
        if self.active:
            raise GameError(f"{self.game_name} is active")

        joined = [p.name for p in self.connected_players()]
        if len(joined) == 1:
            raise GameError(f"{joined[0]} has already joined the game")
        if joined:
            raise GameError(f"{join_names(joined)} have already joined the game")

    # -------------------------------------------------------------------------
    # Hand lifecycle
    # -------------------------------------------------------------------------

    def _select_dealer(self) -> int:
        """Pick the first connected human in seating order as dealer."""
        for index, player in enumerate(self.players_in_order()):
            if player.connection is not None and not player.is_bot:
                self.dealer = player
                return index
        raise GameInvariantError(f"{self.game_name}: no connected human to act as dealer")

    async def start_if_ready(self) -> bool:
        """
        Start or resume the hand once every human has joined.

        Returns:
            True if play started or resumed.
        """
        if not self.all_humans_connected():
            return False
        if self.active and not self.paused:
            return False
        await self.play()
        return True

    async def play(self) -> None:
        """
        Deal a new hand, or resume a paused one.

        A new hand is saved before anyone sees it; a failed save is logged
        and play goes on from memory. A resumed hand is sent again unchanged.
        """
        if self.active and not self.paused:
            raise GameInvariantError(f"{self.game_name}: play() while a hand is running")

        if self.paused:
            self.paused = False
            self._select_dealer()
            logger.info(f"Resuming {self.game_name}, dealer {self.dealer.name}")
            await self.broadcast_game_state()
            await self.send_play_hand()
            return

        self.active = True
        self.next_player_index = self._select_dealer()
        self.deal_cards()
        logger.info(
            f"Starting {self.game_name} with {len(self.player_order)} players, "
            f"dealer {self.dealer.name}"
        )

        await self._save_state_deferred()
        await self.broadcast_game_state()
        await self.send_play_hand()

    async def receive_state_update(self, msg: StateUpdateMessage, sender: Connection) -> bool:
        """
        Apply a mid-turn update from the current player.

        Stale or duplicate updates (wrong hand number or player, or while
        paused) are dropped without touching state.

        Returns:
            True if the update was applied and broadcast.

        Raises:
            GameError: If no hand is in progress.
        """
        if not self.active:
            raise GameError("Board update on inactive game")

        current = self.current_player
        if self.paused or msg.hand_number != self.hand_number or msg.player_name != current.name:
            logger.debug(
                f"Dropping state update: got ({msg.hand_number}, {msg.player_name}) "
                f"want ({self.hand_number}, {current.name}), paused={self.paused}"
            )
            return False

        if msg.board is not None:
            self.board = msg.board
        if msg.buckets is not None:
            self.buckets = msg.buckets
        if msg.hand is not None:
            current.hand = list(msg.hand)
        self._bump_version()
        await self.broadcast_game_state(skip=sender)
        return True

    async def hand_done(self, msg: HandDoneMessage, sender: Connection) -> bool:
        """
        Finish the current player's turn and pass it on.

        The reported move is either ``draw_card`` (take the top card of the
        deck) or a replacement ``hand``. The board is replaced and buckets
        cleared. An empty hand wins and ends the hand; otherwise the turn
        moves to the next seat, the new state is saved, and only then is it
        broadcast along with the next turn message.

        Returns:
            True if the hand was won and the game is idle again.

        Raises:
            GameError: Inactive or paused game, wrong player, stale hand
                number, wrong reporting connection, or nothing to apply.
            StorageError: If the new state could not be saved; play has
                still moved on in memory and was broadcast.
        """
        if not self.active:
            raise GameError(f"HandDone on inactive game {self.game_name}")
        if self.paused:
            raise GameError(f"{self.game_name} is paused until every player rejoins")

        current = self.current_player
        if msg.player_name != current.name:
            raise GameError(f"Invalid player name: {msg.player_name} != {current.name}")
        if msg.hand_number != self.hand_number:
            raise GameError(f"Invalid hand number: {msg.hand_number} != {self.hand_number}")

        reporter = self.dealer if current.is_bot else current
        if reporter is None or reporter.connection is not sender:
            expected = reporter.name if reporter else "the dealer"
            raise GameError(f"{current.name}'s turn must be reported by {expected}")
        if not msg.draw_card and msg.hand is None:
            raise GameError("HandDone needs either a hand or drawCard")

        if msg.draw_card:
            self.draw_card(current.hand)
        else:
            current.hand = list(msg.hand)
        self.board = msg.board
        self.buckets = [[]]
        self._bump_version()

        if not current.hand:
            logger.info(f"{current.name} won the hand in {self.game_name}")
            await self.broadcast_game_state()
            await self.finish_hand()
            return True

        self.next_player_index = (self.next_player_index + 1) % len(self.player_order)
        self.hand_number += 1

        failure = await self._save_state_deferred()
        await self.broadcast_game_state()
        await self.send_play_hand()
        if failure:
            raise failure
        return False

    async def finish_hand(self) -> None:
        """Reset to idle and forget the persisted hand."""
        self.reset_game_state(release_players=True)
        if self.store:
            await self.store.clear_state(self.game_name)

    async def abort(self) -> None:
        """
        Discard the hand in progress, paused or not.

        Raises:
            GameError: If no hand is in progress.
        """
        if not self.active:
            raise GameError(f"{self.game_name} is not being played")
        logger.info(f"Aborting {self.game_name}")
        await self.finish_hand()

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    def to_record(self) -> GameStateRecord:
        return GameStateRecord(
            game_name=self.game_name,
            players=list(self.player_order),
            hands={p.name: list(p.hand) for p in self.players_in_order()},
            deck=list(self.deck),
            board=self.board,
            buckets=self.buckets,
            hand_number=self.hand_number,
            state_version=self.state_version,
            next_player_index=self.next_player_index,
        )

    async def save_state(self) -> None:
        """
        Raises:
            StorageError: If the write or rename fails.
        """
        if self.store:
            await self.store.save_state(self.to_record())

    async def _save_state_deferred(self) -> Optional[StorageError]:
        """Save, returning the failure instead of raising it."""
        try:
            await self.save_state()
        except StorageError as e:
            logger.error(f"State of {self.game_name} not saved, memory is ahead of disk: {e}")
            return e
        return None

    def restore(self, record: GameStateRecord) -> None:
        """
        Load a persisted hand. The game comes back paused until every
        human rejoins.

        Raises:
            GameError: If the record's roster does not match this game.
        """
        if len(record.players) != len(self.player_order):
            raise GameError(
                f"State of {self.game_name} has {len(record.players)} players, "
                f"config has {len(self.player_order)}"
            )
        if set(record.players) != set(self.player_order) or set(record.hands) != set(self.player_order):
            raise GameError(f"State of {self.game_name} names players missing from its config")
        if not 0 <= record.next_player_index < len(self.player_order):
            raise GameError(f"State of {self.game_name} has turn index {record.next_player_index}")

        self.deck = list(record.deck)
        for name, hand in record.hands.items():
            self.player_map[name].hand = list(hand)
        self.board = record.board
        self.buckets = record.buckets
        self.hand_number = record.hand_number
        self.state_version = record.state_version
        self.next_player_index = record.next_player_index
        self.dealer = None
        self.active = True
        self.paused = True
