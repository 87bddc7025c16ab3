"""
Test suite for the game session state machine.

Covers:
- Deck construction and card conservation
- Config validation
- Idle -> Connecting -> Active transition and dealing
- Turn advance, hand numbers and bot relay through the dealer
- Stale state updates
- Pause on disconnect/leave and resume without redeal
- Hand won, abort, reconfiguration and delete checks

Run with: pytest test_game.py -v
"""

import random

import pytest

from cards import Card, create_deck, shuffle_deck, sort_hand
from config import DeckSettings
from connections import Connection
from errors import GameError
from game import Game, join_names, validate_config
from messages import (
    GameConfig,
    GameStatus,
    HandDoneMessage,
    PlayerConfig,
    StateUpdateMessage,
)


def make_config(players=(("A", False), ("B", False)), name="G", cards_per_hand=13):
    return GameConfig(
        game_name=name,
        cards_per_hand=cards_per_hand,
        players=[PlayerConfig(name=n, is_bot=b) for n, b in players],
    )


def make_game(players=(("A", False), ("B", False)), cards_per_hand=13, seed=7):
    return Game(make_config(players, cards_per_hand=cards_per_hand), rng=random.Random(seed))


async def start_game(game: Game, connect) -> dict[str, Connection]:
    """Join every human from its own connection; returns connections by name."""
    conns = {}
    for name in game.player_order:
        if not game.player_map[name].is_bot:
            conns[name] = connect()
            game.join(conns[name], name)
    await game.start_if_ready()
    return conns


def hand_done(game: Game, player_name: str, **kwargs) -> HandDoneMessage:
    fields = {"hand_number": game.hand_number, "board": [], "draw_card": True}
    fields.update(kwargs)
    return HandDoneMessage(type="HandDone", game_name=game.game_name, player_name=player_name, **fields)


def state_update(game: Game, player_name: str, **kwargs) -> StateUpdateMessage:
    fields = {"hand_number": game.hand_number}
    fields.update(kwargs)
    return StateUpdateMessage(type="StateUpdate", game_name=game.game_name, player_name=player_name, **fields)


DECK_SIZE = DeckSettings().size


# =============================================================================
# Cards
# =============================================================================

class TestDeck:

    def test_default_deck_size(self):
        assert DECK_SIZE == 108
        assert len(create_deck()) == 108

    def test_default_deck_has_four_jokers(self):
        jokers = [c for c in create_deck() if c.is_joker]
        assert len(jokers) == 4
        assert all(c.value == 0 for c in jokers)

    def test_shuffle_keeps_every_card(self):
        deck = create_deck()
        shuffled = shuffle_deck(deck, random.Random(1))
        assert len(shuffled) == len(deck)
        assert sorted(shuffled, key=lambda c: (c.is_joker, c.suit, c.value)) == \
            sorted(deck, key=lambda c: (c.is_joker, c.suit, c.value))

    def test_sort_hand_puts_jokers_last(self):
        hand = [
            Card(value=0, suit=0, is_joker=True),
            Card(value=5, suit=1),
            Card(value=3, suit=1),
            Card(value=9, suit=0),
        ]
        sort_hand(hand)
        assert hand[0] == Card(value=9, suit=0)
        assert hand[1] == Card(value=3, suit=1)
        assert hand[-1].is_joker

    def test_card_wire_format_is_camel_case(self):
        card = Card(value=0, suit=0, is_joker=True)
        assert card.model_dump(by_alias=True) == {"value": 0, "suit": 0, "isJoker": True}


# =============================================================================
# Config validation
# =============================================================================

class TestValidateConfig:

    def test_valid_config(self):
        config = make_config()
        assert validate_config(config) is config

    def test_missing_config(self):
        with pytest.raises(GameError, match="Missing config property"):
            validate_config(None)

    def test_needs_two_players(self):
        with pytest.raises(GameError, match="at least 2 players"):
            validate_config(make_config(players=(("A", False),)))

    def test_duplicate_names(self):
        with pytest.raises(GameError, match="used more than once"):
            validate_config(make_config(players=(("A", False), ("A", True))))

    def test_empty_player_name(self):
        with pytest.raises(GameError, match="Empty player name"):
            validate_config(make_config(players=(("A", False), ("", True))))

    def test_needs_a_human(self):
        with pytest.raises(GameError, match="real person"):
            validate_config(make_config(players=(("X", True), ("Y", True))))

    @pytest.mark.parametrize("name", ["_G", "a/b", "a\\b", "..", "", "G\0x", "G\nx", "a:b", "a*b"])
    def test_rejects_unsafe_game_names(self, name):
        config = make_config()
        config.game_name = name
        with pytest.raises(GameError):
            validate_config(config)

    def test_rejects_hands_larger_than_deck(self):
        with pytest.raises(GameError, match="Dealing 120 cards"):
            validate_config(make_config(cards_per_hand=60))

    def test_join_names(self):
        assert join_names(["A"]) == "A"
        assert join_names(["A", "B"]) == "A and B"
        assert join_names(["A", "B", "C"]) == "A, B and C"


# =============================================================================
# Starting a hand
# =============================================================================

class TestStart:

    def test_new_game_is_idle(self):
        game = make_game()
        assert game.status == GameStatus.IDLE
        assert not game.active
        assert not game.paused
        assert len(game.deck) == DECK_SIZE
        assert game.buckets == [[]]
        assert game.hand_number == game.state_version

    @pytest.mark.asyncio
    async def test_first_join_is_connecting(self, connect):
        game = make_game()
        conn = connect()
        game.join(conn, "A")

        assert await game.start_if_ready() is False
        assert game.status == GameStatus.CONNECTING
        assert conn.websocket.messages == []

    @pytest.mark.asyncio
    async def test_last_join_deals_and_activates(self, connect):
        game = make_game()
        conns = await start_game(game, connect)

        assert game.active
        assert game.status == GameStatus.ACTIVE
        assert all(len(p.hand) == 13 for p in game.player_map.values())
        assert len(game.deck) == DECK_SIZE - 26
        assert game.total_cards() == DECK_SIZE
        assert game.dealer is game.player_map["A"]
        assert game.current_player is game.player_map["A"]

        for ws in (conns["A"].websocket, conns["B"].websocket):
            states = ws.of_type("UpdateGameState")
            assert len(states) == 1
            assert [p["name"] for p in states[0]["playerInfo"]] == ["A", "B"]

        turns = conns["A"].websocket.of_type("PlayHand")
        assert len(turns) == 1
        assert turns[0]["playerName"] == "A"
        assert turns[0]["handNumber"] == game.hand_number
        assert len(turns[0]["hand"]) == 13
        assert conns["B"].websocket.of_type("PlayHand") == []

    @pytest.mark.asyncio
    async def test_dealing_follows_seating_order(self, connect):
        game = make_game()
        expected = list(game.deck)
        await start_game(game, connect)

        assert sorted(game.player_map["A"].hand, key=str) == sorted(expected[:13], key=str)
        assert sorted(game.player_map["B"].hand, key=str) == sorted(expected[13:26], key=str)
        assert game.deck == expected[26:]

    @pytest.mark.asyncio
    async def test_dealer_is_first_connected_human(self, connect):
        game = make_game(players=(("Bot", True), ("A", False), ("B", False)))
        conns = await start_game(game, connect)

        assert game.dealer is game.player_map["A"]
        assert game.next_player_index == 1
        assert conns["A"].websocket.of_type("PlayHand")[0]["playerName"] == "A"

    @pytest.mark.asyncio
    async def test_bots_cannot_join(self, connect):
        game = make_game(players=(("A", False), ("Bot", True)))
        with pytest.raises(GameError, match="is a bot"):
            game.join(connect(), "Bot")

    @pytest.mark.asyncio
    async def test_unknown_and_duplicate_join(self, connect):
        game = make_game()
        game.join(connect(), "A")
        with pytest.raises(GameError, match="not in the game"):
            game.join(connect(), "Z")
        with pytest.raises(GameError, match="already joined"):
            game.join(connect(), "A")


# =============================================================================
# Turns
# =============================================================================

class TestHandDone:

    @pytest.mark.asyncio
    async def test_wrong_player_rejected_without_broadcast(self, connect):
        game = make_game()
        conns = await start_game(game, connect)
        before = {name: len(c.websocket.messages) for name, c in conns.items()}

        with pytest.raises(GameError, match="Invalid player name"):
            await game.hand_done(hand_done(game, "B"), conns["B"])

        assert {name: len(c.websocket.messages) for name, c in conns.items()} == before
        assert game.current_player.name == "A"

    @pytest.mark.asyncio
    async def test_stale_hand_number_rejected(self, connect):
        game = make_game()
        conns = await start_game(game, connect)
        with pytest.raises(GameError, match="Invalid hand number"):
            await game.hand_done(hand_done(game, "A", hand_number=game.hand_number - 1), conns["A"])

    @pytest.mark.asyncio
    async def test_must_be_sent_from_players_connection(self, connect):
        game = make_game()
        conns = await start_game(game, connect)
        with pytest.raises(GameError, match="must be reported by A"):
            await game.hand_done(hand_done(game, "A"), conns["B"])

    @pytest.mark.asyncio
    async def test_needs_hand_or_draw(self, connect):
        game = make_game()
        conns = await start_game(game, connect)
        with pytest.raises(GameError, match="either a hand or drawCard"):
            await game.hand_done(hand_done(game, "A", draw_card=False), conns["A"])

    @pytest.mark.asyncio
    async def test_draw_card_advances_turn(self, connect):
        game = make_game()
        conns = await start_game(game, connect)
        hand_number = game.hand_number
        top = game.deck[0]

        won = await game.hand_done(hand_done(game, "A", board=[["pile"]]), conns["A"])

        assert won is False
        assert len(game.player_map["A"].hand) == 14
        assert top in game.player_map["A"].hand
        assert game.total_cards() == DECK_SIZE
        assert game.current_player.name == "B"
        assert game.hand_number == hand_number + 1
        assert game.board == [["pile"]]
        assert game.buckets == [[]]

        turns = conns["B"].websocket.of_type("PlayHand")
        assert turns[-1]["playerName"] == "B"
        assert turns[-1]["handNumber"] == hand_number + 1
        assert conns["A"].websocket.of_type("UpdateGameState")[-1]["handNumber"] == hand_number + 1

    @pytest.mark.asyncio
    async def test_reported_hand_replaces_hand(self, connect):
        game = make_game()
        conns = await start_game(game, connect)
        kept = game.player_map["A"].hand[:3]

        await game.hand_done(hand_done(game, "A", draw_card=False, hand=kept), conns["A"])
        assert game.player_map["A"].hand == kept

    @pytest.mark.asyncio
    async def test_turn_index_wraps_modulo_player_count(self, connect):
        game = make_game(players=(("A", False), ("B", False), ("C", False)), cards_per_hand=5)
        conns = await start_game(game, connect)
        start = game.next_player_index

        for n in range(1, 8):
            current = game.current_player.name
            await game.hand_done(hand_done(game, current), conns[current])
            assert game.next_player_index == (start + n) % 3

        assert game.total_cards() == DECK_SIZE

    @pytest.mark.asyncio
    async def test_bot_turn_goes_to_dealer(self, connect):
        game = make_game(players=(("A", False), ("Bot", True)))
        conns = await start_game(game, connect)

        await game.hand_done(hand_done(game, "A"), conns["A"])

        turn = conns["A"].websocket.of_type("PlayHand")[-1]
        assert turn["playerName"] == "Bot"
        assert turn["isBot"] is True

        # the dealer reports the bot's move
        await game.hand_done(hand_done(game, "Bot"), conns["A"])
        assert game.current_player.name == "A"

    @pytest.mark.asyncio
    async def test_empty_deck_draw_rejected(self, connect):
        game = make_game()
        conns = await start_game(game, connect)
        game.deck = []
        with pytest.raises(GameError, match="No cards left"):
            await game.hand_done(hand_done(game, "A"), conns["A"])
        assert game.current_player.name == "A"

    @pytest.mark.asyncio
    async def test_empty_hand_wins_and_resets(self, connect):
        game = make_game()
        conns = await start_game(game, connect)

        won = await game.hand_done(hand_done(game, "A", draw_card=False, hand=[]), conns["A"])

        assert won is True
        assert not game.active
        assert game.status == GameStatus.IDLE
        assert all(not p.connected for p in game.player_map.values())
        assert len(game.deck) == DECK_SIZE

        final = conns["B"].websocket.of_type("UpdateGameState")[-1]
        assert final["playerInfo"][0]["name"] == "A"
        assert final["playerInfo"][0]["hand"] == []


# =============================================================================
# State updates
# =============================================================================

class TestStateUpdate:

    @pytest.mark.asyncio
    async def test_inactive_game_rejects(self, connect):
        game = make_game()
        with pytest.raises(GameError, match="inactive game"):
            await game.receive_state_update(state_update(game, "A"), connect())

    @pytest.mark.asyncio
    async def test_matching_update_applies_and_skips_sender(self, connect):
        game = make_game()
        conns = await start_game(game, connect)
        b_before = len(conns["B"].websocket.messages)
        a_before = len(conns["A"].websocket.messages)

        applied = await game.receive_state_update(
            state_update(game, "A", board=[["x"]], buckets=[["y"]]), conns["A"]
        )

        assert applied is True
        assert game.board == [["x"]]
        assert game.buckets == [["y"]]
        assert len(conns["B"].websocket.messages) == b_before + 1
        assert len(conns["A"].websocket.messages) == a_before

    @pytest.mark.asyncio
    async def test_stale_update_changes_nothing(self, connect):
        game = make_game()
        conns = await start_game(game, connect)
        snapshot = game.to_record()

        for msg in (
            state_update(game, "A", hand_number=game.hand_number + 1, board=[["x"]]),
            state_update(game, "B", board=[["x"]], hand=[]),
        ):
            assert await game.receive_state_update(msg, conns["A"]) is False
            assert game.to_record() == snapshot


# =============================================================================
# Pause and resume
# =============================================================================

class TestPauseResume:

    @pytest.mark.asyncio
    async def test_disconnect_pauses(self, connect):
        game = make_game()
        conns = await start_game(game, connect)

        released = game.release_connection(conns["A"])

        assert [p.name for p in released] == ["A"]
        assert game.paused
        assert game.active
        assert game.status == GameStatus.PAUSED

    @pytest.mark.asyncio
    async def test_unrelated_connection_close_is_ignored(self, connect):
        game = make_game()
        await start_game(game, connect)
        assert game.release_connection(connect()) == []
        assert not game.paused

    @pytest.mark.asyncio
    async def test_leave_pauses(self, connect):
        game = make_game()
        conns = await start_game(game, connect)
        game.leave(conns["B"], "B")
        assert game.paused

    @pytest.mark.asyncio
    async def test_leave_checks(self, connect):
        game = make_game()
        conn = connect()
        with pytest.raises(GameError, match="has not joined"):
            game.leave(conn, "A")
        game.join(conn, "A")
        with pytest.raises(GameError, match="another connection"):
            game.leave(connect(), "A")
        game.leave(conn, "A")
        assert game.status == GameStatus.IDLE

    @pytest.mark.asyncio
    async def test_hand_done_rejected_while_paused(self, connect):
        game = make_game()
        conns = await start_game(game, connect)
        game.release_connection(conns["B"])
        with pytest.raises(GameError, match="paused"):
            await game.hand_done(hand_done(game, "A"), conns["A"])

    @pytest.mark.asyncio
    async def test_rejoin_resumes_without_redeal(self, connect):
        game = make_game()
        conns = await start_game(game, connect)
        hands = {name: list(p.hand) for name, p in game.player_map.items()}
        hand_number = game.hand_number
        game.release_connection(conns["A"])

        new_conn = connect()
        game.join(new_conn, "A")
        assert await game.start_if_ready() is True

        assert not game.paused
        assert game.active
        assert {name: p.hand for name, p in game.player_map.items()} == hands
        assert game.hand_number == hand_number
        assert len(new_conn.websocket.of_type("UpdateGameState")) == 1
        assert new_conn.websocket.of_type("PlayHand")[0]["playerName"] == "A"

    @pytest.mark.asyncio
    async def test_resume_reselects_dealer(self, connect):
        game = make_game(players=(("A", False), ("B", False), ("Bot", True)))
        conns = await start_game(game, connect)
        assert game.dealer.name == "A"

        game.release_connection(conns["A"])
        game.join(connect(), "A")
        await game.start_if_ready()
        assert game.dealer.name == "A"

    @pytest.mark.asyncio
    async def test_partial_rejoin_stays_paused(self, connect):
        game = make_game()
        conns = await start_game(game, connect)
        game.release_connection(conns["A"])
        game.release_connection(conns["B"])

        game.join(connect(), "A")
        assert await game.start_if_ready() is False
        assert game.paused


# =============================================================================
# Abort, reconfigure, delete
# =============================================================================

class TestAbort:

    @pytest.mark.asyncio
    async def test_abort_idle_game_rejected(self):
        game = make_game()
        with pytest.raises(GameError, match="not being played"):
            await game.abort()

    @pytest.mark.asyncio
    async def test_abort_paused_game(self, connect):
        game = make_game()
        conns = await start_game(game, connect)
        game.release_connection(conns["A"])

        await game.abort()

        assert not game.active
        assert not game.paused
        assert game.status == GameStatus.IDLE
        assert len(game.deck) == DECK_SIZE


class TestReconfigure:

    @pytest.mark.asyncio
    async def test_active_game_cannot_be_replaced(self, connect):
        game = make_game()
        await start_game(game, connect)
        with pytest.raises(GameError, match="is being played"):
            game.validate_new_config(make_config())

    def test_joined_player_must_stay(self, connect):
        game = make_game()
        game.join(connect(), "A")
        with pytest.raises(GameError, match="A has already joined but is missing"):
            game.validate_new_config(make_config(players=(("B", False), ("C", False))))

    def test_joined_player_cannot_become_bot(self, connect):
        game = make_game()
        game.join(connect(), "A")
        with pytest.raises(GameError, match="is a bot"):
            game.validate_new_config(make_config(players=(("A", True), ("B", False))))

    def test_connections_carry_over(self, connect):
        game = make_game()
        conn = connect()
        game.join(conn, "A")

        carried = game.validate_new_config(make_config(players=(("A", False), ("C", False))))
        assert carried == {"A": conn}


class TestDeleteChecks:

    def test_idle_game_can_be_deleted(self):
        make_game().check_can_delete()

    @pytest.mark.asyncio
    async def test_active_game_cannot_be_deleted(self, connect):
        game = make_game()
        await start_game(game, connect)
        with pytest.raises(GameError, match="G is active"):
            game.check_can_delete()

    @pytest.mark.parametrize("joined,expected", [
        (["A"], "A has already joined the game"),
        (["A", "B"], "A and B have already joined the game"),
        (["A", "B", "C"], "A, B and C have already joined the game"),
    ])
    def test_joined_players_named(self, joined, expected, connect):
        game = make_game(players=(("A", False), ("B", False), ("C", False), ("D", False)), cards_per_hand=5)
        for name in joined:
            game.join(connect(), name)
        with pytest.raises(GameError) as exc:
            game.check_can_delete()
        assert str(exc.value) == expected
