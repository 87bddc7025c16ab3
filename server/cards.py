"""
Card model and deck primitives.

Cards are plain immutable values. A game owns an ordered deck (a list of
Cards, top of the deck at index 0) and every player owns an ordered hand;
cards move between those containers, they are never created or destroyed
after the deck is built.

Default deck (see config.DeckSettings):
    2 decks x 13 values x 4 suits + 4 jokers = 108 cards
"""

import random
from typing import Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from config import DeckSettings

JOKER_VALUE = 0


class Card(BaseModel):
    """
    A playing card.

    Attributes:
        value: 1..num_values for regular cards, 0 for jokers.
        suit: 0..num_suits-1 (always 0 for jokers).
        is_joker: Whether this card is a joker.
    """

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    value: int
    suit: int = 0
    is_joker: bool = False

    def __str__(self) -> str:
        if self.is_joker:
            return "JK"
        return f"{self.value}/{self.suit}"


def create_deck(settings: Optional[DeckSettings] = None) -> list[Card]:
    """
    Build an unshuffled deck.

    Args:
        settings: Deck shape, defaults to the standard two-deck layout.

    Returns:
        List of every card, regular cards first, jokers last.
    """
    settings = settings or DeckSettings()
    deck = []
    for _ in range(settings.num_decks):
        for value in range(1, settings.num_values + 1):
            for suit in range(settings.num_suits):
                deck.append(Card(value=value, suit=suit))

    for _ in range(settings.num_jokers):
        deck.append(Card(value=JOKER_VALUE, suit=0, is_joker=True))
    return deck


def shuffle_deck(deck: list[Card], rng: Optional[random.Random] = None) -> list[Card]:
    """Return a shuffled copy of the deck."""
    shuffled = list(deck)
    (rng or random).shuffle(shuffled)
    return shuffled


def sort_hand(hand: list[Card]) -> None:
    """Order a hand in place: by suit then value, jokers at the end."""
    hand.sort(key=lambda c: (c.is_joker, c.suit, c.value))


def cards_to_str(cards: list[Card]) -> str:
    """Compact representation for log lines."""
    return " ".join(str(c) for c in cards)
