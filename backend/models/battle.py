from enum import Enum
from typing import Dict, Optional, Tuple

from models.barrier import ReadyBarrier
from models.room import RoomPlayer, RoomState, WireModel


class Suit(str, Enum):
    SPADES = "spades"
    HEARTS = "hearts"
    DIAMONDS = "diamonds"
    CLUBS = "clubs"


# 2..10, then 11=J 12=Q 13=K 14=A
RANKS: Tuple[int, ...] = tuple(range(2, 15))
DECK_SIZE = 52
WAR_BURN = 3


class Card(WireModel):
    suit: Suit
    rank: int

    def __str__(self) -> str:
        return f"{self.rank}-{self.suit.value}"


class BattlePhase(str, Enum):
    LOBBY = "lobby"
    PLAYING = "playing"
    FINISHED = "finished"


class BattleStep(str, Enum):
    IDLE = "idle"
    BATTLE = "battle"
    WAR = "war"
    RESOLVED = "resolved"


class BattlePlayer(RoomPlayer):
    won_cards: int = 0


class BattleRound(WireModel):
    """
    The round in flight.

    `pot` keeps each player's contribution separately; when a pot is awarded
    the contributions are concatenated in roster order, so the result does
    not depend on which ready signal reached the host first.
    """
    step: BattleStep = BattleStep.IDLE
    face_up: Dict[str, Card] = {}
    war_depth: int = 0
    pot: Dict[str, Tuple[Card, ...]] = {}
    winner_id: Optional[str] = None
    message: Optional[str] = None

    @property
    def pot_size(self) -> int:
        return sum(len(cards) for cards in self.pot.values())


class BattleState(RoomState):
    phase: BattlePhase = BattlePhase.LOBBY
    players: Tuple[BattlePlayer, ...] = ()
    piles: Dict[str, Tuple[Card, ...]] = {}
    ready: ReadyBarrier = ReadyBarrier()
    reveal_nonce: int = 0
    games_played: int = 0
    battle: BattleRound = BattleRound()
    winner_id: Optional[str] = None

    def card_count(self) -> int:
        """Cards in piles plus pot; 52 at every reachable instant once dealt."""
        return sum(len(p) for p in self.piles.values()) + self.battle.pot_size
