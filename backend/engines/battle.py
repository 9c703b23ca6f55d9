"""
Battle Engine — two-player card war.

Steps inside the PLAYING phase: idle → battle → war(*) → resolved, then
finished, or straight back to battle on the next flip. `idle` only precedes
the first flip of a game; after that a resolved round stays on screen until
either player flips again, which opens the next battle directly.
A round resolves only when the 2-slot ready barrier is full; a tie escalates
to war, where each player burns three cards face down before the next flip.
Running out of cards is a loss, never an error: whoever cannot flip (or cannot
cover a war) loses on the spot and the opponent collects the pot.

Conservation: piles + pot always hold exactly 52 cards once the deck is dealt.
"""
from enum import Enum
from typing import Dict, List, Optional, Tuple

from engines.base import GameEngine, PhaseHandler
from engines.rng import deterministic_shuffle
from models.barrier import ReadyBarrier
from models.battle import (
    RANKS,
    WAR_BURN,
    BattlePhase,
    BattlePlayer,
    BattleRound,
    BattleState,
    BattleStep,
    Card,
    Suit,
)
from models.events import Flip, Intent, JoinRoom, LeaveRoom, StartGame
from models.room import next_host_id

SLOTS = 2


def build_deck() -> List[Card]:
    return [Card(suit=suit, rank=rank) for suit in Suit for rank in RANKS]


def deck_seed(state: BattleState) -> str:
    """First game in a room shuffles from the room id; restarts append the game count."""
    if state.games_played == 0:
        return state.room_id
    return f"{state.room_id}:{state.games_played}"


def deal(deck: List[Card], first_id: str, second_id: str) -> Dict[str, Tuple[Card, ...]]:
    """Even shuffle positions go to the first seat, odd positions to the second."""
    return {
        first_id: tuple(deck[0::2]),
        second_id: tuple(deck[1::2]),
    }


class BattleEngine(GameEngine[BattleState]):
    slug = "war"
    name = "War"
    description = "Two players flip cards at the same time; the higher card takes the pot. Ties go to war."
    rules = (
        "Both players flip when ready; nothing is revealed until both have flipped.",
        "The higher rank takes every card in the pot.",
        "Equal ranks start a war: burn three cards face down, then flip again.",
        "A player who runs out of cards loses.",
    )
    min_players = 2
    max_players = 2
    phase_type = BattlePhase
    state_type = BattleState

    def initial_state(self, room_id: str, host_id: str) -> BattleState:
        return BattleState(room_id=room_id, host_id=host_id)

    def phase_handlers(self) -> Dict[Enum, PhaseHandler]:
        return {
            BattlePhase.LOBBY: self._on_lobby,
            BattlePhase.PLAYING: self._on_playing,
            BattlePhase.FINISHED: self.ignore,
        }

    def is_terminal(self, state: BattleState) -> bool:
        return state.phase == BattlePhase.FINISHED

    # ── Roster ─────────────────────────────────────────────────────────────────

    def add_or_update_player(self, state: BattleState, intent: JoinRoom) -> BattleState:
        pid = intent.actor_id
        if not pid:
            return state
        credits = max(0, intent.credits)
        existing = state.get_player(pid)
        if existing:
            if existing.name == intent.name and existing.credits == credits:
                return state
            players = tuple(
                p.model_copy(update={"name": intent.name, "credits": credits}) if p.id == pid else p
                for p in state.players
            )
            return state.model_copy(update={"players": players})

        if state.phase != BattlePhase.LOBBY or len(state.players) >= SLOTS:
            return state
        players = state.players + (BattlePlayer(id=pid, name=intent.name, credits=credits),)
        return state.model_copy(update={
            "players": players,
            "ready": ReadyBarrier.for_roster([p.id for p in players], size=SLOTS),
        })

    def remove_player(self, state: BattleState, intent: LeaveRoom) -> BattleState:
        pid = intent.player_id
        if not state.has_player(pid):
            return state
        remaining = tuple(p for p in state.players if p.id != pid)
        update = {
            "players": remaining,
            "host_id": next_host_id(remaining, state.host_id, pid),
        }
        if state.phase == BattlePhase.LOBBY:
            update["ready"] = ReadyBarrier.for_roster([p.id for p in remaining], size=SLOTS)
            return state.model_copy(update=update)
        if state.phase == BattlePhase.PLAYING and remaining:
            # Leaving mid-game forfeits to whoever is still seated
            forfeited = self._finish(state, remaining[0].id)
            update["players"] = tuple(p for p in forfeited.players if p.id != pid)
            return forfeited.model_copy(update=update)
        return state.model_copy(update=update)

    def fresh_lobby(self, state: BattleState) -> BattleState:
        players = tuple(p.model_copy(update={"won_cards": 0}) for p in state.players)
        return BattleState(
            room_id=state.room_id,
            host_id=state.host_id,
            players=players,
            ready=ReadyBarrier.for_roster([p.id for p in players], size=SLOTS),
            games_played=state.games_played + 1,
        )

    # ── Phase rules ────────────────────────────────────────────────────────────

    def _on_lobby(self, state: BattleState, intent: Intent) -> BattleState:
        if not isinstance(intent, StartGame):
            return state
        if intent.actor_id != state.host_id or len(state.players) != SLOTS:
            return state

        first, second = state.players
        deck = deterministic_shuffle(build_deck(), intent.seed or deck_seed(state))
        return state.model_copy(update={
            "phase": BattlePhase.PLAYING,
            "round": 0,
            "piles": deal(deck, first.id, second.id),
            "ready": ReadyBarrier.for_roster([first.id, second.id], size=SLOTS),
            "reveal_nonce": 0,
            "players": tuple(p.model_copy(update={"won_cards": 0}) for p in state.players),
            "battle": BattleRound(),
            "winner_id": None,
        })

    def _on_playing(self, state: BattleState, intent: Intent) -> BattleState:
        if not isinstance(intent, Flip):
            return state
        pid = intent.actor_id
        if state.ready.slot_of(pid) is None or state.ready.is_ready(pid):
            return state

        battle = state.battle
        pile = state.piles.get(pid, ())

        if battle.step == BattleStep.WAR:
            if len(pile) < WAR_BURN + 1:
                return self._finish(state, self._opponent_id(state, pid))
            contributed = pile[:WAR_BURN + 1]
            rest = pile[WAR_BURN + 1:]
            face = contributed[-1]
            pot = {**battle.pot, pid: battle.pot.get(pid, ()) + contributed}
            face_up = {**battle.face_up, pid: face}
            step = BattleStep.WAR
        else:
            if not pile:
                return self._finish(state, self._opponent_id(state, pid))
            face = pile[0]
            rest = pile[1:]
            if battle.step in (BattleStep.IDLE, BattleStep.RESOLVED):
                pot = {pid: (face,)}
                face_up = {pid: face}
            else:
                pot = {**battle.pot, pid: battle.pot.get(pid, ()) + (face,)}
                face_up = {**battle.face_up, pid: face}
            step = BattleStep.BATTLE

        flipped = state.model_copy(update={
            "piles": {**state.piles, pid: rest},
            "ready": state.ready.mark_ready(pid),
            "battle": battle.model_copy(update={
                "step": step,
                "face_up": face_up,
                "pot": pot,
                "winner_id": None,
                "message": battle.message if step == BattleStep.WAR else None,
            }),
        })
        if flipped.ready.all_present:
            return self._resolve(flipped)
        return flipped

    # ── Resolution ─────────────────────────────────────────────────────────────

    def _resolve(self, state: BattleState) -> BattleState:
        first, second = state.players
        battle = state.battle
        card_a = battle.face_up.get(first.id)
        card_b = battle.face_up.get(second.id)
        if card_a is None or card_b is None:
            return state

        if card_a.rank == card_b.rank:
            return state.model_copy(update={
                "ready": state.ready.reset(),
                "reveal_nonce": state.reveal_nonce + 1,
                "battle": battle.model_copy(update={
                    "step": BattleStep.WAR,
                    "war_depth": battle.war_depth + 1,
                    "winner_id": None,
                    "message": "WAR!",
                }),
            })

        winner, loser = (first, second) if card_a.rank > card_b.rank else (second, first)
        awarded = self._award_pot(state, winner.id)
        if not awarded.piles.get(loser.id):
            return self._finish(state, winner.id)

        return awarded.model_copy(update={
            "round": state.round + 1,
            "ready": state.ready.reset(),
            "reveal_nonce": state.reveal_nonce + 1,
            "battle": BattleRound(
                step=BattleStep.RESOLVED,
                face_up={first.id: card_a, second.id: card_b},
                winner_id=winner.id,
            ),
        })

    def _award_pot(self, state: BattleState, winner_id: str) -> BattleState:
        won: Tuple[Card, ...] = ()
        for p in state.players:
            won += state.battle.pot.get(p.id, ())
        piles = {**state.piles, winner_id: state.piles.get(winner_id, ()) + won}
        players = tuple(
            p.model_copy(update={"won_cards": p.won_cards + len(won)}) if p.id == winner_id else p
            for p in state.players
        )
        return state.model_copy(update={
            "piles": piles,
            "players": players,
            "battle": state.battle.model_copy(update={"pot": {}}),
        })

    def _finish(self, state: BattleState, winner_id: str) -> BattleState:
        awarded = self._award_pot(state, winner_id)
        winner = state.get_player(winner_id)
        name = winner.name if winner else winner_id
        return awarded.model_copy(update={
            "phase": BattlePhase.FINISHED,
            "round": state.round + 1,
            "winner_id": winner_id,
            "reveal_nonce": state.reveal_nonce + 1,
            "battle": BattleRound(
                step=BattleStep.RESOLVED,
                face_up=dict(state.battle.face_up),
                winner_id=winner_id,
                message=f"{name} wins the game!",
            ),
        })

    @staticmethod
    def _opponent_id(state: BattleState, player_id: str) -> Optional[str]:
        for p in state.players:
            if p.id != player_id:
                return p.id
        return None


battle_engine = BattleEngine()
