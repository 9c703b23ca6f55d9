"""
Battle engine: dealing, the two-party flip rendezvous, war escalation,
pile exhaustion and the restart/leave lifecycle.
"""
from enum import Enum
from typing import Dict

import pytest

from engines.base import PhaseHandler
from engines.battle import BattleEngine, battle_engine, build_deck, deal
from engines.rng import deterministic_shuffle
from models.battle import DECK_SIZE, BattlePhase, BattleStep, Card, Suit
from models.events import Flip, JoinRoom, LeaveRoom, ProposeTeam, Restart, StartGame

ROOM = "room1"


def lobby():
    state = battle_engine.initial_state(ROOM, "alice")
    state = battle_engine.reduce(state, JoinRoom(name="Alice", credits=5, actor_id="alice"))
    return battle_engine.reduce(state, JoinRoom(name="Bob", credits=3, actor_id="bob"))


def started():
    return battle_engine.reduce(lobby(), StartGame(actor_id="alice"))


def flip(state, pid):
    return battle_engine.reduce(state, Flip(actor_id=pid))


def with_piles(state, alice_top, bob_top):
    """Stack both piles with the given top cards; the rest of the deck fills them evenly."""
    rest = [c for c in build_deck() if c not in alice_top + bob_top]
    cut = DECK_SIZE // 2 - len(alice_top)
    alice = tuple(alice_top + rest[:cut])
    bob = tuple(bob_top + rest[cut:])
    return state.model_copy(update={"piles": {"alice": alice, "bob": bob}})


# ── Lobby ─────────────────────────────────────────────────────────────────────

def test_roster_caps_at_two():
    state = lobby()
    assert battle_engine.reduce(state, JoinRoom(name="Carol", actor_id="carol")) is state


def test_rejoin_updates_name_and_credits_only():
    state = lobby()
    renamed = battle_engine.reduce(state, JoinRoom(name="Bobby", credits=9, actor_id="bob"))
    assert [p.name for p in renamed.players] == ["Alice", "Bobby"]
    assert renamed.get_player("bob").credits == 9
    assert battle_engine.reduce(renamed, JoinRoom(name="Bobby", credits=9, actor_id="bob")) is renamed


def test_start_requires_host_and_two_players():
    state = lobby()
    assert battle_engine.reduce(state, StartGame(actor_id="bob")) is state

    solo = battle_engine.reduce(
        battle_engine.initial_state(ROOM, "alice"), JoinRoom(name="Alice", actor_id="alice"),
    )
    assert battle_engine.reduce(solo, StartGame(actor_id="alice")) is solo


def test_start_deals_seeded_halves():
    state = started()
    expected = deal(deterministic_shuffle(build_deck(), ROOM), "alice", "bob")
    assert state.phase == BattlePhase.PLAYING
    assert state.piles == expected
    assert len(state.piles["alice"]) == len(state.piles["bob"]) == 26
    assert state.card_count() == DECK_SIZE
    assert started() == state


def test_explicit_seed_overrides_room_seed():
    state = battle_engine.reduce(lobby(), StartGame(seed="custom", actor_id="alice"))
    assert state.piles == deal(deterministic_shuffle(build_deck(), "custom"), "alice", "bob")


# ── Rendezvous ────────────────────────────────────────────────────────────────

def test_single_flip_does_not_resolve():
    state = flip(started(), "alice")
    assert state.battle.step == BattleStep.BATTLE
    assert state.ready.ready_count == 1
    assert state.round == 0
    assert state.card_count() == DECK_SIZE


def test_duplicate_flip_is_a_no_op():
    once = flip(started(), "alice")
    assert flip(once, "alice") is once


def test_unknown_player_flip_is_a_no_op():
    state = started()
    assert flip(state, "mallory") is state


def test_wrong_intent_for_engine_is_a_no_op():
    state = started()
    assert battle_engine.reduce(state, ProposeTeam(team_ids=("alice",), actor_id="alice")) is state


def test_arrival_order_does_not_change_resolution():
    base = started()
    ab = flip(flip(base, "alice"), "bob")
    ba = flip(flip(base, "bob"), "alice")
    assert ab == ba
    assert ab.reveal_nonce == 1
    assert ab.ready.ready_count == 0


def test_resolution_fires_once_per_round():
    state = with_piles(started(), [Card(suit=Suit.SPADES, rank=14)], [Card(suit=Suit.HEARTS, rank=2)])
    resolved = flip(flip(state, "alice"), "bob")
    assert resolved.round == 1
    assert resolved.battle.step == BattleStep.RESOLVED
    assert resolved.battle.winner_id == "alice"
    assert len(resolved.piles["alice"]) == 27
    assert resolved.get_player("alice").won_cards == 2
    # a second full pair of flips is a new round, not a replay of the old one
    again = flip(flip(resolved, "bob"), "alice")
    assert again.round == 2


def test_next_flip_after_resolution_opens_a_battle_directly():
    state = with_piles(started(), [Card(suit=Suit.SPADES, rank=14)], [Card(suit=Suit.HEARTS, rank=2)])
    assert state.battle.step == BattleStep.IDLE
    resolved = flip(flip(state, "alice"), "bob")
    assert resolved.battle.step == BattleStep.RESOLVED

    reopened = flip(resolved, "bob")
    assert reopened.battle.step == BattleStep.BATTLE
    assert list(reopened.battle.face_up) == ["bob"]
    assert reopened.battle.pot_size == 1
    assert reopened.card_count() == DECK_SIZE


def test_conservation_over_a_long_game():
    state = started()
    order = ["alice", "bob"]
    for step in range(4000):
        if state.phase != BattlePhase.PLAYING:
            break
        state = flip(state, order[step % 2])
        assert state.card_count() == DECK_SIZE
    assert state.card_count() == DECK_SIZE


# ── War ───────────────────────────────────────────────────────────────────────

def test_war_chain_awards_the_whole_pot():
    alice_top = [Card(suit=Suit.SPADES, rank=r) for r in (5, 2, 3, 4, 13)]
    bob_top = [Card(suit=Suit.HEARTS, rank=r) for r in (5, 2, 3, 4, 9)]
    state = with_piles(started(), alice_top, bob_top)
    assert len(state.piles["alice"]) == len(state.piles["bob"]) == 26

    steps = []
    state = flip(state, "alice")
    steps.append(state.battle.step)
    state = flip(state, "bob")
    steps.append(state.battle.step)
    assert state.battle.message == "WAR!"
    assert state.battle.war_depth == 1
    assert state.battle.pot_size == 2
    assert state.card_count() == DECK_SIZE

    state = flip(state, "alice")
    assert state.battle.pot_size == 2 + 4
    state = flip(state, "bob")
    steps.append(state.battle.step)

    assert steps == [BattleStep.BATTLE, BattleStep.WAR, BattleStep.RESOLVED]
    assert state.battle.winner_id == "alice"
    assert state.get_player("alice").won_cards == 2 + 2 * (3 + 1)
    assert len(state.piles["alice"]) == 26 - 5 + 10
    assert len(state.piles["bob"]) == 26 - 5
    # the pot lands under the winner's pile in roster order
    assert list(state.piles["alice"][-10:]) == alice_top + bob_top
    assert state.card_count() == DECK_SIZE


def test_war_without_enough_cards_loses():
    alice_top = [Card(suit=Suit.SPADES, rank=r) for r in (5, 2, 3)]
    bob_top = [Card(suit=Suit.HEARTS, rank=5)]
    rest = [c for c in build_deck() if c not in alice_top + bob_top]
    state = started().model_copy(update={"piles": {
        "alice": tuple(alice_top),
        "bob": tuple(bob_top + rest),
    }})

    state = flip(flip(state, "alice"), "bob")
    assert state.battle.step == BattleStep.WAR
    state = flip(state, "alice")

    assert state.phase == BattlePhase.FINISHED
    assert state.winner_id == "bob"
    assert state.battle.message == "Bob wins the game!"
    assert state.battle.pot_size == 0
    assert state.card_count() == DECK_SIZE


def test_losing_the_last_card_ends_the_game():
    alice_top = [Card(suit=Suit.SPADES, rank=2)]
    rest = [c for c in build_deck() if c not in alice_top]
    rest.sort(key=lambda c: c.rank, reverse=True)
    state = started().model_copy(update={"piles": {"alice": tuple(alice_top), "bob": tuple(rest)}})

    state = flip(flip(state, "alice"), "bob")
    assert state.phase == BattlePhase.FINISHED
    assert state.winner_id == "bob"
    assert len(state.piles["bob"]) == DECK_SIZE
    assert flip(state, "alice") is state


# ── Lifecycle ─────────────────────────────────────────────────────────────────

def finished():
    alice_top = [Card(suit=Suit.SPADES, rank=2)]
    rest = sorted((c for c in build_deck() if c not in alice_top), key=lambda c: c.rank, reverse=True)
    state = started().model_copy(update={"piles": {"alice": tuple(alice_top), "bob": tuple(rest)}})
    return flip(flip(state, "alice"), "bob")


def test_restart_is_host_only_and_keeps_roster():
    done = finished()
    assert battle_engine.reduce(done, Restart(actor_id="bob")) is done

    fresh = battle_engine.reduce(done, Restart(actor_id="alice"))
    assert fresh.phase == BattlePhase.LOBBY
    assert fresh.player_ids == ["alice", "bob"]
    assert fresh.games_played == 1
    assert fresh.piles == {}
    assert all(p.won_cards == 0 for p in fresh.players)
    assert fresh.winner_id is None


def test_restart_in_lobby_is_a_no_op():
    state = lobby()
    assert battle_engine.reduce(state, Restart(actor_id="alice")) is state


def test_second_game_reshuffles():
    fresh = battle_engine.reduce(finished(), Restart(actor_id="alice"))
    second = battle_engine.reduce(fresh, StartGame(actor_id="alice"))
    assert second.piles == deal(deterministic_shuffle(build_deck(), f"{ROOM}:1"), "alice", "bob")


def test_leaving_mid_game_forfeits():
    state = flip(started(), "alice")
    left = battle_engine.reduce(state, LeaveRoom(player_id="alice", actor_id="alice"))
    assert left.phase == BattlePhase.FINISHED
    assert left.winner_id == "bob"
    assert left.host_id == "bob"
    assert left.player_ids == ["bob"]
    assert left.get_player("bob").won_cards == 1


def test_only_host_or_self_can_remove():
    state = lobby()
    assert battle_engine.reduce(state, LeaveRoom(player_id="alice", actor_id="bob")) is state
    kicked = battle_engine.reduce(state, LeaveRoom(player_id="bob", actor_id="alice"))
    assert kicked.player_ids == ["alice"]
    assert kicked.ready.seats == ("alice", None)


def test_host_leaving_lobby_promotes_first_remaining():
    state = lobby()
    left = battle_engine.reduce(state, LeaveRoom(player_id="alice", actor_id="alice"))
    assert left.host_id == "bob"


def test_engine_without_rule_for_a_phase_is_rejected():
    class Incomplete(BattleEngine):
        def phase_handlers(self) -> Dict[Enum, PhaseHandler]:
            return {BattlePhase.LOBBY: self.ignore, BattlePhase.PLAYING: self.ignore}

    with pytest.raises(TypeError, match="finished"):
        Incomplete()
