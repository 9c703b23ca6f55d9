"""
Deduction Engine — reject-loop mission game for 5–10 players.

Phases: lobby → roleReveal → proposing → voting → (proposing | mission)
        → missionResult → (proposing | finished)

The public state never holds a role, a single ballot or a single mission card.
Votes and cards go to the secret store; the host folds the store's aggregates
back in through VotesRevealed / MissionFinalized intents.

Rules encoded here:
- Leadership rotates round-robin over active players after every rejected
  proposal and every completed mission.
- A proposal is approved only with strictly more than half of the active
  players approving (approve > n // 2).
- A fifth rejection on the same mission ends the game for the spies.
- One fail card fails a mission. First side to three missions wins.
"""
from enum import Enum
from typing import Dict, Sequence

from engines.base import GameEngine, PhaseHandler
from engines.rng import deterministic_shuffle
from models.barrier import ReadyBarrier
from models.deduction import (
    MAX_PLAYERS,
    MIN_PLAYERS,
    SPY_COUNTS,
    TEAM_SIZES,
    WINNING_SCORE,
    DeductionPhase,
    DeductionPlayer,
    DeductionState,
    MissionRecord,
    MissionResult,
    Score,
    Side,
    VoteCounts,
)
from models.events import (
    AcknowledgeRole,
    Advance,
    Intent,
    JoinRoom,
    LeaveRoom,
    MissionFinalized,
    ProposeTeam,
    StartGame,
    VotesRevealed,
)
from models.room import next_host_id, rotate


def _clamp(n: int, low: int, high: int) -> int:
    return max(low, min(high, n))


def compute_team_size(player_count: int, mission: int) -> int:
    sizes = TEAM_SIZES[_clamp(player_count, MIN_PLAYERS, MAX_PLAYERS)]
    return sizes[_clamp(mission - 1, 0, len(sizes) - 1)]


def compute_spy_count(player_count: int) -> int:
    return SPY_COUNTS[_clamp(player_count, MIN_PLAYERS, MAX_PLAYERS)]


def assign_roles(player_ids: Sequence[str], room_id: str) -> Dict[str, Side]:
    """
    Seeded shuffle of the active ids; the first `spy_count` become spies.
    Reproducible for a given room id and roster, which is what lets the store
    audit a deal after the fact.
    """
    players = list(player_ids)[:MAX_PLAYERS]
    spies = set(deterministic_shuffle(players, f"{room_id}:roles")[:compute_spy_count(len(players))])
    return {pid: Side.SPY if pid in spies else Side.RESISTANCE for pid in players}


def approval_passes(approve: int, active_count: int) -> bool:
    return approve > active_count // 2


class DeductionEngine(GameEngine[DeductionState]):
    slug = "resistance"
    name = "The Resistance"
    description = "Hidden spies sabotage missions while the resistance tries to find them."
    rules = (
        "Roles are dealt in secret; spies learn who the other spies are.",
        "The leader proposes a team; everyone votes to approve or reject.",
        "Five rejected proposals in a row hand the game to the spies.",
        "Team members play success or fail; a single fail sinks the mission.",
        "First side to win three missions wins the game.",
    )
    min_players = MIN_PLAYERS
    max_players = MAX_PLAYERS
    phase_type = DeductionPhase
    state_type = DeductionState

    def initial_state(self, room_id: str, host_id: str) -> DeductionState:
        return DeductionState(room_id=room_id, host_id=host_id, leader_id=host_id)

    def phase_handlers(self) -> Dict[Enum, PhaseHandler]:
        return {
            DeductionPhase.LOBBY: self._on_lobby,
            DeductionPhase.ROLE_REVEAL: self._on_role_reveal,
            DeductionPhase.PROPOSING: self._on_proposing,
            DeductionPhase.VOTING: self._on_voting,
            DeductionPhase.MISSION: self._on_mission,
            DeductionPhase.MISSION_RESULT: self._on_mission_result,
            DeductionPhase.FINISHED: self.ignore,
        }

    def is_terminal(self, state: DeductionState) -> bool:
        return state.phase == DeductionPhase.FINISHED

    # ── Roster ─────────────────────────────────────────────────────────────────

    def add_or_update_player(self, state: DeductionState, intent: JoinRoom) -> DeductionState:
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

        is_spectator = (
            state.phase != DeductionPhase.LOBBY or len(state.active_ids) >= MAX_PLAYERS
        )
        players = state.players + (
            DeductionPlayer(id=pid, name=intent.name, credits=credits, is_spectator=is_spectator),
        )
        leader_id = state.leader_id
        if leader_id is None:
            leader_id = rotate([p.id for p in players if not p.is_spectator], None)
        return state.model_copy(update={"players": players, "leader_id": leader_id})

    def remove_player(self, state: DeductionState, intent: LeaveRoom) -> DeductionState:
        pid = intent.player_id
        if not state.has_player(pid):
            return state
        remaining = tuple(p for p in state.players if p.id != pid)
        leader_id = state.leader_id
        if leader_id == pid:
            # successor in the old seating order, skipping the leaver
            old_active = state.active_ids
            leader_id = rotate(old_active, pid)
            if leader_id == pid:
                leader_id = None
        return state.model_copy(update={
            "players": remaining,
            "host_id": next_host_id(remaining, state.host_id, pid),
            "leader_id": leader_id,
            "proposed_team_ids": tuple(i for i in state.proposed_team_ids if i != pid),
            "mission_team_ids": tuple(i for i in state.mission_team_ids if i != pid),
        })

    def fresh_lobby(self, state: DeductionState) -> DeductionState:
        active = state.active_ids
        return DeductionState(
            room_id=state.room_id,
            host_id=state.host_id,
            players=state.players,
            leader_id=active[0] if active else state.host_id,
        )

    # ── Phase rules ────────────────────────────────────────────────────────────

    def _on_lobby(self, state: DeductionState, intent: Intent) -> DeductionState:
        if not isinstance(intent, StartGame) or intent.actor_id != state.host_id:
            return state
        active = state.active_ids
        if len(active) < MIN_PLAYERS:
            return state
        leader_id = state.leader_id if state.leader_id in active else active[0]
        return state.model_copy(update={
            "phase": DeductionPhase.ROLE_REVEAL,
            "round": 0,
            "mission": 1,
            "proposal_number": 1,
            "team_size": compute_team_size(len(active), 1),
            "leader_id": leader_id,
            "proposed_team_ids": (),
            "vote_counts": None,
            "mission_team_ids": (),
            "mission_result": None,
            "history": (),
            "role_acks": ReadyBarrier.for_roster(active),
            "score": Score(),
            "winner": None,
        })

    def _on_role_reveal(self, state: DeductionState, intent: Intent) -> DeductionState:
        if isinstance(intent, Advance):
            if intent.actor_id != state.host_id:
                return state
            return state.model_copy(update={"phase": DeductionPhase.PROPOSING})
        if not isinstance(intent, AcknowledgeRole):
            return state
        acks = state.role_acks.mark_ready(intent.actor_id)
        if acks is state.role_acks:
            return state
        phase = DeductionPhase.PROPOSING if acks.all_present else DeductionPhase.ROLE_REVEAL
        return state.model_copy(update={"role_acks": acks, "phase": phase})

    def _on_proposing(self, state: DeductionState, intent: Intent) -> DeductionState:
        if not isinstance(intent, ProposeTeam) or intent.actor_id != state.leader_id:
            return state
        active = set(state.active_ids)
        team = intent.team_ids
        if len(team) != state.team_size or len(set(team)) != len(team):
            return state
        if any(pid not in active for pid in team):
            return state
        return state.model_copy(update={
            "phase": DeductionPhase.VOTING,
            "proposed_team_ids": tuple(team),
            "vote_counts": None,
            "mission_team_ids": (),
            "mission_result": None,
        })

    def _on_voting(self, state: DeductionState, intent: Intent) -> DeductionState:
        if not isinstance(intent, VotesRevealed) or intent.actor_id != state.host_id:
            return state
        active = state.active_ids
        if intent.approve < 0 or intent.reject < 0 or intent.approve + intent.reject != len(active):
            return state

        counts = VoteCounts(approve=intent.approve, reject=intent.reject)
        if approval_passes(intent.approve, len(active)):
            return state.model_copy(update={
                "phase": DeductionPhase.MISSION,
                "vote_counts": counts,
                "mission_team_ids": state.proposed_team_ids,
                "proposed_team_ids": (),
            })

        next_proposal = state.proposal_number + 1
        if next_proposal > state.max_proposals:
            # deadlock: the spies win without a sixth proposal
            return state.model_copy(update={
                "phase": DeductionPhase.FINISHED,
                "vote_counts": counts,
                "proposed_team_ids": (),
                "winner": Side.SPY,
                "score": state.score.model_copy(update={"spies": WINNING_SCORE}),
            })
        return state.model_copy(update={
            "phase": DeductionPhase.PROPOSING,
            "proposal_number": next_proposal,
            "leader_id": rotate(active, state.leader_id),
            "vote_counts": counts,
            "proposed_team_ids": (),
        })

    def _on_mission(self, state: DeductionState, intent: Intent) -> DeductionState:
        if not isinstance(intent, MissionFinalized) or intent.actor_id != state.host_id:
            return state
        fail_count = intent.fail_count
        if fail_count < 0 or fail_count > len(state.mission_team_ids):
            return state

        success = fail_count == 0
        score = Score(
            resistance=state.score.resistance + (1 if success else 0),
            spies=state.score.spies + (0 if success else 1),
        )
        winner = None
        if score.resistance >= WINNING_SCORE:
            winner = Side.RESISTANCE
        elif score.spies >= WINNING_SCORE:
            winner = Side.SPY
        record = MissionRecord(
            mission=state.mission,
            team_ids=state.mission_team_ids,
            fail_count=fail_count,
            success=success,
        )
        return state.model_copy(update={
            "phase": DeductionPhase.FINISHED if winner else DeductionPhase.MISSION_RESULT,
            "round": state.round + 1,
            "mission_result": MissionResult(fail_count=fail_count, success=success),
            "history": state.history + (record,),
            "score": score,
            "winner": winner,
        })

    def _on_mission_result(self, state: DeductionState, intent: Intent) -> DeductionState:
        if not isinstance(intent, Advance) or intent.actor_id != state.host_id:
            return state
        active = state.active_ids
        next_mission = state.mission + 1
        return state.model_copy(update={
            "phase": DeductionPhase.PROPOSING,
            "mission": next_mission,
            "proposal_number": 1,
            "leader_id": rotate(active, state.leader_id),
            "team_size": compute_team_size(len(active), next_mission),
            "vote_counts": None,
            "mission_team_ids": (),
            "proposed_team_ids": (),
            "mission_result": None,
        })


deduction_engine = DeductionEngine()
