from enum import Enum
from typing import Dict, List, Optional, Tuple

from models.barrier import ReadyBarrier
from models.room import RoomPlayer, RoomState, WireModel


MIN_PLAYERS = 5
MAX_PLAYERS = 10
MAX_MISSIONS = 5
MAX_PROPOSALS = 5
WINNING_SCORE = 3

# Active player count -> team size for missions 1..5
TEAM_SIZES: Dict[int, Tuple[int, ...]] = {
    5: (2, 3, 2, 3, 3),
    6: (2, 3, 4, 3, 4),
    7: (2, 3, 3, 4, 4),
    8: (3, 4, 4, 5, 5),
    9: (3, 4, 4, 5, 5),
    10: (3, 4, 4, 5, 5),
}

# Active player count -> number of spies
SPY_COUNTS: Dict[int, int] = {
    5: 2,
    6: 2,
    7: 3,
    8: 3,
    9: 3,
    10: 4,
}


class Side(str, Enum):
    RESISTANCE = "resistance"
    SPY = "spy"


class MissionCard(str, Enum):
    SUCCESS = "success"
    FAIL = "fail"


class DeductionPhase(str, Enum):
    LOBBY = "lobby"
    ROLE_REVEAL = "roleReveal"
    PROPOSING = "proposing"
    VOTING = "voting"
    MISSION = "mission"
    MISSION_RESULT = "missionResult"
    FINISHED = "finished"


class DeductionPlayer(RoomPlayer):
    is_spectator: bool = False


class VoteCounts(WireModel):
    approve: int
    reject: int


class MissionResult(WireModel):
    fail_count: int
    success: bool


class MissionRecord(WireModel):
    mission: int
    team_ids: Tuple[str, ...]
    fail_count: int
    success: bool


class Score(WireModel):
    resistance: int = 0
    spies: int = 0


class DeductionState(RoomState):
    """
    Public deduction state. Holds aggregates only: roles, individual ballots
    and individual mission cards live in the secret store.
    """
    phase: DeductionPhase = DeductionPhase.LOBBY
    players: Tuple[DeductionPlayer, ...] = ()

    leader_id: Optional[str] = None
    mission: int = 1
    max_missions: int = MAX_MISSIONS
    proposal_number: int = 1
    max_proposals: int = MAX_PROPOSALS
    team_size: int = 2

    proposed_team_ids: Tuple[str, ...] = ()
    vote_counts: Optional[VoteCounts] = None

    mission_team_ids: Tuple[str, ...] = ()
    mission_result: Optional[MissionResult] = None
    history: Tuple[MissionRecord, ...] = ()

    role_acks: ReadyBarrier = ReadyBarrier()
    score: Score = Score()
    winner: Optional[Side] = None

    @property
    def active_players(self) -> List[DeductionPlayer]:
        return [p for p in self.players if not p.is_spectator]

    @property
    def active_ids(self) -> List[str]:
        return [p.id for p in self.players if not p.is_spectator]
