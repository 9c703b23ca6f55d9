"""
DeductionTable — one player's seat at a deduction game.

Binds a RoomPeer (public, replicated state) to the SecretStore (roles, ballots,
mission cards). Secret writes go straight to the store; aggregates come back
from the store's finalize procedures and are folded into the public state as
host intents. While this seat is host, every committed snapshot is persisted
so the store can check quorums and team membership against it.
"""
import asyncio
import logging
from typing import List, Optional, Sequence

from models.deduction import DeductionState, MissionCard, Side, VoteCounts
from models.events import (
    AcknowledgeRole,
    Advance,
    MissionFinalized,
    ProposeTeam,
    Restart,
    StartGame,
    VotesRevealed,
)
from models.room import Identity
from services.host_authority import RoomPeer
from services.secret_store import InvalidRequest, JoinResult, RoleInfo, SecretStore, SpyInfo, StoreError

logger = logging.getLogger(__name__)


class DeductionTable:
    def __init__(self, peer: RoomPeer[DeductionState], store: SecretStore):
        self.peer = peer
        self.store = store
        self._latest: Optional[DeductionState] = None
        self._persist_lock = asyncio.Lock()
        self._tasks: set = set()
        peer.on_commit(self._on_commit)

    @property
    def identity(self) -> Identity:
        return self.peer.identity

    @property
    def room_id(self) -> str:
        return self.peer.room_id

    @property
    def state(self) -> Optional[DeductionState]:
        return self.peer.state

    def _require_state(self) -> DeductionState:
        if self.peer.state is None:
            raise InvalidRequest("room state not synced yet")
        return self.peer.state

    # ── Seat ──────────────────────────────────────────────────────────────────

    async def join(self) -> JoinResult:
        return await self.store.join_room(
            self.identity, self.room_id, self.identity.display_name, self.identity.credits,
        )

    async def start(self, seed: Optional[str] = None) -> int:
        """Host: deal secret roles to the active roster, then leave the lobby."""
        state = self._require_state()
        await self.flush()
        dealt = await self.store.deal_roles(self.identity, self.room_id, state.active_ids)
        self.peer.send(StartGame(seed=seed))
        return dealt["spies"]

    async def my_role(self) -> Side:
        return await self.store.get_my_role(self.identity, self.room_id)

    async def my_spies(self) -> List[SpyInfo]:
        return await self.store.get_spies(self.identity, self.room_id)

    def acknowledge_role(self) -> None:
        self.peer.send(AcknowledgeRole())

    # ── Proposal and vote ─────────────────────────────────────────────────────

    def propose(self, team_ids: Sequence[str]) -> None:
        self.peer.send(ProposeTeam(team_ids=tuple(team_ids)))

    async def cast_vote(self, approve: bool) -> None:
        state = self._require_state()
        await self.store.cast_vote(
            self.identity, self.room_id, state.mission, state.proposal_number, approve,
        )

    async def reveal_votes(self) -> VoteCounts:
        """Host: raises QuorumNotMet (retryable) until every active player has voted."""
        state = self._require_state()
        await self.flush()
        counts = await self.store.finalize_vote(
            self.identity, self.room_id, state.mission, state.proposal_number,
        )
        self.peer.send(VotesRevealed(approve=counts.approve, reject=counts.reject))
        return counts

    # ── Mission ───────────────────────────────────────────────────────────────

    async def submit_card(self, card: MissionCard) -> None:
        state = self._require_state()
        await self.store.submit_mission_card(self.identity, self.room_id, state.mission, MissionCard(card).value)

    async def finalize_mission(self) -> int:
        state = self._require_state()
        await self.flush()
        fail_count = await self.store.finalize_mission(self.identity, self.room_id, state.mission)
        self.peer.send(MissionFinalized(fail_count=fail_count))
        return fail_count

    def advance(self) -> None:
        self.peer.send(Advance())

    def restart(self) -> None:
        self.peer.send(Restart())

    async def reveal_roles(self) -> List[RoleInfo]:
        await self.flush()
        return await self.store.reveal_roles(self.identity, self.room_id)

    # ── Persistence ───────────────────────────────────────────────────────────

    def _on_commit(self, state: DeductionState) -> None:
        if state.host_id != self.identity.user_id:
            return
        self._latest = state
        task = asyncio.get_running_loop().create_task(self._persist(state))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _persist(self, state: DeductionState) -> None:
        async with self._persist_lock:
            # a newer snapshot is queued behind us
            if state is not self._latest:
                return
            try:
                await self.store.save_public_state(self.identity, self.room_id, state.to_wire())
            except StoreError as exc:
                logger.warning(f"[{self.room_id}] could not persist public state: {exc}")

    async def flush(self) -> None:
        """Wait until every queued snapshot write has landed."""
        while True:
            pending = [t for t in self._tasks if not t.done()]
            if not pending:
                return
            await asyncio.gather(*pending)
