"""
ReadyBarrier — fixed-size rendezvous of tri-state slots.

Each slot is VACANT (no participant seated), WAITING or READY. The barrier
opens (`all_present`) only when every slot is seated and READY. Marking an
unknown or already-ready participant returns the same instance, which is what
keeps duplicate ready signals from resolving a round twice.
"""
from enum import Enum
from typing import Iterable, Optional, Tuple

from models.room import WireModel


class SlotState(str, Enum):
    VACANT = "vacant"
    WAITING = "waiting"
    READY = "ready"


class ReadyBarrier(WireModel):
    seats: Tuple[Optional[str], ...] = ()
    slots: Tuple[SlotState, ...] = ()

    @classmethod
    def for_roster(cls, player_ids: Iterable[str], size: Optional[int] = None) -> "ReadyBarrier":
        ids = list(player_ids)
        width = size if size is not None else len(ids)
        seats = tuple(ids[:width]) + (None,) * max(0, width - len(ids))
        slots = tuple(SlotState.VACANT if s is None else SlotState.WAITING for s in seats)
        return cls(seats=seats, slots=slots)

    def slot_of(self, player_id: str) -> Optional[int]:
        try:
            return self.seats.index(player_id)
        except ValueError:
            return None

    def is_ready(self, player_id: str) -> bool:
        idx = self.slot_of(player_id)
        return idx is not None and self.slots[idx] == SlotState.READY

    def mark_ready(self, player_id: str) -> "ReadyBarrier":
        idx = self.slot_of(player_id)
        if idx is None or self.slots[idx] == SlotState.READY:
            return self
        slots = list(self.slots)
        slots[idx] = SlotState.READY
        return self.model_copy(update={"slots": tuple(slots)})

    @property
    def ready_count(self) -> int:
        return sum(1 for s in self.slots if s == SlotState.READY)

    @property
    def all_present(self) -> bool:
        return bool(self.slots) and all(s == SlotState.READY for s in self.slots)

    def reset(self) -> "ReadyBarrier":
        slots = tuple(SlotState.VACANT if s is None else SlotState.WAITING for s in self.seats)
        if slots == self.slots:
            return self
        return self.model_copy(update={"slots": slots})
