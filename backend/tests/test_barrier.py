from models.barrier import ReadyBarrier, SlotState


def test_roster_shorter_than_barrier_leaves_vacant_slots():
    barrier = ReadyBarrier.for_roster(["alice"], size=2)
    assert barrier.slots == (SlotState.WAITING, SlotState.VACANT)
    barrier = barrier.mark_ready("alice")
    assert barrier.ready_count == 1
    assert not barrier.all_present


def test_opens_only_when_every_slot_is_ready():
    barrier = ReadyBarrier.for_roster(["alice", "bob"])
    barrier = barrier.mark_ready("bob")
    assert not barrier.all_present
    barrier = barrier.mark_ready("alice")
    assert barrier.all_present


def test_duplicate_and_unknown_marks_return_same_instance():
    barrier = ReadyBarrier.for_roster(["alice", "bob"]).mark_ready("alice")
    assert barrier.mark_ready("alice") is barrier
    assert barrier.mark_ready("mallory") is barrier


def test_reset_keeps_seats():
    barrier = ReadyBarrier.for_roster(["alice", "bob"]).mark_ready("alice").mark_ready("bob")
    fresh = barrier.reset()
    assert fresh.seats == ("alice", "bob")
    assert fresh.ready_count == 0
    assert fresh.reset() is fresh


def test_empty_barrier_is_never_open():
    assert not ReadyBarrier().all_present
