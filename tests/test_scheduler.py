"""Tests for candidate selection and exclusive claiming."""
import threading
from datetime import timedelta

from media_extractor.queue.models import Status
from media_extractor.queue.scheduler import ClaimScheduler, select_candidates

from conftest import NOW, FakeQueueStore, make_item


def test_select_candidates_skips_backing_off_items():
    """Test that items whose next_retry_at is in the future are not eligible."""
    ready = make_item("ready", next_retry_at=NOW - timedelta(seconds=1))
    fresh = make_item("fresh")
    waiting = make_item("waiting", next_retry_at=NOW + timedelta(seconds=30))

    ids = [i.id for i in select_candidates([ready, fresh, waiting], NOW)]
    assert "waiting" not in ids
    assert set(ids) == {"ready", "fresh"}


def test_select_candidates_newest_first():
    """Test ordering by received_at, falling back to created_at."""
    old = make_item("old", created_at=NOW - timedelta(days=2))
    new = make_item("new", created_at=NOW - timedelta(days=3), received_at=NOW - timedelta(minutes=5))
    mid = make_item("mid", created_at=NOW - timedelta(days=1))

    assert [i.id for i in select_candidates([old, new, mid], NOW)] == ["new", "mid", "old"]


def test_claim_next_marks_processing():
    store = FakeQueueStore([make_item("a")])
    claimed = ClaimScheduler(store).claim_next(NOW)

    assert claimed.id == "a"
    assert claimed.status == Status.PROCESSING
    assert store.items["a"].last_attempt_at == NOW


def test_claim_next_empty_queue():
    assert ClaimScheduler(FakeQueueStore()).claim_next(NOW) is None


def test_claim_next_moves_on_after_lost_race():
    """Test that a candidate taken by another worker is skipped."""

    class RacingStore(FakeQueueStore):
        def claim(self, item_id, now):
            if item_id == "newest":
                self.items[item_id].status = Status.PROCESSING  # another worker won
                return None
            return super().claim(item_id, now)

    store = RacingStore([
        make_item("newest", created_at=NOW - timedelta(minutes=1)),
        make_item("older", created_at=NOW - timedelta(minutes=10)),
    ])
    claimed = ClaimScheduler(store).claim_next(NOW)
    assert claimed.id == "older"


def test_claim_next_ignores_items_not_yet_due():
    store = FakeQueueStore([make_item("later", next_retry_at=NOW + timedelta(minutes=2))])
    assert ClaimScheduler(store).claim_next(NOW) is None
    assert store.items["later"].status == Status.QUEUED


def test_concurrent_schedulers_never_claim_the_same_item():
    """Test exclusivity with many workers racing over a small queue."""
    store = FakeQueueStore([make_item(f"item-{n}") for n in range(5)])
    claimed = []
    lock = threading.Lock()
    barrier = threading.Barrier(10)

    def worker():
        barrier.wait()
        item = ClaimScheduler(store).claim_next(NOW)
        if item is not None:
            with lock:
                claimed.append(item.id)

    threads = [threading.Thread(target=worker) for _ in range(10)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(claimed) == 5
    assert len(set(claimed)) == 5
    assert all(item.status == Status.PROCESSING for item in store.items.values())
