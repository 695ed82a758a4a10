"""Behaviour shared by the database and file queue backends."""
import os
import threading
from datetime import timedelta, timezone

import pytest

from catalog_sync.database import build_engine, build_session_factory, init_db
from catalog_sync.jobs.db_queue import DbQueue
from catalog_sync.jobs.file_queue import FileQueue
from catalog_sync.jobs.queue import create_queue
from catalog_sync.jobs.task import TaskStatus
from catalog_sync.utils.backoff import RetryPolicy


@pytest.fixture(params=["db", "file"])
def queue(request, db_queue, file_queue):
    return db_queue if request.param == "db" else file_queue


def test_enqueue_returns_id_of_stored_request_task(queue):
    task_id = queue.enqueue("marketplace.request", {"action": "offer.upsert", "ean": "111"})

    stored = queue.get(task_id)
    assert stored.status == TaskStatus.PENDING
    assert stored.action == "offer.upsert"
    assert stored.payload["ean"] == "111"


def test_reserve_returns_oldest_available_task_first(queue, clock):
    first = queue.enqueue("ping", {"n": 1})
    clock.advance(1)
    second = queue.enqueue("ping", {"n": 2})

    assert queue.reserve().id == first
    assert queue.reserve().id == second
    assert queue.reserve() is None


def test_delayed_task_is_invisible_until_available(queue, clock):
    task_id = queue.enqueue("ping", {}, delay_seconds=30)
    assert queue.reserve() is None
    clock.advance(31)
    task = queue.reserve()
    assert task is not None and task.id == task_id
    assert task.status == TaskStatus.PROCESSING
    assert task.attempts == 1


def test_ack_marks_done_with_info(queue):
    queue.enqueue("ping", {})
    task = queue.reserve()
    queue.ack(task, "pong")
    stored = queue.get(task.id)
    assert stored.status == TaskStatus.DONE
    assert stored.info == "pong"
    assert queue.counts()["done"] == 1


def test_ack_after_lost_reservation_is_ignored(queue, clock):
    queue.enqueue("ping", {})
    task = queue.reserve()
    clock.advance(7201)
    assert queue.release_stale() == 1
    queue.ack(task, "late")
    assert queue.get(task.id).status == TaskStatus.PENDING


def test_nack_with_requeue_applies_backoff(queue, clock):
    queue.enqueue("ping", {})
    task = queue.reserve()
    queue.nack(task, "boom", requeue=True)

    stored = queue.get(task.id)
    assert stored.status == TaskStatus.PENDING
    assert stored.error == "boom"
    assert stored.available_at == clock.now + timedelta(seconds=5)
    assert queue.reserve() is None
    clock.advance(5)
    again = queue.reserve()
    assert again.id == task.id
    assert again.attempts == 2


def test_nack_without_requeue_dead_letters(queue):
    queue.enqueue("ping", {})
    task = queue.reserve()
    queue.nack(task, "poison", requeue=False)
    assert queue.get(task.id).status == TaskStatus.FAILED
    assert queue.counts()["failed"] == 1


def test_task_at_max_attempts_is_dead_lettered_even_when_requeued(queue, clock):
    queue.enqueue("ping", {})
    for _ in range(5):
        task = queue.reserve()
        assert task is not None
        queue.nack(task, "still failing", requeue=True)
        clock.advance(600)
    stored = queue.get(task.id)
    assert stored.attempts == 5
    assert stored.status == TaskStatus.FAILED


def test_release_stale_only_touches_expired_reservations(queue, clock):
    queue.enqueue("ping", {"n": 1})
    clock.advance(1)
    queue.enqueue("ping", {"n": 2})
    old = queue.reserve()
    clock.advance(7000)
    fresh = queue.reserve()
    clock.advance(300)

    assert queue.release_stale() == 1
    assert queue.get(old.id).status == TaskStatus.PENDING
    assert queue.get(old.id).worker_token is None
    assert queue.get(fresh.id).status == TaskStatus.PROCESSING


def test_concurrent_count_counts_same_type_and_action_in_flight(queue, clock):
    for _ in range(3):
        queue.enqueue("marketplace.request", {"action": "process.status.check"})
        clock.advance(1)
    queue.enqueue("marketplace.request", {"action": "offer.upsert"})

    first = queue.reserve()
    second = queue.reserve()
    third = queue.reserve()
    other = queue.reserve()
    assert [first.concurrent_count, second.concurrent_count, third.concurrent_count] == [0, 1, 2]
    assert other.action == "offer.upsert"
    assert other.concurrent_count == 0


def test_pending_count_and_snapshot(queue):
    queue.enqueue("ping", {})
    queue.enqueue("marketplace.request", {"action": "offer.upsert"})
    assert queue.pending_count() == 2
    assert queue.pending_count(action="offer.upsert") == 1
    snap = queue.snapshot()
    assert snap["depth"] == 2
    assert snap["counts"]["pending"] == 2


def _drain_concurrently(queue, workers=4):
    seen: list[str] = []
    errors: list[BaseException] = []
    lock = threading.Lock()

    def run():
        try:
            while True:
                task = queue.reserve()
                if task is None:
                    if queue.pending_count() == 0:
                        return
                    continue
                with lock:
                    seen.append(task.id)
                queue.ack(task)
        except BaseException as e:  # surfaced in the main thread
            errors.append(e)

    threads = [threading.Thread(target=run) for _ in range(workers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(60)
    assert not errors
    return seen


def test_db_queue_concurrent_reserve_never_hands_out_a_task_twice(tmp_path):
    engine = build_engine(f"sqlite+pysqlite:///{tmp_path / 'concurrent.db'}")
    init_db(engine)
    queue = DbQueue(build_session_factory(engine), policy=RetryPolicy())
    ids = {queue.enqueue("ping", {"n": n}) for n in range(30)}

    seen = _drain_concurrently(queue)
    assert len(seen) == len(set(seen))
    assert set(seen) == ids
    engine.dispose()


def test_file_queue_concurrent_reserve_never_hands_out_a_task_twice(tmp_path):
    queue = FileQueue(tmp_path / "q", policy=RetryPolicy())
    ids = {queue.enqueue("ping", {"n": n}) for n in range(30)}

    seen = _drain_concurrently(queue)
    assert len(seen) == len(set(seen))
    assert set(seen) == ids


def test_create_queue_selects_backend(tmp_path, session_factory):
    assert isinstance(create_queue({"driver": "file", "dir": str(tmp_path / "fq")}), FileQueue)
    assert isinstance(create_queue({"driver": "db"}, session_factory=session_factory), DbQueue)
    with pytest.raises(ValueError):
        create_queue({"driver": "db"})
    with pytest.raises(ValueError):
        create_queue({"driver": "carrier-pigeon"})


def test_file_queue_releases_claim_that_was_never_rewritten(file_queue, clock):
    task_id = file_queue.enqueue("ping", {"n": 1})
    claimed = file_queue.base / "processing" / f"{task_id}.json"
    os.rename(file_queue.base / "pending" / f"{task_id}.json", claimed)
    claimed_ts = clock.now.replace(tzinfo=timezone.utc).timestamp()
    os.utime(claimed, (claimed_ts, claimed_ts))

    clock.advance(3600)
    assert file_queue.release_stale() == 0

    clock.advance(3 * 3600)
    assert file_queue.release_stale() == 1
    assert file_queue.get(task_id).status == TaskStatus.PENDING
    assert file_queue.reserve().id == task_id
