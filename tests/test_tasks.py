from datetime import timedelta
from pathlib import Path

from catalog_sync.jobs.scheduler import EnqueueLoop
from catalog_sync.jobs.task import Action, NextStep, Task, TaskType
from catalog_sync.models.db import OperationType, ProcessLedgerEntry, ProcessStatus, SyncState, SyncStatus
from catalog_sync.services import offer_store, process_ledger
from catalog_sync.services.offer_api import AlreadyExists
from catalog_sync.tasks import exports, offers, processes


def _request(action: Action, **fields) -> Task:
    step = NextStep.request(action, **fields)
    return Task(id="t-test", type=step.type, payload=step.payload)


def _queued(ctx, action: Action):
    return [t for t in ctx.queue.recent(100) if t.action == action.value]


def _only(ctx, action: Action):
    tasks = _queued(ctx, action)
    assert len(tasks) == 1, tasks
    return tasks[0]


def _bind(session_factory, clock, ean, offer_id):
    with session_factory() as session:
        offer_store.bind_identity(session, ean, offer_id, clock())
        session.commit()


# ---------------------------------------------------------------------- #
def test_sync_batch_selects_due_subjects_in_order(ctx, stage, session_factory, clock):
    for ean in ("a1", "b1", "c1", "e1"):
        stage(ean)
    stage("d1", brand_id="999")
    with session_factory() as session:
        session.add(SyncState(ean="b1", status=SyncStatus.ERROR, retry_count=1, last_synced_at=clock.now - timedelta(hours=2)))
        session.add(SyncState(ean="c1", status=SyncStatus.SUCCESS, retry_count=0, last_synced_at=clock.now - timedelta(hours=3)))
        session.add(SyncState(ean="e1", status=SyncStatus.PENDING, retry_count=0, last_synced_at=clock.now - timedelta(hours=1)))
        session.commit()

    result = offers.handle_sync_batch(ctx, _request(Action.OFFER_SYNC_BATCH, brands=["002"], seasons=["251"]))

    assert result == "selected=3"
    assert _only(ctx, Action.OFFER_UPSERT_BATCH).payload["eans"] == ["a1", "b1", "e1"]
    with session_factory() as session:
        assert session.get(SyncState, "a1").status == SyncStatus.IN_PROGRESS
        assert session.get(SyncState, "c1").status == SyncStatus.SUCCESS


def test_sync_batch_respects_limit_and_rejects_empty_filters(ctx, stage):
    for ean in ("a1", "a2", "a3"):
        stage(ean)
    offers.handle_sync_batch(ctx, _request(Action.OFFER_SYNC_BATCH, brands=["002"], seasons=["251"], limit=2))
    assert _only(ctx, Action.OFFER_UPSERT_BATCH).payload["eans"] == ["a1", "a2"]

    try:
        offers.handle_sync_batch(ctx, _request(Action.OFFER_SYNC_BATCH, brands=[], seasons=["251"]))
    except ValueError as e:
        assert "must not be empty" in str(e)
    else:
        raise AssertionError("empty brands accepted")


def test_upsert_batch_schedules_single_followup_after_creates(ctx, stage, clock):
    stage("111")
    stage("222")

    summary = offers.handle_upsert_batch(ctx, _request(Action.OFFER_UPSERT_BATCH, eans=["111", "222"]))

    assert "creates=2" in summary
    check = _only(ctx, Action.PROCESS_STATUS_CHECK)
    assert check.payload["batch_size"] == 1
    assert check.available_at - check.created_at == timedelta(seconds=120)


def test_upsert_batch_followup_counts_updates(ctx, stage, session_factory, clock):
    stage("111")
    stage("222")
    _bind(session_factory, clock, "111", "o-1")
    _bind(session_factory, clock, "222", "o-2")

    offers.handle_upsert_batch(ctx, _request(Action.OFFER_UPSERT_BATCH, eans=["111", "222"]))

    assert _only(ctx, Action.PROCESS_STATUS_CHECK).payload["batch_size"] == 6


def test_upsert_without_changes_schedules_nothing(ctx, stage, session_factory, clock):
    stage("111")
    _bind(session_factory, clock, "111", "o-1")
    offers.handle_upsert(ctx, _request(Action.OFFER_UPSERT, ean="111"))
    before = len(_queued(ctx, Action.PROCESS_STATUS_CHECK))

    assert offers.handle_upsert(ctx, _request(Action.OFFER_UPSERT, ean="111")) == "operations=none"
    assert len(_queued(ctx, Action.PROCESS_STATUS_CHECK)) == before


# ---------------------------------------------------------------------- #
def test_create_chain_polls_then_stores_identity(ctx, stage, fake_api, offer_map):
    stage("111")
    offers.handle_create(ctx, _request(Action.OFFER_CREATE, ean="111"))

    poll = _only(ctx, Action.PROCESS_POLL)
    assert poll.payload["on_success"] == NextStep.request(Action.OFFER_CREATE_STORE, ean="111").to_dict()
    process_id = poll.payload["process_id"]
    fake_api.set_status(process_id, "SUCCESS", entity_id="X9")

    processes.handle_poll(ctx, poll)
    store = _only(ctx, Action.OFFER_CREATE_STORE)
    assert store.payload == {"action": "offer.create.store", "ean": "111", "entity_id": "X9"}

    offers.handle_create_store(ctx, store)
    assert offer_map("111").offer_id == "X9"
    assert len(_queued(ctx, Action.OFFER_SYNC_SUCCESS)) == 1


def test_create_of_existing_offer_binds_and_reports_success(ctx, stage, fake_api, offer_map):
    stage("111")
    fake_api.create_results["111"] = AlreadyExists(offer_id="abc-1")

    assert "already exists" in offers.handle_create(ctx, _request(Action.OFFER_CREATE, ean="111"))
    assert offer_map("111").offer_id == "abc-1"
    assert _only(ctx, Action.OFFER_SYNC_SUCCESS).payload["ean"] == "111"
    assert not _queued(ctx, Action.PROCESS_POLL)


def test_price_update_records_ledger_and_polls(ctx, stage, session_factory, clock, fake_api, offer_map):
    stage("111", price=12.5)
    _bind(session_factory, clock, "111", "o-1")

    offers.handle_update_price(ctx, _request(Action.OFFER_UPDATE_PRICE, ean="111"))

    assert fake_api.ops("price") == [("price", "o-1", 12.5)]
    assert offer_map("111").last_price == 12.5
    poll = _only(ctx, Action.PROCESS_POLL)
    assert poll.payload["on_success"]["payload"]["action"] == Action.OFFER_MAP_TOUCH.value
    with session_factory() as session:
        entry = session.get(ProcessLedgerEntry, poll.payload["process_id"])
        assert entry.op_type == OperationType.PRICE_UPDATE


# ---------------------------------------------------------------------- #
def test_poll_pending_sleeps_and_requeues_same_payload(ctx):
    task = _request(
        Action.PROCESS_POLL,
        process_id="p-77",
        on_success=NextStep.request(Action.OFFER_MAP_TOUCH, ean="111").to_dict(),
    )
    assert processes.handle_poll(ctx, task) == "PENDING re-polled"
    assert ctx.sleeps == [2.0]
    assert _only(ctx, Action.PROCESS_POLL).payload == task.payload


def test_poll_failure_resolves_ledger_and_runs_failure_step(ctx, session_factory, clock, fake_api):
    with session_factory() as session:
        process_ledger.record_operation(session, "p-9", "111", OperationType.STOCK_UPDATE, clock())
        session.commit()
    fake_api.set_status("p-9", "FAILURE", error_message="Stock out of range")
    task = _request(
        Action.PROCESS_POLL,
        process_id="p-9",
        on_success=NextStep.request(Action.OFFER_MAP_TOUCH, ean="111").to_dict(),
        on_failure=NextStep.request(Action.OFFER_SYNC_ERROR, ean="111").to_dict(),
    )

    processes.handle_poll(ctx, task)

    follow = _only(ctx, Action.OFFER_SYNC_ERROR)
    assert follow.payload["status"] == "FAILURE"
    assert follow.payload["error"] == "Stock out of range"
    assert not _queued(ctx, Action.OFFER_MAP_TOUCH)
    with session_factory() as session:
        assert session.get(ProcessLedgerEntry, "p-9").status == ProcessStatus.FAILURE


def test_sync_error_retries_until_parked(ctx, session_factory):
    ctx.sync_settings["max_retries"] = 2
    task = _request(Action.OFFER_SYNC_ERROR, ean="111", status="FAILURE", error="Bad request")

    assert offers.handle_sync_error(ctx, task) == "retry 1 scheduled"
    assert _only(ctx, Action.OFFER_UPSERT).payload["ean"] == "111"

    assert offers.handle_sync_error(ctx, task) == "failed after 2 retries"
    assert len(_queued(ctx, Action.OFFER_UPSERT)) == 1
    with session_factory() as session:
        state = session.get(SyncState, "111")
        assert state.status == SyncStatus.FAILED
        assert state.last_error == "Bad request (max retries reached)"


def test_status_check_reschedules_while_pending(ctx, session_factory, clock):
    with session_factory() as session:
        process_ledger.record_operation(session, "p-1", "111", OperationType.PRICE_UPDATE, clock())
        session.commit()

    processes.handle_status_check(ctx, _request(Action.PROCESS_STATUS_CHECK, batch_size=10))

    again = _only(ctx, Action.PROCESS_STATUS_CHECK)
    assert again.payload["batch_size"] == 10
    assert again.available_at - again.created_at == timedelta(seconds=60)


def test_status_check_stops_when_everything_resolved(ctx, session_factory, clock, fake_api):
    with session_factory() as session:
        process_ledger.record_operation(session, "p-1", "111", OperationType.PRICE_UPDATE, clock())
        session.commit()
    fake_api.set_status("p-1", "SUCCESS")

    assert "success=1" in processes.handle_status_check(ctx, _request(Action.PROCESS_STATUS_CHECK))
    assert not _queued(ctx, Action.PROCESS_STATUS_CHECK)


# ---------------------------------------------------------------------- #
def test_export_request_then_fetch_writes_csv(ctx, fake_api):
    exports.handle_export_request(ctx, _request(Action.OFFERS_EXPORT_REQUEST))
    poll = _only(ctx, Action.PROCESS_POLL)
    assert poll.payload["on_success"]["payload"]["action"] == Action.OFFERS_EXPORT_FETCH.value

    result = exports.handle_export_fetch(ctx, _request(Action.OFFERS_EXPORT_FETCH, entity_id="r1"))

    path = Path(ctx.sync_settings["export_dir"]) / "offers_r1.csv"
    assert path.read_text(encoding="utf-8") == fake_api.export_csv
    assert result.endswith("lines=2")


def test_enqueue_loop_only_feeds_a_drained_queue(db_queue):
    loop = EnqueueLoop(db_queue, settings={"pending_threshold": 1, "interval": 0})
    assert loop.run_iteration() is not None
    assert loop.run_iteration() is not None
    assert loop.run_iteration() is None
    assert db_queue.pending_count(TaskType.MARKETPLACE_REQUEST.value, Action.OFFER_SYNC_BATCH.value) == 2


def test_stock_update_chain_touches_map_and_marks_success(ctx, stage, session_factory, clock, fake_api, offer_map):
    stage("111", stock=0, external_stock=7, use_external_stock=True)
    _bind(session_factory, clock, "111", "o-1")

    offers.handle_update_stock(ctx, _request(Action.OFFER_UPDATE_STOCK, ean="111"))
    assert fake_api.ops("stock") == [("stock", "o-1", 7)]
    poll = _only(ctx, Action.PROCESS_POLL)
    fake_api.set_status(poll.payload["process_id"], "SUCCESS")

    clock.advance(5)
    processes.handle_poll(ctx, poll)
    offers.handle_map_touch(ctx, _only(ctx, Action.OFFER_MAP_TOUCH))
    offers.handle_sync_success(ctx, _request(Action.OFFER_SYNC_SUCCESS, ean="111"))

    mapping = offer_map("111")
    assert mapping.last_stock == 7
    assert mapping.last_checked_at == clock.now
    with session_factory() as session:
        assert session.get(SyncState, "111").status == SyncStatus.SUCCESS
        assert session.get(ProcessLedgerEntry, poll.payload["process_id"]).status == ProcessStatus.SUCCESS
