from datetime import timedelta

from sqlalchemy import select

from catalog_sync.models.db import OfferMap, OperationType, ProcessLedgerEntry, ProcessStatus, SyncState, SyncStatus
from catalog_sync.services import process_ledger
from catalog_sync.services.process_poller import ProcessPoller, shard_offset


def _seed(session_factory, clock, count, op_type=OperationType.PRICE_UPDATE, prefix="p"):
    with session_factory() as session:
        for n in range(count):
            process_ledger.record_operation(
                session, f"{prefix}{n:03d}", f"ean{n:03d}", op_type, clock.now + timedelta(seconds=n)
            )
        session.commit()


def _entry(session_factory, process_id):
    with session_factory() as session:
        entry = session.get(ProcessLedgerEntry, process_id)
        session.expunge(entry)
        return entry


def test_shard_windows_are_disjoint(session_factory, fake_api, clock):
    assert shard_offset(50, 2) == 100
    assert shard_offset(50, 0) == 0
    _seed(session_factory, clock, 160)
    clock.advance(600)

    result = ProcessPoller(session_factory, fake_api, clock=clock).check(batch_size=50, concurrent_count=2)

    polled = [c[1] for c in fake_api.ops("status")]
    assert result.offset == 100
    assert polled == [f"p{n:03d}" for n in range(100, 150)]
    assert not set(polled) & {f"p{n:03d}" for n in range(0, 50)}


def test_recently_checked_entries_are_skipped(session_factory, fake_api, clock):
    _seed(session_factory, clock, 3)
    poller = ProcessPoller(session_factory, fake_api, clock=clock)
    assert poller.check(batch_size=10).checked == 3
    clock.advance(10)
    assert poller.check(batch_size=10).checked == 0
    clock.advance(30)
    assert poller.check(batch_size=10).checked == 3


def test_successful_create_binds_identity(session_factory, fake_api, clock):
    _seed(session_factory, clock, 1, op_type=OperationType.CREATE, prefix="c")
    fake_api.set_status("c000", "SUCCESS", entity_id="X123")

    result = ProcessPoller(session_factory, fake_api, clock=clock).check(batch_size=5)

    assert result.succeeded == 1
    assert _entry(session_factory, "c000").status == ProcessStatus.SUCCESS
    with session_factory() as session:
        assert session.get(OfferMap, "ean000").offer_id == "X123"
        assert session.get(SyncState, "ean000").status == SyncStatus.SUCCESS


def test_duplicate_failure_counts_as_success_and_binds_existing_offer(session_factory, fake_api, clock):
    _seed(session_factory, clock, 1, op_type=OperationType.CREATE, prefix="d")
    fake_api.set_status("d000", "FAILURE", error_message="[Duplicate Offer] retailer offer 'ab-99' already exists")

    result = ProcessPoller(session_factory, fake_api, clock=clock).check(batch_size=5)

    assert result.succeeded == 1 and result.failed == 0
    assert _entry(session_factory, "d000").status == ProcessStatus.SUCCESS
    with session_factory() as session:
        assert session.get(OfferMap, "ean000").offer_id == "ab-99"


def test_terminal_failure_marks_subject_error(session_factory, fake_api, clock):
    _seed(session_factory, clock, 2)
    fake_api.set_status("p000", "FAILURE", error_message="Invalid price")
    fake_api.set_status("p001", "TIMEOUT")

    result = ProcessPoller(session_factory, fake_api, clock=clock).check(batch_size=5)

    assert result.failed == 2
    assert _entry(session_factory, "p001").status == ProcessStatus.TIMEOUT
    with session_factory() as session:
        first = session.get(SyncState, "ean000")
        second = session.get(SyncState, "ean001")
        assert (first.status, first.last_error) == (SyncStatus.ERROR, "Invalid price")
        assert second.last_error == "Process failed with status: TIMEOUT"


def test_resolution_is_one_way(session_factory, fake_api, clock):
    _seed(session_factory, clock, 1)
    fake_api.set_status("p000", "SUCCESS")
    poller = ProcessPoller(session_factory, fake_api, clock=clock)
    poller.check(batch_size=5)

    fake_api.set_status("p000", "FAILURE", error_message="late")
    poller.apply(fake_api.get_process_status("p000"), "ean000", OperationType.PRICE_UPDATE)
    assert _entry(session_factory, "p000").status == ProcessStatus.SUCCESS

    with session_factory() as session:
        process_ledger.record_operation(session, "p000", "ean000", OperationType.PRICE_UPDATE, clock.now)
        session.commit()
    assert _entry(session_factory, "p000").status == ProcessStatus.SUCCESS


def test_pending_and_unreadable_entries_stay_pending(session_factory, fake_api, clock):
    _seed(session_factory, clock, 2)
    fake_api.failures[("status", "p001")] = RuntimeError("network down")

    result = ProcessPoller(session_factory, fake_api, clock=clock).check(batch_size=5)

    assert result.still_pending == 2
    with session_factory() as session:
        statuses = session.execute(select(ProcessLedgerEntry.status)).scalars().all()
    assert set(statuses) == {ProcessStatus.PENDING}
    assert _entry(session_factory, "p001").last_result == {"error": "network down"}


def test_running_check_does_not_shift_sibling_window(session_factory, fake_api, clock):
    _seed(session_factory, clock, 160)
    clock.advance(600)
    sibling_polled = []
    read_status = fake_api.get_process_status

    def read_and_start_sibling(process_id):
        if process_id == "p000":
            sibling = type(fake_api)()
            ProcessPoller(session_factory, sibling, clock=clock).check(batch_size=50, concurrent_count=1)
            sibling_polled.extend(c[1] for c in sibling.ops("status"))
        return read_status(process_id)

    fake_api.get_process_status = read_and_start_sibling
    ProcessPoller(session_factory, fake_api, clock=clock).check(batch_size=50, concurrent_count=0)

    assert sibling_polled == [f"p{n:03d}" for n in range(50, 100)]
