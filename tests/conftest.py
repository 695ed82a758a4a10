"""Pytest fixtures and fakes.

Every test gets its own file-based SQLite database under ``tmp_path`` so worker
threads and the test thread can share it through separate connections.
"""
import sys
from datetime import datetime, timedelta
from pathlib import Path

import pytest

# Ensure project root on sys.path so 'catalog_sync' resolves without an install
ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from catalog_sync.database import build_engine, build_session_factory, init_db  # noqa: E402
from catalog_sync.jobs.db_queue import DbQueue  # noqa: E402
from catalog_sync.jobs.file_queue import FileQueue  # noqa: E402
from catalog_sync.models.db import OfferMap, StagedOffer  # noqa: E402
from catalog_sync.services.offer_api import Created, ProcessSnapshot  # noqa: E402
from catalog_sync.tasks import TaskContext  # noqa: E402
from catalog_sync.utils.backoff import RetryPolicy  # noqa: E402


class FakeClock:
    """Naive-UTC clock that only moves when told to."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2025, 1, 1, 12, 0, 0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


class FakeOfferAPI:
    """In-memory stand-in for OfferAPI recording every call."""

    def __init__(self):
        self.calls: list[tuple] = []
        self.create_results: dict[str, object] = {}
        self.statuses: dict[str, ProcessSnapshot] = {}
        self.failures: dict[tuple[str, str], Exception] = {}
        self.export_csv = "offerId,ean\nX1,111\n"
        self._seq = 0

    def _next(self, prefix: str) -> str:
        self._seq += 1
        return f"{prefix}-{self._seq}"

    def _maybe_fail(self, op: str, key: str) -> None:
        exc = self.failures.get((op, key))
        if exc is not None:
            raise exc

    def create_offer(self, payload):
        self.calls.append(("create", payload["ean"], payload))
        self._maybe_fail("create", payload["ean"])
        result = self.create_results.get(payload["ean"])
        return result if result is not None else Created(process_id=self._next("p-create"))

    def update_core(self, offer_id, body):
        self.calls.append(("core", offer_id, body))
        self._maybe_fail("core", offer_id)
        return self._next("p-core")

    def update_price(self, offer_id, price):
        self.calls.append(("price", offer_id, price))
        self._maybe_fail("price", offer_id)
        return self._next("p-price")

    def update_stock(self, offer_id, amount):
        self.calls.append(("stock", offer_id, amount))
        self._maybe_fail("stock", offer_id)
        return self._next("p-stock")

    def get_process_status(self, process_id):
        self.calls.append(("status", process_id))
        self._maybe_fail("status", process_id)
        snapshot = self.statuses.get(process_id)
        if snapshot is None:
            return ProcessSnapshot(process_id=process_id, status="PENDING", raw={"status": "PENDING"})
        return snapshot

    def request_export(self):
        self.calls.append(("export",))
        return self._next("p-export")

    def fetch_export(self, report_id):
        self.calls.append(("fetch", report_id))
        return self.export_csv

    def ops(self, *kinds):
        return [c for c in self.calls if not kinds or c[0] in kinds]

    def set_status(self, process_id, status, entity_id=None, error_message=None):
        raw = {"status": status, "entityId": entity_id, "errorMessage": error_message}
        self.statuses[process_id] = ProcessSnapshot(
            process_id=process_id, status=status, entity_id=entity_id, error_message=error_message, raw=raw
        )


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def engine(tmp_path):
    eng = build_engine(f"sqlite+pysqlite:///{tmp_path / 'test.db'}")
    init_db(eng)
    yield eng
    eng.dispose()


@pytest.fixture()
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture()
def db_queue(session_factory, clock):
    return DbQueue(session_factory, policy=RetryPolicy(), clock=clock)


@pytest.fixture()
def file_queue(tmp_path, clock):
    return FileQueue(tmp_path / "queue", policy=RetryPolicy(), clock=clock)


@pytest.fixture()
def fake_api():
    return FakeOfferAPI()


@pytest.fixture()
def ctx(db_queue, session_factory, fake_api, clock, tmp_path):
    sleeps: list[float] = []
    context = TaskContext(
        queue=db_queue,
        session_factory=session_factory,
        offer_api=fake_api,
        clock=clock,
        sleep=sleeps.append,
    )
    context.sync_settings["export_dir"] = str(tmp_path / "export")
    context.sleeps = sleeps  # type: ignore[attr-defined]
    return context


@pytest.fixture()
def stage(session_factory):
    """Insert or update a staged offer row."""
    def _stage(ean: str, *, price: float = 19.99, stock: int = 5, brand_id: str = "002", season: str = "251", **extra):
        with session_factory() as session:
            row = session.get(StagedOffer, ean) or StagedOffer(ean=ean)
            row.brand_id = brand_id
            row.season = season
            row.price = price
            row.stock = stock
            row.external_stock = extra.get("external_stock", 0)
            row.use_external_stock = extra.get("use_external_stock", False)
            row.delivery_code = extra.get("delivery_code")
            row.on_hold_by_retailer = extra.get("on_hold_by_retailer")
            session.merge(row)
            session.commit()
    return _stage


@pytest.fixture()
def offer_map(session_factory):
    def _get(ean: str):
        with session_factory() as session:
            mapping = session.get(OfferMap, ean)
            if mapping is not None:
                session.expunge(mapping)
            return mapping
    return _get


__all__ = ["FakeClock", "FakeOfferAPI"]
