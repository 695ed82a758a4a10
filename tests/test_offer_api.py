from unittest.mock import MagicMock

import pytest

from catalog_sync.services.marketplace_client import RemoteAPIError
from catalog_sync.services.offer_api import (
    AlreadyExists,
    Created,
    CreateFailed,
    MissingProcessId,
    OfferAPI,
)


def _api(**request_kwargs):
    client = MagicMock()
    client.request = MagicMock(**request_kwargs)
    return OfferAPI(client), client


def test_create_returns_process_id():
    api, client = _api(return_value={"processStatusId": 77})
    assert api.create_offer({"ean": "1"}) == Created(process_id="77")
    client.request.assert_called_once_with("POST", "/retailer/offers", json={"ean": "1"})


def test_create_duplicate_maps_to_already_exists():
    body = "Duplicate found: retailer offer '1a2b-3c4d' with the same EAN"
    api, _ = _api(side_effect=RemoteAPIError(400, "POST", "/retailer/offers", body))
    assert api.create_offer({"ean": "1"}) == AlreadyExists(offer_id="1a2b-3c4d")


def test_duplicate_without_identity_and_missing_process_id_are_failures():
    api, _ = _api(side_effect=RemoteAPIError(400, "POST", "/retailer/offers", "Duplicate found: retailer offer"))
    result = api.create_offer({"ean": "1"})
    assert isinstance(result, CreateFailed)
    assert result.status_code == 400

    api, _ = _api(return_value={})
    assert isinstance(api.create_offer({"ean": "1"}), CreateFailed)


def test_updates_use_offer_paths_and_return_process_ids():
    api, client = _api(return_value={"processStatusId": "p1"})
    assert api.update_price("off-1", 12.5) == "p1"
    client.request.assert_called_with(
        "PUT", "/retailer/offers/off-1/price", json={"pricing": {"bundlePrices": [{"quantity": 1, "unitPrice": 12.5}]}}
    )
    assert api.update_stock("off-1", 3) == "p1"
    client.request.assert_called_with(
        "PUT", "/retailer/offers/off-1/stock", json={"amount": 3, "managedByRetailer": True}
    )


def test_update_without_process_id_raises():
    api, _ = _api(return_value={})
    with pytest.raises(MissingProcessId):
        api.update_core("off-1", {"reference": "1"})


def test_process_status_snapshot_classification():
    api, _ = _api(return_value={"status": "SUCCESS", "entityId": "X123"})
    snap = api.get_process_status("p1")
    assert snap.is_success and not snap.is_pending
    assert snap.resolved_offer_id == "X123"

    api, _ = _api(return_value={"status": "FAILURE", "errorMessage": "[Duplicate Offer] offer 'ab-12' exists"})
    dup = api.get_process_status("p2")
    assert dup.is_duplicate and not dup.is_terminal_failure
    assert dup.resolved_offer_id == "ab-12"

    api, _ = _api(return_value={"status": "TIMEOUT"})
    failed = api.get_process_status("p3")
    assert failed.is_terminal_failure
    assert failed.failure_message == "Process failed with status: TIMEOUT"

    api, _ = _api(return_value={"status": "PENDING"})
    assert api.get_process_status("p4").is_pending


def test_export_download_requests_csv():
    api, client = _api(return_value="a,b\n")
    assert api.fetch_export("r9") == "a,b\n"
    client.request.assert_called_once_with(
        "GET", "/retailer/offers/export/r9", accept="application/vnd.retailer.v10+csv"
    )


def test_create_propagates_errors_that_are_not_duplicates():
    api, _ = _api(side_effect=RemoteAPIError(503, "POST", "/retailer/offers", "Service Unavailable"))
    with pytest.raises(RemoteAPIError) as err:
        api.create_offer({"ean": "1"})
    assert err.value.retryable

    api, _ = _api(side_effect=RemoteAPIError(400, "POST", "/retailer/offers", "Invalid EAN"))
    with pytest.raises(RemoteAPIError):
        api.create_offer({"ean": "1"})


def test_duplicate_marker_only_counts_on_failed_process():
    api, _ = _api(return_value={"status": "PENDING", "errorMessage": "[Duplicate Offer] offer 'ab-12' exists"})
    snap = api.get_process_status("p5")
    assert not snap.is_duplicate
    assert snap.is_pending
    assert snap.resolved_offer_id is None

    api, _ = _api(return_value={"status": "TIMEOUT", "errorMessage": "[Duplicate Offer] offer 'ab-12' exists"})
    timed_out = api.get_process_status("p6")
    assert timed_out.is_terminal_failure and not timed_out.is_duplicate
