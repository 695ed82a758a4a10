import hashlib

from catalog_sync.services import offer_mapper


def _row(**overrides):
    row = {
        "ean": "8712345678901",
        "price": 24.95,
        "stock": 3,
        "external_stock": 0,
        "use_external_stock": False,
        "delivery_code": None,
        "on_hold_by_retailer": None,
    }
    row.update(overrides)
    return row


def test_payload_shape_and_defaults():
    payload = offer_mapper.from_row(_row())
    assert list(payload) == ["ean", "condition", "onHoldByRetailer", "fulfilment", "pricing", "stock"]
    assert payload["condition"] == {"name": "NEW"}
    assert payload["onHoldByRetailer"] is False
    assert payload["fulfilment"] == {"method": "FBR", "deliveryCode": "1-8d"}
    assert payload["pricing"] == {"bundlePrices": [{"quantity": 1, "unitPrice": 24.95}]}
    assert payload["stock"] == {"amount": 3, "managedByRetailer": True}


def test_zero_stock_forces_on_hold():
    assert offer_mapper.from_row(_row(stock=0))["onHoldByRetailer"] is True
    assert offer_mapper.from_row(_row(stock=-4, on_hold_by_retailer=False))["onHoldByRetailer"] is True
    assert offer_mapper.from_row(_row(stock=2, on_hold_by_retailer=True))["onHoldByRetailer"] is True


def test_external_stock_only_counts_when_enabled():
    assert offer_mapper.from_row(_row(stock=2, external_stock=5))["stock"]["amount"] == 2
    assert offer_mapper.from_row(_row(stock=2, external_stock=5, use_external_stock=True))["stock"]["amount"] == 7
    assert offer_mapper.from_row(_row(stock=-1, external_stock=-3, use_external_stock=True))["stock"]["amount"] == 0


def test_core_hash_covers_only_core_attributes():
    payload = offer_mapper.from_row(_row(delivery_code="24uurs-16"))
    expected = hashlib.sha256(
        b'{"onHoldByRetailer":false,"fulfilment":{"method":"FBR","deliveryCode":"24uurs-16"}}'
    ).hexdigest()
    assert offer_mapper.core_hash(payload) == expected

    repriced = offer_mapper.from_row(_row(delivery_code="24uurs-16", price=1.0, stock=9))
    assert offer_mapper.core_hash(repriced) == expected
    held = offer_mapper.from_row(_row(delivery_code="24uurs-16", on_hold_by_retailer=True))
    assert offer_mapper.core_hash(held) != expected


def test_update_bodies():
    payload = offer_mapper.from_row(_row())
    assert offer_mapper.core_body(payload) == {
        "reference": "8712345678901",
        "onHoldByRetailer": False,
        "fulfilment": {"method": "FBR", "deliveryCode": "1-8d"},
    }
    assert offer_mapper.price_body(9.5) == {"pricing": {"bundlePrices": [{"quantity": 1, "unitPrice": 9.5}]}}
    assert offer_mapper.stock_body(4) == {"amount": 4, "managedByRetailer": True}
