import pytest

from tripdesk_api.core.errors import ValidationError
from tripdesk_api.services.payments import merge_raw, normalize_webhook_payload, order_number_from_session


def test_normalize_accepts_prefixed_form_fields() -> None:
    notification = normalize_webhook_payload(
        {
            "p24_merchant_id": "11111",
            "p24_pos_id": "11111",
            "p24_session_id": "DTS-2026-000123-a1b2c3d4",
            "p24_amount": "50000",
            "p24_currency": "PLN",
            "p24_order_id": "987654321",
            "p24_sign": "abc",
        }
    )

    assert notification.amount == 50000
    assert notification.gateway_order_id == "987654321"
    assert notification.order_number == "DTS-2026-000123"
    assert notification.payload["p24_sign"] == "abc"


def test_normalize_accepts_camel_case_json() -> None:
    notification = normalize_webhook_payload(
        {
            "merchantId": 11111,
            "posId": 11111,
            "sessionId": " DTS-2026-000123-ffff0000 ",
            "amount": 1999,
            "currency": "PLN",
            "orderId": 42,
            "sign": "def",
        }
    )

    assert notification.merchant_id == "11111"
    assert notification.session_id == "DTS-2026-000123-ffff0000"
    assert notification.amount == 1999


def test_normalize_reports_every_missing_field() -> None:
    with pytest.raises(ValidationError) as excinfo:
        normalize_webhook_payload({"merchantId": "1", "posId": "1", "sessionId": "", "amount": "10"})

    assert excinfo.value.status_code == 400
    assert excinfo.value.details["missing"] == ["currency", "gateway_order_id", "session_id", "signature"]


def test_normalize_rejects_fractional_amount() -> None:
    with pytest.raises(ValidationError):
        normalize_webhook_payload(
            {
                "merchantId": "1",
                "posId": "1",
                "sessionId": "DTS-2026-000123-a1b2c3d4",
                "amount": "500.00",
                "currency": "PLN",
                "orderId": "1",
                "sign": "x",
            }
        )


@pytest.mark.parametrize(
    ("session_id", "expected"),
    [
        ("DTS-2026-000123-a1b2c3d4", "DTS-2026-000123"),
        ("DTS-2026-000123", "DTS-2026-000123"),
        ("DTS-2026-000123-retry-2", "DTS-2026-000123"),
        ("LEGACY-ORDER-7", "LEGACY-ORDER-7"),
        ("DTS-26-000123-a1", "DTS-26-000123-a1"),
    ],
)
def test_order_number_from_session(session_id: str, expected: str) -> None:
    assert order_number_from_session(session_id) == expected


def test_merge_raw_keeps_existing_keys() -> None:
    existing = {"register": {"token": "T"}, "_meta": {"orderNumber": "DTS-2026-000123"}}

    merged = merge_raw(existing, verify={"data": {"status": "success"}}, ignored=None)

    assert merged is not existing
    assert merged["register"] == {"token": "T"}
    assert merged["verify"] == {"data": {"status": "success"}}
    assert "ignored" not in merged


def test_merge_raw_wraps_non_mapping_values() -> None:
    assert merge_raw(["legacy"], webhook={"a": 1}) == {"register": ["legacy"], "webhook": {"a": 1}}
    assert merge_raw(None, webhook={"a": 1}) == {"webhook": {"a": 1}}
