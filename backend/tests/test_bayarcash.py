"""
BayarCash checksum, callback verification and client tests.
"""

import hashlib
import hmac
import json
from datetime import datetime, timezone

import httpx
import pytest

from core.errors import GatewayError
from integrations.base import CheckoutRequest, PaymentOutcome
from integrations.bayarcash import (
    BayarCashClient,
    create_callback_checksum,
    create_request_checksum,
    extract_transaction_id,
    outcome_for_status,
    verify_callback,
)

SECRET = "bc-secret"
NOW = datetime(2026, 10, 19, 8, 0, 0, tzinfo=timezone.utc)


def _callback(**overrides) -> dict:
    data = {
        "record_type": "transaction",
        "transaction_id": "trx_1",
        "exchange_reference_number": "1-761",
        "exchange_transaction_id": "ex-9",
        "order_number": "ORD202610190001",
        "currency": "MYR",
        "amount": "120.00",
        "payer_name": "AG001",
        "payer_email": "ag@t.my",
        "payer_bank_name": "Maybank2U",
        "status": "3",
        "status_description": "Approved",
        "datetime": "2026-10-19 07:59:00",
    }
    data.update(overrides)
    data["checksum"] = create_callback_checksum(data, SECRET)
    return data


def test_request_checksum_sorts_fields_and_joins_with_pipe():
    data = {
        "payment_channel": "1",
        "order_number": "ORD1",
        "amount": "10.00",
        "payer_name": "Ali",
        "payer_email": "ali@t.my",
        "callback_url": "ignored",
    }
    expected = hmac.new(
        SECRET.encode(), b"10.00|ORD1|ali@t.my|Ali|1", hashlib.sha256
    ).hexdigest()
    assert create_request_checksum(data, SECRET) == expected


def test_missing_checksum_fields_count_as_empty():
    data = {"amount": "10.00", "order_number": "ORD1"}
    expected = hmac.new(SECRET.encode(), b"10.00|ORD1|||", hashlib.sha256).hexdigest()
    assert create_request_checksum(data, SECRET) == expected


def test_verify_callback_accepts_fresh_signed_callback():
    assert verify_callback(_callback(), SECRET, now=NOW) == (True, None)


def test_verify_callback_rejects_tampered_amount():
    data = _callback()
    data["amount"] = "1.00"
    assert verify_callback(data, SECRET, now=NOW) == (False, "Invalid checksum")


def test_verify_callback_rejects_stale_and_future_timestamps():
    stale = _callback(datetime="2026-10-19 07:54:00")
    future = _callback(datetime="2026-10-19 08:02:00")
    assert verify_callback(stale, SECRET, now=NOW) == (False, "Callback timestamp expired")
    assert verify_callback(future, SECRET, now=NOW) == (False, "Invalid callback timestamp")


def test_verify_callback_accepts_small_clock_skew():
    ok, _ = verify_callback(_callback(datetime="2026-10-19T08:00:30Z"), SECRET, now=NOW)
    assert ok


def test_verify_callback_rejects_garbage_datetime():
    assert verify_callback(_callback(datetime="yesterday"), SECRET, now=NOW) == (False, "Invalid datetime format")


def test_verify_callback_without_datetime_still_needs_checksum():
    data = _callback(datetime=None)
    assert verify_callback(data, SECRET, now=NOW) == (True, None)
    data.pop("checksum")
    assert verify_callback(data, SECRET, now=NOW) == (False, "Invalid checksum")


def test_status_codes_map_to_outcomes():
    assert outcome_for_status("3") is PaymentOutcome.PAID
    assert outcome_for_status(2) is PaymentOutcome.FAILED
    assert outcome_for_status("4") is PaymentOutcome.FAILED
    assert outcome_for_status("1") is PaymentOutcome.PENDING
    assert outcome_for_status(None) is PaymentOutcome.PENDING


def test_extract_transaction_id_checks_nested_data():
    assert extract_transaction_id({"id": "a"}) == "a"
    assert extract_transaction_id({"data": {"transaction_id": "b"}}) == "b"
    assert extract_transaction_id({"url": "x"}) is None


def _client(upstream) -> BayarCashClient:
    return BayarCashClient(
        {
            "portal_key": "portal",
            "secret_key": SECRET,
            "api_token": "tok",
            "base_url": "https://bc.test/api/v2",
            "status_base_url": "https://bc.test/v3",
        },
        transport=upstream.transport,
    )


def _checkout_request() -> CheckoutRequest:
    return CheckoutRequest(
        order_number="ORD202610190001",
        amount=120,
        description="Order",
        payer_name="AG001",
        payer_email="ag@t.my",
        payer_phone="0145556666",
        callback_url="https://ops.example.my/api/v1/payments/bayarcash/callback",
        redirect_url="https://spa.example.my/payment-summary?order=ORD202610190001",
    )


@pytest.mark.asyncio
async def test_create_checkout_signs_payment_intent(upstream):
    upstream.add("POST", "/payment-intents", {"id": "trx_9", "url": "https://pay.bc.test/trx_9"})

    session = await _client(upstream).create_checkout(_checkout_request())

    assert session.reference == "trx_9"
    assert session.payment_url == "https://pay.bc.test/trx_9"
    sent = upstream.calls("POST", "/payment-intents")[0]
    assert sent.headers["authorization"] == "Bearer tok"
    body = json.loads(sent.content)
    assert body["amount"] == "120.00"
    assert body["payment_channel"] == "1"
    assert body["checksum"] == create_request_checksum(body, SECRET)


@pytest.mark.asyncio
async def test_create_checkout_surfaces_gateway_rejection(upstream):
    upstream.add("POST", "/payment-intents", httpx.Response(422, json={"message": "Invalid portal key"}))

    with pytest.raises(GatewayError) as exc:
        await _client(upstream).create_checkout(_checkout_request())
    assert exc.value.message == "Invalid portal key"
    assert exc.value.upstream_status == 422


@pytest.mark.asyncio
async def test_create_checkout_rejects_non_json_response(upstream):
    upstream.add("POST", "/payment-intents", httpx.Response(502, text="<html>Bad gateway</html>"))

    with pytest.raises(GatewayError, match="invalid response"):
        await _client(upstream).create_checkout(_checkout_request())


@pytest.mark.asyncio
async def test_fetch_payment_status_reads_v3_transaction(upstream):
    upstream.add("GET", "/v3/transactions/trx_9", {"id": "trx_9", "status": 3})

    status = await _client(upstream).fetch_payment_status("trx_9")
    assert status.outcome is PaymentOutcome.PAID
    assert status.raw["id"] == "trx_9"
