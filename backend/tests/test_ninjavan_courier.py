"""
NinjaVan payload building, token caching and courier endpoints.
"""

import json
from datetime import date, datetime, timedelta

import httpx
import pytest
from httpx import AsyncClient
from sqlalchemy import select

from db.models import NinjaVanToken
from fulfillment.courier import CONFIG_MISSING_MESSAGE, CourierService, purge_expired_tokens
from integrations.ninjavan import Parcel, SenderAddress, build_order_payload, is_already_cancelled, split_address

SENDER = SenderAddress(
    name="Cawangan Shah Alam",
    phone="60133334444",
    email="br@t.my",
    address1="No 12, Jalan Kristal 7/69",
    address2=None,
    postcode="40000",
    city="Shah Alam",
    state="Selangor",
)


def _parcel(**overrides) -> Parcel:
    fields = dict(
        customer_name="Nur Aisyah",
        phone="0123456789",
        address="No 3, Jalan Mawar 2, Taman Bunga",
        postcode="43000",
        city="Kajang",
        state="Selangor",
        price=89.9,
        payment_method="COD",
        product_name="Zaitun Premium 250ml",
        quantity=2,
        id_sale="OJ00042",
        marketer_id_staff="MK001",
    )
    fields.update(overrides)
    return Parcel(**fields)


def _route_token(upstream, token="tok_1", expires_in=3600):
    upstream.add("POST", "/2.0/oauth/access_token", {"access_token": token, "expires_in": expires_in})


def _order_body():
    return {
        "customerName": "Nur Aisyah",
        "phone": "0123456789",
        "address": "No 3, Jalan Mawar 2, Taman Bunga",
        "postcode": "43000",
        "city": "Kajang",
        "state": "Selangor",
        "price": 89.9,
        "paymentMethod": "COD",
        "productName": "Zaitun Premium 250ml",
        "idSale": "OJ00042",
    }


# ─── Payload ────────────────────────────────────────────────────────────────


def test_cod_payload_rounds_cash_on_delivery():
    payload = build_order_payload(SENDER, _parcel(), "OJ00042", merchant_prefix="OLIVEJARDIN", today=date(2026, 10, 19))

    assert payload["requested_tracking_number"] == "OJ00042"
    assert payload["reference"] == {"merchant_order_number": "OLIVEJARDIN-OJ00042"}
    job = payload["parcel_job"]
    assert job["cash_on_delivery"] == 90
    assert job["insured_value"] == 90
    assert job["pickup_date"] == "2026-10-19"
    assert job["delivery_start_date"] == "2026-10-21"
    assert job["pickup_timeslot"]["timezone"] == "Asia/Kuala_Lumpur"
    assert job["delivery_instructions"] == "Zaitun Premium 250ml (MK001) (2026-10-19)"
    assert payload["from"]["address"]["address2"] == ""
    assert payload["to"]["address"]["country"] == "MY"


def test_prepaid_payload_has_no_cod():
    payload = build_order_payload(
        SENDER, _parcel(payment_method="CASH", marketer_id_staff=None), "OJ1", merchant_prefix="P"
    )
    assert payload["parcel_job"]["cash_on_delivery"] == 0
    assert "(MK001)" not in payload["parcel_job"]["delivery_instructions"]


def test_long_address_is_split():
    address = "A" * 100 + "B" * 150
    first, second = split_address(address)
    assert first == "A" * 100
    assert second == "B" * 100
    assert split_address("short") == ("short", "")


def test_already_cancelled_detection():
    assert is_already_cancelled({"description": "ORDER_ALREADY_CANCELLED"})
    assert is_already_cancelled({"data": {"message": "Order is already cancelled"}})
    assert not is_already_cancelled({"message": "Order not found"})


# ─── Service ────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
class TestCourierService:
    async def test_token_is_cached_between_bookings(self, test_db, seeded_db, upstream):
        _route_token(upstream)
        upstream.add("POST", "/4.1/orders", lambda request: httpx.Response(200, json=json.loads(request.content)))
        service = CourierService(test_db, upstream.transport)

        first = await service.book(seeded_db["branch"].id, _parcel(id_sale="OJ00001"))
        second = await service.book(seeded_db["branch"].id, _parcel(id_sale="OJ00002"))

        assert first["trackingNumber"] == "OJ00001"
        assert second["trackingNumber"] == "OJ00002"
        assert len(upstream.calls("POST", "/oauth/access_token")) == 1
        for call in upstream.calls("POST", "/4.1/orders"):
            assert call.headers["authorization"] == "Bearer tok_1"

        tokens = (await test_db.execute(select(NinjaVanToken))).scalars().all()
        assert len(tokens) == 1
        assert tokens[0].profile_id == seeded_db["branch"].id
        remaining = tokens[0].expires_at - datetime.utcnow()
        assert timedelta(minutes=54) < remaining <= timedelta(minutes=55)

    async def test_expired_token_is_refreshed(self, test_db, seeded_db, upstream):
        test_db.add(
            NinjaVanToken(
                profile_id=seeded_db["branch"].id,
                access_token="stale",
                expires_at=datetime.utcnow() - timedelta(minutes=1),
            )
        )
        await test_db.commit()
        _route_token(upstream, token="fresh")
        upstream.add("POST", "/4.1/orders", {"tracking_number": "OJ00042"})

        await CourierService(test_db, upstream.transport).book(seeded_db["branch"].id, _parcel())

        assert upstream.calls("POST", "/4.1/orders")[0].headers["authorization"] == "Bearer fresh"

    async def test_marketer_books_through_branch_account(self, test_db, seeded_db, upstream):
        _route_token(upstream)
        upstream.add("POST", "/4.1/orders", {"tracking_number": "OJ00042"})

        result = await CourierService(test_db, upstream.transport).book(seeded_db["marketer"].id, _parcel())

        assert result["success"] is True
        token_request = json.loads(upstream.calls("POST", "/oauth/access_token")[0].content)
        assert token_request == {
            "client_id": "nv-client",
            "client_secret": "nv-secret",
            "grant_type": "client_credentials",
        }

    async def test_long_sale_id_gets_fallback_tracking_id(self, test_db, seeded_db, upstream):
        _route_token(upstream)
        upstream.add("POST", "/4.1/orders", {})

        result = await CourierService(test_db, upstream.transport).book(
            seeded_db["branch"].id, _parcel(id_sale="OJ1234567890")
        )

        sent = json.loads(upstream.calls("POST", "/4.1/orders")[0].content)
        assert sent["requested_tracking_number"].startswith("OJ")
        assert len(sent["requested_tracking_number"]) == 7
        assert result["trackingNumber"] == sent["requested_tracking_number"]

    async def test_purge_removes_only_expired_tokens(self, test_db, seeded_db):
        now = datetime.utcnow()
        test_db.add_all(
            [
                NinjaVanToken(profile_id=seeded_db["branch"].id, access_token="old", expires_at=now - timedelta(hours=1)),
                NinjaVanToken(profile_id=seeded_db["branch"].id, access_token="new", expires_at=now + timedelta(hours=1)),
            ]
        )
        await test_db.commit()

        assert await purge_expired_tokens(test_db, now=now) == 1
        remaining = (await test_db.execute(select(NinjaVanToken.access_token))).scalars().all()
        assert remaining == ["new"]


# ─── Endpoints ──────────────────────────────────────────────────────────────


@pytest.mark.asyncio
class TestCourierAPI:
    async def test_create_order(self, client: AsyncClient, seeded_db, caller, upstream):
        caller["sub"] = str(seeded_db["branch"].id)
        _route_token(upstream)
        upstream.add("POST", "/4.1/orders", {"tracking_number": "OJ00042"})

        resp = await client.post("/api/v1/courier/ninjavan/orders", json=_order_body())

        assert resp.status_code == 200
        assert resp.json() == {
            "success": True,
            "trackingNumber": "OJ00042",
            "message": "Order sent to NinjaVan successfully",
        }
        sent = json.loads(upstream.calls("POST", "/4.1/orders")[0].content)
        assert sent["parcel_job"]["cash_on_delivery"] == 90
        assert sent["from"]["name"] == "Cawangan Shah Alam"

    async def test_create_order_without_config(self, client: AsyncClient, seeded_db, caller):
        caller["sub"] = str(seeded_db["agent"].id)
        resp = await client.post("/api/v1/courier/ninjavan/orders", json=_order_body())
        assert resp.status_code == 400
        assert resp.json() == {"error": CONFIG_MISSING_MESSAGE}

    async def test_auth_failure_is_500(self, client: AsyncClient, seeded_db, caller, upstream):
        caller["sub"] = str(seeded_db["branch"].id)
        upstream.add("POST", "/2.0/oauth/access_token", httpx.Response(401, text="invalid_client"))

        resp = await client.post("/api/v1/courier/ninjavan/orders", json=_order_body())

        assert resp.status_code == 500
        assert resp.json()["error"] == "Failed to authenticate with NinjaVan API"

    async def test_courier_rejection_is_500(self, client: AsyncClient, seeded_db, caller, upstream):
        caller["sub"] = str(seeded_db["branch"].id)
        _route_token(upstream)
        upstream.add("POST", "/4.1/orders", httpx.Response(400, json={"message": "Invalid postcode"}))

        resp = await client.post("/api/v1/courier/ninjavan/orders", json=_order_body())

        assert resp.status_code == 500
        assert resp.json()["error"] == "Invalid postcode"

    async def test_cancel_order(self, client: AsyncClient, seeded_db, caller, upstream):
        caller["sub"] = str(seeded_db["branch"].id)
        _route_token(upstream)
        upstream.add("DELETE", "/2.2/orders/OJ00042", {"trackingId": "OJ00042", "status": "Cancelled"})

        resp = await client.post("/api/v1/courier/ninjavan/cancel", json={"trackingNumber": "OJ00042"})

        assert resp.status_code == 200
        assert resp.json() == {
            "success": True,
            "trackingId": "OJ00042",
            "status": "Cancelled",
            "message": "Order cancelled successfully",
        }

    async def test_cancel_already_cancelled_is_success(self, client: AsyncClient, seeded_db, caller, upstream):
        caller["sub"] = str(seeded_db["branch"].id)
        _route_token(upstream)
        upstream.add(
            "DELETE",
            "/2.2/orders/OJ00042",
            httpx.Response(400, json={"description": "ORDER_ALREADY_CANCELLED"}),
        )

        resp = await client.post("/api/v1/courier/ninjavan/cancel", json={"trackingNumber": "OJ00042"})

        assert resp.status_code == 200
        assert resp.json()["alreadyCancelled"] is True

    async def test_cancel_requires_tracking_number(self, client: AsyncClient, seeded_db, caller):
        caller["sub"] = str(seeded_db["branch"].id)
        resp = await client.post("/api/v1/courier/ninjavan/cancel", json={})
        assert resp.status_code == 400
        assert resp.json() == {"error": "Tracking number is required"}

    async def test_waybill_returns_pdf(self, client: AsyncClient, seeded_db, caller, upstream):
        caller["sub"] = str(seeded_db["branch"].id)
        _route_token(upstream)
        upstream.add(
            "GET",
            "/2.0/reports/waybill",
            httpx.Response(200, content=b"%PDF-1.4 fake", headers={"Content-Type": "application/pdf"}),
        )

        resp = await client.post(
            "/api/v1/courier/ninjavan/waybill", json={"trackingNumbers": ["OJ00042", "", "OJ00043"]}
        )

        assert resp.status_code == 200
        assert resp.headers["content-type"] == "application/pdf"
        assert resp.content == b"%PDF-1.4 fake"
        params = upstream.calls("GET", "/2.0/reports/waybill")[0].url.params
        assert params["tids"] == "OJ00042,OJ00043"
        assert params["h"] == "0"

    async def test_waybill_needs_tracking_numbers(self, client: AsyncClient, seeded_db, caller):
        caller["sub"] = str(seeded_db["branch"].id)
        empty = await client.post("/api/v1/courier/ninjavan/waybill", json={"trackingNumbers": []})
        blank = await client.post("/api/v1/courier/ninjavan/waybill", json={"trackingNumbers": [""]})
        assert empty.status_code == 422
        assert blank.status_code == 400
        assert blank.json() == {"error": "Selected orders do not have tracking numbers"}
