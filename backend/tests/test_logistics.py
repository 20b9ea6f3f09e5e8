"""
Bulk ship / revert / delete - API integration tests.

Branch stock after seeding: ZP250 = 20, LT100 = 5.
"""

import uuid
from datetime import date

import pytest
from httpx import AsyncClient
from sqlalchemy import select

from db.models import CustomerPurchase, Inventory
from fulfillment.logistics import LogisticsService


async def _purchase(test_db, seller_id, *, sku="ZP250-2", quantity=3, status="Pending", product_id=None) -> uuid.UUID:
    purchase = CustomerPurchase(
        seller_id=seller_id,
        customer_name="Nur Aisyah",
        phone="0123456789",
        product_id=product_id,
        sku=sku,
        quantity=quantity,
        total_price=99.0,
        delivery_status=status,
        date_order=date(2026, 10, 18),
    )
    test_db.add(purchase)
    await test_db.commit()
    return purchase.id


async def _stock(test_db, user_id, product_id) -> int:
    result = await test_db.execute(
        select(Inventory.quantity).where(Inventory.user_id == user_id, Inventory.product_id == product_id)
    )
    return result.scalar_one()


async def _status(test_db, purchase_id) -> str | None:
    result = await test_db.execute(select(CustomerPurchase.delivery_status).where(CustomerPurchase.id == purchase_id))
    return result.scalar_one_or_none()


@pytest.fixture
def ids(seeded_db):
    """Plain UUIDs captured up front; a failed record rolls the session back and expires ORM objects."""
    return {key: obj.id for key, obj in seeded_db.items()}


@pytest.mark.asyncio
class TestShip:
    async def test_ship_deducts_expanded_sku(self, client: AsyncClient, test_db, ids, caller):
        caller["sub"] = str(ids["branch"])
        purchase_id = await _purchase(test_db, ids["branch"])

        resp = await client.post("/api/v1/logistics/ship", json={"ids": [str(purchase_id)]})

        assert resp.status_code == 200
        assert resp.json() == {"processed": 1, "failed": 0, "processed_ids": [str(purchase_id)], "errors": []}
        assert await _status(test_db, purchase_id) == "Shipped"
        assert await _stock(test_db, ids["branch"], ids["product"]) == 14

    async def test_bundle_sku_deducts_every_part(self, client: AsyncClient, test_db, ids, caller):
        caller["sub"] = str(ids["branch"])
        purchase_id = await _purchase(test_db, ids["branch"], sku="ZP250-2 + LT100-1", quantity=2)

        await client.post("/api/v1/logistics/ship", json={"ids": [str(purchase_id)]})

        assert await _stock(test_db, ids["branch"], ids["product"]) == 16
        assert await _stock(test_db, ids["branch"], ids["other_product"]) == 3

    async def test_short_stock_fails_only_that_record(self, client: AsyncClient, test_db, ids, caller):
        caller["sub"] = str(ids["branch"])
        short = await _purchase(test_db, ids["branch"], sku="LT100", quantity=6)
        fine = await _purchase(test_db, ids["branch"], sku="ZP250", quantity=1)

        resp = await client.post("/api/v1/logistics/ship", json={"ids": [str(short), str(fine)]})

        data = resp.json()
        assert data["processed"] == 1
        assert data["failed"] == 1
        assert data["processed_ids"] == [str(fine)]
        assert data["errors"][0]["id"] == str(short)
        assert data["errors"][0]["error"].startswith("Insufficient stock")
        assert await _status(test_db, short) == "Pending"
        assert await _stock(test_db, ids["branch"], ids["other_product"]) == 5
        assert await _stock(test_db, ids["branch"], ids["product"]) == 19

    async def test_shipped_record_is_not_shipped_twice(self, client: AsyncClient, test_db, ids, caller):
        caller["sub"] = str(ids["branch"])
        purchase_id = await _purchase(test_db, ids["branch"], status="Shipped")

        resp = await client.post("/api/v1/logistics/ship", json={"ids": [str(purchase_id)]})

        assert resp.json()["errors"] == [{"id": str(purchase_id), "error": "Order is Shipped, not Pending"}]
        assert await _stock(test_db, ids["branch"], ids["product"]) == 20

    async def test_other_sellers_records_are_not_found(self, client: AsyncClient, test_db, ids, caller):
        caller["sub"] = str(ids["branch"])
        foreign = await _purchase(test_db, ids["hq"])
        missing = uuid.uuid4()

        resp = await client.post("/api/v1/logistics/ship", json={"ids": [str(foreign), str(missing)]})

        data = resp.json()
        assert data["failed"] == 2
        assert {error["error"] for error in data["errors"]} == {"Order not found"}
        assert await _status(test_db, foreign) == "Pending"

    async def test_empty_id_list_is_rejected(self, client: AsyncClient, ids, caller):
        caller["sub"] = str(ids["branch"])
        resp = await client.post("/api/v1/logistics/ship", json={"ids": []})
        assert resp.status_code == 422


@pytest.mark.asyncio
class TestRevertAndDelete:
    async def test_revert_restores_stock(self, client: AsyncClient, test_db, ids, caller):
        caller["sub"] = str(ids["branch"])
        purchase_id = await _purchase(test_db, ids["branch"])
        await client.post("/api/v1/logistics/ship", json={"ids": [str(purchase_id)]})

        resp = await client.post("/api/v1/logistics/revert", json={"ids": [str(purchase_id)]})

        assert resp.json()["processed"] == 1
        assert await _status(test_db, purchase_id) == "Pending"
        assert await _stock(test_db, ids["branch"], ids["product"]) == 20
        result = await test_db.execute(
            select(CustomerPurchase.date_processed).where(CustomerPurchase.id == purchase_id)
        )
        assert result.scalar_one() is None

    async def test_revert_of_pending_record_fails(self, client: AsyncClient, test_db, ids, caller):
        caller["sub"] = str(ids["branch"])
        purchase_id = await _purchase(test_db, ids["branch"])

        resp = await client.post("/api/v1/logistics/revert", json={"ids": [str(purchase_id)]})

        assert resp.json()["errors"] == [{"id": str(purchase_id), "error": "Order is Pending, not Shipped"}]

    async def test_delete_shipped_record_restores_stock(self, client: AsyncClient, test_db, ids, caller):
        caller["sub"] = str(ids["branch"])
        purchase_id = await _purchase(test_db, ids["branch"], status="Shipped")

        resp = await client.post("/api/v1/logistics/delete", json={"ids": [str(purchase_id)]})

        assert resp.json()["processed"] == 1
        assert await _status(test_db, purchase_id) is None
        assert await _stock(test_db, ids["branch"], ids["product"]) == 26

    async def test_delete_pending_record_leaves_stock(self, client: AsyncClient, test_db, ids, caller):
        caller["sub"] = str(ids["branch"])
        purchase_id = await _purchase(test_db, ids["branch"])

        await client.post("/api/v1/logistics/delete", json={"ids": [str(purchase_id)]})

        assert await _status(test_db, purchase_id) is None
        assert await _stock(test_db, ids["branch"], ids["product"]) == 20


@pytest.mark.asyncio
async def test_unknown_sku_falls_back_to_linked_product(test_db, ids):
    purchase_id = await _purchase(
        test_db, ids["branch"], sku="Zaitun Premium 250ml", quantity=4, product_id=ids["product"]
    )

    batch = await LogisticsService(test_db, ids["branch"]).ship_orders([purchase_id], today=date(2026, 10, 19))

    assert batch.processed == [str(purchase_id)]
    assert await _stock(test_db, ids["branch"], ids["product"]) == 16
    result = await test_db.execute(select(CustomerPurchase.date_processed).where(CustomerPurchase.id == purchase_id))
    assert result.scalar_one() == date(2026, 10, 19)
