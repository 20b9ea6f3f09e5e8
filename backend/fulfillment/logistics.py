"""
Bulk logistics actions over a seller's sale records.

Shipping moves stock out of the seller's inventory; reverting or deleting
a shipped record puts it back. Each record is handled in its own database
transaction, so one bad record (unknown ID, short stock) fails alone and
the batch result says which.
"""

import uuid
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from datetime import date

import structlog
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from core.errors import FulfilmentError, NotFoundError
from db.models import CustomerPurchase
from fulfillment.bundles import StockRequirement, expand_sku
from fulfillment.inventory import credit_inventory, debit_inventory, load_products_by_sku

logger = structlog.get_logger()

PENDING = "Pending"
SHIPPED = "Shipped"


@dataclass
class BatchResult:
    processed: list[str] = field(default_factory=list)
    errors: list[dict] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "processed": len(self.processed),
            "failed": len(self.errors),
            "processed_ids": self.processed,
            "errors": self.errors,
        }


class LogisticsService:
    def __init__(self, db: AsyncSession, seller_id: uuid.UUID):
        self.db = db
        self.seller_id = seller_id
        self._products_by_sku: dict[str, uuid.UUID] | None = None

    async def _requirement(self, purchase: CustomerPurchase) -> StockRequirement:
        if self._products_by_sku is None:
            self._products_by_sku = await load_products_by_sku(self.db)
        requirement = expand_sku(
            purchase.sku,
            purchase.quantity,
            self._products_by_sku,
            fallback_product_id=purchase.product_id,
        )
        if requirement.unknown_skus:
            logger.warning(
                "logistics.unknown_skus",
                purchase_id=str(purchase.id),
                skus=requirement.unknown_skus,
            )
        return requirement

    async def _load(self, purchase_id: uuid.UUID) -> CustomerPurchase:
        result = await self.db.execute(
            select(CustomerPurchase)
            .where(CustomerPurchase.id == purchase_id, CustomerPurchase.seller_id == self.seller_id)
            .with_for_update()
        )
        purchase = result.scalar_one_or_none()
        if purchase is None:
            raise NotFoundError("Order not found")
        return purchase

    async def _run(
        self,
        action: str,
        ids: Iterable[uuid.UUID],
        step: Callable[[CustomerPurchase], Awaitable[None]],
    ) -> BatchResult:
        batch = BatchResult()
        for purchase_id in ids:
            try:
                purchase = await self._load(purchase_id)
                await step(purchase)
                await self.db.commit()
            except (FulfilmentError, SQLAlchemyError) as exc:
                await self.db.rollback()
                message = exc.message if isinstance(exc, FulfilmentError) else "Database error"
                logger.warning(f"logistics.{action}_failed", purchase_id=str(purchase_id), error=str(exc))
                batch.errors.append({"id": str(purchase_id), "error": message})
            else:
                batch.processed.append(str(purchase_id))

        logger.info(
            f"logistics.{action}_batch",
            seller_id=str(self.seller_id),
            processed=len(batch.processed),
            failed=len(batch.errors),
        )
        return batch

    async def _restore_stock(self, purchase: CustomerPurchase) -> None:
        requirement = await self._requirement(purchase)
        for product_id, quantity in requirement.quantities.items():
            await credit_inventory(self.db, self.seller_id, product_id, quantity)

    async def ship_orders(self, ids: Iterable[uuid.UUID], today: date | None = None) -> BatchResult:
        shipped_on = today or date.today()

        async def ship(purchase: CustomerPurchase) -> None:
            if purchase.delivery_status != PENDING:
                raise FulfilmentError(f"Order is {purchase.delivery_status}, not Pending")
            requirement = await self._requirement(purchase)
            for product_id, quantity in requirement.quantities.items():
                await debit_inventory(self.db, self.seller_id, product_id, quantity, strict=True)
            purchase.delivery_status = SHIPPED
            purchase.date_processed = shipped_on

        return await self._run("ship", ids, ship)

    async def revert_orders(self, ids: Iterable[uuid.UUID]) -> BatchResult:
        async def revert(purchase: CustomerPurchase) -> None:
            if purchase.delivery_status != SHIPPED:
                raise FulfilmentError(f"Order is {purchase.delivery_status}, not Shipped")
            await self._restore_stock(purchase)
            purchase.delivery_status = PENDING
            purchase.date_processed = None

        return await self._run("revert", ids, revert)

    async def delete_orders(self, ids: Iterable[uuid.UUID]) -> BatchResult:
        async def remove(purchase: CustomerPurchase) -> None:
            if purchase.delivery_status == SHIPPED:
                await self._restore_stock(purchase)
            await self.db.delete(purchase)

        return await self._run("delete", ids, remove)
