"""
Inventory adjustments.

All helpers work inside the caller's transaction and only flush; the caller
decides when to commit. Quantities never go below zero.
"""

import uuid

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.errors import InsufficientStockError
from db.models import Inventory, Product

logger = structlog.get_logger()


async def get_inventory_row(
    db: AsyncSession,
    user_id: uuid.UUID,
    product_id: uuid.UUID,
    *,
    for_update: bool = False,
) -> Inventory | None:
    query = select(Inventory).where(Inventory.user_id == user_id, Inventory.product_id == product_id)
    if for_update:
        query = query.with_for_update()
    result = await db.execute(query)
    return result.scalar_one_or_none()


async def credit_inventory(
    db: AsyncSession,
    user_id: uuid.UUID,
    product_id: uuid.UUID,
    quantity: int,
) -> Inventory:
    """Add stock to a user's row, creating it when missing."""
    row = await get_inventory_row(db, user_id, product_id, for_update=True)
    if row is None:
        row = Inventory(user_id=user_id, product_id=product_id, quantity=quantity)
        db.add(row)
    else:
        row.quantity = row.quantity + quantity
    await db.flush()
    logger.debug("inventory.credited", user_id=str(user_id), product_id=str(product_id), quantity=quantity)
    return row


async def debit_inventory(
    db: AsyncSession,
    user_id: uuid.UUID,
    product_id: uuid.UUID,
    quantity: int,
    *,
    strict: bool = True,
) -> bool:
    """
    Remove stock from a user's row.

    strict=True raises InsufficientStockError when the row is missing or
    short. strict=False logs a warning, leaves the row untouched, and
    returns False.
    """
    row = await get_inventory_row(db, user_id, product_id, for_update=True)
    available = row.quantity if row else 0
    if row is None or available < quantity:
        if strict:
            raise InsufficientStockError(
                f"Insufficient stock for product {product_id}: have {available}, need {quantity}"
            )
        logger.warning(
            "inventory.debit_skipped",
            user_id=str(user_id),
            product_id=str(product_id),
            available=available,
            required=quantity,
        )
        return False

    row.quantity = available - quantity
    await db.flush()
    logger.debug("inventory.debited", user_id=str(user_id), product_id=str(product_id), quantity=quantity)
    return True


async def load_products_by_sku(db: AsyncSession) -> dict[str, uuid.UUID]:
    result = await db.execute(select(Product.sku, Product.id))
    return {sku: product_id for sku, product_id in result.all()}
