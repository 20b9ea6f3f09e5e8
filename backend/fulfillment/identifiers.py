"""
Order number, sale ID and courier tracking ID generation.

Order numbers and sale IDs come from named counters in ``id_sequences``,
incremented under a row lock so concurrent checkouts never share a number.
Callers commit right after taking a number; the lock must not be held
across a gateway or courier round trip.

NinjaVan accepts at most 9 characters for a requested tracking number, so
sale IDs double as tracking IDs.
"""

import time
from datetime import date

import structlog
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import IdSequence

logger = structlog.get_logger()

SALE_ID_PREFIX = "OJ"
MAX_TRACKING_ID_LENGTH = 9


async def next_sequence_value(db: AsyncSession, name: str) -> int:
    """Increment and return the named counter (creating it at 1)."""
    result = await db.execute(select(IdSequence).where(IdSequence.name == name).with_for_update())
    sequence = result.scalar_one_or_none()
    if sequence is None:
        sequence = IdSequence(name=name, value=0)
        db.add(sequence)
    sequence.value += 1
    await db.flush()
    return sequence.value


async def generate_order_number(db: AsyncSession, today: date | None = None) -> str:
    """ORD + YYYYMMDD + 4-digit daily sequence, e.g. ORD202610190007."""
    today = today or date.today()
    day_key = today.strftime("%Y%m%d")
    value = await next_sequence_value(db, f"order_number:{day_key}")
    return f"ORD{day_key}{value:04d}"


def fallback_tracking_id(now_ms: int | None = None) -> str:
    """OJ + last five digits of the epoch-millisecond clock."""
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    return f"{SALE_ID_PREFIX}{str(now_ms)[-5:]}"


async def generate_sale_id(db: AsyncSession) -> str:
    """OJ + zero-padded sequence; never longer than a NinjaVan tracking ID."""
    try:
        async with db.begin_nested():
            value = await next_sequence_value(db, "sale_id")
    except SQLAlchemyError as exc:
        logger.warning("identifiers.sale_id_sequence_failed", error=str(exc))
        return fallback_tracking_id()

    sale_id = f"{SALE_ID_PREFIX}{value:05d}"
    if len(sale_id) > MAX_TRACKING_ID_LENGTH:
        logger.warning("identifiers.sale_id_overflow", sale_id=sale_id)
        return fallback_tracking_id()
    return sale_id


def resolve_tracking_id(id_sale: str | None, now_ms: int | None = None) -> str:
    """Use the sale ID as tracking ID when it fits, otherwise a short fallback."""
    if id_sale and len(id_sale) <= MAX_TRACKING_ID_LENGTH:
        return id_sale
    return fallback_tracking_id(now_ms)
