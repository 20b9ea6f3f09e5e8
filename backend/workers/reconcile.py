"""
Reconciliation Workers - server-side payment polling and token housekeeping.

The payment summary page polls gateways while the payer is watching; this
sweep covers the payers who close the tab. Pending orders old enough that
the gateway has had time to call back, but not so old that the bill has
been abandoned for days, are re-checked against their gateway.

Schedule: See celery_app.py beat_schedule
"""

import asyncio
from datetime import datetime, timedelta, timezone

import httpx
import structlog
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from core.errors import FulfilmentError
from db.models import PendingOrder
from fulfillment.courier import purge_expired_tokens
from fulfillment.reconciler import STATUS_PENDING, PaymentReconciler
from workers.celery_app import celery_app

logger = structlog.get_logger()


async def run_pending_order_sweep(
    db: AsyncSession,
    *,
    min_age: timedelta,
    max_age: timedelta,
    now: datetime | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> dict:
    now = now or datetime.utcnow()
    result = await db.execute(
        select(PendingOrder.id)
        .where(
            PendingOrder.status == STATUS_PENDING,
            PendingOrder.created_at <= now - min_age,
            PendingOrder.created_at >= now - max_age,
        )
        .order_by(PendingOrder.created_at)
    )
    order_ids = result.scalars().all()

    reconciler = PaymentReconciler(db, transport)
    summary = {"checked": 0, "completed": 0, "failed": 0, "pending": 0, "errors": 0}
    for order_id in order_ids:
        # reload per order; a rolled-back settle expires everything in the session
        order = await db.get(PendingOrder, order_id, populate_existing=True)
        order_number = order.order_number
        summary["checked"] += 1
        try:
            status = await reconciler.reconcile_with_gateway(order)
        except (FulfilmentError, httpx.HTTPError, ValueError) as exc:
            summary["errors"] += 1
            logger.warning("reconcile.order_check_failed", order_number=order_number, error=str(exc))
            continue
        except SQLAlchemyError as exc:
            await db.rollback()
            summary["errors"] += 1
            logger.error("reconcile.order_settle_failed", order_number=order_number, error=str(exc))
            continue
        summary[status] = summary.get(status, 0) + 1

    logger.info("reconcile.sweep_completed", **summary)
    return summary


@celery_app.task(
    name="workers.reconcile.sweep_pending_orders",
    bind=True,
    max_retries=2,
    default_retry_delay=60,
    acks_late=True,
)
def sweep_pending_orders(self):
    """Every 15 minutes: settle pending orders whose callbacks never arrived."""
    run_id = self.request.id or "manual"
    logger.info("reconcile.sweep_started", run_id=run_id)

    async def _sweep():
        from core.config import get_settings

        settings = get_settings()
        engine = create_async_engine(settings.database_url)
        try:
            async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
            async with async_session() as db:
                summary = await run_pending_order_sweep(
                    db,
                    min_age=timedelta(minutes=settings.pending_order_sweep_min_age_minutes),
                    max_age=timedelta(hours=settings.pending_order_sweep_max_age_hours),
                )
            return {
                "status": "success",
                "run_id": run_id,
                **summary,
                "completed_at": datetime.now(timezone.utc).isoformat(),
            }
        finally:
            await engine.dispose()

    try:
        return asyncio.run(_sweep())
    except Exception as exc:
        logger.error("reconcile.sweep_failed", error=str(exc), exc_info=True)
        raise self.retry(exc=exc)


@celery_app.task(
    name="workers.reconcile.purge_expired_courier_tokens",
    bind=True,
    max_retries=1,
    acks_late=True,
)
def purge_expired_courier_tokens(self):
    """Hourly: drop NinjaVan tokens past their stored expiry."""

    async def _purge():
        from core.config import get_settings

        engine = create_async_engine(get_settings().database_url)
        try:
            async_session = async_sessionmaker(engine, class_=AsyncSession)
            async with async_session() as db:
                deleted = await purge_expired_tokens(db)
            logger.info("reconcile.tokens_purged", deleted=deleted)
            return {"status": "success", "deleted": deleted}
        finally:
            await engine.dispose()

    try:
        return asyncio.run(_purge())
    except Exception as exc:
        logger.error("reconcile.purge_failed", error=str(exc), exc_info=True)
        raise self.retry(exc=exc)
