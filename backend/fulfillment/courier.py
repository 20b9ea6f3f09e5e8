"""
NinjaVan courier booking.

Resolves the courier account for a profile (its branch's config, else its
own), keeps one cached OAuth token per account in ``ninjavan_tokens`` and
turns a parcel into a create / cancel / waybill call.
"""

import uuid
from datetime import date, datetime, timedelta

import httpx
import structlog
from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import get_settings
from core.errors import ConfigurationError, FulfilmentError
from core.security import decrypt
from db.models import NinjaVanConfig, NinjaVanToken, Profile
from fulfillment.identifiers import resolve_tracking_id
from integrations.ninjavan import NinjaVanClient, Parcel, SenderAddress, build_order_payload

logger = structlog.get_logger()

CONFIG_MISSING_MESSAGE = "NinjaVan configuration not found. Please configure in Settings."


def sender_from_config(config: NinjaVanConfig) -> SenderAddress:
    return SenderAddress(
        name=config.sender_name,
        phone=config.sender_phone,
        email=config.sender_email,
        address1=config.sender_address1,
        address2=config.sender_address2,
        postcode=config.sender_postcode,
        city=config.sender_city,
        state=config.sender_state,
    )


class CourierService:
    """NinjaVan bookings on behalf of a branch (or any profile with its own account)."""

    def __init__(self, db: AsyncSession, transport: httpx.AsyncBaseTransport | None = None):
        self.db = db
        self.transport = transport
        self.settings = get_settings()

    async def resolve_config(self, profile_id: uuid.UUID) -> NinjaVanConfig:
        profile = await self.db.get(Profile, profile_id)
        candidates = []
        if profile is not None and profile.branch_id:
            candidates.append(profile.branch_id)
        candidates.append(profile_id)

        for candidate in candidates:
            result = await self.db.execute(select(NinjaVanConfig).where(NinjaVanConfig.profile_id == candidate))
            config = result.scalar_one_or_none()
            if config is not None:
                return config

        logger.warning("courier.ninjavan.config_missing", profile_id=str(profile_id))
        raise ConfigurationError(CONFIG_MISSING_MESSAGE)

    def _client(self, config: NinjaVanConfig) -> NinjaVanClient:
        return NinjaVanClient(
            client_id=config.client_id,
            client_secret=decrypt(config.client_secret_encrypted),
            transport=self.transport,
        )

    async def access_token(self, config: NinjaVanConfig, client: NinjaVanClient) -> str:
        """Newest unexpired cached token, or a fresh one from OAuth."""
        now = datetime.utcnow()
        result = await self.db.execute(
            select(NinjaVanToken)
            .where(NinjaVanToken.profile_id == config.profile_id, NinjaVanToken.expires_at > now)
            .order_by(NinjaVanToken.created_at.desc())
            .limit(1)
        )
        cached = result.scalar_one_or_none()
        if cached is not None:
            logger.debug("courier.ninjavan.token_reused", profile_id=str(config.profile_id))
            return cached.access_token

        token, expires_in = await client.request_token()
        expires_at = now + timedelta(seconds=expires_in - self.settings.ninjavan_token_buffer_seconds)
        try:
            async with self.db.begin_nested():
                self.db.add(
                    NinjaVanToken(profile_id=config.profile_id, access_token=token, expires_at=expires_at)
                )
        except SQLAlchemyError as exc:
            # the token is still good for this request
            logger.error("courier.ninjavan.token_store_failed", profile_id=str(config.profile_id), error=str(exc))
        logger.info(
            "courier.ninjavan.token_refreshed",
            profile_id=str(config.profile_id),
            expires_at=expires_at.isoformat(),
        )
        return token

    async def book(self, profile_id: uuid.UUID, parcel: Parcel, today: date | None = None) -> dict:
        config = await self.resolve_config(profile_id)
        client = self._client(config)
        token = await self.access_token(config, client)

        tracking_id = resolve_tracking_id(parcel.id_sale)
        payload = build_order_payload(
            sender_from_config(config),
            parcel,
            tracking_id,
            merchant_prefix=self.settings.ninjavan_merchant_prefix,
            today=today,
        )
        result = await client.create_order(token, payload)
        tracking_number = result.get("tracking_number") or tracking_id
        logger.info(
            "courier.ninjavan.order_created",
            profile_id=str(profile_id),
            tracking_number=tracking_number,
            cod=parcel.payment_method == "COD",
        )
        await self.db.commit()
        return {
            "success": True,
            "trackingNumber": tracking_number,
            "message": "Order sent to NinjaVan successfully",
        }

    async def cancel(self, profile_id: uuid.UUID, tracking_number: str | None) -> dict:
        if not tracking_number:
            raise FulfilmentError("Tracking number is required")

        config = await self.resolve_config(profile_id)
        client = self._client(config)
        token = await self.access_token(config, client)

        body, already_cancelled = await client.cancel_order(token, tracking_number)
        await self.db.commit()
        if already_cancelled:
            logger.info("courier.ninjavan.already_cancelled", tracking_number=tracking_number)
            return {"success": True, "alreadyCancelled": True, "message": "Order was already cancelled"}

        logger.info("courier.ninjavan.order_cancelled", tracking_number=tracking_number)
        return {
            "success": True,
            "trackingId": body.get("trackingId"),
            "status": body.get("status"),
            "message": "Order cancelled successfully",
        }

    async def waybill(self, profile_id: uuid.UUID, tracking_numbers: list[str]) -> bytes:
        tracking_numbers = [tn for tn in tracking_numbers if tn]
        if not tracking_numbers:
            raise FulfilmentError("Selected orders do not have tracking numbers")

        config = await self.resolve_config(profile_id)
        client = self._client(config)
        token = await self.access_token(config, client)
        pdf = await client.get_waybill(token, tracking_numbers)
        await self.db.commit()
        logger.info("courier.ninjavan.waybill_fetched", count=len(tracking_numbers), size=len(pdf))
        return pdf


async def purge_expired_tokens(db: AsyncSession, now: datetime | None = None) -> int:
    now = now or datetime.utcnow()
    result = await db.execute(delete(NinjaVanToken).where(NinjaVanToken.expires_at <= now))
    await db.commit()
    return result.rowcount or 0
