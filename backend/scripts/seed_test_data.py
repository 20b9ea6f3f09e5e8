"""
Seed Test Data - Creates a small distribution tree for development.

HQ → Master Agent → Agent, plus a Branch with one Marketer. The HQ profile
uses the dev profile ID so debug-mode requests act as HQ.

Run: python scripts/seed_test_data.py
"""

import asyncio
import uuid

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from core.config import get_settings
from core.security import encrypt
from db.models import Bundle, Inventory, NinjaVanConfig, Product, Profile
from db.session import Base

settings = get_settings()

HQ_ID = uuid.UUID("00000000-0000-0000-0000-000000000001")

PRODUCTS = [
    ("ZP250", "Zaitun Premium 250ml", 18.0),
    ("ZP500", "Zaitun Premium 500ml", 32.0),
    ("LT100", "Losyen Tangan 100ml", 9.5),
]


async def seed_data():
    """Create demo data for development."""
    engine = create_async_engine(settings.database_url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    SessionLocal = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with SessionLocal() as db:
        # ── Profiles ─────────────────────────────────────────
        hq = Profile(id=HQ_ID, idstaff="HQ001", full_name="Olive Jardin HQ", email="hq@fulfilops.local", role="hq")
        db.add(hq)
        await db.flush()

        master = Profile(
            idstaff="MA001",
            full_name="Aminah Master",
            email="master@fulfilops.local",
            phone_number="60123456789",
            role="master_agent",
        )
        branch = Profile(
            idstaff="BR001",
            full_name="Cawangan Shah Alam",
            email="branch@fulfilops.local",
            phone_number="60133334444",
            role="branch",
        )
        db.add_all([master, branch])
        await db.flush()

        agent = Profile(
            idstaff="AG001",
            full_name="Badrul Agent",
            email="agent@fulfilops.local",
            phone_number="60145556666",
            role="agent",
            master_agent_id=master.id,
        )
        marketer = Profile(
            idstaff="MK001",
            full_name="Siti Marketer",
            email="marketer@fulfilops.local",
            phone_number="60167778888",
            role="marketer",
            branch_id=branch.id,
        )
        db.add_all([agent, marketer])
        await db.flush()

        # ── Products, bundles, HQ stock ──────────────────────
        products = []
        for sku, name, cost in PRODUCTS:
            product = Product(sku=sku, name=name, base_cost=cost)
            db.add(product)
            products.append(product)
        await db.flush()

        for product in products:
            db.add(
                Bundle(
                    product_id=product.id,
                    name=f"{product.name} x6",
                    units=6,
                    agent_price=round(product.base_cost * 1.3, 2),
                    master_agent_price=round(product.base_cost * 1.15, 2),
                )
            )
            db.add(Inventory(user_id=hq.id, product_id=product.id, quantity=1000))
            db.add(Inventory(user_id=branch.id, product_id=product.id, quantity=50))

        # ── Courier config for the branch ────────────────────
        db.add(
            NinjaVanConfig(
                profile_id=branch.id,
                client_id="sandbox-client-id",
                client_secret_encrypted=encrypt("sandbox-client-secret"),
                sender_name="Cawangan Shah Alam",
                sender_phone="60133334444",
                sender_email="branch@fulfilops.local",
                sender_address1="No 12, Jalan Kristal 7/69",
                sender_address2="Seksyen 7",
                sender_postcode="40000",
                sender_city="Shah Alam",
                sender_state="Selangor",
            )
        )

        await db.commit()
        print(f"✅ Seeded: 5 profiles, {len(products)} products, {len(products)} bundles, branch courier config")

    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(seed_data())
