#!/usr/bin/env python3
"""
Seed Plans Script

Upserts the published subscription plans by code so prices and limits
match the catalogue exactly. Safe to run repeatedly.

Usage:
    python3 scripts/seed_plans.py
"""

import asyncio
from decimal import Decimal

import structlog
from sqlalchemy import select

from license_billing.db.models import Plan
from license_billing.db.session import close_engines, get_session

logger = structlog.get_logger()

PLANS = [
    {
        "code": "starter_monthly",
        "name": "Starter",
        "description": "Basic plan for individual users",
        "price_usd": Decimal("10.99"),
        "duration_days": 30,
        "max_requests_per_day": 50,
    },
    {
        "code": "pro_monthly",
        "name": "Pro",
        "description": "Professional plan with higher limits",
        "price_usd": Decimal("19.99"),
        "duration_days": 30,
        "max_requests_per_day": 125,
    },
    {
        "code": "max_monthly",
        "name": "Max",
        "description": "Maximum plan with highest limits",
        "price_usd": Decimal("39.99"),
        "duration_days": 30,
        "max_requests_per_day": 250,
    },
]


async def upsert_plans() -> None:
    """Create missing plans and overwrite the fields of existing ones."""
    async with get_session() as session:
        for data in PLANS:
            result = await session.execute(select(Plan).where(Plan.code == data["code"]))
            plan = result.scalar_one_or_none()

            if plan is None:
                session.add(Plan(**data))
                logger.info("plan_created", code=data["code"], price_usd=str(data["price_usd"]))
            else:
                for field, value in data.items():
                    setattr(plan, field, value)
                logger.info("plan_updated", code=data["code"], price_usd=str(data["price_usd"]))

        await session.commit()


async def main() -> None:
    try:
        await upsert_plans()
    finally:
        await close_engines()


if __name__ == "__main__":
    asyncio.run(main())
