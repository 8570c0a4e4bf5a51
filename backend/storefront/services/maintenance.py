"""
Periodic housekeeping: idle locks, expired rate-limit buckets, expired carts.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from storefront.services.cart import CartService

if TYPE_CHECKING:
    from storefront.container import ServiceContainer

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MaintenanceReport:
    locks_removed: int
    buckets_removed: int
    carts_removed: int


async def run_maintenance(
    container: "ServiceContainer",
    session_maker: async_sessionmaker[AsyncSession],
) -> MaintenanceReport:
    locks_removed = container.mutex.sweep()
    buckets_removed = container.rate_limiter.sweep()

    async with session_maker() as session:
        carts = CartService(session, container.mutex, container.features(session), container.settings)
        carts_removed = await carts.cleanup_expired_carts()
        await session.commit()

    report = MaintenanceReport(locks_removed, buckets_removed, carts_removed)
    logger.info(
        f"🧹 Maintenance: {locks_removed} locks, {buckets_removed} rate buckets, "
        f"{carts_removed} expired carts removed"
    )
    return report


async def maintenance_loop(
    container: "ServiceContainer",
    session_maker: async_sessionmaker[AsyncSession],
    interval_seconds: float,
) -> None:
    """Run maintenance every ``interval_seconds`` until cancelled."""
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            await run_maintenance(container, session_maker)
        except Exception as e:
            # Keep the loop alive; the next pass retries
            logger.error(f"Maintenance pass failed: {e}", exc_info=True)
