"""Periodic removal of expired OTP challenges and drained rate-limit counters."""
import asyncio

from sqlalchemy.exc import SQLAlchemyError

from medverify.core.config import settings
from medverify.core.logger import logger
from medverify.core.rate_limit import InMemoryRateLimitStore, _memory_store
from medverify.db.session import async_session
from medverify.services.otp_service import OtpService


async def sweep_once(session_factory=async_session, rate_limit_store: InMemoryRateLimitStore = _memory_store) -> int:
    async with session_factory() as session:
        purged = await OtpService(session).purge_expired()

    dropped = rate_limit_store.prune()
    if dropped:
        logger.debug(f"Dropped {dropped} drained rate-limit keys")
    return purged


async def run_otp_sweeper(interval: int | None = None, session_factory=async_session):
    interval = interval or settings.OTP_SWEEP_INTERVAL_SECONDS
    logger.info(f"OTP sweeper started, running every {interval}s")
    while True:
        try:
            await sweep_once(session_factory)
        except SQLAlchemyError as e:
            logger.error(f"OTP sweep failed: {e}")
        await asyncio.sleep(interval)


if __name__ == "__main__":
    asyncio.run(sweep_once())
