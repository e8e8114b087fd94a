from datetime import timedelta

from sqlalchemy import delete, update
from sqlalchemy.ext.asyncio import AsyncSession

from medverify.core.config import settings
from medverify.core.errors import DeliveryFailed, InvalidOrExpired, RateLimited
from medverify.core.logger import logger
from medverify.core.rate_limit import SlidingWindowRateLimiter, get_otp_rate_limiter
from medverify.core.utils import generate_otp, normalize_identifier, utcnow
from medverify.db.models import OtpToken
from medverify.services.notification_service import Notifier, get_notifier

class OtpService:
    def __init__(
        self,
        session: AsyncSession,
        notifier: Notifier | None = None,
        rate_limiter: SlidingWindowRateLimiter | None = None,
        bypass: bool | None = None,
    ):
        self.session = session
        self.notifier = notifier or get_notifier()
        self.rate_limiter = rate_limiter or get_otp_rate_limiter()
        self.bypass = settings.BYPASS_PHONE_VERIFICATION if bypass is None else bypass

    async def request_code(self, identifier: str, identifier_type: str = "phone") -> dict:
        normalized = normalize_identifier(identifier, identifier_type)

        if self.bypass:
            logger.warning(f"OTP verification bypassed for {normalized}")
            return {
                "identifier": normalized,
                "expires_in": settings.OTP_EXPIRE_SECONDS,
                "message_id": None,
                "otp": settings.BYPASS_OTP_CODE,
            }

        limit = await self.rate_limiter.hit(f"otp:{normalized}")
        if not limit.allowed:
            logger.warning(f"OTP rate limit hit for {normalized} ({limit.count}/{limit.limit})")
            raise RateLimited(retry_after=limit.retry_after)

        code = generate_otp(settings.OTP_LENGTH)
        now = utcnow()
        try:
            # At most one active challenge per identifier
            await self.session.execute(
                update(OtpToken)
                .where(
                    OtpToken.identifier == normalized,
                    OtpToken.type == identifier_type,
                    OtpToken.used == False,
                )
                .values(used=True)
                .execution_options(synchronize_session=False)
            )
            self.session.add(OtpToken(
                identifier=normalized,
                code=code,
                type=identifier_type,
                expires_at=now + timedelta(seconds=settings.OTP_EXPIRE_SECONDS),
                created_at=now,
            ))
            await self.session.flush()

            result = await self.notifier.send(normalized, identifier_type, {
                "template": "otp",
                "otp": code,
                "expires_in": settings.OTP_EXPIRE_SECONDS,
            })
            if not result.success:
                raise DeliveryFailed()

            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

        logger.info(f"OTP sent to {normalized}. Message ID: {result.message_id}")
        return {
            "identifier": normalized,
            "expires_in": settings.OTP_EXPIRE_SECONDS,
            "message_id": result.message_id,
            "otp": None,
        }

    async def verify_code(self, identifier: str, code: str, identifier_type: str = "phone") -> str:
        """Consume a matching active challenge. Returns the normalized identifier."""
        normalized = normalize_identifier(identifier, identifier_type)
        code = (code or "").strip()

        if self.bypass:
            if code != settings.BYPASS_OTP_CODE:
                raise InvalidOrExpired()
            return normalized

        if not code.isdigit():
            raise InvalidOrExpired()

        # Check and mark in one statement so concurrent verifies cannot both win
        result = await self.session.execute(
            update(OtpToken)
            .where(
                OtpToken.identifier == normalized,
                OtpToken.type == identifier_type,
                OtpToken.code == code,
                OtpToken.used == False,
                OtpToken.expires_at > utcnow(),
            )
            .values(used=True)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self.session.rollback()
            logger.info(f"OTP validation failed for {normalized}")
            raise InvalidOrExpired()

        await self.session.commit()
        return normalized

    async def purge_expired(self) -> int:
        result = await self.session.execute(
            delete(OtpToken)
            .where(OtpToken.expires_at < utcnow())
            .execution_options(synchronize_session=False)
        )
        await self.session.commit()
        count = result.rowcount or 0
        logger.info(f"Cleaned up {count} expired OTPs")
        return count
