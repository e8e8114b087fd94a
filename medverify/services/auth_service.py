import json
from datetime import timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from medverify.core.config import settings
from medverify.core.errors import Unauthorized
from medverify.core.logger import logger
from medverify.core.redis import RedisClient, redis_client
from medverify.core.security import create_access_token
from medverify.core.utils import normalize_email
from medverify.db.models import User
from medverify.schemas.auth import (
    AdminLoginRequest,
    IdentityResponse,
    LoginResponse,
    OtpRequest,
    OtpRequestedResponse,
    OtpVerify,
)
from medverify.services.identity_service import IdentityProvider, IdentityService, get_identity_provider
from medverify.services.otp_service import OtpService

class AuthService:
    def __init__(
        self,
        session: AsyncSession,
        otp_service: OtpService | None = None,
        identity_provider: IdentityProvider | None = None,
        token_registry: RedisClient = redis_client,
    ):
        self.session = session
        self.otp = otp_service or OtpService(session)
        self.identities = identity_provider or get_identity_provider(session)
        self.token_registry = token_registry

    async def request_otp(self, data: OtpRequest) -> OtpRequestedResponse:
        result = await self.otp.request_code(data.identifier, data.type)
        return OtpRequestedResponse(**result)

    async def verify_otp(self, data: OtpVerify) -> LoginResponse:
        # 1. Consume the challenge
        identifier = await self.otp.verify_code(data.identifier, data.code, data.type)

        # 2. Find or create the identity
        profile = {
            "name": data.name,
            "email": normalize_email(data.email) if data.email else None,
            "passport_number": data.passport_number,
        }
        user = await self.identities.resolve(identifier, data.type, profile)

        # 3. Issue the session
        return await self._issue_token(user, "user")

    async def admin_login(self, data: AdminLoginRequest) -> LoginResponse:
        admin = await IdentityService(self.session).authenticate_admin(data.username, data.password)
        if not admin:
            logger.warning(f"Failed admin login for {data.username}")
            raise Unauthorized("Invalid credentials")
        return await self._issue_token(admin, "admin")

    async def logout(self, token: str):
        if self.token_registry.enabled:
            await self.token_registry.delete_token(token)

    async def _issue_token(self, user: User, token_type: str) -> LoginResponse:
        access_token_expires = timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
        access_token = create_access_token(
            data={"sub": str(user.id), "type": token_type}, expires_delta=access_token_expires
        )

        if self.token_registry.enabled:
            token_data = {"user_id": str(user.id), "role": user.role, "type": token_type}
            await self.token_registry.set_token(
                access_token,
                json.dumps(token_data),
                settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
            )

        return LoginResponse(
            access_token=access_token,
            token_type="bearer",
            user=IdentityResponse.model_validate(user),
        )
