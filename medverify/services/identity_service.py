from typing import Optional, Protocol
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from medverify.core.config import settings
from medverify.core.logger import logger
from medverify.core.security import get_password_hash, verify_password
from medverify.core.utils import utcnow
from medverify.db.models import User

PROFILE_FIELDS = ("name", "email", "phone", "passport_number")
IDENTIFIER_FIELDS = ("email", "phone")

class IdentityService:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, user_id: UUID) -> User | None:
        return await self.session.get(User, user_id)

    async def find_by_identifier(self, identifier: str, identifier_type: str) -> User | None:
        column = User.phone if identifier_type == "phone" else User.email
        stmt = select(User).where(column == identifier, User.role == "user").order_by(User.created_at)
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def find_admin(self, username: str) -> User | None:
        stmt = select(User).where(User.username == username, User.role == "admin")
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def create_user(self, identifier: str, identifier_type: str, profile: Optional[dict] = None) -> User:
        data = {k: v for k, v in (profile or {}).items() if k in PROFILE_FIELDS and v}
        # The verified identifier always wins over anything in the profile
        data[identifier_type] = identifier
        user = User(role="user", **data)
        self.session.add(user)
        await self.session.commit()
        await self.session.refresh(user)
        logger.info(f"Identity created: {user.id} ({identifier_type})")
        return user

    async def create_admin(self, username: str, password: str, name: str | None = None, email: str | None = None) -> User:
        admin = User(
            role="admin",
            username=username,
            name=name or "Administrator",
            email=email,
            password_hash=get_password_hash(password),
        )
        self.session.add(admin)
        await self.session.commit()
        await self.session.refresh(admin)
        return admin

    async def authenticate_admin(self, username: str, password: str) -> User | None:
        admin = await self.find_admin(username)
        if not admin or not verify_password(password, admin.password_hash):
            return None
        return admin

    def apply_profile(self, user: User, profile: dict):
        """Copy non-empty profile values onto the identity. Caller commits.

        Identifiers are only filled in, never replaced, so the one used to log
        in keeps resolving to this identity.
        """
        for field in PROFILE_FIELDS:
            value = profile.get(field)
            if not value:
                continue
            if field in IDENTIFIER_FIELDS and getattr(user, field):
                continue
            setattr(user, field, value)
        user.updated_at = utcnow()
        self.session.add(user)

    async def set_payment_status(self, user_id: UUID, status: str, payment_id: str | None = None) -> User | None:
        user = await self.session.get(User, user_id)
        if not user:
            return None
        user.payment_status = status
        if payment_id:
            user.payment_id = payment_id
        user.updated_at = utcnow()
        self.session.add(user)
        await self.session.commit()
        return user


class IdentityProvider(Protocol):
    async def resolve(self, identifier: str, identifier_type: str, profile: Optional[dict] = None) -> User:
        ...

    async def get(self, user_id: UUID) -> User | None:
        ...


class DatabaseIdentityProvider:
    """Look up the identity for a verified identifier, creating it on first login."""

    def __init__(self, session: AsyncSession):
        self.identities = IdentityService(session)

    async def resolve(self, identifier: str, identifier_type: str, profile: Optional[dict] = None) -> User:
        user = await self.identities.find_by_identifier(identifier, identifier_type)
        if user:
            return user
        return await self.identities.create_user(identifier, identifier_type, profile)

    async def get(self, user_id: UUID) -> User | None:
        return await self.identities.get_by_id(user_id)


class TestModeIdentityProvider(DatabaseIdentityProvider):
    """Used when phone verification is bypassed; new identities get placeholder profile data."""

    __test__ = False

    PLACEHOLDER_PROFILE = {
        "name": "Test User",
        "email": "test@example.com",
        "passport_number": "TEST123456",
    }

    async def resolve(self, identifier: str, identifier_type: str, profile: Optional[dict] = None) -> User:
        user = await self.identities.find_by_identifier(identifier, identifier_type)
        if user:
            return user
        merged = dict(self.PLACEHOLDER_PROFILE)
        merged.update({k: v for k, v in (profile or {}).items() if v})
        logger.warning(f"Test-mode identity created for {identifier}")
        return await self.identities.create_user(identifier, identifier_type, merged)


def get_identity_provider(session: AsyncSession) -> IdentityProvider:
    if settings.BYPASS_PHONE_VERIFICATION:
        return TestModeIdentityProvider(session)
    return DatabaseIdentityProvider(session)
