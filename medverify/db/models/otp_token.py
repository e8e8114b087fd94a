from sqlalchemy import DateTime
from sqlmodel import SQLModel, Field
from datetime import datetime
from uuid import UUID, uuid4

from medverify.core.utils import utcnow

class OtpToken(SQLModel, table=True):
    __tablename__ = "otp_tokens"
    id: UUID = Field(default_factory=uuid4, primary_key=True)
    identifier: str = Field(index=True)
    code: str
    type: str # email, phone
    expires_at: datetime = Field(index=True, sa_type=DateTime(timezone=True))
    used: bool = Field(default=False)
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))
