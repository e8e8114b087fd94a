from sqlalchemy import DateTime
from sqlmodel import SQLModel, Field
from typing import Optional
from datetime import datetime
from uuid import UUID, uuid4

from medverify.core.utils import utcnow

class User(SQLModel, table=True):
    __tablename__ = "users"
    id: UUID = Field(default_factory=uuid4, primary_key=True)
    role: str = Field(default="user") # user, admin
    name: Optional[str] = None
    email: Optional[str] = Field(default=None, index=True)
    phone: Optional[str] = Field(default=None, index=True)
    passport_number: Optional[str] = None
    username: Optional[str] = Field(default=None, unique=True, index=True)
    password_hash: Optional[str] = None
    payment_status: str = Field(default="pending") # pending, paid, failed
    payment_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))
    updated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))
