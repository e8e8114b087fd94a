from sqlalchemy import DateTime
from sqlmodel import SQLModel, Field
from typing import Optional
from datetime import datetime
from uuid import UUID, uuid4

from medverify.core.utils import utcnow

class Appointment(SQLModel, table=True):
    __tablename__ = "appointments"
    id: UUID = Field(default_factory=uuid4, primary_key=True)
    user_id: UUID = Field(foreign_key="users.id", index=True)

    first_name: Optional[str] = None
    last_name: Optional[str] = None
    date_of_birth: Optional[str] = None
    nationality: Optional[str] = None
    gender: Optional[str] = None
    marital_status: Optional[str] = None

    passport_number: Optional[str] = None
    passport_issue_date: Optional[str] = None
    passport_issue_place: Optional[str] = None
    passport_expiry_date: Optional[str] = None
    visa_type: Optional[str] = None

    position_applied_for: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    national_id: Optional[str] = None
    country: Optional[str] = None
    city: Optional[str] = None
    country_traveling_to: Optional[str] = None

    appointment_type: Optional[str] = None
    medical_center: Optional[str] = None
    appointment_date: Optional[str] = None
    appointment_time: Optional[str] = None

    status: str = Field(default="draft", index=True) # draft, payment_pending, confirmed
    payment_status: str = Field(default="pending") # pending, completed
    payment_order_id: Optional[str] = None
    payment_method: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))
    updated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))
