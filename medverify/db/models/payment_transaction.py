from sqlalchemy import DateTime
from sqlmodel import SQLModel, Field
from typing import Optional
from datetime import datetime
from uuid import UUID, uuid4

from medverify.core.utils import utcnow

class PaymentTransaction(SQLModel, table=True):
    __tablename__ = "payment_transactions"
    id: UUID = Field(default_factory=uuid4, primary_key=True)
    user_id: UUID = Field(foreign_key="users.id", index=True)
    # Older deployments lack this column, see SchemaCapabilities
    appointment_id: Optional[UUID] = Field(default=None, index=True)
    payment_method: str # razorpay, upi
    provider_order_id: str = Field(index=True) # razorpay order id or UPI transaction id
    provider_payment_id: Optional[str] = None # razorpay payment id or UPI reference id
    amount: int # minor units (paise)
    currency: str = Field(default="INR")
    status: str = Field(default="created") # created, paid
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))
    updated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))
