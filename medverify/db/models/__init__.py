from sqlmodel import SQLModel
from .user import User
from .otp_token import OtpToken
from .appointment import Appointment
from .payment_transaction import PaymentTransaction

__all__ = [
    "SQLModel",
    "User",
    "OtpToken",
    "Appointment",
    "PaymentTransaction",
]
