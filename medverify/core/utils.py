import re
import secrets
import string
import time
from datetime import datetime, timezone

from email_validator import EmailNotValidError, validate_email

from medverify.core.config import settings
from medverify.core.errors import InvalidIdentifier

E164_PATTERN = re.compile(r"^\+[1-9]\d{9,14}$")

def utcnow() -> datetime:
    return datetime.now(timezone.utc)

def normalize_phone(phone: str) -> str:
    digits = re.sub(r"\D", "", phone or "")
    if digits.startswith("00"):
        digits = digits[2:]

    country_code = settings.DEFAULT_COUNTRY_CODE
    if len(digits) == 10:
        digits = country_code + digits
    elif len(digits) == 11 and digits.startswith("0"):
        digits = country_code + digits[1:]

    canonical = f"+{digits}"
    if not E164_PATTERN.match(canonical):
        raise InvalidIdentifier("Invalid phone number format")
    return canonical

def normalize_email(email: str) -> str:
    candidate = (email or "").strip().lower()
    try:
        validate_email(candidate, check_deliverability=False)
    except EmailNotValidError:
        raise InvalidIdentifier("Invalid email format")
    return candidate

def normalize_identifier(identifier: str, identifier_type: str) -> str:
    if identifier_type == "phone":
        return normalize_phone(identifier)
    if identifier_type == "email":
        return normalize_email(identifier)
    raise InvalidIdentifier(f"Unsupported identifier type: {identifier_type}")

def generate_otp(length: int = 6) -> str:
    return "".join(secrets.choice(string.digits) for _ in range(length))

def generate_receipt_id(user_id) -> str:
    # Razorpay caps receipts at 40 characters
    user_short = str(user_id).replace("-", "")[:8]
    return f"rcpt_{user_short}_{int(time.time())}_{secrets.randbelow(900) + 100}"

def generate_upi_transaction_id(user_id, appointment_type: str) -> str:
    user_short = str(user_id).replace("-", "")[:6]
    return f"UPI_MV_{appointment_type.upper()}_{user_short}_{int(time.time())}_{secrets.randbelow(9000) + 1000}"
