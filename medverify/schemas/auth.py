from pydantic import BaseModel
from typing import Literal, Optional
from uuid import UUID
from datetime import datetime

IdentifierType = Literal["phone", "email"]

class OtpRequest(BaseModel):
    identifier: str
    type: IdentifierType = "phone"

class OtpVerify(BaseModel):
    identifier: str
    code: str
    type: IdentifierType = "phone"
    # Optional profile data copied onto a newly created identity
    name: Optional[str] = None
    email: Optional[str] = None
    passport_number: Optional[str] = None

class OtpRequestedResponse(BaseModel):
    identifier: str
    expires_in: int
    message_id: Optional[str] = None
    otp: Optional[str] = None # only echoed in bypass mode

class AdminLoginRequest(BaseModel):
    username: str
    password: str

class IdentityResponse(BaseModel):
    id: UUID
    role: str
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    passport_number: Optional[str] = None
    username: Optional[str] = None
    payment_status: str
    payment_id: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True

class LoginResponse(BaseModel):
    access_token: str
    token_type: str
    user: IdentityResponse
