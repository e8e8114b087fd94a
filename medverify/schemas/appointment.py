from pydantic import BaseModel
from pydantic.alias_generators import to_camel
from uuid import UUID
from datetime import datetime
from typing import Optional

class AppointmentFields(BaseModel):
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

    class Config:
        alias_generator = to_camel
        populate_by_name = True

class AppointmentDraftRequest(AppointmentFields):
    pass

class AppointmentSubmitRequest(AppointmentFields):
    confirm_passport_number: Optional[str] = None

class AppointmentResponse(AppointmentFields):
    id: UUID
    user_id: UUID
    status: str
    payment_status: str
    payment_order_id: Optional[str] = None
    payment_method: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        alias_generator = to_camel
        populate_by_name = True
        from_attributes = True
