from pydantic import BaseModel
from pydantic.alias_generators import to_camel
from typing import Dict, List, Optional
from uuid import UUID

class CreateOrderRequest(BaseModel):
    appointment_id: UUID
    payment_method: Optional[str] = None

    class Config:
        alias_generator = to_camel
        populate_by_name = True

class PaymentOrderResponse(BaseModel):
    payment_method: str
    order_id: str
    amount: int
    currency: str
    receipt: Optional[str] = None
    key: Optional[str] = None
    # UPI intent details
    transaction_id: Optional[str] = None
    amount_display: Optional[str] = None
    merchant_vpa: Optional[str] = None
    merchant_name: Optional[str] = None
    upi_url: Optional[str] = None
    qr_code: Optional[str] = None
    app_links: Optional[Dict[str, str]] = None

class VerifyPaymentRequest(BaseModel):
    payment_method: str = "razorpay"
    appointment_id: Optional[UUID] = None
    razorpay_order_id: Optional[str] = None
    razorpay_payment_id: Optional[str] = None
    razorpay_signature: Optional[str] = None
    upi_transaction_id: Optional[str] = None
    upi_reference_id: Optional[str] = None

class PaymentVerificationResponse(BaseModel):
    verified: bool
    status: str
    payment_method: str
    order_id: str
    payment_id: Optional[str] = None
    appointment_id: Optional[UUID] = None

class UpiConfirmRequest(BaseModel):
    reference_id: str

class PaymentMethodInfo(BaseModel):
    name: str
    description: str
    enabled: bool

class PaymentMethodsResponse(BaseModel):
    available_methods: List[str]
    default_method: str
    methods_info: Dict[str, PaymentMethodInfo]
