from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from medverify.api.deps import get_client_ip, get_current_admin, get_current_user
from medverify.db.models import User
from medverify.db.session import get_session
from medverify.schemas.common import ApiResponse
from medverify.schemas.payment import (
    CreateOrderRequest,
    PaymentMethodsResponse,
    PaymentOrderResponse,
    PaymentVerificationResponse,
    UpiConfirmRequest,
    VerifyPaymentRequest,
)
from medverify.services.payment_service import PaymentService

router = APIRouter()

async def get_payment_service(session: AsyncSession = Depends(get_session)) -> PaymentService:
    return PaymentService(session)

@router.get("/methods", response_model=ApiResponse[PaymentMethodsResponse])
async def get_payment_methods(service: PaymentService = Depends(get_payment_service)):
    return ApiResponse(data=service.get_payment_methods())

@router.post("/orders", response_model=ApiResponse[PaymentOrderResponse])
async def create_payment_order(
    request: CreateOrderRequest,
    http_request: Request,
    user: User = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service)
):
    order = await service.create_order(
        user.id, request.appointment_id, request.payment_method, client_ip=get_client_ip(http_request)
    )
    return ApiResponse(message="Payment order created", data=order)

@router.post("/verify", response_model=ApiResponse[PaymentVerificationResponse])
async def verify_payment(
    request: VerifyPaymentRequest,
    http_request: Request,
    user: User = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service)
):
    result = await service.verify_payment(user.id, request, client_ip=get_client_ip(http_request))
    message = "Payment verified successfully" if result.verified else "Payment submitted for confirmation"
    return ApiResponse(message=message, data=result)

@router.post("/upi/{transaction_id}/confirm", response_model=ApiResponse[PaymentVerificationResponse])
async def confirm_upi_payment(
    transaction_id: str,
    request: UpiConfirmRequest,
    admin: User = Depends(get_current_admin),
    service: PaymentService = Depends(get_payment_service)
):
    result = await service.confirm_upi_payment(transaction_id, request.reference_id, admin_id=admin.id)
    return ApiResponse(message="Payment confirmed", data=result)
