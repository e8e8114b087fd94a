from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from medverify.api.deps import get_current_user, get_token
from medverify.db.models import User
from medverify.db.session import get_session
from medverify.schemas.auth import (
    AdminLoginRequest,
    IdentityResponse,
    LoginResponse,
    OtpRequest,
    OtpRequestedResponse,
    OtpVerify,
)
from medverify.schemas.common import ApiResponse
from medverify.services.auth_service import AuthService

router = APIRouter()

async def get_auth_service(session: AsyncSession = Depends(get_session)) -> AuthService:
    return AuthService(session)

@router.post("/request-otp", response_model=ApiResponse[OtpRequestedResponse])
async def request_otp(
    request: OtpRequest,
    service: AuthService = Depends(get_auth_service)
):
    data = await service.request_otp(request)
    return ApiResponse(message="OTP sent successfully", data=data)

@router.post("/verify-otp", response_model=ApiResponse[LoginResponse])
async def verify_otp(
    request: OtpVerify,
    service: AuthService = Depends(get_auth_service)
):
    data = await service.verify_otp(request)
    return ApiResponse(message="OTP verified successfully", data=data)

@router.post("/admin/login", response_model=ApiResponse[LoginResponse])
async def admin_login(
    request: AdminLoginRequest,
    service: AuthService = Depends(get_auth_service)
):
    data = await service.admin_login(request)
    return ApiResponse(message="Login successful", data=data)

@router.get("/me", response_model=ApiResponse[IdentityResponse])
async def read_current_identity(user: User = Depends(get_current_user)):
    return ApiResponse(data=IdentityResponse.model_validate(user))

@router.post("/logout", response_model=ApiResponse[None])
async def logout(
    token: str = Depends(get_token),
    user: User = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service)
):
    await service.logout(token)
    return ApiResponse(message="Logged out")
