from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional
from uuid import UUID

from medverify.api.deps import get_current_user
from medverify.db.models import User
from medverify.db.session import get_session
from medverify.schemas.appointment import (
    AppointmentDraftRequest,
    AppointmentResponse,
    AppointmentSubmitRequest,
)
from medverify.schemas.common import ApiResponse
from medverify.services.appointment_service import AppointmentService

router = APIRouter()

async def get_appointment_service(session: AsyncSession = Depends(get_session)) -> AppointmentService:
    return AppointmentService(session)

@router.post("/draft", response_model=ApiResponse[Optional[AppointmentResponse]])
async def save_draft(
    request: AppointmentDraftRequest,
    user: User = Depends(get_current_user),
    service: AppointmentService = Depends(get_appointment_service)
):
    draft = await service.save_draft(user.id, request.model_dump(exclude_unset=True))
    if draft is None:
        return ApiResponse(message="Nothing to save yet", data=None)
    return ApiResponse(message="Draft saved", data=AppointmentResponse.model_validate(draft))

@router.get("/draft", response_model=ApiResponse[Optional[AppointmentResponse]])
async def get_latest_draft(
    user: User = Depends(get_current_user),
    service: AppointmentService = Depends(get_appointment_service)
):
    draft = await service.find_latest_draft(user.id)
    return ApiResponse(data=AppointmentResponse.model_validate(draft) if draft else None)

@router.post("", response_model=ApiResponse[AppointmentResponse])
async def finalize_appointment(
    request: AppointmentSubmitRequest,
    user: User = Depends(get_current_user),
    service: AppointmentService = Depends(get_appointment_service)
):
    appointment = await service.finalize(user.id, request.model_dump())
    return ApiResponse(message="Appointment submitted", data=AppointmentResponse.model_validate(appointment))

@router.get("", response_model=ApiResponse[List[AppointmentResponse]])
async def list_appointments(
    user: User = Depends(get_current_user),
    service: AppointmentService = Depends(get_appointment_service)
):
    appointments = await service.list_for_user(user.id)
    return ApiResponse(data=[AppointmentResponse.model_validate(a) for a in appointments])

@router.get("/{appointment_id}", response_model=ApiResponse[AppointmentResponse])
async def read_appointment(
    appointment_id: UUID,
    user: User = Depends(get_current_user),
    service: AppointmentService = Depends(get_appointment_service)
):
    appointment = await service.get_by_id(appointment_id, user.id)
    return ApiResponse(data=AppointmentResponse.model_validate(appointment))
