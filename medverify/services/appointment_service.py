from typing import List
from uuid import UUID

from pydantic.alias_generators import to_camel
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from medverify.core.errors import Forbidden, MismatchError, NotFound, ValidationError
from medverify.core.logger import logger
from medverify.core.utils import utcnow
from medverify.db.models import Appointment, User
from medverify.schemas.appointment import AppointmentFields
from medverify.services.identity_service import IdentityService

FORM_FIELDS = tuple(AppointmentFields.model_fields)

REQUIRED_FIELDS = (
    "first_name", "last_name", "date_of_birth", "nationality", "gender", "marital_status",
    "passport_number", "passport_issue_date", "passport_issue_place", "passport_expiry_date",
    "visa_type", "email", "phone", "country", "country_traveling_to", "appointment_type",
    "medical_center", "appointment_date",
)

# A new draft is only worth creating once one of these is known
MEANINGFUL_FIELDS = ("first_name", "last_name", "email", "appointment_type")

def clean_fields(fields: dict) -> dict:
    """Keep known form fields, dropping None and blank strings."""
    cleaned = {}
    for name, value in fields.items():
        if name not in FORM_FIELDS or value is None:
            continue
        if isinstance(value, str) and not value.strip():
            continue
        cleaned[name] = value
    return cleaned

class AppointmentService:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def find_latest_draft(self, user_id: UUID) -> Appointment | None:
        stmt = (
            select(Appointment)
            .where(Appointment.user_id == user_id, Appointment.status == "draft")
            .order_by(Appointment.updated_at.desc(), Appointment.created_at.desc())
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def list_for_user(self, user_id: UUID) -> List[Appointment]:
        stmt = (
            select(Appointment)
            .where(Appointment.user_id == user_id)
            .order_by(Appointment.created_at.desc())
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def get_by_id(self, appointment_id: UUID, user_id: UUID) -> Appointment:
        appointment = await self.session.get(Appointment, appointment_id)
        if not appointment:
            raise NotFound("Appointment not found")
        if appointment.user_id != user_id:
            logger.warning(f"User {user_id} requested appointment {appointment_id} owned by {appointment.user_id}")
            raise Forbidden("Appointment not found")
        return appointment

    async def save_draft(self, user_id: UUID, fields: dict) -> Appointment | None:
        data = clean_fields(fields)
        draft = await self.find_latest_draft(user_id)

        if draft:
            self._apply(draft, data)
        elif any(name in data for name in MEANINGFUL_FIELDS):
            draft = Appointment(user_id=user_id, status="draft", **data)
            self.session.add(draft)
        else:
            return None

        await self.session.commit()
        await self.session.refresh(draft)
        return draft

    async def finalize(self, user_id: UUID, fields: dict) -> Appointment:
        # All validation happens before any write
        missing = [to_camel(name) for name in REQUIRED_FIELDS if not _present(fields.get(name))]
        if missing:
            raise ValidationError(fields=missing)

        if fields.get("passport_number") != fields.get("confirm_passport_number"):
            raise MismatchError()

        data = clean_fields(fields)
        draft = await self.find_latest_draft(user_id)
        if draft:
            appointment = draft
            self._apply(appointment, data)
            appointment.status = "payment_pending"
        else:
            appointment = Appointment(user_id=user_id, status="payment_pending", **data)
            self.session.add(appointment)

        # Identity keeps a copy of the applicant profile
        user = await self.session.get(User, user_id)
        if user:
            IdentityService(self.session).apply_profile(user, {
                "name": f"{data['first_name']} {data['last_name']}",
                "email": data["email"],
                "phone": data["phone"],
                "passport_number": data["passport_number"],
            })

        await self.session.commit()
        await self.session.refresh(appointment)
        logger.info(f"Appointment {appointment.id} finalized for user {user_id} ({'draft resumed' if draft else 'new'})")
        return appointment

    async def attach_payment_order(self, appointment_id: UUID, order_id: str, payment_method: str) -> Appointment | None:
        appointment = await self.session.get(Appointment, appointment_id)
        if not appointment:
            return None
        appointment.payment_order_id = order_id
        appointment.payment_method = payment_method
        appointment.payment_status = "pending"
        appointment.updated_at = utcnow()
        self.session.add(appointment)
        await self.session.commit()
        return appointment

    async def find_by_payment_order(self, order_id: str, user_id: UUID) -> Appointment | None:
        stmt = select(Appointment).where(Appointment.payment_order_id == order_id, Appointment.user_id == user_id)
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def confirm_payment(self, appointment_id: UUID, user_id: UUID, order_id: str | None = None) -> Appointment | None:
        """Promote a paid appointment.

        Returns None if it is missing, owned by someone else, or (when
        ``order_id`` is given) was not ordered under that payment order.
        """
        appointment = await self.session.get(Appointment, appointment_id)
        if not appointment or appointment.user_id != user_id:
            return None
        if order_id and appointment.payment_order_id != order_id:
            logger.warning(f"Appointment {appointment_id} carries order {appointment.payment_order_id}, not {order_id}")
            return None
        if appointment.status == "confirmed" and appointment.payment_status == "completed":
            return appointment
        appointment.status = "confirmed"
        appointment.payment_status = "completed"
        appointment.updated_at = utcnow()
        self.session.add(appointment)
        await self.session.commit()
        return appointment

    def _apply(self, appointment: Appointment, data: dict):
        for name, value in data.items():
            setattr(appointment, name, value)
        appointment.updated_at = utcnow()
        self.session.add(appointment)

def _present(value) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    return True
