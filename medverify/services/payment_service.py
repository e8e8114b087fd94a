"""
Payment orders and verification.

Order creation sizes the charge from the appointment type and asks the
provider for a remote order. Verification checks the client's proof, then
brings the transaction, identity and appointment into agreement with three
independent writes. A failed bookkeeping write is logged and left for the
reconciliation job; it never undoes a verified payment.
"""
from dataclasses import asdict, dataclass
from typing import Dict, List
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from medverify.core.config import settings
from medverify.core.errors import DeliveryFailed, InvalidState, NotFound, SignatureInvalid, ValidationError
from medverify.core.logger import logger
from medverify.core.utils import generate_receipt_id, generate_upi_transaction_id
from medverify.db.models import Appointment
from medverify.db.session import SchemaCapabilities
from medverify.schemas.payment import (
    PaymentMethodInfo,
    PaymentMethodsResponse,
    PaymentOrderResponse,
    PaymentVerificationResponse,
    VerifyPaymentRequest,
)
from medverify.services.appointment_service import AppointmentService
from medverify.services.identity_service import IdentityService
from medverify.services.notification_service import Notifier, get_notifier
from medverify.services.payment_gateways import PaymentGateway, get_gateways
from medverify.services.transaction_store import TransactionRecord, TransactionStore

# Amounts in paise
PAYMENT_AMOUNTS = {
    "employment_visa": 350000,
    "family_visa": 300000,
    "visit_visa": 250000,
    "student_visa": 300000,
    "business_visa": 400000,
    "other": 350000,
}
DEFAULT_PAYMENT_TIER = "other"

PAYABLE_STATUSES = ("draft", "payment_pending")


def get_payment_amount(appointment_type: str | None) -> int:
    return PAYMENT_AMOUNTS.get(appointment_type or "", PAYMENT_AMOUNTS[DEFAULT_PAYMENT_TIER])


@dataclass
class PaymentContext:
    """Everything a payment operation may need to log, captured up front."""
    operation: str
    user_id: UUID | None = None
    payment_method: str | None = None
    appointment_id: UUID | None = None
    order_id: str | None = None
    payment_id: str | None = None
    client_ip: str | None = None
    actor_id: UUID | None = None

    def __str__(self) -> str:
        return " ".join(f"{k}={v}" for k, v in asdict(self).items() if v is not None)


class PaymentService:
    def __init__(
        self,
        session: AsyncSession,
        gateways: Dict[str, PaymentGateway] | None = None,
        notifier: Notifier | None = None,
        capabilities: SchemaCapabilities | None = None,
    ):
        self.session = session
        self.gateways = gateways if gateways is not None else get_gateways()
        self.notifier = notifier or get_notifier()
        self.appointments = AppointmentService(session)
        self.identities = IdentityService(session)
        self.transactions = TransactionStore(session, capabilities)

    def available_methods(self) -> List[str]:
        return [method for method, gateway in self.gateways.items() if gateway.is_enabled()]

    def default_method(self) -> str:
        available = self.available_methods()
        if settings.DEFAULT_PAYMENT_METHOD in available or not available:
            return settings.DEFAULT_PAYMENT_METHOD
        return available[0]

    def get_payment_methods(self) -> PaymentMethodsResponse:
        return PaymentMethodsResponse(
            available_methods=self.available_methods(),
            default_method=self.default_method(),
            methods_info={
                method: PaymentMethodInfo(
                    name=gateway.name,
                    description=gateway.description,
                    enabled=gateway.is_enabled(),
                )
                for method, gateway in self.gateways.items()
            },
        )

    async def create_order(
        self,
        user_id: UUID,
        appointment_id: UUID,
        payment_method: str | None = None,
        client_ip: str | None = None,
    ) -> PaymentOrderResponse:
        method = payment_method or self.default_method()
        ctx = PaymentContext("create_order", user_id, method, appointment_id, client_ip=client_ip)

        if method not in self.available_methods():
            raise ValidationError("Selected payment method is not available")

        appointment = await self.appointments.get_by_id(appointment_id, user_id)
        if not appointment.appointment_type:
            raise InvalidState("Please complete appointment details first")
        if appointment.status not in PAYABLE_STATUSES:
            raise InvalidState()
        if appointment.payment_status == "completed":
            raise InvalidState("Payment already completed for this appointment")

        amount = get_payment_amount(appointment.appointment_type)
        currency = settings.PAYMENT_CURRENCY
        if method == "upi":
            receipt = generate_upi_transaction_id(user_id, appointment.appointment_type)
        else:
            receipt = generate_receipt_id(user_id)

        user = await self.identities.get_by_id(user_id)
        metadata = {
            "user_id": user_id,
            "appointment_id": appointment_id,
            "appointment_type": appointment.appointment_type,
            "user_name": user.name if user else None,
            "user_email": user.email if user else None,
        }

        # Provider failure leaves local state untouched
        remote = await self.gateways[method].create_remote_order(amount, currency, receipt, metadata)
        ctx.order_id = remote.order_id

        try:
            await self.transactions.create(
                user_id=user_id,
                appointment_id=appointment_id,
                payment_method=method,
                provider_order_id=remote.order_id,
                amount=remote.amount,
                currency=remote.currency,
            )
        except SQLAlchemyError as e:
            await self._persistence_failed(ctx, "recording transaction", e)

        try:
            await self.identities.set_payment_status(user_id, "pending")
            await self.appointments.attach_payment_order(appointment_id, remote.order_id, method)
        except SQLAlchemyError as e:
            await self._persistence_failed(ctx, "attaching order", e)

        logger.info(f"Payment order created: {ctx} amount={remote.amount}")
        return PaymentOrderResponse(
            payment_method=method,
            order_id=remote.order_id,
            amount=remote.amount,
            currency=remote.currency,
            receipt=remote.receipt,
            **remote.extra,
        )

    async def verify_payment(
        self,
        user_id: UUID,
        proof: VerifyPaymentRequest,
        client_ip: str | None = None,
    ) -> PaymentVerificationResponse:
        ctx = PaymentContext(
            "verify_payment", user_id, proof.payment_method, proof.appointment_id, client_ip=client_ip
        )
        if proof.payment_method == "razorpay":
            return await self._verify_razorpay(ctx, proof)
        if proof.payment_method == "upi":
            return await self._verify_upi(ctx, proof)
        raise ValidationError("Unsupported payment method")

    async def _verify_razorpay(self, ctx: PaymentContext, proof: VerifyPaymentRequest) -> PaymentVerificationResponse:
        ctx.order_id = proof.razorpay_order_id
        ctx.payment_id = proof.razorpay_payment_id
        if not (proof.razorpay_order_id and proof.razorpay_payment_id and proof.razorpay_signature):
            raise ValidationError("Missing Razorpay payment verification data")

        gateway = self.gateways["razorpay"]
        if not gateway.verify_signature(proof.razorpay_order_id, proof.razorpay_payment_id, proof.razorpay_signature):
            logger.warning(f"SignatureInvalid: payment signature mismatch {ctx}")
            raise SignatureInvalid()

        transaction = await self.transactions.find_by_order(proof.razorpay_order_id)
        if transaction and transaction.user_id != ctx.user_id:
            logger.warning(f"SignatureInvalid: order belongs to user {transaction.user_id} {ctx}")
            raise SignatureInvalid()

        ctx.appointment_id = await self._paid_appointment_id(ctx, transaction)

        if transaction and transaction.status == "paid" and transaction.provider_payment_id == proof.razorpay_payment_id:
            logger.info(f"Payment already verified, re-confirming: {ctx}")
            await self._reconcile(ctx, transaction)
            return self._verified(ctx, transaction)

        details = await gateway.fetch_payment_details(proof.razorpay_payment_id)
        if details.get("order_id") and details["order_id"] != proof.razorpay_order_id:
            logger.warning(f"SignatureInvalid: provider reports order {details['order_id']} {ctx}")
            raise SignatureInvalid()

        if transaction is None:
            logger.warning(f"No transaction row for verified payment, recording one: {ctx}")
            try:
                await self.transactions.create(
                    user_id=ctx.user_id,
                    appointment_id=ctx.appointment_id,
                    payment_method="razorpay",
                    provider_order_id=proof.razorpay_order_id,
                    amount=int(details.get("amount") or 0),
                    currency=details.get("currency") or settings.PAYMENT_CURRENCY,
                    status="paid",
                    provider_payment_id=proof.razorpay_payment_id,
                )
            except SQLAlchemyError as e:
                await self._persistence_failed(ctx, "recording transaction", e)

        appointment = await self._reconcile(ctx, transaction)
        amount = transaction.amount if transaction else int(details.get("amount") or 0)
        await self._notify_confirmation(ctx, appointment, amount)
        return self._verified(ctx, transaction)

    async def _verify_upi(self, ctx: PaymentContext, proof: VerifyPaymentRequest) -> PaymentVerificationResponse:
        ctx.order_id = proof.upi_transaction_id
        ctx.payment_id = proof.upi_reference_id
        if not proof.upi_transaction_id:
            raise ValidationError("Missing UPI transaction ID")

        transaction = await self.transactions.find_by_order(proof.upi_transaction_id)
        if not transaction or transaction.user_id != ctx.user_id:
            raise NotFound("Payment transaction not found")

        ctx.appointment_id = await self._paid_appointment_id(ctx, transaction)
        if transaction.status == "paid":
            return self._verified(ctx, transaction)

        # A UPI reference carries no signature; an admin confirms it against the bank statement
        logger.info(f"UPI payment awaiting confirmation: {ctx}")
        return PaymentVerificationResponse(
            verified=False,
            status="pending_confirmation",
            payment_method="upi",
            order_id=transaction.provider_order_id,
            payment_id=proof.upi_reference_id,
            appointment_id=ctx.appointment_id,
        )

    async def confirm_upi_payment(
        self,
        transaction_id: str,
        reference_id: str,
        admin_id: UUID | None = None,
        appointment_id: UUID | None = None,
    ) -> PaymentVerificationResponse:
        transaction = await self.transactions.find_by_order(transaction_id)
        if not transaction:
            raise NotFound("Payment transaction not found")
        if transaction.payment_method != "upi":
            raise InvalidState("Only UPI payments can be confirmed manually")

        ctx = PaymentContext(
            "confirm_upi",
            transaction.user_id,
            "upi",
            appointment_id,
            order_id=transaction_id,
            payment_id=reference_id,
            actor_id=admin_id,
        )
        ctx.appointment_id = await self._paid_appointment_id(ctx, transaction)
        if transaction.status == "paid":
            ctx.payment_id = transaction.provider_payment_id
            return self._verified(ctx, transaction)

        appointment = await self._reconcile(ctx, transaction)
        await self._notify_confirmation(ctx, appointment, transaction.amount)
        logger.info(f"UPI payment confirmed by admin: {ctx}")
        return self._verified(ctx, transaction)

    async def _paid_appointment_id(self, ctx: PaymentContext, transaction: TransactionRecord | None) -> UUID | None:
        """The appointment this order was placed for, never just the one the caller names.

        A linked transaction decides. Without a link, the appointment the order
        was attached to decides. A caller naming a different appointment is
        treated like a forged proof.
        """
        if transaction and transaction.appointment_id:
            paid_for = transaction.appointment_id
        else:
            appointment = await self.appointments.find_by_payment_order(ctx.order_id, ctx.user_id)
            paid_for = appointment.id if appointment else None
            if paid_for is None:
                logger.warning(f"No appointment carries this order, leaving it to reconciliation: {ctx}")
                return None

        if ctx.appointment_id and ctx.appointment_id != paid_for:
            logger.warning(f"SignatureInvalid: order was placed for appointment {paid_for} {ctx}")
            raise SignatureInvalid()
        return paid_for

    async def _reconcile(self, ctx: PaymentContext, transaction: TransactionRecord | None) -> Appointment | None:
        appointment_id = ctx.appointment_id
        # Only a transaction link may promote an appointment whose order was since replaced
        order_check = None if transaction and transaction.appointment_id else ctx.order_id

        if transaction:
            try:
                if not await self.transactions.mark_paid(ctx.order_id, ctx.user_id, ctx.payment_id):
                    logger.warning(f"Transaction not updated for verified payment: {ctx}")
            except SQLAlchemyError as e:
                await self._persistence_failed(ctx, "marking transaction paid", e)

        try:
            await self.identities.set_payment_status(ctx.user_id, "paid", ctx.payment_id)
        except SQLAlchemyError as e:
            await self._persistence_failed(ctx, "updating identity payment status", e)

        if not appointment_id:
            return None
        try:
            appointment = await self.appointments.confirm_payment(appointment_id, ctx.user_id, order_id=order_check)
        except SQLAlchemyError as e:
            await self._persistence_failed(ctx, "confirming appointment", e)
            return None
        if appointment is None:
            logger.warning(f"Appointment {appointment_id} not confirmed, not found for user: {ctx}")
        return appointment

    async def _notify_confirmation(self, ctx: PaymentContext, appointment: Appointment | None, amount: int):
        user = await self.identities.get_by_id(ctx.user_id)
        if not user or not (user.email or user.phone):
            return
        channel, identifier = ("email", user.email) if user.email else ("phone", user.phone)
        payload = {
            "template": "payment_confirmation",
            "name": user.name,
            "amount": amount,
            "payment_id": ctx.payment_id,
            "appointment_type": appointment.appointment_type if appointment else None,
            "medical_center": appointment.medical_center if appointment else None,
        }
        try:
            await self.notifier.send(identifier, channel, payload)
        except DeliveryFailed as e:
            logger.warning(f"Payment confirmation not delivered: {ctx} error={e.message}")

    async def _persistence_failed(self, ctx: PaymentContext, step: str, error: Exception):
        await self.session.rollback()
        logger.error(f"PersistenceError {step}: {ctx} error={error}")

    def _verified(self, ctx: PaymentContext, transaction: TransactionRecord | None) -> PaymentVerificationResponse:
        return PaymentVerificationResponse(
            verified=True,
            status="paid",
            payment_method=ctx.payment_method,
            order_id=ctx.order_id,
            payment_id=ctx.payment_id,
            appointment_id=ctx.appointment_id,
        )
