"""
Repairs drift left behind by partially failed payment bookkeeping.

Paid transactions are the source of truth: their appointments get promoted,
their identities get marked paid, and transactions that lost their appointment
link are matched back to the appointment created alongside them.
"""
from dataclasses import asdict, dataclass
from datetime import timedelta
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from medverify.core.logger import logger
from medverify.db.models import Appointment, User
from medverify.db.session import SchemaCapabilities
from medverify.services.appointment_service import AppointmentService
from medverify.services.identity_service import IdentityService
from medverify.services.transaction_store import TransactionRecord, TransactionStore

ORPHAN_MATCH_WINDOW = timedelta(seconds=60)
SETTLED_STATUSES = ("confirmed",)


@dataclass
class ReconciliationReport:
    appointments_promoted: int = 0
    identities_updated: int = 0
    transactions_linked: int = 0
    ambiguous_skipped: int = 0
    failures: int = 0
    dry_run: bool = True

    def as_dict(self) -> dict:
        return asdict(self)


class ReconciliationService:
    def __init__(self, session: AsyncSession, capabilities: SchemaCapabilities | None = None):
        self.session = session
        self.transactions = TransactionStore(session, capabilities)
        self.appointments = AppointmentService(session)
        self.identities = IdentityService(session)

    async def run(self, dry_run: bool = True) -> ReconciliationReport:
        report = ReconciliationReport(dry_run=dry_run)

        if self.transactions.linked:
            await self._link_orphans(report)
            await self._promote_appointments(report)
        else:
            logger.warning("Skipping appointment reconciliation, transactions carry no appointment link")
        await self._mark_identities(report)

        logger.info(f"Reconciliation finished: {report.as_dict()}")
        return report

    async def _link_orphans(self, report: ReconciliationReport):
        for transaction in await self.transactions.list_unlinked():
            candidates = await self._orphan_candidates(transaction)
            if len(candidates) != 1:
                if len(candidates) > 1:
                    report.ambiguous_skipped += 1
                    logger.warning(
                        f"Transaction {transaction.id} matches {len(candidates)} appointments, skipping"
                    )
                continue

            appointment = candidates[0]
            logger.info(f"Linking transaction {transaction.id} to appointment {appointment.id}")
            if report.dry_run:
                report.transactions_linked += 1
                continue
            try:
                await self.transactions.link_appointment(transaction.id, appointment.id)
                report.transactions_linked += 1
            except SQLAlchemyError as e:
                await self._failed(report, f"linking transaction {transaction.id}", e)

    async def _orphan_candidates(self, transaction: TransactionRecord) -> list:
        stmt = select(Appointment).where(
            Appointment.user_id == transaction.user_id,
            Appointment.created_at >= transaction.created_at - ORPHAN_MATCH_WINDOW,
            Appointment.created_at <= transaction.created_at + ORPHAN_MATCH_WINDOW,
        )
        result = await self.session.execute(stmt)
        taken = await self.transactions.linked_appointment_ids(transaction.user_id)
        return [a for a in result.scalars().all() if a.id not in taken]

    async def _promote_appointments(self, report: ReconciliationReport):
        for transaction in await self.transactions.list_paid():
            if not transaction.appointment_id:
                continue
            appointment = await self.session.get(Appointment, transaction.appointment_id)
            if not appointment or (appointment.status in SETTLED_STATUSES and appointment.payment_status == "completed"):
                continue

            logger.info(f"Promoting appointment {appointment.id} paid by transaction {transaction.id}")
            if report.dry_run:
                report.appointments_promoted += 1
                continue
            try:
                await self.appointments.confirm_payment(appointment.id, transaction.user_id)
                report.appointments_promoted += 1
            except SQLAlchemyError as e:
                await self._failed(report, f"promoting appointment {appointment.id}", e)

    async def _mark_identities(self, report: ReconciliationReport):
        seen: set[UUID] = set()
        for transaction in await self.transactions.list_paid():
            if transaction.user_id in seen:
                continue
            seen.add(transaction.user_id)
            user = await self.session.get(User, transaction.user_id)
            if not user or user.payment_status == "paid":
                continue

            logger.info(f"Marking identity {user.id} paid from transaction {transaction.id}")
            if report.dry_run:
                report.identities_updated += 1
                continue
            try:
                await self.identities.set_payment_status(user.id, "paid", transaction.provider_payment_id)
                report.identities_updated += 1
            except SQLAlchemyError as e:
                await self._failed(report, f"updating identity {user.id}", e)

    async def _failed(self, report: ReconciliationReport, step: str, error: Exception):
        await self.session.rollback()
        report.failures += 1
        logger.error(f"PersistenceError {step}: {error}")