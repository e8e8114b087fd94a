"""
Reads and writes for payment_transactions.

Statements name their columns explicitly so that deployments whose table has
no ``appointment_id`` column keep working; see ``SchemaCapabilities``.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import List
from uuid import UUID, uuid4

from sqlalchemy import insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from medverify.core.utils import utcnow
from medverify.db.models import PaymentTransaction
from medverify.db.session import SchemaCapabilities, schema_capabilities

transactions_table = PaymentTransaction.__table__


@dataclass
class TransactionRecord:
    id: UUID
    user_id: UUID
    payment_method: str
    provider_order_id: str
    provider_payment_id: str | None
    amount: int
    currency: str
    status: str
    created_at: datetime
    updated_at: datetime
    appointment_id: UUID | None = None


class TransactionStore:
    def __init__(self, session: AsyncSession, capabilities: SchemaCapabilities | None = None):
        self.session = session
        self.capabilities = capabilities or schema_capabilities

    @property
    def linked(self) -> bool:
        return self.capabilities.transaction_appointment_link

    def _columns(self):
        return [c for c in transactions_table.c if self.linked or c.name != "appointment_id"]

    def _select(self):
        return select(*self._columns())

    async def _fetch(self, stmt) -> List[TransactionRecord]:
        result = await self.session.execute(stmt)
        return [TransactionRecord(**row) for row in result.mappings().all()]

    async def create(
        self,
        *,
        user_id: UUID,
        payment_method: str,
        provider_order_id: str,
        amount: int,
        currency: str,
        appointment_id: UUID | None = None,
        status: str = "created",
        provider_payment_id: str | None = None,
    ) -> UUID:
        now = utcnow()
        values = {
            "id": uuid4(),
            "user_id": user_id,
            "payment_method": payment_method,
            "provider_order_id": provider_order_id,
            "provider_payment_id": provider_payment_id,
            "amount": amount,
            "currency": currency,
            "status": status,
            "created_at": now,
            "updated_at": now,
        }
        if self.linked:
            values["appointment_id"] = appointment_id
        await self.session.execute(insert(transactions_table).values(**values))
        await self.session.commit()
        return values["id"]

    async def find_by_order(self, provider_order_id: str) -> TransactionRecord | None:
        stmt = (
            self._select()
            .where(transactions_table.c.provider_order_id == provider_order_id)
            .order_by(transactions_table.c.created_at.desc())
            .limit(1)
        )
        records = await self._fetch(stmt)
        return records[0] if records else None

    async def mark_paid(self, provider_order_id: str, user_id: UUID, provider_payment_id: str | None) -> int:
        result = await self.session.execute(
            update(transactions_table)
            .where(
                transactions_table.c.provider_order_id == provider_order_id,
                transactions_table.c.user_id == user_id,
            )
            .values(status="paid", provider_payment_id=provider_payment_id, updated_at=utcnow())
        )
        await self.session.commit()
        return result.rowcount or 0

    async def list_paid(self) -> List[TransactionRecord]:
        stmt = (
            self._select()
            .where(transactions_table.c.status == "paid")
            .order_by(transactions_table.c.created_at)
        )
        return await self._fetch(stmt)

    async def list_unlinked(self) -> List[TransactionRecord]:
        if not self.linked:
            return []
        stmt = (
            self._select()
            .where(transactions_table.c.appointment_id.is_(None))
            .order_by(transactions_table.c.created_at)
        )
        return await self._fetch(stmt)

    async def linked_appointment_ids(self, user_id: UUID) -> set:
        if not self.linked:
            return set()
        result = await self.session.execute(
            select(transactions_table.c.appointment_id).where(
                transactions_table.c.user_id == user_id,
                transactions_table.c.appointment_id.is_not(None),
            )
        )
        return set(result.scalars().all())

    async def link_appointment(self, transaction_id: UUID, appointment_id: UUID):
        if not self.linked:
            return
        await self.session.execute(
            update(transactions_table)
            .where(transactions_table.c.id == transaction_id)
            .values(appointment_id=appointment_id, updated_at=utcnow())
        )
        await self.session.commit()
