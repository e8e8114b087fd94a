from dataclasses import dataclass
from typing import AsyncGenerator

from sqlalchemy import inspect
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from medverify.core.config import settings
from medverify.core.logger import logger
from medverify.db.models import SQLModel

engine = create_async_engine(settings.DATABASE_URL, echo=False, future=True, pool_pre_ping=True)
async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

async def get_session() -> AsyncGenerator[AsyncSession, None]:
    async with async_session() as session:
        yield session

async def init_db(bind: AsyncEngine = engine):
    async with bind.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)


@dataclass
class SchemaCapabilities:
    """Optional columns the live schema may or may not carry."""
    transaction_appointment_link: bool = True


schema_capabilities = SchemaCapabilities()

async def detect_schema_capabilities(bind: AsyncEngine = engine) -> SchemaCapabilities:
    """Resolve optional-column support once, at startup."""
    if settings.TRANSACTION_APPOINTMENT_LINK is not None:
        schema_capabilities.transaction_appointment_link = settings.TRANSACTION_APPOINTMENT_LINK
    else:
        def _columns(sync_conn):
            return {column["name"] for column in inspect(sync_conn).get_columns("payment_transactions")}

        async with bind.connect() as conn:
            columns = await conn.run_sync(_columns)
        schema_capabilities.transaction_appointment_link = "appointment_id" in columns

    if not schema_capabilities.transaction_appointment_link:
        logger.warning("payment_transactions.appointment_id is missing, transactions will not be linked to appointments")
    return schema_capabilities
