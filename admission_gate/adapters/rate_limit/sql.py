"""SQL-backed rate limit store (SQLAlchemy async).

Records live in a single ``rate_limits`` table shared by every process:

    rate_limits(id UUID PK, client_id TEXT NOT NULL, created_at TIMESTAMPTZ NOT NULL)
    idx_rate_limits_client_id_created_at (client_id, created_at)  -- range counts
    idx_rate_limits_created_at (created_at)                       -- global cleanup

Rows are immutable: they are inserted, counted and deleted, never updated.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from uuid import UUID as PythonUUID, uuid4

from sqlalchemy import DateTime, Index, Text, Uuid, delete, func, insert, literal, make_url, select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from admission_gate.adapters.rate_limit.base import AbstractRateLimitStore, RequestRecord
from admission_gate.core.errors import StoreAppError

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """Declarative base for the gate's tables."""


class RequestRecordModel(Base):
    """One counted request (immutable row)."""

    __tablename__ = "rate_limits"
    __table_args__ = (
        Index("idx_rate_limits_client_id_created_at", "client_id", "created_at"),
        Index("idx_rate_limits_created_at", "created_at"),
    )

    id: Mapped[PythonUUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    client_id: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


def _to_datetime(timestamp: float) -> datetime:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc)


def _to_epoch(value: datetime) -> float:
    # SQLite hands back naive datetimes; everything is written as UTC.
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.timestamp()


def _driver_connect_args(database_url: str, timeout_seconds: float) -> dict:
    """Connect/command timeouts in the form each async driver accepts."""

    url = make_url(database_url)
    if url.drivername == "postgresql+asyncpg":
        return {"command_timeout": timeout_seconds, "timeout": timeout_seconds}
    if url.get_backend_name() == "sqlite":
        return {"timeout": timeout_seconds}
    return {}


def create_engine_for_url(database_url: str, *, timeout_seconds: float = 2.0) -> AsyncEngine:
    """Create an async engine with connection checks and driver timeouts.

    Args:
        database_url: SQLAlchemy async URL (e.g., postgresql+asyncpg://...).
        timeout_seconds: Connect/command timeout passed to the driver.
    """

    return create_async_engine(
        database_url,
        pool_pre_ping=True,  # Verify connections before use
        connect_args=_driver_connect_args(database_url, timeout_seconds),
    )


class SqlRateLimitStore(AbstractRateLimitStore):
    """Store backed by the ``rate_limits`` table.

    Args:
        engine: SQLAlchemy async engine. The store owns it and disposes it
            on ``close()``.
    """

    backend = "sql"
    supports_atomic = True

    def __init__(self, engine: AsyncEngine) -> None:
        self.engine = engine
        self._schema_pending = False

    @classmethod
    def from_url(cls, database_url: str, *, timeout_seconds: float = 2.0) -> "SqlRateLimitStore":
        return cls(create_engine_for_url(database_url, timeout_seconds=timeout_seconds))

    async def create_schema(self) -> None:
        """Create the table and indexes if they do not exist.

        On failure the next store operation retries before running, so a
        database that comes up after the service still gets its schema.
        """

        try:
            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except SQLAlchemyError as exc:
            self._schema_pending = True
            raise self._store_error("create_schema", exc) from exc
        self._schema_pending = False

    async def _ensure_schema(self) -> None:
        if self._schema_pending:
            await self.create_schema()

    async def record(self, client_id: str, timestamp: float) -> None:
        await self._ensure_schema()
        try:
            async with self.engine.begin() as conn:
                await conn.execute(
                    insert(RequestRecordModel).values(
                        id=uuid4(),
                        client_id=client_id,
                        created_at=_to_datetime(timestamp),
                    )
                )
        except SQLAlchemyError as exc:
            raise self._store_error("record", exc) from exc

    async def count_since(self, client_id: str, since: float) -> int:
        await self._ensure_schema()
        try:
            async with self.engine.connect() as conn:
                result = await conn.execute(self._count_query(client_id, since))
                return int(result.scalar_one())
        except SQLAlchemyError as exc:
            raise self._store_error("count_since", exc) from exc

    async def delete_older_than(self, threshold: float) -> int:
        await self._ensure_schema()
        try:
            async with self.engine.begin() as conn:
                result = await conn.execute(
                    delete(RequestRecordModel).where(
                        RequestRecordModel.created_at < _to_datetime(threshold)
                    )
                )
                return max(0, result.rowcount or 0)
        except SQLAlchemyError as exc:
            raise self._store_error("delete_older_than", exc) from exc

    async def oldest_since(self, client_id: str, since: float) -> RequestRecord | None:
        await self._ensure_schema()
        query = select(func.min(RequestRecordModel.created_at)).where(
            RequestRecordModel.client_id == client_id,
            RequestRecordModel.created_at >= _to_datetime(since),
        )
        try:
            async with self.engine.connect() as conn:
                oldest = (await conn.execute(query)).scalar_one_or_none()
        except SQLAlchemyError as exc:
            raise self._store_error("oldest_since", exc) from exc
        if oldest is None:
            return None
        return RequestRecord(client_id=client_id, recorded_at=_to_epoch(oldest))

    async def record_if_below(
        self,
        client_id: str,
        timestamp: float,
        since: float,
        limit: int,
    ) -> int | None:
        """Insert only while fewer than ``limit`` rows exist in the window.

        The guard and the insert run as one ``INSERT ... SELECT ... WHERE``
        statement. On PostgreSQL a transaction-scoped advisory lock keyed on
        the client serializes concurrent evaluations for the same client.
        """

        await self._ensure_schema()
        guarded_row = select(
            literal(uuid4(), Uuid),
            literal(client_id, Text),
            literal(_to_datetime(timestamp), DateTime(timezone=True)),
        ).where(self._count_query(client_id, since).correlate(None).scalar_subquery() < limit)

        try:
            async with self.engine.begin() as conn:
                if conn.dialect.name == "postgresql":
                    await conn.execute(
                        text("SELECT pg_advisory_xact_lock(hashtext(:client_id))"),
                        {"client_id": client_id},
                    )
                result = await conn.execute(
                    insert(RequestRecordModel).from_select(
                        ["id", "client_id", "created_at"], guarded_row
                    )
                )
                if not result.rowcount:
                    return None
                count_after = (await conn.execute(self._count_query(client_id, since))).scalar_one()
                return max(0, int(count_after) - 1)
        except SQLAlchemyError as exc:
            raise self._store_error("record_if_below", exc) from exc

    async def close(self) -> None:
        await self.engine.dispose()

    @staticmethod
    def _count_query(client_id: str, since: float):
        return (
            select(func.count())
            .select_from(RequestRecordModel)
            .where(
                RequestRecordModel.client_id == client_id,
                RequestRecordModel.created_at >= _to_datetime(since),
            )
        )

    def _store_error(self, operation: str, exc: Exception) -> StoreAppError:
        logger.debug(
            "rate_limit_store.error",
            extra={"backend": self.backend, "operation": operation, "error_type": type(exc).__name__},
        )
        return StoreAppError(
            code="rate_limit_store_error",
            message=f"SQL store operation '{operation}' failed",
            details={"backend": self.backend, "operation": operation},
        )
