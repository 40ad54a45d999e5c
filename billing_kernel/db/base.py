"""
Declarative base for the billing tables.

Every table (organizations, recurrence_rules, ledger_entries) has a UUID
primary key stored as String(36), integer minor-unit amounts, timezone-aware
audit timestamps and the id of the actor who created and last changed the
row.  A materialization run writes under the run's system actor.

Nothing here imports from models/, services/ or selectors/.
"""

from datetime import date, datetime
from typing import Any, ClassVar
from uuid import UUID, uuid4

from sqlalchemy import BigInteger, Date, DateTime, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class UUIDString(TypeDecorator):
    """UUIDs stored as 36-character strings, returned as UUID."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return None if value is None else str(value)

    def process_result_value(self, value, dialect):
        return None if value is None else UUID(value)


class Base(DeclarativeBase):
    # int -> BigInteger: amounts are minor units and must not overflow.
    type_annotation_map: ClassVar[dict] = {
        UUID: UUIDString(),
        int: BigInteger,
        date: Date,
        datetime: DateTime(timezone=True),
    }

    id: Mapped[UUID] = mapped_column(UUIDString(), primary_key=True, default=uuid4)


class TrackedBase(Base):
    """
    Audit columns shared by every billing table.

    ``created_by_id`` is required.  ``updated_by_id`` is set through
    ``mark_updated`` for ORM changes and ``audit_values`` for the
    conditional core UPDATEs (watermark advance, status changes) that never
    load the row.
    """

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(), onupdate=func.now(), nullable=False
    )
    created_by_id: Mapped[UUID] = mapped_column(nullable=False)
    updated_by_id: Mapped[UUID | None] = mapped_column(nullable=True)

    def mark_updated(self, actor_id: UUID) -> None:
        self.updated_by_id = actor_id

    @classmethod
    def audit_values(cls, actor_id: UUID, **values: Any) -> dict[str, Any]:
        """``values`` plus the updating actor, for ``update(...).values(...)``."""
        return {**values, "updated_by_id": actor_id}
