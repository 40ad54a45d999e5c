"""
Module: billing_kernel.models.organization
Responsibility: ORM persistence for the tenant boundary.  Every rule and
    ledger entry references exactly one organization row.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/types.py only.

Invariants enforced:
    - Organizations are never hard-deleted while rules or entries reference
      them (foreign keys on recurrence_rules and ledger_entries).
    - Deactivation (is_active = False) blocks new rule registration but keeps
      historical rows readable.

Failure modes:
    - IntegrityError on DELETE while dependents exist.
"""

from __future__ import annotations

from sqlalchemy import Boolean, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from billing_kernel.db.base import TrackedBase
from billing_kernel.domain.types import Organization


class OrganizationModel(TrackedBase):
    """
    Tenant that owns recurrence rules and ledger entries.

    Guarantees:
        - id is the organization_id carried by every tenant-owned row.
    """

    __tablename__ = "organizations"

    __table_args__ = (
        Index("idx_organization_active", "is_active"),
    )

    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
    )

    def __repr__(self) -> str:
        return f"<Organization {self.name} ({self.id})>"

    def to_dto(self) -> Organization:
        """Convert ORM model to frozen domain DTO."""
        return Organization(
            organization_id=self.id,
            name=self.name,
            is_active=self.is_active,
            created_at=self.created_at,
        )
