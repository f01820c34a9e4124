"""SQLAlchemy models for the resident registry.

Data Architecture Overview:
- Resident is the CENTRAL ENTITY, keyed for callers by its local code
- The vendor person id is stored once the vendor accepts the person
- Nothing is ever physically deleted: status moves to DELETED
- All registry and configuration changes are tracked via ChangeLog

Key Concepts:
- local_code: sequential decimal string ("ownerId"), never reused
- vendor_id: opaque id from the vendor; presence means "synced"
- valid_from / valid_to: stored in the vendor wire format (ISO-8601 + offset)
"""

from datetime import datetime, timezone

from sqlalchemy import (
    DateTime,
    Enum as SQLEnum,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from .database import Base
from .schemas import ConfigValueType, ResidentKind, ResidentStatus


def utcnow() -> datetime:
    """Naive UTC timestamp for audit columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Resident(Base):
    """A person registered for physical access to a community unit.

    Lifecycle across the two systems:
    absent → vendor-created → locally persisted (synced) → soft-deleted

    A row only exists once the vendor accepted the person, so a row without
    vendor_id is a legacy or manually-imported record.
    """

    __tablename__ = "residents"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    local_code: Mapped[str] = mapped_column(
        String(20), unique=True, nullable=False, index=True,
        doc="Caller-facing sequential code. Unique index rejects concurrent duplicates."
    )
    vendor_id: Mapped[str | None] = mapped_column(
        String(64), index=True,
        doc="Vendor person id returned on creation"
    )

    # Identity
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    phone: Mapped[str | None] = mapped_column(String(20))

    # Placement
    community: Mapped[str | None] = mapped_column(String(50), index=True)
    unit_id: Mapped[str] = mapped_column(String(50), nullable=False)
    kind: Mapped[ResidentKind] = mapped_column(
        SQLEnum(ResidentKind), default=ResidentKind.RESIDENT, nullable=False,
        doc="resident, tenant, family_member, staff, visitor"
    )

    # Access validity, vendor wire format
    valid_from: Mapped[str] = mapped_column(String(32), nullable=False)
    valid_to: Mapped[str] = mapped_column(String(32), nullable=False)

    status: Mapped[ResidentStatus] = mapped_column(
        SQLEnum(ResidentStatus), default=ResidentStatus.ACTIVE, nullable=False, index=True
    )

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow
    )

    @property
    def synced(self) -> bool:
        return self.vendor_id is not None and self.vendor_id.strip() != ""

    def __repr__(self) -> str:
        return f"<Resident {self.local_code} ({self.status.value})>"


class AppConfig(Base):
    """Runtime configuration editable by admins.

    Values are stored as text and parsed back using `type`.
    """

    __tablename__ = "app_config"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    key: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    value: Mapped[str | None] = mapped_column(Text)
    type: Mapped[ConfigValueType] = mapped_column(
        SQLEnum(ConfigValueType), default=ConfigValueType.STRING, nullable=False
    )
    description: Mapped[str | None] = mapped_column(Text)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow
    )

    def __repr__(self) -> str:
        return f"<AppConfig {self.key}>"


class ChangeLog(Base):
    """Audit trail for registry and configuration changes.

    All changes are tracked with:
    - What changed (table, record key, field, values)
    - Who made the change (system or admin)
    - Why (reason/source)

    Inconsistency rows mark vendor-side persons with no local counterpart
    and are the reconciliation queue for operators.
    """

    __tablename__ = "change_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # What changed
    table_name: Mapped[str] = mapped_column(
        String(50), nullable=False, index=True,
        doc="Table that was modified"
    )
    record_key: Mapped[str] = mapped_column(
        String(100), nullable=False, index=True,
        doc="Local code or config key of the modified record"
    )
    change_type: Mapped[str] = mapped_column(
        String(20), nullable=False, index=True,
        doc="Type of change: create, create_failed, delete, inconsistency, config"
    )
    field_name: Mapped[str | None] = mapped_column(String(50))
    old_value: Mapped[str | None] = mapped_column(Text)
    new_value: Mapped[str | None] = mapped_column(Text)

    # Who/why
    changed_by: Mapped[str] = mapped_column(
        String(100), nullable=False,
        doc="Who made the change: 'system:sync_engine', 'admin', etc."
    )
    change_reason: Mapped[str | None] = mapped_column(Text)
    source_reference: Mapped[str | None] = mapped_column(
        Text,
        doc="Vendor person id, visit id, etc."
    )

    # When
    changed_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, nullable=False, index=True
    )

    __table_args__ = (
        Index('ix_change_log_table_record', 'table_name', 'record_key'),
    )

    def __repr__(self) -> str:
        return f"<ChangeLog {self.change_type} {self.table_name}.{self.record_key}>"
