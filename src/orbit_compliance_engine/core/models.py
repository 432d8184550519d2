"""SQLAlchemy ORM models for the compliance engine.

All tables use the `cmp_` prefix. Column types are the portable SQLAlchemy
types (JSON, Uuid) so the same mapping runs on PostgreSQL in production and
on SQLite in tests.

Models:
- AssessmentRow: immutable Assessment header with classification and applicable set
- RequirementStatusRow: one mutable ledger row per (Assessment, Provision)
- AuditChainEntryRow: IMMUTABLE hash-chained audit entry
- AuditChainHeadRow: last sequence and hash per scope, locked on every append

IMPORTANT: cmp_audit_chain_entries is written only by SqlComplianceStore
inside the same transaction as the ledger change it records. It has no
update or delete path anywhere in the engine.
"""

import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import JSON, Uuid


class Base(DeclarativeBase):
    """Declarative base for all compliance engine tables."""


class AssessmentRow(Base):
    """Persisted Assessment.

    Attributes:
        id: Assessment UUID.
        scope: Owning organization; also the audit chain scope.
        domain: Domain code.
        knowledge_base_version: Version the applicable set was computed against.
        profile: JSON snapshot of the Profile.
        classification: JSON Classification document.
        applicable_provision_ids: JSON array in catalog order.
        simplified_provision_ids: JSON array of light-regime simplified provisions.
        fingerprint: Digest used to decide whether a recomputation can reuse this row.
        created_at: Creation timestamp (UTC).
    """

    __tablename__ = "cmp_assessments"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    scope: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    domain: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    knowledge_base_version: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        comment="Knowledge base version label, e.g. 2026.10.1",
    )
    profile: Mapped[dict] = mapped_column(JSON, nullable=False)  # type: ignore[type-arg]
    classification: Mapped[dict] = mapped_column(JSON, nullable=False)  # type: ignore[type-arg]
    applicable_provision_ids: Mapped[list] = mapped_column(JSON, nullable=False)  # type: ignore[type-arg]
    simplified_provision_ids: Mapped[list] = mapped_column(  # type: ignore[type-arg]
        JSON,
        nullable=False,
        default=list,
    )
    fingerprint: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)


class RequirementStatusRow(Base):
    """Current compliance state of one provision within one Assessment.

    Attributes:
        assessment_id: Owning Assessment.
        provision_id: Provision id within the Assessment's domain.
        position: Catalog order of the provision within the Assessment.
        state: not_assessed | compliant | partial | non_compliant | not_applicable.
        revision: Incremented on every change, used for optimistic concurrency.
        updated_by: Actor of the last change.
        updated_at: Timestamp of the last change (UTC).
    """

    __tablename__ = "cmp_requirement_statuses"
    __table_args__ = (
        UniqueConstraint("assessment_id", "provision_id", name="uq_cmp_status_assessment_provision"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    assessment_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("cmp_assessments.id"),
        nullable=False,
        index=True,
    )
    provision_id: Mapped[str] = mapped_column(String(100), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    state: Mapped[str] = mapped_column(String(32), nullable=False, default="not_assessed")
    revision: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class AuditChainEntryRow(Base):
    """Immutable audit chain entry.

    The timestamp is stored as the exact ISO-8601 text that was hashed, so
    verification does not depend on the database's datetime round trip.

    Attributes:
        scope: Chain scope.
        sequence: 1-based position within the scope.
        previous_hash: Hash of the preceding entry, or 64 zeros for the first.
        entry_hash: SHA-256 over previous_hash and the canonical body.
        action: Dot-notation action name.
        actor: Who performed the change.
        timestamp: ISO-8601 UTC timestamp text.
        details: Action-specific JSON payload.
    """

    __tablename__ = "cmp_audit_chain_entries"
    __table_args__ = (UniqueConstraint("scope", "sequence", name="uq_cmp_audit_scope_sequence"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    scope: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    previous_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    entry_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    action: Mapped[str] = mapped_column(String(100), nullable=False)
    actor: Mapped[str] = mapped_column(String(255), nullable=False)
    timestamp: Mapped[str] = mapped_column(String(40), nullable=False)
    details: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)  # type: ignore[type-arg]


class AuditChainHeadRow(Base):
    """Append point of one scope's chain.

    Locked with SELECT ... FOR UPDATE by every append so sequence numbers
    of a scope never fork.
    """

    __tablename__ = "cmp_audit_chain_heads"

    scope: Mapped[str] = mapped_column(String(255), primary_key=True)
    last_sequence: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_hash: Mapped[str] = mapped_column(String(64), nullable=False)
