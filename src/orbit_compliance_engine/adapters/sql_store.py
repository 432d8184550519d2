"""SQLAlchemy implementation of IComplianceStore.

Every mutating method runs in ONE database transaction:
- the Assessment header, its ledger rows and the ``assessment.created`` entry, or
- the ledger row change and its ``requirement_status.updated`` entry.

If anything fails the transaction is rolled back and the caller receives a
PersistenceError (or ConcurrencyConflictError for a lost race), never a
partial write.

Serialization of audit appends per scope:
- an in-process asyncio.Lock per scope
- SELECT ... FOR UPDATE on the scope's AuditChainHeadRow and on the ledger row
- UNIQUE(scope, sequence) on cmp_audit_chain_entries as the final backstop

Key exports:
- SqlComplianceStore.init(): create the engine (and tables when asked)
- SqlComplianceStore.close(): dispose the engine
"""

import asyncio
import uuid
import weakref
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import UTC, datetime

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from orbit_compliance_engine.applicability.classification import Classification
from orbit_compliance_engine.core.models import (
    AssessmentRow,
    AuditChainEntryRow,
    AuditChainHeadRow,
    Base,
    RequirementStatusRow,
)
from orbit_compliance_engine.errors import (
    ComplianceEngineError,
    ConcurrencyConflictError,
    NotFoundError,
    PersistenceError,
)
from orbit_compliance_engine.ledger.audit_chain import GENESIS_HASH, build_entry
from orbit_compliance_engine.ledger.records import (
    ACTION_ASSESSMENT_CREATED,
    ACTION_STATUS_UPDATED,
    Assessment,
    AuditEntry,
    ComplianceState,
    RequirementStatus,
    StatusChange,
    assessment_created_details,
    status_updated_details,
)
from orbit_compliance_engine.observability import get_logger

logger = get_logger(__name__)


class SqlComplianceStore:
    """Relational compliance store on an async SQLAlchemy engine.

    Args:
        database_url: SQLAlchemy async URL, e.g. postgresql+asyncpg://... or
            sqlite+aiosqlite:///path.db.
        pool_size: Connection pool size (ignored for SQLite).
        max_overflow: Max overflow connections above pool_size (ignored for SQLite).
        echo: Log SQL statements. Audit payloads are part of those statements.
    """

    def __init__(
        self,
        database_url: str,
        pool_size: int = 5,
        max_overflow: int = 2,
        echo: bool = False,
    ) -> None:
        self._database_url = database_url
        self._pool_size = pool_size
        self._max_overflow = max_overflow
        self._echo = echo
        self._engine: AsyncEngine | None = None
        self._session_factory: async_sessionmaker[AsyncSession] | None = None
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    async def init(self, create_tables: bool = False) -> None:
        """Create the engine and session factory.

        Args:
            create_tables: Create missing tables (tests and local development).
        """
        logger.info("Initializing compliance store engine", create_tables=create_tables)

        engine_kwargs: dict[str, object] = {"echo": self._echo, "pool_pre_ping": True}
        if not self._database_url.startswith("sqlite"):
            engine_kwargs.update(pool_size=self._pool_size, max_overflow=self._max_overflow)
        self._engine = create_async_engine(self._database_url, **engine_kwargs)
        self._session_factory = async_sessionmaker(
            bind=self._engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )

        if create_tables:
            async with self._engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)

        logger.info("Compliance store engine initialized")

    async def close(self) -> None:
        """Dispose the engine. The store is unusable until init() is called again."""
        if self._engine is not None:
            logger.info("Disposing compliance store engine")
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Yield a session inside a transaction that commits on success.

        Raises:
            RuntimeError: If init() has not been called.
        """
        if self._session_factory is None:
            raise RuntimeError("Compliance store has not been initialized. Call init() first.")
        async with self._session_factory() as session:
            async with session.begin():
                yield session

    def _lock(self, scope: str) -> asyncio.Lock:
        lock = self._locks.get(scope)
        if lock is None:
            lock = self._locks[scope] = asyncio.Lock()
        return lock

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create_assessment(self, assessment: Assessment, actor: str) -> AuditEntry:
        async with self._lock(assessment.scope):
            try:
                async with self.session() as session:
                    session.add(_assessment_to_row(assessment))
                    await session.flush()
                    now = datetime.now(UTC)
                    for position, provision_id in enumerate(assessment.applicable_provision_ids):
                        session.add(
                            RequirementStatusRow(
                                assessment_id=assessment.assessment_id,
                                provision_id=provision_id,
                                position=position,
                                state=ComplianceState.NOT_ASSESSED.value,
                                revision=0,
                                updated_by=None,
                                updated_at=now,
                            )
                        )
                    entry = await self._append(
                        session,
                        assessment.scope,
                        ACTION_ASSESSMENT_CREATED,
                        actor,
                        assessment_created_details(assessment),
                    )
            except ComplianceEngineError:
                raise
            except IntegrityError as exc:
                raise ConcurrencyConflictError(
                    "Concurrent write to the audit chain; assessment not stored",
                    scope=assessment.scope,
                ) from exc
            except SQLAlchemyError as exc:
                raise PersistenceError(
                    "Assessment could not be stored; transaction rolled back",
                    scope=assessment.scope,
                    assessment_id=str(assessment.assessment_id),
                ) from exc

        logger.info(
            "Assessment stored",
            assessment_id=str(assessment.assessment_id),
            scope=assessment.scope,
            domain=assessment.domain,
            sequence=entry.sequence,
        )
        return entry

    async def update_status(
        self,
        assessment_id: uuid.UUID,
        provision_id: str,
        new_state: ComplianceState,
        actor: str,
        expected_revision: int | None = None,
    ) -> StatusChange:
        assessment = await self.get_assessment(assessment_id)
        async with self._lock(assessment.scope):
            try:
                async with self.session() as session:
                    result = await session.execute(
                        select(RequirementStatusRow)
                        .where(
                            RequirementStatusRow.assessment_id == assessment_id,
                            RequirementStatusRow.provision_id == provision_id,
                        )
                        .with_for_update()
                    )
                    row = result.scalar_one_or_none()
                    if row is None:
                        raise NotFoundError(
                            resource="RequirementStatus",
                            resource_id=f"{assessment_id}/{provision_id}",
                        )
                    if expected_revision is not None and row.revision != expected_revision:
                        raise ConcurrencyConflictError(
                            f"Requirement status {provision_id} is at revision {row.revision}, "
                            f"expected {expected_revision}",
                            assessment_id=str(assessment_id),
                            provision_id=provision_id,
                            current_revision=row.revision,
                            expected_revision=expected_revision,
                        )

                    previous_state = ComplianceState(row.state)
                    row.state = new_state.value
                    row.revision += 1
                    row.updated_by = actor
                    row.updated_at = datetime.now(UTC)
                    entry = await self._append(
                        session,
                        assessment.scope,
                        ACTION_STATUS_UPDATED,
                        actor,
                        status_updated_details(
                            assessment_id, provision_id, previous_state, new_state, row.revision
                        ),
                    )
                    status = _row_to_status(row)
            except ComplianceEngineError:
                raise
            except IntegrityError as exc:
                raise ConcurrencyConflictError(
                    "Concurrent write to the audit chain; status not changed",
                    scope=assessment.scope,
                    provision_id=provision_id,
                ) from exc
            except SQLAlchemyError as exc:
                raise PersistenceError(
                    "Status change could not be stored; transaction rolled back",
                    assessment_id=str(assessment_id),
                    provision_id=provision_id,
                ) from exc

        return StatusChange(status=status, previous_state=previous_state, audit_entry=entry)

    async def _append(
        self,
        session: AsyncSession,
        scope: str,
        action: str,
        actor: str,
        details: dict,  # type: ignore[type-arg]
    ) -> AuditEntry:
        result = await session.execute(
            select(AuditChainHeadRow).where(AuditChainHeadRow.scope == scope).with_for_update()
        )
        head = result.scalar_one_or_none()
        if head is None:
            head = AuditChainHeadRow(scope=scope, last_sequence=0, last_hash=GENESIS_HASH)
            session.add(head)

        entry = build_entry(
            scope=scope,
            sequence=head.last_sequence + 1,
            previous_hash=head.last_hash,
            action=action,
            actor=actor,
            details=details,
        )
        session.add(
            AuditChainEntryRow(
                scope=entry.scope,
                sequence=entry.sequence,
                previous_hash=entry.previous_hash,
                entry_hash=entry.entry_hash,
                action=entry.action,
                actor=entry.actor,
                timestamp=entry.timestamp,
                details=entry.details,
            )
        )
        head.last_sequence = entry.sequence
        head.last_hash = entry.entry_hash
        await session.flush()
        return entry

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_assessment(self, assessment_id: uuid.UUID) -> Assessment:
        try:
            async with self.session() as session:
                row = await session.get(AssessmentRow, assessment_id)
        except SQLAlchemyError as exc:
            raise PersistenceError(
                "Assessment could not be read", assessment_id=str(assessment_id)
            ) from exc
        if row is None:
            raise NotFoundError(resource="Assessment", resource_id=str(assessment_id))
        return _row_to_assessment(row)

    async def find_latest_assessment(self, scope: str, domain: str) -> Assessment | None:
        stmt = (
            select(AssessmentRow)
            .where(AssessmentRow.scope == scope, AssessmentRow.domain == domain)
            .order_by(AssessmentRow.created_at.desc())
            .limit(1)
        )
        try:
            async with self.session() as session:
                row = (await session.execute(stmt)).scalar_one_or_none()
        except SQLAlchemyError as exc:
            raise PersistenceError("Assessments could not be read", scope=scope, domain=domain) from exc
        return _row_to_assessment(row) if row is not None else None

    async def list_statuses(self, assessment_id: uuid.UUID) -> list[RequirementStatus]:
        try:
            async with self.session() as session:
                header = await session.get(AssessmentRow, assessment_id)
                if header is None:
                    raise NotFoundError(resource="Assessment", resource_id=str(assessment_id))
                result = await session.execute(
                    select(RequirementStatusRow)
                    .where(RequirementStatusRow.assessment_id == assessment_id)
                    .order_by(RequirementStatusRow.position)
                )
                return [_row_to_status(row) for row in result.scalars().all()]
        except SQLAlchemyError as exc:
            raise PersistenceError(
                "Requirement statuses could not be read", assessment_id=str(assessment_id)
            ) from exc

    async def list_audit_entries(self, scope: str) -> list[AuditEntry]:
        try:
            async with self.session() as session:
                result = await session.execute(
                    select(AuditChainEntryRow)
                    .where(AuditChainEntryRow.scope == scope)
                    .order_by(AuditChainEntryRow.sequence)
                )
                rows = list(result.scalars().all())
        except SQLAlchemyError as exc:
            raise PersistenceError("Audit entries could not be read", scope=scope) from exc
        return [
            AuditEntry(
                scope=row.scope,
                sequence=row.sequence,
                previous_hash=row.previous_hash,
                entry_hash=row.entry_hash,
                action=row.action,
                actor=row.actor,
                timestamp=row.timestamp,
                details=row.details,
            )
            for row in rows
        ]


# ---------------------------------------------------------------------------
# Row conversion
# ---------------------------------------------------------------------------


def _as_utc(value: datetime) -> datetime:
    # SQLite drops tzinfo on the round trip
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


def _assessment_to_row(assessment: Assessment) -> AssessmentRow:
    return AssessmentRow(
        id=assessment.assessment_id,
        scope=assessment.scope,
        domain=assessment.domain,
        knowledge_base_version=assessment.knowledge_base_version,
        profile=assessment.profile,
        classification=assessment.classification.as_document(),
        applicable_provision_ids=list(assessment.applicable_provision_ids),
        simplified_provision_ids=list(assessment.simplified_provision_ids),
        fingerprint=assessment.fingerprint,
        created_at=assessment.created_at,
    )


def _row_to_assessment(row: AssessmentRow) -> Assessment:
    return Assessment(
        assessment_id=row.id,
        scope=row.scope,
        domain=row.domain,
        knowledge_base_version=row.knowledge_base_version,
        profile=dict(row.profile),
        classification=Classification.from_document(row.classification),
        applicable_provision_ids=tuple(row.applicable_provision_ids),
        simplified_provision_ids=tuple(row.simplified_provision_ids or ()),
        fingerprint=row.fingerprint,
        created_at=_as_utc(row.created_at),
    )


def _row_to_status(row: RequirementStatusRow) -> RequirementStatus:
    return RequirementStatus(
        assessment_id=row.assessment_id,
        provision_id=row.provision_id,
        state=ComplianceState(row.state),
        revision=row.revision,
        updated_by=row.updated_by,
        updated_at=_as_utc(row.updated_at),
    )
