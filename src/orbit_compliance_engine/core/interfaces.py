"""Abstract interfaces (Protocol classes) for the compliance engine.

Defines the contracts between the service layer and the adapter layer using
typing.Protocol. ComplianceService depends on these protocols, never on a
concrete store, so tests can run against the in-memory store or a mock.

Protocols defined:
- IComplianceStore
- IReadAnalytics
"""

import uuid
from typing import Any, Protocol

from orbit_compliance_engine.ledger.records import (
    Assessment,
    AuditEntry,
    ComplianceState,
    RequirementStatus,
    StatusChange,
)


class IComplianceStore(Protocol):
    """Durable store for Assessments, their ledgers and the audit chains.

    Every mutating method is one transaction: it either commits its rows
    together with exactly one AuditEntry, or writes nothing and raises.
    No method updates or deletes an AuditEntry.
    """

    async def create_assessment(self, assessment: Assessment, actor: str) -> AuditEntry:
        """Persist an Assessment, one not_assessed row per applicable provision,
        and its ``assessment.created`` audit entry.

        Args:
            assessment: The computed Assessment.
            actor: Who triggered the computation.

        Returns:
            The appended AuditEntry.

        Raises:
            ConcurrencyConflictError: If the audit sequence was taken concurrently.
            PersistenceError: If the write failed; nothing was stored.
        """
        ...

    async def get_assessment(self, assessment_id: uuid.UUID) -> Assessment:
        """Retrieve an Assessment.

        Raises:
            NotFoundError: If no Assessment has the given id.
        """
        ...

    async def find_latest_assessment(self, scope: str, domain: str) -> Assessment | None:
        """Return the most recently created Assessment of a scope and domain, if any."""
        ...

    async def list_statuses(self, assessment_id: uuid.UUID) -> list[RequirementStatus]:
        """Return the ledger rows of an Assessment in catalog order.

        The rows are read in one consistent snapshot.
        """
        ...

    async def update_status(
        self,
        assessment_id: uuid.UUID,
        provision_id: str,
        new_state: ComplianceState,
        actor: str,
        expected_revision: int | None = None,
    ) -> StatusChange:
        """Change one ledger row and append its audit entry atomically.

        Args:
            assessment_id: Owning Assessment.
            provision_id: Provision whose row to change.
            new_state: Target state.
            actor: Who performs the change.
            expected_revision: When given, the row must still be at this revision.

        Returns:
            The StatusChange with the new row and its AuditEntry.

        Raises:
            NotFoundError: If the row does not exist.
            ConcurrencyConflictError: On a revision mismatch or a lost race for
                the audit sequence.
            PersistenceError: If the write failed; nothing was stored.
        """
        ...

    async def list_audit_entries(self, scope: str) -> list[AuditEntry]:
        """Return every AuditEntry of a scope ordered by sequence."""
        ...


class IReadAnalytics(Protocol):
    """Best-effort sink for informational read-path events."""

    async def record_read(self, event: str, **fields: Any) -> None:
        """Record one read event. May raise; callers drop failures."""
        ...
