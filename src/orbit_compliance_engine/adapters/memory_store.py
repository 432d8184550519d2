"""In-memory implementation of IComplianceStore.

Suitable for tests and single-process embedding. Mutations are staged and
then committed together under a per-scope asyncio.Lock, so a status change
and its audit entry become visible at the same time or not at all.
"""

import asyncio
import uuid
import weakref
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from orbit_compliance_engine.errors import ConcurrencyConflictError, NotFoundError, PersistenceError
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


class InMemoryComplianceStore:
    """Dict-backed compliance store with append-only audit chains."""

    def __init__(self) -> None:
        self._assessments: dict[uuid.UUID, Assessment] = {}
        # { assessment_id: { provision_id: RequirementStatus } } in catalog order
        self._statuses: dict[uuid.UUID, dict[str, RequirementStatus]] = {}
        self._chains: dict[str, list[AuditEntry]] = {}
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    def _lock(self, scope: str) -> asyncio.Lock:
        lock = self._locks.get(scope)
        if lock is None:
            lock = self._locks[scope] = asyncio.Lock()
        return lock

    def _next_entry(self, scope: str, action: str, actor: str, details: dict[str, Any]) -> AuditEntry:
        chain = self._chains.get(scope, [])
        head = chain[-1] if chain else None
        return build_entry(
            scope=scope,
            sequence=head.sequence + 1 if head else 1,
            previous_hash=head.entry_hash if head else GENESIS_HASH,
            action=action,
            actor=actor,
            details=details,
        )

    def _append_entry(self, entry: AuditEntry) -> None:
        chain = self._chains.setdefault(entry.scope, [])
        expected = chain[-1].sequence + 1 if chain else 1
        if entry.sequence != expected:
            raise ConcurrencyConflictError(
                f"Audit sequence {entry.sequence} of scope {entry.scope!r} is already taken",
                scope=entry.scope,
                sequence=entry.sequence,
            )
        chain.append(entry)

    def _commit(self, entry: AuditEntry, apply: Callable[[], None]) -> None:
        # The audit append is the only step that can fail; staged rows are
        # applied after it succeeds
        try:
            self._append_entry(entry)
        except ConcurrencyConflictError:
            raise
        except Exception as exc:
            raise PersistenceError(
                "Audit entry could not be stored; mutation rolled back",
                scope=entry.scope,
                action=entry.action,
            ) from exc
        apply()

    async def create_assessment(self, assessment: Assessment, actor: str) -> AuditEntry:
        async with self._lock(assessment.scope):
            now = datetime.now(UTC)
            rows = {
                provision_id: RequirementStatus(
                    assessment_id=assessment.assessment_id,
                    provision_id=provision_id,
                    state=ComplianceState.NOT_ASSESSED,
                    revision=0,
                    updated_by=None,
                    updated_at=now,
                )
                for provision_id in assessment.applicable_provision_ids
            }
            entry = self._next_entry(
                assessment.scope,
                ACTION_ASSESSMENT_CREATED,
                actor,
                assessment_created_details(assessment),
            )

            def apply() -> None:
                self._assessments[assessment.assessment_id] = assessment
                self._statuses[assessment.assessment_id] = rows

            self._commit(entry, apply)

        logger.info(
            "Assessment stored",
            assessment_id=str(assessment.assessment_id),
            scope=assessment.scope,
            domain=assessment.domain,
            sequence=entry.sequence,
        )
        return entry

    async def get_assessment(self, assessment_id: uuid.UUID) -> Assessment:
        assessment = self._assessments.get(assessment_id)
        if assessment is None:
            raise NotFoundError(resource="Assessment", resource_id=str(assessment_id))
        return assessment

    async def find_latest_assessment(self, scope: str, domain: str) -> Assessment | None:
        candidates = [
            a for a in self._assessments.values() if a.scope == scope and a.domain == domain
        ]
        return candidates[-1] if candidates else None

    async def list_statuses(self, assessment_id: uuid.UUID) -> list[RequirementStatus]:
        rows = self._statuses.get(assessment_id)
        if rows is None:
            raise NotFoundError(resource="Assessment", resource_id=str(assessment_id))
        return list(rows.values())

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
            rows = self._statuses[assessment_id]
            current = rows.get(provision_id)
            if current is None:
                raise NotFoundError(
                    resource="RequirementStatus", resource_id=f"{assessment_id}/{provision_id}"
                )
            if expected_revision is not None and current.revision != expected_revision:
                raise ConcurrencyConflictError(
                    f"Requirement status {provision_id} is at revision {current.revision}, "
                    f"expected {expected_revision}",
                    assessment_id=str(assessment_id),
                    provision_id=provision_id,
                    current_revision=current.revision,
                    expected_revision=expected_revision,
                )

            updated = RequirementStatus(
                assessment_id=assessment_id,
                provision_id=provision_id,
                state=new_state,
                revision=current.revision + 1,
                updated_by=actor,
                updated_at=datetime.now(UTC),
            )
            entry = self._next_entry(
                assessment.scope,
                ACTION_STATUS_UPDATED,
                actor,
                status_updated_details(
                    assessment_id, provision_id, current.state, new_state, updated.revision
                ),
            )

            def apply() -> None:
                rows[provision_id] = updated

            self._commit(entry, apply)

        return StatusChange(status=updated, previous_state=current.state, audit_entry=entry)

    async def list_audit_entries(self, scope: str) -> list[AuditEntry]:
        return list(self._chains.get(scope, []))
