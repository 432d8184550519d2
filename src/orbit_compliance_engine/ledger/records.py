"""Ledger records: Assessments, requirement statuses and audit entries.

An Assessment is immutable once created. Its RequirementStatus rows are the
only mutable state in the engine, and every mutation of a row is paired with
exactly one AuditEntry.
"""

import hashlib
import json
import uuid
from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from orbit_compliance_engine.applicability.classification import Classification
from orbit_compliance_engine.errors import ValidationError

ACTION_ASSESSMENT_CREATED = "assessment.created"
ACTION_STATUS_UPDATED = "requirement_status.updated"


class ComplianceState(StrEnum):
    """Compliance state of one provision within one Assessment."""

    NOT_ASSESSED = "not_assessed"
    COMPLIANT = "compliant"
    PARTIAL = "partial"
    NON_COMPLIANT = "non_compliant"
    NOT_APPLICABLE = "not_applicable"

    @classmethod
    def parse(cls, value: "str | ComplianceState") -> "ComplianceState":
        """Convert a caller-supplied value into a ComplianceState.

        Raises:
            ValidationError: If the value is not one of the declared states.
        """
        try:
            return cls(value)
        except ValueError as exc:
            allowed = ", ".join(state.value for state in cls)
            raise ValidationError(
                f"Unknown compliance state {value!r}; expected one of: {allowed}",
                field="state",
            ) from exc


@dataclass(frozen=True)
class Assessment:
    """One immutable applicability result for a Profile snapshot and domain.

    Attributes:
        assessment_id: Unique identifier.
        scope: Organization the Assessment belongs to; also the audit chain scope.
        domain: Domain code the Assessment covers.
        knowledge_base_version: Knowledge base version the result was computed against.
        profile: JSON snapshot of the Profile used.
        classification: Classification derived from the profile.
        applicable_provision_ids: Applicable provisions in catalog order.
        simplified_provision_ids: Applicable provisions reduced under the light regime.
        fingerprint: Digest identifying the computed result; equal fingerprints
            mean the Assessment can be reused.
        created_at: Creation time (UTC).
    """

    assessment_id: uuid.UUID
    scope: str
    domain: str
    knowledge_base_version: str
    profile: dict[str, Any]
    classification: Classification
    applicable_provision_ids: tuple[str, ...]
    simplified_provision_ids: tuple[str, ...]
    fingerprint: str
    created_at: datetime

    @property
    def is_simplified(self) -> bool:
        """Whether light-regime simplifications apply to this Assessment."""
        return bool(self.simplified_provision_ids)

    def applies(self, provision_id: str) -> bool:
        return provision_id in self.applicable_provision_ids


def assessment_fingerprint(
    scope: str,
    domain: str,
    knowledge_base_version: str,
    classification: Classification,
    applicable_provision_ids: tuple[str, ...],
    simplified_provision_ids: tuple[str, ...],
) -> str:
    """Digest of everything that makes two Assessments interchangeable.

    The classification trace (``reasons``) is left out: a profile change that
    moves no tier and no provision is not a meaningful change.
    """
    classification_doc = classification.as_document()
    classification_doc.pop("reasons")
    body = {
        "scope": scope,
        "domain": domain,
        "knowledge_base_version": knowledge_base_version,
        "classification": classification_doc,
        "applicable": list(applicable_provision_ids),
        "simplified": list(simplified_provision_ids),
    }
    canonical = json.dumps(body, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class RequirementStatus:
    """Current compliance state of one provision within one Assessment.

    Attributes:
        assessment_id: Owning Assessment.
        provision_id: Provision the row tracks.
        state: Current ComplianceState.
        revision: Incremented on every change; starts at 0.
        updated_by: Actor of the last change, None while untouched.
        updated_at: Time of the last change (UTC).
    """

    assessment_id: uuid.UUID
    provision_id: str
    state: ComplianceState
    revision: int
    updated_by: str | None
    updated_at: datetime


class AuditEntry(BaseModel):
    """Immutable, hash-chained record of one state change.

    Attributes:
        scope: Append point of the chain (organization).
        sequence: 1-based position in the scope's chain.
        previous_hash: entry_hash of the preceding entry, or the genesis sentinel.
        entry_hash: SHA-256 over previous_hash and the canonical body.
        action: Dot-notation action name.
        actor: Who performed the change.
        timestamp: ISO-8601 UTC timestamp, stored as text so it hashes identically
            after a database round trip.
        details: Action-specific JSON payload.
    """

    model_config = ConfigDict(frozen=True)

    scope: str = Field(..., min_length=1, description="Audit chain scope")
    sequence: int = Field(..., ge=1, description="1-based sequence within the scope")
    previous_hash: str = Field(..., min_length=64, max_length=64)
    entry_hash: str = Field(..., min_length=64, max_length=64)
    action: str = Field(..., description="Dot-notation action name")
    actor: str = Field(..., description="Actor that performed the change")
    timestamp: str = Field(..., description="ISO-8601 UTC timestamp")
    details: dict[str, Any] = Field(default_factory=dict)

    def body(self) -> dict[str, Any]:
        """The hashed part of the entry."""
        return {
            "scope": self.scope,
            "sequence": self.sequence,
            "action": self.action,
            "actor": self.actor,
            "timestamp": self.timestamp,
            "details": self.details,
        }


@dataclass(frozen=True)
class StatusChange:
    """Result of one committed status mutation."""

    status: RequirementStatus
    previous_state: ComplianceState
    audit_entry: AuditEntry


def assessment_created_details(assessment: Assessment) -> dict[str, Any]:
    """Audit payload of an ``assessment.created`` entry."""
    return {
        "assessment_id": str(assessment.assessment_id),
        "domain": assessment.domain,
        "knowledge_base_version": assessment.knowledge_base_version,
        "fingerprint": assessment.fingerprint,
        "applicable_provision_ids": list(assessment.applicable_provision_ids),
        "is_simplified": assessment.is_simplified,
    }


def status_updated_details(
    assessment_id: uuid.UUID,
    provision_id: str,
    previous_state: ComplianceState,
    new_state: ComplianceState,
    revision: int,
) -> dict[str, Any]:
    """Audit payload of a ``requirement_status.updated`` entry."""
    return {
        "assessment_id": str(assessment_id),
        "provision_id": provision_id,
        "from_state": previous_state.value,
        "to_state": new_state.value,
        "revision": revision,
    }
