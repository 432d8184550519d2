"""Error hierarchy for the compliance engine.

Two families of errors exist and callers are expected to treat them
differently:

- User-facing errors (``user_facing = True``) describe a problem with the
  request itself: a malformed profile, a status change for a provision that
  does not apply, an unknown identifier, a stale revision. They carry an
  actionable message and leave all state untouched.
- System-level errors describe a problem with the engine or its
  collaborators: a broken knowledge base predicate, an unavailable store,
  a tampered audit chain. They must be surfaced as failures of the system,
  never as input errors.

Every error accepts keyword context that is kept on ``context`` and is safe
to pass straight into a structured log call.
"""

from typing import Any


class ComplianceEngineError(Exception):
    """Base class for all compliance engine errors.

    Args:
        message: Human-readable description of the failure.
        **context: Structured context (identifiers, field names) describing it.
    """

    user_facing: bool = False

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context: dict[str, Any] = context

    def __str__(self) -> str:
        return self.message


# ---------------------------------------------------------------------------
# User-facing errors
# ---------------------------------------------------------------------------


class ValidationError(ComplianceEngineError):
    """A Profile or request payload is malformed or missing required fields.

    Raised before any computation starts; no partial Assessment is produced.

    Args:
        message: Description of the validation failure.
        field: Dotted name of the offending field, when a single field is at fault.
        **context: Additional structured context.
    """

    user_facing = True

    def __init__(self, message: str, field: str | None = None, **context: Any) -> None:
        super().__init__(message, field=field, **context)
        self.field = field


class InvalidTransitionError(ComplianceEngineError):
    """A status change targets a provision outside the Assessment's applicable set."""

    user_facing = True


class NotFoundError(ComplianceEngineError):
    """A referenced Assessment, provision, or knowledge base version does not exist.

    Args:
        resource: Resource type name (e.g., "Assessment").
        resource_id: Identifier that could not be resolved.
    """

    user_facing = True

    def __init__(self, resource: str, resource_id: str) -> None:
        super().__init__(
            f"{resource} '{resource_id}' not found",
            resource=resource,
            resource_id=resource_id,
        )
        self.resource = resource
        self.resource_id = resource_id


class ConcurrencyConflictError(ComplianceEngineError):
    """A concurrent mutation won the race for the same ledger row or audit sequence.

    Nothing was written. The caller may re-read the row and retry.
    """

    user_facing = True


# ---------------------------------------------------------------------------
# System-level errors
# ---------------------------------------------------------------------------


class KnowledgeBaseError(ComplianceEngineError):
    """A knowledge base document is malformed or internally inconsistent."""


class ApplicabilityComputationError(ComplianceEngineError):
    """A provision predicate references an unknown field or operator.

    Fatal for the whole domain computation: the engine never returns a
    subset computed from the predicates it could understand.
    """


class PersistenceError(ComplianceEngineError):
    """A durable write or read failed. The whole mutation was rolled back."""


class AuditChainIntegrityError(ComplianceEngineError):
    """Audit chain verification found a divergent entry.

    Args:
        message: Description of the divergence.
        scope: Audit scope (organization) that failed verification.
        sequence: First sequence number that failed verification.
    """

    def __init__(self, message: str, scope: str, sequence: int) -> None:
        super().__init__(message, scope=scope, sequence=sequence)
        self.scope = scope
        self.sequence = sequence


class OverlapMappingError(ComplianceEngineError):
    """An overlap mapping references a provision unknown to the knowledge base.

    The Overlap Mapper never raises this error: it records an instance for
    every skipped mapping so callers can inspect what was left out.
    """
