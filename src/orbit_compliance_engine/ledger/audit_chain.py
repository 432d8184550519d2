"""Audit chain: hash computation and verification for append-only audit logs.

Each entry commits to its predecessor::

    entry_hash = sha256(previous_hash + canonical_json(body))

where ``body`` is {scope, sequence, action, actor, timestamp, details}
serialized with sorted keys and compact separators. The first entry of every
scope links to ``GENESIS_HASH``.

There is no API to correct an entry. A failed verification is reported with
the first divergent sequence number and left for an operator to investigate.
"""

import hashlib
import json
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from orbit_compliance_engine.errors import AuditChainIntegrityError
from orbit_compliance_engine.ledger.records import AuditEntry

GENESIS_HASH = "0" * 64


def canonical_json(body: dict[str, Any]) -> str:
    """Deterministic JSON serialization used for hashing."""
    return json.dumps(body, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)


def compute_entry_hash(previous_hash: str, body: dict[str, Any]) -> str:
    """Hash of an entry body chained onto its predecessor's hash.

    Args:
        previous_hash: Hash of the preceding entry, or GENESIS_HASH.
        body: The entry body (see module docstring).

    Returns:
        Hex-encoded SHA-256 digest.
    """
    digest = hashlib.sha256()
    digest.update(previous_hash.encode("ascii"))
    digest.update(canonical_json(body).encode("utf-8"))
    return digest.hexdigest()


def build_entry(
    scope: str,
    sequence: int,
    previous_hash: str,
    action: str,
    actor: str,
    details: dict[str, Any],
    timestamp: datetime | None = None,
) -> AuditEntry:
    """Create the next entry of a chain.

    Args:
        scope: Chain scope.
        sequence: Sequence number of the new entry (head sequence + 1).
        previous_hash: entry_hash of the current head, or GENESIS_HASH.
        action: Dot-notation action name.
        actor: Who performed the change.
        details: JSON-compatible payload.
        timestamp: Event time; defaults to now (UTC).

    Returns:
        The hashed AuditEntry, ready to be stored.
    """
    moment = (timestamp or datetime.now(UTC)).astimezone(UTC)
    # Round-trip through JSON so the stored payload equals the hashed one
    details = json.loads(canonical_json(details))
    body = {
        "scope": scope,
        "sequence": sequence,
        "action": action,
        "actor": actor,
        "timestamp": moment.isoformat(),
        "details": details,
    }
    return AuditEntry(
        previous_hash=previous_hash,
        entry_hash=compute_entry_hash(previous_hash, body),
        **body,
    )


@dataclass(frozen=True)
class VerificationResult:
    """Outcome of verifying a scope's audit chain.

    Attributes:
        scope: Verified chain scope.
        valid: True when every checked entry matched its recomputed hash.
        checked_entries: Entries that verified successfully before the first
            divergence (or in total, when valid).
        first_invalid_sequence: First divergent sequence number, if any.
        expected_hash: Recomputed value at the divergence.
        actual_hash: Stored value at the divergence.
        reason: Short description of the divergence.
    """

    scope: str
    valid: bool
    checked_entries: int
    first_invalid_sequence: int | None = None
    expected_hash: str | None = None
    actual_hash: str | None = None
    reason: str | None = None

    def raise_for_integrity(self) -> None:
        """Raise AuditChainIntegrityError if verification failed."""
        if self.valid:
            return
        raise AuditChainIntegrityError(
            f"Audit chain of scope {self.scope!r} diverges at sequence "
            f"{self.first_invalid_sequence}: {self.reason}",
            scope=self.scope,
            sequence=self.first_invalid_sequence or 0,
        )


def verify(scope: str, entries: Sequence[AuditEntry], from_sequence: int = 0) -> VerificationResult:
    """Recompute and check a scope's chain.

    Verification starts at the genesis entry when ``from_sequence`` is 0 or 1.
    For a later start, the stored hash of entry ``from_sequence - 1`` is the
    anchor, so earlier entries are trusted as-is.

    Args:
        scope: Chain scope the entries belong to.
        entries: All stored entries of the scope, ordered by sequence.
        from_sequence: First sequence number to verify.

    Returns:
        The VerificationResult.
    """
    start = max(from_sequence, 1)
    previous_hash = GENESIS_HASH
    if start > 1:
        anchor = next((e for e in entries if e.sequence == start - 1), None)
        if anchor is None:
            if any(e.sequence >= start for e in entries):
                return VerificationResult(
                    scope=scope,
                    valid=False,
                    checked_entries=0,
                    first_invalid_sequence=start,
                    reason=f"anchor entry {start - 1} is missing",
                )
            return VerificationResult(scope=scope, valid=True, checked_entries=0)
        previous_hash = anchor.entry_hash

    checked = 0
    expected_sequence = start
    for entry in entries:
        if entry.sequence < start:
            continue
        if entry.scope != scope:
            return _divergence(scope, checked, entry.sequence, "entry belongs to another scope")
        if entry.sequence != expected_sequence:
            return _divergence(
                scope, checked, expected_sequence, f"sequence gap: found {entry.sequence}"
            )
        if entry.previous_hash != previous_hash:
            return _divergence(
                scope,
                checked,
                entry.sequence,
                "previous hash does not link to the preceding entry",
                expected=previous_hash,
                actual=entry.previous_hash,
            )
        recomputed = compute_entry_hash(previous_hash, entry.body())
        if recomputed != entry.entry_hash:
            return _divergence(
                scope,
                checked,
                entry.sequence,
                "stored hash does not match the entry content",
                expected=recomputed,
                actual=entry.entry_hash,
            )
        previous_hash = entry.entry_hash
        expected_sequence += 1
        checked += 1

    return VerificationResult(scope=scope, valid=True, checked_entries=checked)


def _divergence(
    scope: str,
    checked: int,
    sequence: int,
    reason: str,
    expected: str | None = None,
    actual: str | None = None,
) -> VerificationResult:
    return VerificationResult(
        scope=scope,
        valid=False,
        checked_entries=checked,
        first_invalid_sequence=sequence,
        expected_hash=expected,
        actual_hash=actual,
        reason=reason,
    )
