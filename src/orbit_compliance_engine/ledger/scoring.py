"""Scoring Aggregator: turn an Assessment's ledger into an integer score.

Count mode (default)::

    assessable = total - not_applicable
    raw = round_half_up(100 * (compliant + 0.5 * partial) / assessable)   # 0 if assessable == 0
    score = min(raw, critical_cap) if any critical provision is non_compliant else raw

Weighted mode applies the same formula with every provision counted by its
knowledge base weight instead of 1.

Scores are always integers in [0, 100]. The letter grade and status label
are derived from the final (capped) score.

Every assessable row that is not compliant becomes a Recommendation. Critical rows with
nothing earned come first, then critical or mostly missing rows, and so on.
Only the first RECOMMENDATION_LIMIT are kept.
"""

import math
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from enum import StrEnum

from orbit_compliance_engine.knowledge_base.catalog import Provision
from orbit_compliance_engine.ledger.records import ComplianceState

DEFAULT_CRITICAL_CAP = 40

_GRADE_THRESHOLDS: tuple[tuple[int, str], ...] = ((90, "A"), (80, "B"), (70, "C"), (60, "D"))
RECOMMENDATION_LIMIT = 10
_PRIORITY_ORDER = {"critical": 0, "high": 1, "medium": 2, "low": 3}
_EARNED_FRACTION = {
    ComplianceState.COMPLIANT: 1.0,
    ComplianceState.PARTIAL: 0.5,
    ComplianceState.NON_COMPLIANT: 0.0,
    ComplianceState.NOT_ASSESSED: 0.0,
}


class ScoringMode(StrEnum):
    """How provisions are counted towards a domain score."""

    COUNT = "count"
    WEIGHTED = "weighted"


@dataclass(frozen=True)
class Recommendation:
    """One open action on the way to full compliance.

    Attributes:
        priority: critical | high | medium | low.
        provision_id: Provision the action addresses.
        article_ref: Legal reference of the provision.
        action: Short imperative description.
        state: Current ComplianceState value of the row.
        missing_points: Score weight still to be earned on this provision.
        implementation_weeks: Indicative effort from the knowledge base, if known.
    """

    priority: str
    provision_id: str
    article_ref: str
    action: str
    state: str
    missing_points: float
    implementation_weeks: float | None = None


@dataclass(frozen=True)
class DomainScore:
    """Score breakdown of one Assessment.

    Attributes:
        score: Final score in [0, 100] after the critical cap.
        raw_score: Score before the critical cap.
        capped: Whether the critical cap lowered the score.
        total: Number of ledger rows.
        assessable: Rows not marked not_applicable.
        counts: Number of rows per ComplianceState value.
        critical_failures: Critical provisions currently non_compliant.
        grade: Letter grade A-F.
        status: compliant | mostly_compliant | partial | non_compliant | not_assessed.
        recommendations: Open actions ordered by priority, at most
            RECOMMENDATION_LIMIT of them.
    """

    score: int
    raw_score: int
    capped: bool
    total: int
    assessable: int
    counts: dict[str, int]
    critical_failures: tuple[str, ...]
    grade: str
    status: str
    recommendations: tuple[Recommendation, ...] = ()


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from zero for non-negative input."""
    return int(math.floor(value + 0.5))


def compute_domain_score(
    rows: Iterable[tuple[Provision, ComplianceState]],
    critical_cap: int = DEFAULT_CRITICAL_CAP,
    mode: ScoringMode = ScoringMode.COUNT,
) -> DomainScore:
    """Score one Assessment.

    Args:
        rows: (Provision, current state) for every ledger row of the Assessment.
        critical_cap: Upper bound when a critical provision is non_compliant.
        mode: Count or weighted aggregation.

    Returns:
        The DomainScore.

    Raises:
        ValueError: If critical_cap is outside [0, 100].
    """
    if not 0 <= critical_cap <= 100:
        raise ValueError(f"critical_cap must be within [0, 100], got {critical_cap}")

    counts = {state.value: 0 for state in ComplianceState}
    assessable_weight = 0.0
    earned_weight = 0.0
    critical_failures: list[str] = []
    open_rows: list[tuple[Provision, ComplianceState, float]] = []

    for provision, state in rows:
        counts[state.value] += 1
        if state == ComplianceState.NOT_APPLICABLE:
            continue
        weight = provision.weight if mode == ScoringMode.WEIGHTED else 1.0
        assessable_weight += weight
        if state == ComplianceState.COMPLIANT:
            earned_weight += weight
            continue
        open_rows.append((provision, state, weight))
        if state == ComplianceState.PARTIAL:
            earned_weight += 0.5 * weight
        elif state == ComplianceState.NON_COMPLIANT and provision.critical:
            critical_failures.append(provision.provision_id)

    raw = round_half_up(100 * earned_weight / assessable_weight) if assessable_weight > 0 else 0
    raw = max(0, min(raw, 100))
    score = min(raw, critical_cap) if critical_failures else raw

    total = sum(counts.values())
    assessed = (
        counts[ComplianceState.COMPLIANT.value]
        + counts[ComplianceState.PARTIAL.value]
        + counts[ComplianceState.NON_COMPLIANT.value]
    )
    return DomainScore(
        score=score,
        raw_score=raw,
        capped=score < raw,
        total=total,
        assessable=total - counts[ComplianceState.NOT_APPLICABLE.value],
        counts=counts,
        critical_failures=tuple(critical_failures),
        grade=grade_for(score),
        status=status_for(score, assessed=assessed, has_critical_failure=bool(critical_failures)),
        recommendations=_recommendations(open_rows, assessable_weight),
    )


def compute_overall_score(scores: Sequence[int]) -> int:
    """Arithmetic mean of per-domain scores, rounded half-up. No domains scores 0."""
    if not scores:
        return 0
    return round_half_up(sum(scores) / len(scores))


def grade_for(score: int) -> str:
    for threshold, grade in _GRADE_THRESHOLDS:
        if score >= threshold:
            return grade
    return "F"


def status_for(score: int, assessed: int, has_critical_failure: bool) -> str:
    """Status label of a domain score."""
    if has_critical_failure:
        return "non_compliant"
    if assessed == 0:
        return "not_assessed"
    if score >= 80:
        return "compliant"
    if score >= 60:
        return "mostly_compliant"
    if score > 0:
        return "partial"
    return "non_compliant"


def priority_for(critical: bool, earned_fraction: float) -> str:
    """Priority of an open provision from its criticality and earned share."""
    missing = 1.0 - earned_fraction
    if critical and earned_fraction == 0:
        return "critical"
    if critical or missing > 0.5:
        return "high"
    if missing > 0.25:
        return "medium"
    return "low"


def _recommendations(
    open_rows: Sequence[tuple[Provision, ComplianceState, float]],
    assessable_weight: float,
) -> tuple[Recommendation, ...]:
    recommendations = []
    scale = 100 / assessable_weight if assessable_weight > 0 else 0.0
    for provision, state, weight in open_rows:
        earned = _EARNED_FRACTION[state]
        recommendations.append(
            Recommendation(
                priority=priority_for(provision.critical, earned),
                provision_id=provision.provision_id,
                article_ref=provision.article_ref,
                action=f"Complete {provision.title}",
                state=state.value,
                missing_points=round(scale * weight * (1.0 - earned), 1),
                implementation_weeks=provision.implementation_weeks,
            )
        )
    # Stable sort keeps catalog order within a priority
    recommendations.sort(key=lambda r: _PRIORITY_ORDER[r.priority])
    return tuple(recommendations[:RECOMMENDATION_LIMIT])
