"""Core business logic for the compliance engine.

ComplianceService is the single facade exposed to collaborators:
- compute_assessment: classify a Profile and resolve the applicable provisions
- set_status: change one ledger row with its audit entry, atomically
- get_score / get_score_breakdown / get_overall_score: ledger aggregation
- get_overlaps: cross-domain overlap report
- verify_audit_chain: recompute a scope's hash chain

The service is async-first. It accepts an injected store and knowledge base
registry through its constructor and contains no framework code. Mutations
fail closed: any store failure propagates to the caller. Read analytics are
the one best-effort path; their failures are logged and dropped.
"""

import asyncio
import uuid
import weakref
from collections.abc import Mapping, Sequence
from datetime import UTC, datetime
from typing import Any

from orbit_compliance_engine.applicability.classification import classify
from orbit_compliance_engine.applicability.predicates import MissingValuePolicy
from orbit_compliance_engine.applicability.profile import Profile
from orbit_compliance_engine.applicability.resolver import resolve_applicable
from orbit_compliance_engine.core.interfaces import IComplianceStore, IReadAnalytics
from orbit_compliance_engine.errors import (
    ApplicabilityComputationError,
    ConcurrencyConflictError,
    InvalidTransitionError,
    KnowledgeBaseError,
    ValidationError,
)
from orbit_compliance_engine.knowledge_base.catalog import DomainCatalog, KnowledgeBase
from orbit_compliance_engine.knowledge_base.registry import KnowledgeBaseRegistry
from orbit_compliance_engine.ledger.audit_chain import VerificationResult, verify
from orbit_compliance_engine.ledger.overlap import EffectiveSet, OverlapReport, find_overlaps
from orbit_compliance_engine.ledger.records import (
    Assessment,
    AuditEntry,
    ComplianceState,
    RequirementStatus,
    assessment_fingerprint,
)
from orbit_compliance_engine.ledger.scoring import (
    DEFAULT_CRITICAL_CAP,
    DomainScore,
    ScoringMode,
    compute_domain_score,
    compute_overall_score,
)
from orbit_compliance_engine.observability import get_logger
from orbit_compliance_engine.settings import Settings

logger = get_logger(__name__)

SYSTEM_ACTOR = "system"


class ComplianceService:
    """Applicability, ledger, scoring, overlap and audit operations.

    Args:
        store: Store implementing IComplianceStore.
        registry: Knowledge base registry; its active version is used for new
            Assessments.
        critical_cap: Score cap while a critical provision is non_compliant.
        scoring_mode: Count or weighted scoring.
        missing_value_policy: Treatment of absent numeric values in thresholds.
        mutation_retry_attempts: Attempts for a status change that lost a race
            for the audit sequence.
        read_analytics: Optional best-effort read analytics sink.
    """

    def __init__(
        self,
        store: IComplianceStore,
        registry: KnowledgeBaseRegistry,
        critical_cap: int = DEFAULT_CRITICAL_CAP,
        scoring_mode: ScoringMode = ScoringMode.COUNT,
        missing_value_policy: MissingValuePolicy = MissingValuePolicy.NOT_MATCHED,
        mutation_retry_attempts: int = 3,
        read_analytics: IReadAnalytics | None = None,
    ) -> None:
        if not 0 <= critical_cap <= 100:
            raise ValueError(f"critical_cap must be within [0, 100], got {critical_cap}")
        self._store = store
        self._registry = registry
        self._critical_cap = critical_cap
        self._scoring_mode = scoring_mode
        self._missing_value_policy = missing_value_policy
        self._retry_attempts = max(1, mutation_retry_attempts)
        self._read_analytics = read_analytics
        # Entries live only while a coroutine holds or awaits the lock
        self._compute_locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        store: IComplianceStore,
        registry: KnowledgeBaseRegistry,
        read_analytics: IReadAnalytics | None = None,
    ) -> "ComplianceService":
        """Build a service configured from Settings."""
        return cls(
            store=store,
            registry=registry,
            critical_cap=settings.critical_cap,
            scoring_mode=settings.scoring_mode,
            missing_value_policy=settings.missing_value_policy,
            mutation_retry_attempts=settings.mutation_retry_attempts,
            read_analytics=read_analytics,
        )

    @property
    def knowledge_base(self) -> KnowledgeBase:
        """The active knowledge base version."""
        return self._registry.active

    # ------------------------------------------------------------------
    # Assessments
    # ------------------------------------------------------------------

    async def compute_assessment(
        self,
        profile: Profile | Mapping[str, Any],
        domain: str,
        *,
        scope: str,
        actor: str = SYSTEM_ACTOR,
    ) -> Assessment:
        """Classify a profile and resolve the applicable provisions of a domain.

        A recomputation that yields the same classification and applicable
        set as the latest Assessment of the scope and domain (under the same
        knowledge base version) returns that Assessment unchanged. Otherwise
        a new Assessment is stored with one not_assessed row per applicable
        provision and an ``assessment.created`` audit entry.

        Args:
            profile: Validated Profile or raw payload.
            domain: Domain code, e.g. "eu_space_act" or "nis2".
            scope: Organization the Assessment belongs to.
            actor: Who triggered the computation.

        Returns:
            The new or reused Assessment.

        Raises:
            ValidationError: If the profile, domain or scope is invalid.
            ApplicabilityComputationError: If a predicate of the domain is malformed.
            PersistenceError: If the new Assessment could not be stored.
        """
        if not scope:
            raise ValidationError("scope must not be empty", field="scope")
        if not isinstance(profile, Profile):
            profile = Profile.from_payload(profile)

        knowledge_base = self._registry.active
        catalog = knowledge_base.catalog(domain)
        if catalog is None:
            raise ValidationError(
                f"Unknown domain '{domain}'. Supported: {sorted(knowledge_base.supported_domains())}",
                field="domain",
            )

        classification = classify(profile, knowledge_base.classification_rules)
        try:
            applicability = resolve_applicable(
                profile, classification, catalog, self._missing_value_policy
            )
        except ApplicabilityComputationError as exc:
            logger.error(
                "Applicability computation aborted",
                domain=domain,
                knowledge_base_version=knowledge_base.version,
                provision_id=exc.context.get("provision_id"),
                error=str(exc),
            )
            raise

        fingerprint = assessment_fingerprint(
            scope,
            domain,
            knowledge_base.version,
            classification,
            applicability.provision_ids,
            applicability.simplified_provision_ids,
        )

        async with self._compute_lock(scope):
            latest = await self._store.find_latest_assessment(scope, domain)
            if (
                latest is not None
                and latest.knowledge_base_version == knowledge_base.version
                and latest.fingerprint == fingerprint
            ):
                logger.info(
                    "Assessment reused",
                    assessment_id=str(latest.assessment_id),
                    scope=scope,
                    domain=domain,
                )
                return latest

            assessment = Assessment(
                assessment_id=uuid.uuid4(),
                scope=scope,
                domain=domain,
                knowledge_base_version=knowledge_base.version,
                profile=profile.snapshot(),
                classification=classification,
                applicable_provision_ids=applicability.provision_ids,
                simplified_provision_ids=applicability.simplified_provision_ids,
                fingerprint=fingerprint,
                created_at=datetime.now(UTC),
            )
            await self._store.create_assessment(assessment, actor)

        logger.info(
            "Assessment created",
            assessment_id=str(assessment.assessment_id),
            scope=scope,
            domain=domain,
            knowledge_base_version=knowledge_base.version,
            size_tier=classification.size_tier,
            applicable_count=len(assessment.applicable_provision_ids),
            is_simplified=assessment.is_simplified,
            superseded=str(latest.assessment_id) if latest is not None else None,
        )
        return assessment

    async def get_assessment(self, assessment_id: uuid.UUID) -> Assessment:
        """Retrieve an Assessment.

        Raises:
            NotFoundError: If it does not exist.
        """
        return await self._store.get_assessment(assessment_id)

    async def list_statuses(self, assessment_id: uuid.UUID) -> list[RequirementStatus]:
        """Return the ledger rows of an Assessment in catalog order."""
        return await self._store.list_statuses(assessment_id)

    # ------------------------------------------------------------------
    # Status ledger
    # ------------------------------------------------------------------

    async def set_status(
        self,
        assessment_id: uuid.UUID,
        provision_id: str,
        state: ComplianceState | str,
        actor: str,
        *,
        expected_revision: int | None = None,
    ) -> AuditEntry:
        """Change the compliance state of one provision.

        Any state may move to any other state. The row change and its audit
        entry are committed together.

        Args:
            assessment_id: Owning Assessment.
            provision_id: Provision to update; must be in the applicable set.
            state: Target state.
            actor: Who performs the change.
            expected_revision: Optimistic concurrency guard. When given, the
                change is applied only if the row is still at this revision.

        Returns:
            The AuditEntry recording the change.

        Raises:
            ValidationError: If the state or actor is invalid.
            NotFoundError: If the Assessment does not exist.
            InvalidTransitionError: If the provision is not applicable.
            ConcurrencyConflictError: If expected_revision is stale, or the
                audit sequence race was lost on every attempt.
            PersistenceError: If the write failed; nothing was changed.
        """
        new_state = ComplianceState.parse(state)
        if not actor:
            raise ValidationError("actor must not be empty", field="actor")

        assessment = await self._store.get_assessment(assessment_id)
        if not assessment.applies(provision_id):
            raise InvalidTransitionError(
                f"Provision {provision_id} is not applicable in assessment {assessment_id}",
                assessment_id=str(assessment_id),
                provision_id=provision_id,
                domain=assessment.domain,
            )

        attempts = 1 if expected_revision is not None else self._retry_attempts
        for attempt in range(1, attempts + 1):
            try:
                change = await self._store.update_status(
                    assessment_id,
                    provision_id,
                    new_state,
                    actor,
                    expected_revision=expected_revision,
                )
                break
            except ConcurrencyConflictError as exc:
                if attempt >= attempts:
                    raise
                logger.warning(
                    "Status change conflicted, retrying",
                    attempt=attempt,
                    max_attempts=attempts,
                    **exc.context,
                )

        logger.info(
            "Requirement status updated",
            assessment_id=str(assessment_id),
            provision_id=provision_id,
            from_state=change.previous_state.value,
            to_state=new_state.value,
            revision=change.status.revision,
            sequence=change.audit_entry.sequence,
        )
        return change.audit_entry

    # ------------------------------------------------------------------
    # Scoring
    # ------------------------------------------------------------------

    async def get_score(self, assessment_id: uuid.UUID) -> int:
        """Integer score in [0, 100] of one Assessment."""
        breakdown = await self.get_score_breakdown(assessment_id)
        return breakdown.score

    async def get_score_breakdown(self, assessment_id: uuid.UUID) -> DomainScore:
        """Full score breakdown of one Assessment.

        Raises:
            NotFoundError: If the Assessment does not exist.
            KnowledgeBaseError: If a ledger row references a provision missing
                from the Assessment's knowledge base version.
        """
        assessment = await self._store.get_assessment(assessment_id)
        statuses = await self._store.list_statuses(assessment_id)
        knowledge_base = self._registry.get(assessment.knowledge_base_version)

        rows = []
        for status in statuses:
            provision = knowledge_base.provision(assessment.domain, status.provision_id)
            if provision is None:
                raise KnowledgeBaseError(
                    f"Provision {status.provision_id} is missing from knowledge base "
                    f"{knowledge_base.version}",
                    domain=assessment.domain,
                    provision_id=status.provision_id,
                    version=knowledge_base.version,
                )
            rows.append((provision, status.state))

        breakdown = compute_domain_score(rows, self._critical_cap, self._scoring_mode)
        await self._record_read(
            "score.read",
            assessment_id=str(assessment_id),
            domain=assessment.domain,
            score=breakdown.score,
        )
        return breakdown

    async def get_overall_score(self, assessment_ids: Sequence[uuid.UUID]) -> int:
        """Arithmetic mean of the per-domain scores of several Assessments."""
        scores = [await self.get_score(assessment_id) for assessment_id in assessment_ids]
        return compute_overall_score(scores)

    # ------------------------------------------------------------------
    # Overlaps
    # ------------------------------------------------------------------

    async def get_overlaps(self, assessment_ids: Sequence[uuid.UUID]) -> OverlapReport:
        """Overlap pairs in effect between Assessments of different domains.

        A provision is in effect when it is applicable and its ledger row is
        not marked not_applicable. Ledgers are only read.

        Args:
            assessment_ids: Two or more Assessments, at most one per domain.

        Returns:
            The OverlapReport.

        Raises:
            ValidationError: If fewer than two Assessments are given or two
                share a domain.
            NotFoundError: If an Assessment does not exist.
        """
        unique_ids = list(dict.fromkeys(assessment_ids))
        if len(unique_ids) < 2:
            raise ValidationError(
                "Overlap detection needs at least two assessments", field="assessment_ids"
            )

        effective_sets: list[EffectiveSet] = []
        catalogs: dict[str, DomainCatalog | None] = {}
        for assessment_id in unique_ids:
            assessment = await self._store.get_assessment(assessment_id)
            if assessment.domain in catalogs:
                raise ValidationError(
                    f"Two assessments cover domain '{assessment.domain}'",
                    field="assessment_ids",
                    domain=assessment.domain,
                )
            statuses = await self._store.list_statuses(assessment_id)
            in_effect = frozenset(
                s.provision_id
                for s in statuses
                if s.state != ComplianceState.NOT_APPLICABLE and assessment.applies(s.provision_id)
            )
            effective_sets.append(
                EffectiveSet(
                    assessment_id=assessment_id,
                    domain=assessment.domain,
                    provision_ids=in_effect,
                )
            )
            catalogs[assessment.domain] = self._registry.get(
                assessment.knowledge_base_version
            ).catalog(assessment.domain)

        report = find_overlaps(
            effective_sets,
            self._registry.active.overlaps,
            {domain: catalog for domain, catalog in catalogs.items() if catalog is not None},
        )
        await self._record_read(
            "overlaps.read",
            assessment_count=len(unique_ids),
            matches=len(report.matches),
            skipped=len(report.skipped),
        )
        return report

    # ------------------------------------------------------------------
    # Audit chain
    # ------------------------------------------------------------------

    async def list_audit_entries(self, scope: str) -> list[AuditEntry]:
        """Every audit entry of a scope ordered by sequence."""
        return await self._store.list_audit_entries(scope)

    async def verify_audit_chain(self, scope: str, from_sequence: int = 0) -> VerificationResult:
        """Recompute a scope's audit chain.

        Args:
            scope: Chain scope.
            from_sequence: First sequence to verify; 0 or 1 starts at genesis.

        Returns:
            The VerificationResult. A divergence is reported, never corrected;
            call ``raise_for_integrity()`` to turn it into an error.

        Raises:
            ValidationError: If from_sequence is negative.
        """
        if from_sequence < 0:
            raise ValidationError("from_sequence must not be negative", field="from_sequence")

        entries = await self._store.list_audit_entries(scope)
        result = verify(scope, entries, from_sequence)
        if result.valid:
            logger.info(
                "Audit chain verified",
                scope=scope,
                from_sequence=from_sequence,
                checked_entries=result.checked_entries,
            )
        else:
            logger.error(
                "Audit chain integrity failure",
                scope=scope,
                first_invalid_sequence=result.first_invalid_sequence,
                reason=result.reason,
            )
        await self._record_read("audit.verified", scope=scope, valid=result.valid)
        return result

    # ------------------------------------------------------------------
    # Knowledge base
    # ------------------------------------------------------------------

    def upgrade_knowledge_base(self, knowledge_base: KnowledgeBase) -> None:
        """Activate a new knowledge base version for future Assessments.

        Existing Assessments keep resolving provisions from their own version.

        Raises:
            KnowledgeBaseError: If the version label is taken by different content.
        """
        self._registry.upgrade(knowledge_base)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _compute_lock(self, scope: str) -> asyncio.Lock:
        lock = self._compute_locks.get(scope)
        if lock is None:
            lock = self._compute_locks[scope] = asyncio.Lock()
        return lock

    async def _record_read(self, event: str, **fields: Any) -> None:
        if self._read_analytics is None:
            return
        try:
            await self._read_analytics.record_read(event, **fields)
        except Exception as exc:  # noqa: BLE001
            # Read analytics are informational; dropping them never affects state
            logger.warning("Read analytics event dropped", analytics_event=event, error=str(exc))
