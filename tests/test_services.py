"""Tests for ComplianceService over the in-memory store.

Covers the end-to-end behavior of the engine: Assessment computation and
reuse, ledger coverage, status changes with their audit entries, scoring,
overlap reports, audit chain verification, knowledge base upgrades, and the
split between fail-closed mutations and best-effort read analytics.
"""

import asyncio
import gc
import uuid
from typing import Any
from unittest.mock import AsyncMock

import pytest

from orbit_compliance_engine.adapters.memory_store import InMemoryComplianceStore
from orbit_compliance_engine.adapters.read_analytics import InMemoryReadAnalytics
from orbit_compliance_engine.applicability.profile import Profile
from orbit_compliance_engine.core.services import ComplianceService
from orbit_compliance_engine.errors import (
    ApplicabilityComputationError,
    ConcurrencyConflictError,
    InvalidTransitionError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from orbit_compliance_engine.knowledge_base.builtin import BUILTIN_VERSION, DOMAIN_EU_SPACE_ACT, DOMAIN_NIS2
from orbit_compliance_engine.knowledge_base.catalog import (
    ApplicabilityPredicate,
    Condition,
    DomainCatalog,
    KnowledgeBase,
    Provision,
)
from orbit_compliance_engine.knowledge_base.registry import KnowledgeBaseRegistry
from orbit_compliance_engine.ledger.records import ComplianceState
from orbit_compliance_engine.settings import Settings

ACTOR = "compliance.officer@orbital.eu"


# ---------------------------------------------------------------------------
# Assessments
# ---------------------------------------------------------------------------


class TestComputeAssessment:
    """Tests for ComplianceService.compute_assessment."""

    @pytest.mark.asyncio()
    async def test_light_regime_operator_gets_smaller_simplified_set(
        self,
        service: ComplianceService,
        scope: str,
        micro_satcom_payload: dict[str, Any],
        medium_operator_payload: dict[str, Any],
    ) -> None:
        """A micro satcom operator is light-regime eligible with a reduced applicable set."""
        light = await service.compute_assessment(micro_satcom_payload, DOMAIN_EU_SPACE_ACT, scope=scope)
        standard = await service.compute_assessment(
            medium_operator_payload, DOMAIN_EU_SPACE_ACT, scope="org-standard"
        )

        assert light.classification.light_regime_eligible is True
        assert light.is_simplified is True
        assert set(light.applicable_provision_ids) < set(standard.applicable_provision_ids)
        assert standard.is_simplified is False

    @pytest.mark.asyncio()
    async def test_ledger_covers_exactly_the_applicable_set(
        self,
        service: ComplianceService,
        scope: str,
        micro_satcom_payload: dict[str, Any],
    ) -> None:
        """Every applicable provision has one not_assessed row, and nothing else does."""
        for domain in (DOMAIN_EU_SPACE_ACT, DOMAIN_NIS2):
            assessment = await service.compute_assessment(micro_satcom_payload, domain, scope=scope)
            statuses = await service.list_statuses(assessment.assessment_id)

            assert [s.provision_id for s in statuses] == list(assessment.applicable_provision_ids)
            assert {s.state for s in statuses} == {ComplianceState.NOT_ASSESSED}
            assert all(s.revision == 0 for s in statuses)

    @pytest.mark.asyncio()
    async def test_assessment_creation_is_audited(
        self,
        service: ComplianceService,
        scope: str,
        micro_satcom_payload: dict[str, Any],
    ) -> None:
        assessment = await service.compute_assessment(
            micro_satcom_payload, DOMAIN_NIS2, scope=scope, actor=ACTOR
        )

        entries = await service.list_audit_entries(scope)
        assert len(entries) == 1
        assert entries[0].action == "assessment.created"
        assert entries[0].actor == ACTOR
        assert entries[0].details["assessment_id"] == str(assessment.assessment_id)
        assert entries[0].details["applicable_provision_ids"] == list(assessment.applicable_provision_ids)

    @pytest.mark.asyncio()
    async def test_recomputation_is_deterministic_and_reused(
        self,
        service: ComplianceService,
        scope: str,
        micro_satcom_payload: dict[str, Any],
    ) -> None:
        """Same profile and version yield the same Assessment; no new ledger or audit entry."""
        first = await service.compute_assessment(micro_satcom_payload, DOMAIN_NIS2, scope=scope)
        second = await service.compute_assessment(micro_satcom_payload, DOMAIN_NIS2, scope=scope)

        assert second.assessment_id == first.assessment_id
        assert second.applicable_provision_ids == first.applicable_provision_ids
        assert len(await service.list_audit_entries(scope)) == 1

    @pytest.mark.asyncio()
    async def test_scope_locks_are_released_after_use(
        self,
        service: ComplianceService,
        memory_store: InMemoryComplianceStore,
        micro_satcom_payload: dict[str, Any],
    ) -> None:
        """Per-scope locks do not accumulate across many tenants."""
        for index in range(25):
            await service.compute_assessment(micro_satcom_payload, DOMAIN_NIS2, scope=f"org-{index:03d}")
        gc.collect()

        assert len(service._compute_locks) == 0
        assert len(memory_store._locks) == 0

    @pytest.mark.asyncio()
    async def test_profile_change_without_effect_reuses_assessment(
        self,
        service: ComplianceService,
        scope: str,
        micro_satcom_payload: dict[str, Any],
    ) -> None:
        first = await service.compute_assessment(micro_satcom_payload, DOMAIN_NIS2, scope=scope)
        second = await service.compute_assessment(
            {**micro_satcom_payload, "staff_count": 9}, DOMAIN_NIS2, scope=scope
        )
        assert second.assessment_id == first.assessment_id

    @pytest.mark.asyncio()
    async def test_profile_change_with_effect_creates_new_assessment(
        self,
        service: ComplianceService,
        scope: str,
        micro_satcom_payload: dict[str, Any],
    ) -> None:
        first = await service.compute_assessment(micro_satcom_payload, DOMAIN_EU_SPACE_ACT, scope=scope)
        second = await service.compute_assessment(
            {**micro_satcom_payload, "staff_count": 120}, DOMAIN_EU_SPACE_ACT, scope=scope
        )

        assert second.assessment_id != first.assessment_id
        assert "eusa-art-85" in second.applicable_provision_ids
        # The earlier Assessment and its ledger are left intact
        assert len(await service.list_statuses(first.assessment_id)) == len(first.applicable_provision_ids)
        assert len(await service.list_audit_entries(scope)) == 2

    @pytest.mark.asyncio()
    async def test_accepts_validated_profile_instance(
        self,
        service: ComplianceService,
        scope: str,
        micro_satcom_payload: dict[str, Any],
    ) -> None:
        assessment = await service.compute_assessment(
            Profile.from_payload(micro_satcom_payload), DOMAIN_NIS2, scope=scope
        )
        assert assessment.profile["staff_count"] == 8

    @pytest.mark.asyncio()
    async def test_unknown_domain_rejected(
        self,
        service: ComplianceService,
        scope: str,
        micro_satcom_payload: dict[str, Any],
    ) -> None:
        with pytest.raises(ValidationError) as exc_info:
            await service.compute_assessment(micro_satcom_payload, "gdpr", scope=scope)
        assert exc_info.value.field == "domain"

    @pytest.mark.asyncio()
    async def test_empty_scope_rejected(
        self, service: ComplianceService, micro_satcom_payload: dict[str, Any]
    ) -> None:
        with pytest.raises(ValidationError):
            await service.compute_assessment(micro_satcom_payload, DOMAIN_NIS2, scope="")

    @pytest.mark.asyncio()
    async def test_invalid_profile_creates_nothing(
        self,
        service: ComplianceService,
        memory_store: InMemoryComplianceStore,
        scope: str,
    ) -> None:
        with pytest.raises(ValidationError):
            await service.compute_assessment({"operator_type": "spacecraft_operator"}, DOMAIN_NIS2, scope=scope)
        assert await memory_store.find_latest_assessment(scope, DOMAIN_NIS2) is None
        assert await service.list_audit_entries(scope) == []

    @pytest.mark.asyncio()
    async def test_malformed_predicate_aborts_domain(
        self,
        memory_store: InMemoryComplianceStore,
        scope: str,
        micro_satcom_payload: dict[str, Any],
        make_provision: Any,
    ) -> None:
        """A broken knowledge base predicate fails the domain and stores nothing."""
        broken = KnowledgeBase.build(
            version="broken-1",
            catalogs=[
                DomainCatalog(
                    domain="test",
                    name="Test",
                    provisions=(
                        make_provision("p-1"),
                        make_provision(
                            "p-2",
                            ApplicabilityPredicate(
                                include=(Condition(field="profile.orbit_colour", op="eq", value="red"),)
                            ),
                        ),
                    ),
                )
            ],
        )
        service = ComplianceService(store=memory_store, registry=KnowledgeBaseRegistry(broken))

        with pytest.raises(ApplicabilityComputationError):
            await service.compute_assessment(micro_satcom_payload, "test", scope=scope)
        assert await service.list_audit_entries(scope) == []

    @pytest.mark.asyncio()
    async def test_unknown_assessment_not_found(self, service: ComplianceService) -> None:
        with pytest.raises(NotFoundError):
            await service.get_assessment(uuid.uuid4())


# ---------------------------------------------------------------------------
# Status ledger
# ---------------------------------------------------------------------------


class TestSetStatus:
    """Tests for ComplianceService.set_status."""

    @pytest.mark.asyncio()
    async def test_status_change_is_recorded_with_audit_entry(
        self,
        service: ComplianceService,
        scope: str,
        micro_satcom_payload: dict[str, Any],
    ) -> None:
        assessment = await service.compute_assessment(micro_satcom_payload, DOMAIN_NIS2, scope=scope)

        entry = await service.set_status(assessment.assessment_id, "nis2-001", "compliant", ACTOR)

        assert entry.sequence == 2
        assert entry.action == "requirement_status.updated"
        assert entry.details == {
            "assessment_id": str(assessment.assessment_id),
            "provision_id": "nis2-001",
            "from_state": "not_assessed",
            "to_state": "compliant",
            "revision": 1,
        }
        statuses = {s.provision_id: s for s in await service.list_statuses(assessment.assessment_id)}
        assert statuses["nis2-001"].state is ComplianceState.COMPLIANT
        assert statuses["nis2-001"].revision == 1
        assert statuses["nis2-001"].updated_by == ACTOR

    @pytest.mark.asyncio()
    async def test_any_state_may_follow_any_state(
        self,
        service: ComplianceService,
        scope: str,
        micro_satcom_payload: dict[str, Any],
    ) -> None:
        assessment = await service.compute_assessment(micro_satcom_payload, DOMAIN_NIS2, scope=scope)
        for state in ("not_applicable", "partial", "not_assessed", "non_compliant", "compliant"):
            await service.set_status(assessment.assessment_id, "nis2-002", state, ACTOR)

        statuses = {s.provision_id: s for s in await service.list_statuses(assessment.assessment_id)}
        assert statuses["nis2-002"].state is ComplianceState.COMPLIANT
        assert statuses["nis2-002"].revision == 5

    @pytest.mark.asyncio()
    async def test_non_applicable_provision_rejected(
        self,
        service: ComplianceService,
        scope: str,
        micro_satcom_payload: dict[str, Any],
    ) -> None:
        """nis2-038 binds essential entities only; the ledger is left untouched."""
        assessment = await service.compute_assessment(micro_satcom_payload, DOMAIN_NIS2, scope=scope)
        before = await service.list_statuses(assessment.assessment_id)

        with pytest.raises(InvalidTransitionError) as exc_info:
            await service.set_status(assessment.assessment_id, "nis2-038", "compliant", ACTOR)

        assert exc_info.value.user_facing is True
        assert await service.list_statuses(assessment.assessment_id) == before
        assert len(await service.list_audit_entries(scope)) == 1

    @pytest.mark.asyncio()
    async def test_unknown_state_rejected(
        self,
        service: ComplianceService,
        scope: str,
        micro_satcom_payload: dict[str, Any],
    ) -> None:
        assessment = await service.compute_assessment(micro_satcom_payload, DOMAIN_NIS2, scope=scope)
        with pytest.raises(ValidationError) as exc_info:
            await service.set_status(assessment.assessment_id, "nis2-001", "Compliant", ACTOR)
        assert exc_info.value.field == "state"

    @pytest.mark.asyncio()
    async def test_empty_actor_rejected(
        self,
        service: ComplianceService,
        scope: str,
        micro_satcom_payload: dict[str, Any],
    ) -> None:
        assessment = await service.compute_assessment(micro_satcom_payload, DOMAIN_NIS2, scope=scope)
        with pytest.raises(ValidationError):
            await service.set_status(assessment.assessment_id, "nis2-001", "compliant", "")

    @pytest.mark.asyncio()
    async def test_unknown_assessment_rejected(self, service: ComplianceService) -> None:
        with pytest.raises(NotFoundError):
            await service.set_status(uuid.uuid4(), "nis2-001", "compliant", ACTOR)

    @pytest.mark.asyncio()
    async def test_stale_revision_rejected(
        self,
        service: ComplianceService,
        scope: str,
        micro_satcom_payload: dict[str, Any],
    ) -> None:
        assessment = await service.compute_assessment(micro_satcom_payload, DOMAIN_NIS2, scope=scope)
        await service.set_status(assessment.assessment_id, "nis2-001", "partial", ACTOR, expected_revision=0)

        with pytest.raises(ConcurrencyConflictError):
            await service.set_status(
                assessment.assessment_id, "nis2-001", "compliant", ACTOR, expected_revision=0
            )

    @pytest.mark.asyncio()
    async def test_concurrent_updates_of_one_row_apply_exactly_once(
        self,
        service: ComplianceService,
        scope: str,
        micro_satcom_payload: dict[str, Any],
    ) -> None:
        """Two racing changes from the same revision: one wins, one conflicts, one audit entry."""
        assessment = await service.compute_assessment(micro_satcom_payload, DOMAIN_NIS2, scope=scope)
        entries_before = len(await service.list_audit_entries(scope))

        results = await asyncio.gather(
            service.set_status(assessment.assessment_id, "nis2-006", "compliant", "alice", expected_revision=0),
            service.set_status(assessment.assessment_id, "nis2-006", "non_compliant", "bob", expected_revision=0),
            return_exceptions=True,
        )

        conflicts = [r for r in results if isinstance(r, ConcurrencyConflictError)]
        assert len(conflicts) == 1
        entries = await service.list_audit_entries(scope)
        assert len(entries) == entries_before + 1
        winner = entries[-1]
        status = {s.provision_id: s for s in await service.list_statuses(assessment.assessment_id)}["nis2-006"]
        assert status.state.value == winner.details["to_state"]
        assert status.revision == 1
        assert (await service.verify_audit_chain(scope)).valid is True

    @pytest.mark.asyncio()
    async def test_concurrent_updates_without_revision_are_serialized(
        self,
        service: ComplianceService,
        scope: str,
        micro_satcom_payload: dict[str, Any],
    ) -> None:
        assessment = await service.compute_assessment(micro_satcom_payload, DOMAIN_NIS2, scope=scope)

        await asyncio.gather(
            *(
                service.set_status(assessment.assessment_id, pid, "compliant", ACTOR)
                for pid in assessment.applicable_provision_ids
            )
        )

        entries = await service.list_audit_entries(scope)
        assert [e.sequence for e in entries] == list(range(1, len(assessment.applicable_provision_ids) + 2))
        assert (await service.verify_audit_chain(scope)).valid is True
        assert await service.get_score(assessment.assessment_id) == 100

    @pytest.mark.asyncio()
    async def test_failed_audit_append_rolls_back_status(
        self,
        service: ComplianceService,
        memory_store: InMemoryComplianceStore,
        scope: str,
        micro_satcom_payload: dict[str, Any],
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        """When the audit entry cannot be stored, the status change is not applied either."""
        assessment = await service.compute_assessment(micro_satcom_payload, DOMAIN_NIS2, scope=scope)

        def failing_append(entry: Any) -> None:
            raise OSError("audit volume unavailable")

        monkeypatch.setattr(memory_store, "_append_entry", failing_append)

        with pytest.raises(PersistenceError) as exc_info:
            await service.set_status(assessment.assessment_id, "nis2-001", "compliant", ACTOR)

        assert exc_info.value.user_facing is False
        monkeypatch.undo()
        statuses = {s.provision_id: s for s in await service.list_statuses(assessment.assessment_id)}
        assert statuses["nis2-001"].state is ComplianceState.NOT_ASSESSED
        assert statuses["nis2-001"].revision == 0
        assert len(await service.list_audit_entries(scope)) == 1

    @pytest.mark.asyncio()
    async def test_lost_sequence_race_is_retried(
        self,
        service: ComplianceService,
        memory_store: InMemoryComplianceStore,
        scope: str,
        micro_satcom_payload: dict[str, Any],
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        assessment = await service.compute_assessment(micro_satcom_payload, DOMAIN_NIS2, scope=scope)
        original = memory_store.update_status
        calls: list[str] = []

        async def flaky_update(*args: Any, **kwargs: Any) -> Any:
            calls.append("call")
            if len(calls) == 1:
                raise ConcurrencyConflictError("Audit sequence already taken", scope=scope, sequence=2)
            return await original(*args, **kwargs)

        monkeypatch.setattr(memory_store, "update_status", flaky_update)

        entry = await service.set_status(assessment.assessment_id, "nis2-001", "compliant", ACTOR)

        assert len(calls) == 2
        assert entry.sequence == 2

    @pytest.mark.asyncio()
    async def test_guarded_change_is_not_retried(
        self,
        registry: KnowledgeBaseRegistry,
        scope: str,
        micro_satcom_payload: dict[str, Any],
    ) -> None:
        store = InMemoryComplianceStore()
        service = ComplianceService(store=store, registry=registry, mutation_retry_attempts=5)
        assessment = await service.compute_assessment(micro_satcom_payload, DOMAIN_NIS2, scope=scope)
        store.update_status = AsyncMock(side_effect=ConcurrencyConflictError("stale"))  # type: ignore[method-assign]

        with pytest.raises(ConcurrencyConflictError):
            await service.set_status(
                assessment.assessment_id, "nis2-001", "compliant", ACTOR, expected_revision=0
            )
        assert store.update_status.await_count == 1


# ---------------------------------------------------------------------------
# Scoring
# ---------------------------------------------------------------------------


class TestScoring:
    """Tests for get_score, get_score_breakdown and get_overall_score."""

    @pytest.mark.asyncio()
    async def test_fresh_assessment_scores_zero(
        self,
        service: ComplianceService,
        scope: str,
        micro_satcom_payload: dict[str, Any],
    ) -> None:
        assessment = await service.compute_assessment(micro_satcom_payload, DOMAIN_NIS2, scope=scope)
        breakdown = await service.get_score_breakdown(assessment.assessment_id)
        assert breakdown.score == 0
        assert breakdown.status == "not_assessed"
        assert breakdown.total == len(assessment.applicable_provision_ids)

    @pytest.mark.asyncio()
    async def test_critical_failure_caps_score(
        self,
        service: ComplianceService,
        scope: str,
        micro_satcom_payload: dict[str, Any],
    ) -> None:
        """Eight of twelve compliant would score 67; a critical failure caps it at 40."""
        assessment = await service.compute_assessment(micro_satcom_payload, DOMAIN_NIS2, scope=scope)
        provision_ids = [p for p in assessment.applicable_provision_ids if p != "nis2-030"]
        for pid in provision_ids[:8]:
            await service.set_status(assessment.assessment_id, pid, "compliant", ACTOR)
        await service.set_status(assessment.assessment_id, "nis2-030", "non_compliant", ACTOR)

        breakdown = await service.get_score_breakdown(assessment.assessment_id)

        assert breakdown.raw_score == 67
        assert breakdown.score == 40
        assert breakdown.critical_failures == ("nis2-030",)
        assert await service.get_score(assessment.assessment_id) == 40

    @pytest.mark.asyncio()
    async def test_configured_cap_and_weighted_mode(
        self,
        registry: KnowledgeBaseRegistry,
        scope: str,
        micro_satcom_payload: dict[str, Any],
    ) -> None:
        settings = Settings(critical_cap=10, scoring_mode="weighted")
        service = ComplianceService.from_settings(settings, store=InMemoryComplianceStore(), registry=registry)
        assessment = await service.compute_assessment(micro_satcom_payload, DOMAIN_NIS2, scope=scope)
        await service.set_status(assessment.assessment_id, "nis2-001", "compliant", ACTOR)
        await service.set_status(assessment.assessment_id, "nis2-030", "non_compliant", ACTOR)

        breakdown = await service.get_score_breakdown(assessment.assessment_id)
        assert breakdown.score == min(breakdown.raw_score, 10)
        assert breakdown.capped is (breakdown.raw_score > 10)

    @pytest.mark.asyncio()
    async def test_not_applicable_rows_leave_denominator(
        self,
        service: ComplianceService,
        scope: str,
        micro_satcom_payload: dict[str, Any],
    ) -> None:
        assessment = await service.compute_assessment(micro_satcom_payload, DOMAIN_EU_SPACE_ACT, scope=scope)
        ids = assessment.applicable_provision_ids
        await service.set_status(assessment.assessment_id, ids[0], "compliant", ACTOR)
        for pid in ids[1:]:
            await service.set_status(assessment.assessment_id, pid, "not_applicable", ACTOR)

        assert await service.get_score(assessment.assessment_id) == 100

    @pytest.mark.asyncio()
    async def test_overall_score_is_mean_of_domains(
        self,
        service: ComplianceService,
        scope: str,
        micro_satcom_payload: dict[str, Any],
    ) -> None:
        eusa = await service.compute_assessment(micro_satcom_payload, DOMAIN_EU_SPACE_ACT, scope=scope)
        nis2 = await service.compute_assessment(micro_satcom_payload, DOMAIN_NIS2, scope=scope)
        for pid in eusa.applicable_provision_ids:
            await service.set_status(eusa.assessment_id, pid, "compliant", ACTOR)

        assert await service.get_overall_score([eusa.assessment_id, nis2.assessment_id]) == 50
        assert await service.get_overall_score([]) == 0

    @pytest.mark.asyncio()
    async def test_score_reads_are_recorded(
        self,
        service: ComplianceService,
        read_analytics: InMemoryReadAnalytics,
        scope: str,
        micro_satcom_payload: dict[str, Any],
    ) -> None:
        assessment = await service.compute_assessment(micro_satcom_payload, DOMAIN_NIS2, scope=scope)
        await service.get_score(assessment.assessment_id)
        await service.get_score(assessment.assessment_id)
        assert read_analytics.count("score.read") == 2
        assert read_analytics.recent()[-1]["assessment_id"] == str(assessment.assessment_id)

    @pytest.mark.asyncio()
    async def test_failing_analytics_never_fail_reads(
        self,
        memory_store: InMemoryComplianceStore,
        registry: KnowledgeBaseRegistry,
        scope: str,
        micro_satcom_payload: dict[str, Any],
    ) -> None:
        """Read analytics are best-effort: their failures are dropped."""
        analytics = AsyncMock()
        analytics.record_read.side_effect = RuntimeError("analytics backend down")
        service = ComplianceService(store=memory_store, registry=registry, read_analytics=analytics)
        assessment = await service.compute_assessment(micro_satcom_payload, DOMAIN_NIS2, scope=scope)

        assert await service.get_score(assessment.assessment_id) == 0
        assert (await service.verify_audit_chain(scope)).valid is True
        analytics.record_read.assert_awaited()

    def test_invalid_cap_rejected(
        self, memory_store: InMemoryComplianceStore, registry: KnowledgeBaseRegistry
    ) -> None:
        with pytest.raises(ValueError):
            ComplianceService(store=memory_store, registry=registry, critical_cap=120)


# ---------------------------------------------------------------------------
# Overlaps
# ---------------------------------------------------------------------------


class TestOverlaps:
    """Tests for ComplianceService.get_overlaps."""

    @pytest.mark.asyncio()
    async def test_overlaps_between_domains(
        self,
        service: ComplianceService,
        scope: str,
        micro_satcom_payload: dict[str, Any],
    ) -> None:
        eusa = await service.compute_assessment(micro_satcom_payload, DOMAIN_EU_SPACE_ACT, scope=scope)
        nis2 = await service.compute_assessment(micro_satcom_payload, DOMAIN_NIS2, scope=scope)

        report = await service.get_overlaps([nis2.assessment_id, eusa.assessment_id])

        # eusa-art-85 is excluded under the light regime, so xref-008 is not in effect
        assert report.pairs() == {
            ("nis2-002", "eusa-art-76"),
            ("nis2-001", "eusa-art-77"),
            ("nis2-011", "eusa-art-76"),
            ("nis2-030", "eusa-art-83"),
            ("nis2-031", "eusa-art-83"),
        }
        assert report.total_savings_weeks == pytest.approx(10.5)

    @pytest.mark.asyncio()
    async def test_not_applicable_removes_pair_but_not_other_ledger(
        self,
        service: ComplianceService,
        scope: str,
        micro_satcom_payload: dict[str, Any],
    ) -> None:
        """Marking X not_applicable drops (X, Y) and leaves Y's row in the other domain untouched."""
        eusa = await service.compute_assessment(micro_satcom_payload, DOMAIN_EU_SPACE_ACT, scope=scope)
        nis2 = await service.compute_assessment(micro_satcom_payload, DOMAIN_NIS2, scope=scope)
        nis2_before = await service.list_statuses(nis2.assessment_id)

        await service.set_status(eusa.assessment_id, "eusa-art-83", "not_applicable", ACTOR)
        report = await service.get_overlaps([eusa.assessment_id, nis2.assessment_id])

        assert ("nis2-030", "eusa-art-83") not in report.pairs()
        assert ("nis2-031", "eusa-art-83") not in report.pairs()
        assert ("nis2-002", "eusa-art-76") in report.pairs()
        assert await service.list_statuses(nis2.assessment_id) == nis2_before

    @pytest.mark.asyncio()
    async def test_overlap_savings_come_from_mapping(
        self,
        service: ComplianceService,
        scope: str,
        medium_operator_payload: dict[str, Any],
    ) -> None:
        eusa = await service.compute_assessment(medium_operator_payload, DOMAIN_EU_SPACE_ACT, scope=scope)
        nis2 = await service.compute_assessment(medium_operator_payload, DOMAIN_NIS2, scope=scope)

        report = await service.get_overlaps([eusa.assessment_id, nis2.assessment_id])

        supply_chain = next(m for m in report.matches if m.mapping_id == "xref-008")
        assert supply_chain.estimated_savings_weeks == 3.0
        assert supply_chain.assessment_a == nis2.assessment_id
        assert supply_chain.assessment_b == eusa.assessment_id

    @pytest.mark.asyncio()
    async def test_needs_two_assessments(
        self,
        service: ComplianceService,
        scope: str,
        micro_satcom_payload: dict[str, Any],
    ) -> None:
        eusa = await service.compute_assessment(micro_satcom_payload, DOMAIN_EU_SPACE_ACT, scope=scope)
        with pytest.raises(ValidationError):
            await service.get_overlaps([eusa.assessment_id, eusa.assessment_id])

    @pytest.mark.asyncio()
    async def test_one_assessment_per_domain(
        self,
        service: ComplianceService,
        micro_satcom_payload: dict[str, Any],
    ) -> None:
        first = await service.compute_assessment(micro_satcom_payload, DOMAIN_NIS2, scope="org-a")
        second = await service.compute_assessment(micro_satcom_payload, DOMAIN_NIS2, scope="org-b")
        with pytest.raises(ValidationError, match="nis2"):
            await service.get_overlaps([first.assessment_id, second.assessment_id])


# ---------------------------------------------------------------------------
# Audit chain
# ---------------------------------------------------------------------------


class TestAuditChain:
    """Tests for ComplianceService.verify_audit_chain."""

    async def _ten_entries(
        self, service: ComplianceService, scope: str, payload: dict[str, Any]
    ) -> None:
        assessment = await service.compute_assessment(payload, DOMAIN_NIS2, scope=scope)
        for pid in assessment.applicable_provision_ids[:9]:
            await service.set_status(assessment.assessment_id, pid, "partial", ACTOR)

    @pytest.mark.asyncio()
    async def test_unmodified_chain_verifies(
        self,
        service: ComplianceService,
        scope: str,
        micro_satcom_payload: dict[str, Any],
    ) -> None:
        await self._ten_entries(service, scope, micro_satcom_payload)

        result = await service.verify_audit_chain(scope)

        assert result.valid is True
        assert result.checked_entries == 10

    @pytest.mark.asyncio()
    async def test_tampered_entry_detected(
        self,
        service: ComplianceService,
        memory_store: InMemoryComplianceStore,
        scope: str,
        micro_satcom_payload: dict[str, Any],
    ) -> None:
        """Altering the stored payload of entry #5 of 10 fails at 5; 1-4 still verify."""
        await self._ten_entries(service, scope, micro_satcom_payload)
        entry = memory_store._chains[scope][4]
        memory_store._chains[scope][4] = entry.model_copy(
            update={"details": {**entry.details, "to_state": "compliant"}}
        )

        result = await service.verify_audit_chain(scope)

        assert result.valid is False
        assert result.first_invalid_sequence == 5
        assert result.checked_entries == 4
        assert (await service.verify_audit_chain(scope, from_sequence=6)).valid is True

    @pytest.mark.asyncio()
    async def test_scopes_have_independent_chains(
        self,
        service: ComplianceService,
        micro_satcom_payload: dict[str, Any],
    ) -> None:
        await service.compute_assessment(micro_satcom_payload, DOMAIN_NIS2, scope="org-a")
        await service.compute_assessment(micro_satcom_payload, DOMAIN_NIS2, scope="org-b")

        for scope in ("org-a", "org-b"):
            entries = await service.list_audit_entries(scope)
            assert [e.sequence for e in entries] == [1]
            assert (await service.verify_audit_chain(scope)).valid is True

    @pytest.mark.asyncio()
    async def test_negative_from_sequence_rejected(self, service: ComplianceService, scope: str) -> None:
        with pytest.raises(ValidationError):
            await service.verify_audit_chain(scope, from_sequence=-1)


# ---------------------------------------------------------------------------
# Knowledge base upgrades
# ---------------------------------------------------------------------------


class TestKnowledgeBaseUpgrade:
    @pytest.mark.asyncio()
    async def test_existing_assessments_keep_their_version(
        self,
        service: ComplianceService,
        knowledge_base: KnowledgeBase,
        scope: str,
        micro_satcom_payload: dict[str, Any],
    ) -> None:
        """After an upgrade, old ledgers still score and new Assessments use the new version."""
        old = await service.compute_assessment(micro_satcom_payload, DOMAIN_NIS2, scope=scope)
        await service.set_status(old.assessment_id, "nis2-001", "compliant", ACTOR)

        nis2 = knowledge_base.catalog(DOMAIN_NIS2)
        extra = Provision(
            domain=DOMAIN_NIS2,
            provision_id="nis2-050",
            title="Space segment vulnerability disclosure",
            article_ref="NIS2 Art. 12",
            category="vulnerability_handling",
        )
        upgraded = KnowledgeBase.build(
            version="2027.1.0",
            catalogs=[
                knowledge_base.catalog(DOMAIN_EU_SPACE_ACT),
                DomainCatalog(domain=DOMAIN_NIS2, name=nis2.name, provisions=(*nis2.provisions, extra)),
            ],
            overlaps=knowledge_base.overlaps,
            classification_rules=knowledge_base.classification_rules,
        )
        service.upgrade_knowledge_base(upgraded)

        new = await service.compute_assessment(micro_satcom_payload, DOMAIN_NIS2, scope=scope)

        assert new.assessment_id != old.assessment_id
        assert new.knowledge_base_version == "2027.1.0"
        assert "nis2-050" in new.applicable_provision_ids
        assert (await service.get_assessment(old.assessment_id)).knowledge_base_version == BUILTIN_VERSION
        assert await service.get_score(old.assessment_id) == 8  # 1 of 12
