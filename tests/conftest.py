"""Test fixtures for orbit-compliance-engine.

Provides:
- knowledge_base: the built-in EU Space Act / NIS2 knowledge base
- registry: a KnowledgeBaseRegistry with the built-in version active
- memory_store: an empty InMemoryComplianceStore
- read_analytics: an InMemoryReadAnalytics sink
- service: a ComplianceService over memory_store
- micro_satcom_payload / medium_operator_payload: Profile payloads
- make_provision: factory for ad-hoc Provisions in a test domain
"""

from collections.abc import Callable
from typing import Any

import pytest

from orbit_compliance_engine.adapters.memory_store import InMemoryComplianceStore
from orbit_compliance_engine.adapters.read_analytics import InMemoryReadAnalytics
from orbit_compliance_engine.core.services import ComplianceService
from orbit_compliance_engine.knowledge_base.builtin import build_default_knowledge_base
from orbit_compliance_engine.knowledge_base.catalog import (
    ApplicabilityPredicate,
    KnowledgeBase,
    Provision,
)
from orbit_compliance_engine.knowledge_base.registry import KnowledgeBaseRegistry


@pytest.fixture()
def scope() -> str:
    """Return a fixed organization scope for consistent audit chain assertions."""
    return "org-orbital-001"


@pytest.fixture()
def knowledge_base() -> KnowledgeBase:
    """Build the built-in knowledge base.

    Returns:
        KnowledgeBase with the eu_space_act and nis2 catalogs.
    """
    return build_default_knowledge_base()


@pytest.fixture()
def registry(knowledge_base: KnowledgeBase) -> KnowledgeBaseRegistry:
    """Create a registry with the built-in version active.

    Args:
        knowledge_base: Injected built-in knowledge base.

    Returns:
        KnowledgeBaseRegistry instance.
    """
    return KnowledgeBaseRegistry(knowledge_base)


@pytest.fixture()
def memory_store() -> InMemoryComplianceStore:
    """Create an empty in-memory compliance store."""
    return InMemoryComplianceStore()


@pytest.fixture()
def read_analytics() -> InMemoryReadAnalytics:
    """Create an in-memory read analytics sink."""
    return InMemoryReadAnalytics()


@pytest.fixture()
def service(
    memory_store: InMemoryComplianceStore,
    registry: KnowledgeBaseRegistry,
    read_analytics: InMemoryReadAnalytics,
) -> ComplianceService:
    """Create a ComplianceService with default scoring over the in-memory store.

    Args:
        memory_store: Injected store.
        registry: Injected knowledge base registry.
        read_analytics: Injected analytics sink.

    Returns:
        ComplianceService instance.
    """
    return ComplianceService(
        store=memory_store,
        registry=registry,
        read_analytics=read_analytics,
    )


@pytest.fixture()
def micro_satcom_payload() -> dict[str, Any]:
    """Profile payload of a micro EU spacecraft operator providing satellite communications.

    Returns:
        Raw profile dict: 8 staff, EUR 1.2M revenue.
    """
    return {
        "operator_type": "spacecraft_operator",
        "establishment": "eu",
        "staff_count": 8,
        "annual_revenue_eur": 1_200_000,
        "sub_sector": "satellite_communications",
        "jurisdiction": "LU",
        "activities": {"operates_satcom": True},
    }


@pytest.fixture()
def medium_operator_payload() -> dict[str, Any]:
    """Profile payload of a standard (medium) EU spacecraft operator.

    Returns:
        Raw profile dict: 120 staff, EUR 20M revenue.
    """
    return {
        "operator_type": "spacecraft_operator",
        "establishment": "eu",
        "staff_count": 120,
        "annual_revenue_eur": 20_000_000,
        "jurisdiction": "FR",
    }


@pytest.fixture()
def make_provision() -> Callable[..., Provision]:
    """Return a factory for Provisions of the "test" domain."""

    def _make(
        provision_id: str,
        predicate: ApplicabilityPredicate | None = None,
        *,
        critical: bool = False,
        weight: float = 1.0,
        simplified: bool = False,
    ) -> Provision:
        return Provision(
            domain="test",
            provision_id=provision_id,
            title=f"Provision {provision_id}",
            article_ref=f"Art. {provision_id}",
            category="general",
            predicate=predicate or ApplicabilityPredicate(),
            weight=weight,
            critical=critical,
            simplified_under_light_regime=simplified,
        )

    return _make
