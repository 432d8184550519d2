"""Orbit Compliance Engine entry point.

Wires the engine together for an embedding application:
- structured logging
- the knowledge base (built-in version, or a YAML/JSON file from settings)
- the SQLAlchemy store
- the ComplianceService facade

Usage::

    async with lifespan(Settings()) as service:
        assessment = await service.compute_assessment(profile, "nis2", scope="org-1")
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from orbit_compliance_engine.adapters.read_analytics import InMemoryReadAnalytics
from orbit_compliance_engine.adapters.sql_store import SqlComplianceStore
from orbit_compliance_engine.core.services import ComplianceService
from orbit_compliance_engine.knowledge_base.builtin import build_default_knowledge_base
from orbit_compliance_engine.knowledge_base.catalog import KnowledgeBase
from orbit_compliance_engine.knowledge_base.loader import load_knowledge_base
from orbit_compliance_engine.knowledge_base.registry import KnowledgeBaseRegistry
from orbit_compliance_engine.observability import configure_logging, get_logger
from orbit_compliance_engine.settings import Settings

logger = get_logger(__name__)


def load_configured_knowledge_base(settings: Settings) -> KnowledgeBase:
    """Return the knowledge base file from settings, or the built-in version."""
    if settings.knowledge_base_path is not None:
        return load_knowledge_base(settings.knowledge_base_path)
    return build_default_knowledge_base()


@asynccontextmanager
async def lifespan(
    settings: Settings,
    create_tables: bool = False,
) -> AsyncGenerator[ComplianceService, None]:
    """Manage engine startup and shutdown.

    Configures logging, loads the knowledge base, initializes the store and
    yields a ready ComplianceService. The store engine is disposed on exit.

    Args:
        settings: Engine settings.
        create_tables: Create missing tables at startup.

    Yields:
        The configured ComplianceService.
    """
    configure_logging(settings.log_level, settings.json_logs)

    knowledge_base = load_configured_knowledge_base(settings)
    registry = KnowledgeBaseRegistry(knowledge_base)

    store = SqlComplianceStore(
        database_url=settings.database_url,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        echo=settings.db_echo,
    )
    await store.init(create_tables=create_tables)

    service = ComplianceService.from_settings(
        settings,
        store=store,
        registry=registry,
        read_analytics=InMemoryReadAnalytics(),
    )
    logger.info(
        "Compliance engine startup complete",
        service=settings.service_name,
        knowledge_base_version=knowledge_base.version,
        scoring_mode=settings.scoring_mode.value,
    )

    try:
        yield service
    finally:
        logger.info("Shutting down compliance engine")
        await store.close()
        logger.info("Compliance engine shutdown complete")
