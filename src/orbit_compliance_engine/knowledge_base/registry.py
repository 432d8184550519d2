"""Knowledge base registry: every loaded version, one of them active.

The registry is populated once at process start and only grows afterwards.
New Assessments are computed against the active version; existing
Assessments keep resolving provisions from the version recorded on them,
so an upgrade never changes the meaning of an existing ledger.
"""

from orbit_compliance_engine.errors import KnowledgeBaseError, NotFoundError
from orbit_compliance_engine.knowledge_base.catalog import KnowledgeBase
from orbit_compliance_engine.observability import get_logger

logger = get_logger(__name__)


class KnowledgeBaseRegistry:
    """Holds all registered KnowledgeBase versions keyed by version label.

    Args:
        initial: The version to register and activate at construction.
    """

    def __init__(self, initial: KnowledgeBase) -> None:
        self._versions: dict[str, KnowledgeBase] = {initial.version: initial}
        self._active_version = initial.version
        logger.info(
            "Knowledge base registry initialized",
            version=initial.version,
            fingerprint=initial.fingerprint,
        )

    @property
    def active(self) -> KnowledgeBase:
        """The version used for new Assessments."""
        return self._versions[self._active_version]

    def get(self, version: str) -> KnowledgeBase:
        """Return a registered version.

        Args:
            version: Version label.

        Returns:
            The KnowledgeBase registered under that label.

        Raises:
            NotFoundError: If the version was never registered.
        """
        knowledge_base = self._versions.get(version)
        if knowledge_base is None:
            raise NotFoundError(resource="KnowledgeBase", resource_id=version)
        return knowledge_base

    def versions(self) -> list[str]:
        """Registered version labels in registration order."""
        return list(self._versions)

    def upgrade(self, knowledge_base: KnowledgeBase) -> None:
        """Register a new version and make it the active one.

        Re-registering an identical version (same label, same fingerprint)
        is a no-op apart from activation. Reusing a label for different
        content is rejected; versions are immutable.

        Args:
            knowledge_base: The new version.

        Raises:
            KnowledgeBaseError: If the label is taken by different content.
        """
        existing = self._versions.get(knowledge_base.version)
        if existing is not None and existing.fingerprint != knowledge_base.fingerprint:
            raise KnowledgeBaseError(
                f"Knowledge base version {knowledge_base.version!r} is already registered "
                "with different content",
                version=knowledge_base.version,
            )
        previous = self._active_version
        self._versions[knowledge_base.version] = knowledge_base
        self._active_version = knowledge_base.version
        logger.info(
            "Knowledge base upgraded",
            previous_version=previous,
            version=knowledge_base.version,
            fingerprint=knowledge_base.fingerprint,
        )
