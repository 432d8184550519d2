"""Overlap Mapper: equivalent provisions across simultaneously assessed domains.

The mapper reads effective applicable sets and the knowledge base overlap
table and reports every mapping whose two sides are both in effect. It never
touches ledgers: a provision dropping out of one domain removes the pair
from the report and nothing else.
"""

import uuid
from collections.abc import Iterable, Mapping
from dataclasses import dataclass

from orbit_compliance_engine.errors import OverlapMappingError
from orbit_compliance_engine.knowledge_base.catalog import DomainCatalog, OverlapMapping
from orbit_compliance_engine.observability import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class EffectiveSet:
    """Provisions of one Assessment that are applicable and not marked not_applicable."""

    assessment_id: uuid.UUID
    domain: str
    provision_ids: frozenset[str]


@dataclass(frozen=True)
class OverlapMatch:
    """A mapped provision pair that is in effect in both Assessments."""

    mapping_id: str
    relationship: str
    domain_a: str
    provision_a: str
    assessment_a: uuid.UUID
    domain_b: str
    provision_b: str
    assessment_b: uuid.UUID
    estimated_savings_weeks: float
    description: str = ""


@dataclass(frozen=True)
class OverlapReport:
    """Result of an overlap computation.

    Attributes:
        matches: Pairs in effect, in overlap table order.
        skipped: One OverlapMappingError per mapping that referenced an
            unknown provision.
    """

    matches: tuple[OverlapMatch, ...]
    skipped: tuple[OverlapMappingError, ...] = ()

    @property
    def total_savings_weeks(self) -> float:
        return sum(match.estimated_savings_weeks for match in self.matches)

    def pairs(self) -> set[tuple[str, str]]:
        """(provision_a, provision_b) of every match."""
        return {(m.provision_a, m.provision_b) for m in self.matches}


def find_overlaps(
    effective_sets: Iterable[EffectiveSet],
    overlaps: Iterable[OverlapMapping],
    catalogs: Mapping[str, DomainCatalog],
) -> OverlapReport:
    """Report the overlap pairs in effect between the given Assessments.

    Args:
        effective_sets: One EffectiveSet per Assessment; at most one per domain.
        overlaps: Overlap table of the knowledge base.
        catalogs: Catalog per domain, used to detect mappings that reference
            unknown provisions.

    Returns:
        The OverlapReport. Mappings touching a domain outside the given sets
        are ignored.
    """
    by_domain = {effective.domain: effective for effective in effective_sets}
    matches: list[OverlapMatch] = []
    skipped: list[OverlapMappingError] = []

    for mapping in overlaps:
        side_a = by_domain.get(mapping.domain_a)
        side_b = by_domain.get(mapping.domain_b)
        if side_a is None or side_b is None:
            continue

        unknown = [
            f"{domain}/{provision_id}"
            for domain, provision_id in (
                (mapping.domain_a, mapping.provision_a),
                (mapping.domain_b, mapping.provision_b),
            )
            if domain not in catalogs or provision_id not in catalogs[domain]
        ]
        if unknown:
            error = OverlapMappingError(
                f"Overlap mapping {mapping.mapping_id} references unknown provisions: "
                + ", ".join(unknown),
                mapping_id=mapping.mapping_id,
                unknown=unknown,
            )
            logger.warning("Overlap mapping skipped", **error.context)
            skipped.append(error)
            continue

        if mapping.provision_a in side_a.provision_ids and mapping.provision_b in side_b.provision_ids:
            matches.append(
                OverlapMatch(
                    mapping_id=mapping.mapping_id,
                    relationship=mapping.relationship,
                    domain_a=mapping.domain_a,
                    provision_a=mapping.provision_a,
                    assessment_a=side_a.assessment_id,
                    domain_b=mapping.domain_b,
                    provision_b=mapping.provision_b,
                    assessment_b=side_b.assessment_id,
                    estimated_savings_weeks=mapping.estimated_savings_weeks,
                    description=mapping.description,
                )
            )

    return OverlapReport(matches=tuple(matches), skipped=tuple(skipped))
