"""Knowledge base types: immutable, versioned catalogs of regulatory provisions.

A KnowledgeBase holds, for one version:
- one DomainCatalog per regulatory framework, each an ordered list of Provisions
- the ClassificationRules used to derive entity tiers from a Profile
- the precomputed OverlapMapping table between domains

Everything here is frozen. A change to any provision, rule, or mapping is a
new KnowledgeBase version, registered through the KnowledgeBaseRegistry.
Provisions are referenced by (domain, provision_id) everywhere else in the
engine; nothing outside this package duplicates catalog data.
"""

import hashlib
import json
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from functools import cached_property
from types import MappingProxyType
from typing import Any

# Pseudo-operators understood by the applicability interpreter
OPERATOR_ALL = "ALL"
OPERATOR_THIRD_COUNTRY = "TCO"

# Overlap relationships and their default effort savings (weeks)
RELATIONSHIP_OVERLAPS = "overlaps"
RELATIONSHIP_SUPERSEDES = "supersedes"
DEFAULT_SAVINGS_WEEKS: dict[str, float] = {
    RELATIONSHIP_SUPERSEDES: 3.0,
    RELATIONSHIP_OVERLAPS: 1.5,
}


@dataclass(frozen=True)
class Condition:
    """One clause of an applicability predicate.

    Attributes:
        field: Dotted field reference, e.g. "profile.staff_count" or
            "classification.size_tier".
        op: Comparison operator name (eq, ne, in, not_in, gte, gt, lte, lt,
            is_true, is_false).
        value: Comparison operand. Tuples for membership operators, numbers
            for thresholds, unused for is_true / is_false.
    """

    field: str
    op: str
    value: Any = None

    def as_document(self) -> dict[str, Any]:
        value = list(self.value) if isinstance(self.value, tuple) else self.value
        return {"field": self.field, "op": self.op, "value": value}


@dataclass(frozen=True)
class ApplicabilityPredicate:
    """Include / exclude rule deciding whether a Provision binds a Profile.

    Attributes:
        include_operators: Operator abbreviations the provision targets. Empty
            means no operator restriction.
        exclude_operators: Operator abbreviations the provision never binds.
        include: Conditions that must all hold for the include side to match.
        exclude: Conditions of which any one excludes the provision.
    """

    include_operators: frozenset[str] = frozenset()
    exclude_operators: frozenset[str] = frozenset()
    include: tuple[Condition, ...] = ()
    exclude: tuple[Condition, ...] = ()

    @property
    def has_include(self) -> bool:
        """Whether any include restriction is declared at all."""
        return bool(self.include_operators or self.include)

    def conditions(self) -> tuple[Condition, ...]:
        """All conditions on both sides, include side first."""
        return self.include + self.exclude

    def as_document(self) -> dict[str, Any]:
        return {
            "include_operators": sorted(self.include_operators),
            "exclude_operators": sorted(self.exclude_operators),
            "include": [c.as_document() for c in self.include],
            "exclude": [c.as_document() for c in self.exclude],
        }


@dataclass(frozen=True)
class Provision:
    """A single addressable regulatory requirement within a domain.

    Attributes:
        domain: Domain code the provision belongs to (e.g., "nis2").
        provision_id: Stable, human-readable identifier unique within the domain.
        title: Short title.
        article_ref: Legal reference (e.g., "Art. 21(2)(a)").
        category: Category tag used for grouping.
        predicate: Applicability predicate.
        weight: Relative weight within the domain (0.0-1.0).
        critical: Non-compliance with this provision caps the domain score.
        simplified_under_light_regime: Obligations are reduced for entities
            eligible for the light regime.
        implementation_weeks: Indicative implementation effort.
    """

    domain: str
    provision_id: str
    title: str
    article_ref: str
    category: str
    predicate: ApplicabilityPredicate = field(default_factory=ApplicabilityPredicate)
    weight: float = 1.0
    critical: bool = False
    simplified_under_light_regime: bool = False
    implementation_weeks: float | None = None

    def as_document(self) -> dict[str, Any]:
        return {
            "provision_id": self.provision_id,
            "title": self.title,
            "article_ref": self.article_ref,
            "category": self.category,
            "predicate": self.predicate.as_document(),
            "weight": float(self.weight),
            "critical": self.critical,
            "simplified_under_light_regime": self.simplified_under_light_regime,
            "implementation_weeks": (
                float(self.implementation_weeks) if self.implementation_weeks is not None else None
            ),
        }


@dataclass(frozen=True, eq=False)
class DomainCatalog:
    """Ordered provision catalog for one regulatory framework.

    Attributes:
        domain: Domain code (e.g., "eu_space_act").
        name: Human-readable framework name.
        provisions: Provisions in catalog order. Resolver output follows this order.
    """

    domain: str
    name: str
    provisions: tuple[Provision, ...]

    def __post_init__(self) -> None:
        index: dict[str, Provision] = {}
        for provision in self.provisions:
            if provision.domain != self.domain:
                raise ValueError(
                    f"Provision {provision.provision_id} belongs to domain "
                    f"{provision.domain!r}, not {self.domain!r}"
                )
            if provision.provision_id in index:
                raise ValueError(f"Duplicate provision id {provision.provision_id!r} in {self.domain}")
            index[provision.provision_id] = provision
        object.__setattr__(self, "_index", MappingProxyType(index))

    def get(self, provision_id: str) -> Provision | None:
        """Return the provision with the given id, or None."""
        return self._index.get(provision_id)  # type: ignore[attr-defined]

    def __contains__(self, provision_id: object) -> bool:
        return provision_id in self._index  # type: ignore[attr-defined]

    def __len__(self) -> int:
        return len(self.provisions)

    def as_document(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "provisions": [p.as_document() for p in self.provisions],
        }


@dataclass(frozen=True)
class SizeBand:
    """Upper bounds for one enterprise size tier.

    An entity falls in the band on the staff dimension when
    ``staff_count < max_staff`` and on the revenue dimension when
    ``annual_revenue_eur <= max_revenue_eur``.
    """

    tier: str
    max_staff: int
    max_revenue_eur: float


@dataclass(frozen=True)
class ConstellationBand:
    """Minimum fleet size for a constellation tier."""

    tier: str
    min_size: int


@dataclass(frozen=True)
class EntityClassOverride:
    """Sector-specific escalation of the NIS2 entity class.

    Applies when the entity's size tier is listed and at least one of the
    trigger activities is declared or its sub-sector is listed. Overrides
    only ever raise the entity class.

    Attributes:
        rule_id: Stable identifier recorded on the Classification.
        size_tiers: Size tiers the rule applies to.
        activities: Activity flag names that trigger the rule.
        sub_sectors: Sub-sectors that trigger the rule.
        entity_class: Resulting entity class.
        article_ref: Legal basis of the override.
        reason: Human-readable explanation.
    """

    rule_id: str
    size_tiers: frozenset[str]
    entity_class: str
    article_ref: str
    reason: str
    activities: frozenset[str] = frozenset()
    sub_sectors: frozenset[str] = frozenset()


ENTITY_CLASS_ORDER: tuple[str, ...] = ("out_of_scope", "important", "essential")


@dataclass(frozen=True)
class ClassificationRules:
    """Threshold and override tables driving the Classification Engine.

    Attributes:
        size_bands: Ordered bands, smallest tier first. Anything above the
            last band is "large".
        constellation_bands: Ordered bands, largest minimum first.
        light_regime_tiers: Size tiers eligible for the light regime.
        base_entity_class: NIS2 entity class per size tier before overrides.
        entity_class_overrides: Sector-specific escalations.
    """

    size_bands: tuple[SizeBand, ...] = (
        SizeBand(tier="micro", max_staff=10, max_revenue_eur=2_000_000),
        SizeBand(tier="small", max_staff=50, max_revenue_eur=10_000_000),
        SizeBand(tier="medium", max_staff=250, max_revenue_eur=50_000_000),
    )
    constellation_bands: tuple[ConstellationBand, ...] = (
        ConstellationBand(tier="mega_constellation", min_size=1000),
        ConstellationBand(tier="large_constellation", min_size=100),
        ConstellationBand(tier="medium_constellation", min_size=10),
        ConstellationBand(tier="small_constellation", min_size=2),
    )
    light_regime_tiers: frozenset[str] = frozenset({"micro", "small", "research"})
    base_entity_class: Mapping[str, str] = field(
        default_factory=lambda: MappingProxyType(
            {
                "micro": "out_of_scope",
                "small": "out_of_scope",
                "research": "out_of_scope",
                "medium": "important",
                "large": "essential",
            }
        )
    )
    entity_class_overrides: tuple[EntityClassOverride, ...] = ()

    def __hash__(self) -> int:
        return hash((self.size_bands, self.constellation_bands, self.entity_class_overrides))

    def as_document(self) -> dict[str, Any]:
        return {
            "size_bands": [
                {
                    "tier": b.tier,
                    "max_staff": b.max_staff,
                    "max_revenue_eur": float(b.max_revenue_eur),
                }
                for b in self.size_bands
            ],
            "constellation_bands": [
                {"tier": b.tier, "min_size": b.min_size} for b in self.constellation_bands
            ],
            "light_regime_tiers": sorted(self.light_regime_tiers),
            "base_entity_class": dict(sorted(self.base_entity_class.items())),
            "entity_class_overrides": [
                {
                    "rule_id": o.rule_id,
                    "size_tiers": sorted(o.size_tiers),
                    "activities": sorted(o.activities),
                    "sub_sectors": sorted(o.sub_sectors),
                    "entity_class": o.entity_class,
                    "article_ref": o.article_ref,
                    "reason": o.reason,
                }
                for o in self.entity_class_overrides
            ],
        }


@dataclass(frozen=True)
class OverlapMapping:
    """A declared equivalence between provisions of two domains.

    Attributes:
        mapping_id: Stable identifier of the mapping.
        domain_a: Domain of the first provision.
        provision_a: Provision id in domain_a.
        domain_b: Domain of the second provision.
        provision_b: Provision id in domain_b.
        relationship: "overlaps" or "supersedes".
        estimated_savings_weeks: Effort saved by implementing once.
        description: Why the provisions are equivalent.
    """

    mapping_id: str
    domain_a: str
    provision_a: str
    domain_b: str
    provision_b: str
    relationship: str
    estimated_savings_weeks: float
    description: str = ""

    def as_document(self) -> dict[str, Any]:
        return {
            "mapping_id": self.mapping_id,
            "domain_a": self.domain_a,
            "provision_a": self.provision_a,
            "domain_b": self.domain_b,
            "provision_b": self.provision_b,
            "relationship": self.relationship,
            "estimated_savings_weeks": float(self.estimated_savings_weeks),
            "description": self.description,
        }


@dataclass(frozen=True, eq=False)
class KnowledgeBase:
    """One immutable version of the full regulatory knowledge base.

    Attributes:
        version: Version label (e.g., "2026.10.1").
        domains: Domain catalogs keyed by domain code.
        overlaps: Precomputed overlap mappings.
        classification_rules: Rules for the Classification Engine.
    """

    version: str
    domains: Mapping[str, DomainCatalog]
    overlaps: tuple[OverlapMapping, ...] = ()
    classification_rules: ClassificationRules = field(default_factory=ClassificationRules)

    def __post_init__(self) -> None:
        object.__setattr__(self, "domains", MappingProxyType(dict(self.domains)))

    @classmethod
    def build(
        cls,
        version: str,
        catalogs: Iterable[DomainCatalog],
        overlaps: Iterable[OverlapMapping] = (),
        classification_rules: ClassificationRules | None = None,
    ) -> "KnowledgeBase":
        """Assemble a KnowledgeBase from catalogs and overlap mappings.

        Args:
            version: Version label.
            catalogs: Domain catalogs; domain codes must be unique.
            overlaps: Overlap mappings.
            classification_rules: Classification rules, defaults when None.

        Returns:
            The assembled KnowledgeBase.

        Raises:
            ValueError: If two catalogs share a domain code.
        """
        domains: dict[str, DomainCatalog] = {}
        for catalog in catalogs:
            if catalog.domain in domains:
                raise ValueError(f"Duplicate domain catalog {catalog.domain!r}")
            domains[catalog.domain] = catalog
        return cls(
            version=version,
            domains=domains,
            overlaps=tuple(overlaps),
            classification_rules=classification_rules or ClassificationRules(),
        )

    def catalog(self, domain: str) -> DomainCatalog | None:
        """Return the catalog for a domain code, or None if unknown."""
        return self.domains.get(domain)

    def provision(self, domain: str, provision_id: str) -> Provision | None:
        """Look up a provision by (domain, provision_id)."""
        catalog = self.domains.get(domain)
        return catalog.get(provision_id) if catalog is not None else None

    def supported_domains(self) -> set[str]:
        """Return the set of domain codes in this version."""
        return set(self.domains)

    def as_document(self) -> dict[str, Any]:
        """Serialize to the document structure understood by the loader."""
        return {
            "version": self.version,
            "domains": {code: self.domains[code].as_document() for code in sorted(self.domains)},
            "overlaps": [m.as_document() for m in self.overlaps],
            "classification_rules": self.classification_rules.as_document(),
        }

    @cached_property
    def fingerprint(self) -> str:
        """SHA-256 over the canonical JSON serialization of this version."""
        canonical = json.dumps(self.as_document(), sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()
