"""Classification Engine: derive entity tiers from a Profile.

Classification is a pure function of (Profile, ClassificationRules). Given
the same profile and the same knowledge base version it always returns the
same Classification, which is what makes Assessments reproducible.

Rules evaluated, in order:
1. Size tier: each size dimension (staff, revenue) is placed in the first
   band it fits; the entity takes the larger of the two tiers
   ("worst dimension wins"). Research institutions take the "research" tier.
2. Constellation tier from the mission fleet size.
3. Light regime eligibility from the size tier.
4. NIS2 entity class: non-EU entities are out of scope; otherwise the base
   class of the size tier, escalated by any matching sector override.
"""

from dataclasses import dataclass
from typing import Any

from orbit_compliance_engine.applicability.profile import (
    OPERATOR_ABBREVIATIONS,
    Establishment,
    Profile,
)
from orbit_compliance_engine.errors import ValidationError
from orbit_compliance_engine.knowledge_base.catalog import (
    ENTITY_CLASS_ORDER,
    ClassificationRules,
    EntityClassOverride,
)

SIZE_TIER_RESEARCH = "research"
SIZE_TIER_LARGE = "large"
CONSTELLATION_SINGLE = "single_satellite"
ENTITY_CLASS_OUT_OF_SCOPE = "out_of_scope"


@dataclass(frozen=True)
class Classification:
    """Derived tier and category of an entity.

    Attributes:
        size_tier: micro | small | medium | large | research.
        constellation_tier: single_satellite or one of the constellation tiers.
        light_regime_eligible: Eligible for the simplified (light) regime.
        nis2_entity_class: essential | important | out_of_scope.
        operator: Operator abbreviation used by provision predicates.
        is_third_country: Entity is not established in the EU.
        applied_overrides: Rule ids of sector overrides that changed the result.
        reasons: Human-readable trace of how each value was derived.
    """

    size_tier: str
    constellation_tier: str
    light_regime_eligible: bool
    nis2_entity_class: str
    operator: str
    is_third_country: bool
    applied_overrides: tuple[str, ...] = ()
    reasons: tuple[str, ...] = ()

    def as_document(self) -> dict[str, Any]:
        """JSON-compatible representation stored on Assessments."""
        return {
            "size_tier": self.size_tier,
            "constellation_tier": self.constellation_tier,
            "light_regime_eligible": self.light_regime_eligible,
            "nis2_entity_class": self.nis2_entity_class,
            "operator": self.operator,
            "is_third_country": self.is_third_country,
            "applied_overrides": list(self.applied_overrides),
            "reasons": list(self.reasons),
        }

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> "Classification":
        """Rebuild a Classification from ``as_document`` output."""
        return cls(
            size_tier=doc["size_tier"],
            constellation_tier=doc["constellation_tier"],
            light_regime_eligible=bool(doc["light_regime_eligible"]),
            nis2_entity_class=doc["nis2_entity_class"],
            operator=doc["operator"],
            is_third_country=bool(doc["is_third_country"]),
            applied_overrides=tuple(doc.get("applied_overrides", ())),
            reasons=tuple(doc.get("reasons", ())),
        )


def classify(profile: Profile, rules: ClassificationRules) -> Classification:
    """Classify an entity.

    Args:
        profile: Validated entity profile.
        rules: Classification rules of the knowledge base version in use.

    Returns:
        The derived Classification.

    Raises:
        ValidationError: If a required size dimension is missing, or a
            constellation operator does not declare its constellation size.
    """
    _require_dimensions(profile)
    reasons: list[str] = []

    size_tier = _size_tier(profile, rules, reasons)
    constellation_tier = _constellation_tier(profile, rules, reasons)

    light_regime = size_tier in rules.light_regime_tiers
    reasons.append(
        f"light regime {'eligible' if light_regime else 'not eligible'} for size tier {size_tier}"
    )

    is_third_country = profile.establishment != Establishment.EU
    entity_class, applied = _entity_class(profile, size_tier, is_third_country, rules, reasons)

    return Classification(
        size_tier=size_tier,
        constellation_tier=constellation_tier,
        light_regime_eligible=light_regime,
        nis2_entity_class=entity_class,
        operator=OPERATOR_ABBREVIATIONS[profile.operator_type],
        is_third_country=is_third_country,
        applied_overrides=tuple(applied),
        reasons=tuple(reasons),
    )


def _require_dimensions(profile: Profile) -> None:
    if profile.staff_count is None:
        raise ValidationError("Profile is missing required dimension 'staff_count'", field="staff_count")
    if profile.annual_revenue_eur is None:
        raise ValidationError(
            "Profile is missing required dimension 'annual_revenue_eur'",
            field="annual_revenue_eur",
        )
    if profile.mission.operates_constellation and profile.mission.constellation_size is None:
        raise ValidationError(
            "Constellation operators must declare 'mission.constellation_size'",
            field="mission.constellation_size",
        )


def _size_tier(profile: Profile, rules: ClassificationRules, reasons: list[str]) -> str:
    if profile.is_research_institution:
        reasons.append("research institution: size tier research")
        return SIZE_TIER_RESEARCH

    staff = profile.staff_count or 0
    revenue = profile.annual_revenue_eur or 0.0

    staff_tier = next((b.tier for b in rules.size_bands if staff < b.max_staff), SIZE_TIER_LARGE)
    revenue_tier = next(
        (b.tier for b in rules.size_bands if revenue <= b.max_revenue_eur), SIZE_TIER_LARGE
    )
    tier = max(staff_tier, revenue_tier, key=lambda t: _tier_rank(t, rules))
    reasons.append(
        f"staff {staff} -> {staff_tier}; revenue EUR {revenue:,.0f} -> {revenue_tier}; size tier {tier}"
    )
    return tier


def _tier_rank(tier: str, rules: ClassificationRules) -> int:
    # Band order is tier order; anything past the last band ranks highest
    for rank, band in enumerate(rules.size_bands):
        if band.tier == tier:
            return rank
    return len(rules.size_bands)


def _constellation_tier(profile: Profile, rules: ClassificationRules, reasons: list[str]) -> str:
    mission = profile.mission
    if not mission.operates_constellation or mission.constellation_size is None:
        return CONSTELLATION_SINGLE
    for band in rules.constellation_bands:
        if mission.constellation_size >= band.min_size:
            reasons.append(f"constellation of {mission.constellation_size} -> {band.tier}")
            return band.tier
    return CONSTELLATION_SINGLE


def _entity_class(
    profile: Profile,
    size_tier: str,
    is_third_country: bool,
    rules: ClassificationRules,
    reasons: list[str],
) -> tuple[str, list[str]]:
    if is_third_country:
        reasons.append("not established in the EU: NIS2 out of scope (Art. 2, Art. 26)")
        return ENTITY_CLASS_OUT_OF_SCOPE, []

    entity_class = rules.base_entity_class.get(size_tier, ENTITY_CLASS_OUT_OF_SCOPE)
    reasons.append(f"size tier {size_tier}: base NIS2 class {entity_class}")

    applied: list[str] = []
    for override in rules.entity_class_overrides:
        if not _override_matches(override, profile, size_tier):
            continue
        if _class_rank(override.entity_class) > _class_rank(entity_class):
            entity_class = override.entity_class
            applied.append(override.rule_id)
            reasons.append(f"{override.rule_id} ({override.article_ref}): {override.reason}")
    return entity_class, applied


def _override_matches(override: EntityClassOverride, profile: Profile, size_tier: str) -> bool:
    if size_tier not in override.size_tiers:
        return False
    if profile.sub_sector is not None and profile.sub_sector.value in override.sub_sectors:
        return True
    flags = profile.activities.model_dump()
    return any(flags.get(activity, False) for activity in override.activities)


def _class_rank(entity_class: str) -> int:
    return ENTITY_CLASS_ORDER.index(entity_class) if entity_class in ENTITY_CLASS_ORDER else 0
