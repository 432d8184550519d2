"""Built-in knowledge base: EU Space Act and NIS2 catalogs for space operators.

The content here is the default version loaded at process start when no
knowledge base file is configured. It covers:
- ``eu_space_act``: authorisation, registration, safety, resilience and
  environmental provisions, targeted by operator type
- ``nis2``: Art. 20-23 and Art. 26/32 obligations of essential and important
  entities in the space sector
- the cross-reference table between the two frameworks

Changing anything in this module means bumping ``BUILTIN_VERSION``.
"""

from orbit_compliance_engine.knowledge_base.catalog import (
    DEFAULT_SAVINGS_WEEKS,
    OPERATOR_ALL,
    OPERATOR_THIRD_COUNTRY,
    RELATIONSHIP_OVERLAPS,
    RELATIONSHIP_SUPERSEDES,
    ApplicabilityPredicate,
    ClassificationRules,
    Condition,
    DomainCatalog,
    EntityClassOverride,
    KnowledgeBase,
    OverlapMapping,
    Provision,
)

BUILTIN_VERSION = "2026.10.1"

DOMAIN_EU_SPACE_ACT = "eu_space_act"
DOMAIN_NIS2 = "nis2"

_LIGHT_REGIME = Condition(field="classification.light_regime_eligible", op="is_true")
_NIS2_IN_SCOPE = Condition(
    field="classification.nis2_entity_class", op="in", value=("essential", "important")
)


def _operators(*abbreviations: str) -> frozenset[str]:
    return frozenset(abbreviations)


# ---------------------------------------------------------------------------
# EU Space Act
# ---------------------------------------------------------------------------

_EU_SPACE_ACT_PROVISIONS: tuple[Provision, ...] = (
    Provision(
        domain=DOMAIN_EU_SPACE_ACT,
        provision_id="eusa-art-06",
        title="Authorisation before providing space services",
        article_ref="Art. 6",
        category="authorization",
        predicate=ApplicabilityPredicate(
            include_operators=_operators(OPERATOR_ALL),
            exclude_operators=_operators(OPERATOR_THIRD_COUNTRY),
        ),
        critical=True,
        implementation_weeks=8,
    ),
    Provision(
        domain=DOMAIN_EU_SPACE_ACT,
        provision_id="eusa-art-14",
        title="Registration of third-country operators with the Union agency",
        article_ref="Art. 14",
        category="authorization",
        predicate=ApplicabilityPredicate(include_operators=_operators(OPERATOR_THIRD_COUNTRY)),
        critical=True,
        implementation_weeks=6,
    ),
    Provision(
        domain=DOMAIN_EU_SPACE_ACT,
        provision_id="eusa-art-16",
        title="Legal representative established in the Union",
        article_ref="Art. 16",
        category="authorization",
        predicate=ApplicabilityPredicate(include_operators=_operators(OPERATOR_THIRD_COUNTRY)),
        weight=0.6,
        implementation_weeks=2,
    ),
    Provision(
        domain=DOMAIN_EU_SPACE_ACT,
        provision_id="eusa-art-24",
        title="Entry in the Union Register of Space Objects",
        article_ref="Art. 24",
        category="registration",
        predicate=ApplicabilityPredicate(include_operators=_operators("SCO", "LO")),
        weight=0.6,
        implementation_weeks=1,
    ),
    Provision(
        domain=DOMAIN_EU_SPACE_ACT,
        provision_id="eusa-art-44",
        title="Third-party liability insurance cover",
        article_ref="Art. 44",
        category="insurance",
        predicate=ApplicabilityPredicate(include_operators=_operators("SCO", "LO", "LSO")),
        critical=True,
        simplified_under_light_regime=True,
        implementation_weeks=4,
    ),
    Provision(
        domain=DOMAIN_EU_SPACE_ACT,
        provision_id="eusa-art-63",
        title="Collision avoidance service subscription",
        article_ref="Art. 63",
        category="space_safety",
        predicate=ApplicabilityPredicate(include_operators=_operators("SCO", "ISOS")),
        critical=True,
        implementation_weeks=3,
    ),
    Provision(
        domain=DOMAIN_EU_SPACE_ACT,
        provision_id="eusa-art-64",
        title="Debris mitigation plan",
        article_ref="Art. 64",
        category="space_safety",
        predicate=ApplicabilityPredicate(include_operators=_operators("SCO", "LO", "ISOS")),
        critical=True,
        simplified_under_light_regime=True,
        implementation_weeks=6,
    ),
    Provision(
        domain=DOMAIN_EU_SPACE_ACT,
        provision_id="eusa-art-67",
        title="Trackability and unique identification of spacecraft",
        article_ref="Art. 67",
        category="space_safety",
        predicate=ApplicabilityPredicate(include_operators=_operators("SCO")),
        weight=0.8,
        implementation_weeks=2,
    ),
    Provision(
        domain=DOMAIN_EU_SPACE_ACT,
        provision_id="eusa-art-72",
        title="End-of-life disposal reliability for long-duration missions",
        article_ref="Art. 72",
        category="space_safety",
        predicate=ApplicabilityPredicate(
            include_operators=_operators("SCO"),
            include=(Condition(field="profile.mission.mission_duration_years", op="gte", value=5),),
        ),
        weight=0.8,
        implementation_weeks=5,
    ),
    Provision(
        domain=DOMAIN_EU_SPACE_ACT,
        provision_id="eusa-art-76",
        title="Cybersecurity risk management obligation",
        article_ref="Art. 76",
        category="cybersecurity",
        predicate=ApplicabilityPredicate(include_operators=_operators(OPERATOR_ALL)),
        critical=True,
        simplified_under_light_regime=True,
        implementation_weeks=6,
    ),
    Provision(
        domain=DOMAIN_EU_SPACE_ACT,
        provision_id="eusa-art-77",
        title="Space-specific cybersecurity risk assessment",
        article_ref="Art. 77-78",
        category="cybersecurity",
        predicate=ApplicabilityPredicate(include_operators=_operators(OPERATOR_ALL)),
        simplified_under_light_regime=True,
        implementation_weeks=4,
    ),
    Provision(
        domain=DOMAIN_EU_SPACE_ACT,
        provision_id="eusa-art-83",
        title="Significant incident reporting to the competent authority",
        article_ref="Art. 83",
        category="cybersecurity",
        predicate=ApplicabilityPredicate(include_operators=_operators(OPERATOR_ALL)),
        critical=True,
        implementation_weeks=3,
    ),
    Provision(
        domain=DOMAIN_EU_SPACE_ACT,
        provision_id="eusa-art-85",
        title="Supply chain security for space components",
        article_ref="Art. 85",
        category="cybersecurity",
        predicate=ApplicabilityPredicate(
            include_operators=_operators(OPERATOR_ALL),
            exclude=(_LIGHT_REGIME,),
        ),
        weight=0.8,
        implementation_weeks=5,
    ),
    Provision(
        domain=DOMAIN_EU_SPACE_ACT,
        provision_id="eusa-art-89",
        title="Environmental footprint declaration",
        article_ref="Art. 96-97",
        category="environmental",
        predicate=ApplicabilityPredicate(
            include_operators=_operators("SCO", "LO", "LSO"),
            exclude=(_LIGHT_REGIME,),
        ),
        weight=0.6,
        implementation_weeks=4,
    ),
    Provision(
        domain=DOMAIN_EU_SPACE_ACT,
        provision_id="eusa-art-98",
        title="Constellation-level collision risk assessment",
        article_ref="Art. 98",
        category="space_safety",
        predicate=ApplicabilityPredicate(
            include_operators=_operators("SCO"),
            include=(
                Condition(
                    field="classification.constellation_tier",
                    op="in",
                    value=("medium_constellation", "large_constellation", "mega_constellation"),
                ),
            ),
        ),
        implementation_weeks=6,
    ),
    Provision(
        domain=DOMAIN_EU_SPACE_ACT,
        provision_id="eusa-art-105",
        title="Launch safety and range coordination",
        article_ref="Art. 105",
        category="launch",
        predicate=ApplicabilityPredicate(include_operators=_operators("LO", "LSO")),
        critical=True,
        implementation_weeks=6,
    ),
    Provision(
        domain=DOMAIN_EU_SPACE_ACT,
        provision_id="eusa-art-108",
        title="In-space operations and services mission approval",
        article_ref="Art. 108",
        category="in_space_services",
        predicate=ApplicabilityPredicate(include_operators=_operators("ISOS")),
        critical=True,
        implementation_weeks=8,
    ),
    Provision(
        domain=DOMAIN_EU_SPACE_ACT,
        provision_id="eusa-art-110",
        title="Primary space data handling and dissemination",
        article_ref="Art. 110",
        category="data",
        predicate=ApplicabilityPredicate(include_operators=_operators("PDP")),
        weight=0.8,
        implementation_weeks=3,
    ),
)

# ---------------------------------------------------------------------------
# NIS2 Directive
# ---------------------------------------------------------------------------

_NIS2_PROVISIONS: tuple[Provision, ...] = (
    Provision(
        domain=DOMAIN_NIS2,
        provision_id="nis2-001",
        title="Information security policy for space systems",
        article_ref="NIS2 Art. 21(2)(a)",
        category="policies_risk_analysis",
        predicate=ApplicabilityPredicate(include=(_NIS2_IN_SCOPE,)),
        critical=True,
        simplified_under_light_regime=True,
        implementation_weeks=4,
    ),
    Provision(
        domain=DOMAIN_NIS2,
        provision_id="nis2-002",
        title="Cybersecurity risk analysis for space operations",
        article_ref="NIS2 Art. 21(2)(a)",
        category="policies_risk_analysis",
        predicate=ApplicabilityPredicate(include=(_NIS2_IN_SCOPE,)),
        critical=True,
        simplified_under_light_regime=True,
        implementation_weeks=4,
    ),
    Provision(
        domain=DOMAIN_NIS2,
        provision_id="nis2-006",
        title="Incident detection for space systems",
        article_ref="NIS2 Art. 21(2)(b)",
        category="incident_handling",
        predicate=ApplicabilityPredicate(include=(_NIS2_IN_SCOPE,)),
        critical=True,
        simplified_under_light_regime=True,
        implementation_weeks=6,
    ),
    Provision(
        domain=DOMAIN_NIS2,
        provision_id="nis2-009",
        title="Incident containment and eradication",
        article_ref="NIS2 Art. 21(2)(b)",
        category="incident_handling",
        predicate=ApplicabilityPredicate(include=(_NIS2_IN_SCOPE,)),
        weight=0.8,
        implementation_weeks=4,
    ),
    Provision(
        domain=DOMAIN_NIS2,
        provision_id="nis2-011",
        title="Business continuity plan for mission-critical ground operations",
        article_ref="NIS2 Art. 21(2)(c)",
        category="business_continuity",
        predicate=ApplicabilityPredicate(include=(_NIS2_IN_SCOPE,)),
        critical=True,
        simplified_under_light_regime=True,
        implementation_weeks=6,
    ),
    Provision(
        domain=DOMAIN_NIS2,
        provision_id="nis2-012",
        title="Backup and disaster recovery for TT&C systems",
        article_ref="NIS2 Art. 21(2)(c)",
        category="business_continuity",
        predicate=ApplicabilityPredicate(
            include=(
                _NIS2_IN_SCOPE,
                Condition(field="profile.activities.operates_ground_infra", op="is_true"),
            ),
        ),
        critical=True,
        implementation_weeks=5,
    ),
    Provision(
        domain=DOMAIN_NIS2,
        provision_id="nis2-015",
        title="Supplier risk assessment for space components",
        article_ref="NIS2 Art. 21(2)(d)",
        category="supply_chain",
        predicate=ApplicabilityPredicate(include=(_NIS2_IN_SCOPE,)),
        critical=True,
        simplified_under_light_regime=True,
        implementation_weeks=5,
    ),
    Provision(
        domain=DOMAIN_NIS2,
        provision_id="nis2-017",
        title="Secure development of flight software",
        article_ref="NIS2 Art. 21(2)(e)",
        category="secure_development",
        predicate=ApplicabilityPredicate(
            include=(
                _NIS2_IN_SCOPE,
                Condition(field="profile.activities.manufactures_spacecraft", op="is_true"),
            ),
        ),
        weight=0.8,
        implementation_weeks=8,
    ),
    Provision(
        domain=DOMAIN_NIS2,
        provision_id="nis2-020",
        title="Encryption of TT&C and payload links",
        article_ref="NIS2 Art. 21(2)(h)",
        category="cryptography",
        predicate=ApplicabilityPredicate(include=(_NIS2_IN_SCOPE,)),
        weight=0.9,
        implementation_weeks=6,
    ),
    Provision(
        domain=DOMAIN_NIS2,
        provision_id="nis2-023",
        title="Multi-factor authentication for mission control access",
        article_ref="NIS2 Art. 21(2)(j)",
        category="access_control",
        predicate=ApplicabilityPredicate(include=(_NIS2_IN_SCOPE,)),
        weight=0.9,
        simplified_under_light_regime=True,
        implementation_weeks=3,
    ),
    Provision(
        domain=DOMAIN_NIS2,
        provision_id="nis2-030",
        title="Early warning within 24 hours of a significant incident",
        article_ref="NIS2 Art. 23(4)(a)",
        category="incident_reporting",
        predicate=ApplicabilityPredicate(include=(_NIS2_IN_SCOPE,)),
        critical=True,
        implementation_weeks=2,
    ),
    Provision(
        domain=DOMAIN_NIS2,
        provision_id="nis2-031",
        title="Incident notification within 72 hours",
        article_ref="NIS2 Art. 23(4)(b)",
        category="incident_reporting",
        predicate=ApplicabilityPredicate(include=(_NIS2_IN_SCOPE,)),
        critical=True,
        implementation_weeks=2,
    ),
    Provision(
        domain=DOMAIN_NIS2,
        provision_id="nis2-035",
        title="Management body approval of cybersecurity measures",
        article_ref="NIS2 Art. 20(1)",
        category="governance",
        predicate=ApplicabilityPredicate(include=(_NIS2_IN_SCOPE,)),
        critical=True,
        implementation_weeks=1,
    ),
    Provision(
        domain=DOMAIN_NIS2,
        provision_id="nis2-036",
        title="Cybersecurity training for management bodies",
        article_ref="NIS2 Art. 20(2)",
        category="governance",
        predicate=ApplicabilityPredicate(include=(_NIS2_IN_SCOPE,)),
        weight=0.6,
        simplified_under_light_regime=True,
        implementation_weeks=2,
    ),
    Provision(
        domain=DOMAIN_NIS2,
        provision_id="nis2-038",
        title="Readiness for proactive supervision and on-site inspection",
        article_ref="NIS2 Art. 32",
        category="supervision",
        predicate=ApplicabilityPredicate(
            include=(Condition(field="classification.nis2_entity_class", op="eq", value="essential"),),
        ),
        weight=0.7,
        implementation_weeks=3,
    ),
    Provision(
        domain=DOMAIN_NIS2,
        provision_id="nis2-039",
        title="Main establishment designation for cross-border operations",
        article_ref="NIS2 Art. 26",
        category="jurisdiction",
        predicate=ApplicabilityPredicate(
            include=(
                _NIS2_IN_SCOPE,
                Condition(field="profile.member_state_count", op="gte", value=2),
            ),
        ),
        weight=0.5,
        implementation_weeks=1,
    ),
)

# ---------------------------------------------------------------------------
# Classification rules
# ---------------------------------------------------------------------------

_ENTITY_CLASS_OVERRIDES: tuple[EntityClassOverride, ...] = (
    EntityClassOverride(
        rule_id="nis2-space-satcom-micro",
        size_tiers=frozenset({"micro"}),
        activities=frozenset({"operates_satcom"}),
        sub_sectors=frozenset({"satellite_communications"}),
        entity_class="important",
        article_ref="NIS2 Art. 2(2)(b), Annex I(11)",
        reason="sole or critical satellite communication providers are in scope regardless of size",
    ),
    EntityClassOverride(
        rule_id="nis2-space-infra-small",
        size_tiers=frozenset({"small"}),
        activities=frozenset({"operates_ground_infra", "operates_satcom", "provides_launch_services"}),
        sub_sectors=frozenset({"ground_infrastructure", "satellite_communications", "launch_services"}),
        entity_class="important",
        article_ref="NIS2 Art. 3(2), Annex I(11)",
        reason="small operators of space-based infrastructure supporting essential services",
    ),
    EntityClassOverride(
        rule_id="nis2-space-infra-medium",
        size_tiers=frozenset({"medium"}),
        activities=frozenset({"operates_ground_infra", "operates_satcom"}),
        sub_sectors=frozenset({"ground_infrastructure", "satellite_communications"}),
        entity_class="essential",
        article_ref="NIS2 Art. 3(1)(e), Annex I(11)",
        reason="medium operators of ground-based space infrastructure are essential entities",
    ),
)

# ---------------------------------------------------------------------------
# Cross-references NIS2 <-> EU Space Act
# ---------------------------------------------------------------------------


def _xref(
    mapping_id: str,
    nis2_id: str,
    eusa_id: str,
    relationship: str,
    description: str,
) -> OverlapMapping:
    return OverlapMapping(
        mapping_id=mapping_id,
        domain_a=DOMAIN_NIS2,
        provision_a=nis2_id,
        domain_b=DOMAIN_EU_SPACE_ACT,
        provision_b=eusa_id,
        relationship=relationship,
        estimated_savings_weeks=DEFAULT_SAVINGS_WEEKS[relationship],
        description=description,
    )


_OVERLAPS: tuple[OverlapMapping, ...] = (
    _xref(
        "xref-001",
        "nis2-002",
        "eusa-art-76",
        RELATIONSHIP_OVERLAPS,
        "Both require a cybersecurity risk management framework covering the space segment.",
    ),
    _xref(
        "xref-002",
        "nis2-001",
        "eusa-art-77",
        RELATIONSHIP_OVERLAPS,
        "The security policy and the space-specific risk assessment share scope and evidence.",
    ),
    _xref(
        "xref-005",
        "nis2-011",
        "eusa-art-76",
        RELATIONSHIP_OVERLAPS,
        "Continuity planning for ground operations is part of the space risk management obligation.",
    ),
    _xref(
        "xref-008",
        "nis2-015",
        "eusa-art-85",
        RELATIONSHIP_SUPERSEDES,
        "Space supply chain security is lex specialis to the generic NIS2 supplier obligation.",
    ),
    _xref(
        "xref-011",
        "nis2-030",
        "eusa-art-83",
        RELATIONSHIP_SUPERSEDES,
        "The EU Space Act incident reporting regime replaces the NIS2 early warning for space operators.",
    ),
    _xref(
        "xref-012",
        "nis2-031",
        "eusa-art-83",
        RELATIONSHIP_SUPERSEDES,
        "The EU Space Act incident reporting regime replaces the NIS2 incident notification.",
    ),
)


def build_default_knowledge_base() -> KnowledgeBase:
    """Assemble the built-in knowledge base version.

    Returns:
        KnowledgeBase ``BUILTIN_VERSION`` with the eu_space_act and nis2
        catalogs, their overlap table, and the space-sector NIS2 overrides.
    """
    return KnowledgeBase.build(
        version=BUILTIN_VERSION,
        catalogs=[
            DomainCatalog(
                domain=DOMAIN_EU_SPACE_ACT,
                name="EU Space Act",
                provisions=_EU_SPACE_ACT_PROVISIONS,
            ),
            DomainCatalog(
                domain=DOMAIN_NIS2,
                name="NIS2 Directive",
                provisions=_NIS2_PROVISIONS,
            ),
        ],
        overlaps=_OVERLAPS,
        classification_rules=ClassificationRules(entity_class_overrides=_ENTITY_CLASS_OVERRIDES),
    )
