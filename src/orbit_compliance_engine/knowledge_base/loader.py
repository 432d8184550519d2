"""Knowledge base loader: build a KnowledgeBase from a YAML or JSON document.

The document layout mirrors ``KnowledgeBase.as_document()``::

    version: "2026.10.1"
    domains:
      nis2:
        name: NIS2 Directive
        provisions:
          - provision_id: nis2-001
            title: ...
            article_ref: Art. 21(2)(a)
            category: policies_risk_analysis
            critical: true
            predicate:
              include:
                - {field: classification.nis2_entity_class, op: in, value: [essential, important]}
    overlaps:
      - {mapping_id: xref-001, domain_a: nis2, provision_a: nis2-001, ...}
    classification_rules: {...}   # optional, defaults apply

Structural problems (missing keys, wrong types) raise KnowledgeBaseError.
Predicate field names are NOT validated here: an unknown field is an
applicability failure surfaced when the affected domain is computed.
"""

import json
from pathlib import Path
from typing import Any

import yaml

from orbit_compliance_engine.errors import KnowledgeBaseError
from orbit_compliance_engine.knowledge_base.catalog import (
    DEFAULT_SAVINGS_WEEKS,
    ApplicabilityPredicate,
    ClassificationRules,
    Condition,
    ConstellationBand,
    DomainCatalog,
    EntityClassOverride,
    KnowledgeBase,
    OverlapMapping,
    Provision,
    SizeBand,
)
from orbit_compliance_engine.observability import get_logger

logger = get_logger(__name__)


def load_knowledge_base(path: Path | str) -> KnowledgeBase:
    """Load a KnowledgeBase from a YAML (.yaml/.yml) or JSON file.

    Args:
        path: Path to the knowledge base document.

    Returns:
        The parsed KnowledgeBase.

    Raises:
        KnowledgeBaseError: If the file cannot be read or is malformed.
    """
    path = Path(path)
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise KnowledgeBaseError(f"Cannot read knowledge base file {path}", path=str(path)) from exc

    try:
        if path.suffix.lower() == ".json":
            document = json.loads(raw)
        else:
            document = yaml.safe_load(raw)
    except (json.JSONDecodeError, yaml.YAMLError) as exc:
        raise KnowledgeBaseError(f"Cannot parse knowledge base file {path}", path=str(path)) from exc

    knowledge_base = parse_knowledge_base(document)
    logger.info(
        "Knowledge base loaded from file",
        path=str(path),
        version=knowledge_base.version,
        domains=sorted(knowledge_base.domains),
        fingerprint=knowledge_base.fingerprint,
    )
    return knowledge_base


def parse_knowledge_base(document: Any) -> KnowledgeBase:
    """Build a KnowledgeBase from an already-decoded document.

    Args:
        document: Mapping with version, domains, overlaps and optional
            classification_rules keys.

    Returns:
        The parsed KnowledgeBase.

    Raises:
        KnowledgeBaseError: If the document structure is invalid.
    """
    doc = _require_mapping(document, "knowledge base")
    version = str(_require(doc, "version", "knowledge base"))
    domains_doc = _require_mapping(_require(doc, "domains", "knowledge base"), "domains")

    try:
        catalogs = [
            _parse_catalog(code, _require_mapping(body, f"domain {code}"))
            for code, body in domains_doc.items()
        ]
        overlaps = [
            _parse_overlap(_require_mapping(item, "overlap"))
            for item in doc.get("overlaps") or []
        ]
        rules_doc = doc.get("classification_rules")
        rules = _parse_rules(_require_mapping(rules_doc, "classification_rules")) if rules_doc else None
        return KnowledgeBase.build(
            version=version,
            catalogs=catalogs,
            overlaps=overlaps,
            classification_rules=rules,
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise KnowledgeBaseError(f"Invalid knowledge base document: {exc}", version=version) from exc


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _require(doc: dict[str, Any], key: str, where: str) -> Any:
    if key not in doc:
        raise KnowledgeBaseError(f"Missing '{key}' in {where}", key=key)
    return doc[key]


def _require_mapping(value: Any, where: str) -> dict[str, Any]:
    if not isinstance(value, dict):
        raise KnowledgeBaseError(f"Expected a mapping for {where}", where=where)
    return value


def _freeze(value: Any) -> Any:
    # Lists become tuples so conditions stay hashable
    if isinstance(value, list):
        return tuple(_freeze(v) for v in value)
    return value


def _parse_condition(doc: dict[str, Any]) -> Condition:
    return Condition(
        field=str(_require(doc, "field", "condition")),
        op=str(_require(doc, "op", "condition")),
        value=_freeze(doc.get("value")),
    )


def _parse_predicate(doc: dict[str, Any] | None) -> ApplicabilityPredicate:
    if not doc:
        return ApplicabilityPredicate()
    return ApplicabilityPredicate(
        include_operators=frozenset(doc.get("include_operators") or ()),
        exclude_operators=frozenset(doc.get("exclude_operators") or ()),
        include=tuple(_parse_condition(_require_mapping(c, "condition")) for c in doc.get("include") or ()),
        exclude=tuple(_parse_condition(_require_mapping(c, "condition")) for c in doc.get("exclude") or ()),
    )


def _parse_catalog(domain: str, doc: dict[str, Any]) -> DomainCatalog:
    provisions = []
    for item in doc.get("provisions") or []:
        item = _require_mapping(item, f"provision in {domain}")
        weight = float(item.get("weight", 1.0))
        if not 0.0 <= weight <= 1.0:
            raise KnowledgeBaseError(
                f"Provision weight must be within [0, 1], got {weight}",
                domain=domain,
                provision_id=item.get("provision_id"),
            )
        weeks = item.get("implementation_weeks")
        provisions.append(
            Provision(
                domain=domain,
                provision_id=str(_require(item, "provision_id", f"provision in {domain}")),
                title=str(_require(item, "title", f"provision in {domain}")),
                article_ref=str(item.get("article_ref", "")),
                category=str(item.get("category", "general")),
                predicate=_parse_predicate(item.get("predicate")),
                weight=weight,
                critical=bool(item.get("critical", False)),
                simplified_under_light_regime=bool(item.get("simplified_under_light_regime", False)),
                implementation_weeks=float(weeks) if weeks is not None else None,
            )
        )
    return DomainCatalog(domain=domain, name=str(doc.get("name", domain)), provisions=tuple(provisions))


def _parse_overlap(doc: dict[str, Any]) -> OverlapMapping:
    relationship = str(_require(doc, "relationship", "overlap"))
    savings = doc.get("estimated_savings_weeks")
    if savings is None:
        if relationship not in DEFAULT_SAVINGS_WEEKS:
            raise KnowledgeBaseError(
                f"Unknown overlap relationship {relationship!r} without explicit savings",
                mapping_id=doc.get("mapping_id"),
            )
        savings = DEFAULT_SAVINGS_WEEKS[relationship]
    return OverlapMapping(
        mapping_id=str(_require(doc, "mapping_id", "overlap")),
        domain_a=str(_require(doc, "domain_a", "overlap")),
        provision_a=str(_require(doc, "provision_a", "overlap")),
        domain_b=str(_require(doc, "domain_b", "overlap")),
        provision_b=str(_require(doc, "provision_b", "overlap")),
        relationship=relationship,
        estimated_savings_weeks=float(savings),
        description=str(doc.get("description", "")),
    )


def _parse_rules(doc: dict[str, Any]) -> ClassificationRules:
    defaults = ClassificationRules()
    size_bands = tuple(
        SizeBand(tier=b["tier"], max_staff=int(b["max_staff"]), max_revenue_eur=float(b["max_revenue_eur"]))
        for b in doc.get("size_bands", [])
    ) or defaults.size_bands
    constellation_bands = tuple(
        ConstellationBand(tier=b["tier"], min_size=int(b["min_size"]))
        for b in doc.get("constellation_bands", [])
    ) or defaults.constellation_bands
    overrides = tuple(
        EntityClassOverride(
            rule_id=o["rule_id"],
            size_tiers=frozenset(o.get("size_tiers", ())),
            activities=frozenset(o.get("activities", ())),
            sub_sectors=frozenset(o.get("sub_sectors", ())),
            entity_class=o["entity_class"],
            article_ref=o.get("article_ref", ""),
            reason=o.get("reason", ""),
        )
        for o in doc.get("entity_class_overrides", [])
    )
    light_tiers = doc.get("light_regime_tiers")
    base_class = doc.get("base_entity_class")
    return ClassificationRules(
        size_bands=size_bands,
        constellation_bands=constellation_bands,
        light_regime_tiers=frozenset(light_tiers) if light_tiers is not None else defaults.light_regime_tiers,
        base_entity_class=dict(base_class) if base_class else defaults.base_entity_class,
        entity_class_overrides=overrides,
    )
