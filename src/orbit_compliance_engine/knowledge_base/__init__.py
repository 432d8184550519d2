"""Regulatory knowledge base: immutable, versioned provision catalogs.

Provides the catalog types, the built-in EU Space Act and NIS2 version, a
YAML/JSON loader for alternative versions, and the registry that tracks
which version new Assessments are computed against.
"""

from __future__ import annotations

from orbit_compliance_engine.knowledge_base.builtin import BUILTIN_VERSION, build_default_knowledge_base
from orbit_compliance_engine.knowledge_base.catalog import (
    ApplicabilityPredicate,
    ClassificationRules,
    Condition,
    DomainCatalog,
    KnowledgeBase,
    OverlapMapping,
    Provision,
)
from orbit_compliance_engine.knowledge_base.loader import load_knowledge_base, parse_knowledge_base
from orbit_compliance_engine.knowledge_base.registry import KnowledgeBaseRegistry

__all__ = [
    "BUILTIN_VERSION",
    "ApplicabilityPredicate",
    "ClassificationRules",
    "Condition",
    "DomainCatalog",
    "KnowledgeBase",
    "KnowledgeBaseRegistry",
    "OverlapMapping",
    "Provision",
    "build_default_knowledge_base",
    "load_knowledge_base",
    "parse_knowledge_base",
]
