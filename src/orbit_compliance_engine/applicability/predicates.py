"""Predicate interpreter: the single place applicability predicates are evaluated.

Every provision predicate in every domain goes through ``PredicateInterpreter``.
Field references are resolved against a closed registry built from the
Profile and Classification types; anything outside that registry, and any
operator outside ``OPERATORS``, is a knowledge base defect and raises
ApplicabilityComputationError.

Precedence: the exclude side is evaluated independently of the include side
and always wins. A predicate with no include restriction is universally
applicable unless excluded.
"""

import dataclasses
import math
from collections.abc import Callable
from enum import Enum, StrEnum
from typing import Any

from orbit_compliance_engine.applicability.classification import Classification
from orbit_compliance_engine.applicability.profile import ActivityFlags, MissionProfile, Profile
from orbit_compliance_engine.errors import ApplicabilityComputationError
from orbit_compliance_engine.knowledge_base.catalog import (
    OPERATOR_ALL,
    OPERATOR_THIRD_COUNTRY,
    ApplicabilityPredicate,
    Condition,
    Provision,
)

Resolver = Callable[[Profile, Classification], Any]


class MissingValuePolicy(StrEnum):
    """How a threshold condition treats an optional numeric field that is absent.

    NOT_MATCHED: the threshold clause does not hold.
    UNBOUNDED: the absent value compares as +infinity (e.g. an indefinite
        mission duration exceeds every minimum and no maximum).
    """

    NOT_MATCHED = "not_matched"
    UNBOUNDED = "unbounded"


_COMPARISONS: dict[str, Callable[[Any, Any], bool]] = {
    "gte": lambda left, right: left >= right,
    "gt": lambda left, right: left > right,
    "lte": lambda left, right: left <= right,
    "lt": lambda left, right: left < right,
}

OPERATORS: frozenset[str] = frozenset(
    {"eq", "ne", "in", "not_in", "is_true", "is_false", *_COMPARISONS}
)


def _build_field_registry() -> dict[str, Resolver]:
    registry: dict[str, Resolver] = {}
    for name in Profile.model_fields:
        if name in ("activities", "mission"):
            continue
        registry[f"profile.{name}"] = lambda p, c, _n=name: getattr(p, _n)
    for name in ActivityFlags.model_fields:
        registry[f"profile.activities.{name}"] = lambda p, c, _n=name: getattr(p.activities, _n)
    for name in MissionProfile.model_fields:
        registry[f"profile.mission.{name}"] = lambda p, c, _n=name: getattr(p.mission, _n)
    for f in dataclasses.fields(Classification):
        if f.name in ("reasons", "applied_overrides"):
            continue
        registry[f"classification.{f.name}"] = lambda p, c, _n=f.name: getattr(c, _n)
    return registry


FIELD_REGISTRY: dict[str, Resolver] = _build_field_registry()


def known_fields() -> list[str]:
    """Sorted list of field references predicates may use."""
    return sorted(FIELD_REGISTRY)


class PredicateInterpreter:
    """Evaluates provision predicates for one (Profile, Classification) pair.

    Args:
        profile: The validated Profile.
        classification: The Classification derived from it.
        missing_value_policy: Treatment of absent numeric values in thresholds.
    """

    def __init__(
        self,
        profile: Profile,
        classification: Classification,
        missing_value_policy: MissingValuePolicy = MissingValuePolicy.NOT_MATCHED,
    ) -> None:
        self._profile = profile
        self._classification = classification
        self._missing_value_policy = missing_value_policy

    def check(self, provision: Provision) -> None:
        """Verify that every condition of a provision is well-formed.

        Args:
            provision: Provision whose predicate to check.

        Raises:
            ApplicabilityComputationError: On an unknown field or operator.
        """
        for condition in provision.predicate.conditions():
            if condition.field not in FIELD_REGISTRY:
                raise ApplicabilityComputationError(
                    f"Provision {provision.provision_id} references unknown field '{condition.field}'",
                    domain=provision.domain,
                    provision_id=provision.provision_id,
                    field=condition.field,
                )
            if condition.op not in OPERATORS:
                raise ApplicabilityComputationError(
                    f"Provision {provision.provision_id} uses unknown operator '{condition.op}'",
                    domain=provision.domain,
                    provision_id=provision.provision_id,
                    op=condition.op,
                )

    def resolve(self, field: str) -> Any:
        """Resolve a field reference to a plain value.

        Raises:
            ApplicabilityComputationError: If the field is not in the registry.
        """
        resolver = FIELD_REGISTRY.get(field)
        if resolver is None:
            raise ApplicabilityComputationError(f"Unknown field '{field}'", field=field)
        value = resolver(self._profile, self._classification)
        return value.value if isinstance(value, Enum) else value

    def applies(self, provision: Provision) -> bool:
        """Decide whether a provision binds the profile. Exclude wins."""
        predicate = provision.predicate
        if self._excluded(predicate, provision):
            return False
        if not predicate.has_include:
            return True
        return self._included(predicate, provision)

    def _included(self, predicate: ApplicabilityPredicate, provision: Provision) -> bool:
        if predicate.include_operators and not self._operator_in(predicate.include_operators):
            return False
        return all(self._holds(c, provision) for c in predicate.include)

    def _excluded(self, predicate: ApplicabilityPredicate, provision: Provision) -> bool:
        if predicate.exclude_operators and self._operator_in(predicate.exclude_operators):
            return True
        return any(self._holds(c, provision) for c in predicate.exclude)

    def _operator_in(self, operators: frozenset[str]) -> bool:
        if OPERATOR_ALL in operators or self._classification.operator in operators:
            return True
        return self._classification.is_third_country and OPERATOR_THIRD_COUNTRY in operators

    def _holds(self, condition: Condition, provision: Provision) -> bool:
        value = self.resolve(condition.field)
        op = condition.op
        expected = condition.value

        if op == "eq":
            return value == expected
        if op == "ne":
            return value != expected
        if op in ("in", "not_in"):
            members = expected if isinstance(expected, (tuple, list, set, frozenset)) else (expected,)
            return (value in members) == (op == "in")
        if op == "is_true":
            return value is True
        if op == "is_false":
            return value is False
        if op in _COMPARISONS:
            if value is None:
                if self._missing_value_policy == MissingValuePolicy.UNBOUNDED:
                    return _COMPARISONS[op](math.inf, expected)
                return False
            try:
                return _COMPARISONS[op](value, expected)
            except TypeError as exc:
                raise ApplicabilityComputationError(
                    f"Provision {provision.provision_id} compares non-numeric field "
                    f"'{condition.field}' with '{op}'",
                    domain=provision.domain,
                    provision_id=provision.provision_id,
                    field=condition.field,
                ) from exc
        raise ApplicabilityComputationError(
            f"Provision {provision.provision_id} uses unknown operator '{op}'",
            domain=provision.domain,
            provision_id=provision.provision_id,
            op=op,
        )
