"""Applicability Resolver: which provisions of a domain bind an entity.

The resolver checks every predicate of the domain before evaluating any of
them, so a knowledge base defect aborts the whole domain computation
regardless of catalog order. It never returns a partial set.
"""

from dataclasses import dataclass

from orbit_compliance_engine.applicability.classification import Classification
from orbit_compliance_engine.applicability.predicates import MissingValuePolicy, PredicateInterpreter
from orbit_compliance_engine.applicability.profile import Profile
from orbit_compliance_engine.errors import ApplicabilityComputationError
from orbit_compliance_engine.knowledge_base.catalog import DomainCatalog


@dataclass(frozen=True)
class Applicability:
    """Result of resolving one domain for one entity.

    Attributes:
        domain: Domain code.
        provision_ids: Applicable provision ids in catalog order.
        simplified_provision_ids: Applicable provisions whose obligations are
            reduced because the entity is eligible for the light regime.
    """

    domain: str
    provision_ids: tuple[str, ...]
    simplified_provision_ids: tuple[str, ...] = ()

    @property
    def is_simplified(self) -> bool:
        """Whether any obligation is reduced under the light regime."""
        return bool(self.simplified_provision_ids)


def resolve_applicable(
    profile: Profile,
    classification: Classification,
    catalog: DomainCatalog,
    missing_value_policy: MissingValuePolicy = MissingValuePolicy.NOT_MATCHED,
) -> Applicability:
    """Resolve the applicable provisions of one domain.

    Args:
        profile: Validated entity profile.
        classification: Classification of the profile.
        catalog: Domain catalog of the knowledge base version in use.
        missing_value_policy: Treatment of absent numeric threshold values.

    Returns:
        The Applicability for the domain.

    Raises:
        ApplicabilityComputationError: If any predicate of the domain is malformed.
    """
    interpreter = PredicateInterpreter(profile, classification, missing_value_policy)

    for provision in catalog.provisions:
        interpreter.check(provision)

    applicable: list[str] = []
    simplified: list[str] = []
    for provision in catalog.provisions:
        try:
            applies = interpreter.applies(provision)
        except ApplicabilityComputationError:
            raise
        except (TypeError, ValueError) as exc:
            raise ApplicabilityComputationError(
                f"Cannot evaluate predicate of provision {provision.provision_id}",
                domain=catalog.domain,
                provision_id=provision.provision_id,
            ) from exc
        if not applies:
            continue
        applicable.append(provision.provision_id)
        if classification.light_regime_eligible and provision.simplified_under_light_regime:
            simplified.append(provision.provision_id)

    return Applicability(
        domain=catalog.domain,
        provision_ids=tuple(applicable),
        simplified_provision_ids=tuple(simplified),
    )
