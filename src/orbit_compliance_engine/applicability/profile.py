"""Entity profile: the validated classification input for one regulated entity.

A Profile is supplied fresh by the caller for every computation. It is a
closed, typed record: unknown fields are rejected, enumerated fields accept
only their declared values, and numeric fields are range-checked. Nothing is
defaulted silently except the sector flags and mission attributes that have
an unambiguous "not declared" meaning.

Size metrics (``staff_count``, ``annual_revenue_eur``) are optional at this
level so a partially filled wizard can still be stored, but the
Classification Engine rejects a Profile that lacks them.
"""

from collections.abc import Mapping
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from orbit_compliance_engine.errors import ValidationError


class OperatorType(StrEnum):
    """Regulated activity of the entity."""

    SPACECRAFT_OPERATOR = "spacecraft_operator"
    LAUNCH_OPERATOR = "launch_operator"
    LAUNCH_SITE_OPERATOR = "launch_site_operator"
    ISOS_PROVIDER = "isos_provider"
    PRIMARY_DATA_PROVIDER = "primary_data_provider"


# Abbreviations used in provision include / exclude operator sets
OPERATOR_ABBREVIATIONS: dict[OperatorType, str] = {
    OperatorType.SPACECRAFT_OPERATOR: "SCO",
    OperatorType.LAUNCH_OPERATOR: "LO",
    OperatorType.LAUNCH_SITE_OPERATOR: "LSO",
    OperatorType.ISOS_PROVIDER: "ISOS",
    OperatorType.PRIMARY_DATA_PROVIDER: "PDP",
}


class Establishment(StrEnum):
    """Where the entity is established relative to the EU."""

    EU = "eu"
    THIRD_COUNTRY_EU_SERVICES = "third_country_eu_services"
    THIRD_COUNTRY_NO_EU_SERVICES = "third_country_no_eu_services"


class SpaceSubSector(StrEnum):
    """Space sub-sectors relevant for sector-specific overrides."""

    GROUND_INFRASTRUCTURE = "ground_infrastructure"
    SATELLITE_COMMUNICATIONS = "satellite_communications"
    SPACECRAFT_MANUFACTURING = "spacecraft_manufacturing"
    LAUNCH_SERVICES = "launch_services"
    EARTH_OBSERVATION = "earth_observation"
    NAVIGATION = "navigation"
    SPACE_SITUATIONAL_AWARENESS = "space_situational_awareness"


class Orbit(StrEnum):
    """Primary orbital regime of the mission."""

    LEO = "LEO"
    MEO = "MEO"
    GEO = "GEO"
    BEYOND = "beyond"


class ActivityFlags(BaseModel):
    """Sector activity flags that can escalate obligations.

    Attributes:
        operates_ground_infra: Operates ground stations, TT&C or mission control.
        operates_satcom: Provides satellite communication services.
        manufactures_spacecraft: Manufactures spacecraft or components.
        provides_launch_services: Provides launch services.
        provides_eo_data: Provides Earth observation data.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    operates_ground_infra: bool = False
    operates_satcom: bool = False
    manufactures_spacecraft: bool = False
    provides_launch_services: bool = False
    provides_eo_data: bool = False


class MissionProfile(BaseModel):
    """Mission and physical-asset attributes.

    Attributes:
        operates_constellation: Whether the entity operates more than one spacecraft
            as a coordinated fleet.
        constellation_size: Number of spacecraft in the constellation.
        primary_orbit: Primary orbital regime.
        spacecraft_mass_kg: Mass of the largest spacecraft in kilograms.
        mission_duration_years: Planned mission duration. None means the mission
            has no planned end (indefinite).
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    operates_constellation: bool = False
    constellation_size: int | None = Field(default=None, ge=1)
    primary_orbit: Orbit | None = None
    spacecraft_mass_kg: float | None = Field(default=None, ge=0)
    mission_duration_years: float | None = Field(default=None, gt=0)


class Profile(BaseModel):
    """Classification inputs for one regulated entity.

    Attributes:
        operator_type: Regulated activity.
        establishment: EU establishment status.
        staff_count: Headcount (required for classification).
        annual_revenue_eur: Annual turnover in EUR (required for classification).
        is_research_institution: Research or educational institution.
        sector: Sector code; the engine is built for "space".
        sub_sector: Space sub-sector, when known.
        jurisdiction: ISO 3166-1 alpha-2 code of the main establishment.
        member_state_count: Number of member states the entity operates in.
        activities: Sector activity flags.
        mission: Mission and physical-asset attributes.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    operator_type: OperatorType
    establishment: Establishment = Establishment.EU
    staff_count: int | None = Field(default=None, ge=0)
    annual_revenue_eur: float | None = Field(default=None, ge=0)
    is_research_institution: bool = False
    sector: str = Field(default="space", min_length=1)
    sub_sector: SpaceSubSector | None = None
    jurisdiction: str | None = Field(default=None, pattern=r"^[A-Z]{2}$")
    member_state_count: int = Field(default=1, ge=1)
    activities: ActivityFlags = Field(default_factory=ActivityFlags)
    mission: MissionProfile = Field(default_factory=MissionProfile)

    @classmethod
    def from_payload(cls, payload: Any) -> "Profile":
        """Validate a raw payload at the boundary.

        Args:
            payload: Decoded request payload.

        Returns:
            The validated Profile.

        Raises:
            ValidationError: If any field is missing, unknown, or out of range.
                ``field`` names the first offending field.
        """
        if not isinstance(payload, Mapping):
            raise ValidationError(
                f"Profile must be a mapping of fields, got {type(payload).__name__}",
                field="profile",
            )
        try:
            return cls.model_validate(dict(payload))
        except PydanticValidationError as exc:
            errors = exc.errors()
            first = errors[0]
            field_name = ".".join(str(part) for part in first["loc"])
            raise ValidationError(
                f"Invalid profile field '{field_name}': {first['msg']}",
                field=field_name,
                error_count=len(errors),
            ) from exc

    def snapshot(self) -> dict[str, Any]:
        """JSON-compatible snapshot stored on Assessments."""
        return self.model_dump(mode="json")
