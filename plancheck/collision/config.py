from collections.abc import Mapping
from typing import Any, Self

from pydantic import BaseModel, ConfigDict, Field


class SafetyConfig(BaseModel):
    """Collision calculation settings. Loaded once when the check context is built and read-only afterwards."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    max_couch_rot_calc: float = Field(
        default=10,
        ge=0,
        le=180,
        title="Maximum Couch Rotation (calculation)",
        description="Beams with a larger couch rotation are not evaluated by the collision model.",
        json_schema_extra={"units": "degrees"},
    )
    max_couch_rot_warning: float = Field(
        default=10,
        ge=0,
        le=180,
        title="Maximum Couch Rotation (warning)",
        description="Beams with a larger couch rotation raise a couch rotation warning.",
        json_schema_extra={"units": "degrees"},
    )
    safety_margin_distance: float = Field(
        default=10,
        ge=0,
        title="Safety Margin Distance",
        description="Couch margins at or below this distance raise a reduced margin warning.",
        json_schema_extra={"units": "mm"},
    )
    safety_margin_gantry_angle: float = Field(
        default=2,
        ge=0,
        title="Safety Margin Gantry Angle",
        description="Gantry angles closer than this to the couch limit raise a warning.",
        json_schema_extra={"units": "degrees"},
    )
    couch_vert_position_ct_correction: float = Field(
        default=69.3,
        title="Couch Vertical Position CT Correction",
        description="Correction subtracted from the couch vertical position read from the CT.",
        json_schema_extra={"units": "mm"},
    )

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> Self:
        """Build a validated config from e.g. a parsed settings file. Unknown keys raise a ``ValidationError``."""
        return cls.model_validate(dict(values))

    def replace(self, **overrides) -> Self:
        return self.model_validate(self.model_dump() | overrides)


DEFAULT_SAFETY_CONFIG = SafetyConfig()
