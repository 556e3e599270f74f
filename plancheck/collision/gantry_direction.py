import logging
from collections.abc import Iterable
from dataclasses import dataclass

from plancheck.collision.config import SafetyConfig, DEFAULT_SAFETY_CONFIG
from plancheck.collision.errors import UnsupportedOrientationError
from plancheck.collision.geometry import resolve_sector
from plancheck.plans.beam import BeamGeometry, ControlPointLabel
from plancheck.utils import couch_rotation_within

logger = logging.getLogger(__name__)

EXTENDED_GANTRY_TITLE = "Check extended gantry option in:"
# gantry angles around 180 where the extended range changes the approach direction
EXTENDED_GANTRY_WINDOW = (175, 185)
# lateral isocenter offset from which approaching from the wrong side is worth a warning
EXTENDED_GANTRY_LATERAL_MM = 20


@dataclass(frozen=True)
class GantryDirectionAdvice:
    """The control points that would benefit from the extended gantry option, and the beams not evaluated."""

    flagged: tuple[tuple[str, ControlPointLabel], ...]
    not_evaluated: tuple[str, ...]

    @property
    def optimal(self) -> bool:
        return not self.flagged

    def render(self, config: SafetyConfig = DEFAULT_SAFETY_CONFIG) -> str:
        """The warning text. Empty when every evaluated control point approaches from the optimal side."""
        if self.optimal:
            return ""
        text = EXTENDED_GANTRY_TITLE + " \n"
        text += "".join(f" - {beam_id}({label.value})\n" for beam_id, label in self.flagged)
        if self.not_evaluated:
            text += f" - Rotation Gantry direc (Couch Rotation > {config.max_couch_rot_calc:g} degrees): \n"
            text += "".join(f"\t{beam_id}\n" for beam_id in self.not_evaluated)
        return text


def needs_extended_gantry(gantry_angle: float, isocenter_x: float, is_left: bool) -> bool:
    """Whether a gantry angle close to 180 reaches a lateral isocenter from the far side."""
    low, high = EXTENDED_GANTRY_WINDOW
    if not low < gantry_angle < high:
        return False
    if is_left:
        return isocenter_x > EXTENDED_GANTRY_LATERAL_MM
    return isocenter_x < -EXTENDED_GANTRY_LATERAL_MM


def extended_gantry_advice(
    beams: Iterable[BeamGeometry], config: SafetyConfig = DEFAULT_SAFETY_CONFIG
) -> GantryDirectionAdvice:
    """Find the control points where the extended gantry option would shorten the gantry travel.

    Parameters
    ----------
    beams : Iterable[BeamGeometry]
        The beams of the plan.
    config : SafetyConfig
        Beams with couch rotation over ``max_couch_rot_calc`` are not evaluated.
    """
    flagged = []
    not_evaluated = []
    for beam in beams:
        if not couch_rotation_within(beam.couch_rotation, config.max_couch_rot_calc):
            not_evaluated.append(beam.beam_id)
            continue
        try:
            isocenter_x = float(beam.isocenter[0])
        except UnsupportedOrientationError as e:
            # already reported by the collision check
            logger.warning(f"Beam {beam.beam_id}: gantry direction not evaluated: {e}")
            continue
        for label, gantry_angle in beam.control_points():
            sector = resolve_sector(gantry_angle, beam.extended_range_code)
            if needs_extended_gantry(gantry_angle, isocenter_x, sector.is_left):
                flagged.append((beam.beam_id, label))
    return GantryDirectionAdvice(tuple(flagged), tuple(not_evaluated))
