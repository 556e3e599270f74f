"""Closed-form gantry collision model.

The gantry body is approximated by an envelope rotating around the isocenter and the couch by a rectangle of
height ``a`` and half width ``b``. Collision with the couch is possible when the gantry passes the limit angle at
which its envelope reaches the couch edge and, at the same time, the couch corner lies outside the collision-free
radius ``r`` (negative margin). Collision with the patient is modelled for lateral isocenters only.
"""
import logging
import math
from dataclasses import dataclass
from enum import Enum, IntEnum

from numpy import ndarray

from plancheck.collision.config import SafetyConfig, DEFAULT_SAFETY_CONFIG
from plancheck.collision.errors import UnsupportedCouchTypeError
from plancheck.collision.geometry import RotationDirection, RotationSector
from plancheck.collision.machine import (
    CollisionEnvelopeParams,
    CouchType,
    ENVELOPES_PER_COUCH_TYPE,
    MachineDefinition,
    DEFAULT_CATALOG,
)

logger = logging.getLogger(__name__)

# Isocenters closer than this to the patient midline carry no patient collision risk.
PATIENT_LATERAL_THRESHOLD_MM = 70
# Width of the band before the patient limit where a warning is raised.
PATIENT_WARNING_BAND_DEG = 2
# Extra envelope added per unit of tan(couch rotation).
ROTATION_ENVELOPE_GROWTH_MM = 40

COUCH_LIMIT_LEFT_BASE = 215
COUCH_LIMIT_LEFT_MAX = 260
COUCH_LIMIT_RIGHT_BASE = 145
COUCH_LIMIT_RIGHT_MIN = 100


class CollisionLevel(IntEnum):
    NONE = 0
    WARNING = 1
    COLLISION = 2


class CouchWarning(Enum):
    GANTRY_NEAR_COUCH = "Gantry near couch"
    REDUCED_MARGIN = "Reduced margin to couch"


@dataclass(frozen=True)
class PatientCollisionResult:
    """
    Gantry-patient result for one gantry angle.

    Parameters
    ----------
    gantry_angle : float
        The evaluated gantry angle in degrees.
    limit : float | None
        The gantry limit angle in degrees. None if there is no patient collision risk.
    margin : float | None
        The angular distance to the limit in degrees. Negative once the limit is passed.
    level : CollisionLevel
        The collision level.
    """

    gantry_angle: float
    limit: float | None
    margin: float | None
    level: CollisionLevel


@dataclass(frozen=True)
class CouchCollisionResult:
    """
    Gantry-couch result for one gantry angle.

    Parameters
    ----------
    gantry_angle : float
        The evaluated gantry angle in degrees.
    limit : float
        The gantry limit angle for the rotation sector in degrees.
    margin : float
        The distance in mm between the couch envelope and the collision-free radius. Negative if they intersect.
    level : CollisionLevel
        The collision level.
    warning : CouchWarning | None
        The kind of warning when ``level`` is WARNING.
    """

    gantry_angle: float
    limit: float
    margin: float
    level: CollisionLevel
    warning: CouchWarning | None = None


def rotated_extent(length: float, couch_rotation: float) -> float:
    """Lateral extent of a couch dimension once the couch is rotated ``couch_rotation`` degrees."""
    rotation = math.radians(couch_rotation)
    return length / math.cos(rotation) + ROTATION_ENVELOPE_GROWTH_MM * abs(math.tan(rotation))


def classify_patient_collision(
    gantry_angle: float,
    limit: float | None,
    margin: float | None,
    sector: RotationSector,
) -> CollisionLevel:
    if limit is None or margin is None:
        return CollisionLevel.NONE
    if margin <= 0:
        return CollisionLevel.COLLISION
    if sector.is_right and limit - PATIENT_WARNING_BAND_DEG < gantry_angle < limit:
        return CollisionLevel.WARNING
    if sector.is_left and limit < gantry_angle < limit + PATIENT_WARNING_BAND_DEG:
        return CollisionLevel.WARNING
    return CollisionLevel.NONE


def patient_collision_limit(
    isocenter: ndarray,
    th: float,
    gantry_angle: float,
    sector: RotationSector,
    couch_rotation: float = 0.0,
) -> PatientCollisionResult:
    """Compute the gantry limit angle for a collision with the patient body.

    Parameters
    ----------
    isocenter : ndarray
        The orientation-corrected isocenter in mm.
    th : float
        The vertical separation between couch and isocenter in mm.
    gantry_angle : float
        The gantry angle in degrees.
    sector : RotationSector
        The rotation sector the gantry arrives from.
    couch_rotation : float
        The couch rotation in degrees.
    """
    iso_x = float(isocenter[0])
    a = 260 + abs(iso_x)
    a_dif = rotated_extent(a, couch_rotation) - a
    limit = margin = None
    if iso_x < -PATIENT_LATERAL_THRESHOLD_MM:
        if sector.is_right and gantry_angle > 35:
            limit = (565 + th * 0.65 + (iso_x - a_dif) * 1.1) / 10
            margin = limit - gantry_angle
    elif iso_x > PATIENT_LATERAL_THRESHOLD_MM:
        if sector.is_left and gantry_angle < 325:
            limit = (3600 - (565 + th * 0.65 - (iso_x + a_dif) * 1.1)) / 10
            margin = gantry_angle - limit
    level = classify_patient_collision(gantry_angle, limit, margin, sector)
    return PatientCollisionResult(gantry_angle, limit, margin, level)


def couch_collision_limit(
    th: float,
    isocenter_x: float,
    direction: RotationDirection | str,
    envelope: CollisionEnvelopeParams | None = None,
) -> float:
    """Compute the gantry angle where the gantry envelope reaches the couch edge.

    Parameters
    ----------
    th : float
        The vertical separation between couch and isocenter in mm.
    isocenter_x : float
        The lateral isocenter position in mm.
    direction : RotationDirection | str
        "Left" or "Right".
    envelope : CollisionEnvelopeParams, optional
        The envelope used for the couch height and half width. Defaults to the catalog reference envelope.

    Returns
    -------
    float
        The limit in degrees; within [215, 260] for "Left" and [100, 145] for "Right" when alpha >= 0.
    """
    try:
        direction = RotationDirection(direction)
    except ValueError:
        raise ValueError(f"The gantry rotation direction is not defined correctly: {direction}") from None
    envelope = envelope or DEFAULT_CATALOG.reference_envelope
    height = th + envelope.couch_height
    if direction is RotationDirection.LEFT:
        # 360 - limit = 180 - 35 - alpha, 35 being the approximate angle between central axis and gantry edge
        alpha = _couch_edge_angle(envelope.half_width + isocenter_x, height)
        return min(COUCH_LIMIT_LEFT_MAX, COUCH_LIMIT_LEFT_BASE + alpha)
    # limit + 35 + alpha = 180
    alpha = _couch_edge_angle(envelope.half_width - isocenter_x, height)
    return max(COUCH_LIMIT_RIGHT_MIN, COUCH_LIMIT_RIGHT_BASE - alpha)


def _couch_edge_angle(half_width: float, height: float) -> float:
    """Angle in degrees, seen from the isocenter, between the vertical and the couch edge."""
    if height == 0:
        return math.copysign(90.0, half_width)
    return math.degrees(math.atan(half_width / height))


def couch_collision_margin(
    machine: MachineDefinition,
    couch_rotation: float,
    th: float,
    isocenter: ndarray,
    sector: RotationSector,
) -> float:
    """Distance in mm between the couch corner and the gantry collision-free radius.

    ExactCouch machines use one envelope, IGRTCouch machines the smaller margin of the inner and outer envelopes.
    """
    expected = ENVELOPES_PER_COUCH_TYPE.get(machine.couch_type) if isinstance(machine.couch_type, CouchType) else None
    if expected is None:
        raise UnsupportedCouchTypeError(f"Machine {machine.machine_id} has no couch type with a collision model")
    iso_x = float(isocenter[0])
    margins = []
    for envelope in machine.primary_region.envelopes[:expected]:
        half_width = envelope.half_width + iso_x if sector.is_left else envelope.half_width - iso_x
        half_width = rotated_extent(half_width, couch_rotation)
        distance = math.hypot(envelope.couch_height + th, half_width)
        margins.append(envelope.free_radius - distance)
    return min(margins)


def classify_couch_collision(
    gantry_angle: float,
    sector: RotationSector,
    limit_left: float,
    limit_right: float,
    margin: float,
    safety_margin_gantry_angle: float,
    safety_margin_distance: float,
) -> tuple[CollisionLevel, CouchWarning | None]:
    """Classify a gantry angle against the couch limits.

    Right sector (left mirrors it), with ``L`` the limit, ``g`` the gantry angle safety margin and ``s`` the
    distance safety margin:

    * angle < L - g: no risk.
    * L - g <= angle <= L: warning (gantry near couch) if margin <= 0, otherwise no risk.
    * angle > L: collision if margin <= 0, warning (reduced margin) if margin <= s, otherwise no risk.

    An angle exactly at the limit falls in the near band, so a margin of 0 there is a warning rather than a
    collision. The Eclipse plug-in closed the band with ``angle < L`` and left ``angle == L`` to the collision rules.
    """
    if sector.is_right:
        limit = limit_right
        clear = gantry_angle < limit - safety_margin_gantry_angle
        passed = gantry_angle > limit
    else:
        limit = limit_left
        clear = gantry_angle > limit + safety_margin_gantry_angle
        passed = gantry_angle < limit
    if clear:
        return CollisionLevel.NONE, None
    if not passed:
        if margin <= 0:
            return CollisionLevel.WARNING, CouchWarning.GANTRY_NEAR_COUCH
        return CollisionLevel.NONE, None
    if margin <= 0:
        return CollisionLevel.COLLISION, None
    if margin <= safety_margin_distance:
        return CollisionLevel.WARNING, CouchWarning.REDUCED_MARGIN
    return CollisionLevel.NONE, None


class PatientCollisionModel:
    """Gantry-patient collision channel."""

    def evaluate(
        self,
        isocenter: ndarray,
        th: float,
        gantry_angle: float,
        sector: RotationSector,
        couch_rotation: float = 0.0,
    ) -> PatientCollisionResult:
        return patient_collision_limit(isocenter, th, gantry_angle, sector, couch_rotation)


class CouchCollisionModel:
    """Gantry-couch collision channel.

    The limit angles are computed with a single reference envelope while the margin uses the envelopes of the
    machine the beam is planned on.
    """

    def __init__(
        self,
        config: SafetyConfig = DEFAULT_SAFETY_CONFIG,
        reference_envelope: CollisionEnvelopeParams | None = None,
    ):
        self.config = config
        self.reference_envelope = reference_envelope or DEFAULT_CATALOG.reference_envelope

    def limits(self, th: float, isocenter_x: float) -> tuple[float, float]:
        """Return the (left, right) couch limit angles."""
        return (
            couch_collision_limit(th, isocenter_x, RotationDirection.LEFT, self.reference_envelope),
            couch_collision_limit(th, isocenter_x, RotationDirection.RIGHT, self.reference_envelope),
        )

    def evaluate(
        self,
        machine: MachineDefinition,
        isocenter: ndarray,
        th: float,
        gantry_angle: float,
        sector: RotationSector,
        couch_rotation: float = 0.0,
    ) -> CouchCollisionResult:
        limit_left, limit_right = self.limits(th, float(isocenter[0]))
        margin = couch_collision_margin(machine, couch_rotation, th, isocenter, sector)
        level, warning = classify_couch_collision(
            gantry_angle,
            sector,
            limit_left,
            limit_right,
            margin,
            self.config.safety_margin_gantry_angle,
            self.config.safety_margin_distance,
        )
        limit = limit_left if sector.is_left else limit_right
        logger.debug(
            f"Couch channel: gantry={gantry_angle:.1f} limit={limit:.1f} margin={margin:.1f}mm level={level.name}"
        )
        return CouchCollisionResult(gantry_angle, limit, margin, level, warning)
