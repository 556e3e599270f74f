"""Couch vertical position relative to the DICOM origin.

Two sources are available: the couch vertical reading stored with the CT slices and the couch structure inserted in
the structure set. The CT reading is preferred. When neither is available the position is undefined and the
collision check can not be performed.
"""
import logging
import math
from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum

from plancheck.collision.config import SafetyConfig, DEFAULT_SAFETY_CONFIG
from plancheck.collision.errors import NotFoundError
from plancheck.collision.machine import MachineCatalog, MachineDefinition
from plancheck.plans.structures import Structure, couch_structures

logger = logging.getLogger(__name__)

INVALID_COUCH_POSITION_MESSAGE = "The couch position value is not valid for collisions calculation."


class CouchPositionSource(Enum):
    CT = "CT"
    STRUCTURE = "Structure"
    UNDEFINED = "Undefined"


@dataclass(frozen=True)
class CouchVerticalPosition:
    """The resolved couch vertical position in mm and where it comes from. ``value`` is None when undefined."""

    value: float | None
    source: CouchPositionSource

    @property
    def is_defined(self) -> bool:
        return self.value is not None


def _is_number(value: float | None) -> bool:
    return value is not None and not math.isnan(value)


def couch_vert_position_from_ct(
    couch_vrt_cm: float | None, config: SafetyConfig = DEFAULT_SAFETY_CONFIG
) -> float | None:
    """Convert the CT couch vertical reading (cm, IEC scale) to the position in mm relative to the DICOM origin.

    Parameters
    ----------
    couch_vrt_cm : float | None
        The couch vertical reading of the CT series in cm. None or NaN if not recorded.
    config : SafetyConfig
        Provides the CT correction in mm.
    """
    if not _is_number(couch_vrt_cm):
        return None
    return couch_vrt_cm * -10 - config.couch_vert_position_ct_correction


def couch_vert_position_from_structure(
    structures: Iterable[Structure], machine: MachineDefinition
) -> float | None:
    """The vertical position of the first couch structure, corrected by the thickness of its couch region.

    Returns None if no couch is inserted, its centre is unknown, or its name is not a region of ``machine``.
    """
    couches = couch_structures(structures)
    if not couches:
        return None
    couch = couches[0]
    if not _is_number(couch.center_y):
        return None
    try:
        region = MachineCatalog.find_region(machine, couch.name)
    except NotFoundError as e:
        logger.warning(f"Couch structure position not usable: {e}")
        return None
    return couch.center_y - region.vert_position_correction


def resolve_couch_vert_position(
    ct_couch_vrt_cm: float | None,
    structures: Iterable[Structure],
    machine: MachineDefinition | None,
    config: SafetyConfig = DEFAULT_SAFETY_CONFIG,
) -> CouchVerticalPosition:
    """Resolve the couch vertical position, preferring the CT reading over the couch structure."""
    ct_position = couch_vert_position_from_ct(ct_couch_vrt_cm, config)
    if ct_position is not None:
        return CouchVerticalPosition(ct_position, CouchPositionSource.CT)
    if machine is not None:
        structure_position = couch_vert_position_from_structure(structures, machine)
        if structure_position is not None:
            return CouchVerticalPosition(structure_position, CouchPositionSource.STRUCTURE)
    logger.warning("Couch vertical position is undefined")
    return CouchVerticalPosition(None, CouchPositionSource.UNDEFINED)
