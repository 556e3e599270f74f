from dataclasses import dataclass
from enum import Enum
from typing import Self

import numpy as np
from numpy import ndarray

from plancheck.collision.errors import UnsupportedOrientationError
from plancheck.utils import wrap360

EXTENDED_NEGATIVE_CODE = "EN"


class PatientOrientation(Enum):
    """Treatment orientation of the patient. Values are the DICOM Patient Position codes."""

    HEAD_FIRST_SUPINE = "HFS"
    HEAD_FIRST_PRONE = "HFP"
    HEAD_FIRST_DECUBITUS_RIGHT = "HFDR"
    HEAD_FIRST_DECUBITUS_LEFT = "HFDL"
    FEET_FIRST_SUPINE = "FFS"
    FEET_FIRST_PRONE = "FFP"
    FEET_FIRST_DECUBITUS_RIGHT = "FFDR"
    FEET_FIRST_DECUBITUS_LEFT = "FFDL"
    SITTING = "SITTING"

    @classmethod
    def from_dicom(cls, patient_position: str) -> Self:
        """Map a DICOM Patient Position (0018,5100) to the orientation. Unknown codes raise ``UnsupportedOrientationError``."""
        try:
            return cls(patient_position.strip().upper())
        except ValueError:
            raise UnsupportedOrientationError(
                f"Patient position '{patient_position}' is not supported"
            ) from None


# Each row of the matrix gives the corrected axis as a signed pick of the raw (x, y, z).
_ORIENTATION_TRANSFORMS = {
    PatientOrientation.HEAD_FIRST_SUPINE: ((1, 0, 0), (0, 1, 0), (0, 0, 1)),
    PatientOrientation.HEAD_FIRST_PRONE: ((-1, 0, 0), (0, -1, 0), (0, 0, 1)),
    PatientOrientation.HEAD_FIRST_DECUBITUS_RIGHT: ((0, 1, 0), (-1, 0, 0), (0, 0, 1)),
    PatientOrientation.HEAD_FIRST_DECUBITUS_LEFT: ((0, -1, 0), (1, 0, 0), (0, 0, 1)),
    PatientOrientation.FEET_FIRST_SUPINE: ((-1, 0, 0), (0, 1, 0), (0, 0, -1)),
    PatientOrientation.FEET_FIRST_PRONE: ((1, 0, 0), (0, -1, 0), (0, 0, -1)),
    PatientOrientation.FEET_FIRST_DECUBITUS_RIGHT: ((0, -1, 0), (-1, 0, 0), (0, 0, -1)),
    PatientOrientation.FEET_FIRST_DECUBITUS_LEFT: ((0, 1, 0), (1, 0, 0), (0, 0, -1)),
}


def correct_isocenter(
    raw_isocenter: ndarray | tuple[float, float, float],
    orientation: PatientOrientation | str,
) -> ndarray:
    """Transform an isocenter position from the DICOM frame into the patient-orientation corrected frame.

    Parameters
    ----------
    raw_isocenter : array-like
        The (x, y, z) isocenter position in mm as stored in the plan.
    orientation : PatientOrientation or str
        The treatment orientation of the plan. Orientations without a correction (e.g. sitting or an unknown DICOM
        code) raise ``UnsupportedOrientationError``.

    Returns
    -------
    ndarray
        The corrected (x, y, z) position.
    """
    try:
        transform = _ORIENTATION_TRANSFORMS[orientation]
    except KeyError:
        raise UnsupportedOrientationError(
            f"Isocenter correction is not defined for orientation {orientation}"
        ) from None
    raw = np.asarray(raw_isocenter, dtype=float)
    if raw.shape != (3,):
        raise ValueError("The isocenter must have exactly 3 coordinates")
    return np.array(transform, dtype=float) @ raw


def vertical_separation(couch_vert_position: float, isocenter: ndarray) -> float:
    """The table height relative to the isocenter (TH), i.e. the vertical distance between couch top and isocenter."""
    return float(couch_vert_position - isocenter[1])


class RotationDirection(Enum):
    LEFT = "Left"
    RIGHT = "Right"


@dataclass(frozen=True)
class RotationSector:
    """The sector the gantry travels through to reach its angle.

    Left is (180, 360), right is [0, 180], unless the extended range swaps them.
    """

    is_left: bool
    is_right: bool

    @property
    def direction(self) -> RotationDirection:
        return RotationDirection.LEFT if self.is_left else RotationDirection.RIGHT


def resolve_sector(gantry_angle: float, extended_range_code: str | None = None) -> RotationSector:
    """Resolve the rotation sector for a gantry angle.

    Parameters
    ----------
    gantry_angle : float
        The gantry angle in degrees. Wrapped to [0, 360).
    extended_range_code : str, optional
        The extended range of the Varian auto-sequence (NN, NE, EN, EE). ``"EN"`` swaps the sectors.
    """
    is_right = 0 <= wrap360(gantry_angle) <= 180
    if extended_range_code == EXTENDED_NEGATIVE_CODE:
        is_right = not is_right
    return RotationSector(is_left=not is_right, is_right=is_right)
