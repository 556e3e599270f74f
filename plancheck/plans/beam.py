import logging
from dataclasses import dataclass, replace
from enum import Enum, StrEnum
from typing import Self

import numpy as np
from numpy import ndarray
from pydicom import Dataset

from plancheck.collision.errors import UnsupportedOrientationError
from plancheck.collision.geometry import PatientOrientation, correct_isocenter
from plancheck.utils import wrap360

logger = logging.getLogger(__name__)


class Technique(StrEnum):
    ARC = "ARC"
    STATIC = "STATIC"


class ControlPointLabel(Enum):
    START = "Start G"
    END = "End G"


@dataclass(frozen=True)
class BeamGeometry:
    """
    The geometry of a beam as used by the collision model. Derived from the plan, never owned by it.

    Parameters
    ----------
    beam_id : str
        The beam id (name) as shown to the planner.
    machine_id : str
        The treatment machine name.
    raw_isocenter : tuple[float, float, float]
        The isocenter position in the DICOM frame (mm), not corrected by patient orientation.
    patient_orientation : PatientOrientation or str
        The treatment orientation of the plan. A DICOM code with no known orientation is kept as is and makes
        ``isocenter`` raise ``UnsupportedOrientationError``.
    gantry_start : float
        The gantry angle of the first control point in degrees.
    gantry_end : float, optional
        The gantry angle of the last control point in degrees. Required for arcs.
    couch_rotation : float
        The patient support angle in degrees.
    technique : Technique
        Arc or static gantry.
    extended_range_code : str, optional
        The extended range of the Varian auto-sequence (e.g. "EN").
    """

    beam_id: str
    machine_id: str
    raw_isocenter: tuple[float, float, float]
    patient_orientation: PatientOrientation | str
    gantry_start: float
    gantry_end: float | None = None
    couch_rotation: float = 0.0
    technique: Technique = Technique.STATIC
    extended_range_code: str | None = None

    def __post_init__(self):
        if len(self.raw_isocenter) != 3:
            raise ValueError("The isocenter must have exactly 3 coordinates")
        if self.technique == Technique.ARC and self.gantry_end is None:
            raise ValueError(f"Arc beam {self.beam_id} must have an end gantry angle")

    @property
    def isocenter(self) -> ndarray:
        """The isocenter corrected by the patient orientation."""
        return correct_isocenter(self.raw_isocenter, self.patient_orientation)

    def control_points(self) -> list[tuple[ControlPointLabel, float]]:
        """The gantry angles to be evaluated: start and end for arcs, the single angle for static beams."""
        control_points = [(ControlPointLabel.START, float(wrap360(self.gantry_start)))]
        if self.technique == Technique.ARC:
            control_points.append((ControlPointLabel.END, float(wrap360(self.gantry_end))))
        return control_points

    def replace(self, **overrides) -> Self:
        return replace(self, **overrides)

    @classmethod
    def from_dicom(cls, ds: Dataset, beam_idx: int, extended_range_code: str | None = None) -> Self:
        """Load a beam geometry from an RT plan dataset

        Parameters
        ----------
        ds : Dataset
            The dataset of the RT Plan.
        beam_idx : int
            The index of the beam to be loaded (zero indexed, i.e. beam #1 -> ind #0).
        extended_range_code : str, optional
            The extended range code of the beam, usually read from the record and verify database.
        """
        if ds.Modality != "RTPLAN":
            raise ValueError("File is not an RTPLAN file")

        if beam_idx >= len(ds.BeamSequence):
            msg = "beam_idx is larger than the number of beams in the plan (note: use zero indexing)."
            raise ValueError(msg)

        beam = ds.BeamSequence[beam_idx]
        cp0 = beam.ControlPointSequence[0]
        if "IsocenterPosition" not in cp0:
            raise ValueError(f"Beam {beam.BeamName} has no isocenter position")

        # for the next control points the concept is: take the angle if it exists,
        # otherwise keep the previous one
        gantry_end = cp0.GantryAngle
        for cp in beam.ControlPointSequence[1:]:
            gantry_end = getattr(cp, "GantryAngle", gantry_end)

        rotation = cp0.get("GantryRotationDirection", "NONE")
        technique = Technique.ARC if rotation in ("CW", "CC") else Technique.STATIC

        return cls(
            beam_id=str(beam.BeamName),
            machine_id=str(beam.get("TreatmentMachineName", "")),
            raw_isocenter=tuple(float(v) for v in cp0.IsocenterPosition),
            patient_orientation=_patient_orientation(ds, beam),
            gantry_start=float(cp0.GantryAngle),
            gantry_end=float(gantry_end) if technique == Technique.ARC else None,
            couch_rotation=float(cp0.get("PatientSupportAngle", 0.0)),
            technique=technique,
            extended_range_code=extended_range_code,
        )


def beams_from_dicom(
    ds: Dataset,
    extended_range_codes: dict[str, str] | None = None,
    include_setup: bool = True,
) -> list[BeamGeometry]:
    """Load the geometry of every beam in the plan.

    Parameters
    ----------
    ds : Dataset
        The RT Plan dataset.
    extended_range_codes : dict[str, str], optional
        Extended range code per beam id.
    include_setup : bool
        Whether to include setup (imaging) beams. The gantry also drives to their angles.
    """
    extended_range_codes = extended_range_codes or {}
    beams = []
    for idx, beam in enumerate(ds.BeamSequence):
        if not include_setup and beam.get("TreatmentDeliveryType") == "SETUP":
            continue
        code = extended_range_codes.get(str(beam.BeamName))
        beams.append(BeamGeometry.from_dicom(ds, idx, extended_range_code=code))
    return beams


def _patient_orientation(ds: Dataset, beam: Dataset) -> PatientOrientation | str:
    setups = ds.get("PatientSetupSequence")
    if not setups:
        raise ValueError("RTPLAN file must have PatientSetupSequence")
    setup_number = beam.get("ReferencedPatientSetupNumber")
    setup = next(
        (s for s in setups if s.get("PatientSetupNumber") == setup_number),
        setups[0],
    )
    try:
        return PatientOrientation.from_dicom(setup.PatientPosition)
    except UnsupportedOrientationError as e:
        logger.warning(f"Beam {beam.BeamName}: {e}")
        return str(setup.PatientPosition)


def isocenters(beams: list[BeamGeometry]) -> ndarray:
    """Unique raw isocenter positions of the beams, rounded to 0.01 mm."""
    if not beams:
        return np.empty((0, 3))
    positions = np.round(np.array([b.raw_isocenter for b in beams]), 2)
    return np.unique(positions, axis=0)
