import logging
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum

from plancheck.collision.config import SafetyConfig, DEFAULT_SAFETY_CONFIG
from plancheck.collision.errors import CollisionCheckError
from plancheck.collision.geometry import resolve_sector, vertical_separation
from plancheck.collision.limits import (
    CollisionLevel,
    CouchCollisionModel,
    CouchCollisionResult,
    PatientCollisionModel,
    PatientCollisionResult,
)
from plancheck.collision.machine import MachineCatalog, DEFAULT_CATALOG
from plancheck.plans.beam import BeamGeometry, ControlPointLabel
from plancheck.utils import couch_rotation_within

logger = logging.getLogger(__name__)


class EvaluationState(Enum):
    NOT_EVALUATED = "not evaluated"
    EVALUATED = "evaluated"


class SkipReason(Enum):
    COUCH_ROTATION = "couch rotation out of range"
    ERROR = "error"


@dataclass(frozen=True)
class BeamCollisionResult:
    """
    Collision result of one control point of one beam.

    Parameters
    ----------
    beam_id : str
        The beam id.
    label : ControlPointLabel
        Whether this is the start or end gantry angle.
    gantry_angle : float
        The evaluated gantry angle in degrees.
    state : EvaluationState
        Whether the geometric model was evaluated.
    patient : PatientCollisionResult | None
        The patient channel. None when not evaluated.
    couch : CouchCollisionResult | None
        The couch channel. None when not evaluated.
    skip_reason : SkipReason | None
        Why the control point was not evaluated.
    diagnostic : str | None
        Human-readable detail of a skipped evaluation.
    """

    beam_id: str
    label: ControlPointLabel
    gantry_angle: float
    state: EvaluationState
    patient: PatientCollisionResult | None = None
    couch: CouchCollisionResult | None = None
    skip_reason: SkipReason | None = None
    diagnostic: str | None = None

    @property
    def evaluated(self) -> bool:
        return self.state == EvaluationState.EVALUATED

    @property
    def patient_level(self) -> CollisionLevel:
        return self.patient.level if self.patient else CollisionLevel.NONE

    @property
    def couch_level(self) -> CollisionLevel:
        return self.couch.level if self.couch else CollisionLevel.NONE


class CollisionEvaluator:
    """Evaluate the gantry collision model for the beams of a plan."""

    def __init__(
        self,
        couch_vert_position: float,
        config: SafetyConfig = DEFAULT_SAFETY_CONFIG,
        catalog: MachineCatalog = DEFAULT_CATALOG,
        patient_model: PatientCollisionModel | None = None,
        couch_model: CouchCollisionModel | None = None,
    ):
        """
        Parameters
        ----------
        couch_vert_position : float
            The couch vertical position relative to the DICOM origin in mm.
        config : SafetyConfig
            The collision safety settings.
        catalog : MachineCatalog
            The machine definitions.
        patient_model : PatientCollisionModel, optional
            The gantry-patient model.
        couch_model : CouchCollisionModel, optional
            The gantry-couch model. Defaults to one built from ``config`` and the catalog reference envelope.
        """
        self.couch_vert_position = couch_vert_position
        self.config = config
        self.catalog = catalog
        self.patient_model = patient_model or PatientCollisionModel()
        self.couch_model = couch_model or CouchCollisionModel(config, catalog.reference_envelope)

    def is_evaluable(self, beam: BeamGeometry) -> bool:
        """Whether the couch rotation of the beam is small enough for the geometric model."""
        return couch_rotation_within(beam.couch_rotation, self.config.max_couch_rot_calc)

    def evaluate(self, beam: BeamGeometry) -> list[BeamCollisionResult]:
        """Evaluate every relevant control point of the beam.

        Raises the collision errors (unknown machine, couch type or orientation); use ``evaluate_plan`` to have
        them converted into not-evaluated results.
        """
        if not self.is_evaluable(beam):
            logger.warning(
                f"Beam {beam.beam_id}: couch rotation {beam.couch_rotation} deg exceeds "
                f"{self.config.max_couch_rot_calc} deg, collision not evaluated"
            )
            return self._not_evaluated(
                beam,
                SkipReason.COUCH_ROTATION,
                f"Couch Rotation > {self.config.max_couch_rot_calc:g} degrees",
            )

        machine = self.catalog.lookup(beam.machine_id)
        isocenter = beam.isocenter
        th = vertical_separation(self.couch_vert_position, isocenter)
        results = []
        for label, gantry_angle in beam.control_points():
            sector = resolve_sector(gantry_angle, beam.extended_range_code)
            patient = self.patient_model.evaluate(isocenter, th, gantry_angle, sector, beam.couch_rotation)
            couch = self.couch_model.evaluate(machine, isocenter, th, gantry_angle, sector, beam.couch_rotation)
            logger.debug(
                f"Beam {beam.beam_id} ({label.value}): TH={th:.1f}mm sector={sector.direction.value} "
                f"patient={patient.level.name} couch={couch.level.name}"
            )
            results.append(
                BeamCollisionResult(
                    beam_id=beam.beam_id,
                    label=label,
                    gantry_angle=gantry_angle,
                    state=EvaluationState.EVALUATED,
                    patient=patient,
                    couch=couch,
                )
            )
        return results

    def evaluate_plan(
        self, beams: Sequence[BeamGeometry], max_workers: int | None = None
    ) -> list[BeamCollisionResult]:
        """Evaluate all beams. Errors of a single beam are converted into not-evaluated results.

        Parameters
        ----------
        beams : Sequence[BeamGeometry]
            The beams of the plan.
        max_workers : int, optional
            Evaluate the beams in a thread pool of this size. Results keep the order of ``beams``.
        """
        if max_workers and max_workers > 1:
            with ThreadPoolExecutor(max_workers=max_workers) as executor:
                per_beam = list(executor.map(self._evaluate_isolated, beams))
        else:
            per_beam = [self._evaluate_isolated(beam) for beam in beams]
        return [result for results in per_beam for result in results]

    def _evaluate_isolated(self, beam: BeamGeometry) -> list[BeamCollisionResult]:
        try:
            return self.evaluate(beam)
        except CollisionCheckError as e:
            logger.warning(f"Beam {beam.beam_id}: collision not evaluated: {e}")
            return self._not_evaluated(beam, SkipReason.ERROR, str(e))

    @staticmethod
    def _not_evaluated(beam: BeamGeometry, reason: SkipReason, diagnostic: str) -> list[BeamCollisionResult]:
        return [
            BeamCollisionResult(
                beam_id=beam.beam_id,
                label=label,
                gantry_angle=gantry_angle,
                state=EvaluationState.NOT_EVALUATED,
                skip_reason=reason,
                diagnostic=diagnostic,
            )
            for label, gantry_angle in beam.control_points()
        ]
