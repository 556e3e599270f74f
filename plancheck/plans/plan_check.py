import logging
from collections.abc import Sequence

from pydicom import Dataset

from plancheck.collision.config import SafetyConfig, DEFAULT_SAFETY_CONFIG
from plancheck.collision.couch_position import (
    INVALID_COUCH_POSITION_MESSAGE,
    resolve_couch_vert_position,
)
from plancheck.collision.evaluator import CollisionEvaluator
from plancheck.collision.gantry_direction import extended_gantry_advice
from plancheck.collision.machine import MachineCatalog, MachineDefinition, DEFAULT_CATALOG
from plancheck.collision.report import CollisionReport, PlanCheckReport
from plancheck.plans.beam import BeamGeometry, beams_from_dicom, isocenters
from plancheck.plans.repository import PlanRepository
from plancheck.plans.structures import (
    Structure,
    couch_hu_mismatches,
    couch_inserted,
    inserted_couch_matches_machine,
    machine_has_correct_couch,
    structures_from_rtstruct,
    structures_with_assigned_hu,
)
from plancheck.utils import couch_rotation_within

logger = logging.getLogger(__name__)

COUCH_COLLISION_CHECK = "Collision with couch"
PATIENT_COLLISION_CHECK = "Collision with patient"
COUCH_INSERTED_CHECK = "Couch inserted"
COUCH_HU_CHECK = "Couch HUs assigned"
TRILOGY_COUCH_CHECK = "Trilogy Couch"
TRILOGY_MACHINE_ID = "Trilogy"


def _plan_machine(beams: Sequence[BeamGeometry], catalog: MachineCatalog) -> MachineDefinition | None:
    """The machine of the first beam, if it is in the catalog."""
    if not beams:
        return None
    machine_id = beams[0].machine_id
    if machine_id not in catalog:
        logger.warning(f"Machine '{machine_id}' is not in the machine catalog")
        return None
    return catalog.lookup(machine_id)


def check_couch_rotation(
    beams: Sequence[BeamGeometry], report: PlanCheckReport, config: SafetyConfig = DEFAULT_SAFETY_CONFIG
) -> None:
    if any(not couch_rotation_within(b.couch_rotation, config.max_couch_rot_warning) for b in beams):
        report.add_warning(f"Couch Rotation > {config.max_couch_rot_warning:g} degrees.")


def check_couch_structures(
    beams: Sequence[BeamGeometry],
    structures: Sequence[Structure],
    report: PlanCheckReport,
    catalog: MachineCatalog = DEFAULT_CATALOG,
) -> None:
    """Verify the inserted couch: model of the plan machine, HUs of its parts, and the couch mandatory on Trilogy."""
    if any(b.machine_id == TRILOGY_MACHINE_ID for b in beams):
        if not machine_has_correct_couch(structures, TRILOGY_MACHINE_ID, catalog):
            report.add_verification(TRILOGY_COUCH_CHECK, False)

    machine = _plan_machine(beams, catalog)
    if couch_inserted(structures) and machine is not None:
        if inserted_couch_matches_machine(structures, machine):
            report.add_verification(COUCH_INSERTED_CHECK, True)
            mismatches = couch_hu_mismatches(structures, machine)
            report.add_verification(COUCH_HU_CHECK, not mismatches)
            if mismatches:
                report.add_warning("Verify the couch HUs assigned: \n" + "\n".join(mismatches))
        else:
            report.add_verification(COUCH_INSERTED_CHECK, False)
            report.add_warning("The couch model inserted doesn't correspond to the machine used.")

    assigned = structures_with_assigned_hu(structures)
    if assigned:
        report.add_warning("Volumes with assigned HUs: \n" + "\n".join(assigned))


def check_plan_collisions(
    beams: Sequence[BeamGeometry],
    structures: Sequence[Structure],
    ct_couch_vrt_cm: float | None = None,
    config: SafetyConfig = DEFAULT_SAFETY_CONFIG,
    catalog: MachineCatalog = DEFAULT_CATALOG,
    report: PlanCheckReport | None = None,
    max_workers: int | None = None,
) -> PlanCheckReport:
    """Run the couch and collision checks of a plan.

    Parameters
    ----------
    beams : Sequence[BeamGeometry]
        The treatment beams of the plan.
    structures : Sequence[Structure]
        The structures of the structure set the plan is calculated on.
    ct_couch_vrt_cm : float, optional
        The couch vertical reading of the CT series in cm. The couch structure is used when absent.
    config : SafetyConfig
        The collision safety settings.
    catalog : MachineCatalog
        The machine definitions.
    report : PlanCheckReport, optional
        Add the results to this report instead of a new one.
    max_workers : int, optional
        Evaluate the beams in a thread pool of this size.
    """
    report = report if report is not None else PlanCheckReport()
    check_couch_rotation(beams, report, config)
    check_couch_structures(beams, structures, report, catalog)

    advice = extended_gantry_advice(beams, config)
    report.add_warning(advice.render(config))

    report.add_information(f"Number of isocenters: {len(isocenters(list(beams)))}")

    machine = _plan_machine(beams, catalog)
    position = resolve_couch_vert_position(ct_couch_vrt_cm, structures, machine, config)
    if not position.is_defined:
        report.add_verification(COUCH_COLLISION_CHECK, False)
        report.add_verification(PATIENT_COLLISION_CHECK, False)
        report.add_warning(INVALID_COUCH_POSITION_MESSAGE)
        return report

    report.add_information(f"Couch vertical position ({position.source.value}): {position.value:.1f} mm")
    evaluator = CollisionEvaluator(position.value, config=config, catalog=catalog)
    collisions = CollisionReport(evaluator.evaluate_plan(beams, max_workers=max_workers), config)
    report.add_verification(COUCH_COLLISION_CHECK, collisions.couch_passed)
    report.add_verification(PATIENT_COLLISION_CHECK, collisions.patient_passed)
    report.add_warning(collisions.render())
    logger.info(
        f"Collision check: couch {'passed' if collisions.couch_passed else 'failed'}, "
        f"patient {'passed' if collisions.patient_passed else 'failed'}"
    )
    return report


def check_plan(
    plan: Dataset,
    structure_set: Dataset,
    repository: PlanRepository | None = None,
    config: SafetyConfig = DEFAULT_SAFETY_CONFIG,
    catalog: MachineCatalog = DEFAULT_CATALOG,
    max_workers: int | None = None,
) -> PlanCheckReport:
    """Run the collision checks on DICOM RT Plan and RT Structure Set datasets.

    Parameters
    ----------
    plan : Dataset
        The RT Plan dataset.
    structure_set : Dataset
        The RT Structure Set dataset referenced by the plan.
    repository : PlanRepository, optional
        Source of the extended range codes and the CT couch vertical reading. Without it the extended range is
        not applied and the couch structure gives the couch position.
    config : SafetyConfig
        The collision safety settings.
    catalog : MachineCatalog
        The machine definitions.
    max_workers : int, optional
        Evaluate the beams in a thread pool of this size.
    """
    structures = structures_from_rtstruct(structure_set)
    codes = {}
    ct_couch_vrt_cm = None
    if repository is not None:
        beam_ids = [str(b.BeamName) for b in plan.BeamSequence]
        codes = repository.get_extended_range_codes(str(plan.SOPInstanceUID), beam_ids)
        series_uid = _ct_series_uid(structure_set)
        if series_uid:
            ct_couch_vrt_cm = repository.get_ct_couch_vertical(series_uid)
    beams = beams_from_dicom(plan, extended_range_codes=codes)
    return check_plan_collisions(
        beams, structures, ct_couch_vrt_cm, config=config, catalog=catalog, max_workers=max_workers
    )


def _ct_series_uid(structure_set: Dataset) -> str | None:
    """The UID of the image series the structure set is drawn on."""
    for frame in structure_set.get("ReferencedFrameOfReferenceSequence", []):
        for study in frame.get("RTReferencedStudySequence", []):
            for series in study.get("RTReferencedSeriesSequence", []):
                return str(series.SeriesInstanceUID)
    return None
