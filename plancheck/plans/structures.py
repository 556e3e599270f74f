from collections.abc import Iterable
from dataclasses import dataclass

import numpy as np
from pydicom import Dataset

from plancheck.collision.machine import MachineCatalog, MachineDefinition
from plancheck.utils import like

COUCH_DICOM_TYPE = "SUPPORT"


@dataclass(frozen=True)
class Structure:
    """
    A structure of the structure set, reduced to what the plan checks need.

    Parameters
    ----------
    structure_id : str
        The structure id (DICOM ROI Name).
    name : str
        The structure name. For couch structures it is the couch model (region) name.
    dicom_type : str
        The RT ROI Interpreted Type, e.g. "EXTERNAL", "PTV" or "SUPPORT".
    center_y : float | None
        The vertical coordinate of the structure centre in mm. None if the structure has no contours.
    assigned_hu : float | None
        The HU assigned to the structure, if any.
    """

    structure_id: str
    name: str
    dicom_type: str
    center_y: float | None = None
    assigned_hu: float | None = None

    @property
    def is_couch(self) -> bool:
        return self.dicom_type == COUCH_DICOM_TYPE


def structures_from_rtstruct(ds: Dataset, hu_property: str = "HU") -> list[Structure]:
    """Load the structures of an RT Structure Set dataset

    Parameters
    ----------
    ds : Dataset
        The dataset of the RT Structure Set.
    hu_property : str
        The ROI Physical Property under which the treatment planning system exports the assigned HU.
    """
    if ds.Modality != "RTSTRUCT":
        raise ValueError("File is not an RTSTRUCT file")

    observations = {obs.ReferencedROINumber: obs for obs in ds.get("RTROIObservationsSequence", [])}
    contours = {rc.ReferencedROINumber: rc for rc in ds.get("ROIContourSequence", [])}

    structures = []
    for roi in ds.get("StructureSetROISequence", []):
        observation = observations.get(roi.ROINumber)
        dicom_type = observation.get("RTROIInterpretedType", "") if observation is not None else ""
        structures.append(
            Structure(
                structure_id=str(roi.ROIName),
                name=str(roi.get("ROIDescription") or roi.ROIName),
                dicom_type=str(dicom_type or ""),
                center_y=_contour_center_y(contours.get(roi.ROINumber)),
                assigned_hu=_assigned_hu(observation, hu_property),
            )
        )
    return structures


def _contour_center_y(roi_contour: Dataset | None) -> float | None:
    """The vertical centre of the bounding box of all contour points."""
    if roi_contour is None:
        return None
    points = [np.asarray(c.ContourData, dtype=float).reshape(-1, 3) for c in roi_contour.get("ContourSequence", [])]
    if not points:
        return None
    y = np.concatenate(points)[:, 1]
    return float((y.min() + y.max()) / 2)


def _assigned_hu(observation: Dataset | None, hu_property: str) -> float | None:
    if observation is None:
        return None
    for prop in observation.get("ROIPhysicalPropertiesSequence", []):
        if prop.get("ROIPhysicalProperty") == hu_property:
            return float(prop.ROIPhysicalPropertyValue)
    return None


def couch_structures(structures: Iterable[Structure]) -> list[Structure]:
    return [s for s in structures if s.is_couch]


def couch_inserted(structures: Iterable[Structure]) -> bool:
    """Whether any couch (SUPPORT) structure is in the structure set."""
    return bool(couch_structures(structures))


def inserted_couch_matches_machine(structures: Iterable[Structure], machine: MachineDefinition) -> bool:
    """Whether the name of an inserted couch structure is a couch region of ``machine``."""
    region_names = {region.name for region in machine.regions}
    return any(s.name in region_names for s in couch_structures(structures))


def couch_hu_mismatches(structures: Iterable[Structure], machine: MachineDefinition) -> list[str]:
    """List the couch structures whose assigned HU differs (at 0.1 HU) from the couch part of the same id.

    Returns one message line per mismatch, empty if all couch HUs are correct.
    """
    mismatches = []
    for structure in couch_structures(structures):
        if structure.assigned_hu is None:
            continue
        region = next((r for r in machine.regions if r.name == structure.name), None)
        if region is None:
            continue
        for part in region.parts:
            if part.piece_id == structure.structure_id and round(part.hu, 1) != round(structure.assigned_hu, 1):
                mismatches.append(f" - {structure.structure_id}: {structure.assigned_hu:g}HU")
    return mismatches


def structures_with_assigned_hu(structures: Iterable[Structure]) -> list[str]:
    """List the non-couch structures that have an assigned HU."""
    return [
        f" - {s.structure_id}: {round(s.assigned_hu):d} HU."
        for s in structures
        if s.assigned_hu is not None and not s.is_couch
    ]


def structures_matching(structures: Iterable[Structure], pattern: str) -> list[Structure]:
    """The structures whose id matches the wildcard ``pattern`` (e.g. ``"*DRR*"``)."""
    return [s for s in structures if like(s.structure_id, pattern)]


def machine_has_correct_couch(
    structures: Iterable[Structure], machine_id: str, catalog: MachineCatalog
) -> bool:
    """Whether the inserted couch matches ``machine_id``. False for machines missing from the catalog."""
    if machine_id not in catalog:
        return False
    return inserted_couch_matches_machine(structures, catalog.lookup(machine_id))
