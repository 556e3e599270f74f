from pydicom import Dataset
from pydicom.sequence import Sequence as DicomSequence
from pydicom.uid import generate_uid

from plancheck.collision.geometry import PatientOrientation
from plancheck.plans.beam import BeamGeometry, Technique


def create_beam_geometry(**kwargs) -> BeamGeometry:
    return BeamGeometry(
        beam_id=kwargs.get("beam_id", "Field 1"),
        machine_id=kwargs.get("machine_id", "2100CD"),
        raw_isocenter=kwargs.get("raw_isocenter", (0.0, 0.0, 0.0)),
        patient_orientation=kwargs.get("patient_orientation", PatientOrientation.HEAD_FIRST_SUPINE),
        gantry_start=kwargs.get("gantry_start", 0.0),
        gantry_end=kwargs.get("gantry_end"),
        couch_rotation=kwargs.get("couch_rotation", 0.0),
        technique=kwargs.get("technique", Technique.STATIC),
        extended_range_code=kwargs.get("extended_range_code"),
    )


def create_beam_dataset(number: int, **kwargs) -> Dataset:
    """An RT Plan beam item. ``gantry_angles`` holds one angle per control point."""
    gantry_angles = kwargs.get("gantry_angles", [0.0])
    beam = Dataset()
    beam.BeamNumber = number
    beam.BeamName = kwargs.get("beam_name", f"Field {number}")
    beam.TreatmentMachineName = kwargs.get("machine", "2100CD")
    beam.TreatmentDeliveryType = kwargs.get("delivery_type", "TREATMENT")
    beam.ReferencedPatientSetupNumber = kwargs.get("setup_number", 1)
    control_points = []
    for idx, angle in enumerate(gantry_angles):
        cp = Dataset()
        cp.ControlPointIndex = idx
        if idx == 0 or not kwargs.get("sparse_angles", False):
            cp.GantryAngle = angle
        if idx == 0:
            cp.GantryRotationDirection = kwargs.get("rotation", "NONE")
            cp.PatientSupportAngle = kwargs.get("couch_rotation", 0.0)
            cp.IsocenterPosition = list(kwargs.get("isocenter", [0.0, 0.0, 0.0]))
        control_points.append(cp)
    beam.ControlPointSequence = DicomSequence(control_points)
    beam.NumberOfControlPoints = len(control_points)
    return beam


def create_plan_dataset(beams: list[Dataset], patient_position: str = "HFS") -> Dataset:
    ds = Dataset()
    ds.Modality = "RTPLAN"
    ds.SOPInstanceUID = generate_uid()
    patient_setup = Dataset()
    patient_setup.PatientPosition = patient_position
    patient_setup.PatientSetupNumber = 1
    ds.PatientSetupSequence = DicomSequence((patient_setup,))
    ds.BeamSequence = DicomSequence(beams)
    return ds


def create_structure_set_dataset(rois: list[dict], series_uid: str | None = None) -> Dataset:
    """An RT Structure Set. Each roi is a dict with ``name``, and optionally ``description``, ``type``, ``y_range``
    (min and max vertical contour coordinate) and ``hu``."""
    ds = Dataset()
    ds.Modality = "RTSTRUCT"
    ds.SOPInstanceUID = generate_uid()
    roi_items, observations, contours = [], [], []
    for number, roi in enumerate(rois, start=1):
        item = Dataset()
        item.ROINumber = number
        item.ROIName = roi["name"]
        if "description" in roi:
            item.ROIDescription = roi["description"]
        roi_items.append(item)

        observation = Dataset()
        observation.ObservationNumber = number
        observation.ReferencedROINumber = number
        observation.RTROIInterpretedType = roi.get("type", "ORGAN")
        if "hu" in roi:
            prop = Dataset()
            prop.ROIPhysicalProperty = "HU"
            prop.ROIPhysicalPropertyValue = roi["hu"]
            observation.ROIPhysicalPropertiesSequence = DicomSequence((prop,))
        observations.append(observation)

        if "y_range" in roi:
            y_min, y_max = roi["y_range"]
            contour = Dataset()
            contour.ContourGeometricType = "CLOSED_PLANAR"
            contour.ContourData = [-10.0, y_min, 0.0, 10.0, y_min, 0.0, 10.0, y_max, 0.0, -10.0, y_max, 0.0]
            contour.NumberOfContourPoints = 4
            roi_contour = Dataset()
            roi_contour.ReferencedROINumber = number
            roi_contour.ContourSequence = DicomSequence((contour,))
            contours.append(roi_contour)

    ds.StructureSetROISequence = DicomSequence(roi_items)
    ds.RTROIObservationsSequence = DicomSequence(observations)
    ds.ROIContourSequence = DicomSequence(contours)

    if series_uid:
        series = Dataset()
        series.SeriesInstanceUID = series_uid
        study = Dataset()
        study.RTReferencedSeriesSequence = DicomSequence((series,))
        frame = Dataset()
        frame.RTReferencedStudySequence = DicomSequence((study,))
        ds.ReferencedFrameOfReferenceSequence = DicomSequence((frame,))
    return ds
