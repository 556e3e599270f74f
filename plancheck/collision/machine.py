from collections.abc import Iterable, Iterator
from dataclasses import dataclass, replace
from enum import Enum
from typing import Self

from plancheck.collision.errors import NotFoundError


class CouchType(Enum):
    EXACT_COUCH = "ExactCouch"
    IGRT_COUCH = "IGRTCouch"


# Number of envelope entries each couch type is modelled with (IGRT: inner and outer).
ENVELOPES_PER_COUCH_TYPE = {
    CouchType.EXACT_COUCH: 1,
    CouchType.IGRT_COUCH: 2,
}


@dataclass(frozen=True)
class CollisionEnvelopeParams:
    """
    Parameters of the couch collision envelope.

    Parameters
    ----------
    couch_height : int
        The couch height ``a`` in mm.
    half_width : int
        Half of the couch width ``b`` in mm.
    free_radius : int
        The gantry collision-free radius ``r`` in mm.
    """

    couch_height: int
    half_width: int
    free_radius: int


@dataclass(frozen=True)
class CouchPart:
    """A named sub-piece of a couch model and the HU it is expected to carry in the structure set."""

    piece_id: str
    hu: float


@dataclass(frozen=True)
class CouchRegion:
    """
    A couch model as it is inserted in the structure set (e.g. thin, medium or thick IGRT couch).

    Parameters
    ----------
    name : str
        The name of the region. Must match the name of the inserted couch structure.
    vert_position_correction : float
        The correction in mm applied to the couch structure vertical position.
    envelopes : tuple[CollisionEnvelopeParams, ...]
        The collision envelope parameters.
    parts : tuple[CouchPart, ...]
        The couch parts with their expected HU.
    """

    name: str
    vert_position_correction: float
    envelopes: tuple[CollisionEnvelopeParams, ...]
    parts: tuple[CouchPart, ...] = ()

    def replace(self, **overrides) -> Self:
        return replace(self, **overrides)


@dataclass(frozen=True)
class MachineDefinition:
    """A treatment machine and the couch it is equipped with."""

    machine_id: str
    couch_type: CouchType
    regions: tuple[CouchRegion, ...]

    def __post_init__(self):
        if not self.regions:
            raise ValueError(f"Machine {self.machine_id} must have at least one couch region")
        expected = ENVELOPES_PER_COUCH_TYPE.get(self.couch_type)
        for region in self.regions:
            if expected is not None and len(region.envelopes) != expected:
                raise ValueError(
                    f"{self.couch_type.value} region '{region.name}' must have {expected} envelope(s), "
                    f"got {len(region.envelopes)}"
                )

    @property
    def primary_region(self) -> CouchRegion:
        """The region whose envelopes are used for the couch collision margin."""
        return self.regions[0]

    def replace(self, **overrides) -> Self:
        return replace(self, **overrides)


class MachineCatalog:
    """Read-only registry of the machine definitions."""

    def __init__(self, machines: Iterable[MachineDefinition], reference_machine_id: str):
        """
        Parameters
        ----------
        machines : Iterable[MachineDefinition]
            The machine definitions. Machine ids must be unique.
        reference_machine_id : str
            The machine whose first envelope is used to compute the couch collision limit angles.
        """
        self._machines: dict[str, MachineDefinition] = {}
        for machine in machines:
            if machine.machine_id in self._machines:
                raise ValueError(f"Duplicated machine id: {machine.machine_id}")
            self._machines[machine.machine_id] = machine
        self.reference_machine_id = reference_machine_id
        self.reference_envelope = self.lookup(reference_machine_id).primary_region.envelopes[0]

    def __iter__(self) -> Iterator[MachineDefinition]:
        return iter(self._machines.values())

    def __contains__(self, machine_id: str) -> bool:
        return machine_id in self._machines

    def lookup(self, machine_id: str) -> MachineDefinition:
        try:
            return self._machines[machine_id]
        except KeyError:
            raise NotFoundError(f"Machine '{machine_id}' is not defined") from None

    @staticmethod
    def find_region(machine: MachineDefinition, region_name: str) -> CouchRegion:
        """Return the couch region whose name matches (case-sensitive) ``region_name``."""
        for region in machine.regions:
            if region.name == region_name:
                return region
        raise NotFoundError(
            f"Couch region '{region_name}' is not defined for machine '{machine.machine_id}'"
        )


IGRT_COUCH_PARTS = (
    CouchPart(piece_id="CouchInterior", hu=-1000),
    CouchPart(piece_id="CouchSurface", hu=-300),
)
IGRT_COUCH_ENVELOPES = (
    CollisionEnvelopeParams(couch_height=70, half_width=215, free_radius=395),
    CollisionEnvelopeParams(couch_height=20, half_width=270, free_radius=395),
)
EXACT_COUCH_PARTS = (
    CouchPart(piece_id="CouchRailLeft", hu=200),
    CouchPart(piece_id="CouchRailRight", hu=200),
)
# rails out
EXACT_COUCH_ENVELOPES = (
    CollisionEnvelopeParams(couch_height=110, half_width=240, free_radius=400),
)

IGRT_COUCH_REGIONS = (
    CouchRegion("Exact IGRT Couch, medium", 31.0, IGRT_COUCH_ENVELOPES, IGRT_COUCH_PARTS),
    CouchRegion("Exact IGRT Couch, thick", 36.1, IGRT_COUCH_ENVELOPES, IGRT_COUCH_PARTS),
    CouchRegion("Exact IGRT Couch, thin", 26.6, IGRT_COUCH_ENVELOPES, IGRT_COUCH_PARTS),
)
EXACT_COUCH_REGIONS = (
    CouchRegion("Exact Couch with Flat panel", 13.8, EXACT_COUCH_ENVELOPES, EXACT_COUCH_PARTS),
    CouchRegion("Exact Couch with Unipanel, large window", 14.4, EXACT_COUCH_ENVELOPES, EXACT_COUCH_PARTS),
    CouchRegion("Exact Couch with Unipanel, small windows", 13.5, EXACT_COUCH_ENVELOPES, EXACT_COUCH_PARTS),
)

REFERENCE_MACHINE_ID = "2100CD"

DEFAULT_CATALOG = MachineCatalog(
    (
        MachineDefinition("Trilogy", CouchType.IGRT_COUCH, IGRT_COUCH_REGIONS),
        MachineDefinition("iX", CouchType.IGRT_COUCH, IGRT_COUCH_REGIONS),
        MachineDefinition("URTE", CouchType.EXACT_COUCH, EXACT_COUCH_REGIONS),
        MachineDefinition(REFERENCE_MACHINE_ID, CouchType.EXACT_COUCH, EXACT_COUCH_REGIONS),
    ),
    reference_machine_id=REFERENCE_MACHINE_ID,
)
