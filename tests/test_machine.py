from unittest import TestCase

from plancheck.collision.errors import NotFoundError
from plancheck.collision.machine import (
    CollisionEnvelopeParams,
    CouchRegion,
    CouchType,
    DEFAULT_CATALOG,
    EXACT_COUCH_ENVELOPES,
    EXACT_COUCH_REGIONS,
    IGRT_COUCH_REGIONS,
    MachineCatalog,
    MachineDefinition,
)


class TestMachineCatalog(TestCase):
    def test_builtin_machines(self):
        self.assertEqual(len(DEFAULT_CATALOG), 4)
        for machine_id in ("Trilogy", "iX", "URTE", "2100CD"):
            self.assertIn(machine_id, DEFAULT_CATALOG)

    def test_couch_types(self):
        self.assertEqual(DEFAULT_CATALOG.lookup("Trilogy").couch_type, CouchType.IGRT_COUCH)
        self.assertEqual(DEFAULT_CATALOG.lookup("iX").couch_type, CouchType.IGRT_COUCH)
        self.assertEqual(DEFAULT_CATALOG.lookup("URTE").couch_type, CouchType.EXACT_COUCH)
        self.assertEqual(DEFAULT_CATALOG.lookup("2100CD").couch_type, CouchType.EXACT_COUCH)

    def test_lookup_unknown(self):
        with self.assertRaises(NotFoundError):
            DEFAULT_CATALOG.lookup("Halcyon")

    def test_not_found_is_lookup_error(self):
        with self.assertRaises(LookupError):
            DEFAULT_CATALOG.lookup("Halcyon")

    def test_find_region(self):
        machine = DEFAULT_CATALOG.lookup("Trilogy")
        region = MachineCatalog.find_region(machine, "Exact IGRT Couch, thick")
        self.assertEqual(region.vert_position_correction, 36.1)
        self.assertEqual(len(region.envelopes), 2)

    def test_find_region_is_case_sensitive(self):
        machine = DEFAULT_CATALOG.lookup("Trilogy")
        with self.assertRaises(NotFoundError):
            MachineCatalog.find_region(machine, "exact igrt couch, thick")

    def test_find_region_of_other_machine(self):
        machine = DEFAULT_CATALOG.lookup("2100CD")
        with self.assertRaises(NotFoundError):
            MachineCatalog.find_region(machine, "Exact IGRT Couch, thick")

    def test_reference_envelope(self):
        self.assertEqual(
            DEFAULT_CATALOG.reference_envelope,
            CollisionEnvelopeParams(couch_height=110, half_width=240, free_radius=400),
        )

    def test_iterate(self):
        self.assertEqual([m.machine_id for m in DEFAULT_CATALOG], ["Trilogy", "iX", "URTE", "2100CD"])

    def test_duplicated_machine(self):
        machine = MachineDefinition("A", CouchType.EXACT_COUCH, EXACT_COUCH_REGIONS)
        with self.assertRaises(ValueError):
            MachineCatalog([machine, machine], reference_machine_id="A")

    def test_unknown_reference_machine(self):
        machine = MachineDefinition("A", CouchType.EXACT_COUCH, EXACT_COUCH_REGIONS)
        with self.assertRaises(NotFoundError):
            MachineCatalog([machine], reference_machine_id="B")


class TestMachineDefinition(TestCase):
    def test_no_regions(self):
        with self.assertRaises(ValueError):
            MachineDefinition("A", CouchType.EXACT_COUCH, ())

    def test_igrt_needs_two_envelopes(self):
        region = CouchRegion("Exact IGRT Couch, medium", 31.0, EXACT_COUCH_ENVELOPES)
        with self.assertRaises(ValueError):
            MachineDefinition("A", CouchType.IGRT_COUCH, (region,))

    def test_exact_needs_one_envelope(self):
        with self.assertRaises(ValueError):
            MachineDefinition("A", CouchType.EXACT_COUCH, IGRT_COUCH_REGIONS)

    def test_primary_region(self):
        machine = DEFAULT_CATALOG.lookup("URTE")
        self.assertEqual(machine.primary_region.name, "Exact Couch with Flat panel")

    def test_replace(self):
        machine = DEFAULT_CATALOG.lookup("URTE")
        renamed = machine.replace(machine_id="URTE2")
        self.assertEqual(renamed.machine_id, "URTE2")
        self.assertEqual(renamed.regions, machine.regions)
        self.assertEqual(machine.machine_id, "URTE")

    def test_region_parts(self):
        region = DEFAULT_CATALOG.lookup("iX").primary_region
        self.assertEqual({p.piece_id: p.hu for p in region.parts}, {"CouchInterior": -1000, "CouchSurface": -300})
