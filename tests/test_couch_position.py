import math
from unittest import TestCase

from plancheck.collision.config import SafetyConfig
from plancheck.collision.couch_position import (
    CouchPositionSource,
    couch_vert_position_from_ct,
    couch_vert_position_from_structure,
    resolve_couch_vert_position,
)
from plancheck.collision.machine import DEFAULT_CATALOG
from plancheck.plans.structures import Structure

MACHINE_2100CD = DEFAULT_CATALOG.lookup("2100CD")
FLAT_PANEL_COUCH = Structure("CouchRailLeft", "Exact Couch with Flat panel", "SUPPORT", center_y=100.0)
BODY = Structure("BODY", "BODY", "EXTERNAL", center_y=0.0)


class TestCouchPositionFromCT(TestCase):
    def test_conversion(self):
        self.assertAlmostEqual(couch_vert_position_from_ct(-10), 100 - 69.3)

    def test_custom_correction(self):
        config = SafetyConfig(couch_vert_position_ct_correction=50)
        self.assertAlmostEqual(couch_vert_position_from_ct(-10, config), 50)

    def test_absent(self):
        self.assertIsNone(couch_vert_position_from_ct(None))
        self.assertIsNone(couch_vert_position_from_ct(math.nan))


class TestCouchPositionFromStructure(TestCase):
    def test_region_correction(self):
        position = couch_vert_position_from_structure([BODY, FLAT_PANEL_COUCH], MACHINE_2100CD)
        self.assertAlmostEqual(position, 100 - 13.8)

    def test_no_couch(self):
        self.assertIsNone(couch_vert_position_from_structure([BODY], MACHINE_2100CD))

    def test_couch_of_other_machine(self):
        couch = Structure("CouchSurface", "Exact IGRT Couch, thin", "SUPPORT", center_y=100.0)
        self.assertIsNone(couch_vert_position_from_structure([couch], MACHINE_2100CD))

    def test_couch_without_contours(self):
        couch = Structure("CouchRailLeft", "Exact Couch with Flat panel", "SUPPORT")
        self.assertIsNone(couch_vert_position_from_structure([couch], MACHINE_2100CD))


class TestResolveCouchPosition(TestCase):
    def test_ct_preferred(self):
        position = resolve_couch_vert_position(-10, [FLAT_PANEL_COUCH], MACHINE_2100CD)
        self.assertEqual(position.source, CouchPositionSource.CT)
        self.assertAlmostEqual(position.value, 30.7)
        self.assertTrue(position.is_defined)

    def test_structure_fallback(self):
        position = resolve_couch_vert_position(None, [FLAT_PANEL_COUCH], MACHINE_2100CD)
        self.assertEqual(position.source, CouchPositionSource.STRUCTURE)
        self.assertAlmostEqual(position.value, 86.2)

    def test_undefined(self):
        position = resolve_couch_vert_position(None, [BODY], MACHINE_2100CD)
        self.assertEqual(position.source, CouchPositionSource.UNDEFINED)
        self.assertIsNone(position.value)
        self.assertFalse(position.is_defined)

    def test_undefined_without_machine(self):
        position = resolve_couch_vert_position(None, [FLAT_PANEL_COUCH], None)
        self.assertFalse(position.is_defined)
