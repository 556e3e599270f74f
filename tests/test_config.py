from unittest import TestCase

from pydantic import ValidationError

from plancheck.collision.config import SafetyConfig, DEFAULT_SAFETY_CONFIG


class TestSafetyConfig(TestCase):
    def test_defaults(self):
        self.assertEqual(DEFAULT_SAFETY_CONFIG.max_couch_rot_calc, 10)
        self.assertEqual(DEFAULT_SAFETY_CONFIG.max_couch_rot_warning, 10)
        self.assertEqual(DEFAULT_SAFETY_CONFIG.safety_margin_distance, 10)
        self.assertEqual(DEFAULT_SAFETY_CONFIG.safety_margin_gantry_angle, 2)
        self.assertEqual(DEFAULT_SAFETY_CONFIG.couch_vert_position_ct_correction, 69.3)

    def test_from_mapping(self):
        config = SafetyConfig.from_mapping({"max_couch_rot_calc": 5, "safety_margin_distance": 20})
        self.assertEqual(config.max_couch_rot_calc, 5)
        self.assertEqual(config.safety_margin_distance, 20)
        self.assertEqual(config.safety_margin_gantry_angle, 2)

    def test_unknown_key(self):
        with self.assertRaises(ValidationError):
            SafetyConfig.from_mapping({"max_couch_rotation": 5})

    def test_negative_margin(self):
        with self.assertRaises(ValidationError):
            SafetyConfig(safety_margin_distance=-1)

    def test_rotation_out_of_range(self):
        with self.assertRaises(ValidationError):
            SafetyConfig(max_couch_rot_calc=200)

    def test_read_only(self):
        with self.assertRaises(ValidationError):
            DEFAULT_SAFETY_CONFIG.max_couch_rot_calc = 20

    def test_replace(self):
        config = DEFAULT_SAFETY_CONFIG.replace(max_couch_rot_warning=15)
        self.assertEqual(config.max_couch_rot_warning, 15)
        self.assertEqual(DEFAULT_SAFETY_CONFIG.max_couch_rot_warning, 10)

    def test_replace_validates(self):
        with self.assertRaises(ValidationError):
            DEFAULT_SAFETY_CONFIG.replace(safety_margin_gantry_angle=-2)

    def test_units_in_schema(self):
        schema = SafetyConfig.model_json_schema()
        self.assertEqual(schema["properties"]["safety_margin_distance"]["units"], "mm")
