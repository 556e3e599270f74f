from unittest import TestCase

from plancheck.collision.config import SafetyConfig
from plancheck.collision.evaluator import CollisionEvaluator
from plancheck.collision.limits import CollisionLevel, CouchWarning
from plancheck.collision.report import CollisionReport, PlanCheckReport
from plancheck.plans.beam import Technique
from tests.utils import create_beam_geometry


def evaluate(couch_vert_position: float, *beams) -> CollisionReport:
    evaluator = CollisionEvaluator(couch_vert_position=couch_vert_position)
    return CollisionReport(evaluator.evaluate_plan(beams))


class TestCollisionReport(TestCase):
    def test_no_findings(self):
        report = evaluate(0, create_beam_geometry(gantry_start=200))
        self.assertTrue(report.patient_passed)
        self.assertTrue(report.couch_passed)
        self.assertFalse(report.has_findings)
        self.assertEqual(report.render(), "")

    def test_patient_collision(self):
        report = evaluate(0, create_beam_geometry(beam_id="F1", gantry_start=50, raw_isocenter=(-100, 0, 0)))
        self.assertFalse(report.patient_passed)
        self.assertTrue(report.couch_passed)
        self.assertEqual(
            report.render(),
            "Collisions: \nCOLLISION with PATIENT:\n\tF1 (Start G)\tLimit: 45.5 deg\n",
        )

    def test_gantry_close_to_patient(self):
        report = evaluate(0, create_beam_geometry(beam_id="F1", gantry_start=44, raw_isocenter=(-100, 0, 0)))
        self.assertTrue(report.patient_passed)
        self.assertEqual(report.patient_lines(CollisionLevel.WARNING), ["\tF1 (Start G)\tLimit: 45.5 deg"])
        self.assertIn("Gantry close to PATIENT:", report.render())

    def test_couch_collision(self):
        report = evaluate(300, create_beam_geometry(beam_id="F1", gantry_start=130))
        self.assertTrue(report.patient_passed)
        self.assertFalse(report.couch_passed)
        self.assertEqual(
            report.render(),
            "Collisions: \nCOLLISION with couch:\n\tF1 (Start G)\tMargin: -7.5 cm\n",
        )

    def test_near_couch_shows_limit(self):
        report = evaluate(300, create_beam_geometry(beam_id="F1", gantry_start=113))
        self.assertTrue(report.couch_passed)
        self.assertEqual(
            report.couch_lines(CollisionLevel.WARNING, CouchWarning.GANTRY_NEAR_COUCH),
            ["\tF1 (Start G)\tMargin: -7.5 cm\t(Limit: 114.7 deg)"],
        )
        self.assertIn("Gantry near couch:", report.render())

    def test_reduced_margin(self):
        evaluator = CollisionEvaluator(couch_vert_position=0, config=SafetyConfig(safety_margin_distance=200))
        report = CollisionReport(
            evaluator.evaluate_plan([create_beam_geometry(beam_id="F1", gantry_start=120)]), evaluator.config
        )
        self.assertTrue(report.couch_passed)
        self.assertEqual(
            report.couch_lines(CollisionLevel.WARNING, CouchWarning.REDUCED_MARGIN),
            ["\tF1 (Start G)\tMargin: 13.6 cm"],
        )
        self.assertIn("Reduced margin to couch:", report.render())

    def test_severity_order(self):
        report = evaluate(
            300,
            create_beam_geometry(beam_id="near", gantry_start=113),
            create_beam_geometry(beam_id="couch", gantry_start=130),
            create_beam_geometry(beam_id="patient", gantry_start=90, raw_isocenter=(-100, 0, 0)),
        )
        text = report.render()
        self.assertLess(text.index("COLLISION with PATIENT:"), text.index("COLLISION with couch:"))
        self.assertLess(text.index("COLLISION with couch:"), text.index("Gantry near couch:"))

    def test_arc_labels(self):
        beam = create_beam_geometry(beam_id="A1", gantry_start=181, gantry_end=179, technique=Technique.ARC)
        text = evaluate(300, beam).render()
        self.assertIn("\tA1 (Start G)", text)
        self.assertIn("\tA1 (End G)", text)

    def test_skipped_beams_do_not_affect_verdicts(self):
        report = evaluate(
            0,
            create_beam_geometry(beam_id="F1", gantry_start=200),
            create_beam_geometry(
                beam_id="F2", gantry_start=130, gantry_end=230, technique=Technique.ARC, couch_rotation=45
            ),
        )
        self.assertTrue(report.couch_passed)
        self.assertTrue(report.patient_passed)
        self.assertTrue(report.has_findings)
        self.assertIn("Collision not evaluated (Couch Rotation > 10 degrees): \n - F2\n", report.render())
        # one line per beam, not per control point
        self.assertEqual(report.render().count(" - F2"), 1)

    def test_errors_are_listed(self):
        report = evaluate(0, create_beam_geometry(beam_id="F1", machine_id="Halcyon"))
        self.assertTrue(report.couch_passed)
        text = report.render()
        self.assertIn("Collision not evaluated (error): \n", text)
        self.assertIn(" - F1: Machine 'Halcyon' is not defined", text)


class TestPlanCheckReport(TestCase):
    def test_render(self):
        report = PlanCheckReport()
        report.add_verification("Collision with couch", True)
        report.add_verification("Collision with patient", False)
        report.add_warning("Couch Rotation > 10 degrees.")
        report.add_information("Number of isocenters: 1")
        self.assertEqual(
            report.render(),
            "✔ Collision with couch\n✘ Collision with patient\n\nWarnings:\nCouch Rotation > 10 degrees."
            "\n\nInformation:\nNumber of isocenters: 1",
        )

    def test_empty_messages_are_ignored(self):
        report = PlanCheckReport()
        report.add_warning("")
        report.add_information("")
        self.assertEqual(report.warnings, [])
        self.assertEqual(report.information, [])

    def test_verification(self):
        report = PlanCheckReport()
        report.add_verification("Couch inserted", False)
        self.assertFalse(report.verification("Couch inserted"))
        self.assertFalse(report.passed)
        with self.assertRaises(KeyError):
            report.verification("Collision with couch")

    def test_passed(self):
        report = PlanCheckReport()
        self.assertTrue(report.passed)
        report.add_verification("Couch inserted", True)
        self.assertTrue(report.passed)
