from collections.abc import Iterable
from dataclasses import dataclass, field

from plancheck.collision.config import SafetyConfig, DEFAULT_SAFETY_CONFIG
from plancheck.collision.evaluator import BeamCollisionResult, SkipReason
from plancheck.collision.limits import CollisionLevel, CouchWarning

COLLISIONS_HEADER = "Collisions: \n"
PATIENT_COLLISION_TITLE = "COLLISION with PATIENT:"
PATIENT_WARNING_TITLE = "Gantry close to PATIENT:"
COUCH_COLLISION_TITLE = "COLLISION with couch:"
COUCH_NEAR_TITLE = "Gantry near couch:"
COUCH_REDUCED_MARGIN_TITLE = "Reduced margin to couch:"


class CollisionReport:
    """Plan-level merge of the per control point collision results.

    The verdicts are True when the verification passed, i.e. no evaluated control point reached the COLLISION
    level in that channel. Control points that were not evaluated never affect the verdicts.
    """

    def __init__(self, results: Iterable[BeamCollisionResult], config: SafetyConfig = DEFAULT_SAFETY_CONFIG):
        self.results = list(results)
        self.config = config

    @property
    def evaluated(self) -> list[BeamCollisionResult]:
        return [r for r in self.results if r.evaluated]

    @property
    def patient_passed(self) -> bool:
        return all(r.patient_level < CollisionLevel.COLLISION for r in self.evaluated)

    @property
    def couch_passed(self) -> bool:
        return all(r.couch_level < CollisionLevel.COLLISION for r in self.evaluated)

    @property
    def has_findings(self) -> bool:
        """Whether there is anything (collision, warning or skipped beam) to report."""
        return any(self._sections().values()) or any(not r.evaluated for r in self.results)

    def patient_lines(self, level: CollisionLevel) -> list[str]:
        return [self._patient_line(r) for r in self.evaluated if r.patient_level == level]

    def couch_lines(self, level: CollisionLevel, warning: CouchWarning | None = None) -> list[str]:
        return [
            self._couch_line(r)
            for r in self.evaluated
            if r.couch_level == level and r.couch.warning == warning
        ]

    def skipped_beams(self, reason: SkipReason) -> list[BeamCollisionResult]:
        """The first not-evaluated result of each beam skipped for ``reason``."""
        seen = set()
        skipped = []
        for r in self.results:
            if r.skip_reason == reason and r.beam_id not in seen:
                seen.add(r.beam_id)
                skipped.append(r)
        return skipped

    def render(self) -> str:
        """The collision diagnostic text, grouped by severity. Empty when there is nothing to report."""
        text = ""
        for title, lines in self._sections().items():
            if lines:
                text += title + "\n" + "\n".join(lines) + "\n"

        rotation_skipped = self.skipped_beams(SkipReason.COUCH_ROTATION)
        if rotation_skipped:
            text += f"Collision not evaluated (Couch Rotation > {self.config.max_couch_rot_calc:g} degrees): \n"
            text += "".join(f" - {r.beam_id}\n" for r in rotation_skipped)

        failed = self.skipped_beams(SkipReason.ERROR)
        if failed:
            text += "Collision not evaluated (error): \n"
            text += "".join(f" - {r.beam_id}: {r.diagnostic}\n" for r in failed)

        if not text:
            return ""
        return COLLISIONS_HEADER + text

    def _sections(self) -> dict[str, list[str]]:
        # most severe first
        return {
            PATIENT_COLLISION_TITLE: self.patient_lines(CollisionLevel.COLLISION),
            COUCH_COLLISION_TITLE: self.couch_lines(CollisionLevel.COLLISION),
            PATIENT_WARNING_TITLE: self.patient_lines(CollisionLevel.WARNING),
            COUCH_NEAR_TITLE: self.couch_lines(CollisionLevel.WARNING, CouchWarning.GANTRY_NEAR_COUCH),
            COUCH_REDUCED_MARGIN_TITLE: self.couch_lines(CollisionLevel.WARNING, CouchWarning.REDUCED_MARGIN),
        }

    @staticmethod
    def _patient_line(result: BeamCollisionResult) -> str:
        return f"\t{result.beam_id} ({result.label.value})\tLimit: {round(result.patient.limit, 1)} deg"

    def _couch_line(self, result: BeamCollisionResult) -> str:
        couch = result.couch
        line = f"\t{result.beam_id} ({result.label.value})\tMargin: {round(couch.margin / 10, 1)} cm"
        limit = round(couch.limit, 1)
        if abs(limit - round(couch.gantry_angle, 1)) < self.config.safety_margin_gantry_angle:
            line += f"\t(Limit: {limit} deg)"
        return line


PASSED_MARK = "✔"
FAILED_MARK = "✘"


@dataclass
class PlanCheckReport:
    """
    The outcome of a plan check.

    Parameters
    ----------
    verifications : list[tuple[str, bool]]
        Named pass/fail rows, in the order they were added.
    warnings : list[str]
        Warning messages for the planner.
    information : list[str]
        Informative messages.
    """

    verifications: list[tuple[str, bool]] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    information: list[str] = field(default_factory=list)

    def add_verification(self, name: str, passed: bool) -> None:
        self.verifications.append((name, bool(passed)))

    def add_warning(self, message: str) -> None:
        if message:
            self.warnings.append(message)

    def add_information(self, message: str) -> None:
        if message:
            self.information.append(message)

    def verification(self, name: str) -> bool:
        """The outcome of the verification ``name``. Raises ``KeyError`` if it was never added."""
        for row_name, passed in self.verifications:
            if row_name == name:
                return passed
        raise KeyError(name)

    @property
    def passed(self) -> bool:
        return all(passed for _, passed in self.verifications)

    def render(self) -> str:
        lines = [f"{PASSED_MARK if passed else FAILED_MARK} {name}" for name, passed in self.verifications]
        if self.warnings:
            lines.append("")
            lines.append("Warnings:")
            lines.extend(self.warnings)
        if self.information:
            lines.append("")
            lines.append("Information:")
            lines.extend(self.information)
        return "\n".join(lines)
