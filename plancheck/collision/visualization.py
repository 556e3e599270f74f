from collections.abc import Sequence

import numpy as np
from matplotlib import pyplot as plt
from matplotlib.figure import Figure
from plotly import graph_objects as go

from plancheck.collision.evaluator import BeamCollisionResult, CollisionEvaluator
from plancheck.collision.limits import CollisionLevel
from plancheck.plans.beam import BeamGeometry, Technique

LEVEL_COLORS = {
    CollisionLevel.NONE: "green",
    CollisionLevel.WARNING: "orange",
    CollisionLevel.COLLISION: "red",
}


def plot_collision_limits(results: Sequence[BeamCollisionResult], show: bool = True) -> go.Figure:
    """Plot the evaluated gantry angles and their couch limits on a polar (gantry) diagram.

    Parameters
    ----------
    results : Sequence[BeamCollisionResult]
        The collision results of a plan. Results that were not evaluated are ignored.
    show : bool, optional
        Whether to show the plot. Default is True.
    """
    fig = go.Figure()
    for result in results:
        if not result.evaluated:
            continue
        level = max(result.patient_level, result.couch_level)
        name = f"{result.beam_id} ({result.label.value})"
        fig.add_trace(
            go.Scatterpolar(
                r=[0, 1],
                theta=[result.gantry_angle, result.gantry_angle],
                mode="lines+markers",
                line=dict(width=3, color=LEVEL_COLORS[level]),
                name=name,
            )
        )
        fig.add_trace(
            go.Scatterpolar(
                r=[0, 1.1],
                theta=[result.couch.limit, result.couch.limit],
                mode="lines",
                line=dict(width=1, color="gray", dash="dash"),
                name=f"{name} couch limit",
            )
        )
    fig.update_layout(
        title="Gantry angles and couch limits",
        polar=dict(
            radialaxis=dict(visible=False, range=[0, 1.2]),
            angularaxis=dict(rotation=90, direction="clockwise"),
        ),
    )
    if show:
        fig.show()
    return fig


def sweep_gantry(
    evaluator: CollisionEvaluator, beam: BeamGeometry, step: float = 1.0
) -> tuple[np.ndarray, list[BeamCollisionResult]]:
    """Evaluate a beam as a static field at every gantry angle in [0, 360)."""
    angles = np.arange(0, 360, step)
    results = []
    for angle in angles:
        static = beam.replace(technique=Technique.STATIC, gantry_start=float(angle), gantry_end=None)
        results.extend(evaluator.evaluate(static))
    return angles, results


def plot_couch_margin_sweep(
    evaluator: CollisionEvaluator, beam: BeamGeometry, step: float = 1.0, show: bool = True
) -> Figure:
    """Plot the couch margin and the collision levels of a beam over the full gantry rotation.

    Parameters
    ----------
    evaluator : CollisionEvaluator
        The evaluator holding the couch position and the safety settings.
    beam : BeamGeometry
        The beam. Only its isocenter, machine, couch rotation and extended range are used.
    step : float
        The gantry angle step in degrees.
    show : bool, optional
        Whether to show the plot. Default is True.
    """
    angles, results = sweep_gantry(evaluator, beam, step)
    if not all(r.evaluated for r in results):
        raise ValueError(f"Beam {beam.beam_id} can not be evaluated: {results[0].diagnostic}")
    margins = np.array([r.couch.margin for r in results])
    couch_levels = np.array([int(r.couch_level) for r in results])
    patient_levels = np.array([int(r.patient_level) for r in results])

    fig, (ax_margin, ax_level) = plt.subplots(2, 1, sharex=True)
    ax_margin.plot(angles, margins / 10)
    ax_margin.axhline(evaluator.config.safety_margin_distance / 10, color="orange", linestyle="--")
    ax_margin.axhline(0, color="red", linestyle="--")
    ax_margin.set_ylabel("Couch margin (cm)")
    ax_margin.set_title(f"Beam: {beam.beam_id}")
    ax_level.step(angles, couch_levels, where="mid", label="Couch")
    ax_level.step(angles, patient_levels, where="mid", label="Patient")
    ax_level.set_yticks([level.value for level in CollisionLevel], [level.name for level in CollisionLevel])
    ax_level.set_xlabel("Gantry angle (deg)")
    ax_level.legend()
    if show:
        plt.show()
    return fig
