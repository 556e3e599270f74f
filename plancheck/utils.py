import fnmatch
import re

from numpy import ndarray


def wrap360(value: float | ndarray) -> float | ndarray:
    """Wrap the input values to the interval [0, 360)"""
    return value % 360


def couch_rotation_within(couch_rotation: float, max_rotation: float) -> bool:
    """Whether the couch rotation lies within ``[-max_rotation, +max_rotation]`` once wrapped to [0, 360).

    E.g. with ``max_rotation=10`` the rotations 0, 10, 350 and 355 are within range while 11 and 349 are not.
    """
    rotation = wrap360(couch_rotation)
    return rotation <= max_rotation or rotation >= 360 - max_rotation


def like(text: str, pattern: str) -> bool:
    """Wildcard match of ``text`` against ``pattern``.

    ``*`` means any sequence of characters and ``?`` any single character, e.g. ``like("PTV_DRR", "*DRR*")``.
    The match is case-sensitive and anchored at both ends. Square brackets are taken literally.
    """
    escaped = pattern.replace("[", "[[]")
    regex = fnmatch.translate(escaped)
    return re.match(regex, text, flags=re.DOTALL) is not None
