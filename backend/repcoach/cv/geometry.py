"""
Geometric measures over 2D landmark coordinates.

All functions are pure and work in normalized image space (x right,
y down). Degenerate input (coincident points, zero-length reference)
yields NaN, which the engine treats as "no sample this frame".
"""

import math
from typing import Callable, Dict, Tuple

import numpy as np

# Below this a segment is considered to have collapsed to a point
EPSILON = 1e-9


def _xy(p) -> np.ndarray:
    if hasattr(p, "x") and hasattr(p, "y"):
        return np.array([float(p.x), float(p.y)])
    return np.array([float(p[0]), float(p[1])])


def midpoint(*points) -> Tuple[float, float]:
    """Centroid of two or more points."""
    coords = np.array([_xy(p) for p in points])
    mid = coords.mean(axis=0)
    return float(mid[0]), float(mid[1])


def distance(p, q) -> float:
    """Euclidean distance between two points."""
    return float(np.linalg.norm(_xy(q) - _xy(p)))


def angle_between(a, b, c) -> float:
    """
    Angle ABC in degrees, with B as the vertex.

    Returns a value in [0, 180]; swapping ``a`` and ``c`` gives the
    same result. NaN if either arm has zero length.
    """
    a, b, c = _xy(a), _xy(b), _xy(c)
    if np.linalg.norm(a - b) < EPSILON or np.linalg.norm(c - b) < EPSILON:
        return math.nan

    radians = np.arctan2(c[1] - b[1], c[0] - b[0]) - np.arctan2(a[1] - b[1], a[0] - b[0])
    angle = abs(float(np.degrees(radians)))
    if angle > 180.0:
        angle = 360.0 - angle
    return angle


def normalized_distance(p, q, ref) -> float:
    """
    Distance p-q divided by a reference length.

    Args:
        p, q: Points to measure between
        ref: Reference length, or a pair of points whose distance is used
            (e.g. shoulder width, torso length)
    """
    if isinstance(ref, (int, float)):
        ref_length = float(ref)
    else:
        ref_length = distance(ref[0], ref[1])

    if not math.isfinite(ref_length) or ref_length < EPSILON:
        return math.nan
    return distance(p, q) / ref_length


def vertical_deviation(p, q) -> float:
    """
    Angle in degrees between segment p->q and the image vertical.

    0 means perfectly vertical (either direction), 90 horizontal.
    """
    v = _xy(q) - _xy(p)
    if np.linalg.norm(v) < EPSILON:
        return math.nan
    # atan2(|dx|, |dy|) folds up/down and left/right into [0, 90]
    return float(np.degrees(np.arctan2(abs(v[0]), abs(v[1]))))


def coordinate_delta(p, q, axis: str = "y", scale: float = 1.0, absolute: bool = False) -> float:
    """Scaled coordinate difference ``(q.axis - p.axis) * scale``."""
    index = 0 if axis == "x" else 1
    delta = (_xy(q)[index] - _xy(p)[index]) * scale
    return abs(float(delta)) if absolute else float(delta)


# =============================================================================
# Custom feature registry
# =============================================================================

FEATURE_FUNCTIONS: Dict[str, Callable[..., float]] = {}


def register_feature_function(name: str) -> Callable[[Callable[..., float]], Callable[..., float]]:
    """
    Register a named coordinate function usable by ``custom`` features.

    The function receives the resolved points of the feature's joints
    (in declaration order) and returns a float, or NaN for no sample.
    """
    def decorator(func: Callable[..., float]) -> Callable[..., float]:
        FEATURE_FUNCTIONS[name] = func
        return func
    return decorator


@register_feature_function("signed_tilt")
def signed_tilt(lower, upper) -> float:
    """
    Signed lean of segment lower->upper from vertical, in degrees.

    Positive when ``upper`` sits to the right of ``lower`` in the image.
    Used for lateral trunk tilt where the side matters.
    """
    v = _xy(upper) - _xy(lower)
    if np.linalg.norm(v) < EPSILON:
        return math.nan
    return float(np.degrees(np.arctan2(v[0], -v[1])))


@register_feature_function("height_above")
def height_above(point, reference) -> float:
    """How far ``point`` sits above ``reference`` (positive = higher)."""
    return float(_xy(reference)[1] - _xy(point)[1])


@register_feature_function("knee_valgus_ratio")
def knee_valgus_ratio(left_knee, right_knee, left_ankle, right_ankle) -> float:
    """Knee width over ankle width; drops below baseline when knees cave in."""
    ankle_width = abs(_xy(right_ankle)[0] - _xy(left_ankle)[0])
    if ankle_width < EPSILON:
        return math.nan
    return float(abs(_xy(right_knee)[0] - _xy(left_knee)[0]) / ankle_width)
