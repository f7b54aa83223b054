"""
Raw feature extraction from a landmark frame.

Turns the FeatureSpecs of an exercise definition into one raw float per
feature for the current frame. Missing or low-visibility joints and
degenerate geometry all come out as NaN.
"""

import math
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from repcoach.cv import geometry
from repcoach.cv.landmarks import JointRef, LandmarkFrame, resolve_joint
from repcoach.schemas.exercise import (
    AngleFeature,
    CombineFeature,
    CustomFeature,
    DeltaFeature,
    DistanceFeature,
    ExerciseDefinition,
    VerticalDeviationFeature,
)

Point = Tuple[float, float]


class FeatureExtractor:
    """Computes raw feature values for one exercise definition."""

    def __init__(self, definition: ExerciseDefinition, min_visibility: float = 0.5):
        self.definition = definition
        self.min_visibility = min_visibility

    def extract(self, frame: LandmarkFrame) -> Dict[str, float]:
        """
        Raw value of every feature, in declaration order.

        Combined features read the raw values of the features they
        reference, so they are computed after them.
        """
        values: Dict[str, float] = {}
        for spec in self.definition.features:
            try:
                values[spec.name] = self._compute(spec, frame, values)
            except ArithmeticError:
                values[spec.name] = math.nan
        return values

    def _compute(self, spec, frame: LandmarkFrame, values: Dict[str, float]) -> float:
        if isinstance(spec, CombineFeature):
            return _combine(spec.op, [values.get(name, math.nan) for name in spec.of])

        points = self._points(frame, spec.joints)
        if points is None:
            return math.nan

        if isinstance(spec, AngleFeature):
            return geometry.angle_between(*points)
        if isinstance(spec, DistanceFeature):
            reference = self._points(frame, spec.reference)
            if reference is None:
                return math.nan
            return geometry.normalized_distance(points[0], points[1], reference)
        if isinstance(spec, VerticalDeviationFeature):
            return geometry.vertical_deviation(*points)
        if isinstance(spec, DeltaFeature):
            return geometry.coordinate_delta(
                points[0], points[1], axis=spec.axis, scale=spec.scale, absolute=spec.absolute
            )
        if isinstance(spec, CustomFeature):
            return float(geometry.FEATURE_FUNCTIONS[spec.function](*points))
        raise ValueError(f"Unsupported feature kind: {spec.kind}")

    def _points(self, frame: LandmarkFrame, refs: Sequence[JointRef]) -> Optional[List[Point]]:
        points = []
        for ref in refs:
            point = self._point(frame, ref)
            if point is None:
                return None
            points.append(point)
        return points

    def _point(self, frame: LandmarkFrame, ref: JointRef) -> Optional[Point]:
        if isinstance(ref, (list, tuple)):
            members = self._points(frame, ref)
            if members is None:
                return None
            return geometry.midpoint(*members)

        landmark = frame.get(resolve_joint(ref), self.min_visibility)
        if landmark is None or not (math.isfinite(landmark.x) and math.isfinite(landmark.y)):
            return None
        return landmark.x, landmark.y


def _combine(op: str, values: List[float]) -> float:
    finite = [v for v in values if math.isfinite(v)]
    if op in ("diff", "absdiff"):
        if len(finite) < 2:
            return math.nan
        delta = values[0] - values[1]
        return abs(delta) if op == "absdiff" else delta
    # mean/min/max use whichever sides are visible
    if not finite:
        return math.nan
    if op == "mean":
        return float(np.mean(finite))
    if op == "min":
        return min(finite)
    return max(finite)
