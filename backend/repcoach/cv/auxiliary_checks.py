"""
Auxiliary form-safety checks evaluated on every frame.

Each check is a pure function of the smoothed features and the session's
calibration baselines. Three shapes recur across the exercise catalog:

- Symmetry: left and right sides must move together
- Baseline deviation: a posture reference captured at rest must be kept
  (shoulder hike, pelvic drop, knee valgus ratio)
- Range clamp: reject unsafe depth, hyperextension or lockout

A check whose features have no sample this frame is never violated.
"""

from dataclasses import dataclass
from typing import Dict, Mapping, Optional
import math

from repcoach.schemas.exercise import (
    BaselineDeviationCheck,
    CalibrationSpec,
    RangeCheck,
    SymmetryCheck,
)


@dataclass(frozen=True)
class CheckResult:
    """Outcome of one check on one frame."""
    violated: bool
    message: Optional[str] = None
    value: Optional[float] = None  # Measured quantity, for overlays and logs

    @classmethod
    def ok(cls, value: Optional[float] = None) -> "CheckResult":
        return cls(violated=False, value=value)


def _sample(features: Mapping[str, float], name: str) -> Optional[float]:
    value = features.get(name)
    if value is None or not math.isfinite(value):
        return None
    return value


class AuxiliaryCheck:
    """Base class for check evaluators."""

    kind: str = "base"

    def evaluate(self, spec, features: Mapping[str, float], calibration: Mapping[str, float]) -> CheckResult:
        """
        Evaluate ``spec`` against this frame.

        Args:
            spec: The check configuration from the exercise definition
            features: Smoothed feature values for this frame
            calibration: Baselines captured so far in the session

        Returns:
            CheckResult with the violation flag and message
        """
        raise NotImplementedError


class SymmetryEvaluator(AuxiliaryCheck):
    """|left - right| must not exceed ``max_diff``."""

    kind = "symmetry"

    def evaluate(self, spec: SymmetryCheck, features, calibration) -> CheckResult:
        left = _sample(features, spec.left)
        right = _sample(features, spec.right)
        if left is None or right is None:
            return CheckResult.ok()

        diff = abs(left - right)
        if diff > spec.max_diff:
            return CheckResult(violated=True, message=spec.message, value=diff)
        return CheckResult.ok(diff)


class BaselineDeviationEvaluator(AuxiliaryCheck):
    """Feature must stay within ``max_deviation`` of its calibrated baseline."""

    kind = "baseline_deviation"

    def evaluate(self, spec: BaselineDeviationCheck, features, calibration) -> CheckResult:
        value = _sample(features, spec.feature)
        baseline = calibration.get(spec.feature)
        if value is None or baseline is None:
            return CheckResult.ok()

        deviation = value - baseline
        if spec.relative:
            if baseline == 0:
                return CheckResult.ok()
            deviation = deviation / abs(baseline)

        if spec.direction == "above":
            violated = deviation > spec.max_deviation
        elif spec.direction == "below":
            violated = -deviation > spec.max_deviation
        else:
            violated = abs(deviation) > spec.max_deviation

        if violated:
            return CheckResult(violated=True, message=spec.message, value=deviation)
        return CheckResult.ok(deviation)


class RangeEvaluator(AuxiliaryCheck):
    """Feature must stay inside [min_value, max_value]."""

    kind = "range"

    def evaluate(self, spec: RangeCheck, features, calibration) -> CheckResult:
        value = _sample(features, spec.feature)
        if value is None:
            return CheckResult.ok()

        below = spec.min_value is not None and value < spec.min_value
        above = spec.max_value is not None and value > spec.max_value
        if below or above:
            return CheckResult(violated=True, message=spec.message, value=value)
        return CheckResult.ok(value)


EVALUATORS: Dict[str, AuxiliaryCheck] = {
    evaluator.kind: evaluator
    for evaluator in (SymmetryEvaluator(), BaselineDeviationEvaluator(), RangeEvaluator())
}


def evaluate_check(spec, features: Mapping[str, float], calibration: Mapping[str, float]) -> CheckResult:
    """Evaluate any check spec with the evaluator for its kind."""
    return EVALUATORS[spec.kind].evaluate(spec, features, calibration)


# =============================================================================
# Calibration
# =============================================================================

def in_resting_band(calibration: CalibrationSpec, features: Mapping[str, float]) -> bool:
    """True if the calibration feature sits inside its resting band."""
    value = _sample(features, calibration.feature)
    if value is None:
        return False
    if calibration.min_value is not None and value < calibration.min_value:
        return False
    if calibration.max_value is not None and value > calibration.max_value:
        return False
    return True


def capture_baselines(
    calibration_spec: Optional[CalibrationSpec],
    feature_names,
    features: Mapping[str, float],
    baselines: Dict[str, float],
    in_start_stage: bool,
) -> Dict[str, float]:
    """
    Lazily capture baselines for features that have none yet.

    Each baseline is taken once, from the first frame in which the
    session is in its start stage with the calibration feature resting.
    Returns only the newly captured values; ``baselines`` is updated
    in place.
    """
    if calibration_spec is None or not in_start_stage:
        return {}
    if not in_resting_band(calibration_spec, features):
        return {}

    captured: Dict[str, float] = {}
    for name in feature_names:
        if name in baselines:
            continue
        value = _sample(features, name)
        if value is not None:
            baselines[name] = value
            captured[name] = value

    return captured
