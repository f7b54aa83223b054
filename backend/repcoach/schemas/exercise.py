"""Exercise definition schemas.

An ``ExerciseDefinition`` is the declarative description of one exercise:
which features to derive from the landmarks, the stage graph the session
walks through, the auxiliary safety checks and the rep debounce. All
structural errors are rejected here, at load time, so the per-frame engine
never has to cope with a malformed definition.
"""

import inspect
from collections import deque
from enum import Enum
from typing import Annotated, ClassVar, Dict, List, Literal, Optional, Set, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class DefinitionError(ValueError):
    """Raised when an exercise definition is malformed."""


class Comparator(str, Enum):
    """How a feature value is compared against a threshold."""
    LT = "lt"
    LE = "le"
    GT = "gt"
    GE = "ge"

    def holds(self, value: float, threshold: float) -> bool:
        if self is Comparator.LT:
            return value < threshold
        if self is Comparator.LE:
            return value <= threshold
        if self is Comparator.GT:
            return value > threshold
        return value >= threshold

    def at_least_as_strict(self, confirm: float, enter: float) -> bool:
        """True if ``confirm`` lies on the far side of ``enter``."""
        if self in (Comparator.LT, Comparator.LE):
            return confirm <= enter
        return confirm >= enter


class Severity(str, Enum):
    """Whether a violated check freezes progress or only warns."""
    BLOCKING = "blocking"
    ADVISORY = "advisory"


class ViolationPolicy(str, Enum):
    """What a blocking violation does to the stage machine."""
    FREEZE = "freeze"  # Stay in the current stage, resume when cleared
    RESET = "reset"    # Drop back to the start stage without counting


JointRefSpec = Union[int, str, List[Union[int, str]]]


class _Schema(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)


# =============================================================================
# Features
# =============================================================================

class _FeatureBase(_Schema):
    name: str = Field(..., min_length=1)
    window: Optional[int] = Field(None, ge=1, le=60, description="Smoothing window in frames")
    required: bool = Field(True, description="Skip the whole frame when this feature has no sample")

    @property
    def dependencies(self) -> List[str]:
        return []


class _JointFeature(_FeatureBase):
    joints: List[JointRefSpec]

    @field_validator("joints")
    @classmethod
    def validate_joints(cls, v: List[JointRefSpec]) -> List[JointRefSpec]:
        from repcoach.cv.landmarks import joint_indices

        for ref in v:
            joint_indices(ref)
        return v


class AngleFeature(_JointFeature):
    """Angle at the middle joint of three."""
    kind: Literal["angle"] = "angle"
    joints: List[JointRefSpec] = Field(..., min_length=3, max_length=3)


class DistanceFeature(_JointFeature):
    """Distance between two joints, normalized by a reference segment."""
    kind: Literal["distance"] = "distance"
    joints: List[JointRefSpec] = Field(..., min_length=2, max_length=2)
    reference: List[JointRefSpec] = Field(..., min_length=2, max_length=2)

    @field_validator("reference")
    @classmethod
    def validate_reference(cls, v: List[JointRefSpec]) -> List[JointRefSpec]:
        from repcoach.cv.landmarks import joint_indices

        for ref in v:
            joint_indices(ref)
        return v


class VerticalDeviationFeature(_JointFeature):
    """Angle of a segment from the image vertical."""
    kind: Literal["vertical_deviation"] = "vertical_deviation"
    joints: List[JointRefSpec] = Field(..., min_length=2, max_length=2)


class DeltaFeature(_JointFeature):
    """Scaled coordinate difference between two joints."""
    kind: Literal["delta"] = "delta"
    joints: List[JointRefSpec] = Field(..., min_length=2, max_length=2)
    axis: Literal["x", "y"] = "y"
    scale: float = 1.0  # Exercise-specific tuning multiplier
    absolute: bool = False


class CustomFeature(_JointFeature):
    """A registered coordinate function applied to the listed joints."""
    kind: Literal["custom"] = "custom"
    function: str
    joints: List[JointRefSpec] = Field(..., min_length=1)

    @model_validator(mode="after")
    def validate_function(self) -> "CustomFeature":
        from repcoach.cv.geometry import FEATURE_FUNCTIONS

        func = FEATURE_FUNCTIONS.get(self.function)
        if func is None:
            raise ValueError(f"Unknown feature function '{self.function}'")
        params = [
            p for p in inspect.signature(func).parameters.values()
            if p.kind in (p.POSITIONAL_ONLY, p.POSITIONAL_OR_KEYWORD) and p.default is p.empty
        ]
        if len(params) != len(self.joints):
            raise ValueError(
                f"Feature function '{self.function}' takes {len(params)} joints, got {len(self.joints)}"
            )
        return self


class CombineFeature(_FeatureBase):
    """Reduction over other features' raw values (e.g. mean of both knees)."""
    kind: Literal["combine"] = "combine"
    op: Literal["mean", "min", "max", "diff", "absdiff"]
    of: List[str] = Field(..., min_length=2)

    @model_validator(mode="after")
    def validate_arity(self) -> "CombineFeature":
        if self.op in ("diff", "absdiff") and len(self.of) != 2:
            raise ValueError(f"'{self.op}' combines exactly two features")
        return self

    @property
    def dependencies(self) -> List[str]:
        return list(self.of)


FeatureSpec = Annotated[
    Union[AngleFeature, DistanceFeature, VerticalDeviationFeature, DeltaFeature, CustomFeature, CombineFeature],
    Field(discriminator="kind"),
]


# =============================================================================
# Stage graph
# =============================================================================

class TransitionSpec(_Schema):
    """
    Outgoing edge of a stage.

    A feature edge fires when ``feature <comparator> enter``; with a
    stricter ``confirm`` and/or ``hold_ms`` the value must also stay in the
    confirm band for ``hold_ms`` without interruption. A timed edge
    (``after_ms``) fires after dwelling that long in the stage.
    """
    to: str
    feature: Optional[str] = None
    comparator: Comparator = Comparator.LT
    enter: Optional[float] = None
    confirm: Optional[float] = None
    hold_ms: float = Field(0.0, ge=0)
    after_ms: Optional[float] = Field(None, ge=0)
    feedback: Optional[str] = None
    counts_rep: bool = True  # False for abort edges back to the start stage
    tally: Optional[str] = None  # Per-side counter bumped when this edge completes a rep

    @model_validator(mode="after")
    def validate_shape(self) -> "TransitionSpec":
        if self.after_ms is not None:
            if self.feature is not None or self.enter is not None or self.confirm is not None or self.hold_ms:
                raise ValueError("A timed transition (after_ms) takes no feature, thresholds or hold")
            return self
        if self.feature is None or self.enter is None:
            raise ValueError("A transition needs 'feature' and 'enter' (or 'after_ms')")
        if self.confirm is not None and not self.comparator.at_least_as_strict(self.confirm, self.enter):
            raise ValueError(
                f"confirm={self.confirm} is looser than enter={self.enter} for comparator '{self.comparator.value}'"
            )
        return self

    @property
    def is_timed(self) -> bool:
        return self.after_ms is not None

    @property
    def needs_hold(self) -> bool:
        return self.confirm is not None or self.hold_ms > 0

    @property
    def confirm_threshold(self) -> Optional[float]:
        return self.confirm if self.confirm is not None else self.enter


class StageSpec(_Schema):
    """Named phase of the movement cycle."""
    name: str = Field(..., min_length=1)
    transitions: List[TransitionSpec] = Field(default_factory=list)
    feedback: Optional[str] = None  # Shown when the stage is entered
    announce: Optional[str] = None  # Spoken cue when the stage is entered
    hold_target_ms: Optional[float] = Field(None, gt=0)  # Good-form time to accumulate in this stage


# =============================================================================
# Auxiliary checks
# =============================================================================

class _CheckBase(_Schema):
    # Fields naming the features a check reads
    feature_fields: ClassVar[Tuple[str, ...]] = ("feature",)

    name: str = Field(..., min_length=1)
    severity: Severity = Severity.ADVISORY
    message: str
    announce: Optional[str] = None
    cleared_message: Optional[str] = None
    stages: Optional[List[str]] = None  # Only evaluated in these stages
    voids_rep: bool = False

    @model_validator(mode="after")
    def validate_voids_rep(self):
        if self.voids_rep and self.severity is Severity.BLOCKING:
            raise ValueError(f"Check '{self.name}': voids_rep only applies to advisory checks")
        return self

    @property
    def feature_names(self) -> List[str]:
        return [getattr(self, f) for f in self.feature_fields]

    @property
    def spoken_text(self) -> str:
        return self.announce or self.message


class SymmetryCheck(_CheckBase):
    """Left and right features must stay within ``max_diff`` of each other."""
    kind: Literal["symmetry"] = "symmetry"
    feature_fields: ClassVar[Tuple[str, ...]] = ("left", "right")
    left: str
    right: str
    max_diff: float = Field(..., gt=0)


class BaselineDeviationCheck(_CheckBase):
    """Feature must stay near the value captured at calibration."""
    kind: Literal["baseline_deviation"] = "baseline_deviation"
    feature: str
    max_deviation: float = Field(..., gt=0)
    direction: Literal["above", "below", "both"] = "both"
    relative: bool = False  # Deviation as a fraction of the baseline


class RangeCheck(_CheckBase):
    """Absolute clamp on a feature (unsafe depth, hyperextension, lockout)."""
    kind: Literal["range"] = "range"
    feature: str
    min_value: Optional[float] = None
    max_value: Optional[float] = None

    @model_validator(mode="after")
    def validate_bounds(self) -> "RangeCheck":
        if self.min_value is None and self.max_value is None:
            raise ValueError(f"Range check '{self.name}' needs min_value and/or max_value")
        if self.min_value is not None and self.max_value is not None and self.min_value >= self.max_value:
            raise ValueError(f"Range check '{self.name}': min_value must be below max_value")
        return self


CheckSpec = Annotated[
    Union[SymmetryCheck, BaselineDeviationCheck, RangeCheck],
    Field(discriminator="kind"),
]


class CalibrationSpec(_Schema):
    """
    When to capture baselines.

    Baselines are captured once per session, the first frame the session
    is in its start stage with ``feature`` inside the resting band.
    """
    feature: str
    min_value: Optional[float] = None
    max_value: Optional[float] = None
    features: Optional[List[str]] = None  # Defaults to every baseline_deviation feature


# =============================================================================
# Exercise definition
# =============================================================================

class ExerciseDefinition(_Schema):
    """Declarative per-exercise configuration."""
    id: str = Field(..., min_length=1)
    name: str
    description: Optional[str] = None

    features: List[FeatureSpec] = Field(..., min_length=1)
    stages: List[StageSpec] = Field(..., min_length=1)
    start_stage: str
    checks: List[CheckSpec] = Field(default_factory=list)
    calibration: Optional[CalibrationSpec] = None

    min_rep_interval_ms: float = Field(0.0, ge=0)
    on_violation: ViolationPolicy = ViolationPolicy.FREEZE

    initial_feedback: Optional[str] = None
    rep_feedback: str = "Rep {count} complete"
    rep_announcement: Optional[str] = "{count}"
    too_fast_feedback: Optional[str] = "Too fast, control the tempo"
    rep_voided_feedback: Optional[str] = "Rep not counted, watch your form"
    hold_complete_feedback: Optional[str] = "Set complete, well done"
    hold_complete_announcement: Optional[str] = "Set complete"

    @model_validator(mode="after")
    def validate_graph(self) -> "ExerciseDefinition":
        feature_names = _unique([f.name for f in self.features], "feature")
        stage_names = _unique([s.name for s in self.stages], "stage")
        _unique([c.name for c in self.checks], "check")

        # Combined features may only use features declared before them
        seen: Set[str] = set()
        for feature in self.features:
            for dep in feature.dependencies:
                if dep not in seen:
                    raise ValueError(f"Feature '{feature.name}' combines unknown or later feature '{dep}'")
            seen.add(feature.name)

        if self.start_stage not in stage_names:
            raise ValueError(f"Start stage '{self.start_stage}' is not declared")

        for stage in self.stages:
            for edge in stage.transitions:
                if edge.to not in stage_names:
                    raise ValueError(f"Stage '{stage.name}' has a transition to unknown stage '{edge.to}'")
                if edge.feature is not None and edge.feature not in feature_names:
                    raise ValueError(f"Stage '{stage.name}' uses unknown feature '{edge.feature}'")
                if stage.name == self.start_stage and edge.to == self.start_stage and edge.counts_rep:
                    raise ValueError(
                        f"Start stage '{stage.name}' loops onto itself and would count a rep on every firing; "
                        f"set counts_rep to false"
                    )
                if edge.tally is not None and (edge.to != self.start_stage or not edge.counts_rep):
                    raise ValueError(
                        f"Stage '{stage.name}': tally '{edge.tally}' only applies to rep-counting edges "
                        f"into the start stage"
                    )

        for check in self.checks:
            for name in check.feature_names:
                if name not in feature_names:
                    raise ValueError(f"Check '{check.name}' uses unknown feature '{name}'")
            for stage_name in check.stages or []:
                if stage_name not in stage_names:
                    raise ValueError(f"Check '{check.name}' is scoped to unknown stage '{stage_name}'")
            if isinstance(check, BaselineDeviationCheck) and self.calibration is None:
                raise ValueError(f"Check '{check.name}' needs a calibration section")

        if self.calibration is not None:
            for name in [self.calibration.feature] + list(self.calibration.features or []):
                if name not in feature_names:
                    raise ValueError(f"Calibration uses unknown feature '{name}'")

        unreachable = set(stage_names) - self._reachable_stages()
        if unreachable:
            raise ValueError(f"Unreachable stages: {sorted(unreachable)}")
        return self

    def _reachable_stages(self) -> Set[str]:
        edges: Dict[str, List[str]] = {s.name: [t.to for t in s.transitions] for s in self.stages}
        reached = {self.start_stage}
        queue = deque([self.start_stage])
        while queue:
            for nxt in edges.get(queue.popleft(), []):
                if nxt not in reached:
                    reached.add(nxt)
                    queue.append(nxt)
        return reached

    def stage(self, name: str) -> StageSpec:
        for stage in self.stages:
            if stage.name == name:
                return stage
        raise KeyError(name)

    def smoothing_windows(self, default_window: int) -> Dict[str, int]:
        return {f.name: f.window or default_window for f in self.features}

    @property
    def tally_names(self) -> List[str]:
        """Per-side rep counters, in declaration order."""
        names: List[str] = []
        for stage in self.stages:
            for edge in stage.transitions:
                if edge.tally is not None and edge.tally not in names:
                    names.append(edge.tally)
        return names

    @property
    def calibrated_features(self) -> List[str]:
        """Features whose baseline gets captured at calibration."""
        if self.calibration is None:
            return []
        if self.calibration.features is not None:
            return list(self.calibration.features)
        names: List[str] = []
        for check in self.checks:
            if isinstance(check, BaselineDeviationCheck) and check.feature not in names:
                names.append(check.feature)
        return names


def _unique(names: List[str], what: str) -> List[str]:
    duplicates = sorted({n for n in names if names.count(n) > 1})
    if duplicates:
        raise ValueError(f"Duplicate {what} names: {duplicates}")
    return names
