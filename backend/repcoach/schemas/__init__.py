"""Pydantic schemas for exercise definitions."""

from repcoach.schemas.exercise import (
    DefinitionError,
    Comparator,
    Severity,
    ViolationPolicy,
    AngleFeature,
    DistanceFeature,
    VerticalDeviationFeature,
    DeltaFeature,
    CustomFeature,
    CombineFeature,
    TransitionSpec,
    StageSpec,
    SymmetryCheck,
    BaselineDeviationCheck,
    RangeCheck,
    CalibrationSpec,
    ExerciseDefinition,
)

__all__ = [
    "DefinitionError",
    "Comparator",
    "Severity",
    "ViolationPolicy",
    "AngleFeature",
    "DistanceFeature",
    "VerticalDeviationFeature",
    "DeltaFeature",
    "CustomFeature",
    "CombineFeature",
    "TransitionSpec",
    "StageSpec",
    "SymmetryCheck",
    "BaselineDeviationCheck",
    "RangeCheck",
    "CalibrationSpec",
    "ExerciseDefinition",
]
