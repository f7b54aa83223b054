"""
Per-frame pose pipeline for rep counting and form feedback.

PIPELINE COMPONENTS:
1. LandmarkFrame: 33 BlazePose landmarks for one detection tick
2. geometry: Joint angles, normalized distances, vertical deviation
3. FeatureExtractor: Raw feature values for an exercise definition
4. FeatureSmoother: Fixed-window moving average per feature
5. Auxiliary checks: Symmetry, baseline deviation and range clamps
6. VoiceGate: Rising-edge latch so each warning is spoken once
7. advance / ExerciseSession: Stage machine, hold timers, rep debounce

Usage:
    from repcoach.cv import ExerciseSession, LandmarkFrame
    from repcoach.definitions import DefinitionRegistry

    definition = DefinitionRegistry.default().get("bicep_curl")
    session = ExerciseSession(definition)
    for points, ts in detector_output:
        update = session.process_frame(LandmarkFrame.from_landmarks(points, timestamp_ms=ts))
        if update.rep_increment:
            print(f"Rep {update.rep_count}")
"""

from repcoach.cv.landmarks import PoseLandmark, Landmark, LandmarkFrame, resolve_joint
from repcoach.cv.geometry import (
    angle_between, normalized_distance, vertical_deviation,
    coordinate_delta, register_feature_function
)
from repcoach.cv.feature_smoother import MovingAverage, FeatureSmoother
from repcoach.cv.features import FeatureExtractor
from repcoach.cv.auxiliary_checks import CheckResult, evaluate_check, capture_baselines
from repcoach.cv.voice_gate import VoiceGate, ReplacingAnnouncer
from repcoach.cv.session_engine import (
    SessionState,
    SessionUpdate,
    ExerciseSession,
    advance,
)

__all__ = [
    # Landmarks
    "PoseLandmark",
    "Landmark",
    "LandmarkFrame",
    "resolve_joint",

    # Geometry
    "angle_between",
    "normalized_distance",
    "vertical_deviation",
    "coordinate_delta",
    "register_feature_function",

    # Smoothing and features
    "MovingAverage",
    "FeatureSmoother",
    "FeatureExtractor",

    # Checks and voice
    "CheckResult",
    "evaluate_check",
    "capture_baselines",
    "VoiceGate",
    "ReplacingAnnouncer",

    # Session engine
    "SessionState",
    "SessionUpdate",
    "ExerciseSession",
    "advance",
]
