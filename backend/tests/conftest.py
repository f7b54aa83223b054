"""Shared fixtures: synthetic landmark frames and a small curl definition."""

import math
from typing import Dict, Iterable, List, Optional, Tuple

import pytest

from repcoach.config import Settings
from repcoach.cv.landmarks import Landmark, LandmarkFrame, PoseLandmark
from repcoach.schemas.exercise import ExerciseDefinition

SHOULDER = (0.5, 0.3)
HIP = (0.5, 0.7)
SEGMENT = 0.2


def make_frame(
    points: Dict[str, Tuple[float, float]],
    timestamp_ms: Optional[float] = None,
    visibility: Optional[Dict[str, float]] = None,
) -> LandmarkFrame:
    """Frame from joint name -> (x, y); every joint fully visible unless overridden."""
    visibility = visibility or {}
    landmarks = {
        int(PoseLandmark[name.upper()]): Landmark(x=x, y=y, visibility=visibility.get(name, 1.0))
        for name, (x, y) in points.items()
    }
    return LandmarkFrame(landmarks=landmarks, timestamp_ms=timestamp_ms)


def arm_points(elbow_angle: float, shoulder_angle: float = 0.0) -> Dict[str, Tuple[float, float]]:
    """
    Right-side hip/shoulder/elbow/wrist with exact joint angles.

    ``shoulder_angle`` is the hip-shoulder-elbow angle (0 = upper arm hanging
    along the torso), ``elbow_angle`` the shoulder-elbow-wrist angle
    (180 = straight arm).
    """
    phi = math.radians(shoulder_angle)
    elbow = (SHOULDER[0] + SEGMENT * math.sin(phi), SHOULDER[1] + SEGMENT * math.cos(phi))
    ux, uy = -math.sin(phi), -math.cos(phi)  # elbow -> shoulder
    theta = math.radians(elbow_angle)
    wrist = (
        elbow[0] + SEGMENT * (ux * math.cos(theta) - uy * math.sin(theta)),
        elbow[1] + SEGMENT * (ux * math.sin(theta) + uy * math.cos(theta)),
    )
    return {
        "right_hip": HIP,
        "right_shoulder": SHOULDER,
        "right_elbow": elbow,
        "right_wrist": wrist,
    }


def arm_frame(
    elbow_angle: float,
    timestamp_ms: Optional[float] = None,
    shoulder_angle: float = 0.0,
    visibility: Optional[Dict[str, float]] = None,
) -> LandmarkFrame:
    return make_frame(arm_points(elbow_angle, shoulder_angle), timestamp_ms, visibility)


def feed(session, angles: Iterable[float], start_ms: float, step_ms: float = 100.0,
         shoulder_angle: float = 0.0) -> List:
    """Push elbow angles through a session at a fixed cadence; returns the updates."""
    updates = []
    for i, angle in enumerate(angles):
        frame = arm_frame(angle, timestamp_ms=start_ms + i * step_ms, shoulder_angle=shoulder_angle)
        updates.append(session.process_frame(frame))
    return updates


@pytest.fixture
def settings() -> Settings:
    """No smoothing, so thresholds act on raw angles."""
    return Settings(
        default_smoothing_window=1,
        min_landmark_visibility=0.5,
        announce_rep_counts=True,
        definitions_dir=None,
    )


@pytest.fixture
def curl_data() -> dict:
    """rest -> flex -> hold -> rest, with a blocking shoulder-swing clamp."""
    return {
        "id": "test_curl",
        "name": "Test Curl",
        "features": [
            {"kind": "angle", "name": "elbow", "joints": ["right_shoulder", "right_elbow", "right_wrist"]},
            {"kind": "angle", "name": "shoulder", "joints": ["right_hip", "right_shoulder", "right_elbow"]},
        ],
        "start_stage": "rest",
        "stages": [
            {"name": "rest", "transitions": [
                {"to": "flex", "feature": "elbow", "comparator": "lt", "enter": 60},
            ]},
            {"name": "flex", "feedback": "Squeeze", "transitions": [
                {"to": "hold", "feature": "elbow", "comparator": "lt", "enter": 60, "confirm": 55, "hold_ms": 300},
            ]},
            {"name": "hold", "transitions": [
                {"to": "rest", "feature": "elbow", "comparator": "gt", "enter": 150},
            ]},
        ],
        "checks": [
            {
                "kind": "range",
                "name": "shoulder_swing",
                "severity": "blocking",
                "feature": "shoulder",
                "max_value": 40,
                "message": "Don't move your shoulder!",
                "announce": "Keep the elbow fixed",
            },
        ],
        "min_rep_interval_ms": 1200,
        "initial_feedback": "Start the exercise",
    }


@pytest.fixture
def curl_definition(curl_data) -> ExerciseDefinition:
    return ExerciseDefinition.model_validate(curl_data)
