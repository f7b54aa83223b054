"""
Landmark frames delivered by the external pose detector.

The detector (BlazePose / MediaPipe Pose) yields 33 body landmarks per
detection tick. This module gives them a stable, immutable representation
and resolves the joint references used by exercise definitions.
"""

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Dict, List, Optional, Sequence, Union


class PoseLandmark(IntEnum):
    """MediaPipe Pose landmark indices."""
    NOSE = 0
    LEFT_EYE_INNER = 1
    LEFT_EYE = 2
    LEFT_EYE_OUTER = 3
    RIGHT_EYE_INNER = 4
    RIGHT_EYE = 5
    RIGHT_EYE_OUTER = 6
    LEFT_EAR = 7
    RIGHT_EAR = 8
    MOUTH_LEFT = 9
    MOUTH_RIGHT = 10
    LEFT_SHOULDER = 11
    RIGHT_SHOULDER = 12
    LEFT_ELBOW = 13
    RIGHT_ELBOW = 14
    LEFT_WRIST = 15
    RIGHT_WRIST = 16
    LEFT_PINKY = 17
    RIGHT_PINKY = 18
    LEFT_INDEX = 19
    RIGHT_INDEX = 20
    LEFT_THUMB = 21
    RIGHT_THUMB = 22
    LEFT_HIP = 23
    RIGHT_HIP = 24
    LEFT_KNEE = 25
    RIGHT_KNEE = 26
    LEFT_ANKLE = 27
    RIGHT_ANKLE = 28
    LEFT_HEEL = 29
    RIGHT_HEEL = 30
    LEFT_FOOT_INDEX = 31
    RIGHT_FOOT_INDEX = 32


NUM_LANDMARKS = len(PoseLandmark)

# A joint reference in a definition: name, index, or a list of refs (midpoint)
JointRef = Union[str, int, List[Any]]


def resolve_joint(ref: Union[str, int]) -> int:
    """
    Resolve a single joint name or index to a landmark index.

    Raises:
        ValueError: if the joint is unknown
    """
    if isinstance(ref, bool):
        raise ValueError(f"Unknown joint: {ref!r}")
    if isinstance(ref, int):
        if 0 <= ref < NUM_LANDMARKS:
            return ref
        raise ValueError(f"Unknown joint index: {ref}")
    if isinstance(ref, str):
        try:
            return int(PoseLandmark[ref.strip().upper()])
        except KeyError:
            raise ValueError(f"Unknown joint: {ref!r}") from None
    raise ValueError(f"Unknown joint: {ref!r}")


def joint_indices(ref: JointRef) -> List[int]:
    """All landmark indices a joint reference depends on."""
    if isinstance(ref, (list, tuple)):
        if not ref:
            raise ValueError("Empty joint group")
        indices: List[int] = []
        for item in ref:
            indices.extend(joint_indices(item))
        return indices
    return [resolve_joint(ref)]


@dataclass(frozen=True)
class Landmark:
    """Single landmark in normalized image coordinates."""
    x: float  # Normalized x coordinate (0-1)
    y: float  # Normalized y coordinate (0-1), grows downward
    z: Optional[float] = None  # Depth relative to hips
    visibility: Optional[float] = None  # Confidence score (0-1)

    def is_visible(self, threshold: float) -> bool:
        """Landmarks without a visibility score are trusted."""
        return self.visibility is None or self.visibility >= threshold


@dataclass
class LandmarkFrame:
    """One detection tick: joint index -> Landmark."""
    landmarks: Dict[int, Landmark] = field(default_factory=dict)
    timestamp_ms: Optional[float] = None
    frame_number: Optional[int] = None

    def get(self, index: int, min_visibility: float = 0.0) -> Optional[Landmark]:
        """Landmark at ``index`` or None if absent or not visible enough."""
        landmark = self.landmarks.get(index)
        if landmark is None or not landmark.is_visible(min_visibility):
            return None
        return landmark

    @property
    def is_empty(self) -> bool:
        return not self.landmarks

    @classmethod
    def from_landmarks(
        cls,
        points: Sequence[Any],
        timestamp_ms: Optional[float] = None,
        frame_number: Optional[int] = None,
    ) -> "LandmarkFrame":
        """
        Build a frame from a detector-ordered sequence.

        Items may be mappings with ``x``/``y`` (and optional ``z``,
        ``visibility``) keys, objects with those attributes, or ``None``
        for joints the detector did not report.
        """
        landmarks: Dict[int, Landmark] = {}
        for index, point in enumerate(points):
            if point is None:
                continue
            if isinstance(point, dict):
                landmarks[index] = Landmark(
                    x=float(point["x"]),
                    y=float(point["y"]),
                    z=_optional_float(point.get("z")),
                    visibility=_optional_float(point.get("visibility")),
                )
            else:
                landmarks[index] = Landmark(
                    x=float(point.x),
                    y=float(point.y),
                    z=_optional_float(getattr(point, "z", None)),
                    visibility=_optional_float(getattr(point, "visibility", None)),
                )
        return cls(landmarks=landmarks, timestamp_ms=timestamp_ms, frame_number=frame_number)

    @classmethod
    def from_mediapipe(
        cls,
        result,
        timestamp_ms: Optional[float] = None,
        frame_number: Optional[int] = None,
    ) -> "LandmarkFrame":
        """Create a frame from a MediaPipe Tasks PoseLandmarker result."""
        if not result.pose_landmarks or len(result.pose_landmarks) == 0:
            return cls(landmarks={}, timestamp_ms=timestamp_ms, frame_number=frame_number)

        # Single-person: use first detected pose
        return cls.from_landmarks(
            result.pose_landmarks[0],
            timestamp_ms=timestamp_ms,
            frame_number=frame_number,
        )


def _optional_float(value: Any) -> Optional[float]:
    return None if value is None else float(value)

