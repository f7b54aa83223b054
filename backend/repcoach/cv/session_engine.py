"""
Per-frame session engine: stage machine, rep counting and feedback.

One engine drives every exercise; what differs between exercises lives in
its ``ExerciseDefinition``. Per frame:

1. Extract raw features and push them through the smoother. A required
   feature without a sample (missing joint, low visibility, degenerate
   geometry) skips the frame.
2. Capture calibration baselines lazily while resting in the start stage.
3. Evaluate auxiliary checks. A blocking violation freezes the stage
   machine (or resets it to the start stage, per definition) and the
   frame ends there.
4. Evaluate the current stage's transitions in declaration order, first
   match wins, honouring confirm bands and hold timers.
5. Count a rep when a rep-counting transition re-enters the start stage,
   subject to the debounce interval and to rep-voiding advisory faults.
   Stages with a hold target accumulate time only while no check is
   violated.

The session state is a plain value owned by the caller; ``advance`` is its
only writer. Announcements are returned, never spoken here.
"""

import dataclasses
import logging
import math
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set

from repcoach.config import Settings, get_settings
from repcoach.cv.auxiliary_checks import CheckResult, capture_baselines, evaluate_check
from repcoach.cv.feature_smoother import FeatureSmoother
from repcoach.cv.features import FeatureExtractor
from repcoach.cv.landmarks import LandmarkFrame
from repcoach.cv.voice_gate import Announcer, VoiceGate
from repcoach.schemas.exercise import (
    ExerciseDefinition,
    Severity,
    StageSpec,
    TransitionSpec,
    ViolationPolicy,
)

logger = logging.getLogger(__name__)


@dataclass
class SessionUpdate:
    """What the host gets back for every frame."""
    stage: str
    rep_count: int
    rep_increment: int = 0
    active_warnings: List[str] = field(default_factory=list)
    feedback_text: Optional[str] = None
    announcements: List[str] = field(default_factory=list)
    features: Dict[str, float] = field(default_factory=dict)  # Smoothed values
    hold_ms: float = 0.0  # Good-form time accumulated in the current stage
    hold_complete: bool = False
    tallies: Dict[str, int] = field(default_factory=dict)
    skipped: bool = False


@dataclass
class SessionState:
    """
    Mutable state of one exercise session.

    Created when the exercise starts and discarded when it ends.
    """
    stage: str
    smoother: FeatureSmoother
    rep_count: int = 0
    hold_started_at: Optional[float] = None
    hold_edge: Optional[int] = None  # Index of the transition owning the hold timer
    stage_entered_at: Optional[float] = None
    last_rep_at: Optional[float] = None
    calibration: Dict[str, float] = field(default_factory=dict)
    voice_gate: VoiceGate = field(default_factory=VoiceGate)
    cycle_faults: Set[str] = field(default_factory=set)
    feedback: Optional[str] = None
    last_update: Optional[SessionUpdate] = None
    tallies: Dict[str, int] = field(default_factory=dict)

    # Hold accumulator for stages with a hold target
    valid_hold_ms: float = 0.0
    last_valid_at: Optional[float] = None
    hold_complete: bool = False

    # Session options, fixed at start
    min_visibility: float = 0.5
    announce_rep_counts: bool = True

    @classmethod
    def start(cls, definition: ExerciseDefinition, settings: Optional[Settings] = None) -> "SessionState":
        """Fresh state positioned in the definition's start stage."""
        settings = settings or get_settings()
        smoother = FeatureSmoother(
            windows=definition.smoothing_windows(settings.default_smoothing_window),
            default_window=settings.default_smoothing_window,
        )
        start_stage = definition.stage(definition.start_stage)
        return cls(
            stage=definition.start_stage,
            smoother=smoother,
            feedback=definition.initial_feedback or start_stage.feedback,
            tallies={name: 0 for name in definition.tally_names},
            min_visibility=settings.min_landmark_visibility,
            announce_rep_counts=settings.announce_rep_counts,
        )


# =============================================================================
# Engine
# =============================================================================

def advance(
    state: SessionState,
    frame: LandmarkFrame,
    definition: ExerciseDefinition,
    now: Optional[float] = None,
) -> SessionUpdate:
    """
    Evaluate one frame and return the session update.

    Args:
        state: Session state, mutated in place
        frame: Landmarks for this detection tick
        definition: The exercise being performed
        now: Current time in milliseconds; defaults to the frame's
            timestamp, then to a monotonic clock

    Returns:
        SessionUpdate for this frame (the previous one, flagged as
        skipped, when the frame carries no usable sample)
    """
    if now is None:
        now = frame.timestamp_ms if frame.timestamp_ms is not None else time.monotonic() * 1000.0

    if frame.is_empty:
        logger.debug(f"Frame {frame.frame_number}: skipped, no pose detected")
        return _skipped(state)

    # --- 1. Features ---
    raw = FeatureExtractor(definition, state.min_visibility).extract(frame)
    missing = [
        spec.name for spec in definition.features
        if spec.required and not math.isfinite(raw.get(spec.name, math.nan))
    ]
    if missing:
        logger.debug(f"Frame {frame.frame_number}: skipped, no sample for {missing}")
        return _skipped(state)

    smoothed: Dict[str, float] = {}
    for spec in definition.features:
        value = raw[spec.name]
        if math.isfinite(value):
            smoothed[spec.name] = state.smoother.push(spec.name, value)

    if state.stage_entered_at is None:
        state.stage_entered_at = now
        logger.info(f"Session '{definition.id}' started in stage '{state.stage}'")

    announcements: List[str] = []
    in_start_stage = state.stage == definition.start_stage

    # --- 2. Calibration ---
    captured = capture_baselines(
        definition.calibration,
        definition.calibrated_features,
        smoothed,
        state.calibration,
        in_start_stage,
    )
    if captured:
        logger.info(f"Calibration captured: {', '.join(f'{k}={v:.3f}' for k, v in captured.items())}")

    # --- 3. Auxiliary checks ---
    active_warnings: List[str] = []
    blocking_message: Optional[str] = None
    advisory_message: Optional[str] = None

    for check in definition.checks:
        in_scope = check.stages is None or state.stage in check.stages
        result = evaluate_check(check, smoothed, state.calibration) if in_scope else CheckResult.ok()

        was_latched = state.voice_gate.is_latched(check.name)
        if state.voice_gate.observe(check.name, result.violated):
            announcements.append(check.spoken_text)
            logger.info(f"Check '{check.name}' violated ({check.severity.value}): value={result.value}")

        if result.violated:
            active_warnings.append(check.name)
            if check.severity is Severity.BLOCKING:
                if blocking_message is None:
                    blocking_message = result.message
            elif advisory_message is None:
                advisory_message = result.message
            if check.voids_rep and not in_start_stage:
                state.cycle_faults.add(check.name)
        elif was_latched:
            logger.info(f"Check '{check.name}' cleared")
            if check.cleared_message:
                state.feedback = check.cleared_message

    if blocking_message is not None:
        _clear_hold(state)
        state.last_valid_at = None
        if definition.on_violation is ViolationPolicy.RESET and state.stage != definition.start_stage:
            logger.info(f"Blocking violation: resetting '{state.stage}' -> '{definition.start_stage}'")
            _enter_stage(state, definition.start_stage, now)
            state.cycle_faults.clear()
        return _emit(state, 0, active_warnings, blocking_message, announcements, smoothed)

    _track_hold(state, definition, not active_warnings, now, announcements)

    # --- 4. Stage transitions ---
    rep_increment = 0
    edge = _select_transition(state, definition.stage(state.stage), smoothed, now)
    if edge is not None:
        previous = state.stage
        target = definition.stage(edge.to)
        _enter_stage(state, target.name, now)
        logger.info(f"Stage '{previous}' -> '{target.name}' at {now:.0f}ms")

        if target.feedback:
            state.feedback = target.feedback
        if edge.feedback:
            state.feedback = edge.feedback
        if target.announce:
            announcements.append(target.announce)

        # --- 5. Rep counting ---
        if target.name == definition.start_stage:
            if edge.counts_rep:
                rep_increment = _complete_cycle(state, definition, edge, now, announcements)
            else:
                state.cycle_faults.clear()
                logger.info(f"Attempt aborted: '{previous}' -> '{target.name}', no rep")

    feedback = advisory_message or state.feedback
    return _emit(state, rep_increment, active_warnings, feedback, announcements, smoothed)


def _select_transition(
    state: SessionState,
    stage: StageSpec,
    features: Dict[str, float],
    now: float,
) -> Optional[TransitionSpec]:
    """First transition of ``stage`` that fires this frame, if any."""
    for index, edge in enumerate(stage.transitions):
        if edge.is_timed:
            if now - state.stage_entered_at >= edge.after_ms:
                return edge
            continue

        value = features.get(edge.feature)
        if value is None or not edge.comparator.holds(value, edge.enter):
            if state.hold_edge == index:
                _clear_hold(state)
            continue

        if not edge.needs_hold:
            return edge

        if not edge.comparator.holds(value, edge.confirm_threshold):
            # Left the confirm band: no partial credit
            if state.hold_edge == index:
                _clear_hold(state)
            continue

        if state.hold_edge != index:
            state.hold_started_at = now
            state.hold_edge = index
            logger.debug(f"Hold started on '{stage.name}' -> '{edge.to}' ({edge.feature}={value:.1f})")

        if now - state.hold_started_at >= edge.hold_ms:
            return edge
        # Hold in progress; this edge owns the frame
        return None
    return None


def _complete_cycle(
    state: SessionState,
    definition: ExerciseDefinition,
    edge: TransitionSpec,
    now: float,
    announcements: List[str],
) -> int:
    """Apply the rep rules for a rep-counting re-entry into the start stage."""
    faults = sorted(state.cycle_faults)
    state.cycle_faults.clear()

    if faults:
        logger.info(f"Rep voided by {faults}")
        if definition.rep_voided_feedback:
            state.feedback = definition.rep_voided_feedback
        return 0

    if state.last_rep_at is not None and now - state.last_rep_at < definition.min_rep_interval_ms:
        logger.info(f"Rep rejected: {now - state.last_rep_at:.0f}ms since last rep "
                    f"< {definition.min_rep_interval_ms:.0f}ms")
        if definition.too_fast_feedback:
            state.feedback = definition.too_fast_feedback
        return 0

    state.rep_count += 1
    state.last_rep_at = now
    tally_count = 0
    if edge.tally is not None:
        tally_count = state.tallies.get(edge.tally, 0) + 1
        state.tallies[edge.tally] = tally_count

    fields = {"count": state.rep_count, "tally": edge.tally or "", "tally_count": tally_count}
    state.feedback = definition.rep_feedback.format(**fields)
    if definition.rep_announcement and state.announce_rep_counts:
        announcements.append(definition.rep_announcement.format(**fields))
    logger.info(f"Rep #{state.rep_count} completed" + (f" ({edge.tally} #{tally_count})" if edge.tally else ""))
    return 1


def _track_hold(
    state: SessionState,
    definition: ExerciseDefinition,
    valid: bool,
    now: float,
    announcements: List[str],
):
    """Accumulate good-form time toward the current stage's hold target."""
    target_ms = definition.stage(state.stage).hold_target_ms
    if target_ms is None:
        return
    if not valid:
        state.last_valid_at = None
        return

    if state.last_valid_at is not None:
        state.valid_hold_ms += now - state.last_valid_at
    state.last_valid_at = now

    if not state.hold_complete and state.valid_hold_ms >= target_ms:
        state.hold_complete = True
        logger.info(f"Hold target reached in '{state.stage}' after {state.valid_hold_ms:.0f}ms")
        if definition.hold_complete_feedback:
            state.feedback = definition.hold_complete_feedback
        if definition.hold_complete_announcement:
            announcements.append(definition.hold_complete_announcement)


def _enter_stage(state: SessionState, stage: str, now: float):
    state.stage = stage
    state.stage_entered_at = now
    state.valid_hold_ms = 0.0
    state.last_valid_at = None
    state.hold_complete = False
    _clear_hold(state)


def _clear_hold(state: SessionState):
    state.hold_started_at = None
    state.hold_edge = None


def _emit(
    state: SessionState,
    rep_increment: int,
    active_warnings: List[str],
    feedback: Optional[str],
    announcements: List[str],
    features: Dict[str, float],
) -> SessionUpdate:
    update = SessionUpdate(
        stage=state.stage,
        rep_count=state.rep_count,
        rep_increment=rep_increment,
        active_warnings=active_warnings,
        feedback_text=feedback,
        announcements=announcements,
        features=features,
        hold_ms=state.valid_hold_ms,
        hold_complete=state.hold_complete,
        tallies=dict(state.tallies),
    )
    state.last_update = update
    return update


def _skipped(state: SessionState) -> SessionUpdate:
    """Previous update, without its one-shot fields."""
    # Hold time does not accrue across frames without a usable sample
    state.last_valid_at = None
    if state.last_update is None:
        return SessionUpdate(
            stage=state.stage,
            rep_count=state.rep_count,
            feedback_text=state.feedback,
            tallies=dict(state.tallies),
            skipped=True,
        )
    return dataclasses.replace(
        state.last_update,
        rep_increment=0,
        announcements=[],
        active_warnings=list(state.last_update.active_warnings),
        skipped=True,
    )


# =============================================================================
# Session wrapper
# =============================================================================

class ExerciseSession:
    """
    Convenience wrapper binding a definition, its state and an announcer.

    Usage:
        session = ExerciseSession(definition, announcer=ReplacingAnnouncer(tts))
        for frame in frames:
            update = session.process_frame(frame)
    """

    def __init__(
        self,
        definition: ExerciseDefinition,
        settings: Optional[Settings] = None,
        announcer: Optional[Announcer] = None,
    ):
        self.definition = definition
        self.settings = settings or get_settings()
        self.announcer = announcer
        self.state = SessionState.start(definition, self.settings)

    def process_frame(self, frame: LandmarkFrame, now: Optional[float] = None) -> SessionUpdate:
        """Advance the session by one frame and hand announcements to the announcer."""
        update = advance(self.state, frame, self.definition, now)
        if self.announcer is not None:
            for text in update.announcements:
                self.announcer.announce(text)
        return update

    @property
    def stage(self) -> str:
        return self.state.stage

    @property
    def rep_count(self) -> int:
        return self.state.rep_count

    def reset(self):
        """Restart counting from the start stage, dropping all history."""
        logger.info(f"Session '{self.definition.id}' reset at {self.state.rep_count} reps")
        self.state = SessionState.start(self.definition, self.settings)

