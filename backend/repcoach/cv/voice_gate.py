"""
Warning latches and voice announcement delivery.

The engine reports a warning aloud only on its rising edge: the first
frame a condition is violated. While the condition persists it stays
silent, and it speaks again only after the condition clears and
re-triggers.

Speech itself belongs to the host. ``ReplacingAnnouncer`` adapts any
speech backend with ``speak``/``cancel`` so that a new announcement
always cancels the one in flight instead of queueing behind it.
"""

from typing import Dict, Protocol
import logging

logger = logging.getLogger(__name__)


class VoiceGate:
    """Latched per-condition warning flags for one session."""

    def __init__(self):
        self._latched: Dict[str, bool] = {}

    def observe(self, condition: str, violated: bool) -> bool:
        """
        Record the condition's state for this frame.

        Returns:
            True only on the rising edge (clear -> violated)
        """
        was_latched = self._latched.get(condition, False)
        self._latched[condition] = violated
        return violated and not was_latched

    def is_latched(self, condition: str) -> bool:
        return self._latched.get(condition, False)


class SpeechBackend(Protocol):
    """What the host's text-to-speech must offer."""

    def speak(self, text: str) -> None: ...

    def cancel(self) -> None: ...


class Announcer(Protocol):
    """Fire-and-forget announcement capability supplied by the host."""

    def announce(self, text: str) -> None: ...


class ReplacingAnnouncer:
    """
    Announcer that never queues.

    Each announcement cancels the utterance in flight and speaks the new
    text, so voice feedback lags the current stage by at most one phrase.
    Backend failures are logged and dropped; speech must never stall the
    frame loop.
    """

    def __init__(self, backend: SpeechBackend):
        self.backend = backend

    def announce(self, text: str) -> None:
        if not text:
            return
        try:
            self.backend.cancel()
            self.backend.speak(text)
        except Exception as e:
            logger.warning(f"Announcement failed ({text!r}): {e}")

