import logging

from repcoach.cv.voice_gate import ReplacingAnnouncer, VoiceGate


class RecordingBackend:
    def __init__(self, fail=False):
        self.calls = []
        self.fail = fail

    def speak(self, text):
        if self.fail:
            raise RuntimeError("speech engine unavailable")
        self.calls.append(("speak", text))

    def cancel(self):
        self.calls.append(("cancel", None))


class TestVoiceGate:
    def test_rising_edge_only(self):
        gate = VoiceGate()
        observed = [gate.observe("swing", v) for v in (False, True, True, True, False, True, True)]
        assert observed == [False, True, False, False, False, True, False]

    def test_conditions_independent(self):
        gate = VoiceGate()
        assert gate.observe("swing", True)
        assert gate.observe("lean", True)
        gate.observe("swing", False)
        assert not gate.is_latched("swing")
        assert gate.is_latched("lean")
        assert not gate.observe("lean", True)
        assert gate.observe("swing", True)


class TestReplacingAnnouncer:
    def test_cancels_before_speaking(self):
        backend = RecordingBackend()
        announcer = ReplacingAnnouncer(backend)
        announcer.announce("Keep the elbow fixed")
        announcer.announce("3")
        assert backend.calls == [
            ("cancel", None), ("speak", "Keep the elbow fixed"),
            ("cancel", None), ("speak", "3"),
        ]

    def test_empty_text_ignored(self):
        backend = RecordingBackend()
        ReplacingAnnouncer(backend).announce("")
        assert backend.calls == []

    def test_backend_failure_logged(self, caplog):
        announcer = ReplacingAnnouncer(RecordingBackend(fail=True))
        with caplog.at_level(logging.WARNING, logger="repcoach.cv.voice_gate"):
            announcer.announce("Hold")
        assert "Announcement failed" in caplog.text
