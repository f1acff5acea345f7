"""Capture session state machine."""

from plainly.services.recording.session import RecordingSession, SessionPolicy

__all__ = ["RecordingSession", "SessionPolicy"]
