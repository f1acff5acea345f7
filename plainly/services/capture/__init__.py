"""Capture devices (microphone adapters)."""

from plainly.services.capture.base import BaseCaptureDevice
from plainly.services.capture.stream import StreamCaptureDevice

__all__ = ["BaseCaptureDevice", "StreamCaptureDevice"]
