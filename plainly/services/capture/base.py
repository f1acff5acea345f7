"""
Abstract base class for capture devices.

A capture device wraps one physical microphone. The recording session is
its only caller and owns it exclusively for the lifetime of a capture.
"""

from abc import ABC, abstractmethod
from collections.abc import Callable

from plainly.core.models import DeviceNotice

NoticeListener = Callable[[DeviceNotice], None]


class BaseCaptureDevice(ABC):
    """Interface that every capture device must implement.

    Operations raise :class:`~plainly.core.exceptions.DeviceError` when the
    hardware refuses them.
    """

    def __init__(self) -> None:
        self._listener: NoticeListener | None = None

    def set_listener(self, listener: NoticeListener | None) -> None:
        """Register the callback that receives hardware notices."""
        self._listener = listener

    def notify(self, notice: DeviceNotice) -> None:
        """Forward a hardware notice to the registered listener, if any."""
        if self._listener is not None:
            self._listener(notice)

    @abstractmethod
    async def request_permission(self) -> bool:
        """Ask for microphone permission.

        Returns:
            True when recording is allowed.
        """

    @abstractmethod
    async def start(self) -> None:
        """Begin capturing audio."""

    @abstractmethod
    async def pause(self) -> None:
        """Stop accepting audio without finalizing the capture."""

    @abstractmethod
    async def resume(self) -> None:
        """Accept audio again after :meth:`pause`."""

    @abstractmethod
    async def stop(self) -> str:
        """Finalize the capture.

        Returns:
            A reference to the captured audio (e.g. a file path).
        """

    @abstractmethod
    async def release(self) -> None:
        """Give the microphone back and throw away any captured audio."""
