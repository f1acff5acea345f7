"""
Plainly exception hierarchy.

All application-specific exceptions inherit from PlainlyError,
enabling centralized error handling in the API middleware layer.

Raw capture-device failures (``DeviceError``) are caught by the recording
session and translated into state transitions; only ``DeviceStartError``
and ``PermissionDeniedError`` ever reach a caller.
"""

from datetime import UTC, datetime


class PlainlyError(Exception):
    """Base exception for all Plainly errors."""

    def __init__(
        self,
        detail: str = "An unexpected error occurred",
        code: str = "PLAINLY_ERROR",
        status_code: int = 500,
    ) -> None:
        self.detail = detail
        self.code = code
        self.status_code = status_code
        self.timestamp = datetime.now(UTC).isoformat()
        super().__init__(detail)


class RecordingNotFoundError(PlainlyError):
    """Raised when a recording ID does not exist."""

    def __init__(self, recording_id: int | str) -> None:
        super().__init__(
            detail=f"Recording not found: {recording_id}",
            code="RECORDING_NOT_FOUND",
            status_code=404,
        )


class RecordingAlreadyActiveError(PlainlyError):
    """Raised when trying to start a capture while the device is still owned."""

    def __init__(self) -> None:
        super().__init__(
            detail="A recording is already active",
            code="RECORDING_ALREADY_ACTIVE",
            status_code=409,
        )


class NoActiveSessionError(PlainlyError):
    """Raised when a session command arrives with no capture session."""

    def __init__(self) -> None:
        super().__init__(
            detail="No recording session is active",
            code="NO_ACTIVE_SESSION",
            status_code=409,
        )


class DeviceError(PlainlyError):
    """Raised by a capture device when the hardware refuses an operation."""

    def __init__(self, detail: str = "Capture device error") -> None:
        super().__init__(detail=detail, code="DEVICE_ERROR", status_code=500)


class PermissionDeniedError(PlainlyError):
    """Raised when microphone permission is not granted."""

    def __init__(self) -> None:
        super().__init__(
            detail="Microphone permission is required to record",
            code="PERMISSION_DENIED",
            status_code=403,
        )


class DeviceStartError(PlainlyError):
    """Raised when the capture device could not start after all retries."""

    def __init__(self, attempts: int, detail: str = "") -> None:
        self.attempts = attempts
        message = f"Could not start recording after {attempts} attempts"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(detail=message, code="DEVICE_START_FAILED", status_code=503)


class ProcessingServiceError(PlainlyError):
    """Raised when a remote processing call fails for a non-network reason."""

    def __init__(
        self, detail: str = "Processing failed", upstream_status: int | None = None
    ) -> None:
        self.upstream_status = upstream_status
        super().__init__(detail=detail, code="PROCESSING_ERROR", status_code=502)


class PipelineStateError(PlainlyError):
    """Raised when a pipeline command is not valid in the run's current state."""

    def __init__(self, detail: str) -> None:
        super().__init__(detail=detail, code="PIPELINE_STATE_ERROR", status_code=409)
