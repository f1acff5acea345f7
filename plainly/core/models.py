"""
Pydantic v2 models shared by the services and the API layer.

Capture session, pipeline run, processing results, classified errors,
presentation events and recording responses.
"""

from datetime import UTC, datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field

# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


class HealthResponse(BaseModel):
    """GET /health response."""

    status: str = "ok"
    version: str = "0.1.0"
    database: str = "ok"
    timestamp: datetime


# ---------------------------------------------------------------------------
# Capture session
# ---------------------------------------------------------------------------


class SessionState(StrEnum):
    """Lifecycle states of a single capture attempt."""

    idle = "idle"
    recording = "recording"
    paused = "paused"
    mic_interrupted = "mic_interrupted"
    mic_lost = "mic_lost"
    stopped = "stopped"


class DeviceNotice(StrEnum):
    """Asynchronous notifications raised by a capture device."""

    interrupted = "interrupted"
    recovered = "recovered"


class SessionSnapshot(BaseModel):
    """Read-only view of a capture session."""

    id: str
    state: SessionState
    elapsed_seconds: float = 0.0
    max_duration_seconds: float
    audio_ref: str | None = None
    started_at: datetime | None = None
    discarded: bool = False


# ---------------------------------------------------------------------------
# Processing results
# ---------------------------------------------------------------------------


class TranscriptionOutcome(BaseModel):
    """Result of the remote Transcribe call."""

    text: str = ""
    no_speech: bool = False


class ExtractionOutcome(BaseModel):
    """Result of the remote Extract call.

    Each output is the parsed structured JSON object, or the raw string when
    the service returned something that is not a JSON object.
    """

    summary: dict | str | None = None
    structured_transcript: dict | str | None = None


class PipelineResult(BaseModel):
    """Payload of a finished (or partially finished) pipeline run."""

    transcript: str = ""
    summary: dict | str | None = None
    structured_transcript: dict | str | None = None
    empty: bool = False  # no speech detected; render an empty state, not an error


# ---------------------------------------------------------------------------
# Pipeline run
# ---------------------------------------------------------------------------


class StageStatus(StrEnum):
    pending = "pending"
    active = "active"
    completed = "completed"
    failed = "failed"


class PipelineStatus(StrEnum):
    pending = "pending"
    running = "running"
    succeeded = "succeeded"
    failed = "failed"
    aborted = "aborted"


class ErrorKind(StrEnum):
    """Failure classes of a pipeline run."""

    network = "network"  # Transcribe could not reach the service; raw audio is safe
    midway = "midway"  # Transcribe succeeded, Extract failed; transcript preserved
    generic = "generic"


class NoticeLevel(StrEnum):
    """Advisory timeout notices raised while a stage waits on its signal."""

    slow = "slow"
    background = "background"
    cleared = "cleared"


class RecoveryOption(StrEnum):
    retry = "retry"
    view_partial = "view_partial"
    abandon = "abandon"


class ClassifiedError(BaseModel):
    """A pipeline failure with enough context to pick a recovery path."""

    kind: ErrorKind
    failed_stage_index: int
    message: str
    partial_result: PipelineResult | None = None
    recovery_options: list[RecoveryOption] = Field(default_factory=list)


class StageSnapshot(BaseModel):
    """A single stage as shown to the presentation layer."""

    index: int
    label: str
    min_display_seconds: float
    status: StageStatus
    activated_at: float | None = None
    floor_elapsed_at: float | None = None
    signal_at: float | None = None
    completed_at: float | None = None


class PipelineRunSnapshot(BaseModel):
    """Read-only view of a pipeline run."""

    audio_ref: str
    status: PipelineStatus
    attempt: int
    active_stage_index: int
    stages: list[StageSnapshot]
    notice: NoticeLevel | None = None
    result: PipelineResult | None = None
    error: ClassifiedError | None = None


# ---------------------------------------------------------------------------
# Presentation events
# ---------------------------------------------------------------------------


class EventType(StrEnum):
    """Discriminator for events sent to the presentation layer."""

    session_state_changed = "session_state_changed"
    duration_tick = "duration_tick"
    duration_warning = "duration_warning"
    auto_stopped = "auto_stopped"
    device_start_failed = "device_start_failed"
    stage_activated = "stage_activated"
    stage_completed = "stage_completed"
    timeout_notice = "timeout_notice"
    pipeline_succeeded = "pipeline_succeeded"
    pipeline_failed = "pipeline_failed"
    pipeline_aborted = "pipeline_aborted"
    recording_saved = "recording_saved"
    recording_ready = "recording_ready"
    recording_failed = "recording_failed"
    title_generated = "title_generated"


class Event(BaseModel):
    """JSON event published on the coordinator's event stream."""

    type: EventType
    data: dict = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))


# ---------------------------------------------------------------------------
# Recordings
# ---------------------------------------------------------------------------


class RecordingStatus(StrEnum):
    """Processing status of a persisted recording."""

    processing = "processing"
    completed = "completed"
    failed = "failed"
    aborted = "aborted"  # processing cancelled by the user; the audio is kept


class RecordingResponse(BaseModel):
    """Standard recording representation returned by the API."""

    id: int
    title: str
    status: RecordingStatus
    created_at: datetime
    duration_seconds: float = 0.0
    audio_path: str | None = None
    transcript: str | None = None
    summary: dict | str | None = None
    structured_transcript: dict | str | None = None
    no_speech: bool = False
    processing_error: dict | None = None


class RenameRecordingRequest(BaseModel):
    """PATCH /recordings/{id} request body."""

    model_config = ConfigDict(str_strip_whitespace=True)

    title: str = Field(min_length=1, max_length=200)


class DeleteRecordingResponse(BaseModel):
    """DELETE /recordings/{id} response."""

    id: int
    deleted: bool = True


class CommandResponse(BaseModel):
    """Response of a session command endpoint."""

    session: SessionSnapshot | None = None
    pipeline: PipelineRunSnapshot | None = None
    recording_id: int | None = None
