"""Fixed stage layout and timing policy of the post-capture pipeline."""

from dataclasses import dataclass

from plainly.core.config import Settings, get_settings

TRANSCRIBE_STAGE = 0
POSTPROCESS_STAGE = 1  # display-only, completes with the transcribe call
EXTRACT_STAGE = 2
FINALIZE_STAGE = 3

STAGE_LABELS = (
    "Listening back",
    "Transcribing",
    "Summarizing",
    "Finishing touches",
)


@dataclass(frozen=True)
class StageDescriptor:
    """One pipeline stage as presented to the user."""

    index: int
    label: str
    min_display_seconds: float


@dataclass(frozen=True)
class PipelinePolicy:
    """Timing policy for a pipeline run.

    Attributes:
        stage_min_display_seconds: Display floor per stage, in stage order.
        stage_gap_seconds: Pause between a stage completing and the next one
            activating.
        finish_delay_seconds: Pause after the last stage before the run
            reports success.
        slow_notice_seconds: Wait after which a "taking longer than usual"
            notice is raised for the active stage.
        background_notice_seconds: Wait after which the caller is offered to
            continue in the background.
    """

    stage_min_display_seconds: tuple[float, ...] = (2.0, 2.0, 2.0, 1.5)
    stage_gap_seconds: float = 0.2
    finish_delay_seconds: float = 0.8
    slow_notice_seconds: float = 15.0
    background_notice_seconds: float = 30.0

    def __post_init__(self) -> None:
        if len(self.stage_min_display_seconds) != len(STAGE_LABELS):
            raise ValueError(
                f"Expected {len(STAGE_LABELS)} stage display floors, "
                f"got {len(self.stage_min_display_seconds)}"
            )
        if self.background_notice_seconds < self.slow_notice_seconds:
            raise ValueError("background_notice_seconds must not be below slow_notice_seconds")

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "PipelinePolicy":
        settings = settings or get_settings()
        return cls(
            stage_min_display_seconds=tuple(settings.stage_min_display_seconds),
            stage_gap_seconds=settings.stage_gap_seconds,
            finish_delay_seconds=settings.finish_delay_seconds,
            slow_notice_seconds=settings.slow_notice_seconds,
            background_notice_seconds=settings.background_notice_seconds,
        )

    def build_stages(self) -> tuple[StageDescriptor, ...]:
        return tuple(
            StageDescriptor(index=i, label=label, min_display_seconds=floor)
            for i, (label, floor) in enumerate(
                zip(STAGE_LABELS, self.stage_min_display_seconds, strict=True)
            )
        )
