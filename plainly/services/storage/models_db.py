"""
SQLAlchemy ORM models for persisted recordings.

One row per stopped capture: metadata is written as soon as the capture
stops, pipeline outputs (or the classified failure) are filled in later.
"""

from datetime import UTC, datetime
from typing import Any

from sqlalchemy import String, Text
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import JSON

from plainly.services.storage.database import Base


class Recording(Base):
    """A stopped capture and its processing outputs."""

    __tablename__ = "recordings"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    session_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    title: Mapped[str] = mapped_column(String(255), default="Recording")
    created_at: Mapped[datetime] = mapped_column(default=lambda: datetime.now(UTC))
    duration_seconds: Mapped[float] = mapped_column(default=0.0)
    audio_path: Mapped[str | None] = mapped_column(String(512), nullable=True)
    status: Mapped[str] = mapped_column(String(20), default="processing", index=True)

    transcript: Mapped[str | None] = mapped_column(Text, nullable=True)
    summary: Mapped[Any] = mapped_column(JSON, nullable=True)
    structured_transcript: Mapped[Any] = mapped_column(JSON, nullable=True)
    no_speech: Mapped[bool] = mapped_column(default=False)
    processing_error: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    def __repr__(self) -> str:
        return f"<Recording id={self.id} status={self.status!r}>"
