"""Errors raised by the transcription pipeline."""

from __future__ import annotations


class TranscriptionError(Exception):
    """A fatal failure in one stage of the pipeline.

    Attributes:
        stage: Name of the stage that failed (``storage`` or ``recognition``).
        message: Caller-safe description of the failure.
    """

    stage = "pipeline"

    def __init__(self, message: str, *, stage: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if stage is not None:
            self.stage = stage

    def to_dict(self) -> dict:
        return {"error": self.message, "stage": self.stage}


class StorageURLError(TranscriptionError):
    """Issuing a signed storage URL failed."""

    stage = "storage"


class RecognitionError(TranscriptionError):
    """The speech service rejected the audio or could not be reached."""

    stage = "recognition"
