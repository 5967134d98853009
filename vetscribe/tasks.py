"""
Orchestration layer for the transcription pipeline.

This module coordinates the steps that turn an uploaded recording into a
speaker-labelled transcript and a filtered clinical version of it:

1. Issue a time-limited read URL for the recording.
2. Run diarised, word-level speech recognition on that URL.
3. Consolidate the returned tokens into speaker turns.
4. Filter the transcript with a language model.

Each step returns a :class:`StageResult`.  A failure in steps 1 or 2 stops
the run and raises the matching :class:`~vetscribe.errors.TranscriptionError`;
the filter step never fails and degrades to the unfiltered transcript.
Nothing is retried here.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import asdict, dataclass
from typing import Any, Optional, Tuple

from . import content_filter, transcript_formatter
from .errors import RecognitionError, StorageURLError, TranscriptionError
from .settings import Settings
from .storage import SignedUrlIssuer
from .stt_service import RecognitionOptions, RecognitionResult, SpeechRecognizer

logger = logging.getLogger(__name__)

STORAGE_STAGE = "storage"
RECOGNITION_STAGE = "recognition"
FORMAT_STAGE = "format"
FILTER_STAGE = "filter"


@dataclass
class StageResult:
    """Outcome of one pipeline stage.

    ``data`` carries the stage output on success.  On failure ``message``
    holds a caller-safe description and ``error`` the original exception.
    """

    stage: str
    success: bool
    data: Any = None
    message: Optional[str] = None
    error: Optional[BaseException] = None


@dataclass(frozen=True)
class TranscriptionResult:
    raw_transcript: str
    filtered_transcript: str
    language: str
    audio_reference: str
    warnings: Tuple[str, ...] = ()

    def to_dict(self) -> dict:
        data = asdict(self)
        data["warnings"] = list(self.warnings)
        return data


def _log_event(event: str, **fields: Any) -> None:
    logger.info(json.dumps({"event": event, **fields}))


_FAILURE_MESSAGES = {
    STORAGE_STAGE: "Failed to generate download URL",
    RECOGNITION_STAGE: "Failed to transcribe audio",
}


def _failure(stage: str, exc: Exception) -> StageResult:
    message = exc.message if isinstance(exc, TranscriptionError) else _FAILURE_MESSAGES[stage]
    return StageResult(stage=stage, success=False, message=message, error=exc)


async def issue_audio_url(audio_key: str, signer: SignedUrlIssuer, settings: Settings) -> StageResult:
    """Stage 1: a read URL that outlives the recognition call.

    V4 signing may call the IAM API, so it runs in a worker thread.
    """
    try:
        signed = await asyncio.to_thread(
            signer.issue_read_url, audio_key, ttl_seconds=settings.read_url_ttl_seconds
        )
    except Exception as exc:
        return _failure(STORAGE_STAGE, exc)
    return StageResult(stage=STORAGE_STAGE, success=True, data=signed.url)


async def recognise_audio(
    audio_url: str, language: Optional[str], recognizer: SpeechRecognizer
) -> StageResult:
    """Stage 2: diarised, word-level recognition with audio event tagging."""
    options = RecognitionOptions(diarize=True, tag_audio_events=True, granularity="word")
    try:
        result = await recognizer.recognize(audio_url, language, options)
    except Exception as exc:
        return _failure(RECOGNITION_STAGE, exc)
    return StageResult(stage=RECOGNITION_STAGE, success=True, data=result)


def format_segments(recognition: RecognitionResult) -> StageResult:
    """Stage 3: consolidate tokens into a labelled transcript."""
    segments = transcript_formatter.consolidate(recognition.tokens)
    raw_transcript = transcript_formatter.render_transcript(segments)
    logger.info(
        "Consolidated %d tokens into %d speaker turns %s",
        len(recognition.tokens),
        len(segments),
        transcript_formatter.speaker_word_counts(segments),
    )
    return StageResult(stage=FORMAT_STAGE, success=True, data=raw_transcript)


async def filter_text(raw_transcript: str, settings: Settings) -> StageResult:
    """Stage 4: always succeeds; ``data`` is the filtered or the raw text."""
    outcome = await content_filter.apply_filter(raw_transcript, settings=settings)
    return StageResult(
        stage=FILTER_STAGE,
        success=True,
        data=outcome.text,
        message=None if outcome.filtered else f"degraded: {outcome.error}",
    )


async def transcribe(
    audio_key: str,
    language: Optional[str] = None,
    *,
    settings: Settings,
    signer: SignedUrlIssuer,
    recognizer: SpeechRecognizer,
) -> TranscriptionResult:
    """Transcribe the recording stored under ``audio_key``.

    Args:
        audio_key: Object key of the uploaded recording.
        language: Requested language code; ``None`` uses the configured default.
        settings: Runtime configuration.
        signer: Issues the signed read URL.
        recognizer: Speech provider.

    Returns:
        A fresh :class:`TranscriptionResult`.

    Raises:
        StorageURLError: The read URL could not be issued.
        RecognitionError: The speech service failed.
    """
    language = language or settings.default_language
    _log_event("start_transcription", key=audio_key, language=language)

    storage_result = await issue_audio_url(audio_key, signer, settings)
    if not storage_result.success:
        _log_event("stage_failed", stage=STORAGE_STAGE, key=audio_key, message=storage_result.message)
        raise StorageURLError(storage_result.message or "Failed to generate download URL") from storage_result.error

    recognition_result = await recognise_audio(storage_result.data, language, recognizer)
    if not recognition_result.success:
        _log_event(
            "stage_failed", stage=RECOGNITION_STAGE, key=audio_key, message=recognition_result.message
        )
        raise RecognitionError(
            recognition_result.message or "Failed to transcribe audio"
        ) from recognition_result.error
    recognition: RecognitionResult = recognition_result.data
    _log_event("transcription_complete", key=audio_key, tokens=len(recognition.tokens))
    if recognition.warnings:
        _log_event("recognition_warnings", key=audio_key, warnings=recognition.warnings)

    format_result = format_segments(recognition)

    filter_result = await filter_text(format_result.data, settings)
    if filter_result.message:
        _log_event("filter_degraded", key=audio_key, message=filter_result.message)
    else:
        _log_event("filtered", key=audio_key)

    return TranscriptionResult(
        raw_transcript=format_result.data,
        filtered_transcript=filter_result.data,
        language=recognition.language_code or language,
        audio_reference=audio_key,
        warnings=tuple(recognition.warnings),
    )
