"""
Speech-to-text service wrappers.

Each recogniser takes a signed URL for an audio object and returns the
recognised text together with a flat, time-ordered list of
:class:`~vetscribe.transcript_formatter.TranscriptToken` objects tagged with
speaker ids, ready for :func:`~vetscribe.transcript_formatter.consolidate`.

Two providers are supported:

* ``elevenlabs`` – ElevenLabs Scribe, which fetches the audio itself from
  the signed URL and returns words, spacing and audio events.
* ``google`` – Google Cloud Speech-to-Text.  The audio is downloaded from
  the signed URL and sent inline, and speaker tags ``N`` are reported as
  ``speaker_N``.

Recognition is blocking I/O, so the async ``recognize`` methods run the
client in a worker thread.
"""

from __future__ import annotations

import asyncio
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

import requests
from google.cloud import speech_v1p1beta1 as speech
from google.protobuf.json_format import MessageToDict

from .errors import RecognitionError
from .settings import Settings
from .transcript_formatter import TranscriptToken, tokens_from_payload

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RecognitionOptions:
    diarize: bool = True
    tag_audio_events: bool = True
    granularity: str = "word"


@dataclass
class RecognitionResult:
    text: str
    tokens: List[TranscriptToken] = field(default_factory=list)
    language_code: Optional[str] = None
    warnings: List[str] = field(default_factory=list)


class SpeechRecognizer(ABC):
    """Interface shared by the speech providers."""

    name = "speech"

    @abstractmethod
    def recognize_sync(
        self, audio_url: str, language_code: Optional[str], options: RecognitionOptions
    ) -> RecognitionResult:
        """Recognise the audio behind ``audio_url``.  Raises RecognitionError."""

    async def recognize(
        self,
        audio_url: str,
        language_code: Optional[str] = None,
        options: Optional[RecognitionOptions] = None,
    ) -> RecognitionResult:
        return await asyncio.to_thread(
            self.recognize_sync, audio_url, language_code, options or RecognitionOptions()
        )


class ScribeRecognizer(SpeechRecognizer):
    """ElevenLabs Scribe over its REST API."""

    name = "elevenlabs"

    def __init__(
        self,
        api_key: Optional[str],
        *,
        api_url: str = "https://api.elevenlabs.io/v1/speech-to-text",
        model_id: str = "scribe_v1",
        timeout: float = 600,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.api_key = api_key
        self.api_url = api_url
        self.model_id = model_id
        self.timeout = timeout
        self.session = session or requests

    def build_form(
        self, audio_url: str, language_code: Optional[str], options: RecognitionOptions
    ) -> Dict[str, tuple]:
        """Multipart form fields for a Scribe request."""
        fields = {
            "model_id": self.model_id,
            "cloud_storage_url": audio_url,
            "diarize": "true" if options.diarize else "false",
            "tag_audio_events": "true" if options.tag_audio_events else "false",
            "timestamps_granularity": options.granularity,
        }
        if language_code:
            fields["language_code"] = language_code
        # (None, value) makes requests encode plain fields as multipart/form-data
        return {name: (None, value) for name, value in fields.items()}

    def recognize_sync(
        self, audio_url: str, language_code: Optional[str], options: RecognitionOptions
    ) -> RecognitionResult:
        if not self.api_key:
            raise RecognitionError("Speech service is not configured")
        logger.info("Starting Scribe transcription (language=%s)", language_code or "auto")
        try:
            response = self.session.post(
                self.api_url,
                headers={"xi-api-key": self.api_key},
                files=self.build_form(audio_url, language_code, options),
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            logger.error("Scribe request failed: %s", exc)
            raise RecognitionError("Speech service could not be reached") from exc

        if response.status_code != 200:
            logger.error("Scribe returned HTTP %s: %s", response.status_code, response.text[:500])
            raise RecognitionError(f"Speech service returned HTTP {response.status_code}")
        try:
            payload = response.json()
        except ValueError as exc:
            raise RecognitionError("Speech service returned an invalid response") from exc
        if not isinstance(payload, dict):
            raise RecognitionError("Speech service returned an invalid response")

        result = parse_scribe_response(payload)
        logger.info("Scribe transcription complete: %d tokens", len(result.tokens))
        return result


def parse_scribe_response(payload: Dict[str, Any]) -> RecognitionResult:
    """Convert a Scribe JSON response into a :class:`RecognitionResult`."""
    words = payload.get("words")
    warnings = payload.get("warnings")
    return RecognitionResult(
        text=payload.get("text") or "",
        tokens=tokens_from_payload(words if isinstance(words, list) else []),
        language_code=payload.get("language_code") or None,
        warnings=[w for w in warnings if isinstance(w, str)] if isinstance(warnings, list) else [],
    )


def _parse_seconds(time_str: Any) -> Optional[float]:
    match = re.match(r"([0-9]+(?:\.[0-9]+)?)s", str(time_str or ""))
    return float(match.group(1)) if match else None


def flatten_word_info(data: Dict) -> List[Dict]:
    """Extract the word dictionaries from a Speech-to-Text response.

    With diarisation enabled the final result repeats every word of the
    recording with its ``speakerTag``, so only that result is used.
    Otherwise words from all results are concatenated.
    """
    word_lists: List[List[Dict]] = []
    for result in data.get("results", []):
        alternatives = result.get("alternatives", [])
        if not alternatives:
            continue
        # Use the first alternative, which is typically the most probable.
        words = [wi for wi in alternatives[0].get("words", []) if "word" in wi]
        if words:
            word_lists.append(words)
    if not word_lists:
        return []
    if any("speakerTag" in wi for wi in word_lists[-1]):
        return word_lists[-1]
    return [wi for words in word_lists for wi in words]


def google_words_to_tokens(words: List[Dict]) -> List[TranscriptToken]:
    """Turn Google word dictionaries into tokens with spacing between words."""
    tokens: List[TranscriptToken] = []
    for wi in words:
        tag = wi.get("speakerTag")
        speaker_id = f"speaker_{tag}" if tag else None
        if tokens:
            tokens.append(TranscriptToken(text=" ", kind="spacing", speaker_id=tokens[-1].speaker_id))
        tokens.append(
            TranscriptToken(
                text=str(wi.get("word", "")),
                kind="word",
                speaker_id=speaker_id,
                start=_parse_seconds(wi.get("startTime")),
                end=_parse_seconds(wi.get("endTime")),
            )
        )
    return tokens


class GoogleSpeechRecognizer(SpeechRecognizer):
    """Google Cloud Speech-to-Text with speaker diarisation."""

    name = "google"

    def __init__(
        self,
        *,
        max_speakers: int = 6,
        timeout: float = 600,
        client: Optional[speech.SpeechClient] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.max_speakers = max_speakers
        self.timeout = timeout
        self._client = client
        self.session = session or requests

    @property
    def client(self) -> speech.SpeechClient:
        if self._client is None:
            self._client = speech.SpeechClient()
        return self._client

    def build_config(
        self, audio_url: str, language_code: Optional[str], options: RecognitionOptions
    ) -> speech.RecognitionConfig:
        diarization_config = speech.SpeakerDiarizationConfig(
            enable_speaker_diarization=options.diarize,
            min_speaker_count=1,
            max_speaker_count=self.max_speakers,
        )
        config = speech.RecognitionConfig(
            language_code=language_code or "en-US",
            enable_automatic_punctuation=True,
            enable_word_time_offsets=options.granularity == "word",
            enable_word_confidence=True,
            diarization_config=diarization_config,
        )
        # Browser recordings are Opus in WebM/Ogg, which carry no sample rate
        # Google will read; WAV and FLAC headers are detected automatically.
        suffix = PurePosixPath(urlparse(audio_url).path).suffix.lower()
        if suffix == ".webm":
            config.encoding = speech.RecognitionConfig.AudioEncoding.WEBM_OPUS
            config.sample_rate_hertz = 48000
        elif suffix in (".ogg", ".opus"):
            config.encoding = speech.RecognitionConfig.AudioEncoding.OGG_OPUS
            config.sample_rate_hertz = 48000
        return config

    def _download(self, audio_url: str) -> bytes:
        try:
            response = self.session.get(audio_url, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as exc:
            logger.error("Failed to fetch audio for recognition: %s", exc)
            raise RecognitionError("Audio could not be fetched for recognition") from exc
        return response.content

    def recognize_sync(
        self, audio_url: str, language_code: Optional[str], options: RecognitionOptions
    ) -> RecognitionResult:
        content = self._download(audio_url)
        config = self.build_config(audio_url, language_code, options)
        audio = speech.RecognitionAudio(content=content)
        logger.info("Starting STT job (%d bytes, language=%s)", len(content), config.language_code)
        try:
            operation = self.client.long_running_recognize(config=config, audio=audio)
            response = operation.result(timeout=self.timeout)
        except Exception as exc:
            logger.error("STT job failed: %s", exc)
            raise RecognitionError("Speech service failed to transcribe audio") from exc
        logger.info("STT job complete")
        return parse_google_response(MessageToDict(response._pb))


def parse_google_response(data: Dict[str, Any]) -> RecognitionResult:
    """Convert a Speech-to-Text response dictionary into a :class:`RecognitionResult`."""
    transcripts = []
    language_code = None
    for result in data.get("results", []):
        alternatives = result.get("alternatives", [])
        if alternatives and alternatives[0].get("transcript"):
            transcripts.append(alternatives[0]["transcript"].strip())
        language_code = result.get("languageCode") or language_code
    return RecognitionResult(
        text=" ".join(transcripts),
        tokens=google_words_to_tokens(flatten_word_info(data)),
        language_code=language_code,
    )


def create_recognizer(settings: Settings) -> SpeechRecognizer:
    """Create the recogniser selected by ``SPEECH_PROVIDER``."""
    if settings.speech_provider == "google":
        recognizer: SpeechRecognizer = GoogleSpeechRecognizer(timeout=settings.speech_timeout_seconds)
    else:
        recognizer = ScribeRecognizer(
            settings.elevenlabs_api_key,
            api_url=settings.speech_api_url,
            model_id=settings.speech_model_id,
            timeout=settings.speech_timeout_seconds,
        )
    logger.info("Speech provider: %s", recognizer.name)
    return recognizer
