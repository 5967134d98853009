"""
Transcript formatting utilities.

The speech service returns a flat, time-ordered list of tokens: words,
spacing and tagged audio events, each carrying the id of the speaker who
produced it.  The functions in this module group consecutive tokens by
speaker and rebuild them into a readable transcript where every turn
starts with the speaker's display name::

    Veterinarian: How long has she been limping?

    Speaker 1: Since Tuesday.

Everything here is pure: the same tokens always produce the same text.
"""

from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

UNKNOWN_SPEAKER = "unknown"
SPEAKER_PREFIX = "speaker_"
TOKEN_KINDS = ("word", "spacing", "audio_event")

# Insertion order is the naming convention: the first diarised speaker is
# assumed to be the clinician leading the consultation.
DEFAULT_SPEAKER_NAMES: Mapping[str, str] = MappingProxyType(
    {
        "speaker_1": "Veterinarian",
        "speaker_2": "Speaker 1",
        "speaker_3": "Speaker 2",
    }
)


def _as_seconds(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


@dataclass(frozen=True)
class TranscriptToken:
    """One recognised unit returned by the speech service."""

    text: str
    kind: str = "word"
    speaker_id: Optional[str] = None
    start: Optional[float] = None
    end: Optional[float] = None

    @property
    def speaker(self) -> str:
        """Resolved speaker identity; missing ids collapse to ``unknown``."""
        return self.speaker_id or UNKNOWN_SPEAKER

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "TranscriptToken":
        """Build a token from a provider payload without ever rejecting it.

        Accepts both ``kind`` and ElevenLabs' ``type`` key.  Missing or
        unusable fields fall back to empty text, the ``word`` kind and the
        unknown speaker.
        """
        if not isinstance(data, Mapping):
            return cls(text="")
        text = data.get("text")
        kind = data.get("kind", data.get("type"))
        speaker_id = data.get("speaker_id")
        return cls(
            text=text if isinstance(text, str) else "",
            kind=kind if kind in TOKEN_KINDS else "word",
            speaker_id=str(speaker_id) if speaker_id not in (None, "") else None,
            start=_as_seconds(data.get("start")),
            end=_as_seconds(data.get("end")),
        )


@dataclass(frozen=True)
class SpeakerSegment:
    """A maximal run of consecutive tokens attributed to one speaker."""

    speaker_id: str
    speaker_label: str
    text: str

    def render(self) -> str:
        return f"{self.speaker_label}: {self.text}"


TokenLike = Union[TranscriptToken, Mapping[str, Any]]


def tokens_from_payload(words: Optional[Iterable[TokenLike]]) -> List[TranscriptToken]:
    """Convert provider word dictionaries into :class:`TranscriptToken` objects."""
    if not words:
        return []
    return [w if isinstance(w, TranscriptToken) else TranscriptToken.from_dict(w) for w in words]


def speaker_display_name(
    speaker_id: str, speaker_names: Mapping[str, str] = DEFAULT_SPEAKER_NAMES
) -> str:
    """Map a raw speaker id to the label shown in the transcript.

    Ids found in ``speaker_names`` use the configured name.  Other
    ``speaker_N`` ids become ``Speaker N``; anything else is title-cased.
    """
    if speaker_id in speaker_names:
        return speaker_names[speaker_id]
    if speaker_id.startswith(SPEAKER_PREFIX) and len(speaker_id) > len(SPEAKER_PREFIX):
        return f"Speaker {speaker_id[len(SPEAKER_PREFIX):]}"
    return speaker_id.replace("_", " ").strip().title() or UNKNOWN_SPEAKER.title()


def consolidate(
    tokens: Optional[Iterable[TokenLike]],
    speaker_names: Mapping[str, str] = DEFAULT_SPEAKER_NAMES,
) -> List[SpeakerSegment]:
    """Group consecutive same-speaker tokens into speaker segments.

    Token text is concatenated as-is; spacing comes from ``spacing`` tokens.
    A turn whose text is blank after trimming is dropped, and if that leaves
    two turns of the same speaker next to each other they are joined with a
    single space so consecutive segments always have distinct speakers.

    Args:
        tokens: Time-ordered tokens or provider dictionaries.
        speaker_names: Lookup of raw speaker id to display name.

    Returns:
        The segments in transcript order.  Empty input gives an empty list.
    """
    items = tokens_from_payload(tokens)
    if not items:
        return []

    segments: List[SpeakerSegment] = []

    def flush(speaker: str, text: str) -> None:
        text = text.strip()
        if not text:
            return
        if segments and segments[-1].speaker_id == speaker:
            previous = segments.pop()
            text = f"{previous.text} {text}"
        segments.append(
            SpeakerSegment(
                speaker_id=speaker,
                speaker_label=speaker_display_name(speaker, speaker_names),
                text=text,
            )
        )

    current_speaker = items[0].speaker
    current_text = ""
    for token in items:
        if token.speaker != current_speaker:
            flush(current_speaker, current_text)
            current_speaker = token.speaker
            current_text = token.text
        else:
            current_text += token.text
    flush(current_speaker, current_text)
    return segments


def render_transcript(segments: Iterable[SpeakerSegment]) -> str:
    """Join segments as ``<label>: <text>`` blocks separated by a blank line."""
    return "\n\n".join(segment.render() for segment in segments)


def format_transcript(
    tokens: Optional[Iterable[TokenLike]],
    speaker_names: Mapping[str, str] = DEFAULT_SPEAKER_NAMES,
) -> str:
    """Consolidate ``tokens`` and render them as a labelled transcript."""
    return render_transcript(consolidate(tokens, speaker_names))


def speaker_word_counts(segments: Iterable[SpeakerSegment]) -> Dict[str, int]:
    """Count whitespace-separated words per speaker label."""
    counts: Dict[str, int] = {}
    for segment in segments:
        counts[segment.speaker_label] = counts.get(segment.speaker_label, 0) + len(segment.text.split())
    return counts
