"""
Transcript filtering via generative AI.

This module takes the speaker-labelled transcript produced by
:mod:`vetscribe.transcript_formatter` and asks a language model either to
strip everything that is not clinically relevant (``clinical`` template) or
to restructure the consultation into a fixed-section chart (``chart``
template).

Filtering is best effort.  When no ``GENAI_API_KEY`` is configured, or the
model call fails for any reason, the original transcript is returned
unchanged and the failure is only visible in the logs.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass
from typing import Optional

import google.generativeai as genai

from .settings import Settings

logger = logging.getLogger(__name__)


CLINICAL_PROMPT = (
    "You are a veterinary assistant helping to clean up consultation transcriptions.\n\n"
    "Your task is to filter out non-essential content while preserving all medically "
    "relevant information.\n\n"
    "REMOVE:\n"
    "- Greetings and smalltalk (hello, how are you, weather talk, etc.)\n"
    "- Technical difficulties (microphone issues, \"can you hear me\", etc.)\n"
    "- Administrative talk (scheduling, payment discussions, etc.)\n"
    "- Filler words and repetitions\n"
    "- Off-topic conversations\n\n"
    "KEEP:\n"
    "- All medical symptoms and observations\n"
    "- Treatment discussions and recommendations\n"
    "- Medication names and dosages\n"
    "- Follow-up instructions\n"
    "- Patient history and concerns\n"
    "- Any veterinary medical terminology\n\n"
    "Maintain the speaker labels (Veterinarian, Speaker 1, Speaker 2) and preserve the "
    "conversation flow.\n\n"
    "Original transcription:\n{transcript}\n\nFiltered transcription:"
)

CHART_SECTIONS = (
    "Patient",
    "Presenting complaint",
    "History",
    "Examination findings",
    "Assessment",
    "Plan",
    "Medications",
    "Follow-up",
)

CHART_PROMPT = (
    "You are a veterinary assistant writing the clinical record for a consultation.\n\n"
    "Rewrite the transcription below as a chart with exactly these sections, in this "
    "order, each on its own line followed by a colon:\n"
    + "".join(f"- {section}\n" for section in CHART_SECTIONS)
    + "\nUse only information stated in the transcription.  Write \"Not discussed\" for "
    "a section with no information.  Leave out greetings, smalltalk, technical and "
    "administrative talk.  Keep medication names and dosages exactly as spoken.  Write "
    "in the language of the transcription.\n\n"
    "Original transcription:\n{transcript}\n\nClinical chart:"
)

PROMPT_TEMPLATES = {
    "clinical": CLINICAL_PROMPT,
    "chart": CHART_PROMPT,
}


@dataclass(frozen=True)
class FilterOutcome:
    """Result of a filter attempt.

    ``filtered`` is False when ``text`` is the unmodified input because the
    model could not be used.
    """

    text: str
    filtered: bool
    error: Optional[str] = None


def build_prompt(transcript: str, template: str = "clinical") -> str:
    """Render the instruction template for ``transcript``."""
    try:
        prompt_template = PROMPT_TEMPLATES[template]
    except KeyError:
        raise ValueError(f"Unknown filter template: {template!r}") from None
    return prompt_template.format(transcript=transcript)


_configure_lock = threading.Lock()
_configured_key: Optional[str] = None


def configure(api_key: str) -> None:
    """Configure the Gemini client once per API key.

    ``genai.configure`` replaces the process-wide client cache, so it is only
    called again when the key changes.
    """
    global _configured_key
    with _configure_lock:
        if _configured_key != api_key:
            genai.configure(api_key=api_key)
            _configured_key = api_key


def _generate(prompt: str, settings: Settings) -> str:
    model = genai.GenerativeModel(settings.genai_model)
    response = model.generate_content(
        prompt,
        generation_config={"temperature": settings.filter_temperature},
        request_options={"timeout": settings.filter_timeout_seconds},
    )
    return response.text


async def _call_model(prompt: str, settings: Settings) -> str:
    """Send ``prompt`` to the configured Gemini model and return its text.

    The blocking client runs in a worker thread.  The async client is bound
    to the event loop that created it.
    """
    configure(settings.genai_api_key)
    return await asyncio.wait_for(
        asyncio.to_thread(_generate, prompt, settings),
        timeout=settings.filter_timeout_seconds,
    )


async def apply_filter(raw_transcript: str, *, settings: Settings) -> FilterOutcome:
    """Filter ``raw_transcript`` with the language model.

    Never raises: any failure degrades to returning ``raw_transcript``.
    """
    if not settings.genai_api_key:
        logger.info("No generative AI key configured; returning original transcript")
        return FilterOutcome(text=raw_transcript, filtered=False, error="not configured")
    if not raw_transcript.strip():
        logger.info("Transcript is empty; skipping filtering")
        return FilterOutcome(text=raw_transcript, filtered=False, error="empty transcript")

    prompt = build_prompt(raw_transcript, settings.filter_template)
    try:
        logger.info(
            "Calling generative model %s for transcript filtering (template=%s)",
            settings.genai_model,
            settings.filter_template,
        )
        text = await _call_model(prompt, settings)
    except Exception as exc:
        logger.warning("Transcript filtering failed; using original transcript: %s", exc)
        return FilterOutcome(text=raw_transcript, filtered=False, error=str(exc) or type(exc).__name__)

    if not text:
        logger.warning("Generative model returned no text; using original transcript")
        return FilterOutcome(text=raw_transcript, filtered=False, error="empty response")
    return FilterOutcome(text=text, filtered=True)


async def filter_transcript(raw_transcript: str, *, settings: Settings) -> str:
    """Return the filtered transcript, or ``raw_transcript`` if filtering failed."""
    outcome = await apply_filter(raw_transcript, settings=settings)
    return outcome.text
