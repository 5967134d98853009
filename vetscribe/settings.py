"""
Runtime configuration.

All settings come from environment variables so the service can be deployed
without code changes:

* ``BUCKET_NAME`` – bucket holding the uploaded recordings.
* ``KEY_NAMESPACE`` – folder prefix for new recordings (default ``recordings``).
* ``DEFAULT_LANGUAGE`` – language code used when a request gives none.
* ``SPEECH_PROVIDER`` – ``elevenlabs`` (default) or ``google``.
* ``ELEVENLABS_API_KEY`` / ``SPEECH_API_URL`` / ``SPEECH_MODEL_ID`` – speech
  service access for the ElevenLabs provider.
* ``GENAI_API_KEY`` / ``GENAI_MODEL`` – generative model used to filter
  transcripts.  Without a key the raw transcript is returned unfiltered.
* ``FILTER_TEMPLATE`` – ``clinical`` (default) or ``chart``.
* ``*_TTL_SECONDS`` and ``*_TIMEOUT_SECONDS`` – signed URL lifetimes and
  per-call timeouts.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional

FILTER_TEMPLATES = ("clinical", "chart")
SPEECH_PROVIDERS = ("elevenlabs", "google")


def _env_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None
    if value <= 0:
        raise ValueError(f"{name} must be positive, got {value}")
    return value


def _env_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None


@dataclass(frozen=True)
class Settings:
    bucket_name: str = "recordings"
    key_namespace: str = "recordings"
    default_language: str = "nl"

    speech_provider: str = "elevenlabs"
    elevenlabs_api_key: Optional[str] = None
    speech_api_url: str = "https://api.elevenlabs.io/v1/speech-to-text"
    speech_model_id: str = "scribe_v1"
    speech_timeout_seconds: int = 600

    genai_api_key: Optional[str] = None
    genai_model: str = "models/gemini-1.5-flash"
    filter_template: str = "clinical"
    filter_temperature: float = 0.1
    filter_timeout_seconds: int = 60

    read_url_ttl_seconds: int = 7200
    upload_url_ttl_seconds: int = 3600
    playback_url_ttl_seconds: int = 7200

    port: int = 8080

    def __post_init__(self) -> None:
        if self.filter_template not in FILTER_TEMPLATES:
            raise ValueError(
                f"FILTER_TEMPLATE must be one of {FILTER_TEMPLATES}, got {self.filter_template!r}"
            )
        if self.speech_provider not in SPEECH_PROVIDERS:
            raise ValueError(
                f"SPEECH_PROVIDER must be one of {SPEECH_PROVIDERS}, got {self.speech_provider!r}"
            )

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        """Build settings from ``env`` (defaults to ``os.environ``)."""
        env = os.environ if env is None else env
        defaults = cls()
        return cls(
            bucket_name=env.get("BUCKET_NAME", defaults.bucket_name),
            key_namespace=env.get("KEY_NAMESPACE", defaults.key_namespace).strip("/"),
            default_language=env.get("DEFAULT_LANGUAGE", defaults.default_language),
            speech_provider=env.get("SPEECH_PROVIDER", defaults.speech_provider).lower(),
            elevenlabs_api_key=env.get("ELEVENLABS_API_KEY") or None,
            speech_api_url=env.get("SPEECH_API_URL", defaults.speech_api_url),
            speech_model_id=env.get("SPEECH_MODEL_ID", defaults.speech_model_id),
            speech_timeout_seconds=_env_int(
                env, "SPEECH_TIMEOUT_SECONDS", defaults.speech_timeout_seconds
            ),
            genai_api_key=env.get("GENAI_API_KEY") or None,
            genai_model=env.get("GENAI_MODEL", defaults.genai_model),
            filter_template=env.get("FILTER_TEMPLATE", defaults.filter_template).lower(),
            filter_temperature=_env_float(env, "FILTER_TEMPERATURE", defaults.filter_temperature),
            filter_timeout_seconds=_env_int(
                env, "FILTER_TIMEOUT_SECONDS", defaults.filter_timeout_seconds
            ),
            read_url_ttl_seconds=_env_int(env, "READ_URL_TTL_SECONDS", defaults.read_url_ttl_seconds),
            upload_url_ttl_seconds=_env_int(
                env, "UPLOAD_URL_TTL_SECONDS", defaults.upload_url_ttl_seconds
            ),
            playback_url_ttl_seconds=_env_int(
                env, "PLAYBACK_URL_TTL_SECONDS", defaults.playback_url_ttl_seconds
            ),
            port=_env_int(env, "PORT", defaults.port),
        )
