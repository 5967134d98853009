"""
HTTP entrypoint for the transcription service.

Routes:

* ``POST /upload-url`` – issue a signed upload URL for a new recording.
* ``POST /transcribe`` – transcribe an uploaded recording and filter it.
* ``GET /audio/<key>`` – redirect to a signed playback URL.
* ``GET /health`` – liveness check.

Collaborators are created lazily on first use from :class:`Settings`, so
importing this module needs no cloud credentials.
"""

import json
import logging
from typing import Optional

from flask import Flask, jsonify, redirect, request

from . import tasks
from .errors import StorageURLError, TranscriptionError
from .settings import Settings
from .storage import SignedUrlIssuer, generate_unique_key
from .stt_service import SpeechRecognizer, create_recognizer

logger = logging.getLogger(__name__)
logging.basicConfig(level=logging.INFO, format="%(message)s")

app = Flask(__name__)

_settings: Optional[Settings] = None
_signer: Optional[SignedUrlIssuer] = None
_recognizer: Optional[SpeechRecognizer] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings


def get_signer() -> SignedUrlIssuer:
    global _signer
    if _signer is None:
        _signer = SignedUrlIssuer(get_settings().bucket_name)
    return _signer


def get_recognizer() -> SpeechRecognizer:
    global _recognizer
    if _recognizer is None:
        _recognizer = create_recognizer(get_settings())
    return _recognizer


def _error(message: str, status: int, **extra):
    return jsonify({"error": message, **extra}), status


def _json_body() -> dict:
    """Request JSON object, or an empty dict for anything else."""
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


@app.route("/health", methods=["GET"])
def health():
    return jsonify({"status": "ok"})


@app.route("/upload-url", methods=["POST"])
def upload_url():
    data = _json_body()
    file_name = data.get("fileName")
    content_type = data.get("contentType")
    if not file_name or not content_type:
        return _error("fileName and contentType are required", 400)

    settings = get_settings()
    key = generate_unique_key(file_name, settings.key_namespace)
    try:
        signed = get_signer().issue_write_url(
            key, content_type, ttl_seconds=settings.upload_url_ttl_seconds
        )
    except StorageURLError as exc:
        logger.error(json.dumps({"event": "upload_url_error", "key": key}))
        return _error(exc.message, 500)

    logger.info(json.dumps({"event": "upload_url_issued", "key": key}))
    return jsonify(
        {
            "success": True,
            "signedUrl": signed.url,
            "key": signed.key,
            "expiresIn": signed.expires_in,
        }
    )


@app.route("/transcribe", methods=["POST"])
async def transcribe():
    data = _json_body()
    key = data.get("key")
    language = data.get("language") or None
    logger.info(json.dumps({"event": "request", "key": key, "language": language}))
    if not key:
        return _error("No audio key provided", 400)

    try:
        result = await tasks.transcribe(
            key,
            language,
            settings=get_settings(),
            signer=get_signer(),
            recognizer=get_recognizer(),
        )
    except TranscriptionError as exc:
        logger.error(json.dumps({"event": "transcription_error", "key": key, "stage": exc.stage}))
        return jsonify(exc.to_dict()), 500

    return jsonify(
        {
            "success": True,
            "transcription": result.filtered_transcript,
            "originalTranscription": result.raw_transcript,
            "language": result.language,
            "audioKey": result.audio_reference,
            "warnings": list(result.warnings),
        }
    )


@app.route("/audio/<path:key>", methods=["GET"])
def audio(key: str):
    settings = get_settings()
    try:
        signed = get_signer().issue_read_url(key, ttl_seconds=settings.playback_url_ttl_seconds)
    except StorageURLError:
        logger.error(json.dumps({"event": "audio_url_error", "key": key}))
        return _error("Failed to generate audio URL", 500)
    return redirect(signed.url)


if __name__ == "__main__":
    app.run(host="0.0.0.0", port=get_settings().port)
