"""
Core package for the consultation transcription service.

This package contains the components used by the HTTP entrypoint to issue
signed storage URLs, run diarised speech recognition, consolidate the
returned tokens into a speaker-labelled transcript and filter that
transcript with a language model.
"""
