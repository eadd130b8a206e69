#!/usr/bin/env python3
# core/errors.py
"""
Exception hierarchy for the video generation pipeline.

Every failure the pipeline surfaces derives from GenerationError, so callers can
catch one type and show str(error) to the user.
"""

from typing import Optional


class GenerationError(Exception):
    """Base class for all pipeline failures."""


class ValidationError(GenerationError):
    """A required input was missing before any remote call was made."""

    def __init__(self, field: str, message: Optional[str] = None):
        self.field = field
        super().__init__(message or f"Missing required input: {field}")


class AudioConversionError(GenerationError):
    """The recorded audio could not be re-encoded into a WAV container."""


class TransportError(GenerationError):
    """The provider could not be reached (connection refused, DNS, timeout...)."""


class TransportBlockedError(TransportError):
    """
    The environment blocked the request before it reached the provider.

    Retrying will not help: the service has to be deployed behind a same-origin
    proxy or with network access to the provider.
    """


class ProviderError(GenerationError):
    """The provider answered with a non-success status or an unusable body."""

    def __init__(self, http_status: int, message: str):
        self.http_status = http_status
        self.message = message
        super().__init__(f"Provider error {http_status}: {message}")


class TranscriptionError(GenerationError):
    """The transcription job finished with status 'error'."""

    def __init__(self, detail: Optional[str]):
        self.detail = detail
        super().__init__(f"Transcription failed: {detail}")


class RenderFailedError(GenerationError):
    """The render job finished with status 'failed'."""

    def __init__(self, job_id: str, detail: Optional[str] = None):
        self.job_id = job_id
        self.detail = detail
        message = f"Video generation failed for job {job_id}"
        if detail:
            message += f": {detail}"
        super().__init__(message)


class RenderTimeoutError(GenerationError, TimeoutError):
    """The bounded wait ran out of poll attempts before the job finished."""

    def __init__(self, job_id: str, attempts: int):
        self.job_id = job_id
        self.attempts = attempts
        super().__init__(f"Video {job_id} not ready after {attempts} polling attempts")


class StoreError(GenerationError):
    """The local history store rejected an operation."""


class NotFoundError(StoreError):
    def __init__(self, key):
        self.key = key
        super().__init__(f"No record found for {key}")


class DuplicateIdError(StoreError):
    def __init__(self, key):
        self.key = key
        super().__init__(f"A record with id {key} already exists")
