#!/usr/bin/env python3
# audio/transcription.py
"""
AssemblyAI speech-to-text client.
Uploads a recording, submits a transcription job and polls it until the
transcript is ready.
"""

import json
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

import aiohttp

from core.config import DEFAULT_ASSEMBLYAI_BASE_URL, DEFAULT_POLL_INTERVAL
from core.errors import ProviderError, TranscriptionError, TransportError

# Configure logging
logger = logging.getLogger(__name__)

UPLOAD_ENDPOINT = "/upload"
TRANSCRIPT_ENDPOINT = "/transcript"

TERMINAL_STATES = {"completed", "error"}
KNOWN_STATES = TERMINAL_STATES | {"queued", "processing"}


@dataclass(frozen=True)
class TranscriptStatus:
    status: str
    text: Optional[str] = None
    error: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATES


class AssemblyAIClient:
    """Async client for the AssemblyAI transcription API."""

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_ASSEMBLYAI_BASE_URL,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        timeout: float = 60.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.poll_interval = poll_interval
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._sleep = sleep

    async def _request(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        headers = {"authorization": self.api_key}
        headers.update(kwargs.pop("headers", {}))

        try:
            async with aiohttp.ClientSession(timeout=self._timeout) as session:
                async with session.request(method, url, headers=headers, **kwargs) as response:
                    body = await response.text()
                    if response.status != 200:
                        raise ProviderError(response.status, body.strip() or (response.reason or "Unknown error"))
                    try:
                        payload = json.loads(body)
                    except ValueError as e:
                        raise ProviderError(response.status, f"Invalid JSON in response: {body[:200]}") from e
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransportError(f"Could not reach AssemblyAI at {url}: {type(e).__name__} {e}") from e

        if not isinstance(payload, dict):
            raise ProviderError(200, "Response body is not a JSON object")
        return payload

    async def upload_audio(self, audio: bytes) -> str:
        """
        Upload raw audio bytes.

        Returns:
            Private URL AssemblyAI can read the audio from
        """
        logger.info(f"Uploading {len(audio)} bytes of audio for transcription")
        payload = await self._request(
            "POST", UPLOAD_ENDPOINT,
            headers={"content-type": "application/octet-stream"},
            data=audio,
        )
        upload_url = payload.get("upload_url")
        if not upload_url:
            raise ProviderError(200, "Upload response has no upload_url")
        return upload_url

    async def submit(self, audio_url: str) -> str:
        """Start a transcription job and return its id."""
        payload = await self._request("POST", TRANSCRIPT_ENDPOINT, json={"audio_url": audio_url})
        transcript_id = payload.get("id")
        if not transcript_id:
            raise ProviderError(200, "Transcript response has no id")
        logger.info(f"Transcription job submitted with ID: {transcript_id}")
        return str(transcript_id)

    async def poll(self, transcript_id: str) -> TranscriptStatus:
        """Fetch the current state of a transcription job once."""
        payload = await self._request("GET", f"{TRANSCRIPT_ENDPOINT}/{transcript_id}")
        status = payload.get("status")
        if status not in KNOWN_STATES:
            raise ProviderError(200, f"Unknown transcript status: {status}")
        return TranscriptStatus(status=status, text=payload.get("text"), error=payload.get("error"))

    async def transcribe(self, audio: bytes) -> str:
        """
        Upload, submit and poll until the transcript is finished.

        Polls every poll_interval seconds with no attempt limit.

        Raises:
            TranscriptionError: If AssemblyAI reports status 'error'
        """
        audio_url = await self.upload_audio(audio)
        transcript_id = await self.submit(audio_url)

        transcript = await self.poll(transcript_id)
        while not transcript.is_terminal:
            logger.info(f"Transcript {transcript_id} status: {transcript.status}")
            await self._sleep(self.poll_interval)
            transcript = await self.poll(transcript_id)

        if transcript.status == "error":
            logger.error(f"Transcript {transcript_id} failed: {transcript.error}")
            raise TranscriptionError(transcript.error)

        text = transcript.text or ""
        preview = text[:100] + ("..." if len(text) > 100 else "")
        logger.info(f"Transcript {transcript_id} completed: {preview}")
        return text
