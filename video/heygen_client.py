#!/usr/bin/env python3
# video/heygen_client.py
"""
HeyGen API client for avatar video generation.
Handles uploading assets, creating videos, checking their status and
downloading completed videos.
"""

import json
import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional

import aiohttp

from core.config import (
    DEFAULT_HEYGEN_BASE_URL,
    DEFAULT_HEYGEN_UPLOAD_URL,
    DEFAULT_MAX_POLL_ATTEMPTS,
    DEFAULT_POLL_INTERVAL,
)
from core.errors import (
    ProviderError,
    RenderFailedError,
    RenderTimeoutError,
    TransportError,
)
from core.models import JobStatus, VoiceConfig

# Configure logging
logger = logging.getLogger(__name__)

# HeyGen API endpoints
AVATARS_ENDPOINT = "/v2/avatars"
VOICES_ENDPOINT = "/v2/voices"
UPLOAD_ASSET_ENDPOINT = "/v1/asset"
VIDEO_GENERATE_ENDPOINT = "/v2/video/generate"
VIDEO_STATUS_ENDPOINT = "/v1/video_status.get"

# Provider states that mean "still rendering"
_IN_PROGRESS_STATES = {"pending", "waiting", "processing"}

_WAV_TYPES = {"audio/wav", "audio/wave", "audio/x-wav"}
_MPEG_TYPES = {"audio/mpeg", "audio/mp3"}


@dataclass(frozen=True)
class UploadedAsset:
    id: str
    url: Optional[str] = None


@dataclass(frozen=True)
class RenderStatus:
    """One observation of a render job's state."""
    status: JobStatus
    video_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    duration: Optional[float] = None
    error: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal


def detect_image_mime(data: bytes) -> Optional[str]:
    """Guess an image MIME type from its leading bytes."""
    if data.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if data.startswith(b"\xff\xd8\xff"):
        return "image/jpeg"
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    return None


def asset_content_type(data: bytes, kind: str, mime_type: Optional[str] = None) -> str:
    """
    Pick the Content-Type header HeyGen expects for an asset upload.

    Args:
        data: Raw asset bytes
        kind: "image" or "audio"
        mime_type: MIME type reported by whoever produced the bytes (optional)

    Returns:
        Content-Type value for the upload request
    """
    declared = (mime_type or "").split(";")[0].strip().lower()
    if kind == "audio":
        if declared in _WAV_TYPES:
            return "audio/x-wav"
        if declared in _MPEG_TYPES:
            return "audio/mpeg"
        # Anything else is assumed to have gone through the WAV converter
        return "audio/x-wav"
    if kind == "image":
        return declared or detect_image_mime(data) or "image/jpeg"
    raise ValueError(f"Unsupported asset kind: {kind}")


def _number_or_none(value: Any) -> Optional[float]:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


class HeyGenClient:
    """
    Thin async wrapper around the HeyGen REST API.

    Single calls never retry; the caller decides how to react to
    ProviderError (the API answered badly) and TransportError (it did not answer).
    Only wait_for_video retries status checks, within its attempt ceiling.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_HEYGEN_BASE_URL,
        upload_url: str = DEFAULT_HEYGEN_UPLOAD_URL,
        width: int = 1280,
        height: int = 720,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        max_poll_attempts: int = DEFAULT_MAX_POLL_ATTEMPTS,
        timeout: float = 60.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.upload_url = (upload_url or base_url).rstrip("/")
        self.width = width
        self.height = height
        self.poll_interval = poll_interval
        self.max_poll_attempts = max_poll_attempts
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._sleep = sleep

    async def _request(
        self,
        method: str,
        url: str,
        *,
        headers: Optional[Dict[str, str]] = None,
        params: Optional[Dict[str, str]] = None,
        json_body: Optional[Dict[str, Any]] = None,
        data: Optional[bytes] = None,
    ) -> Dict[str, Any]:
        request_headers = {"accept": "application/json", "x-api-key": self.api_key}
        request_headers.update(headers or {})

        try:
            async with aiohttp.ClientSession(timeout=self._timeout) as session:
                async with session.request(
                    method, url, headers=request_headers, params=params, json=json_body, data=data
                ) as response:
                    body = await response.text()
                    if not 200 <= response.status < 300:
                        raise ProviderError(response.status, self._error_message(body, response.reason))
                    try:
                        payload = json.loads(body)
                    except ValueError as e:
                        raise ProviderError(response.status, f"Invalid JSON in response: {body[:200]}") from e
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransportError(f"Could not reach HeyGen at {url}: {type(e).__name__} {e}") from e

        if not isinstance(payload, dict):
            raise ProviderError(response.status, "Response body is not a JSON object")
        return payload

    @staticmethod
    def _error_message(body: str, reason: Optional[str]) -> str:
        try:
            parsed = json.loads(body)
        except ValueError:
            return body.strip() or (reason or "Unknown error")
        if isinstance(parsed, dict):
            error = parsed.get("error")
            if isinstance(error, dict):
                return str(error.get("message") or error)
            if error:
                return str(error)
            if parsed.get("message"):
                return str(parsed["message"])
        return body.strip() or (reason or "Unknown error")

    @staticmethod
    def _data(payload: Dict[str, Any]) -> Dict[str, Any]:
        data = payload.get("data")
        if not isinstance(data, dict):
            logger.error(f"No data object in response. Full response: {payload}")
            raise ProviderError(200, "Response has no 'data' object")
        return data

    async def list_avatars(self) -> List[Dict[str, Any]]:
        """Fetch the avatar catalogue available to this API key."""
        payload = await self._request("GET", f"{self.base_url}{AVATARS_ENDPOINT}")
        avatars = self._data(payload).get("avatars") or []
        logger.info(f"Fetched {len(avatars)} avatars")
        return avatars

    async def list_voices(self) -> List[Dict[str, Any]]:
        """Fetch the preset voice catalogue available to this API key."""
        payload = await self._request("GET", f"{self.base_url}{VOICES_ENDPOINT}")
        voices = self._data(payload).get("voices") or []
        logger.info(f"Fetched {len(voices)} voices")
        return voices

    async def upload_asset(self, data: bytes, kind: str, mime_type: Optional[str] = None) -> UploadedAsset:
        """
        Upload an image or audio file as a HeyGen asset.

        The body is the raw file, not a multipart form.

        Args:
            data: File contents
            kind: "image" or "audio"
            mime_type: MIME type of the bytes, if known

        Returns:
            The created asset id and URL
        """
        content_type = asset_content_type(data, kind, mime_type)
        endpoint = f"{self.upload_url}{UPLOAD_ASSET_ENDPOINT}"
        logger.info(f"Uploading {len(data)} bytes to {endpoint} as {content_type}")

        payload = await self._request(
            "POST", endpoint, headers={"Content-Type": content_type}, data=data
        )
        asset = self._data(payload)
        asset_id = asset.get("id")
        if not asset_id:
            raise ProviderError(200, "Upload response has no asset id")

        logger.info(f"Asset uploaded with ID: {asset_id}")
        return UploadedAsset(id=str(asset_id), url=asset.get("url"))

    def build_render_payload(self, character: Dict[str, Any], voice: VoiceConfig) -> Dict[str, Any]:
        return {
            "video_inputs": [{
                "character": character,
                "voice": voice.to_payload(),
            }],
            "dimension": {
                "width": self.width,
                "height": self.height
            },
            "aspect_ratio": "16:9",
            "test": False
        }

    async def submit_render(self, character: Dict[str, Any], voice: VoiceConfig) -> str:
        """
        Create a video from a character spec and a voice config.

        Returns:
            Video ID for the created video
        """
        payload = self.build_render_payload(character, voice)
        logger.info(f"Creating video with character type {character.get('type')} and {voice.to_payload()['type']} voice")
        logger.debug(f"Render request: {payload}")

        response_data = await self._request(
            "POST", f"{self.base_url}{VIDEO_GENERATE_ENDPOINT}", json_body=payload
        )
        video_id = self._data(response_data).get("video_id")
        if not video_id:
            logger.error(f"No video_id in response. Full response: {response_data}")
            raise ProviderError(200, "No video_id in response")

        logger.info(f"Video generation initiated with ID: {video_id}")
        return str(video_id)

    async def get_status(self, video_id: str) -> RenderStatus:
        """Check the status of a video once."""
        payload = await self._request(
            "GET", f"{self.base_url}{VIDEO_STATUS_ENDPOINT}", params={"video_id": video_id}
        )
        data = self._data(payload)
        raw_status = str(data.get("status") or "").lower()

        if raw_status in _IN_PROGRESS_STATES:
            return RenderStatus(status=JobStatus.PROCESSING)
        if raw_status == "completed":
            video_url = data.get("video_url")
            if not video_url:
                raise ProviderError(200, f"Video {video_id} completed without a video_url")
            return RenderStatus(
                status=JobStatus.COMPLETED,
                video_url=video_url,
                thumbnail_url=data.get("thumbnail_url"),
                duration=_number_or_none(data.get("duration")),
            )
        if raw_status == "failed":
            error = data.get("error")
            if isinstance(error, dict):
                error = error.get("detail") or error.get("message") or str(error)
            return RenderStatus(status=JobStatus.FAILED, error=str(error) if error else None)

        raise ProviderError(200, f"Unknown video status: {raw_status or 'missing'}")

    async def wait_for_video(self, video_id: str) -> str:
        """
        Poll a video until it completes, giving up after max_poll_attempts.

        Status checks that fail with a TransportError or ProviderError use up
        an attempt and are retried after poll_interval.

        Args:
            video_id: ID of the video to poll

        Returns:
            URL of the finished video
        """
        for attempt in range(self.max_poll_attempts):
            logger.info(f"Polling attempt {attempt + 1}/{self.max_poll_attempts} for video {video_id}")
            try:
                status = await self.get_status(video_id)
            except (TransportError, ProviderError) as e:
                logger.warning(f"Error checking status of video {video_id}, retrying: {e}")
                await self._sleep(self.poll_interval)
                continue

            if status.is_terminal:
                if status.status is JobStatus.FAILED:
                    logger.error(f"Video {video_id} generation failed: {status.error}")
                    raise RenderFailedError(video_id, status.error)
                logger.info(f"Video {video_id} completed successfully")
                return status.video_url

            # Wait before polling again
            await self._sleep(self.poll_interval)

        logger.error(f"Timeout reached for video {video_id} after {self.max_poll_attempts} attempts")
        raise RenderTimeoutError(video_id, self.max_poll_attempts)

    async def download_video(self, video_url: str, output_path: str) -> str:
        """
        Download a video from a URL and save it to a file.

        Args:
            video_url: URL to download the video from
            output_path: Path to save the video to

        Returns:
            Path to the downloaded video
        """
        logger.info(f"Downloading video from: {video_url}")

        partial_path = Path(f"{output_path}.part")
        try:
            async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=None)) as session:
                async with session.get(video_url) as response:
                    if response.status != 200:
                        error_text = await response.text()
                        raise ProviderError(response.status, f"Failed to download video: {error_text}")

                    with open(partial_path, "wb") as f:
                        while True:
                            chunk = await response.content.read(8192)
                            if not chunk:
                                break
                            f.write(chunk)
        except aiohttp.ClientError as e:
            partial_path.unlink(missing_ok=True)
            raise TransportError(f"Could not download {video_url}: {e}") from e
        except BaseException:
            partial_path.unlink(missing_ok=True)
            raise

        partial_path.replace(output_path)

        logger.info(f"Video downloaded successfully: {output_path}")
        return output_path
