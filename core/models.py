#!/usr/bin/env python3
# core/models.py
"""
Data model shared by the clients, the history store and the pipeline.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, Field


class VoiceMode(str, Enum):
    """How the avatar gets its voice."""
    PRESET = "preset"
    CUSTOM = "custom"


class JobStatus(str, Enum):
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not JobStatus.PROCESSING


@dataclass(frozen=True)
class AudioClip:
    """Recorded audio bytes plus the MIME type reported by the recorder."""
    data: bytes
    mime_type: str = "audio/webm"


@dataclass(frozen=True)
class PresetAvatarRef:
    """A provider avatar selected from the catalogue."""
    avatar_id: str
    avatar_style: str = "normal"
    name: Optional[str] = None


@dataclass(frozen=True)
class CustomCharacterRef:
    """A user-uploaded character image already registered with the provider."""
    asset_id: str
    name: Optional[str] = None


Persona = Union[PresetAvatarRef, CustomCharacterRef]


@dataclass(frozen=True)
class TextVoice:
    """Preset voice speaking the transcript of the recording."""
    voice_id: str
    text: str

    def to_payload(self) -> Dict[str, Any]:
        return {"type": "text", "voice_id": self.voice_id, "input_text": self.text}


@dataclass(frozen=True)
class AudioVoice:
    """The user's own recording, uploaded as an audio asset."""
    asset_id: str

    def to_payload(self) -> Dict[str, Any]:
        return {"type": "audio", "audio_asset_id": self.asset_id}


VoiceConfig = Union[TextVoice, AudioVoice]


@dataclass
class RenderRequest:
    """Everything the caller collected before pressing 'generate'."""
    audio: Optional[AudioClip] = None
    voice_mode: Optional[VoiceMode] = None
    persona: Optional[Persona] = None
    preset_voice_id: Optional[str] = None
    preset_voice_name: Optional[str] = None


@dataclass(frozen=True)
class PlayableVideo:
    job_id: str
    video_url: str
    thumbnail_url: Optional[str] = None
    duration_seconds: Optional[float] = None


@dataclass(frozen=True)
class ProgressEvent:
    """Progress notification emitted by the pipeline on every transition."""
    stage: str
    elapsed_ms: int
    job_id: Optional[str] = None
    message: Optional[str] = None


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RenderJob(BaseModel):
    """Durable record of one remote render job."""
    id: str
    status: JobStatus = JobStatus.PROCESSING
    created_at: datetime = Field(default_factory=utcnow)
    result_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    duration_seconds: Optional[float] = None
    persona_label: Optional[str] = None
    persona_id: Optional[str] = None
    voice_label: Optional[str] = None
    voice_mode: Optional[VoiceMode] = None
    transcript_text: Optional[str] = None


class Character(BaseModel):
    """A custom character image registered with the avatar provider."""
    id: Optional[int] = None
    name: str
    asset_id: str
    asset_url: Optional[str] = None
    mime_type: str = "image/jpeg"
    image: bytes = Field(default=b"", repr=False)
    is_default: bool = False
    created_at: datetime = Field(default_factory=utcnow)
