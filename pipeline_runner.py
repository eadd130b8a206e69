#!/usr/bin/env python3
# pipeline_runner.py
"""
Wires the providers, the stores and the orchestrator together from the
configuration, and runs one generation from a file on disk.
"""

import logging
import mimetypes
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from audio.transcription import AssemblyAIClient
from core.characters import CharacterLibrary
from core.config import Config, ensure_output_dir
from core.errors import GenerationError, NotFoundError, ValidationError
from core.history import JobHistoryStore
from core.models import AudioClip, PresetAvatarRef, ProgressEvent, RenderRequest, VoiceMode
from core.pipeline import VideoGenerationOrchestrator
from video.heygen_client import HeyGenClient

# Setup logging
logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Explicitly constructed components shared by the CLI and the API."""
    config: Config
    renderer: HeyGenClient
    transcriber: Optional[AssemblyAIClient]
    history: JobHistoryStore
    characters: CharacterLibrary
    orchestrator: VideoGenerationOrchestrator

    def close(self) -> None:
        self.history.close()
        self.characters.close()


def build_services(config: Config) -> Services:
    """
    Construct every component from configuration.

    Args:
        config: Loaded configuration

    Returns:
        Services bundle with the orchestrator ready to use
    """
    renderer = HeyGenClient(
        api_key=config.heygen_api_key,
        base_url=config.heygen_base_url,
        upload_url=config.heygen_upload_url,
        width=config.video_width,
        height=config.video_height,
        poll_interval=config.poll_interval,
        max_poll_attempts=config.max_poll_attempts,
    )
    transcriber = None
    if config.assemblyai_api_key:
        transcriber = AssemblyAIClient(
            api_key=config.assemblyai_api_key,
            base_url=config.assemblyai_base_url,
            poll_interval=config.poll_interval,
        )

    history = JobHistoryStore(config.history_db_path)
    characters = CharacterLibrary(renderer, config.history_db_path)
    orchestrator = VideoGenerationOrchestrator(
        transcriber=transcriber,
        renderer=renderer,
        history=history,
        poll_interval=config.poll_interval,
    )
    return Services(
        config=config,
        renderer=renderer,
        transcriber=transcriber,
        history=history,
        characters=characters,
        orchestrator=orchestrator,
    )


class GenerationParams(BaseModel):
    """Parameters for one generation run from the command line."""
    audio_path: str = Field(..., description="Path to the recorded audio file")
    audio_mime_type: Optional[str] = Field(None, description="MIME type of the recording (guessed from the extension if omitted)")
    voice_mode: VoiceMode = Field(..., description="'preset' to use a HeyGen voice, 'custom' to use the recording itself")
    voice_id: Optional[str] = Field(None, description="HeyGen voice ID (preset mode)")
    voice_name: Optional[str] = Field(None, description="Display name of the preset voice")
    avatar_id: Optional[str] = Field(None, description="HeyGen avatar ID")
    avatar_style: str = Field("normal", description="Avatar style (normal, circle, closeUp)")
    avatar_name: Optional[str] = Field(None, description="Display name of the avatar")
    character_id: Optional[int] = Field(None, description="Local id of a custom character")
    output_path: Optional[str] = Field(None, description="Download the finished video to this path")


def load_audio(path: str, mime_type: Optional[str] = None) -> AudioClip:
    """Read a recording from disk."""
    audio_file = Path(path)
    if not audio_file.exists():
        raise ValidationError("audio", f"Audio file not found: {path}")
    guessed, _ = mimetypes.guess_type(audio_file.name)
    return AudioClip(data=audio_file.read_bytes(), mime_type=mime_type or guessed or "audio/webm")


def resolve_persona(params: GenerationParams, services: Services):
    """Pick the persona: explicit character, explicit avatar, then the default character."""
    if params.character_id is not None:
        character = services.characters.get(params.character_id)
        if character is None:
            raise NotFoundError(f"character {params.character_id}")
        return services.characters.as_persona(character)
    if params.avatar_id:
        return PresetAvatarRef(
            avatar_id=params.avatar_id,
            avatar_style=params.avatar_style,
            name=params.avatar_name,
        )
    default = services.characters.get_default()
    if default is not None:
        logger.info(f"Using default character '{default.name}'")
        return services.characters.as_persona(default)
    return None


def log_progress(event: ProgressEvent) -> None:
    seconds = event.elapsed_ms / 1000
    suffix = f" - {event.message}" if event.message else ""
    logger.info(f"[{seconds:6.1f}s] {event.stage}{suffix}")


async def run_pipeline(params: GenerationParams, services: Services) -> Dict[str, Any]:
    """
    Run one generation and optionally download the result.

    Args:
        params: Generation parameters
        services: Components built by build_services()

    Returns:
        Dict with pipeline results
    """
    try:
        request = RenderRequest(
            audio=load_audio(params.audio_path, params.audio_mime_type),
            voice_mode=params.voice_mode,
            persona=resolve_persona(params, services),
            preset_voice_id=params.voice_id,
            preset_voice_name=params.voice_name,
        )
        video = await services.orchestrator.generate(request, on_progress=log_progress)

        result: Dict[str, Any] = {
            "success": True,
            "video_id": video.job_id,
            "video_url": video.video_url,
            "thumbnail_url": video.thumbnail_url,
            "duration": video.duration_seconds,
        }

        if params.output_path:
            output_file = Path(params.output_path)
            ensure_output_dir(output_file.parent)
            result["output_path"] = await services.renderer.download_video(video.video_url, str(output_file))

        logger.info(f"Pipeline completed! Video: {video.video_url}")
        return result

    except GenerationError as e:
        logger.error(f"Pipeline error: {str(e)}")
        return {
            "success": False,
            "error": str(e),
            "error_type": type(e).__name__,
        }
