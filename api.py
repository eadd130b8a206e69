#!/usr/bin/env python3
"""
FastAPI endpoint for the voice-to-avatar video pipeline.
Accepts a recording, runs the generation in the background and exposes its
progress, the video history, the HeyGen catalogues and the character library.
"""

import uuid
import logging
from datetime import datetime
from functools import lru_cache
from typing import Optional, Dict, Any, List

from fastapi import Depends, FastAPI, BackgroundTasks, File, Form, HTTPException, Request, UploadFile
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from core import Config
from core.errors import (
    DuplicateIdError,
    GenerationError,
    NotFoundError,
    ProviderError,
    TransportError,
    ValidationError,
)
from core.models import AudioClip, PresetAvatarRef, ProgressEvent, RenderJob, RenderRequest, VoiceMode
from pipeline_runner import Services, build_services

logger = logging.getLogger(__name__)

# Create FastAPI app
app = FastAPI(
    title="Voice Avatar Video Generator",
    description="API for turning a voice recording into a HeyGen talking-avatar video",
    version="0.1.0"
)

# Store current generation processes
active_processes: Dict[str, Dict[str, Any]] = {}


class ProcessStatus(BaseModel):
    """Status model for video generation processes."""
    process_id: str
    status: str
    stage: Optional[str] = None
    elapsed_ms: int = 0
    video_id: Optional[str] = None
    result: Optional[Dict[str, Any]] = None
    created_at: str
    completed_at: Optional[str] = None
    error: Optional[str] = None


class CharacterOut(BaseModel):
    id: int
    name: str
    asset_id: str
    asset_url: Optional[str] = None
    mime_type: str
    is_default: bool
    created_at: datetime


@lru_cache(maxsize=1)
def get_services() -> Services:
    """Build the shared components once per process."""
    return build_services(Config())


def _status_code(error: GenerationError) -> int:
    if isinstance(error, ValidationError):
        return 400
    if isinstance(error, NotFoundError):
        return 404
    if isinstance(error, DuplicateIdError):
        return 409
    if isinstance(error, (ProviderError, TransportError)):
        return 502
    return 500


@app.exception_handler(GenerationError)
async def generation_error_handler(request: Request, exc: GenerationError) -> JSONResponse:
    return JSONResponse(
        status_code=_status_code(exc),
        content={"detail": str(exc), "error_type": type(exc).__name__},
    )


async def generate_video_task(process_id: str, render_request: RenderRequest, services: Services) -> None:
    """
    Background task running one generation.

    Args:
        process_id: Unique identifier for this process
        render_request: Validated request
        services: Shared components
    """
    process = active_processes[process_id]

    def on_progress(event: ProgressEvent) -> None:
        process["stage"] = event.stage
        process["elapsed_ms"] = event.elapsed_ms
        if event.job_id:
            process["video_id"] = event.job_id

    try:
        process["status"] = "processing"
        video = await services.orchestrator.generate(render_request, on_progress=on_progress)
        process["status"] = "completed"
        process["result"] = {
            "video_id": video.job_id,
            "video_url": video.video_url,
            "thumbnail_url": video.thumbnail_url,
            "duration": video.duration_seconds,
        }
    except GenerationError as e:
        logger.error(f"Process {process_id} failed: {e}")
        process["status"] = "failed"
        process["error"] = str(e)
    except Exception as e:
        logger.exception(f"Unexpected error in process {process_id}: {str(e)}")
        process["status"] = "failed"
        process["error"] = str(e)
    finally:
        process["completed_at"] = datetime.now().isoformat()


@app.post("/videos", response_model=ProcessStatus, status_code=202)
async def generate_video(
    background_tasks: BackgroundTasks,
    audio: UploadFile = File(..., description="Recorded voice"),
    voice_mode: VoiceMode = Form(..., description="'preset' or 'custom'"),
    voice_id: Optional[str] = Form(None, description="HeyGen voice ID (preset mode)"),
    voice_name: Optional[str] = Form(None),
    avatar_id: Optional[str] = Form(None, description="HeyGen avatar ID"),
    avatar_style: str = Form("normal"),
    avatar_name: Optional[str] = Form(None),
    character_id: Optional[int] = Form(None, description="Local custom character id"),
    services: Services = Depends(get_services),
) -> JSONResponse:
    """
    Start a new video generation process.

    Returns:
        Process ID and initial status
    """
    data = await audio.read()
    if not data:
        raise ValidationError("audio", "Please record your voice first")

    if character_id is not None:
        character = services.characters.get(character_id)
        if character is None:
            raise NotFoundError(f"character {character_id}")
        persona = services.characters.as_persona(character)
    elif avatar_id:
        persona = PresetAvatarRef(avatar_id=avatar_id, avatar_style=avatar_style, name=avatar_name)
    else:
        raise ValidationError("persona", "Please select an avatar or character")

    if voice_mode is VoiceMode.PRESET and not voice_id:
        raise ValidationError("preset_voice_id", "Please select a preset voice")

    render_request = RenderRequest(
        audio=AudioClip(data=data, mime_type=audio.content_type or "audio/webm"),
        voice_mode=voice_mode,
        persona=persona,
        preset_voice_id=voice_id,
        preset_voice_name=voice_name,
    )

    process_id = uuid.uuid4().hex
    active_processes[process_id] = {
        "process_id": process_id,
        "status": "queued",
        "stage": None,
        "elapsed_ms": 0,
        "video_id": None,
        "created_at": datetime.now().isoformat(),
        "completed_at": None,
        "result": None,
        "error": None
    }

    # Start background task for video generation
    background_tasks.add_task(generate_video_task, process_id, render_request, services)

    return JSONResponse(content=active_processes[process_id], status_code=202)


@app.get("/process/{process_id}", response_model=ProcessStatus)
async def get_process_status(process_id: str) -> JSONResponse:
    if process_id not in active_processes:
        raise HTTPException(status_code=404, detail=f"Process {process_id} not found")
    return JSONResponse(content=active_processes[process_id])


@app.get("/processes")
async def list_processes() -> JSONResponse:
    return JSONResponse(content=list(active_processes.values()))


@app.get("/videos", response_model=List[RenderJob])
async def list_videos(services: Services = Depends(get_services)) -> List[RenderJob]:
    """List the video history, newest first."""
    return services.history.list_all()


@app.get("/videos/{video_id}", response_model=RenderJob)
async def get_video(video_id: str, services: Services = Depends(get_services)) -> RenderJob:
    job = services.history.get_by_id(video_id)
    if job is None:
        raise NotFoundError(video_id)
    return job


@app.post("/videos/{video_id}/resume", response_model=ProcessStatus, status_code=202)
async def resume_video(
    video_id: str,
    background_tasks: BackgroundTasks,
    services: Services = Depends(get_services),
) -> JSONResponse:
    """Resume polling a video that is still processing in the history."""
    if services.history.get_by_id(video_id) is None:
        raise NotFoundError(video_id)

    process_id = uuid.uuid4().hex
    active_processes[process_id] = {
        "process_id": process_id,
        "status": "queued",
        "stage": "rendering",
        "elapsed_ms": 0,
        "video_id": video_id,
        "created_at": datetime.now().isoformat(),
        "completed_at": None,
        "result": None,
        "error": None
    }
    background_tasks.add_task(resume_video_task, process_id, video_id, services)
    return JSONResponse(content=active_processes[process_id], status_code=202)


async def resume_video_task(process_id: str, video_id: str, services: Services) -> None:
    process = active_processes[process_id]
    try:
        process["status"] = "processing"
        video = await services.orchestrator.resume(video_id)
        process["status"] = "completed"
        process["result"] = {"video_id": video.job_id, "video_url": video.video_url}
    except GenerationError as e:
        logger.error(f"Resume of {video_id} failed: {e}")
        process["status"] = "failed"
        process["error"] = str(e)
    except Exception as e:
        logger.exception(f"Unexpected error resuming {video_id}: {str(e)}")
        process["status"] = "failed"
        process["error"] = str(e)
    finally:
        process["completed_at"] = datetime.now().isoformat()


@app.delete("/videos/{video_id}")
async def delete_video(video_id: str, services: Services = Depends(get_services)) -> JSONResponse:
    if not services.history.delete(video_id):
        raise NotFoundError(video_id)
    return JSONResponse(content={"message": f"Video {video_id} deleted successfully"})


@app.delete("/videos")
async def clear_videos(services: Services = Depends(get_services)) -> JSONResponse:
    services.history.clear()
    return JSONResponse(content={"message": "Video history cleared"})


@app.get("/avatars")
async def list_avatars(services: Services = Depends(get_services)) -> List[Dict[str, Any]]:
    return await services.renderer.list_avatars()


@app.get("/voices")
async def list_voices(services: Services = Depends(get_services)) -> List[Dict[str, Any]]:
    return await services.renderer.list_voices()


@app.get("/characters", response_model=List[CharacterOut])
async def list_characters(services: Services = Depends(get_services)) -> List[CharacterOut]:
    return [CharacterOut(**c.model_dump(exclude={"image"})) for c in services.characters.list()]


@app.post("/characters", response_model=CharacterOut, status_code=201)
async def upload_character(
    image: UploadFile = File(...),
    name: str = Form(...),
    services: Services = Depends(get_services),
) -> CharacterOut:
    """Upload a character image to HeyGen and keep it in the library."""
    character = await services.characters.add(name, await image.read(), image.content_type or "")
    return CharacterOut(**character.model_dump(exclude={"image"}))


@app.post("/characters/{character_id}/default")
async def set_default_character(character_id: int, services: Services = Depends(get_services)) -> JSONResponse:
    services.characters.set_default(character_id)
    return JSONResponse(content={"message": f"Character {character_id} is now the default"})


@app.delete("/characters/{character_id}")
async def delete_character(character_id: int, services: Services = Depends(get_services)) -> JSONResponse:
    if not services.characters.delete(character_id):
        raise NotFoundError(f"character {character_id}")
    return JSONResponse(content={"message": f"Character {character_id} deleted successfully"})


@app.get("/health")
async def health_check(services: Services = Depends(get_services)) -> JSONResponse:
    """
    Health check endpoint.

    Returns:
        API status
    """
    return JSONResponse(
        content={
            "status": "healthy",
            "api_keys": {
                "heygen": bool(services.config.heygen_api_key),
                "assemblyai": services.config.assemblyai_api_key is not None,
            },
            "active_processes": len(active_processes)
        }
    )


if __name__ == "__main__":
    import uvicorn
    # Run with uvicorn
    uvicorn.run(
        "api:app",
        host="0.0.0.0",
        port=8000,
        reload=True
    )
