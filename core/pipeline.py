#!/usr/bin/env python3
"""
Main pipeline for orchestrating voice-to-avatar video generation.
"""

import time
import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional

from .config import DEFAULT_POLL_INTERVAL
from .errors import (
    GenerationError,
    NotFoundError,
    ProviderError,
    RenderFailedError,
    TransportBlockedError,
    TransportError,
    ValidationError,
)
from .history import JobHistoryStore
from .models import (
    AudioClip,
    AudioVoice,
    JobStatus,
    PlayableVideo,
    ProgressEvent,
    RenderJob,
    RenderRequest,
    TextVoice,
    VoiceConfig,
    VoiceMode,
)
from .personas import persona_id, persona_label, resolve_character

ProgressSink = Callable[[ProgressEvent], None]

CUSTOM_VOICE_LABEL = "Custom Voice"


class RenderPhase(str, Enum):
    SUBMITTED = "submitted"
    POLLING = "polling"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class RenderTracker:
    """Poll-loop state for one submitted job."""
    job_id: str
    started: float
    phase: RenderPhase = RenderPhase.SUBMITTED
    polls: int = 0
    transient_errors: int = 0


class VideoGenerationOrchestrator:
    """
    Pipeline for recording-to-avatar-video generation.

    This class orchestrates the entire process:
    1. Validate the request
    2. Build the voice: transcribe the recording (preset voice) or convert and
       upload it (custom voice)
    3. Resolve the persona into a character spec
    4. Submit the render job and record it in the job history
    5. Poll the job until it completes or fails, keeping the history current
    """

    def __init__(
        self,
        transcriber,
        renderer,
        history: JobHistoryStore,
        audio_encoder: Optional[Callable[[AudioClip], bytes]] = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        on_progress: Optional[ProgressSink] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the pipeline.

        Args:
            transcriber: AssemblyAIClient, or None when preset voices are disabled
            renderer: HeyGenClient
            history: Store receiving one record per submitted job
            audio_encoder: Converts a recording into WAV bytes (default: pydub converter)
            poll_interval: Seconds between render status checks
            on_progress: Default progress sink
            sleep: Coroutine used to wait between polls
            clock: Monotonic clock in seconds, used for elapsed time
        """
        self.logger = logging.getLogger(__name__)
        self.transcriber = transcriber
        self.renderer = renderer
        self.history = history
        self.audio_encoder = audio_encoder
        self.poll_interval = poll_interval
        self.on_progress = on_progress
        self._sleep = sleep
        self._clock = clock

    async def generate(self, request: RenderRequest, on_progress: Optional[ProgressSink] = None) -> PlayableVideo:
        """
        Run the full pipeline for one request.

        Args:
            request: Recording, voice choice and persona
            on_progress: Progress sink for this call (overrides the default one)

        Returns:
            The finished video

        Raises:
            GenerationError: Any failure; str(error) is the message for the user
        """
        sink = on_progress or self.on_progress
        started = self._clock()

        self._validate(request)
        self.logger.info(f"Starting video generation ({request.voice_mode.value} voice)")

        # Step 1: Build the voice configuration
        transcript = None
        if request.voice_mode is VoiceMode.PRESET:
            transcript = await self._transcribe(request.audio, started, sink)
            voice: VoiceConfig = TextVoice(voice_id=request.preset_voice_id, text=transcript)
            voice_label = request.preset_voice_name or request.preset_voice_id
        else:
            asset_id = await self._upload_custom_voice(request.audio, started, sink)
            voice = AudioVoice(asset_id=asset_id)
            voice_label = CUSTOM_VOICE_LABEL

        # Step 2: Resolve the persona
        character = resolve_character(request.persona)

        # Step 3: Submit the render job
        self._emit(sink, "submitting", started)
        job_id = await self.renderer.submit_render(character, voice)

        # Step 4: Record the job before polling so an interrupted run can be resumed
        self.history.create(RenderJob(
            id=job_id,
            status=JobStatus.PROCESSING,
            persona_label=persona_label(request.persona),
            persona_id=persona_id(request.persona),
            voice_label=voice_label,
            voice_mode=request.voice_mode,
            transcript_text=transcript,
        ))
        self.logger.info(f"Video {job_id} saved to history")
        self._emit(sink, "rendering", started, job_id, "Video submitted")

        # Step 5: Wait for the result
        return await self._poll_until_terminal(RenderTracker(job_id=job_id, started=started), sink)

    async def resume(self, job_id: str, on_progress: Optional[ProgressSink] = None) -> PlayableVideo:
        """
        Continue waiting for a job recorded in history.

        Jobs already finished are answered from the history without calling HeyGen.

        Raises:
            NotFoundError: If the job is not in the history
            RenderFailedError: If the job failed
        """
        job = self.history.get_by_id(job_id)
        if job is None:
            raise NotFoundError(job_id)

        if job.status is JobStatus.COMPLETED:
            return PlayableVideo(
                job_id=job.id,
                video_url=job.result_url,
                thumbnail_url=job.thumbnail_url,
                duration_seconds=job.duration_seconds,
            )
        if job.status is JobStatus.FAILED:
            raise RenderFailedError(job_id, "marked as failed in history")

        self.logger.info(f"Resuming status polling for video {job_id}")
        sink = on_progress or self.on_progress
        return await self._poll_until_terminal(RenderTracker(job_id=job_id, started=self._clock()), sink)

    def _validate(self, request: RenderRequest) -> None:
        if request.audio is None or not request.audio.data:
            raise ValidationError("audio", "Please record your voice first")
        if request.persona is None:
            raise ValidationError("persona", "Please select an avatar or character")
        if request.voice_mode is None:
            raise ValidationError("voice_mode", "Please select a voice option")
        if request.voice_mode is VoiceMode.PRESET and not request.preset_voice_id:
            raise ValidationError("preset_voice_id", "Please select a preset voice")

    async def _transcribe(self, audio: AudioClip, started: float, sink: Optional[ProgressSink]) -> str:
        if self.transcriber is None:
            raise GenerationError("Transcription is not configured (ASSEMBLYAI_API_KEY missing)")
        self._emit(sink, "transcribing", started)
        return await self.transcriber.transcribe(audio.data)

    async def _upload_custom_voice(self, audio: AudioClip, started: float, sink: Optional[ProgressSink]) -> str:
        self._emit(sink, "converting", started)
        encoder = self.audio_encoder
        if encoder is None:
            from audio.conversion import convert_to_wav
            encoder = convert_to_wav
        wav = await asyncio.to_thread(encoder, audio)

        self._emit(sink, "uploading", started)
        try:
            asset = await self.renderer.upload_asset(wav, "audio", "audio/wav")
        except TransportBlockedError:
            raise
        except TransportError as e:
            self.logger.error(f"Audio upload could not reach HeyGen: {e}")
            raise TransportBlockedError(
                "Cannot upload audio from this environment. "
                "Run the service behind a same-origin proxy or allow access to the HeyGen upload host."
            ) from e
        return asset.id

    async def _poll_until_terminal(self, tracker: RenderTracker, sink: Optional[ProgressSink]) -> PlayableVideo:
        """
        Poll the render job until HeyGen reports a terminal status.

        There is no attempt limit. Errors reaching HeyGen are retried after the
        same interval; only 'completed', 'failed' or a local error end the loop.
        """
        job_id = tracker.job_id
        self._transition(tracker, RenderPhase.POLLING)

        while True:
            try:
                status = await self.renderer.get_status(job_id)
            except (TransportError, ProviderError) as e:
                tracker.transient_errors += 1
                self.logger.warning(f"Error checking status of video {job_id}, retrying: {e}")
                self._emit(sink, "retrying", tracker.started, job_id, str(e))
                await self._sleep(self.poll_interval)
                continue

            tracker.polls += 1
            self.logger.info(f"Video {job_id} status: {status.status.value} (poll {tracker.polls})")

            if status.status is JobStatus.COMPLETED:
                self.history.update(
                    job_id,
                    status=JobStatus.COMPLETED,
                    result_url=status.video_url,
                    thumbnail_url=status.thumbnail_url,
                    duration_seconds=status.duration,
                )
                self._transition(tracker, RenderPhase.COMPLETED)
                self._emit(sink, "completed", tracker.started, job_id)
                return PlayableVideo(
                    job_id=job_id,
                    video_url=status.video_url,
                    thumbnail_url=status.thumbnail_url,
                    duration_seconds=status.duration,
                )

            if status.status is JobStatus.FAILED:
                self.history.update(job_id, status=JobStatus.FAILED)
                self._transition(tracker, RenderPhase.FAILED)
                self._emit(sink, "failed", tracker.started, job_id, status.error)
                raise RenderFailedError(job_id, status.error)

            self._emit(sink, "rendering", tracker.started, job_id)
            await self._sleep(self.poll_interval)

    def _transition(self, tracker: RenderTracker, phase: RenderPhase) -> None:
        if phase in (RenderPhase.COMPLETED, RenderPhase.FAILED):
            self.logger.info(
                f"Video {tracker.job_id}: {tracker.phase.value} -> {phase.value} "
                f"after {tracker.polls} polls and {tracker.transient_errors} retried errors"
            )
        else:
            self.logger.info(f"Video {tracker.job_id}: {tracker.phase.value} -> {phase.value}")
        tracker.phase = phase

    def _emit(
        self,
        sink: Optional[ProgressSink],
        stage: str,
        started: float,
        job_id: Optional[str] = None,
        message: Optional[str] = None,
    ) -> None:
        if sink is None:
            return
        elapsed_ms = int((self._clock() - started) * 1000)
        try:
            sink(ProgressEvent(stage=stage, elapsed_ms=elapsed_ms, job_id=job_id, message=message))
        except Exception:
            self.logger.exception(f"Progress sink failed on stage {stage}")
