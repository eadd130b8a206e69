"""Shared pytest fixtures: in-memory stores and fake providers."""

import pytest

from core.errors import TranscriptionError
from core.models import AudioClip, PresetAvatarRef, RenderRequest, VoiceMode
from core.pipeline import VideoGenerationOrchestrator
from fakes import WAV_BYTES, FakeClock, FakeRenderer, FakeSleep, FakeTranscriber, RecordingHistory


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sleep(clock):
    return FakeSleep(clock)


@pytest.fixture
def history():
    store = RecordingHistory()
    yield store
    store.close()


@pytest.fixture
def transcriber():
    return FakeTranscriber()


@pytest.fixture
def renderer():
    return FakeRenderer()


@pytest.fixture
def encoded():
    """Records clips passed to the audio encoder."""
    return []


@pytest.fixture
def orchestrator(transcriber, renderer, history, sleep, clock, encoded):
    def encoder(clip: AudioClip) -> bytes:
        encoded.append(clip)
        return WAV_BYTES

    return VideoGenerationOrchestrator(
        transcriber=transcriber,
        renderer=renderer,
        history=history,
        audio_encoder=encoder,
        poll_interval=3.0,
        sleep=sleep,
        clock=clock,
    )


@pytest.fixture
def preset_request():
    return RenderRequest(
        audio=AudioClip(data=b"\x1aE\xdf\xa3webm-bytes", mime_type="audio/webm;codecs=opus"),
        voice_mode=VoiceMode.PRESET,
        persona=PresetAvatarRef(avatar_id="Anna_public_3", avatar_style="normal", name="Anna"),
        preset_voice_id="1bd001e7e50f421d891986aad5158bc8",
        preset_voice_name="Sara",
    )


@pytest.fixture
def custom_request():
    return RenderRequest(
        audio=AudioClip(data=b"\x1aE\xdf\xa3webm-bytes", mime_type="audio/webm"),
        voice_mode=VoiceMode.CUSTOM,
        persona=PresetAvatarRef(avatar_id="Anna_public_3"),
    )


@pytest.fixture
def transcription_failure():
    return TranscriptionError("Audio file is empty")
