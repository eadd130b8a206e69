#!/usr/bin/env python3
# audio/conversion.py
"""
Audio format conversion.
HeyGen only accepts MP3 and WAV audio assets, while browsers usually record
WebM/Opus, so custom-voice recordings are re-encoded to WAV before upload.
"""

import io
import logging

from pydub import AudioSegment
from pydub.exceptions import CouldntDecodeError

from core.errors import AudioConversionError
from core.models import AudioClip

# Configure logging
logger = logging.getLogger(__name__)

_WAV_TYPES = {"audio/wav", "audio/wave", "audio/x-wav"}

# Container names ffmpeg understands, by MIME type
_FORMATS = {
    "audio/webm": "webm",
    "audio/ogg": "ogg",
    "audio/mpeg": "mp3",
    "audio/mp3": "mp3",
    "audio/mp4": "mp4",
    "audio/x-m4a": "m4a",
    "audio/flac": "flac",
}


def is_wav(clip: AudioClip) -> bool:
    base_type = clip.mime_type.split(";")[0].strip().lower()
    return base_type in _WAV_TYPES or (clip.data[:4] == b"RIFF" and clip.data[8:12] == b"WAVE")


def convert_to_wav(clip: AudioClip) -> bytes:
    """
    Re-encode a recording into a WAV container.

    WAV input is returned unchanged.

    Args:
        clip: Recorded audio and its MIME type

    Returns:
        WAV file bytes
    """
    if is_wav(clip):
        logger.info("Audio is already WAV, skipping conversion")
        return clip.data

    base_type = clip.mime_type.split(";")[0].strip().lower()
    source_format = _FORMATS.get(base_type)
    logger.info(f"Converting {len(clip.data)} bytes of {base_type or 'unknown'} audio to WAV")

    try:
        segment = AudioSegment.from_file(io.BytesIO(clip.data), format=source_format)
        output = io.BytesIO()
        segment.export(output, format="wav")
    except (CouldntDecodeError, OSError) as e:
        raise AudioConversionError(f"Failed to convert audio format: {e}") from e

    wav = output.getvalue()
    logger.info(f"Conversion complete, output size: {len(wav)} bytes")
    return wav
