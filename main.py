#!/usr/bin/env python3
"""
Main entry point for the voice-to-avatar video pipeline.
"""

import asyncio
import argparse
import logging
import mimetypes
import sys
from pathlib import Path
from typing import List, Optional

from core import Config
from core.errors import GenerationError
from core.models import VoiceMode
from pipeline_runner import GenerationParams, Services, build_services, log_progress, run_pipeline

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Voice-to-avatar video generation")
    parser.add_argument("--env-file", type=str, help="Path to a .env file (default: auto-detect)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    generate = subparsers.add_parser("generate", help="Generate a video from a recording")
    generate.add_argument("--audio", type=str, required=True, help="Recorded audio file")
    generate.add_argument("--audio-type", type=str, help="MIME type of the recording (default: from extension)")
    generate.add_argument("--voice", type=str, choices=[m.value for m in VoiceMode], required=True,
                          help="'preset' to speak the transcript with a HeyGen voice, 'custom' to use the recording")
    generate.add_argument("--voice-id", type=str, help="HeyGen voice ID (preset mode)")
    generate.add_argument("--voice-name", type=str, help="Voice display name for the history")
    generate.add_argument("--avatar", type=str, help="HeyGen avatar ID")
    generate.add_argument("--avatar-style", type=str, default="normal", help="Avatar style")
    generate.add_argument("--avatar-name", type=str, help="Avatar display name for the history")
    generate.add_argument("--character", type=int, help="Local id of a custom character")
    generate.add_argument("--output", type=str, help="Download the finished video to this path")

    subparsers.add_parser("history", help="List generated videos, newest first")

    delete = subparsers.add_parser("delete", help="Delete one video from the history")
    delete.add_argument("video_id", type=str)

    subparsers.add_parser("clear", help="Delete the whole history")

    resume = subparsers.add_parser("resume", help="Resume polling for videos still processing")
    resume.add_argument("video_id", type=str, nargs="?", help="Video to resume (default: all pending)")

    subparsers.add_parser("avatars", help="List HeyGen avatars")
    subparsers.add_parser("voices", help="List HeyGen voices")

    characters = subparsers.add_parser("characters", help="List custom characters")
    characters.add_argument("--add", type=str, metavar="IMAGE", help="Upload a new character image")
    characters.add_argument("--name", type=str, help="Name of the new character")
    characters.add_argument("--set-default", type=int, metavar="ID", help="Make a character the default")
    characters.add_argument("--delete", type=int, metavar="ID", help="Delete a character")

    return parser


async def _generate(args: argparse.Namespace, services: Services) -> int:
    params = GenerationParams(
        audio_path=args.audio,
        audio_mime_type=args.audio_type,
        voice_mode=VoiceMode(args.voice),
        voice_id=args.voice_id,
        voice_name=args.voice_name,
        avatar_id=args.avatar,
        avatar_style=args.avatar_style,
        avatar_name=args.avatar_name,
        character_id=args.character,
        output_path=args.output,
    )
    result = await run_pipeline(params, services)

    print("\nPipeline result:")
    if result["success"]:
        print(f"✅ Success! Video ID: {result['video_id']}")
        print(f"Video URL: {result['video_url']}")
        if result.get("duration"):
            print(f"Duration: {result['duration']:.1f}s")
        if result.get("output_path"):
            print(f"Downloaded to: {result['output_path']}")
        return 0

    print(f"❌ Error: {result.get('error', 'Unknown error')}")
    return 1


def _print_history(services: Services) -> int:
    jobs = services.history.list_all()
    if not jobs:
        print("No videos in history")
        return 0
    for job in jobs:
        print(f"{job.created_at:%Y-%m-%d %H:%M:%S}  {job.id}  {job.status.value:<10}  "
              f"{job.persona_label or '-'} / {job.voice_label or '-'}")
        if job.result_url:
            print(f"    {job.result_url}")
    return 0


async def _resume(args: argparse.Namespace, services: Services) -> int:
    if args.video_id:
        video_ids = [args.video_id]
    else:
        video_ids = [job.id for job in services.history.list_pending()]
        print(f"Resuming {len(video_ids)} pending videos")

    exit_code = 0
    for video_id in video_ids:
        try:
            video = await services.orchestrator.resume(video_id, on_progress=log_progress)
            print(f"✅ {video_id}: {video.video_url}")
        except GenerationError as e:
            print(f"❌ {video_id}: {e}")
            exit_code = 1
    return exit_code


async def _characters(args: argparse.Namespace, services: Services) -> int:
    library = services.characters
    if args.add:
        image_path = Path(args.add)
        mime_type, _ = mimetypes.guess_type(image_path.name)
        character = await library.add(args.name or image_path.stem, image_path.read_bytes(), mime_type or "")
        print(f"✅ Character {character.id} '{character.name}' uploaded (asset {character.asset_id})")
    if args.set_default is not None:
        library.set_default(args.set_default)
    if args.delete is not None and not library.delete(args.delete):
        print(f"Character {args.delete} not found")

    for character in library.list():
        marker = "*" if character.is_default else " "
        print(f"{marker} {character.id:>3}  {character.name}  ({character.asset_id})")
    return 0


async def main(args: Optional[List[str]] = None) -> int:
    """
    Main entry point.

    Args:
        args: Command line arguments (optional, for testing)

    Returns:
        Process exit code
    """
    parsed_args = build_parser().parse_args(args)
    services = build_services(Config(parsed_args.env_file))

    try:
        if parsed_args.command == "generate":
            return await _generate(parsed_args, services)
        if parsed_args.command == "history":
            return _print_history(services)
        if parsed_args.command == "delete":
            deleted = services.history.delete(parsed_args.video_id)
            print("Deleted" if deleted else f"Video {parsed_args.video_id} not found")
            return 0 if deleted else 1
        if parsed_args.command == "clear":
            services.history.clear()
            print("History cleared")
            return 0
        if parsed_args.command == "resume":
            return await _resume(parsed_args, services)
        if parsed_args.command == "avatars":
            for avatar in await services.renderer.list_avatars():
                print(f"{avatar.get('avatar_id')}  {avatar.get('avatar_name', '')}")
            return 0
        if parsed_args.command == "voices":
            for voice in await services.renderer.list_voices():
                print(f"{voice.get('voice_id')}  {voice.get('name', '')}  {voice.get('language', '')}")
            return 0
        if parsed_args.command == "characters":
            return await _characters(parsed_args, services)
    except GenerationError as e:
        print(f"❌ Error: {e}")
        return 1
    finally:
        services.close()

    return 2


def run() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
