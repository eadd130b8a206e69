#!/usr/bin/env python3
# core/personas.py
"""
Persona resolution: turns the user's avatar/character choice into the
character block of a HeyGen render request.
"""

from typing import Any, Dict

from .models import CustomCharacterRef, Persona, PresetAvatarRef


def resolve_character(persona: Persona) -> Dict[str, Any]:
    """
    Build the render-time character spec for a persona.

    Args:
        persona: A preset avatar or a registered custom character

    Returns:
        Character dict for the video_inputs entry
    """
    if isinstance(persona, PresetAvatarRef):
        return {
            "type": "avatar",
            "avatar_id": persona.avatar_id,
            "avatar_style": persona.avatar_style or "normal",
        }
    if isinstance(persona, CustomCharacterRef):
        return {
            "type": "photo",
            "photo_id": persona.asset_id,
        }
    raise TypeError(f"Unsupported persona type: {type(persona).__name__}")


def persona_label(persona: Persona) -> str:
    if isinstance(persona, PresetAvatarRef):
        return persona.name or persona.avatar_id
    return persona.name or "Custom Character"


def persona_id(persona: Persona) -> str:
    if isinstance(persona, PresetAvatarRef):
        return persona.avatar_id
    return persona.asset_id
