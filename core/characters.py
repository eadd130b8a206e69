#!/usr/bin/env python3
# core/characters.py
"""
Library of custom character images.

Each image is uploaded to HeyGen once; the returned asset id is kept locally
together with the image so the character can be reused as a persona later.
"""

import sqlite3
import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from .errors import NotFoundError, StoreError, ValidationError
from .models import Character, CustomCharacterRef

# Configure logging
logger = logging.getLogger(__name__)

SUPPORTED_FORMATS = ("image/jpeg", "image/png", "image/webp")
MAX_FILE_SIZE = 10 * 1024 * 1024  # 10MB


class CharacterLibrary:
    """SQLite-backed character storage that registers images with HeyGen."""

    def __init__(self, renderer, db_path: str = ":memory:"):
        """
        Args:
            renderer: HeyGenClient (or anything with an upload_asset coroutine)
            db_path: Path to the SQLite file, or ":memory:"
        """
        self.renderer = renderer
        self.db_path = db_path
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        with self._lock, self._conn:
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS characters (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    asset_id TEXT NOT NULL,
                    asset_url TEXT,
                    mime_type TEXT NOT NULL,
                    image BLOB NOT NULL,
                    is_default INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL
                )
            """)

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    @staticmethod
    def _to_character(row: sqlite3.Row) -> Character:
        return Character(
            id=row["id"],
            name=row["name"],
            asset_id=row["asset_id"],
            asset_url=row["asset_url"],
            mime_type=row["mime_type"],
            image=bytes(row["image"]),
            is_default=bool(row["is_default"]),
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    async def add(self, name: str, image: bytes, mime_type: str) -> Character:
        """
        Validate an image, upload it to HeyGen and save it locally.

        Raises:
            ValidationError: Unsupported format, empty image or file too large
        """
        if not name or not name.strip():
            raise ValidationError("name", "Please give the character a name.")
        if mime_type not in SUPPORTED_FORMATS:
            raise ValidationError("image", "Unsupported file format. Please use JPG, PNG, or WebP.")
        if not image:
            raise ValidationError("image")
        if len(image) > MAX_FILE_SIZE:
            raise ValidationError("image", "File size exceeds 10MB limit.")

        logger.info(f"Uploading character '{name}' to HeyGen")
        asset = await self.renderer.upload_asset(image, "image", mime_type)

        character = Character(
            name=name.strip(),
            asset_id=asset.id,
            asset_url=asset.url,
            mime_type=mime_type,
            image=image,
        )
        try:
            with self._lock, self._conn:
                cursor = self._conn.execute(
                    """
                    INSERT INTO characters (name, asset_id, asset_url, mime_type, image, is_default, created_at)
                    VALUES (?, ?, ?, ?, ?, 0, ?)
                    """,
                    (character.name, character.asset_id, character.asset_url, character.mime_type,
                     sqlite3.Binary(character.image), character.created_at.isoformat()),
                )
        except sqlite3.Error as e:
            raise StoreError(f"Failed to save character {name}: {e}") from e

        character.id = cursor.lastrowid
        logger.info(f"Character '{character.name}' saved with asset ID {character.asset_id}")
        return character

    def list(self) -> List[Character]:
        with self._lock:
            rows = self._conn.execute("SELECT * FROM characters ORDER BY id").fetchall()
        return [self._to_character(row) for row in rows]

    def get(self, character_id: int) -> Optional[Character]:
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM characters WHERE id = ?", (character_id,)
            ).fetchone()
        return self._to_character(row) if row else None

    def delete(self, character_id: int) -> bool:
        with self._lock, self._conn:
            cursor = self._conn.execute("DELETE FROM characters WHERE id = ?", (character_id,))
        return cursor.rowcount > 0

    def set_default(self, character_id: int) -> None:
        """Make one character the default, clearing any previous default."""
        with self._lock, self._conn:
            exists = self._conn.execute(
                "SELECT 1 FROM characters WHERE id = ?", (character_id,)
            ).fetchone()
            if not exists:
                raise NotFoundError(character_id)
            self._conn.execute("UPDATE characters SET is_default = 0 WHERE is_default = 1")
            self._conn.execute("UPDATE characters SET is_default = 1 WHERE id = ?", (character_id,))
        logger.info(f"Default character set to {character_id}")

    def get_default(self) -> Optional[Character]:
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM characters WHERE is_default = 1 LIMIT 1"
            ).fetchone()
        return self._to_character(row) if row else None

    @staticmethod
    def as_persona(character: Character) -> CustomCharacterRef:
        return CustomCharacterRef(asset_id=character.asset_id, name=character.name)
