#!/usr/bin/env python3
"""
Configuration management for the video generation pipeline.
Handles environment variables, logging setup, and directory management.
"""

import os
import logging
from pathlib import Path
from typing import Dict, Any, Optional
from dotenv import load_dotenv, find_dotenv

DEFAULT_HEYGEN_BASE_URL = "https://api.heygen.com"
DEFAULT_HEYGEN_UPLOAD_URL = "https://upload.heygen.com"
DEFAULT_ASSEMBLYAI_BASE_URL = "https://api.assemblyai.com/v2"
DEFAULT_HISTORY_DB_PATH = "output/history.db"

# Polling settings
DEFAULT_POLL_INTERVAL = 3.0  # seconds
DEFAULT_MAX_POLL_ATTEMPTS = 200


def setup_logging(level=logging.INFO):
    """
    Set up logging configuration for the application.

    Args:
        level: Logging level (default: INFO)
    """
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )
    # Reduce noise from third-party libraries
    logging.getLogger("aiohttp").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("pydub").setLevel(logging.WARNING)


class Config:
    """Configuration manager for the video pipeline."""

    def __init__(self, env_file: Optional[str] = None, configure_logging: bool = True):
        """
        Initialize configuration.

        Args:
            env_file: Path to .env file (default: auto-detect)
            configure_logging: Whether to call setup_logging()
        """
        self.logger = logging.getLogger(__name__)
        self._config = {}
        if configure_logging:
            setup_logging()
        self.load_environment(env_file)

    def load_environment(self, env_file: Optional[str] = None) -> Dict[str, Any]:
        """
        Load environment variables from .env file.

        Args:
            env_file: Path to .env file (default: auto-detect)

        Returns:
            Dict with the loaded settings

        Raises:
            ValueError: If the HeyGen API key is missing or a number is malformed
        """
        env_path = env_file if env_file else find_dotenv(usecwd=True)

        if env_path:
            self.logger.info(f"Found .env file at: {env_path}")
            load_dotenv(env_path, override=True)
        else:
            self.logger.warning("No .env file found! Make sure to provide API keys directly.")

        heygen_api_key = os.getenv("HEYGEN_API_KEY")
        assemblyai_api_key = os.getenv("ASSEMBLYAI_API_KEY")

        if not heygen_api_key:
            raise ValueError("No HEYGEN_API_KEY found in environment variables")

        try:
            poll_interval = float(os.getenv("POLL_INTERVAL", DEFAULT_POLL_INTERVAL))
            max_poll_attempts = int(os.getenv("MAX_POLL_ATTEMPTS", DEFAULT_MAX_POLL_ATTEMPTS))
            video_width = int(os.getenv("VIDEO_WIDTH", 1280))
            video_height = int(os.getenv("VIDEO_HEIGHT", 720))
        except ValueError as e:
            raise ValueError(f"Invalid numeric setting in environment: {e}") from e

        self._config = {
            "heygen_api_key": heygen_api_key,
            "heygen_base_url": os.getenv("HEYGEN_BASE_URL", DEFAULT_HEYGEN_BASE_URL).rstrip("/"),
            "heygen_upload_url": os.getenv("HEYGEN_UPLOAD_URL", DEFAULT_HEYGEN_UPLOAD_URL).rstrip("/"),
            "assemblyai_api_key": assemblyai_api_key,
            "assemblyai_base_url": os.getenv("ASSEMBLYAI_BASE_URL", DEFAULT_ASSEMBLYAI_BASE_URL).rstrip("/"),
            "history_db_path": os.getenv("HISTORY_DB_PATH", DEFAULT_HISTORY_DB_PATH),
            "poll_interval": poll_interval,
            "max_poll_attempts": max_poll_attempts,
            "video_width": video_width,
            "video_height": video_height,
        }

        self.logger.info(f"HeyGen API: {self._config['heygen_base_url']}")

        if not assemblyai_api_key:
            self.logger.warning("ASSEMBLYAI_API_KEY not found in environment variables. Preset voices will not work.")

        return self._config

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value."""
        return self._config.get(key, default)

    def set(self, key: str, value: Any) -> None:
        """Set configuration value."""
        self._config[key] = value

    @property
    def heygen_api_key(self) -> str:
        return self._config["heygen_api_key"]

    @property
    def heygen_base_url(self) -> str:
        return self._config["heygen_base_url"]

    @property
    def heygen_upload_url(self) -> str:
        return self._config["heygen_upload_url"]

    @property
    def assemblyai_api_key(self) -> Optional[str]:
        return self._config.get("assemblyai_api_key")

    @property
    def assemblyai_base_url(self) -> str:
        return self._config["assemblyai_base_url"]

    @property
    def history_db_path(self) -> str:
        return self._config["history_db_path"]

    @property
    def poll_interval(self) -> float:
        return self._config["poll_interval"]

    @property
    def max_poll_attempts(self) -> int:
        return self._config["max_poll_attempts"]

    @property
    def video_width(self) -> int:
        return self._config["video_width"]

    @property
    def video_height(self) -> int:
        return self._config["video_height"]


def ensure_output_dir(directory: Path) -> Path:
    """
    Ensure the output directory exists, creating it if necessary.

    Args:
        directory: Path to the output directory

    Returns:
        The created/existing directory path
    """
    directory.mkdir(exist_ok=True, parents=True)
    return directory
