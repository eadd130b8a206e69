"""
Core modules for the voice-to-avatar video pipeline.
"""

from .pipeline import VideoGenerationOrchestrator
from .config import Config, ensure_output_dir, setup_logging
from .history import JobHistoryStore

__all__ = ["VideoGenerationOrchestrator", "Config", "ensure_output_dir", "setup_logging", "JobHistoryStore"]
