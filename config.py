"""
Configuration Module

Centralized configuration and logging setup for the colony kernel.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from colony import Policy
from persistence import STORAGE_KEY


@dataclass
class KernelConfig:
    """Main kernel configuration."""

    # Loop
    tick_seconds: float = 2.0
    seed: Optional[int] = None

    # Storage
    storage_dir: str = "./storage"
    storage_key: str = STORAGE_KEY

    # Generative services
    gemini_api_key: Optional[str] = None
    text_model: str = "gemini-2.5-flash"
    image_model: str = "imagen-4.0-generate-001"
    video_model: str = "veo-2.0-generate-001"
    video_poll_seconds: float = 10.0

    # Initial policy
    min_pas: float = 0.5
    max_agents: int = 15
    approval_threshold: float = 0.6

    # Logging
    log_level: str = "INFO"
    log_file: Optional[str] = None

    def __post_init__(self):
        if self.tick_seconds <= 0:
            raise ValueError(f"tick_seconds must be positive, got {self.tick_seconds}")
        # fail fast on an invalid initial policy
        self.policy()

    def policy(self) -> Policy:
        return Policy.from_dict(
            {
                "min_pas": self.min_pas,
                "max_agents": self.max_agents,
                "approval_threshold": self.approval_threshold,
            }
        )


class ConfigLoader:
    """
    Loads configuration from environment variables and dictionaries.
    """

    @staticmethod
    def load_from_env() -> KernelConfig:
        """
        Load kernel configuration from ``ALICE_*`` environment variables.

        Returns:
            KernelConfig instance

        Raises:
            ValueError: If a variable holds an invalid value
        """
        seed = os.environ.get("ALICE_SEED")
        return KernelConfig(
            tick_seconds=float(os.environ.get("ALICE_TICK_SECONDS", "2.0")),
            seed=int(seed) if seed else None,
            storage_dir=os.environ.get("ALICE_STORAGE_DIR", "./storage"),
            storage_key=os.environ.get("ALICE_STORAGE_KEY", STORAGE_KEY),
            gemini_api_key=os.environ.get("GEMINI_API_KEY") or None,
            text_model=os.environ.get("ALICE_TEXT_MODEL", "gemini-2.5-flash"),
            image_model=os.environ.get("ALICE_IMAGE_MODEL", "imagen-4.0-generate-001"),
            video_model=os.environ.get("ALICE_VIDEO_MODEL", "veo-2.0-generate-001"),
            video_poll_seconds=float(os.environ.get("ALICE_VIDEO_POLL_SECONDS", "10")),
            min_pas=float(os.environ.get("ALICE_MIN_PAS", "0.5")),
            max_agents=int(os.environ.get("ALICE_MAX_AGENTS", "15")),
            approval_threshold=float(os.environ.get("ALICE_APPROVAL_THRESHOLD", "0.6")),
            log_level=os.environ.get("ALICE_LOG_LEVEL", "INFO"),
            log_file=os.environ.get("ALICE_LOG_FILE"),
        )

    @staticmethod
    def load_from_dict(config_dict: dict) -> KernelConfig:
        return KernelConfig(**config_dict)


def setup_logging(log_level: str = "INFO", log_file: Optional[str] = None) -> None:
    """
    Configure root logging for the kernel.

    Args:
        log_level: Logging level name (DEBUG, INFO, WARNING, ...)
        log_file: Optional file path for log output
    """
    level = getattr(logging, log_level.upper(), logging.INFO)
    handlers = [logging.StreamHandler()]
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=handlers,
        force=True,
    )
    for noisy in ("httpx", "httpcore", "google_genai"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    logging.getLogger(__name__).info(f"Logging configured - Level: {log_level}")
