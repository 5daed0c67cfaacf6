"""
Crossing Controller Configuration
---------------------------------
Deployment settings loaded from environment variables or a .env file.
The defaults are the parameters the crossing is normally deployed with.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Optional

from dotenv import load_dotenv

from crossingController.crossing_controller_backend import CrossingControllerBackend
from universal.global_clock import GlobalClock

load_dotenv()

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())


@dataclass
class CrossingConfig:
    """Crossing deployment configuration."""

    # =========================
    # Controller parameters (fixed at deployment)
    # =========================
    FREE_TO_CROSS_DURATION: int = field(default_factory=lambda: int(os.getenv("CROSSING_FREE_TO_CROSS_DURATION", "600")))
    MAX_CARS: int = field(default_factory=lambda: int(os.getenv("CROSSING_MAX_CARS", "3")))
    PRE_LOCKED_DURATION: int = field(default_factory=lambda: int(os.getenv("CROSSING_PRE_LOCKED_DURATION", "60")))
    INFRASTRUCTURE: str = field(default_factory=lambda: os.getenv("CROSSING_INFRASTRUCTURE", "infrastructure"))

    # =========================
    # Simulation
    # =========================
    CLOCK_SPEED: float = field(default_factory=lambda: float(os.getenv("CROSSING_CLOCK_SPEED", "1.0")))
    LOG_LEVEL: str = field(default_factory=lambda: os.getenv("CROSSING_LOG_LEVEL", "INFO").upper())

    def validate(self) -> None:
        """Reject settings the controller cannot be deployed with."""
        for name in ("FREE_TO_CROSS_DURATION", "MAX_CARS", "PRE_LOCKED_DURATION"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive, got {getattr(self, name)}")
        if not self.INFRASTRUCTURE:
            raise ValueError("INFRASTRUCTURE must not be empty")
        if self.CLOCK_SPEED < 0:
            raise ValueError(f"CLOCK_SPEED must not be negative, got {self.CLOCK_SPEED}")
        if not isinstance(logging.getLevelName(self.LOG_LEVEL), int):
            raise ValueError(f"Unknown LOG_LEVEL {self.LOG_LEVEL!r}")


def build_backend(
    config: Optional[CrossingConfig] = None,
    clock: Optional[GlobalClock] = None,
) -> CrossingControllerBackend:
    """Deploy a crossing controller from configuration."""
    config = config or CrossingConfig()
    config.validate()
    logger.info("Deploying crossing with the account: %s", config.INFRASTRUCTURE)
    return CrossingControllerBackend(
        config.FREE_TO_CROSS_DURATION,
        config.MAX_CARS,
        config.PRE_LOCKED_DURATION,
        infrastructure=config.INFRASTRUCTURE,
        clock=clock,
    )
