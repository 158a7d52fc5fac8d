"""
Engine configuration parameters for OCP.

Defines auction policy constants and operational limits. Values can be
overridden from OCP_* environment variables or a .env file.
"""

import logging
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator

from ocp.core.errors import InvalidAuctionParametersError


ENV_PREFIX = "OCP_"


class EngineConfig(BaseModel):
    """Engine-wide configuration parameters"""

    # Auction policy
    min_fraction_percent: int = Field(default=1, ge=0, le=100)  # minimumUnits = totalUnits * pct // 100
    max_bids_per_auction: int = Field(default=256, ge=1)  # Bounds the O(n^2) oblivious sort
    enforce_schedule: bool = False  # Check start/end timestamps on engine calls

    # Logging
    log_level: str = "INFO"
    log_dir: Path = Path("logs")
    log_to_file: bool = False

    @field_validator("log_level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        value = value.upper()
        if value not in logging.getLevelNamesMapping():
            raise ValueError(f"Unknown log level {value}")
        return value

    @property
    def log_level_value(self) -> int:
        return logging.getLevelNamesMapping()[self.log_level]


def load_config(env_file: Optional[str] = None) -> EngineConfig:
    """
    Load configuration from environment (and optionally a .env file).

    Args:
        env_file: Optional path to a dotenv file

    Returns:
        EngineConfig instance
    """
    if env_file:
        load_dotenv(env_file, override=False)

    overrides = {
        name: os.environ[f"{ENV_PREFIX}{name.upper()}"]
        for name in EngineConfig.model_fields
        if f"{ENV_PREFIX}{name.upper()}" in os.environ
    }

    try:
        return EngineConfig(**overrides)
    except ValidationError as e:
        raise InvalidAuctionParametersError(f"Invalid engine configuration: {e}") from e
