from __future__ import annotations

import os
from typing import List, Literal, Optional

import yaml
from pydantic import BaseModel, Field


class ScoringConfig(BaseModel):
    """Weights for the default transition recommendation scorer."""

    base_score: float = 50.0
    common_transition_bonus: float = 20.0
    priority_weight: float = 0.0
    common_transitions: List[str] = Field(
        default_factory=lambda: [
            "boomerang_to_architect",
            "architect_to_senior_developer",
            "senior_developer_to_code_review",
            "code_review_to_boomerang",
        ]
    )


class TransitionConfig(BaseModel):
    """Role transition settings."""

    recommendation_limit: int = 3
    default_conditions: List[str] = Field(
        default_factory=lambda: ["required_steps_completed"]
    )
    scoring: ScoringConfig = ScoringConfig()


class LoggingConfig(BaseModel):
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"


class GuidanceConfig(BaseModel):
    """Top-level configuration model."""

    database_url: Optional[str] = None
    database_echo: bool = False
    execution_mode: str = "GUIDED"
    transitions: TransitionConfig = TransitionConfig()
    logging: LoggingConfig = LoggingConfig()


def load_config(path: Optional[str] = None) -> GuidanceConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to GUIDANCE_CONFIG env
            variable or 'guidance.yaml' in the current directory.
    """

    config_path = path or os.getenv("GUIDANCE_CONFIG", "guidance.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = GuidanceConfig(**data)
    else:
        config = GuidanceConfig()

    env_db_url = os.getenv("GUIDANCE_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url
    return config
