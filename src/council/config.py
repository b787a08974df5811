"""Application settings via pydantic-settings. Loads from environment and .env file."""

from __future__ import annotations

import pathlib

from pydantic import model_validator
from pydantic_settings import BaseSettings


def _find_project_root() -> pathlib.Path:
    """Find the project root (src/council/config.py → up 3 levels)."""
    return pathlib.Path(__file__).resolve().parent.parent.parent


PROJECT_ROOT = _find_project_root()


class Settings(BaseSettings):
    """Council application configuration.

    All values can be overridden via environment variables or .env file.
    """

    # Database
    database_url: str = "sqlite+aiosqlite:///council.db"

    # Environment
    council_env: str = "development"

    # Logging
    council_log_level: str = "INFO"

    # Server bind (uvicorn)
    council_host: str = "127.0.0.1"
    council_port: int = 8000

    # Voting windows
    proposal_voting_hours: int = 48
    amendment_voting_days: int = 3
    urgent_window_hours: int = 24

    # Voting rules
    early_close_threshold: float = 0.6  # Fraction of total electorate weight
    max_amendment_depth: int = 2  # original → amendment → amendment of amendment

    # Council roles (province names)
    king_province: str = "Capital"
    scribe_province: str = "Kobat"
    admin_province: str = "Administrator"

    # Scribe / dashboard
    scribe_review_days: int = 2
    older_closed_days: int = 5

    # Proposals
    legislation_number_width: int = 3
    store_write_retries: int = 3

    # Seeding
    council_provinces_file: str = ""  # Optional YAML override of the default council

    # Expiry sweep (APScheduler). 0 disables the job.
    council_expiry_sweep_seconds: int = 60

    model_config = {"env_prefix": "", "env_file": ".env", "extra": "ignore"}

    @model_validator(mode="after")
    def _check_voting_rules(self) -> Settings:
        """Reject thresholds and depths that would make voting impossible."""
        if not 0.0 < self.early_close_threshold <= 1.0:
            msg = "EARLY_CLOSE_THRESHOLD must be in (0, 1]"
            raise ValueError(msg)
        if self.max_amendment_depth < 1:
            msg = "MAX_AMENDMENT_DEPTH must be at least 1"
            raise ValueError(msg)
        if self.store_write_retries < 1:
            msg = "STORE_WRITE_RETRIES must be at least 1"
            raise ValueError(msg)
        return self
