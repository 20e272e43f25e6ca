"""
Process settings read from the environment.

Only the outer shell (scripts, application wiring) calls ``from_env``;
engines and services receive everything through their constructors.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping

DEFAULT_DATABASE_URL = "sqlite:///governance.db"
DEFAULT_LOG_LEVEL = "INFO"


@dataclass(frozen=True)
class GovernanceSettings:
    database_url: str = DEFAULT_DATABASE_URL
    catalogue_dir: Path | None = None
    log_level: str = DEFAULT_LOG_LEVEL

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "GovernanceSettings":
        env = os.environ if environ is None else environ
        catalogue_dir = env.get("GOVERNANCE_CATALOGUE_DIR")
        return cls(
            database_url=env.get("GOVERNANCE_DATABASE_URL", DEFAULT_DATABASE_URL),
            catalogue_dir=Path(catalogue_dir) if catalogue_dir else None,
            log_level=env.get("GOVERNANCE_LOG_LEVEL", DEFAULT_LOG_LEVEL).upper(),
        )
