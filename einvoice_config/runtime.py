"""Process-level runtime settings read from the environment."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from einvoice_kernel.services.token_store import DEFAULT_TOKEN_FILE

DEFAULT_DATABASE_URL = "sqlite:///einvoice.db"


@dataclass(frozen=True)
class RuntimeSettings:
    """Where the database and token file live, and how loud to log."""

    database_url: str = DEFAULT_DATABASE_URL
    token_file: Path = DEFAULT_TOKEN_FILE
    log_level: int = logging.INFO

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> RuntimeSettings:
        env = os.environ if environ is None else environ
        level_name = env.get("EINVOICE_LOG_LEVEL", "INFO").upper()
        level = logging.getLevelName(level_name)
        if not isinstance(level, int):
            raise ValueError(f"Unknown log level: {level_name}")
        return cls(
            database_url=env.get("EINVOICE_DATABASE_URL") or DEFAULT_DATABASE_URL,
            token_file=Path(env.get("EINVOICE_TOKEN_FILE") or DEFAULT_TOKEN_FILE),
            log_level=level,
        )
