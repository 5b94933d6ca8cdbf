"""Runtime settings read from the environment."""

from __future__ import annotations

import os

from pydantic import BaseModel


class Settings(BaseModel):
    log_level: str = "INFO"
    openai_api_key: str | None = None
    openai_model: str = "gpt-4o-mini"

    @classmethod
    def from_env(cls) -> Settings:
        return cls(
            log_level=os.environ.get("TRIPPLANNER_LOG_LEVEL", "INFO").upper(),
            openai_api_key=os.environ.get("OPENAI_API_KEY") or None,
            openai_model=os.environ.get("TRIPPLANNER_OPENAI_MODEL", "gpt-4o-mini"),
        )
