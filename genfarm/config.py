"""Runtime settings, read from the environment once at startup."""

from __future__ import annotations

import os
from typing import Mapping, Optional

from pydantic import BaseModel, Field


class Settings(BaseModel):
    queue_capacity: int = Field(default=100, ge=1)
    task_timeout_seconds: Optional[float] = Field(default=None, gt=0)
    status_ttl_seconds: Optional[float] = Field(default=None, gt=0)

    anthropic_api_key: Optional[str] = None
    claude_model: str = "claude-sonnet-4-20250514"
    anthropic_max_retries: int = Field(default=3, ge=0)

    wordpress_url: str = "https://blog.zentrix.ai"
    wordpress_username: str = ""
    wordpress_app_password: str = ""

    brand_name: str = "Zentrix"
    brand_url: str = "https://zentrix.ai"
    community_url: str = "https://discord.gg/zentrix"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """Build settings from upper-cased env vars; blank values fall back to defaults."""
        env = os.environ if environ is None else environ
        values = {}
        for name in cls.model_fields:
            raw = env.get(name.upper())
            if raw is not None and raw.strip():
                values[name] = raw.strip()
        return cls(**values)
