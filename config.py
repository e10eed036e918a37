"""Process configuration read from environment variables (and a local ``.env``)."""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import List, Mapping, Optional

from dotenv import load_dotenv

from utils import ConfigError

DEFAULT_GENAI_API_URL = (
    "https://api.generativeai.googleapis.com/v1beta/models/gemini-2.5-flash:generate"
)


@dataclass
class Settings:
    api_key: str
    api_url: str = DEFAULT_GENAI_API_URL
    model: str = "gemini-2.5-flash"
    timeout: float = 30.0
    host: str = "0.0.0.0"
    port: int = 3000
    session_max_turns: int = 50
    session_ttl_seconds: float = 3600.0
    cors_allow_origins: List[str] = field(default_factory=lambda: ["*"])
    log_level: Optional[str] = None
    log_dir: Optional[str] = None

    def __repr__(self) -> str:
        return f"Settings(api_url={self.api_url!r}, model={self.model!r}, port={self.port})"


def _number(env: Mapping[str, str], name: str, default, cast):
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return cast(raw.strip())
    except ValueError as exc:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from exc


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    """Build :class:`Settings`; raises :class:`ConfigError` when ``GENAI_API_KEY`` is unset."""

    if env is None:
        load_dotenv()
        env = os.environ

    api_key = (env.get("GENAI_API_KEY") or "").strip()
    if not api_key:
        raise ConfigError("Set GENAI_API_KEY env var!")

    origins = [o.strip() for o in env.get("CORS_ALLOW_ORIGINS", "*").split(",") if o.strip()]

    return Settings(
        api_key=api_key,
        api_url=env.get("GENAI_API_URL") or DEFAULT_GENAI_API_URL,
        model=env.get("GENAI_MODEL") or "gemini-2.5-flash",
        timeout=_number(env, "GENAI_TIMEOUT", 30.0, float),
        host=env.get("HOST") or "0.0.0.0",
        port=_number(env, "PORT", 3000, int),
        session_max_turns=_number(env, "SESSION_MAX_TURNS", 50, int),
        session_ttl_seconds=_number(env, "SESSION_TTL_SECONDS", 3600.0, float),
        cors_allow_origins=origins or ["*"],
        log_level=env.get("RELAY_LOGLEVEL"),
        log_dir=env.get("RELAY_LOGDIR"),
    )


__all__ = ["Settings", "load_settings", "DEFAULT_GENAI_API_URL"]
