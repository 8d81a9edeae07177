"""
Settings loaded from the environment (and a local .env file).
"""

import logging
import os
from dataclasses import dataclass, field
from typing import List, Optional

from dotenv import load_dotenv

from .errors import ConfigurationError


DEFAULT_MODEL = "claude-sonnet-4-20250514"
DEFAULT_LIVE_MODEL = "gemini-2.5-flash-native-audio-preview-12-2025"
MAX_PROMPT_LENGTH = 2000

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def _split(value: str) -> List[str]:
    return [part.strip() for part in value.split(",") if part.strip()]


@dataclass
class Settings:
    anthropic_api_key: Optional[str] = None
    model: str = DEFAULT_MODEL
    gemini_api_key: Optional[str] = None
    live_model: str = DEFAULT_LIVE_MODEL
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None
    environment: str = "production"
    log_level: str = "INFO"
    public_url: str = "http://localhost:3000"
    webhook_secret: Optional[str] = None
    max_prompt_length: int = MAX_PROMPT_LENGTH
    cors_origins: List[str] = field(default_factory=lambda: ["http://localhost:3000"])

    @property
    def dev_mode(self) -> bool:
        return self.environment == "development"

    @classmethod
    def from_env(cls) -> "Settings":
        load_dotenv()
        env = os.environ
        return cls(
            anthropic_api_key=(env.get("ANTHROPIC_API_KEY") or "").strip() or None,
            model=env.get("PEPAI_MODEL", DEFAULT_MODEL),
            gemini_api_key=(env.get("GEMINI_API_KEY") or "").strip() or None,
            live_model=env.get("PEPAI_LIVE_MODEL", DEFAULT_LIVE_MODEL),
            supabase_url=env.get("SUPABASE_URL") or None,
            supabase_key=env.get("SUPABASE_KEY") or None,
            environment=env.get("PEPAI_ENV", "production"),
            log_level=env.get("PEPAI_LOG_LEVEL", "INFO"),
            public_url=env.get("PEPAI_PUBLIC_URL", "http://localhost:3000").rstrip("/"),
            webhook_secret=env.get("PEPAI_WEBHOOK_SECRET") or None,
            max_prompt_length=int(env.get("PEPAI_MAX_PROMPT_LENGTH", MAX_PROMPT_LENGTH)),
            cors_origins=_split(env.get("PEPAI_CORS_ORIGINS", "http://localhost:3000")),
        )

    def require(self, name: str) -> str:
        """Return a setting or raise ConfigurationError naming the env var"""
        value = getattr(self, name)
        if not value:
            raise ConfigurationError(f"{name.upper()} is not configured")
        return value


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)
