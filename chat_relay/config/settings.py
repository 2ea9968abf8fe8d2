"""
Process settings loaded from environment variables.

Credentials and deployment knobs live here; the level table and prompts
live in the relay config file (see loader.py).
"""

import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import List, Optional

from dotenv import load_dotenv


def _split_origins(raw: str) -> List[str]:
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


@dataclass(frozen=True)
class Settings:
    """Application settings.

    Keep all credentials and deployment config centralized here.
    """
    openai_api_key: Optional[str] = None
    openai_base_url: Optional[str] = None
    admin_key: Optional[str] = None
    db_path: str = "chat_relay.db"
    config_path: Optional[str] = None
    upstream_timeout: float = 120.0
    cors_origins: List[str] = field(default_factory=lambda: ["*"])
    host: str = "0.0.0.0"
    port: int = 3000
    log_level: str = "INFO"
    log_format: str = "console"

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from the process environment."""
        return cls(
            openai_api_key=os.getenv("OPENAI_API_KEY") or None,
            openai_base_url=os.getenv("OPENAI_BASE_URL") or None,
            admin_key=os.getenv("ADMIN_KEY") or None,
            db_path=os.getenv("CHAT_RELAY_DB", "chat_relay.db"),
            config_path=os.getenv("CHAT_RELAY_CONFIG") or None,
            upstream_timeout=float(os.getenv("CHAT_RELAY_UPSTREAM_TIMEOUT", "120")),
            cors_origins=_split_origins(os.getenv("CHAT_RELAY_CORS_ORIGINS", "*")),
            host=os.getenv("HOST", "0.0.0.0"),
            port=int(os.getenv("PORT", "3000")),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "console").lower(),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    load_dotenv()
    return Settings.from_env()
