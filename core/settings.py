"""
Core Module - Settings.

============================================================
RESPONSIBILITY
============================================================
Loads process-level configuration from the environment.

- Connection strings for the relational store and Redis
- Provider keys/URLs for probed dependencies
- SMTP and messaging-gateway credentials for alert channels
- HTTP bind address and logging options

Values are read once at startup (after `.env` is loaded) and
passed to components explicitly.

============================================================
"""

import os
from dataclasses import dataclass, field
from typing import List, Optional
import logging

from dotenv import load_dotenv


logger = logging.getLogger(__name__)


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"Invalid integer for {name}: {raw!r}, using {default}")
        return default


def _env_list(name: str, default: List[str]) -> List[str]:
    raw = os.getenv(name)
    if not raw:
        return list(default)
    return [item.strip() for item in raw.split(",") if item.strip()]


@dataclass
class Settings:
    """Environment-provided settings."""

    # Application
    app_name: str = "Pulse"
    app_version: str = "1.0.0"
    environment: str = "development"

    # Stores
    database_url: Optional[str] = None
    redis_url: Optional[str] = None

    # OpenRouter
    openrouter_api_key: Optional[str] = None
    openrouter_base_url: str = "https://openrouter.ai/api/v1"
    openrouter_default_model: str = "google/gemini-2.0-flash-001"

    # Ollama
    ollama_available: bool = False
    ollama_url: Optional[str] = None
    ollama_max_params: str = "13B"
    ollama_allowed_quants: List[str] = field(default_factory=lambda: ["Q4_K_M", "Q5_K_M", "Q8_0"])

    # Evolution API (WhatsApp gateway)
    evolution_api_url: Optional[str] = None
    evolution_api_key: Optional[str] = None
    evolution_instance: str = "pulse-alerts"

    # Knowledge base (document table in the relational store)
    knowledge_table: Optional[str] = None
    knowledge_search_column: str = "search_vector"

    # SMTP
    smtp_host: Optional[str] = None
    smtp_port: int = 587
    smtp_secure: bool = False
    smtp_user: Optional[str] = None
    smtp_pass: Optional[str] = None
    smtp_from: Optional[str] = None

    # HTTP / logging
    host: str = "0.0.0.0"
    port: int = 8080
    log_level: str = "INFO"
    log_format: str = "text"

    @property
    def smtp_configured(self) -> bool:
        return bool(self.smtp_host and self.smtp_user and self.smtp_pass)

    @property
    def evolution_configured(self) -> bool:
        return bool(self.evolution_api_url and self.evolution_api_key)

    @classmethod
    def from_env(cls, dotenv: bool = True) -> "Settings":
        """
        Build settings from environment variables.

        Args:
            dotenv: Load a `.env` file first (existing variables win)
        """
        if dotenv:
            load_dotenv()

        defaults = cls()
        return cls(
            app_name=os.getenv("APP_NAME", defaults.app_name),
            app_version=os.getenv("APP_VERSION", defaults.app_version),
            environment=os.getenv("ENVIRONMENT", defaults.environment),
            database_url=os.getenv("DATABASE_URL") or None,
            redis_url=os.getenv("REDIS_URL") or None,
            openrouter_api_key=os.getenv("OPENROUTER_API_KEY") or None,
            openrouter_base_url=os.getenv("OPENROUTER_BASE_URL", defaults.openrouter_base_url),
            openrouter_default_model=os.getenv(
                "OPENROUTER_DEFAULT_MODEL", defaults.openrouter_default_model
            ),
            ollama_available=_env_bool("OLLAMA_AVAILABLE", defaults.ollama_available),
            ollama_url=os.getenv("OLLAMA_URL") or None,
            ollama_max_params=os.getenv("OLLAMA_MAX_PARAMS", defaults.ollama_max_params),
            ollama_allowed_quants=_env_list(
                "OLLAMA_ALLOWED_QUANTS", defaults.ollama_allowed_quants
            ),
            evolution_api_url=os.getenv("EVOLUTION_API_URL") or None,
            evolution_api_key=os.getenv("EVOLUTION_API_KEY") or None,
            evolution_instance=os.getenv("EVOLUTION_INSTANCE", defaults.evolution_instance),
            knowledge_table=os.getenv("KNOWLEDGE_TABLE") or None,
            knowledge_search_column=os.getenv(
                "KNOWLEDGE_SEARCH_COLUMN", defaults.knowledge_search_column
            ),
            smtp_host=os.getenv("SMTP_HOST") or None,
            smtp_port=_env_int("SMTP_PORT", defaults.smtp_port),
            smtp_secure=_env_bool("SMTP_SECURE", defaults.smtp_secure),
            smtp_user=os.getenv("SMTP_USER") or None,
            smtp_pass=os.getenv("SMTP_PASS") or None,
            smtp_from=os.getenv("SMTP_FROM") or None,
            host=os.getenv("PULSE_HOST", defaults.host),
            port=_env_int("PULSE_PORT", defaults.port),
            log_level=os.getenv("LOG_LEVEL", defaults.log_level),
            log_format=os.getenv("LOG_FORMAT", defaults.log_format),
        )
