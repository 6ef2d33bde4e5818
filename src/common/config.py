"""
Configuration module for the tab categorizer.

This module centralizes the loading and validation of all configuration
parameters from environment variables. It provides a single `Settings`
class that acts as a container for all configurable values, ensuring
that they are defined in one place and can be easily imported and used
throughout the application.
"""

from __future__ import annotations

import json
import os
from typing import Literal

DEFAULT_MODELS = {
    "openai": ["gpt-5-mini", "gpt-4o-mini"],
    "groq": ["llama-3.1-8b-instant"],
    "ollama": ["gemma3:12b"],
}

GROQ_BASE_URL = "https://api.groq.com/openai/v1"


class Settings:
    """
    A container for all configuration settings, loaded from environment variables.

    This class centralizes configuration, providing default values for optional
    settings and raising errors for missing required settings.
    """

    # --- LLM Provider Configuration ---
    LLM_PROVIDER: Literal["openai", "groq", "ollama"]
    LLM_API_KEY: str
    LLM_BASE_URL: str | None

    # --- Model Selection ---
    AI_MODELS: list[str]

    # --- Remote call behaviour ---
    REQUEST_TIMEOUT: int
    MAX_RETRIES: int
    MAX_RETRY_BACKOFF_SECONDS: int
    CLASSIFY_MAX_TOKENS: int

    # --- Pipeline ---
    CLASSIFY_BATCH_SIZE: int
    CLASSIFY_DOMAIN_PREFILTER: bool
    LOW_CONFIDENCE_QUEUE_LIMIT: int
    CUSTOM_CATEGORIES: list[tuple[str, str]]

    # --- Storage ---
    STORE_PATH: str

    # --- Logging ---
    LOG_LEVEL: str
    LOG_FORMAT: Literal["console", "json"]

    def __init__(self):
        """
        Loads settings from environment variables and performs validation.
        """
        # --- LLM Provider Configuration ---
        self.LLM_PROVIDER = os.getenv("LLM_PROVIDER", "openai").strip().lower()
        if self.LLM_PROVIDER not in ("openai", "groq", "ollama"):
            raise ValueError("LLM_PROVIDER must be 'openai', 'groq' or 'ollama'")

        if self.LLM_PROVIDER == "ollama":
            self.LLM_BASE_URL = os.getenv(
                "OLLAMA_BASE_URL", "http://localhost:11434/v1/"
            )
            self.LLM_API_KEY = "dummy"  # Not used for Ollama
        elif self.LLM_PROVIDER == "groq":
            self.LLM_BASE_URL = GROQ_BASE_URL
            self.LLM_API_KEY = self._get_required_env("GROQ_API_KEY")
        else:  # openai
            self.LLM_BASE_URL = None
            self.LLM_API_KEY = self._get_required_env("OPENAI_API_KEY")

        # --- Model Selection ---
        self.AI_MODELS = _parse_models(
            os.getenv("AI_MODELS"), DEFAULT_MODELS[self.LLM_PROVIDER]
        )

        # --- Remote call behaviour ---
        self.REQUEST_TIMEOUT = int(os.getenv("REQUEST_TIMEOUT", 30))
        self.MAX_RETRIES = int(os.getenv("MAX_RETRIES", 2))
        self.MAX_RETRY_BACKOFF_SECONDS = int(
            os.getenv("MAX_RETRY_BACKOFF_SECONDS", 10)
        )
        self.CLASSIFY_MAX_TOKENS = max(0, int(os.getenv("CLASSIFY_MAX_TOKENS", 1024)))

        # --- Pipeline ---
        self.CLASSIFY_BATCH_SIZE = max(0, int(os.getenv("CLASSIFY_BATCH_SIZE", 0)))
        self.CLASSIFY_DOMAIN_PREFILTER = _parse_bool(
            os.getenv("CLASSIFY_DOMAIN_PREFILTER"), default=True
        )
        self.LOW_CONFIDENCE_QUEUE_LIMIT = max(
            1, int(os.getenv("LOW_CONFIDENCE_QUEUE_LIMIT", 500))
        )
        self.CUSTOM_CATEGORIES = _parse_custom_categories(
            os.getenv("CUSTOM_CATEGORIES", "")
        )

        # --- Storage ---
        self.STORE_PATH = os.path.expanduser(
            os.getenv("STORE_PATH", "~/.tab_categorizer/store.json")
        )

        # --- Logging ---
        self.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
        self.LOG_FORMAT = os.getenv("LOG_FORMAT", "console").lower()
        if self.LOG_FORMAT not in ("console", "json"):
            raise ValueError("LOG_FORMAT must be 'console' or 'json'")

    @property
    def is_constrained_provider(self) -> bool:
        """True for the rate-limited free-tier provider."""
        return self.LLM_PROVIDER == "groq"

    def _get_required_env(self, var_name: str) -> str:
        """
        Gets a required environment variable, raising an error if it's not set.
        """
        value = os.getenv(var_name)
        if value is None:
            raise ValueError(f"Required environment variable '{var_name}' is not set.")
        return value


def _parse_models(raw: str | None, default: list[str]) -> list[str]:
    """Split a comma separated model list, dropping blanks and duplicates."""
    if raw is None or not raw.strip():
        return list(default)
    seen = set()
    models = []
    for token in raw.split(","):
        model = token.strip()
        if not model or model in seen:
            continue
        seen.add(model)
        models.append(model)
    return models or list(default)


def _parse_bool(raw: str | None, default: bool) -> bool:
    if raw is None or not raw.strip():
        return default
    value = raw.strip().lower()
    if value in ("1", "true", "yes", "on"):
        return True
    if value in ("0", "false", "no", "off"):
        return False
    raise ValueError(f"Invalid boolean value: {raw!r}")


def _parse_custom_categories(raw: str) -> list[tuple[str, str]]:
    """
    Parse custom categories from either a JSON array or a comma separated list.

    JSON items may be plain names or objects with ``name`` and an optional
    ``description``. Returns ``(name, description)`` pairs.
    """
    raw = raw.strip()
    if not raw:
        return []

    if raw.startswith("["):
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ValueError(f"CUSTOM_CATEGORIES is not valid JSON: {e}") from e
        categories = []
        for item in data:
            if isinstance(item, str):
                name, description = item, ""
            elif isinstance(item, dict):
                name = str(item.get("name", ""))
                description = str(item.get("description") or "")
            else:
                continue
            if name.strip():
                categories.append((name.strip(), description.strip()))
        return categories

    return [(name.strip(), "") for name in raw.split(",") if name.strip()]
