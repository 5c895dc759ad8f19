"""
Engine configuration management.

This module loads engine settings from multiple sources with a clear
priority order:

    1. Environment variables (highest priority) - for containerised runs
    2. Config file (config/engine.ini) - for static installs
       (config/engine.example.ini documents every key)
    3. Built-in defaults (lowest priority)

Unlike a module-level singleton, :func:`load_config` returns a fresh
:class:`EngineConfig` value every time.  Callers construct their
:class:`~nobody_engine.llm.client.LLMClient` from that value once and pass
it around explicitly; nothing reads "the current config" implicitly.

Usage:
    from nobody_engine.config import configure_logging, load_config

    cfg = load_config()
    configure_logging(cfg.logging)
    llm_config = cfg.llm_config()   # None if endpoint/api_key are unset

Environment Variable Mapping:
    NOBODY_LLM_ENDPOINT          -> llm.endpoint
    NOBODY_LLM_API_KEY           -> llm.api_key
    NOBODY_LLM_MODEL             -> llm.model
    NOBODY_LLM_MAX_TOKENS        -> llm.max_tokens
    NOBODY_LLM_TEMPERATURE       -> llm.temperature
    NOBODY_LLM_TIMEOUT_SECONDS   -> llm.timeout_seconds
    NOBODY_CACHE_MAX_ENTRIES     -> cache.max_entries
    NOBODY_CACHE_TTL_SECONDS     -> cache.ttl_seconds
    NOBODY_LOG_LEVEL             -> logging.level
"""

from __future__ import annotations

import configparser
import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

from nobody_engine.llm.config import LLMConfig

logger = logging.getLogger(__name__)

# =============================================================================
# PATH CONFIGURATION
# =============================================================================

# Project root directory (contains src/, config/)
PROJECT_ROOT = Path(__file__).parent.parent.parent

CONFIG_DIR = PROJECT_ROOT / "config"
CONFIG_FILE = CONFIG_DIR / "engine.ini"

LLM_SECTION = "llm"


# =============================================================================
# CONFIGURATION DATACLASSES
# =============================================================================


@dataclass
class LLMSettings:
    """Backend connection settings.  ``endpoint``/``api_key`` have no default."""

    endpoint: str = ""
    api_key: str = field(default="", repr=False)
    model: str = "gpt-4o-mini"
    max_tokens: int = 1024
    temperature: float = 0.7
    timeout_seconds: float = 30.0


@dataclass
class CacheSettings:
    """Response cache bounds."""

    max_entries: int = 512
    ttl_seconds: float = 600.0


@dataclass
class RetrySettings:
    """Network retry policy."""

    max_retries: int = 2
    backoff_ms: int = 200


@dataclass
class PromptSettings:
    """Prompt builder settings."""

    max_history_items: int = 12


@dataclass
class ValidationSettings:
    """Response validator settings."""

    max_attempts: int = 3


@dataclass
class LoggingSettings:
    """Logging configuration."""

    level: str = "INFO"
    format: Literal["simple", "detailed"] = "detailed"


@dataclass
class EngineConfig:
    """
    Complete engine configuration.

    ``llm_source`` records where the LLM endpoint/key came from:
    ``"env"``, ``"file"`` or ``"none"``.
    """

    llm: LLMSettings = field(default_factory=LLMSettings)
    cache: CacheSettings = field(default_factory=CacheSettings)
    retry: RetrySettings = field(default_factory=RetrySettings)
    prompt: PromptSettings = field(default_factory=PromptSettings)
    validation: ValidationSettings = field(default_factory=ValidationSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)
    llm_source: str = "none"

    @property
    def llm_configured(self) -> bool:
        """True when both endpoint and api_key are present."""
        return bool(self.llm.endpoint.strip() and self.llm.api_key.strip())

    def llm_config(self) -> LLMConfig | None:
        """
        Build the client-facing :class:`LLMConfig`.

        Returns ``None`` when the endpoint or api key is missing.  The result
        is not validated here; :class:`LLMClient` validates on construction.
        """
        if not self.llm_configured:
            return None
        return LLMConfig(
            endpoint=self.llm.endpoint,
            api_key=self.llm.api_key,
            model=self.llm.model,
            max_tokens=self.llm.max_tokens,
            temperature=self.llm.temperature,
        )


# =============================================================================
# CONFIGURATION LOADING
# =============================================================================


def _load_from_ini(parser: configparser.ConfigParser, cfg: EngineConfig) -> None:
    """Load configuration from a parsed INI file into EngineConfig."""
    # LLM section
    if parser.has_section(LLM_SECTION):
        if parser.has_option(LLM_SECTION, "endpoint"):
            cfg.llm.endpoint = parser.get(LLM_SECTION, "endpoint")
        if parser.has_option(LLM_SECTION, "api_key"):
            cfg.llm.api_key = parser.get(LLM_SECTION, "api_key")
        if parser.has_option(LLM_SECTION, "model"):
            cfg.llm.model = parser.get(LLM_SECTION, "model")
        if parser.has_option(LLM_SECTION, "max_tokens"):
            cfg.llm.max_tokens = parser.getint(LLM_SECTION, "max_tokens")
        if parser.has_option(LLM_SECTION, "temperature"):
            cfg.llm.temperature = parser.getfloat(LLM_SECTION, "temperature")
        if parser.has_option(LLM_SECTION, "timeout_seconds"):
            cfg.llm.timeout_seconds = parser.getfloat(LLM_SECTION, "timeout_seconds")
        if cfg.llm_configured:
            cfg.llm_source = "file"

    # Cache section
    if parser.has_section("cache"):
        if parser.has_option("cache", "max_entries"):
            cfg.cache.max_entries = parser.getint("cache", "max_entries")
        if parser.has_option("cache", "ttl_seconds"):
            cfg.cache.ttl_seconds = parser.getfloat("cache", "ttl_seconds")

    # Retry section
    if parser.has_section("retry"):
        if parser.has_option("retry", "max_retries"):
            cfg.retry.max_retries = parser.getint("retry", "max_retries")
        if parser.has_option("retry", "backoff_ms"):
            cfg.retry.backoff_ms = parser.getint("retry", "backoff_ms")

    # Prompt section
    if parser.has_section("prompt"):
        if parser.has_option("prompt", "max_history_items"):
            cfg.prompt.max_history_items = parser.getint("prompt", "max_history_items")

    # Validation section
    if parser.has_section("validation"):
        if parser.has_option("validation", "max_attempts"):
            cfg.validation.max_attempts = parser.getint("validation", "max_attempts")

    # Logging section
    if parser.has_section("logging"):
        if parser.has_option("logging", "level"):
            cfg.logging.level = parser.get("logging", "level").upper()
        if parser.has_option("logging", "format"):
            val = parser.get("logging", "format").lower()
            if val in ("simple", "detailed"):
                cfg.logging.format = val  # type: ignore[assignment]


def _apply_env_overrides(cfg: EngineConfig, environ: Mapping[str, str]) -> None:
    """Apply environment variable overrides to configuration."""
    # LLM settings.  Endpoint and key only count as an "env" source together.
    env_endpoint = environ.get("NOBODY_LLM_ENDPOINT")
    env_api_key = environ.get("NOBODY_LLM_API_KEY")
    if env_endpoint and env_api_key:
        cfg.llm.endpoint = env_endpoint
        cfg.llm.api_key = env_api_key
        cfg.llm_source = "env"
    elif env_endpoint or env_api_key:
        missing = "NOBODY_LLM_API_KEY" if env_endpoint else "NOBODY_LLM_ENDPOINT"
        logger.warning("Ignoring partial LLM env config: %s is not set", missing)
    if env_model := environ.get("NOBODY_LLM_MODEL"):
        cfg.llm.model = env_model
    if env_max_tokens := environ.get("NOBODY_LLM_MAX_TOKENS"):
        cfg.llm.max_tokens = int(env_max_tokens)
    if env_temperature := environ.get("NOBODY_LLM_TEMPERATURE"):
        cfg.llm.temperature = float(env_temperature)
    if env_timeout := environ.get("NOBODY_LLM_TIMEOUT_SECONDS"):
        cfg.llm.timeout_seconds = float(env_timeout)

    # Cache settings
    if env_max_entries := environ.get("NOBODY_CACHE_MAX_ENTRIES"):
        cfg.cache.max_entries = int(env_max_entries)
    if env_ttl := environ.get("NOBODY_CACHE_TTL_SECONDS"):
        cfg.cache.ttl_seconds = float(env_ttl)

    # Logging settings
    if env_log := environ.get("NOBODY_LOG_LEVEL"):
        cfg.logging.level = env_log.upper()


def load_config(
    config_file: Path | str | None = None,
    environ: Mapping[str, str] | None = None,
) -> EngineConfig:
    """
    Load configuration from all sources with proper priority.

    Priority (highest wins):
        1. Environment variables
        2. ``config_file`` (default: config/engine.ini, if it exists)
        3. Built-in defaults

    Args:
        config_file: INI file to read.  A missing file is skipped.
        environ:     Environment mapping; defaults to ``os.environ``.

    Returns:
        EngineConfig: Fully populated configuration object.
    """
    cfg = EngineConfig()

    path = Path(config_file) if config_file is not None else CONFIG_FILE
    if path.exists():
        parser = configparser.ConfigParser(interpolation=None)
        parser.read(path, encoding="utf-8")
        _load_from_ini(parser, cfg)

    _apply_env_overrides(cfg, os.environ if environ is None else environ)

    return cfg


# =============================================================================
# PERSISTENCE
# =============================================================================


def save_llm_config(path: Path | str, llm_config: LLMConfig) -> None:
    """
    Write ``llm_config`` into the ``[llm]`` section of an INI file.

    Other sections already in the file are preserved.  The parent directory
    is created if needed.
    """
    path = Path(path)
    parser = configparser.ConfigParser(interpolation=None)
    if path.exists():
        parser.read(path, encoding="utf-8")

    parser[LLM_SECTION] = {
        "endpoint": llm_config.endpoint,
        "api_key": llm_config.api_key,
        "model": llm_config.model,
        "max_tokens": str(llm_config.max_tokens),
        "temperature": repr(llm_config.temperature),
    }

    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as fh:
        parser.write(fh)


def clear_llm_config(path: Path | str) -> None:
    """Remove the ``[llm]`` section from an INI file, if present."""
    path = Path(path)
    if not path.exists():
        return

    parser = configparser.ConfigParser(interpolation=None)
    parser.read(path, encoding="utf-8")
    if not parser.remove_section(LLM_SECTION):
        return
    with path.open("w", encoding="utf-8") as fh:
        parser.write(fh)


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


def get_config_status(cfg: EngineConfig) -> dict:
    """
    Get LLM configuration status for diagnostics.

    The api key is never included.
    """
    if not cfg.llm_configured:
        return {
            "configured": False,
            "source": "none",
            "endpoint": None,
            "model": None,
            "max_tokens": None,
            "temperature": None,
        }
    return {
        "configured": True,
        "source": cfg.llm_source,
        "endpoint": cfg.llm.endpoint,
        "model": cfg.llm.model,
        "max_tokens": cfg.llm.max_tokens,
        "temperature": cfg.llm.temperature,
    }


_LOG_FORMATS = {
    "simple": "%(levelname)s %(message)s",
    "detailed": "%(asctime)s %(levelname)s [%(name)s] %(message)s",
}


def configure_logging(settings: LoggingSettings) -> None:
    """Apply ``settings`` to the root logger."""
    logging.basicConfig(
        level=settings.level.upper(),
        format=_LOG_FORMATS.get(settings.format, _LOG_FORMATS["detailed"]),
        force=True,
    )
