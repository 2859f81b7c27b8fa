"""
Centralized configuration loader for the content intelligence pipeline.

Loads settings from YAML files and environment variables, providing
sensible defaults when configuration files are absent.

Provides:
    - IngestionConfig: Signal sources, domain filters and windows
    - ImageConfig: Image provider cascade settings
    - ValidationConfig: Acceptance rules and batch concurrency
    - FatigueConfig: Saturation scoring thresholds
    - Settings: Global application settings loaded from YAML + env vars
    - get_settings(): Singleton accessor for Settings
    - validate_env(): Startup validation of required environment variables
"""

import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from dotenv import load_dotenv

from src.exceptions import ConfigurationError

# ---------------------------------------------------------------------------
# Load .env file (no-op if file does not exist)
# ---------------------------------------------------------------------------
load_dotenv()

# ---------------------------------------------------------------------------
# Project root directory (parent of src/)
# ---------------------------------------------------------------------------
PROJECT_ROOT = Path(__file__).resolve().parent.parent

logger = logging.getLogger(__name__)


def _apply_env_overrides(target: Any, env_overrides: Dict[str, tuple]) -> None:
    """Override dataclass attributes from environment variables.

    Raises:
        ConfigurationError: If an env var is set but cannot be cast.
    """
    for env_key, (attr_name, cast_fn) in env_overrides.items():
        env_val = os.environ.get(env_key)
        if env_val is not None:
            try:
                setattr(target, attr_name, cast_fn(env_val))
            except (ValueError, TypeError) as exc:
                raise ConfigurationError(
                    f"Invalid value for env var {env_key}='{env_val}': {exc}"
                ) from exc


def _parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in ("1", "true", "yes", "on"):
        return True
    if lowered in ("0", "false", "no", "off"):
        return False
    raise ValueError(f"not a boolean: {value}")


def _known_kwargs(cls: type, data: Dict[str, Any]) -> Dict[str, Any]:
    """Filter a YAML section down to the fields ``cls`` declares."""
    names = {f.name for f in fields(cls)}
    unknown = set(data) - names
    if unknown:
        logger.warning(
            "Ignoring unknown %s keys in settings: %s", cls.__name__, sorted(unknown)
        )
    return {k: v for k, v in data.items() if k in names}


# ===========================================================================
# INGESTION CONFIGURATION
# ===========================================================================


@dataclass
class IngestionConfig:
    """
    Signal fetcher configuration.

    ``target_language`` / ``region`` decide which entities are in-domain;
    ``tracked_celebrities`` filters the trending-people sub-request.
    """

    target_language: str = "te"
    region: str = "IN"

    tracked_celebrities: List[str] = field(default_factory=lambda: [
        "Allu Arjun", "Prabhas", "Mahesh Babu", "Jr NTR", "Ram Charan",
        "Chiranjeevi", "Pawan Kalyan", "Vijay Deverakonda", "Nani",
        "Samantha", "Rashmika Mandanna", "Sreeleela", "Pooja Hegde",
        "SS Rajamouli", "Sukumar", "Trivikram Srinivas",
    ])

    video_search_terms: List[str] = field(default_factory=lambda: [
        "Telugu movie trailer",
        "Tollywood latest",
        "Telugu songs",
    ])

    news_queries: List[str] = field(default_factory=lambda: [
        "Telugu cinema",
        "Tollywood",
        "Hyderabad entertainment",
    ])

    video_lookback_days: int = 7
    max_results_per_query: int = 10
    signal_window_days: int = 3
    retention_days: int = 7
    fetcher_timeout_seconds: float = 10.0

    def __post_init__(self) -> None:
        _apply_env_overrides(self, {
            "INGEST_LANGUAGE": ("target_language", str),
            "INGEST_REGION": ("region", str),
            "INGEST_SIGNAL_WINDOW_DAYS": ("signal_window_days", int),
            "INGEST_RETENTION_DAYS": ("retention_days", int),
            "INGEST_FETCHER_TIMEOUT": ("fetcher_timeout_seconds", float),
        })
        if self.retention_days < self.signal_window_days:
            raise ConfigurationError(
                f"retention_days ({self.retention_days}) must cover "
                f"signal_window_days ({self.signal_window_days})"
            )


# ===========================================================================
# IMAGE CONFIGURATION
# ===========================================================================


@dataclass
class ImageConfig:
    """Image provider cascade settings."""

    provider_timeout_seconds: float = 8.0
    candidates_per_provider: int = 3
    validate_timeout_seconds: float = 5.0

    def __post_init__(self) -> None:
        _apply_env_overrides(self, {
            "IMAGE_PROVIDER_TIMEOUT": ("provider_timeout_seconds", float),
        })
        if self.provider_timeout_seconds <= 0:
            raise ConfigurationError("provider_timeout_seconds must be positive")


# ===========================================================================
# VALIDATION CONFIGURATION
# ===========================================================================


@dataclass
class ValidationConfig:
    """
    Acceptance rules for the validation pipeline.

    Template fallback drafts carry ``fallback_confidence``, which sits
    below ``min_confidence``, so they are rejected from automatic
    acceptance unless ``allow_fallback`` is set.
    """

    min_confidence: float = 0.5
    min_body_length: int = 300
    allow_fallback: bool = False
    fallback_confidence: float = 0.3
    concurrency: int = 3
    ai_timeout_seconds: float = 30.0
    batch_timeout_seconds: float = 600.0

    def __post_init__(self) -> None:
        _apply_env_overrides(self, {
            "VALIDATION_MIN_CONFIDENCE": ("min_confidence", float),
            "VALIDATION_MIN_BODY_LENGTH": ("min_body_length", int),
            "VALIDATION_ALLOW_FALLBACK": ("allow_fallback", _parse_bool),
            "VALIDATION_CONCURRENCY": ("concurrency", int),
            "AI_TIMEOUT": ("ai_timeout_seconds", float),
        })
        if not 0.0 <= self.min_confidence <= 1.0:
            raise ConfigurationError(
                f"min_confidence must be in [0, 1], got {self.min_confidence}"
            )
        if not 0.0 <= self.fallback_confidence <= 1.0:
            raise ConfigurationError(
                f"fallback_confidence must be in [0, 1], got {self.fallback_confidence}"
            )
        if self.concurrency < 1:
            raise ConfigurationError(
                f"concurrency must be >= 1, got {self.concurrency}"
            )


# ===========================================================================
# FATIGUE CONFIGURATION
# ===========================================================================


@dataclass
class FatigueConfig:
    """Saturation scoring thresholds."""

    lookback_days: int = 3
    saturation_step: float = 0.15
    saturation_threshold: float = 0.7
    underserved_score_floor: float = 60.0
    active_window_days: int = 7
    max_rising_times_covered: int = 2
    max_underserved_times_covered: int = 1

    def __post_init__(self) -> None:
        _apply_env_overrides(self, {
            "FATIGUE_LOOKBACK_DAYS": ("lookback_days", int),
            "FATIGUE_SATURATION_THRESHOLD": ("saturation_threshold", float),
        })


# ===========================================================================
# GLOBAL SETTINGS
# ===========================================================================


@dataclass
class Settings:
    """
    Global application settings.

    Loaded from ``config/settings.yaml`` when available, falling back to
    sensible defaults. Environment variables override YAML values for
    secrets and deployment-specific configuration.
    """

    # AI capability: "claude" or "ollama"
    ai_provider: str = "claude"
    llm_model: str = "claude-sonnet-4-5"
    ollama_url: str = "http://localhost:11434"
    ollama_model: str = "llama3:8b"

    # Logging
    log_level: str = "INFO"
    log_dir: str = "logs"

    ingestion: IngestionConfig = field(default_factory=IngestionConfig)
    images: ImageConfig = field(default_factory=ImageConfig)
    validation: ValidationConfig = field(default_factory=ValidationConfig)
    fatigue: FatigueConfig = field(default_factory=FatigueConfig)

    # Stage-level timeouts (seconds)
    stage_timeouts: Dict[str, float] = field(default_factory=lambda: {
        "ingest": 120.0,
        "cluster": 60.0,
        "fatigue": 60.0,
        "validate": 600.0,
    })

    def __post_init__(self) -> None:
        _apply_env_overrides(self, {
            "AI_PROVIDER": ("ai_provider", str),
            "LLM_MODEL": ("llm_model", str),
            "OLLAMA_URL": ("ollama_url", str),
            "OLLAMA_MODEL": ("ollama_model", str),
            "LOG_LEVEL": ("log_level", str),
        })
        if self.ai_provider not in ("claude", "ollama"):
            raise ConfigurationError(
                f"ai_provider must be 'claude' or 'ollama', got '{self.ai_provider}'"
            )

    @classmethod
    def from_yaml(cls, path: Optional[Path] = None) -> "Settings":
        """
        Load settings from a YAML file.

        If the file does not exist, returns an instance with all defaults.
        Environment variables override YAML values for specific keys.

        Args:
            path: Path to the YAML file. Defaults to
                ``<PROJECT_ROOT>/config/settings.yaml``.

        Returns:
            Populated Settings instance.

        Raises:
            ConfigurationError: If the YAML file exists but cannot be parsed,
                or a section holds invalid values.
        """
        path = path or PROJECT_ROOT / "config" / "settings.yaml"

        data: Dict[str, Any] = {}
        if path.exists():
            try:
                with open(path, "r", encoding="utf-8") as fh:
                    data = yaml.safe_load(fh) or {}
            except yaml.YAMLError as exc:
                raise ConfigurationError(
                    f"Failed to parse settings YAML at {path}: {exc}"
                ) from exc

        if not isinstance(data, dict):
            raise ConfigurationError(
                f"Settings YAML at {path} must be a mapping, got {type(data).__name__}"
            )

        # -----------------------------------------------------------------
        # Build nested sections
        # -----------------------------------------------------------------
        try:
            ingestion = IngestionConfig(
                **_known_kwargs(IngestionConfig, data.get("ingestion") or {})
            )
            images = ImageConfig(**_known_kwargs(ImageConfig, data.get("images") or {}))
            validation = ValidationConfig(
                **_known_kwargs(ValidationConfig, data.get("validation") or {})
            )
            fatigue = FatigueConfig(
                **_known_kwargs(FatigueConfig, data.get("fatigue") or {})
            )
        except TypeError as exc:
            raise ConfigurationError(f"Invalid settings section: {exc}") from exc

        # -----------------------------------------------------------------
        # Build stage_timeouts (YAML + env var overrides)
        # -----------------------------------------------------------------
        stage_timeouts = cls.__dataclass_fields__["stage_timeouts"].default_factory()  # type: ignore[misc]
        stage_timeouts.update(data.get("stage_timeouts") or {})

        timeout_env_map = {
            "STAGE_TIMEOUT_INGEST": "ingest",
            "STAGE_TIMEOUT_CLUSTER": "cluster",
            "STAGE_TIMEOUT_FATIGUE": "fatigue",
            "STAGE_TIMEOUT_VALIDATE": "validate",
        }
        for env_key, timeout_key in timeout_env_map.items():
            env_val = os.environ.get(env_key)
            if env_val is not None:
                try:
                    stage_timeouts[timeout_key] = float(env_val)
                except (ValueError, TypeError):
                    logger.warning(
                        "Invalid value for %s='%s', using default", env_key, env_val
                    )

        # -----------------------------------------------------------------
        # Assemble the Settings object
        # -----------------------------------------------------------------
        return cls(
            ai_provider=data.get("ai_provider", "claude"),
            llm_model=data.get("llm_model", "claude-sonnet-4-5"),
            ollama_url=data.get("ollama_url", "http://localhost:11434"),
            ollama_model=data.get("ollama_model", "llama3:8b"),
            log_level=data.get("log_level", "INFO"),
            log_dir=data.get("log_dir", "logs"),
            ingestion=ingestion,
            images=images,
            validation=validation,
            fatigue=fatigue,
            stage_timeouts=stage_timeouts,
        )


# ===========================================================================
# SINGLETON SETTINGS ACCESSOR
# ===========================================================================

_settings_instance: Optional[Settings] = None


def get_settings() -> Settings:
    """
    Get the global Settings singleton.

    On first call, loads from ``config/settings.yaml`` (or defaults).
    Subsequent calls return the cached instance.
    """
    global _settings_instance
    if _settings_instance is None:
        _settings_instance = Settings.from_yaml()
    return _settings_instance


def reset_settings() -> None:
    """
    Reset the cached Settings singleton.

    Useful for testing or when configuration files have been updated
    at runtime.
    """
    global _settings_instance
    _settings_instance = None


# ===========================================================================
# ENVIRONMENT VARIABLE VALIDATION
# ===========================================================================

# Required environment variables for the system to function
REQUIRED_ENV_VARS: List[str] = [
    "SUPABASE_URL",
    "SUPABASE_SERVICE_KEY",
]

# Optional: a missing key leaves that source or capability unavailable
OPTIONAL_ENV_VARS: List[str] = [
    "TMDB_API_KEY",
    "YOUTUBE_API_KEY",
    "GNEWS_API_KEY",
    "UNSPLASH_ACCESS_KEY",
    "ANTHROPIC_API_KEY",
]


def validate_env(strict: bool = True) -> Dict[str, bool]:
    """
    Validate that required environment variables are set.

    Args:
        strict: If ``True``, raise ``ConfigurationError`` when any required
            variable is missing. If ``False``, return the status dict
            without raising.

    Returns:
        Dict mapping variable name to presence status (``True`` if set).

    Raises:
        ConfigurationError: If ``strict=True`` and required vars are missing.
    """
    status: Dict[str, bool] = {}
    missing: List[str] = []

    for var in REQUIRED_ENV_VARS:
        present = bool(os.environ.get(var))
        status[var] = present
        if not present:
            missing.append(var)

    for var in OPTIONAL_ENV_VARS:
        status[var] = bool(os.environ.get(var))
        if not status[var]:
            logger.info("%s not set; the matching source will be skipped", var)

    if strict and missing:
        raise ConfigurationError(
            f"Missing required environment variables: {missing}. "
            f"Copy .env.example to .env and fill in the values."
        )

    return status


# ===========================================================================
# PUBLIC API
# ===========================================================================

__all__ = [
    # Configuration classes
    "IngestionConfig",
    "ImageConfig",
    "ValidationConfig",
    "FatigueConfig",
    "Settings",
    # Settings accessor
    "get_settings",
    "reset_settings",
    # Environment validation
    "validate_env",
    "REQUIRED_ENV_VARS",
    "OPTIONAL_ENV_VARS",
    # Constants
    "PROJECT_ROOT",
]
