"""Configuration management for the Sift insight pipeline.

This module provides centralized configuration for all pipeline components.
All settings are loaded from environment variables with sensible defaults.

Environment Variables:
    Content Source:
        SUBREDDITS: Comma-separated partitions to poll
        SORT_MODE: Listing sort ('hot', 'new', 'rising', 'top')
        FETCH_LIMIT: Items requested per partition per cycle (max 100)
        SOURCE_BASE_URL: Base URL of the listing API
        SOURCE_USER_AGENT: User-Agent sent with listing requests
        REQUEST_TIMEOUT: Per-request transport timeout in seconds

    Inference:
        INSIGHT_MODEL: Model for insight generation (PydanticAI format -
            provider:model, or openai:{model}@{base_url} for a local server)
        ANTHROPIC_API_KEY: Required when INSIGHT_MODEL is an anthropic model

    Throttling (one set per dependency, prefix SOURCE_ or INFERENCE_):
        *_BASE_INTERVAL_MS: Minimum spacing between two requests
        *_BACKOFF_STEP_MS: Backoff added per throttling failure
        *_RECOVERY_STEP_MS: Backoff removed per success
        *_MAX_BACKOFF_MS: Backoff cap
        *_BREAKER_THRESHOLD_MS: Backoff at which the breaker opens
        *_BREAKER_RESET_MS: Time the breaker stays open

    Pipeline Behavior:
        POLL_INTERVAL_MS: Delay between poll cycles
        MAX_WORKERS: Maximum concurrent insight generations
        DEDUP_MAX_ENTRIES: Bound on remembered item ids (0 = unbounded)
        SNAPSHOT_MAX_ENTRIES: Bound on items/insights kept in memory

    Output:
        DB_PATH: SQLite store file path
        LOG_DIR: Directory for log files

    Alerts:
        NOTIFICATION_WEBHOOK_URL: HTTP endpoint for high-priority insights
        ALERTS_FILE: Path for JSONL alert file

    Optional Features:
        ENABLE_LOGFIRE: Enable Logfire/OpenTelemetry tracing

    Logging:
        LOG_LEVEL: Logging verbosity (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        LOG_BACKUP_COUNT: Number of rotated log files to keep
        LOG_MAX_BYTES: Max log file size in bytes (0 = time-based rotation)
        LOG_FORMAT: Log format ('text' or 'json' for structured logging)
"""

import os
from dataclasses import dataclass, field, replace
from pathlib import Path


def _env(key: str, default: str = "") -> str:
    """Get string environment variable with optional default.

    Args:
        key: Environment variable name
        default: Value to return if not set

    Returns:
        Environment variable value or default
    """
    return os.environ.get(key, default)


def _env_int(key: str, default: int) -> int:
    """Get integer environment variable with default.

    Raises:
        ValueError: If value is set but cannot be parsed as integer
    """
    val = os.environ.get(key)
    if not val:
        return default
    try:
        return int(val)
    except ValueError:
        raise ValueError(f"Invalid integer value for {key}: '{val}'")


def _env_float(key: str, default: float) -> float:
    """Get float environment variable with default.

    Raises:
        ValueError: If value is set but cannot be parsed as float
    """
    val = os.environ.get(key)
    if not val:
        return default
    try:
        return float(val)
    except ValueError:
        raise ValueError(f"Invalid float value for {key}: '{val}'")


def _env_bool(key: str, default: bool = False) -> bool:
    """Get boolean environment variable with default.

    Recognizes truthy values: '1', 'true', 'yes', 'on'
    Recognizes falsy values: '0', 'false', 'no', 'off'
    """
    val = os.environ.get(key, "").lower()
    if val in ("1", "true", "yes", "on"):
        return True
    if val in ("0", "false", "no", "off"):
        return False
    return default


def _env_list(key: str, default: list[str]) -> list[str]:
    """Get comma-separated list environment variable with default."""
    val = os.environ.get(key)
    if not val:
        return list(default)
    return [part.strip() for part in val.split(",") if part.strip()]


# Partitions tracked out of the box: communities where journaling and
# self-improvement products get discussed
DEFAULT_SUBREDDITS = [
    "Journaling",
    "bulletjournal",
    "productivity",
    "ProductivityApps",
    "selfimprovement",
    "GetDisciplined",
    "habits",
    "Mindfulness",
    "ADHD",
    "Notion",
    "ObsidianMD",
    "Entrepreneur",
    "SaaS",
]

SORT_MODES = ("hot", "new", "rising", "top")


@dataclass
class ThrottleSettings:
    """Pacing and circuit-breaker parameters for one dependency.

    All values are milliseconds.
    """

    base_interval_ms: int = 5000      # Minimum spacing between requests
    backoff_step_ms: int = 10000      # Added per 429/5xx
    recovery_step_ms: int = 5000      # Removed per success
    max_backoff_ms: int = 60000       # Backoff cap
    breaker_threshold_ms: int = 30000 # Breaker opens at this backoff
    breaker_reset_ms: int = 120000    # Breaker cooldown

    @classmethod
    def load(cls, prefix: str, defaults: "ThrottleSettings | None" = None) -> "ThrottleSettings":
        """Load settings from environment variables sharing a prefix.

        Args:
            prefix: Variable prefix, e.g. 'SOURCE' reads SOURCE_BASE_INTERVAL_MS
            defaults: Values used for unset variables
        """
        d = defaults or cls()
        return cls(
            base_interval_ms=_env_int(f"{prefix}_BASE_INTERVAL_MS", d.base_interval_ms),
            backoff_step_ms=_env_int(f"{prefix}_BACKOFF_STEP_MS", d.backoff_step_ms),
            recovery_step_ms=_env_int(f"{prefix}_RECOVERY_STEP_MS", d.recovery_step_ms),
            max_backoff_ms=_env_int(f"{prefix}_MAX_BACKOFF_MS", d.max_backoff_ms),
            breaker_threshold_ms=_env_int(f"{prefix}_BREAKER_THRESHOLD_MS", d.breaker_threshold_ms),
            breaker_reset_ms=_env_int(f"{prefix}_BREAKER_RESET_MS", d.breaker_reset_ms),
        )

    def validate(self, name: str) -> str | None:
        if self.base_interval_ms < 0:
            return f"{name}: base interval must be non-negative"
        if self.backoff_step_ms <= 0 or self.recovery_step_ms <= 0:
            return f"{name}: backoff and recovery steps must be positive"
        if self.max_backoff_ms < self.backoff_step_ms:
            return f"{name}: max backoff must be at least one backoff step"
        if self.breaker_threshold_ms <= 0:
            return f"{name}: breaker threshold must be positive"
        if self.breaker_reset_ms <= 0:
            return f"{name}: breaker reset must be positive"
        return None


# The content source tolerates roughly one request every five seconds
SOURCE_THROTTLE_DEFAULTS = ThrottleSettings()

# The inference tier allows 50 requests per minute
INFERENCE_THROTTLE_DEFAULTS = ThrottleSettings(base_interval_ms=1200)


@dataclass
class Config:
    """Application configuration loaded from environment variables.

    Use Config.load() to create an instance with values from the environment.

    Example:
        >>> config = Config.load()
        >>> if error := config.validate():
        ...     print(f"Config error: {error}")
    """

    # === Content Source ===
    subreddits: list[str] = field(default_factory=lambda: DEFAULT_SUBREDDITS.copy())
    sort_mode: str = "hot"  # SORT_MODE
    fetch_limit: int = 10  # FETCH_LIMIT - Items per partition per cycle
    source_base_url: str = "https://www.reddit.com"  # SOURCE_BASE_URL
    source_user_agent: str = "sift-insights/1.0"  # SOURCE_USER_AGENT
    request_timeout: int = 30  # REQUEST_TIMEOUT - seconds

    # === Inference ===
    insight_model: str = "anthropic:claude-haiku-4-5"  # INSIGHT_MODEL
    anthropic_api_key: str = ""  # ANTHROPIC_API_KEY

    # === Throttling ===
    source_throttle: ThrottleSettings = field(default_factory=lambda: replace(SOURCE_THROTTLE_DEFAULTS))
    inference_throttle: ThrottleSettings = field(default_factory=lambda: replace(INFERENCE_THROTTLE_DEFAULTS))

    # === Pipeline Behavior ===
    poll_interval_ms: int = 30000  # POLL_INTERVAL_MS - Delay between cycles
    max_workers: int = 4  # MAX_WORKERS - Concurrent insight generations
    dedup_max_entries: int = 0  # DEDUP_MAX_ENTRIES - 0 keeps every id for the process lifetime
    snapshot_max_entries: int = 500  # SNAPSHOT_MAX_ENTRIES - In-memory view cap

    # === Store ===
    db_path: Path = field(default_factory=lambda: Path("sift.db"))  # DB_PATH

    # === Alerts ===
    webhook_url: str = ""  # NOTIFICATION_WEBHOOK_URL - POST endpoint for high-priority insights
    alerts_file: str = ""  # ALERTS_FILE - JSONL file path for alerts

    # === Output Directories ===
    log_dir: Path = field(default_factory=lambda: Path("log"))  # LOG_DIR

    # === Logging Configuration ===
    log_level: str = "INFO"  # LOG_LEVEL
    log_backup_count: int = 30  # LOG_BACKUP_COUNT
    log_max_bytes: int = 0  # LOG_MAX_BYTES - 0 = time-based rotation
    log_format: str = "text"  # LOG_FORMAT - 'text' or 'json'

    # === Optional: Observability ===
    # Requires: pip install logfire
    enable_logfire: bool = False  # ENABLE_LOGFIRE
    logfire_token: str = ""  # LOGFIRE_TOKEN

    @classmethod
    def load(cls) -> "Config":
        """Load configuration from environment variables."""
        return cls(
            subreddits=_env_list("SUBREDDITS", DEFAULT_SUBREDDITS),
            sort_mode=_env("SORT_MODE", "hot").lower(),
            fetch_limit=_env_int("FETCH_LIMIT", 10),
            source_base_url=_env("SOURCE_BASE_URL", "https://www.reddit.com").rstrip("/"),
            source_user_agent=_env("SOURCE_USER_AGENT", "sift-insights/1.0"),
            request_timeout=_env_int("REQUEST_TIMEOUT", 30),
            insight_model=_env("INSIGHT_MODEL", "anthropic:claude-haiku-4-5"),
            anthropic_api_key=_env("ANTHROPIC_API_KEY"),
            source_throttle=ThrottleSettings.load("SOURCE", SOURCE_THROTTLE_DEFAULTS),
            inference_throttle=ThrottleSettings.load("INFERENCE", INFERENCE_THROTTLE_DEFAULTS),
            poll_interval_ms=_env_int("POLL_INTERVAL_MS", 30000),
            max_workers=_env_int("MAX_WORKERS", 4),
            dedup_max_entries=_env_int("DEDUP_MAX_ENTRIES", 0),
            snapshot_max_entries=_env_int("SNAPSHOT_MAX_ENTRIES", 500),
            db_path=Path(_env("DB_PATH", "sift.db")),
            webhook_url=_env("NOTIFICATION_WEBHOOK_URL"),
            alerts_file=_env("ALERTS_FILE"),
            log_dir=Path(_env("LOG_DIR", "log")),
            log_level=_env("LOG_LEVEL", "INFO").upper(),
            log_backup_count=_env_int("LOG_BACKUP_COUNT", 30),
            log_max_bytes=_env_int("LOG_MAX_BYTES", 0),
            log_format=_env("LOG_FORMAT", "text").lower(),
            enable_logfire=_env_bool("ENABLE_LOGFIRE", False),
            logfire_token=_env("LOGFIRE_TOKEN"),
        )

    def validate(self) -> str | None:
        """Validate configuration for required fields and valid values.

        Returns:
            Error message string if invalid, None if valid.
        """
        if self.insight_model.startswith("anthropic:") and not self.anthropic_api_key:
            return "ANTHROPIC_API_KEY environment variable is required for anthropic models"
        if self.sort_mode not in SORT_MODES:
            return f"Invalid SORT_MODE '{self.sort_mode}' - must be one of {', '.join(SORT_MODES)}"
        if not 1 <= self.fetch_limit <= 100:
            return "FETCH_LIMIT must be between 1 and 100"
        if self.poll_interval_ms <= 0:
            return "POLL_INTERVAL_MS must be positive"
        if self.max_workers <= 0:
            return "MAX_WORKERS must be positive"
        if self.dedup_max_entries < 0:
            return "DEDUP_MAX_ENTRIES must be non-negative"
        if self.snapshot_max_entries <= 0:
            return "SNAPSHOT_MAX_ENTRIES must be positive"
        for name, settings in (("SOURCE", self.source_throttle), ("INFERENCE", self.inference_throttle)):
            if error := settings.validate(name):
                return error
        if self.log_level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            return f"Invalid LOG_LEVEL '{self.log_level}' - must be DEBUG, INFO, WARNING, ERROR, or CRITICAL"
        if self.log_format not in ("text", "json"):
            return f"Invalid LOG_FORMAT '{self.log_format}' - must be 'text' or 'json'"
        if self.log_backup_count < 0:
            return "LOG_BACKUP_COUNT must be non-negative"
        if self.log_max_bytes < 0:
            return "LOG_MAX_BYTES must be non-negative"
        return None
