from __future__ import annotations

"""
Pydantic-based configuration settings for tracemind
"""

import json
import os
from enum import Enum
from pathlib import Path
from typing import Any, ClassVar
from urllib.parse import urlsplit

from pydantic import BaseModel, Field, field_validator, model_validator


class LogLevel(str, Enum):
    """Logging levels"""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


SUPPORTED_DATABASE_SCHEME_PREFIXES = (
    "sqlite",
    "postgres",
    "postgresql",
    "mysql",
)


class DatabaseSettings(BaseModel):
    """Relational store settings; no connection string means memory-only mode"""

    connection_string: str | None = Field(
        default=None, description="SQLAlchemy connection string"
    )
    echo_sql: bool = Field(default=False, description="Echo SQL statements to logs")
    max_messages_in_memory: int = Field(
        default=200, ge=1, description="Messages mirrored per conversation in memory"
    )
    max_session_summaries: int = Field(
        default=3, ge=1, description="Session summaries mirrored per conversation"
    )

    @field_validator("connection_string")
    @classmethod
    def validate_connection_string(cls, v: str | None) -> str | None:
        """Validate database connection string"""
        if v is None:
            return v
        v = v.strip()
        if not v:
            return None

        scheme = urlsplit(v).scheme.lower()
        if not scheme:
            raise ValueError(
                "Connection string must include a URI scheme (e.g. sqlite:///tracemind.db)"
            )
        base_scheme = scheme.split("+", 1)[0]
        if not any(
            base_scheme.startswith(prefix)
            for prefix in SUPPORTED_DATABASE_SCHEME_PREFIXES
        ):
            raise ValueError(f"Unsupported database type in connection string: {v}")
        return v


class AgentSettings(BaseModel):
    """Completion service configuration"""

    openai_api_key: str | None = Field(
        default=None, description="API key for the completion service"
    )
    base_url: str | None = Field(
        default=None, description="Optional OpenAI-compatible base URL"
    )
    default_model: str = Field(
        default="gpt-4o-mini", description="Model used for extraction and summaries"
    )
    extraction_temperature: float = Field(default=0.3, ge=0.0, le=2.0)
    summary_temperature: float = Field(default=0.5, ge=0.0, le=2.0)
    compression_temperature: float = Field(default=0.3, ge=0.0, le=2.0)
    summary_max_tokens: int = Field(default=150, ge=16, le=4000)
    compression_max_tokens: int = Field(default=400, ge=16, le=4000)
    timeout_seconds: int = Field(
        default=30, ge=5, le=300, description="API timeout in seconds"
    )

    @field_validator("openai_api_key")
    @classmethod
    def validate_api_key(cls, v: str | None) -> str | None:
        if v is None:
            return v
        key = v.strip()
        if not key:
            return None
        if key.startswith("sk-") and len(key) < 20:
            raise ValueError("OpenAI API key starting with 'sk-' appears malformed")
        return key


class LoggingSettings(BaseModel):
    """Logging configuration settings"""

    level: LogLevel = Field(default=LogLevel.INFO, description="Logging level")
    format: str = Field(
        default="<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>",
        description="Log message format",
    )
    log_to_file: bool = Field(default=False, description="Enable logging to file")
    log_file_path: str = Field(
        default="logs/tracemind.log", description="Log file path"
    )
    log_rotation: str = Field(default="10 MB", description="Log rotation size")
    log_retention: str = Field(default="30 days", description="Log retention period")
    log_compression: str = Field(default="gz", description="Log compression format")
    structured_logging: bool = Field(
        default=False, description="Emit JSON records instead of formatted lines"
    )


class StateSettings(BaseModel):
    """Conversation-state lifetimes, in seconds"""

    state_ttl_seconds: float = Field(default=30 * 60, gt=0)
    active_run_ttl_seconds: float = Field(default=12 * 60, gt=0)
    followup_ttl_seconds: float = Field(default=10 * 60, gt=0)
    auto_advance_turns: int = Field(
        default=3, ge=1, description="Turns after which early stages force SHARING"
    )


class MemorySettings(BaseModel):
    """Core-memory extraction and summary scheduling"""

    extraction_threshold: int = Field(default=5, ge=1)
    importance_extraction_threshold: int = Field(default=3, ge=1)
    importance_window: int = Field(
        default=5, ge=1, description="User messages scanned by the importance heuristic"
    )
    importance_min_matches: int = Field(default=2, ge=1)
    importance_long_message_chars: int = Field(default=100, ge=1)
    summary_threshold: int = Field(default=25, ge=1)
    extraction_message_window: int = Field(default=20, ge=1)
    summary_message_window: int = Field(default=50, ge=1)
    min_extraction_chars: int = Field(default=100, ge=0)
    min_summary_chars: int = Field(default=100, ge=0)
    caps: dict[str, int] = Field(
        default_factory=lambda: {
            "user_facts": 25,
            "goals": 15,
            "constraints": 10,
            "commitments": 10,
            "themes": 10,
            "pending_topics": 8,
            "emotion_timeline": 5,
            "contradictions": 10,
        }
    )
    trimmed_caps: dict[str, int] = Field(
        default_factory=lambda: {
            "user_facts": 5,
            "goals": 3,
            "constraints": 3,
            "commitments": 3,
            "themes": 3,
            "pending_topics": 3,
            "emotion_timeline": 3,
            "contradictions": 3,
        }
    )

    @field_validator("caps", "trimmed_caps")
    @classmethod
    def _positive_caps(cls, value: dict[str, int]) -> dict[str, int]:
        for name, cap in value.items():
            if int(cap) < 0:
                raise ValueError(f"cap for {name} must be non-negative")
        return {name: int(cap) for name, cap in value.items()}


class ContextSettings(BaseModel):
    """Token budgeting for the assembled memory context"""

    token_budget: int = Field(default=2500, ge=1)
    chars_per_token: float = Field(default=3.5, gt=0)
    min_truncation_tokens: int = Field(default=50, ge=0)
    message_limits: list[int] = Field(default_factory=lambda: [10, 8, 5])
    summary_limits: list[int] = Field(default_factory=lambda: [3, 3, 1])
    recent_user_messages: int = Field(default=5, ge=0)
    message_chars: int = Field(default=120, ge=1)
    compression_blocks: int = Field(default=2, ge=0)

    @model_validator(mode="after")
    def _limits_cover_levels(self) -> ContextSettings:
        if not self.message_limits or not self.summary_limits:
            raise ValueError("message_limits and summary_limits must not be empty")
        return self


class CompressionSettings(BaseModel):
    """Rolling compression of older history"""

    threshold: int = Field(default=40, ge=1)
    keep_recent: int = Field(default=20, ge=1)
    min_new_messages: int = Field(default=6, ge=1)
    min_summary_chars: int = Field(default=20, ge=0)
    fetch_limit: int = Field(
        default=200, ge=1, description="Messages loaded when compressing a conversation"
    )


class SessionSettings(BaseModel):
    """Session rotation"""

    rotation_gap_hours: float = Field(default=24, gt=0)


class IntentSettings(BaseModel):
    """Turn-directive diagnostics"""

    log_enabled: bool = Field(
        default=False, description="Log every synthesized directive"
    )


class TraceMindSettings(BaseModel):
    """Main tracemind configuration"""

    version: str = Field(default="1.0.0", description="Configuration version")
    debug: bool = Field(default=False, description="Enable debug mode")
    verbose: bool = Field(default=False, description="Enable verbose logging")

    # Component settings
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    agents: AgentSettings = Field(default_factory=AgentSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    state: StateSettings = Field(default_factory=StateSettings)
    memory: MemorySettings = Field(default_factory=MemorySettings)
    context: ContextSettings = Field(default_factory=ContextSettings)
    compression: CompressionSettings = Field(default_factory=CompressionSettings)
    session: SessionSettings = Field(default_factory=SessionSettings)
    intent: IntentSettings = Field(default_factory=IntentSettings)

    env_prefix: ClassVar[str] = "TRACEMIND_"
    env_nested_delimiter: ClassVar[str] = "__"
    env_aliases: ClassVar[dict[str, str]] = {
        "TRACEMIND_DATABASE_URL": "database__connection_string",
        "TRACEMIND_MODEL": "agents__default_model",
        "OPENAI_API_KEY": "agents__openai_api_key",
        "TRACE_INTENT_LOG": "intent__log_enabled",
    }

    @classmethod
    def _collect_env_data(cls) -> tuple[dict[str, Any], set[str]]:
        """Return environment driven configuration data and the originating keys."""

        prefix = cls.env_prefix.lower()
        delimiter = cls.env_nested_delimiter
        aliases = {alias.lower(): target for alias, target in cls.env_aliases.items()}

        def _split_path(path: str) -> list[str]:
            if delimiter and delimiter in path:
                parts = path.split(delimiter)
            else:
                parts = [path]
            return [part.lower() for part in parts if part]

        def _assign(data: dict[str, Any], keys: list[str], value: Any) -> None:
            current = data
            for part in keys[:-1]:
                if part not in current or not isinstance(current[part], dict):
                    current[part] = {}
                current = current[part]
            current[keys[-1]] = value

        env_data: dict[str, Any] = {}
        used_keys: set[str] = set()

        for env_key, env_value in os.environ.items():
            compare_key = env_key.lower()

            if compare_key in aliases:
                parts = _split_path(aliases[compare_key])
            elif compare_key.startswith(prefix):
                parts = _split_path(env_key[len(prefix) :])
            else:
                continue

            if not parts or parts[0] not in cls.model_fields:
                continue

            _assign(env_data, parts, _coerce_env_value(env_value))
            used_keys.add(env_key)

        return env_data, used_keys

    @classmethod
    def from_env(cls) -> TraceMindSettings:
        """Create settings from environment variables"""

        env_data, _ = cls._collect_env_data()
        return cls(**env_data)

    @classmethod
    def from_env_with_metadata(cls) -> tuple[TraceMindSettings, set[str]]:
        """Return settings from the environment along with the keys that were used."""

        env_data, used_keys = cls._collect_env_data()
        return cls(**env_data), used_keys

    @classmethod
    def from_file(cls, config_path: str | Path) -> TraceMindSettings:
        """Load settings from JSON/YAML file"""

        config_path = Path(config_path)
        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(config_path) as f:
            if config_path.suffix.lower() == ".json":
                data = json.load(f)
            elif config_path.suffix.lower() in [".yml", ".yaml"]:
                import yaml

                data = yaml.safe_load(f) or {}
            else:
                raise ValueError(
                    f"Unsupported configuration file format: {config_path.suffix}"
                )

        return cls(**data)

    def to_file(self, config_path: str | Path, format: str = "json") -> None:
        """Save settings to file"""

        config_path = Path(config_path)
        config_path.parent.mkdir(parents=True, exist_ok=True)
        data = self.model_dump(mode="json")

        with open(config_path, "w") as f:
            if format.lower() == "json":
                json.dump(data, f, indent=2)
            elif format.lower() in ["yml", "yaml"]:
                import yaml

                yaml.safe_dump(data, f, default_flow_style=False)
            else:
                raise ValueError(f"Unsupported format: {format}")

    def export(self, *, include_sensitive: bool = False) -> dict[str, Any]:
        """Return a serialisable representation of the settings."""

        data = self.model_dump(mode="json")
        if include_sensitive:
            return data

        agents = data.get("agents", {})
        if agents.get("openai_api_key"):
            agents["openai_api_key"] = "***"
        database = data.get("database", {})
        if database.get("connection_string"):
            database["connection_string"] = _mask_url(database["connection_string"])
        return data

    def get_database_url(self) -> str | None:
        """Get the database connection URL"""
        return self.database.connection_string

    def is_production(self) -> bool:
        """Check if running in production mode"""
        return not self.debug and self.logging.level in [
            LogLevel.INFO,
            LogLevel.WARNING,
            LogLevel.ERROR,
        ]


def _coerce_env_value(raw: str) -> Any:
    """Decode JSON-looking environment values (lists, dicts, numbers)."""

    text = raw.strip()
    if text[:1] in ("[", "{"):
        try:
            return json.loads(text)
        except ValueError:
            return raw
    return raw


def _mask_url(url: str) -> str:
    parts = urlsplit(url)
    if parts.password:
        return url.replace(parts.password, "***")
    return url
