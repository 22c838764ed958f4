"""Configuration management for the media workflow engine."""

import os
from typing import Optional, Dict, Any
from pydantic import BaseModel, Field, field_validator
from enum import Enum


class LogLevel(str, Enum):
    """Logging levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class DatabaseType(str, Enum):
    """Supported database types."""
    SQLITE = "sqlite"
    POSTGRESQL = "postgresql"
    MYSQL = "mysql"


class AppConfig(BaseModel):
    """Application configuration settings."""

    # Application settings
    app_name: str = Field(default="Media Workflow Engine", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    debug: bool = Field(default=False, description="Enable debug mode")

    # Server settings
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port")
    reload: bool = Field(default=False, description="Enable auto-reload in development")

    # Database settings
    database_url: str = Field(default="sqlite:///./mediaflow.db", description="Database connection URL")
    database_echo: bool = Field(default=False, description="Enable SQLAlchemy query logging")

    # Execution engine settings
    max_concurrent_executions: int = Field(default=4, description="Workflow runs executing at once")
    max_run_steps: int = Field(default=1000, description="Node visits per run before the run is aborted")
    autosave_delay: float = Field(default=1.0, description="Debounce window in seconds for workflow auto-save")

    # Media settings
    public_dir: str = Field(default="public", description="Directory served as public assets")
    ffmpeg_binary: str = Field(default="ffmpeg", description="ffmpeg executable name or path")
    stitch_stream_copy: bool = Field(default=False, description="Concatenate clips without re-encoding")

    # Provider settings
    replicate_api_key: Optional[str] = Field(default=None, description="Replicate API token")
    replicate_base_url: str = Field(default="https://api.replicate.com/v1")
    runway_api_secret: Optional[str] = Field(default=None, description="Runway API secret")
    runway_base_url: str = Field(default="https://api.dev.runwayml.com/v1")
    runway_api_version: str = Field(default="2024-11-06")
    provider_timeout: float = Field(default=120.0, description="HTTP timeout for provider calls in seconds")
    http_retry_attempts: int = Field(default=3, description="Attempts for transient HTTP failures")

    # Agent settings
    agent_api_key: Optional[str] = Field(default=None, description="API key for the agent chat endpoint")
    agent_base_url: str = Field(default="https://api.openai.com/v1")
    agent_model: str = Field(default="gpt-4o-mini")

    # Logging settings
    log_level: LogLevel = Field(default=LogLevel.INFO, description="Logging level")
    log_format: Optional[str] = Field(default=None, description="Text log format")
    log_file: Optional[str] = Field(default=None, description="Log file path")
    log_structured: bool = Field(default=False, description="Emit JSON log lines")
    log_max_size: int = Field(default=10485760, description="Maximum log file size in bytes")  # 10MB
    log_backup_count: int = Field(default=5, description="Number of log backup files to keep")

    # Security settings
    cors_origins: list = Field(default=["*"], description="CORS allowed origins")
    cors_methods: list = Field(default=["GET", "POST", "PUT", "DELETE"], description="CORS allowed methods")

    @field_validator('database_url')
    @classmethod
    def validate_database_url(cls, v):
        """Validate database URL format."""
        if not v:
            raise ValueError("Database URL cannot be empty")
        scheme = v.split('://')[0].split('+')[0].lower()
        supported = [db_type.value for db_type in DatabaseType]
        if scheme not in supported:
            raise ValueError(f"Unsupported database scheme: {scheme}. Supported: {supported}")
        return v

    @field_validator('port')
    @classmethod
    def validate_port(cls, v):
        if not 1 <= v <= 65535:
            raise ValueError("Port must be between 1 and 65535")
        return v

    @field_validator('max_concurrent_executions', 'max_run_steps', 'http_retry_attempts')
    @classmethod
    def validate_positive_limits(cls, v):
        if v < 1:
            raise ValueError("Limit must be at least 1")
        return v

    @field_validator('autosave_delay', 'provider_timeout')
    @classmethod
    def validate_durations(cls, v):
        if v <= 0:
            raise ValueError("Duration must be positive")
        return v

    @property
    def database_type(self) -> DatabaseType:
        return DatabaseType(self.database_url.split('://')[0].split('+')[0].lower())

    @property
    def is_sqlite(self) -> bool:
        return self.database_type == DatabaseType.SQLITE

    def get_database_connect_args(self) -> Dict[str, Any]:
        """SQLite connections are shared with run worker threads."""
        if self.is_sqlite:
            return {"check_same_thread": False}
        return {}

    def get_uvicorn_config(self) -> Dict[str, Any]:
        """Get Uvicorn server configuration."""
        return {
            "host": self.host,
            "port": self.port,
            "reload": self.reload,
            "log_level": self.log_level.value.lower(),
            "access_log": self.debug
        }

    @classmethod
    def from_env(cls) -> 'AppConfig':
        """Create configuration from environment variables.

        Settings read ``MEDIAFLOW_<FIELD>``; vendor credentials keep their
        vendor's variable names. Unset variables fall back to field defaults.
        """
        values = {}
        for field_name, (env_key, converter) in _ENV_FIELDS.items():
            raw = os.getenv(env_key)
            if raw is not None:
                values[field_name] = converter(raw)
        return cls(**values)


def _as_bool(value: str) -> bool:
    return value.lower() in ('true', '1', 'yes', 'on')


def _as_list(value: str) -> list:
    return [item.strip() for item in value.split(',') if item.strip()]


def _prefixed(field_name: str) -> str:
    return f"MEDIAFLOW_{field_name.upper()}"


_CONVERTERS = {bool: _as_bool, int: int, float: float, list: _as_list, LogLevel: LogLevel}

_VENDOR_ENV_KEYS = {
    "replicate_api_key": "REPLICATE_API_KEY",
    "runway_api_secret": "RUNWAYML_API_SECRET",
    "agent_api_key": "AGENT_API_KEY",
}


def _build_env_fields() -> Dict[str, tuple]:
    fields = {}
    for name, info in AppConfig.model_fields.items():
        converter = _CONVERTERS.get(info.annotation, str)
        fields[name] = (_VENDOR_ENV_KEYS.get(name, _prefixed(name)), converter)
    return fields


_ENV_FIELDS = _build_env_fields()


# Global configuration instance
_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = AppConfig.from_env()
    return _config


def load_config(config_file: Optional[str] = None) -> AppConfig:
    """Load a dotenv file (``config_file`` or ``.env``) and build the configuration."""
    global _config

    from dotenv import load_dotenv
    if config_file and os.path.exists(config_file):
        load_dotenv(config_file)
    elif os.path.exists('.env'):
        load_dotenv('.env')

    _config = AppConfig.from_env()
    return _config


def reset_config():
    """Reset the global configuration instance (mainly for testing)."""
    global _config
    _config = None


def _ensure_directory(path: str, purpose: str, errors: list) -> None:
    if path and not os.path.exists(path):
        try:
            os.makedirs(path, exist_ok=True)
        except OSError as e:
            errors.append(f"Cannot create {purpose} directory {path}: {e}")


def validate_config(config: AppConfig) -> None:
    """Create directories the configuration points at; raise ValueError if that fails."""
    errors = []

    if config.is_sqlite:
        db_path = config.database_url.split(":///", 1)[-1]
        if db_path != ":memory:":
            _ensure_directory(os.path.dirname(db_path), "database", errors)

    if config.log_file:
        _ensure_directory(os.path.dirname(config.log_file), "log", errors)

    _ensure_directory(config.public_dir, "public asset", errors)

    if errors:
        raise ValueError(f"Configuration validation failed: {'; '.join(errors)}")


def get_testing_config(**overrides) -> AppConfig:
    """In-memory database, quiet logging and a small worker pool."""
    settings = dict(
        debug=True,
        database_url="sqlite:///:memory:",
        log_level=LogLevel.WARNING,
        max_concurrent_executions=2,
        autosave_delay=0.05,
    )
    settings.update(overrides)
    return AppConfig(**settings)
