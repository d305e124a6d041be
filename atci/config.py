"""
Configuration management for the transcript worker.

Two layers live here:

- AtciConfig is the persisted configuration record (tools, model, watch
  roots, hooks). It is stored as TOML at $ATCI_CONFIG_PATH or the
  platform default and validated with pydantic.
- WorkerConfig carries the runtime knobs of the long-running worker
  (log level, data directory, loop cadences, dev HTTP server) and is read
  from environment variables.
"""

import hashlib
import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Iterable

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from .errors import ConfigError


QUEUE_BACKENDS = ("file", "sqlite")

# Fields that must point at an executable before the pipeline can run
REQUIRED_TOOL_FIELDS = ("ffmpeg_path", "ffprobe_path", "whispercli_path")


class AtciConfig(BaseModel):
    """Persisted configuration record"""

    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    ffmpeg_path: str = ""
    ffprobe_path: str = ""
    whispercli_path: str = ""
    model_name: str = ""
    watch_directories: List[str] = Field(default_factory=list)
    password: Optional[str] = None
    allow_whisper: bool = True
    allow_subtitles: bool = True
    processing_success_command: str = ""
    processing_failure_command: str = ""
    stream_chunk_size: int = Field(default=60, gt=0)
    queue_backend: str = "file"

    def validate_required(self, fields: Iterable[str] = REQUIRED_TOOL_FIELDS) -> None:
        """Raise ConfigError naming every required field that is empty"""
        missing = [name for name in fields if not getattr(self, name)]
        if missing:
            raise ConfigError(f"Missing required configuration values: {', '.join(missing)}")
        if self.queue_backend not in QUEUE_BACKENDS:
            raise ConfigError(
                f"Unsupported queue backend: {self.queue_backend} "
                f"(expected one of {', '.join(QUEUE_BACKENDS)})"
            )

    def model_path(self, atci_dir: Path, model_name: Optional[str] = None) -> Path:
        """Resolve a logical model name to <atci_dir>/models/<name>.bin"""
        name = model_name or self.model_name
        return Path(atci_dir) / "models" / f"{name}.bin"

    @property
    def is_complete(self) -> bool:
        return all(getattr(self, name) for name in REQUIRED_TOOL_FIELDS) and bool(self.model_name)


def get_config_path() -> Path:
    """Config file path: $ATCI_CONFIG_PATH or the platform default"""
    env_path = os.getenv("ATCI_CONFIG_PATH")
    if env_path:
        return Path(env_path)
    config_home = os.getenv("XDG_CONFIG_HOME") or str(Path.home() / ".config")
    return Path(config_home) / "atci" / "config.toml"


def get_config_path_sha(config_path: Optional[Path] = None) -> str:
    """Short stable id of the config path, used to scope PID files"""
    path = config_path if config_path is not None else get_config_path()
    return hashlib.sha256(str(path).encode("utf-8")).hexdigest()[:8]


def load_config(config_path: Optional[Path] = None) -> AtciConfig:
    """
    Load the configuration record.

    A missing file yields the defaults. Unknown keys and values of the
    wrong type raise ConfigError.
    """
    path = Path(config_path) if config_path is not None else get_config_path()
    if not path.exists():
        return AtciConfig()

    try:
        with open(path, "rb") as f:
            raw = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Invalid config file {path}: {e}") from e

    try:
        return AtciConfig.model_validate(raw)
    except PydanticValidationError as e:
        raise ConfigError(f"Invalid config file {path}: {e}") from e


def _parse_bool(field_name: str, value: str) -> bool:
    lowered = value.strip().lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    raise ConfigError(f"Invalid boolean value for {field_name}: {value}")


def set_config_field(cfg: AtciConfig, field_name: str, value: str) -> None:
    """Set a single field from its string form, as external surfaces do"""
    if field_name not in AtciConfig.model_fields:
        raise ConfigError(f"Unknown field: {field_name}")

    try:
        if field_name == "watch_directories":
            if value not in cfg.watch_directories:
                cfg.watch_directories = cfg.watch_directories + [value]
        elif field_name in ("allow_whisper", "allow_subtitles"):
            setattr(cfg, field_name, _parse_bool(field_name, value))
        elif field_name == "stream_chunk_size":
            try:
                cfg.stream_chunk_size = int(value)
            except ValueError:
                raise ConfigError(f"Invalid number value for stream_chunk_size: {value}")
        else:
            setattr(cfg, field_name, value)
    except PydanticValidationError as e:
        raise ConfigError(f"Invalid value for {field_name}: {e}") from e


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


@dataclass
class WorkerConfig:
    """Runtime configuration for the long-running worker"""

    # Data area: queue files, catalog, models, PID files, logs
    ATCI_HOME: Path = field(default_factory=lambda: Path.home() / ".atci")

    # Loop cadences
    IDLE_INTERVAL_MS: int = 2000
    WATCH_INTERVAL_MS: int = 2000
    WATCH_QUIET_PERIOD_SEC: float = 3.0
    CANCEL_POLL_MS: int = 500

    # Logging
    LOG_LEVEL: str = "INFO"

    # HTTP server
    ENABLE_HTTP_SERVER: bool = False
    HTTP_PORT: int = 4620

    # Single-instance takeover of live peers
    TAKEOVER: bool = False

    @classmethod
    def from_env(cls) -> 'WorkerConfig':
        """Load configuration from environment variables"""
        config = cls()

        config.ATCI_HOME = Path(os.getenv("ATCI_HOME", str(Path.home() / ".atci")))

        try:
            config.IDLE_INTERVAL_MS = int(os.getenv("WORKER_IDLE_MS", "2000"))
            config.WATCH_INTERVAL_MS = int(os.getenv("WORKER_WATCH_MS", "2000"))
            config.WATCH_QUIET_PERIOD_SEC = float(os.getenv("WATCH_QUIET_PERIOD_SEC", "3"))
            config.CANCEL_POLL_MS = int(os.getenv("CANCEL_POLL_MS", "500"))
            config.HTTP_PORT = int(os.getenv("WORKER_HTTP_PORT", "4620"))
        except ValueError as e:
            raise ConfigError(f"Invalid numeric environment variable: {e}") from e

        config.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
        config.ENABLE_HTTP_SERVER = _env_bool("WORKER_DEV_HTTP", "false")
        config.TAKEOVER = _env_bool("ATCI_TAKEOVER", "false")

        return config

    def validate(self) -> None:
        """Validate runtime values"""
        problems = []

        if self.IDLE_INTERVAL_MS <= 0:
            problems.append("WORKER_IDLE_MS must be positive")
        if self.WATCH_INTERVAL_MS <= 0:
            problems.append("WORKER_WATCH_MS must be positive")
        if self.WATCH_QUIET_PERIOD_SEC < 0:
            problems.append("WATCH_QUIET_PERIOD_SEC must not be negative")
        if self.CANCEL_POLL_MS <= 0:
            problems.append("CANCEL_POLL_MS must be positive")

        if problems:
            raise ConfigError(f"Invalid worker configuration: {'; '.join(problems)}")
