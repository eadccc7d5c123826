"""
Spooled client and worker configuration.

Configuration priority (highest to lowest):
1. Environment variables (SPOOLED_*)
2. YAML config file (under 'client:' and 'worker:' keys)
3. Dataclass defaults
"""

import os
import socket
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml

from core.resilience import CircuitBreakerConfig, RetryConfig

DEFAULT_BASE_URL = "https://api.spooled.cloud"
DEFAULT_USER_AGENT = "spooled-python/0.1.0"
DEFAULT_CONFIG_PATH = Path("config.yaml")

_TRUE_VALUES = ("true", "1", "yes")


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in _TRUE_VALUES


# Environment variable -> (section, key)
_CLIENT_ENV = {
    "SPOOLED_BASE_URL": "base_url",
    "SPOOLED_API_KEY": "api_key",
    "SPOOLED_ACCESS_TOKEN": "access_token",
    "SPOOLED_REFRESH_TOKEN": "refresh_token",
    "SPOOLED_ADMIN_KEY": "admin_key",
    "SPOOLED_USER_AGENT": "user_agent",
    "SPOOLED_TIMEOUT_SECONDS": "timeout_seconds",
    "SPOOLED_AUTO_REFRESH_TOKEN": "auto_refresh_token",
    "SPOOLED_REFRESH_MARGIN_SECONDS": "refresh_margin_seconds",
    "SPOOLED_CIRCUIT_BREAKER_ENABLED": "circuit_breaker_enabled",
}

_RETRY_ENV = {
    "SPOOLED_MAX_RETRIES": "max_retries",
    "SPOOLED_RETRY_BASE_DELAY": "base_delay",
    "SPOOLED_RETRY_MAX_DELAY": "max_delay",
    "SPOOLED_RETRY_FACTOR": "factor",
    "SPOOLED_RETRY_JITTER": "jitter",
}

_BREAKER_ENV = {
    "SPOOLED_CB_FAILURE_THRESHOLD": "failure_threshold",
    "SPOOLED_CB_SUCCESS_THRESHOLD": "success_threshold",
    "SPOOLED_CB_OPEN_TIMEOUT": "open_timeout_seconds",
}

_WORKER_ENV = {
    "SPOOLED_QUEUE_NAME": "queue_name",
    "SPOOLED_WORKER_CONCURRENCY": "concurrency",
    "SPOOLED_POLL_INTERVAL": "poll_interval_seconds",
    "SPOOLED_LEASE_DURATION": "lease_duration_seconds",
    "SPOOLED_HEARTBEAT_FRACTION": "heartbeat_fraction",
    "SPOOLED_SHUTDOWN_TIMEOUT": "shutdown_timeout_seconds",
    "SPOOLED_WORKER_HOSTNAME": "hostname",
    "SPOOLED_WORKER_TYPE": "worker_type",
}


def _coerce(cls: type, data: Dict[str, Any]) -> Dict[str, Any]:
    """Convert string values (from env/YAML) to the dataclass field types."""
    types = {f.name: f.type for f in fields(cls)}
    out: Dict[str, Any] = {}
    for key, value in data.items():
        if key not in types:
            raise ValueError(f"Unknown {cls.__name__} option: {key}")
        declared = types[key]
        if value is None:
            out[key] = value
        elif declared is bool:
            out[key] = _as_bool(value)
        elif declared is int:
            out[key] = int(value)
        elif declared is float:
            out[key] = float(value)
        else:
            out[key] = value
    return out


def _env_overrides(mapping: Dict[str, str]) -> Dict[str, Any]:
    data: Dict[str, Any] = {}
    for env_name, key in mapping.items():
        value = os.getenv(env_name)
        if value is not None and value != "":
            data[key] = value
    return data


def _read_yaml(config_path: Path) -> Dict[str, Any]:
    if not config_path.exists():
        return {}
    with open(config_path, "r") as f:
        return yaml.safe_load(f) or {}


@dataclass
class ClientConfig:
    """Connection, credential and resilience settings for SpooledClient.

    Load from environment using ClientConfig.from_env(), or from YAML plus
    environment using ClientConfig.load_config().
    """

    base_url: str = DEFAULT_BASE_URL
    api_key: Optional[str] = None
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    admin_key: Optional[str] = None
    user_agent: str = DEFAULT_USER_AGENT
    timeout_seconds: float = 30.0
    headers: Dict[str, str] = field(default_factory=dict)

    retry: RetryConfig = field(default_factory=RetryConfig)
    circuit_breaker: CircuitBreakerConfig = field(default_factory=CircuitBreakerConfig)
    circuit_breaker_enabled: bool = True

    auto_refresh_token: bool = True
    refresh_margin_seconds: float = 60.0

    def __post_init__(self) -> None:
        if not self.base_url:
            raise ValueError("base_url is required")
        if not self.base_url.startswith(("http://", "https://")):
            raise ValueError(f"base_url must be an http(s) URL, got {self.base_url!r}")
        self.base_url = self.base_url.rstrip("/")
        if self.timeout_seconds <= 0:
            raise ValueError(f"timeout_seconds must be > 0, got {self.timeout_seconds}")
        if self.refresh_margin_seconds < 0:
            raise ValueError(
                f"refresh_margin_seconds must be >= 0, got {self.refresh_margin_seconds}"
            )

    @property
    def has_credentials(self) -> bool:
        return bool(self.api_key or self.access_token or self.admin_key)

    @classmethod
    def _build(
        cls,
        client_data: Dict[str, Any],
        retry_data: Dict[str, Any],
        breaker_data: Dict[str, Any],
    ) -> "ClientConfig":
        kwargs = _coerce(cls, client_data)
        kwargs["retry"] = RetryConfig(**_coerce(RetryConfig, retry_data))
        kwargs["circuit_breaker"] = CircuitBreakerConfig(
            **_coerce(CircuitBreakerConfig, breaker_data)
        )
        return cls(**kwargs)

    @classmethod
    def from_env(cls) -> "ClientConfig":
        """Load configuration from environment variables.

        Optional environment variables (with defaults):
            SPOOLED_BASE_URL: https://api.spooled.cloud
            SPOOLED_API_KEY / SPOOLED_ACCESS_TOKEN / SPOOLED_REFRESH_TOKEN
            SPOOLED_ADMIN_KEY
            SPOOLED_TIMEOUT_SECONDS: 30
            SPOOLED_MAX_RETRIES: 3
            SPOOLED_RETRY_BASE_DELAY / SPOOLED_RETRY_MAX_DELAY: 1 / 30
            SPOOLED_RETRY_FACTOR: 2.0
            SPOOLED_RETRY_JITTER: true
            SPOOLED_CIRCUIT_BREAKER_ENABLED: true
            SPOOLED_CB_FAILURE_THRESHOLD / SPOOLED_CB_SUCCESS_THRESHOLD: 5 / 3
            SPOOLED_CB_OPEN_TIMEOUT: 30
            SPOOLED_AUTO_REFRESH_TOKEN: true
            SPOOLED_REFRESH_MARGIN_SECONDS: 60

        Raises:
            ValueError: If a value is malformed or out of range
        """
        return cls._build(
            _env_overrides(_CLIENT_ENV),
            _env_overrides(_RETRY_ENV),
            _env_overrides(_BREAKER_ENV),
        )

    @classmethod
    def load_config(cls, config_path: Optional[Path] = None) -> "ClientConfig":
        """Load configuration from YAML file with environment variable overrides.

        Reads the 'client:' section; nested 'retry:' and 'circuit_breaker:'
        mappings configure the resilience primitives.

        Args:
            config_path: Path to YAML config file. Defaults to ./config.yaml.
        """
        client_data = dict(_read_yaml(Path(config_path or DEFAULT_CONFIG_PATH)).get("client") or {})
        retry_data = dict(client_data.pop("retry", None) or {})
        breaker_data = dict(client_data.pop("circuit_breaker", None) or {})

        client_data.update(_env_overrides(_CLIENT_ENV))
        retry_data.update(_env_overrides(_RETRY_ENV))
        breaker_data.update(_env_overrides(_BREAKER_ENV))
        return cls._build(client_data, retry_data, breaker_data)


@dataclass
class WorkerConfig:
    """Polling worker settings.

    Times are in seconds. Heartbeats fire every
    lease_duration_seconds * heartbeat_fraction.
    """

    queue_name: str = ""
    concurrency: int = 5
    poll_interval_seconds: float = 1.0
    lease_duration_seconds: float = 30.0
    heartbeat_fraction: float = 0.5
    shutdown_timeout_seconds: float = 30.0
    hostname: str = ""
    worker_type: str = "python"
    version: str = "0.1.0"
    metadata: Dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.queue_name:
            raise ValueError("queue_name is required")
        if not 1 <= self.concurrency <= 100:
            raise ValueError(f"concurrency must be between 1 and 100, got {self.concurrency}")
        if self.poll_interval_seconds <= 0:
            raise ValueError(
                f"poll_interval_seconds must be > 0, got {self.poll_interval_seconds}"
            )
        if self.lease_duration_seconds <= 0:
            raise ValueError(
                f"lease_duration_seconds must be > 0, got {self.lease_duration_seconds}"
            )
        if not 0 < self.heartbeat_fraction < 1:
            raise ValueError(
                f"heartbeat_fraction must be between 0 and 1 (exclusive), got {self.heartbeat_fraction}"
            )
        if self.shutdown_timeout_seconds < 0:
            raise ValueError(
                f"shutdown_timeout_seconds must be >= 0, got {self.shutdown_timeout_seconds}"
            )
        if not self.hostname:
            self.hostname = socket.gethostname() or "unknown"

    @property
    def heartbeat_interval_seconds(self) -> float:
        return self.lease_duration_seconds * self.heartbeat_fraction

    @classmethod
    def from_env(cls, **overrides: Any) -> "WorkerConfig":
        """Load worker configuration from environment variables.

        Required environment variables (unless passed as overrides):
            SPOOLED_QUEUE_NAME: Queue to claim jobs from

        Raises:
            ValueError: If required variables are missing or malformed
        """
        data = _env_overrides(_WORKER_ENV)
        data.update(overrides)
        if not data.get("queue_name"):
            raise ValueError("SPOOLED_QUEUE_NAME environment variable is required")
        return cls(**_coerce(cls, data))

    @classmethod
    def load_config(cls, config_path: Optional[Path] = None) -> "WorkerConfig":
        """Load the 'worker:' section of a YAML file with environment overrides."""
        data = dict(_read_yaml(Path(config_path or DEFAULT_CONFIG_PATH)).get("worker") or {})
        data.update(_env_overrides(_WORKER_ENV))
        return cls(**_coerce(cls, data))


def load_config(
    config_path: Optional[Path] = None,
) -> Tuple[ClientConfig, Optional[WorkerConfig]]:
    """
    Load client and (if present) worker configuration from one YAML file.

    Returns:
        (ClientConfig, WorkerConfig or None when no queue is configured)
    """
    config_path = Path(config_path or DEFAULT_CONFIG_PATH)
    client = ClientConfig.load_config(config_path)
    worker_section = _read_yaml(config_path).get("worker") or {}
    if not (worker_section.get("queue_name") or os.getenv("SPOOLED_QUEUE_NAME")):
        return client, None
    return client, WorkerConfig.load_config(config_path)
