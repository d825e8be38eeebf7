"""
Configuration management for Cerberus.

Settings come from environment variables and are overridden by command-line
flags. This module provides typed configuration classes with validation.

Invariants:
    - All settings have defaults that target a local single node
    - Passwords are never logged or exposed in error messages
    - The replication batch size is fixed; only code (tests) may override it

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Keep environment variable names prefixed with CERBERUS_
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, replace
from enum import Enum

logger = logging.getLogger(__name__)

DEFAULT_HOST = "localhost"
DEFAULT_TCP_PORT = 1113
DEFAULT_BATCH_SIZE = 500
RECENT_COUNT = 50


class LogBackend(Enum):
    """Supported event log backends."""

    KURRENTDB = "kurrentdb"
    MEMORY = "memory"


@dataclass(frozen=True)
class LogEndpoint:
    """Where and how to reach one log node.

    Attributes:
        host: Node host
        port: Node port
        login: User login (optional)
        password: User password (optional, empty when login has none)
        tls: Whether to use TLS
        backend: Which backend implementation to use
    """

    host: str = DEFAULT_HOST
    port: int = DEFAULT_TCP_PORT
    login: str | None = None
    password: str | None = None
    tls: bool = False
    backend: LogBackend = LogBackend.KURRENTDB

    @classmethod
    def from_env(cls) -> LogEndpoint:
        """Load configuration from environment variables."""
        backend_str = os.getenv("CERBERUS_BACKEND", "kurrentdb").lower()
        try:
            backend = LogBackend(backend_str)
        except ValueError:
            raise ValueError(
                f"Invalid CERBERUS_BACKEND '{backend_str}'. Must be one of: kurrentdb, memory"
            )

        return cls(
            host=os.getenv("CERBERUS_HOST", DEFAULT_HOST),
            port=parse_port(os.getenv("CERBERUS_TCP_PORT", str(DEFAULT_TCP_PORT)), "CERBERUS_TCP_PORT"),
            login=os.getenv("CERBERUS_LOGIN"),
            password=os.getenv("CERBERUS_PASSWORD"),
            tls=os.getenv("CERBERUS_TLS", "false").lower() == "true",
            backend=backend,
        )

    def with_overrides(
        self,
        host: str | None = None,
        port: int | None = None,
        login: str | None = None,
        password: str | None = None,
    ) -> LogEndpoint:
        """Copy with the given non-None values replaced."""
        changes = {
            key: value
            for key, value in (
                ("host", host),
                ("port", port),
                ("login", login),
                ("password", password),
            )
            if value is not None
        }
        return replace(self, **changes)

    def validate(self) -> None:
        """Validate the endpoint.

        Raises:
            ValueError: If the endpoint is unusable
        """
        if not self.host:
            raise ValueError("Host must not be empty")
        if not 0 < self.port < 65536:
            raise ValueError(f"Port {self.port} is out of range")
        if self.password and not self.login:
            raise ValueError("A password was given without a login")

    def __str__(self) -> str:
        return f"{self.host}:{self.port}"


@dataclass(frozen=True)
class ReplicationConfig:
    """Replication engine configuration.

    Attributes:
        batch_size: Records appended per call by the stream and category strategies
        skip_copied_streams: Copy each destination stream at most once per run
    """

    batch_size: int = DEFAULT_BATCH_SIZE
    skip_copied_streams: bool = True

    @classmethod
    def from_env(cls) -> ReplicationConfig:
        """Load configuration from environment variables.

        The batch size is not read from the environment.
        """
        return cls(
            skip_copied_streams=os.getenv("CERBERUS_SKIP_COPIED_STREAMS", "true").lower() == "true",
        )

    def validate(self) -> None:
        if self.batch_size <= 0:
            raise ValueError("batch_size must be greater than 0")


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "INFO"
    log_format: str = "text"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "text"),
        )


@dataclass
class CerberusConfig:
    """Complete tool configuration.

    Attributes:
        source: Source (or only) node
        replication: Replication engine settings
        observability: Logging settings
    """

    source: LogEndpoint = field(default_factory=LogEndpoint)
    replication: ReplicationConfig = field(default_factory=ReplicationConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> CerberusConfig:
        """Load complete configuration from environment variables.

        Raises:
            ValueError: If configuration is missing or invalid.
        """
        config = cls(
            source=LogEndpoint.from_env(),
            replication=ReplicationConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )
        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        self.source.validate()
        self.replication.validate()
        if self.observability.log_format not in ("json", "text"):
            raise ValueError(
                f"Invalid LOG_FORMAT '{self.observability.log_format}'. Must be one of: json, text"
            )

    def log_config(self) -> None:
        """Log configuration (redacting secrets)."""
        logger.debug(
            "Configuration loaded",
            extra={
                "source": str(self.source),
                "backend": self.source.backend.value,
                "login": self.source.login,
                "batch_size": self.replication.batch_size,
                "log_level": self.observability.log_level,
            },
        )


def parse_port(value: str, name: str) -> int:
    """Parse a TCP port.

    Raises:
        ValueError: If value is not a port number
    """
    try:
        port = int(value)
    except ValueError:
        raise ValueError(f"{name} parse error: {value!r} is not a number")
    if not 0 < port < 65536:
        raise ValueError(f"{name} parse error: {port} is out of range")
    return port
