"""
Configuration management for the TSDB server.

Configuration comes from command-line flags, with environment variables as
fallbacks for every flag. This module provides typed configuration classes
with validation.

Invariants:
    - All settings have sensible defaults for local development
    - The secret key and at least one collection pattern are always required
    - Secrets are never logged or exposed in error messages

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Keep flag names stable; clients script against them
"""

from __future__ import annotations

import argparse
import logging
import os
from collections.abc import Sequence
from dataclasses import dataclass, field

from .routing import CollectionPattern, InvalidPatternError

logger = logging.getLogger(__name__)

DEFAULT_PORT = 1985


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() == "true"


@dataclass(frozen=True)
class ListenerConfig:
    """WebSocket listener configuration.

    Attributes:
        host: Interface to bind
        port: TCP port
        shutdown_timeout: Seconds to wait for in-flight connections on shutdown
    """

    host: str = "0.0.0.0"
    port: int = DEFAULT_PORT
    shutdown_timeout: float = 10.0

    @classmethod
    def from_env(cls) -> ListenerConfig:
        """Load configuration from environment variables."""
        return cls(
            host=os.getenv("TSDB_HOST", "0.0.0.0"),
            port=int(os.getenv("TSDB_PORT", str(DEFAULT_PORT))),
            shutdown_timeout=float(os.getenv("TSDB_SHUTDOWN_TIMEOUT", "10")),
        )


@dataclass(frozen=True)
class StorageConfig:
    """Snapshot persistence configuration.

    Attributes:
        storage_dir: Root of the snapshot tree; empty means ephemeral
        storage_interval: Seconds between flushes; 0 disables persistence
        sweep_interval: Seconds between TTL sweeps when persistence is disabled
        requeue_failed_flush: Re-flag records whose fragment write failed
    """

    storage_dir: str = ""
    storage_interval: int = 0
    sweep_interval: int = 60
    requeue_failed_flush: bool = False

    @classmethod
    def from_env(cls) -> StorageConfig:
        """Load configuration from environment variables."""
        return cls(
            storage_dir=os.getenv("TSDB_STORAGE_DIR", ""),
            storage_interval=int(os.getenv("TSDB_STORAGE_INTERVAL", "0")),
            sweep_interval=int(os.getenv("TSDB_SWEEP_INTERVAL", "60")),
            requeue_failed_flush=_env_bool("TSDB_REQUEUE_FAILED_FLUSH"),
        )

    @property
    def persistence_enabled(self) -> bool:
        return bool(self.storage_dir) and self.storage_interval > 0

    @property
    def maintenance_interval(self) -> int:
        """Seconds between maintenance cycles."""
        return self.storage_interval if self.persistence_enabled else self.sweep_interval


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "INFO"
    log_format: str = "json"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "json"),
        )


@dataclass
class ServerConfig:
    """Complete server configuration.

    Attributes:
        secret_key: Shared secret every connection must present first
        collections: Registered collection patterns
        listener: Listener configuration
        storage: Persistence configuration
        observability: Logging configuration
    """

    secret_key: str = ""
    collections: list[CollectionPattern] = field(default_factory=list)
    listener: ListenerConfig = field(default_factory=ListenerConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> ServerConfig:
        """Load complete configuration from environment variables.

        Raises:
            ValueError: If required configuration is missing or invalid.
        """
        config = cls(
            secret_key=os.getenv("TSDB_SECRET_KEY", ""),
            collections=parse_collections(_split_env_list(os.getenv("TSDB_COLLECTIONS", ""))),
            listener=ListenerConfig.from_env(),
            storage=StorageConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )
        config.validate()
        return config

    @classmethod
    def from_args(cls, argv: Sequence[str] | None = None) -> ServerConfig:
        """Build configuration from command-line flags.

        Flags fall back to the matching environment variables. Invalid input
        exits through argparse with a non-zero status.
        """
        parser = build_arg_parser()
        args = parser.parse_args(argv)

        if not args.secret_key:
            parser.error("--secret-key is required (or set TSDB_SECRET_KEY)")

        raw_collections = args.collection or _split_env_list(os.getenv("TSDB_COLLECTIONS", ""))
        if not raw_collections:
            parser.error("at least one --collection is required (or set TSDB_COLLECTIONS)")

        try:
            collections = parse_collections(raw_collections)
        except InvalidPatternError as e:
            parser.error(str(e))

        env_listener = ListenerConfig.from_env()
        env_storage = StorageConfig.from_env()
        env_observability = ObservabilityConfig.from_env()

        config = cls(
            secret_key=args.secret_key,
            collections=collections,
            listener=ListenerConfig(
                host=args.host or env_listener.host,
                port=args.port if args.port is not None else env_listener.port,
                shutdown_timeout=env_listener.shutdown_timeout,
            ),
            storage=StorageConfig(
                storage_dir=args.storage_dir,
                storage_interval=args.storage_interval,
                sweep_interval=env_storage.sweep_interval,
                requeue_failed_flush=env_storage.requeue_failed_flush,
            ),
            observability=ObservabilityConfig(
                log_level=args.log_level or env_observability.log_level,
                log_format=args.log_format or env_observability.log_format,
            ),
        )

        try:
            config.validate()
        except ValueError as e:
            parser.error(str(e))
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if not self.secret_key:
            raise ValueError("secret key is required")
        if not self.collections:
            raise ValueError("at least one collection pattern is required")
        if self.storage.storage_interval < 0:
            raise ValueError("storage interval must not be negative")
        if self.storage.sweep_interval <= 0:
            raise ValueError("sweep interval must be positive")
        if not 0 < self.listener.port < 65536:
            raise ValueError(f"port out of range: {self.listener.port}")
        if self.observability.log_format not in ("json", "text"):
            raise ValueError(f"log format must be json or text: {self.observability.log_format}")

        if self.storage.storage_dir and not self.storage.persistence_enabled:
            logger.warning(
                "Storage interval is 0, data will not be stored on disk",
                extra={"storage_dir": self.storage.storage_dir},
            )

    def log_config(self) -> None:
        """Log configuration (redacting secrets)."""
        logger.info(
            "Server configuration loaded",
            extra={
                "host": self.listener.host,
                "port": self.listener.port,
                "collections": [str(pattern) for pattern in self.collections],
                "storage_dir": self.storage.storage_dir or None,
                "storage_interval": self.storage.storage_interval,
                "persistence_enabled": self.storage.persistence_enabled,
                "log_level": self.observability.log_level,
            },
        )


def _split_env_list(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


def parse_collections(raw: Sequence[str]) -> list[CollectionPattern]:
    """Parse collection patterns.

    Raises:
        InvalidPatternError: On the first malformed pattern
    """
    return [CollectionPattern.parse(item) for item in raw]


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tsdb-server",
        description="In-memory per-user time-series store over WebSocket",
    )
    parser.add_argument(
        "-s",
        "--secret-key",
        default=os.getenv("TSDB_SECRET_KEY", ""),
        help="Shared secret clients send as their first message",
    )
    parser.add_argument(
        "-c",
        "--collection",
        action="append",
        help="Collection pattern name:ttl_minutes or prefix.*:ttl_minutes (repeatable)",
    )
    parser.add_argument(
        "-d",
        "--storage-dir",
        default=os.getenv("TSDB_STORAGE_DIR", ""),
        help="Snapshot root directory; empty keeps data in memory only",
    )
    parser.add_argument(
        "-i",
        "--storage-interval",
        type=int,
        default=int(os.getenv("TSDB_STORAGE_INTERVAL", "0")),
        help="Seconds between flushes to disk; 0 disables persistence",
    )
    parser.add_argument("--host", help="Interface to bind (default 0.0.0.0)")
    parser.add_argument("--port", type=int, help=f"TCP port (default {DEFAULT_PORT})")
    parser.add_argument("--log-level", help="DEBUG, INFO, WARNING or ERROR")
    parser.add_argument("--log-format", choices=("json", "text"))
    return parser
