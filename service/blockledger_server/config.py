"""
Configuration management for the Block Ledger server.

All configuration is done via environment variables - no config files inside containers.
This module provides typed configuration classes with validation.

Invariants:
    - All settings have sensible defaults for local development
    - Production deployments MUST set an explicit DATA_DIR
    - Secrets are never logged or exposed in error messages

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Deprecate settings by logging warnings but continuing to support them
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HttpConfig:
    """HTTP RPC server configuration.

    Attributes:
        bind_address: Address to bind the HTTP server (host:port)
        cors_origins: Allowed CORS origins
        max_page_size: Maximum notifications returned per replay page
    """

    bind_address: str = "0.0.0.0:8545"
    cors_origins: tuple[str, ...] = ("*",)
    max_page_size: int = 1000

    @classmethod
    def from_env(cls) -> HttpConfig:
        """Load configuration from environment variables."""
        origins = os.getenv("HTTP_CORS_ORIGINS", "*")
        return cls(
            bind_address=os.getenv("HTTP_BIND", "0.0.0.0:8545"),
            cors_origins=tuple(o.strip() for o in origins.split(",") if o.strip()),
            max_page_size=int(os.getenv("HTTP_MAX_PAGE_SIZE", "1000")),
        )


@dataclass(frozen=True)
class StorageConfig:
    """Local storage configuration.

    Attributes:
        data_dir: Directory for the ledger database
        db_name: Ledger database file name
        wal_mode: SQLite WAL mode enabled
        busy_timeout_ms: SQLite busy timeout in milliseconds
    """

    data_dir: str = "/var/lib/blockledger"
    db_name: str = "ledger.db"
    wal_mode: bool = True
    busy_timeout_ms: int = 5000

    @classmethod
    def from_env(cls) -> StorageConfig:
        """Load configuration from environment variables."""
        return cls(
            data_dir=os.getenv("DATA_DIR", "/var/lib/blockledger"),
            db_name=os.getenv("LEDGER_DB_NAME", "ledger.db"),
            wal_mode=os.getenv("SQLITE_WAL_MODE", "true").lower() == "true",
            busy_timeout_ms=int(os.getenv("SQLITE_BUSY_TIMEOUT_MS", "5000")),
        )


@dataclass(frozen=True)
class LedgerPolicyConfig:
    """Ledger acceptance and commit configuration.

    Attributes:
        allowed_creators: Identities allowed to append (empty = anyone)
        commit_window_ms: Appends within this window share a commit number
        stream_page_size: Rows read per notification page
        stream_poll_interval: Seconds between table polls for live subscribers
    """

    allowed_creators: tuple[str, ...] = ()
    commit_window_ms: int = 0
    stream_page_size: int = 500
    stream_poll_interval: float = 1.0

    @classmethod
    def from_env(cls) -> LedgerPolicyConfig:
        """Load configuration from environment variables."""
        creators = os.getenv("LEDGER_ALLOWED_CREATORS", "")
        return cls(
            allowed_creators=tuple(c.strip() for c in creators.split(",") if c.strip()),
            commit_window_ms=int(os.getenv("LEDGER_COMMIT_WINDOW_MS", "0")),
            stream_page_size=int(os.getenv("STREAM_PAGE_SIZE", "500")),
            stream_poll_interval=float(os.getenv("STREAM_POLL_INTERVAL", "1.0")),
        )


@dataclass(frozen=True)
class KafkaConfig:
    """Kafka/Redpanda notification relay configuration.

    Attributes:
        enabled: Whether notifications are relayed to Kafka
        brokers: Comma-separated list of broker addresses
        topic: Topic name for notifications
        sasl_mechanism: SASL authentication mechanism (PLAIN, SCRAM-SHA-256, etc.)
        sasl_username: SASL username (if authentication enabled)
        sasl_password: SASL password (if authentication enabled)
        security_protocol: Security protocol (PLAINTEXT, SSL, SASL_PLAINTEXT, SASL_SSL)
        ssl_cafile: Path to CA certificate file
        acks: Producer acknowledgment level ('all' for strongest durability)
        enable_idempotence: Enable idempotent producer
        retry_backoff_ms: First delay between relay retries
        max_backoff_ms: Largest delay between relay retries
    """

    enabled: bool = False
    brokers: str = "localhost:9092"
    topic: str = "blockledger-notifications"
    sasl_mechanism: str | None = None
    sasl_username: str | None = None
    sasl_password: str | None = None
    security_protocol: str = "PLAINTEXT"
    ssl_cafile: str | None = None
    acks: str = "all"
    enable_idempotence: bool = True
    retry_backoff_ms: int = 200
    max_backoff_ms: int = 30000

    @classmethod
    def from_env(cls) -> KafkaConfig:
        """Load configuration from environment variables."""
        return cls(
            enabled=os.getenv("KAFKA_RELAY_ENABLED", "false").lower() == "true",
            brokers=os.getenv("KAFKA_BROKERS", "localhost:9092"),
            topic=os.getenv("KAFKA_TOPIC", "blockledger-notifications"),
            sasl_mechanism=os.getenv("KAFKA_SASL_MECHANISM"),
            sasl_username=os.getenv("KAFKA_SASL_USERNAME"),
            sasl_password=os.getenv("KAFKA_SASL_PASSWORD"),
            security_protocol=os.getenv("KAFKA_SECURITY_PROTOCOL", "PLAINTEXT"),
            ssl_cafile=os.getenv("KAFKA_SSL_CAFILE"),
            acks=os.getenv("KAFKA_ACKS", "all"),
            enable_idempotence=os.getenv("KAFKA_ENABLE_IDEMPOTENCE", "true").lower() == "true",
            retry_backoff_ms=int(os.getenv("KAFKA_RETRY_BACKOFF_MS", "200")),
            max_backoff_ms=int(os.getenv("KAFKA_MAX_BACKOFF_MS", "30000")),
        )


@dataclass(frozen=True)
class ObservabilityConfig:
    """Observability and logging configuration.

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
        http: HTTP RPC server configuration
        storage: Local storage configuration
        policy: Ledger acceptance and commit configuration
        kafka: Kafka relay configuration
        observability: Observability configuration
    """

    http: HttpConfig = field(default_factory=HttpConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    policy: LedgerPolicyConfig = field(default_factory=LedgerPolicyConfig)
    kafka: KafkaConfig = field(default_factory=KafkaConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> ServerConfig:
        """Load complete configuration from environment variables.

        Returns:
            ServerConfig with all sections populated from environment.

        Raises:
            ValueError: If required configuration is missing or invalid.
        """
        config = cls(
            http=HttpConfig.from_env(),
            storage=StorageConfig.from_env(),
            policy=LedgerPolicyConfig.from_env(),
            kafka=KafkaConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )

        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if ":" not in self.http.bind_address:
            raise ValueError(f"HTTP_BIND must be host:port, got '{self.http.bind_address}'")

        if self.http.max_page_size <= 0:
            raise ValueError("HTTP_MAX_PAGE_SIZE must be positive")

        if self.policy.commit_window_ms < 0:
            raise ValueError("LEDGER_COMMIT_WINDOW_MS must not be negative")

        if self.kafka.enabled:
            if not self.kafka.brokers:
                raise ValueError("KAFKA_BROKERS is required when KAFKA_RELAY_ENABLED=true")
            if not self.kafka.topic:
                raise ValueError("KAFKA_TOPIC is required when KAFKA_RELAY_ENABLED=true")

        if self.observability.log_format not in ("json", "text"):
            raise ValueError("LOG_FORMAT must be one of: json, text")

        if not os.path.exists(self.storage.data_dir):
            logger.warning(
                f"Data directory does not exist: {self.storage.data_dir}. "
                "It will be created on first write."
            )

    def log_config(self) -> None:
        """Log configuration (redacting secrets)."""
        logger.info(
            "Server configuration loaded",
            extra={
                "http_bind": self.http.bind_address,
                "data_dir": self.storage.data_dir,
                "db_name": self.storage.db_name,
                "allowed_creators": len(self.policy.allowed_creators) or "any",
                "commit_window_ms": self.policy.commit_window_ms,
                "kafka_relay": self.kafka.enabled,
                "kafka_topic": self.kafka.topic if self.kafka.enabled else None,
                "log_level": self.observability.log_level,
            },
        )
