"""
Centralized configuration for Keyward.

All configuration is loaded from environment variables with sensible defaults.
The core never reads the environment on its own; the composition root in
keyward.app passes these values down.

Usage:
    from keyward.config import get_config
    cfg = get_config()
    print(cfg.storage.kind)     # "file"
    print(cfg.cache.ttl)        # 300
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("true", "1", "yes", "on")


def _default_data_dir() -> Path:
    return Path.home() / ".keyward" / "data"


@dataclass(frozen=True)
class DatabaseSettings:
    """PostgreSQL connection parameters (relational storage backend)."""

    host: str = ""  # empty = Unix socket (peer auth); set to 127.0.0.1 for TCP
    port: int = 5432
    name: str = "keyward"
    user: str = "keyward"
    password: str = ""
    pool_min: int = 1
    pool_max: int = 10

    @property
    def dsn(self) -> str:
        """Return a psycopg2-compatible DSN string."""
        parts = [f"dbname={self.name}"]
        if self.host:
            parts.append(f"host={self.host}")
        parts.append(f"port={self.port}")
        if self.user:
            parts.append(f"user={self.user}")
        if self.password:
            parts.append(f"password={self.password}")
        return " ".join(parts)

    @property
    def dict(self) -> dict[str, str | int]:
        """Return a psycopg2.connect() kwargs dict."""
        d: dict[str, str | int] = {
            "dbname": self.name,
            "port": self.port,
        }
        if self.host:
            d["host"] = self.host
        if self.user:
            d["user"] = self.user
        if self.password:
            d["password"] = self.password
        return d


@dataclass(frozen=True)
class RedisSettings:
    """Redis connection parameters (networked cache backend)."""

    host: str = "127.0.0.1"
    port: int = 6379
    db: int = 0
    password: str = ""

    @property
    def url(self) -> str:
        auth = f":{self.password}@" if self.password else ""
        return f"redis://{auth}{self.host}:{self.port}/{self.db}"


@dataclass(frozen=True)
class StorageSettings:
    """Which storage backend to use and where it keeps its data."""

    kind: str = "file"  # memory | file | postgres
    path: Path = field(default_factory=_default_data_dir)
    encryption_key: str = ""  # passphrase; empty = use the key file in `path`
    table_prefix: str = "keyward_"


@dataclass(frozen=True)
class CacheSettings:
    kind: str = "memory"  # memory | redis | none
    ttl: int = 300
    max_size: int = 10_000


@dataclass(frozen=True)
class AuthSettings:
    """Credential validation behaviour."""

    api_keys_enabled: bool = True
    signature_required: bool = False
    signature_window_ms: int = 5 * 60 * 1000
    signing_secret: str = ""  # empty = derive from the master key
    default_expiry_seconds: int = 30 * 24 * 60 * 60
    permissions_enabled: bool = True
    default_role: str = "read"


@dataclass(frozen=True)
class SmtpSettings:
    host: str = ""
    port: int = 587
    username: str = ""
    password: str = ""
    use_tls: bool = False
    start_tls: bool = True
    sender: str = ""
    recipients: tuple[str, ...] = ()

    @property
    def configured(self) -> bool:
        return bool(self.host and self.sender and self.recipients)


@dataclass(frozen=True)
class AlertSettings:
    enabled: bool = False
    webhook_url: str = ""
    webhook_retries: int = 3
    webhook_timeout: float = 5.0
    smtp: SmtpSettings = field(default_factory=SmtpSettings)


@dataclass(frozen=True)
class MonitorSettings:
    enabled: bool = True
    log_dir: Path = field(default_factory=lambda: Path.home() / ".keyward" / "logs" / "security")
    max_events: int = 1000
    stats_ttl: int = 300


@dataclass(frozen=True)
class Config:
    """Top-level Keyward configuration."""

    storage: StorageSettings = field(default_factory=StorageSettings)
    cache: CacheSettings = field(default_factory=CacheSettings)
    db: DatabaseSettings = field(default_factory=DatabaseSettings)
    redis: RedisSettings = field(default_factory=RedisSettings)
    auth: AuthSettings = field(default_factory=AuthSettings)
    alerts: AlertSettings = field(default_factory=AlertSettings)
    monitor: MonitorSettings = field(default_factory=MonitorSettings)


# Singleton
_config: Config | None = None


def get_config() -> Config:
    """Get or create the singleton config from environment variables."""
    global _config
    if _config is not None:
        return _config
    _config = _load_from_env()
    return _config


def _load_from_env() -> Config:
    """Load configuration from environment variables."""
    data_dir = Path(os.environ.get("KEYWARD_DATA_DIR", _default_data_dir()))

    storage = StorageSettings(
        kind=os.environ.get("KEYWARD_STORAGE", "file"),
        path=data_dir,
        encryption_key=os.environ.get("KEYWARD_ENCRYPTION_KEY", ""),
        table_prefix=os.environ.get("KEYWARD_TABLE_PREFIX", "keyward_"),
    )

    cache = CacheSettings(
        kind=os.environ.get("KEYWARD_CACHE", "memory"),
        ttl=int(os.environ.get("KEYWARD_CACHE_TTL", "300")),
        max_size=int(os.environ.get("KEYWARD_CACHE_MAX_SIZE", "10000")),
    )

    db = DatabaseSettings(
        host=os.environ.get("KEYWARD_DB_HOST", ""),
        port=int(os.environ.get("KEYWARD_DB_PORT", "5432")),
        name=os.environ.get("KEYWARD_DB_NAME", "keyward"),
        user=os.environ.get("KEYWARD_DB_USER", os.environ.get("USER", "keyward")),
        password=os.environ.get("KEYWARD_DB_PASSWORD", ""),
        pool_min=int(os.environ.get("KEYWARD_DB_POOL_MIN", "1")),
        pool_max=int(os.environ.get("KEYWARD_DB_POOL_MAX", "10")),
    )

    redis_cfg = RedisSettings(
        host=os.environ.get("KEYWARD_REDIS_HOST", "127.0.0.1"),
        port=int(os.environ.get("KEYWARD_REDIS_PORT", "6379")),
        db=int(os.environ.get("KEYWARD_REDIS_DB", "0")),
        password=os.environ.get("KEYWARD_REDIS_PASSWORD", ""),
    )

    auth = AuthSettings(
        api_keys_enabled=_env_bool("KEYWARD_API_KEYS_ENABLED", True),
        signature_required=_env_bool("KEYWARD_SIGNATURE_REQUIRED", False),
        signature_window_ms=int(os.environ.get("KEYWARD_SIGNATURE_WINDOW_MS", "300000")),
        signing_secret=os.environ.get("KEYWARD_SIGNING_SECRET", ""),
        default_expiry_seconds=int(
            os.environ.get("KEYWARD_DEFAULT_EXPIRY_SECONDS", str(30 * 24 * 60 * 60))
        ),
        permissions_enabled=_env_bool("KEYWARD_PERMISSIONS_ENABLED", True),
        default_role=os.environ.get("KEYWARD_DEFAULT_ROLE", "read"),
    )

    recipients = os.environ.get("KEYWARD_ALERT_EMAIL_TO", "")
    smtp = SmtpSettings(
        host=os.environ.get("KEYWARD_SMTP_HOST", ""),
        port=int(os.environ.get("KEYWARD_SMTP_PORT", "587")),
        username=os.environ.get("KEYWARD_SMTP_USER", ""),
        password=os.environ.get("KEYWARD_SMTP_PASSWORD", ""),
        use_tls=_env_bool("KEYWARD_SMTP_TLS", False),
        start_tls=_env_bool("KEYWARD_SMTP_STARTTLS", True),
        sender=os.environ.get("KEYWARD_ALERT_EMAIL_FROM", ""),
        recipients=tuple(r.strip() for r in recipients.split(",") if r.strip()),
    )

    alerts = AlertSettings(
        enabled=_env_bool("KEYWARD_ALERTS_ENABLED", False),
        webhook_url=os.environ.get("KEYWARD_ALERT_WEBHOOK_URL", ""),
        webhook_retries=int(os.environ.get("KEYWARD_ALERT_WEBHOOK_RETRIES", "3")),
        webhook_timeout=float(os.environ.get("KEYWARD_ALERT_WEBHOOK_TIMEOUT", "5")),
        smtp=smtp,
    )

    monitor = MonitorSettings(
        enabled=_env_bool("KEYWARD_MONITOR_ENABLED", True),
        log_dir=Path(
            os.environ.get("KEYWARD_SECURITY_LOG_DIR", data_dir.parent / "logs" / "security")
        ),
        max_events=int(os.environ.get("KEYWARD_MAX_EVENTS", "1000")),
        stats_ttl=int(os.environ.get("KEYWARD_STATS_TTL", "300")),
    )

    return Config(
        storage=storage,
        cache=cache,
        db=db,
        redis=redis_cfg,
        auth=auth,
        alerts=alerts,
        monitor=monitor,
    )


def reset_config() -> None:
    """Reset the singleton config (for testing)."""
    global _config
    _config = None
