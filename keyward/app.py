"""
Composition root — builds every service from a Config and owns their lifecycle.

Usage:
    from keyward.app import build_services
    services = build_services()          # reads get_config()
    services.initialize()
    info = services.credentials.validate(raw_key)
    ...
    services.shutdown()
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from keyward.cache import CacheAdapter, cache_config_from_settings, create_cache
from keyward.config import Config, get_config
from keyward.credentials import CredentialService
from keyward.crypto import get_master_key, init_master_key
from keyward.guard import Guard
from keyward.monitor.alerts import (
    AlertDispatcher,
    ConsoleChannelConfig,
    EmailChannelConfig,
    WebhookChannelConfig,
    create_channel,
)
from keyward.monitor.monitor import SecurityMonitor
from keyward.permissions import (
    RoleService,
    RuleEvaluator,
    apply_permission_config,
    default_permission_config,
)
from keyward.storage import (
    StorageAdapter,
    StorageKind,
    create_storage,
    storage_config_from_settings,
)

logger = logging.getLogger(__name__)

NAMESPACES = ("api-keys", "roles", "security")


@dataclass
class Keyward:
    config: Config
    storages: dict[str, StorageAdapter]
    caches: dict[str, CacheAdapter]
    monitor: SecurityMonitor
    credentials: CredentialService
    evaluator: RuleEvaluator
    roles: RoleService
    guard: Guard
    _initialized: bool = field(default=False, repr=False)

    def initialize(self) -> None:
        if self._initialized:
            return
        for name, cache in self.caches.items():
            result = cache.initialize()
            if not result.success:
                logger.warning("Cache %s unavailable, continuing: %s", name, result.error)
        for storage in self.storages.values():
            storage.initialize()
        self.monitor.initialize()
        self.credentials.initialize()
        self.roles.initialize()
        apply_permission_config(
            default_permission_config(self.config.auth.default_role), self.evaluator, self.roles
        )
        self._initialized = True
        logger.info(
            "Keyward initialized (storage=%s, cache=%s)",
            self.config.storage.kind,
            self.config.cache.kind,
        )

    def shutdown(self) -> None:
        self.monitor.close()
        for cache in self.caches.values():
            cache.close()
        for storage in self.storages.values():
            storage.close()
        if self.config.storage.kind == StorageKind.POSTGRES:
            from keyward.db.connection import close_pool

            close_pool()
        self._initialized = False
        logger.info("Keyward shut down")


def alert_channel_configs(config: Config) -> list:
    """Console always; webhook and email when configured."""
    alerts = config.alerts
    channels: list = [ConsoleChannelConfig()]
    if alerts.webhook_url:
        channels.append(
            WebhookChannelConfig(
                url=alerts.webhook_url,
                timeout=alerts.webhook_timeout,
                retry_count=alerts.webhook_retries,
            )
        )
    if alerts.smtp.configured:
        smtp = alerts.smtp
        channels.append(
            EmailChannelConfig(
                host=smtp.host,
                port=smtp.port,
                username=smtp.username,
                password=smtp.password,
                use_tls=smtp.use_tls,
                start_tls=smtp.start_tls,
                sender=smtp.sender,
                recipients=smtp.recipients,
            )
        )
    return channels


def resolve_master_key(config: Config) -> bytes:
    if config.storage.encryption_key:
        return get_master_key(passphrase=config.storage.encryption_key)
    init_master_key(config.storage.path)
    return get_master_key(config.storage.path)


def build_services(config: Config | None = None, master_key: bytes | None = None) -> Keyward:
    config = config or get_config()
    key = master_key or resolve_master_key(config)

    storage_config = storage_config_from_settings(
        config.storage.kind, config.storage.path, config.storage.table_prefix
    )
    storages = {ns: create_storage(storage_config, ns, key) for ns in NAMESPACES}

    cache_config = cache_config_from_settings(
        config.cache.kind, config.cache.ttl, config.cache.max_size, config.redis.url
    )
    caches = {ns: create_cache(cache_config, ns) for ns in ("api-keys", "permission", "security")}

    dispatcher = AlertDispatcher([create_channel(c) for c in alert_channel_configs(config)])
    monitor = SecurityMonitor(
        storage=storages["security"],
        cache=caches["security"],
        log_dir=config.monitor.log_dir,
        max_events=config.monitor.max_events,
        stats_ttl=config.monitor.stats_ttl,
        alerts_enabled=config.alerts.enabled,
        dispatcher=dispatcher,
    )

    credentials = CredentialService(
        storage=storages["api-keys"],
        signing_secret=config.auth.signing_secret or key,
        monitor=monitor if config.monitor.enabled else None,
        # a no-op cache would silently disable replay detection
        nonce_cache=caches["api-keys"] if config.cache.kind != "none" else None,
        signature_window_ms=config.auth.signature_window_ms,
        default_expiry_seconds=config.auth.default_expiry_seconds,
    )

    evaluator = RuleEvaluator(cache=caches["permission"])
    roles = RoleService(storages["roles"], evaluator, cache=caches["permission"])

    guard = Guard(
        credentials,
        evaluator,
        monitor=monitor if config.monitor.enabled else None,
        api_keys_enabled=config.auth.api_keys_enabled,
        permissions_enabled=config.auth.permissions_enabled,
        signature_required=config.auth.signature_required,
        default_role=config.auth.default_role,
    )

    return Keyward(
        config=config,
        storages=storages,
        caches=caches,
        monitor=monitor,
        credentials=credentials,
        evaluator=evaluator,
        roles=roles,
        guard=guard,
    )
