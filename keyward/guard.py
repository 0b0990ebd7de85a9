"""
Request guard — the three calls a routing layer makes into the core.

    guard.validate_credential(ctx)             → Identity or a typed 401/403 error
    guard.check_http_permission(ctx, resource) → PermissionCheckResult or 403
    guard.log_event(...)                       → SecurityEvent

Every refusal is recorded as an ``unauthorized`` security event before the
error is raised. error_status() maps the errors to HTTP status codes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlsplit

from keyward.credentials import CredentialService
from keyward.errors import (
    InsufficientPermissionError,
    InvalidSignatureError,
    KeywardError,
    MissingCredentialError,
    error_status,
)
from keyward.models import CredentialInfo, PermissionLevel, RequestSignature
from keyward.monitor.models import SecurityEvent, SecurityEventType, Severity
from keyward.permissions.defaults import role_for_level
from keyward.permissions.evaluator import RuleEvaluator
from keyward.permissions.models import PermissionCheckResult

logger = logging.getLogger(__name__)

__all__ = ["Guard", "Identity", "RequestContext", "error_status"]


@dataclass
class Identity:
    authenticated: bool
    client_id: str | None = None
    permission_level: PermissionLevel | None = None
    credential: CredentialInfo | None = None


ANONYMOUS = Identity(authenticated=False)


@dataclass
class RequestContext:
    """Framework-neutral view of an inbound request."""

    method: str
    path: str
    headers: dict[str, str] = field(default_factory=dict)
    query: dict[str, str] = field(default_factory=dict)
    client_ip: str | None = None
    body: Any = None
    identity: Identity | None = None

    def __post_init__(self) -> None:
        self.method = self.method.upper()
        self.headers = {k.lower(): v for k, v in self.headers.items()}

    def header(self, name: str) -> str | None:
        return self.headers.get(name.lower())

    @property
    def ip(self) -> str:
        forwarded = self.header("x-forwarded-for")
        if forwarded:
            return forwarded.split(",")[0].strip()
        return self.client_ip or "unknown"

    @property
    def presented_key(self) -> str | None:
        return self.header("x-api-key") or self.query.get("api_key") or None

    @property
    def domain(self) -> str | None:
        """Hostname from Origin, else from Referer. Unparseable values are ignored."""
        source = self.header("origin") or self.header("referer")
        if not source:
            return None
        try:
            return urlsplit(source).hostname
        except ValueError:
            return None


class Guard:
    def __init__(
        self,
        credentials: CredentialService,
        evaluator: RuleEvaluator,
        monitor=None,
        api_keys_enabled: bool = True,
        permissions_enabled: bool = True,
        signature_required: bool = False,
        default_role: str = "read",
    ):
        self.credentials = credentials
        self.evaluator = evaluator
        self.monitor = monitor
        self.api_keys_enabled = api_keys_enabled
        self.permissions_enabled = permissions_enabled
        self.signature_required = signature_required
        self.default_role = default_role

    # ── Events ───────────────────────────────────────────────────────

    def log_event(
        self,
        type: SecurityEventType | str,
        ip: str,
        path: str,
        severity: Severity | str = Severity.LOW,
        details: dict[str, Any] | None = None,
    ) -> SecurityEvent | None:
        if self.monitor is None:
            return None
        return self.monitor.log_event(
            {"type": type, "ip": ip, "path": path, "severity": severity, "details": details or {}}
        )

    def _refuse(
        self,
        ctx: RequestContext,
        error: KeywardError,
        severity: Severity = Severity.LOW,
        **details: Any,
    ) -> KeywardError:
        logger.warning(
            "Request refused: %s %s from %s (%s)", ctx.method, ctx.path, ctx.ip, error.code
        )
        try:
            self.log_event(
                SecurityEventType.UNAUTHORIZED,
                ctx.ip,
                ctx.path,
                severity,
                {"method": ctx.method, "reason": error.code, **details},
            )
        except Exception as e:
            logger.warning("Could not record refusal event: %s", e)
        return error

    # ── Authentication ───────────────────────────────────────────────

    def validate_credential(
        self,
        ctx: RequestContext,
        required_level: PermissionLevel = PermissionLevel.STANDARD,
        validate_signature: bool | None = None,
        required: bool = True,
    ) -> Identity:
        if not self.api_keys_enabled:
            ctx.identity = ANONYMOUS
            return ctx.identity

        key = ctx.presented_key
        if not key:
            if not required:
                ctx.identity = ANONYMOUS
                return ctx.identity
            raise self._refuse(ctx, MissingCredentialError("API key required"))

        try:
            info = self.credentials.validate(key, ctx.domain)
        except KeywardError as e:
            raise self._refuse(ctx, e) from None

        details = {"key_id": info.id, "client_id": info.client_id}
        if not info.permission_level.satisfies(required_level):
            raise self._refuse(
                ctx,
                InsufficientPermissionError(
                    f"Requires {required_level} level, key has {info.permission_level}"
                ),
                **details,
            )

        check_signature = (
            self.signature_required if validate_signature is None else validate_signature
        )
        if check_signature:
            self._verify_signature(ctx, info, details)

        ctx.identity = Identity(
            authenticated=True,
            client_id=info.client_id,
            permission_level=info.permission_level,
            credential=info,
        )
        return ctx.identity

    def _verify_signature(self, ctx: RequestContext, info: CredentialInfo, details: dict) -> None:
        timestamp = ctx.header("x-timestamp")
        nonce = ctx.header("x-nonce")
        signature = ctx.header("x-signature")
        if not timestamp or not nonce or not signature:
            raise self._refuse(ctx, InvalidSignatureError("Missing signature headers"), **details)
        try:
            signed = RequestSignature(timestamp=int(timestamp), nonce=nonce, signature=signature)
        except ValueError:
            raise self._refuse(
                ctx, InvalidSignatureError("Malformed X-Timestamp"), **details
            ) from None

        body = ctx.body if ctx.method not in ("GET", "HEAD") else None
        if not self.credentials.verify_signature(info.id, ctx.method, ctx.path, signed, body):
            raise self._refuse(ctx, InvalidSignatureError("Invalid request signature"), **details)

    # ── Authorization ────────────────────────────────────────────────

    def check_http_permission(
        self,
        ctx: RequestContext,
        resource: str,
        skip_auth: bool = False,
        context: dict[str, Any] | None = None,
    ) -> PermissionCheckResult:
        if not self.permissions_enabled:
            return PermissionCheckResult(True, "Permission checks disabled")

        identity = ctx.identity or ANONYMOUS
        if not skip_auth and not identity.authenticated:
            raise MissingCredentialError("Not authenticated")

        role_id = (
            role_for_level(identity.permission_level, self.default_role)
            if identity.authenticated
            else self.default_role
        )
        check_context = {
            "identity": identity,
            "client_id": identity.client_id,
            "ip": ctx.ip,
            **(context or {}),
        }
        result = self.evaluator.check_http_permission(
            role_id, ctx.method, ctx.path, resource, check_context
        )
        if not result.allowed:
            raise self._refuse(
                ctx,
                InsufficientPermissionError(result.reason or "Permission denied"),
                Severity.MEDIUM,
                role_id=role_id,
                resource=str(resource),
                deny_reason=result.reason,
            )
        return result
