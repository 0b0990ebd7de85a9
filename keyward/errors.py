"""
Error taxonomy for the access-control core.

Credential and permission failures are terminal for a request and carry the
HTTP status the routing layer should answer with. Storage and alert failures
are mostly reported through result objects; the classes here exist so callers
can still raise and match on them where an exception is the right shape.
"""

from __future__ import annotations


class KeywardError(Exception):
    """Base class. ``status_code`` is what the HTTP layer should return."""

    status_code = 500
    code = "internal_error"

    def __init__(self, message: str | None = None, **details: object):
        super().__init__(message or self.code)
        self.message = message or self.code
        self.details = details


# ── Credentials ──────────────────────────────────────────────────────


class MissingCredentialError(KeywardError):
    status_code = 401
    code = "missing_api_key"


class InvalidCredentialError(KeywardError):
    status_code = 401
    code = "invalid_api_key"


class ExpiredCredentialError(KeywardError):
    status_code = 401
    code = "expired_api_key"


class RevokedCredentialError(KeywardError):
    status_code = 401
    code = "revoked_api_key"


class InvalidSignatureError(KeywardError):
    status_code = 401
    code = "invalid_signature"


class DomainNotAllowedError(KeywardError):
    status_code = 403
    code = "domain_not_allowed"


# ── Permissions ──────────────────────────────────────────────────────


class InsufficientPermissionError(KeywardError):
    status_code = 403
    code = "insufficient_permission"


class RoleNotFoundError(KeywardError):
    status_code = 403
    code = "role_not_found"


class CyclicRoleInheritanceError(KeywardError):
    code = "cyclic_role_inheritance"


# ── Storage / alerts ─────────────────────────────────────────────────


class StorageUnavailableError(KeywardError):
    code = "storage_unavailable"


class NotFoundError(KeywardError):
    status_code = 404
    code = "not_found"


class ConflictError(KeywardError):
    status_code = 409
    code = "conflict"


class DecryptionError(KeywardError):
    code = "decryption_failure"


class AlertDeliveryError(KeywardError):
    code = "alert_delivery_failure"


def error_status(exc: BaseException) -> int:
    """Map any exception to the HTTP status the routing layer should use."""
    if isinstance(exc, KeywardError):
        return exc.status_code
    return 500
