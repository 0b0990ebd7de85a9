"""
Role service — CRUD over roles in the ``roles`` storage namespace.

Reads are cache-first (``role:<id>``, 300 s). Every mutation drops the role's
cache entry and the evaluator's whole decision cache before returning, so a
check that starts after a mutation returns can never see a pre-mutation
verdict. A read that overlaps a mutation skips its cache write, so it
cannot put the old role or verdict back after the clear.
"""

from __future__ import annotations

import logging
import threading

from keyward.cache.base import CacheAdapter
from keyward.errors import ConflictError, CyclicRoleInheritanceError, RoleNotFoundError
from keyward.permissions.evaluator import RuleEvaluator
from keyward.permissions.models import Role
from keyward.storage.base import StorageAdapter

logger = logging.getLogger(__name__)

ROLE_TTL = 300


def role_key(role_id: str) -> str:
    return f"role:{role_id}"


class RoleService:
    def __init__(
        self,
        storage: StorageAdapter,
        evaluator: RuleEvaluator,
        cache: CacheAdapter | None = None,
    ):
        self.storage = storage
        self.evaluator = evaluator
        self.cache = cache
        # Serializes mutations so invalidation cannot interleave with a write
        self._write_lock = threading.RLock()
        evaluator.attach_roles(self.get_role)

    def initialize(self) -> None:
        self.storage.initialize()

    # ── Reads ────────────────────────────────────────────────────────

    def get_role(self, role_id: str) -> Role | None:
        """Cache, then storage. Any storage failure reads as "no such role"."""
        generation = self.evaluator.generation
        if self.cache is not None:
            cached = self.cache.get(role_key(role_id))
            if cached.success and cached.hit:
                return Role.from_dict(cached.data)

        result = self.storage.get(role_id)
        if not result.success:
            if not result.not_found:
                logger.warning("Role lookup %s failed: %s", role_id, result.error)
            return None

        role = Role.from_dict(result.data)
        self.evaluator.cache_if_current(
            self.cache, role_key(role_id), role.to_dict(), ROLE_TTL, generation
        )
        return role

    def list_roles(self) -> list[Role]:
        result = self.storage.get_many()
        if not result.success:
            logger.warning("Listing roles failed: %s", result.error)
            return []
        return [Role.from_dict(r) for r in result.data]

    def _require(self, role_id: str) -> Role:
        result = self.storage.get(role_id)
        if not result.success:
            raise RoleNotFoundError(f"Role {role_id} does not exist", role_id=role_id)
        return Role.from_dict(result.data)

    # ── Mutations ────────────────────────────────────────────────────

    def _invalidate(self, role_id: str) -> None:
        self.evaluator.clear_decisions()
        if self.cache is not None:
            self.cache.delete(role_key(role_id))

    def _check_acyclic(self, role_id: str, inherits: list[str]) -> None:
        """Reject ``role_id`` inheriting ``inherits`` if that closes a loop."""
        stack = list(inherits)
        seen: set[str] = set()
        while stack:
            current = stack.pop()
            if current == role_id:
                raise CyclicRoleInheritanceError(
                    f"Role {role_id} would inherit from itself", role_id=role_id
                )
            if current in seen:
                continue
            seen.add(current)
            result = self.storage.get(current)
            if result.success:
                stack.extend(result.data.get("inherits") or [])

    def create_role(self, role: Role) -> Role:
        with self._write_lock:
            self._check_acyclic(role.id, role.inherits)
            result = self.storage.create(role.id, role.to_dict())
            if not result.success:
                if isinstance(result.error, ConflictError):
                    raise ConflictError(f"Role {role.id} already exists", role_id=role.id)
                raise result.error
            self._invalidate(role.id)
        logger.info("Role created: %s (%d rules)", role.id, len(role.permissions))
        return Role.from_dict(result.data)

    def update_role(self, role_id: str, **changes) -> Role:
        """Apply field changes (name, description, permissions, inherits)."""
        changes.pop("id", None)
        with self._write_lock:
            self._require(role_id)
            if "inherits" in changes:
                self._check_acyclic(role_id, list(changes["inherits"]))
            result = self.storage.update(role_id, changes)
            if not result.success:
                raise result.error
            self._invalidate(role_id)
        logger.info("Role updated: %s (%s)", role_id, ", ".join(sorted(changes)))
        return Role.from_dict(result.data)

    def delete_role(self, role_id: str) -> bool:
        with self._write_lock:
            self._require(role_id)
            result = self.storage.delete(role_id)
            if not result.success:
                raise result.error
            self._invalidate(role_id)
        logger.info("Role deleted: %s", role_id)
        return True

    def add_permission(self, role_id: str, rule_id: str) -> Role:
        with self._write_lock:
            role = self._require(role_id)
            if rule_id in role.permissions:
                return role
            return self.update_role(role_id, permissions=[*role.permissions, rule_id])

    def remove_permission(self, role_id: str, rule_id: str) -> Role:
        with self._write_lock:
            role = self._require(role_id)
            if rule_id not in role.permissions:
                return role
            return self.update_role(
                role_id, permissions=[p for p in role.permissions if p != rule_id]
            )

    def add_inherit(self, role_id: str, parent_id: str) -> Role:
        with self._write_lock:
            role = self._require(role_id)
            self._require(parent_id)
            if parent_id in role.inherits:
                return role
            return self.update_role(role_id, inherits=[*role.inherits, parent_id])

    def remove_inherit(self, role_id: str, parent_id: str) -> Role:
        with self._write_lock:
            role = self._require(role_id)
            if parent_id not in role.inherits:
                return role
            return self.update_role(role_id, inherits=[i for i in role.inherits if i != parent_id])
