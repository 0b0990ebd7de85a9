"""
Rule evaluator — decides whether a role may perform an operation on a resource.

Decision order for check_permission():
  1. cached decision for (role, resource, operation, path), if any
  2. unknown role → deny
  3. collect the role's rule ids, then those of inherited roles (depth-first)
  4. the first rule whose resource, operation, path and condition all match
     allows; no match denies

Decisions are cached only when no conditional rule was consulted, since a
condition's answer depends on the per-request context rather than the key.
Writes carry the generation read at the start of the check and are dropped
if clear_decisions() ran in between.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import Any

from keyward.cache.base import CacheAdapter
from keyward.errors import CyclicRoleInheritanceError
from keyward.permissions.models import (
    PermissionCheckResult,
    PermissionCondition,
    PermissionRule,
    Role,
    operation_for_method,
)

logger = logging.getLogger(__name__)

DECISION_TTL = 300

RoleLookup = Callable[[str], Role | None]


def decision_key(role_id: str, resource: str, operation: str, path: str) -> str:
    return f"decision:{role_id}:{resource}:{operation}:{path}"


class RuleEvaluator:
    def __init__(self, cache: CacheAdapter | None = None, role_lookup: RoleLookup | None = None):
        self.cache = cache
        self._role_lookup = role_lookup
        self._rules: dict[str, PermissionRule] = {}
        self._conditions: dict[str, PermissionCondition] = {}
        self._lock = threading.Lock()
        # Incremented by every clear_decisions(); guards cache writes against races
        self._generation = 0
        self._generation_lock = threading.Lock()

    def attach_roles(self, role_lookup: RoleLookup) -> None:
        self._role_lookup = role_lookup

    # ── Registry ─────────────────────────────────────────────────────

    def add_rule(self, rule: PermissionRule) -> None:
        with self._lock:
            self._rules[rule.id] = rule
        self.clear_decisions()
        logger.debug("Rule added: %s (%s:%s)", rule.id, rule.resource, rule.operation)

    def get_rule(self, rule_id: str) -> PermissionRule | None:
        with self._lock:
            return self._rules.get(rule_id)

    def list_rules(self) -> list[PermissionRule]:
        with self._lock:
            return list(self._rules.values())

    def add_condition(self, condition: PermissionCondition) -> None:
        with self._lock:
            self._conditions[condition.id] = condition
        self.clear_decisions()

    def clear_decisions(self) -> None:
        """Drop every cached decision. Role entries in the same namespace go too.

        Bumps the generation first, so a check that read the old generation can
        no longer write its verdict back once the clear has happened.
        """
        with self._generation_lock:
            self._generation += 1
            if self.cache is not None:
                result = self.cache.clear()
                if not result.success:
                    logger.warning("Failed to clear permission cache: %s", result.error)

    @property
    def generation(self) -> int:
        return self._generation

    def cache_if_current(
        self, cache: CacheAdapter | None, key: str, value: Any, ttl: int, generation: int
    ) -> bool:
        """Write ``key`` only if no clear_decisions() ran since ``generation`` was read."""
        if cache is None:
            return False
        with self._generation_lock:
            if generation != self._generation:
                logger.debug("Skipping stale cache write for %s", key)
                return False
            return cache.set(key, value, ttl=ttl).success

    # ── Evaluation ───────────────────────────────────────────────────

    def _role(self, role_id: str) -> Role | None:
        if self._role_lookup is None:
            return None
        return self._role_lookup(role_id)

    def effective_rule_ids(self, role: Role) -> list[str]:
        """Own rule ids first, then inherited ones depth-first, without duplicates.

        Raises CyclicRoleInheritanceError if the inheritance graph loops back.
        """
        ordered: list[str] = []
        seen_rules: set[str] = set()
        done: set[str] = set()

        def walk(current: Role, path: tuple[str, ...]) -> None:
            for rule_id in current.permissions:
                if rule_id not in seen_rules:
                    seen_rules.add(rule_id)
                    ordered.append(rule_id)
            for parent_id in current.inherits:
                if parent_id in path:
                    raise CyclicRoleInheritanceError(
                        f"Role inheritance cycle: {' -> '.join((*path, parent_id))}",
                        role_id=role.id,
                    )
                if parent_id in done:
                    continue
                parent = self._role(parent_id)
                if parent is None:
                    logger.warning("Role %s inherits unknown role %s", current.id, parent_id)
                    continue
                walk(parent, (*path, parent_id))
                done.add(parent_id)

        walk(role, (role.id,))
        return ordered

    def check_permission(
        self,
        role_id: str,
        resource: str,
        operation: str,
        path: str,
        context: dict[str, Any] | None = None,
    ) -> PermissionCheckResult:
        resource, operation = str(resource), str(operation)
        key = decision_key(role_id, resource, operation, path)
        generation = self.generation

        if self.cache is not None:
            cached = self.cache.get(key)
            if cached.success and cached.hit:
                return PermissionCheckResult.from_dict(cached.data)

        role = self._role(role_id)
        if role is None:
            return PermissionCheckResult(False, f"Role {role_id} not found")

        conditional = False
        result: PermissionCheckResult | None = None
        for rule_id in self.effective_rule_ids(role):
            rule = self.get_rule(rule_id)
            if rule is None or not rule.applies_to(resource, operation):
                continue

            path_match = rule.match_path(path)
            if not path_match.matched:
                continue

            if rule.condition:
                conditional = True
                condition_context = {
                    "resource": resource,
                    "operation": operation,
                    "path": path,
                    "path_params": path_match.params,
                    **(context or {}),
                }
                if not self._condition_holds(rule, condition_context):
                    continue

            result = PermissionCheckResult(True, rule=rule)
            break

        if result is None:
            result = PermissionCheckResult(False, "No matching permission rule")

        if not conditional:
            self.cache_if_current(self.cache, key, result.to_dict(), DECISION_TTL, generation)
        return result

    def _condition_holds(self, rule: PermissionRule, context: dict[str, Any]) -> bool:
        with self._lock:
            condition = self._conditions.get(rule.condition or "")
        if condition is None:
            logger.warning("Rule %s references unknown condition %s", rule.id, rule.condition)
            return False
        try:
            return bool(condition.func(context))
        except Exception as e:
            logger.error("Condition %s for rule %s raised: %s", condition.id, rule.id, e)
            return False

    def check_http_permission(
        self,
        role_id: str,
        method: str,
        path: str,
        resource: str,
        context: dict[str, Any] | None = None,
    ) -> PermissionCheckResult:
        return self.check_permission(role_id, resource, operation_for_method(method), path, context)
