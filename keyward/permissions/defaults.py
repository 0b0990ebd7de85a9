"""Built-in rules and roles, and the mapping from credential level to role."""

from __future__ import annotations

import logging

from keyward.errors import ConflictError
from keyward.models import PermissionLevel
from keyward.permissions.evaluator import RuleEvaluator
from keyward.permissions.models import PermissionConfig, PermissionRule, Role
from keyward.permissions.roles import RoleService

logger = logging.getLogger(__name__)


def default_permission_config(default_role: str = "read") -> PermissionConfig:
    rules = [
        PermissionRule("admin:all", "*", "*", description="Admins may do anything"),
        PermissionRule("standard:read:all", "*", "read", description="Read any resource"),
        PermissionRule("standard:music:all", "music", "*", description="Full access to music"),
        PermissionRule("read:read:all", "*", "read", description="Read any resource"),
    ]
    roles = [
        Role("admin", "Administrator", ["admin:all"], description="Every permission"),
        Role(
            "standard",
            "Standard",
            ["standard:read:all", "standard:music:all"],
            description="Read everything, manage music",
        ),
        Role("read", "Read only", ["read:read:all"], description="Read everything"),
    ]
    return PermissionConfig(default_role=default_role, rules=rules, roles=roles)


def role_for_level(level: PermissionLevel | str | None, default_role: str = "read") -> str:
    """The built-in role id matching a credential's permission level."""
    if level is None:
        return default_role
    try:
        return str(PermissionLevel(level))
    except ValueError:
        return default_role


def apply_permission_config(
    config: PermissionConfig, evaluator: RuleEvaluator, roles: RoleService
) -> None:
    """Register rules and conditions, then seed roles that don't exist yet."""
    for condition in config.conditions:
        evaluator.add_condition(condition)
    for rule in config.rules:
        evaluator.add_rule(rule)
    for role in config.roles:
        try:
            roles.create_role(role)
        except ConflictError:
            logger.debug("Role %s already present, keeping stored version", role.id)
    logger.info(
        "Permission config applied: %d rules, %d roles, %d conditions",
        len(config.rules),
        len(config.roles),
        len(config.conditions),
    )
