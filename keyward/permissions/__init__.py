"""Permission engine — role-based rules with path patterns and conditions."""

from keyward.permissions.defaults import (
    apply_permission_config,
    default_permission_config,
    role_for_level,
)
from keyward.permissions.evaluator import RuleEvaluator, decision_key
from keyward.permissions.models import (
    HTTP_METHOD_TO_OPERATION,
    OperationType,
    PathPattern,
    PatternKind,
    PermissionCheckResult,
    PermissionCondition,
    PermissionConfig,
    PermissionRule,
    ResourceType,
    Role,
    operation_for_method,
)
from keyward.permissions.roles import RoleService

__all__ = [
    "HTTP_METHOD_TO_OPERATION",
    "OperationType",
    "PathPattern",
    "PatternKind",
    "PermissionCheckResult",
    "PermissionCondition",
    "PermissionConfig",
    "PermissionRule",
    "ResourceType",
    "Role",
    "RoleService",
    "RuleEvaluator",
    "apply_permission_config",
    "decision_key",
    "default_permission_config",
    "operation_for_method",
    "role_for_level",
]
