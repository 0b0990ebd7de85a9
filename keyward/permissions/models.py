"""
Permission data models — operations, resources, rules, roles, path patterns.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

logger = logging.getLogger(__name__)

WILDCARD = "*"


class OperationType(StrEnum):
    READ = "read"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    EXECUTE = "execute"


class ResourceType(StrEnum):
    API_KEY = "api_key"
    MUSIC = "music"
    USER = "user"
    SYSTEM = "system"
    MONITOR = "monitor"


HTTP_METHOD_TO_OPERATION: dict[str, OperationType] = {
    "GET": OperationType.READ,
    "HEAD": OperationType.READ,
    "OPTIONS": OperationType.READ,
    "POST": OperationType.CREATE,
    "PUT": OperationType.UPDATE,
    "PATCH": OperationType.UPDATE,
    "DELETE": OperationType.DELETE,
}


def operation_for_method(method: str) -> OperationType:
    """Map an HTTP method to an operation. Unknown methods count as reads."""
    return HTTP_METHOD_TO_OPERATION.get(method.upper(), OperationType.READ)


# ─── Path patterns ───────────────────────────────────────────────────


class PatternKind(StrEnum):
    EXACT = "exact"
    PREFIX = "prefix"
    REGEX = "regex"
    GLOB = "glob"


# JS-style named groups "(?<name>" → Python "(?P<name>", leaving lookbehinds alone
_JS_NAMED_GROUP = re.compile(r"\(\?<(?![=!])")


@dataclass(frozen=True)
class PathMatch:
    matched: bool
    params: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class PathPattern:
    kind: PatternKind
    pattern: str
    regex: re.Pattern | None = None

    @classmethod
    def compile(cls, path: str) -> PathPattern:
        """Classify ``path`` and precompile it.

        Trailing ``*`` → prefix; ``^...$`` → regex; any other ``*``/``?`` →
        glob; else exact. A pattern that fails to compile falls back to exact.
        """
        if path.endswith("*"):
            return cls(PatternKind.PREFIX, path[:-1])

        if path.startswith("^") and path.endswith("$"):
            try:
                return cls(PatternKind.REGEX, path, re.compile(_JS_NAMED_GROUP.sub("(?P<", path)))
            except re.error as e:
                logger.error("Invalid regex path pattern %r, matching exactly: %s", path, e)
                return cls(PatternKind.EXACT, path)

        if "*" in path or "?" in path:
            translated = path.replace(".", r"\.").replace("*", ".*").replace("?", ".")
            try:
                return cls(PatternKind.GLOB, path, re.compile(f"^{translated}$"))
            except re.error as e:
                logger.error("Invalid glob path pattern %r, matching exactly: %s", path, e)
                return cls(PatternKind.EXACT, path)

        return cls(PatternKind.EXACT, path)

    def match(self, path: str) -> PathMatch:
        match self.kind:
            case PatternKind.EXACT:
                return PathMatch(path == self.pattern)
            case PatternKind.PREFIX:
                return PathMatch(path.startswith(self.pattern))
            case PatternKind.REGEX | PatternKind.GLOB:
                found = self.regex.search(path) if self.regex else None
                if not found:
                    return PathMatch(False)
                params = {k: v for k, v in found.groupdict().items() if v is not None}
                return PathMatch(True, params)
        return PathMatch(False)


# ─── Rules, roles, conditions ────────────────────────────────────────


@dataclass
class PermissionRule:
    """Grants ``operation`` on ``resource`` (either may be ``*``), optionally
    restricted to a path pattern and gated by a named condition."""

    id: str
    resource: str
    operation: str
    path: str | None = None
    condition: str | None = None
    description: str = ""
    _pattern: PathPattern | None = field(default=None, init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if self.path:
            self._pattern = PathPattern.compile(self.path)

    def applies_to(self, resource: str, operation: str) -> bool:
        return (self.resource in (WILDCARD, resource)) and (self.operation in (WILDCARD, operation))

    def match_path(self, path: str) -> PathMatch:
        if self._pattern is None:
            return PathMatch(True)
        return self._pattern.match(path)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "resource": str(self.resource),
            "operation": str(self.operation),
            "path": self.path,
            "condition": self.condition,
            "description": self.description,
        }


@dataclass
class Role:
    id: str
    name: str
    permissions: list[str] = field(default_factory=list)
    inherits: list[str] = field(default_factory=list)
    description: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "permissions": list(self.permissions),
            "inherits": list(self.inherits),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Role:
        return cls(
            id=data["id"],
            name=data.get("name", data["id"]),
            permissions=list(data.get("permissions") or []),
            inherits=list(data.get("inherits") or []),
            description=data.get("description", ""),
        )


ConditionFunc = Callable[[dict[str, Any]], bool]


@dataclass(frozen=True)
class PermissionCondition:
    """A named predicate over the check context, referenced by rule.condition."""

    id: str
    name: str
    func: ConditionFunc
    description: str = ""


@dataclass(frozen=True)
class PermissionCheckResult:
    allowed: bool
    reason: str = ""
    rule: PermissionRule | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "allowed": self.allowed,
            "reason": self.reason,
            "rule": self.rule.to_dict() if self.rule else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PermissionCheckResult:
        rule = data.get("rule")
        return cls(
            allowed=bool(data["allowed"]),
            reason=data.get("reason", ""),
            rule=PermissionRule(**rule) if rule else None,
        )


@dataclass
class PermissionConfig:
    enabled: bool = True
    default_role: str = "read"
    rules: list[PermissionRule] = field(default_factory=list)
    roles: list[Role] = field(default_factory=list)
    conditions: list[PermissionCondition] = field(default_factory=list)
