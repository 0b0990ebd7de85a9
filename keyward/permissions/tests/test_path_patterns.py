"""Tests for keyward.permissions.models path patterns and rule matching."""

import pytest

from keyward.permissions import (
    OperationType,
    PathPattern,
    PatternKind,
    PermissionCheckResult,
    PermissionRule,
    Role,
    operation_for_method,
)


class TestPatternKinds:
    @pytest.mark.parametrize(
        "path, kind",
        [
            ("/api/music", PatternKind.EXACT),
            ("/api/music/*", PatternKind.PREFIX),
            ("^/api/music/(?<id>\\d+)$", PatternKind.REGEX),
            ("/api/*/tracks", PatternKind.GLOB),
            ("/api/v?/tracks", PatternKind.GLOB),
        ],
    )
    def test_classification(self, path, kind):
        assert PathPattern.compile(path).kind == kind

    def test_invalid_regex_falls_back_to_exact(self):
        pattern = PathPattern.compile("^/api/(unclosed$")
        assert pattern.kind == PatternKind.EXACT
        assert pattern.match("^/api/(unclosed$").matched
        assert not pattern.match("/api/x").matched


class TestMatching:
    def test_exact(self):
        pattern = PathPattern.compile("/api/music")
        assert pattern.match("/api/music").matched
        assert not pattern.match("/api/music/1").matched

    def test_prefix(self):
        pattern = PathPattern.compile("/api/music/*")
        assert pattern.match("/api/music/").matched
        assert pattern.match("/api/music/1/tracks").matched
        assert not pattern.match("/api/users").matched

    def test_regex_named_groups_become_params(self):
        pattern = PathPattern.compile("^/api/users/(?<user_id>[^/]+)/keys$")
        found = pattern.match("/api/users/u-42/keys")
        assert found.matched
        assert found.params == {"user_id": "u-42"}

    def test_regex_python_named_groups(self):
        pattern = PathPattern.compile("^/items/(?P<item>\\d+)$")
        assert pattern.match("/items/7").params == {"item": "7"}
        assert not pattern.match("/items/seven").matched

    def test_glob_star_and_question(self):
        star = PathPattern.compile("/api/*/tracks")
        assert star.match("/api/albums/tracks").matched
        assert not star.match("/api/albums/tracks/1").matched

        question = PathPattern.compile("/api/v?/status")
        assert question.match("/api/v2/status").matched
        assert not question.match("/api/v10/status").matched

    def test_glob_escapes_dots(self):
        pattern = PathPattern.compile("/files/*.json")
        assert pattern.match("/files/a.json").matched
        assert not pattern.match("/files/ajson").matched


class TestRules:
    def test_wildcards(self):
        rule = PermissionRule("r", "*", "read")
        assert rule.applies_to("music", "read")
        assert not rule.applies_to("music", "delete")

    def test_no_path_matches_everything(self):
        assert PermissionRule("r", "music", "*").match_path("/anything").matched

    def test_check_result_round_trips_rule(self):
        rule = PermissionRule("r", "music", "read", path="/api/music/*", description="d")
        restored = PermissionCheckResult.from_dict(PermissionCheckResult(True, rule=rule).to_dict())
        assert restored.allowed
        assert restored.rule == rule
        assert restored.rule.match_path("/api/music/1").matched

    def test_role_from_dict_defaults(self):
        role = Role.from_dict({"id": "ops"})
        assert role.name == "ops"
        assert role.permissions == []
        assert role.inherits == []


class TestMethodMapping:
    @pytest.mark.parametrize(
        "method, operation",
        [
            ("GET", OperationType.READ),
            ("head", OperationType.READ),
            ("POST", OperationType.CREATE),
            ("PUT", OperationType.UPDATE),
            ("PATCH", OperationType.UPDATE),
            ("DELETE", OperationType.DELETE),
            ("TRACE", OperationType.READ),
        ],
    )
    def test_operation_for_method(self, method, operation):
        assert operation_for_method(method) == operation
