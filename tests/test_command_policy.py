"""Tests for command_policy.py - Command classification."""
import json

import pytest

import command_policy
from command_policy import (
    build_rule_table,
    classify,
    default_decision,
    describe_rules,
    ensure_not_blocked,
    is_context_only,
    load_rules,
)
from errors import PolicyViolation
from models import ApprovalLevel, PolicyCategory


@pytest.mark.unit
class TestClassify:
    """Test classification against the built-in rule table."""

    def test_docker_ps_is_auto_context(self):
        """Listing containers runs without approval."""
        decision = classify("docker", ["ps"])
        assert decision.level is ApprovalLevel.AUTO
        assert decision.category is PolicyCategory.CONTEXT
        assert decision.suggested_confirmation is None

    def test_docker_rm_is_blocked_forbidden(self):
        """Removing containers is forbidden."""
        decision = classify("docker", ["rm", "x"])
        assert decision.level is ApprovalLevel.BLOCKED
        assert decision.category is PolicyCategory.FORBIDDEN

    def test_git_reset_hard_requires_approval(self):
        """Destructive git commands need approval."""
        decision = classify("git", ["reset", "--hard"])
        assert decision.level is ApprovalLevel.APPROVAL_REQUIRED
        assert decision.category is PolicyCategory.CRITICAL
        assert decision.suggested_confirmation

    def test_unknown_command_requires_approval(self):
        """Commands with no rule default to approval."""
        decision = classify("frobnicate", ["--now"])
        assert decision.level is ApprovalLevel.APPROVAL_REQUIRED
        assert decision.category is PolicyCategory.CRITICAL
        assert decision.reason == "No explicit policy found for 'frobnicate'. Defaulting to user approval."

    def test_unknown_command_is_never_auto(self):
        """No unknown command is auto-approved."""
        for command in ["curl", "make", "terraform", "scp"]:
            assert classify(command, []).level is not ApprovalLevel.AUTO

    def test_classification_is_deterministic(self):
        """The same command always gets the same decision."""
        first = classify("docker", ["logs", "--tail", "200", "api"])
        second = classify("docker", ["logs", "--tail", "200", "api"])
        assert first == second

    def test_matching_is_case_insensitive(self):
        """Command and argument matching ignores case."""
        assert classify("DOCKER", ["PS"]).level is ApprovalLevel.AUTO
        assert classify("Docker", ["RM", "api"]).level is ApprovalLevel.BLOCKED

    def test_command_whitespace_is_trimmed(self):
        """Surrounding whitespace in the command is ignored."""
        assert classify("  docker ", ["ps"]).level is ApprovalLevel.AUTO

    def test_mixed_case_rule_prefix_matches(self):
        """Rules written in mixed case still match."""
        decision = classify("pwsh", ["-Command", "Get-Process"])
        assert decision.level is ApprovalLevel.AUTO

    def test_prefix_must_match_positionally(self):
        """Rule prefixes only match leading arguments."""
        # "rm" appears, but not as the first argument
        decision = classify("docker", ["ps", "rm"])
        assert decision.level is ApprovalLevel.AUTO

    def test_short_args_do_not_match_longer_prefix(self):
        """Fewer args than a rule prefix is not a match."""
        decision = classify("docker", ["compose"])
        assert decision.level is ApprovalLevel.APPROVAL_REQUIRED
        assert decision.reason.startswith("No explicit policy found")

    def test_forbidden_checked_before_context(self):
        """Forbidden rules win over context rules."""
        assert classify("docker", ["compose", "down"]).level is ApprovalLevel.BLOCKED
        assert classify("docker", ["compose", "ps"]).level is ApprovalLevel.AUTO

    def test_bare_command_rule_matches_any_args(self):
        """A rule without a prefix covers every invocation."""
        assert classify("rm", ["-rf", "/tmp/x"]).level is ApprovalLevel.BLOCKED
        assert classify("kubectl", ["delete", "pod", "api"]).level is ApprovalLevel.APPROVAL_REQUIRED

    def test_bare_critical_rule_shadows_context_rule(self):
        """Critical rules are checked before context rules."""
        # Critical rules are scanned before context rules
        assert classify("kubectl", ["get", "pods"]).level is ApprovalLevel.APPROVAL_REQUIRED

    def test_forbidden_decisions_are_always_blocked(self):
        """Every forbidden rule blocks."""
        for rule in command_policy.FORBIDDEN_RULES:
            assert rule.level is ApprovalLevel.BLOCKED


@pytest.mark.unit
class TestHelpers:
    """Test the helper functions built on classify."""

    def test_is_context_only(self):
        """Only context-category commands count as read-only."""
        assert is_context_only("git", ["status"])
        assert not is_context_only("git", ["pull"])

    def test_ensure_not_blocked_raises(self):
        """Blocked commands raise PolicyViolation."""
        with pytest.raises(PolicyViolation) as exc_info:
            ensure_not_blocked("shutdown", ["/s"])
        assert exc_info.value.command == "shutdown"
        assert "manual" in exc_info.value.reason

    def test_ensure_not_blocked_returns_decision(self):
        """Allowed commands return their decision."""
        assert ensure_not_blocked("git", ["status"]).level is ApprovalLevel.AUTO

    def test_default_decision(self):
        """The fallback decision names the command."""
        decision = default_decision("xyz")
        assert decision.level is ApprovalLevel.APPROVAL_REQUIRED
        assert "xyz" in decision.reason

    def test_describe_rules_lists_every_rule(self):
        """Every rule is described with all its fields."""
        described = describe_rules()
        assert len(described) == len(command_policy.RULES)
        assert {"command", "args_prefix", "level", "category", "reason"} <= set(described[0])


@pytest.mark.unit
class TestExtraRules:
    """Test operator-supplied rules loaded from JSON."""

    def test_load_rules(self, tmp_path):
        """Rules load from a JSON policy file."""
        path = tmp_path / "policy.json"
        path.write_text(
            json.dumps(
                [
                    {"command": "make", "args_prefix": ["test"], "level": "auto", "category": "context", "reason": "Runs tests."},
                    {"command": "terraform", "args_prefix": ["destroy"], "level": "auto", "category": "forbidden", "reason": "Destroys infra."},
                ]
            )
        )
        rules = load_rules(path)
        assert rules[0].command == "make"
        assert rules[0].args_prefix == ("test",)
        assert rules[1].level is ApprovalLevel.BLOCKED

    def test_load_rules_rejects_non_list(self, tmp_path):
        """A policy file must hold a list."""
        path = tmp_path / "policy.json"
        path.write_text(json.dumps({"command": "make"}))
        with pytest.raises(ValueError):
            load_rules(path)

    def test_load_rules_rejects_unknown_level(self, tmp_path):
        """Unknown approval levels are rejected."""
        path = tmp_path / "policy.json"
        path.write_text(json.dumps([{"command": "make", "reason": "r", "level": "sometimes"}]))
        with pytest.raises(ValueError):
            load_rules(path)

    def test_extra_rules_lead_their_tier(self, tmp_path):
        """Loaded rules are checked before built-ins of the same tier."""
        path = tmp_path / "policy.json"
        path.write_text(
            json.dumps(
                [
                    {"command": "docker", "args_prefix": ["ps"], "level": "blocked", "category": "forbidden", "reason": "No listing here."},
                    {"command": "make", "level": "auto", "category": "context", "reason": "Builds."},
                ]
            )
        )
        table = build_rule_table(load_rules(path))
        assert classify("docker", ["ps"], rules=table).level is ApprovalLevel.BLOCKED
        assert classify("make", [], rules=table).level is ApprovalLevel.AUTO
        # Built-in forbidden rules still precede extra context rules
        assert classify("rm", ["x"], rules=table).level is ApprovalLevel.BLOCKED

    def test_build_rule_table_orders_tiers(self):
        """The table orders forbidden, then critical, then context."""
        table = build_rule_table()
        categories = [rule.category for rule in table]
        last_forbidden = max(i for i, c in enumerate(categories) if c is PolicyCategory.FORBIDDEN)
        first_critical = categories.index(PolicyCategory.CRITICAL)
        last_critical = max(i for i, c in enumerate(categories) if c is PolicyCategory.CRITICAL)
        first_context = categories.index(PolicyCategory.CONTEXT)
        assert last_forbidden < first_critical
        assert last_critical < first_context
