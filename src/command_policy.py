"""Deterministic command policy for host shell execution."""
from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from config import config
from errors import PolicyViolation
from models import ApprovalLevel, CommandRule, PolicyCategory, PolicyDecision

AUTO = ApprovalLevel.AUTO
APPROVAL = ApprovalLevel.APPROVAL_REQUIRED
BLOCKED = ApprovalLevel.BLOCKED

CONTEXT = PolicyCategory.CONTEXT
CRITICAL = PolicyCategory.CRITICAL
FORBIDDEN = PolicyCategory.FORBIDDEN

APPROVAL_CONFIRMATION = (
    "Explain why this command is needed and wait for the user to approve before running it."
)
DEFAULT_CONFIRMATION = (
    "Describe what this command will do and ask the user to approve it before execution."
)


def _rule(
    command: str,
    level: ApprovalLevel,
    category: PolicyCategory,
    reason: str,
    args_prefix: Sequence[str] = (),
    notes: Optional[str] = None,
) -> CommandRule:
    return CommandRule(
        command=command.strip().lower(),
        level=level,
        category=category,
        reason=reason,
        args_prefix=tuple(arg.lower() for arg in args_prefix),
        notes=notes,
    )


CONTEXT_RULES: Tuple[CommandRule, ...] = (
    _rule("docker", AUTO, CONTEXT, "Lists container status without changing state.", ["ps"]),
    _rule("docker", AUTO, CONTEXT, "Returns container logs for debugging purposes only.", ["logs"]),
    _rule("docker", AUTO, CONTEXT, "Shows resource usage without mutating containers.", ["stats"]),
    _rule("docker", AUTO, CONTEXT, "Reads container or image metadata without any side effects.", ["inspect"]),
    _rule("docker", AUTO, CONTEXT, "Lists compose services without changing them.", ["compose", "ps"]),
    _rule("git", AUTO, CONTEXT, "Shows repository state without modifying files.", ["status"]),
    _rule("git", AUTO, CONTEXT, "Lists branches without switching or editing.", ["branch"]),
    _rule("git", AUTO, CONTEXT, "Reads commit history only.", ["log"]),
    _rule("git", AUTO, CONTEXT, "Displays commit details without altering the repo.", ["show"]),
    _rule("git", AUTO, CONTEXT, "Shows working tree changes without applying them.", ["diff"]),
    _rule("git", AUTO, CONTEXT, "Displays configuration without making changes.", ["config", "--list"]),
    _rule("kubectl", AUTO, CONTEXT, "Fetches cluster resource information.", ["get"]),
    _rule("kubectl", AUTO, CONTEXT, "Reads detailed resource information only.", ["describe"]),
    _rule("npm", AUTO, CONTEXT, "Shows dependency tree without installation.", ["ls"]),
    _rule("node", AUTO, CONTEXT, "Reports installed Node.js version.", ["--version"]),
    _rule("python", AUTO, CONTEXT, "Reports installed Python version.", ["--version"]),
    _rule("pwsh", AUTO, CONTEXT, "Lists running processes only.", ["-Command", "Get-Process"]),
    _rule("powershell", AUTO, CONTEXT, "Lists running processes only.", ["-Command", "Get-Process"]),
    _rule("cmd", AUTO, CONTEXT, "Shows task list without side effects.", ["/c", "tasklist"]),
    _rule("wmic", AUTO, CONTEXT, "Displays process data for diagnostics.", ["process", "list", "brief"]),
    _rule("systeminfo", AUTO, CONTEXT, "Displays system configuration information."),
    _rule("whoami", AUTO, CONTEXT, "Shows current user identity only."),
    _rule("hostname", AUTO, CONTEXT, "Displays machine hostname only."),
    _rule("ls", AUTO, CONTEXT, "Lists directory contents."),
    _rule("dir", AUTO, CONTEXT, "Lists directory contents."),
)

CRITICAL_RULES: Tuple[CommandRule, ...] = (
    _rule("docker", APPROVAL, CRITICAL, "Starts containers and changes runtime state.", ["start"]),
    _rule("docker", APPROVAL, CRITICAL, "Stops containers impacting running services.", ["stop"]),
    _rule("docker", APPROVAL, CRITICAL, "Restarts containers and can interrupt workloads.", ["restart"]),
    _rule("docker", APPROVAL, CRITICAL, "Creates or modifies containers and volumes.", ["compose", "up"]),
    _rule("git", APPROVAL, CRITICAL, "Potentially discards commits or changes.", ["reset"]),
    _rule("git", APPROVAL, CRITICAL, "Deletes untracked files from the working tree.", ["clean"]),
    _rule("git", APPROVAL, CRITICAL, "Switches branches or overwrites files.", ["checkout"]),
    _rule("git", APPROVAL, CRITICAL, "Mutates local repository state.", ["pull"]),
    _rule("npm", APPROVAL, CRITICAL, "Modifies node_modules and lockfiles.", ["install"]),
    _rule("npm", APPROVAL, CRITICAL, "Upgrades dependencies and may break builds.", ["update"]),
    _rule("npm", APPROVAL, CRITICAL, "Runs arbitrary project scripts.", ["run"]),
    _rule("pip", APPROVAL, CRITICAL, "Installs Python packages and alters environment.", ["install"]),
    _rule("apt", APPROVAL, CRITICAL, "Installs or removes system packages."),
    _rule("brew", APPROVAL, CRITICAL, "Installs or removes packages on macOS."),
    _rule("kubectl", APPROVAL, CRITICAL, "Cluster operations can impact production workloads."),
    _rule("taskkill", APPROVAL, CRITICAL, "Terminates running processes."),
)

FORBIDDEN_RULES: Tuple[CommandRule, ...] = (
    _rule("docker", BLOCKED, FORBIDDEN, "Removes containers and risks data loss.", ["rm"]),
    _rule("docker", BLOCKED, FORBIDDEN, "Removes images and risks data loss.", ["rmi"]),
    _rule("docker", BLOCKED, FORBIDDEN, "Prunes containers, images or volumes.", ["system", "prune"]),
    _rule(
        "docker",
        BLOCKED,
        FORBIDDEN,
        "docker compose down removes services and should never run automatically.",
        ["compose", "down"],
    ),
    _rule("docker", BLOCKED, FORBIDDEN, "Removes services and volumes.", ["compose", "rm"]),
    _rule("rm", BLOCKED, FORBIDDEN, "Deleting files is never performed automatically."),
    _rule("rd", BLOCKED, FORBIDDEN, "Removing directories is not permitted."),
    _rule("rmdir", BLOCKED, FORBIDDEN, "Removing directories is not permitted."),
    _rule("del", BLOCKED, FORBIDDEN, "Deleting files is not permitted."),
    _rule("erase", BLOCKED, FORBIDDEN, "Deleting data is not permitted."),
    _rule("format", BLOCKED, FORBIDDEN, "Formatting drives is destructive and disallowed."),
    _rule("shutdown", BLOCKED, FORBIDDEN, "System power operations require manual execution by the user."),
    _rule("reboot", BLOCKED, FORBIDDEN, "System reboot requires explicit manual action."),
    _rule("poweroff", BLOCKED, FORBIDDEN, "Powering off the machine is never automated."),
    _rule("mkfs", BLOCKED, FORBIDDEN, "Creating filesystems is destructive."),
    _rule("diskpart", BLOCKED, FORBIDDEN, "Disk partition changes are disallowed."),
)

_TIER_ORDER = (FORBIDDEN, CRITICAL, CONTEXT)


def load_rules(path: Path) -> List[CommandRule]:
    """
    Load operator-supplied rules from a JSON file.

    The file holds a list of objects with ``command``, ``level``, ``category``,
    ``reason`` and optionally ``args_prefix`` and ``notes``. A forbidden rule is
    always forced to ``blocked``.

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValueError: If an entry is malformed
    """
    with path.open("r", encoding="utf-8") as policy_file:
        raw = json.load(policy_file)

    if not isinstance(raw, list):
        raise ValueError("Policy file must contain a list of rules")

    rules: List[CommandRule] = []
    for index, entry in enumerate(raw):
        if not isinstance(entry, dict) or not entry.get("command") or not entry.get("reason"):
            raise ValueError(f"Rule #{index} needs at least 'command' and 'reason'")
        try:
            category = PolicyCategory(entry.get("category", "critical"))
            level = ApprovalLevel(entry.get("level", "approval_required"))
        except ValueError as exc:
            raise ValueError(f"Rule #{index}: {exc}") from exc
        if category is FORBIDDEN:
            level = BLOCKED
        rules.append(
            _rule(
                str(entry["command"]),
                level,
                category,
                str(entry["reason"]),
                [str(arg) for arg in entry.get("args_prefix", [])],
                entry.get("notes"),
            )
        )
    return rules


def build_rule_table(extra_rules: Iterable[CommandRule] = ()) -> Tuple[CommandRule, ...]:
    """Order rules forbidden, then critical, then context; extra rules lead their tier."""
    extra = list(extra_rules)
    builtin = {FORBIDDEN: FORBIDDEN_RULES, CRITICAL: CRITICAL_RULES, CONTEXT: CONTEXT_RULES}
    table: List[CommandRule] = []
    for tier in _TIER_ORDER:
        table.extend(rule for rule in extra if rule.category is tier)
        table.extend(builtin[tier])
    return tuple(table)


def _initial_rules() -> Tuple[CommandRule, ...]:
    if config.policy_path is None:
        return build_rule_table()
    return build_rule_table(load_rules(config.policy_path))


# Loaded once at module import; immutable for the life of the process.
RULES: Tuple[CommandRule, ...] = _initial_rules()


def matches_rule(rule: CommandRule, command: str, args: Sequence[str]) -> bool:
    """Command must match exactly; the rule's argument prefix must match positionally."""
    if rule.command != command:
        return False
    if not rule.args_prefix:
        return True
    if len(rule.args_prefix) > len(args):
        return False
    return all(expected == actual for expected, actual in zip(rule.args_prefix, args))


def _build_decision(rule: CommandRule) -> PolicyDecision:
    return PolicyDecision(
        level=rule.level,
        reason=rule.reason,
        category=rule.category,
        suggested_confirmation=APPROVAL_CONFIRMATION if rule.level is APPROVAL else None,
        notes=rule.notes,
    )


def default_decision(command: str) -> PolicyDecision:
    return PolicyDecision(
        level=APPROVAL,
        category=CRITICAL,
        reason=f"No explicit policy found for '{command}'. Defaulting to user approval.",
        suggested_confirmation=DEFAULT_CONFIRMATION,
    )


def classify(
    command: str,
    args: Sequence[str] = (),
    rules: Optional[Sequence[CommandRule]] = None,
) -> PolicyDecision:
    """
    Determine how a command request must be handled.

    Pure function: identical inputs always yield identical decisions. Unknown
    commands fall through to an approval-required default, never to auto.
    """
    normalized_command = (command or "").strip().lower()
    normalized_args = [str(arg).lower() for arg in args]

    for rule in rules if rules is not None else RULES:
        if matches_rule(rule, normalized_command, normalized_args):
            return _build_decision(rule)

    return default_decision(normalized_command)


def is_context_only(command: str, args: Sequence[str] = ()) -> bool:
    """Returns True when a command may run without asking the user."""
    return classify(command, args).level is AUTO


def ensure_not_blocked(command: str, args: Sequence[str] = ()) -> PolicyDecision:
    """Raise PolicyViolation for blocked commands; return the decision otherwise."""
    decision = classify(command, args)
    if decision.level is BLOCKED:
        raise PolicyViolation(command, list(args), decision.reason)
    return decision


def describe_rules(rules: Optional[Sequence[CommandRule]] = None) -> List[Dict[str, Any]]:
    """Render the active table for display in the CLI."""
    return [
        {
            "command": rule.command,
            "args_prefix": list(rule.args_prefix),
            "level": rule.level.value,
            "category": rule.category.value,
            "reason": rule.reason,
        }
        for rule in (rules if rules is not None else RULES)
    ]
