"""Request, verdict and result types shared by the classifier and dispatcher."""

from __future__ import annotations

import enum
import re
from collections.abc import Mapping
from dataclasses import dataclass

_SECRET_PATTERNS = [
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"(--?(?:password|token|secret|api[-_]?key)\s+)([^\s]+)",
        r"((?:password|token|secret|api[-_]?key)\s*=\s*)([^\s]+)",
        r"(authorization:\s*bearer\s+)([^\s'\"]+)",
    )
]


class ActionKind(str, enum.Enum):
    """Kinds of local effect the companion knows how to perform."""

    READ_FILE = "read_file"
    WRITE_FILE = "write_file"
    DELETE_FILE = "delete_file"
    MOVE_FILE = "move_file"
    LIST_DIRECTORY = "list_directory"
    RUN_SHELL_COMMAND = "run_shell_command"
    LAUNCH_APP = "launch_app"
    KILL_PROCESS = "kill_process"
    SYSTEM_INFO = "system_info"

    @classmethod
    def parse(cls, value: object) -> ActionKind | None:
        """Map a wire-level action name to a kind, or ``None`` when unknown."""
        if isinstance(value, ActionKind):
            return value
        if not isinstance(value, str):
            return None
        normalized = value.strip().lower()
        normalized = _ACTION_ALIASES.get(normalized, normalized)
        try:
            return cls(normalized)
        except ValueError:
            return None

    @property
    def is_file_operation(self) -> bool:
        return self in FILE_ACTIONS


_ACTION_ALIASES = {
    "shell": "run_shell_command",
    "list_dir": "list_directory",
}

FILE_ACTIONS = frozenset(
    {
        ActionKind.READ_FILE,
        ActionKind.WRITE_FILE,
        ActionKind.DELETE_FILE,
        ActionKind.MOVE_FILE,
        ActionKind.LIST_DIRECTORY,
    }
)


class RiskLevel(enum.IntEnum):
    """Ordered by real-world damage potential."""

    SAFE = 0
    CAUTION = 1
    DANGEROUS = 2
    BLOCKED = 3

    @property
    def label(self) -> str:
        return self.name.capitalize()


class ReasonCategory(str, enum.Enum):
    NOTHING_TO_CHECK = "nothing_to_check"
    READ_ONLY = "read_only"
    LOCAL_CHANGE = "local_change"
    NETWORK = "network"
    CODE_EXECUTION = "code_execution"
    DESTRUCTIVE_DELETE = "destructive_delete"
    DISK_DESTRUCTION = "disk_destruction"
    PRIVILEGE_ESCALATION = "privilege_escalation"
    PROCESS_TERMINATION = "process_termination"
    REMOTE_CODE = "remote_code"
    FORK_BOMB = "fork_bomb"
    SYSTEM_POWER = "system_power"
    PERMISSIONS = "permissions"
    SYSTEM_CONFIG = "system_config"
    SECRET_ACCESS = "secret_access"
    PROTECTED_PATH = "protected_path"
    OUTSIDE_ROOT = "outside_root"
    UNRESOLVABLE_PATH = "unresolvable_path"
    MALFORMED_INPUT = "malformed_input"
    UNSUPPORTED_ACTION = "unsupported_action"
    INTERNAL_ERROR = "internal_error"


@dataclass(frozen=True, slots=True)
class SafetyVerdict:
    """Classifier output describing whether and how an action may proceed.

    Build verdicts through :meth:`decide` so ``allowed`` and
    ``requires_confirmation`` always agree with ``risk``.
    """

    allowed: bool
    risk: RiskLevel
    reason: str
    requires_confirmation: bool
    category: ReasonCategory = ReasonCategory.LOCAL_CHANGE
    rule_id: str | None = None

    @classmethod
    def decide(
        cls,
        risk: RiskLevel,
        category: ReasonCategory,
        reason: str,
        *,
        confirm: bool = False,
        rule_id: str | None = None,
    ) -> SafetyVerdict:
        """Create a verdict for ``risk``.

        ``confirm`` only matters for ``CAUTION``: dangerous verdicts always need
        confirmation, safe and blocked ones never do.
        """
        if risk is RiskLevel.DANGEROUS:
            requires_confirmation = True
        elif risk is RiskLevel.CAUTION:
            requires_confirmation = confirm
        else:
            requires_confirmation = False
        return cls(
            allowed=risk is not RiskLevel.BLOCKED,
            risk=risk,
            reason=reason,
            requires_confirmation=requires_confirmation,
            category=category,
            rule_id=rule_id,
        )

    @classmethod
    def safe(cls, reason: str, category: ReasonCategory = ReasonCategory.READ_ONLY) -> SafetyVerdict:
        return cls.decide(RiskLevel.SAFE, category, reason)

    @classmethod
    def blocked(
        cls, reason: str, category: ReasonCategory, *, rule_id: str | None = None
    ) -> SafetyVerdict:
        return cls.decide(RiskLevel.BLOCKED, category, reason, rule_id=rule_id)

    def with_confirmation(self) -> SafetyVerdict:
        """Return a copy that needs confirmation when the tier permits it."""
        if self.requires_confirmation or self.risk is not RiskLevel.CAUTION:
            return self
        return SafetyVerdict.decide(
            self.risk, self.category, self.reason, confirm=True, rule_id=self.rule_id
        )

    def to_dict(self) -> dict[str, object]:
        return {
            "allowed": self.allowed,
            "risk": self.risk.label,
            "reason": self.reason,
            "requires_confirmation": self.requires_confirmation,
            "category": self.category.value,
            "rule_id": self.rule_id,
        }


@dataclass(frozen=True, slots=True)
class ActionRequest:
    """A single action proposed by the remote orchestrator.

    ``confirmed`` must only be set when a human has seen the verdict for this
    exact request; nothing is remembered between submissions.
    """

    action: str
    path: str | None = None
    destination: str | None = None
    command: str | None = None
    content: str | None = None
    process_name: str | None = None
    app_name: str | None = None
    confirmed: bool = False

    @property
    def kind(self) -> ActionKind | None:
        return ActionKind.parse(self.action)

    @classmethod
    def from_dict(cls, payload: Mapping[str, object]) -> ActionRequest:
        def optional(key: str) -> str | None:
            value = payload.get(key)
            if value is None:
                return None
            return value if isinstance(value, str) else str(value)

        action = payload.get("action")
        return cls(
            action=action if isinstance(action, str) else "",
            path=optional("path"),
            destination=optional("destination"),
            command=optional("command"),
            content=optional("content"),
            process_name=optional("process_name"),
            app_name=optional("app_name"),
            confirmed=payload.get("confirmed") is True,
        )

    def summary(self) -> dict[str, object]:
        """Audit-safe view of the request: content is reduced to its length."""
        return {
            "action": self.action,
            "path": self.path,
            "destination": self.destination,
            "command": mask_secrets(self.command) if self.command is not None else None,
            "content_length": len(self.content) if self.content is not None else None,
            "process_name": self.process_name,
            "app_name": self.app_name,
            "confirmed": self.confirmed,
        }


@dataclass(frozen=True, slots=True)
class ActionResult:
    """Outcome of an execute call. ``safety`` is attached even when nothing ran."""

    success: bool
    safety: SafetyVerdict
    output: str | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "success": self.success,
            "output": self.output,
            "error": self.error,
            "safety": self.safety.to_dict(),
        }


def mask_secrets(command: str) -> str:
    sanitized = command
    for pattern in _SECRET_PATTERNS:
        sanitized = pattern.sub(r"\1***", sanitized)
    return sanitized
