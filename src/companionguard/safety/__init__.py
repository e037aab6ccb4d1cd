"""Risk classification for actions requested by the remote orchestrator."""

from .classifier import (
    SafetyPolicy,
    classify_file_operation,
    classify_move,
    classify_request,
    classify_shell_command,
    normalize_command,
)
from .models import (
    ActionKind,
    ActionRequest,
    ActionResult,
    ReasonCategory,
    RiskLevel,
    SafetyVerdict,
)
from .prompt import SAFETY_PROMPT_VERSION, safety_prompt

__all__ = [
    "SAFETY_PROMPT_VERSION",
    "ActionKind",
    "ActionRequest",
    "ActionResult",
    "ReasonCategory",
    "RiskLevel",
    "SafetyPolicy",
    "SafetyVerdict",
    "classify_file_operation",
    "classify_move",
    "classify_request",
    "classify_shell_command",
    "normalize_command",
    "safety_prompt",
]
