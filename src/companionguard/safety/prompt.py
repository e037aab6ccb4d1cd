"""Policy description injected into the remote reasoning context."""

from __future__ import annotations

from .models import RiskLevel
from .rules import SHELL_RULES

SAFETY_PROMPT_VERSION = "4"


def _rule_lines(risk: RiskLevel) -> list[str]:
    seen: list[str] = []
    for rule in SHELL_RULES:
        if rule.risk is risk and rule.description not in seen:
            seen.append(rule.description)
    return [f"  - {description}" for description in seen]


def safety_prompt() -> str:
    """Return the versioned safety policy text.

    The text depends only on the static rule table, so repeated calls return the
    same string.
    """
    lines = [
        f"[Local companion safety policy v{SAFETY_PROMPT_VERSION}]",
        (
            "Every action you request on the user's machine is classified before it runs."
            " There are four tiers: Safe, Caution, Dangerous and Blocked."
        ),
        "- Safe actions (read-only commands, reads inside the permitted folder) run immediately.",
        (
            "- Caution actions change local state. Reversible changes run immediately;"
            " deleting or overwriting files waits for the user to confirm."
        ),
        (
            "- Dangerous actions always wait for explicit confirmation from the user at the"
            " machine. Do not retry them with different wording."
        ),
        "- Blocked actions never run, even when the user confirms. Families that are blocked:",
        *_rule_lines(RiskLevel.BLOCKED),
        "- Families that always need confirmation:",
        *_rule_lines(RiskLevel.DANGEROUS),
        (
            "Files outside the permitted folder, system directories and credential stores are"
            " protected: writing, moving or deleting there needs confirmation."
        ),
        (
            "Prefer the narrowest action that achieves the goal: read_file over shell `cat`,"
            " delete_file for one file instead of recursive shell deletion."
        ),
        (
            "When an action is refused or awaits confirmation, explain the reason to the user"
            " instead of looking for a way around the policy."
        ),
    ]
    return "\n".join(lines)
