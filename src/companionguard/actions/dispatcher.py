"""Single gate through which every local effect passes."""

from __future__ import annotations

import logging
import subprocess
from collections.abc import Mapping

import psutil

from companionguard.safety.classifier import classify_request
from companionguard.safety.models import (
    ActionKind,
    ActionRequest,
    ActionResult,
    ReasonCategory,
    RiskLevel,
    SafetyVerdict,
)

from .audit import AuditRecord, AuditWriter, Outcome
from .handlers import DEFAULT_HANDLERS, Handler, HandlerEnvironment, HandlerOutput

LOGGER = logging.getLogger(__name__)

UNSUPPORTED_ACTION = "unsupported action"
CONFIRMATION_REQUIRED = "confirmation required"

_EXECUTION_FAULTS = (OSError, ValueError, subprocess.SubprocessError, psutil.Error)


class ActionDispatcher:
    """Classifies each request and runs its handler only when the verdict allows it.

    Nothing is remembered between calls: a request awaiting confirmation must be
    submitted again, unchanged except for ``confirmed=True``.
    """

    def __init__(
        self,
        *,
        environment: HandlerEnvironment,
        audit: AuditWriter,
        handlers: Mapping[ActionKind, Handler] | None = None,
    ) -> None:
        self.environment = environment
        self.audit = audit
        self.handlers = DEFAULT_HANDLERS if handlers is None else handlers

    def classify(self, request: ActionRequest) -> SafetyVerdict:
        try:
            return classify_request(request, self.environment.policy)
        except Exception:
            LOGGER.exception("request_classification_failed", extra={"action": request.action})
            return SafetyVerdict.blocked(
                "request could not be classified", ReasonCategory.INTERNAL_ERROR
            )

    def execute(self, request: ActionRequest) -> ActionResult:
        LOGGER.info(
            "action_request",
            extra={"action": request.action, "confirmed": request.confirmed},
        )
        kind = request.kind
        handler = self.handlers.get(kind) if kind is not None else None
        if handler is None:
            result = ActionResult(
                success=False,
                error=UNSUPPORTED_ACTION,
                safety=SafetyVerdict.safe(
                    f"no handler for action {request.action!r}; nothing was attempted",
                    ReasonCategory.UNSUPPORTED_ACTION,
                ),
            )
            return self._finish(request, result, "unsupported")

        verdict = self.classify(request)
        if verdict.risk is RiskLevel.BLOCKED:
            result = ActionResult(success=False, error=verdict.reason, safety=verdict)
            return self._finish(request, result, "blocked")

        if verdict.requires_confirmation and not request.confirmed:
            result = ActionResult(success=False, output=CONFIRMATION_REQUIRED, safety=verdict)
            return self._finish(request, result, "pending_confirmation")

        try:
            output = handler(request, self.environment)
        except _EXECUTION_FAULTS as exc:
            output = HandlerOutput(success=False, error=_describe(exc))
        except Exception as exc:
            LOGGER.exception("action_handler_crashed", extra={"action": request.action})
            output = HandlerOutput(success=False, error=_describe(exc))

        result = ActionResult(
            success=output.success,
            output=output.output,
            error=output.error,
            safety=verdict,
        )
        return self._finish(request, result, "succeeded" if output.success else "failed")

    def _finish(self, request: ActionRequest, result: ActionResult, outcome: Outcome) -> ActionResult:
        record = AuditRecord.from_result(request, result, outcome)
        try:
            self.audit.write(record)
        except Exception:
            LOGGER.exception("audit_write_failed", extra={"outcome": outcome})
        LOGGER.info(
            "action_result",
            extra={
                "action": request.action,
                "outcome": outcome,
                "success": result.success,
                "risk": result.safety.risk.label,
            },
        )
        return result


def _describe(exc: BaseException) -> str:
    message = str(exc).strip()
    if not message:
        return exc.__class__.__name__
    return message
