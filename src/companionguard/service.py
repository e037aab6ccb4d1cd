"""Entry points the IPC layer calls into."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass

from .actions import ActionDispatcher, AuditWriter, HandlerEnvironment, JsonlAuditWriter
from .config import AppConfig
from .connection import CredentialStore
from .safety import (
    ActionKind,
    ActionRequest,
    ActionResult,
    ReasonCategory,
    SafetyPolicy,
    SafetyVerdict,
    classify_file_operation,
    classify_shell_command,
    safety_prompt,
)
from .shell import create_shell_adapter

LOGGER = logging.getLogger(__name__)

COMPANION_VERSION = "0.1.0"


@dataclass(frozen=True, slots=True)
class CompanionStatus:
    connected: bool
    gateway_url: str | None
    safety_active: bool = True
    version: str = COMPANION_VERSION

    def to_dict(self) -> dict[str, object]:
        return {
            "connected": self.connected,
            "gateway_url": self.gateway_url,
            "safety_active": self.safety_active,
            "version": self.version,
        }


class CompanionService:
    """Owns the dispatcher, its worker pool and the audit sink.

    ``check_safety`` runs on the caller's thread; executions go through the
    pool so long handlers never hold up classification requests.
    """

    def __init__(
        self,
        *,
        dispatcher: ActionDispatcher,
        credentials: CredentialStore,
        max_workers: int = 4,
    ) -> None:
        self.dispatcher = dispatcher
        self.credentials = credentials
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="companion-action"
        )

    @classmethod
    def from_config(cls, config: AppConfig, *, audit: AuditWriter | None = None) -> CompanionService:
        policy = SafetyPolicy.build(
            config.permitted_root,
            credentials_path=config.credentials_path,
            extra_protected_paths=[config.audit_dir],
            confirm_caution=config.confirm_caution,
        )
        environment = HandlerEnvironment(
            policy=policy,
            shell=create_shell_adapter(config.shell),
            command_timeout=config.command_timeout,
            max_read_bytes=config.max_read_bytes,
        )
        dispatcher = ActionDispatcher(
            environment=environment,
            audit=audit if audit is not None else JsonlAuditWriter(config.audit_dir),
        )
        LOGGER.debug(
            "companion_service_ready",
            extra={"permitted_root": str(policy.permitted_root), "shell": config.shell},
        )
        return cls(
            dispatcher=dispatcher,
            credentials=CredentialStore(config.credentials_path),
            max_workers=config.max_workers,
        )

    @property
    def policy(self) -> SafetyPolicy:
        return self.dispatcher.environment.policy

    def submit_action(self, request: ActionRequest | Mapping[str, object]) -> Future[ActionResult]:
        if not isinstance(request, ActionRequest):
            request = ActionRequest.from_dict(request)
        return self._executor.submit(self.dispatcher.execute, request)

    def execute_action(self, request: ActionRequest | Mapping[str, object]) -> ActionResult:
        return self.submit_action(request).result()

    def check_safety(
        self, action: str, path: str | None = None, command: str | None = None
    ) -> SafetyVerdict:
        """Preview the verdict for a command or a path without executing anything."""
        if command is not None:
            return self._tuned(classify_shell_command(command))
        if path is not None:
            return self._tuned(classify_file_operation(action, path, self.policy))
        return SafetyVerdict.safe("nothing to check", ReasonCategory.NOTHING_TO_CHECK)

    def get_safety_prompt(self) -> str:
        return safety_prompt()

    def get_status(self) -> CompanionStatus:
        credentials = self.credentials.load()
        return CompanionStatus(
            connected=credentials is not None,
            gateway_url=credentials.gateway_url if credentials is not None else None,
        )

    def get_system_info(self) -> ActionResult:
        return self.execute_action(ActionRequest(action=ActionKind.SYSTEM_INFO.value))

    def close(self) -> None:
        self._executor.shutdown(wait=True)
        self.dispatcher.audit.close()

    def __enter__(self) -> CompanionService:
        return self

    def __exit__(self, *_exc: object) -> None:
        self.close()

    def _tuned(self, verdict: SafetyVerdict) -> SafetyVerdict:
        if self.policy.confirm_caution:
            return verdict.with_confirmation()
        return verdict
