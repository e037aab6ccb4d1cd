from __future__ import annotations

import json
import threading
from pathlib import Path

import pytest

from companionguard.actions import (
    CONFIRMATION_REQUIRED,
    ActionDispatcher,
    HandlerEnvironment,
    HandlerOutput,
    MemoryAuditWriter,
)
from companionguard.config import AppConfig
from companionguard.connection import CredentialStore
from companionguard.safety import (
    ActionKind,
    ActionRequest,
    ReasonCategory,
    RiskLevel,
    SafetyPolicy,
    safety_prompt,
)
from companionguard.service import COMPANION_VERSION, CompanionService
from companionguard.shell.base import CommandResult, ShellAdapter


class FakeShell(ShellAdapter):
    @property
    def name(self) -> str:
        return "fake"

    def execute(
        self, command: str, *, cwd: str | None = None, timeout: float | None = None
    ) -> CommandResult:
        return CommandResult(command=command, shell=self.name, returncode=0, stdout=command, stderr="")


def _service(
    root: Path,
    *,
    audit: MemoryAuditWriter | None = None,
    confirm_caution: bool = False,
    handlers: dict[ActionKind, object] | None = None,
    credentials: Path | None = None,
) -> CompanionService:
    policy = SafetyPolicy.build(
        root, home=root.parent, system_paths=[], confirm_caution=confirm_caution
    )
    dispatcher = ActionDispatcher(
        environment=HandlerEnvironment(policy=policy, shell=FakeShell()),
        audit=audit or MemoryAuditWriter(),
        handlers=handlers,  # type: ignore[arg-type]
    )
    return CompanionService(
        dispatcher=dispatcher,
        credentials=CredentialStore(credentials or root / "missing-credentials.json"),
        max_workers=2,
    )


@pytest.fixture
def root(tmp_path: Path) -> Path:
    workspace = tmp_path / "workspace"
    workspace.mkdir()
    return workspace


def test_execute_action_accepts_payload_dict(root: Path) -> None:
    with _service(root) as service:
        result = service.execute_action({"action": "shell", "command": "echo hi", "extra": 1})

    assert result.success is True
    assert result.output == "echo hi"


def test_execute_action_requires_literal_true_confirmation(root: Path) -> None:
    with _service(root) as service:
        result = service.execute_action(
            {"action": "run_shell_command", "command": "sudo reboot", "confirmed": "yes"}
        )

    assert result.success is False
    assert result.output == CONFIRMATION_REQUIRED


def test_check_safety_prefers_command_over_path(root: Path) -> None:
    with _service(root) as service:
        verdict = service.check_safety("run_shell_command", path="notes.txt", command="rm -rf /")

    assert verdict.risk is RiskLevel.BLOCKED


def test_check_safety_uses_path(root: Path) -> None:
    with _service(root) as service:
        verdict = service.check_safety("delete_file", path="notes.txt")

    assert verdict.risk is RiskLevel.CAUTION
    assert verdict.requires_confirmation is True


def test_check_safety_with_nothing_to_check(root: Path) -> None:
    with _service(root) as service:
        verdict = service.check_safety("run_shell_command")

    assert verdict.risk is RiskLevel.SAFE
    assert verdict.allowed is True
    assert verdict.reason == "nothing to check"
    assert verdict.category is ReasonCategory.NOTHING_TO_CHECK


def test_check_safety_honours_confirm_caution(root: Path) -> None:
    with _service(root, confirm_caution=True) as service:
        verdict = service.check_safety("run_shell_command", command="mkdir build")

    assert verdict.requires_confirmation is True


def test_check_safety_never_executes(root: Path) -> None:
    audit = MemoryAuditWriter()
    with _service(root, audit=audit) as service:
        service.check_safety("run_shell_command", command="ls")

    assert audit.records == []


def test_check_safety_is_not_starved_by_running_actions(root: Path) -> None:
    release = threading.Event()
    started = threading.Event()

    def slow(_request: ActionRequest, _env: HandlerEnvironment) -> HandlerOutput:
        started.set()
        release.wait(5)
        return HandlerOutput(output="done")

    with _service(root, handlers={ActionKind.SYSTEM_INFO: slow}) as service:
        pending = service.submit_action(ActionRequest("system_info"))
        assert started.wait(5)

        verdict = service.check_safety("run_shell_command", command="ls")

        assert verdict.risk is RiskLevel.SAFE
        assert not pending.done()
        release.set()
        assert pending.result(5).output == "done"


def test_get_safety_prompt(root: Path) -> None:
    with _service(root) as service:
        assert service.get_safety_prompt() == safety_prompt()


def test_status_without_credentials(root: Path) -> None:
    with _service(root) as service:
        status = service.get_status()

    assert status.connected is False
    assert status.gateway_url is None
    assert status.safety_active is True
    assert status.version == COMPANION_VERSION


def test_status_with_credentials(root: Path, tmp_path: Path) -> None:
    credentials = tmp_path / "credentials.json"
    credentials.write_text(
        json.dumps({"gateway_url": "https://gw.example.com/", "companion_id": "c-1"}),
        encoding="utf-8",
    )

    with _service(root, credentials=credentials) as service:
        status = service.get_status().to_dict()

    assert status == {
        "connected": True,
        "gateway_url": "https://gw.example.com",
        "safety_active": True,
        "version": COMPANION_VERSION,
    }


@pytest.mark.parametrize("content", ["{broken", "[]", json.dumps({"gateway_url": 3})])
def test_invalid_credentials_mean_disconnected(tmp_path: Path, content: str) -> None:
    path = tmp_path / "credentials.json"
    path.write_text(content, encoding="utf-8")

    assert CredentialStore(path).load() is None


def test_get_system_info_goes_through_dispatcher(root: Path) -> None:
    audit = MemoryAuditWriter()

    def info(_request: ActionRequest, _env: HandlerEnvironment) -> HandlerOutput:
        return HandlerOutput(output="{}")

    with _service(root, audit=audit, handlers={ActionKind.SYSTEM_INFO: info}) as service:
        result = service.get_system_info()

    assert result.success is True
    assert result.safety.risk is RiskLevel.SAFE
    assert audit.records[0].request["action"] == "system_info"


def test_close_closes_audit(root: Path) -> None:
    audit = MemoryAuditWriter()
    service = _service(root, audit=audit)

    service.close()

    assert audit.closed is True


def test_from_config_builds_working_service(root: Path, tmp_path: Path) -> None:
    config = AppConfig(
        permitted_root=str(root),
        credentials_path=str(tmp_path / "creds.json"),
        audit_dir=str(tmp_path / "audit"),
        shell="bash",
        command_timeout=3.0,
        max_read_bytes=64,
        max_workers=1,
        confirm_caution=False,
        log_level="INFO",
    )
    audit = MemoryAuditWriter()

    with CompanionService.from_config(config, audit=audit) as service:
        assert service.policy.permitted_root == root.resolve()
        assert service.dispatcher.environment.max_read_bytes == 64
        verdict = service.check_safety("read_file", path=str(tmp_path / "creds.json"))

    assert verdict.category is ReasonCategory.SECRET_ACCESS


def test_from_config_protects_audit_directory(root: Path, tmp_path: Path) -> None:
    config = AppConfig(
        permitted_root=str(root),
        credentials_path=str(tmp_path / "creds.json"),
        audit_dir=str(root / "logs"),
        shell="bash",
        command_timeout=3.0,
        max_read_bytes=64,
        max_workers=1,
        confirm_caution=False,
        log_level="INFO",
    )

    with CompanionService.from_config(config, audit=MemoryAuditWriter()) as service:
        verdict = service.check_safety("write_file", path="logs/audit-2026-10-17.log")

    assert verdict.risk is RiskLevel.DANGEROUS
    assert verdict.category is ReasonCategory.PROTECTED_PATH
    assert verdict.requires_confirmation is True
