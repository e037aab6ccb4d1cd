"""PowerShell adapter implementation."""

from __future__ import annotations

import shutil
import subprocess

from .base import CommandResult, ShellAdapter, normalize_output


class PowerShellAdapter(ShellAdapter):
    """Adapter for command execution via PowerShell."""

    def __init__(self, executable: str | None = None) -> None:
        self.executable = executable or _default_executable()

    @property
    def name(self) -> str:
        return "powershell"

    def execute(
        self,
        command: str,
        *,
        cwd: str | None = None,
        timeout: float | None = None,
    ) -> CommandResult:
        self.log_request(command, cwd=cwd, timeout=timeout)
        started = self.monotonic_now()
        try:
            process = subprocess.run(
                [self.executable, "-NoProfile", "-NonInteractive", "-Command", command],
                capture_output=True,
                cwd=cwd,
                timeout=timeout,
                check=False,
                text=False,
            )
            result = CommandResult(
                command=command,
                shell=self.name,
                returncode=process.returncode,
                stdout=normalize_output(process.stdout),
                stderr=normalize_output(process.stderr),
                duration_seconds=self.monotonic_now() - started,
            )
        except subprocess.TimeoutExpired as exc:
            result = CommandResult(
                command=command,
                shell=self.name,
                returncode=124,
                stdout=normalize_output(exc.stdout),
                stderr=normalize_output(exc.stderr),
                timed_out=True,
                duration_seconds=self.monotonic_now() - started,
            )
        except FileNotFoundError:
            result = CommandResult(
                command=command,
                shell=self.name,
                returncode=127,
                stdout="",
                stderr=f"{self.name} executable not found: {self.executable}",
                executed=False,
                duration_seconds=self.monotonic_now() - started,
            )

        self.log_result(result)
        return result


def _default_executable() -> str:
    if shutil.which("pwsh"):
        return "pwsh"
    return "powershell.exe"
