"""Narrow OS handlers, one per action kind.

Each handler performs only the operation its kind names, on the inputs the
request carries. Failures are raised as exceptions and folded into results by
the dispatcher.
"""

from __future__ import annotations

import json
import os
import platform
import shutil
import subprocess
import sys
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from types import MappingProxyType

import psutil

from companionguard.safety.classifier import SafetyPolicy
from companionguard.safety.models import ActionKind, ActionRequest
from companionguard.shell import ShellAdapter


@dataclass(frozen=True, slots=True)
class HandlerOutput:
    success: bool = True
    output: str | None = None
    error: str | None = None


@dataclass(slots=True)
class HandlerEnvironment:
    """Shared resources handed to every handler."""

    policy: SafetyPolicy
    shell: ShellAdapter
    command_timeout: float = 30.0
    max_read_bytes: int = 1_048_576
    terminate_timeout: float = 3.0

    def resolve(self, raw: str | None, *, field_name: str = "path") -> Path:
        if raw is None:
            msg = f"{field_name} is required"
            raise ValueError(msg)
        resolved = self.policy.resolve(raw)
        if resolved is None:
            msg = f"{field_name} could not be resolved: {raw!r}"
            raise ValueError(msg)
        return resolved


Handler = Callable[[ActionRequest, HandlerEnvironment], HandlerOutput]


def read_file(request: ActionRequest, env: HandlerEnvironment) -> HandlerOutput:
    path = env.resolve(request.path)
    with path.open("rb") as handle:
        payload = handle.read(env.max_read_bytes + 1)
    text = payload[: env.max_read_bytes].decode("utf-8", errors="replace")
    if len(payload) > env.max_read_bytes:
        text += f"\n[truncated after {env.max_read_bytes} bytes]"
    return HandlerOutput(output=text)


def write_file(request: ActionRequest, env: HandlerEnvironment) -> HandlerOutput:
    path = env.resolve(request.path)
    if request.content is None:
        msg = "content is required"
        raise ValueError(msg)
    data = request.content.encode("utf-8")
    with path.open("wb") as handle:
        handle.write(data)
    return HandlerOutput(output=f"Wrote {len(data)} bytes to {path}")


def delete_file(request: ActionRequest, env: HandlerEnvironment) -> HandlerOutput:
    path = env.resolve(request.path)
    if path.is_dir():
        msg = f"refusing to delete a directory: {path}"
        raise IsADirectoryError(msg)
    path.unlink()
    return HandlerOutput(output=f"Deleted {path}")


def move_file(request: ActionRequest, env: HandlerEnvironment) -> HandlerOutput:
    source = env.resolve(request.path)
    destination = env.resolve(request.destination, field_name="destination")
    if not source.exists():
        msg = f"no such file: {source}"
        raise FileNotFoundError(msg)
    shutil.move(str(source), str(destination))
    return HandlerOutput(output=f"Moved {source} to {destination}")


def list_directory(request: ActionRequest, env: HandlerEnvironment) -> HandlerOutput:
    path = env.resolve(request.path)
    entries = sorted(
        f"{entry.name}/" if entry.is_dir() else entry.name for entry in path.iterdir()
    )
    return HandlerOutput(output="\n".join(entries))


def run_shell_command(request: ActionRequest, env: HandlerEnvironment) -> HandlerOutput:
    if not request.command:
        msg = "command is required"
        raise ValueError(msg)
    result = env.shell.execute(
        request.command,
        cwd=str(env.policy.permitted_root),
        timeout=env.command_timeout,
    )
    if result.succeeded:
        return HandlerOutput(output=result.stdout)
    if result.timed_out:
        error = f"command timed out after {env.command_timeout}s"
    else:
        error = result.stderr.strip() or f"command exited with status {result.returncode}"
    return HandlerOutput(success=False, output=result.stdout, error=error)


def launch_app(request: ActionRequest, env: HandlerEnvironment) -> HandlerOutput:
    if not request.app_name or not request.app_name.strip():
        msg = "app_name is required"
        raise ValueError(msg)
    name = request.app_name.strip()
    if sys.platform == "darwin":
        args = ["open", "-a", name]
    elif os.name == "nt":
        args = ["cmd", "/d", "/c", "start", "", name]
    else:
        executable = shutil.which(name)
        if executable is None:
            msg = f"application not found: {name}"
            raise FileNotFoundError(msg)
        args = [executable]
    subprocess.Popen(
        args,
        cwd=str(env.policy.permitted_root),
        stdin=subprocess.DEVNULL,
        stdout=subprocess.DEVNULL,
        stderr=subprocess.DEVNULL,
        start_new_session=os.name != "nt",
    )
    return HandlerOutput(output=f"Launched {name}")


def kill_process(request: ActionRequest, env: HandlerEnvironment) -> HandlerOutput:
    if not request.process_name or not request.process_name.strip():
        msg = "process_name is required"
        raise ValueError(msg)
    target = request.process_name.strip()
    processes = _matching_processes(target, _protected_pids(env.policy))
    if not processes:
        msg = f"no running process matches {target!r}"
        raise ProcessLookupError(msg)

    for process in processes:
        process.terminate()
    _gone, alive = psutil.wait_procs(processes, timeout=env.terminate_timeout)
    for process in alive:
        process.kill()
    pids = ", ".join(str(process.pid) for process in processes)
    return HandlerOutput(output=f"Terminated {len(processes)} process(es): {pids}")


def _protected_pids(policy: SafetyPolicy) -> frozenset[int]:
    return frozenset({0, 1, os.getpid(), *policy.protected_pids})


def _matching_processes(target: str, protected: frozenset[int]) -> list[psutil.Process]:
    """Processes named by ``target``; protected PIDs are never returned."""
    if target.isdigit():
        pid = int(target)
        if pid in protected:
            msg = f"refusing to terminate protected process {pid}"
            raise PermissionError(msg)
        try:
            return [psutil.Process(pid)]
        except psutil.NoSuchProcess:
            return []
    wanted = target.lower().removesuffix(".exe")
    matches: list[psutil.Process] = []
    skipped: list[int] = []
    for process in psutil.process_iter(["name"]):
        name = (process.info.get("name") or "").lower().removesuffix(".exe")
        if name != wanted:
            continue
        if process.pid in protected:
            skipped.append(process.pid)
        else:
            matches.append(process)
    if skipped and not matches:
        msg = f"refusing to terminate protected process(es): {', '.join(map(str, skipped))}"
        raise PermissionError(msg)
    return matches


def system_info(_request: ActionRequest, env: HandlerEnvironment) -> HandlerOutput:
    memory = psutil.virtual_memory()
    disk = psutil.disk_usage(str(env.policy.permitted_root))
    snapshot = {
        "os": platform.system(),
        "os_release": platform.release(),
        "platform": platform.platform(),
        "architecture": platform.machine(),
        "hostname": platform.node(),
        "python": platform.python_version(),
        "cpu_count": psutil.cpu_count(logical=True),
        "memory_total": memory.total,
        "memory_available": memory.available,
        "disk_total": disk.total,
        "disk_free": disk.free,
        "boot_time": datetime.fromtimestamp(psutil.boot_time(), tz=timezone.utc).isoformat(),
        "shell": env.shell.name,
    }
    return HandlerOutput(output=json.dumps(snapshot, indent=2))


DEFAULT_HANDLERS: Mapping[ActionKind, Handler] = MappingProxyType(
    {
        ActionKind.READ_FILE: read_file,
        ActionKind.WRITE_FILE: write_file,
        ActionKind.DELETE_FILE: delete_file,
        ActionKind.MOVE_FILE: move_file,
        ActionKind.LIST_DIRECTORY: list_directory,
        ActionKind.RUN_SHELL_COMMAND: run_shell_command,
        ActionKind.LAUNCH_APP: launch_app,
        ActionKind.KILL_PROCESS: kill_process,
        ActionKind.SYSTEM_INFO: system_info,
    }
)
