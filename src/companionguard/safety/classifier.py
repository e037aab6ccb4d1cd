"""Pure, fail-closed risk classification of proposed actions."""

from __future__ import annotations

import logging
import os
import posixpath
import re
import unicodedata
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path

from .models import ActionKind, ActionRequest, ReasonCategory, RiskLevel, SafetyVerdict
from .rules import (
    READ_ONLY_GIT_SUBCOMMANDS,
    READ_ONLY_PROGRAMS,
    SHELL_RULES,
    WRITING_OPTIONS,
)

LOGGER = logging.getLogger(__name__)

_IFS_PATTERN = re.compile(r"\$\{ifs\}|\$ifs\b")
_BRACED_VARIABLE = re.compile(r"\$\{(\w+)\}")
_QUOTES = re.compile(r"['\"]")
_ESCAPE = re.compile(r"(?<![:\\])\\(?=[^\s\\])")
_HORIZONTAL_SPACE = re.compile(r"[ \t\f\v]+")
_ABSOLUTE_PATH = re.compile(r"(?<![^\s=<>])/[^\s;&|<>()`]*")
_SEGMENT_SPLIT = re.compile(r"&&|\|\||;|\||(?<![<>])&(?!>)|\n|`|\$\(|\(|\)|\{|\}")
_ASSIGNMENT = re.compile(r"^\w+=\S*$")
_REDIRECT = re.compile(r"(?<![<])>")
_APP_NAME = re.compile(r"^[\w .+()-]+$")

_TRANSPARENT_WRAPPERS = frozenset(
    {"env", "nohup", "command", "exec", "builtin", "time", "nice", "ionice", "timeout", "stdbuf"}
)
_ELEVATION_WRAPPERS = frozenset({"sudo", "doas", "pkexec", "gsudo", "runas", "su"})

CRITICAL_PROCESSES = frozenset(
    {
        "init",
        "systemd",
        "launchd",
        "kernel_task",
        "windowserver",
        "loginwindow",
        "csrss",
        "wininit",
        "winlogon",
        "lsass",
        "smss",
        "services",
    }
)

POSIX_SYSTEM_PATHS = (
    "/bin",
    "/boot",
    "/dev",
    "/etc",
    "/lib",
    "/lib32",
    "/lib64",
    "/opt",
    "/proc",
    "/root",
    "/sbin",
    "/srv",
    "/sys",
    "/usr",
    "/var/lib",
    "/var/log",
    "/var/db",
    "/var/spool",
    "/var/mail",
    "/var/root",
    "/System",
    "/Library",
    "/Applications",
    "/private/etc",
    "/private/var/db",
    "/private/var/log",
    "/private/var/root",
)

# Relative to the user's home directory.
SECRET_HOME_ENTRIES = (
    ".ssh",
    ".gnupg",
    ".aws",
    ".azure",
    ".kube",
    ".netrc",
    ".pgpass",
    ".git-credentials",
    ".password-store",
    ".docker/config.json",
    ".config/gcloud",
    "Library/Keychains",
)


def _windows_system_paths() -> tuple[str, ...]:
    system_root = os.environ.get("SystemRoot", r"C:\Windows")
    program_files = os.environ.get("ProgramFiles", r"C:\Program Files")
    program_files_x86 = os.environ.get("ProgramFiles(x86)", r"C:\Program Files (x86)")
    program_data = os.environ.get("ProgramData", r"C:\ProgramData")
    return (system_root, program_files, program_files_x86, program_data)


def default_system_paths() -> tuple[str, ...]:
    if os.name == "nt":
        return _windows_system_paths()
    return POSIX_SYSTEM_PATHS


@dataclass(frozen=True, slots=True)
class SafetyPolicy:
    """Filesystem zones and tuning used by the classifier.

    All paths are stored resolved so they compare against resolved candidates.
    """

    permitted_root: Path
    home: Path
    secret_paths: tuple[Path, ...] = ()
    system_paths: tuple[Path, ...] = ()
    confirm_caution: bool = False
    protected_pids: frozenset[int] = field(default_factory=frozenset)

    @classmethod
    def build(
        cls,
        permitted_root: str | Path,
        *,
        credentials_path: str | Path | None = None,
        home: str | Path | None = None,
        system_paths: Iterable[str | Path] | None = None,
        extra_secret_paths: Iterable[str | Path] = (),
        extra_protected_paths: Iterable[str | Path] = (),
        confirm_caution: bool = False,
    ) -> SafetyPolicy:
        home_path = Path(home).expanduser().resolve() if home is not None else Path.home().resolve()
        root = Path(permitted_root).expanduser().resolve()
        secrets = [home_path / entry for entry in SECRET_HOME_ENTRIES]
        secrets.extend(Path(path).expanduser() for path in extra_secret_paths)
        if credentials_path is not None:
            secrets.append(Path(credentials_path).expanduser())
        systems: list[str | Path] = list(
            default_system_paths() if system_paths is None else system_paths
        )
        systems.extend(Path(path).expanduser() for path in extra_protected_paths)
        return cls(
            permitted_root=root,
            home=home_path,
            secret_paths=tuple(path.resolve() for path in secrets),
            system_paths=tuple(Path(path).resolve() for path in systems),
            confirm_caution=confirm_caution,
            protected_pids=frozenset({os.getpid()}),
        )

    def resolve(self, raw: object) -> Path | None:
        """Canonical absolute form of ``raw``, or ``None`` when it cannot be resolved."""
        if not isinstance(raw, str):
            return None
        value = raw.strip()
        if not value or "\x00" in value:
            return None
        try:
            candidate = Path(value).expanduser()
            if not candidate.is_absolute():
                candidate = self.permitted_root / candidate
            return candidate.resolve()
        except (OSError, RuntimeError, ValueError):
            return None

    def zone_of(self, path: Path) -> ReasonCategory | None:
        """Protected zone containing ``path``; ``None`` inside the permitted root."""
        if any(_is_within(path, secret) for secret in self.secret_paths):
            return ReasonCategory.SECRET_ACCESS
        if any(_is_within(path, system) for system in self.system_paths):
            return ReasonCategory.PROTECTED_PATH
        if not _is_within(path, self.permitted_root):
            return ReasonCategory.OUTSIDE_ROOT
        return None

    def encloses_protected(self, path: Path) -> bool:
        """True when ``path`` is a directory above a secret or system location."""
        return any(
            _is_within(protected, path) and protected != path
            for protected in (*self.secret_paths, *self.system_paths)
        )

    def is_critical_target(self, path: Path) -> bool:
        """Paths whose removal is never acceptable."""
        return (
            path == Path(path.anchor)
            or path == self.home
            or path == self.permitted_root
            or path in self.system_paths
        )


def _is_within(path: Path, parent: Path) -> bool:
    return path == parent or parent in path.parents


def normalize_command(command: str) -> str:
    """Canonical text used for rule matching."""
    text = unicodedata.normalize("NFKC", command)
    text = text.replace("\r\n", "\n").replace("\r", "\n").replace("\\\n", " ")
    text = text.lower()
    text = _IFS_PATTERN.sub(" ", text)
    text = _BRACED_VARIABLE.sub(r"$\1", text)
    text = _QUOTES.sub("", text)
    text = _ESCAPE.sub("", text)
    text = _HORIZONTAL_SPACE.sub(" ", text)
    text = _ABSOLUTE_PATH.sub(_collapse_path, text)
    return "\n".join(line.strip() for line in text.split("\n")).strip()


def _collapse_path(match: re.Match[str]) -> str:
    """Spell an absolute path canonically so ``//``, ``/./`` and ``/..`` read as ``/``."""
    path = re.sub(r"/{2,}", "/", match.group(0))
    return posixpath.normpath(path)


def split_segments(normalized: str) -> list[str]:
    """Split a normalized command into simple commands with canonical program names."""
    segments: list[str] = []
    for raw in _SEGMENT_SPLIT.split(normalized):
        tokens = _canonical_tokens(raw.split())
        if tokens:
            segments.append(" ".join(tokens))
    return segments


def _canonical_tokens(tokens: list[str]) -> list[str]:
    prefix: list[str] = []
    index = 0
    while index < len(tokens):
        token = tokens[index]
        if _ASSIGNMENT.match(token):
            index += 1
            continue
        name = _program_name(token)
        if name in _TRANSPARENT_WRAPPERS or name in _ELEVATION_WRAPPERS:
            elevates = name in _ELEVATION_WRAPPERS
            if elevates:
                prefix.append(name)
            index += 1
            while index < len(tokens) and (tokens[index].startswith("-") or tokens[index].isdigit()):
                if elevates:
                    prefix.append(tokens[index])
                index += 1
            continue
        break
    rest = tokens[index:]
    if rest:
        rest = [_program_name(rest[0]), *rest[1:]]
    return [*prefix, *rest]


def _program_name(token: str) -> str:
    name = re.split(r"[\\/]", token)[-1] or token
    if name.endswith(".exe"):
        name = name[: -len(".exe")]
    return name


def _malformed_reason(command: object) -> str | None:
    if not isinstance(command, str):
        return "command is not text"
    if not command.strip():
        return "empty command"
    if "\x00" in command:
        return "command contains NUL bytes"
    try:
        command.encode("utf-8")
    except UnicodeEncodeError:
        return "command contains undecodable characters"
    return None


def classify_shell_command(command: object) -> SafetyVerdict:
    """Classify a proposed shell command. Never raises."""
    try:
        return _classify_shell_command(command)
    except Exception:
        LOGGER.exception("shell_classification_failed")
        return SafetyVerdict.blocked(
            "command could not be classified", ReasonCategory.INTERNAL_ERROR
        )


def _classify_shell_command(command: object) -> SafetyVerdict:
    malformed = _malformed_reason(command)
    if malformed is not None:
        return SafetyVerdict.blocked(malformed, ReasonCategory.MALFORMED_INPUT)

    normalized = normalize_command(str(command))
    segments = split_segments(normalized)
    if not segments:
        return SafetyVerdict.blocked("no executable command found", ReasonCategory.MALFORMED_INPUT)

    for rule in SHELL_RULES:
        if rule.matches(normalized, segments):
            return SafetyVerdict.decide(
                rule.risk,
                rule.category,
                f"{rule.description} [{rule.rule_id}]",
                confirm=rule.confirm,
                rule_id=rule.rule_id,
            )

    if not _REDIRECT.search(normalized) and all(_is_read_only(segment) for segment in segments):
        return SafetyVerdict.safe("read-only command")
    return SafetyVerdict.decide(
        RiskLevel.CAUTION,
        ReasonCategory.LOCAL_CHANGE,
        "command may change local state",
    )


def _is_read_only(segment: str) -> bool:
    tokens = segment.split()
    program, arguments = tokens[0], tokens[1:]
    if program == "git":
        return bool(arguments) and arguments[0] in READ_ONLY_GIT_SUBCOMMANDS
    if program not in READ_ONLY_PROGRAMS:
        return False
    if program == "hostname":
        return all(argument.startswith("-") for argument in arguments)
    writing = WRITING_OPTIONS.get(program, frozenset())
    return not any(argument in writing for argument in arguments)


def classify_file_operation(
    action: ActionKind | str, path: object, policy: SafetyPolicy
) -> SafetyVerdict:
    """Classify a file operation on ``path`` after resolving it canonically."""
    try:
        return _classify_file_operation(action, path, policy)
    except Exception:
        LOGGER.exception("file_classification_failed", extra={"action": str(action)})
        return SafetyVerdict.blocked(
            "file operation could not be classified", ReasonCategory.INTERNAL_ERROR
        )


def _classify_file_operation(
    action: ActionKind | str, path: object, policy: SafetyPolicy
) -> SafetyVerdict:
    kind = ActionKind.parse(action)
    if kind is None or not kind.is_file_operation:
        return SafetyVerdict.decide(
            RiskLevel.DANGEROUS,
            ReasonCategory.MALFORMED_INPUT,
            f"{action!s} is not a file operation",
        )

    resolved = policy.resolve(path)
    if resolved is None:
        return SafetyVerdict.blocked(
            "path could not be resolved", ReasonCategory.UNRESOLVABLE_PATH
        )

    zone = policy.zone_of(resolved)
    if kind in (ActionKind.READ_FILE, ActionKind.LIST_DIRECTORY):
        return _read_verdict(resolved, zone)
    if kind is ActionKind.WRITE_FILE:
        return _write_verdict(resolved, zone, policy)
    return _removal_verdict(kind, resolved, zone, policy)


def _read_verdict(resolved: Path, zone: ReasonCategory | None) -> SafetyVerdict:
    if zone is None:
        return SafetyVerdict.safe(f"read inside the permitted root: {resolved}")
    if zone is ReasonCategory.SECRET_ACCESS:
        return SafetyVerdict.decide(
            RiskLevel.CAUTION, zone, f"read of secret material: {resolved}", confirm=True
        )
    return SafetyVerdict.decide(RiskLevel.CAUTION, zone, f"read {_zone_text(zone)}: {resolved}")


def _write_verdict(
    resolved: Path, zone: ReasonCategory | None, policy: SafetyPolicy
) -> SafetyVerdict:
    if zone is not None:
        return SafetyVerdict.decide(
            RiskLevel.DANGEROUS, zone, f"write {_zone_text(zone)}: {resolved}"
        )
    if policy.encloses_protected(resolved):
        return SafetyVerdict.decide(
            RiskLevel.DANGEROUS,
            ReasonCategory.PROTECTED_PATH,
            f"write over a directory holding protected files: {resolved}",
        )
    if resolved.exists():
        return SafetyVerdict.decide(
            RiskLevel.CAUTION,
            ReasonCategory.LOCAL_CHANGE,
            f"overwrites existing file: {resolved}",
            confirm=True,
        )
    return SafetyVerdict.decide(
        RiskLevel.CAUTION, ReasonCategory.LOCAL_CHANGE, f"creates new file: {resolved}"
    )


def _removal_verdict(
    kind: ActionKind, resolved: Path, zone: ReasonCategory | None, policy: SafetyPolicy
) -> SafetyVerdict:
    verb = "delete" if kind is ActionKind.DELETE_FILE else "move"
    if policy.is_critical_target(resolved):
        return SafetyVerdict.blocked(
            f"{verb} of a root, home or system directory: {resolved}",
            ReasonCategory.PROTECTED_PATH,
        )
    if zone is not None:
        return SafetyVerdict.decide(
            RiskLevel.DANGEROUS, zone, f"{verb} {_zone_text(zone)}: {resolved}"
        )
    if policy.encloses_protected(resolved):
        return SafetyVerdict.decide(
            RiskLevel.DANGEROUS,
            ReasonCategory.PROTECTED_PATH,
            f"{verb} of a directory holding protected files: {resolved}",
        )
    if kind is ActionKind.DELETE_FILE:
        return SafetyVerdict.decide(
            RiskLevel.CAUTION,
            ReasonCategory.DESTRUCTIVE_DELETE,
            f"permanently deletes: {resolved}",
            confirm=True,
        )
    return SafetyVerdict.decide(
        RiskLevel.CAUTION, ReasonCategory.LOCAL_CHANGE, f"moves: {resolved}"
    )


def _zone_text(zone: ReasonCategory) -> str:
    if zone is ReasonCategory.SECRET_ACCESS:
        return "inside a credential or secret store"
    if zone is ReasonCategory.PROTECTED_PATH:
        return "inside a system or audit directory"
    return "outside the permitted root"


def classify_move(source: object, destination: object, policy: SafetyPolicy) -> SafetyVerdict:
    """A move removes ``source`` and writes ``destination``; the stricter verdict wins."""
    if destination is None:
        return SafetyVerdict.blocked("move requires a destination", ReasonCategory.MALFORMED_INPUT)
    verdicts = [
        classify_file_operation(ActionKind.MOVE_FILE, source, policy),
        classify_file_operation(ActionKind.WRITE_FILE, destination, policy),
    ]
    return most_restrictive(verdicts)


def most_restrictive(verdicts: Iterable[SafetyVerdict]) -> SafetyVerdict:
    return max(verdicts, key=lambda verdict: (verdict.risk, verdict.requires_confirmation))


def classify_app_launch(app_name: object) -> SafetyVerdict:
    if not isinstance(app_name, str) or not app_name.strip():
        return SafetyVerdict.blocked("no application named", ReasonCategory.MALFORMED_INPUT)
    name = app_name.strip()
    if name.startswith("-") or not _APP_NAME.match(name):
        return SafetyVerdict.blocked(
            f"invalid application name: {name!r}", ReasonCategory.MALFORMED_INPUT
        )
    return SafetyVerdict.decide(
        RiskLevel.CAUTION, ReasonCategory.LOCAL_CHANGE, f"launches application: {name}"
    )


def classify_process_termination(target: object, policy: SafetyPolicy) -> SafetyVerdict:
    if not isinstance(target, str) or not target.strip():
        return SafetyVerdict.blocked("no process named", ReasonCategory.MALFORMED_INPUT)
    name = target.strip().lower()
    if name.isdigit():
        pid = int(name)
        if pid in (0, 1) or pid in policy.protected_pids:
            return SafetyVerdict.blocked(
                f"termination of protected process {pid}", ReasonCategory.PROCESS_TERMINATION
            )
    elif name.removesuffix(".exe") in CRITICAL_PROCESSES:
        return SafetyVerdict.blocked(
            f"termination of critical system process {name}",
            ReasonCategory.PROCESS_TERMINATION,
        )
    return SafetyVerdict.decide(
        RiskLevel.DANGEROUS,
        ReasonCategory.PROCESS_TERMINATION,
        f"terminates process: {target.strip()}",
    )


def classify_request(request: ActionRequest, policy: SafetyPolicy) -> SafetyVerdict:
    """Route ``request`` to the classifier matching its action kind."""
    kind = request.kind
    if kind is None:
        verdict = SafetyVerdict.blocked(
            f"unknown action: {request.action!r}", ReasonCategory.UNSUPPORTED_ACTION
        )
    elif kind is ActionKind.RUN_SHELL_COMMAND:
        verdict = classify_shell_command(request.command)
    elif kind is ActionKind.MOVE_FILE:
        verdict = classify_move(request.path, request.destination, policy)
    elif kind.is_file_operation:
        verdict = classify_file_operation(kind, request.path, policy)
    elif kind is ActionKind.LAUNCH_APP:
        verdict = classify_app_launch(request.app_name)
    elif kind is ActionKind.KILL_PROCESS:
        verdict = classify_process_termination(request.process_name, policy)
    else:
        verdict = SafetyVerdict.safe("read-only system query")

    if policy.confirm_caution:
        verdict = verdict.with_confirmation()
    return verdict
