"""Environment-backed application configuration."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path

DEFAULT_CREDENTIALS_PATH = "~/.config/companionguard/credentials.json"
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


def _to_bool(value: str | None, default: bool = False) -> bool:
    """Convert common env var truthy/falsy values into booleans."""
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


@dataclass(slots=True)
class AppConfig:
    """Runtime settings loaded from environment variables."""

    permitted_root: str
    credentials_path: str
    audit_dir: str
    shell: str
    command_timeout: float
    max_read_bytes: int
    max_workers: int
    confirm_caution: bool
    log_level: str

    @classmethod
    def from_env(cls) -> AppConfig:
        file_config = _load_preferred_file_config()

        return cls(
            permitted_root=(
                os.getenv("COMPANION_PERMITTED_ROOT")
                or _to_optional_string(file_config.get("permitted_root"))
                or str(Path.home())
            ),
            credentials_path=(
                os.getenv("COMPANION_CREDENTIALS_PATH")
                or _to_optional_string(file_config.get("credentials_path"))
                or DEFAULT_CREDENTIALS_PATH
            ),
            audit_dir=(
                os.getenv("COMPANION_AUDIT_DIR")
                or _to_optional_string(file_config.get("audit_dir"))
                or "logs"
            ),
            shell=_resolve_shell(
                os.getenv("COMPANION_SHELL") or _to_optional_string(file_config.get("shell"))
            ),
            command_timeout=_to_positive_float(
                os.getenv("COMPANION_COMMAND_TIMEOUT") or file_config.get("command_timeout"),
                default=30.0,
            ),
            max_read_bytes=_to_positive_int(
                os.getenv("COMPANION_MAX_READ_BYTES") or file_config.get("max_read_bytes"),
                default=1_048_576,
            ),
            max_workers=_to_positive_int(
                os.getenv("COMPANION_MAX_WORKERS") or file_config.get("max_workers"),
                default=4,
            ),
            confirm_caution=_to_bool(
                os.getenv("COMPANION_CONFIRM_CAUTION"),
                default=bool(file_config.get("confirm_caution", False)),
            ),
            log_level=_resolve_log_level(
                os.getenv("COMPANION_LOG_LEVEL")
                or _to_optional_string(file_config.get("log_level"))
            ),
        )


def _to_optional_string(value: object) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _load_file_config(path_value: str) -> dict[str, object]:
    path = Path(path_value)
    if not path.exists() or not path.is_file():
        return {}
    try:
        with path.open("r", encoding="utf-8") as fh:
            parsed = json.load(fh)
    except (OSError, json.JSONDecodeError):
        return {}
    if isinstance(parsed, dict):
        return parsed
    return {}


def _load_preferred_file_config() -> dict[str, object]:
    explicit_path = os.getenv("COMPANION_CONFIG_FILE")
    if explicit_path:
        return _load_file_config(explicit_path)

    shared_config = _load_file_config("companion.config.json")
    local_override = _load_file_config("companion.config.local.json")
    return _merge_dicts(shared_config, local_override)


def _merge_dicts(base: dict[str, object], override: dict[str, object]) -> dict[str, object]:
    merged: dict[str, object] = dict(base)
    for key, value in override.items():
        base_value = merged.get(key)
        if isinstance(base_value, dict) and isinstance(value, dict):
            merged[key] = _merge_dicts(base_value, value)
        else:
            merged[key] = value
    return merged


def _shell_value(value: str) -> str:
    normalized = value.strip().lower()
    aliases = {
        "powershell": "powershell",
        "pwsh": "powershell",
        "bash": "bash",
        "sh": "sh",
        "shell": "bash",
    }
    return aliases.get(normalized, _default_shell_for_platform())


def _default_shell_for_platform(os_name: str | None = None) -> str:
    platform_name = os.name if os_name is None else os_name
    return "powershell" if platform_name == "nt" else "bash"


def _resolve_shell(value: str | None) -> str:
    if value is None:
        return _default_shell_for_platform()
    return _shell_value(value)


def _resolve_log_level(value: str | None) -> str:
    if value is None:
        return "INFO"
    normalized = value.strip().upper()
    return normalized if normalized in LOG_LEVELS else "INFO"


def _to_positive_int(value: object, *, default: int) -> int:
    if isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value if value > 0 else default
    if isinstance(value, str):
        try:
            parsed = int(value.strip())
        except ValueError:
            return default
        return parsed if parsed > 0 else default
    return default


def _to_positive_float(value: object, *, default: float) -> float:
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        return float(value) if value > 0 else default
    if isinstance(value, str):
        try:
            parsed = float(value.strip())
        except ValueError:
            return default
        return parsed if parsed > 0 else default
    return default
