"""Read-only view of the gateway pairing credentials."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class CompanionCredentials:
    gateway_url: str
    companion_id: str
    role: str = "user"


class CredentialStore:
    """Loads the credentials written by the pairing flow.

    Pairing itself lives elsewhere; the store only answers whether the
    companion is connected and to which gateway.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path).expanduser()

    def load(self) -> CompanionCredentials | None:
        if not self.path.is_file():
            return None
        try:
            payload = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            LOGGER.warning("credentials_unreadable", extra={"path": str(self.path)})
            return None
        if not isinstance(payload, dict):
            return None
        gateway_url = payload.get("gateway_url")
        companion_id = payload.get("companion_id")
        if not isinstance(gateway_url, str) or not isinstance(companion_id, str):
            return None
        role = payload.get("role")
        return CompanionCredentials(
            gateway_url=gateway_url.rstrip("/"),
            companion_id=companion_id,
            role=role if isinstance(role, str) else "user",
        )
