"""Append-only audit trail for dispatched actions."""

from __future__ import annotations

import json
import logging
import queue
import threading
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Literal, Protocol

from companionguard.safety.models import ActionRequest, ActionResult

LOGGER = logging.getLogger(__name__)

AUDIT_LOG_VERSION = 1

Outcome = Literal["unsupported", "blocked", "pending_confirmation", "succeeded", "failed"]


@dataclass(frozen=True, slots=True)
class AuditRecord:
    """One entry per execute call."""

    timestamp: str
    request: dict[str, object]
    outcome: Outcome
    success: bool
    risk: str
    category: str
    reason: str
    allowed: bool
    requires_confirmation: bool
    rule_id: str | None = None
    error: str | None = None

    @classmethod
    def from_result(
        cls, request: ActionRequest, result: ActionResult, outcome: Outcome
    ) -> AuditRecord:
        verdict = result.safety
        return cls(
            timestamp=datetime.now(timezone.utc).isoformat(),
            request=request.summary(),
            outcome=outcome,
            success=result.success,
            risk=verdict.risk.label,
            category=verdict.category.value,
            reason=verdict.reason,
            allowed=verdict.allowed,
            requires_confirmation=verdict.requires_confirmation,
            rule_id=verdict.rule_id,
            error=result.error,
        )

    def to_dict(self) -> dict[str, object]:
        return {"log_version": AUDIT_LOG_VERSION, **asdict(self)}


class AuditWriter(Protocol):
    def write(self, record: AuditRecord) -> None: ...

    def close(self) -> None: ...


class MemoryAuditWriter:
    """Keeps records in memory; used by tests and embedders."""

    def __init__(self) -> None:
        self.records: list[AuditRecord] = []
        self.closed = False

    def write(self, record: AuditRecord) -> None:
        self.records.append(record)

    def close(self) -> None:
        self.closed = True


_STOP = object()


class JsonlAuditWriter:
    """Writes JSON lines to ``audit-<date>.log`` from a single writer thread.

    ``write`` only enqueues, so callers on any thread never share the file
    handle and records never interleave.
    """

    def __init__(self, log_dir: str | Path) -> None:
        self.log_dir = Path(log_dir)
        self._queue: queue.SimpleQueue[object] = queue.SimpleQueue()
        self._closed = False
        self._lock = threading.Lock()
        self._thread = threading.Thread(
            target=self._run, name="companionguard-audit", daemon=True
        )
        self._thread.start()

    def write(self, record: AuditRecord) -> None:
        with self._lock:
            if not self._closed:
                self._queue.put(record)
                return
        LOGGER.warning("audit_write_after_close", extra={"outcome": record.outcome})

    def close(self, timeout: float | None = 5.0) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._queue.put(_STOP)
        self._thread.join(timeout)

    def __enter__(self) -> JsonlAuditWriter:
        return self

    def __exit__(self, *_exc: object) -> None:
        self.close()

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            if item is _STOP:
                return
            if isinstance(item, AuditRecord):
                self._append(item)

    def _append(self, record: AuditRecord) -> None:
        try:
            self.log_dir.mkdir(parents=True, exist_ok=True)
            day_file = self.log_dir / f"audit-{datetime.now(timezone.utc).date().isoformat()}.log"
            with day_file.open("a", encoding="utf-8") as handle:
                handle.write(json.dumps(record.to_dict()) + "\n")
        except OSError:
            LOGGER.exception("audit_write_failed", extra={"log_dir": str(self.log_dir)})
