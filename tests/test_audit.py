from __future__ import annotations

import json
import logging
import threading
from pathlib import Path

import pytest

from companionguard.actions.audit import (
    AUDIT_LOG_VERSION,
    AuditRecord,
    JsonlAuditWriter,
    MemoryAuditWriter,
)
from companionguard.safety import ActionRequest, ActionResult, ReasonCategory, SafetyVerdict


def _record(index: int) -> AuditRecord:
    request = ActionRequest("run_shell_command", command=f"echo {index}")
    result = ActionResult(success=True, output=str(index), safety=SafetyVerdict.safe("read-only"))
    return AuditRecord.from_result(request, result, "succeeded")


def test_record_from_blocked_result() -> None:
    verdict = SafetyVerdict.blocked("nope", ReasonCategory.FORK_BOMB, rule_id="B001")
    record = AuditRecord.from_result(
        ActionRequest("run_shell_command", command=":(){ :|:& };:"),
        ActionResult(success=False, error="nope", safety=verdict),
        "blocked",
    )

    payload = record.to_dict()

    assert payload["log_version"] == AUDIT_LOG_VERSION
    assert payload["risk"] == "Blocked"
    assert payload["category"] == "fork_bomb"
    assert payload["rule_id"] == "B001"
    assert payload["allowed"] is False
    assert payload["outcome"] == "blocked"


def test_jsonl_writer_serializes_concurrent_writes(tmp_path: Path) -> None:
    writer = JsonlAuditWriter(tmp_path / "logs")

    def produce(offset: int) -> None:
        for index in range(offset, offset + 50):
            writer.write(_record(index))

    threads = [threading.Thread(target=produce, args=(n * 50,)) for n in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    writer.close()

    files = list((tmp_path / "logs").glob("audit-*.log"))
    assert len(files) == 1
    lines = files[0].read_text(encoding="utf-8").splitlines()
    assert len(lines) == 400
    outputs = sorted(int(json.loads(line)["request"]["command"].split()[1]) for line in lines)
    assert outputs == list(range(400))


def test_jsonl_writer_ignores_writes_after_close(tmp_path: Path) -> None:
    with JsonlAuditWriter(tmp_path) as writer:
        writer.write(_record(1))
    writer.write(_record(2))
    writer.close()

    lines = next(tmp_path.glob("audit-*.log")).read_text(encoding="utf-8").splitlines()
    assert len(lines) == 1


def test_memory_writer_keeps_records() -> None:
    writer = MemoryAuditWriter()
    writer.write(_record(1))
    writer.close()

    assert len(writer.records) == 1
    assert writer.closed is True


def test_writes_racing_close_are_either_stored_or_reported(
    tmp_path: Path, caplog: pytest.LogCaptureFixture
) -> None:
    caplog.set_level(logging.WARNING, logger="companionguard.actions.audit")
    writer = JsonlAuditWriter(tmp_path)
    start = threading.Barrier(5)

    def emit(offset: int) -> None:
        start.wait()
        for index in range(100):
            writer.write(_record(offset + index))

    threads = [threading.Thread(target=emit, args=(n * 100,)) for n in range(4)]
    for thread in threads:
        thread.start()
    start.wait()
    writer.close()
    for thread in threads:
        thread.join()

    stored = sum(
        len(path.read_text(encoding="utf-8").splitlines()) for path in tmp_path.glob("audit-*.log")
    )
    refused = sum(1 for entry in caplog.records if entry.getMessage() == "audit_write_after_close")
    assert stored + refused == 400
