from __future__ import annotations

import json
import os
import stat
import threading

import pytest

from opsagent.agent.models import Attempt, FailureCategory
from opsagent.persistence import FileQuotaStore, MemoryQuotaStore, SessionLog


def _attempt(command: str, *, success: bool = True, cancelled: bool = False) -> Attempt:
    return Attempt(
        command=command,
        stdout="out",
        stderr="" if success else "err",
        exit_code=0 if success else 1,
        success=success,
        cancelled=cancelled,
    )


def test_quota_round_trip(tmp_path) -> None:
    store = FileQuotaStore(tmp_path / "quota_state.json")

    store.write(1700000000)

    assert store.read() == 1700000000
    assert json.loads((tmp_path / "quota_state.json").read_text()) == {
        "last_quota_error": 1700000000
    }


def test_quota_clear_writes_zero_and_reads_none(tmp_path) -> None:
    store = FileQuotaStore(tmp_path / "state" / "quota_state.json")
    store.write(1700000000)

    store.write(None)

    assert store.read() is None
    assert json.loads(store.path.read_text()) == {"last_quota_error": 0}


def test_quota_missing_or_corrupt_file_reads_none(tmp_path) -> None:
    store = FileQuotaStore(tmp_path / "quota_state.json")
    assert store.read() is None

    store.path.write_text("{trunc", encoding="utf-8")
    assert store.read() is None

    store.path.write_text('{"last_quota_error": "soon"}', encoding="utf-8")
    assert store.read() is None


def test_quota_round_trip_with_concurrent_writer(tmp_path) -> None:
    path = tmp_path / "quota_state.json"
    ours = FileQuotaStore(path)
    theirs = FileQuotaStore(path)
    barrier = threading.Barrier(2)
    errors: list[BaseException] = []

    def writer(store: FileQuotaStore, value: int) -> None:
        try:
            barrier.wait()
            for _ in range(50):
                store.write(value)
        except BaseException as exc:  # noqa: BLE001
            errors.append(exc)

    threads = [
        threading.Thread(target=writer, args=(ours, 1700000000)),
        threading.Thread(target=writer, args=(theirs, 1700000999)),
    ]
    for thread in threads:
        thread.start()
    observed = []
    while any(thread.is_alive() for thread in threads):
        value = ours.read()
        if value is not None:
            observed.append(value)
    for thread in threads:
        thread.join()

    assert errors == []
    assert ours.read() in {1700000000, 1700000999}
    assert set(observed) <= {1700000000, 1700000999}
    assert not [name for name in os.listdir(tmp_path) if name.endswith(".tmp")]


def test_memory_quota_store_counts_writes() -> None:
    store = MemoryQuotaStore()
    store.write(5)
    store.write(None)

    assert store.read() is None
    assert store.writes == 2


def test_session_log_records_entries(tmp_path) -> None:
    log = SessionLog(tmp_path / "logs")
    attempt = Attempt(
        command="mysql --password hunter2",
        stdout="",
        stderr="denied",
        exit_code=1,
        success=False,
        diagnosis="sudo mysql",
        category=FailureCategory.PERMISSION_DENIED,
    )

    log.record(attempt, query="open db", retry_count=1)

    lines = log.path.read_text(encoding="utf-8").splitlines()
    entry = json.loads(lines[0])
    assert entry["log_version"] == 1
    assert entry["command"] == "mysql --password ***"
    assert entry["category"] == "permission_denied"
    assert entry["diagnosis"] == "sudo mysql"
    assert entry["query"] == "open db"
    assert entry["retry_count"] == 1


def test_session_log_file_is_private(tmp_path) -> None:
    log = SessionLog(tmp_path)
    log.record(_attempt("ls"))

    mode = stat.S_IMODE(log.path.stat().st_mode)
    assert mode & 0o077 == 0


def test_recent_returns_last_commands_oldest_first(tmp_path) -> None:
    log = SessionLog(tmp_path)
    for command in ["one", "two", "three", "four"]:
        log.record(_attempt(command))
    log.record(_attempt("declined", success=False, cancelled=True))

    assert log.recent(3) == ["two", "three", "four"]
    assert log.recent(0) == []


def test_recent_without_log_file_is_empty(tmp_path) -> None:
    assert SessionLog(tmp_path / "missing").recent(3) == []


def test_session_log_rotates_when_too_large(tmp_path) -> None:
    log = SessionLog(tmp_path, max_bytes=10)
    log.record(_attempt("first"))
    log.record(_attempt("second"))

    backup = tmp_path / "history.jsonl.bak"
    assert backup.exists()
    assert "first" in backup.read_text(encoding="utf-8")
    assert log.recent(5) == ["second"]


def test_session_log_write_failure_is_swallowed(tmp_path, caplog: pytest.LogCaptureFixture) -> None:
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("file", encoding="utf-8")
    log = SessionLog(blocker / "logs")

    log.record(_attempt("ls"))

    assert "session_log_write_failed" in caplog.text
