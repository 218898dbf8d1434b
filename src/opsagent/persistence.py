"""Quota-cooldown record and append-only execution log."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from collections import deque
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol

from opsagent.agent.models import Attempt
from opsagent.safety import sanitize_command

LOGGER = logging.getLogger(__name__)

QUOTA_FILE_NAME = "quota_state.json"
HISTORY_FILE_NAME = "history.jsonl"
MAX_LOG_BYTES = 10 * 1024 * 1024
_OUTPUT_EXCERPT_CHARS = 2000


class QuotaStore(Protocol):
    def read(self) -> int | None: ...

    def write(self, value: int | None) -> None: ...


class HistoryStore(Protocol):
    def recent(self, n: int) -> list[str]: ...


class MemoryQuotaStore:
    """In-process quota record for tests and ephemeral sessions."""

    def __init__(self, value: int | None = None) -> None:
        self.value = value
        self.writes = 0

    def read(self) -> int | None:
        return self.value

    def write(self, value: int | None) -> None:
        self.writes += 1
        self.value = value


class FileQuotaStore:
    """JSON quota record replaced atomically on every write.

    The on-disk shape is ``{"last_quota_error": <unix seconds>}`` where ``0``
    means unset.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def read(self) -> int | None:
        try:
            with self.path.open("r", encoding="utf-8") as fh:
                parsed = json.load(fh)
        except FileNotFoundError:
            return None
        except (OSError, json.JSONDecodeError) as exc:
            LOGGER.warning(
                "quota_state_unreadable",
                extra={"path": str(self.path), "error": str(exc)},
            )
            return None

        if not isinstance(parsed, dict):
            return None
        value = parsed.get("last_quota_error")
        if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
            return None
        return value

    def write(self, value: int | None) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = json.dumps({"last_quota_error": value or 0})
        # A unique temp file per writer keeps concurrent writers from
        # truncating each other before the rename.
        fd, tmp_name = tempfile.mkstemp(
            dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(payload)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        LOGGER.debug("quota_state_written", extra={"path": str(self.path), "value": value})


class SessionLog:
    """Append-only JSON-lines log of attempts; also serves recent-command history."""

    def __init__(self, log_dir: str | Path, *, max_bytes: int = MAX_LOG_BYTES) -> None:
        self.log_dir = Path(log_dir)
        self.max_bytes = max_bytes

    @property
    def path(self) -> Path:
        return self.log_dir / HISTORY_FILE_NAME

    def record(self, attempt: Attempt, **fields: object) -> None:
        """Write one entry; failures are logged and swallowed."""
        entry: dict[str, object] = {
            "log_version": 1,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "command": sanitize_command(attempt.command),
            "success": attempt.success,
            "exit_code": attempt.exit_code,
            "category": attempt.category.value if attempt.category else None,
            "diagnosis": attempt.diagnosis,
            "cancelled": attempt.cancelled,
            "stdout": attempt.stdout[-_OUTPUT_EXCERPT_CHARS:],
            "stderr": attempt.stderr[-_OUTPUT_EXCERPT_CHARS:],
            **fields,
        }
        try:
            self.log_dir.mkdir(parents=True, exist_ok=True)
            self._rotate_if_needed()
            fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_APPEND, 0o600)
            with os.fdopen(fd, "a", encoding="utf-8") as handle:
                handle.write(json.dumps(entry, default=str) + "\n")
        except (OSError, TypeError, ValueError) as exc:
            LOGGER.warning(
                "session_log_write_failed",
                extra={"path": str(self.path), "error": str(exc)},
            )

    def recent(self, n: int) -> list[str]:
        """Return the last ``n`` executed commands, oldest first."""
        if n <= 0:
            return []
        commands: deque[str] = deque(maxlen=n)
        try:
            with self.path.open("r", encoding="utf-8") as handle:
                for line in handle:
                    command = _executed_command(line)
                    if command:
                        commands.append(command)
        except FileNotFoundError:
            return []
        except OSError as exc:
            LOGGER.warning(
                "session_log_read_failed",
                extra={"path": str(self.path), "error": str(exc)},
            )
            return []
        return list(commands)

    def _rotate_if_needed(self) -> None:
        try:
            size = self.path.stat().st_size
        except FileNotFoundError:
            return
        if size > self.max_bytes:
            backup = self.path.with_name(f"{HISTORY_FILE_NAME}.bak")
            os.replace(self.path, backup)
            LOGGER.info("session_log_rotated", extra={"backup": str(backup)})


def _executed_command(line: str) -> str | None:
    try:
        entry = json.loads(line)
    except json.JSONDecodeError:
        return None
    if not isinstance(entry, dict) or entry.get("cancelled"):
        return None
    command = entry.get("command")
    if isinstance(command, str) and command.strip():
        return command.strip()
    return None
