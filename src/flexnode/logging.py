"""Logging for aks-flex-node.

Two channels exist side by side:

* Human-oriented progress logging via the standard :mod:`logging` module,
  rendered on stderr by Rich and optionally mirrored into a rotating file.
* An append-only JSON Lines audit trail (``operations.jsonl``) written by
  :class:`StructuredLogger`. Each CLI command opens one operation scope and
  records exactly one result for it.

The structured logger never raises: when its directory cannot be created or a
write fails, it disables itself and the command carries on.
"""
from __future__ import annotations

import json
import logging
import time
import uuid
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from datetime import UTC, datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler

PACKAGE_LOGGER = "flexnode"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

_LOGGER = logging.getLogger(__name__)


def configure_logging(
    level: str | int = "INFO",
    *,
    log_file: Path | None = None,
    console: Console | None = None,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5,
) -> logging.Logger:
    """Attach Rich (and optionally file) handlers to the package logger."""
    resolved = logging.getLevelName(level.upper()) if isinstance(level, str) else level
    if not isinstance(resolved, int):
        resolved = logging.INFO

    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(resolved)
    logger.propagate = False
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    rich_handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=False,
        rich_tracebacks=False,
    )
    rich_handler.setLevel(resolved)
    logger.addHandler(rich_handler)

    if log_file is not None:
        try:
            log_file.parent.mkdir(parents=True, exist_ok=True)
            file_handler = RotatingFileHandler(
                filename=log_file,
                maxBytes=max_bytes,
                backupCount=backup_count,
                encoding="utf-8",
            )
        except OSError as exc:
            logger.warning("File logging disabled (%s): %s", log_file, exc)
        else:
            file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
            file_handler.setLevel(logging.DEBUG)
            logger.addHandler(file_handler)
    return logger


def _sanitise(value: object) -> object:
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, Mapping):
        return {str(key): _sanitise(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_sanitise(item) for item in value]
    return str(value)


class OperationScope:
    """Collects steps and the final result of one logged operation."""

    def __init__(
        self,
        command: str,
        *,
        args: Mapping[str, object] | None = None,
        target: Mapping[str, object] | None = None,
    ) -> None:
        """Start a scope for *command*."""
        self.op_id = uuid.uuid4().hex
        self.command = command
        self.args = dict(args or {})
        self.target = dict(target or {})
        self.steps: list[dict[str, object]] = []
        self.result: dict[str, object] | None = None
        self.started = time.monotonic()
        self.started_at = datetime.now(UTC)

    def add_step(self, name: str, *, status: str = "success", detail: str | None = None) -> None:
        """Record an intermediate step."""
        entry: dict[str, object] = {"name": name, "status": status}
        if detail is not None:
            entry["detail"] = detail
        self.steps.append(entry)

    def success(
        self,
        message: str,
        *,
        changed: int = 0,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Record a successful outcome."""
        self._set_result(
            "success",
            message,
            rc=0,
            changed=changed,
            context=context,
        )

    def warning(
        self,
        message: str,
        *,
        warnings: Sequence[str] = (),
        errors: Sequence[str] = (),
        changed: int = 0,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Record a completed-with-warnings outcome."""
        self._set_result(
            "warning",
            message,
            rc=0,
            changed=changed,
            warnings=warnings,
            errors=errors,
            context=context,
        )

    def error(
        self,
        message: str,
        *,
        rc: int = 1,
        errors: Sequence[str] | None = None,
        warnings: Sequence[str] = (),
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Record a failed outcome; *errors* defaults to ``[message]``."""
        self._set_result(
            "error",
            message,
            rc=rc,
            warnings=warnings,
            errors=list(errors) if errors is not None else [message],
            context=context,
        )

    def to_record(self) -> dict[str, object]:
        """Return the JSON-safe record written to ``operations.jsonl``."""
        return {
            "op_id": self.op_id,
            "timestamp": self.started_at.isoformat(),
            "command": self.command,
            "args": _sanitise(self.args),
            "target": _sanitise(self.target),
            "duration_ms": int((time.monotonic() - self.started) * 1000),
            "steps": _sanitise(self.steps),
            "result": self.result,
        }

    # ------------------------------------------------------------------
    def _set_result(
        self,
        status: str,
        message: str,
        *,
        rc: int,
        changed: int = 0,
        warnings: Sequence[str] = (),
        errors: Sequence[str] = (),
        context: Mapping[str, object] | None = None,
    ) -> None:
        self.result = {
            "status": status,
            "message": message,
            "rc": rc,
            "changed": changed,
            "warnings": [str(item) for item in warnings],
            "errors": [str(item) for item in errors],
            "context": _sanitise(dict(context or {})),
        }


class StructuredLogger:
    """Append-only JSON Lines writer for operation records."""

    def __init__(self, log_dir: Path) -> None:
        """Prepare *log_dir*; disable quietly when it cannot be created."""
        self._log_dir = Path(log_dir)
        self._operations_log_path = self._log_dir / "operations.jsonl"
        self._enabled = True
        try:
            self._log_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            _LOGGER.debug("Structured logging disabled (%s): %s", self._log_dir, exc)
            self._enabled = False

    @property
    def enabled(self) -> bool:
        """Return True while records are still being written."""
        return self._enabled

    @contextmanager
    def operation(
        self,
        command: str,
        *,
        args: Mapping[str, object] | None = None,
        target: Mapping[str, object] | None = None,
    ) -> Iterator[OperationScope]:
        """Open an operation scope and write its record on exit."""
        scope = OperationScope(command, args=args, target=target)
        try:
            yield scope
        except BaseException as exc:
            if scope.result is None:
                scope.error(str(exc) or type(exc).__name__)
            raise
        finally:
            if scope.result is None:
                scope.success("completed")
            self._write(scope.to_record())

    # ------------------------------------------------------------------
    def _write(self, record: Mapping[str, object]) -> None:
        if not self._enabled:
            return
        line = json.dumps(record, sort_keys=True)
        try:
            with self._operations_log_path.open("a", encoding="utf-8") as handle:
                handle.write(line + "\n")
        except OSError as exc:
            _LOGGER.debug("Structured logging disabled after write failure: %s", exc)
            self._enabled = False


__all__ = ["OperationScope", "StructuredLogger", "configure_logging"]
