"""Failure-mode tests for the structured logging subsystem."""
from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest

from flexnode.logging import PACKAGE_LOGGER, StructuredLogger, configure_logging


def test_structured_logger_disables_when_directory_unavailable(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Logger gracefully disables itself when log directory cannot be created."""
    log_dir = tmp_path / "logs"

    original_mkdir = Path.mkdir

    def fail_mkdir(self: Path, *args: object, **kwargs: object) -> None:
        if self == log_dir:
            raise PermissionError("no access")
        original_mkdir(self, *args, **kwargs)

    monkeypatch.setattr(Path, "mkdir", fail_mkdir)

    logger = StructuredLogger(log_dir)
    assert logger._enabled is False  # type: ignore[attr-defined]

    with logger.operation("demo", args={"foo": "bar"}) as op:
        op.success("done", changed=0)


def test_structured_logger_disables_after_write_failure(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Write failures mark the logger disabled so subsequent writes are skipped."""
    logger = StructuredLogger(tmp_path / "logs")
    operations_path = logger._operations_log_path  # type: ignore[attr-defined]

    original_open = Path.open

    def fail_once(self: Path, *args: object, **kwargs: object) -> object:
        if self == operations_path:
            raise OSError("disk full")
        return original_open(self, *args, **kwargs)

    monkeypatch.setattr(Path, "open", fail_once)

    with logger.operation("demo") as op:
        op.success("done", changed=0)

    assert logger._enabled is False  # type: ignore[attr-defined]

    # Subsequent operations should not raise even though logger is disabled.
    with logger.operation("demo-2") as op:
        op.success("done", changed=0)


def test_operation_scope_warning_sanitises_context(tmp_path: Path) -> None:
    """Warnings should be recorded with JSON-safe context values."""
    logger = StructuredLogger(tmp_path / "logs")

    class Custom:
        def __str__(self) -> str:
            return "<custom>"

    with logger.operation("demo", args={"path": Path("foo")}) as op:
        op.warning(
            "warned",
            warnings=("note",),
            errors=("err",),
            changed=1,
            context={"path": Path("/var/lib"), "obj": Custom()},
        )

    record = json.loads(logger._operations_log_path.read_text(encoding="utf-8"))  # type: ignore[attr-defined]
    result = record["result"]
    assert result["status"] == "warning"
    assert result["warnings"] == ["note"]
    assert result["errors"] == ["err"]
    assert result["context"] == {"path": "/var/lib", "obj": "<custom>"}


def test_operation_scope_error_defaults_error_list(tmp_path: Path) -> None:
    """Errors should default to the message when not provided."""
    logger = StructuredLogger(tmp_path / "logs")

    with logger.operation("demo") as op:
        op.error("boom", errors=None, context={"value": {1, 2}})

    record = json.loads(logger._operations_log_path.read_text(encoding="utf-8"))  # type: ignore[attr-defined]
    result = record["result"]
    assert result["status"] == "error"
    assert result["errors"] == ["boom"]
    assert result["context"] == {"value": "{1, 2}"}


def test_operation_records_steps_and_exceptions(tmp_path: Path) -> None:
    """An exception escaping the scope is recorded as the error result."""
    logger = StructuredLogger(tmp_path / "logs")

    with pytest.raises(RuntimeError):
        with logger.operation("bootstrap", target={"node": "edge-01"}) as op:
            op.add_step("ArcInstall")
            op.add_step("ContainerdInstaller", status="error", detail="download failed")
            raise RuntimeError("download failed")

    record = json.loads(logger._operations_log_path.read_text(encoding="utf-8"))  # type: ignore[attr-defined]
    assert record["command"] == "bootstrap"
    assert record["target"] == {"node": "edge-01"}
    assert record["steps"] == [
        {"name": "ArcInstall", "status": "success"},
        {"name": "ContainerdInstaller", "status": "error", "detail": "download failed"},
    ]
    assert record["result"]["status"] == "error"
    assert record["result"]["errors"] == ["download failed"]


def test_operation_without_result_defaults_to_success(tmp_path: Path) -> None:
    logger = StructuredLogger(tmp_path / "logs")

    with logger.operation("status"):
        pass
    with logger.operation("version"):
        pass

    lines = logger._operations_log_path.read_text(encoding="utf-8").splitlines()  # type: ignore[attr-defined]
    records = [json.loads(line) for line in lines]
    assert [item["command"] for item in records] == ["status", "version"]
    assert all(item["result"]["status"] == "success" for item in records)
    assert records[0]["op_id"] != records[1]["op_id"]


def test_configure_logging_writes_log_file(tmp_path: Path) -> None:
    """Package records reach the rotating log file."""
    log_file = tmp_path / "logs" / "aks-flex-node.log"

    logger = configure_logging("debug", log_file=log_file)
    logging.getLogger(f"{PACKAGE_LOGGER}.components").info("containerd installed")
    for handler in logger.handlers:
        handler.flush()

    assert logger.level == logging.DEBUG
    assert logger.propagate is False
    assert "containerd installed" in log_file.read_text(encoding="utf-8")


def test_configure_logging_replaces_handlers_and_tolerates_bad_level() -> None:
    first = configure_logging("INFO")
    second = configure_logging("not-a-level")

    assert first is second
    assert len(second.handlers) == 1
    assert second.level == logging.INFO
