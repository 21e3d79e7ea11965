"""Failure-mode tests for the structured logging subsystem."""
from __future__ import annotations

import json
from pathlib import Path

import pytest

from domainctl.logging import StructuredLogger


def _last_record(logger: StructuredLogger) -> dict[str, object]:
    lines = logger.operations_log_path.read_text(encoding="utf-8").splitlines()
    return json.loads(lines[-1])


def test_unwritable_logs_dir_keeps_operations_running(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """A logs directory that cannot be created turns logging into a no-op."""
    logs_dir = tmp_path / "var" / "log" / "domainctl"
    real_mkdir = Path.mkdir

    def deny_logs_dir(self: Path, *args: object, **kwargs: object) -> None:
        if self == logs_dir:
            raise PermissionError("read-only filesystem")
        real_mkdir(self, *args, **kwargs)

    monkeypatch.setattr(Path, "mkdir", deny_logs_dir)

    logger = StructuredLogger(logs_dir)

    with logger.operation("domain add", args={"domain": "example.org"}) as op:
        op.add_step("validating")
        op.success("Provisioned example.org.", changed=2)

    assert logger._enabled is False  # type: ignore[attr-defined]
    assert op.result is not None and op.result["status"] == "success"
    assert not logs_dir.exists()


def test_append_failure_disables_later_writes(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """After one failed append the logger stops touching the file."""
    logger = StructuredLogger(tmp_path / "logs")
    attempts: list[Path] = []
    real_open = Path.open

    def full_disk(self: Path, *args: object, **kwargs: object) -> object:
        if self == logger.operations_log_path:
            attempts.append(self)
            raise OSError("No space left on device")
        return real_open(self, *args, **kwargs)

    monkeypatch.setattr(Path, "open", full_disk)

    with logger.operation("check", args={"domain": "example.org"}):
        pass
    with logger.operation("render", args={"domain": "example.org"}):
        pass

    assert len(attempts) == 1
    assert logger._enabled is False  # type: ignore[attr-defined]


def test_operation_scope_warning_sanitises_context(tmp_path: Path) -> None:
    """Warnings should be recorded with JSON-safe context values."""
    logger = StructuredLogger(tmp_path / "logs")

    class Custom:
        def __str__(self) -> str:
            return "<custom>"

    with logger.operation("demo", args={"path": Path("foo")}) as op:
        op.add_step("inspect", status="success", detail="ok")
        op.warning(
            "warned",
            warnings=("note",),
            errors=("err",),
            changed=1,
            context={"path": Path("/etc/nginx"), "obj": Custom()},
        )

    record = _last_record(logger)
    assert record["args"] == {"path": "foo"}
    assert record["steps"] == [{"name": "inspect", "status": "success", "detail": "ok"}]
    result = record["result"]
    assert result["status"] == "warning"
    assert result["warnings"] == ["note"]
    assert result["errors"] == ["err"]
    assert result["context"] == {"path": "/etc/nginx", "obj": "<custom>"}


def test_operation_scope_error_defaults_error_list(tmp_path: Path) -> None:
    """Errors should default to the message when not provided."""
    logger = StructuredLogger(tmp_path / "logs")

    with logger.operation("demo") as op:
        op.error("boom", errors=None, rc=4, context={"value": {1, 2}})

    result = _last_record(logger)["result"]
    assert result["status"] == "error"
    assert result["errors"] == ["boom"]
    assert result["rc"] == 4
    assert result["context"] == {"value": "{1, 2}"}


def test_escaping_exception_is_recorded_and_reraised(tmp_path: Path) -> None:
    """Unhandled exceptions are logged as errors before propagating."""
    logger = StructuredLogger(tmp_path / "logs")

    with pytest.raises(ValueError, match="bad input"):
        with logger.operation("demo"):
            raise ValueError("bad input")

    result = _last_record(logger)["result"]
    assert result["status"] == "error"
    assert result["message"] == "bad input"


def test_operation_without_result_defaults_to_success(tmp_path: Path) -> None:
    """Scopes that never set a result are recorded as successful."""
    logger = StructuredLogger(tmp_path / "logs")

    with logger.operation("demo"):
        pass

    record = _last_record(logger)
    assert record["command"] == "demo"
    assert record["result"]["status"] == "success"
    assert isinstance(record["duration_ms"], int)
