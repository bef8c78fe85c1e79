"""Errors raised for failed Terraform CLI operations."""

from __future__ import annotations

import json
from dataclasses import dataclass

_LEVEL_ERROR = "error"


@dataclass(frozen=True)
class TerraformLog:
    """The relevant fields of one JSON-formatted Terraform CLI log line."""

    level: str = ""
    message: str = ""
    diagnostic_severity: str = ""
    diagnostic_summary: str = ""
    diagnostic_detail: str = ""


class TerraformError(Exception):
    """Base class of errors produced from Terraform CLI output."""

    def __init__(self, message: str = "", parse_error: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.parse_error = parse_error

    def __str__(self) -> str:
        if self.parse_error:
            return f"{self.parse_error}: {self.message}"
        return self.message


class ApplyFailed(TerraformError):
    """A terraform apply call failed."""


class DestroyFailed(TerraformError):
    """A terraform destroy call failed."""


class RefreshFailed(TerraformError):
    """A terraform refresh call failed."""


class PlanFailed(TerraformError):
    """A terraform plan call failed."""


class RetryScheduleError(Exception):
    """The reuse budget of a shared native provider has been exceeded."""

    def __init__(self, invocation_count: int, ttl: int) -> None:
        self.invocation_count = invocation_count
        self.ttl = ttl
        super().__init__(
            "native provider reuse budget has been exceeded: "
            f"invocationCount: {invocation_count}, ttl: {ttl}"
        )


def _string_field(obj: dict, key: str) -> str:
    value = obj.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValueError(f"field {key!r} must be a string, got {value!r}")
    return value


def _parse_line(line: str) -> TerraformLog:
    try:
        data = json.loads(line)
    except json.JSONDecodeError as exc:
        raise ValueError(f"cannot parse log line {line!r}: {exc}") from exc
    if data is None:
        return TerraformLog()
    if not isinstance(data, dict):
        raise ValueError(f"log line is not a JSON object: {line!r}")
    diagnostic = data.get("diagnostic")
    if diagnostic is None:
        diagnostic = {}
    if not isinstance(diagnostic, dict):
        raise ValueError(f"diagnostic is not a JSON object: {diagnostic!r}")
    return TerraformLog(
        level=_string_field(data, "@level"),
        message=_string_field(data, "@message"),
        diagnostic_severity=_string_field(diagnostic, "severity"),
        diagnostic_summary=_string_field(diagnostic, "summary"),
        diagnostic_detail=_string_field(diagnostic, "detail"),
    )


def parse_terraform_logs(logs: bytes | str | None) -> list[TerraformLog]:
    """Parse newline-separated JSON log lines, skipping blank ones.

    Raises ValueError if a line is not a valid log record.
    """
    if logs is None:
        return []
    text = logs.decode("utf-8", errors="replace") if isinstance(logs, bytes) else logs
    return [_parse_line(line.strip()) for line in text.split("\n") if line.strip()]


def _error_message(log: TerraformLog) -> str:
    if log.diagnostic_severity == _LEVEL_ERROR and log.diagnostic_summary:
        return f"{log.diagnostic_summary}: {log.diagnostic_detail}"
    return log.message


def _new_failure(cls: type[TerraformError], operation: str, logs) -> TerraformError:
    try:
        tf_logs = parse_terraform_logs(logs)
    except ValueError as exc:
        return cls(operation, parse_error=str(exc))
    messages = [_error_message(log) for log in tf_logs if log.level == _LEVEL_ERROR]
    return cls(f"{operation}: " + "\n".join(messages))


def new_apply_failed(logs) -> ApplyFailed:
    """Build an apply failure error from the given CLI logs."""
    return _new_failure(ApplyFailed, "apply failed", logs)


def new_destroy_failed(logs) -> DestroyFailed:
    """Build a destroy failure error from the given CLI logs."""
    return _new_failure(DestroyFailed, "destroy failed", logs)


def new_refresh_failed(logs) -> RefreshFailed:
    """Build a refresh failure error from the given CLI logs."""
    return _new_failure(RefreshFailed, "refresh failed", logs)


def new_plan_failed(logs) -> PlanFailed:
    """Build a plan failure error from the given CLI logs."""
    return _new_failure(PlanFailed, "plan failed", logs)


def _chain_has(err: BaseException | None, cls: type) -> bool:
    seen: set[int] = set()
    while err is not None and id(err) not in seen:
        if isinstance(err, cls):
            return True
        seen.add(id(err))
        err = err.__cause__ if err.__cause__ is not None else err.__context__
    return False


def is_apply_failed(err: BaseException | None) -> bool:
    """Whether the error, or one it was raised from, is an apply failure."""
    return _chain_has(err, ApplyFailed)


def is_destroy_failed(err: BaseException | None) -> bool:
    """Whether the error, or one it was raised from, is a destroy failure."""
    return _chain_has(err, DestroyFailed)


def is_refresh_failed(err: BaseException | None) -> bool:
    """Whether the error, or one it was raised from, is a refresh failure."""
    return _chain_has(err, RefreshFailed)


def is_plan_failed(err: BaseException | None) -> bool:
    """Whether the error, or one it was raised from, is a plan failure."""
    return _chain_has(err, PlanFailed)


def is_retry_schedule_error(err: BaseException | None) -> bool:
    """Whether the error, or one it was raised from, asks to retry scheduling."""
    return _chain_has(err, RetryScheduleError)