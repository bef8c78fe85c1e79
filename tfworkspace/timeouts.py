"""Operation timeouts rendered as Terraform parameters and private metadata."""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import timedelta
from typing import Any

TF_META_TIMEOUT_KEY = "e2bfb730-ecaa-11e6-8f88-34363bc7c4c0"

_SECOND_NS = 1_000_000_000


def _nanoseconds(value: timedelta | int) -> int:
    if isinstance(value, timedelta):
        return (value.days * 86400 + value.seconds) * _SECOND_NS + value.microseconds * 1000
    return int(value)


def _with_fraction(amount: int, unit: int) -> str:
    whole, frac = divmod(amount, unit)
    if not frac:
        return str(whole)
    digits = len(str(unit)) - 1
    return f"{whole}." + f"{frac:0{digits}d}".rstrip("0")


def format_duration(value: timedelta | int) -> str:
    """Render a duration (timedelta or nanoseconds) like '2m0s' or '500ms'."""
    ns = _nanoseconds(value)
    if ns == 0:
        return "0s"
    sign = "-" if ns < 0 else ""
    u = abs(ns)
    if u < _SECOND_NS:
        if u < 1000:
            text = f"{u}ns"
        elif u < 1_000_000:
            text = _with_fraction(u, 1000) + "µs"
        else:
            text = _with_fraction(u, 1_000_000) + "ms"
        return sign + text
    seconds_text = _with_fraction(u % (60 * _SECOND_NS), _SECOND_NS) + "s"
    total_minutes = u // (60 * _SECOND_NS)
    hours, minutes = divmod(total_minutes, 60)
    if hours:
        return f"{sign}{hours}h{minutes}m{seconds_text}"
    if minutes:
        return f"{sign}{minutes}m{seconds_text}"
    return sign + seconds_text


@dataclass(frozen=True)
class OperationTimeouts:
    """Custom timeouts for the CRUD operations of a resource."""

    read: timedelta = timedelta(0)
    create: timedelta = timedelta(0)
    update: timedelta = timedelta(0)
    delete: timedelta = timedelta(0)

    def _configured(self):
        for name in ("read", "create", "update", "delete"):
            value = getattr(self, name)
            if format_duration(value) != "0s":
                yield name, value

    def as_parameter(self) -> dict[str, str]:
        """Timeouts as the 'timeouts' block of a Terraform resource."""
        return {name: format_duration(value) for name, value in self._configured()}

    def as_metadata(self) -> dict[str, int]:
        """Timeouts in nanoseconds, as Terraform keeps them in private state."""
        return {name: _nanoseconds(value) for name, value in self._configured()}


def _marshal(obj: Any) -> bytes:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def insert_timeouts_meta(existing_meta: bytes | None, timeouts: OperationTimeouts) -> bytes | None:
    """Merge custom timeouts into existing private state metadata.

    Raises ValueError if the existing metadata cannot be parsed.
    """
    custom = timeouts.as_metadata()
    if not custom:
        return existing_meta
    if not existing_meta:
        return _marshal({TF_META_TIMEOUT_KEY: custom})
    try:
        meta = json.loads(existing_meta)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ValueError(f"cannot parse existing metadata: {exc}") from exc
    if meta is None:
        meta = {}
    if not isinstance(meta, dict):
        raise ValueError("cannot parse existing metadata: not a JSON object")
    existing = meta.get(TF_META_TIMEOUT_KEY)
    if isinstance(existing, dict):
        existing.update(custom)
    else:
        meta[TF_META_TIMEOUT_KEY] = custom
    return _marshal(meta)