"""Schedulers that share native provider processes between workspaces."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Mapping, Protocol

from .provider_runner import ProviderRunner, SharedProvider
from .tferrors import RetryScheduleError

ProviderHandle = str
INVALID_PROVIDER_HANDLE: ProviderHandle = ""

TTL_MARGIN = 0.1


class InUse(Protocol):
    """Tracks the users of a shared resource such as a provider process."""

    def increment(self) -> None: ...

    def decrement(self) -> None: ...


class NoOpInUse:
    """An InUse that only counts its users and never blocks anything."""

    def __init__(self) -> None:
        self.count = 0

    def increment(self) -> None:
        """Count one more user."""
        self.count += 1

    def decrement(self) -> None:
        """Count one user fewer, never going below zero."""
        self.count = max(0, self.count - 1)


class ProviderScheduler(Protocol):
    """Forks or reuses native provider processes for provider handles."""

    def start(self, handle: ProviderHandle) -> tuple[InUse, str]: ...

    def stop(self, handle: ProviderHandle) -> None: ...


class NoOpProviderScheduler:
    """A scheduler that schedules no native provider processes."""

    def start(self, handle: ProviderHandle) -> tuple[InUse, str]:
        """Return a no-op usage tracker and an empty reattach configuration."""
        return NoOpInUse(), ""

    def stop(self, handle: ProviderHandle) -> None:
        """Check the handle; there is no process to stop."""
        if not isinstance(handle, str):
            raise TypeError(f"provider handle must be a string, not {type(handle).__name__}")


@dataclass
class _SchedulerEntry:
    runner: ProviderRunner
    in_use: int = 0
    invocation_count: int = 0


class _ProviderInUse:
    def __init__(self, scheduler: SharedProviderScheduler, handle: ProviderHandle) -> None:
        self._scheduler = scheduler
        self._handle = handle

    def increment(self) -> None:
        with self._scheduler._lock:
            entry = self._scheduler._runners[self._handle]
            entry.in_use += 1
            entry.invocation_count += 1

    def decrement(self) -> None:
        with self._scheduler._lock:
            entry = self._scheduler._runners[self._handle]
            if entry.in_use == 0:
                return
            entry.in_use -= 1


class SharedProviderScheduler:
    """Shares a provider process between workspaces with the same handle.

    A runner whose invocation count reached the TTL is replaced once it is
    no longer in use.
    """

    def __init__(
        self,
        ttl: int,
        logger: logging.Logger | None = None,
        runner_options: Mapping[str, Any] | None = None,
    ) -> None:
        self.ttl = ttl
        self._logger = logger or logging.getLogger(__name__)
        self._runner_options = dict(runner_options or {})
        self._runners: dict[ProviderHandle, _SchedulerEntry] = {}
        self._lock = threading.Lock()

    def start(self, handle: ProviderHandle) -> tuple[InUse, str]:
        """Reuse or fork the provider process for the handle.

        Raises RetryScheduleError when the reuse budget has been exceeded.
        """
        with self._lock:
            entry = self._runners.get(handle)
            if entry is not None and (
                entry.invocation_count < self.ttl or entry.in_use > 0
            ):
                if entry.invocation_count > int(float(self.ttl) * (1 + TTL_MARGIN)):
                    self._logger.debug(
                        "Reuse budget has been exceeded. Caller will need to retry. handle=%s",
                        handle,
                    )
                    raise RetryScheduleError(entry.invocation_count, self.ttl)
                self._logger.debug(
                    "Reusing the provider runner handle=%s invocationCount=%d",
                    handle,
                    entry.invocation_count,
                )
                try:
                    config = entry.runner.start()
                except Exception as exc:
                    raise RuntimeError(
                        f"cannot use already started provider with handle: {handle}: {exc}"
                    ) from exc
                return _ProviderInUse(self, handle), config
            if entry is not None:
                self._logger.debug(
                    "The provider runner has expired. Attempting to stop... handle=%s", handle
                )
                try:
                    entry.runner.stop()
                except Exception as exc:
                    raise RuntimeError(
                        f"cannot schedule a new shared provider for handle: {handle}: {exc}"
                    ) from exc

            options = dict(self._runner_options)
            options["logger"] = self._logger
            entry = _SchedulerEntry(runner=SharedProvider(**options))
            self._runners[handle] = entry
            self._logger.debug("Starting new shared provider... handle=%s", handle)
            try:
                config = entry.runner.start()
            except Exception as exc:
                raise RuntimeError(
                    f"cannot start the shared provider runner for handle: {handle}: {exc}"
                ) from exc
            return _ProviderInUse(self, handle), config

    def stop(self, handle: ProviderHandle) -> bool:
        """Leave the runner running; expired runners are replaced by start().

        Returns whether a runner is known for the handle.
        """
        with self._lock:
            return handle in self._runners


class _WorkspaceInUse:
    def __init__(self) -> None:
        self._count = 0
        self._cond = threading.Condition()

    def increment(self) -> None:
        with self._cond:
            self._count += 1

    def decrement(self) -> None:
        with self._cond:
            if self._count == 0:
                raise ValueError("negative in-use counter")
            self._count -= 1
            if self._count == 0:
                self._cond.notify_all()

    def wait(self) -> None:
        with self._cond:
            self._cond.wait_for(lambda: self._count == 0)


class WorkspaceProviderScheduler:
    """Shares a provider process between the CLI calls of one workspace."""

    def __init__(
        self,
        logger: logging.Logger | None = None,
        runner_options: Mapping[str, Any] | None = None,
    ) -> None:
        self._logger = logger or logging.getLogger(__name__)
        options: dict[str, Any] = {"logger": self._logger}
        options.update(runner_options or {})
        self._runner = SharedProvider(**options)
        self._in_use = _WorkspaceInUse()

    def start(self, handle: ProviderHandle) -> tuple[InUse, str]:
        """Start, or reuse, the workspace-scoped provider runner."""
        self._logger.debug("Starting workspace scoped provider runner. handle=%s", handle)
        try:
            config = self._runner.start()
        except Exception as exc:
            raise RuntimeError(f"cannot start a workspace provider runner: {exc}") from exc
        return self._in_use, config

    def stop(self, handle: ProviderHandle) -> None:
        """Stop the runner in the background once no caller is using it."""
        self._logger.debug(
            "Attempting to stop workspace scoped shared provider runner. handle=%s", handle
        )

        def stop_when_idle() -> None:
            self._in_use.wait()
            self._logger.debug("Provider runner not in-use, stopping it. handle=%s", handle)
            try:
                self._runner.stop()
            except Exception as exc:
                self._logger.info(
                    "Failed to stop provider runner: cannot stop a workspace provider runner: %s",
                    exc,
                )

        threading.Thread(target=stop_when_idle, daemon=True).start()