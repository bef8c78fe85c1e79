"""Runs a native Terraform provider plugin as a shared gRPC server."""

from __future__ import annotations

import logging
import os
import queue
import re
import threading
from datetime import timedelta
from typing import Iterable, Mapping, Protocol, Sequence

from .timeouts import format_duration

ENV_MAGIC_COOKIE = "TF_PLUGIN_MAGIC_COOKIE"
# Handshake value the Terraform plugin protocol expects in the provider's
# environment; it is a fixed public constant of the protocol.
MAGIC_COOKIE_VALUE = "d602bf8f470bc67ca7faa0386276bbdd4330efaf76d1a219cb4d6991ca9872b2"
DEFAULT_PROTOCOL_VERSION = 5
REATTACH_TIMEOUT = timedelta(minutes=1)

_FMT_REATTACH = (
    '{"%s":{"Protocol":"grpc","ProtocolVersion":%d,"Pid":%d,"Test": true,'
    '"Addr":{"Network": "unix","String": "%s"}}}'
)
_REATTACH_LINE = re.compile(r".*unix\|(.*)\|grpc.*")

_log = logging.getLogger(__name__)


class ProviderRunner(Protocol):
    """Runs a native provider process and reports how to reattach to it."""

    def start(self) -> str: ...

    def stop(self) -> None: ...


class ProcessHandle(Protocol):
    """A native provider process that has been prepared but maybe not started."""

    def stdout_pipe(self) -> Iterable[str]: ...

    def start(self) -> None: ...

    def wait(self) -> None: ...

    def stop(self) -> None: ...


class Executor(Protocol):
    """Prepares processes to be run."""

    def command(self, path: str, args: Sequence[str], env: Mapping[str, str]) -> ProcessHandle: ...


class NoOpProviderRunner:
    """A provider runner that starts no process."""

    def __init__(self) -> None:
        self.running = False

    def start(self) -> str:
        """Mark the runner as running and report an empty reattach configuration."""
        self.running = True
        return ""

    def stop(self) -> None:
        """Mark the runner as stopped."""
        self.running = False


class SharedProvider:
    """Runs the configured native provider plugin with the given arguments."""

    def __init__(
        self,
        native_provider_path: str = "",
        native_provider_args: Sequence[str] = (),
        native_provider_name: str = "",
        protocol_version: int = DEFAULT_PROTOCOL_VERSION,
        logger: logging.Logger | None = None,
        executor: Executor | None = None,
        reattach_timeout: timedelta = REATTACH_TIMEOUT,
    ) -> None:
        self.native_provider_path = native_provider_path
        self.native_provider_args = list(native_provider_args)
        self.native_provider_name = native_provider_name
        self.protocol_version = protocol_version
        self.logger = logger or _log
        self.executor = executor
        self.reattach_timeout = reattach_timeout
        self._reattach_config = ""
        self._lock = threading.Lock()
        self._events: queue.Queue | None = None

    def start(self) -> str:
        """Start the shared server if it is not running; return its reattach config.

        Raises TimeoutError if the provider does not announce itself in time,
        and re-raises any error from preparing or running the process.
        """
        with self._lock:
            if self._reattach_config:
                self.logger.debug(
                    "Shared gRPC server is running... reattachConfig=%s", self._reattach_config
                )
                return self._reattach_config
            if self.executor is None:
                raise RuntimeError("no process executor configured for the native provider")
            self.logger.debug(
                "Provider runner not yet started. Will fork a new native provider: %s %s",
                self.native_provider_path,
                self.native_provider_args,
            )
            results: queue.Queue = queue.Queue()
            events: queue.Queue = queue.Queue()
            self._events = events
            threading.Thread(target=self._run, args=(results, events), daemon=True).start()
            try:
                config, err = results.get(timeout=self.reattach_timeout.total_seconds())
            except queue.Empty:
                raise TimeoutError(
                    f"timed out after {format_duration(self.reattach_timeout)} "
                    "while waiting for the reattach configuration string"
                ) from None
            if err is not None:
                raise err
            if config is None:
                return ""
            self._reattach_config = config
            return config

    def _run(self, results: queue.Queue, events: queue.Queue) -> None:
        try:
            env = dict(os.environ)
            env[ENV_MAGIC_COOKIE] = MAGIC_COOKIE_VALUE
            try:
                process = self.executor.command(
                    self.native_provider_path, list(self.native_provider_args), env
                )
                lines = process.stdout_pipe()
                process.start()
            except Exception as exc:  # reported back to the caller of start()
                results.put((None, exc))
                return
            self.logger.debug("Forked new native provider.")
            self._scan_for_reattach(lines, results)

            def wait() -> None:
                try:
                    process.wait()
                except Exception as exc:
                    events.put(("exited", exc))
                else:
                    events.put(("exited", None))

            threading.Thread(target=wait, daemon=True).start()
            kind, err = events.get()
            if kind == "exited":
                self.logger.info("Native Terraform provider process error: %s", err)
                results.put((None, err))
            else:
                process.stop()
                self.logger.debug("Stopped the provider runner.")
        finally:
            with self._lock:
                self._reattach_config = ""

    def _scan_for_reattach(self, lines: Iterable[str], results: queue.Queue) -> None:
        try:
            for line in lines:
                match = _REATTACH_LINE.search(line.rstrip("\r\n"))
                if match is None:
                    continue
                results.put(
                    (
                        _FMT_REATTACH
                        % (
                            self.native_provider_name,
                            self.protocol_version,
                            os.getpid(),
                            match.group(1),
                        ),
                        None,
                    )
                )
                return
        except Exception as exc:
            self.logger.debug("Stopped reading native provider output: %s", exc)

    def stop(self) -> None:
        """Stop the shared server; raise RuntimeError if it was never started."""
        with self._lock:
            self.logger.debug("Attempting to stop the provider runner.")
            if self._events is None:
                raise RuntimeError("shared provider process not started yet")
            self._events.put(("stop", None))
            self._events = None