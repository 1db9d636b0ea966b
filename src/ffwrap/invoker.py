from __future__ import annotations

import logging
import os
import subprocess
import sys
from threading import Lock
from typing import IO, Callable, Optional, Sequence, TextIO

from ffwrap.command_runner import ProcessHandle, ProcessRunner, SubprocessProcessRunner
from ffwrap.config import DECODE_ERROR_MODES, InvokerConfig
from ffwrap.drain import OutputDrain
from ffwrap.errors import (
    AbnormalExitError,
    InterruptedWaitError,
    InvalidConfigurationError,
    InvocationError,
    InvocationTimeout,
    SpawnError,
)
from ffwrap.outcome import WaitOutcome, WaitState, await_exit

DEFAULT_TIMEOUT_SECONDS = 5.0
RELEASE_GRACE_SECONDS = 1.0


class _VersionCell:
    """Holds the version string once a probe has succeeded."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._value: Optional[str] = None

    @property
    def value(self) -> Optional[str]:
        return self._value

    def get_or_load(self, load: Callable[[], str], *, timeout: float) -> str:
        if self._value is not None:
            return self._value
        if not self._lock.acquire(timeout=timeout):
            raise InvocationTimeout(
                f"Gave up after {timeout}s waiting for another version probe"
            )
        try:
            # A concurrent caller may have filled the cell while we waited.
            if self._value is None:
                self._value = load()
            return self._value
        finally:
            self._lock.release()


class Invoker:
    """Runs one external binary at a time with bounded waits.

    Every invocation spawns a fresh process, drains its stdout on a
    background thread while waiting for exit, and releases the process on
    every path out of the call. ``version()`` results are cached for the
    lifetime of the invoker.
    """

    config_field: Optional[str] = None

    def __init__(
        self,
        path: str,
        runner: Optional[ProcessRunner] = None,
        *,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        drain_timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        sink: Optional[TextIO] = None,
        check_exit_code: bool = True,
        decode_errors: str = "replace",
    ) -> None:
        if not isinstance(path, str) or not path.strip():
            raise InvalidConfigurationError("Binary path must be a non-empty string")
        if timeout_seconds <= 0 or drain_timeout_seconds <= 0:
            raise InvalidConfigurationError("Timeouts must be positive")
        if decode_errors not in DECODE_ERROR_MODES:
            raise InvalidConfigurationError(f"Unknown decode_errors mode: {decode_errors}")
        self._path = path
        self._runner: ProcessRunner = (
            runner if runner is not None else SubprocessProcessRunner()
        )
        self._timeout_seconds = timeout_seconds
        self._drain_timeout_seconds = drain_timeout_seconds
        self._sink = sink
        self._check_exit_code = check_exit_code
        self._decode_errors = decode_errors
        self._version = _VersionCell()
        self._logger = logging.getLogger(self.__class__.__name__)

    @classmethod
    def from_config(
        cls,
        config: InvokerConfig,
        path: Optional[str] = None,
        runner: Optional[ProcessRunner] = None,
        sink: Optional[TextIO] = None,
    ) -> "Invoker":
        if path is None and cls.config_field is not None:
            path = getattr(config, cls.config_field)
        if path is None:
            raise InvalidConfigurationError("No binary path given")
        if runner is None:
            runner = SubprocessProcessRunner(
                stderr=config.stderr,
                working_directory=config.working_directory,
            )
        return cls(
            path,
            runner,
            timeout_seconds=config.timeout_seconds,
            drain_timeout_seconds=config.drain_timeout_seconds,
            sink=sink,
            check_exit_code=config.check_exit_code,
            decode_errors=config.decode_errors,
        )

    @property
    def path(self) -> str:
        return self._path

    def command(self, args: Sequence[str]) -> tuple[str, ...]:
        """Return the binary path followed by ``args``."""
        if args is None or isinstance(args, (str, bytes)):
            raise InvalidConfigurationError("args must be a sequence of strings")
        args = tuple(args)
        if not all(isinstance(arg, str) for arg in args):
            raise InvalidConfigurationError("args must be a sequence of strings")
        return (self._path,) + args

    def version(self) -> str:
        cached = self._version.value
        if cached is not None:
            self._logger.debug("Version cache hit for %s", self._path)
            return cached
        self._logger.info("Version cache miss for %s", self._path)
        # Waiters on another caller's probe get the same bound that probe has.
        lock_timeout = (
            self._timeout_seconds + self._drain_timeout_seconds + 2 * RELEASE_GRACE_SECONDS
        )
        return self._version.get_or_load(self._probe_version, timeout=lock_timeout)

    def run(self, args: Sequence[str], sink: Optional[TextIO] = None) -> None:
        """Run the binary with ``args``, forwarding its output to ``sink``.

        Blocks until the process exits. Output reaches the sink as it is
        produced, so a failed run may still have written to it.
        """
        target = sink if sink is not None else self._sink
        if target is None:
            target = sys.stdout
        self._invoke(
            args,
            lambda stream: OutputDrain.forward(stream, target, errors=self._decode_errors),
        )

    def _probe_version(self) -> str:
        drain = self._invoke(
            ["-version"],
            lambda stream: OutputDrain.probe(stream, errors=self._decode_errors),
        )
        if not drain.first_line:
            raise InvocationError(f"{self._path} produced no version output")
        self._logger.info("Version for %s: %s", self._path, drain.first_line)
        return drain.first_line

    def _invoke(
        self,
        args: Sequence[str],
        make_drain: Callable[[IO[bytes]], OutputDrain],
    ) -> OutputDrain:
        command = self.command(args)
        self._logger.info(
            "Running %s (timeout=%ss)", " ".join(command), self._timeout_seconds
        )
        handle = self._spawn(command)
        drain: Optional[OutputDrain] = None
        try:
            if handle.stdout is None:
                raise InvocationError(f"{self._path} was started without a stdout pipe")
            drain = make_drain(handle.stdout)
            drain.start()
            outcome = await_exit(
                handle, self._timeout_seconds, check_exit_code=self._check_exit_code
            )
            if outcome.state in (WaitState.SUCCEEDED, WaitState.NONZERO_EXIT):
                if not drain.join(self._drain_timeout_seconds):
                    outcome = WaitOutcome(
                        WaitState.TIMED_OUT,
                        returncode=outcome.returncode,
                        detail=f"output still open {self._drain_timeout_seconds}s after exit",
                    )
            self._raise_for(outcome)
            if drain.error is not None:
                self._logger.warning("%s output failed: %s", self._path, drain.error)
                raise drain.error
            return drain
        finally:
            self._release(handle, drain)

    def _spawn(self, command: tuple[str, ...]) -> ProcessHandle:
        try:
            return self._runner.spawn(command)
        except SpawnError as exc:
            self._logger.warning("Failed to start %s: %s", self._path, exc)
            raise
        except OSError as exc:
            self._logger.warning("Failed to start %s: %s", self._path, exc)
            raise SpawnError(f"Failed to start {self._path}: {exc}") from exc

    def _raise_for(self, outcome: WaitOutcome) -> None:
        if outcome.ok:
            return
        self._logger.warning(
            "%s failed (%s): %s", self._path, outcome.state.value, outcome.detail
        )
        if outcome.state is WaitState.TIMED_OUT:
            raise InvocationTimeout(
                f"Timed out waiting for {self._path} to finish: {outcome.detail}"
            )
        if outcome.state is WaitState.INTERRUPTED:
            raise InterruptedWaitError(
                f"Interrupted while waiting for {self._path}: {outcome.detail}"
            )
        raise AbnormalExitError(
            f"{self._path} returned non-zero exit status {outcome.returncode}. Check output.",
            returncode=outcome.returncode,
        )

    def _release(self, handle: ProcessHandle, drain: Optional[OutputDrain]) -> None:
        try:
            if handle.poll() is None:
                handle.terminate()
                try:
                    handle.wait(timeout=RELEASE_GRACE_SECONDS)
                except subprocess.TimeoutExpired:
                    self._logger.warning("%s ignored terminate; killing", self._path)
                    handle.kill()
                    handle.wait(timeout=RELEASE_GRACE_SECONDS)
        except (subprocess.TimeoutExpired, InterruptedError) as exc:
            self._logger.warning("Could not reap %s: %s", self._path, exc)
        finally:
            drained = drain is None or drain.join(RELEASE_GRACE_SECONDS)
            if not drained:
                # Closing under a blocked reader would hang on the buffer lock.
                self._logger.warning("Leaving %s output pipe to its drain thread", self._path)
            elif handle.stdout is not None:
                handle.stdout.close()


class _DefaultBinary(Invoker):
    """Invoker whose path falls back to an environment variable, then a name."""

    env_var: str
    binary_name: str

    def __init__(
        self,
        path: Optional[str] = None,
        runner: Optional[ProcessRunner] = None,
        **kwargs,
    ) -> None:
        if path is None:
            path = self.default_path()
        super().__init__(path, runner, **kwargs)

    @classmethod
    def default_path(cls) -> str:
        return os.getenv(cls.env_var) or cls.binary_name


class FFmpeg(_DefaultBinary):
    config_field = "ffmpeg_path"
    env_var = "FFMPEG"
    binary_name = "ffmpeg"


class FFprobe(_DefaultBinary):
    config_field = "ffprobe_path"
    env_var = "FFPROBE"
    binary_name = "ffprobe"
