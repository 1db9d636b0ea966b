from __future__ import annotations

from dataclasses import dataclass
import logging
from pathlib import Path
import subprocess
from typing import IO, Optional, Protocol, Sequence

from ffwrap.errors import InvalidConfigurationError, SpawnError

STDERR_MODES = ("merge", "devnull", "inherit")


class ProcessHandle(Protocol):
    stdout: Optional[IO[bytes]]

    def terminate(self) -> None:
        ...

    def kill(self) -> None:
        ...

    def poll(self) -> int | None:
        ...

    def wait(self, timeout: float | None = None) -> int:
        ...


class ProcessRunner(Protocol):
    def spawn(self, args: Sequence[str]) -> ProcessHandle:
        ...


@dataclass
class SubprocessProcessRunner:
    stderr: str = "merge"
    working_directory: Optional[Path] = None

    def __post_init__(self) -> None:
        if self.stderr not in STDERR_MODES:
            raise InvalidConfigurationError(
                f"Unknown stderr mode {self.stderr!r}; expected one of {STDERR_MODES}"
            )
        self._logger = logging.getLogger(self.__class__.__name__)

    def spawn(self, args: Sequence[str]) -> subprocess.Popen[bytes]:
        self._logger.debug("Spawning %s", list(args))
        try:
            # Binary pipe; decoding happens in the drain so bad bytes can't stall it.
            return subprocess.Popen(
                list(args),
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=self._stderr_target(),
                cwd=self.working_directory,
            )
        except OSError as exc:
            raise SpawnError(f"Failed to start {args[0]}: {exc}") from exc

    def _stderr_target(self) -> Optional[int]:
        if self.stderr == "merge":
            return subprocess.STDOUT
        if self.stderr == "devnull":
            return subprocess.DEVNULL
        return None
