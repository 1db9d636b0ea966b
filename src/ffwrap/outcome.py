from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import subprocess
from typing import Optional

from ffwrap.command_runner import ProcessHandle


class WaitState(Enum):
    SUCCEEDED = "succeeded"
    NONZERO_EXIT = "nonzero_exit"
    TIMED_OUT = "timed_out"
    INTERRUPTED = "interrupted"


@dataclass(frozen=True)
class WaitOutcome:
    state: WaitState
    returncode: Optional[int] = None
    detail: str = ""

    @property
    def ok(self) -> bool:
        return self.state is WaitState.SUCCEEDED


def await_exit(
    handle: ProcessHandle, timeout_seconds: float, *, check_exit_code: bool = True
) -> WaitOutcome:
    """Wait for ``handle`` and describe how the wait ended without raising."""
    try:
        returncode = handle.wait(timeout=timeout_seconds)
    except subprocess.TimeoutExpired:
        return WaitOutcome(
            WaitState.TIMED_OUT, detail=f"no exit after {timeout_seconds}s"
        )
    except InterruptedError as exc:
        return WaitOutcome(WaitState.INTERRUPTED, detail=str(exc))
    if check_exit_code and returncode != 0:
        return WaitOutcome(
            WaitState.NONZERO_EXIT,
            returncode=returncode,
            detail=f"exit status {returncode}",
        )
    return WaitOutcome(WaitState.SUCCEEDED, returncode=returncode)
