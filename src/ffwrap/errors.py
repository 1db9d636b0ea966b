from __future__ import annotations

from typing import Optional


class InvocationError(OSError):
    """Base class for every failure raised while invoking a binary."""


class InvalidConfigurationError(InvocationError, ValueError):
    """Raised before spawning when the path or arguments are unusable."""


class SpawnError(InvocationError):
    """Raised when the operating system could not start the process."""


class InvocationTimeout(InvocationError):
    """Raised when the process or its output outlives the wait bound."""


class InterruptedWaitError(InvocationError):
    """Raised when waiting for the process was interrupted."""


class AbnormalExitError(InvocationError):
    def __init__(self, message: str, returncode: Optional[int] = None) -> None:
        super().__init__(message)
        self.returncode = returncode


class DecodeError(InvocationError):
    """Raised when output is not valid UTF-8 in strict mode."""


class SinkError(InvocationError):
    """Raised when forwarded output could not be written to the sink."""


class OutputReadError(InvocationError):
    """Raised when the child's output stream failed before end-of-stream."""
