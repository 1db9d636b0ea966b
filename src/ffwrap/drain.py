"""Background consumption of a child's stdout.

A child writing into a full pipe blocks until somebody reads it, so the
drain always runs on its own thread and is started before the parent waits
for exit.
"""
from __future__ import annotations

import codecs
import logging
from threading import Thread
from typing import IO, Callable, Optional, TextIO

from ffwrap.errors import DecodeError, InvocationError, OutputReadError, SinkError

CHUNK_SIZE = 8192


class OutputDrain:
    def __init__(
        self,
        stream: IO[bytes],
        consume: Callable[["OutputDrain"], None],
        *,
        name: str,
    ) -> None:
        self._stream = stream
        self._consume = consume
        self._logger = logging.getLogger(self.__class__.__name__)
        self._thread = Thread(target=self._run, name=name, daemon=True)
        self.first_line: Optional[str] = None
        self.error: Optional[InvocationError] = None

    @classmethod
    def probe(cls, stream: IO[bytes], *, errors: str = "replace") -> "OutputDrain":
        """Keep the first line of output and throw the rest away."""

        def consume(drain: OutputDrain) -> None:
            raw = drain._stream.readline()
            if raw:
                try:
                    drain.first_line = raw.decode("utf-8", errors).rstrip("\r\n")
                except UnicodeDecodeError as exc:
                    drain._record(DecodeError(f"Version output is not UTF-8: {exc}"), exc)
            drain._discard()

        return cls(stream, consume, name="ffwrap-probe-drain")

    @classmethod
    def forward(
        cls, stream: IO[bytes], sink: TextIO, *, errors: str = "replace"
    ) -> "OutputDrain":
        """Copy the whole stream, decoded as UTF-8, into ``sink``."""

        def consume(drain: OutputDrain) -> None:
            decoder = codecs.getincrementaldecoder("utf-8")(errors)
            read = drain._reader()
            while True:
                chunk = read(CHUNK_SIZE)
                final = not chunk
                try:
                    text = decoder.decode(chunk, final)
                except UnicodeDecodeError as exc:
                    drain._record(DecodeError(f"Output is not UTF-8: {exc}"), exc)
                    break
                if text and not drain._write(sink, text):
                    break
                if final:
                    drain._flush(sink)
                    return
            # Stop forwarding but keep the pipe empty until the child is done.
            drain._discard()

        return cls(stream, consume, name="ffwrap-forward-drain")

    def start(self) -> None:
        self._thread.start()

    def join(self, timeout: float | None = None) -> bool:
        """Wait for end-of-stream; return False if the thread is still reading."""
        self._thread.join(timeout)
        return not self._thread.is_alive()

    def _run(self) -> None:
        try:
            self._consume(self)
        except Exception as exc:
            self._logger.warning("Output stream failed: %s", exc)
            self._record(OutputReadError(f"Output stream failed: {exc}"), exc)
            # Whatever is still readable must be emptied so the child can exit.
            try:
                self._discard()
            except Exception as discard_exc:
                self._logger.debug("Output stream unreadable: %s", discard_exc)

    def _record(self, error: InvocationError, cause: BaseException) -> None:
        error.__cause__ = cause
        if self.error is None:
            self.error = error

    def _reader(self) -> Callable[[int], bytes]:
        return getattr(self._stream, "read1", self._stream.read)

    def _discard(self) -> None:
        read = self._reader()
        while read(CHUNK_SIZE):
            pass

    def _write(self, sink: TextIO, text: str) -> bool:
        try:
            sink.write(text)
        except Exception as exc:
            self._record(SinkError(f"Failed to write output to sink: {exc}"), exc)
            return False
        return True

    def _flush(self, sink: TextIO) -> None:
        flush = getattr(sink, "flush", None)
        if flush is None:
            return
        try:
            flush()
        except Exception as exc:
            self._record(SinkError(f"Failed to flush sink: {exc}"), exc)
