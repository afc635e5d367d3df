"""Incremental line splitting for the engine's stdout stream."""

import codecs
from typing import Callable


class LineReader:
    """Buffers chunks and emits complete, stripped, non-empty lines.

    Chunks may be ``bytes`` or ``str`` and may split a line (or a multi-byte
    character) anywhere; the carry-over buffer holds the unfinished tail until
    a later chunk completes it.
    """

    def __init__(self, on_line: Callable[[str], None]) -> None:
        self._on_line = on_line
        self._buf = ""
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

    def push(self, chunk: bytes | str) -> None:
        if isinstance(chunk, bytes):
            chunk = self._decoder.decode(chunk)
        self._buf += chunk
        while True:
            idx = self._buf.find("\n")
            if idx < 0:
                break
            line = self._buf[:idx].strip()
            self._buf = self._buf[idx + 1:]
            if line:
                self._on_line(line)

    @property
    def pending(self) -> str:
        """Text received after the last line terminator."""
        return self._buf
