"""
Per-stream output buffers.

Each stream is fed by exactly one pump and guarded by its own lock, so
stdout and stderr never contend with each other. Reading before the
end-of-stream marker returns a consistent partial snapshot.
"""

import asyncio
import threading
from typing import List


class StreamBuffer:
    """Append-only line buffer for one output stream."""

    def __init__(self, name: str):
        self.name = name
        self._lines: List[str] = []
        self._lock = threading.Lock()
        self._closed = threading.Event()

    def append(self, line: str) -> None:
        """Append one line; empty lines are dropped."""
        if not line:
            return
        with self._lock:
            if self._closed.is_set():
                raise ValueError(f"{self.name} stream already reached end of stream")
            self._lines.append(line + "\n")

    def close(self) -> None:
        """Record the end-of-stream marker."""
        self._closed.set()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def read(self) -> str:
        with self._lock:
            return "".join(self._lines)

    def __len__(self) -> int:
        with self._lock:
            return len(self._lines)


class OutputAggregator:
    """The stdout and stderr buffers of one run."""

    def __init__(self):
        self.stdout = StreamBuffer("stdout")
        self.stderr = StreamBuffer("stderr")

    @property
    def complete(self) -> bool:
        """True once both streams have seen end of stream."""
        return self.stdout.closed and self.stderr.closed


async def pump_lines(
    reader: asyncio.StreamReader,
    buffer: StreamBuffer,
    encoding: str = "utf-8",
    errors: str = "replace",
    chunk_size: int = 64 * 1024,
) -> None:
    """Move lines from a pipe into a buffer until the pipe closes.

    Output is read in chunks and split on newlines here, so a line of any
    length is kept whole. A final line without a terminator is kept too.
    The end-of-stream marker is only recorded on a real EOF, never when the
    pump is cancelled or fails to decode.
    """
    pending = bytearray()
    while True:
        chunk = await reader.read(chunk_size)
        if not chunk:
            break
        pending += chunk
        end = pending.rfind(b"\n")
        if end < 0:
            continue
        for raw in bytes(pending[:end]).split(b"\n"):
            buffer.append(raw.decode(encoding, errors).rstrip("\r"))
        del pending[: end + 1]

    if pending:
        buffer.append(bytes(pending).decode(encoding, errors).rstrip("\r"))
    buffer.close()
