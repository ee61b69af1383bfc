from __future__ import annotations

import os
from io import UnsupportedOperation
from typing import BinaryIO, Optional, Iterable, Tuple

from relic.sparse.core.definitions import DEFAULT_CHUNK_SIZE, ExtentWindow
from relic.sparse.core.errors import SparseIOError

# (absolute offset, length, byte source)
WriteItem = Tuple[int, int, BinaryIO]


class SparseWriter:
    """Positioned writes of extents onto a destination.

    Only the given ranges are written; gaps are never zero-filled and the
    destination is never truncated or resized. Writing the same extents
    again converges to the same bytes.

    Args:
        destination (BinaryIO): A writable, seekable target, opened unbuffered or
            buffered; the writer flushes before syncing.
        chunk_size (int): Copy buffer size.
    """

    def __init__(
        self, destination: BinaryIO, *, chunk_size: int = DEFAULT_CHUNK_SIZE
    ):
        self._destination = destination
        self._chunk_size = chunk_size
        self.extents_written = 0
        self.bytes_written = 0

    def _seek(self, offset: int) -> None:
        try:
            pos = self._destination.seek(offset, os.SEEK_SET)
        except (OSError, ValueError, OverflowError) as e:
            raise SparseIOError("Failed to seek destination", offset) from e
        if pos is not None and pos != offset:
            raise SparseIOError(f"Destination seek landed at '{pos}'", offset)

    def _write(self, buffer: bytes, offset: int) -> None:
        view = memoryview(buffer)
        while len(view) > 0:
            try:
                written = self._destination.write(view)
            except OSError as e:
                raise SparseIOError("Failed to write destination", offset) from e
            if not written:
                raise SparseIOError("Short write to destination", offset)
            view = view[written:]
            offset += written

    def write_extent(self, offset: int, length: int, source: BinaryIO) -> int:
        """Copies exactly ``length`` bytes from ``source`` to ``offset``.

        :raises SparseIOError: On a rejected seek, a failed write, or if
            ``source`` runs out early; ``offset`` of the error is the absolute
            destination position the copy stopped at.
        """
        self._seek(offset)
        now = offset
        remaining = length
        while remaining > 0:
            try:
                buffer = source.read(min(self._chunk_size, remaining))
            except OSError as e:
                raise SparseIOError("Failed to read source", now) from e
            if len(buffer) == 0:
                raise SparseIOError(
                    f"Source ended with '{remaining}' of '{length}' bytes unwritten",
                    now,
                )
            self._write(buffer, now)
            now += len(buffer)
            remaining -= len(buffer)
            self.bytes_written += len(buffer)
        self.extents_written += 1
        return length

    def write_all(self, items: Iterable[WriteItem]) -> int:
        return sum(self.write_extent(*item) for item in items)

    def write_window(self, window: ExtentWindow, source: Optional[BinaryIO] = None) -> int:
        """Writes every extent of ``window`` in order, pulling payload from
        ``source`` (defaults to the window's own payload)."""
        source = source if source is not None else window.payload
        return self.write_all(
            (window.absolute(extent), extent.length, source)
            for extent in window.extents
        )

    def sync(self) -> None:
        """Flush and ``fsync`` the destination; required before a transfer
        counts as complete."""
        try:
            self._destination.flush()
        except OSError as e:
            raise SparseIOError("Failed to flush destination") from e
        try:
            fileno = self._destination.fileno()
        except UnsupportedOperation:
            return  # in-memory destination
        try:
            os.fsync(fileno)
        except OSError as e:
            raise SparseIOError("Failed to sync destination") from e


__all__ = ["SparseWriter", "WriteItem"]
