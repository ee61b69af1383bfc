from __future__ import annotations

import os
from types import TracebackType
from typing import (
    BinaryIO,
    Type,
    Iterator,
    AnyStr,
    Iterable,
    Optional,
    Union,
    Sequence,
)
from io import BytesIO

from relic.sparse.core.definitions import Extent, DEFAULT_CHUNK_SIZE
from relic.sparse.core.errors import SparseIOError


class BinaryWrapper(BinaryIO):
    def __init__(
        self, parent: BinaryIO, close_parent: bool = False, name: Optional[str] = None
    ):
        self._parent = parent
        self._parent_is_bytesio = isinstance(parent, BytesIO)
        self._close_parent = close_parent
        self._closed = False
        self._name = name

    def __enter__(self) -> BinaryIO:
        return self

    @property
    def name(self) -> str:
        return self._name or (
            None if self._parent_is_bytesio else getattr(self._parent, "name", None)
        )

    def close(self) -> None:
        if self._close_parent:
            self._parent.close()
        self._closed = True

    @property
    def closed(self) -> bool:
        return self._parent.closed or self._closed

    def fileno(self) -> int:
        return self._parent.fileno()

    def flush(self) -> None:
        return self._parent.flush()

    def isatty(self) -> bool:
        return self._parent.isatty()

    def read(self, __n: int = -1) -> AnyStr:
        return self._parent.read(__n)

    def readable(self) -> bool:
        return self._parent.readable()

    def readline(self, __limit: int = -1) -> AnyStr:
        return self._parent.readline(__limit)

    def readlines(self, __hint: int = -1) -> list[AnyStr]:
        return self._parent.readlines(__hint)

    def seek(self, __offset: int, __whence: int = 0) -> int:
        return self._parent.seek(__offset, __whence)

    def seekable(self) -> bool:
        return self._parent.seekable()

    def tell(self) -> int:
        return self._parent.tell()

    def truncate(self, __size: int | None = None) -> int:
        raise NotImplementedError

    def writable(self) -> bool:
        return False

    def write(self, __s: AnyStr) -> int:
        raise NotImplementedError

    def writelines(self, __lines: Iterable[AnyStr]) -> None:
        raise NotImplementedError

    def __next__(self) -> AnyStr:
        return self._parent.__next__()

    def __iter__(self) -> Iterator[AnyStr]:
        return self._parent.__iter__()

    def __exit__(
        self,
        __t: Type[BaseException] | None,
        __value: BaseException | None,
        __traceback: TracebackType | None,
    ) -> bool | None:
        self.close()
        return None

    @property
    def mode(self) -> str:
        return "rb"


class BoundedReader(BinaryWrapper):
    """A forward-only view of exactly ``size`` bytes of a stream.

    The parent does not need to be seekable (stdin, pipes); reads never
    go past the bound, so the parent is left positioned right after the
    last byte consumed.
    """

    def __init__(self, parent: BinaryIO, size: int, name: Optional[str] = None):
        super().__init__(parent, close_parent=False, name=name)
        self._size = size
        self._now = 0

    @property
    def size(self) -> int:
        return self._size

    @property
    def remaining(self) -> int:
        return self._size - self._now

    def tell(self) -> int:
        return self._now

    def seekable(self) -> bool:
        return False

    def seek(self, __offset: int, __whence: int = 0) -> int:
        raise NotImplementedError("BoundedReader is forward-only")

    def read(self, __n: int = -1) -> bytes:
        remaining = self.remaining
        if __n is None or __n < 0 or __n > remaining:
            __n = remaining
        if __n == 0:
            return b""
        try:
            buffer = self._parent.read(__n)
        except OSError as e:
            raise SparseIOError(f"Failed to read '{self.name}'", self._now) from e
        self._now += len(buffer)
        return buffer

    def readline(self, __limit: int = -1) -> bytes:
        """Reads up to and including a newline, never past the bound."""
        remaining = self.remaining
        if __limit is None or __limit < 0 or __limit > remaining:
            __limit = remaining
        if __limit == 0:
            return b""
        try:
            buffer = self._parent.readline(__limit)
        except OSError as e:
            raise SparseIOError(f"Failed to read '{self.name}'", self._now) from e
        self._now += len(buffer)
        return buffer

    def readlines(self, __hint: int = -1) -> list[bytes]:
        raise NotImplementedError

    def drain(self, chunk_size: int = DEFAULT_CHUNK_SIZE) -> int:
        """Discard every unread byte; returns how many were skipped."""
        skipped = 0
        while self.remaining > 0:
            buffer = self.read(min(chunk_size, self.remaining))
            if len(buffer) == 0:
                raise SparseIOError(
                    f"Stream ended with '{self.remaining}' bytes of '{self.name}' unread",
                    self._now,
                )
            skipped += len(buffer)
        return skipped


class ExtentReader(BinaryWrapper):
    """Reads the concatenation of ``extents`` from a seekable parent.

    Each extent is read from its own position in the parent; bytes
    between extents are never touched.
    """

    def __init__(
        self, parent: BinaryIO, extents: Sequence[Extent], name: Optional[str] = None
    ):
        super().__init__(parent, close_parent=False, name=name)
        self._extents = list(extents)
        self._index = 0
        self._in_extent = 0
        self._now = 0

    def tell(self) -> int:
        return self._now

    def seekable(self) -> bool:
        return False

    def seek(self, __offset: int, __whence: int = 0) -> int:
        raise NotImplementedError("ExtentReader is forward-only")

    def _read_part(self, size: int) -> bytes:
        while self._index < len(self._extents):
            extent = self._extents[self._index]
            left = extent.length - self._in_extent
            if left == 0:
                self._index += 1
                self._in_extent = 0
                continue
            pos = extent.offset + self._in_extent
            try:
                self._parent.seek(pos, os.SEEK_SET)
                buffer = self._parent.read(min(size, left))
            except OSError as e:
                raise SparseIOError(f"Failed to read '{self.name}'", pos) from e
            self._in_extent += len(buffer)
            self._now += len(buffer)
            return buffer
        return b""

    def read(self, __n: int = -1) -> bytes:
        if __n is None or __n < 0:
            return b"".join(read_chunks(self))
        parts = []
        while __n > 0:
            part = self._read_part(__n)
            if len(part) == 0:
                break
            __n -= len(part)
            parts.append(part)
        return b"".join(parts)

    def readline(self, __limit: int = -1) -> bytes:
        raise NotImplementedError

    def readlines(self, __hint: int = -1) -> list[bytes]:
        raise NotImplementedError


def read_exact(stream: BinaryIO, size: int) -> bytes:
    """Read exactly ``size`` bytes, looping over short reads.

    Returns fewer bytes only when the stream ends; callers decide
    whether that is an error.

    :raises SparseIOError: If the stream itself fails; ``offset`` is how far
        into this read it got.
    """
    parts = []
    done = 0
    while size > 0:
        try:
            buffer = stream.read(size)
        except OSError as e:
            raise SparseIOError("Failed to read input stream", done) from e
        if not buffer:
            break
        size -= len(buffer)
        done += len(buffer)
        parts.append(buffer)
    return b"".join(parts)


def read_chunks(
    stream: Union[BinaryIO, bytes],
    start: Optional[int] = None,
    size: Optional[int] = None,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> Iterator[bytes]:
    if isinstance(stream, bytes):
        if start is None:
            start = 0
        if size is None:
            size = len(stream) - start
        for read_start in range(start, start + size, chunk_size):
            yield stream[read_start : min(read_start + chunk_size, start + size)]
    else:
        if start is not None:
            stream.seek(start)
        if size is None:
            while True:
                buffer = stream.read(chunk_size)
                if len(buffer) == 0:
                    return
                yield buffer
        else:
            while size > 0:
                buffer = stream.read(min(size, chunk_size))
                size -= len(buffer)
                if len(buffer) == 0:
                    return
                yield buffer


__all__ = [
    "BinaryWrapper",
    "BoundedReader",
    "ExtentReader",
    "read_exact",
    "read_chunks",
]
