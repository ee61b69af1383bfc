import errno
import os
import tempfile
from io import BytesIO
from typing import List, Tuple, Sequence

from relic.sparse.core.definitions import Extent
from relic.sparse.core.packer import write_sparse_entry

_ALIGN = 64 * 1024


class TempFileHandle:
    def __init__(self, size: int = 0):
        with tempfile.NamedTemporaryFile("x", delete=False) as h:
            self._filename = h.name
        if size > 0:
            os.truncate(self._filename, size)

    @property
    def path(self):
        return self._filename

    def open(self, mode: str):
        return open(self._filename, mode)

    def read(self) -> bytes:
        with open(self._filename, "rb") as h:
            return h.read()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        try:
            os.unlink(self._filename)
        except Exception as e:
            print(e)


def write_sparse_file(path: str, size: int, regions: Sequence[Tuple[int, bytes]]) -> None:
    """Creates ``path`` as a ``size`` byte file that is a hole everywhere but
    ``regions``."""
    with open(path, "wb") as h:
        h.truncate(size)
        for offset, data in regions:
            h.seek(offset)
            h.write(data)


def holes_supported() -> bool:
    """Whether the temp directory's filesystem reports holes at 64 KiB
    granularity."""
    if not hasattr(os, "SEEK_DATA"):
        return False
    with TempFileHandle() as h:
        write_sparse_file(h.path, 4 * _ALIGN, [(2 * _ALIGN, b"\x01" * _ALIGN)])
        fd = os.open(h.path, os.O_RDONLY)
        try:
            return os.lseek(fd, 0, os.SEEK_DATA) == 2 * _ALIGN
        except OSError:
            return False
        finally:
            os.close(fd)


def expand(extents: List[Extent], payload: bytes, size: int) -> bytes:
    """The logical bytes a window describes; holes are zero."""
    buffer = bytearray(size)
    pos = 0
    for extent in extents:
        buffer[extent.offset : extent.end] = payload[pos : pos + extent.length]
        pos += extent.length
    return bytes(buffer)


def sparse_entry(
    name: str, extents: List[Extent], logical_size: int, fill: int = 0xA5
) -> Tuple[bytes, bytes]:
    """Returns an encoded sparse member and the payload it carries."""
    payload = bytes(
        (fill + i) % 256 for i in range(sum(extent.length for extent in extents))
    )
    with BytesIO() as out:
        write_sparse_entry(out, name, payload, extents, logical_size, mtime=0)
        return out.getvalue(), payload


class FailingStream(BytesIO):
    """A stream whose reads raise EIO once they would cross ``fail_at``."""

    def __init__(self, data: bytes, fail_at: int):
        super().__init__(data)
        self._fail_at = fail_at

    def _check(self, size) -> None:
        end = self.tell() + (size if size is not None and size >= 0 else len(self.getvalue()))
        if end > self._fail_at:
            raise OSError(errno.EIO, os.strerror(errno.EIO))

    def read(self, size=-1) -> bytes:
        self._check(size)
        return super().read(size)

    def readline(self, size=-1) -> bytes:
        self._check(size)
        return super().readline(size)
