"""Enumerates the data regions of a local sparse file.

Uses ``lseek(SEEK_DATA)`` / ``lseek(SEEK_HOLE)`` so hole bytes are never
read. Filesystems (or platforms) without hole seeking are reported as an
error instead of silently degrading into a full copy.
"""

from __future__ import annotations

import errno
import os
from typing import BinaryIO, Iterator, Union, List

from relic.sparse.core.definitions import Extent
from relic.sparse.core.errors import SparseIOError

_UNSUPPORTED = {errno.EINVAL, errno.ENOTSUP, errno.EOPNOTSUPP}

FileLike = Union[int, BinaryIO]


def _fileno(file: FileLike) -> int:
    return file if isinstance(file, int) else file.fileno()


def _seek_flags() -> tuple[int, int]:
    seek_data = getattr(os, "SEEK_DATA", None)
    seek_hole = getattr(os, "SEEK_HOLE", None)
    if seek_data is None or seek_hole is None:
        raise SparseIOError("This platform does not support SEEK_DATA/SEEK_HOLE")
    return seek_data, seek_hole


def _lseek(fd: int, pos: int, how: int, what: str) -> int:
    try:
        return os.lseek(fd, pos, how)
    except OSError as e:
        if e.errno in _UNSUPPORTED:
            raise SparseIOError(
                f"The filesystem does not support seeking to the next {what}", pos
            ) from e
        raise


def iter_data_extents(file: FileLike) -> Iterator[Extent]:
    """Yields the non-hole ranges of ``file`` in increasing order.

    A file without holes yields a single extent covering all of it; an
    empty (or all-hole) file yields nothing.

    :raises SparseIOError: If hole seeking is unsupported or a seek fails.
    """
    seek_data, seek_hole = _seek_flags()
    fd = _fileno(file)
    try:
        size = os.fstat(fd).st_size
    except OSError as e:
        raise SparseIOError("Failed to stat the source file") from e

    pos = 0
    while pos < size:
        try:
            start = _lseek(fd, pos, seek_data, "data region")
        except OSError as e:
            if e.errno == errno.ENXIO:  # only a hole remains
                return
            raise SparseIOError("Failed to seek to the next data region", pos) from e
        try:
            end = _lseek(fd, start, seek_hole, "hole")
        except OSError as e:
            raise SparseIOError("Failed to seek to the next hole", start) from e
        if end <= start:
            raise SparseIOError(
                f"Hole seeking returned an empty data region '{start}'-'{end}'", start
            )
        yield Extent(start, end - start)
        pos = end


def data_extents(file: FileLike) -> List[Extent]:
    return list(iter_data_extents(file))


def clip_extents(extents: List[Extent], start: int, size: int) -> List[Extent]:
    """Returns the parts of ``extents`` that fall inside ``[start, start+size)``,
    relative to ``start``."""
    end = start + size
    clipped = []
    for extent in extents:
        lo = max(extent.offset, start)
        hi = min(extent.end, end)
        if hi > lo:
            clipped.append(Extent(lo - start, hi - lo))
    return clipped


__all__ = ["iter_data_extents", "data_extents", "clip_extents"]
