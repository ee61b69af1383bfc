"""Writes flashable streams: the inverse of :mod:`relic.sparse.core.archive`.

Every window of the source file becomes one POSIX archive member in the
GNU 1.0 sparse layout (pax header, ustar header, sparse map, data
regions, block padding), so the output is also readable by ``tar``.
"""

from __future__ import annotations

import logging
import os
import tarfile
import time
from logging import Logger
from typing import BinaryIO, List, Optional, Union

from relic.core.logmsg import BraceMessage

from relic.sparse.core.definitions import (
    BLOCK_SIZE,
    DEFAULT_CHUNK_SIZE,
    GNU_SPARSE_MAJOR,
    GNU_SPARSE_MINOR,
    GNU_SPARSE_NAME,
    GNU_SPARSE_REALSIZE,
    Extent,
    block_padding,
    size_on_disk,
)
from relic.sparse.core.errors import SparseError, SparseIOError
from relic.sparse.core.flash import FlashStats
from relic.sparse.core.holes import clip_extents, data_extents
from relic.sparse.core.lazyio import ExtentReader, read_chunks
from relic.sparse.core.manifest import ManifestSerializer

_ENCODING = "utf-8"
_ERRORS = "surrogateescape"
_END_OF_ARCHIVE = b"\0" * (2 * BLOCK_SIZE)


def build_header(
    name: str, stored_size: int, logical_size: int, mtime: Optional[float] = None
) -> bytes:
    info = tarfile.TarInfo(f"GNUSparseFile.0/{os.path.basename(name)}")
    info.size = stored_size
    info.mode = 0o644
    info.mtime = int(time.time() if mtime is None else mtime)
    info.pax_headers = {
        GNU_SPARSE_MAJOR: "1",
        GNU_SPARSE_MINOR: "0",
        GNU_SPARSE_NAME: name,
        GNU_SPARSE_REALSIZE: str(logical_size),
    }
    return info.tobuf(tarfile.PAX_FORMAT, _ENCODING, _ERRORS)


def write_sparse_entry(
    out: BinaryIO,
    name: str,
    payload: Union[BinaryIO, bytes],
    extents: List[Extent],
    logical_size: int,
    *,
    mtime: Optional[float] = None,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> int:
    """Writes one sparse member; ``payload`` supplies the bytes of every
    extent, concatenated in list order.

    Returns the number of bytes written (always a multiple of 512).
    """
    for extent in extents:
        if extent.end > logical_size:
            raise SparseError(
                f"Extent '{extent.offset}+{extent.length}' exceeds logical size '{logical_size}'"
            )
    manifest = ManifestSerializer.encode(extents)
    data_size = size_on_disk(extents)
    stored_size = len(manifest) + data_size

    written = out.write(build_header(name, stored_size, logical_size, mtime))
    written += out.write(manifest)
    copied = 0
    for chunk in read_chunks(payload, size=data_size, chunk_size=chunk_size):
        copied += out.write(chunk)
    if copied != data_size:
        raise SparseIOError(
            f"Payload of '{name}' ended after '{copied}' of '{data_size}' bytes", copied
        )
    written += copied
    written += out.write(b"\0" * block_padding(stored_size))
    return written


def pack(
    path: Union[str, os.PathLike],
    out: BinaryIO,
    *,
    window_size: Optional[int] = None,
    end_marker: bool = False,
    name: Optional[str] = None,
    logger: Optional[Logger] = None,
) -> FlashStats:
    """Encodes the sparse file at ``path`` as a stream of sparse members.

    :param window_size: Logical bytes per member; by default the whole file
        is one member.
    :param end_marker: Terminate with the two zero blocks ``tar`` expects.
    """
    logger = logger or logging.getLogger(__name__)
    if window_size is not None and window_size <= 0:
        raise SparseError(f"Window size '{window_size}' must be positive")
    name = name or os.path.basename(os.fspath(path))
    stats = FlashStats()
    try:
        handle = open(path, "rb")
    except OSError as e:
        raise SparseIOError(f"Failed to open '{path}'") from e
    with handle:
        extents = data_extents(handle)
        total = os.fstat(handle.fileno()).st_size
        step = window_size or max(total, 1)
        for index, start in enumerate(range(0, max(total, 1), step)):
            logical = min(step, total - start)
            local = clip_extents(extents, start, logical)
            absolute = [Extent(e.offset + start, e.length) for e in local]
            entry_name = name if window_size is None else f"{name}.{index:04d}"
            with ExtentReader(handle, absolute, name=entry_name) as payload:
                write_sparse_entry(out, entry_name, payload, local, logical)
            logger.debug(
                BraceMessage(
                    "Packed `{0}` @ '{1}': '{2}' extents",
                    entry_name,
                    start,
                    len(local),
                )
            )
            stats.windows += 1
            stats.extents += len(local)
            stats.bytes_written += size_on_disk(local)
        stats.logical_size = total
    if end_marker:
        out.write(_END_OF_ARCHIVE)
    out.flush()
    return stats


__all__ = ["build_header", "write_sparse_entry", "pack"]
