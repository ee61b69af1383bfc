"""Reads a stream of sparse archive entries as destination windows.

Each entry is a POSIX (ustar/pax) archive member whose extended header
flags it as a GNU 1.0 sparse file. The member's data starts with a
sparse map (see :mod:`relic.sparse.core.manifest`) followed by the data
regions of the window, back to back. The stream has no terminator other
than end of stream or an end-of-archive block.
"""

from __future__ import annotations

import logging
import tarfile
from dataclasses import dataclass, field
from logging import Logger
from typing import BinaryIO, Dict, Iterator, Optional, Tuple

from relic.core.logmsg import BraceMessage

from relic.sparse.core.definitions import (
    BLOCK_SIZE,
    GNU_SPARSE_MAJOR,
    GNU_SPARSE_MINOR,
    GNU_SPARSE_NAME,
    GNU_SPARSE_REALSIZE,
    Extent,
    ExtentWindow,
    block_padding,
    has_posix_magic,
)
from relic.sparse.core.errors import FormatError, SparseError
from relic.sparse.core.lazyio import BoundedReader, read_exact
from relic.sparse.core.manifest import Manifest, ManifestSerializer

_PAX_PATH = "path"
_PAX_SIZE = "size"
_ENCODING = "utf-8"
_ERRORS = "surrogateescape"


@dataclass
class ArchiveHeader:
    """The decoded header(s) of one archive member."""

    name: str
    stored_size: int
    pax: Dict[str, str] = field(default_factory=dict)

    @property
    def is_sparse(self) -> bool:
        return self.pax.get(GNU_SPARSE_MAJOR) == "1" and (
            self.pax.get(GNU_SPARSE_MINOR, "0") == "0"
        )

    @property
    def logical_size(self) -> int:
        if GNU_SPARSE_REALSIZE in self.pax:
            return _parse_pax_int(self.pax, GNU_SPARSE_REALSIZE)
        return self.stored_size


@dataclass
class ArchiveWindow(ExtentWindow):
    """A window decoded from one archive member.

    ``trailer_size`` counts the bytes left in the member after the
    payload; they are skipped by :meth:`finish`.
    """

    trailer_size: int = 0

    def finish(self, stream: BinaryIO) -> None:
        """Skip what is left of this member so ``stream`` sits on the next
        header."""
        self.payload.drain()
        BoundedReader(stream, self.trailer_size, name=self.name).drain()


def _parse_pax_int(pax: Dict[str, str], key: str) -> int:
    value = pax[key]
    if not (value.isascii() and value.isdigit()):
        raise FormatError(f"Extended header '{key}' value '{value}' is not a decimal")
    return int(value)


def parse_pax_records(buffer: bytes) -> Dict[str, str]:
    """Decodes ``"<len> <key>=<value>\\n"`` records of a pax extended
    header."""
    records: Dict[str, str] = {}
    pos = 0
    while pos < len(buffer):
        space = buffer.find(b" ", pos)
        length_str = buffer[pos:space]
        if space == -1 or not length_str.isdigit():
            raise FormatError("Malformed extended header record length", pos)
        length = int(length_str)
        record = buffer[pos : pos + length]
        if length <= space - pos or len(record) != length or not record.endswith(b"\n"):
            raise FormatError("Malformed extended header record", pos)
        keyword, sep, value = record[space - pos + 1 : -1].partition(b"=")
        if not sep:
            raise FormatError("Extended header record has no '='", pos)
        records[keyword.decode(_ENCODING, _ERRORS)] = value.decode(_ENCODING, _ERRORS)
        pos += length
    return records


def _read_header_block(stream: BinaryIO) -> Optional[tarfile.TarInfo]:
    buffer = read_exact(stream, BLOCK_SIZE)
    if len(buffer) == 0:
        return None
    if len(buffer) != BLOCK_SIZE:
        raise FormatError(
            f"Archive header truncated to '{len(buffer)}' of '{BLOCK_SIZE}' bytes"
        )
    if buffer.count(0) == BLOCK_SIZE:  # end-of-archive marker
        return None
    if not has_posix_magic(buffer):
        raise FormatError("must use POSIX compliant TAR")
    try:
        return tarfile.TarInfo.frombuf(buffer, _ENCODING, _ERRORS)
    except tarfile.HeaderError as e:
        raise FormatError(f"Invalid archive header: {e}") from e


def read_header(stream: BinaryIO) -> Optional[ArchiveHeader]:
    """Reads the next member header, folding in any pax headers before it.

    Returns ``None`` at end of stream.
    """
    pax: Dict[str, str] = {}
    while True:
        info = _read_header_block(stream)
        if info is None:
            if len(pax) > 0:
                raise FormatError("Stream ended after an extended header")
            return None
        if info.type not in (tarfile.XHDTYPE, tarfile.XGLTYPE):
            break
        stored = info.size + block_padding(info.size)
        buffer = read_exact(stream, stored)
        if len(buffer) != stored:
            raise FormatError("Extended header data is truncated")
        if info.type == tarfile.XHDTYPE:
            pax.update(parse_pax_records(buffer[: info.size]))

    if info.type not in tarfile.REGULAR_TYPES:
        raise FormatError(f"Archive member '{info.name}' is not a regular file")

    stored_size = _parse_pax_int(pax, _PAX_SIZE) if _PAX_SIZE in pax else info.size
    name = pax.get(GNU_SPARSE_NAME) or pax.get(_PAX_PATH) or info.name
    return ArchiveHeader(name, stored_size, pax)


def _check_bounds(header: ArchiveHeader, manifest: Manifest) -> None:
    logical = header.logical_size
    for extent in manifest.extents:
        if extent.end > logical:
            raise FormatError(
                f"Extent '{extent.offset}+{extent.length}' exceeds the logical size '{logical}' of '{header.name}'",
                extent.offset,
            )
    if manifest.header_size + manifest.size_on_disk > header.stored_size:
        raise FormatError(
            f"Sparse map of '{header.name}' claims '{manifest.size_on_disk}' payload bytes, "
            f"but only '{header.stored_size - manifest.header_size}' are stored"
        )


def read_window(
    stream: BinaryIO, base_offset: int, *, strict: bool = True
) -> Optional[Tuple[ArchiveWindow, int]]:
    """Decodes the next member as a window anchored at ``base_offset``.

    Returns the window and the base offset of the window after it, or
    ``None`` at end of stream. The window must be :meth:`~ArchiveWindow.finish`-ed
    before reading the next one.

    :raises FormatError: If the member is not a POSIX sparse entry (or, with
        ``strict=False``, a plain regular file) or its sparse map is corrupt.
    """
    header = read_header(stream)
    if header is None:
        return None

    if header.is_sparse:
        # the map may not run into the next member
        with BoundedReader(stream, header.stored_size, name=header.name) as member:
            manifest = ManifestSerializer.read(member)
    elif strict:
        raise FormatError(
            f"Archive member '{header.name}' is not flagged as sparse ('{GNU_SPARSE_MAJOR}=1' missing)"
        )
    else:
        extents = [Extent(0, header.stored_size)] if header.stored_size > 0 else []
        manifest = Manifest(extents, 0)

    _check_bounds(header, manifest)

    payload = BoundedReader(stream, manifest.size_on_disk, name=header.name)
    trailer = (
        header.stored_size
        - manifest.header_size
        - manifest.size_on_disk
        + block_padding(header.stored_size)
    )
    window = ArchiveWindow(
        base_offset=base_offset,
        logical_size=header.logical_size,
        extents=manifest.extents,
        payload=payload,
        name=header.name,
        trailer_size=trailer,
    )
    return window, base_offset + header.logical_size


def iter_windows(
    stream: BinaryIO, *, strict: bool = True, logger: Optional[Logger] = None
) -> Iterator[ArchiveWindow]:
    """Lazily yields one window per archive member until end of stream.

    Each window is finished (its remaining bytes skipped) before the next
    one is read, so consumers only need to read payload they care about.
    """
    logger = logger or logging.getLogger(__name__)
    base_offset = 0
    index = 0
    while True:
        try:
            result = read_window(stream, base_offset, strict=strict)
        except SparseError as e:
            e.add_context(f"entry [{index}] @ base offset '{base_offset}'")
            raise
        if result is None:
            logger.debug(BraceMessage("End of stream after '{0}' entries", index))
            return
        window, next_base = result
        logger.debug(
            BraceMessage(
                "Entry [{0}] `{1}`: base offset '{2}', logical size '{3}', '{4}' extents, '{5}' bytes on disk",
                index,
                window.name,
                window.base_offset,
                window.logical_size,
                len(window.extents),
                window.size_on_disk,
            )
        )
        yield window
        try:
            window.finish(stream)
        except SparseError as e:
            e.add_context(f"entry [{index}] `{window.name}`")
            raise
        base_offset = next_base
        index += 1


__all__ = [
    "ArchiveHeader",
    "ArchiveWindow",
    "parse_pax_records",
    "read_header",
    "read_window",
    "iter_windows",
]
