"""Decoding and encoding of the inline sparse map.

The map precedes an entry's payload::

    <count>\\n
    <offset_0>\\n
    <length_0>\\n
    ...
    [NUL pad to the next 512-byte boundary, measured from the count line]

Its extents describe, in order, where each run of payload bytes belongs
inside the entry's logical window.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from io import BytesIO
from typing import BinaryIO, List, Iterable, Tuple

from relic.sparse.core.definitions import (
    Extent,
    MAX_LINE_LENGTH,
    block_padding,
    size_on_disk,
)
from relic.sparse.core.errors import FormatError, SparseIOError
from relic.sparse.core.lazyio import read_exact


@dataclass
class Manifest:
    extents: List[Extent] = field(default_factory=list)
    header_size: int = 0

    @property
    def size_on_disk(self) -> int:
        return size_on_disk(self.extents)


class ManifestSerializer:
    @classmethod
    def _read_int(cls, stream: BinaryIO, ctr: int, what: str) -> Tuple[int, int]:
        try:
            line = stream.readline(MAX_LINE_LENGTH + 1)
        except OSError as e:
            raise SparseIOError(f"Failed to read sparse map {what} line", ctr) from e
        if len(line) == 0:
            raise FormatError(f"Sparse map ended before its {what} line", ctr)
        if not line.endswith(b"\n"):
            raise FormatError(
                f"Sparse map {what} line is unterminated or longer than '{MAX_LINE_LENGTH}' bytes",
                ctr,
            )
        value = line.strip()
        if len(value) == 0 or not value.isdigit():
            raise FormatError(f"Sparse map {what} line {line!r} is not a decimal", ctr)
        return int(value), len(line)

    @classmethod
    def read(cls, stream: BinaryIO) -> Manifest:
        """Reads a sparse map, including its pad.

        Zero-length extents (used to record the size of a trailing hole)
        are validated and then dropped; they carry no payload.

        :raises FormatError: On a malformed, truncated or unordered map.
        :raises SparseIOError: If reading ``stream`` fails.
        """
        ctr = 0
        count, read = cls._read_int(stream, ctr, "count")
        ctr += read

        extents: List[Extent] = []
        last_end = 0
        for index in range(count):
            offset, read = cls._read_int(stream, ctr, f"offset[{index}]")
            ctr += read
            length, read = cls._read_int(stream, ctr, f"length[{index}]")
            ctr += read
            if offset < last_end:
                raise FormatError(
                    f"Sparse map extent [{index}] @ '{offset}' overlaps or precedes the extent ending @ '{last_end}'",
                    ctr,
                )
            if length == 0:
                continue
            extents.append(Extent(offset, length))
            last_end = offset + length

        pad = block_padding(ctr)
        if len(read_exact(stream, pad)) != pad:
            raise FormatError(f"Sparse map pad of '{pad}' bytes is truncated", ctr)
        return Manifest(extents, ctr + pad)

    @classmethod
    def encode(cls, extents: Iterable[Extent]) -> bytes:
        extents = list(extents)
        lines = [str(len(extents))]
        for extent in extents:
            lines.append(str(extent.offset))
            lines.append(str(extent.length))
        buffer = ("\n".join(lines) + "\n").encode("ascii")
        return buffer + b"\0" * block_padding(len(buffer))

    @classmethod
    def write(cls, stream: BinaryIO, extents: Iterable[Extent]) -> int:
        return stream.write(cls.encode(extents))

    @classmethod
    def decode(cls, buffer: bytes) -> Manifest:
        with BytesIO(buffer) as stream:
            return cls.read(stream)


__all__ = ["Manifest", "ManifestSerializer"]
