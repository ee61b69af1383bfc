"""Definitions expressed concretely in core."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, BinaryIO, Iterator

from relic.sparse.core.errors import FormatError

BLOCK_SIZE = 512
POSIX_MAGIC = b"ustar\x0000"
_MAGIC_SLICE = slice(257, 265)

GNU_SPARSE_MAJOR = "GNU.sparse.major"
GNU_SPARSE_MINOR = "GNU.sparse.minor"
GNU_SPARSE_NAME = "GNU.sparse.name"
GNU_SPARSE_REALSIZE = "GNU.sparse.realsize"

_KiB = 1024
_MiB = 1024 * _KiB

DEFAULT_CHUNK_SIZE = _MiB
# Longest decimal u64 is 20 digits; leaves room for a '\r' and some slack
MAX_LINE_LENGTH = 32


def block_padding(ctr: int) -> int:
    """Number of pad bytes needed to round ``ctr`` up to the next block
    boundary."""
    return (BLOCK_SIZE - ctr % BLOCK_SIZE) % BLOCK_SIZE


def has_posix_magic(header: bytes) -> bool:
    return header[_MAGIC_SLICE] == POSIX_MAGIC


class SourceKind(str, Enum):
    """Which extent source a transfer reads from."""

    STREAM_MANIFEST = "stream"
    FILESYSTEM_HOLES = "file"


@dataclass(frozen=True)
class Extent:
    """A half-open byte range ``[offset, offset+length)``.

    Args:
        offset (int): Start of the range, relative to its window.
        length (int): Size of the range; always positive.
    """

    offset: int
    length: int

    def __post_init__(self) -> None:
        if self.offset < 0:
            raise FormatError(f"Extent offset '{self.offset}' is negative")
        if self.length <= 0:
            raise FormatError(
                f"Extent length '{self.length}' must be positive", self.offset
            )

    @property
    def end(self) -> int:
        return self.offset + self.length

    def __iter__(self) -> Iterator[int]:
        yield self.offset
        yield self.length


def size_on_disk(extents: List[Extent]) -> int:
    return sum(extent.length for extent in extents)


@dataclass
class ExtentWindow:
    """One contiguous logical region of the destination.

    Extents are relative to ``base_offset``; ``payload`` yields the
    bytes of every extent, concatenated in list order.
    """

    base_offset: int
    logical_size: int
    extents: List[Extent]
    payload: BinaryIO = field(repr=False)
    name: Optional[str] = None

    @property
    def size_on_disk(self) -> int:
        return size_on_disk(self.extents)

    def absolute(self, extent: Extent) -> int:
        return self.base_offset + extent.offset

    def describe(self) -> str:
        name = f"'{self.name}' " if self.name else ""
        return f"window {name}@ base offset '{self.base_offset}'"


__all__ = [
    "BLOCK_SIZE",
    "POSIX_MAGIC",
    "GNU_SPARSE_MAJOR",
    "GNU_SPARSE_MINOR",
    "GNU_SPARSE_NAME",
    "GNU_SPARSE_REALSIZE",
    "DEFAULT_CHUNK_SIZE",
    "MAX_LINE_LENGTH",
    "block_padding",
    "has_posix_magic",
    "size_on_disk",
    "SourceKind",
    "Extent",
    "ExtentWindow",
]
