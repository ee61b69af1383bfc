import errno
import os

import pytest

from relic.sparse.core.definitions import Extent
from relic.sparse.core.errors import SparseIOError
from relic.sparse.core.holes import clip_extents, data_extents
from tests.util import TempFileHandle, holes_supported, write_sparse_file

_KiB = 1024
_BLOCK = 64 * _KiB

needs_holes = pytest.mark.skipif(
    not holes_supported(), reason="Filesystem does not report holes"
)


@needs_holes
@pytest.mark.parametrize(
    ["size", "regions", "expected"],
    [
        (
            8 * _BLOCK,
            [(_BLOCK, _BLOCK), (4 * _BLOCK, 2 * _BLOCK)],
            [Extent(_BLOCK, _BLOCK), Extent(4 * _BLOCK, 2 * _BLOCK)],
        ),
        (
            4 * _BLOCK,
            [(0, _BLOCK), (3 * _BLOCK, _BLOCK)],
            [Extent(0, _BLOCK), Extent(3 * _BLOCK, _BLOCK)],
        ),
        (4 * _BLOCK, [], []),
    ],
    ids=["holes-between", "data-at-edges", "all-hole"],
)
def test_data_extents(size, regions, expected):
    with TempFileHandle() as h:
        write_sparse_file(
            h.path, size, [(offset, b"\x5a" * length) for offset, length in regions]
        )
        with h.open("rb") as handle:
            assert data_extents(handle) == expected


def test_no_holes_is_one_extent():
    with TempFileHandle() as h:
        with h.open("wb") as w:
            w.write(os.urandom(3 * _KiB + 17))
        with h.open("rb") as handle:
            assert data_extents(handle) == [Extent(0, 3 * _KiB + 17)]


def test_empty_file():
    with TempFileHandle() as h:
        with h.open("rb") as handle:
            assert data_extents(handle) == []


def test_accepts_fd():
    with TempFileHandle() as h:
        with h.open("wb") as w:
            w.write(b"data")
        fd = os.open(h.path, os.O_RDONLY)
        try:
            assert data_extents(fd) == [Extent(0, 4)]
        finally:
            os.close(fd)


@pytest.mark.parametrize("code", [errno.EINVAL, errno.EOPNOTSUPP])
def test_unsupported_filesystem(monkeypatch, code: int):
    def _lseek(fd, pos, how):
        raise OSError(code, os.strerror(code))

    with TempFileHandle() as h:
        with h.open("wb") as w:
            w.write(b"data")
        with h.open("rb") as handle:
            monkeypatch.setattr(os, "lseek", _lseek)
            with pytest.raises(SparseIOError, match="does not support"):
                data_extents(handle)


def test_unsupported_platform(monkeypatch):
    monkeypatch.delattr(os, "SEEK_DATA", raising=False)
    with TempFileHandle() as h:
        with h.open("rb") as handle:
            with pytest.raises(SparseIOError, match="SEEK_DATA"):
                data_extents(handle)


@pytest.mark.parametrize(
    ["start", "size", "expected"],
    [
        (0, 100, [Extent(10, 20), Extent(50, 50)]),
        (20, 20, [Extent(0, 10)]),
        (60, 100, [Extent(0, 60)]),
        (30, 20, []),
    ],
)
def test_clip_extents(start, size, expected):
    extents = [Extent(10, 20), Extent(50, 70)]
    assert clip_extents(extents, start, size) == expected
