"""The two extent sources a transfer can be driven by.

Both produce a lazy, finite, non-restartable sequence of
:class:`~relic.sparse.core.definitions.ExtentWindow`; the writer never
needs to know which one it is fed by.
"""

from __future__ import annotations

import os
from logging import Logger
from types import TracebackType
from typing import BinaryIO, ClassVar, Iterator, Optional, Type, Union

from relic.sparse.core.archive import iter_windows
from relic.sparse.core.definitions import ExtentWindow, SourceKind
from relic.sparse.core.errors import SparseError, SparseIOError
from relic.sparse.core.holes import data_extents
from relic.sparse.core.lazyio import ExtentReader


class ExtentSource:
    KIND: ClassVar[SourceKind] = None  # type: ignore

    def __init__(self) -> None:
        self._consumed = False

    @property
    def kind(self) -> SourceKind:
        return self.KIND

    def windows(self) -> Iterator[ExtentWindow]:
        if self._consumed:
            raise SparseError(f"The {self.KIND.name} source has already been consumed")
        self._consumed = True
        return self._windows()

    def _windows(self) -> Iterator[ExtentWindow]:
        raise NotImplementedError

    def close(self) -> None:
        pass

    def __enter__(self) -> ExtentSource:
        return self

    def __exit__(
        self,
        __t: Type[BaseException] | None,
        __value: BaseException | None,
        __traceback: TracebackType | None,
    ) -> None:
        self.close()


class StreamManifestSource(ExtentSource):
    """Windows decoded from a stream of sparse archive entries (e.g. stdin)."""

    KIND = SourceKind.STREAM_MANIFEST

    def __init__(
        self, stream: BinaryIO, *, strict: bool = True, logger: Optional[Logger] = None
    ):
        super().__init__()
        self._stream = stream
        self._strict = strict
        self._logger = logger

    def _windows(self) -> Iterator[ExtentWindow]:
        return iter_windows(self._stream, strict=self._strict, logger=self._logger)


class FilesystemHoleSource(ExtentSource):
    """A single window covering a local sparse file, base offset 0."""

    KIND = SourceKind.FILESYSTEM_HOLES

    def __init__(self, file: Union[str, os.PathLike, BinaryIO]):
        super().__init__()
        if isinstance(file, (str, os.PathLike)):
            try:
                self._handle: BinaryIO = open(file, "rb")
            except OSError as e:
                raise SparseIOError(f"Failed to open '{file}'") from e
            self._owns_handle = True
            self._name = os.fspath(file)
        else:
            self._handle = file
            self._owns_handle = False
            self._name = getattr(file, "name", None)

    def _windows(self) -> Iterator[ExtentWindow]:
        extents = data_extents(self._handle)
        try:
            size = os.fstat(self._handle.fileno()).st_size
        except OSError as e:
            raise SparseIOError(f"Failed to stat '{self._name}'") from e
        yield ExtentWindow(
            base_offset=0,
            logical_size=size,
            extents=extents,
            payload=ExtentReader(self._handle, extents, name=self._name),
            name=self._name,
        )

    def close(self) -> None:
        if self._owns_handle:
            self._handle.close()


def open_source(
    kind: SourceKind,
    *,
    path: Optional[Union[str, os.PathLike]] = None,
    stream: Optional[BinaryIO] = None,
    strict: bool = True,
    logger: Optional[Logger] = None,
) -> ExtentSource:
    if kind == SourceKind.STREAM_MANIFEST:
        if stream is None:
            raise SparseError("A stream source requires an input stream")
        return StreamManifestSource(stream, strict=strict, logger=logger)
    if kind == SourceKind.FILESYSTEM_HOLES:
        if path is None and stream is None:
            raise SparseError("A file source requires an input path")
        return FilesystemHoleSource(path if path is not None else stream)  # type: ignore
    raise SparseError(f"Unknown source kind {kind!r}")


__all__ = [
    "ExtentSource",
    "StreamManifestSource",
    "FilesystemHoleSource",
    "open_source",
]
