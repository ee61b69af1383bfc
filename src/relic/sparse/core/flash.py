from __future__ import annotations

import logging
from dataclasses import dataclass
from logging import Logger
from typing import BinaryIO, Optional

from relic.core.logmsg import BraceMessage

from relic.sparse.core.definitions import DEFAULT_CHUNK_SIZE, ExtentWindow
from relic.sparse.core.errors import SparseError
from relic.sparse.core.progress import ProgressFactory, ProgressReader
from relic.sparse.core.sources import ExtentSource
from relic.sparse.core.writer import SparseWriter


@dataclass
class FlashStats:
    """Totals of a transfer (or of a listing, where nothing is written)."""

    windows: int = 0
    extents: int = 0
    bytes_written: int = 0
    logical_size: int = 0


def _write_window(
    writer: SparseWriter, window: ExtentWindow, progress: Optional[ProgressFactory]
) -> int:
    if progress is None:
        return writer.write_window(window)
    with progress(window) as observer:
        return writer.write_window(window, ProgressReader(window.payload, observer))


def flash(
    source: ExtentSource,
    destination: BinaryIO,
    *,
    progress: Optional[ProgressFactory] = None,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    logger: Optional[Logger] = None,
) -> FlashStats:
    """Writes every window of ``source`` onto ``destination``, then syncs it.

    Windows are processed strictly in order; a failure aborts the whole
    transfer and leaves the extents written so far in place.

    :param source: The extent source; consumed by this call.
    :param destination: Writable, seekable target (block device or file).
    :param progress: Optional factory of per-window byte observers.
    :raises SparseError: The first failure, annotated with the window it
        occurred in.
    """
    logger = logger or logging.getLogger(__name__)
    writer = SparseWriter(destination, chunk_size=chunk_size)
    stats = FlashStats()
    for window in source.windows():
        logger.debug(
            BraceMessage(
                "Writing {0}: '{1}' extents, '{2}' bytes",
                window.describe(),
                len(window.extents),
                window.size_on_disk,
            )
        )
        try:
            written = _write_window(writer, window, progress)
        except SparseError as e:
            e.add_context(window.describe())
            raise
        stats.windows += 1
        stats.extents += len(window.extents)
        stats.bytes_written += written
        stats.logical_size = window.base_offset + window.logical_size

    writer.sync()
    logger.info(
        BraceMessage(
            "Flashed '{0}' bytes in '{1}' extents across '{2}' windows ('{3}' logical bytes)",
            stats.bytes_written,
            stats.extents,
            stats.windows,
            stats.logical_size,
        )
    )
    return stats


def list_extents(source: ExtentSource, *, logger: Optional[Logger] = None) -> FlashStats:
    """Logs every window and absolute extent of ``source`` without writing."""
    logger = logger or logging.getLogger(__name__)
    stats = FlashStats()
    for window in source.windows():
        logger.info(
            BraceMessage(
                "{0}: logical size '{1}', '{2}' bytes on disk",
                window.describe(),
                window.logical_size,
                window.size_on_disk,
            )
        )
        for extent in window.extents:
            start = window.absolute(extent)
            logger.info(
                BraceMessage("\t[{0}, {1}) '{2}' bytes", start, start + extent.length, extent.length)
            )
        stats.windows += 1
        stats.extents += len(window.extents)
        stats.logical_size = window.base_offset + window.logical_size
    return stats


__all__ = ["FlashStats", "flash", "list_extents"]
