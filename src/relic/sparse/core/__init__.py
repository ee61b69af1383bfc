"""
Flash the data regions of sparse images onto block devices, skipping holes
"""
from relic.sparse.core.definitions import Extent, ExtentWindow, SourceKind
from relic.sparse.core.errors import SparseError, FormatError, SparseIOError
from relic.sparse.core.flash import FlashStats, flash
from relic.sparse.core.sources import (
    FilesystemHoleSource,
    StreamManifestSource,
    open_source,
)
from relic.sparse.core.writer import SparseWriter

__version__ = "1.0.0"

__all__ = [
    "Extent",
    "ExtentWindow",
    "SourceKind",
    "SparseError",
    "FormatError",
    "SparseIOError",
    "FlashStats",
    "flash",
    "FilesystemHoleSource",
    "StreamManifestSource",
    "open_source",
    "SparseWriter",
]
