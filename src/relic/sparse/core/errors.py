"""Errors raised while decoding or flashing sparse images."""

from __future__ import annotations

from typing import Optional, List

from relic.core.errors import RelicToolError


class SparseError(RelicToolError):
    """Base error for a failed sparse transfer.

    Args:
        message (str): What went wrong.
        offset (Optional[int]): The byte offset the failure occurred at, if known.
    """

    def __init__(self, message: str, offset: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.offset = offset
        self.context: List[str] = []

    def add_context(self, context: str) -> SparseError:
        self.context.append(context)
        return self

    def __str__(self) -> str:
        parts = [self.message]
        if self.offset is not None:
            parts.append(f"at offset '{self.offset}'")
        msg = " ".join(parts)
        if len(self.context) > 0:
            msg = f"{msg} ({'; '.join(self.context)})"
        return msg


class FormatError(SparseError):
    """The archive header or sparse manifest is malformed."""


class SparseIOError(SparseError):
    """A seek, read or write against a stream, file or destination failed."""


__all__ = [
    "SparseError",
    "FormatError",
    "SparseIOError",
]
