from __future__ import annotations

from contextlib import contextmanager
from typing import BinaryIO, Callable, Iterator, Optional, ContextManager

from tqdm import tqdm

from relic.sparse.core.definitions import ExtentWindow
from relic.sparse.core.lazyio import BinaryWrapper

Observer = Callable[[int], None]
ProgressFactory = Callable[[ExtentWindow], ContextManager[Observer]]


class ProgressReader(BinaryWrapper):
    """Reports the size of every read to ``observer``.

    Bytes pass through untouched and in order; only the count is observed.
    """

    def __init__(self, parent: BinaryIO, observer: Observer):
        super().__init__(parent, close_parent=False)
        self._observer = observer

    def read(self, __n: int = -1) -> bytes:
        buffer = self._parent.read(__n)
        if len(buffer) > 0:
            self._observer(len(buffer))
        return buffer


@contextmanager
def tqdm_progress(
    window: ExtentWindow, *, enabled: bool = True, leave: bool = True
) -> Iterator[Observer]:
    """A byte progress bar for one window."""
    with tqdm(
        total=window.size_on_disk,
        desc=window.name or f"@{window.base_offset}",
        unit="B",
        unit_scale=True,
        unit_divisor=1024,
        disable=not enabled,
        leave=leave,
    ) as bar:
        yield bar.update


def tqdm_factory(enabled: bool = True) -> Optional[ProgressFactory]:
    if not enabled:
        return None

    def _factory(window: ExtentWindow) -> ContextManager[Observer]:
        return tqdm_progress(window, enabled=True)

    return _factory


__all__ = [
    "Observer",
    "ProgressFactory",
    "ProgressReader",
    "tqdm_progress",
    "tqdm_factory",
]
