import argparse
import io
import logging
import sys
from io import StringIO, BytesIO
from typing import Optional, Any, Type, List, Union

import pytest
from relic.core.cli import CliPluginGroup, CliPlugin, RelicArgParserError

from relic.sparse.core.cli import (
    RelicSparseCli,
    RelicSparseFlashCli,
    RelicSparsePackCli,
    RelicSparseExtentsCli,
)
from relic.sparse.core.definitions import Extent
from tests.util import FailingStream, TempFileHandle, sparse_entry

_ENTRIES = [[Extent(0, 10), Extent(100, 5)], [Extent(8, 8)]]
_SIZES = [200, 64]
# cuts the last entry inside its sparse map pad
_TRUNCATE = 700


def _stream() -> bytes:
    return b"".join(
        sparse_entry(f"e{i}", extents, size)[0]
        for i, (extents, size) in enumerate(zip(_ENTRIES, _SIZES))
    )


def _run(cli_cls: Type[CliPlugin], args: List[str], logger: logging.Logger) -> Optional[int]:
    cli = cli_cls()
    ns = cli._create_parser().parse_args(args)
    return cli.command(ns, logger=logger)


@pytest.fixture
def log_stream():
    with StringIO() as logFile:
        logging.basicConfig(
            stream=logFile, level=logging.DEBUG, format="%(message)s", force=True
        )
        yield logFile


@pytest.fixture
def stdin_tar(monkeypatch):
    def _set(data: bytes) -> None:
        monkeypatch.setattr(sys, "stdin", io.TextIOWrapper(BytesIO(data)))

    return _set


@pytest.mark.parametrize(
    "cli",
    [
        RelicSparseCli,
        RelicSparseFlashCli,
        RelicSparsePackCli,
        RelicSparseExtentsCli,
    ],
)
@pytest.mark.parametrize("parent", [True, False])
def test_init_cli(cli: Type[Union[CliPlugin, CliPluginGroup]], parent: bool):
    parent_parser: Optional[Any] = None
    if parent:
        parent_parser = argparse.ArgumentParser().add_subparsers()

    cli(parent=parent_parser)


@pytest.mark.parametrize(
    "args",
    [
        ["dest"],  # no input selected
        ["--stdin-tar", "--input", __file__, __file__],  # both selected
    ],
)
def test_flash_requires_one_input(args: List[str]):
    parser = RelicSparseFlashCli()._create_parser()
    with pytest.raises((SystemExit, argparse.ArgumentError, RelicArgParserError)):
        parser.parse_args(args)


def test_cli_flash_stdin(stdin_tar, log_stream):
    stdin_tar(_stream())
    with TempFileHandle(size=sum(_SIZES)) as dest:
        result = _run(
            RelicSparseFlashCli, ["--stdin-tar", dest.path], logging.getLogger()
        )
        data = dest.read()

    assert result == 0
    expected_0 = sparse_entry("e0", _ENTRIES[0], _SIZES[0])[1]
    expected_1 = sparse_entry("e1", _ENTRIES[1], _SIZES[1])[1]
    assert data[0:10] == expected_0[:10]
    assert data[100:105] == expected_0[10:]
    assert data[208:216] == expected_1
    assert len(data) == sum(_SIZES)
    assert "Flashed" in log_stream.getvalue()


def test_cli_flash_failure(stdin_tar, log_stream):
    stdin_tar(_stream()[:-_TRUNCATE])
    with TempFileHandle(size=sum(_SIZES)) as dest:
        result = _run(
            RelicSparseFlashCli, ["--stdin-tar", dest.path], logging.getLogger()
        )
    assert result == 1
    assert "failed" in log_stream.getvalue()


def test_cli_flash_truncated_header(stdin_tar, log_stream):
    stdin_tar(b"\0" * 100)
    with TempFileHandle(size=16) as dest:
        result = _run(
            RelicSparseFlashCli, ["--stdin-tar", dest.path], logging.getLogger()
        )
        assert dest.read() == bytes(16)
    assert result == 1


def test_cli_pack_then_extents(stdin_tar, log_stream):
    with TempFileHandle() as src, TempFileHandle() as out:
        with src.open("wb") as w:
            w.write(b"\x07" * 3000)
        result = _run(
            RelicSparsePackCli,
            [src.path, out.path, "--window-size", "1024", "--end-marker"],
            logging.getLogger(),
        )
        assert result == 0
        stdin_tar(out.read())

    result = _run(RelicSparseExtentsCli, ["--stdin-tar"], logging.getLogger())
    assert result == 0
    log = log_stream.getvalue()
    assert "'3' extents in '3' windows" in log


def test_cli_flash_stdin_read_error(monkeypatch, log_stream):
    stream = FailingStream(_stream(), fail_at=600)
    monkeypatch.setattr(sys, "stdin", io.TextIOWrapper(stream))
    with TempFileHandle(size=sum(_SIZES)) as dest:
        result = _run(
            RelicSparseFlashCli, ["--stdin-tar", dest.path], logging.getLogger()
        )
    assert result == 1
    assert "entry [0]" in log_stream.getvalue()
