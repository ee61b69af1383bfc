from __future__ import annotations

import sys
from argparse import ArgumentParser, Namespace
from logging import Logger
from typing import Optional, BinaryIO

from relic.core.cli import (
    CliPluginGroup,
    _SubParsersAction,
    CliPlugin,
    RelicArgParser,
    get_file_type_validator,
    get_path_validator,
)
from relic.core.logmsg import BraceMessage

from relic.sparse.core.definitions import DEFAULT_CHUNK_SIZE
from relic.sparse.core.errors import SparseError, SparseIOError
from relic.sparse.core.flash import flash, list_extents
from relic.sparse.core.packer import pack
from relic.sparse.core.progress import tqdm_factory
from relic.sparse.core.sources import (
    ExtentSource,
    FilesystemHoleSource,
    StreamManifestSource,
)

_SUCCESS = 0
_FAILURE = 1


def _positive_int(value: str) -> int:
    result = int(value)
    if result <= 0:
        raise ValueError(value)
    return result


def _add_input_args(parser: ArgumentParser) -> None:
    input_flags = parser.add_mutually_exclusive_group(required=True)
    input_flags.add_argument(
        "--stdin-tar",
        help="Read a stream of sparse archive entries from stdin",
        action="store_true",
    )
    input_flags.add_argument(
        "--input",
        type=get_file_type_validator(exists=True),
        help="Read the data regions of a local sparse file",
        default=None,
    )
    parser.add_argument(
        "--lenient",
        help="Accept archive entries that are not flagged as sparse, treating their whole payload as data",
        action="store_true",
        default=False,
    )


def _open_source(ns: Namespace, logger: Logger) -> ExtentSource:
    if ns.stdin_tar:
        return StreamManifestSource(
            sys.stdin.buffer, strict=not ns.lenient, logger=logger
        )
    return FilesystemHoleSource(ns.input)


def _open_destination(path: str) -> BinaryIO:
    # r+b: the destination is never created or truncated
    try:
        return open(path, "r+b")
    except OSError as e:
        raise SparseIOError(f"Failed to open destination '{path}'") from e


class RelicSparseCli(CliPluginGroup):
    GROUP = "relic.cli.sparse"

    def _create_parser(
        self, command_group: Optional[_SubParsersAction] = None
    ) -> ArgumentParser:
        name = "sparse"
        if command_group is None:
            return RelicArgParser(name)
        return command_group.add_parser(name)


class RelicSparseFlashCli(CliPlugin):
    def _create_parser(
        self, command_group: Optional[_SubParsersAction] = None
    ) -> ArgumentParser:
        parser: ArgumentParser
        desc = """Write the data regions of a sparse image onto a block device (or file).
            Holes are skipped; the destination is trusted to already be zero there."""
        if command_group is None:
            parser = RelicArgParser("flash", description=desc)
        else:
            parser = command_group.add_parser("flash", description=desc)

        _add_input_args(parser)
        parser.add_argument(
            "destination",
            type=get_path_validator(exists=True),
            help="Destination block device or file; must already exist",
        )
        parser.add_argument(
            "--progress",
            help="Display a progress bar per window",
            action="store_true",
            default=False,
        )
        parser.add_argument(
            "--chunk-size",
            type=_positive_int,
            help=f"Copy buffer size in bytes (default: {DEFAULT_CHUNK_SIZE})",
            default=DEFAULT_CHUNK_SIZE,
        )
        return parser

    def command(self, ns: Namespace, *, logger: Logger) -> Optional[int]:
        destination: str = ns.destination
        source_name = "stdin" if ns.stdin_tar else ns.input

        logger.info(BraceMessage("Flashing `{0}` onto `{1}`", source_name, destination))
        try:
            with _open_destination(destination) as destination_h:
                with _open_source(ns, logger) as source:
                    stats = flash(
                        source,
                        destination_h,
                        progress=tqdm_factory(ns.progress),
                        chunk_size=ns.chunk_size,
                        logger=logger,
                    )
        except SparseError as e:
            logger.error(BraceMessage("Flashing `{0}` failed: {1}", source_name, e))
            return _FAILURE

        logger.info(
            BraceMessage(
                "Wrote '{0}' bytes to `{1}`", stats.bytes_written, destination
            )
        )
        return _SUCCESS


class RelicSparsePackCli(CliPlugin):
    def _create_parser(
        self, command_group: Optional[_SubParsersAction] = None
    ) -> ArgumentParser:
        parser: ArgumentParser
        desc = """Encode a local sparse file as a flashable stream of sparse archive entries.
            Use '-' as out to write to stdout."""
        if command_group is None:
            parser = RelicArgParser("pack", description=desc)
        else:
            parser = command_group.add_parser("pack", description=desc)

        parser.add_argument(
            "src",
            type=get_file_type_validator(exists=True),
            help="Source sparse file",
        )
        parser.add_argument("out", type=str, help="Output stream file, or '-'")
        parser.add_argument(
            "--window-size",
            type=_positive_int,
            help="Split the image into entries of this many logical bytes",
            default=None,
        )
        parser.add_argument(
            "--end-marker",
            help="Terminate the stream with an end-of-archive marker",
            action="store_true",
            default=False,
        )
        return parser

    def command(self, ns: Namespace, *, logger: Logger) -> Optional[int]:
        src: str = ns.src
        out: str = ns.out

        logger.info(BraceMessage("Packing `{0}` to `{1}`", src, out))
        try:
            if out == "-":
                stats = pack(
                    src,
                    sys.stdout.buffer,
                    window_size=ns.window_size,
                    end_marker=ns.end_marker,
                    logger=logger,
                )
            else:
                with open(out, "wb") as out_h:
                    stats = pack(
                        src,
                        out_h,
                        window_size=ns.window_size,
                        end_marker=ns.end_marker,
                        logger=logger,
                    )
        except (SparseError, OSError) as e:
            logger.error(BraceMessage("Packing `{0}` failed: {1}", src, e))
            return _FAILURE

        logger.info(
            BraceMessage(
                "Packed '{0}' bytes in '{1}' extents across '{2}' entries",
                stats.bytes_written,
                stats.extents,
                stats.windows,
            )
        )
        return _SUCCESS


class RelicSparseExtentsCli(CliPlugin):
    def _create_parser(
        self, command_group: Optional[_SubParsersAction] = None
    ) -> ArgumentParser:
        parser: ArgumentParser
        desc = """List the windows and absolute extents a flash would write, without writing anything"""
        if command_group is None:
            parser = RelicArgParser("extents", description=desc)
        else:
            parser = command_group.add_parser("extents", description=desc)

        _add_input_args(parser)
        return parser

    def command(self, ns: Namespace, *, logger: Logger) -> Optional[int]:
        try:
            with _open_source(ns, logger) as source:
                stats = list_extents(source, logger=logger)
        except SparseError as e:
            logger.error(BraceMessage("Listing extents failed: {0}", e))
            return _FAILURE
        logger.info(
            BraceMessage(
                "'{0}' extents in '{1}' windows", stats.extents, stats.windows
            )
        )
        return _SUCCESS
