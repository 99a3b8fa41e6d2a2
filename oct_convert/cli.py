"""Command line interface: convert OCT scans to xoct, octbin or img.

Usage:
    # Convert a single file next to the original
    oct-convert scan001.dcm

    # Convert a whole directory tree to octbin, anonymised, into one folder
    oct-convert -f octbin -a --outputPath converted/ scans/

    # Keep the original file name at the end of the new one
    oct-convert --addOldFilename scans/
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import Optional

from oct_convert.config import (
    EXTENSIONS,
    FileReadOptions,
    FileWriteOptions,
    Options,
    parse_output_format,
    setup_logging,
)
from oct_convert.convert import OctConverter
from oct_convert.errors import ConfigurationError

logger = logging.getLogger(__name__)


class _ArgumentParser(argparse.ArgumentParser):
    """ArgumentParser that raises instead of exiting with status 2."""

    def error(self, message):
        raise ConfigurationError(message)


def build_parser() -> argparse.ArgumentParser:
    parser = _ArgumentParser(
        prog="oct-convert",
        description="Convert all files in octpath to the outputformat",
    )
    parser.add_argument("octpath", nargs="+", type=Path, help="one or more oct scan")
    parser.add_argument(
        "--addOldFilename", action="store_true", help="add old filename at the end"
    )
    parser.add_argument("--outputPath", type=Path, help="put files in this folder")
    parser.add_argument(
        "-a", "--anonymising", action="store_true", help="strip patient name"
    )
    parser.add_argument(
        "-f", "--outputformat",
        default="xoct",
        help=f"Output format ({', '.join(fmt.value for fmt in EXTENSIONS)})",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Enable debug logging"
    )
    return parser


def options_from_args(args: argparse.Namespace) -> Options:
    """Validate parsed arguments and build the run :class:`Options`."""
    output_format = parse_output_format(args.outputformat)

    if args.outputPath is not None and not args.outputPath.is_dir():
        raise ConfigurationError(f"Output folder does not exist: {args.outputPath}")

    return Options(
        output_format=output_format,
        add_old_filename=args.addOldFilename,
        anonymising=args.anonymising,
        output_path=args.outputPath,
        read_options=FileReadOptions(fill_empty_pixel_white=False),
        write_options=FileWriteOptions(octbin_flat=True),
    )


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    try:
        args = parser.parse_args(argv)
        opt = options_from_args(args)
    except ConfigurationError as exc:
        print(f"ERROR: {exc}\n", file=sys.stderr)
        parser.print_help(sys.stderr)
        return 1

    setup_logging(logging.DEBUG if args.verbose else logging.INFO)
    OctConverter(opt).convert_paths(args.octpath)
    return 0


if __name__ == "__main__":
    sys.exit(main())
