"""Batch conversion of OCT scan files.

Automates the conversion steps for a list of input paths:
1. Discovering loadable scans under directories (skipping target-format files)
2. Loading each scan and deriving its destination name from the metadata
3. Refusing to overwrite existing destinations
4. Optionally anonymising the patient data
5. Writing the scan in the target format

Every per-file failure is logged and counted; it never stops the batch.
"""

import logging
from pathlib import Path
from typing import Iterable, Optional

from oct_convert.anonymise import anonymise_scan
from oct_convert.codec import OctFileCodec, ScanCodec
from oct_convert.config import Options
from oct_convert.errors import DestinationConflict, ReadError, WriteError
from oct_convert.models import ScanRecord
from oct_convert.naming import derive_base_name

logger = logging.getLogger(__name__)


class OctConverter:
    """Convert scan files and directory trees to ``options.output_format``."""

    def __init__(self, options: Options, codec: Optional[ScanCodec] = None) -> None:
        self.options = options
        self.codec = codec if codec is not None else OctFileCodec()
        self.summary = {
            "converted": 0,
            "conflicts": 0,
            "read_errors": 0,
            "write_errors": 0,
        }

    # ----- Destination -----

    def destination_for(self, scan: ScanRecord, source_path: Path) -> Path:
        """Return the destination path for *scan* loaded from *source_path*.

        Raises :class:`DestinationConflict` if that path already exists.
        """
        source_path = Path(source_path)
        base_name = derive_base_name(scan, source_path, self.options)
        directory = self.options.output_path or source_path.parent
        dest = Path(directory) / (base_name + self.options.extension)
        if dest.exists():
            raise DestinationConflict(dest)
        return dest

    # ----- Single file -----

    def convert_file(self, path: Path) -> Optional[Path]:
        """Convert one scan file.

        Returns the written destination path, or None if the file was skipped
        because it could not be read, its destination already exists, or the
        write failed.
        """
        path = Path(path)
        try:
            scan = self.codec.read(path, self.options.read_options)
        except ReadError as exc:
            logger.error("Error: %s", exc)
            self.summary["read_errors"] += 1
            return None

        try:
            dest = self.destination_for(scan, path)
        except DestinationConflict as exc:
            logger.error("Error: %s", exc)
            self.summary["conflicts"] += 1
            return None

        logger.info("Destination file: %s", dest)
        if self.options.anonymising:
            anonymise_scan(scan)

        try:
            self.codec.write(
                dest, scan, self.options.output_format, self.options.write_options
            )
        except WriteError as exc:
            logger.error("Error: %s", exc)
            self.summary["write_errors"] += 1
            return None

        self.summary["converted"] += 1
        return dest

    # ----- Directory trees -----

    def convert_tree(self, root: Path) -> list[Path]:
        """Recursively convert every loadable file under *root*.

        Files that already carry the target extension are skipped, so running
        the conversion again over its own output converts nothing new.

        Returns a list of written destination paths.
        """
        root = Path(root)
        target_ext = self.options.extension
        results: list[Path] = []

        # Materialise the listing first so files written during the walk
        # are never picked up as inputs.
        for path in sorted(root.rglob("*")):
            if path.is_dir():
                continue
            if path.suffix.lower() == target_ext:
                logger.debug("Skipping %s: already %s", path, target_ext)
                continue
            if not self.codec.is_loadable(path):
                logger.debug("Skipping %s: not a loadable scan", path)
                continue

            dest = self.convert_file(path)
            if dest is not None:
                results.append(dest)

        logger.info("convert_tree: %d files converted under %s", len(results), root)
        return results

    # ----- Whole run -----

    def convert_paths(self, paths: Iterable[Path]) -> dict:
        """Convert every file or directory in *paths*, returning a summary dict."""
        for path in paths:
            path = Path(path)
            if path.is_dir():
                self.convert_tree(path)
            else:
                self.convert_file(path)

        logger.info(
            "Conversion complete: %d converted, %d conflicts, %d read errors, "
            "%d write errors",
            self.summary["converted"],
            self.summary["conflicts"],
            self.summary["read_errors"],
            self.summary["write_errors"],
        )
        return dict(self.summary)
