"""
Centralised configuration for the oct_convert package.

Output formats, their file extensions, run options, and logging setup used
across all modules.
"""

import enum
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from oct_convert.errors import ConfigurationError


# ---------------------------------------------------------------------------
# Output formats
# ---------------------------------------------------------------------------
class OutputFormat(enum.Enum):
    XOCT = "xoct"
    OCTBIN = "octbin"
    IMG = "img"


# Every format maps to a distinct extension.  The tree walker also uses this
# table to skip files that are already in the target format.
EXTENSIONS = {
    OutputFormat.XOCT: ".xoct",
    OutputFormat.OCTBIN: ".octbin",
    OutputFormat.IMG: ".img",
}


def extension_for(fmt: OutputFormat) -> str:
    """Return the dot-prefixed extension for *fmt*, e.g. ``'.xoct'``."""
    return EXTENSIONS[fmt]


def parse_output_format(name: str) -> OutputFormat:
    """Map a CLI format name to :class:`OutputFormat`.

    Raises :class:`ConfigurationError` for unknown names.
    """
    try:
        return OutputFormat(name)
    except ValueError:
        raise ConfigurationError(f"Wrong output format: {name}") from None


# ---------------------------------------------------------------------------
# Codec sub-configurations (passed through to the codec untouched)
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class FileReadOptions:
    # Replace zero-valued (empty) pixels with the dtype maximum.
    fill_empty_pixel_white: bool = False


@dataclass(frozen=True)
class FileWriteOptions:
    # octbin: one stacked block per series when all B-scans share a shape.
    octbin_flat: bool = True


# ---------------------------------------------------------------------------
# Run options
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class Options:
    """Settings shared by every file of a conversion run."""

    output_format: OutputFormat = OutputFormat.XOCT
    add_old_filename: bool = False
    anonymising: bool = False
    output_path: Optional[Path] = None
    read_options: FileReadOptions = field(default_factory=FileReadOptions)
    write_options: FileWriteOptions = field(default_factory=FileWriteOptions)

    @property
    def extension(self) -> str:
        return extension_for(self.output_format)


# ---------------------------------------------------------------------------
# Logging helper
# ---------------------------------------------------------------------------
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(level: int = logging.INFO) -> None:
    """Configure root logging for oct_convert scripts."""
    logging.basicConfig(level=level, format=LOG_FORMAT)
