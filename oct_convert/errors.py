"""Exceptions raised by the conversion pipeline."""

from pathlib import Path


class OctConvertError(Exception):
    """Base class for all oct_convert errors."""


class ConfigurationError(OctConvertError):
    """Invalid or missing command-line settings; aborts the whole run."""


class ReadError(OctConvertError):
    """A scan file could not be loaded."""


class WriteError(OctConvertError):
    """A scan record could not be written."""


class DestinationConflict(OctConvertError):
    """The computed destination file already exists."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        super().__init__(f"Destination file exists: {self.path}")
