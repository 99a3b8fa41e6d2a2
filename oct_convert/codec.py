"""Reading and writing OCT scan files.

:class:`ScanCodec` is the capability the converter depends on.  The converter
never touches file contents itself, so tests can swap in an in-memory codec.

:class:`OctFileCodec` is the codec used by the command line tool:

- reads DICOM (ophthalmic tomography or any DICOM with patient/study/series
  tags), ``.xoct`` and ``.octbin`` files
- writes ``.xoct``, ``.octbin`` and ``.img`` files

File layouts
------------
xoct
    ZIP archive with ``base.xml`` describing the hierarchy and one ``.npy``
    member per B-scan.
octbin
    ``OCTBIN_MAGIC``, a little-endian uint32 header length, a JSON header
    with the hierarchy, then the B-scan arrays as consecutive ``.npy`` blocks.
img
    Raw uint8 pixels of every B-scan, back to back, no metadata.  Write-only.
"""

import abc
import io
import json
import logging
import struct
import xml.etree.ElementTree as ET
import zipfile
from pathlib import Path
from typing import Optional

import numpy as np
import pydicom
from pydicom.misc import is_dicom
from pydicom.valuerep import PersonName

from oct_convert.config import FileReadOptions, FileWriteOptions, OutputFormat
from oct_convert.errors import ReadError, WriteError
from oct_convert.models import (
    PatientRecord,
    ScanDate,
    ScanRecord,
)

logger = logging.getLogger(__name__)

OCTBIN_MAGIC = b"OCTBIN\x00\x01"
XOCT_INDEX = "base.xml"


# ---------------------------------------------------------------------------
# Codec interface
# ---------------------------------------------------------------------------

class ScanCodec(abc.ABC):
    """Format-specific (de)serialisation of :class:`ScanRecord` objects."""

    @abc.abstractmethod
    def is_loadable(self, path: Path) -> bool:
        """Cheap probe: can :meth:`read` be expected to load *path*?"""

    @abc.abstractmethod
    def read(self, path: Path, read_options: FileReadOptions) -> ScanRecord:
        """Load *path*.  Raises :class:`ReadError` on failure."""

    @abc.abstractmethod
    def write(
        self,
        path: Path,
        scan: ScanRecord,
        fmt: OutputFormat,
        write_options: FileWriteOptions,
    ) -> None:
        """Write *scan* to *path* in *fmt*.

        Never overwrites an existing file and never creates parent
        directories.  Raises :class:`WriteError` on failure.
        """


# ---------------------------------------------------------------------------
# Concrete codec
# ---------------------------------------------------------------------------

class OctFileCodec(ScanCodec):
    """DICOM / xoct / octbin reader and xoct / octbin / img writer."""

    # ----- Probing -----

    @staticmethod
    def detect_format(path: Path) -> Optional[str]:
        """Return ``"octbin"``, ``"xoct"``, ``"dicom"`` or None from the file header."""
        path = Path(path)
        try:
            if not path.is_file():
                return None
            with open(path, "rb") as fh:
                head = fh.read(len(OCTBIN_MAGIC))
            if head == OCTBIN_MAGIC:
                return "octbin"
            if zipfile.is_zipfile(path):
                with zipfile.ZipFile(path) as zf:
                    return "xoct" if XOCT_INDEX in zf.namelist() else None
            if is_dicom(path):
                return "dicom"
        except (OSError, zipfile.BadZipFile) as exc:
            logger.debug("Probe failed for %s: %s", path, exc)
        return None

    def is_loadable(self, path: Path) -> bool:
        return self.detect_format(path) is not None

    # ----- Reading -----

    def read(self, path: Path, read_options: FileReadOptions) -> ScanRecord:
        path = Path(path)
        fmt = self.detect_format(path)
        if fmt is None:
            raise ReadError(f"Not a loadable scan file: {path}")

        if fmt == "dicom":
            scan = self._read_dicom(path)
        elif fmt == "xoct":
            scan = self._read_xoct(path)
        else:
            scan = self._read_octbin(path)

        if read_options.fill_empty_pixel_white:
            _fill_empty_pixels_white(scan)

        logger.debug("Loaded %s (%s, %d patient(s))", path, fmt, len(scan.patients))
        return scan

    def _read_dicom(self, path: Path) -> ScanRecord:
        try:
            ds = pydicom.dcmread(path)
        except Exception as exc:
            raise ReadError(f"Failed to read DICOM {path}: {exc}") from exc

        name = PersonName(str(ds.get("PatientName", "") or ""))
        patient = PatientRecord(
            id=str(ds.get("PatientID", "") or ""),
            surname=name.family_name,
            forename=name.given_name,
            title=name.name_prefix,
            birthdate=ScanDate.parse(str(ds.get("PatientBirthDate", "") or "")),
        )
        study = patient.get_or_add_study(_as_int(ds.get("StudyID", "")))
        series = study.get_or_add_series(_as_int(ds.get("SeriesNumber", "")))
        series.laterality = str(
            ds.get("Laterality", "") or ds.get("ImageLaterality", "") or ""
        )

        if "PixelData" in ds:
            try:
                pixels = ds.pixel_array
            except Exception as exc:
                raise ReadError(f"Cannot decode pixel data in {path}: {exc}") from exc
            frames = int(ds.get("NumberOfFrames", 1) or 1)
            series.bscans = list(pixels) if frames > 1 else [pixels]

        scan = ScanRecord()
        scan.add_patient(patient)
        return scan

    def _read_xoct(self, path: Path) -> ScanRecord:
        scan = ScanRecord()
        try:
            with zipfile.ZipFile(path) as zf:
                root = ET.fromstring(zf.read(XOCT_INDEX))
                for pat_el in root.findall("patient"):
                    patient = scan.add_patient(PatientRecord(
                        id=pat_el.get("id", ""),
                        surname=pat_el.get("surname", ""),
                        forename=pat_el.get("forename", ""),
                        title=pat_el.get("title", ""),
                        birthdate=ScanDate.parse(pat_el.get("birthdate", "")),
                    ))
                    for study_el in pat_el.findall("study"):
                        study = patient.get_or_add_study(int(study_el.get("id", "0")))
                        for series_el in study_el.findall("series"):
                            series = study.get_or_add_series(int(series_el.get("id", "0")))
                            series.laterality = series_el.get("laterality", "")
                            series.bscans = [
                                np.load(io.BytesIO(zf.read(b.get("file"))))
                                for b in series_el.findall("bscan")
                            ]
        except Exception as exc:
            raise ReadError(f"Failed to read xoct {path}: {exc}") from exc
        return scan

    def _read_octbin(self, path: Path) -> ScanRecord:
        scan = ScanRecord()
        try:
            with open(path, "rb") as fh:
                fh.read(len(OCTBIN_MAGIC))
                (header_len,) = struct.unpack("<I", fh.read(4))
                header = json.loads(fh.read(header_len).decode("utf-8"))
                for pat in header["patients"]:
                    patient = scan.add_patient(PatientRecord(
                        id=pat["id"],
                        surname=pat["surname"],
                        forename=pat["forename"],
                        title=pat["title"],
                        birthdate=ScanDate.parse(pat["birthdate"]),
                    ))
                    for st in pat["studies"]:
                        study = patient.get_or_add_study(st["id"])
                        for se in st["series"]:
                            series = study.get_or_add_series(se["id"])
                            series.laterality = se["laterality"]
                            if se["layout"] == "stack":
                                series.bscans = list(np.load(fh))
                            else:
                                series.bscans = [np.load(fh) for _ in range(se["count"])]
        except Exception as exc:
            raise ReadError(f"Failed to read octbin {path}: {exc}") from exc
        return scan

    # ----- Writing -----

    def write(
        self,
        path: Path,
        scan: ScanRecord,
        fmt: OutputFormat,
        write_options: FileWriteOptions,
    ) -> None:
        path = Path(path)
        writers = {
            OutputFormat.XOCT: self._write_xoct,
            OutputFormat.OCTBIN: self._write_octbin,
            OutputFormat.IMG: self._write_img,
        }
        try:
            writers[fmt](path, scan, write_options)
        except (OSError, ValueError) as exc:
            raise WriteError(f"Write file {path} not successful: {exc}") from exc
        logger.debug("Wrote %s (%s)", path, fmt.value)

    def _write_xoct(self, path: Path, scan: ScanRecord, write_options: FileWriteOptions) -> None:
        root = ET.Element("oct")
        members: list[tuple[str, np.ndarray]] = []
        for pat_key, patient in scan.patients.items():
            pat_el = ET.SubElement(root, "patient", {
                "id": patient.id,
                "surname": patient.surname,
                "forename": patient.forename,
                "title": patient.title,
                "birthdate": patient.birthdate.isoformat(),
            })
            for study in patient.studies.values():
                study_el = ET.SubElement(pat_el, "study", {"id": str(study.id)})
                for series in study.series.values():
                    series_el = ET.SubElement(study_el, "series", {
                        "id": str(series.id),
                        "laterality": series.laterality,
                    })
                    for n, bscan in enumerate(series.bscans):
                        name = f"bscans/p{pat_key}_st{study.id}_se{series.id}_{n:04d}.npy"
                        ET.SubElement(series_el, "bscan", {"file": name})
                        members.append((name, bscan))

        with open(path, "xb") as fh, zipfile.ZipFile(fh, "w", zipfile.ZIP_DEFLATED) as zf:
            zf.writestr(XOCT_INDEX, ET.tostring(root, encoding="utf-8", xml_declaration=True))
            for name, bscan in members:
                buffer = io.BytesIO()
                np.save(buffer, np.asarray(bscan))
                zf.writestr(name, buffer.getvalue())

    def _write_octbin(self, path: Path, scan: ScanRecord, write_options: FileWriteOptions) -> None:
        header: dict = {"patients": []}
        blocks: list[np.ndarray] = []
        for patient in scan.patients.values():
            pat = {
                "id": patient.id,
                "surname": patient.surname,
                "forename": patient.forename,
                "title": patient.title,
                "birthdate": patient.birthdate.isoformat(),
                "studies": [],
            }
            header["patients"].append(pat)
            for study in patient.studies.values():
                st = {"id": study.id, "series": []}
                pat["studies"].append(st)
                for series in study.series.values():
                    bscans = [np.asarray(b) for b in series.bscans]
                    stackable = bool(bscans) and len({(b.shape, b.dtype) for b in bscans}) == 1
                    if write_options.octbin_flat and stackable:
                        layout = "stack"
                        blocks.append(np.stack(bscans))
                    else:
                        layout = "bscans"
                        blocks.extend(bscans)
                    st["series"].append({
                        "id": series.id,
                        "laterality": series.laterality,
                        "layout": layout,
                        "count": len(bscans),
                    })

        header_bytes = json.dumps(header).encode("utf-8")
        with open(path, "xb") as fh:
            fh.write(OCTBIN_MAGIC)
            fh.write(struct.pack("<I", len(header_bytes)))
            fh.write(header_bytes)
            for block in blocks:
                np.save(fh, block)

    def _write_img(self, path: Path, scan: ScanRecord, write_options: FileWriteOptions) -> None:
        bscans = [b for _, _, series in scan.iter_series() for b in series.bscans]
        if not bscans:
            raise ValueError("scan contains no B-scan data")

        with open(path, "xb") as fh:
            for bscan in bscans:
                fh.write(_to_uint8(np.asarray(bscan)).tobytes())


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _as_int(value) -> int:
    """DICOM StudyID / SeriesNumber as int; non-numeric or missing gives 0."""
    try:
        return int(str(value).strip())
    except ValueError:
        return 0


def _to_uint8(bscan: np.ndarray) -> np.ndarray:
    if bscan.dtype == np.uint8:
        return bscan
    peak = float(bscan.max()) if bscan.size else 0.0
    if peak <= 0:
        return np.zeros(bscan.shape, dtype=np.uint8)
    return np.clip(bscan.astype(np.float64) * (255.0 / peak), 0, 255).astype(np.uint8)


def _fill_empty_pixels_white(scan: ScanRecord) -> None:
    for _, _, series in scan.iter_series():
        filled = []
        for bscan in series.bscans:
            if np.issubdtype(bscan.dtype, np.integer):
                bscan = np.where(bscan == 0, np.iinfo(bscan.dtype).max, bscan).astype(bscan.dtype)
            filled.append(bscan)
        series.bscans = filled
