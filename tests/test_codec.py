"""Tests for oct_convert.codec: OctFileCodec reading, writing and probing."""

import json
import struct
import zipfile
from pathlib import Path

import numpy as np
import pydicom
from pydicom.dataset import FileDataset
from pydicom.uid import ExplicitVRLittleEndian, generate_uid
import pytest

from oct_convert.codec import OCTBIN_MAGIC, OctFileCodec
from oct_convert.config import FileReadOptions, FileWriteOptions, OutputFormat
from oct_convert.errors import ReadError, WriteError
from oct_convert.models import PatientRecord, ScanDate, ScanRecord


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _make_oct_dicom(
    filepath: Path,
    patient_id: str = "P42",
    patient_name: str = "Doe^Jane^^Dr",
    patient_birth_date: str = "19800517",
    study_id: str = "3",
    series_number: int = 7,
    frames: int = 2,
    rows: int = 4,
    cols: int = 5,
) -> Path:
    """Create a minimal multi-frame ophthalmic tomography DICOM file."""
    filepath.parent.mkdir(parents=True, exist_ok=True)

    file_meta = pydicom.Dataset()
    file_meta.MediaStorageSOPClassUID = "1.2.840.10008.5.1.4.1.1.77.1.5.4"  # OPT
    file_meta.MediaStorageSOPInstanceUID = generate_uid()
    file_meta.TransferSyntaxUID = ExplicitVRLittleEndian

    ds = FileDataset(str(filepath), {}, file_meta=file_meta, preamble=b"\x00" * 128)
    ds.is_little_endian = True
    ds.is_implicit_VR = False

    ds.PatientName = patient_name
    ds.PatientID = patient_id
    ds.PatientBirthDate = patient_birth_date
    ds.StudyID = study_id
    ds.SeriesNumber = series_number
    ds.Laterality = "R"
    ds.StudyInstanceUID = generate_uid()
    ds.SeriesInstanceUID = generate_uid()
    ds.SOPInstanceUID = file_meta.MediaStorageSOPInstanceUID
    ds.SOPClassUID = file_meta.MediaStorageSOPClassUID

    pixels = np.arange(frames * rows * cols, dtype=np.uint8).reshape(frames, rows, cols)
    ds.NumberOfFrames = frames
    ds.Rows = rows
    ds.Columns = cols
    ds.SamplesPerPixel = 1
    ds.PhotometricInterpretation = "MONOCHROME2"
    ds.BitsAllocated = 8
    ds.BitsStored = 8
    ds.HighBit = 7
    ds.PixelRepresentation = 0
    ds.PixelData = pixels.tobytes()

    ds.save_as(filepath)
    return filepath


def _make_scan(bscan_shapes=((4, 5), (4, 5))) -> ScanRecord:
    scan = ScanRecord()
    patient = scan.add_patient(PatientRecord(
        id="P42", surname="Doe", forename="Jane", title="Dr",
        birthdate=ScanDate(1980, 5, 17),
    ))
    series = patient.get_or_add_study(3).get_or_add_series(7)
    series.laterality = "R"
    series.bscans = [
        np.full(shape, n + 1, dtype=np.uint8) for n, shape in enumerate(bscan_shapes)
    ]
    patient.get_or_add_study(1).get_or_add_series(2)
    return scan


READ = FileReadOptions()
WRITE = FileWriteOptions()


# ---------------------------------------------------------------------------
# Tests: probing
# ---------------------------------------------------------------------------

class TestIsLoadable:
    def test_dicom(self, tmp_path):
        path = _make_oct_dicom(tmp_path / "scan.raw")
        assert OctFileCodec().is_loadable(path)

    def test_text_file(self, tmp_path):
        path = tmp_path / "notes.txt"
        path.write_text("not a scan", encoding="utf-8")
        assert not OctFileCodec().is_loadable(path)

    def test_missing_file(self, tmp_path):
        assert not OctFileCodec().is_loadable(tmp_path / "nope.dcm")

    def test_zip_without_index(self, tmp_path):
        path = tmp_path / "other.zip"
        with zipfile.ZipFile(path, "w") as zf:
            zf.writestr("readme.txt", "hello")
        assert not OctFileCodec().is_loadable(path)

    def test_written_formats(self, tmp_path):
        codec = OctFileCodec()
        codec.write(tmp_path / "a.xoct", _make_scan(), OutputFormat.XOCT, WRITE)
        codec.write(tmp_path / "a.octbin", _make_scan(), OutputFormat.OCTBIN, WRITE)
        assert codec.detect_format(tmp_path / "a.xoct") == "xoct"
        assert codec.detect_format(tmp_path / "a.octbin") == "octbin"


# ---------------------------------------------------------------------------
# Tests: DICOM reading
# ---------------------------------------------------------------------------

class TestReadDicom:
    def test_metadata(self, tmp_path):
        path = _make_oct_dicom(tmp_path / "scan001.dcm")
        scan = OctFileCodec().read(path, READ)

        assert len(scan.patients) == 1
        patient = scan.patients[1]
        assert patient.id == "P42"
        assert patient.surname == "Doe"
        assert patient.forename == "Jane"
        assert patient.title == "Dr"
        assert patient.birthdate == ScanDate(1980, 5, 17)
        assert list(patient.studies) == [3]
        series = patient.studies[3].series[7]
        assert series.laterality == "R"

    def test_frames_become_bscans(self, tmp_path):
        path = _make_oct_dicom(tmp_path / "scan001.dcm", frames=3)
        scan = OctFileCodec().read(path, READ)

        bscans = scan.patients[1].studies[3].series[7].bscans
        assert len(bscans) == 3
        assert bscans[0].shape == (4, 5)

    def test_single_frame(self, tmp_path):
        path = _make_oct_dicom(tmp_path / "scan001.dcm", frames=1)
        scan = OctFileCodec().read(path, READ)
        bscans = scan.patients[1].studies[3].series[7].bscans
        assert len(bscans) == 1
        assert bscans[0].shape == (4, 5)

    def test_non_numeric_study_id(self, tmp_path):
        path = _make_oct_dicom(tmp_path / "scan001.dcm", study_id="ABC")
        scan = OctFileCodec().read(path, READ)
        assert list(scan.patients[1].studies) == [0]

    def test_fill_empty_pixel_white(self, tmp_path):
        path = _make_oct_dicom(tmp_path / "scan001.dcm")
        scan = OctFileCodec().read(path, FileReadOptions(fill_empty_pixel_white=True))
        bscan = scan.patients[1].studies[3].series[7].bscans[0]
        assert bscan[0, 0] == 255
        assert bscan[0, 1] == 1

    def test_unreadable_raises(self, tmp_path):
        path = tmp_path / "garbage.dcm"
        path.write_bytes(b"\x01" * 64)
        with pytest.raises(ReadError):
            OctFileCodec().read(path, READ)

    def test_missing_raises(self, tmp_path):
        with pytest.raises(ReadError):
            OctFileCodec().read(tmp_path / "missing.dcm", READ)


# ---------------------------------------------------------------------------
# Tests: corrupt files that still pass the header probe
# ---------------------------------------------------------------------------

def _write_octbin_with_header(path: Path, header: bytes) -> Path:
    path.write_bytes(OCTBIN_MAGIC + struct.pack("<I", len(header)) + header)
    return path


def _write_xoct_with_empty_bscan(path: Path) -> Path:
    base = (
        '<oct><patient id="P42"><study id="3"><series id="7">'
        '<bscan file="bscans/empty.npy"/>'
        "</series></study></patient></oct>"
    )
    with zipfile.ZipFile(path, "w") as zf:
        zf.writestr("base.xml", base)
        zf.writestr("bscans/empty.npy", b"")
    return path


class TestReadCorrupt:
    def test_truncated_octbin(self, tmp_path):
        codec = OctFileCodec()
        good = tmp_path / "good.octbin"
        codec.write(good, _make_scan(), OutputFormat.OCTBIN, WRITE)
        bad = tmp_path / "bad.octbin"
        bad.write_bytes(good.read_bytes()[:-10])

        assert codec.is_loadable(bad)
        with pytest.raises(ReadError):
            codec.read(bad, READ)

    def test_octbin_header_wrong_shape(self, tmp_path):
        bad = _write_octbin_with_header(tmp_path / "list.octbin", b"[]")
        with pytest.raises(ReadError):
            OctFileCodec().read(bad, READ)

    def test_octbin_missing_blocks(self, tmp_path):
        header = json.dumps({"patients": [{
            "id": "P42", "surname": "", "forename": "", "title": "", "birthdate": "",
            "studies": [{"id": 3, "series": [
                {"id": 7, "laterality": "", "layout": "bscans", "count": 1},
            ]}],
        }]}).encode("utf-8")
        bad = _write_octbin_with_header(tmp_path / "short.octbin", header)
        with pytest.raises(ReadError):
            OctFileCodec().read(bad, READ)

    def test_xoct_empty_bscan_member(self, tmp_path):
        bad = _write_xoct_with_empty_bscan(tmp_path / "empty.xoct")
        assert OctFileCodec().is_loadable(bad)
        with pytest.raises(ReadError):
            OctFileCodec().read(bad, READ)


# ---------------------------------------------------------------------------
# Tests: writing
# ---------------------------------------------------------------------------

class TestWriteXoct:
    def test_reload_keeps_hierarchy_and_order(self, tmp_path):
        codec = OctFileCodec()
        dest = tmp_path / "P42_3_7.xoct"
        codec.write(dest, _make_scan(), OutputFormat.XOCT, WRITE)

        scan = codec.read(dest, READ)
        patient = scan.patients[1]
        assert patient.id == "P42"
        assert patient.surname == "Doe"
        assert patient.birthdate == ScanDate(1980, 5, 17)
        assert list(patient.studies) == [3, 1]
        bscans = patient.studies[3].series[7].bscans
        assert [int(b[0, 0]) for b in bscans] == [1, 2]


class TestWriteOctbin:
    def test_flat_layout(self, tmp_path):
        codec = OctFileCodec()
        dest = tmp_path / "P42_3_7.octbin"
        codec.write(dest, _make_scan(), OutputFormat.OCTBIN, FileWriteOptions(octbin_flat=True))

        assert dest.read_bytes().startswith(OCTBIN_MAGIC)
        scan = codec.read(dest, READ)
        bscans = scan.patients[1].studies[3].series[7].bscans
        assert len(bscans) == 2
        assert int(bscans[1][0, 0]) == 2
        assert scan.patients[1].studies[1].series[2].bscans == []

    def test_mixed_shapes_written_per_bscan(self, tmp_path):
        codec = OctFileCodec()
        dest = tmp_path / "P42_3_7.octbin"
        codec.write(dest, _make_scan(((4, 5), (2, 3))), OutputFormat.OCTBIN, WRITE)

        bscans = codec.read(dest, READ).patients[1].studies[3].series[7].bscans
        assert [b.shape for b in bscans] == [(4, 5), (2, 3)]

    def test_not_flat(self, tmp_path):
        codec = OctFileCodec()
        dest = tmp_path / "P42_3_7.octbin"
        codec.write(dest, _make_scan(), OutputFormat.OCTBIN, FileWriteOptions(octbin_flat=False))

        bscans = codec.read(dest, READ).patients[1].studies[3].series[7].bscans
        assert len(bscans) == 2


class TestWriteImg:
    def test_raw_pixels(self, tmp_path):
        dest = tmp_path / "P42_3_7.img"
        OctFileCodec().write(dest, _make_scan(), OutputFormat.IMG, WRITE)
        data = dest.read_bytes()
        assert len(data) == 2 * 4 * 5
        assert data[:20] == b"\x01" * 20

    def test_no_bscans_fails(self, tmp_path):
        scan = ScanRecord()
        scan.add_patient(PatientRecord(id="P1")).get_or_add_study(1).get_or_add_series(1)
        dest = tmp_path / "P1_1_1.img"
        with pytest.raises(WriteError):
            OctFileCodec().write(dest, scan, OutputFormat.IMG, WRITE)


class TestWriteSafety:
    def test_never_overwrites(self, tmp_path):
        dest = tmp_path / "P42_3_7.xoct"
        dest.write_bytes(b"existing")
        with pytest.raises(WriteError):
            OctFileCodec().write(dest, _make_scan(), OutputFormat.XOCT, WRITE)
        assert dest.read_bytes() == b"existing"

    def test_missing_parent_dir(self, tmp_path):
        dest = tmp_path / "missing" / "P42_3_7.octbin"
        with pytest.raises(WriteError):
            OctFileCodec().write(dest, _make_scan(), OutputFormat.OCTBIN, WRITE)
        assert not dest.parent.exists()
