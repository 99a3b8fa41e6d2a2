"""Destination filename derivation from scan metadata."""

from pathlib import Path

from oct_convert.config import Options
from oct_convert.models import ScanRecord, first_patient, first_series, first_study

UNKNOWN_PATIENT_ID = "unknown"


def derive_base_name(scan: ScanRecord, source_path: Path, opt: Options) -> str:
    """Build the destination base name (no directory, no extension) for *scan*.

    The name is ``<patient id>_<study id>_<series id>``, taken from the first
    patient, its first study and that study's first series in insertion
    order.  Later studies and series never contribute.  With
    ``opt.add_old_filename`` the source stem is appended as well.

    Fallbacks:

    - no patients, or the first patient has no studies: the source stem
    - the first study has no series: the patient id alone
    - an empty patient id is written as ``unknown``

    Examples
    --------
    ``P42`` / study 3 / series 7 from ``scan001.raw`` gives ``P42_3_7``, or
    ``P42_3_7_scan001`` when the old filename is added.
    """
    old_name = Path(source_path).stem

    patient = first_patient(scan)
    if patient is None or not patient.studies:
        return old_name

    dest_name = patient.id or UNKNOWN_PATIENT_ID

    study = first_study(patient)
    series = first_series(study)
    if series is None:
        return dest_name

    dest_name += f"_{study.id}_{series.id}"
    if opt.add_old_filename:
        dest_name += f"_{old_name}"
    return dest_name
