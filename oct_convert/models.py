"""In-memory scan hierarchy: scan -> patient -> study -> series.

Children are held in plain dicts.  Dicts keep insertion order, so "the first
patient/study/series" always means the first one a codec inserted, which is
the order the entries appear in the source file.  Nothing here sorts by id.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Optional

import numpy as np

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Dates
# ---------------------------------------------------------------------------

_DATE_PATTERN = re.compile(r"^(\d{4})-?(\d{2})-?(\d{2})$")


@dataclass
class ScanDate:
    """A calendar date that may be empty (no date stored at all)."""

    year: Optional[int] = None
    month: Optional[int] = None
    day: Optional[int] = None

    @property
    def is_empty(self) -> bool:
        return self.year is None

    @classmethod
    def parse(cls, text: str) -> "ScanDate":
        """Parse ``YYYYMMDD`` or ``YYYY-MM-DD``; blank or malformed text gives an empty date."""
        text = (text or "").strip()
        match = _DATE_PATTERN.match(text)
        if not match:
            if text:
                logger.warning("Unrecognised date %r, treating as empty", text)
            return cls()
        year, month, day = (int(g) for g in match.groups())
        return cls(year=year, month=month, day=day)

    def isoformat(self) -> str:
        if self.is_empty:
            return ""
        return f"{self.year:04d}-{self.month or 1:02d}-{self.day or 1:02d}"


# ---------------------------------------------------------------------------
# Hierarchy
# ---------------------------------------------------------------------------

@dataclass
class SeriesRecord:
    """One acquisition series.  B-scan pixel data is opaque to the pipeline."""

    id: int
    laterality: str = ""
    bscans: list[np.ndarray] = field(default_factory=list)


@dataclass
class StudyRecord:
    id: int
    series: dict[int, SeriesRecord] = field(default_factory=dict)

    def get_or_add_series(self, series_id: int) -> SeriesRecord:
        if series_id not in self.series:
            self.series[series_id] = SeriesRecord(id=series_id)
        return self.series[series_id]


@dataclass
class PatientRecord:
    """Patient demographics plus studies keyed by study id."""

    id: str = ""
    surname: str = ""
    forename: str = ""
    title: str = ""
    birthdate: ScanDate = field(default_factory=ScanDate)
    studies: dict[int, StudyRecord] = field(default_factory=dict)

    def get_or_add_study(self, study_id: int) -> StudyRecord:
        if study_id not in self.studies:
            self.studies[study_id] = StudyRecord(id=study_id)
        return self.studies[study_id]


@dataclass
class ScanRecord:
    """A loaded scan file.  Patients are keyed by an internal integer index."""

    patients: dict[int, PatientRecord] = field(default_factory=dict)

    def add_patient(self, patient: PatientRecord) -> PatientRecord:
        self.patients[len(self.patients) + 1] = patient
        return patient

    def iter_series(self):
        """Yield ``(patient, study, series)`` for every series, in insertion order."""
        for patient in self.patients.values():
            for study in patient.studies.values():
                for series in study.series.values():
                    yield patient, study, series


# ---------------------------------------------------------------------------
# Navigation helpers
# ---------------------------------------------------------------------------

def first_patient(scan: ScanRecord) -> Optional[PatientRecord]:
    """Return the first inserted patient, or None for an empty scan."""
    return next(iter(scan.patients.values()), None)


def first_study(patient: Optional[PatientRecord]) -> Optional[StudyRecord]:
    if patient is None:
        return None
    return next(iter(patient.studies.values()), None)


def first_series(study: Optional[StudyRecord]) -> Optional[SeriesRecord]:
    if study is None:
        return None
    return next(iter(study.series.values()), None)
