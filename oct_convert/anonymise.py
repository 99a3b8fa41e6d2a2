"""Patient anonymisation for loaded scans.

Names and titles are cleared; a birth date is coarsened to 1 January of the
same year rather than removed.  Patient, study and series ids are left
untouched so converted files keep their linkage.
"""

import logging

from oct_convert.models import ScanDate, ScanRecord

logger = logging.getLogger(__name__)


def anonymise_scan(scan: ScanRecord) -> None:
    """Strip identifying fields from every patient of *scan* in place.

    Running it again on an already anonymised scan changes nothing.
    """
    for patient in scan.patients.values():
        if patient is None:
            continue
        patient.surname = ""
        patient.forename = ""
        patient.title = ""

        if not patient.birthdate.is_empty:
            patient.birthdate = ScanDate(year=patient.birthdate.year, month=1, day=1)

        logger.debug("Anonymised patient %s", patient.id or "<no id>")
