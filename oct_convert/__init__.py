"""
oct_convert: Batch conversion of OCT scan files.

Converts optical coherence tomography scans to the xoct, octbin or img
formats.  Output files are named after the patient, study and series they
contain, existing files are never overwritten, and patient names can be
stripped on the way through.

Anonymisation Approach
----------------------
Only the patient's surname, forename and title are cleared.  The birth date
is kept at year precision (set to 1 January) and all ids are preserved, so
converted scans of the same patient still group together.
"""

__version__ = "0.1.0"
