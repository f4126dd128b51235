"""
Build-wide constants for symmetric tree tensor networks.

These play the role of compile-time settings: snapshots are written with
irrep arrays padded to ``MAX_SYMMETRIES`` slots and a snapshot declaring
more symmetry groups than this can not be read.
"""

import numpy as np

MAX_SYMMETRIES = 6
"""Maximal number of simultaneously configured symmetry groups."""

SNAPSHOT_NAME = "T3NScalc.h5"
"""File name used by :func:`symmetric_ttns.snapshot.write_to_disk`."""

EL_TYPE = np.float64
"""Element type of all block payloads."""

QN_TYPE = np.int64
"""Integer type for sector indices and quantum-number arrays."""

NORM_TOL = 1e-12
"""Tolerance used when checking unit normalisation."""
