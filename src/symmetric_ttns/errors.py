"""
Exception hierarchy for symmetric tree tensor networks.

Recoverable conditions (malformed irrep text, a block that is absent, a
seniority conversion that is not possible) are reported as return values
by the functions concerned. The exceptions below cover configuration
errors that end a run and invariant violations that indicate a defect.
"""

from __future__ import annotations


class SymmetricTTNSError(Exception):
    """Base class of all errors raised by this package."""


class SnapshotNotFoundError(SymmetricTTNSError, FileNotFoundError):
    """The requested snapshot file does not exist."""


class SectorIndexError(SymmetricTTNSError, IndexError):
    """A sector index is not valid for the bond it refers to."""


class UnsupportedSymmetryCountError(SymmetricTTNSError):
    """A snapshot declares more symmetry groups than the build supports."""

    def __init__(self, requested: int, maximum: int):
        self.requested = requested
        self.maximum = maximum
        super().__init__(
            "This wave function can not be read. The current build can not "
            "run with the specified number of symmetries.\n"
            f"Specified: {requested}, maximal allowed: {maximum}.\n"
            "Rebuild with a higher MAX_SYMMETRIES."
        )


class SymmetryConfigurationMismatchError(SymmetricTTNSError):
    """The configured symmetry groups differ from the ones in a snapshot."""

    def __init__(self, configured: str, stored: str):
        self.configured = configured
        self.stored = stored
        super().__init__(
            "Symmetries do not match between input file and previous "
            f"calculation.\nInput file: {configured}\n"
            f"Previous calculation: {stored}"
        )


class TargetStateIncompatibleError(SymmetricTTNSError):
    """Migration could not reconcile the stored and requested target state."""

    def __init__(self, group: str, before: str, after: str):
        self.group = group
        self.before = before
        self.after = after
        super().__init__(
            f"Not able to change target state from {before} to {after} "
            f"for {group}."
        )


class FusionRuleViolationError(SymmetricTTNSError, ValueError):
    """A block was requested whose quantum numbers can not fuse."""


class StructuralSizeMismatchError(SymmetricTTNSError, ValueError):
    """A declared count disagrees with the data that was actually read."""
