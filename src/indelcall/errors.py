"""Exceptions raised by indelcall.

Every fatal condition of a calling run derives from ``IndelCallError`` so
callers can abort the whole stream with a single ``except`` clause.

Examples:
    >>> issubclass(ReadOrderError, IndelCallError)
    True
"""

from __future__ import annotations


class IndelCallError(Exception):
    """Base class for all fatal indelcall errors."""


class ConfigError(IndelCallError):
    """Invalid or unknown configuration value."""


class ContigOrderError(IndelCallError):
    """A record moved back to a contig that was already processed."""


class ReadOrderError(IndelCallError):
    """A record starts before the previous record or the window start."""


class ReadTooWideError(IndelCallError):
    """A record does not fit into the window even after shifting it."""


class IndelOutOfWindowError(IndelCallError):
    """An indel anchor falls outside the window buffer."""


class IndelAtWindowStartError(IndelCallError):
    """Indel observations were left at the first window position after a shift."""


class PositionAdjustmentError(IndelCallError):
    """No indel-free position could be found to shift the window to."""


class MissingReadGroupError(IndelCallError):
    """A record carries no read group in somatic mode."""


class UnknownReadGroupError(IndelCallError):
    """A record's read group belongs to neither the normal nor the tumor sample."""


class DuplicateObservationError(IndelCallError):
    """The same read was registered twice for one indel."""


class UnsupportedCigarError(IndelCallError):
    """The alignment contains a CIGAR operation the window cannot place."""


class DriverStateError(IndelCallError):
    """The driver was used after it finished draining."""
