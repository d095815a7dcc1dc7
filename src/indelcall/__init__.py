"""indelcall: sliding-window indel caller for sorted alignments.

Examples:
    >>> import indelcall
    >>> hasattr(indelcall, '__version__')
    True
"""

from importlib.metadata import PackageNotFoundError, version

from indelcall.config import CallerConfig, load_config
from indelcall.decision import CallThresholds, Decision, classify, is_call
from indelcall.driver import WindowDriver
from indelcall.models import AlignmentRecord, CallStatus, IndelCall, IndelKind, IndelObservation
from indelcall.precall import CallStatistics
from indelcall.window import SlidingWindow

try:
    __version__ = version("indelcall")
except PackageNotFoundError:
    __version__ = "0.0.0"
__all__ = [
    "AlignmentRecord",
    "CallStatistics",
    "CallStatus",
    "CallThresholds",
    "CallerConfig",
    "Decision",
    "IndelCall",
    "IndelKind",
    "IndelObservation",
    "SlidingWindow",
    "WindowDriver",
    "classify",
    "is_call",
    "load_config",
]
