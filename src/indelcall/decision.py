"""Calling heuristics applied to a ``CallStatistics`` snapshot.

Examples:
    >>> from types import SimpleNamespace
    >>> stats = SimpleNamespace(
    ...     has_observation=True, consensus_count=10, all_indel_count=10, coverage=10,
    ...     fails_nqs_mismatch=lambda: False,
    ... )
    >>> classify(stats, CallThresholds())
    <Decision.CALL: 'call'>
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from indelcall.precall import CallStatistics

logger = logging.getLogger(__name__)


class Decision(enum.Enum):
    NO_CALL = "no_call"
    CALL = "call"
    TOO_DIRTY = "too_dirty"
    ABSENT = "absent"


@dataclass(frozen=True)
class CallThresholds:
    """Minimum support required to call the consensus indel.

    Attributes:
        min_coverage: Reads spanning the position; checked by the driver before
            statistics are built.
        min_fraction: Consensus reads as a fraction of coverage (exclusive).
        min_consensus_fraction: Consensus reads as a fraction of all indel
            reads at the position (exclusive).
        min_indel_count: Minimum consensus read count (inclusive).
    """

    min_coverage: int = 6
    min_fraction: float = 0.3
    min_consensus_fraction: float = 0.7
    min_indel_count: int = 0


def is_call(stats: CallStatistics, thresholds: CallThresholds) -> bool:
    """True if the consensus indel in ``stats`` passes every threshold."""
    count = stats.consensus_count
    ret = (
        not stats.fails_nqs_mismatch()
        and count >= thresholds.min_indel_count
        and count > thresholds.min_fraction * stats.coverage
        and count > thresholds.min_consensus_fraction * stats.all_indel_count
    )
    if not ret:
        logger.debug(
            "NOT a call: count=%d total_count=%d cov=%d",
            count,
            stats.all_indel_count,
            stats.coverage,
        )
    return ret


def classify(stats: CallStatistics, thresholds: CallThresholds) -> Decision:
    """Sort a position into absent, too dirty, called or not called."""
    if not stats.has_observation:
        return Decision.ABSENT
    if stats.fails_nqs_mismatch():
        return Decision.TOO_DIRTY
    if is_call(stats, thresholds):
        return Decision.CALL
    return Decision.NO_CALL
