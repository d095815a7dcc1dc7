"""Data structures shared by the window, the statistics and the driver.

Examples:
    >>> obs = IndelObservation(IndelKind.DELETION, "acg")
    >>> obs.bases, obs.length_on_ref()
    ('ACG', 3)
    >>> IndelObservation(IndelKind.INSERTION, "AC").length_on_ref()
    0
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import NamedTuple

from indelcall.errors import DuplicateObservationError


@dataclass(eq=False)
class AlignmentRecord:
    """One aligned read as consumed by the window driver.

    Records compare and hash by identity: two mates with identical fields are
    still two distinct reads.

    Attributes:
        name: Read (query) name.
        contig: Reference sequence name.
        contig_index: Index of the contig in the header; defines contig order.
        start: 1-based leftmost reference position of the alignment.
        end: 1-based rightmost reference position covered (inclusive).
        cigar: ``(operation, length)`` pairs using SAM operation codes.
        sequence: Read bases, including soft-clipped ones.
        qualities: Per-base Phred qualities, or None when unavailable.
        mapping_quality: Mapping quality of the alignment.
        is_reverse: True for reads aligned to the reverse strand.
        read_group: ``RG`` tag value, if any.
        sample: Sample name of the read group, if known.
    """

    name: str
    contig: str
    contig_index: int
    start: int
    end: int
    cigar: list[tuple[int, int]]
    sequence: str
    qualities: list[int] | None = None
    mapping_quality: int = 60
    is_reverse: bool = False
    is_duplicate: bool = False
    is_secondary: bool = False
    is_unmapped: bool = False
    read_group: str | None = None
    sample: str | None = None


class IndelKind(enum.Enum):
    INSERTION = "I"
    DELETION = "D"


class IndelObservation:
    """An indel variant (kind + bases) and the reads that carry it."""

    def __init__(self, kind: IndelKind, bases: str) -> None:
        self.kind = kind
        self.bases = bases.upper()
        self.reads: set[AlignmentRecord] = set()
        self.samples: set[str] = set()

    def __repr__(self) -> str:
        return f"IndelObservation({self.kind.value}, {self.bases!r}, count={self.count})"

    def matches(self, kind: IndelKind, bases: str) -> bool:
        return self.kind is kind and self.bases == bases.upper()

    def add(self, read: AlignmentRecord) -> None:
        """Register another read carrying this indel.

        Raises:
            DuplicateObservationError: If ``read`` was already registered.
        """
        if read in self.reads:
            raise DuplicateObservationError(
                f"Read {read.name}: indel observation {self.kind.value}{self.bases} "
                "was already registered"
            )
        self.reads.add(read)
        if read.sample is not None:
            self.samples.add(read.sample)

    @property
    def count(self) -> int:
        return len(self.reads)

    def length_on_ref(self) -> int:
        """Number of reference bases the event spans (0 for insertions)."""
        if self.kind is IndelKind.DELETION:
            return len(self.bases)
        return 0


class StrandCounts(NamedTuple):
    forward: int = 0
    reverse: int = 0


@dataclass(frozen=True)
class SampleSummary:
    """Statistics block of one sample at one position.

    Attributes:
        consensus_count: Reads carrying the consensus indel.
        all_indel_count: Reads carrying any indel at the position.
        coverage: Reads spanning the position.
        av_consensus_mismatches: Mean mismatches per consensus read.
        av_ref_mismatches: Mean mismatches per reference read.
        av_consensus_mapq: Mean mapping quality of consensus reads.
        av_ref_mapq: Mean mapping quality of reference reads.
        nqs_consensus_mm_rate: Mismatch rate in the NQS window, consensus reads.
        nqs_ref_mm_rate: Mismatch rate in the NQS window, reference reads.
        nqs_consensus_av_qual: Mean base quality in the NQS window, consensus reads.
        nqs_ref_av_qual: Mean base quality in the NQS window, reference reads.
        consensus_strand: Forward/reverse counts of consensus reads.
        ref_strand: Forward/reverse counts of reference reads.
    """

    consensus_count: int
    all_indel_count: int
    coverage: int
    av_consensus_mismatches: float
    av_ref_mismatches: float
    av_consensus_mapq: float
    av_ref_mapq: float
    nqs_consensus_mm_rate: float
    nqs_ref_mm_rate: float
    nqs_consensus_av_qual: float
    nqs_ref_av_qual: float
    consensus_strand: StrandCounts
    ref_strand: StrandCounts


class CallStatus(enum.Enum):
    CALL = "CALL"
    TOO_DIRTY = "TOO_DIRTY"
    SOMATIC = "SOMATIC"
    GERMLINE = "GERMLINE"
    NORMAL_TOO_DIRTY = "NORMAL_TOO_DIRTY"
    TUMOR_TOO_DIRTY = "TUMOR_TOO_DIRTY"

    @property
    def is_accepted(self) -> bool:
        return self in (CallStatus.CALL, CallStatus.SOMATIC, CallStatus.GERMLINE)


@dataclass
class IndelCall:
    """One emitted indel record.

    ``start`` and ``end`` are 0-based; ``position`` is the 1-based anchor (the
    first deleted base, or the first base after an insertion).

    Examples:
        >>> call = IndelCall("chr1", 120, IndelKind.DELETION, "ACG", CallStatus.CALL, 10, 10, 10)
        >>> call.start, call.end, call.marker
        (119, 122, '-')
    """

    contig: str
    position: int
    kind: IndelKind
    bases: str
    status: CallStatus
    consensus_count: int
    all_indel_count: int
    coverage: int
    samples: frozenset[str] = field(default_factory=frozenset)
    stats: SampleSummary | None = None
    normal_stats: SampleSummary | None = None

    @property
    def event_length(self) -> int:
        return len(self.bases) if self.kind is IndelKind.DELETION else 0

    @property
    def start(self) -> int:
        return self.position - 1

    @property
    def end(self) -> int:
        return self.start + self.event_length

    @property
    def marker(self) -> str:
        return "-" if self.kind is IndelKind.DELETION else "+"
