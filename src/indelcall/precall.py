"""Per-position statistics used to make (or reject) an indel call.

A ``CallStatistics`` object is a read-only snapshot of one window at one
position. Reads spanning the position fall into three overlapping groups:
reads carrying the consensus indel, reads carrying any indel at the position
(a superset of the former), and reference reads (all the others).

NQS (neighborhood quality standard) figures are collected over a flank of
``nqs_width`` bases on each side of the event. For reads carrying an indel
the right flank starts after the event, so a long deletion does not eat into
it; deleted bases carry the ``GAP`` sentinel and are skipped.
"""

from __future__ import annotations

from indelcall.models import IndelObservation, SampleSummary, StrandCounts
from indelcall.window import GAP, MISMATCH, SlidingWindow

NQS_MISMATCH_CUTOFF = 1_000_000
AV_MISMATCHES_PER_READ = 1.5


class _Tally:
    """Accumulators for one read category."""

    __slots__ = (
        "total_mm",
        "total_mapq",
        "forward",
        "reverse",
        "nqs_bases",
        "nqs_qual",
        "nqs_mm",
        "nqs_mm_qual",
    )

    def __init__(self) -> None:
        self.total_mm = 0
        self.total_mapq = 0
        self.forward = 0
        self.reverse = 0
        self.nqs_bases = 0
        self.nqs_qual = 0
        self.nqs_mm = 0
        self.nqs_mm_qual = 0

    def add_read(self, mismatches: int, mapq: int, is_reverse: bool) -> None:
        self.total_mm += mismatches
        self.total_mapq += mapq
        if is_reverse:
            self.reverse += 1
        else:
            self.forward += 1

    def add_base(self, qual: int, mismatch: bool) -> None:
        self.nqs_bases += 1
        self.nqs_qual += qual
        if mismatch:
            self.nqs_mm += 1
            self.nqs_mm_qual += qual


def _ratio(numerator: float, denominator: float) -> float:
    return numerator / denominator if denominator else 0.0


class CallStatistics:
    """Coverage, consensus and NQS statistics of ``window`` at ``pos``.

    Args:
        window: The window to summarize; it is not modified.
        pos: 1-based reference position (an indel anchor).
        nqs_width: Half-width of the NQS flank.
    """

    def __init__(self, window: SlidingWindow, pos: int, nqs_width: int = 5) -> None:
        self.position = pos
        self.nqs_width = nqs_width
        self.coverage = window.coverage_at(pos)

        variants = list(window.indels_at(pos))
        self.variant: IndelObservation | None = None
        self.consensus_count = 0
        self.all_indel_count = 0
        for variant in variants:
            self.all_indel_count += variant.count
            # strict comparison keeps the first-seen variant on ties
            if variant.count > self.consensus_count:
                self.variant = variant
                self.consensus_count = variant.count

        self._consensus = _Tally()
        self._variant = _Tally()
        self._all = _Tally()

        left = max(pos - nqs_width, window.start)
        right = min(pos + nqs_width - 1, window.stop)

        for buffered in window.reads:
            read = buffered.record
            if read.start > pos or read.end < pos:
                continue

            local_right = right
            has_variant = False
            for variant in variants:
                if read in variant.reads:
                    has_variant = True
                    local_right += variant.length_on_ref()
                    break
            has_consensus = self.variant is not None and read in self.variant.reads

            groups = [self._all]
            if has_variant:
                groups.append(self._variant)
            if has_consensus:
                groups.append(self._consensus)

            for group in groups:
                group.add_read(buffered.mismatches, read.mapping_quality, read.is_reverse)

            flags, quals = buffered.flags, buffered.quals
            first = max(left - read.start, 0)
            last = min(local_right - read.start, len(flags) - 1)
            for i in range(first, last + 1):
                if flags[i] == GAP:
                    continue
                mismatch = flags[i] == MISMATCH
                for group in groups:
                    group.add_base(quals[i], mismatch)

    def __repr__(self) -> str:
        return (
            f"CallStatistics(pos={self.position}, variant={self.variant!r}, "
            f"{self.consensus_count}/{self.all_indel_count}/{self.coverage})"
        )

    @property
    def has_observation(self) -> bool:
        return self.variant is not None

    @property
    def event_length(self) -> int:
        return self.variant.length_on_ref() if self.variant is not None else 0

    # -- read-level totals ------------------------------------------------
    @property
    def total_mismatches(self) -> int:
        return self._all.total_mm

    @property
    def consensus_mismatches(self) -> int:
        return self._consensus.total_mm

    @property
    def all_variant_mismatches(self) -> int:
        return self._variant.total_mm

    @property
    def total_mapq(self) -> int:
        return self._all.total_mapq

    @property
    def consensus_mapq(self) -> int:
        return self._consensus.total_mapq

    @property
    def all_variant_mapq(self) -> int:
        return self._variant.total_mapq

    @property
    def _ref_coverage(self) -> int:
        return self.coverage - self.all_indel_count

    @property
    def av_consensus_mismatches(self) -> float:
        return _ratio(self._consensus.total_mm, self.consensus_count)

    @property
    def av_ref_mismatches(self) -> float:
        return _ratio(self._all.total_mm - self._variant.total_mm, self._ref_coverage)

    @property
    def av_consensus_mapq(self) -> float:
        return _ratio(self._consensus.total_mapq, self.consensus_count)

    @property
    def av_ref_mapq(self) -> float:
        return _ratio(self._all.total_mapq - self._variant.total_mapq, self._ref_coverage)

    @property
    def consensus_strand_counts(self) -> StrandCounts:
        return StrandCounts(self._consensus.forward, self._consensus.reverse)

    @property
    def ref_strand_counts(self) -> StrandCounts:
        return StrandCounts(
            self._all.forward - self._variant.forward,
            self._all.reverse - self._variant.reverse,
        )

    # -- NQS window -------------------------------------------------------
    @property
    def total_nqs_bases(self) -> int:
        return self._all.nqs_bases

    @property
    def total_nqs_mismatches(self) -> int:
        return self._all.nqs_mm

    @property
    def total_nqs_mismatching_qual(self) -> int:
        return self._all.nqs_mm_qual

    @property
    def variant_nqs_mismatches(self) -> int:
        return self._variant.nqs_mm

    @property
    def nqs_consensus_mm_rate(self) -> float:
        """Mismatch rate in the NQS flanks of consensus-indel reads."""
        return _ratio(self._consensus.nqs_mm, self._consensus.nqs_bases)

    @property
    def nqs_ref_mm_rate(self) -> float:
        """Mismatch rate around the position in reads without any indel there."""
        return _ratio(
            self._all.nqs_mm - self._variant.nqs_mm,
            self._all.nqs_bases - self._variant.nqs_bases,
        )

    @property
    def nqs_consensus_av_qual(self) -> float:
        return _ratio(self._consensus.nqs_qual, self._consensus.nqs_bases)

    @property
    def nqs_ref_av_qual(self) -> float:
        return _ratio(
            self._all.nqs_qual - self._variant.nqs_qual,
            self._all.nqs_bases - self._variant.nqs_bases,
        )

    def fails_nqs_mismatch(self) -> bool:
        """True if indel-carrying reads are too noisy around the event.

        Mismatches are counted in indel-carrying reads only but the budget
        is scaled by the total coverage.
        """
        mismatches = self._variant.nqs_mm
        return (
            mismatches > NQS_MISMATCH_CUTOFF
            or mismatches > self.coverage * AV_MISMATCHES_PER_READ
        )

    def summary(self) -> SampleSummary:
        return SampleSummary(
            consensus_count=self.consensus_count,
            all_indel_count=self.all_indel_count,
            coverage=self.coverage,
            av_consensus_mismatches=self.av_consensus_mismatches,
            av_ref_mismatches=self.av_ref_mismatches,
            av_consensus_mapq=self.av_consensus_mapq,
            av_ref_mapq=self.av_ref_mapq,
            nqs_consensus_mm_rate=self.nqs_consensus_mm_rate,
            nqs_ref_mm_rate=self.nqs_ref_mm_rate,
            nqs_consensus_av_qual=self.nqs_consensus_av_qual,
            nqs_ref_av_qual=self.nqs_ref_av_qual,
            consensus_strand=self.consensus_strand_counts,
            ref_strand=self.ref_strand_counts,
        )
