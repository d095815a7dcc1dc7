"""Text rendering of emitted indel records.

Examples:
    >>> from indelcall.models import CallStatus, IndelCall, IndelKind
    >>> call = IndelCall("chr1", 120, IndelKind.DELETION, "ACG", CallStatus.CALL, 10, 10, 10)
    >>> format_bed_line(call)
    'chr1\\t119\\t122\\t-ACG:10/10'
    >>> format_1kg_line(call)
    'chr1\\t119\\t3\\tD\\tACG\\t'
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import TextIO

from indelcall.models import CallStatus, IndelCall, IndelKind, SampleSummary


def format_bed_line(call: IndelCall) -> str:
    """Compact BED line: ``contig start end ±BASES:indel_reads/coverage``."""
    return (
        f"{call.contig}\t{call.start}\t{call.end}\t"
        f"{call.marker}{call.bases}:{call.all_indel_count}/{call.coverage}"
    )


def format_1kg_line(call: IndelCall) -> str:
    """1000 Genomes style line: ``contig start length D|I BASES samples``."""
    kind = "D" if call.kind is IndelKind.DELETION else "I"
    samples = ",".join(sorted(call.samples))
    return f"{call.contig}\t{call.start}\t{len(call.bases)}\t{kind}\t{call.bases}\t{samples}"


def format_event(call: IndelCall) -> str:
    return f"{call.contig}\t{call.start}\t{call.end}\t{call.marker}{call.bases}"


def format_stats(summary: SampleSummary, prefix: str = "") -> str:
    """Tab-separated statistics block, each field tagged with ``prefix``.

    Examples:
        >>> from indelcall.models import StrandCounts
        >>> s = SampleSummary(3, 4, 10, 1.0, 0.5, 60.0, 59.0, 0.1, 0.0, 30.0, 31.5,
        ...                   StrandCounts(2, 1), StrandCounts(4, 2))
        >>> format_stats(s, "T_").split("\\t")[0]
        'T_OBS_COUNTS[C/A/R]:3/4/10'
    """
    fields = [
        f"{prefix}OBS_COUNTS[C/A/R]:{summary.consensus_count}/{summary.all_indel_count}/{summary.coverage}",
        f"{prefix}AV_MM[C/R]:{summary.av_consensus_mismatches:.2f}/{summary.av_ref_mismatches:.2f}",
        f"{prefix}AV_MAPQ[C/R]:{summary.av_consensus_mapq:.2f}/{summary.av_ref_mapq:.2f}",
        f"{prefix}NQS_MM_RATE[C/R]:{summary.nqs_consensus_mm_rate:.2f}/{summary.nqs_ref_mm_rate:.2f}",
        f"{prefix}NQS_AV_QUAL[C/R]:{summary.nqs_consensus_av_qual:.2f}/{summary.nqs_ref_av_qual:.2f}",
        f"{prefix}STRAND_COUNTS[C/C/R/R]:{summary.consensus_strand.forward}/"
        f"{summary.consensus_strand.reverse}/{summary.ref_strand.forward}/{summary.ref_strand.reverse}",
    ]
    return "\t".join(fields)


def format_full_record(call: IndelCall) -> str:
    """Event, statistics blocks and status in one line.

    Somatic records carry ``N_`` and ``T_`` blocks; single-sample records one
    unprefixed block.
    """
    parts = [format_event(call)]
    if call.normal_stats is not None:
        parts.append(format_stats(call.normal_stats, "N_"))
        parts.append(format_stats(call.stats, "T_"))
    elif call.stats is not None:
        parts.append(format_stats(call.stats))
    parts.append(call.status.value)
    return "\t".join(parts)


def format_call(call: IndelCall, output_format: str = "bed") -> str:
    if output_format == "1kg":
        return format_1kg_line(call)
    return format_bed_line(call)


def write_calls(
    calls: Iterable[IndelCall],
    handle: TextIO,
    output_format: str = "bed",
    details: TextIO | None = None,
) -> dict[CallStatus, int]:
    """Write accepted calls to ``handle`` and every record to ``details``.

    Returns:
        Number of records written per status.
    """
    counts: dict[CallStatus, int] = {}
    for call in calls:
        counts[call.status] = counts.get(call.status, 0) + 1
        if call.status.is_accepted:
            handle.write(format_call(call, output_format) + "\n")
        if details is not None:
            details.write(format_full_record(call) + "\n")
    return counts
