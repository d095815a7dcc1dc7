"""BAM and reference access for the indel caller.

Converts pysam alignments into ``AlignmentRecord`` objects, merges several
coordinate-sorted BAM files into one ordered stream and serves reference
slices for each record. Requires ``pysam`` at runtime (imported lazily).

Examples:
    >>> CIGAR_MATCH, CIGAR_INS, CIGAR_DEL
    (0, 1, 2)
"""

from __future__ import annotations

import heapq
import logging
from collections.abc import Iterator, Sequence
from contextlib import ExitStack
from pathlib import Path
from typing import Any

from indelcall.errors import ConfigError
from indelcall.models import AlignmentRecord

logger = logging.getLogger(__name__)

# -- CIGAR operations --------------------------------------------------
CIGAR_MATCH = 0  # M
CIGAR_INS = 1  # I
CIGAR_DEL = 2  # D
CIGAR_REF_SKIP = 3  # N
CIGAR_SOFT_CLIP = 4  # S
CIGAR_HARD_CLIP = 5  # H
CIGAR_PAD = 6  # P
CIGAR_SEQ_MATCH = 7  # =
CIGAR_SEQ_MISMATCH = 8  # X

MATCH_OPS = (CIGAR_MATCH, CIGAR_SEQ_MATCH, CIGAR_SEQ_MISMATCH)

REFERENCE_CHUNK = 100_000


def anchored_end(record: AlignmentRecord) -> int:
    """Last reference position the window must hold for ``record``.

    Insertions are anchored at the first base after the event, so a read
    whose alignment ends with an insertion needs one extra position.

    Examples:
        >>> from types import SimpleNamespace
        >>> anchored_end(SimpleNamespace(end=150, cigar=[(CIGAR_MATCH, 49), (CIGAR_INS, 2)]))
        151
        >>> anchored_end(SimpleNamespace(end=150, cigar=[(CIGAR_MATCH, 51)]))
        150
    """
    if record.cigar and record.cigar[-1][0] == CIGAR_INS:
        return record.end + 1
    return record.end


def record_from_segment(
    segment: Any,
    samples_by_read_group: dict[str, str] | None = None,
) -> AlignmentRecord:
    """Build an ``AlignmentRecord`` from a pysam.AlignedSegment.

    Args:
        segment: A pysam.AlignedSegment (or an object with the same attributes).
        samples_by_read_group: Optional read group id to sample name map.

    Returns:
        The record with 1-based inclusive coordinates.
    """
    read_group = segment.get_tag("RG") if segment.has_tag("RG") else None
    sample = None
    if read_group is not None and samples_by_read_group:
        sample = samples_by_read_group.get(read_group)
    qualities = segment.query_qualities
    return AlignmentRecord(
        name=segment.query_name,
        contig=segment.reference_name,
        contig_index=segment.reference_id,
        start=segment.reference_start + 1,
        # pysam's 0-based exclusive end equals the 1-based inclusive end
        end=segment.reference_end if segment.reference_end is not None else segment.reference_start,
        cigar=list(segment.cigartuples or []),
        sequence=segment.query_sequence or "",
        qualities=list(qualities) if qualities is not None else None,
        mapping_quality=segment.mapping_quality,
        is_reverse=segment.is_reverse,
        is_duplicate=segment.is_duplicate,
        is_secondary=segment.is_secondary,
        is_unmapped=segment.is_unmapped,
        read_group=read_group,
        sample=sample,
    )


def read_group_samples(bam_path: str | Path) -> dict[str, str]:
    """Map each read group id in the BAM header to its ``SM`` sample name.

    Read groups without a sample name map to their own id.
    """
    import pysam

    with pysam.AlignmentFile(str(bam_path), "rb") as bam:
        header = bam.header.to_dict()
    return {rg["ID"]: rg.get("SM", rg["ID"]) for rg in header.get("RG", [])}


def read_group_platform_units(bam_path: str | Path) -> dict[str, str]:
    """Map each read group id that declares a ``PU`` to its platform unit (lane)."""
    import pysam

    with pysam.AlignmentFile(str(bam_path), "rb") as bam:
        header = bam.header.to_dict()
    return {rg["ID"]: str(rg["PU"]) for rg in header.get("RG", []) if "PU" in rg}


def _segments(bam: Any) -> Iterator[Any]:
    for segment in bam.fetch(until_eof=True):
        if segment.is_unmapped or segment.reference_id < 0:
            continue
        yield segment


def iter_alignments(bam_paths: Sequence[str | Path]) -> Iterator[AlignmentRecord]:
    """Stream mapped alignments of one or more sorted BAMs in coordinate order.

    All files must share the same contig order in their headers.

    Args:
        bam_paths: Coordinate-sorted BAM files.

    Yields:
        ``AlignmentRecord`` objects ordered by ``(contig_index, start)``.

    Raises:
        ConfigError: If the files list different contigs or contig orders.
    """
    import pysam

    samples: dict[str, str] = {}
    for path in bam_paths:
        samples.update(read_group_samples(path))

    with ExitStack() as stack:
        bams = [stack.enter_context(pysam.AlignmentFile(str(p), "rb")) for p in bam_paths]
        for path, bam in zip(bam_paths[1:], bams[1:]):
            if bam.references != bams[0].references:
                raise ConfigError(
                    f"{path}: contigs differ from those of {bam_paths[0]}; "
                    "all inputs must share the same sequence dictionary"
                )
        merged = heapq.merge(
            *(_segments(bam) for bam in bams),
            key=lambda s: (s.reference_id, s.reference_start),
        )
        for segment in merged:
            yield record_from_segment(segment, samples)


class ReferenceSlicer:
    """Serve reference bases for records from an indexed FASTA.

    Keeps a single chunk of at most ``chunk_size`` bases (plus the length
    of the read being served) in memory.

    Args:
        fasta_path: Path to the indexed reference FASTA.
        chunk_size: Number of bases fetched ahead of each request.
    """

    def __init__(self, fasta_path: str | Path, chunk_size: int = REFERENCE_CHUNK) -> None:
        import pysam

        self._fasta = pysam.FastaFile(str(fasta_path))
        self._chunk_size = chunk_size
        self._contig: str | None = None
        self._chunk_start = 0  # 0-based
        self._chunk = ""

    def close(self) -> None:
        self._fasta.close()

    def __enter__(self) -> ReferenceSlicer:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def fetch(self, contig: str, start: int, end: int) -> str:
        """Return reference bases of ``contig`` for 1-based inclusive ``[start, end]``."""
        lo, hi = start - 1, end
        chunk_end = self._chunk_start + len(self._chunk)
        if contig != self._contig or lo < self._chunk_start or hi > chunk_end:
            self._contig = contig
            self._chunk_start = lo
            self._chunk = self._fasta.fetch(contig, lo, hi + self._chunk_size)
        return self._chunk[lo - self._chunk_start : hi - self._chunk_start]

    def for_record(self, record: AlignmentRecord) -> str:
        return self.fetch(record.contig, record.start, record.end)
