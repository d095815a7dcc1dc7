"""Shared fixtures for indelcall tests."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from itertools import count

import pytest

from indelcall.bam import CIGAR_DEL, CIGAR_INS, CIGAR_MATCH, CIGAR_SOFT_CLIP
from indelcall.config import CallerConfig, load_config
from indelcall.models import AlignmentRecord

# 1-based position p holds REFERENCE[p - 1]
REFERENCE = "ACGTTGCAAGCTTCGA" * 400

_SUBSTITUTE = {"A": "C", "C": "G", "G": "T", "T": "A"}


def ref_slice(record: AlignmentRecord, reference: str = REFERENCE) -> str:
    """Reference bases covering ``[record.start, record.end]``."""
    return reference[record.start - 1 : record.end]


def build_read(
    start: int,
    cigar: Sequence[tuple[int, int]],
    *,
    name: str = "read",
    mismatches: Sequence[int] = (),
    inserted: str = "",
    reference: str = REFERENCE,
    quality: int = 30,
    **fields,
) -> AlignmentRecord:
    """Build a read matching ``reference`` apart from the requested events.

    Args:
        start: 1-based alignment start.
        cigar: (operation, length) pairs.
        mismatches: 1-based reference positions where the read base differs.
        inserted: Bases used for insertions (defaults to ``T`` repeats).
        **fields: Extra ``AlignmentRecord`` fields (read_group, is_reverse, ...).
    """
    seq: list[str] = []
    pos = start
    for op, length in cigar:
        if op == CIGAR_MATCH:
            for _ in range(length):
                base = reference[pos - 1]
                seq.append(_SUBSTITUTE[base] if pos in mismatches else base)
                pos += 1
        elif op == CIGAR_INS:
            seq.append(inserted if len(inserted) == length else "T" * length)
        elif op == CIGAR_DEL:
            pos += length
        elif op == CIGAR_SOFT_CLIP:
            seq.append("N" * length)
    sequence = "".join(seq)
    fields.setdefault("contig", "chr1")
    fields.setdefault("contig_index", 0)
    return AlignmentRecord(
        name=name,
        start=start,
        end=pos - 1,
        cigar=list(cigar),
        sequence=sequence,
        qualities=[quality] * len(sequence),
        **fields,
    )


@pytest.fixture
def make_read() -> Callable[..., AlignmentRecord]:
    """Factory fixture building reads with unique names."""
    names = count()

    def _make(start: int, cigar: Sequence[tuple[int, int]], **kwargs) -> AlignmentRecord:
        kwargs.setdefault("name", f"read{next(names)}")
        return build_read(start, cigar, **kwargs)

    return _make


@pytest.fixture
def ref_for() -> Callable[[AlignmentRecord], str]:
    """Reference slice for a read built by ``make_read``."""
    return ref_slice


@pytest.fixture
def config() -> CallerConfig:
    return load_config()


@pytest.fixture
def somatic_config() -> CallerConfig:
    return load_config(somatic=True)


@pytest.fixture
def write_fasta(tmp_path):
    """Write and index a FASTA of ``(name, sequence)`` records; returns its path."""
    pysam = pytest.importorskip("pysam")

    def _write(records=(("chr1", REFERENCE),), name="ref.fa"):
        path = tmp_path / name
        with open(path, "w") as fh:
            for contig, seq in records:
                fh.write(f">{contig}\n")
                for i in range(0, len(seq), 60):
                    fh.write(seq[i : i + 60] + "\n")
        pysam.faidx(str(path))
        return path

    return _write


@pytest.fixture
def write_bam(tmp_path):
    """Write a sorted, indexed BAM holding ``AlignmentRecord`` reads; returns its path."""
    pysam = pytest.importorskip("pysam")

    def _write(reads, name="reads.bam", read_groups=(("RG1", "S1"),), contigs=None):
        if contigs is None:
            contigs = [("chr1", len(REFERENCE)), ("chr2", len(REFERENCE))]
        header = {
            "HD": {"VN": "1.6", "SO": "coordinate"},
            "SQ": [{"SN": contig, "LN": length} for contig, length in contigs],
            # (id, sample) or (id, sample, platform unit)
            "RG": [dict(zip(("ID", "SM", "PU"), rg)) for rg in read_groups],
        }
        path = tmp_path / name
        with pysam.AlignmentFile(str(path), "wb", header=header) as bam:
            for read in sorted(reads, key=lambda r: (r.contig_index, r.start)):
                segment = pysam.AlignedSegment(bam.header)
                segment.query_name = read.name
                segment.reference_id = read.contig_index
                segment.reference_start = read.start - 1
                segment.mapping_quality = read.mapping_quality
                segment.cigartuples = read.cigar
                segment.query_sequence = read.sequence
                segment.query_qualities = pysam.qualitystring_to_array(
                    "".join(chr(q + 33) for q in read.qualities)
                )
                segment.flag = 16 if read.is_reverse else 0
                if read.read_group is not None:
                    segment.set_tag("RG", read.read_group)
                bam.write(segment)
        pysam.index(str(path))
        return path

    return _write
