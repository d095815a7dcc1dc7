"""Tests for BAM record conversion and reference access."""

from __future__ import annotations

from types import SimpleNamespace

import pytest

from indelcall.bam import (
    CIGAR_DEL,
    CIGAR_INS,
    CIGAR_MATCH,
    ReferenceSlicer,
    anchored_end,
    iter_alignments,
    read_group_platform_units,
    read_group_samples,
    record_from_segment,
)
from indelcall.errors import ConfigError

from .conftest import REFERENCE

# ── Helpers ───────────────────────────────────────────────────────


def _mock_segment(reference_start, cigartuples, reference_end, tags=None, **fields):
    """Build a minimal pysam-AlignedSegment-like object for testing."""
    tags = tags or {}
    defaults = dict(
        query_name="r1",
        reference_name="chr1",
        reference_id=0,
        query_sequence="ACGT",
        query_qualities=[30, 30, 30, 30],
        mapping_quality=60,
        is_reverse=False,
        is_duplicate=False,
        is_secondary=False,
        is_unmapped=False,
    )
    defaults.update(fields)
    return SimpleNamespace(
        reference_start=reference_start,
        reference_end=reference_end,
        cigartuples=cigartuples,
        has_tag=lambda tag: tag in tags,
        get_tag=lambda tag: tags[tag],
        **defaults,
    )


# ── record_from_segment ──────────────────────────────────────────


class TestRecordFromSegment:
    def test_coordinates_become_one_based_inclusive(self):
        record = record_from_segment(_mock_segment(99, [(CIGAR_MATCH, 4)], 103))
        assert (record.start, record.end) == (100, 103)
        assert record.cigar == [(CIGAR_MATCH, 4)]
        assert record.qualities == [30, 30, 30, 30]

    def test_read_group_and_sample(self):
        segment = _mock_segment(0, [(CIGAR_MATCH, 4)], 4, tags={"RG": "T1"})
        record = record_from_segment(segment, {"T1": "TUMOR"})
        assert record.read_group == "T1"
        assert record.sample == "TUMOR"

    def test_no_read_group(self):
        record = record_from_segment(_mock_segment(0, [(CIGAR_MATCH, 4)], 4), {"T1": "TUMOR"})
        assert record.read_group is None
        assert record.sample is None

    def test_missing_qualities(self):
        record = record_from_segment(_mock_segment(0, [(CIGAR_MATCH, 4)], 4, query_qualities=None))
        assert record.qualities is None

    def test_missing_sequence_becomes_empty(self):
        record = record_from_segment(_mock_segment(0, [(CIGAR_MATCH, 4)], 4, query_sequence=None))
        assert record.sequence == ""

    def test_flags_copied(self):
        segment = _mock_segment(
            0, [(CIGAR_MATCH, 4)], 4, is_reverse=True, is_duplicate=True, mapping_quality=0
        )
        record = record_from_segment(segment)
        assert record.is_reverse and record.is_duplicate
        assert record.mapping_quality == 0


class TestAnchoredEnd:
    def test_trailing_insertion_needs_one_more_base(self, make_read):
        read = make_read(100, [(CIGAR_MATCH, 10), (CIGAR_INS, 2)])
        assert read.end == 109
        assert anchored_end(read) == 110

    def test_other_reads_end_at_alignment_end(self, make_read):
        read = make_read(100, [(CIGAR_MATCH, 5), (CIGAR_DEL, 2), (CIGAR_MATCH, 5)])
        assert anchored_end(read) == read.end == 111


# ── pysam-backed I/O ─────────────────────────────────────────────


class TestReferenceSlicer:
    def test_fetch_one_based_inclusive(self, write_fasta):
        with ReferenceSlicer(write_fasta()) as ref:
            assert ref.fetch("chr1", 1, 16) == REFERENCE[:16]
            assert ref.fetch("chr1", 120, 122) == REFERENCE[119:122]

    def test_refetches_across_chunks(self, write_fasta):
        with ReferenceSlicer(write_fasta(), chunk_size=50) as ref:
            assert ref.fetch("chr1", 10, 20) == REFERENCE[9:20]
            assert ref.fetch("chr1", 500, 560) == REFERENCE[499:560]
            assert ref.fetch("chr1", 5, 8) == REFERENCE[4:8]

    def test_switches_contig(self, write_fasta):
        path = write_fasta([("chr1", REFERENCE), ("chr2", REFERENCE[::-1])])
        with ReferenceSlicer(path) as ref:
            assert ref.fetch("chr1", 1, 10) == REFERENCE[:10]
            assert ref.fetch("chr2", 1, 10) == REFERENCE[::-1][:10]

    def test_for_record(self, write_fasta, make_read, ref_for):
        read = make_read(200, [(CIGAR_MATCH, 30)])
        with ReferenceSlicer(write_fasta()) as ref:
            assert ref.for_record(read) == ref_for(read)


class TestIterAlignments:
    def test_read_group_samples(self, write_bam, make_read):
        path = write_bam([make_read(10, [(CIGAR_MATCH, 10)])], read_groups=[("N1", "NORMAL"), ("N2", "NORMAL")])
        assert read_group_samples(path) == {"N1": "NORMAL", "N2": "NORMAL"}

    def test_single_file(self, write_bam, make_read):
        reads = [
            make_read(100, [(CIGAR_MATCH, 20), (CIGAR_DEL, 3), (CIGAR_MATCH, 28)], read_group="RG1"),
            make_read(120, [(CIGAR_MATCH, 30)], read_group="RG1", is_reverse=True),
        ]
        records = list(iter_alignments([write_bam(reads)]))
        assert [(r.name, r.start, r.end) for r in records] == [
            (reads[0].name, 100, 150),
            (reads[1].name, 120, 149),
        ]
        assert records[0].cigar == reads[0].cigar
        assert records[0].sequence == reads[0].sequence
        assert records[0].sample == "S1"
        assert records[1].is_reverse

    def test_merges_files_in_coordinate_order(self, write_bam, make_read):
        normal = [make_read(s, [(CIGAR_MATCH, 10)], read_group="N1") for s in (10, 50, 90)]
        tumor = [
            make_read(30, [(CIGAR_MATCH, 10)], read_group="T1"),
            make_read(20, [(CIGAR_MATCH, 10)], read_group="T1", contig="chr2", contig_index=1),
        ]
        paths = [
            write_bam(normal, "normal.bam", [("N1", "NORMAL")]),
            write_bam(tumor, "tumor.bam", [("T1", "TUMOR")]),
        ]
        records = list(iter_alignments(paths))
        assert [(r.contig, r.start) for r in records] == [
            ("chr1", 10),
            ("chr1", 30),
            ("chr1", 50),
            ("chr1", 90),
            ("chr2", 20),
        ]
        assert [r.sample for r in records] == ["NORMAL", "TUMOR", "NORMAL", "NORMAL", "TUMOR"]

    def test_contig_order_must_match(self, write_bam, make_read):
        length = len(REFERENCE)
        first = write_bam([make_read(10, [(CIGAR_MATCH, 10)])], "a.bam", contigs=[("chr1", length), ("chr2", length)])
        second = write_bam([make_read(10, [(CIGAR_MATCH, 10)])], "b.bam", contigs=[("chr2", length), ("chr1", length)])
        with pytest.raises(ConfigError, match="contigs differ"):
            list(iter_alignments([first, second]))

    def test_read_group_platform_units(self, write_bam, make_read):
        path = write_bam(
            [make_read(10, [(CIGAR_MATCH, 10)])],
            read_groups=[("L1", "S1", "FC1.1"), ("L2", "S1", "FC1.2"), ("L3", "S1")],
        )
        assert read_group_platform_units(path) == {"L1": "FC1.1", "L2": "FC1.2"}
