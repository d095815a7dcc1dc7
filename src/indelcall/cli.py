"""Click CLI for indelcall."""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterator
from pathlib import Path

import click

from indelcall.bam import (
    ReferenceSlicer,
    iter_alignments,
    read_group_platform_units,
    read_group_samples,
)
from indelcall.config import OUTPUT_FORMATS, load_config
from indelcall.driver import WindowDriver
from indelcall.errors import IndelCallError
from indelcall.models import AlignmentRecord
from indelcall.output import write_calls

logger = logging.getLogger(__name__)


def _setup_logging(verbosity: int) -> None:
    """Configure root logging on stderr: WARNING, INFO (-v) or DEBUG (-vv)."""
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
    )


def _with_reference(
    records: Iterator[AlignmentRecord], reference: ReferenceSlicer
) -> Iterator[tuple[AlignmentRecord, str]]:
    for record in records:
        yield record, reference.for_record(record)


@click.command(
    context_settings={"help_option_names": ["-h", "--help"]},
    epilog="Somatic mode: the first --bam is the normal sample, the second the tumor:\n\n"
    "  indelcall --somatic --bam normal.bam --bam tumor.bam --ref ref.fa -o calls.bed",
)
@click.option(
    "--bam",
    "bams",
    multiple=True,
    required=True,
    type=click.Path(exists=True, dir_okay=False),
    help="Coordinate-sorted BAM file(s). Without --somatic they are merged as one sample.",
)
@click.option(
    "--ref",
    required=True,
    type=click.Path(exists=True, dir_okay=False),
    help="Indexed reference FASTA.",
)
@click.option(
    "-o",
    "--output",
    required=True,
    type=click.Path(dir_okay=False, writable=True),
    help="Output file for accepted calls.",
)
@click.option(
    "--details",
    type=click.Path(dir_okay=False, writable=True),
    help="Also write every emitted record with full statistics here.",
)
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False),
    help="YAML file overriding the default parameters.",
)
@click.option("--somatic", is_flag=True, help="Call somatic indels (normal + tumor BAM).")
@click.option(
    "--1kg",
    "one_kg",
    is_flag=True,
    help="Write calls in 1000 Genomes format instead of BED.",
)
@click.option("--window-size", type=int, help="Window capacity in reference bases.  [default: 200]")
@click.option("--nqs-width", type=int, help="Bases on each side of an indel for NQS statistics.  [default: 5]")
@click.option("--min-coverage", type=int, help="Minimum coverage (tumor coverage with --somatic).  [default: 6]")
@click.option("--min-normal-coverage", type=int, help="Minimum normal coverage with --somatic.  [default: 4]")
@click.option(
    "--min-fraction",
    type=float,
    help="Minimum fraction of consensus indel reads out of all covering reads.  [default: 0.3]",
)
@click.option(
    "--min-consensus-fraction",
    type=float,
    help="Minimum fraction of consensus indel reads out of all indel reads.  [default: 0.7]",
)
@click.option("--min-indel-count", type=int, help="Minimum number of consensus indel reads.  [default: 0]")
@click.option(
    "--blacklisted-lanes",
    multiple=True,
    help="Ignore reads from read groups whose platform unit (PU) is listed. Repeatable "
    "or comma-separated.",
)
@click.option("-v", "--verbose", count=True, help="Increase log verbosity (-v info, -vv debug).")
def main(
    bams,
    ref,
    output,
    details,
    config_path,
    somatic,
    one_kg,
    window_size,
    nqs_width,
    min_coverage,
    min_normal_coverage,
    min_fraction,
    min_consensus_fraction,
    min_indel_count,
    blacklisted_lanes,
    verbose,
):
    """Detect and genotype short indels from sorted alignments.

    Reads are streamed through a sliding window over the reference; indels
    with enough consensus support and clean flanks are reported. With
    --somatic, indels in the tumor are classified as SOMATIC or GERMLINE
    against the matched normal.
    """
    _setup_logging(verbose)
    try:
        config = load_config(
            config_path,
            window_size=window_size,
            nqs_width=nqs_width,
            min_coverage=min_coverage,
            min_normal_coverage=min_normal_coverage,
            min_fraction=min_fraction,
            min_consensus_fraction=min_consensus_fraction,
            min_indel_count=min_indel_count,
            somatic=True if somatic else None,
            output_format=OUTPUT_FORMATS[1] if one_kg else None,
        )
    except IndelCallError as err:
        raise click.UsageError(str(err)) from err

    normal_groups: set[str] | None = None
    tumor_groups: set[str] | None = None
    if config.somatic:
        if len(bams) != 2:
            raise click.UsageError("--somatic requires exactly two --bam files (normal, tumor)")
        normal_groups = set(read_group_samples(bams[0]))
        tumor_groups = set(read_group_samples(bams[1]))
        shared = normal_groups & tumor_groups
        if shared:
            raise click.UsageError(
                f"Read groups present in both normal and tumor BAM: {', '.join(sorted(shared))}"
            )
    elif len(bams) > 1:
        logger.warning(
            "Multiple input files without --somatic; they will be merged and processed as a single sample"
        )

    lanes = {lane.strip() for value in blacklisted_lanes for lane in value.split(",") if lane.strip()}
    excluded: set[str] = set()
    if lanes:
        for bam in bams:
            excluded.update(rg for rg, pu in read_group_platform_units(bam).items() if pu in lanes)
        logger.info("Ignoring %d read groups from blacklisted lanes", len(excluded))

    driver = WindowDriver(config, normal_groups, tumor_groups, excluded)
    details_handle = open(details, "w") if details else None
    try:
        with ReferenceSlicer(ref) as reference, open(output, "w") as out:
            pairs = _with_reference(iter_alignments(list(bams)), reference)
            counts = write_calls(driver.run(pairs), out, config.output_format, details_handle)
    except IndelCallError as err:
        raise click.ClickException(f"{err.__class__.__name__}: {err}") from err
    finally:
        if details_handle is not None:
            details_handle.close()

    for status, n in sorted(counts.items(), key=lambda kv: kv[0].value):
        logger.info("%s: %d", status.value, n)
    click.echo(f"Wrote {sum(n for s, n in counts.items() if s.is_accepted)} calls to {Path(output)}")
