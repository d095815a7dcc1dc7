"""Streaming controller: feeds sorted reads into the window(s) and emits calls.

Reads are consumed one at a time. The window is only shifted when an
incoming read does not fit into it; at that point every indel anchored
before the read's start (reads are sorted, so no more coverage can arrive
there) is evaluated and emitted, unless its NQS flank still reaches past the
shift target, in which case the shift is cut short to keep it in view.

In somatic mode two windows, normal and tumor, are kept in lock step: they
always share the same start and stop.
"""

from __future__ import annotations

import enum
import logging
import sys
from collections.abc import Iterable, Iterator
from dataclasses import dataclass

from indelcall.bam import anchored_end
from indelcall.config import CallerConfig
from indelcall.decision import Decision, classify, is_call
from indelcall.errors import (
    ConfigError,
    ContigOrderError,
    DriverStateError,
    MissingReadGroupError,
    PositionAdjustmentError,
    ReadOrderError,
    ReadTooWideError,
    UnknownReadGroupError,
)
from indelcall.models import AlignmentRecord, CallStatus, IndelCall
from indelcall.precall import CallStatistics
from indelcall.window import SlidingWindow

logger = logging.getLogger(__name__)

# shift target that flushes everything held by the windows
FLUSH_POSITION = sys.maxsize

# phase one of adjust_position: jumps of nqs_width to the left
MAX_NQS_JUMPS = 4
# phase two of adjust_position: single-base steps to the left
MAX_SINGLE_STEPS = 50


class DriverState(enum.Enum):
    AWAITING_FIRST_RECORD = "awaiting_first_record"
    STREAMING = "streaming"
    DRAINING = "draining"


@dataclass
class Screening:
    """Statistics of a candidate position that passed the coverage minimums."""

    primary: CallStatistics
    normal: CallStatistics | None = None


def _make_call(
    contig: str,
    status: CallStatus,
    stats: CallStatistics,
    normal: CallStatistics | None = None,
) -> IndelCall:
    variant = stats.variant
    return IndelCall(
        contig=contig,
        position=stats.position,
        kind=variant.kind,
        bases=variant.bases,
        status=status,
        consensus_count=stats.consensus_count,
        all_indel_count=stats.all_indel_count,
        coverage=stats.coverage,
        samples=frozenset(variant.samples),
        stats=stats.summary(),
        normal_stats=normal.summary() if normal is not None else None,
    )


class UnifiedTrack:
    """All reads go to one window, processed as a single sample."""

    def __init__(self, config: CallerConfig) -> None:
        self.config = config
        self.window = SlidingWindow(0, config.window_size)

    @property
    def windows(self) -> tuple[SlidingWindow, ...]:
        return (self.window,)

    @property
    def primary(self) -> SlidingWindow:
        return self.window

    def route(self, record: AlignmentRecord) -> SlidingWindow:
        return self.window

    def screen(self, pos: int) -> Screening | None:
        coverage = self.window.coverage_at(pos)
        if coverage < self.config.min_coverage:
            logger.debug("Indel at %d; coverage=%d (SKIPPED)", pos, coverage)
            return None
        return Screening(CallStatistics(self.window, pos, self.config.nqs_width))

    def evaluate(self, screening: Screening, contig: str) -> IndelCall | None:
        stats = screening.primary
        decision = classify(stats, self.config.thresholds)
        if decision is Decision.TOO_DIRTY:
            return _make_call(contig, CallStatus.TOO_DIRTY, stats)
        if decision is Decision.CALL:
            return _make_call(contig, CallStatus.CALL, stats)
        return None


class PerSampleTrack:
    """Normal and tumor reads go to separate, synchronized windows.

    Args:
        config: Run configuration.
        normal_read_groups: Read group ids of the normal sample.
        tumor_read_groups: Read group ids of the tumor sample.
    """

    def __init__(
        self,
        config: CallerConfig,
        normal_read_groups: Iterable[str],
        tumor_read_groups: Iterable[str],
    ) -> None:
        self.config = config
        self.normal = SlidingWindow(0, config.window_size)
        self.tumor = SlidingWindow(0, config.window_size)
        self.normal_read_groups = frozenset(normal_read_groups)
        self.tumor_read_groups = frozenset(tumor_read_groups)
        logger.info(
            "%d normal read groups, %d tumor read groups",
            len(self.normal_read_groups),
            len(self.tumor_read_groups),
        )

    @property
    def windows(self) -> tuple[SlidingWindow, ...]:
        return (self.normal, self.tumor)

    @property
    def primary(self) -> SlidingWindow:
        return self.tumor

    def route(self, record: AlignmentRecord) -> SlidingWindow:
        rg = record.read_group
        if rg is None:
            raise MissingReadGroupError(
                f"Read {record.name} has no read group; read groups are required for somatic calls"
            )
        if rg in self.normal_read_groups:
            return self.normal
        if rg in self.tumor_read_groups:
            return self.tumor
        raise UnknownReadGroupError(f"Read {record.name}: unrecognized read group {rg}")

    def screen(self, pos: int) -> Screening | None:
        tumor_coverage = self.tumor.coverage_at(pos)
        if tumor_coverage < self.config.min_coverage:
            logger.debug("Indel in tumor at %d; coverage in tumor=%d (SKIPPED)", pos, tumor_coverage)
            return None
        normal_coverage = self.normal.coverage_at(pos)
        if normal_coverage < self.config.min_normal_coverage:
            logger.debug("Indel in tumor at %d; coverage in normal=%d (SKIPPED)", pos, normal_coverage)
            return None
        nqs = self.config.nqs_width
        return Screening(CallStatistics(self.tumor, pos, nqs), CallStatistics(self.normal, pos, nqs))

    def evaluate(self, screening: Screening, contig: str) -> IndelCall | None:
        tumor, normal = screening.primary, screening.normal
        if normal.fails_nqs_mismatch():
            return _make_call(contig, CallStatus.NORMAL_TOO_DIRTY, tumor, normal)
        if tumor.fails_nqs_mismatch():
            return _make_call(contig, CallStatus.TUMOR_TOO_DIRTY, tumor, normal)
        if is_call(tumor, self.config.thresholds):
            status = CallStatus.GERMLINE if normal.has_observation else CallStatus.SOMATIC
            return _make_call(contig, status, tumor, normal)
        return None


class WindowDriver:
    """Consume sorted alignment records and emit indel calls.

    Args:
        config: Run configuration; ``config.somatic`` selects two windows.
        normal_read_groups: Normal read group ids (somatic mode only).
        tumor_read_groups: Tumor read group ids (somatic mode only).
        excluded_read_groups: Read group ids whose reads are ignored.

    Examples:
        >>> from indelcall.config import load_config
        >>> driver = WindowDriver(load_config())
        >>> driver.state
        <DriverState.AWAITING_FIRST_RECORD: 'awaiting_first_record'>
        >>> driver.finish()
        []
    """

    def __init__(
        self,
        config: CallerConfig,
        normal_read_groups: Iterable[str] | None = None,
        tumor_read_groups: Iterable[str] | None = None,
        excluded_read_groups: Iterable[str] = (),
    ) -> None:
        self.config = config
        self.excluded_read_groups = frozenset(excluded_read_groups)
        if config.somatic:
            if normal_read_groups is None or tumor_read_groups is None:
                raise ConfigError("somatic mode requires normal and tumor read groups")
            self.track: UnifiedTrack | PerSampleTrack = PerSampleTrack(
                config, normal_read_groups, tumor_read_groups
            )
        else:
            self.track = UnifiedTrack(config)
        self.state = DriverState.AWAITING_FIRST_RECORD
        self.contig: str | None = None
        self.contig_index: int | None = None
        self.last_position = -1
        self.last_read: AlignmentRecord | None = None
        self.reads_used = 0
        self.reads_filtered = 0
        self.calls_emitted = 0

    @property
    def windows(self) -> tuple[SlidingWindow, ...]:
        return self.track.windows

    @property
    def start(self) -> int:
        return self.track.primary.start

    @property
    def stop(self) -> int:
        return self.track.primary.stop

    def is_usable(self, record: AlignmentRecord) -> bool:
        """False for reads the caller ignores.

        Unmapped, duplicate, secondary and MAPQ 0 reads are skipped, as are
        reads stored without bases (SEQ ``*``) and reads from excluded
        read groups (blacklisted lanes).
        """
        return not (
            record.is_unmapped
            or record.is_duplicate
            or record.is_secondary
            or record.mapping_quality == 0
            or not record.sequence
            or record.read_group in self.excluded_read_groups
        )

    def process(self, record: AlignmentRecord, reference_bases: str) -> list[IndelCall]:
        """Add one record to the window(s), returning calls emitted to make room.

        Args:
            record: The next record of the coordinate-sorted stream.
            reference_bases: Reference bases for ``[record.start, record.end]``.

        Raises:
            IndelCallError: On any ordering, capacity or read group violation.
        """
        if self.state is DriverState.DRAINING:
            raise DriverStateError("driver already finished; no more records accepted")
        if not self.is_usable(record):
            self.reads_filtered += 1
            return []

        calls: list[IndelCall] = []
        if record.contig_index != self.contig_index:
            calls.extend(self._switch_contig(record))

        if record.start < self.last_position:
            last = self.last_read
            raise ReadOrderError(
                f"Read {record.name} out of order on the contig: starts at "
                f"{record.contig}:{record.start}; last read seen started at "
                f"{record.contig}:{self.last_position} ({last.name if last else '?'})"
            )
        self.last_position = record.start

        if record.start < self.start:
            raise ReadOrderError(
                f"Read {record.name} out of order on the contig: starts at "
                f"{record.contig}:{record.start}; window starts at {self.start}"
            )
        self.last_read = record

        if anchored_end(record) > self.stop:
            logger.debug(
                "Window at %d-%d, read at %d: trying to emit and shift",
                self.start,
                self.stop,
                record.start,
            )
            calls.extend(self.emit(record.start, force=False))
            if anchored_end(record) > self.stop:
                raise ReadTooWideError(
                    f"Read {record.name} does not fit into the window; the window is "
                    f"probably too small. start={record.start} end={record.end}; window "
                    f"after shift={self.start}-{self.stop}"
                )

        self.track.route(record).insert(record, reference_bases)
        self.reads_used += 1
        return calls

    def _switch_contig(self, record: AlignmentRecord) -> list[IndelCall]:
        if self.contig_index is not None and record.contig_index < self.contig_index:
            raise ContigOrderError(
                f"Read {record.name}: contig {record.contig} is out of order; input is unsorted"
            )
        calls = self.emit(FLUSH_POSITION, force=True)
        logger.info("Moved to contig %s", record.contig)
        self.contig = record.contig
        self.contig_index = record.contig_index
        self.last_position = record.start
        for window in self.windows:
            window.clear()
        self.state = DriverState.STREAMING
        return calls

    def finish(self) -> list[IndelCall]:
        """Emit everything still held and stop accepting records."""
        calls = self.emit(FLUSH_POSITION, force=True) if self.state is DriverState.STREAMING else []
        self.state = DriverState.DRAINING
        logger.info(
            "Done: %d reads used, %d filtered, %d records emitted",
            self.reads_used,
            self.reads_filtered,
            self.calls_emitted,
        )
        return calls

    def run(self, pairs: Iterable[tuple[AlignmentRecord, str]]) -> Iterator[IndelCall]:
        """Process ``(record, reference_bases)`` pairs and yield every emitted call."""
        for record, reference_bases in pairs:
            yield from self.process(record, reference_bases)
        yield from self.finish()

    def _has_indels_in_interval(self, begin: int, end: int) -> bool:
        return any(w.has_indels_in_interval(begin, end) for w in self.windows)

    def _has_indels_at(self, pos: int) -> bool:
        return any(w.has_indels_at(pos) for w in self.windows)

    def adjust_position(self, request: int) -> int:
        """Move a requested shift target left so that no NQS window is broken.

        First tries, up to four times, to step ``nqs_width`` bases left while
        an indel lies within ``nqs_width`` bases ahead of the target. If that
        fails, goes back to the request and steps left one base at a time
        until the target itself holds no indel.

        Raises:
            PositionAdjustmentError: If 50 single steps find no indel-free position.
        """
        nqs = self.config.nqs_width
        initial = request
        attempts = 0
        failure = False
        while self._has_indels_in_interval(request, request + nqs):
            request -= nqs
            logger.debug("Indel observations within %d bases ahead; shift reset to %d", nqs, request)
            attempts += 1
            if attempts == MAX_NQS_JUMPS:
                failure = True
                break

        # the interval scan never inspects stop, so the target itself may hold an indel
        if not failure and self._has_indels_at(request):
            logger.debug("Indel observation at shift target %d", request)
            failure = True

        if failure:
            request = initial
            attempts = 0
            while self._has_indels_at(request):
                request -= 1
                logger.debug("Indel observation at shift target; shift reset to %d", request)
                attempts += 1
                if attempts == MAX_SINGLE_STEPS:
                    raise PositionAdjustmentError(
                        f"Indel at every position in the interval [{request}, {initial}]; "
                        "can not find a break to shift the window to"
                    )
        return request

    def emit(self, target: int, force: bool = False) -> list[IndelCall]:
        """Evaluate indels before ``target`` and shift the window(s) towards it.

        Args:
            target: Requested new window start.
            force: Emit everything up to ``target`` even if more coverage could
                still arrive for indels close to it.

        Returns:
            Calls and too-dirty records, in position order.
        """
        target = self.adjust_position(target)
        move_to = target
        primary = self.track.primary
        start, stop = primary.start, primary.stop
        nqs = self.config.nqs_width
        calls: list[IndelCall] = []

        for pos in range(start, min(target, stop + 1)):
            if not primary.has_indels_at(pos):
                continue
            screening = self.track.screen(pos)
            if screening is None:
                continue

            left = max(pos - nqs, start)
            right = pos + screening.primary.event_length + nqs - 1
            if right >= target and not force:
                # more coverage may still arrive for this indel; keep it in view
                move_to = self.adjust_position(left)
                logger.debug("Waiting for coverage at %d; actual shift to %d", pos, move_to)
                break
            if right > stop:
                logger.debug("Indel at %d flushed with NQS flank cut at %d", pos, stop)

            call = self.track.evaluate(screening, self.contig or "")
            if call is not None:
                calls.append(call)
            for window in self.windows:
                window.clear_position(pos)

        self.calls_emitted += len(calls)
        offset = move_to - start
        logger.debug("Actual shift to %d (%d requested)", move_to, target)
        if offset > 0:
            for window in self.windows:
                window.shift(offset)
        return calls
