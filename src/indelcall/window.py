"""Sliding coverage window over a contiguous stretch of the reference.

The window holds, for a fixed number of reference positions starting at
``start``, the indel observations anchored at each position, plus every
buffered read with its per-base mismatch flags and base qualities. Indels are
anchored at the first reference position *after* the event: the first
deleted base for a deletion, the first base following an insertion.

Examples:
    >>> w = SlidingWindow(0, 200)
    >>> w.start, w.stop
    (0, 199)
    >>> w.has_indels_in_interval(10, 10)
    False
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass

from indelcall.bam import (
    CIGAR_DEL,
    CIGAR_HARD_CLIP,
    CIGAR_INS,
    CIGAR_SOFT_CLIP,
    MATCH_OPS,
)
from indelcall.errors import (
    IndelAtWindowStartError,
    IndelOutOfWindowError,
    UnsupportedCigarError,
)
from indelcall.models import AlignmentRecord, IndelKind, IndelObservation

logger = logging.getLogger(__name__)

MATCH = 0
MISMATCH = 1
GAP = -1  # deleted reference base: no read base observed

NO_INDELS: tuple[IndelObservation, ...] = ()


@dataclass
class BufferedRead:
    """A read held by the window along with its per-reference-base tracks.

    ``flags[i]`` and ``quals[i]`` describe reference position
    ``record.start + i``.
    """

    record: AlignmentRecord
    flags: list[int]
    quals: list[int]
    mismatches: int


class _CircularSlots:
    """Fixed-size ring of indel lists addressed by offset from the window start."""

    def __init__(self, length: int) -> None:
        self._slots: list[list[IndelObservation] | None] = [None] * length
        self._head = 0

    def __len__(self) -> int:
        return len(self._slots)

    def _index(self, offset: int) -> int:
        if not 0 <= offset < len(self._slots):
            raise IndexError(offset)
        return (self._head + offset) % len(self._slots)

    def get(self, offset: int) -> list[IndelObservation] | None:
        """Indel list at ``offset`` from the head, or None if the slot is empty."""
        return self._slots[self._index(offset)]

    def set(self, offset: int, value: list[IndelObservation] | None) -> None:
        self._slots[self._index(offset)] = value

    def shift(self, offset: int) -> None:
        """Move the head forward, emptying the slots that fall behind it."""
        length = len(self._slots)
        if offset >= length:
            self.clear()
            return
        for k in range(offset):
            self._slots[(self._head + k) % length] = None
        self._head = (self._head + offset) % length

    def clear(self) -> None:
        self._slots = [None] * len(self._slots)
        self._head = 0


class SlidingWindow:
    """Bounded buffer of reads and indel observations over ``[start, stop]``.

    Args:
        start: 1-based reference position of the first window slot.
        length: Window capacity in reference bases.
    """

    def __init__(self, start: int = 0, length: int = 200) -> None:
        if length <= 0:
            raise ValueError(f"window length must be positive, got {length}")
        self._start = start
        self._indels = _CircularSlots(length)
        self._reads: list[BufferedRead] = []

    def __repr__(self) -> str:
        return f"SlidingWindow({self.start}-{self.stop}, reads={len(self._reads)})"

    @property
    def start(self) -> int:
        """1-based position of the first slot."""
        return self._start

    @property
    def stop(self) -> int:
        """1-based position of the last slot (inclusive)."""
        return self._start + len(self._indels) - 1

    @property
    def length(self) -> int:
        return len(self._indels)

    @property
    def reads(self) -> Sequence[BufferedRead]:
        """Buffered reads in insertion order."""
        return tuple(self._reads)

    def clear(self) -> None:
        """Drop all reads and indels and move the window back to position 0."""
        self._start = 0
        self._reads.clear()
        self._indels.clear()

    def indels_at(self, pos: int) -> Sequence[IndelObservation]:
        """Indel observations anchored at 1-based ``pos`` (empty outside the window)."""
        offset = pos - self._start
        if not 0 <= offset < len(self._indels):
            return NO_INDELS
        found = self._indels.get(offset)
        return found if found else NO_INDELS

    def has_indels_at(self, pos: int) -> bool:
        return bool(self.indels_at(pos))

    def has_indels_in_interval(self, begin: int, end: int) -> bool:
        """True if any position in ``[max(start, begin), min(stop, end))`` holds indels.

        The upper bound is exclusive, so ``stop`` itself is never inspected.
        """
        for pos in range(max(self._start, begin), min(self.stop, end)):
            if self.has_indels_at(pos):
                return True
        return False

    def clear_position(self, pos: int) -> None:
        """Forget the indel observations anchored at ``pos``."""
        offset = pos - self._start
        if 0 <= offset < len(self._indels):
            self._indels.set(offset, None)

    def coverage_at(self, pos: int) -> int:
        """Number of buffered reads whose alignment spans ``pos``."""
        return sum(1 for r in self._reads if r.record.start <= pos <= r.record.end)

    def shift(self, offset: int) -> None:
        """Advance the window by ``offset`` bases, dropping data that scrolled out.

        Raises:
            ValueError: If ``offset`` is negative.
            IndelAtWindowStartError: If the new first position still holds indels.
        """
        if offset < 0:
            raise ValueError(f"window can only move forward, got offset {offset}")
        self._start += offset
        self._indels.shift(offset)
        first = self._indels.get(0)
        if first:
            indel = first[0]
            read = next(iter(indel.reads))
            raise IndelAtWindowStartError(
                f"Indel found at the first position ({self._start}) after a shift: "
                f"{'+' if indel.kind is IndelKind.INSERTION else '-'}{indel.bases}; read {read.name}"
            )
        self._reads = [r for r in self._reads if r.record.end >= self._start]

    def insert(self, read: AlignmentRecord, reference_bases: str) -> None:
        """Buffer ``read`` and record its mismatches, qualities and indels.

        Args:
            read: A read already known to lie within ``[start, stop]``.
            reference_bases: Reference bases aligned to ``read.start``, covering
                at least ``[read.start, read.end]``.

        Raises:
            IndelOutOfWindowError: If an indel anchor falls outside the window.
            UnsupportedCigarError: For CIGAR operations other than M/=/X/I/D/S/H.
        """
        span = read.end - read.start + 1
        flags = [MATCH] * span
        quals = [0] * span
        seq = read.sequence.upper()
        local_start = read.start - self._start
        pos_on_read = 0
        pos_on_ref = 0
        mismatches = 0

        for i, (op, length) in enumerate(read.cigar):
            if op in MATCH_OPS:
                for _ in range(length):
                    if seq[pos_on_read] != reference_bases[pos_on_ref].upper():
                        mismatches += 1
                        flags[pos_on_ref] = MISMATCH
                    if read.qualities is not None:
                        quals[pos_on_ref] = read.qualities[pos_on_read]
                    pos_on_ref += 1
                    pos_on_read += 1
            elif op == CIGAR_SOFT_CLIP:
                # alignment start already points past clipped bases
                pos_on_read += length
            elif op == CIGAR_HARD_CLIP:
                continue
            elif op == CIGAR_INS:
                bases = seq[pos_on_read : pos_on_read + length]
                self._observe(read, local_start + pos_on_ref, IndelKind.INSERTION, bases, i)
                pos_on_read += length
            elif op == CIGAR_DEL:
                bases = reference_bases[pos_on_ref : pos_on_ref + length]
                self._observe(read, local_start + pos_on_ref, IndelKind.DELETION, bases, i)
                for _ in range(length):
                    flags[pos_on_ref] = GAP
                    quals[pos_on_ref] = GAP
                    pos_on_ref += 1
            else:
                raise UnsupportedCigarError(
                    f"Read {read.name}: unexpected CIGAR operation {op}"
                )

        self._reads.append(BufferedRead(read, flags, quals, mismatches))

    def _observe(
        self,
        read: AlignmentRecord,
        offset: int,
        kind: IndelKind,
        bases: str,
        element: int,
    ) -> None:
        if element == 0:
            logger.debug("Indel at the start of read %s", read.name)
        elif element == len(read.cigar) - 1:
            logger.debug("Indel at the end of read %s", read.name)
        try:
            site = self._indels.get(offset)
        except IndexError:
            raise IndelOutOfWindowError(
                f"Read {read.name}: indel at {self._start + offset} is outside the "
                f"window {self.start}-{self.stop}; the window is probably too small"
            ) from None
        if site is None:
            site = []
            self._indels.set(offset, site)
        for observation in site:
            if observation.matches(kind, bases):
                observation.add(read)
                return
        observation = IndelObservation(kind, bases)
        observation.add(read)
        site.append(observation)
