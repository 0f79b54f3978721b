"""Classification of a read's alignments as mapped, unmapped, fragmentary or suspicious."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Sequence

from alignomatic.bam import BamRecord
from alignomatic.utils import block_filter

if TYPE_CHECKING:
    from alignomatic.cli import ProgramOptions

_CLIP_OPS = frozenset("SH")
_READ_CONSUMING_OPS = frozenset("M=XI")


class StatusKind(enum.Enum):
    """The kinds of mapping outcome for one read."""

    MAPPED = "mapped"
    UNMAPPED = "unmapped"
    FRAGMENTARY = "fragmentary"
    SUSPICIOUS = "suspicious"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class MappingStatus:
    """A mapping outcome; fragmentary reads carry the read positions left unmapped."""

    kind: StatusKind
    positions: frozenset[int] = field(default_factory=frozenset)

    @classmethod
    def mapped(cls) -> MappingStatus:
        return cls(StatusKind.MAPPED)

    @classmethod
    def unmapped(cls) -> MappingStatus:
        return cls(StatusKind.UNMAPPED)

    @classmethod
    def suspicious(cls) -> MappingStatus:
        return cls(StatusKind.SUSPICIOUS)

    @classmethod
    def unknown(cls) -> MappingStatus:
        return cls(StatusKind.UNKNOWN)

    @classmethod
    def fragmentary(cls, positions) -> MappingStatus:
        return cls(StatusKind.FRAGMENTARY, frozenset(positions))


def get_clipped_positions(record: BamRecord) -> list[int]:
    """Return the read positions (in original read orientation) that the alignment clips."""
    if record.is_unmapped():
        return list(range(record.seq_len()))

    ops = reversed(record.cigar) if record.is_reverse() else iter(record.cigar)
    positions: list[int] = []
    pos = 0
    for op in ops:
        if op.op in _CLIP_OPS:
            positions.extend(range(pos, pos + op.length))
            pos += op.length
        elif op.op in _READ_CONSUMING_OPS:
            pos += op.length
    return positions


def get_mapping_status(records: Sequence[BamRecord], opts: ProgramOptions) -> MappingStatus:
    """Classify one read from all of its alignment records."""
    aligned = [record for record in records if not record.is_unmapped()]
    if not aligned:
        return MappingStatus.unmapped()

    first = aligned[0]
    read_name = first.qname
    is_first = first.is_first_in_template()
    length = first.seq_len()

    positions = set(get_clipped_positions(first))
    for record in aligned[1:]:
        if record.qname != read_name:
            raise ValueError("Read names do not match")
        if record.is_first_in_template() != is_first:
            raise ValueError("Reads are not all the same position in the pair")
        if record.seq_len() != length:
            raise ValueError("Reads are not all the same length")

        clipped = set(get_clipped_positions(record))
        if not clipped:
            return MappingStatus.mapped()
        positions &= clipped
        if not positions:
            return MappingStatus.mapped()

    if not positions:
        return MappingStatus.mapped()
    if len(positions) == length:
        return MappingStatus.suspicious()

    kept = block_filter(positions, first.qual, opts.min_block_size, opts.min_block_quality)
    if not kept:
        return MappingStatus.mapped()
    return MappingStatus.fragmentary(kept)