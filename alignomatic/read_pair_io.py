"""Paired FASTQ input and grouping of alignments by read pair."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from itertools import islice
from typing import Any, Iterator

from alignomatic.bam import BamRecord
from alignomatic.fastq import FastqRecord, open_input, read_fastq


def _strip_comment(read_id: str) -> str | None:
    parts = read_id.split()
    return parts[0] if parts else None


@dataclass(frozen=True)
class ReadPair:
    """Two mates whose read names agree once comments are stripped."""

    read1: FastqRecord
    read2: FastqRecord
    id: str = field(init=False)

    def __post_init__(self) -> None:
        first = _strip_comment(self.read1.id)
        if first != _strip_comment(self.read2.id):
            raise ValueError(f"Read IDs do not match: {self.read1.id} != {self.read2.id}")
        if first is None:
            raise ValueError("Read IDs are empty")
        object.__setattr__(self, "id", first)


class ReadPairIterator:
    """Iterates over read pairs from two FASTQ files, stopping at the first end, error or mismatch."""

    def __init__(self, file1: str | os.PathLike, file2: str | os.PathLike) -> None:
        self._handle1 = open_input(file1)
        try:
            self._handle2 = open_input(file2)
        except BaseException:
            self._handle1.close()
            raise
        self._pairs = self._generate()

    def _generate(self) -> Iterator[ReadPair]:
        try:
            for read1, read2 in zip(read_fastq(self._handle1), read_fastq(self._handle2)):
                try:
                    pair = ReadPair(read1, read2)
                except ValueError:
                    return
                yield pair
        except (ValueError, OSError, EOFError):
            return

    def __iter__(self) -> ReadPairIterator:
        return self

    def __next__(self) -> ReadPair:
        return next(self._pairs)

    def take_pairs(self, batch_size: int) -> list[ReadPair]:
        """Return up to ``batch_size`` read pairs."""
        return list(islice(self._pairs, batch_size))

    def take_bases(self, base_pairs: int) -> list[ReadPair]:
        """Return read pairs until at least ``base_pairs`` bases have been collected or input ends."""
        batch: list[ReadPair] = []
        collected = 0
        while collected < base_pairs:
            pair = next(self._pairs, None)
            if pair is None:
                break
            batch.append(pair)
            collected += len(pair.read1.seq) + len(pair.read2.seq)
        return batch

    def close(self) -> None:
        self._handle1.close()
        self._handle2.close()

    def __enter__(self) -> ReadPairIterator:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


@dataclass
class SequencingRead:
    """A read with its alignments; ``status`` stays None until the read is classified."""

    fastq: FastqRecord
    alignments: list[BamRecord] = field(default_factory=list)
    status: Any = None


@dataclass
class MappedReadPair:
    """The alignments of both mates of one read pair."""

    id: str
    read1: list[BamRecord] = field(default_factory=list)
    read2: list[BamRecord] = field(default_factory=list)

    def insert(self, record: BamRecord) -> None:
        """File ``record`` under the first or second mate according to its flags."""
        if record.is_first_in_template():
            self.read1.append(record)
        else:
            self.read2.append(record)