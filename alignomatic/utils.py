"""Position blocks, fragment extraction, file checks and record conversion helpers."""

from __future__ import annotations

import os
import sys
from contextlib import contextmanager
from dataclasses import dataclass
from itertools import groupby
from pathlib import Path
from typing import Iterable, Iterator, Sequence

from alignomatic.bam import BamRecord
from alignomatic.fastq import FastqRecord

_COMPLEMENT = str.maketrans(
    "ACGTRYSWKMBDHVNacgtryswkmbdhvn",
    "TGCAYRSWMKVHDBNtgcayrswmkvhdbn",
)


@contextmanager
def silence_stderr() -> Iterator[None]:
    """Redirect the process-level standard error to the null device for the duration of the block."""
    sys.stderr.flush()
    saved = os.dup(2)
    try:
        with open(os.devnull, "wb") as devnull:
            os.dup2(devnull.fileno(), 2)
        try:
            yield
        finally:
            sys.stderr.flush()
            os.dup2(saved, 2)
    finally:
        os.close(saved)


@dataclass(frozen=True)
class Block:
    """A contiguous range of positions, inclusive of ``start`` and exclusive of ``end``."""

    start: int
    end: int

    def __len__(self) -> int:
        return self.end - self.start

    def positions(self) -> range:
        return range(self.start, self.end)


def to_blocks(positions: Iterable[int]) -> list[Block]:
    """Group a set of positions into sorted, contiguous blocks."""
    ordered = sorted(set(positions))
    blocks = []
    for _, run in groupby(enumerate(ordered), key=lambda item: item[1] - item[0]):
        members = [pos for _, pos in run]
        blocks.append(Block(members[0], members[-1] + 1))
    return blocks


def block_filter(
    positions: Iterable[int],
    qual: Sequence[int],
    min_block_size: int,
    min_avg_qual: float,
) -> set[int]:
    """Keep the positions of blocks that are long enough and of high enough average quality."""
    kept: set[int] = set()
    for block in to_blocks(positions):
        if len(block) < min_block_size:
            continue
        average = sum(qual[pos] for pos in block.positions()) / len(block)
        if average >= min_avg_qual:
            kept.update(block.positions())
    return kept


def fastq_to_unmapped_fragments(record: FastqRecord, positions: Iterable[int]) -> list[FastqRecord]:
    """Cut ``record`` into one fragment per contiguous block of ``positions``."""
    return [record.slice(block.start, block.end) for block in to_blocks(positions)]


def check_file_exists(path: str | os.PathLike) -> None:
    """Raise FileNotFoundError if ``path`` does not exist."""
    if not os.path.exists(path):
        raise FileNotFoundError(f"File not found: {os.fspath(path)}")


def check_directory_exists(path: str | os.PathLike) -> None:
    """Raise unless ``path`` exists and is a directory."""
    if not os.path.exists(path):
        raise FileNotFoundError(f"Directory not found: {os.fspath(path)}")
    if not os.path.isdir(path):
        raise NotADirectoryError(f"Path is not a directory: {os.fspath(path)}")


def bam_to_fastq(record: BamRecord) -> FastqRecord:
    """Recover the original read from a primary alignment, undoing reverse-strand orientation."""
    if record.is_secondary() or record.is_supplementary():
        raise ValueError("Secondary or supplementary alignment")
    seq = record.seq
    qual = "".join(chr((q + 33) % 256) for q in record.qual)
    if record.is_reverse():
        seq = seq.translate(_COMPLEMENT)[::-1]
        qual = qual[::-1]
    return FastqRecord(record.qname, seq, qual)


def normalize_path(path: str | os.PathLike) -> Path:
    """Make ``path`` absolute against the working directory and resolve '.' and '..' lexically."""
    stack: list[str] = []
    for part in (Path.cwd() / path).parts:
        if part == "..":
            if stack:
                stack.pop()
        elif part != ".":
            stack.append(part)
    return Path(*stack)