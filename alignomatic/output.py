"""A set of BGZF FASTQ outputs, one per pairing category, under one output directory."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Iterable

from alignomatic.fastq import FastqRecord, FastqWriter, create_bgzf_fastq_writer

SUBDIRECTORIES = (
    "unmapped_pairs",
    "mapped_unmapped_pairs",
    "mapped_partial_pairs",
    "unmapped_partial_pairs",
    "partial_pairs",
    "unmapped_fragments",
)

OUTPUT_FILES = {
    "uuu1": "unmapped_pairs/u1.fq.gz",
    "uuu2": "unmapped_pairs/u2.fq.gz",
    "mum1": "mapped_unmapped_pairs/mapped_unmapped_m1.fq.gz",
    "muu2": "mapped_unmapped_pairs/mapped_unmapped_u2.fq.gz",
    "muu1": "mapped_unmapped_pairs/unmapped_mapped_u1.fq.gz",
    "mum2": "mapped_unmapped_pairs/unmapped_mapped_m2.fq.gz",
    "mpm1": "mapped_partial_pairs/mapped_partial_m1.fq.gz",
    "mpp2": "mapped_partial_pairs/mapped_partial_p2.fq.gz",
    "mpp1": "mapped_partial_pairs/partial_mapped_p1.fq.gz",
    "mpm2": "mapped_partial_pairs/partial_mapped_m2.fq.gz",
    "upu1": "unmapped_partial_pairs/unmapped_partial_u1.fq.gz",
    "upp2": "unmapped_partial_pairs/unmapped_partial_p2.fq.gz",
    "upp1": "unmapped_partial_pairs/partial_unmapped_p1.fq.gz",
    "upu2": "unmapped_partial_pairs/partial_unmapped_u2.fq.gz",
    "ppp1": "partial_pairs/p1.fq.gz",
    "ppp2": "partial_pairs/p2.fq.gz",
    "frag": "unmapped_fragments/frag.fq.gz",
}


class OutputWriter:
    """Creates a fresh output directory and writes records to the file named by a key."""

    def __init__(self, base_dir: str | os.PathLike) -> None:
        self.base_dir = Path(base_dir)
        self._written = 0
        self._fragments = 0
        if self.base_dir.exists():
            raise FileExistsError(f"Output directory already exists: {self.base_dir}")
        self.base_dir.mkdir(parents=True)
        if not self.base_dir.is_dir():
            raise OSError(f"Problem creating output directory: {self.base_dir}")
        for subdir in SUBDIRECTORIES:
            path = self.base_dir / subdir
            try:
                path.mkdir()
            except OSError as err:
                raise OSError(f"Problem creating subdirectory: {path}: {err}") from err
        self._files: dict[str, FastqWriter] = {}
        try:
            for key, relative in OUTPUT_FILES.items():
                self._files[key] = create_bgzf_fastq_writer(self.base_dir / relative)
        except BaseException:
            self.close()
            raise

    def _writer(self, key: str) -> FastqWriter:
        try:
            return self._files[key]
        except KeyError:
            raise KeyError(f"Invalid key: {key}") from None

    def write(self, key: str, record: FastqRecord) -> None:
        """Write one record to the file for ``key``."""
        self._writer(key).write_record(record)
        self._written += 1

    def write_batch(self, key: str, records: Iterable[FastqRecord]) -> None:
        """Write fragment records to the file for ``key``."""
        writer = self._writer(key)
        for record in records:
            writer.write_record(record)
            self._fragments += 1

    def flush(self) -> None:
        for writer in self._files.values():
            writer.flush()

    def close(self) -> None:
        """Finish and close every output file."""
        for writer in self._files.values():
            writer.close()

    def written(self) -> int:
        """Number of records written with :meth:`write`."""
        return self._written

    def fragments(self) -> int:
        """Number of records written with :meth:`write_batch`."""
        return self._fragments

    def __enter__(self) -> OutputWriter:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()