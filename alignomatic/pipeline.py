"""Output naming for alignment steps and sorting of final alignments into per-category FASTQ files."""

from __future__ import annotations

import logging
import os
from contextlib import ExitStack
from pathlib import Path
from typing import TYPE_CHECKING, Iterable, Sequence

from alignomatic.bam import BamRecord, BufferedBamReader, read_bam
from alignomatic.fastq import FastqRecord, create_bgzf_fastq_writer
from alignomatic.mapping_status import StatusKind, get_mapping_status
from alignomatic.read_pair_io import MappedReadPair
from alignomatic.utils import bam_to_fastq

if TYPE_CHECKING:
    from alignomatic.cli import ProgramOptions

logger = logging.getLogger(__name__)

_M = StatusKind.MAPPED
_U = StatusKind.UNMAPPED
_F = StatusKind.FRAGMENTARY

# Pairing category of (read 1 status, read 2 status) -> file code in the results folder.
CATEGORIES: dict[tuple[StatusKind, StatusKind], str] = {
    (_U, _U): "uu",
    (_M, _U): "mu",
    (_U, _M): "um",
    (_F, _U): "fu",
    (_U, _F): "uf",
    (_F, _M): "fm",
    (_M, _F): "mf",
    (_F, _F): "ff",
}


def _with_extension(path: Path, extension: str) -> Path:
    return path.with_name(f"{path.stem}.{extension}")


def output_filenames(
    reference: str | os.PathLike, output_dir: str | os.PathLike
) -> tuple[Path, Path, Path, Path]:
    """Return the BAM, two FASTQ and checkpoint paths for aligning against ``reference``.

    The reference must exist; its resolved file stem names the outputs.
    """
    resolved = Path(reference).resolve(strict=True)
    if not resolved.name:
        raise ValueError(f"Error processing filename {os.fspath(reference)}")
    base = Path(output_dir) / Path(resolved.name).stem
    return (
        _with_extension(base, "bam"),
        _with_extension(base, "1.fastq.gz"),
        _with_extension(base, "2.fastq.gz"),
        _with_extension(base, "checkpoint.json"),
    )


def convert_bam_to_fastq(alignments: Iterable[BamRecord]) -> FastqRecord:
    """Recover the read from its primary alignments, which must all agree."""
    reads = [
        bam_to_fastq(record)
        for record in alignments
        if not (record.is_secondary() or record.is_supplementary())
    ]
    if not reads:
        raise ValueError("No primary alignments")
    first = reads[0]
    for other in reads[1:]:
        if other.id != first.id:
            raise ValueError("Read IDs do not match")
        if other.seq != first.seq:
            raise ValueError("Read sequences do not match")
        if other.qual != first.qual:
            raise ValueError("Read qualities do not match")
    return first


def _merge_from(
    reader: BufferedBamReader, alignments: dict[str, MappedReadPair], end_of_batch: str
) -> None:
    found1: set[str] = set()
    found2: set[str] = set()
    for record in reader.take_until_qname(end_of_batch):
        pair = alignments.get(record.qname)
        if pair is None:
            continue
        (found1 if record.is_first_in_template() else found2).add(record.qname)
        pair.insert(record)

    for key in sorted(alignments):
        if key not in found1:
            raise ValueError(f"Read 1 of pair {key} not found in all bam files")
    for key in sorted(alignments):
        if key not in found2:
            raise ValueError(f"Read 2 of pair {key} not found in all bam files")


def post_process_alignments(
    bam_files: Sequence[str | os.PathLike], opts: ProgramOptions
) -> dict[str, int]:
    """Classify every read pair of the last BAM file, using the alignments of all BAM files.

    Pairs are written to ``results/reads_<code>.{1,2}.fq.gz`` in the output folder. Returns
    the number of pairs written for each category code.
    """
    paths = [Path(path) for path in bam_files]
    if not paths:
        raise ValueError("No BAM files to process")

    results = Path(opts.output_folder) / "results"
    logger.info("Writing results to fastq files in %s", results)
    counts = {code: 0 for code in CATEGORIES.values()}

    with ExitStack() as stack:
        writers = {
            code: (
                stack.enter_context(create_bgzf_fastq_writer(results / f"reads_{code}.1.fq.gz")),
                stack.enter_context(create_bgzf_fastq_writer(results / f"reads_{code}.2.fq.gz")),
            )
            for code in CATEGORIES.values()
        }

        def open_reader(path: Path) -> BufferedBamReader:
            records = read_bam(path)
            stack.callback(records.close)
            return BufferedBamReader(records)

        final_bam = open_reader(paths[-1])
        other_bams = [open_reader(path) for path in paths[:-1]]

        while True:
            try:
                batch = final_bam.take_n_qnames(opts.batch_size)
            except ValueError:
                break
            if not batch:
                break

            end_of_batch = batch[-1].qname
            alignments: dict[str, MappedReadPair] = {}
            for record in batch:
                alignments.setdefault(record.qname, MappedReadPair(record.qname)).insert(record)

            for reader in other_bams:
                _merge_from(reader, alignments, end_of_batch)

            for read_id in sorted(alignments):
                pair = alignments[read_id]
                status1 = get_mapping_status(pair.read1, opts)
                status2 = get_mapping_status(pair.read2, opts)
                kinds = (status1.kind, status2.kind)
                if kinds == (_M, _M):
                    continue
                code = CATEGORIES.get(kinds)
                if code is not None:
                    writer1, writer2 = writers[code]
                    writer1.write_record(convert_bam_to_fastq(pair.read1))
                    writer2.write_record(convert_bam_to_fastq(pair.read2))
                    counts[code] += 1
                elif StatusKind.SUSPICIOUS in kinds:
                    logger.error("Suspicious read mapping: %s", read_id)
                else:
                    logger.error("Unknown read mapping: %s", read_id)

    return counts