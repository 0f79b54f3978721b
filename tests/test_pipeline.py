import gzip
import logging
import re

import pytest

from alignomatic.bam import BamRecord, BamWriter, CigarOp
from alignomatic.cli import ProgramOptions, create_output_folder
from alignomatic.fastq import read_fastq
from alignomatic.pipeline import (
    CATEGORIES,
    convert_bam_to_fastq,
    output_filenames,
    post_process_alignments,
)

SEQ = "ACGTAC"


def rec(name, flag, cigar="", seq=SEQ):
    mapped = not flag & 0x4
    return BamRecord(
        qname=name,
        flag=flag,
        ref_id=0 if mapped else -1,
        pos=0 if mapped else -1,
        cigar=[CigarOp(op, int(n)) for n, op in re.findall(r"(\d+)([MIDNSHP=X])", cigar)],
        seq=seq,
        qual=bytes([30] * len(seq)),
    )


def write_bam(path, records):
    with BamWriter(path, references=[("chr1", 1000)]) as writer:
        for record in records:
            writer.write(record)
    return path


def make_opts(tmp_path, batch_size=10):
    opts = ProgramOptions(
        fastq_first=tmp_path / "in.1.fq",
        fastq_second=tmp_path / "in.2.fq",
        index=[],
        output_folder=tmp_path / "out",
        batch_size=batch_size,
        min_block_size=2,
        min_block_quality=10.0,
    )
    create_output_folder(opts)
    return opts


def read_output(opts, code, mate):
    path = opts.output_folder / "results" / f"reads_{code}.{mate}.fq.gz"
    with gzip.open(path, "rt") as handle:
        return list(read_fastq(handle))


SINGLE_BAM_RECORDS = [
    rec("a", 0x4 | 0x40),
    rec("a", 0x4 | 0x80),
    rec("b", 0x40, "6M"),
    rec("b", 0x80, "6M"),
    rec("c", 0x40, "6M"),
    rec("c", 0x4 | 0x80),
    rec("d", 0x40, "3S3M"),
    rec("d", 0x4 | 0x80),
    rec("e", 0x40, "6S"),
    rec("e", 0x80, "6M"),
]


def test_output_filenames(tmp_path):
    reference = tmp_path / "genome.fa"
    reference.write_text(">chr1\nACGT\n")
    out = tmp_path / "work"
    bam, fq1, fq2, ckpt = output_filenames(reference, out)
    assert bam == out / "genome.bam"
    assert fq1 == out / "genome.1.fastq.gz"
    assert fq2 == out / "genome.2.fastq.gz"
    assert ckpt == out / "genome.checkpoint.json"


def test_output_filenames_missing_reference(tmp_path):
    with pytest.raises(FileNotFoundError):
        output_filenames(tmp_path / "missing.fa", tmp_path)


def test_convert_single_primary():
    result = convert_bam_to_fastq([rec("r", 0x40, "6M")])
    assert (result.id, result.seq) == ("r", SEQ)


def test_convert_skips_secondary_and_checks_agreement():
    primary = rec("r", 0x40, "6M")
    secondary = rec("r", 0x40 | 0x100, "6M", seq="TTTTTT")
    assert convert_bam_to_fastq([secondary, primary]).seq == SEQ
    with pytest.raises(ValueError, match="sequences do not match"):
        convert_bam_to_fastq([primary, rec("r", 0x40, "6M", seq="TTTTTT")])


def test_convert_reverse_strand():
    forward = rec("r", 0x40, "4M", seq="AACG")
    reverse = rec("r", 0x40 | 0x10, "4M", seq="CGTT")
    assert convert_bam_to_fastq([reverse]).seq == "AACG"
    assert convert_bam_to_fastq([reverse]).qual == convert_bam_to_fastq([forward]).qual


def test_convert_no_primary():
    with pytest.raises(ValueError, match="No primary alignments"):
        convert_bam_to_fastq([rec("r", 0x40 | 0x800, "6M")])


@pytest.mark.parametrize("batch_size", [1, 2, 10])
def test_single_bam_classification(tmp_path, batch_size):
    opts = make_opts(tmp_path, batch_size)
    bam = write_bam(tmp_path / "final.bam", SINGLE_BAM_RECORDS)
    counts = post_process_alignments([bam], opts)
    assert counts["uu"] == 1
    assert counts["mu"] == 1
    assert counts["fu"] == 1
    assert sum(counts.values()) == 3
    assert [r.id for r in read_output(opts, "uu", 1)] == ["a"]
    assert [r.id for r in read_output(opts, "uu", 2)] == ["a"]
    assert [r.id for r in read_output(opts, "mu", 1)] == ["c"]
    assert [(r.id, r.seq) for r in read_output(opts, "fu", 2)] == [("d", SEQ)]
    assert read_output(opts, "ff", 1) == []


def test_all_result_files_created(tmp_path):
    opts = make_opts(tmp_path)
    bam = write_bam(tmp_path / "final.bam", SINGLE_BAM_RECORDS)
    post_process_alignments([bam], opts)
    names = {p.name for p in (opts.output_folder / "results").iterdir()}
    expected = {f"reads_{code}.{mate}.fq.gz" for code in CATEGORIES.values() for mate in (1, 2)}
    assert names == expected


def test_suspicious_pair_is_logged(tmp_path, caplog):
    opts = make_opts(tmp_path)
    bam = write_bam(tmp_path / "final.bam", SINGLE_BAM_RECORDS)
    with caplog.at_level(logging.ERROR):
        post_process_alignments([bam], opts)
    assert any("Suspicious read mapping: e" in m for m in caplog.messages)


@pytest.mark.parametrize("batch_size", [1, 5])
def test_alignments_merged_across_bams(tmp_path, batch_size):
    opts = make_opts(tmp_path, batch_size)
    first = write_bam(
        tmp_path / "first.bam",
        [
            rec("p0", 0x40, "6M"),
            rec("p0", 0x80, "6M"),
            rec("p1", 0x40, "3S3M"),
            rec("p1", 0x4 | 0x80),
        ],
    )
    final = write_bam(tmp_path / "final.bam", [rec("p1", 0x40, "3M3S"), rec("p1", 0x4 | 0x80)])
    counts = post_process_alignments([first, final], opts)
    assert counts["mu"] == 1
    assert counts["fu"] == 0
    assert [r.id for r in read_output(opts, "mu", 1)] == ["p1"]


def test_missing_mate_in_earlier_bam(tmp_path):
    opts = make_opts(tmp_path)
    first = write_bam(tmp_path / "first.bam", [rec("p2", 0x4 | 0x40)])
    final = write_bam(tmp_path / "final.bam", [rec("p2", 0x4 | 0x40), rec("p2", 0x4 | 0x80)])
    with pytest.raises(ValueError, match="Read 2 of pair p2"):
        post_process_alignments([first, final], opts)


def test_missing_pair_in_earlier_bam(tmp_path):
    opts = make_opts(tmp_path)
    first = write_bam(tmp_path / "first.bam", [rec("p0", 0x4 | 0x40), rec("p0", 0x4 | 0x80)])
    final = write_bam(tmp_path / "final.bam", [rec("p9", 0x4 | 0x40), rec("p9", 0x4 | 0x80)])
    with pytest.raises(LookupError):
        post_process_alignments([first, final], opts)


def test_no_bam_files(tmp_path):
    with pytest.raises(ValueError, match="No BAM files"):
        post_process_alignments([], make_opts(tmp_path))