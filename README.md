# alignomatic

A library for separating paired-end sequencing reads by how well they map
against a series of reference genomes. Given the BAM files produced by one
alignment round per reference, each read of a pair is classified as mapped,
unmapped or fragmentary (partly mapped, with long, good-quality clipped
blocks), and the pair is written to a FASTQ file named after the
combination.

The package has no runtime dependencies beyond the standard library.

## Modules

- `alignomatic.fastq` – `FastqRecord` (with `slice(start, end)`),
  `read_fastq` for parsing FASTQ lines, `open_input` which opens plain,
  gzip, bzip2 or xz files by their magic bytes (Zstandard input raises
  `ValueError`), `BgzfWriter`, `FastqWriter` and `create_bgzf_fastq_writer`.
  FASTQ output is BGZF-compressed and readable by any gzip reader.
- `alignomatic.bam` – `BamRecord` (qualities are raw Phred values),
  `CigarOp`, `read_bam`, `BamWriter` and `BufferedBamReader`, which pulls
  qname-collated records in batches with `take_n_qnames` and
  `take_until_qname`.
- `alignomatic.read_pair_io` – `ReadPairIterator` walks two FASTQ files in
  step and yields `ReadPair` objects, stopping at the first end, parse error
  or name mismatch; `take_pairs` and `take_bases` gather batches by pair
  count or by total bases. `MappedReadPair` collects the alignments of both
  reads of a pair; `SequencingRead` holds a read with its alignments.
- `alignomatic.mapping_status` – `get_mapping_status` decides the
  `MappingStatus` of one read from all of its alignments;
  `get_clipped_positions` lists the clipped read positions of one
  alignment; `StatusKind` names the outcomes (mapped, unmapped,
  fragmentary, suspicious, unknown).
- `alignomatic.utils` – `Block`, `to_blocks`, `block_filter`,
  `fastq_to_unmapped_fragments`, `bam_to_fastq`, `normalize_path`,
  `check_file_exists`, `check_directory_exists` and the `silence_stderr`
  context manager.
- `alignomatic.checkpoint` – `Checkpoint` records BLAKE3 hashes (computed
  by the built-in `Blake3Hasher` / `blake3_hash`) of the inputs and outputs
  of one alignment round together with its parameters, so that a finished
  round can be recognised; `write_checkpoint` and `read_checkpoint` store
  it as JSON.
- `alignomatic.output` – `OutputWriter`, a set of named FASTQ outputs in a
  fresh directory tree, counting records with `written()` and
  `fragments()`.
- `alignomatic.cli` – `ProgramOptions`, `parse_args`, `load_config`,
  `merge_options`, `check_options`, `create_output_folder`, `write_config`
  and `get_program_options`, which runs them in turn.
- `alignomatic.pipeline` – `output_filenames`, `convert_bam_to_fastq` and
  `post_process_alignments`.

## Options

Options can come from arguments (as parsed by `parse_args`) or from a JSON
config file given with `--config`; arguments win. Keys and defaults:

| key                 | argument                   | default    |
|---------------------|----------------------------|------------|
| `fastq_first`       | `-1`, `--fastq-first`      | required   |
| `fastq_second`      | `-2`, `--fastq-second`     | required   |
| `index`             | `-i`, `--index` (comma separated) | required |
| `output_folder`     | `-o`, `--output-folder`    | required   |
| `batch_size`        | `-b`, `--batch-size`       | `10000000` |
| `threads`           | `-t`, `--threads`          | `1`        |
| `min_block_size`    | `--min-block-size`         | `30`       |
| `min_block_quality` | `--min-block-quality`      | `10.0`     |

`check_options` requires every reference in `index` to sit next to its
`.amb`, `.ann`, `.bwt`, `.pac` and `.sa` index files, and the numeric
options to be in range. `create_output_folder` adds `workspace/` and
`results/` subfolders, and `write_config` writes the merged options to
`config.json` in the output folder.

## Results

`post_process_alignments(bam_files, opts)` reads the BAM files of all
rounds side by side, combines each pair's alignments and writes the pair
into `results/` under the output folder. It returns the number of pairs
written per category code:

| files                  | read 1      | read 2      |
|------------------------|-------------|-------------|
| `reads_uu.{1,2}.fq.gz` | unmapped    | unmapped    |
| `reads_um.{1,2}.fq.gz` | unmapped    | mapped      |
| `reads_mu.{1,2}.fq.gz` | mapped      | unmapped    |
| `reads_fu.{1,2}.fq.gz` | fragmentary | unmapped    |
| `reads_uf.{1,2}.fq.gz` | unmapped    | fragmentary |
| `reads_fm.{1,2}.fq.gz` | fragmentary | mapped      |
| `reads_mf.{1,2}.fq.gz` | mapped      | fragmentary |
| `reads_ff.{1,2}.fq.gz` | fragmentary | fragmentary |

Pairs with both reads mapped are dropped; suspicious alignments are logged.
The BAM files must be collated by read name, and every pair in the last
file must appear in every other file.

## Examples

Per-round file names for a reference (the reference file must exist):

```python
from pathlib import Path
from alignomatic.pipeline import output_filenames

bam, fq1, fq2, checkpoint = output_filenames(Path("refs/host.fa"), Path("out/workspace"))
# out/workspace/host.bam, host.1.fastq.gz, host.2.fastq.gz, host.checkpoint.json
```

Keeping only clipped blocks that are long enough and of good enough quality:

```python
from alignomatic.utils import block_filter

positions = set(range(0, 40)) | {60, 61}
quals = bytes([30] * 100)
kept = block_filter(positions, quals, 30, 10.0)
# kept == set(range(0, 40))
```

## What the package does not do

- It does not align reads. There is no aligner and no reference indexing;
  the BAM files for each round must be produced elsewhere and passed to
  `post_process_alignments`.
- It does not drive the rounds itself: nothing loops over the references,
  feeds each round's FASTQ output into the next, or checks and writes
  checkpoints automatically. `Checkpoint` and `output_filenames` are the
  pieces for doing that.
- It installs no command. `get_program_options` parses arguments and
  prepares the output folder when called from Python.

## Tests

The test suite uses pytest, available through the `test` extra.