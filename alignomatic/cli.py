"""Command-line and config-file options for a mapping run."""

from __future__ import annotations

import argparse
import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Sequence

from alignomatic.utils import check_file_exists, normalize_path

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 10_000_000
DEFAULT_THREADS = 1
DEFAULT_MIN_BLOCK_SIZE = 30
DEFAULT_MIN_BLOCK_QUALITY = 10.0

BWA_INDEX_EXTENSIONS = ("amb", "ann", "bwt", "pac", "sa")

_PATH_KEYS = ("fastq_first", "fastq_second", "output_folder")
_INT_KEYS = ("batch_size", "threads", "min_block_size")
_FLOAT_KEYS = ("min_block_quality",)
_OPTION_KEYS = _PATH_KEYS + ("index",) + _INT_KEYS + _FLOAT_KEYS


@dataclass
class ProgramOptions:
    """The final, merged options for a run."""

    fastq_first: Path
    fastq_second: Path
    index: list[Path]
    output_folder: Path
    batch_size: int = DEFAULT_BATCH_SIZE
    threads: int = DEFAULT_THREADS
    min_block_size: int = DEFAULT_MIN_BLOCK_SIZE
    min_block_quality: float = DEFAULT_MIN_BLOCK_QUALITY
    _extra: dict = field(default_factory=dict, repr=False, compare=False)

    def to_json_dict(self) -> dict[str, Any]:
        """Return the options as JSON-serialisable values."""
        return {
            "fastq_first": os.fspath(self.fastq_first),
            "fastq_second": os.fspath(self.fastq_second),
            "index": [os.fspath(path) for path in self.index],
            "output_folder": os.fspath(self.output_folder),
            "batch_size": self.batch_size,
            "threads": self.threads,
            "min_block_size": self.min_block_size,
            "min_block_quality": self.min_block_quality,
        }


def _non_negative_int(text: str) -> int:
    try:
        value = int(text)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid integer value: {text!r}") from None
    if value < 0:
        raise argparse.ArgumentTypeError(f"value must not be negative: {text!r}")
    return value


def _path_list(text: str) -> list[Path]:
    return [Path(part) for part in text.split(",")]


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="alignomatic")
    parser.add_argument("--config", type=Path, help="Optional path to a config file (JSON format)")
    parser.add_argument("-1", "--fastq-first", type=Path, metavar="FILE")
    parser.add_argument("-2", "--fastq-second", type=Path, metavar="FILE")
    parser.add_argument(
        "-i",
        "--index",
        type=_path_list,
        action="extend",
        metavar="FILES",
        help="Reference files to map against. Must be Fasta format, and must have set of BWA index files.",
    )
    parser.add_argument(
        "-o",
        "--output-folder",
        type=Path,
        metavar="FILE",
        help="Output folder for all fastq files. Will be created if it doesn't exist.",
    )
    parser.add_argument(
        "-b",
        "--batch-size",
        type=_non_negative_int,
        help="Batch size to process, in base pairs per thread. Default is 10000000.",
    )
    parser.add_argument(
        "-t",
        "--threads",
        type=_non_negative_int,
        help="Number of threads to use. One thread will be reserved for the main program; "
        "any extra threads will be used for read mapping.",
    )
    parser.add_argument(
        "--min-block-size",
        type=_non_negative_int,
        help="Minimum size of a block of bases that will be considered unmapped.",
    )
    parser.add_argument(
        "--min-block-quality",
        type=float,
        help="Minimum average base quality of a block of bases that will be considered unmapped.",
    )
    return parser


def parse_args(argv: Sequence[str] | None = None) -> dict[str, Any]:
    """Parse command-line arguments into a dict; options not given are None."""
    return vars(_build_parser().parse_args(argv))


def load_config(path: str | os.PathLike) -> dict[str, Any]:
    """Read options from a JSON config file. Unknown keys are ignored."""
    content = Path(path).read_text(encoding="utf-8")
    try:
        data = json.loads(content)
    except json.JSONDecodeError as err:
        raise ValueError(f"Failed to parse config file: {err}") from err
    if not isinstance(data, dict):
        raise ValueError("Failed to parse config file: expected a JSON object")

    config: dict[str, Any] = {}
    for key in _OPTION_KEYS:
        value = data.get(key)
        if value is None:
            continue
        if key in _PATH_KEYS:
            if not isinstance(value, str):
                raise ValueError(f"Failed to parse config file: {key} must be a string")
            config[key] = Path(value)
        elif key == "index":
            if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
                raise ValueError("Failed to parse config file: index must be a list of strings")
            config[key] = [Path(v) for v in value]
        elif key in _INT_KEYS:
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise ValueError(
                    f"Failed to parse config file: {key} must be a non-negative integer"
                )
            config[key] = value
        else:
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ValueError(f"Failed to parse config file: {key} must be a number")
            config[key] = float(value)
    return config


def merge_options(cli: Mapping[str, Any], config: Mapping[str, Any]) -> ProgramOptions:
    """Combine command-line and config options; the command line wins, then defaults apply."""

    def pick(key: str) -> Any:
        value = cli.get(key)
        return value if value is not None else config.get(key)

    def required(key: str, what: str) -> Any:
        value = pick(key)
        if value is None:
            raise ValueError(f"No {what} provided")
        return value

    def with_default(key: str, default: Any) -> Any:
        value = pick(key)
        return default if value is None else value

    return ProgramOptions(
        fastq_first=normalize_path(required("fastq_first", "first fastq file")),
        fastq_second=normalize_path(required("fastq_second", "second fastq file")),
        index=[normalize_path(path) for path in required("index", "index files")],
        output_folder=normalize_path(required("output_folder", "output folder")),
        batch_size=with_default("batch_size", DEFAULT_BATCH_SIZE),
        threads=with_default("threads", DEFAULT_THREADS),
        min_block_size=with_default("min_block_size", DEFAULT_MIN_BLOCK_SIZE),
        min_block_quality=float(with_default("min_block_quality", DEFAULT_MIN_BLOCK_QUALITY)),
    )


def check_options(opts: ProgramOptions) -> None:
    """Check that the input files exist and the numeric options are in range."""
    check_file_exists(opts.fastq_first)
    check_file_exists(opts.fastq_second)
    for reference in opts.index:
        check_file_exists(reference)
        for extension in BWA_INDEX_EXTENSIONS:
            check_file_exists(f"{os.fspath(reference)}.{extension}")

    if opts.batch_size < 1:
        raise ValueError("Batch size must be greater than 0")
    if opts.threads < 1:
        raise ValueError("Number of threads must be greater than 0")
    if opts.min_block_size < 1:
        raise ValueError("Minimum block size must be greater than 0")
    if opts.min_block_quality < 0.0:
        raise ValueError("Minimum block quality must be greater than 0")

    logger.info("First fastq file: %s", opts.fastq_first)
    logger.info("Second fastq file: %s", opts.fastq_second)
    logger.info("Index files:")
    for index in opts.index:
        logger.info("%s", index)
    logger.info("Batch size: %d", opts.batch_size)
    logger.info("Threads: %d", opts.threads)
    logger.info("Minimum block size: %d", opts.min_block_size)
    logger.info("Minimum block quality: %s", opts.min_block_quality)
    logger.info("Output folder: %s", opts.output_folder)


def write_config(opts: ProgramOptions) -> Path:
    """Write the options as pretty JSON to ``config.json`` in the output folder."""
    path = Path(opts.output_folder) / "config.json"
    path.write_text(json.dumps(opts.to_json_dict(), indent=2), encoding="utf-8")
    logger.info("Wrote config file to %s", path)
    return path


def create_output_folder(opts: ProgramOptions) -> None:
    """Create the output folder with its workspace and results subfolders."""
    folder = Path(opts.output_folder)
    if folder.exists():
        logger.warning("Output folder %s already exists. Files may be overwritten.", folder)
    else:
        logger.info("Creating output folder %s", folder)
        folder.mkdir()
    (folder / "workspace").mkdir(parents=True, exist_ok=True)
    (folder / "results").mkdir(parents=True, exist_ok=True)


def get_program_options(argv: Sequence[str] | None = None) -> ProgramOptions:
    """Parse, merge and check options, then prepare the output folder."""
    cli = parse_args(argv)
    config = load_config(cli["config"]) if cli.get("config") is not None else {}
    opts = merge_options(cli, config)
    check_options(opts)
    create_output_folder(opts)
    write_config(opts)
    return opts