import json
from pathlib import Path

import pytest

from alignomatic.cli import (
    DEFAULT_BATCH_SIZE,
    DEFAULT_MIN_BLOCK_QUALITY,
    DEFAULT_MIN_BLOCK_SIZE,
    DEFAULT_THREADS,
    ProgramOptions,
    check_options,
    create_output_folder,
    get_program_options,
    load_config,
    merge_options,
    parse_args,
    write_config,
)


def _make_inputs(base: Path):
    fq1 = base / "r1.fq"
    fq2 = base / "r2.fq"
    ref = base / "ref.fa"
    for path in (fq1, fq2, ref):
        path.write_text("x")
    for ext in ("amb", "ann", "bwt", "pac", "sa"):
        Path(f"{ref}.{ext}").write_text("x")
    return fq1, fq2, ref


def _options(fq1, fq2, ref, out, **kwargs):
    return ProgramOptions(fastq_first=fq1, fastq_second=fq2, index=[ref], output_folder=out, **kwargs)


def test_parse_args_reads_all_options():
    args = parse_args(
        ["-1", "a.fq", "-2", "b.fq", "-i", "x.fa,y.fa", "-o", "out", "-b", "100", "-t", "4",
         "--min-block-size", "20", "--min-block-quality", "5.5"]
    )
    assert args["fastq_first"] == Path("a.fq")
    assert args["fastq_second"] == Path("b.fq")
    assert args["index"] == [Path("x.fa"), Path("y.fa")]
    assert args["output_folder"] == Path("out")
    assert args["batch_size"] == 100
    assert args["threads"] == 4
    assert args["min_block_size"] == 20
    assert args["min_block_quality"] == 5.5
    assert args["config"] is None


def test_parse_args_missing_options_are_none():
    args = parse_args([])
    assert all(value is None for value in args.values())


def test_parse_args_rejects_non_integer_batch_size():
    with pytest.raises(SystemExit):
        parse_args(["-b", "many"])


def test_merge_applies_defaults(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    opts = merge_options(parse_args(["-1", "a.fq", "-2", "b.fq", "-i", "r.fa", "-o", "out"]), {})
    assert opts.batch_size == DEFAULT_BATCH_SIZE == 10_000_000
    assert opts.threads == DEFAULT_THREADS == 1
    assert opts.min_block_size == DEFAULT_MIN_BLOCK_SIZE == 30
    assert opts.min_block_quality == DEFAULT_MIN_BLOCK_QUALITY == 10.0
    assert opts.fastq_first == tmp_path / "a.fq"
    assert opts.index == [tmp_path / "r.fa"]


def test_merge_prefers_cli_over_config(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    config = {"fastq_first": Path("c1.fq"), "fastq_second": Path("c2.fq"), "index": [Path("c.fa")],
              "output_folder": Path("cout"), "batch_size": 500, "threads": 3}
    opts = merge_options(parse_args(["-1", "a.fq", "-b", "100"]), config)
    assert opts.fastq_first == tmp_path / "a.fq"
    assert opts.fastq_second == tmp_path / "c2.fq"
    assert opts.batch_size == 100
    assert opts.threads == 3


def test_merge_missing_required_raises():
    with pytest.raises(ValueError, match="first fastq"):
        merge_options(parse_args(["-2", "b.fq", "-i", "r.fa", "-o", "out"]), {})
    with pytest.raises(ValueError, match="index"):
        merge_options(parse_args(["-1", "a.fq", "-2", "b.fq", "-o", "out"]), {})


def test_load_config_reads_known_keys(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"fastq_first": "a.fq", "index": ["x.fa"], "threads": 2,
                                "min_block_quality": 12, "unknown": True}))
    config = load_config(path)
    assert config == {"fastq_first": Path("a.fq"), "index": [Path("x.fa")], "threads": 2,
                      "min_block_quality": 12.0}


def test_load_config_rejects_bad_values(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"threads": -1}))
    with pytest.raises(ValueError):
        load_config(path)
    path.write_text("not json")
    with pytest.raises(ValueError):
        load_config(path)


def test_check_options_accepts_valid(tmp_path):
    fq1, fq2, ref = _make_inputs(tmp_path)
    opts = _options(fq1, fq2, ref, tmp_path / "out")
    assert check_options(opts) is None
    assert opts.threads == 1


def test_check_options_missing_index_file(tmp_path):
    fq1, fq2, ref = _make_inputs(tmp_path)
    Path(f"{ref}.sa").unlink()
    with pytest.raises(FileNotFoundError, match=r"ref\.fa\.sa"):
        check_options(_options(fq1, fq2, ref, tmp_path / "out"))


def test_check_options_missing_fastq(tmp_path):
    fq1, fq2, ref = _make_inputs(tmp_path)
    fq2.unlink()
    with pytest.raises(FileNotFoundError):
        check_options(_options(fq1, fq2, ref, tmp_path / "out"))


@pytest.mark.parametrize(
    "kwargs, message",
    [
        ({"batch_size": 0}, "Batch size"),
        ({"threads": 0}, "threads"),
        ({"min_block_size": 0}, "block size"),
        ({"min_block_quality": -1.0}, "block quality"),
    ],
)
def test_check_options_rejects_out_of_range(tmp_path, kwargs, message):
    fq1, fq2, ref = _make_inputs(tmp_path)
    with pytest.raises(ValueError, match=message):
        check_options(_options(fq1, fq2, ref, tmp_path / "out", **kwargs))


def test_create_output_folder_makes_subfolders(tmp_path):
    fq1, fq2, ref = _make_inputs(tmp_path)
    out = tmp_path / "out"
    opts = _options(fq1, fq2, ref, out)
    create_output_folder(opts)
    create_output_folder(opts)
    assert (out / "workspace").is_dir()
    assert (out / "results").is_dir()


def test_create_output_folder_needs_parent(tmp_path):
    fq1, fq2, ref = _make_inputs(tmp_path)
    with pytest.raises(FileNotFoundError):
        create_output_folder(_options(fq1, fq2, ref, tmp_path / "missing" / "out"))


def test_write_config_round_trip(tmp_path):
    fq1, fq2, ref = _make_inputs(tmp_path)
    out = tmp_path / "out"
    out.mkdir()
    opts = _options(fq1, fq2, ref, out, batch_size=42, threads=3)
    path = write_config(opts)
    assert path == out / "config.json"
    data = json.loads(path.read_text())
    assert data == opts.to_json_dict()
    reloaded = load_config(path)
    assert reloaded["index"] == [ref]
    assert reloaded["batch_size"] == 42
    assert reloaded["threads"] == 3


def test_get_program_options_end_to_end(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    fq1, fq2, ref = _make_inputs(tmp_path)
    config = tmp_path / "settings.json"
    config.write_text(json.dumps({"threads": 2, "min_block_size": 15}))
    opts = get_program_options(
        ["--config", str(config), "-1", "r1.fq", "-2", "r2.fq", "-i", "ref.fa", "-o", "out", "-t", "4"]
    )
    assert opts.threads == 4
    assert opts.min_block_size == 15
    assert opts.fastq_first == fq1
    assert opts.output_folder == tmp_path / "out"
    written = json.loads((tmp_path / "out" / "config.json").read_text())
    assert written["threads"] == 4
    assert (tmp_path / "out" / "workspace").is_dir()