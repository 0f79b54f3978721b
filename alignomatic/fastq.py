"""FASTQ records, FASTQ parsing, input opening and BGZF-compressed output."""

from __future__ import annotations

import bz2
import gzip
import lzma
import os
import struct
import zlib
from dataclasses import dataclass
from typing import BinaryIO, Iterable, Iterator, TextIO

# Largest amount of uncompressed data placed in one BGZF block.
_BGZF_MAX_INPUT = 0xFF00
# Empty BGZF block that marks the end of a BGZF stream.
_BGZF_EOF = bytes.fromhex("1f8b08040000000000ff0600424302001b0003000000000000000000")
_BGZF_HEADER = struct.Struct("<4BI2BH2BHH")
_BGZF_FOOTER = struct.Struct("<II")

_OPENERS = (
    (b"\x1f\x8b", gzip.open),
    (b"BZh", bz2.open),
    (b"\xfd7zXZ\x00", lzma.open),
)
_ZSTD_MAGIC = b"\x28\xb5\x2f\xfd"


@dataclass(frozen=True)
class FastqRecord:
    """A single FASTQ record with an optional description."""

    id: str
    seq: str
    qual: str
    desc: str | None = None

    def slice(self, start: int, end: int) -> FastqRecord:
        """Return the record restricted to ``[start, end)``, noting the range in its description."""
        if end > len(self.seq):
            raise ValueError("Range exceeds sequence length")
        if start < 0 or start > end:
            raise ValueError(f"Invalid range {start}-{end}")
        if self.desc is not None:
            desc = f"{self.desc}_{start}-{end}"
        else:
            desc = f"{start}-{end}"
        return FastqRecord(self.id, self.seq[start:end], self.qual[start:end], desc)

    def __str__(self) -> str:
        header = f"@{self.id}" if self.desc is None else f"@{self.id} {self.desc}"
        return f"{header}\n{self.seq}\n+\n{self.qual}\n"


def read_fastq(stream: Iterable[str]) -> Iterator[FastqRecord]:
    """Parse FASTQ records from an iterable of text lines."""
    lines = (line.rstrip("\r\n") for line in stream)
    for header in lines:
        if not header.strip():
            continue
        if not header.startswith("@"):
            raise ValueError(f"Expected '@' at start of FASTQ record, got {header!r}")
        name, sep, desc = header[1:].rstrip().partition(" ")

        seq_parts = []
        for line in lines:
            if line.startswith("+"):
                break
            seq_parts.append(line.strip())
        else:
            raise ValueError(f"Incomplete FASTQ record {name!r}")
        seq = "".join(seq_parts)

        qual_parts = []
        qual_len = 0
        for line in lines:
            part = line.strip()
            qual_parts.append(part)
            qual_len += len(part)
            if qual_len >= len(seq):
                break
        else:
            raise ValueError(f"Incomplete FASTQ record {name!r}")
        qual = "".join(qual_parts)
        if len(qual) != len(seq):
            raise ValueError(f"Unequal lengths of sequence and qualities in record {name!r}")

        yield FastqRecord(name, seq, qual, desc if sep else None)


def open_input(path: str | os.PathLike) -> TextIO:
    """Open a possibly compressed text file, detecting the compression from its magic bytes."""
    with open(path, "rb") as handle:
        magic = handle.read(6)
    if magic.startswith(_ZSTD_MAGIC):
        raise ValueError(f"Zstandard-compressed input is not supported: {os.fspath(path)}")
    for prefix, opener in _OPENERS:
        if magic.startswith(prefix):
            return opener(path, "rt", encoding="utf-8")
    return open(path, encoding="utf-8")


def _compress_block(data: bytes, level: int) -> bytes:
    compressor = zlib.compressobj(level, zlib.DEFLATED, -15)
    cdata = compressor.compress(data) + compressor.flush()
    block_size = _BGZF_HEADER.size + len(cdata) + _BGZF_FOOTER.size
    header = _BGZF_HEADER.pack(31, 139, 8, 4, 0, 0, 255, 6, 66, 67, 2, block_size - 1)
    footer = _BGZF_FOOTER.pack(zlib.crc32(data), len(data))
    return header + cdata + footer


class BgzfWriter:
    """Binary writer producing a BGZF stream (blocked gzip) on an underlying file."""

    def __init__(self, fileobj: BinaryIO, level: int = 6) -> None:
        if not 0 <= level <= 9:
            raise ValueError(f"Invalid compression level: {level}")
        self._file = fileobj
        self._level = level
        self._buffer = bytearray()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def _check_open(self) -> None:
        if self._closed:
            raise ValueError("I/O operation on closed BGZF stream")

    def write(self, data: bytes) -> int:
        """Buffer ``data``, writing out each full block."""
        self._check_open()
        self._buffer += data
        while len(self._buffer) >= _BGZF_MAX_INPUT:
            self._file.write(_compress_block(bytes(self._buffer[:_BGZF_MAX_INPUT]), self._level))
            del self._buffer[:_BGZF_MAX_INPUT]
        return len(data)

    def flush(self) -> None:
        """Write any buffered data as a block and flush the underlying file."""
        self._check_open()
        if self._buffer:
            self._file.write(_compress_block(bytes(self._buffer), self._level))
            self._buffer.clear()
        self._file.flush()

    def close(self) -> None:
        """Flush, append the end-of-file marker and close the underlying file."""
        if self._closed:
            return
        self.flush()
        self._file.write(_BGZF_EOF)
        self._file.close()
        self._closed = True

    def __enter__(self) -> BgzfWriter:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


class FastqWriter:
    """Writes FASTQ records to a binary stream."""

    def __init__(self, stream: BinaryIO) -> None:
        self._stream = stream

    def write_record(self, record: FastqRecord) -> None:
        self._stream.write(str(record).encode("utf-8"))

    def flush(self) -> None:
        self._stream.flush()

    def close(self) -> None:
        self._stream.close()

    def __enter__(self) -> FastqWriter:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


def create_bgzf_fastq_writer(path: str | os.PathLike) -> FastqWriter:
    """Create a FASTQ writer that writes BGZF-compressed output to ``path``."""
    return FastqWriter(BgzfWriter(open(path, "wb"), 6))