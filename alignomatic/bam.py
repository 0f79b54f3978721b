"""BAM records, BAM reading and writing, and qname-collated batch reading."""

from __future__ import annotations

import gzip
import os
import struct
import zlib
from dataclasses import dataclass, field
from typing import BinaryIO, Iterable, Iterator

from alignomatic.fastq import BgzfWriter

_CIGAR_OPS = "MIDNSHP=X"
_REF_CONSUMING = frozenset("MDN=X")
_NT16 = "=ACMGRSVTWYHKDBN"
_NT16_CODE = {base: code for code, base in enumerate(_NT16)}
_FIXED = struct.Struct("<iiBBHHHiiii")
_INT32 = struct.Struct("<i")
_BAM_MAGIC = b"BAM\x01"

_UNMAPPED = 0x4
_REVERSE = 0x10
_READ1 = 0x40
_READ2 = 0x80
_SECONDARY = 0x100
_SUPPLEMENTARY = 0x800

_BIN_LEVELS = ((14, 4681), (17, 585), (20, 73), (23, 9), (26, 1))


@dataclass(frozen=True)
class CigarOp:
    """One CIGAR operation: an operation character and its length."""

    op: str
    length: int

    def __post_init__(self) -> None:
        if len(self.op) != 1 or self.op not in _CIGAR_OPS:
            raise ValueError(f"Invalid CIGAR operation: {self.op!r}")
        if not 0 <= self.length < 1 << 28:
            raise ValueError(f"Invalid CIGAR length: {self.length}")

    def __str__(self) -> str:
        return f"{self.length}{self.op}"


@dataclass
class BamRecord:
    """An alignment record. Qualities are raw Phred values."""

    qname: str
    flag: int = 0
    ref_id: int = -1
    pos: int = -1
    mapq: int = 255
    cigar: list[CigarOp] = field(default_factory=list)
    seq: str = ""
    qual: bytes = b""
    next_ref_id: int = -1
    next_pos: int = -1
    tlen: int = 0
    tags: bytes = b""

    def is_unmapped(self) -> bool:
        return bool(self.flag & _UNMAPPED)

    def is_reverse(self) -> bool:
        return bool(self.flag & _REVERSE)

    def is_first_in_template(self) -> bool:
        return bool(self.flag & _READ1)

    def is_last_in_template(self) -> bool:
        return bool(self.flag & _READ2)

    def is_secondary(self) -> bool:
        return bool(self.flag & _SECONDARY)

    def is_supplementary(self) -> bool:
        return bool(self.flag & _SUPPLEMENTARY)

    def seq_len(self) -> int:
        return len(self.seq)


def _reg2bin(beg: int, end: int) -> int:
    end -= 1
    for shift, offset in _BIN_LEVELS:
        if beg >> shift == end >> shift:
            return offset + (beg >> shift)
    return 0


def _encode_seq(seq: str) -> bytes:
    codes = [_NT16_CODE.get(base, 15) for base in seq.upper()]
    return bytes((hi << 4) | lo for hi, lo in zip(codes[0::2], codes[1::2] + [0]))


def _decode_seq(data: bytes, length: int) -> str:
    return "".join(_NT16[b >> 4] + _NT16[b & 0xF] for b in data)[:length]


def _encode_record(record: BamRecord) -> bytes:
    name = record.qname.encode("utf-8") + b"\x00"
    if len(name) > 255:
        raise ValueError(f"Read name too long: {record.qname!r}")
    seq_len = len(record.seq)
    if record.qual:
        if len(record.qual) != seq_len:
            raise ValueError(f"Quality length does not match sequence length for {record.qname!r}")
        qual = bytes(record.qual)
    else:
        qual = b"\xff" * seq_len
    ref_len = sum(op.length for op in record.cigar if op.op in _REF_CONSUMING)
    end = record.pos + ref_len if ref_len > 0 else record.pos + 1
    fixed = _FIXED.pack(
        record.ref_id,
        record.pos,
        len(name),
        record.mapq,
        _reg2bin(record.pos, end),
        len(record.cigar),
        record.flag,
        seq_len,
        record.next_ref_id,
        record.next_pos,
        record.tlen,
    )
    cigar = struct.pack(
        f"<{len(record.cigar)}I",
        *((op.length << 4) | _CIGAR_OPS.index(op.op) for op in record.cigar),
    )
    body = fixed + name + cigar + _encode_seq(record.seq) + qual + record.tags
    return _INT32.pack(len(body)) + body


def _decode_record(block: bytes) -> BamRecord:
    if len(block) < _FIXED.size:
        raise ValueError("Truncated BAM record")
    (ref_id, pos, l_name, mapq, _bin, n_cigar, flag, l_seq, next_ref_id, next_pos, tlen) = (
        _FIXED.unpack_from(block)
    )
    offset = _FIXED.size
    qname = block[offset : offset + l_name - 1].decode("utf-8")
    offset += l_name
    cigar_values = struct.unpack_from(f"<{n_cigar}I", block, offset)
    offset += 4 * n_cigar
    cigar = []
    for value in cigar_values:
        op_index = value & 0xF
        if op_index >= len(_CIGAR_OPS):
            raise ValueError(f"Invalid CIGAR operation code {op_index} in record {qname!r}")
        cigar.append(CigarOp(_CIGAR_OPS[op_index], value >> 4))
    seq_bytes = (l_seq + 1) // 2
    seq = _decode_seq(block[offset : offset + seq_bytes], l_seq)
    offset += seq_bytes
    qual = block[offset : offset + l_seq]
    offset += l_seq
    if offset > len(block):
        raise ValueError(f"Truncated BAM record {qname!r}")
    return BamRecord(
        qname=qname,
        flag=flag,
        ref_id=ref_id,
        pos=pos,
        mapq=mapq,
        cigar=cigar,
        seq=seq,
        qual=bytes(qual),
        next_ref_id=next_ref_id,
        next_pos=next_pos,
        tlen=tlen,
        tags=bytes(block[offset:]),
    )


def _read_exact(handle: BinaryIO, size: int) -> bytes:
    data = handle.read(size)
    if len(data) != size:
        raise ValueError("Unexpected end of BAM file")
    return data


def _read_int32(handle: BinaryIO) -> int:
    return _INT32.unpack(_read_exact(handle, 4))[0]


def read_bam(path: str | os.PathLike) -> Iterator[BamRecord]:
    """Yield the alignment records of a BAM file in file order."""
    try:
        with gzip.open(path, "rb") as handle:
            if handle.read(4) != _BAM_MAGIC:
                raise ValueError(f"Not a BAM file: {os.fspath(path)}")
            _read_exact(handle, _read_int32(handle))
            for _ in range(_read_int32(handle)):
                _read_exact(handle, _read_int32(handle))
                _read_int32(handle)
            while size_bytes := handle.read(4):
                if len(size_bytes) < 4:
                    raise ValueError("Unexpected end of BAM file")
                yield _decode_record(_read_exact(handle, _INT32.unpack(size_bytes)[0]))
    except (gzip.BadGzipFile, EOFError, zlib.error) as err:
        raise ValueError(f"Invalid BAM file {os.fspath(path)}: {err}") from err


class BamWriter:
    """Writes a BAM file with the given reference sequences and header text."""

    def __init__(
        self,
        path: str | os.PathLike,
        references: Iterable[tuple[str, int]] = (),
        text: str = "",
        level: int = 6,
    ) -> None:
        self._stream = BgzfWriter(open(path, "wb"), level)
        refs = list(references)
        header_text = text.encode("utf-8")
        parts = [_BAM_MAGIC, _INT32.pack(len(header_text)), header_text, _INT32.pack(len(refs))]
        for name, length in refs:
            encoded = name.encode("utf-8") + b"\x00"
            parts += [_INT32.pack(len(encoded)), encoded, _INT32.pack(length)]
        self._stream.write(b"".join(parts))
        self._stream.flush()

    def write(self, record: BamRecord) -> None:
        self._stream.write(_encode_record(record))

    def close(self) -> None:
        self._stream.close()

    def __enter__(self) -> BamWriter:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


class BufferedBamReader:
    """Reads batches of qname-collated records, holding back the first record of the next group."""

    def __init__(self, records: Iterable[BamRecord]) -> None:
        self._records = iter(records)
        self._pending: BamRecord | None = None

    def take_n_qnames(self, n: int) -> list[BamRecord]:
        """Read records up to the end of the ``n``-th distinct qname group."""
        batch: list[BamRecord] = []
        names_seen = 0
        prev_name = None

        if self._pending is not None:
            batch.append(self._pending)
            prev_name = self._pending.qname
            names_seen = 1
            self._pending = None

        while names_seen <= n:
            record = next(self._records, None)
            if record is None:
                break
            if record.qname != prev_name:
                prev_name = record.qname
                names_seen += 1
            if names_seen > n:
                self._pending = record
                break
            batch.append(record)

        return batch

    def take_until_qname(self, name: str) -> list[BamRecord]:
        """Read records up to and including the last record whose qname is ``name``."""
        batch: list[BamRecord] = []
        found = False

        if self._pending is not None:
            batch.append(self._pending)
            found = self._pending.qname == name
            self._pending = None

        for record in self._records:
            if record.qname == name:
                found = True
                batch.append(record)
            elif found:
                self._pending = record
                break
            else:
                batch.append(record)

        if not found:
            raise LookupError(f"Target qname '{name}' not found")
        return batch