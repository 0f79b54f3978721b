"""Content-hash checkpoints that let a finished alignment step be skipped on rerun."""

from __future__ import annotations

import json
import logging
import os
import struct
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass, fields
from pathlib import Path

logger = logging.getLogger(__name__)

_MASK = 0xFFFFFFFF
_BLOCK_LEN = 64
_CHUNK_LEN = 1024
_OUT_LEN = 32

_CHUNK_START = 1 << 0
_CHUNK_END = 1 << 1
_PARENT = 1 << 2
_ROOT = 1 << 3

_IV = (
    0x6A09E667,
    0xBB67AE85,
    0x3C6EF372,
    0xA54FF53A,
    0x510E527F,
    0x9B05688C,
    0x1F83D9AB,
    0x5BE0CD19,
)
_MSG_PERMUTATION = (2, 6, 3, 10, 7, 0, 4, 13, 1, 11, 12, 5, 9, 14, 15, 8)
_BLOCK_WORDS = struct.Struct("<16I")
_OUT_WORDS = struct.Struct("<8I")

_READ_SIZE = 8192


def _g(s: list[int], a: int, b: int, c: int, d: int, mx: int, my: int) -> None:
    s[a] = (s[a] + s[b] + mx) & _MASK
    x = s[d] ^ s[a]
    s[d] = ((x >> 16) | (x << 16)) & _MASK
    s[c] = (s[c] + s[d]) & _MASK
    x = s[b] ^ s[c]
    s[b] = ((x >> 12) | (x << 20)) & _MASK
    s[a] = (s[a] + s[b] + my) & _MASK
    x = s[d] ^ s[a]
    s[d] = ((x >> 8) | (x << 24)) & _MASK
    s[c] = (s[c] + s[d]) & _MASK
    x = s[b] ^ s[c]
    s[b] = ((x >> 7) | (x << 25)) & _MASK


def _round(s: list[int], m: list[int]) -> None:
    _g(s, 0, 4, 8, 12, m[0], m[1])
    _g(s, 1, 5, 9, 13, m[2], m[3])
    _g(s, 2, 6, 10, 14, m[4], m[5])
    _g(s, 3, 7, 11, 15, m[6], m[7])
    _g(s, 0, 5, 10, 15, m[8], m[9])
    _g(s, 1, 6, 11, 12, m[10], m[11])
    _g(s, 2, 7, 8, 13, m[12], m[13])
    _g(s, 3, 4, 9, 14, m[14], m[15])


def _compress(
    cv: list[int], block_words: tuple[int, ...], counter: int, block_len: int, flags: int
) -> list[int]:
    state = list(cv) + list(_IV[:4]) + [counter & _MASK, (counter >> 32) & _MASK, block_len, flags]
    message = list(block_words)
    for round_index in range(7):
        _round(state, message)
        if round_index < 6:
            message = [message[i] for i in _MSG_PERMUTATION]
    for i in range(8):
        state[i] ^= state[i + 8]
        state[i + 8] ^= cv[i]
    return state


def _words(block: bytes) -> tuple[int, ...]:
    return _BLOCK_WORDS.unpack(bytes(block).ljust(_BLOCK_LEN, b"\x00"))


@dataclass(frozen=True)
class _Output:
    input_cv: list[int]
    block_words: tuple[int, ...]
    counter: int
    block_len: int
    flags: int

    def chaining_value(self) -> list[int]:
        return _compress(self.input_cv, self.block_words, self.counter, self.block_len, self.flags)[:8]

    def root_bytes(self) -> bytes:
        words = _compress(
            self.input_cv, self.block_words, 0, self.block_len, self.flags | _ROOT
        )
        return _OUT_WORDS.pack(*words[:8])


class _ChunkState:
    def __init__(self, key: tuple[int, ...], counter: int, flags: int) -> None:
        self.cv = list(key)
        self.counter = counter
        self.block = bytearray()
        self.blocks_compressed = 0
        self.flags = flags

    def __len__(self) -> int:
        return _BLOCK_LEN * self.blocks_compressed + len(self.block)

    def _start_flag(self) -> int:
        return _CHUNK_START if self.blocks_compressed == 0 else 0

    def update(self, data: memoryview) -> None:
        while data:
            if len(self.block) == _BLOCK_LEN:
                self.cv = _compress(
                    self.cv,
                    _words(self.block),
                    self.counter,
                    _BLOCK_LEN,
                    self.flags | self._start_flag(),
                )[:8]
                self.blocks_compressed += 1
                self.block.clear()
            take = min(_BLOCK_LEN - len(self.block), len(data))
            self.block += data[:take]
            data = data[take:]

    def output(self) -> _Output:
        return _Output(
            list(self.cv),
            _words(self.block),
            self.counter,
            len(self.block),
            self.flags | self._start_flag() | _CHUNK_END,
        )


def _parent_output(left: list[int], right: list[int], key: tuple[int, ...], flags: int) -> _Output:
    return _Output(list(key), tuple(left + right), 0, _BLOCK_LEN, _PARENT | flags)


class Blake3Hasher:
    """Incremental BLAKE3 hasher producing the default 32-byte digest."""

    def __init__(self) -> None:
        self._key = _IV
        self._flags = 0
        self._chunk = _ChunkState(self._key, 0, self._flags)
        self._cv_stack: list[list[int]] = []

    def _push_chunk_cv(self, cv: list[int], total_chunks: int) -> None:
        while total_chunks & 1 == 0:
            cv = _parent_output(self._cv_stack.pop(), cv, self._key, self._flags).chaining_value()
            total_chunks >>= 1
        self._cv_stack.append(cv)

    def update(self, data: bytes) -> None:
        """Feed more input bytes."""
        view = memoryview(data).cast("B")
        while view:
            if len(self._chunk) == _CHUNK_LEN:
                cv = self._chunk.output().chaining_value()
                total_chunks = self._chunk.counter + 1
                self._push_chunk_cv(cv, total_chunks)
                self._chunk = _ChunkState(self._key, total_chunks, self._flags)
            take = min(_CHUNK_LEN - len(self._chunk), len(view))
            self._chunk.update(view[:take])
            view = view[take:]

    def digest(self) -> bytes:
        """Return the 32-byte digest of everything fed so far, leaving the state unchanged."""
        output = self._chunk.output()
        for cv in reversed(self._cv_stack):
            output = _parent_output(cv, output.chaining_value(), self._key, self._flags)
        return output.root_bytes()

    def hexdigest(self) -> str:
        """Return the digest as lower-case hexadecimal."""
        return self.digest().hex()


def blake3_hash(path: str | os.PathLike) -> str:
    """Return the hexadecimal BLAKE3 hash of a file's contents."""
    logger.debug("Hashing %s", path)
    hasher = Blake3Hasher()
    with open(path, "rb") as handle:
        while chunk := handle.read(_READ_SIZE):
            hasher.update(chunk)
    logger.debug("Hashed %s", path)
    return hasher.hexdigest()


@dataclass(frozen=True)
class Checkpoint:
    """Hashes of a step's inputs and outputs together with the parameters that produced them."""

    reference: str
    fastq_input_1: str
    fastq_input_2: str
    bam_output: str
    fastq_output_1: str
    fastq_output_2: str
    batch_size: int
    min_block_size: int
    min_block_quality: float

    @classmethod
    def create(
        cls,
        reference,
        fastq_input_1,
        fastq_input_2,
        bam_output,
        fastq_output_1,
        fastq_output_2,
        batch_size,
        min_block_size,
        min_block_quality,
    ) -> Checkpoint:
        """Hash the six files concurrently and record them with the run parameters."""
        paths = [reference, fastq_input_1, fastq_input_2, bam_output, fastq_output_1, fastq_output_2]
        with ThreadPoolExecutor(max_workers=len(paths)) as pool:
            hashes = list(pool.map(blake3_hash, paths))
        return cls(*hashes, int(batch_size), int(min_block_size), float(min_block_quality))

    def matches(self, other: Checkpoint) -> bool:
        """Return True if every hash and parameter is the same."""
        return all(getattr(self, f.name) == getattr(other, f.name) for f in fields(self))


def write_checkpoint(checkpoint: Checkpoint, path: str | os.PathLike) -> None:
    """Write a checkpoint as pretty-printed JSON."""
    logger.debug("Writing checkpoint to %s", path)
    Path(path).write_text(json.dumps(asdict(checkpoint), indent=2), encoding="utf-8")


def read_checkpoint(path: str | os.PathLike) -> Checkpoint:
    """Read a checkpoint written by :func:`write_checkpoint`. Unknown keys are ignored."""
    logger.debug("Reading checkpoint from %s", path)
    content = Path(path).read_text(encoding="utf-8")
    try:
        data = json.loads(content)
    except json.JSONDecodeError as err:
        raise ValueError(f"Invalid checkpoint file {os.fspath(path)}: {err}") from err
    if not isinstance(data, dict):
        raise ValueError(f"Invalid checkpoint file {os.fspath(path)}: expected a JSON object")

    values = {}
    for f in fields(Checkpoint):
        if f.name not in data:
            raise ValueError(f"Invalid checkpoint file {os.fspath(path)}: missing field {f.name}")
        value = data[f.name]
        if f.name in ("batch_size", "min_block_size"):
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise ValueError(f"Invalid checkpoint file: {f.name} must be a non-negative integer")
        elif f.name == "min_block_quality":
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ValueError(f"Invalid checkpoint file: {f.name} must be a number")
            value = float(value)
        elif not isinstance(value, str):
            raise ValueError(f"Invalid checkpoint file: {f.name} must be a string")
        values[f.name] = value
    return Checkpoint(**values)