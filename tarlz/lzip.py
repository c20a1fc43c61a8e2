from __future__ import annotations

import io
import logging
import lzma
import struct
import zlib
from typing import BinaryIO, Dict, Optional, Tuple

from .constants import (
    LZIP_MAGIC,
    LZIP_VERSION,
    LZIP_HEADER_SIZE,
    LZIP_TRAILER_SIZE,
    LZIP_MIN_DICT_SIZE,
    LZIP_MAX_DICT_SIZE,
    LZIP_LC,
    LZIP_LP,
    LZIP_PB,
    DEFAULT_COMPRESSION_LEVEL,
    MIN_COMPRESSION_LEVEL,
    MAX_COMPRESSION_LEVEL,
    READ_BUFFER_SIZE,
)
from .errors import CorruptContainerError


logger = logging.getLogger(__name__)

# Member header: magic[4], version u8, coded dictionary size u8
_HEADER_STRUCT = struct.Struct("<4sBB")
# Member trailer: crc32 of the uncompressed data u32, data size u64,
# member size u64 (header + compressed data + trailer)
_TRAILER_STRUCT = struct.Struct("<IQQ")

# Level -> dictionary size exponent. Sizes are powers of two so the coded
# byte never needs the fractional part.
_LEVEL_DICT_BITS: Dict[int, int] = {
    0: 16,
    1: 20,
    2: 21,
    3: 21,
    4: 22,
    5: 22,
    6: 23,
    7: 24,
    8: 24,
    9: 25,
}


def encode_dict_size(dict_size: int) -> int:
    """Code a power-of-two dictionary size into the lzip header byte."""
    if dict_size < LZIP_MIN_DICT_SIZE or dict_size > LZIP_MAX_DICT_SIZE:
        raise ValueError(f"lzip dictionary size out of range: {dict_size}")
    bits = dict_size.bit_length() - 1
    if (1 << bits) != dict_size:
        raise ValueError("lzip dictionary size must be a power of two")
    return bits


def decode_dict_size(coded: int) -> int:
    """Decode the header byte: bits 0-4 give log2 of the base size, bits
    5-7 the number of sixteenths of the base to subtract."""
    base = 1 << (coded & 0x1F)
    size = base - (base // 16) * ((coded >> 5) & 0x07)
    if size < LZIP_MIN_DICT_SIZE or size > LZIP_MAX_DICT_SIZE:
        raise CorruptContainerError(f"Invalid lzip dictionary size: {size}")
    return size


def dict_size_for_level(level: int) -> int:
    level = max(MIN_COMPRESSION_LEVEL, min(MAX_COMPRESSION_LEVEL, level))
    return 1 << _LEVEL_DICT_BITS[level]


def _lzma1_filters(dict_size: int, preset: Optional[int] = None):
    filt = {"id": lzma.FILTER_LZMA1, "dict_size": dict_size, "lc": LZIP_LC, "lp": LZIP_LP, "pb": LZIP_PB}
    if preset is not None:
        filt["preset"] = preset
    return [filt]


def parse_header(header: bytes) -> int:
    """Validate a member header and return its dictionary size."""
    if len(header) != LZIP_HEADER_SIZE:
        raise CorruptContainerError("Truncated lzip header")
    magic, version, coded = _HEADER_STRUCT.unpack(header)
    if magic != LZIP_MAGIC:
        raise CorruptContainerError("Bad lzip magic")
    if version != LZIP_VERSION:
        raise CorruptContainerError(f"Unsupported lzip version: {version}")
    return decode_dict_size(coded)


class LzipWriter(io.RawIOBase):
    """Write-only stream that encodes everything written into one lzip member.

    The member is terminated (end-of-stream marker plus trailer) on
    ``close()``. The target stream is never closed.
    """

    def __init__(self, fp: BinaryIO, level: int = DEFAULT_COMPRESSION_LEVEL):
        super().__init__()
        self._fp = fp
        self.level = max(MIN_COMPRESSION_LEVEL, min(MAX_COMPRESSION_LEVEL, level))
        self.dict_size = dict_size_for_level(self.level)
        self._compressor = lzma.LZMACompressor(
            format=lzma.FORMAT_RAW, filters=_lzma1_filters(self.dict_size, self.level)
        )
        self._crc = 0
        self._data_size = 0
        header = _HEADER_STRUCT.pack(LZIP_MAGIC, LZIP_VERSION, encode_dict_size(self.dict_size))
        self._fp.write(header)
        self._member_size = len(header)

    def writable(self) -> bool:
        return True

    def write(self, data) -> int:
        if self.closed:
            raise ValueError("I/O operation on closed lzip stream")
        with memoryview(data) as view:
            n = view.nbytes
            raw = view.tobytes()
        if not n:
            return 0
        self._crc = zlib.crc32(raw, self._crc)
        self._data_size += n
        out = self._compressor.compress(raw)
        if out:
            self._fp.write(out)
            self._member_size += len(out)
        return n

    def close(self) -> None:
        if self.closed:
            return
        try:
            out = self._compressor.flush()
            self._fp.write(out)
            self._member_size += len(out) + LZIP_TRAILER_SIZE
            self._fp.write(_TRAILER_STRUCT.pack(self._crc & 0xFFFFFFFF, self._data_size, self._member_size))
            logger.debug("lzip member finished: %d -> %d bytes", self._data_size, self._member_size)
        finally:
            self._compressor = None
            super().close()


class LzipReader(io.RawIOBase):
    """Sequential decoder for a stream of one or more lzip members.

    Each member's CRC32 and data size are checked when its trailer is
    reached. The reader is not seekable; the source stream is never closed.
    """

    def __init__(self, fp: BinaryIO):
        super().__init__()
        self._fp = fp
        self._input = b""
        self._decompressor = None
        self._members = 0
        self._crc = 0
        self._data_size = 0
        self._eof = False

    def readable(self) -> bool:
        return True

    def readinto(self, b) -> int:
        with memoryview(b) as view, view.cast("B") as byte_view:
            data = self._read(len(byte_view))
            byte_view[: len(data)] = data
        return len(data)

    @property
    def members(self) -> int:
        return self._members

    def _fill(self, n: int) -> bool:
        while len(self._input) < n:
            chunk = self._fp.read(max(READ_BUFFER_SIZE, n - len(self._input)))
            if not chunk:
                break
            self._input += chunk
        return len(self._input) >= n

    def _take(self, n: int) -> bytes:
        data = self._input[:n]
        self._input = self._input[n:]
        return data

    def _start_member(self) -> bool:
        if not self._fill(LZIP_HEADER_SIZE):
            if self._members and not self._input:
                self._eof = True
                return False
            raise CorruptContainerError("Truncated lzip header")
        dict_size = parse_header(self._take(LZIP_HEADER_SIZE))
        self._decompressor = lzma.LZMADecompressor(format=lzma.FORMAT_RAW, filters=_lzma1_filters(dict_size))
        self._crc = 0
        self._data_size = 0
        self._members += 1
        return True

    def _finish_member(self) -> None:
        self._input = self._decompressor.unused_data + self._input
        self._decompressor = None
        if not self._fill(LZIP_TRAILER_SIZE):
            raise CorruptContainerError("Truncated lzip trailer")
        crc, data_size, _member_size = _TRAILER_STRUCT.unpack(self._take(LZIP_TRAILER_SIZE))
        if crc != (self._crc & 0xFFFFFFFF):
            raise CorruptContainerError("lzip member CRC mismatch; data corrupted")
        if data_size != self._data_size:
            raise CorruptContainerError("lzip member data size mismatch")

    def _read(self, size: int) -> bytes:
        if size <= 0:
            return b""
        while not self._eof:
            if self._decompressor is None and not self._start_member():
                break
            d = self._decompressor
            if d.needs_input:
                if not self._input:
                    self._input = self._fp.read(READ_BUFFER_SIZE)
                    if not self._input:
                        raise CorruptContainerError("lzip member ended before the end-of-stream marker")
                chunk, self._input = self._input, b""
            else:
                chunk = b""
            try:
                out = d.decompress(chunk, size)
            except lzma.LZMAError as exc:
                raise CorruptContainerError(f"lzip data error: {exc}") from exc
            if out:
                self._crc = zlib.crc32(out, self._crc)
                self._data_size += len(out)
            if d.eof:
                self._finish_member()
            if out:
                return out
        return b""


def compress(data: bytes, level: int = DEFAULT_COMPRESSION_LEVEL) -> bytes:
    buf = io.BytesIO()
    with LzipWriter(buf, level) as w:
        w.write(data)
    return buf.getvalue()


def decompress(data: bytes) -> bytes:
    with LzipReader(io.BytesIO(data)) as r:
        return r.read()


def member_info(data: bytes) -> Tuple[int, int, int]:
    """Return (crc32, data size, member size) from the trailer of a
    single-member buffer."""
    if len(data) < LZIP_HEADER_SIZE + LZIP_TRAILER_SIZE:
        raise CorruptContainerError("Buffer too short for an lzip member")
    parse_header(data[:LZIP_HEADER_SIZE])
    return _TRAILER_STRUCT.unpack(data[-LZIP_TRAILER_SIZE:])
