from __future__ import annotations

import logging
import lzma
from typing import BinaryIO, Mapping, Optional

from .constants import DEFAULT_COMPRESSION_LEVEL, MIN_COMPRESSION_LEVEL, MAX_COMPRESSION_LEVEL
from .lzip import LzipReader, LzipWriter


logger = logging.getLogger(__name__)


def parse_level(options: Optional[Mapping[str, str]], key: str, default: int = DEFAULT_COMPRESSION_LEVEL) -> int:
    """Read a compression level option.

    Values are parsed as integers and clamped to 0..9. A missing or
    unparsable value yields ``default``.
    """
    if not options or key not in options:
        return default
    raw = options[key]
    try:
        level = int(str(raw).strip())
    except ValueError:
        logger.debug("Ignoring non-integer value %r for option %s", raw, key)
        return default
    return max(MIN_COMPRESSION_LEVEL, min(MAX_COMPRESSION_LEVEL, level))


class Codec:
    """Compression filter wrapped around a raw tar stream.

    ``open_writer`` and ``open_reader`` layer the filter over ``fp``;
    closing the returned stream finishes the filter but never closes ``fp``.
    ``random_access`` tells whether the decoded stream can seek, which
    decides if entries can be opened directly from the native reader.
    """

    name = "none"
    level_option: Optional[str] = None
    random_access = False

    def open_writer(self, fp: BinaryIO, level: int = DEFAULT_COMPRESSION_LEVEL) -> BinaryIO:
        raise NotImplementedError

    def open_reader(self, fp: BinaryIO) -> BinaryIO:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class LzmaCodec(Codec):
    name = "lzma"
    level_option = "lzma-compression-level"
    # LZMAFile emulates seeking by rewinding and decompressing forward
    random_access = True

    def open_writer(self, fp: BinaryIO, level: int = DEFAULT_COMPRESSION_LEVEL) -> BinaryIO:
        return lzma.LZMAFile(fp, mode="wb", format=lzma.FORMAT_ALONE, preset=level)

    def open_reader(self, fp: BinaryIO) -> BinaryIO:
        return lzma.LZMAFile(fp, mode="rb", format=lzma.FORMAT_ALONE)


class XzCodec(Codec):
    name = "xz"
    level_option = "xz-compression-level"
    random_access = True

    def open_writer(self, fp: BinaryIO, level: int = DEFAULT_COMPRESSION_LEVEL) -> BinaryIO:
        return lzma.LZMAFile(fp, mode="wb", format=lzma.FORMAT_XZ, check=lzma.CHECK_CRC64, preset=level)

    def open_reader(self, fp: BinaryIO) -> BinaryIO:
        return lzma.LZMAFile(fp, mode="rb", format=lzma.FORMAT_XZ)


class LzipCodec(Codec):
    name = "lzip"
    level_option = "lzip-compression-level"
    random_access = False

    def open_writer(self, fp: BinaryIO, level: int = DEFAULT_COMPRESSION_LEVEL) -> BinaryIO:
        return LzipWriter(fp, level)

    def open_reader(self, fp: BinaryIO) -> BinaryIO:
        return LzipReader(fp)
