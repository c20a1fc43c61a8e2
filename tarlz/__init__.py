"""
tarlz: named-entry access to compressed tar containers.

A container is a tar stream wrapped in one compression filter:

- LZMA ("alone" format), extension .tlz
- lzip, extension .tar.lz
- xz, extension .txz

Containers open in exactly one mode. A read container lists entries, checks
existence, reports sizes and modification times, and opens entry payloads; the
entry table is built by one scan and cached. A write container appends entries
one at a time, buffering each in memory until it is closed.

lzip streams cannot seek, so reading one of their entries rescans the
container from the start.
"""

from .container import (
    ArchiveContainer,
    ArchiveFormat,
    CompressionHint,
    LzipArchive,
    LzmaArchive,
    ReadContainer,
    WriteContainer,
    XzArchive,
    open_container,
)
from .constants import MODE_READ, MODE_WRITE, MIN_TIMESTAMP

__version__ = "0.1"

__all__ = [
    "constants",
    "codec",
    "lzip",
    "entries",
    "container",
    "registry",
    "ArchiveContainer",
    "ArchiveFormat",
    "CompressionHint",
    "LzipArchive",
    "LzmaArchive",
    "ReadContainer",
    "WriteContainer",
    "XzArchive",
    "open_container",
    "MODE_READ",
    "MODE_WRITE",
    "MIN_TIMESTAMP",
]
