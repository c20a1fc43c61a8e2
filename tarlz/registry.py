from __future__ import annotations

from typing import Dict, List, Type

from .container import ArchiveFormat, LzipArchive, LzmaArchive, XzArchive


# Format name -> container type
FORMATS: Dict[str, Type[ArchiveFormat]] = {
    "lzma": LzmaArchive,
    "lzip": LzipArchive,
    "xz": XzArchive,
}

# Extension -> format name for auto-detection
EXT_MAP: Dict[str, str] = {
    ".tlz": "lzma",
    ".tar.lzma": "lzma",
    ".tar.lz": "lzip",
    ".txz": "xz",
    ".tar.xz": "xz",
}


def get_format(name: str) -> Type[ArchiveFormat]:
    try:
        return FORMATS[name.lower()]
    except KeyError:
        raise ValueError(f"Unknown archive format '{name}'. Supported formats: {', '.join(sorted(FORMATS))}") from None


def format_for_path(path: str) -> Type[ArchiveFormat]:
    """Detect the container type from a filename, longest extension first."""
    lower = path.lower()
    for ext in sorted(EXT_MAP, key=len, reverse=True):
        if lower.endswith(ext):
            return FORMATS[EXT_MAP[ext]]
    raise ValueError(
        f"Cannot detect archive format for '{path}'. "
        f"Supported extensions: {', '.join(sorted(EXT_MAP))}"
    )


def supported_extensions() -> List[str]:
    return sorted(EXT_MAP)
