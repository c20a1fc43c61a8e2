from __future__ import annotations

import sys
from typing import List, Optional


def to_backslash(key: str) -> str:
    return key.replace("/", "\\")


def to_slash(key: str) -> str:
    return key.replace("\\", "/")


def candidate_keys(key: str) -> List[str]:
    """Return the forms of ``key`` tried by a lookup, in order.

    Archive-internal separators do not have to match the caller's
    convention, so a lookup tries:
    - the key verbatim
    - the key with '/' rewritten to '\\'
    - the key with '\\' rewritten to '/'
    Duplicate forms are dropped.
    """
    out = [key]
    for alt in (to_backslash(key), to_slash(key)):
        if alt not in out:
            out.append(alt)
    return out


def platform_case_sensitive() -> bool:
    # Filenames are case-insensitive on Windows clients only
    return not sys.platform.startswith("win")


class FilenameComparer:
    """String comparison rule for archive keys.

    Args:
        case_sensitive: Compare keys case-sensitively. ``None`` picks the
            platform rule (see ``platform_case_sensitive``).
    """

    def __init__(self, case_sensitive: Optional[bool] = None):
        if case_sensitive is None:
            case_sensitive = platform_case_sensitive()
        self.case_sensitive = case_sensitive

    def fold(self, s: str) -> str:
        return s if self.case_sensitive else s.casefold()

    def equals(self, a: str, b: str) -> bool:
        return self.fold(a) == self.fold(b)

    def startswith(self, s: str, prefix: str) -> bool:
        return self.fold(s).startswith(self.fold(prefix))


def norm_key(key: str) -> str:
    """Validate a key for a new entry; keys are stored verbatim."""
    if key is None or key == "":
        raise ValueError("Entry key may not be empty")
    if "\x00" in key:
        raise ValueError("Entry key may not contain NUL")
    return key


def norm_path(p: str) -> str:
    """Normalize an entry key to a relative forward-slash path for extraction.

    Rules:
    - Convert backslashes to slashes
    - Strip leading/trailing slashes
    - Remove empty and '.' segments
    - Reject '..' segments
    """
    p = to_slash(p).strip("/")
    parts = [q for q in p.split("/") if q not in ("", ".")]
    for q in parts:
        if q == "..":
            raise ValueError("Path may not contain '..'")
    return "/".join(parts)
