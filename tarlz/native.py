from __future__ import annotations

import logging
import tarfile
from typing import BinaryIO, Iterator, Optional

from .codec import Codec


logger = logging.getLogger(__name__)


class TarView:
    """Open tar reader over a codec-wrapped stream.

    ``random_access`` opens the tar in seekable mode (``"r:"``) so that any
    member can be extracted after the listing. Otherwise the tar is read as
    a stream (``"r|"``) and only the member under the cursor can be opened.

    The view owns the decoded stream and the TarFile and releases both on
    ``close()``; the caller's stream is rewound to the start on open but is
    never closed.
    """

    def __init__(self, stream: BinaryIO, codec: Codec, random_access: bool):
        self.codec = codec
        self.random_access = random_access
        self._decoded: Optional[BinaryIO] = None
        self._tar: Optional[tarfile.TarFile] = None
        stream.seek(0)
        self._decoded = codec.open_reader(stream)
        try:
            self._tar = tarfile.open(fileobj=self._decoded, mode="r:" if random_access else "r|")
        except BaseException:
            self.close()
            raise
        logger.debug("Opened %s tar reader (%s)", codec.name, "random access" if random_access else "sequential")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    @property
    def closed(self) -> bool:
        return self._tar is None and self._decoded is None

    def members(self) -> Iterator[tarfile.TarInfo]:
        if self._tar is None:
            raise RuntimeError("Archive not open")
        return iter(self._tar)

    def open_member(self, member: tarfile.TarInfo) -> Optional[BinaryIO]:
        if self._tar is None:
            raise RuntimeError("Archive not open")
        return self._tar.extractfile(member)

    def close(self) -> None:
        tar, self._tar = self._tar, None
        decoded, self._decoded = self._decoded, None
        try:
            if tar is not None:
                tar.close()
        finally:
            if decoded is not None:
                decoded.close()
