from __future__ import annotations

import os
import sys
import lzma
import time
import shutil
import logging
import tarfile
import argparse

from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from tarlz.constants import MODE_READ, MODE_WRITE, MIN_TIMESTAMP
from tarlz.container import ReadContainer
from tarlz.entries import TableStatus
from tarlz.errors import TarlzError
from tarlz.pathutil import norm_path
from tarlz.registry import format_for_path, get_format, FORMATS


logger = logging.getLogger("tarlz")


def _format_for(archive: str, fmt: Optional[str]):
    return get_format(fmt) if fmt else format_for_path(archive)


def _collect_inputs(inputs: List[str]) -> List[Tuple[str, str]]:
    """Expand input files/directories into (archive key, filesystem path) pairs.

    Directories contribute their regular files under the directory's own
    name; symlinks and special files are skipped.
    """
    out: List[Tuple[str, str]] = []
    for item in inputs:
        src = Path(item)
        if src.is_dir():
            base = src.name or src.resolve().name
            for root, dirs, files in os.walk(src):
                dirs.sort()
                rel_root = os.path.relpath(root, src)
                for fn in sorted(files):
                    full = os.path.join(root, fn)
                    if os.path.islink(full) or not os.path.isfile(full):
                        continue
                    rel = fn if rel_root == "." else os.path.join(rel_root, fn)
                    out.append((norm_path(f"{base}/{rel}"), full))
        elif src.is_file():
            out.append((norm_path(src.name), str(src)))
        else:
            raise FileNotFoundError(f"Input not found: {item}")
    return out


def cmd_pack(output: str, inputs: List[str], *, fmt: Optional[str] = None, level: Optional[int] = None, quiet: bool = False) -> bool:
    """Create a container from files and directories.

    Args:
        output: Destination archive path; its extension picks the format
            unless ``fmt`` is given.
        inputs: Files/directories to store.
        fmt: Format name (lzma, lzip, xz).
        level: Compression level 0..9.
    """
    archive_format = _format_for(output, fmt)
    options: Dict[str, str] = {}
    if level is not None and archive_format.codec.level_option:
        options[archive_format.codec.level_option] = str(level)
    files = _collect_inputs(inputs)
    processed = 0
    t0 = time.time()
    with open(output, "wb") as fh:
        with archive_format.open(fh, MODE_WRITE, options) as container:
            for key, full in files:
                mtime = datetime.fromtimestamp(int(os.stat(full).st_mtime), tz=timezone.utc)
                with open(full, "rb") as src, container.create_file(key, last_write=mtime) as dst:
                    shutil.copyfileobj(src, dst)
                processed += os.path.getsize(full)
                if not quiet:
                    print(f"    adding: {key}")
    dt = max(0.000001, time.time() - t0)
    mib = processed / (1024.0 * 1024.0)
    print(f"Done: {len(files)} files; {mib:.2f} MiB in {dt:.1f}s; format={archive_format.DISPLAY_NAME}")
    return True


def _warn_partial(container: ReadContainer) -> None:
    if container.table_status is TableStatus.BUILT_WITH_WARNING:
        print(
            f"Warning: archive is damaged; only {container.recovered_count} entries could be recovered.",
            file=sys.stderr,
        )


def cmd_list(archive: str, *, prefix: str = "", sizes: bool = False, fmt: Optional[str] = None) -> bool:
    """List container entries, optionally filtered by key prefix."""
    archive_format = _format_for(archive, fmt)
    with open(archive, "rb") as fh, archive_format.open(fh, MODE_READ) as container:
        if sizes:
            rows = [f"{size}\t{key}" for key, size in container.list_files_with_size(prefix)]
        else:
            rows = container.list_files(prefix)
        _warn_partial(container)
    for row in rows:
        print(row)
    return True


def cmd_cat(archive: str, key: str, *, fmt: Optional[str] = None) -> bool:
    """Write one entry's bytes to stdout."""
    archive_format = _format_for(archive, fmt)
    with open(archive, "rb") as fh, archive_format.open(fh, MODE_READ) as container:
        stream = container.open_read(key)
        if stream is None:
            raise FileNotFoundError(f"No such entry: {key}")
        with stream:
            out = sys.stdout.buffer
            shutil.copyfileobj(stream, out)
            out.flush()
    return True


def cmd_unpack(archive: str, *, outdir: str = ".", keys: Optional[List[str]] = None, fmt: Optional[str] = None, quiet: bool = False) -> bool:
    """Extract entries (all, or the given keys) below ``outdir``.

    Existing files are overwritten. Modification times are restored when
    the entry carries one.
    """
    archive_format = _format_for(archive, fmt)
    extracted = 0
    with open(archive, "rb") as fh, archive_format.open(fh, MODE_READ) as container:
        wanted = keys or [e.key for e in container.entries() if e.is_file]
        _warn_partial(container)
        for key in wanted:
            rel = norm_path(key)
            if not rel:
                continue
            dst = os.path.join(outdir, *rel.split("/"))
            stream = container.open_read(key)
            if stream is None:
                raise FileNotFoundError(f"No such entry: {key}")
            os.makedirs(os.path.dirname(dst) or ".", exist_ok=True)
            with stream, open(dst, "wb") as out:
                shutil.copyfileobj(stream, out)
            mtime = container.get_last_write_time(key)
            if mtime != MIN_TIMESTAMP:
                ts = mtime.timestamp()
                os.utime(dst, (ts, ts))
            extracted += 1
            if not quiet:
                print(f" unpacking: {key}")
    print(f"Done: extracted {extracted} files")
    return True


def cmd_info(archive: str, *, fmt: Optional[str] = None) -> bool:
    """Show container information."""
    archive_format = _format_for(archive, fmt)
    with open(archive, "rb") as fh, archive_format.open(fh, MODE_READ) as container:
        table = container.entries()
        print(f"Archive: {archive}")
        print(f"  Format: {container.display_name} (.{container.filename_extension})")
        print(f"  Access: {'random' if container.random_access else 'sequential'}")
        print(f"  Entries: {len(table)}")
        print(f"    Files: {len([e for e in table if e.is_file])}")
        print(f"  Uncompressed size: {container.size}")
        print(f"  Status: {container.table_status.value}")
    return True


def main(argv: Optional[List[str]] = None):
    ap = argparse.ArgumentParser(
        prog="tarlz",
        description="Compressed tar container tool (lzma, lzip, xz)",
    )
    ap.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    sub = ap.add_subparsers(dest="cmd", required=True)

    ap_pack = sub.add_parser("pack", help="Create a container")
    ap_pack.add_argument("output", help="Output archive path (.tlz, .tar.lz, .txz)")
    ap_pack.add_argument("inputs", nargs="+", help="Input files/directories")
    ap_pack.add_argument("--format", dest="fmt", choices=sorted(FORMATS), help="Override format detection")
    ap_pack.add_argument("--level", type=int, help="Compression level 0..9")
    ap_pack.add_argument("--quiet", help="limit outputs to summaries only", action="store_true")

    ap_list = sub.add_parser("list", help="List container entries")
    ap_list.add_argument("archive", help="Archive path")
    ap_list.add_argument("--prefix", default="", help="Only list keys starting with this prefix")
    ap_list.add_argument("--sizes", action="store_true", help="Show entry sizes")
    ap_list.add_argument("--format", dest="fmt", choices=sorted(FORMATS), help="Override format detection")

    ap_cat = sub.add_parser("cat", help="Write one entry to stdout")
    ap_cat.add_argument("archive", help="Archive path")
    ap_cat.add_argument("key", help="Entry key")
    ap_cat.add_argument("--format", dest="fmt", choices=sorted(FORMATS), help="Override format detection")

    ap_unpack = sub.add_parser("unpack", help="Extract entries")
    ap_unpack.add_argument("archive", help="Archive path")
    ap_unpack.add_argument("keys", nargs="*", help="Specific entry keys to extract")
    ap_unpack.add_argument("--outdir", default=".", help="Output directory")
    ap_unpack.add_argument("--format", dest="fmt", choices=sorted(FORMATS), help="Override format detection")
    ap_unpack.add_argument("--quiet", help="limit outputs to summaries only", action="store_true")

    ap_info = sub.add_parser("info", help="Show container information")
    ap_info.add_argument("archive", help="Archive path")
    ap_info.add_argument("--format", dest="fmt", choices=sorted(FORMATS), help="Override format detection")

    args = ap.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s: %(name)s: %(message)s",
        stream=sys.stderr,
    )
    try:
        if args.cmd == "pack":
            cmd_pack(args.output, args.inputs, fmt=args.fmt, level=args.level, quiet=args.quiet)
        elif args.cmd == "list":
            cmd_list(args.archive, prefix=args.prefix, sizes=args.sizes, fmt=args.fmt)
        elif args.cmd == "cat":
            cmd_cat(args.archive, args.key, fmt=args.fmt)
        elif args.cmd == "unpack":
            cmd_unpack(args.archive, outdir=args.outdir, keys=args.keys, fmt=args.fmt, quiet=args.quiet)
        elif args.cmd == "info":
            cmd_info(args.archive, fmt=args.fmt)
        else:
            raise RuntimeError("Unknown command")
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)
    except (TarlzError, OSError, ValueError, RuntimeError, EOFError, lzma.LZMAError, tarfile.TarError) as e:
        logger.debug("Command failed", exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)


if __name__ == "__main__":
    main()
