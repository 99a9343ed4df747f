"""caselaw_etl.source

Line streaming over (optionally compressed) JSONL case dumps.

The compression codec is chosen from the file suffix.  Lines are read as
bytes and decoded one at a time, so memory stays bounded by the longest line
and a single badly encoded line does not end the run.
"""

from __future__ import annotations

import bz2
import gzip
import lzma
import zlib
from contextlib import contextmanager
from pathlib import Path
from typing import IO, Callable, Iterator

_OPENERS: dict[str, Callable[[Path], IO[bytes]]] = {
    ".gz": lambda p: gzip.open(p, "rb"),
    ".bz2": lambda p: bz2.open(p, "rb"),
    ".xz": lambda p: lzma.open(p, "rb"),
}

# errors a truncated or corrupt compressed stream can raise while reading
_STREAM_ERRORS = (OSError, EOFError, zlib.error, lzma.LZMAError)


class SourceStreamError(Exception):
    """Unrecoverable failure opening or reading the source stream."""


def is_compressed(path: Path) -> bool:
    return path.suffix.lower() in _OPENERS


@contextmanager
def open_source(path: str | Path) -> Iterator[IO[bytes]]:
    """Yield a binary stream over path, decompressing by suffix."""
    p = Path(path)
    opener = _OPENERS.get(p.suffix.lower(), lambda q: open(q, "rb"))
    try:
        fh = opener(p)
    except _STREAM_ERRORS as exc:
        raise SourceStreamError(f"cannot open {p}: {exc}") from exc
    try:
        yield fh
    finally:
        fh.close()


def iter_source_lines(stream: IO[bytes]) -> Iterator[tuple[int, str | None]]:
    """Yield (line_no, text) for every line.

    text is None when the line is not valid UTF-8; the caller counts it as a
    parse error.  Decompression failures raise SourceStreamError.
    """
    line_no = 0
    while True:
        try:
            raw = stream.readline()
        except _STREAM_ERRORS as exc:
            raise SourceStreamError(f"read failed after line {line_no}: {exc}") from exc
        if not raw:
            return
        line_no += 1
        try:
            text: str | None = raw.decode("utf-8").rstrip("\r\n")
        except UnicodeDecodeError:
            text = None
        yield line_no, text


def extract_sample(
    source_path: str | Path,
    output_path: str | Path,
    sample_size: int = 100,
) -> int:
    """Copy the first sample_size non-blank lines into a plain JSONL file."""
    out = Path(output_path)
    out.parent.mkdir(parents=True, exist_ok=True)
    count = 0
    with open_source(source_path) as stream, out.open("w", encoding="utf-8") as fh:
        for _line_no, text in iter_source_lines(stream):
            if count >= sample_size:
                break
            if text is None or not text.strip():
                continue
            fh.write(text + "\n")
            count += 1
    return count
