from __future__ import annotations

import io
import zipfile
from collections.abc import Iterator, Sequence
from pathlib import Path

from .config import MANIFEST_FILENAME, SLIDES_SUBDIR, VIEWER_FILENAME
from .security import safe_join
from .templates import PackageDocuments


class _ChunkSink(io.RawIOBase):
    """Write-only, non-seekable buffer that is emptied after every entry.

    ZipFile falls back to data descriptors on non-seekable output, so entries
    can be handed to the consumer as soon as they are written.
    """

    def __init__(self) -> None:
        self._chunks: list[bytes] = []
        self._pos = 0

    def writable(self) -> bool:
        return True

    def write(self, b) -> int:  # type: ignore[override]
        data = bytes(b)
        self._chunks.append(data)
        self._pos += len(data)
        return len(data)

    def tell(self) -> int:
        return self._pos

    def flush(self) -> None:
        pass

    def drain(self) -> bytes:
        data = b"".join(self._chunks)
        self._chunks.clear()
        return data


def iter_scorm_zip(
    documents: PackageDocuments,
    slides: Sequence[str],
    slides_dir: Path,
    *,
    compresslevel: int = 6,
    chunk_size: int = 64 * 1024,
) -> Iterator[bytes]:
    """Yield the SCORM package as ZIP bytes, one piece at a time.

    Entry order: index.html, imsmanifest.xml, then slides/<name> in the order
    given. Slide files are copied in chunk_size reads; at most one chunk of
    compressed output is held in memory between yields.
    """
    sink = _ChunkSink()
    with zipfile.ZipFile(
        sink, mode="w", compression=zipfile.ZIP_DEFLATED, compresslevel=compresslevel
    ) as zf:
        zf.writestr(VIEWER_FILENAME, documents.viewer)
        zf.writestr(MANIFEST_FILENAME, documents.manifest)
        data = sink.drain()
        if data:
            yield data

        for name in slides:
            src = safe_join(slides_dir, name)
            with src.open("rb") as f_in, zf.open(f"{SLIDES_SUBDIR}/{name}", mode="w") as f_out:
                while True:
                    block = f_in.read(chunk_size)
                    if not block:
                        break
                    f_out.write(block)
                    data = sink.drain()
                    if data:
                        yield data
            data = sink.drain()
            if data:
                yield data

    # Central directory is written on close.
    data = sink.drain()
    if data:
        yield data

