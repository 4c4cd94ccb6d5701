from __future__ import annotations

import re
from pathlib import Path

from .config import SLIDE_EXT
from .errors import EmptySequenceError


_DIGITS_RE = re.compile(r"(\d+)")


def natural_key(name: str) -> tuple:
    """Sort key treating digit runs as numbers: slide-2 < slide-10.

    Text parts compare case-insensitively; the raw name breaks ties so the
    order is total.
    """
    parts = _DIGITS_RE.split(name)
    key = tuple((0, int(p), "") if p.isdigit() else (1, 0, p.casefold()) for p in parts if p)
    return (key, name)


def sequence(directory: Path, ext: str = SLIDE_EXT) -> list[str]:
    """Return the slide file names in directory, in natural order.

    Raises EmptySequenceError when nothing matches: a zero-slide package is
    never a valid result.
    """
    ext = ext.lower()
    names = [
        entry.name
        for entry in Path(directory).iterdir()
        if entry.is_file() and entry.name.lower().endswith(ext)
    ]
    if not names:
        raise EmptySequenceError(f"no {ext} files in {Path(directory).name}/")
    return sorted(names, key=natural_key)
