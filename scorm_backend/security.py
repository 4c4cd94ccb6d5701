from __future__ import annotations

import hmac
import re
import uuid
from pathlib import Path


_JOB_ID_RE = re.compile(r"^[0-9a-f]{32}$")


def new_job_id() -> str:
    """Return a fresh, unguessable job id (UUID4 as 32 lowercase hex chars).

    Job ids name workspace directories, so they must never collide between
    concurrent requests. uuid4 needs no shared state to get there.
    """
    return uuid.uuid4().hex


def normalize_job_id(job_id: str) -> str:
    """Validate a job id; only ids produced by new_job_id() are accepted."""
    if not isinstance(job_id, str):
        raise ValueError("Invalid job id")
    job_id = job_id.strip().lower()
    if not _JOB_ID_RE.match(job_id):
        raise ValueError("Invalid job id")
    return job_id


def secret_matches(received: str | None, expected: str) -> bool:
    """Compare the shared worker secret.

    An empty expected secret disables the check entirely. Both sides are
    whitespace-trimmed, then compared in constant time.
    """
    expected = (expected or "").strip()
    if not expected:
        return True
    received = (received or "").strip()
    return hmac.compare_digest(received.encode("utf-8"), expected.encode("utf-8"))


def mask_secret(secret: str) -> str:
    if not secret:
        return "(empty)"
    return f"{secret[:2]}…{secret[-2:]} ({len(secret)})"


def is_safe_basename(name: str) -> bool:
    """Allow only simple filenames (no directories)."""
    if not isinstance(name, str) or not name:
        return False
    if name in (".", ".."):
        return False
    if name != Path(name).name:
        return False
    if "/" in name or "\\" in name or "\x00" in name:
        return False
    return True


def safe_join(base_dir: Path, *parts: str) -> Path:
    """Join paths and ensure the result stays within base_dir."""
    base_dir = base_dir.resolve()
    candidate = base_dir
    for part in parts:
        candidate = candidate / part
    resolved = candidate.resolve()
    if resolved == base_dir:
        return resolved
    if base_dir not in resolved.parents:
        raise ValueError("Path traversal attempt")
    return resolved
