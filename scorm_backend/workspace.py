"""Per-job scratch workspaces.

One workspace per conversion job, named by an unguessable job id so that
concurrent requests never share a directory. A workspace holds the uploaded
deck under source/, the intermediate PDF and the rasterized slides/ directory,
and is removed when the job ends, whichever way it ends.
"""
from __future__ import annotations

import shutil
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path

from loguru import logger
from starlette.concurrency import run_in_threadpool

from .config import DEFAULT_UPLOAD_FILENAME, SLIDES_SUBDIR, UPLOAD_CHUNK_BYTES, UPLOAD_SUBDIR
from .errors import ResourceError, UploadTooLargeError, ValidationError
from .security import is_safe_basename, new_job_id, normalize_job_id, safe_join


@dataclass(frozen=True)
class Workspace:
    job_id: str
    root: Path

    @property
    def slides_dir(self) -> Path:
        return self.root / SLIDES_SUBDIR

    @property
    def source_dir(self) -> Path:
        return self.root / UPLOAD_SUBDIR


def allocate(workspaces_root: Path) -> Workspace:
    job_id = new_job_id()
    root = (workspaces_root / job_id).resolve()
    try:
        workspaces_root.mkdir(parents=True, exist_ok=True)
        # exist_ok=False: a clash here means the id scheme is broken, not a retry case.
        root.mkdir(exist_ok=False)
    except OSError as e:
        raise ResourceError(f"cannot create workspace under {workspaces_root}: {e}") from e
    logger.debug(f"Allocated workspace for job {job_id}")
    return Workspace(job_id=job_id, root=root)


def release(ws: Workspace) -> bool:
    """Remove the workspace tree.

    Safe to call any number of times. Never raises: a cleanup failure must not
    mask the error that ended the job, so it is only logged.
    Returns True when something was removed.
    """
    try:
        shutil.rmtree(ws.root)
    except FileNotFoundError:
        return False
    except OSError as e:
        logger.warning(f"Failed to remove workspace for job {ws.job_id}: {e}")
        return False
    logger.debug(f"Released workspace for job {ws.job_id}")
    return True


def upload_filename(raw_name: str | None) -> str:
    """Reduce a client-supplied filename to a safe basename."""
    name = (raw_name or "").strip()
    # Browsers on Windows may send a full path.
    name = name.replace("\\", "/").rsplit("/", 1)[-1]
    if not is_safe_basename(name):
        return DEFAULT_UPLOAD_FILENAME
    return name


def _upload_dest(ws: Workspace, raw_name: str | None) -> Path:
    try:
        ws.source_dir.mkdir(exist_ok=True)
    except OSError as e:
        raise ResourceError(f"cannot create upload dir: {e}") from e
    return safe_join(ws.source_dir, upload_filename(raw_name))


async def save_upload(
    ws: Workspace,
    filename: str | None,
    reader: Callable[[int], Awaitable[bytes]],
    *,
    max_bytes: int,
) -> Path:
    """Stream an upload into the workspace's source/ dir in chunks, enforcing max_bytes.

    Disk writes run in the threadpool; only the reads from the client await
    on the event loop.
    """
    dest = _upload_dest(ws, filename)
    size = 0
    f_out = await run_in_threadpool(dest.open, "wb")
    try:
        while True:
            chunk = await reader(UPLOAD_CHUNK_BYTES)
            if not chunk:
                break
            size += len(chunk)
            if size > max_bytes:
                raise UploadTooLargeError(f"upload exceeds {max_bytes} bytes")
            await run_in_threadpool(f_out.write, chunk)
    finally:
        await run_in_threadpool(f_out.close)
    if size == 0:
        raise ValidationError("empty upload", public_message="No file uploaded")
    return dest


def copy_upload(ws: Workspace, source: Path) -> Path:
    """Copy an on-disk deck into the workspace, keeping its file name."""
    source = Path(source)
    if not source.is_file():
        raise ValidationError(f"not a file: {source}", public_message="No file uploaded")
    dest = _upload_dest(ws, source.name)
    try:
        shutil.copyfile(source, dest)
    except OSError as e:
        raise ResourceError(f"cannot copy upload into workspace: {e}") from e
    return dest


def sweep_stale_workspaces(workspaces_root: Path) -> int:
    """Delete leftover job workspaces, e.g. after a crash.

    Only deletes directories whose name is a valid job id.
    Returns the number of deleted workspaces.
    """
    if not workspaces_root.exists():
        return 0

    deleted = 0
    for child in workspaces_root.iterdir():
        if not child.is_dir():
            continue
        try:
            job_id = normalize_job_id(child.name)
        except ValueError:
            continue
        if release(Workspace(job_id=job_id, root=child)):
            deleted += 1
    return deleted
