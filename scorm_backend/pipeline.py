"""
Conversion pipeline: uploaded deck -> PDF -> PNG slides -> streamed SCORM ZIP.

Stages run strictly one after another inside a job. Any failure before
streaming starts releases the workspace and re-raises a classified
PipelineError; once a PackageStream has been handed out, the stream owns the
workspace and releases it when iteration ends, fails or is abandoned.
"""

import time
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass, field
from pathlib import Path

from loguru import logger
from starlette.concurrency import iterate_in_threadpool

from . import sequencer, stages, templates, workspace
from .config import DEFAULT_TITLE, MAX_TITLE_CHARS, WorkerSettings
from .errors import PipelineError, ResourceError, StageExecutionError
from .templates import PackageDocuments
from .workspace import Workspace
from .zip_utils import iter_scorm_zip


def normalize_title(title: str | None) -> str:
    """Default blank titles, cap the rest at MAX_TITLE_CHARS characters."""
    if title is None or not str(title).strip():
        return DEFAULT_TITLE
    return str(title)[:MAX_TITLE_CHARS]


@dataclass
class ConversionJob:
    workspace: Workspace
    title: str
    upload_path: Path | None = None
    stage: str = "allocate"
    started: float = field(default_factory=time.monotonic)

    @property
    def job_id(self) -> str:
        return self.workspace.job_id

    @property
    def base_name(self) -> str:
        return self.upload_path.stem if self.upload_path else ""


class PackageStream:
    """ZIP bytes for one finished job, produced as the consumer reads them.

    Owns the job's workspace: iterating to the end, failing mid-way or being
    closed early all release it. release() is idempotent, so the response
    layer also calls it once the response is done, even if the body was never
    read.
    """

    def __init__(
        self,
        job: ConversionJob,
        documents: PackageDocuments,
        slides: list[str],
        settings: WorkerSettings,
    ) -> None:
        self.job = job
        self.documents = documents
        self.slides = slides
        self._settings = settings
        self._released = False

    @property
    def entry_count(self) -> int:
        return len(self.slides) + 2

    def release(self) -> None:
        if self._released:
            return
        self._released = True
        workspace.release(self.job.workspace)
        logger.info(
            f"Job {self.job.job_id} finished in {time.monotonic() - self.job.started:.2f}s; workspace released"
        )

    async def __aiter__(self) -> AsyncIterator[bytes]:
        zip_iter = iter_scorm_zip(
            self.documents,
            self.slides,
            self.job.workspace.slides_dir,
            compresslevel=self._settings.zip_compresslevel,
            chunk_size=self._settings.stream_chunk_bytes,
        )
        self.job.stage = "stream"
        sent = 0
        try:
            # Each chunk is produced in a worker thread only when asked for.
            async for chunk in iterate_in_threadpool(zip_iter):
                sent += len(chunk)
                yield chunk
            logger.info(f"Job {self.job.job_id} streamed {self.entry_count} entries ({sent} bytes)")
        except Exception as e:
            logger.error(f"Job {self.job.job_id} failed while streaming after {sent} bytes: {e}")
            raise
        finally:
            zip_iter.close()
            self.release()


class Pipeline:
    """Orchestrates one conversion job per call.

    Holds no per-job state, so one instance serves concurrent requests.
    """

    def __init__(self, settings: WorkerSettings, runner: stages.StageRunner | None = None) -> None:
        self.settings = settings
        self.runner = runner or stages.StageRunner(timeout_seconds=settings.stage_timeout_seconds)

    async def convert(self, uploaded_path: Path, title: str | None = None) -> PackageStream:
        """Convert a deck already on disk. The source file itself is left alone."""

        async def place(ws: Workspace) -> Path:
            return workspace.copy_upload(ws, Path(uploaded_path))

        return await self._run(title, place)

    async def convert_upload(
        self,
        filename: str | None,
        reader: Callable[[int], Awaitable[bytes]],
        title: str | None = None,
    ) -> PackageStream:
        """Convert a deck streamed from an HTTP upload into a fresh workspace."""

        async def place(ws: Workspace) -> Path:
            return await workspace.save_upload(
                ws, filename, reader, max_bytes=self.settings.max_upload_bytes
            )

        return await self._run(title, place)

    async def _run(
        self, title: str | None, place: Callable[[Workspace], Awaitable[Path]]
    ) -> PackageStream:
        try:
            ws = workspace.allocate(self.settings.workspaces_root)
        except ResourceError as e:
            logger.error(f"Job failed at stage allocate: {type(e).__name__}: {e}")
            raise

        job = ConversionJob(workspace=ws, title=normalize_title(title))
        logger.info(f"Job {job.job_id} started")
        handed_off = False
        try:
            job.stage = "upload"
            job.upload_path = await place(ws)
            logger.debug(f"Job {job.job_id} received upload {job.base_name!r}")
            stream = await self._build(job, job.upload_path)
            handed_off = True
            return stream
        except PipelineError as e:
            self._log_failure(job, e)
            raise
        finally:
            if not handed_off:
                workspace.release(ws)

    async def _build(self, job: ConversionJob, upload_path: Path) -> PackageStream:
        ws = job.workspace

        job.stage = "convert_to_pdf"
        pdf_path = await stages.convert_to_pdf(
            self.runner, self.settings.soffice_bin, upload_path, ws.root
        )

        job.stage = "rasterize"
        try:
            ws.slides_dir.mkdir(exist_ok=True)
        except OSError as e:
            raise ResourceError(f"cannot create slides dir: {e}") from e
        await stages.rasterize_pdf(self.runner, self.settings.pdftoppm_bin, pdf_path, ws.slides_dir)

        job.stage = "sequence"
        slides = sequencer.sequence(ws.slides_dir)
        logger.info(f"Job {job.job_id} produced {len(slides)} slides")

        job.stage = "render"
        documents = templates.render(job.title, slides)
        return PackageStream(job, documents, slides, self.settings)

    @staticmethod
    def _log_failure(job: ConversionJob, e: PipelineError) -> None:
        if isinstance(e, StageExecutionError):
            logger.error(
                f"Job {job.job_id} failed at stage {job.stage}: tool={e.tool} "
                f"exit={e.exit_info} stderr={e.stderr_excerpt!r}"
            )
        else:
            logger.error(f"Job {job.job_id} failed at stage {job.stage}: {type(e).__name__}: {e}")
