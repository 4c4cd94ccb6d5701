from __future__ import annotations

import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, File, Form, Header, HTTPException, Request, UploadFile
from fastapi.responses import PlainTextResponse, StreamingResponse
from loguru import logger
from pydantic import BaseModel
from starlette.types import Receive, Scope, Send

from scorm_backend.config import PACKAGE_FILENAME, WorkerSettings, load_settings
from scorm_backend.errors import AuthorizationError, PipelineError, UploadTooLargeError, ValidationError
from scorm_backend.logging_config import setup_logging
from scorm_backend.pipeline import PackageStream, Pipeline
from scorm_backend.security import mask_secret, secret_matches
from scorm_backend.workspace import sweep_stale_workspaces


class DiagResponse(BaseModel):
    has_secret: bool
    secret_masked: str


class PackageResponse(StreamingResponse):
    """Streams a PackageStream and releases its workspace however the response ends.

    This covers the client going away before or during the body, which a
    background task would not.
    """

    def __init__(self, package: PackageStream, headers: dict[str, str]) -> None:
        super().__init__(package, media_type="application/zip", headers=headers)
        self.package = package

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            self.package.release()


def _require_worker_secret(request: Request, x_worker_secret: Optional[str] = Header(None)) -> None:
    settings: WorkerSettings = request.app.state.settings
    received = (x_worker_secret or "").strip()
    # Lengths only: never log secret material.
    logger.debug(f"Secret check: received_len={len(received)} expected_len={len(settings.worker_secret)}")
    if not secret_matches(received, settings.worker_secret):
        raise HTTPException(status_code=401, detail=AuthorizationError.public_message)


def create_app(settings: WorkerSettings | None = None, pipeline: Pipeline | None = None) -> FastAPI:
    settings = settings or load_settings()
    pipeline = pipeline or Pipeline(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging(settings.log_level)
        # Workspaces left behind by a previous process that died mid-job.
        try:
            settings.workspaces_root.mkdir(parents=True, exist_ok=True)
            deleted = sweep_stale_workspaces(settings.workspaces_root)
            if deleted:
                logger.info(f"Removed {deleted} stale workspaces")
        except OSError as e:
            logger.warning(f"Startup workspace sweep failed: {e}")
        if not settings.worker_secret:
            logger.warning("WORKER_SECRET is not set; /convert accepts unauthenticated requests")
        yield

    app = FastAPI(title="SCORM Worker", lifespan=lifespan)
    app.state.settings = settings
    app.state.pipeline = pipeline

    @app.get("/health", response_class=PlainTextResponse)
    async def health() -> str:
        return "ok"

    @app.get("/diag", response_model=DiagResponse)
    async def diag() -> DiagResponse:
        return DiagResponse(
            has_secret=bool(settings.worker_secret),
            secret_masked=mask_secret(settings.worker_secret),
        )

    @app.post("/convert", dependencies=[Depends(_require_worker_secret)])
    async def convert(
        file: Optional[UploadFile] = File(None),
        title: Optional[str] = Form(None),
    ) -> PackageResponse:
        """Convert an uploaded .ppt/.pptx into a SCORM 1.2 ZIP.

        Returns the ZIP as a streamed attachment: index.html, imsmanifest.xml
        and slides/*.png.
        """
        if file is None:
            raise HTTPException(status_code=400, detail="No file uploaded")

        try:
            package = await pipeline.convert_upload(file.filename, file.read, title)
        except UploadTooLargeError as e:
            raise HTTPException(status_code=413, detail=e.public_message)
        except ValidationError as e:
            raise HTTPException(status_code=400, detail=e.public_message)
        except PipelineError as e:
            raise HTTPException(status_code=500, detail=f"Worker error: {e.public_message}")
        except Exception:
            logger.exception("Unexpected conversion failure")
            raise HTTPException(status_code=500, detail="Worker error: Conversion failed")
        finally:
            await file.close()

        headers = {
            "Content-Disposition": f'attachment; filename="{PACKAGE_FILENAME}"',
            "Cache-Control": "no-store",
            "X-Content-Type-Options": "nosniff",
        }
        return PackageResponse(package, headers=headers)

    return app


app = create_app()


if __name__ == "__main__":
    # Convenience: python server.py
    import uvicorn

    host = os.environ.get("HOST", "0.0.0.0")
    port = int(os.environ.get("PORT", "8080"))
    uvicorn.run("server:app", host=host, port=port, reload=False)
