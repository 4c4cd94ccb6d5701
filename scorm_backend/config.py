from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass
from pathlib import Path


# Upload filename used when the client does not send a usable one.
DEFAULT_UPLOAD_FILENAME = "upload.pptx"
DEFAULT_TITLE = "Converted Presentation"
MAX_TITLE_CHARS = 200

# Fixed names inside a job workspace and inside the produced package.
SLIDES_SUBDIR = "slides"
# Uploads are saved under source/, never beside slides/ or the PDF.
UPLOAD_SUBDIR = "source"
SLIDE_PREFIX = "slide"
SLIDE_EXT = ".png"
VIEWER_FILENAME = "index.html"
MANIFEST_FILENAME = "imsmanifest.xml"
PACKAGE_FILENAME = "course_scorm.zip"

UPLOAD_CHUNK_BYTES = 1024 * 1024


def _env_str(name: str, default: str) -> str:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip()


@dataclass(frozen=True)
class WorkerSettings:
    """Process-wide configuration, loaded once at startup and passed around."""

    worker_secret: str = ""
    workspaces_root: Path = Path(tempfile.gettempdir()) / "scorm-worker"
    soffice_bin: str = "soffice"
    pdftoppm_bin: str = "pdftoppm"
    stage_timeout_seconds: float = 300.0
    max_upload_bytes: int = 200 * 1024 * 1024  # 200MB
    zip_compresslevel: int = 6
    stream_chunk_bytes: int = 64 * 1024
    log_level: str = "INFO"


def load_settings() -> WorkerSettings:
    # Default: OS temp dir. Override with SCORM_WORKSPACES_ROOT.
    root_raw = os.environ.get("SCORM_WORKSPACES_ROOT")
    if root_raw and root_raw.strip():
        root = Path(root_raw)
    else:
        root = Path(tempfile.gettempdir()) / "scorm-worker"

    return WorkerSettings(
        worker_secret=(os.environ.get("WORKER_SECRET") or "").strip(),
        workspaces_root=root.resolve(),
        soffice_bin=_env_str("SCORM_SOFFICE_BIN", "soffice"),
        pdftoppm_bin=_env_str("SCORM_PDFTOPPM_BIN", "pdftoppm"),
        stage_timeout_seconds=float(_env_str("SCORM_STAGE_TIMEOUT_SECONDS", "300")),
        max_upload_bytes=int(_env_str("SCORM_MAX_UPLOAD_BYTES", str(200 * 1024 * 1024))),
        zip_compresslevel=int(_env_str("SCORM_ZIP_COMPRESSLEVEL", "6")),
        stream_chunk_bytes=int(_env_str("SCORM_STREAM_CHUNK_BYTES", str(64 * 1024))),
        log_level=_env_str("LOG_LEVEL", "INFO").upper(),
    )
