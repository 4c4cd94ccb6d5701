"""
Shared fixtures: isolated settings and a stand-in for soffice/pdftoppm.
"""

from collections.abc import Sequence
from pathlib import Path

import pytest

from scorm_backend.config import WorkerSettings
from scorm_backend.errors import StageExecutionError
from scorm_backend.stages import StageResult

# Smallest valid PNG header; the pipeline never decodes images.
FAKE_PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32


class FakeRunner:
    """Mimics the side effects of soffice and pdftoppm without running them."""

    def __init__(
        self,
        pages: int = 3,
        produce_pdf: bool = True,
        fail_tool: str | None = None,
        page_bytes: bytes = FAKE_PNG,
    ) -> None:
        self.pages = pages
        self.produce_pdf = produce_pdf
        self.fail_tool = fail_tool
        self.page_bytes = page_bytes
        self.calls: list[tuple[str, list[str]]] = []

    async def run(self, command: str, args: Sequence[str], cwd: Path | None = None) -> StageResult:
        args = list(args)
        tool = Path(command).name
        self.calls.append((tool, args))
        if tool == self.fail_tool:
            raise StageExecutionError(tool, "exit code 1", "/tmp/secret/path: boom")

        if tool == "soffice":
            outdir = Path(args[args.index("--outdir") + 1])
            source = Path(args[-1])
            if self.produce_pdf:
                (outdir / f"{source.stem}.pdf").write_bytes(b"%PDF-1.4 fake")
        elif tool == "pdftoppm":
            prefix = Path(args[-1])
            for i in range(1, self.pages + 1):
                prefix.with_name(f"{prefix.name}-{i}.png").write_bytes(self.page_bytes)
        return StageResult(tool=tool, elapsed_seconds=0.0)


@pytest.fixture
def workspaces_root(tmp_path: Path) -> Path:
    root = tmp_path / "workspaces"
    root.mkdir()
    return root


@pytest.fixture
def settings(workspaces_root: Path) -> WorkerSettings:
    return WorkerSettings(
        worker_secret="",
        workspaces_root=workspaces_root,
        stage_timeout_seconds=5,
        max_upload_bytes=1024 * 1024,
        log_level="DEBUG",
    )


@pytest.fixture
def deck(tmp_path: Path) -> Path:
    path = tmp_path / "Quarterly Review.pptx"
    path.write_bytes(b"PK\x03\x04 not really a pptx")
    return path
