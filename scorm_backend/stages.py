"""
External conversion stages.

Both stages shell out to command line tools: LibreOffice (soffice) turns the
deck into a PDF, then poppler's pdftoppm rasterizes every page to PNG. The
runner itself knows nothing about either tool; it starts a process, waits for
it without blocking the event loop, and classifies failures.
"""

import asyncio
import time
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from loguru import logger

from .config import SLIDE_PREFIX
from .errors import ConversionError, StageExecutionError

STDERR_EXCERPT_CHARS = 500


@dataclass(frozen=True)
class StageResult:
    tool: str
    elapsed_seconds: float


def _excerpt(raw: bytes | None) -> str:
    text = (raw or b"").decode("utf-8", errors="replace").strip()
    if len(text) > STDERR_EXCERPT_CHARS:
        return text[-STDERR_EXCERPT_CHARS:]
    return text


class StageRunner:
    """Run an external executable to completion with a bounded timeout."""

    def __init__(self, timeout_seconds: float = 300.0) -> None:
        self.timeout_seconds = timeout_seconds

    async def run(self, command: str, args: Sequence[str], cwd: Path | None = None) -> StageResult:
        tool = Path(command).name
        logger.info(f"Running {tool}")
        started = time.monotonic()
        try:
            proc = await asyncio.create_subprocess_exec(
                command,
                *args,
                cwd=str(cwd) if cwd else None,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            # Missing binary, not executable, bad cwd.
            raise StageExecutionError(tool, f"could not start: {e}") from e

        try:
            _, stderr = await asyncio.wait_for(proc.communicate(), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            await self._kill(proc)
            raise StageExecutionError(tool, f"timed out after {self.timeout_seconds:g}s") from None
        except asyncio.CancelledError:
            await self._kill(proc)
            raise

        elapsed = time.monotonic() - started
        if proc.returncode != 0:
            raise StageExecutionError(tool, f"exit code {proc.returncode}", _excerpt(stderr))

        logger.info(f"{tool} finished in {elapsed:.2f}s")
        return StageResult(tool=tool, elapsed_seconds=elapsed)

    @staticmethod
    async def _kill(proc: asyncio.subprocess.Process) -> None:
        if proc.returncode is None:
            try:
                proc.kill()
            except ProcessLookupError:
                pass
            await proc.wait()


async def convert_to_pdf(
    runner: StageRunner, soffice_bin: str, source: Path, outdir: Path
) -> Path:
    """Stage 1: deck -> <outdir>/<stem>.pdf.

    soffice reports success for some inputs it cannot read, so the PDF's
    presence is checked separately from the exit code.
    """
    await runner.run(
        soffice_bin,
        ["--headless", "--convert-to", "pdf", "--outdir", str(outdir), str(source)],
        cwd=outdir,
    )
    pdf_path = outdir / f"{source.stem}.pdf"
    if not pdf_path.is_file():
        raise ConversionError(f"{Path(soffice_bin).name} produced no {pdf_path.name}")
    return pdf_path


async def rasterize_pdf(
    runner: StageRunner, pdftoppm_bin: str, pdf_path: Path, slides_dir: Path
) -> None:
    """Stage 2: one PNG per page under slides_dir, named by pdftoppm.

    pdftoppm pads page numbers only to the width of the page count
    (slide-1.png vs slide-01.png), so callers must sort naturally.
    """
    await runner.run(
        pdftoppm_bin,
        ["-png", str(pdf_path), str(slides_dir / SLIDE_PREFIX)],
        cwd=slides_dir,
    )
