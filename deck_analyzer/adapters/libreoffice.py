from __future__ import annotations

import asyncio
import logging
import os
import shutil
from pathlib import Path

from pypdf import PdfReader
from pypdf.errors import PyPdfError

from ..core.config import RenderSettings
from ..core.errors import RenderingError
from ..models import RenderedDocument
from ..parsers.container import Container
from ..parsers.media import video_entries
from ..services.context import RunContext
from .base import RenderingService

log = logging.getLogger(__name__)

_CANDIDATE_COMMANDS = ("soffice", "libreoffice")
_CANDIDATE_PATHS = (
    "/Applications/LibreOffice.app/Contents/MacOS/soffice",
    "/usr/local/bin/soffice",
    "/opt/homebrew/bin/soffice",
)


def find_libreoffice(explicit: str | None = None) -> str | None:
    """Путь к soffice: явный из настроек, затем PATH, затем типовые пути macOS."""
    if explicit:
        return shutil.which(explicit) or (explicit if os.access(explicit, os.X_OK) else None)
    for cmd in _CANDIDATE_COMMANDS:
        found = shutil.which(cmd)
        if found:
            return found
    for candidate in _CANDIDATE_PATHS:
        if os.access(candidate, os.X_OK):
            return candidate
    return None


def count_pages(pdf_path: Path) -> int:
    try:
        return len(PdfReader(str(pdf_path)).pages)
    except (PyPdfError, OSError, ValueError) as e:
        raise RenderingError(f"Rendered PDF is unreadable: {e}") from e


def _write_render_copy(container: Container, target: Path) -> list[str]:
    # Пересжатие архива целиком, вызывается в отдельном потоке
    videos = video_entries(container)
    prepared = container.strip_parts(videos) if videos else container
    target.write_bytes(prepared.to_bytes())
    return videos


class LibreOfficeRenderer(RenderingService):
    """
    PPTX -> PDF через headless LibreOffice.

    • Видео в ppt/media/ опустошаются в одноразовой копии: LibreOffice на них
      подвисает, а в PDF они всё равно не попадают. Структура пакета и связи
      остаются на месте.
    • Для каждой задачи свой профиль пользователя LibreOffice, иначе
      параллельные конвертации блокируют друг друга.
    • Любой сбой -> RenderingError, задача переходит в failed.
    """

    def __init__(self, cfg: RenderSettings):
        self._cfg = cfg

    # -----------------------------------------------------------------
    async def render(self, container: Container, ctx: RunContext) -> RenderedDocument:
        binary = find_libreoffice(self._cfg.binary)
        if binary is None:
            raise RenderingError("LibreOffice is not installed (soffice/libreoffice not found)")

        render_dir = ctx.render_dir
        out_dir = render_dir / "out"
        profile_dir = render_dir / "profile"
        out_dir.mkdir(parents=True, exist_ok=True)
        profile_dir.mkdir(parents=True, exist_ok=True)

        source = render_dir / "deck.pptx"
        videos = await asyncio.to_thread(_write_render_copy, container, source)
        if videos:
            log.info("[%s] Emptied %d video stream(s) before rendering", ctx.job_id, len(videos))

        cmd = [
            binary,
            f"-env:UserInstallation={profile_dir.resolve().as_uri()}",
            "--headless",
            "--norestore",
            "--convert-to",
            self._cfg.convert_filter,
            "--outdir",
            str(out_dir),
            str(source),
        ]
        await self._run(cmd, ctx)

        pdf_path = out_dir / f"{source.stem}.pdf"
        if not pdf_path.is_file() or pdf_path.stat().st_size == 0:
            raise RenderingError(f"LibreOffice produced no PDF in {out_dir}")

        page_count = await asyncio.to_thread(count_pages, pdf_path)
        if page_count < 1:
            raise RenderingError("Rendered PDF has no pages")

        log.info("[%s] Rendered %s: %d page(s)", ctx.job_id, pdf_path.name, page_count)
        return RenderedDocument(path=pdf_path, page_count=page_count)

    # -----------------------------------------------------------------
    async def _run(self, cmd: list[str], ctx: RunContext) -> None:
        log.debug("[%s] Running: %s", ctx.job_id, " ".join(cmd))
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise RenderingError(f"Cannot start LibreOffice: {e}") from e

        try:
            stdout, stderr = await asyncio.wait_for(
                proc.communicate(), timeout=self._cfg.timeout_seconds
            )
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            raise RenderingError(
                f"LibreOffice timed out after {self._cfg.timeout_seconds:g}s"
            ) from None

        if proc.returncode != 0:
            detail = (stderr or stdout).decode("utf-8", "replace").strip()
            raise RenderingError(f"LibreOffice exited with code {proc.returncode}: {detail}")
