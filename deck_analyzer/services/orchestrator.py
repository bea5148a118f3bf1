from __future__ import annotations

import asyncio
import logging
import shutil
from pathlib import Path

from ..adapters.base import RenderingService
from ..core.config import Settings
from ..models import JobStatus
from ..parsers.container import Container, read_metadata
from ..parsers.media import extract_media
from ..parsers.relationships import resolve_media_owners
from ..parsers.typography import rewrite_typography
from .analysis import AnalysisOrchestrator
from .context import RunContext
from .job_store import JobStore
from .report import write_bundle

log = logging.getLogger(__name__)


class JobOrchestrator:
    """Координирует задачу: прочитать PPTX → медиа → PDF → анализ → артефакт."""

    STAGES = [
        "READING",
        "EXTRACTING",
        "NORMALIZING",
        "RENDERING",
        "ANALYZING_IMAGES",
        "ANALYZING_VIDEOS",
        "ANALYZING_DOCUMENT",
        "SAVING",
    ]

    def __init__(
        self,
        *,
        store: JobStore,
        renderer: RenderingService,
        analysis: AnalysisOrchestrator,
        settings: Settings,
    ):
        self._store = store
        self._renderer = renderer
        self._analysis = analysis
        self._settings = settings
        self._slots = asyncio.Semaphore(settings.max_concurrent_jobs)
        self._accepting = True
        self._inflight: set[asyncio.Task] = set()

    # -----------------------------------------------------------------
    @property
    def accepting(self) -> bool:
        return self._accepting

    def stop_accepting(self) -> None:
        """Новые задачи не берутся; начатые доходят до конечного состояния."""
        self._accepting = False

    async def drain(self) -> None:
        pending = [t for t in self._inflight if t is not asyncio.current_task()]
        if pending:
            log.info("Waiting for %d in-flight job(s) to finish", len(pending))
            await asyncio.gather(*pending, return_exceptions=True)

    def dispatch(self, job_id: str) -> asyncio.Task:
        task = asyncio.create_task(self.process_job(job_id), name=f"job-{job_id}")
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return task

    async def resume_pending(self) -> list[str]:
        """После рестарта заново запускает задачи, оставшиеся в pending."""
        pending = await self._store.list_jobs(status=JobStatus.PENDING, limit=10_000)
        for job in pending:
            self.dispatch(job.id)
        if pending:
            log.info("Resumed %d pending job(s)", len(pending))
        return [job.id for job in pending]

    # -----------------------------------------------------------------
    def _progress(self, stage: str) -> float:
        # Доля пройденных стадий
        try:
            return (self.STAGES.index(stage) + 1) / len(self.STAGES)
        except ValueError:
            return 0.0

    def _normalize(self, container: Container, ctx: RunContext) -> Container:
        cfg = self._settings.render
        if not cfg.normalize_fonts:
            return container
        try:
            return rewrite_typography(container, cfg.font_name)
        except Exception as e:
            log.warning("[%s] Typography rewrite failed, rendering original: %s", ctx.job_id, e)
            return container

    # -----------------------------------------------------------------
    async def process_job(self, job_id: str) -> None:
        """Полный конвейер обработки одной задачи."""
        if not self._accepting:
            log.info("Not accepting new jobs, %s stays pending", job_id)
            return

        current = asyncio.current_task()
        if current is not None:
            self._inflight.add(current)
        try:
            async with self._slots:
                # Пока ждали слот, могла начаться остановка
                if not self._accepting:
                    log.info("Not accepting new jobs, %s stays pending", job_id)
                    return
                await self._run(job_id)
        finally:
            if current is not None:
                self._inflight.discard(current)

    async def _run(self, job_id: str) -> None:
        job = await self._store.claim(job_id)
        if job is None:
            return

        ctx = RunContext.create(
            job.id,
            job.source_filename,
            scratch_root=self._settings.scratch_root,
            output_root=self._settings.output_root,
        )
        stage = "CLAIMED"

        async def set_stage(name: str) -> None:
            nonlocal stage
            stage = name
            await self._store.update_stage(job.id, name, self._progress(name))

        log.info("[%s] Starting processing of '%s'", job.id, job.source_filename)
        try:
            # СТАДИЯ 1: READING
            await set_stage("READING")
            if not job.source_path:
                raise FileNotFoundError("job has no source file")
            data = await asyncio.to_thread(Path(job.source_path).read_bytes)
            container = await asyncio.to_thread(Container.open, data)
            metadata = await asyncio.to_thread(read_metadata, container)

            # СТАДИЯ 2: EXTRACTING
            await set_stage("EXTRACTING")
            owners = await asyncio.to_thread(resolve_media_owners, container)
            media = await asyncio.to_thread(extract_media, container, owners, ctx.media_dir)

            # СТАДИЯ 3: NORMALIZING
            await set_stage("NORMALIZING")
            prepared = await asyncio.to_thread(self._normalize, container, ctx)

            # СТАДИЯ 4: RENDERING
            await set_stage("RENDERING")
            async with ctx.call_slot:
                rendered = await self._renderer.render(prepared, ctx)

            # СТАДИИ 5-7: ANALYZING_*
            report = await self._analysis.run(ctx, media, rendered, metadata, on_stage=set_stage)

            # СТАДИЯ 8: SAVING
            await set_stage("SAVING")
            bundle = await asyncio.to_thread(
                write_bundle, report, rendered, media, ctx.output_dir, ctx.stem
            )
            await self._store.complete(job.id, str(bundle))

        except Exception as e:
            detail = f"{stage} failed: {type(e).__name__}: {e}"
            log.exception("[%s] %s", job.id, detail)
            await self._store.fail(job.id, detail)
            log.info("[%s] Scratch kept for diagnosis: %s", job.id, ctx.scratch_dir)
            return

        shutil.rmtree(ctx.scratch_dir, ignore_errors=True)
        log.info("[%s] Finished successfully", job.id)
