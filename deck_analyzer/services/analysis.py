from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Awaitable, Callable, TypeVar

from ..adapters.base import UnderstandingService
from ..adapters.ffprobe import probe_duration
from ..core.config import UnderstandingSettings
from ..core.errors import UnderstandingError
from ..models import (
    AssetAnalysis,
    DeckMetadata,
    ExtractedMedia,
    MediaAsset,
    MediaKind,
    OmittedAsset,
    RenderedDocument,
    Report,
)
from .context import RunContext
from .replies import parse_document_reply, parse_image_reply, parse_video_reply
from .report import aggregate

log = logging.getLogger(__name__)

T = TypeVar("T")

# Колбэк смены стадии: JobOrchestrator пишет её в запись задачи
StageCallback = Callable[[str], Awaitable[None]]

OMIT_NO_TEXT = "no text extracted"


class AnalysisOrchestrator:
    """
    Прогон анализа одной презентации:
    сначала каждое изображение, затем каждое видео, затем весь PDF
    с контекстом из результатов по медиа.

    Все внешние вызовы идут строго по одному (слот прогона) и с таймаутом.
    Сбой отдельного медиафайла записывается в его результат и не
    останавливает прогон. Сбой общего прохода по документу фатален.
    """

    def __init__(
        self,
        understanding: UnderstandingService,
        cfg: UnderstandingSettings,
        *,
        duration_probe: Callable[[Path, float], Awaitable[float | None]] = probe_duration,
    ):
        self._understanding = understanding
        self._cfg = cfg
        self._probe = duration_probe

    # -----------------------------------------------------------------
    async def _call(self, ctx: RunContext, factory: Callable[[], Awaitable[T]]) -> T:
        async with ctx.call_slot:
            return await asyncio.wait_for(factory(), timeout=self._cfg.call_timeout_seconds)

    # -----------------------------------------------------------------
    async def analyze_image(self, ctx: RunContext, asset: MediaAsset) -> AssetAnalysis:
        try:
            raw = await self._call(ctx, lambda: self._understanding.analyze_image(asset.path))
        except Exception as e:
            log.warning("[%s] Image %s failed: %s: %s", ctx.job_id, asset.filename, type(e).__name__, e)
            return AssetAnalysis(
                asset_filename=asset.filename,
                kind=MediaKind.IMAGE,
                owning_slide_index=asset.owning_slide_index,
                error=_describe(e),
            )
        return parse_image_reply(asset, raw)

    async def analyze_video(self, ctx: RunContext, asset: MediaAsset) -> AssetAnalysis:
        duration = await self._probe(asset.path, self._cfg.probe_timeout_seconds)
        try:
            raw = await self._call(ctx, lambda: self._understanding.analyze_video(asset.path))
        except Exception as e:
            log.warning("[%s] Video %s failed: %s: %s", ctx.job_id, asset.filename, type(e).__name__, e)
            result = AssetAnalysis(
                asset_filename=asset.filename,
                kind=MediaKind.VIDEO,
                owning_slide_index=asset.owning_slide_index,
                transcription="",
                error=_describe(e),
            )
        else:
            result = parse_video_reply(asset, raw)
        result.duration_seconds = duration
        return result

    # -----------------------------------------------------------------
    async def run(
        self,
        ctx: RunContext,
        media: ExtractedMedia,
        rendered: RenderedDocument,
        metadata: DeckMetadata | None = None,
        *,
        on_stage: StageCallback | None = None,
    ) -> Report:
        async def stage(name: str) -> None:
            if on_stage is not None:
                await on_stage(name)

        # 1. Изображения
        await stage("ANALYZING_IMAGES")
        images: list[AssetAnalysis] = []
        for n, asset in enumerate(media.images, start=1):
            log.info("[%s] Analyzing image %d/%d: %s", ctx.job_id, n, len(media.images), asset.filename)
            images.append(await self.analyze_image(ctx, asset))

        # 2. Видео
        await stage("ANALYZING_VIDEOS")
        videos: list[AssetAnalysis] = []
        for n, asset in enumerate(media.videos, start=1):
            log.info("[%s] Analyzing video %d/%d: %s", ctx.job_id, n, len(media.videos), asset.filename)
            videos.append(await self.analyze_video(ctx, asset))

        # 3. Документ целиком, с контекстом по всем медиа
        await stage("ANALYZING_DOCUMENT")
        context_json = build_context(images + videos)
        try:
            raw = await self._call(
                ctx,
                lambda: self._understanding.analyze_document(
                    rendered.path, rendered.page_count, context_json
                ),
            )
        except Exception as e:
            raise UnderstandingError(f"Document analysis failed: {_describe(e)}") from e
        pages, warning = parse_document_reply(raw, rendered.page_count)

        reported, omitted = select_reported(images, videos)
        return aggregate(
            pages,
            reported,
            omitted=omitted,
            source_filename=ctx.source_filename,
            metadata=metadata,
            document_warning=warning,
            generated_at=datetime.now(timezone.utc),
        )


# ---------------------------------------------------------------------------
def _describe(e: BaseException) -> str:
    if isinstance(e, asyncio.TimeoutError):
        return "TimeoutError: external call timed out"
    return f"{type(e).__name__}: {e}"


def select_reported(
    images: list[AssetAnalysis], videos: list[AssetAnalysis]
) -> tuple[list[AssetAnalysis], list[OmittedAsset]]:
    """
    Изображения без текста и без ошибки в отчёт не попадают (только в
    omitted_media). Видео попадают всегда.
    """
    reported: list[AssetAnalysis] = []
    omitted: list[OmittedAsset] = []
    for analysis in images:
        if (analysis.extracted_text or "").strip() or analysis.error:
            reported.append(analysis)
        else:
            omitted.append(
                OmittedAsset(
                    asset_filename=analysis.asset_filename,
                    owning_slide_index=analysis.owning_slide_index,
                    reason=OMIT_NO_TEXT,
                )
            )
    reported.extend(videos)
    return reported, omitted


def build_context(assets: list[AssetAnalysis]) -> str:
    """JSON-сводка результатов по медиа для общего прохода по документу."""
    summary = []
    for a in assets:
        item: dict[str, object] = {
            "file": a.asset_filename,
            "kind": a.kind.value,
            "slide": a.owning_slide_index,
        }
        if a.kind is MediaKind.IMAGE:
            item["extractedText"] = a.extracted_text or ""
            item["description"] = a.description or ""
        else:
            item["transcription"] = a.transcription or ""
            item["description"] = a.description or ""
        if a.error:
            item["error"] = a.error
        summary.append(item)
    return json.dumps(summary, ensure_ascii=False, indent=2)
