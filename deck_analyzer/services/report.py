from __future__ import annotations

import logging
import shutil
import zipfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable

from ..models import (
    AssetAnalysis,
    DeckMetadata,
    ExtractedMedia,
    MediaKind,
    OmittedAsset,
    PageAnalysis,
    RenderedDocument,
    Report,
    ReportPage,
)

log = logging.getLogger(__name__)

REPORT_FILENAME = "report.md"


def aggregate(
    pages: Iterable[PageAnalysis],
    assets: Iterable[AssetAnalysis],
    *,
    omitted: Iterable[OmittedAsset] = (),
    source_filename: str = "",
    metadata: DeckMetadata | None = None,
    document_warning: str | None = None,
    generated_at: datetime | None = None,
) -> Report:
    """
    Собирает отчёт: страницы по возрастанию номера (дубли отбрасываются,
    остаётся первая), к каждой странице добавляются медиа этого слайда в исходном
    порядке. Медиа без владельца или со слайдом без страницы уходят
    в unassigned_media.
    """
    by_number: dict[int, ReportPage] = {}
    for page in pages:
        if page.page_number in by_number:
            log.debug("Duplicate page %d dropped", page.page_number)
            continue
        by_number[page.page_number] = ReportPage(page=page)

    unassigned: list[AssetAnalysis] = []
    for asset in assets:
        owner = asset.owning_slide_index
        target = by_number.get(owner) if isinstance(owner, int) else None
        if target is None:
            unassigned.append(asset)
        else:
            target.assets.append(asset)

    ordered = [by_number[n] for n in sorted(by_number)]
    return Report(
        source_filename=source_filename,
        generated_at=generated_at or datetime.now(timezone.utc),
        page_count=len(ordered),
        metadata=metadata or DeckMetadata(),
        pages=ordered,
        unassigned_media=unassigned,
        omitted_media=list(omitted),
        document_warning=document_warning,
    )


# --- Markdown ---------------------------------------------------------------
def _asset_block(asset: AssetAnalysis, level: str = "###") -> list[str]:
    lines = [f"{level} {asset.asset_filename} ({asset.kind.value})", ""]
    lines.append(f"- **Slide Number:** {asset.owning_slide_index}")
    if asset.kind is MediaKind.IMAGE:
        lines.append(f"- **Extracted Text:** {asset.extracted_text or 'No text found'}")
        lines.append(f"- **Description:** {asset.description or 'No description'}")
        lines.append(f"- **Confidence:** {asset.confidence or 'Unknown'}")
    else:
        duration = f"{asset.duration_seconds:.1f}s" if asset.duration_seconds is not None else "Unknown"
        lines.append(f"- **Duration:** {duration}")
        lines.append(f"- **Audio Transcription:** {asset.transcription or 'No speech'}")
        if asset.description:
            lines.append(f"- **Visual Description:** {asset.description}")
        if asset.scenes:
            lines.append("- **Scenes:**")
            for scene in asset.scenes:
                span = " - ".join(t for t in (scene.start_time, scene.end_time) if t)
                lines.append(f"  - {span or '?'}: {scene.description}")
    lines.append(f"- **Language:** {asset.language or 'Unknown'}")
    if asset.error:
        lines.append(f"- **Error:** {asset.error}")
    lines.append("")
    return lines


def render_markdown(report: Report) -> str:
    meta = report.metadata
    out = [
        f"# Complete Analysis: {report.source_filename}",
        "",
        "## Document Information",
        "",
        f"- Filename: {report.source_filename}",
        "- Type: PPTX",
        f"- Date Processed: {report.generated_at.isoformat()}",
        f"- Total Pages: {report.page_count}",
        f"- Total Images: {report.image_count}",
        f"- Total Videos: {report.video_count}",
    ]
    for label, value in (
        ("Title", meta.title),
        ("Author", meta.creator),
        ("Last Modified By", meta.last_modified_by),
        ("Created", meta.created),
        ("Modified", meta.modified),
        ("Hidden Slides", meta.hidden_slides),
    ):
        if value:
            out.append(f"- {label}: {value}")
    out.append("")

    if report.document_warning:
        out += [f"> **Warning:** {report.document_warning}", ""]

    for entry in report.pages:
        page = entry.page
        heading = f"## Page {page.page_number}"
        if page.title:
            heading += f": {page.title}"
        out += [heading, ""]
        if page.extracted_text:
            out += [page.extracted_text, ""]
        if page.bullet_points:
            out += [f"- {b}" for b in page.bullet_points] + [""]
        if page.visual_element_summary:
            out += [f"**Visual elements:** {page.visual_element_summary}", ""]
        if page.key_topics:
            out += [f"**Key topics:** {', '.join(page.key_topics)}", ""]
        for asset in entry.assets:
            out += _asset_block(asset)

    if report.unassigned_media:
        out += ["## Unassigned Media", ""]
        for asset in report.unassigned_media:
            out += _asset_block(asset)

    if report.omitted_media:
        out += ["## Omitted Media", ""]
        out += [
            f"- {o.asset_filename} (slide {o.owning_slide_index}): {o.reason}"
            for o in report.omitted_media
        ]
        out.append("")

    return "\n".join(out).rstrip() + "\n"


def render_report_file(report: Report) -> str:
    """Markdown + тот же отчёт в JSON для машинной обработки."""
    return (
        render_markdown(report)
        + "\n## Machine-readable Report\n\n```json\n"
        + report.model_dump_json(indent=2)
        + "\n```\n"
    )


# --- Артефакт ---------------------------------------------------------------
def write_bundle(
    report: Report,
    rendered: RenderedDocument,
    media: ExtractedMedia,
    output_dir: Path,
    stem: str,
) -> Path:
    """
    Пишет report.md, PDF и медиа из отчёта в `output_dir` и упаковывает
    всё в `<stem>_analysis.zip` там же. Возвращает путь к архиву.
    """
    output_dir.mkdir(parents=True, exist_ok=True)
    (output_dir / REPORT_FILENAME).write_text(render_report_file(report), encoding="utf-8")
    shutil.copy2(rendered.path, output_dir / f"{stem}.pdf")

    sources = {asset.filename: asset.path for asset in media.all}
    counters = {MediaKind.IMAGE: 0, MediaKind.VIDEO: 0}
    media_dir = output_dir / "media"
    for asset in report.reported_assets():
        src = sources.get(asset.asset_filename)
        if src is None or not src.is_file():
            continue
        counters[asset.kind] += 1
        media_dir.mkdir(exist_ok=True)
        name = f"{asset.kind.value}_{counters[asset.kind]:03d}{src.suffix.lower()}"
        shutil.copy2(src, media_dir / name)

    bundle = output_dir / f"{stem}_analysis.zip"
    files = sorted(p for p in output_dir.rglob("*") if p.is_file() and p != bundle)
    with zipfile.ZipFile(bundle, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        for path in files:
            archive.write(path, path.relative_to(output_dir).as_posix())

    log.info("Wrote bundle %s (%d file(s))", bundle, len(files))
    return bundle
