from __future__ import annotations

import json
import re
import zipfile
from datetime import datetime, timezone

from conftest import write_pdf
from deck_analyzer.models import (
    AssetAnalysis,
    DeckMetadata,
    ExtractedMedia,
    MediaAsset,
    MediaKind,
    OmittedAsset,
    PageAnalysis,
    RenderedDocument,
    Report,
)
from deck_analyzer.services.report import aggregate, render_markdown, render_report_file, write_bundle

WHEN = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


def _image(name: str, slide, text: str = "text") -> AssetAnalysis:
    return AssetAnalysis(asset_filename=name, kind=MediaKind.IMAGE, owning_slide_index=slide, extracted_text=text)


def _video(name: str, slide) -> AssetAnalysis:
    return AssetAnalysis(asset_filename=name, kind=MediaKind.VIDEO, owning_slide_index=slide, transcription="hi")


def test_aggregate_orders_pages_and_attaches_assets():
    pages = [PageAnalysis(page_number=n, extracted_text=f"p{n}") for n in (3, 1, 2)]
    assets = [_image("a.png", 2), _video("v.mp4", 2), _image("b.png", "unknown"), _image("c.png", 9)]

    report = aggregate(pages, assets, source_filename="deck.pptx", generated_at=WHEN)

    assert [p.page.page_number for p in report.pages] == [1, 2, 3]
    assert [a.asset_filename for a in report.pages[1].assets] == ["a.png", "v.mp4"]
    assert report.pages[0].assets == [] and report.pages[2].assets == []
    assert [a.asset_filename for a in report.unassigned_media] == ["b.png", "c.png"]
    assert report.page_count == 3
    assert report.image_count == 3
    assert report.video_count == 1


def test_aggregate_is_total_and_deduplicates_pages():
    pages = [PageAnalysis(page_number=1, extracted_text="first"), PageAnalysis(page_number=1, extracted_text="again")]
    assets = [_image(f"{i}.png", i % 3) for i in range(6)]

    report = aggregate(pages, assets)

    assert len(report.pages) == 1
    assert report.pages[0].page.extracted_text == "first"
    assert sorted(a.asset_filename for a in report.reported_assets()) == sorted(a.asset_filename for a in assets)


def _report() -> Report:
    return aggregate(
        [
            PageAnalysis(page_number=1, extracted_text="Welcome", title="Intro", bullet_points=["one"]),
            PageAnalysis(page_number=2, extracted_text="Numbers", key_topics=["revenue"]),
        ],
        [_image("image1.png", 2, "Q1 revenue"), _video("media1.mp4", "unknown")],
        omitted=[OmittedAsset(asset_filename="blank.png", owning_slide_index=1, reason="no text extracted")],
        source_filename="deck.pptx",
        metadata=DeckMetadata(title="Quarterly Review", creator="Analyst"),
        document_warning="Document reply covered 2 of 3 page(s)",
        generated_at=WHEN,
    )


def test_render_markdown_sections():
    md = render_markdown(_report())

    assert md.startswith("# Complete Analysis: deck.pptx")
    assert "## Document Information" in md
    assert "- Title: Quarterly Review" in md
    assert "> **Warning:** Document reply covered 2 of 3 page(s)" in md
    assert md.index("## Page 1: Intro") < md.index("## Page 2") < md.index("### image1.png (image)")
    assert "## Unassigned Media" in md
    assert "- blank.png (slide 1): no text extracted" in md


def test_report_file_embeds_machine_readable_json():
    report = _report()
    text = render_report_file(report)

    match = re.search(r"```json\n(.*)\n```", text, re.S)
    assert match is not None
    assert Report.model_validate(json.loads(match.group(1))).model_dump() == report.model_dump()


def test_write_bundle(tmp_path):
    pdf = write_pdf(tmp_path / "render" / "deck.pdf", 2)
    media_dir = tmp_path / "media"
    media_dir.mkdir()
    (media_dir / "image1.png").write_bytes(b"png")
    (media_dir / "media1.mp4").write_bytes(b"mp4")
    (media_dir / "blank.png").write_bytes(b"blank")
    media = ExtractedMedia(
        images=[
            MediaAsset(filename="image1.png", kind=MediaKind.IMAGE, path=media_dir / "image1.png", owning_slide_index=2),
            MediaAsset(filename="blank.png", kind=MediaKind.IMAGE, path=media_dir / "blank.png", owning_slide_index=1),
        ],
        videos=[MediaAsset(filename="media1.mp4", kind=MediaKind.VIDEO, path=media_dir / "media1.mp4")],
    )

    bundle = write_bundle(_report(), RenderedDocument(path=pdf, page_count=2), media, tmp_path / "out", "deck")

    assert bundle == tmp_path / "out" / "deck_analysis.zip"
    with zipfile.ZipFile(bundle) as archive:
        names = set(archive.namelist())
        assert names == {"report.md", "deck.pdf", "media/image_001.png", "media/video_001.mp4"}
        assert archive.read("media/image_001.png") == b"png"
        assert "Complete Analysis" in archive.read("report.md").decode()
