from __future__ import annotations

import asyncio
import io
import zipfile
from pathlib import Path

import pytest
from pypdf import PdfWriter

from deck_analyzer.adapters.base import RenderingService, UnderstandingService
from deck_analyzer.core.config import Settings
from deck_analyzer.models import RenderedDocument
from deck_analyzer.parsers.container import Container
from deck_analyzer.services.context import RunContext

NS_A = "http://schemas.openxmlformats.org/drawingml/2006/main"
NS_P = "http://schemas.openxmlformats.org/presentationml/2006/main"
NS_R = "http://schemas.openxmlformats.org/officeDocument/2006/relationships"
NS_PKG = "http://schemas.openxmlformats.org/package/2006/relationships"
REL_IMAGE = "http://schemas.openxmlformats.org/officeDocument/2006/relationships/image"
REL_VIDEO = "http://schemas.openxmlformats.org/officeDocument/2006/relationships/video"
REL_LAYOUT = "http://schemas.openxmlformats.org/officeDocument/2006/relationships/slideLayout"
REL_LINK = "http://schemas.openxmlformats.org/officeDocument/2006/relationships/hyperlink"

CORE_XML = (
    '<?xml version="1.0" encoding="UTF-8" standalone="yes"?>'
    '<cp:coreProperties'
    ' xmlns:cp="http://schemas.openxmlformats.org/package/2006/metadata/core-properties"'
    ' xmlns:dc="http://purl.org/dc/elements/1.1/"'
    ' xmlns:dcterms="http://purl.org/dc/terms/">'
    "<dc:title>Quarterly Review</dc:title>"
    "<dc:creator>Analyst</dc:creator>"
    "<cp:lastModifiedBy>Editor</cp:lastModifiedBy>"
    "<dcterms:created>2024-01-02T10:00:00Z</dcterms:created>"
    "</cp:coreProperties>"
)


def slide_xml(n: int, font: str = "Calibri") -> str:
    return (
        '<?xml version="1.0" encoding="UTF-8" standalone="yes"?>'
        f'<p:sld xmlns:a="{NS_A}" xmlns:p="{NS_P}" xmlns:r="{NS_R}">'
        "<p:cSld><p:spTree><p:sp><p:txBody>"
        "<a:p><a:r><a:rPr>"
        f'<a:latin typeface="{font}"/><a:ea typeface=""/><a:cs typeface="Arial"/>'
        f"</a:rPr><a:t>Slide {n}</a:t></a:r></a:p>"
        "</p:txBody></p:sp></p:spTree></p:cSld></p:sld>"
    )


THEME_XML = (
    '<?xml version="1.0" encoding="UTF-8" standalone="yes"?>'
    f'<a:theme xmlns:a="{NS_A}" name="Office">'
    "<a:themeElements><a:fontScheme name=\"Office\">"
    '<a:majorFont><a:latin typeface="Calibri Light"/></a:majorFont>'
    '<a:minorFont><a:latin typeface=\'Calibri\' panose="020F0502020204030204"/></a:minorFont>'
    "</a:fontScheme></a:themeElements></a:theme>"
)


def rels_xml(targets: list) -> str:
    """targets: относительные пути или пары (тип связи, путь)."""
    items = []
    for i, target in enumerate(targets, start=1):
        rel_type, path = target if isinstance(target, tuple) else (REL_IMAGE, target)
        mode = ' TargetMode="External"' if path.startswith("http") else ""
        items.append(f'<Relationship Id="rId{i}" Type="{rel_type}" Target="{path}"{mode}/>')
    return (
        '<?xml version="1.0" encoding="UTF-8" standalone="yes"?>'
        f'<Relationships xmlns="{NS_PKG}">' + "".join(items) + "</Relationships>"
    )


def build_deck(
    slides: list[list],
    media: dict[str, bytes] | None = None,
    *,
    extra: dict[str, bytes] | None = None,
    broken_rels: tuple[int, ...] = (),
) -> bytes:
    """
    Минимальный PPTX: slides[i]: список целей связей слайда i+1,
    media: содержимое ppt/media/.
    """
    parts: dict[str, bytes] = {
        "[Content_Types].xml": b'<?xml version="1.0"?><Types/>',
        "docProps/core.xml": CORE_XML.encode(),
        "docProps/app.xml": (
            '<?xml version="1.0"?><Properties xmlns='
            '"http://schemas.openxmlformats.org/officeDocument/2006/extended-properties">'
            f"<Slides>{len(slides)}</Slides><HiddenSlides>0</HiddenSlides></Properties>"
        ).encode(),
        "ppt/presentation.xml": f'<p:presentation xmlns:p="{NS_P}"/>'.encode(),
        "ppt/theme/theme1.xml": THEME_XML.encode(),
    }
    for n, targets in enumerate(slides, start=1):
        parts[f"ppt/slides/slide{n}.xml"] = slide_xml(n).encode()
        if n in broken_rels:
            parts[f"ppt/slides/_rels/slide{n}.xml.rels"] = b"<Relationships><oops"
        else:
            all_targets = [(REL_LAYOUT, "../slideLayouts/slideLayout1.xml"), *targets]
            parts[f"ppt/slides/_rels/slide{n}.xml.rels"] = rels_xml(all_targets).encode()
    for name, data in (media or {}).items():
        parts[f"ppt/media/{name}"] = data
    parts.update(extra or {})

    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as archive:
        for name, data in parts.items():
            archive.writestr(name, data)
    return buf.getvalue()


def write_pdf(path: Path, pages: int) -> Path:
    writer = PdfWriter()
    for _ in range(pages):
        writer.add_blank_page(width=720, height=540)
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("wb") as fh:
        writer.write(fh)
    return path


# --- фейковые внешние сервисы ----------------------------------------------
class FakeRenderer(RenderingService):
    def __init__(self, pages: int = 3, error: Exception | None = None):
        self.pages = pages
        self.error = error
        self.seen: list[Container] = []

    async def render(self, container: Container, ctx: RunContext) -> RenderedDocument:
        self.seen.append(container)
        if self.error is not None:
            raise self.error
        path = write_pdf(ctx.render_dir / "deck.pdf", self.pages)
        return RenderedDocument(path=path, page_count=self.pages)


class FakeUnderstanding(UnderstandingService):
    """
    Ответы по имени файла; значение-исключение бросается.
    Записывает порядок вызовов и максимальное число одновременных вызовов.
    """

    def __init__(self, replies: dict[str, object] | None = None, document: object = None):
        self.replies = replies or {}
        self.document = document if document is not None else '{"pages": []}'
        self.calls: list[str] = []
        self.context_json: str | None = None
        self.active = 0
        self.max_active = 0

    async def _reply(self, key: str, value: object) -> str:
        self.calls.append(key)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await asyncio.sleep(0)
            if isinstance(value, BaseException):
                raise value
            if callable(value):
                return await value()
            return value
        finally:
            self.active -= 1

    async def analyze_image(self, path: Path) -> str:
        return await self._reply(path.name, self.replies.get(path.name, '{"extractedText": ""}'))

    async def analyze_video(self, path: Path) -> str:
        return await self._reply(path.name, self.replies.get(path.name, '{"audioTranscription": ""}'))

    async def analyze_document(self, path: Path, page_count: int, context_json: str) -> str:
        self.context_json = context_json
        return await self._reply("document", self.document)


async def fixed_duration(path: Path, timeout: float) -> float | None:
    return 12.5


# --- фикстуры ---------------------------------------------------------------
@pytest.fixture
def deck_builder():
    return build_deck


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        upload_root=tmp_path / "uploads",
        scratch_root=tmp_path / "scratch",
        output_root=tmp_path / "output",
        job_ttl_seconds=None,
    )


@pytest.fixture
def run_context(tmp_path) -> RunContext:
    return RunContext.create(
        "job-1",
        "deck.pptx",
        scratch_root=tmp_path / "scratch",
        output_root=tmp_path / "output",
    )
