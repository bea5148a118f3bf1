from __future__ import annotations

import asyncio
import stat
from pathlib import Path

import pytest

from conftest import REL_VIDEO, build_deck, write_pdf
from deck_analyzer.core.config import RenderSettings
from deck_analyzer.core.errors import RenderingError
from deck_analyzer.adapters.libreoffice import LibreOfficeRenderer, find_libreoffice
from deck_analyzer.parsers.container import Container


def _script(path: Path, body: str) -> str:
    path.write_text("#!/bin/sh\n" + body)
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return str(path)


def _fake_soffice(tmp_path: Path, pages: int = 2) -> str:
    template = write_pdf(tmp_path / "template.pdf", pages)
    return _script(
        tmp_path / "soffice",
        f"""
outdir=""
prev=""
for arg in "$@"; do
  if [ "$prev" = "--outdir" ]; then outdir="$arg"; fi
  prev="$arg"
  last="$arg"
done
echo "$@" > "{tmp_path}/args.txt"
cp "$last" "{tmp_path}/seen.pptx"
name=$(basename "$last")
cp "{template}" "$outdir/${{name%.*}}.pdf"
""",
    )


def _deck() -> Container:
    return Container.open(
        build_deck([[(REL_VIDEO, "../media/media1.mp4")], []], {"media1.mp4": b"video", "image1.png": b"png"})
    )


def test_render_converts_and_counts_pages(tmp_path, run_context):
    binary = _fake_soffice(tmp_path, pages=2)
    renderer = LibreOfficeRenderer(RenderSettings(binary=binary, timeout_seconds=10))

    rendered = asyncio.run(renderer.render(_deck(), run_context))

    assert rendered.page_count == 2
    assert rendered.path == run_context.render_dir / "out" / "deck.pdf"
    args = (tmp_path / "args.txt").read_text()
    assert "--headless" in args
    assert "--convert-to pdf:impress_pdf_Export" in args
    assert f"-env:UserInstallation=file://{run_context.render_dir.resolve()}/profile" in args


def test_videos_are_emptied_before_rendering(tmp_path, run_context):
    renderer = LibreOfficeRenderer(RenderSettings(binary=_fake_soffice(tmp_path), timeout_seconds=10))
    original = _deck()

    asyncio.run(renderer.render(original, run_context))

    seen = Container.open((tmp_path / "seen.pptx").read_bytes())
    assert seen.read_entry("ppt/media/media1.mp4") == b""
    assert seen.read_entry("ppt/media/image1.png") == b"png"
    assert seen.list_entries() == original.list_entries()
    assert original.read_entry("ppt/media/media1.mp4") == b"video"


def test_non_zero_exit_is_rendering_error(tmp_path, run_context):
    binary = _script(tmp_path / "soffice", 'echo "source file could not be loaded" >&2\nexit 3\n')
    renderer = LibreOfficeRenderer(RenderSettings(binary=binary, timeout_seconds=10))

    with pytest.raises(RenderingError, match="exited with code 3: source file could not be loaded"):
        asyncio.run(renderer.render(_deck(), run_context))


def test_missing_pdf_is_rendering_error(tmp_path, run_context):
    binary = _script(tmp_path / "soffice", "exit 0\n")
    renderer = LibreOfficeRenderer(RenderSettings(binary=binary, timeout_seconds=10))

    with pytest.raises(RenderingError, match="produced no PDF"):
        asyncio.run(renderer.render(_deck(), run_context))


def test_timeout_kills_process(tmp_path, run_context):
    binary = _script(tmp_path / "soffice", "exec sleep 30\n")
    renderer = LibreOfficeRenderer(RenderSettings(binary=binary, timeout_seconds=0.2))

    with pytest.raises(RenderingError, match="timed out"):
        asyncio.run(renderer.render(_deck(), run_context))


def test_missing_binary_is_rendering_error(tmp_path, run_context):
    renderer = LibreOfficeRenderer(RenderSettings(binary=str(tmp_path / "no-such-soffice")))

    assert find_libreoffice(str(tmp_path / "no-such-soffice")) is None
    with pytest.raises(RenderingError, match="not installed"):
        asyncio.run(renderer.render(_deck(), run_context))
