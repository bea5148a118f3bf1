from __future__ import annotations

import logging
import posixpath
from pathlib import Path
from typing import Mapping

from ..models import ExtractedMedia, MediaAsset, MediaKind
from .container import MEDIA_PREFIX, Container
from .relationships import owner_of

log = logging.getLogger(__name__)

IMAGE_EXTENSIONS = frozenset({".png", ".jpg", ".jpeg", ".gif", ".bmp", ".svg"})
VIDEO_EXTENSIONS = frozenset({".mp4", ".avi", ".mov", ".wmv", ".mkv"})


def media_kind(filename: str) -> MediaKind | None:
    ext = posixpath.splitext(filename)[1].lower()
    if ext in IMAGE_EXTENSIONS:
        return MediaKind.IMAGE
    if ext in VIDEO_EXTENSIONS:
        return MediaKind.VIDEO
    return None


def video_entries(container: Container) -> list[str]:
    return [
        name
        for name in container.list_entries(MEDIA_PREFIX)
        if media_kind(name) is MediaKind.VIDEO
    ]


def extract_media(
    container: Container,
    owners: Mapping[str, int],
    media_dir: Path,
) -> ExtractedMedia:
    """
    Выгружает изображения и видео из ppt/media/ в `media_dir`.

    Каждый файл из белого списка попадает в результат ровно один раз,
    в порядке записей архива. Остальные расширения (emf, wav, ...) пропускаются.
    """
    media_dir.mkdir(parents=True, exist_ok=True)
    result = ExtractedMedia()

    for entry in container.list_entries(MEDIA_PREFIX):
        filename = posixpath.basename(entry)
        # Вложенные каталоги внутри ppt/media/ не используются PowerPoint
        if not filename or posixpath.dirname(entry) != MEDIA_PREFIX.rstrip("/"):
            continue

        kind = media_kind(filename)
        if kind is None:
            log.debug("Ignoring media entry %s (extension not supported)", entry)
            continue

        target = media_dir / filename
        target.write_bytes(container.read_entry(entry))

        asset = MediaAsset(
            filename=filename,
            kind=kind,
            path=target,
            owning_slide_index=owner_of(owners, filename),
        )
        if kind is MediaKind.IMAGE:
            result.images.append(asset)
        else:
            result.videos.append(asset)

    log.info(
        "Extracted %d image(s) and %d video(s) to %s",
        len(result.images), len(result.videos), media_dir,
    )
    return result
