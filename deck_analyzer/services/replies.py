from __future__ import annotations

import json
import logging
import re
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..core.errors import ReplyParseError
from ..models import AssetAnalysis, MediaAsset, MediaKind, PageAnalysis, Scene

log = logging.getLogger(__name__)

PARSE_FAILURE = "Failed to parse structured response"

_JSON_OBJECT_RE = re.compile(r"\{[\s\S]*\}")
_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


# --- ожидаемые формы ответов ------------------------------------------------
class _Reply(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    @field_validator("*", mode="before")
    @classmethod
    def _empty_to_none(cls, value: Any) -> Any:
        return None if value == "" else value


class ImageReply(_Reply):
    extracted_text: str | None = Field(default=None, alias="extractedText")
    description: str | None = None
    language: str | None = None
    confidence: str | None = None


class SceneReply(_Reply):
    start_time: str | None = Field(default=None, alias="startTime")
    end_time: str | None = Field(default=None, alias="endTime")
    description: str | None = None
    spoken_text: str | None = Field(default=None, alias="spokenText")


class VideoReply(_Reply):
    audio_transcription: str | None = Field(default=None, alias="audioTranscription")
    visual_description: str | None = Field(default=None, alias="visualDescription")
    scenes: list[SceneReply] | None = None
    language: str | None = None
    overall_summary: str | None = Field(default=None, alias="overallSummary")


class VisualElements(_Reply):
    description: str | None = None


class PageReply(_Reply):
    page_number: int | None = Field(default=None, alias="pageNumber")
    extracted_text: str | None = Field(default=None, alias="extractedText")
    title: str | None = None
    bullet_points: list[str] | None = Field(default=None, alias="bulletPoints")
    visual_elements: VisualElements | str | None = Field(default=None, alias="visualElements")
    key_topics: list[str] | None = Field(default=None, alias="keyTopics")
    language: str | None = None


class DocumentReply(_Reply):
    pages: list[PageReply]


# --- разбор -----------------------------------------------------------------
def load_json_object(raw: str) -> dict[str, Any]:
    """
    Достаёт JSON-объект из ответа модели: как есть, без ```-ограждения,
    или первый {...} фрагмент в тексте.
    """
    text = _FENCE_RE.sub("", raw.strip())
    candidates = [text]
    match = _JSON_OBJECT_RE.search(text)
    if match and match.group(0) != text:
        candidates.append(match.group(0))

    for candidate in candidates:
        try:
            value = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(value, dict):
            return value
    raise ReplyParseError("Reply does not contain a JSON object")


def _validate(model: type[_Reply], raw: str) -> Any:
    try:
        return model.model_validate(load_json_object(raw))
    except ValidationError as e:
        raise ReplyParseError(f"Unexpected reply shape: {e.error_count()} error(s)") from e


def parse_image_reply(asset: MediaAsset, raw: str) -> AssetAnalysis:
    result = AssetAnalysis(
        asset_filename=asset.filename,
        kind=MediaKind.IMAGE,
        owning_slide_index=asset.owning_slide_index,
    )
    try:
        reply: ImageReply = _validate(ImageReply, raw)
    except ReplyParseError as e:
        log.warning("Image %s: %s, keeping raw text", asset.filename, e)
        result.extracted_text = raw
        result.error = PARSE_FAILURE
        return result

    result.extracted_text = reply.extracted_text or ""
    result.description = reply.description
    result.language = reply.language
    result.confidence = reply.confidence
    return result


def parse_video_reply(asset: MediaAsset, raw: str) -> AssetAnalysis:
    result = AssetAnalysis(
        asset_filename=asset.filename,
        kind=MediaKind.VIDEO,
        owning_slide_index=asset.owning_slide_index,
        transcription="",
    )
    try:
        reply: VideoReply = _validate(VideoReply, raw)
    except ReplyParseError as e:
        log.warning("Video %s: %s, keeping raw text", asset.filename, e)
        result.transcription = raw
        result.error = PARSE_FAILURE
        return result

    result.transcription = reply.audio_transcription or ""
    result.description = reply.overall_summary or reply.visual_description
    result.language = reply.language
    result.scenes = [
        Scene(
            start_time=s.start_time,
            end_time=s.end_time,
            description=s.description or "",
            spoken_text=s.spoken_text,
        )
        for s in reply.scenes or []
    ]
    return result


def _page_from_reply(number: int, reply: PageReply) -> PageAnalysis:
    visual = reply.visual_elements
    summary = visual.description if isinstance(visual, VisualElements) else visual
    return PageAnalysis(
        page_number=number,
        extracted_text=reply.extracted_text or "",
        title=reply.title,
        bullet_points=reply.bullet_points,
        visual_element_summary=summary,
        key_topics=reply.key_topics,
        language=reply.language,
    )


def parse_document_reply(raw: str, page_count: int) -> tuple[list[PageAnalysis], str | None]:
    """
    Страницы 1..page_count и предупреждение (или None).

    Номера страниц всегда плотные: недостающие заполняются пустыми
    страницами, лишние и дубли отбрасываются. Если ответ не разобрался,
    сырой текст кладётся на первую страницу.
    """
    pages = {n: PageAnalysis(page_number=n) for n in range(1, page_count + 1)}

    try:
        data = load_json_object(raw)
        # Модель иногда отвечает одним объектом вместо списка страниц
        if "pages" not in data:
            data = {"pages": [data]}
        reply = DocumentReply.model_validate(data)
    except (ReplyParseError, ValidationError) as e:
        log.warning("Document reply not parsed (%s), keeping raw text on page 1", e)
        if pages:
            pages[1].extracted_text = raw
        return list(pages.values()), PARSE_FAILURE

    seen: set[int] = set()
    for position, page in enumerate(reply.pages, start=1):
        number = page.page_number or position
        if number in seen or number not in pages:
            log.debug("Ignoring page %s from document reply", number)
            continue
        seen.add(number)
        pages[number] = _page_from_reply(number, page)

    missing = page_count - len(seen)
    warning = f"Document reply covered {len(seen)} of {page_count} page(s)" if missing else None
    return list(pages.values()), warning
