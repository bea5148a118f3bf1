from __future__ import annotations

import asyncio
import base64
import logging
from pathlib import Path
from typing import Any, Final

import aiohttp

from ..core.config import UnderstandingSettings
from ..core.errors import UnderstandingError
from .base import UnderstandingService

log = logging.getLogger(__name__)

_MIME_TYPES: Final[dict[str, str]] = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".bmp": "image/bmp",
    ".svg": "image/svg+xml",
    ".mp4": "video/mp4",
    ".avi": "video/x-msvideo",
    ".mov": "video/quicktime",
    ".wmv": "video/x-ms-wmv",
    ".mkv": "video/x-matroska",
    ".pdf": "application/pdf",
}

IMAGE_PROMPT: Final[str] = """Analyze this image and extract ALL text content you can see.

Your response must be in the following JSON format:
{
  "extractedText": "Complete transcription of ALL text visible in the image.",
  "description": "Detailed description of what the image shows",
  "language": "detected language (e.g., 'en', 'de', 'fr')",
  "confidence": "high|medium|low"
}

Focus on extracting EVERY piece of text visible in the image. Do not summarize or paraphrase - provide exact transcription."""

VIDEO_PROMPT: Final[str] = """Analyze this video comprehensively and provide a complete transcription of all audio content and text visible in the video.

Your response must be in the following JSON format:
{
  "audioTranscription": "Complete word-for-word transcription of ALL audio/speech in the video",
  "visualDescription": "Overall description of what happens in the video",
  "scenes": [
    {
      "startTime": "mm:ss.SSS",
      "endTime": "mm:ss.SSS",
      "description": "What happens in this scene",
      "spokenText": "What is said during this scene"
    }
  ],
  "language": "primary language detected (e.g., 'en', 'de', 'fr')",
  "overallSummary": "Brief summary of the entire video content"
}

IMPORTANT:
1. Transcribe EVERY word spoken in the audio - do not summarize
2. Capture ALL text that appears on screen with timestamps
3. Be as detailed and accurate as possible"""

DOCUMENT_PROMPT: Final[str] = """Analyze this PDF. It was rendered from a presentation and has {page_count} page(s), one page per slide.

The embedded images and videos of the presentation were already analyzed; their results (with the slide each one belongs to) are:
{context_json}

Return a JSON object in the following format:
{{
  "pages": [
    {{
      "pageNumber": 1,
      "extractedText": "COMPLETE word-for-word transcription of ALL text on the page",
      "title": "The slide title if present",
      "bulletPoints": ["Array of bullet points if present"],
      "visualElements": {{"description": "Full description of visual elements"}},
      "keyTopics": ["Main topics discussed"],
      "language": "detected language code (de/en/etc)"
    }}
  ]
}}

Include exactly one entry per page, pageNumber from 1 to {page_count}.
Remember: extractedText must contain EVERY word visible on the page."""


def mime_type_for(path: Path) -> str:
    return _MIME_TYPES.get(path.suffix.lower(), "application/octet-stream")


def collect_text(payload: dict[str, Any]) -> str | None:
    """Склеивает текстовые части первого кандидата ответа generateContent."""
    candidates = payload.get("candidates") or []
    if not candidates:
        return None

    parts = (candidates[0].get("content") or {}).get("parts") or []
    extracted: list[str] = []
    for part in parts:
        text = part.get("text") if isinstance(part, dict) else None
        if isinstance(text, str) and text.strip():
            extracted.append(text.strip())
    return "\n".join(extracted) if extracted else None


class GeminiMediaAnalyzer(UnderstandingService):
    """
    Клиент Gemini `generateContent` поверх aiohttp.

    • Файлы до `inline_max_bytes` уходят прямо в запросе (inline_data, base64).
    • Более крупные загружаются через resumable Files API, ждём выхода из
      состояния PROCESSING, после ответа удаляем.

    Таймауты и последовательность вызовов задаёт вызывающий код.
    """

    def __init__(self, *, api_key: str | None, api_url: str, cfg: UnderstandingSettings):
        self._api_key = api_key
        self._base = api_url.rstrip("/")
        self._cfg = cfg

    # -----------------------------------------------------------------
    async def analyze_image(self, path: Path) -> str:
        return await self._generate(path, IMAGE_PROMPT)

    async def analyze_video(self, path: Path) -> str:
        return await self._generate(path, VIDEO_PROMPT)

    async def analyze_document(self, path: Path, page_count: int, context_json: str) -> str:
        prompt = DOCUMENT_PROMPT.format(page_count=page_count, context_json=context_json)
        return await self._generate(path, prompt)

    # -----------------------------------------------------------------
    def _headers(self) -> dict[str, str]:
        if not self._api_key:
            raise UnderstandingError("Gemini API key is not configured (GEMINI_API_KEY)")
        return {"x-goog-api-key": self._api_key}

    async def _generate(self, path: Path, prompt: str) -> str:
        mime_type = mime_type_for(path)
        data = await asyncio.to_thread(path.read_bytes)

        async with aiohttp.ClientSession(headers=self._headers()) as session:
            uploaded: dict[str, Any] | None = None
            try:
                if len(data) <= self._cfg.inline_max_bytes:
                    media_part = {
                        "inline_data": {
                            "mime_type": mime_type,
                            "data": base64.b64encode(data).decode("ascii"),
                        }
                    }
                else:
                    uploaded = await self._upload(session, path.name, data, mime_type)
                    media_part = {
                        "file_data": {
                            "mime_type": uploaded.get("mimeType", mime_type),
                            "file_uri": uploaded["uri"],
                        }
                    }

                payload = {
                    "contents": [{"parts": [media_part, {"text": prompt}]}],
                    "generationConfig": {
                        "temperature": self._cfg.temperature,
                        "responseMimeType": "application/json",
                    },
                }
                url = f"{self._base}/v1beta/models/{self._cfg.model}:generateContent"
                response = await self._request_json(session, "POST", url, json=payload)
            finally:
                if uploaded is not None:
                    await self._delete(session, uploaded["name"])

        text = collect_text(response)
        if text is None:
            raise UnderstandingError(f"Gemini response for {path.name} contained no text")
        return text

    # -----------------------------------------------------------------
    async def _request_json(
        self, session: aiohttp.ClientSession, method: str, url: str, **kwargs: Any
    ) -> dict[str, Any]:
        try:
            async with session.request(method, url, **kwargs) as resp:
                if resp.status >= 400:
                    body = await resp.text()
                    raise UnderstandingError(f"Gemini HTTP {resp.status}: {body[:500]}")
                try:
                    return await resp.json()
                except aiohttp.ContentTypeError:
                    text = await resp.text()
                    raise UnderstandingError(f"Gemini returned non-JSON: {text[:500]}") from None
        except aiohttp.ClientError as e:
            raise UnderstandingError(f"Gemini request failed: {type(e).__name__}: {e}") from e

    async def _upload(
        self, session: aiohttp.ClientSession, display_name: str, data: bytes, mime_type: str
    ) -> dict[str, Any]:
        start_headers = {
            "X-Goog-Upload-Protocol": "resumable",
            "X-Goog-Upload-Command": "start",
            "X-Goog-Upload-Header-Content-Length": str(len(data)),
            "X-Goog-Upload-Header-Content-Type": mime_type,
        }
        try:
            async with session.post(
                f"{self._base}/upload/v1beta/files",
                headers=start_headers,
                json={"file": {"display_name": display_name}},
            ) as resp:
                if resp.status >= 400:
                    body = await resp.text()
                    raise UnderstandingError(f"Gemini upload start HTTP {resp.status}: {body[:500]}")
                upload_url = resp.headers.get("X-Goog-Upload-URL")
        except aiohttp.ClientError as e:
            raise UnderstandingError(f"Gemini upload failed: {type(e).__name__}: {e}") from e

        if not upload_url:
            raise UnderstandingError("Gemini upload start returned no upload URL")

        result = await self._request_json(
            session,
            "POST",
            upload_url,
            headers={"X-Goog-Upload-Offset": "0", "X-Goog-Upload-Command": "upload, finalize"},
            data=data,
        )
        file_info = result.get("file") or {}
        if not file_info.get("name") or not file_info.get("uri"):
            raise UnderstandingError(f"Gemini upload returned no file handle for {display_name}")
        log.debug("Uploaded %s as %s", display_name, file_info["name"])

        name = file_info["name"]
        try:
            # Видео и PDF проходят обработку на стороне сервиса
            while file_info.get("state") == "PROCESSING":
                await asyncio.sleep(self._cfg.file_poll_interval_seconds)
                file_info = await self._request_json(session, "GET", f"{self._base}/v1beta/{name}")
            if file_info.get("state") == "FAILED":
                raise UnderstandingError(f"Gemini failed to process uploaded file {display_name}")
        except BaseException:
            # вызывающий код ещё не получил дескриптор, удаляем сами
            await self._delete(session, name)
            raise
        return file_info

    async def _delete(self, session: aiohttp.ClientSession, name: str) -> None:
        try:
            async with session.delete(f"{self._base}/v1beta/{name}") as resp:
                if resp.status >= 400:
                    log.warning("Failed to delete uploaded file %s: HTTP %s", name, resp.status)
        except aiohttp.ClientError as e:
            log.warning("Failed to delete uploaded file %s: %s", name, e)
