from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path

from ..models import RenderedDocument
from ..parsers.container import Container
from ..services.context import RunContext


class RenderingService(ABC):
    """Конвертирует презентацию в PDF (одна страница на слайд)."""

    @abstractmethod
    async def render(self, container: Container, ctx: RunContext) -> RenderedDocument: ...


class UnderstandingService(ABC):
    """
    Мультимодальный анализ. Все методы возвращают сырой текст ответа:
    разбор в структуры делает services/replies.py.
    """

    @abstractmethod
    async def analyze_image(self, path: Path) -> str: ...

    @abstractmethod
    async def analyze_video(self, path: Path) -> str: ...

    @abstractmethod
    async def analyze_document(self, path: Path, page_count: int, context_json: str) -> str: ...
