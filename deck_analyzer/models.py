from __future__ import annotations

from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field

UNKNOWN_SLIDE: Literal["unknown"] = "unknown"

# Номер слайда (1-based) или "unknown", если владелец не найден
SlideRef = int | Literal["unknown"]


class MediaKind(str, Enum):
    IMAGE = "image"
    VIDEO = "video"


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class Relationship(BaseModel):
    # Часть-владелец, например ppt/slides/slide3.xml
    owner_part: str
    relationship_id: str
    type: str
    # Абсолютный путь цели внутри пакета (или исходный URI для External)
    target: str
    external: bool = False


class MediaAsset(BaseModel):
    filename: str
    kind: MediaKind
    # Копия файла во временной папке задачи
    path: Path
    owning_slide_index: SlideRef = UNKNOWN_SLIDE


class ExtractedMedia(BaseModel):
    images: list[MediaAsset] = []
    videos: list[MediaAsset] = []

    @property
    def all(self) -> list[MediaAsset]:
        return [*self.images, *self.videos]


class RenderedDocument(BaseModel):
    path: Path
    page_count: int


class DeckMetadata(BaseModel):
    title: str | None = None
    creator: str | None = None
    last_modified_by: str | None = None
    created: str | None = None
    modified: str | None = None
    slides: int | None = None
    hidden_slides: int | None = None


class Scene(BaseModel):
    start_time: str | None = None
    end_time: str | None = None
    description: str = ""
    spoken_text: str | None = None


class AssetAnalysis(BaseModel):
    asset_filename: str
    kind: MediaKind
    owning_slide_index: SlideRef = UNKNOWN_SLIDE
    extracted_text: str | None = None
    description: str | None = None
    transcription: str | None = None
    scenes: list[Scene] | None = None
    language: str | None = None
    confidence: str | None = None
    duration_seconds: float | None = None
    error: str | None = None


class PageAnalysis(BaseModel):
    page_number: int = Field(ge=1)
    extracted_text: str = ""
    title: str | None = None
    bullet_points: list[str] | None = None
    visual_element_summary: str | None = None
    key_topics: list[str] | None = None
    language: str | None = None


class ReportPage(BaseModel):
    page: PageAnalysis
    assets: list[AssetAnalysis] = []


class OmittedAsset(BaseModel):
    asset_filename: str
    owning_slide_index: SlideRef
    reason: str


class Report(BaseModel):
    source_filename: str
    generated_at: datetime
    page_count: int
    metadata: DeckMetadata = Field(default_factory=DeckMetadata)
    pages: list[ReportPage] = []
    unassigned_media: list[AssetAnalysis] = []
    omitted_media: list[OmittedAsset] = []
    # Мягкий сбой общего прохода по документу (ответ не разобрался)
    document_warning: str | None = None

    @property
    def image_count(self) -> int:
        return sum(1 for a in self.reported_assets() if a.kind is MediaKind.IMAGE)

    @property
    def video_count(self) -> int:
        return sum(1 for a in self.reported_assets() if a.kind is MediaKind.VIDEO)

    def reported_assets(self) -> list[AssetAnalysis]:
        attached = [asset for page in self.pages for asset in page.assets]
        return [*attached, *self.unassigned_media]


class Job(BaseModel):
    id: str
    source_filename: str
    source_path: str | None = None
    status: JobStatus = JobStatus.PENDING
    stage: str | None = None  # READING, RENDERING, ANALYZING_IMAGES, ...
    progress: float = 0.0  # Число от 0.0 до 1.0
    created_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None
    artifact_path: str | None = None
    error_detail: str | None = None
