from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import BaseModel, Field


class RenderSettings(BaseModel):
    """Настройки конвертации PPTX -> PDF через LibreOffice"""
    binary: str | None = None  # None -> ищем soffice/libreoffice в PATH
    timeout_seconds: float = 300.0
    convert_filter: str = "pdf:impress_pdf_Export"
    # Нормализация шрифтов перед рендерингом
    normalize_fonts: bool = True
    font_name: str = "Liberation Sans"


class UnderstandingSettings(BaseModel):
    """Настройки мультимодального анализа (Gemini)"""
    model: str = "gemini-2.5-flash"
    temperature: float = 0.1
    call_timeout_seconds: float = 600.0
    # Файлы крупнее этого порога грузятся через Files API, а не inline
    inline_max_bytes: int = 15 * 1024 * 1024
    file_poll_interval_seconds: float = 2.0
    probe_timeout_seconds: float = 30.0  # ffprobe


class Settings(BaseSettings):
    """Читает переменные окружения из .env файла."""
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        # Вложенные переменные окружения, например:
        # RENDER__TIMEOUT_SECONDS=120
        env_nested_delimiter="__",
    )

    redis_url: str = "redis://localhost:6379/0"
    # Ключ и адрес сервиса анализа изображений/видео/PDF
    gemini_api_key: str | None = None
    gemini_api_url: str = "https://generativelanguage.googleapis.com"

    upload_root: Path = Path("temp/uploads")
    scratch_root: Path = Path("temp/scratch")
    output_root: Path = Path("output")

    max_concurrent_jobs: int = Field(default=2, ge=1)
    job_ttl_seconds: int | None = 7 * 24 * 3600

    log_level: str = "INFO"
    log_file: Path | None = None

    render: RenderSettings = Field(default_factory=RenderSettings)
    understanding: UnderstandingSettings = Field(default_factory=UnderstandingSettings)


settings = Settings()
