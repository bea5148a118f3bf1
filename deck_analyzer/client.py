# deck_analyzer/client.py
import asyncio
import logging
from datetime import datetime
from pathlib import Path

import httpx
from pydantic import BaseModel

log = logging.getLogger(__name__)


# Эти модели дублируют ответы сервера для удобства и валидации
class JobStatusResponse(BaseModel):
    id: str
    source_filename: str
    status: str  # pending, processing, completed, failed
    stage: str | None = None  # READING, RENDERING, ANALYZING_IMAGES, ...
    progress: float = 0.0  # Число от 0.0 до 1.0
    created_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None
    artifact_ready: bool = False
    error: str | None = None


class JobFailedError(Exception):
    """Задача завершилась со статусом failed на удалённом сервисе."""

    def __init__(self, message, job_id):
        self.message = message
        self.job_id = job_id
        super().__init__(f"Analysis failed for job {job_id}: {message}")


class DeckAnalyzerClient:
    """Асинхронный клиент для сервиса deck-analyzer."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout, transport=self._transport)

    # -----------------------------------------------------------------
    async def submit(self, path: Path) -> JobStatusResponse:
        """Загружает презентацию и не ждёт завершения анализа."""
        path = Path(path)
        async with self._client() as client:
            with path.open("rb") as fh:
                files = {
                    "file": (
                        path.name,
                        fh,
                        "application/vnd.openxmlformats-officedocument.presentationml.presentation",
                    )
                }
                response = await client.post("/jobs", files=files)
            response.raise_for_status()
            return JobStatusResponse.model_validate(response.json())

    async def get_job(self, job_id: str) -> JobStatusResponse:
        async with self._client() as client:
            response = await client.get(f"/jobs/{job_id}")
            response.raise_for_status()
            return JobStatusResponse.model_validate(response.json())

    async def list_jobs(self, status: str | None = None) -> list[JobStatusResponse]:
        params = {"status": status} if status else None
        async with self._client() as client:
            response = await client.get("/jobs", params=params)
            response.raise_for_status()
            return [JobStatusResponse.model_validate(item) for item in response.json()]

    async def download_artifact(self, job_id: str, target_dir: Path) -> Path:
        """Скачивает zip-артефакт задачи в `target_dir`."""
        target_dir = Path(target_dir)
        target_dir.mkdir(parents=True, exist_ok=True)
        async with self._client() as client:
            response = await client.get(f"/jobs/{job_id}/artifact")
            response.raise_for_status()

        filename = f"{job_id}_analysis.zip"
        disposition = response.headers.get("content-disposition", "")
        if "filename=" in disposition:
            filename = disposition.split("filename=", 1)[1].strip('"; ')
        target = target_dir / Path(filename).name
        target.write_bytes(response.content)
        return target

    # -----------------------------------------------------------------
    async def analyze_and_wait(
        self,
        path: Path,
        target_dir: Path | None = None,
        poll_interval: float = 2.0,
        timeout: float = 1800.0,
    ) -> JobStatusResponse:
        """
        Главный метод: загружает файл, ждёт завершения задачи и, если задан
        `target_dir`, скачивает туда артефакт.
        """
        loop = asyncio.get_running_loop()
        start_time = loop.time()

        job = await self.submit(path)
        log.info("Submitted %s as job %s", Path(path).name, job.id)

        while True:
            if loop.time() - start_time > timeout:
                raise asyncio.TimeoutError(f"Analysis timed out after {timeout} seconds for job {job.id}")

            await asyncio.sleep(poll_interval)
            job = await self.get_job(job.id)

            progress_percent = int(job.progress * 100)
            stage_info = f" | Stage: {job.stage}" if job.stage else ""
            log.info("Job %s: [%3d%%] %s%s", job.id, progress_percent, job.status, stage_info)

            if job.status == "completed":
                if target_dir is not None:
                    await self.download_artifact(job.id, target_dir)
                return job

            if job.status == "failed":
                raise JobFailedError(job.error, job.id)
