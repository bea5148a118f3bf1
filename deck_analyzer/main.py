# deck_analyzer/main.py
import asyncio
import logging
import shutil
import uuid
from datetime import datetime, timezone
from pathlib import Path

from fastapi import BackgroundTasks, FastAPI, File, HTTPException, Query, Request, UploadFile
from fastapi.responses import FileResponse
from pydantic import BaseModel

from .core.config import settings
from .core.errors import JobNotFoundError
from .core.lifespan import lifespan
from .models import Job, JobStatus
from .services.job_store import JobStore
from .services.orchestrator import JobOrchestrator

log = logging.getLogger(__name__)

SERVICE_NAME = "deck-analyzer"
SERVICE_VERSION = "0.1.0"
ALLOWED_SUFFIXES = {".pptx"}

app = FastAPI(
    title="Deck Analyzer Service",
    description="Analyzes PPTX decks: slide text, embedded images and videos, one report per deck.",
    lifespan=lifespan,
)


class JobResponse(BaseModel):
    id: str
    source_filename: str
    status: JobStatus  # pending, processing, completed, failed
    stage: str | None = None  # READING, RENDERING, ANALYZING_IMAGES, ...
    progress: float = 0.0  # Число от 0.0 до 1.0
    created_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None
    artifact_ready: bool = False
    error: str | None = None

    @classmethod
    def from_job(cls, job: Job) -> "JobResponse":
        return cls(
            id=job.id,
            source_filename=job.source_filename,
            status=job.status,
            stage=job.stage,
            progress=job.progress,
            created_at=job.created_at,
            started_at=job.started_at,
            completed_at=job.completed_at,
            artifact_ready=job.status is JobStatus.COMPLETED and bool(job.artifact_path),
            error=job.error_detail,
        )


def _save_upload(upload: UploadFile, target: Path) -> None:
    target.parent.mkdir(parents=True, exist_ok=True)
    with target.open("wb") as out:
        shutil.copyfileobj(upload.file, out)


async def _get_job(store: JobStore, job_id: str) -> Job:
    try:
        return await store.get(job_id)
    except JobNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from None


@app.post("/jobs", status_code=202, response_model=JobResponse)
async def submit_job(r: Request, background_tasks: BackgroundTasks, file: UploadFile = File(...)):
    """
    Принимает презентацию, создаёт задачу и сразу возвращает её статус.
    Обработка идёт в фоне.
    """
    store: JobStore = r.app.state.store
    orchestrator: JobOrchestrator = r.app.state.orchestrator

    filename = Path(file.filename or "").name
    if not filename or Path(filename).suffix.lower() not in ALLOWED_SUFFIXES:
        raise HTTPException(status_code=400, detail="Only .pptx files are accepted.")
    if not orchestrator.accepting:
        raise HTTPException(status_code=503, detail="Service is shutting down.")

    target = settings.upload_root / f"{uuid.uuid4().hex}_{filename}"
    await asyncio.to_thread(_save_upload, file, target)

    job = await store.create(filename, source_path=str(target))
    background_tasks.add_task(orchestrator.process_job, job.id)
    return JobResponse.from_job(job)


@app.get("/jobs", response_model=list[JobResponse])
async def list_jobs(
    r: Request, status: JobStatus | None = None, limit: int = Query(100, ge=1, le=1000)
):
    store: JobStore = r.app.state.store
    return [JobResponse.from_job(job) for job in await store.list_jobs(status=status, limit=limit)]


@app.get("/jobs/{job_id}", response_model=JobResponse)
async def get_job(job_id: str, r: Request):
    """Возвращает текущий статус задачи."""
    job = await _get_job(r.app.state.store, job_id)
    return JobResponse.from_job(job)


@app.get("/jobs/{job_id}/artifact")
async def download_artifact(job_id: str, r: Request):
    job = await _get_job(r.app.state.store, job_id)
    if job.status is not JobStatus.COMPLETED or not job.artifact_path:
        raise HTTPException(status_code=409, detail=f"Job {job_id} is {job.status.value}, artifact not ready.")
    path = Path(job.artifact_path)
    if not path.is_file():
        raise HTTPException(status_code=404, detail=f"Artifact for job {job_id} is missing.")
    return FileResponse(path, media_type="application/zip", filename=path.name)


@app.get("/healthz", tags=["Monitoring"])
def health_check():
    """Простая проверка работоспособности сервиса."""
    return {
        "status": "ok",
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


if __name__ == "__main__":
    import uvicorn

    # Для локальной отладки: Redis и LibreOffice должны быть доступны
    uvicorn.run(app, host="127.0.0.1", port=8000)
