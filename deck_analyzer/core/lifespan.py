# deck_analyzer/core/lifespan.py
import logging
from contextlib import asynccontextmanager

import redis.asyncio as aioredis
from fastapi import FastAPI

from ..adapters.libreoffice import LibreOfficeRenderer
from ..adapters.llm_media import GeminiMediaAnalyzer
from ..services.analysis import AnalysisOrchestrator
from ..services.job_store import JobStore
from ..services.orchestrator import JobOrchestrator
from .config import settings
from .logging_setup import setup_logging

log = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging(settings.log_level, settings.log_file)
    log.info("Initializing services...")

    for directory in (settings.upload_root, settings.scratch_root, settings.output_root):
        directory.mkdir(parents=True, exist_ok=True)

    redis_client = aioredis.from_url(settings.redis_url, encoding="utf-8", decode_responses=True)
    app.state.redis = redis_client
    app.state.store = JobStore(redis_client, ttl_seconds=settings.job_ttl_seconds)

    if not settings.gemini_api_key:
        log.warning("GEMINI_API_KEY is not set, every analysis call will fail")
    understanding = GeminiMediaAnalyzer(
        api_key=settings.gemini_api_key,
        api_url=settings.gemini_api_url,
        cfg=settings.understanding,
    )

    # Внедряем зависимости в оркестратор задач
    app.state.orchestrator = JobOrchestrator(
        store=app.state.store,
        renderer=LibreOfficeRenderer(settings.render),
        analysis=AnalysisOrchestrator(understanding, settings.understanding),
        settings=settings,
    )
    await app.state.orchestrator.resume_pending()

    yield

    log.info("Shutting down: no new jobs, draining in-flight ones...")
    app.state.orchestrator.stop_accepting()
    await app.state.orchestrator.drain()
    await redis_client.aclose()
