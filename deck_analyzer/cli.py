"""CLI entrypoint for the deck analyzer.

Usage:
    python -m deck_analyzer.cli serve --host 0.0.0.0 --port 8000
    python -m deck_analyzer.cli analyze ./deck.pptx
    python -m deck_analyzer.cli analyze ./deck.pptx --server http://localhost:8000 --out ./results
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import shutil
import sys
from pathlib import Path

log = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="deck-analyzer",
        description="Analyze PPTX decks: slide text, embedded images and videos.",
    )
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL from settings")
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the HTTP service (uvicorn)")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)

    analyze = sub.add_parser("analyze", help="Analyze one deck and print the result")
    analyze.add_argument("file", type=Path, help="Path to a .pptx file")
    analyze.add_argument(
        "--server",
        default=None,
        help="Submit to a running service at this URL instead of processing in-process",
    )
    analyze.add_argument("--out", type=Path, default=None, help="Copy the artifact zip here")
    analyze.add_argument("--timeout", type=float, default=1800.0, help="Seconds to wait (--server only)")
    return parser


async def _analyze_local(path: Path, out_dir: Path | None) -> int:
    """Обработка в текущем процессе против настроенного Redis."""
    import redis.asyncio as aioredis

    from .adapters.libreoffice import LibreOfficeRenderer
    from .adapters.llm_media import GeminiMediaAnalyzer
    from .core.config import settings
    from .services.analysis import AnalysisOrchestrator
    from .services.job_store import JobStore
    from .services.orchestrator import JobOrchestrator

    redis_client = aioredis.from_url(settings.redis_url, encoding="utf-8", decode_responses=True)
    try:
        store = JobStore(redis_client, ttl_seconds=settings.job_ttl_seconds)
        orchestrator = JobOrchestrator(
            store=store,
            renderer=LibreOfficeRenderer(settings.render),
            analysis=AnalysisOrchestrator(
                GeminiMediaAnalyzer(
                    api_key=settings.gemini_api_key,
                    api_url=settings.gemini_api_url,
                    cfg=settings.understanding,
                ),
                settings.understanding,
            ),
            settings=settings,
        )
        job = await store.create(path.name, source_path=str(path.resolve()))
        await orchestrator.process_job(job.id)
        job = await store.get(job.id)
    finally:
        await redis_client.aclose()

    if job.error_detail:
        print(f"Job {job.id} failed: {job.error_detail}", file=sys.stderr)
        return 1

    artifact = Path(job.artifact_path or "")
    if out_dir is not None:
        out_dir.mkdir(parents=True, exist_ok=True)
        artifact = Path(shutil.copy2(artifact, out_dir / artifact.name))
    print(f"Job {job.id} completed: {artifact}")
    return 0


async def _analyze_remote(path: Path, server: str, out_dir: Path | None, timeout: float) -> int:
    from .client import DeckAnalyzerClient, JobFailedError

    client = DeckAnalyzerClient(server)
    try:
        job = await client.analyze_and_wait(path, target_dir=out_dir, timeout=timeout)
    except JobFailedError as e:
        print(str(e), file=sys.stderr)
        return 1
    print(f"Job {job.id} completed" + (f", artifact saved to {out_dir}" if out_dir else ""))
    return 0


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)

    from .core.config import settings
    from .core.logging_setup import setup_logging

    setup_logging(args.log_level or settings.log_level, settings.log_file)

    if args.command == "serve":
        import uvicorn

        uvicorn.run("deck_analyzer.main:app", host=args.host, port=args.port)
        return 0

    if not args.file.is_file():
        log.error("File not found: %s", args.file)
        return 2
    if args.file.suffix.lower() != ".pptx":
        log.error("Only .pptx files are supported: %s", args.file)
        return 2

    if args.server:
        return asyncio.run(_analyze_remote(args.file, args.server, args.out, args.timeout))
    return asyncio.run(_analyze_local(args.file, args.out))


if __name__ == "__main__":
    sys.exit(main())
