from __future__ import annotations

import asyncio
import json
import logging
import shutil
from pathlib import Path

log = logging.getLogger(__name__)


async def probe_duration(path: Path, timeout: float = 30.0) -> float | None:
    """Длительность видео в секундах; None, если ffprobe недоступен или упал."""
    binary = shutil.which("ffprobe")
    if binary is None:
        log.debug("ffprobe not found, duration of %s unknown", path.name)
        return None

    proc = await asyncio.create_subprocess_exec(
        binary,
        "-v", "quiet",
        "-print_format", "json",
        "-show_format",
        str(path),
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        stdout, _ = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        proc.kill()
        await proc.wait()
        log.warning("ffprobe timed out for %s", path.name)
        return None

    if proc.returncode != 0:
        log.warning("ffprobe failed for %s (exit code %s)", path.name, proc.returncode)
        return None

    try:
        return float(json.loads(stdout)["format"]["duration"])
    except (ValueError, KeyError, TypeError) as e:
        log.warning("ffprobe returned no duration for %s: %s", path.name, e)
        return None
