from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path


@dataclass(frozen=True)
class RunContext:
    """
    Состояние одного прогона задачи. Передаётся явно во все стадии,
    поэтому параллельные задачи не делят ни каталогов, ни слота вызовов.
    """

    job_id: str
    source_filename: str
    scratch_dir: Path
    output_dir: Path
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    # Не более одного внешнего вызова за раз в пределах прогона
    call_slot: asyncio.Semaphore = field(default_factory=lambda: asyncio.Semaphore(1))

    @classmethod
    def create(
        cls,
        job_id: str,
        source_filename: str,
        *,
        scratch_root: Path,
        output_root: Path,
    ) -> "RunContext":
        return cls(
            job_id=job_id,
            source_filename=source_filename,
            scratch_dir=scratch_root / job_id,
            output_dir=output_root / job_id,
        )

    @property
    def media_dir(self) -> Path:
        return self.scratch_dir / "media"

    @property
    def render_dir(self) -> Path:
        return self.scratch_dir / "render"

    @property
    def stem(self) -> str:
        return Path(self.source_filename).stem or self.job_id
