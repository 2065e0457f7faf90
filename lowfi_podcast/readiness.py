from __future__ import annotations

import logging
from typing import List, Protocol

from .tools import run_tool


logger = logging.getLogger(__name__)

# yt-dlp live_status values for videos whose full audio is available
READY_MARKERS = ("not_live", "was_live")


class ReadinessProbe(Protocol):
    def is_ready(self, video_id: str) -> bool: ...


class YtDlpReadinessProbe:
    def __init__(self, executable: str = "yt-dlp", timeout: float = 60.0) -> None:
        self.executable = executable
        self.timeout = timeout

    def command(self, video_id: str) -> List[str]:
        return [self.executable, "--no-warnings", "--print", "live_status", "--", video_id]

    def is_ready(self, video_id: str) -> bool:
        result = run_tool(self.command(video_id), timeout=self.timeout)
        if not result.ok:
            logger.info(
                "Readiness probe failed; treating as not ready",
                extra={"video_id": video_id, "returncode": result.returncode, "timed_out": result.timed_out},
            )
            return False
        return any(marker in result.output for marker in READY_MARKERS)
