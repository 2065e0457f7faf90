from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Protocol

from .errors import DownloadError, StorageError
from .storage import TEMP_PREFIX, ArtifactStore, discard
from .tools import run_tool


logger = logging.getLogger(__name__)


class Downloader(Protocol):
    def download(self, video_id: str) -> Path: ...

    def discard(self, path: Path) -> None: ...


class YtDlpDownloader:
    """Fetches the smallest audio-only stream of a video with yt-dlp.

    Each download gets its own directory under the store's work dir, so the
    produced file name (``<video_id>.<ext>``) never collides with another entry.
    """

    def __init__(self, store: ArtifactStore, executable: str = "yt-dlp", timeout: float = 60.0) -> None:
        self.store = store
        self.executable = executable
        self.timeout = timeout

    def command(self, video_id: str, out_dir: Path) -> List[str]:
        template = str(out_dir / "%(id)s.%(ext)s")
        return [self.executable, "-f", "worstaudio", "-x", "-o", template, "--", video_id]

    def download(self, video_id: str) -> Path:
        try:
            out_dir = self.store.temp_dir(video_id)
        except StorageError as e:
            raise DownloadError(str(e)) from e

        result = run_tool(self.command(video_id, out_dir), timeout=self.timeout)
        if not result.ok:
            discard(out_dir)
            logger.warning(
                "Download failed",
                extra={"video_id": video_id, "returncode": result.returncode, "timed_out": result.timed_out,
                       "output": result.output[-2000:]},
            )
            raise DownloadError(f"download of {video_id} failed")

        produced = sorted(p for p in out_dir.glob(f"{video_id}.*") if p.is_file() and not p.name.endswith(".part"))
        if not produced:
            discard(out_dir)
            raise DownloadError(f"download of {video_id} produced no file")
        return produced[0]

    def discard(self, path: Path) -> None:
        # Drop the whole per-download directory
        discard(path.parent if path.parent.name.startswith(TEMP_PREFIX) else path)
