from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Protocol

from .config import TranscodeConfig
from .errors import StorageError, TranscodeError
from .models import Artifact
from .storage import ArtifactStore, discard
from .tools import run_tool


logger = logging.getLogger(__name__)


class Transcoder(Protocol):
    def transcode(self, source: Path, channel_id: str, video_id: str) -> Artifact: ...


class FfmpegTranscoder:
    def __init__(
        self,
        store: ArtifactStore,
        settings: TranscodeConfig = TranscodeConfig(),
        executable: str = "ffmpeg",
        timeout: float = 1800.0,
    ) -> None:
        self.store = store
        self.settings = settings
        self.executable = executable
        self.timeout = timeout

    def command(self, source: Path, target: Path) -> List[str]:
        s = self.settings
        return [
            self.executable,
            "-hide_banner",
            "-loglevel", "error",
            "-y",
            "-i", str(source),
            "-vn",
            "-ac", str(s.channels),
            "-c:a", s.codec,
            "-b:a", s.bitrate,
            str(target),
        ]

    def transcode(self, source: Path, channel_id: str, video_id: str) -> Artifact:
        """Encode `source` and publish it as the artifact for (channel_id, video_id)."""
        try:
            tmp = self.store.temp_file(video_id)
        except StorageError as e:
            raise TranscodeError(str(e)) from e

        result = run_tool(self.command(source, tmp), timeout=self.timeout)
        if not result.ok:
            discard(tmp)
            logger.warning(
                "Encoder failed",
                extra={"video_id": video_id, "returncode": result.returncode, "timed_out": result.timed_out,
                       "output": result.output[-2000:]},
            )
            raise TranscodeError(f"encoding {video_id} failed")

        try:
            return self.store.commit(tmp, channel_id, video_id)
        except StorageError as e:
            raise TranscodeError(str(e)) from e
