from __future__ import annotations

import errno
import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import Iterable, Optional

from .errors import StorageError
from .models import Artifact


logger = logging.getLogger(__name__)

TEMP_PREFIX = "lowfi-"
ARTIFACT_MODE = 0o644


def ensure_dirs(*paths: str, mode: int = 0o750) -> None:
    for p in paths:
        os.makedirs(p, mode=mode, exist_ok=True)


def _check_component(value: str, what: str) -> str:
    if not value or value in (".", "..") or "/" in value or "\\" in value or "\x00" in value:
        raise StorageError(f"invalid {what} '{value}'")
    return value


class ArtifactStore:
    """Committed audio files laid out as <root>/<channel_id>/<video_id>.<format>.

    A file under the canonical name is always complete: producers write into
    `work_dir` and `commit` renames the result into place.
    """

    def __init__(self, root: str = "audio", work_dir: str = "tmp", fmt: str = "opus") -> None:
        self.root = Path(root)
        self.work_dir = Path(work_dir)
        self.format = fmt

    def canonical_path(self, channel_id: str, video_id: str) -> Path:
        _check_component(channel_id, "channel id")
        _check_component(video_id, "video id")
        return self.root / channel_id / f"{video_id}.{self.format}"

    def exists(self, channel_id: str, video_id: str) -> bool:
        return self.artifact(channel_id, video_id) is not None

    def artifact(self, channel_id: str, video_id: str) -> Optional[Artifact]:
        path = self.canonical_path(channel_id, video_id)
        try:
            st = path.stat()
        except FileNotFoundError:
            return None
        except OSError as e:
            if e.errno == errno.ENOTDIR:
                return None
            raise StorageError(f"cannot stat {path}: {e}") from e
        return Artifact(
            channel_id=channel_id,
            video_id=video_id,
            format=self.format,
            path=path,
            size_bytes=st.st_size,
        )

    def size(self, channel_id: str, video_id: str) -> int:
        art = self.artifact(channel_id, video_id)
        if art is None:
            raise StorageError(f"no artifact for {channel_id}/{video_id}")
        return art.size_bytes

    def temp_file(self, video_id: str, suffix: Optional[str] = None) -> Path:
        """Reserve a fresh, uniquely named file in the work directory."""
        suffix = suffix if suffix is not None else f".{self.format}"
        try:
            ensure_dirs(str(self.work_dir))
            fd, name = tempfile.mkstemp(prefix=f"{TEMP_PREFIX}{video_id}-", suffix=suffix, dir=self.work_dir)
        except OSError as e:
            raise StorageError(f"cannot create temp file in {self.work_dir}: {e}") from e
        os.close(fd)
        return Path(name)

    def temp_dir(self, video_id: str) -> Path:
        try:
            ensure_dirs(str(self.work_dir))
            return Path(tempfile.mkdtemp(prefix=f"{TEMP_PREFIX}{video_id}-", dir=self.work_dir))
        except OSError as e:
            raise StorageError(f"cannot create temp dir in {self.work_dir}: {e}") from e

    def commit(self, temp_path: Path, channel_id: str, video_id: str) -> Artifact:
        """Atomically move a finished file to its canonical path."""
        dest = self.canonical_path(channel_id, video_id)
        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
            # mkstemp files are 0600; published audio must be world-readable
            os.chmod(temp_path, ARTIFACT_MODE)
            os.replace(temp_path, dest)
        except OSError as e:
            discard(Path(temp_path))
            raise StorageError(f"cannot commit {temp_path} to {dest}: {e}") from e
        art = self.artifact(channel_id, video_id)
        if art is None:
            raise StorageError(f"{dest} vanished right after commit")
        logger.info(
            "Artifact committed",
            extra={"channel_id": channel_id, "video_id": video_id, "path": str(dest), "bytes": art.size_bytes},
        )
        return art

    def prepare(self, channel_ids: Iterable[str]) -> None:
        """Create channel directories and clear temp leftovers. Raises StorageError."""
        try:
            ensure_dirs(str(self.work_dir))
            for cid in channel_ids:
                ensure_dirs(str(self.root / _check_component(cid, "channel id")))
        except OSError as e:
            raise StorageError(f"cannot create storage directories: {e}") from e
        for leftover in self.work_dir.glob(f"{TEMP_PREFIX}*"):
            logger.info("Removing leftover temp file", extra={"path": str(leftover)})
            discard(leftover)


def discard(path: Optional[Path]) -> None:
    """Remove a file or directory tree if present; errors are logged only."""
    if path is None:
        return
    try:
        if path.is_dir():
            shutil.rmtree(path)
        else:
            path.unlink()
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning("Could not remove temp path", extra={"path": str(path), "error": str(e)})
