from __future__ import annotations

import enum
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List


@dataclass(frozen=True)
class FeedEntry:
    """One video entry of a channel feed. Re-derived on every fetch."""

    title: str
    video_id: str
    published: str
    description: str = ""
    link: str = ""


@dataclass(frozen=True)
class Artifact:
    channel_id: str
    video_id: str
    format: str
    path: Path
    size_bytes: int


class EntryState(str, enum.Enum):
    DISCOVERED = "discovered"
    SKIPPED = "skipped"
    DEFERRED = "deferred"
    DOWNLOADING = "downloading"
    DOWNLOAD_FAILED = "download_failed"
    DOWNLOADED = "downloaded"
    TRANSCODING = "transcoding"
    TRANSCODE_FAILED = "transcode_failed"
    PUBLISHED = "published"
    STORAGE_FAILED = "storage_failed"


@dataclass
class SweepReport:
    states: Dict[str, int] = field(default_factory=dict)
    failed_channels: List[str] = field(default_factory=list)
    published: List[str] = field(default_factory=list)

    def record(self, state: EntryState) -> None:
        self.states[state.value] = self.states.get(state.value, 0) + 1

    def count(self, state: EntryState) -> int:
        return self.states.get(state.value, 0)
