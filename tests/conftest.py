"""Shared fixtures and test doubles."""
from pathlib import Path
from typing import Dict, List, Union

import pytest

from lowfi_podcast.config import ChannelConfig
from lowfi_podcast.errors import DownloadError, TranscodeError
from lowfi_podcast.fetcher import filter_entries
from lowfi_podcast.models import FeedEntry
from lowfi_podcast.storage import ArtifactStore


YT_FEED = """<?xml version="1.0" encoding="UTF-8"?>
<feed xmlns:yt="http://www.youtube.com/xml/schemas/2015" xmlns:media="http://search.yahoo.com/mrss/" xmlns="http://www.w3.org/2005/Atom">
 <link rel="self" href="http://www.youtube.com/feeds/videos.xml?channel_id=chan1"/>
 <id>yt:channel:chan1</id>
 <yt:channelId>chan1</yt:channelId>
 <title>Channel One</title>
 <published>2020-01-01T00:00:00+00:00</published>
 <entry>
  <id>yt:video:vid1</id>
  <yt:videoId>vid1</yt:videoId>
  <yt:channelId>chan1</yt:channelId>
  <title>Daily News Update</title>
  <link rel="alternate" href="https://www.youtube.com/watch?v=vid1"/>
  <published>2024-03-01T10:00:00+00:00</published>
  <updated>2024-03-01T12:00:00+00:00</updated>
  <media:group>
   <media:title>Daily News Update</media:title>
   <media:description>First description</media:description>
  </media:group>
 </entry>
 <entry>
  <id>yt:video:vid2</id>
  <yt:videoId>vid2</yt:videoId>
  <yt:channelId>chan1</yt:channelId>
  <title>Cooking with Gas</title>
  <link rel="alternate" href="https://www.youtube.com/watch?v=vid2"/>
  <published>2024-03-02T10:00:00+00:00</published>
  <updated>2024-03-02T12:00:00+00:00</updated>
  <media:group>
   <media:title>Cooking with Gas</media:title>
   <media:description>Second description</media:description>
  </media:group>
 </entry>
</feed>
"""


def entry(video_id: str, title: str = "Title", published: str = "2024-03-01T10:00:00+00:00") -> FeedEntry:
    return FeedEntry(title=title, video_id=video_id, published=published, description=f"about {video_id}")


class FakeFetcher:
    """Returns canned entries per channel id, or raises a canned error."""

    def __init__(self, feeds: Dict[str, Union[List[FeedEntry], Exception]]) -> None:
        self.feeds = feeds
        self.calls: List[str] = []

    def entries(self, channel: ChannelConfig) -> List[FeedEntry]:
        self.calls.append(channel.channel_id)
        result = self.feeds.get(channel.channel_id, [])
        if isinstance(result, Exception):
            raise result
        return filter_entries(result, channel.keywords)


class FakeProbe:
    def __init__(self, ready: bool = True) -> None:
        self.ready = ready
        self.calls: List[str] = []

    def is_ready(self, video_id: str) -> bool:
        self.calls.append(video_id)
        return self.ready


class FakeDownloader:
    def __init__(self, store: ArtifactStore, fail: bool = False) -> None:
        self.store = store
        self.fail = fail
        self.calls: List[str] = []
        self.discarded: List[Path] = []

    def download(self, video_id: str) -> Path:
        self.calls.append(video_id)
        if self.fail:
            raise DownloadError(f"download of {video_id} failed")
        path = self.store.temp_file(video_id, suffix=".webm")
        path.write_bytes(b"raw-audio-" + video_id.encode())
        return path

    def discard(self, path: Path) -> None:
        self.discarded.append(path)
        path.unlink()


class FakeTranscoder:
    def __init__(self, store: ArtifactStore, fail: bool = False, payload: bytes = b"OggS" + b"\x00" * 60) -> None:
        self.store = store
        self.fail = fail
        self.payload = payload
        self.calls: List[str] = []

    def transcode(self, source: Path, channel_id: str, video_id: str):
        self.calls.append(video_id)
        if self.fail:
            raise TranscodeError(f"encoding {video_id} failed")
        tmp = self.store.temp_file(video_id)
        tmp.write_bytes(self.payload)
        return self.store.commit(tmp, channel_id, video_id)


@pytest.fixture
def store(tmp_path):
    s = ArtifactStore(str(tmp_path / "audio"), str(tmp_path / "tmp"), "opus")
    s.prepare(["chan1", "chan2"])
    return s


@pytest.fixture
def chan1():
    return ChannelConfig(name="Channel One", channel_id="chan1")


@pytest.fixture
def chan2():
    return ChannelConfig(name="Channel Two", channel_id="chan2", keywords=("news",))
