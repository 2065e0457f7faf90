from __future__ import annotations

import datetime as dt
import email.utils
import html
import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from dateutil import parser as dateparser

from .config import ChannelConfig, FeedConfig, TranscodeConfig
from .errors import FormatError, NetworkError, ParseError, StorageError
from .fetcher import FeedFetcher
from .models import FeedEntry
from .storage import ArtifactStore


logger = logging.getLogger(__name__)

ATOM_MEDIA_TYPE = "application/atom+xml"
RSS_MEDIA_TYPE = "application/rss+xml"


@dataclass(frozen=True)
class FeedItem:
    title: str
    description: str
    url: str
    length: int
    mime_type: str
    published: dt.datetime


def parse_published(value: str) -> dt.datetime:
    """Parse an RFC 3339 feed timestamp; naive values are taken as UTC."""
    if not value:
        raise FormatError("empty publish timestamp")
    try:
        v = dateparser.isoparse(value.strip())
    except (ValueError, OverflowError) as e:
        raise FormatError(f"malformed publish timestamp '{value}'") from e
    if v.tzinfo is None:
        v = v.replace(tzinfo=dt.timezone.utc)
    return v


def rfc2822(dt_obj: dt.datetime) -> str:
    if dt_obj.tzinfo is None:
        dt_obj = dt_obj.replace(tzinfo=dt.timezone.utc)
    return email.utils.format_datetime(dt_obj)


def rfc3339(dt_obj: dt.datetime) -> str:
    if dt_obj.tzinfo is None:
        dt_obj = dt_obj.replace(tzinfo=dt.timezone.utc)
    return dt_obj.isoformat()


def public_url(server_address: str, *parts: str) -> str:
    return "http://" + server_address.strip("/") + "/" + "/".join(p.strip("/") for p in parts)


def _feed_updated(items: Sequence[FeedItem]) -> dt.datetime:
    if items:
        return max(it.published for it in items)
    return dt.datetime.now(dt.timezone.utc).replace(microsecond=0)


def render_atom(title: str, feed_url: str, items: Sequence[FeedItem]) -> str:
    e = html.escape
    head = (
        "<?xml version=\"1.0\" encoding=\"UTF-8\"?>\n"
        "<feed xmlns=\"http://www.w3.org/2005/Atom\">\n"
        f"  <title>{e(title)}</title>\n"
        f"  <id>{e(feed_url)}</id>\n"
        f"  <updated>{rfc3339(_feed_updated(items))}</updated>\n"
        f"  <link href=\"{e(feed_url)}\" rel=\"self\" />\n"
    )
    entries = []
    for it in items:
        stamp = rfc3339(it.published)
        entries.append(
            "  <entry>\n"
            f"    <title>{e(it.title)}</title>\n"
            f"    <id>{e(it.url)}</id>\n"
            f"    <link href=\"{e(it.url)}\" rel=\"alternate\" />\n"
            f"    <link href=\"{e(it.url)}\" rel=\"enclosure\" type=\"{e(it.mime_type)}\" length=\"{it.length}\" />\n"
            f"    <published>{stamp}</published>\n"
            f"    <updated>{stamp}</updated>\n"
            f"    <summary type=\"html\">{e(it.description)}</summary>\n"
            "  </entry>\n"
        )
    return head + "".join(entries) + "</feed>\n"


def render_rss(title: str, feed_url: str, items: Sequence[FeedItem]) -> str:
    e = html.escape
    link = feed_url.rsplit("/", 1)[0] + "/"
    rss_head = (
        "<?xml version=\"1.0\" encoding=\"UTF-8\"?>\n"
        "<rss version=\"2.0\"\n"
        "     xmlns:itunes=\"http://www.itunes.com/dtds/podcast-1.0.dtd\"\n"
        "     xmlns:atom=\"http://www.w3.org/2005/Atom\">\n"
        "  <channel>\n"
        f"    <title>{e(title)}</title>\n"
        f"    <link>{e(link)}</link>\n"
        f"    <description>{e(title)}</description>\n"
        f"    <lastBuildDate>{rfc2822(_feed_updated(items))}</lastBuildDate>\n"
        f"    <atom:link href=\"{e(feed_url)}\" rel=\"self\" type=\"application/rss+xml\" />\n"
    )
    rss_items = []
    for it in items:
        rss_items.append(
            "    <item>\n"
            f"      <title>{e(it.title)}</title>\n"
            f"      <link>{e(it.url)}</link>\n"
            f"      <guid isPermaLink=\"false\">{e(it.url)}</guid>\n"
            f"      <pubDate>{rfc2822(it.published)}</pubDate>\n"
            f"      <enclosure url=\"{e(it.url)}\" length=\"{it.length}\" type=\"{e(it.mime_type)}\" />\n"
            f"      <description>{e(it.description)}</description>\n"
            "    </item>\n"
        )
    return rss_head + "".join(rss_items) + "  </channel>\n</rss>\n"


class FeedPublisher:
    """Builds the podcast feed from current channel entries that have artifacts.

    Read-only: it never downloads or encodes anything.
    """

    def __init__(
        self,
        channels: Sequence[ChannelConfig],
        fetcher: FeedFetcher,
        store: ArtifactStore,
        server_address: str,
        feed: FeedConfig = FeedConfig(),
        transcode: TranscodeConfig = TranscodeConfig(),
    ) -> None:
        self.channels = list(channels)
        self.fetcher = fetcher
        self.store = store
        self.server_address = server_address
        self.feed = feed
        self.transcode = transcode

    @property
    def feed_url(self) -> str:
        return public_url(self.server_address, "feed")

    def item_for(self, channel: ChannelConfig, entry: FeedEntry) -> Optional[FeedItem]:
        artifact = self.store.artifact(channel.channel_id, entry.video_id)
        if artifact is None:
            return None
        published = parse_published(entry.published)
        return FeedItem(
            title=entry.title,
            description=entry.description,
            url=public_url(self.server_address, "audio", channel.channel_id, artifact.path.name),
            length=artifact.size_bytes,
            mime_type=self.transcode.mime_type,
            published=published,
        )

    def items(self) -> List[FeedItem]:
        out: List[FeedItem] = []
        for channel in self.channels:
            try:
                entries = self.fetcher.entries(channel)
            except (NetworkError, ParseError) as e:
                logger.warning(
                    "Channel omitted from feed",
                    extra={"channel": channel.name, "channel_id": channel.channel_id, "error": str(e)},
                )
                continue
            for entry in entries:
                try:
                    item = self.item_for(channel, entry)
                except (FormatError, StorageError) as e:
                    logger.warning(
                        "Entry omitted from feed",
                        extra={"channel_id": channel.channel_id, "video_id": entry.video_id, "error": str(e)},
                    )
                    continue
                if item is not None:
                    out.append(item)
        return out

    def render(self) -> Tuple[str, str]:
        items = self.items()
        if self.feed.format == "rss":
            return render_rss(self.feed.title, self.feed_url, items), RSS_MEDIA_TYPE
        return render_atom(self.feed.title, self.feed_url, items), ATOM_MEDIA_TYPE
