from __future__ import annotations

import dataclasses
import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import yaml

from .errors import ConfigError


DEFAULT_CONFIG_PATH = "ytfeeds.json"
DEFAULT_SERVER_ADDRESS = "127.0.0.1:8080"
DEFAULT_LISTEN_ADDRESS = "0.0.0.0:8080"
FEED_FORMATS = ("atom", "rss")
YAML_SUFFIXES = (".yaml", ".yml")


@dataclass(frozen=True)
class ChannelConfig:
    name: str
    channel_id: str
    # None or empty means every entry is kept
    keywords: Optional[Tuple[str, ...]] = None


@dataclass(frozen=True)
class ToolsConfig:
    downloader: str = "yt-dlp"
    converter: str = "ffmpeg"
    probe: str = "yt-dlp"
    probe_timeout: float = 60.0
    download_timeout: float = 60.0
    transcode_timeout: float = 1800.0


@dataclass(frozen=True)
class TranscodeConfig:
    codec: str = "libopus"
    bitrate: str = "16k"
    channels: int = 1
    format: str = "opus"
    mime_type: str = "audio/opus"


@dataclass(frozen=True)
class StorageConfig:
    audio_dir: str = "audio"
    # Must sit on the same filesystem as audio_dir for atomic renames
    work_dir: str = "tmp"


@dataclass(frozen=True)
class FeedConfig:
    title: str = "low-fi podcast"
    format: str = "atom"
    base_url: str = "https://www.youtube.com/feeds/videos.xml"
    request_timeout: float = 3.0
    retries: int = 0


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"


@dataclass(frozen=True)
class AppConfig:
    channels: Tuple[ChannelConfig, ...]
    server_address: str = DEFAULT_SERVER_ADDRESS
    listen_address: str = DEFAULT_LISTEN_ADDRESS
    poll_interval_minutes: float = 30.0
    tools: ToolsConfig = field(default_factory=ToolsConfig)
    transcode: TranscodeConfig = field(default_factory=TranscodeConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    feed: FeedConfig = field(default_factory=FeedConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @property
    def poll_interval_seconds(self) -> float:
        return self.poll_interval_minutes * 60.0


def _section(data: Dict[str, Any], key: str) -> Dict[str, Any]:
    value = data.get(key) or {}
    if not isinstance(value, dict):
        raise ConfigError(f"'{key}' must be an object")
    return value


def _parse_channel(idx: int, raw: Any) -> ChannelConfig:
    if not isinstance(raw, dict):
        raise ConfigError(f"ytfeeds[{idx}] must be an object")
    name = raw.get("name")
    channel_id = raw.get("channel_id")
    if not isinstance(name, str) or not name:
        raise ConfigError(f"ytfeeds[{idx}].name is required")
    if not isinstance(channel_id, str) or not channel_id:
        raise ConfigError(f"ytfeeds[{idx}].channel_id is required")
    if "/" in channel_id or "\\" in channel_id or channel_id in (".", ".."):
        raise ConfigError(f"ytfeeds[{idx}].channel_id '{channel_id}' is not a valid identifier")

    keywords = raw.get("keywords")
    if keywords is not None:
        if not isinstance(keywords, list) or not all(isinstance(k, str) for k in keywords):
            raise ConfigError(f"ytfeeds[{idx}].keywords must be a list of strings")
        keywords = tuple(keywords)
    return ChannelConfig(name=name, channel_id=channel_id, keywords=keywords)


def parse_config(data: Any) -> AppConfig:
    if not isinstance(data, dict):
        raise ConfigError("configuration root must be an object")
    feeds = data.get("ytfeeds")
    if not isinstance(feeds, list):
        raise ConfigError("'ytfeeds' list is required")

    channels = tuple(_parse_channel(i, raw) for i, raw in enumerate(feeds))
    tools = _section(data, "tools")
    transcode = _section(data, "transcode")
    storage = _section(data, "storage")
    feed = _section(data, "feed")
    logging_cfg = _section(data, "logging")

    try:
        return AppConfig(
            channels=channels,
            server_address=str(data.get("server_address", DEFAULT_SERVER_ADDRESS)),
            listen_address=str(data.get("listen_address", DEFAULT_LISTEN_ADDRESS)),
            poll_interval_minutes=float(data.get("poll_interval_minutes", 30.0)),
            tools=ToolsConfig(
                downloader=tools.get("downloader", "yt-dlp"),
                converter=tools.get("converter", "ffmpeg"),
                probe=tools.get("probe", "yt-dlp"),
                probe_timeout=float(tools.get("probe_timeout", 60.0)),
                download_timeout=float(tools.get("download_timeout", 60.0)),
                transcode_timeout=float(tools.get("transcode_timeout", 1800.0)),
            ),
            transcode=TranscodeConfig(
                codec=transcode.get("codec", "libopus"),
                bitrate=str(transcode.get("bitrate", "16k")),
                channels=int(transcode.get("channels", 1)),
                format=transcode.get("format", "opus"),
                mime_type=transcode.get("mime_type", "audio/opus"),
            ),
            storage=StorageConfig(
                audio_dir=storage.get("audio_dir", "audio"),
                work_dir=storage.get("work_dir", "tmp"),
            ),
            feed=FeedConfig(
                title=feed.get("title", "low-fi podcast"),
                format=str(feed.get("format", "atom")).lower(),
                base_url=feed.get("base_url", "https://www.youtube.com/feeds/videos.xml"),
                request_timeout=float(feed.get("request_timeout", 3.0)),
                retries=int(feed.get("retries", 0)),
            ),
            logging=LoggingConfig(level=logging_cfg.get("level", "INFO")),
        )
    except (TypeError, ValueError) as e:
        raise ConfigError(f"invalid configuration value: {e}") from e


def load_config(path: str = DEFAULT_CONFIG_PATH) -> AppConfig:
    """Read the channel configuration file.

    The file is JSON; `.yaml`/`.yml` files are read with the YAML loader instead.
    Any problem reading or interpreting it raises ConfigError.
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            if path.lower().endswith(YAML_SUFFIXES):
                data = yaml.safe_load(f)
            else:
                data = json.load(f)
    except OSError as e:
        raise ConfigError(f"cannot read {path}: {e}") from e
    except (ValueError, yaml.YAMLError) as e:
        raise ConfigError(f"error while parsing {path}: {e}") from e
    return parse_config(data)


def with_overrides(
    cfg: AppConfig,
    server_address: Optional[str] = None,
    listen_address: Optional[str] = None,
    log_level: Optional[str] = None,
) -> AppConfig:
    changes: Dict[str, Any] = {}
    if server_address:
        changes["server_address"] = server_address
    if listen_address:
        changes["listen_address"] = listen_address
    if log_level:
        changes["logging"] = LoggingConfig(level=log_level)
    return dataclasses.replace(cfg, **changes) if changes else cfg


def split_host_port(address: str, default_port: int = 8080) -> Tuple[str, int]:
    if address.startswith("[") and address.endswith("]"):
        return address[1:-1], default_port
    host, sep, port = address.rpartition(":")
    if not sep:
        return address or "0.0.0.0", default_port
    # IPv6 literals come bracketed: [::]:8080
    host = host[1:-1] if host.startswith("[") and host.endswith("]") else host
    try:
        return host or "0.0.0.0", int(port)
    except ValueError as e:
        raise ConfigError(f"invalid address '{address}'") from e


def validate_config(cfg: AppConfig) -> List[str]:
    """Lightweight config validation that logs warnings but avoids hard failures.

    Returns a list of warning strings (empty if none).
    """
    warnings: List[str] = []

    if not cfg.channels:
        warnings.append("ytfeeds is empty; the feed will never contain items")

    seen: Dict[str, str] = {}
    for ch in cfg.channels:
        if ch.channel_id in seen:
            warnings.append(f"channel_id '{ch.channel_id}' listed twice ({seen[ch.channel_id]}, {ch.name})")
        seen[ch.channel_id] = ch.name
        if ch.keywords is not None and not ch.keywords:
            warnings.append(f"channel '{ch.name}' has an empty keyword list; no filtering applied")

    if cfg.feed.format not in FEED_FORMATS:
        warnings.append(f"feed.format '{cfg.feed.format}' not in {list(FEED_FORMATS)}; using atom")

    if cfg.poll_interval_minutes <= 0:
        warnings.append("poll_interval_minutes must be positive; sweeps will run back to back")

    if cfg.server_address.split(":")[-1] != cfg.listen_address.split(":")[-1]:
        warnings.append(
            f"advertised address {cfg.server_address} and listen address {cfg.listen_address} use different ports"
        )

    return warnings
