from __future__ import annotations

import argparse
import logging
from typing import List, Optional, Tuple

import uvicorn

from .config import (
    DEFAULT_CONFIG_PATH,
    AppConfig,
    load_config,
    split_host_port,
    validate_config,
    with_overrides,
)
from .downloader import YtDlpDownloader
from .errors import ConfigError, StorageError
from .fetcher import FeedFetcher
from .logger import setup_logging
from .readiness import YtDlpReadinessProbe
from .rss import FeedPublisher
from .scheduler import PollScheduler
from .server import create_app
from .storage import ArtifactStore
from .tools import resolve_tools
from .transcoder import FfmpegTranscoder


logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="lowfi-podcast", description="Republish YouTube channels as a low-bitrate podcast.")
    p.add_argument("-f", dest="config", default=DEFAULT_CONFIG_PATH, help="YouTube feeds configuration file.")
    p.add_argument("-s", dest="server_address", default=None, help="Server address advertised in feed URLs (host:port).")
    p.add_argument("-l", "--listen", dest="listen_address", default=None, help="Address to serve HTTP on (host:port).")
    p.add_argument("--log-level", default=None, help="Logging level (DEBUG, INFO, ...).")
    p.add_argument("--once", action="store_true", help="Run a single sweep and exit without serving.")
    return p


def build_components(cfg: AppConfig) -> Tuple[ArtifactStore, FeedPublisher, PollScheduler]:
    tools = resolve_tools(cfg.tools)
    store = ArtifactStore(cfg.storage.audio_dir, cfg.storage.work_dir, cfg.transcode.format)
    store.prepare(ch.channel_id for ch in cfg.channels)

    publisher = FeedPublisher(
        cfg.channels,
        FeedFetcher(cfg.feed),
        store,
        cfg.server_address,
        feed=cfg.feed,
        transcode=cfg.transcode,
    )
    scheduler = PollScheduler(
        cfg.channels,
        FeedFetcher(cfg.feed),
        store,
        probe=YtDlpReadinessProbe(tools.probe, tools.probe_timeout),
        downloader=YtDlpDownloader(store, tools.downloader, tools.download_timeout),
        transcoder=FfmpegTranscoder(store, cfg.transcode, tools.converter, tools.transcode_timeout),
        interval=cfg.poll_interval_seconds,
    )
    return store, publisher, scheduler


def main(argv: Optional[List[str]] = None) -> None:
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level or "INFO")
    try:
        cfg = load_config(args.config)
        cfg = with_overrides(cfg, args.server_address, args.listen_address, args.log_level)
        setup_logging(cfg.logging.level)
        for msg in validate_config(cfg):
            logger.warning("Config warning: %s", msg)
        _, publisher, scheduler = build_components(cfg)
        host, port = split_host_port(cfg.listen_address)
    except (ConfigError, StorageError) as e:
        logger.error("Startup failed: %s", e)
        raise SystemExit(1)

    if args.once:
        report = scheduler.run_sweep()
        raise SystemExit(1 if report.failed_channels else 0)

    logger.info(
        "Serving podcast feed",
        extra={"listen": cfg.listen_address, "advertised": cfg.server_address, "channels": len(cfg.channels)},
    )
    uvicorn.run(create_app(publisher, scheduler), host=host, port=port, log_config=None)


if __name__ == "__main__":
    main()
