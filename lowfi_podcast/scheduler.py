from __future__ import annotations

import logging
import threading
import time
from typing import Optional, Sequence

from .config import ChannelConfig
from .downloader import Downloader
from .errors import DownloadError, NetworkError, ParseError, StorageError, TranscodeError
from .fetcher import FeedFetcher
from .models import EntryState, FeedEntry, SweepReport
from .readiness import ReadinessProbe
from .storage import ArtifactStore
from .transcoder import Transcoder


logger = logging.getLogger(__name__)


class PollScheduler:
    """Sweeps every channel on a fixed period and turns new videos into artifacts.

    Entries are handled one at a time, in feed order; the scheduler is the only
    writer of the artifact store.
    """

    def __init__(
        self,
        channels: Sequence[ChannelConfig],
        fetcher: FeedFetcher,
        store: ArtifactStore,
        probe: ReadinessProbe,
        downloader: Downloader,
        transcoder: Transcoder,
        interval: float = 30 * 60.0,
    ) -> None:
        self.channels = list(channels)
        self.fetcher = fetcher
        self.store = store
        self.probe = probe
        self.downloader = downloader
        self.transcoder = transcoder
        self.interval = interval
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def process_entry(self, channel: ChannelConfig, entry: FeedEntry) -> EntryState:
        log_extra = {"channel": channel.name, "channel_id": channel.channel_id, "video_id": entry.video_id}

        try:
            if self.store.exists(channel.channel_id, entry.video_id):
                logger.debug("Already published", extra={**log_extra, "state": EntryState.SKIPPED.value})
                return EntryState.SKIPPED
        except StorageError as e:
            logger.error("Artifact check failed; entry skipped", extra={**log_extra, "state": EntryState.STORAGE_FAILED.value, "error": str(e)})
            return EntryState.STORAGE_FAILED

        logger.info("Found new video", extra={**log_extra, "state": EntryState.DISCOVERED.value, "title": entry.title})
        if not self.probe.is_ready(entry.video_id):
            logger.info("Video not ready, skipped", extra={**log_extra, "state": EntryState.DEFERRED.value})
            return EntryState.DEFERRED

        logger.info("Downloading", extra={**log_extra, "state": EntryState.DOWNLOADING.value})
        try:
            source = self.downloader.download(entry.video_id)
        except DownloadError as e:
            logger.warning("Download error, skipped", extra={**log_extra, "state": EntryState.DOWNLOAD_FAILED.value, "error": str(e)})
            return EntryState.DOWNLOAD_FAILED
        logger.info("Downloaded", extra={**log_extra, "state": EntryState.DOWNLOADED.value, "source": str(source)})

        logger.info("Transcoding", extra={**log_extra, "state": EntryState.TRANSCODING.value})
        try:
            artifact = self.transcoder.transcode(source, channel.channel_id, entry.video_id)
        except TranscodeError as e:
            logger.error("Transcode error, skipped", extra={**log_extra, "state": EntryState.TRANSCODE_FAILED.value, "error": str(e)})
            return EntryState.TRANSCODE_FAILED
        finally:
            self.downloader.discard(source)

        logger.info("Published", extra={**log_extra, "state": EntryState.PUBLISHED.value, "bytes": artifact.size_bytes})
        return EntryState.PUBLISHED

    def sweep_channel(self, channel: ChannelConfig, report: SweepReport) -> None:
        try:
            entries = self.fetcher.entries(channel)
        except (NetworkError, ParseError) as e:
            logger.warning(
                "Channel feed unavailable, skipped",
                extra={"channel": channel.name, "channel_id": channel.channel_id, "error": str(e)},
            )
            report.failed_channels.append(channel.channel_id)
            return

        for entry in entries:
            state = self.process_entry(channel, entry)
            report.record(state)
            if state is EntryState.PUBLISHED:
                report.published.append(f"{channel.channel_id}/{entry.video_id}")

    def run_sweep(self) -> SweepReport:
        report = SweepReport()
        started = time.monotonic()
        for channel in self.channels:
            if self._stop.is_set():
                break
            self.sweep_channel(channel, report)
        logger.info(
            "Sweep complete",
            extra={
                "states": report.states,
                "failed_channels": report.failed_channels,
                "seconds": round(time.monotonic() - started, 1),
            },
        )
        return report

    def run_forever(self) -> None:
        while not self._stop.is_set():
            try:
                self.run_sweep()
            except Exception:  # noqa: BLE001
                logger.exception("Sweep aborted by unexpected error")
            self._stop.wait(self.interval)

    def start(self) -> threading.Thread:
        if self._thread is not None and self._thread.is_alive():
            return self._thread
        self._stop.clear()
        self._thread = threading.Thread(target=self.run_forever, name="poll-scheduler", daemon=True)
        self._thread.start()
        logger.info("Scheduler started", extra={"channels": len(self.channels), "interval": self.interval})
        return self._thread

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
