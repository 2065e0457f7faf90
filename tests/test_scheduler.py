"""Tests for the poll scheduler's sweep and per-entry state machine."""
import logging
import threading
from unittest.mock import MagicMock, patch

from lowfi_podcast.errors import NetworkError, ParseError, StorageError
from lowfi_podcast.models import EntryState
from lowfi_podcast.readiness import YtDlpReadinessProbe
from lowfi_podcast.scheduler import PollScheduler

from conftest import FakeDownloader, FakeFetcher, FakeProbe, FakeTranscoder, entry


def _scheduler(store, channels, feeds, probe=None, download_fail=False, transcode_fail=False):
    fetcher = FakeFetcher(feeds)
    probe = probe or FakeProbe(True)
    downloader = FakeDownloader(store, fail=download_fail)
    transcoder = FakeTranscoder(store, fail=transcode_fail)
    sched = PollScheduler(channels, fetcher, store, probe, downloader, transcoder, interval=3600)
    return sched, fetcher, probe, downloader, transcoder


def test_new_entry_is_published(store, chan1):
    sched, _, _, downloader, transcoder = _scheduler(store, [chan1], {"chan1": [entry("vid2")]})

    report = sched.run_sweep()

    assert report.count(EntryState.PUBLISHED) == 1
    assert report.published == ["chan1/vid2"]
    assert store.exists("chan1", "vid2")
    assert downloader.calls == ["vid2"]
    assert transcoder.calls == ["vid2"]
    # Downloaded source is cleaned up once encoded
    assert len(downloader.discarded) == 1
    assert [p.name for p in store.work_dir.iterdir()] == []


def test_second_sweep_does_not_reprocess(store, chan1):
    sched, _, probe, downloader, transcoder = _scheduler(store, [chan1], {"chan1": [entry("vid1")]})

    sched.run_sweep()
    report = sched.run_sweep()

    assert report.count(EntryState.SKIPPED) == 1
    assert downloader.calls == ["vid1"]
    assert transcoder.calls == ["vid1"]
    assert probe.calls == ["vid1"]


def test_existing_artifact_skips_everything(store, chan1):
    """An artifact at audio/chan1/vid1.opus short-circuits probe, download and encode."""
    path = store.canonical_path("chan1", "vid1")
    path.write_bytes(b"done")
    probe = FakeProbe(ready=False)
    sched, _, _, downloader, transcoder = _scheduler(store, [chan1], {"chan1": [entry("vid1")]}, probe=probe)

    assert sched.process_entry(chan1, entry("vid1")) is EntryState.SKIPPED
    assert probe.calls == []
    assert downloader.calls == []
    assert transcoder.calls == []


def test_live_video_is_deferred(store, chan1):
    probe = YtDlpReadinessProbe("yt-dlp", timeout=5)
    sched, _, _, downloader, _ = _scheduler(store, [chan1], {"chan1": [entry("vid1")]}, probe=probe)

    with patch("subprocess.run", return_value=MagicMock(returncode=0, stdout="is_live\n")):
        report = sched.run_sweep()

    assert report.count(EntryState.DEFERRED) == 1
    assert downloader.calls == []
    assert not store.exists("chan1", "vid1")


def test_finished_live_video_is_downloaded(store, chan1):
    probe = YtDlpReadinessProbe("yt-dlp", timeout=5)
    sched, _, _, downloader, _ = _scheduler(store, [chan1], {"chan1": [entry("vid1")]}, probe=probe)

    with patch("subprocess.run", return_value=MagicMock(returncode=0, stdout="was_live\n")):
        report = sched.run_sweep()

    assert downloader.calls == ["vid1"]
    assert report.count(EntryState.PUBLISHED) == 1


def test_download_failure_is_retried_next_sweep(store, chan1):
    sched, _, _, downloader, transcoder = _scheduler(
        store, [chan1], {"chan1": [entry("vid1")]}, download_fail=True
    )

    first = sched.run_sweep()
    downloader.fail = False
    second = sched.run_sweep()

    assert first.count(EntryState.DOWNLOAD_FAILED) == 1
    assert second.count(EntryState.PUBLISHED) == 1
    assert downloader.calls == ["vid1", "vid1"]
    assert transcoder.calls == ["vid1"]


def test_transcode_failure_is_isolated(store, chan1):
    sched, _, _, downloader, transcoder = _scheduler(
        store, [chan1], {"chan1": [entry("vid1"), entry("vid2")]}, transcode_fail=True
    )

    report = sched.run_sweep()

    assert report.count(EntryState.TRANSCODE_FAILED) == 2
    assert not store.exists("chan1", "vid1")
    # Source is discarded even when encoding fails
    assert len(downloader.discarded) == 2

    transcoder.fail = False
    assert sched.run_sweep().count(EntryState.PUBLISHED) == 2


def test_storage_error_skips_entry(store, chan1):
    sched, _, probe, downloader, _ = _scheduler(store, [chan1], {"chan1": [entry("vid1"), entry("vid2")]})

    real_exists = store.exists

    def flaky_exists(channel_id, video_id):
        if video_id == "vid1":
            raise StorageError("I/O error")
        return real_exists(channel_id, video_id)

    with patch.object(store, "exists", side_effect=flaky_exists):
        report = sched.run_sweep()

    assert report.count(EntryState.STORAGE_FAILED) == 1
    assert report.count(EntryState.PUBLISHED) == 1
    assert downloader.calls == ["vid2"]


def test_failing_channel_does_not_stop_sweep(store, chan1, chan2):
    feeds = {
        "chan1": NetworkError("server response status 500"),
        "chan2": [entry("vid3", "Evening news"), entry("vid4", "Sports")],
    }
    sched, fetcher, _, downloader, _ = _scheduler(store, [chan1, chan2], feeds)

    report = sched.run_sweep()

    assert fetcher.calls == ["chan1", "chan2"]
    assert report.failed_channels == ["chan1"]
    # chan2 filters on "news"
    assert downloader.calls == ["vid3"]


def test_parse_error_skips_channel(store, chan1):
    sched, _, _, downloader, _ = _scheduler(store, [chan1], {"chan1": ParseError("bad xml")})

    report = sched.run_sweep()

    assert report.failed_channels == ["chan1"]
    assert downloader.calls == []


def test_entries_processed_in_feed_order(store, chan1):
    feeds = {"chan1": [entry("c"), entry("a"), entry("b")]}
    sched, _, _, downloader, _ = _scheduler(store, [chan1], feeds)

    sched.run_sweep()

    assert downloader.calls == ["c", "a", "b"]


def test_background_loop_sweeps_until_stopped(store, chan1):
    swept = threading.Event()

    class SignallingFetcher(FakeFetcher):
        def entries(self, channel):
            result = super().entries(channel)
            swept.set()
            return result

    sched = PollScheduler(
        [chan1],
        SignallingFetcher({"chan1": [entry("vid1")]}),
        store,
        FakeProbe(True),
        FakeDownloader(store),
        FakeTranscoder(store),
        interval=3600,
    )

    thread = sched.start()
    try:
        assert swept.wait(5)
    finally:
        sched.stop(timeout=5)

    assert not thread.is_alive()


def test_unexpected_error_does_not_kill_loop(store, chan1):
    sched, _, _, _, _ = _scheduler(store, [chan1], {})
    calls = []

    def boom():
        calls.append(1)
        if len(calls) == 1:
            raise RuntimeError("unexpected")
        sched._stop.set()

    sched.interval = 0
    with patch.object(sched, "run_sweep", side_effect=boom):
        sched.run_forever()

    assert len(calls) == 2


def test_transitions_are_logged_with_state(store, chan1, caplog):
    sched, _, _, _, _ = _scheduler(store, [chan1], {"chan1": [entry("vid1")]})

    with caplog.at_level(logging.DEBUG, logger="lowfi_podcast.scheduler"):
        sched.run_sweep()
        sched.run_sweep()

    states = [r.state for r in caplog.records if hasattr(r, "state")]
    assert states == [
        EntryState.DISCOVERED.value,
        EntryState.DOWNLOADING.value,
        EntryState.DOWNLOADED.value,
        EntryState.TRANSCODING.value,
        EntryState.PUBLISHED.value,
        EntryState.SKIPPED.value,
    ]
