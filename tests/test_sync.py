"""Tests for the sync loop, scheduling and process lifecycle."""

from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest


@pytest.fixture(autouse=True)
def isolate_settings(tmp_path, monkeypatch):
    """Point settings module at a temp directory so tests don't touch real settings."""
    import newledge.settings as settings_mod

    monkeypatch.setattr(settings_mod, "SETTINGS_PATH", tmp_path / "settings.json")
    yield tmp_path


@pytest.fixture(autouse=True)
def no_sleep():
    with patch("newledge.sync.time.sleep") as mock_sleep:
        yield mock_sleep


@pytest.fixture
def notices():
    with patch("newledge.sync.notify.notice") as mock_notice:
        yield mock_notice


@pytest.fixture
def vault(tmp_path):
    from newledge.vault import Vault

    root = tmp_path / "vault"
    root.mkdir()
    return Vault(root)


@pytest.fixture
def settings():
    from newledge.settings import Settings

    s = Settings()
    s.token = "tok"
    s.user = {"id": "u1", "name": "Ada"}
    s.session_id = "sess"
    s.save()
    return s


def _page(ids, limit=20, valid=True, page_size=None):
    return {
        "valid": valid,
        "limit": limit,
        "page_size": len(ids) if page_size is None else page_size,
        "result": [{"id": str(i)} for i in ids],
    }


_OK = {"plugin_enable": True, "task_exist": True, "sync_success": True}


def _messages(mock_notice):
    return [c[0][0] for c in mock_notice.call_args_list]


class TestSync:
    @patch("newledge.sync.materializer.sync_note", return_value=_OK)
    @patch("newledge.sync.api.list_pending_tasks")
    def test_pages_until_short_page(self, mock_list, mock_note, settings, vault, notices, no_sleep):
        from newledge.sync import ITEM_DELAY, sync

        mock_list.side_effect = [_page([1, 2], limit=2), _page([3, 4], limit=2), _page([5], limit=2)]

        summary = sync(settings, vault)

        assert summary == {"status": "completed", "count": 5, "success": 5, "failed": 0}
        assert mock_list.call_count == 3
        assert [c[0][0] for c in mock_note.call_args_list] == ["1", "2", "3", "4", "5"]
        assert [c[0][0] for c in no_sleep.call_args_list] == [ITEM_DELAY] * 5
        assert _messages(notices) == ["Sync started", "Sync complete: 5 item(s) synced"]

    @patch("newledge.sync.materializer.sync_note", return_value=_OK)
    @patch("newledge.sync.api.list_pending_tasks")
    def test_single_short_page(self, mock_list, mock_note, settings, vault, notices):
        from newledge.sync import sync

        mock_list.return_value = _page([1, 2, 3])

        assert sync(settings, vault)["count"] == 3
        assert mock_list.call_count == 1

    @patch("newledge.sync.materializer.sync_note")
    @patch("newledge.sync.api.list_pending_tasks")
    def test_empty_queue(self, mock_list, mock_note, settings, vault, notices, no_sleep):
        from newledge.sync import EMPTY_RUN_DELAY, sync

        mock_list.return_value = _page([])

        summary = sync(settings, vault)

        assert summary["status"] == "completed"
        assert summary["count"] == 0
        mock_note.assert_not_called()
        no_sleep.assert_called_once_with(EMPTY_RUN_DELAY)
        assert _messages(notices)[-1] == "Nothing new to sync"

    @patch("newledge.sync.materializer.sync_note")
    @patch("newledge.sync.api.list_pending_tasks")
    def test_missing_task_stops_run(self, mock_list, mock_note, settings, vault, notices):
        from newledge.sync import sync

        mock_list.return_value = _page([1, 2, 3])
        mock_note.side_effect = [
            _OK,
            {"plugin_enable": True, "task_exist": False, "sync_success": False},
            _OK,
        ]

        summary = sync(settings, vault)

        assert summary["status"] == "completed"
        assert mock_note.call_count == 2
        assert mock_list.call_count == 1

    @patch("newledge.sync.materializer.sync_note")
    @patch("newledge.sync.api.list_pending_tasks")
    def test_disabled_mid_run_aborts(self, mock_list, mock_note, settings, vault, notices):
        from newledge.sync import sync

        mock_list.return_value = _page([1, 2])
        mock_note.return_value = {"plugin_enable": False, "task_exist": False, "sync_success": False}

        assert sync(settings, vault)["status"] == "aborted"
        assert mock_note.call_count == 1

    @patch("newledge.sync.materializer.sync_note")
    @patch("newledge.sync.api.list_pending_tasks")
    def test_unsuccessful_item_stops_run(self, mock_list, mock_note, settings, vault, notices):
        from newledge.sync import sync

        # A full page would normally lead to another listing
        mock_list.return_value = _page([1, 2, 3], limit=3)
        mock_note.side_effect = [
            _OK,
            {"plugin_enable": True, "task_exist": True, "sync_success": False},
            _OK,
        ]

        summary = sync(settings, vault)

        assert summary == {"status": "completed", "count": 2, "success": 1, "failed": 0}
        assert [c[0][0] for c in mock_note.call_args_list] == ["1", "2"]
        assert mock_list.call_count == 1

    @patch("newledge.sync.materializer.sync_note", return_value=_OK)
    @patch("newledge.sync.api.list_pending_tasks")
    def test_full_page_with_unusable_entry_keeps_paging(self, mock_list, mock_note, settings, vault, notices):
        from newledge.sync import sync

        mock_list.side_effect = [_page([1, 2], limit=3, page_size=3), _page([3], limit=3)]

        summary = sync(settings, vault)

        assert mock_list.call_count == 2
        assert summary["count"] == 3

    @patch("newledge.sync.materializer.sync_note")
    @patch("newledge.sync.api.list_pending_tasks")
    def test_item_errors_counted_and_run_continues(self, mock_list, mock_note, settings, vault, notices):
        from newledge.sync import sync

        mock_list.return_value = _page([1, 2, 3])
        mock_note.side_effect = [_OK, OSError("disk full"), _OK]

        summary = sync(settings, vault)

        assert summary == {"status": "completed", "count": 3, "success": 2, "failed": 1}
        assert _messages(notices)[-1] == "Sync complete: 2 item(s) synced, 1 failed, please retry"

    @patch("newledge.sync.materializer.sync_note")
    @patch("newledge.sync.api.list_pending_tasks")
    def test_invalid_page_aborts(self, mock_list, mock_note, settings, vault, notices):
        from newledge.sync import sync

        mock_list.return_value = _page([1], valid=False)

        assert sync(settings, vault)["status"] == "aborted"
        mock_note.assert_not_called()
        assert "Account unbound, stopping sync" in _messages(notices)

    @patch("newledge.sync.materializer.sync_note")
    @patch("newledge.sync.api.list_pending_tasks")
    def test_rejected_token_clears_account(self, mock_list, mock_note, settings, vault, notices):
        from newledge import api
        from newledge.settings import Settings
        from newledge.sync import sync

        mock_list.side_effect = api.AuthError("401")

        assert sync(settings, vault)["status"] == "aborted"
        assert Settings().token is None

    @patch("newledge.sync.api.list_pending_tasks")
    def test_disabled_before_start(self, mock_list, settings, vault, notices):
        from newledge.sync import sync

        settings.enable = False

        assert sync(settings, vault)["status"] == "aborted"
        mock_list.assert_not_called()

    @patch("newledge.sync.api.list_pending_tasks")
    def test_not_logged_in_skips(self, mock_list, vault, notices):
        from newledge.settings import Settings
        from newledge.sync import sync

        assert sync(Settings(), vault)["status"] == "skipped"
        mock_list.assert_not_called()
        notices.assert_not_called()

    @patch("newledge.sync.api.list_pending_tasks")
    def test_reentry_is_noop(self, mock_list, settings, vault, notices):
        from newledge.sync import sync

        settings.syncing = True

        assert sync(settings, vault)["status"] == "skipped"
        mock_list.assert_not_called()
        assert settings.syncing is True
        assert settings.last_sync_time is None

    @patch("newledge.sync.api.list_pending_tasks")
    def test_bookkeeping_after_failure(self, mock_list, settings, vault, notices):
        from newledge.settings import Settings
        from newledge.sync import sync

        mock_list.side_effect = ConnectionError("offline")

        summary = sync(settings, vault)

        assert summary["status"] == "failed"
        assert _messages(notices)[-1] == "Sync failed, please try again later"
        reloaded = Settings()
        assert reloaded.syncing is False
        assert reloaded.last_sync_time is not None

    @patch("newledge.sync.api.list_pending_tasks")
    def test_syncing_flag_persisted_during_run(self, mock_list, settings, vault, notices):
        from newledge.settings import Settings
        from newledge.sync import sync

        seen = []

        def _list(token):
            seen.append(Settings().syncing)
            return _page([])

        mock_list.side_effect = _list

        sync(settings, vault)

        assert seen == [True]
        assert Settings().syncing is False

    @patch("newledge.sync.api.list_pending_tasks", return_value=_page([]))
    def test_quiet_start(self, mock_list, settings, vault, notices):
        from newledge.sync import sync

        sync(settings, vault, message=False)

        assert "Sync started" not in _messages(notices)

    @patch("newledge.sync.api.list_pending_tasks", return_value=_page([]))
    def test_creates_folders(self, mock_list, settings, vault, notices):
        from newledge.sync import sync

        sync(settings, vault)

        assert (vault.root / "Newledge" / "Articles").is_dir()
        assert (vault.root / "Newledge" / "Notes").is_dir()


class TestTimingSync:
    NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)

    @patch("newledge.sync.sync")
    def test_due(self, mock_sync, settings, vault):
        from newledge.sync import timing_sync

        settings.touch_last_sync_time(self.NOW - timedelta(minutes=60))
        timing_sync(settings, vault, now=self.NOW)
        mock_sync.assert_called_once_with(settings, vault)

    @patch("newledge.sync.sync")
    def test_not_due(self, mock_sync, settings, vault):
        from newledge.sync import timing_sync

        settings.touch_last_sync_time(self.NOW - timedelta(minutes=59))
        assert timing_sync(settings, vault, now=self.NOW) is None
        mock_sync.assert_not_called()

    @patch("newledge.sync.sync")
    def test_respects_longer_interval(self, mock_sync, settings, vault):
        from newledge.sync import timing_sync

        settings.sync_interval = 720
        settings.touch_last_sync_time(self.NOW - timedelta(hours=11))
        timing_sync(settings, vault, now=self.NOW)
        mock_sync.assert_not_called()

        settings.touch_last_sync_time(self.NOW - timedelta(hours=12))
        timing_sync(settings, vault, now=self.NOW)
        mock_sync.assert_called_once()

    @patch("newledge.sync.sync")
    def test_never_synced_waits(self, mock_sync, settings, vault):
        from newledge.sync import timing_sync

        timing_sync(settings, vault, now=self.NOW)
        mock_sync.assert_not_called()

    @patch("newledge.sync.sync")
    def test_skipped_while_syncing(self, mock_sync, settings, vault):
        from newledge.sync import timing_sync

        settings.touch_last_sync_time(self.NOW - timedelta(days=2))
        settings.syncing = True
        timing_sync(settings, vault, now=self.NOW)
        mock_sync.assert_not_called()

    @patch("newledge.sync.sync")
    def test_errors_do_not_escape(self, mock_sync, settings, vault):
        from newledge.sync import timing_sync

        settings.touch_last_sync_time(self.NOW - timedelta(days=2))
        mock_sync.side_effect = RuntimeError("boom")
        assert timing_sync(settings, vault, now=self.NOW) is None


class TestTicker:
    def _clock(self):
        clock = {"t": 0.0}

        def monotonic():
            return clock["t"]

        def sleep(seconds):
            clock["t"] += seconds

        return clock, monotonic, sleep

    def test_fires_on_schedule(self, no_sleep):
        from newledge.sync import Ticker

        clock, monotonic, sleep = self._clock()
        no_sleep.side_effect = sleep
        calls = []

        def callback():
            calls.append(clock["t"])
            if len(calls) == 3:
                ticker.cancel()

        ticker = Ticker(60, callback)
        with patch("newledge.sync.time.monotonic", side_effect=monotonic):
            ticker.run()

        assert calls == [60.0, 120.0, 180.0]
        assert ticker.cancelled

    def test_skips_missed_ticks(self, no_sleep):
        from newledge.sync import Ticker

        clock, monotonic, sleep = self._clock()
        no_sleep.side_effect = sleep
        calls = []

        def callback():
            calls.append(clock["t"])
            if len(calls) == 1:
                clock["t"] += 130  # slow callback
            else:
                ticker.cancel()

        ticker = Ticker(60, callback)
        with patch("newledge.sync.time.monotonic", side_effect=monotonic):
            ticker.run()

        assert calls == [60.0, 240.0]

    def test_cancel_before_run(self):
        from newledge.sync import Ticker

        calls = []
        ticker = Ticker(60, lambda: calls.append(1))
        ticker.cancel()
        ticker.run()
        assert calls == []


class TestLifecycle:
    def test_startup_clears_stale_flag(self, settings):
        from newledge.settings import Settings
        from newledge.sync import startup

        settings.syncing = True
        settings.enable = False
        settings.save()

        startup(settings)

        reloaded = Settings()
        assert reloaded.syncing is False
        assert reloaded.enable is True

    def test_shutdown(self, settings):
        from newledge.settings import Settings
        from newledge.sync import shutdown

        shutdown(settings)

        reloaded = Settings()
        assert reloaded.syncing is False
        assert reloaded.enable is False

    @patch("newledge.sync.sync")
    @patch("newledge.sync.account.check_account")
    def test_run_once(self, mock_check, mock_sync, settings, vault):
        from newledge.settings import Settings
        from newledge.sync import run_once

        mock_check.return_value = {"valid": True, "failed_task_count": 0}
        mock_sync.return_value = {"status": "completed", "count": 1, "success": 1, "failed": 0}

        assert run_once(settings, vault)["status"] == "completed"
        mock_sync.assert_called_once_with(settings, vault)
        assert Settings().enable is False

    @patch("newledge.sync.sync")
    @patch("newledge.sync.account.check_account")
    def test_run_once_not_logged_in(self, mock_check, mock_sync, settings, vault):
        from newledge.sync import run_once

        mock_check.return_value = {"valid": False, "failed_task_count": 0}

        assert run_once(settings, vault)["status"] == "skipped"
        mock_sync.assert_not_called()

    @patch("newledge.sync.Ticker.run")
    @patch("newledge.sync.sync")
    @patch("newledge.sync.account.check_account")
    def test_watch_syncs_then_ticks(self, mock_check, mock_sync, mock_run, settings, vault):
        import signal

        from newledge.settings import Settings
        from newledge.sync import watch

        before = signal.getsignal(signal.SIGTERM)
        mock_check.return_value = {"valid": True, "failed_task_count": 0}

        watch(settings, vault)

        mock_sync.assert_called_once_with(settings, vault)
        mock_run.assert_called_once()
        assert signal.getsignal(signal.SIGTERM) == before
        assert Settings().enable is False


def _held_by(pid):
    """Mark a run as in progress on disk, owned by `pid`."""
    from newledge import settings as settings_mod

    settings_mod._save_raw({**settings_mod._load_raw(), "syncing": True, "sync_pid": pid})


class TestSharedSettings:
    """A --watch process and one-off commands share the settings file."""

    @patch("newledge.sync.api.list_pending_tasks", return_value=_page([]))
    def test_run_keeps_changes_saved_elsewhere(self, mock_list, settings, vault, notices):
        from newledge.settings import Settings
        from newledge.sync import sync

        other = Settings()
        other.sync_interval = 720
        other.set_dir("root_dir", "Inbox")
        other.save()

        sync(settings, vault)

        reloaded = Settings()
        assert reloaded.sync_interval == 720
        assert reloaded.root_dir == "Inbox"
        assert reloaded.last_sync_time is not None
        assert (vault.root / "Inbox" / "Articles").is_dir()

    @patch("newledge.sync.api.list_pending_tasks", return_value=_page([]))
    def test_logout_elsewhere_is_not_undone(self, mock_list, settings, vault, notices):
        from newledge.settings import Settings
        from newledge.sync import sync

        other = Settings()
        other.sync_interval = 720
        other.clear_account()
        other.save()

        assert sync(settings, vault)["status"] == "skipped"
        mock_list.assert_not_called()
        reloaded = Settings()
        assert reloaded.token is None
        assert reloaded.session_id is None
        assert reloaded.sync_interval == 720

    @patch("newledge.sync.sync")
    def test_schedule_follows_interval_saved_elsewhere(self, mock_sync, settings, vault):
        from newledge.settings import Settings
        from newledge.sync import timing_sync

        now = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)
        settings.touch_last_sync_time(now - timedelta(hours=2))
        settings.save()

        other = Settings()
        other.sync_interval = 720
        other.save()

        timing_sync(settings, vault, now=now)
        mock_sync.assert_not_called()

    @patch("newledge.sync.api.list_pending_tasks")
    def test_run_held_by_live_process_is_left_alone(self, mock_list, settings, vault, notices):
        import os

        from newledge.settings import Settings
        from newledge.sync import shutdown, startup, sync

        _held_by(os.getppid())

        one_shot = Settings()
        startup(one_shot)
        assert sync(one_shot, vault)["status"] == "skipped"
        shutdown(one_shot)

        mock_list.assert_not_called()
        reloaded = Settings()
        assert reloaded.syncing is True
        assert reloaded.sync_interval == 60

    def test_flag_from_dead_process_is_cleared(self, settings):
        from newledge.settings import Settings
        from newledge.sync import startup

        _held_by(999999)

        with patch("newledge.settings._pid_alive", return_value=False):
            startup(Settings())

        assert Settings().syncing is False
