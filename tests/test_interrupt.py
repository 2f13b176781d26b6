"""Tests for spendsort.interrupt -- cancellation token and one-shot interrupt notice."""

from __future__ import annotations

import io
import signal
import threading

import pytest

from spendsort.errors import ClassificationCancelled
from spendsort.interrupt import CancellationToken, InterruptSupervisor


class TestCancellationToken:
    def test_starts_clear(self):
        token = CancellationToken()
        assert not token.cancelled
        token.raise_if_cancelled()

    def test_cancel(self):
        token = CancellationToken()
        token.cancel()
        assert token.cancelled
        with pytest.raises(ClassificationCancelled):
            token.raise_if_cancelled()

    def test_wait_times_out(self):
        assert CancellationToken().wait(0.01) is False


class TestInterruptSupervisor:
    def test_first_notify_shows_notice_and_cancels(self):
        token = CancellationToken()
        out = io.StringIO()
        supervisor = InterruptSupervisor(token, out=out)
        assert supervisor.notify() is True
        assert token.cancelled
        assert supervisor.interrupted
        text = out.getvalue()
        assert "Classification interrupted!" in text
        assert "No progress was saved." in text

    def test_second_notify_is_ignored(self):
        out = io.StringIO()
        supervisor = InterruptSupervisor(CancellationToken(), out=out)
        supervisor.notify()
        assert supervisor.notify() is False
        assert out.getvalue().count("Classification interrupted!") == 1

    def test_concurrent_notifies_render_once(self):
        out = io.StringIO()
        supervisor = InterruptSupervisor(CancellationToken(), out=out)
        results: list[bool] = []
        threads = [threading.Thread(target=lambda: results.append(supervisor.notify())) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert results.count(True) == 1
        assert out.getvalue().count("Classification interrupted!") == 1

    def test_progress_saved_message(self):
        out = io.StringIO()
        InterruptSupervisor(CancellationToken(), out=out, progress_saved=lambda: True).notify()
        assert "Progress has been saved. Run the same command again to resume." in out.getvalue()

    def test_progress_check_failure_still_cancels(self):
        token = CancellationToken()

        def broken() -> bool:
            raise RuntimeError("no idea")

        InterruptSupervisor(token, out=io.StringIO(), progress_saved=broken).notify()
        assert token.cancelled

    def test_notice_write_failure_still_cancels(self):
        token = CancellationToken()
        closed = io.StringIO()
        closed.close()
        supervisor = InterruptSupervisor(token, out=closed)
        assert supervisor.notify() is True
        assert token.cancelled
        assert supervisor.notify() is False

    def test_install_and_restore_handlers(self):
        previous = signal.getsignal(signal.SIGINT)
        supervisor = InterruptSupervisor(CancellationToken(), out=io.StringIO())
        with supervisor:
            assert signal.getsignal(signal.SIGINT) == supervisor._handle_signal
        assert signal.getsignal(signal.SIGINT) == previous

    def test_signal_delivers_notify(self):
        token = CancellationToken()
        with InterruptSupervisor(token, out=io.StringIO()):
            signal.raise_signal(signal.SIGINT)
        assert token.cancelled
