"""Cooperative cancellation for interactive classification sessions.

A :class:`CancellationToken` is threaded through every blocking call.  The
:class:`InterruptSupervisor` turns SIGINT/SIGTERM (or any other caller of
:meth:`InterruptSupervisor.notify`) into exactly one cancellation: the first
notification prints a friendly notice and cancels the token, later ones are
ignored.
"""

from __future__ import annotations

import logging
import signal
import threading
from collections.abc import Callable
from typing import TextIO

import click

from spendsort.errors import ClassificationCancelled

logger = logging.getLogger(__name__)

_HANDLED_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class CancellationToken:
    """A one-way cancellation flag shared by the session and its readers."""

    def __init__(self) -> None:
        self._event = threading.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    def raise_if_cancelled(self) -> None:
        """Raise :class:`ClassificationCancelled` if the token is cancelled."""
        if self._event.is_set():
            raise ClassificationCancelled()

    def wait(self, timeout: float | None = None) -> bool:
        """Block until cancelled or *timeout* elapses; return the flag."""
        return self._event.wait(timeout)


class InterruptSupervisor:
    """Observe interrupt signals once and fan the cancellation out.

    Args:
        token: The token to cancel on the first interrupt.
        out: Stream the notice is written to.  Defaults to stdout.
        progress_saved: Optional callable telling whether resumable progress
            has been written; the notice mentions it.

    Use as a context manager to install the signal handlers for the duration
    of a session::

        with InterruptSupervisor(token) as supervisor:
            coordinator.run(transactions)
    """

    def __init__(
        self,
        token: CancellationToken,
        out: TextIO | None = None,
        progress_saved: Callable[[], bool] | None = None,
    ) -> None:
        self.token = token
        self.out = out
        self.progress_saved = progress_saved
        # Reentrant: a second signal can arrive on the main thread mid-notice.
        self._lock = threading.RLock()
        self._interrupted = False
        self._previous_handlers: dict[int, object] = {}

    @property
    def interrupted(self) -> bool:
        with self._lock:
            return self._interrupted

    def notify(self) -> bool:
        """Deliver one interrupt.

        Returns:
            True if this call was the first and rendered the notice, False
            if the session had already been interrupted.
        """
        with self._lock:
            if self._interrupted:
                return False
            self._interrupted = True
            try:
                self._show_notice()
            finally:
                self.token.cancel()
        return True

    def install(self) -> None:
        """Route SIGINT and SIGTERM to :meth:`notify`.

        Only the main thread may install signal handlers; elsewhere this logs
        and does nothing.
        """
        if threading.current_thread() is not threading.main_thread():
            logger.debug("Not on the main thread; signal handlers not installed")
            return
        for signum in _HANDLED_SIGNALS:
            self._previous_handlers[signum] = signal.getsignal(signum)
            signal.signal(signum, self._handle_signal)

    def uninstall(self) -> None:
        """Restore the handlers that were active before :meth:`install`."""
        for signum, handler in self._previous_handlers.items():
            signal.signal(signum, handler)
        self._previous_handlers.clear()

    def __enter__(self) -> InterruptSupervisor:
        self.install()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.uninstall()

    # -- internals ----------------------------------------------------------

    def _handle_signal(self, signum, frame) -> None:
        self.notify()

    def _show_notice(self) -> None:
        saved = False
        if self.progress_saved is not None:
            try:
                saved = bool(self.progress_saved())
            except Exception as exc:
                logger.warning("Could not determine saved progress: %s", exc)

        lines = ["", "", "Classification interrupted!"]
        if saved:
            lines.append("Progress has been saved. Run the same command again to resume.")
        else:
            lines.append("No progress was saved.")
        lines.append("See you later!")

        try:
            click.echo("\n".join(lines), file=self.out)
        except (OSError, ValueError) as exc:
            logger.warning("Failed to write interrupt notice: %s", exc)
