"""Line-oriented terminal I/O for the confirmation prompts.

Output goes through ``click.echo`` and is best-effort: a failed write is
logged and the session carries on.  Input is read by a background pump
thread so that a blocked read can be abandoned as soon as the session's
:class:`~spendsort.interrupt.CancellationToken` is cancelled.  The pump
itself is not preempted; a line it is still waiting for is simply never
consumed.
"""

from __future__ import annotations

import logging
import queue
import sys
import threading
from typing import TextIO

import click

from spendsort.errors import InputTerminated
from spendsort.interrupt import CancellationToken

logger = logging.getLogger(__name__)

POLL_INTERVAL = 0.05

_EOF = None


class Terminal:
    """Prompt/answer channel between a session and the user.

    Args:
        input_stream: Text stream to read answers from.  Defaults to stdin.
        output_stream: Text stream for prompts.  ``None`` lets Click pick
            stdout.
    """

    def __init__(self, input_stream: TextIO | None = None, output_stream: TextIO | None = None) -> None:
        self.input = input_stream if input_stream is not None else sys.stdin
        self.out = output_stream
        self._lines: queue.Queue[str | None] = queue.Queue()
        self._pump: threading.Thread | None = None
        self._pump_lock = threading.Lock()

    def echo(self, message: str = "", nl: bool = True) -> None:
        """Write *message*; write failures are logged, never raised."""
        try:
            click.echo(message, file=self.out, nl=nl)
        except (OSError, ValueError) as exc:
            logger.warning("Failed to write to terminal: %s", exc)

    def prompt(self, text: str, token: CancellationToken) -> str:
        """Show ``text: `` and return the stripped answer."""
        self.echo(f"{text}: ", nl=False)
        return self.read_line(token).strip()

    def read_line(self, token: CancellationToken) -> str:
        """Read one line, abandoning the wait when *token* is cancelled.

        Raises:
            ClassificationCancelled: The token was cancelled before or
                during the wait.
            InputTerminated: The input stream reached end of file.
        """
        token.raise_if_cancelled()
        self._ensure_pump()
        while True:
            try:
                line = self._lines.get(timeout=POLL_INTERVAL)
            except queue.Empty:
                token.raise_if_cancelled()
                continue
            if line is _EOF:
                # Leave the marker for any later read.
                self._lines.put(_EOF)
                raise InputTerminated()
            return line.rstrip("\r\n")

    # -- internals ----------------------------------------------------------

    def _ensure_pump(self) -> None:
        with self._pump_lock:
            if self._pump is None:
                self._pump = threading.Thread(
                    target=self._pump_lines, name="spendsort-input", daemon=True
                )
                self._pump.start()

    def _pump_lines(self) -> None:
        try:
            for line in iter(self.input.readline, ""):
                self._lines.put(line)
        except (OSError, ValueError) as exc:
            logger.debug("Input stream closed: %s", exc)
        finally:
            self._lines.put(_EOF)
