"""
Run control - pause/stop flags observed by the crawl at its checkpoints.

Flags are flipped asynchronously by operator commands on stdin and by OS
termination signals; the crawl only reads them at the top of each page and
each company iteration.
"""

from __future__ import annotations

import logging
import signal
import sys
import threading
from typing import Optional, TextIO

logger = logging.getLogger(__name__)

PAUSE_POLL_SECONDS = 0.5
PAUSE_COMMAND = "p"
STOP_COMMAND = "q"


class RunControl:
    """Process-wide run flags passed explicitly to the driver and extractor"""

    def __init__(self, poll_seconds: float = PAUSE_POLL_SECONDS) -> None:
        self.poll_seconds = poll_seconds
        self._stop = threading.Event()
        self._paused = False
        self._lock = threading.Lock()

    def request_stop(self) -> None:
        """One-way: once set, the stop flag is never cleared."""
        self._stop.set()

    def toggle_pause(self) -> bool:
        with self._lock:
            self._paused = not self._paused
            return self._paused

    def is_stop_requested(self) -> bool:
        return self._stop.is_set()

    def is_paused(self) -> bool:
        return self._paused

    def wait_if_paused(self) -> None:
        """Block while paused; returns early once stop is requested."""
        while self.is_paused() and not self.is_stop_requested():
            self._stop.wait(self.poll_seconds)


class ControlListener:
    """Reads operator commands line by line on a daemon thread"""

    def __init__(self, control: RunControl, stream: Optional[TextIO] = None) -> None:
        self.control = control
        self.stream = stream if stream is not None else sys.stdin
        self._thread: Optional[threading.Thread] = None

    def handle(self, command: str) -> None:
        key = (command or "").strip().lower()
        if key == PAUSE_COMMAND:
            paused = self.control.toggle_pause()
            if paused:
                print("⏸️  Paused (press p + Enter to resume)")
                logger.info("Run paused by operator")
            else:
                print("▶️  Resumed")
                logger.info("Run resumed by operator")
        elif key == STOP_COMMAND:
            print("🛑 Stop requested; finishing the current company first...")
            logger.info("Stop requested by operator")
            self.control.request_stop()

    def _run(self) -> None:
        try:
            for line in self.stream:
                self.handle(line)
                if self.control.is_stop_requested():
                    break
        except (OSError, ValueError):
            logger.debug("Control channel closed", exc_info=True)

    def start(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self._run, name="run-control", daemon=True)
        self._thread.start()
        print("⌨️  Controls: p + Enter = pause/resume, q + Enter = stop, Ctrl+C = stop")


def install_signal_handlers(control: RunControl) -> None:
    """Map SIGINT/SIGTERM onto the stop flag instead of exiting abruptly."""

    def _handler(signum, frame) -> None:
        name = signal.Signals(signum).name
        print(f"\n🛑 {name} received; stopping after the current company...")
        logger.warning("%s received; requesting stop", name)
        control.request_stop()

    signal.signal(signal.SIGINT, _handler)
    if hasattr(signal, "SIGTERM"):
        signal.signal(signal.SIGTERM, _handler)
