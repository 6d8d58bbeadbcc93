"""File follower for the Minecraft client log using polling.

Clients write latest.log through buffered streams and rotate it on every
launch (latest.log is gzipped away and recreated), so we poll size and inode
instead of relying on filesystem events.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from pathlib import Path

logger = logging.getLogger(__name__)

POLL_INTERVAL = 0.2  # seconds


class ChatLogWatcher:
    """Follows a log file from its current end, one complete line at a time.

    Usage:
        watcher = ChatLogWatcher(Path("latest.log"), handle_line, on_error=report)
        watcher.start()
        # ... later ...
        watcher.stop()

    on_idle is called after every poll (with or without new lines) so the
    owner can run timers on the same thread that delivers lines.
    """

    def __init__(
        self,
        file_path: Path,
        on_new_line: Callable[[str], None],
        on_error: Callable[[Exception], None] | None = None,
        on_idle: Callable[[], None] | None = None,
        poll_interval: float = POLL_INTERVAL,
    ) -> None:
        self._file_path = Path(file_path)
        self._on_new_line = on_new_line
        self._on_error = on_error
        self._on_idle = on_idle
        self._poll_interval = poll_interval
        self._position: int = 0
        self._inode: int | None = None
        self._partial = b""
        self._failing = False
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def file_path(self) -> Path:
        return self._file_path

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start polling the log file."""
        self._seek_to_end()
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._poll_loop, name="log-watcher", daemon=True,
        )
        self._thread.start()
        logger.info("Watching (poll) %s", self._file_path)

    def stop(self) -> None:
        """Stop polling."""
        self._stop_event.set()
        if self._thread and self._thread is not threading.current_thread():
            self._thread.join(timeout=5)
        self._thread = None
        logger.info("Stopped watching %s", self._file_path)

    def _seek_to_end(self) -> None:
        """Move position to end of file so we only get new lines."""
        try:
            stat = self._file_path.stat()
        except OSError:
            self._position = 0
            self._inode = None
            return
        self._position = stat.st_size
        self._inode = stat.st_ino

    def _poll_loop(self) -> None:
        while not self._stop_event.is_set():
            self.poll()
            self._stop_event.wait(self._poll_interval)

    def poll(self) -> None:
        """Read any new lines and run the idle hook once."""
        self._read_new_lines()
        if self._on_idle is not None:
            try:
                self._on_idle()
            except Exception:
                logger.exception("Idle callback failed")

    def _report(self, exc: Exception) -> None:
        # One report per failure episode, not one per poll
        if self._failing:
            return
        self._failing = True
        logger.warning("Cannot read log %s: %s", self._file_path, exc)
        if self._on_error is not None:
            self._on_error(exc)

    def _read_new_lines(self) -> None:
        try:
            stat = self._file_path.stat()
        except OSError as e:
            self._report(e)
            return

        # Recreated (rotation) or truncated: start over from the top
        if (self._inode is not None and stat.st_ino != self._inode) or stat.st_size < self._position:
            logger.info("Log rotated or truncated, resetting position")
            self._position = 0
            self._partial = b""
        self._inode = stat.st_ino

        if stat.st_size == self._position:
            self._recovered()
            return

        try:
            with open(self._file_path, "rb") as f:
                f.seek(self._position)
                data = f.read()
                self._position = f.tell()
        except OSError as e:
            self._report(e)
            return
        self._recovered()

        data = self._partial + data
        lines = data.split(b"\n")
        self._partial = lines.pop()
        for raw in lines:
            line = raw.decode("utf-8", errors="replace").rstrip("\r")
            if line.strip():
                self._deliver(line)

    def _recovered(self) -> None:
        if self._failing:
            logger.info("Log readable again: %s", self._file_path)
            self._failing = False

    def _deliver(self, line: str) -> None:
        try:
            self._on_new_line(line)
        except Exception:
            logger.exception("Line handler failed for %r", line[:120])

