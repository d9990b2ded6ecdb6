"""Background refresh of sudo's cached credential.

The refresh runs as its own short-lived process and never touches the
privileged shell's pipes. A failed refresh is only logged; the next real
command will surface the problem if the credential is really gone.
"""
from __future__ import annotations

import logging
import subprocess
import threading
from collections.abc import Callable, Sequence

logger = logging.getLogger(__name__)


class KeepAliveLoop:
    """Periodically runs ``refresh_argv`` on a daemon thread until stopped."""

    def __init__(
        self,
        refresh_argv: Sequence[str],
        interval: float = 240.0,
        run: Callable[..., subprocess.CompletedProcess] = subprocess.run,
    ):
        self.refresh_argv = list(refresh_argv)
        self.interval = interval
        self._run = run
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self.attempts = 0

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.is_running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name='rootchannel-keepalive', daemon=True)
        self._thread.start()

    def stop(self, timeout: float | None = 5.0) -> None:
        self._stop.set()
        thread = self._thread
        self._thread = None
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)

    def _loop(self) -> None:
        logger.info("Starting sudo keep-alive background loop")
        while not self._stop.wait(self.interval):
            self.refresh()
        logger.info("Sudo keep-alive stopped")

    def refresh(self) -> bool:
        """Run one refresh attempt; returns True if the credential was renewed."""
        self.attempts += 1
        try:
            cp = self._run(
                self.refresh_argv,
                stdin=subprocess.DEVNULL,
                capture_output=True,
                text=True,
            )
        except (OSError, subprocess.SubprocessError) as e:
            logger.error(f"Error in sudo keep-alive: {e}")
            return False
        if cp.returncode != 0:
            logger.warning("sudo keep-alive failed, session may have expired")
            return False
        logger.info("sudo session refreshed")
        return True
