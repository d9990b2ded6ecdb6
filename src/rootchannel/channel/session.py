"""Long-lived privileged shell shared by every command of a run.

The session authenticates once, keeps one ``bash -s`` running as root and
turns its stdin/stdout into a request/response channel (see ``protocol``).
A single lock covers startup, writes and reads, so exactly one command is
in flight at a time and marker lines can never be attributed to the wrong
command.

Once authentication fails the session is permanently failed: every later
call raises immediately and nothing is spawned again, so a user who
cancelled the prompt is not asked a second time.
"""
from __future__ import annotations

import atexit
import logging
import queue
import subprocess
import threading
import time
from collections.abc import Callable, Sequence
from enum import Enum
from typing import IO, Any, NoReturn

from ..config import ChannelSettings, load_settings
from ..utils.logging_config import output_sink
from ..utils.privilege import render_command, run_elevated
from . import protocol
from .errors import AuthenticationFailed, AuthenticationPreviouslyFailed
from .keepalive import KeepAliveLoop
from .selector import ElevationMode, ElevationProfile, ElevationSelector, graphical_environment

logger = logging.getLogger(__name__)


class SessionState(Enum):
    UNINITIALIZED = 'uninitialized'
    AUTHENTICATING = 'authenticating'
    READY = 'ready'
    CLOSED = 'closed'
    PERMANENTLY_FAILED = 'permanently_failed'


def _pump_lines(stream: IO[str], lines: "queue.Queue[str | None]") -> None:
    """Copy lines from the shell's output onto ``lines``; None marks end of stream."""
    try:
        for raw in stream:
            lines.put(raw.rstrip('\r\n'))
    except (OSError, ValueError) as e:
        logger.debug(f"Privileged shell reader stopped: {e}")
    finally:
        lines.put(None)


class ShellSession:
    """A privileged shell opened lazily on the first command.

    Args:
        settings: Channel settings (loaded from env/config when None).
        selector: Elevation mode selector (built from settings when None).
        popen: Factory used to spawn the privileged shell.
        run: Used for the sudo priming step, keep-alive refreshes and
            one-shot elevated commands.
        register_exit: Registers the process-exit cleanup hook.
        sink: Default receiver for captured output lines.
    """

    def __init__(
        self,
        settings: ChannelSettings | None = None,
        selector: ElevationSelector | None = None,
        popen: Callable[..., Any] = subprocess.Popen,
        run: Callable[..., subprocess.CompletedProcess] = subprocess.run,
        register_exit: Callable[[Callable[[], None]], Any] = atexit.register,
        sink: Callable[[str], None] | None = None,
    ):
        self.settings = settings or load_settings()
        self.selector = selector or ElevationSelector(self.settings)
        self._popen = popen
        self._run = run
        self._register_exit = register_exit
        self.sink = sink or output_sink()

        self._lock = threading.Lock()
        self._state = SessionState.UNINITIALIZED
        self._profile: ElevationProfile | None = None
        self._process: Any = None
        self._stdin: IO[str] | None = None
        self._stdout: IO[str] | None = None
        self._lines: "queue.Queue[str | None]" = queue.Queue()
        self._reader: threading.Thread | None = None
        self._stream_closed = False
        self._exit_hook_registered = False
        self.keepalive: KeepAliveLoop | None = None
        self.spawn_count = 0

    def __enter__(self) -> "ShellSession":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def mode(self) -> ElevationMode | None:
        return self._profile.mode if self._profile else self.selector.selected

    @property
    def is_ready(self) -> bool:
        return self._state is SessionState.READY

    @property
    def permanently_failed(self) -> bool:
        return self._state is SessionState.PERMANENTLY_FAILED

    def ensure_ready(self) -> None:
        """Make sure a live, authenticated shell is available.

        Raises:
            AuthenticationPreviouslyFailed: an earlier attempt failed.
            AuthenticationFailed: authentication was rejected or timed out, or
                the shell died.
        """
        with self._lock:
            self._ensure_ready_locked()

    def run_silent(self, command: str) -> int:
        """Run ``command`` as root and return its exit code; output is discarded."""
        with self._lock:
            self._ensure_ready_locked()
            return self._exchange(command, merge_stderr=False, sink=None)

    def run_captured(self, command: str, sink: Callable[[str], None] | None = None) -> int:
        """Run ``command`` as root, forwarding each stdout/stderr line to ``sink``."""
        with self._lock:
            self._ensure_ready_locked()
            return self._exchange(command, merge_stderr=True, sink=sink or self.sink)

    def run_elevated_argv(self, argv: Sequence[str]) -> int:
        """Run a single argument vector elevated, outside the persistent shell.

        Meant for short privileged commands that do not need the shell's state.
        """
        if self.permanently_failed:
            raise AuthenticationPreviouslyFailed()
        profile = self._profile or self.selector.profile()
        logger.info(f"Running one-shot elevated command: {render_command(argv, profile.oneshot_prefix)}")
        return run_elevated(
            argv,
            profile.oneshot_prefix,
            interactive=profile.mode is ElevationMode.SUDO,
            env=graphical_environment() if profile.propagate_env else None,
            sink=self.sink,
            run=self._run,
        )

    def close(self) -> None:
        """Stop keep-alive, shut the shell down and release its streams.

        Safe to call any number of times; also runs at interpreter exit.
        """
        with self._lock:
            had_shell = self._process is not None
            self._teardown()
            if self._state is not SessionState.PERMANENTLY_FAILED:
                self._state = SessionState.CLOSED
        if had_shell:
            logger.info("Privileged shell closed")

    def _ensure_ready_locked(self) -> None:
        if self._state is SessionState.PERMANENTLY_FAILED:
            raise AuthenticationPreviouslyFailed()

        if self._state is SessionState.READY:
            if self._process is not None and self._process.poll() is None and not self._stream_closed:
                return
            self._fail("Privileged shell exited unexpectedly")

        self._state = SessionState.AUTHENTICATING
        profile = self._profile or self.selector.profile()
        self._profile = profile

        try:
            self._start(profile)
        except AuthenticationFailed:
            raise
        except BaseException:
            # interrupted while authenticating: nothing is recorded as failed
            self._teardown()
            self._state = SessionState.UNINITIALIZED
            raise

        logger.info("Elevated shell initialized successfully")
        self._state = SessionState.READY

        if not self._exit_hook_registered:
            self._exit_hook_registered = True
            self._register_exit(self.close)

        if profile.refresh_argv is not None:
            self.keepalive = KeepAliveLoop(profile.refresh_argv, self.settings.keepalive_interval, run=self._run)
            self.keepalive.start()

    def _start(self, profile: ElevationProfile) -> None:
        if profile.prime_argv is not None:
            self._prime(profile)

        self._spawn(profile)

        time.sleep(profile.settle_delay)
        if self._process.poll() is not None:
            self._fail("Elevated shell process died immediately - authentication may have failed")

        self._wait_until_ready(profile)

    def _prime(self, profile: ElevationProfile) -> None:
        # the priming step owns the real terminal so the user can type a password
        argv = list(profile.prime_argv or ())
        try:
            cp = self._run(argv)
        except OSError as e:
            self._fail(f"Could not run {argv[0]}: {e}")
        if cp.returncode != 0:
            self._fail(f"{profile.mode.value} authentication failed")
        logger.info(f"{profile.mode.value} authentication successful")

    def _spawn(self, profile: ElevationProfile) -> None:
        env = graphical_environment() if profile.propagate_env else None
        self.spawn_count += 1
        logger.debug(f"Starting privileged shell: {' '.join(profile.shell_argv)}")
        try:
            self._process = self._popen(
                list(profile.shell_argv),
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                encoding='utf-8',
                errors='replace',
                bufsize=1,
                env=env,
            )
        except OSError as e:
            self._fail(f"Could not start privileged shell: {e}")
        self._stdin = self._process.stdin
        self._stdout = self._process.stdout
        self._stream_closed = False
        self._lines = queue.Queue()
        self._reader = threading.Thread(
            target=_pump_lines, args=(self._stdout, self._lines), name='rootchannel-reader', daemon=True
        )
        self._reader.start()

    def _wait_until_ready(self, profile: ElevationProfile) -> None:
        if not self._write(protocol.readiness_probe()):
            self._fail("Elevated shell process died - authentication may have failed")

        deadline = time.monotonic() + profile.ready_timeout
        while time.monotonic() < deadline:
            if self._process.poll() is not None:
                self._fail("Elevated shell process died - authentication may have failed")
            try:
                line = self._lines.get(timeout=self.settings.poll_interval)
            except queue.Empty:
                continue
            if line is None:
                self._fail("Elevated shell process died - authentication may have failed")
            logger.debug(f"Shell init output: {line}")
            if protocol.READY_TOKEN in line:
                return
        self._fail("Elevated shell did not respond - authentication may have failed")

    def _exchange(self, command: str, merge_stderr: bool, sink: Callable[[str], None] | None) -> int:
        invocation = protocol.Invocation.new()
        if not self._write(protocol.wrap_command(command, invocation, merge_stderr=merge_stderr)):
            return -1
        response = protocol.read_response(self._next_line, invocation, sink=sink)
        if not response.completed:
            self._stream_closed = True
        return response.exit_code

    def _next_line(self) -> str | None:
        if self._stream_closed:
            return None
        line = self._lines.get()
        if line is None:
            self._stream_closed = True
        return line

    def _write(self, payload: str) -> bool:
        if self._stdin is None:
            return False
        try:
            self._stdin.write(payload)
            self._stdin.flush()
        except (OSError, ValueError) as e:
            logger.error(f"Privileged shell is not accepting input: {e}")
            self._stream_closed = True
            return False
        return True

    def _fail(self, message: str) -> NoReturn:
        logger.error(message)
        self._state = SessionState.PERMANENTLY_FAILED
        self._teardown()
        raise AuthenticationFailed(message)

    def _teardown(self) -> None:
        if self.keepalive is not None:
            self.keepalive.stop()
            self.keepalive = None

        process, stdin, stdout, reader = self._process, self._stdin, self._stdout, self._reader
        self._process = self._stdin = self._stdout = self._reader = None
        self._stream_closed = True

        if stdin is not None:
            try:
                stdin.write('exit\n')
                stdin.flush()
            except (OSError, ValueError) as e:
                logger.debug(f"Could not ask privileged shell to exit: {e}")
            try:
                stdin.close()
            except (OSError, ValueError) as e:
                logger.debug(f"Error closing privileged shell stdin: {e}")

        if process is not None:
            self._stop_process(process)

        if reader is not None:
            reader.join(self.settings.close_timeout)
            # a reader still blocked on the pipe holds the stream's lock
            if reader.is_alive():
                return

        if stdout is not None:
            try:
                stdout.close()
            except (OSError, ValueError) as e:
                logger.debug(f"Error closing privileged shell stdout: {e}")

    def _stop_process(self, process: Any) -> None:
        timeout = self.settings.close_timeout
        try:
            process.wait(timeout=timeout)
            return
        except subprocess.TimeoutExpired:
            pass
        try:
            process.terminate()
            process.wait(timeout=timeout)
            return
        except subprocess.TimeoutExpired:
            pass
        except OSError as e:
            # the shell runs as root; signalling it can be refused
            logger.warning(f"Could not terminate privileged shell: {e}")
            return
        try:
            process.kill()
            process.wait(timeout=timeout)
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.warning(f"Could not kill privileged shell: {e}")


_default_session: ShellSession | None = None
_default_lock = threading.Lock()


def get_default_session() -> ShellSession:
    """Return the process-wide session, creating it on first use."""
    global _default_session
    with _default_lock:
        if _default_session is None:
            _default_session = ShellSession()
        return _default_session
