"""Framing for commands sent through the privileged shell.

Every command is wrapped so that, after it finishes, the shell prints two
marker lines: ``<exit marker>:<status>`` and ``<done marker>``. The reader
consumes lines until it sees the done marker, which recovers the exit code
and the output boundary from an otherwise unstructured stream.
"""
from __future__ import annotations

import itertools
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

logger = logging.getLogger(__name__)

EXIT_MARKER_PREFIX = "__EXIT_CODE__"
DONE_MARKER_PREFIX = "__CMD_DONE__"
READY_TOKEN = "__SHELL_READY__"

_sequence = itertools.count()


@dataclass(frozen=True)
class Invocation:
    exit_marker: str
    done_marker: str

    @classmethod
    def new(cls) -> "Invocation":
        # the sequence number keeps tokens distinct even if two clock reads collide
        stamp = f"{time.monotonic_ns()}_{next(_sequence)}"
        return cls(exit_marker=EXIT_MARKER_PREFIX + stamp, done_marker=DONE_MARKER_PREFIX + stamp)

    @property
    def exit_prefix(self) -> str:
        return self.exit_marker + ":"


@dataclass(frozen=True)
class Response:
    exit_code: int
    completed: bool


def wrap_command(command: str, invocation: Invocation, merge_stderr: bool = False) -> str:
    """Return the shell payload for ``command`` framed by the invocation markers.

    The command runs inside a ``{ ...; }`` group with stdin from /dev/null so it
    cannot swallow the commands queued behind it. The markers are echoed
    unconditionally, whatever the command's status.
    """
    redirect = " 2>&1" if merge_stderr else ""
    return (
        f"{{ {command}\n}}{redirect} </dev/null; "
        f"echo {invocation.exit_prefix}$?; "
        f"echo {invocation.done_marker}\n"
    )


def readiness_probe() -> str:
    return f"echo {READY_TOKEN}\n"


def parse_exit_line(line: str, invocation: Invocation) -> int | None:
    """Return the status carried by an exit-marker line.

    The marker may follow output that did not end in a newline, so it is
    searched for anywhere in the line. Returns None when ``line`` carries no
    exit marker for this invocation and -1 when the status is not a number.
    """
    pos = line.rfind(invocation.exit_prefix)
    if pos < 0:
        return None
    raw = line[pos + len(invocation.exit_prefix):].strip()
    try:
        return int(raw)
    except ValueError:
        logger.debug(f"Malformed exit status line: {line!r}")
        return -1


def read_response(
    next_line: Callable[[], str | None],
    invocation: Invocation,
    sink: Callable[[str], None] | None = None,
) -> Response:
    """Read framed output until the done marker or end of stream.

    Args:
        next_line: Returns the next output line without its newline, or None
            once the stream is closed.
        invocation: Markers the command was wrapped with.
        sink: Receives every line that is not a marker, in order.

    Returns:
        Response with the parsed exit code (-1 if none was seen) and whether
        the done marker was reached.
    """
    exit_code = -1
    while True:
        line = next_line()
        if line is None:
            logger.warning("Privileged shell output closed before the command completed")
            return Response(exit_code=exit_code, completed=False)
        if line == invocation.done_marker:
            return Response(exit_code=exit_code, completed=True)
        status = parse_exit_line(line, invocation)
        if status is None:
            if sink is not None:
                sink(line)
            continue
        exit_code = status
        # unterminated command output shares its line with the exit marker
        head = line[:line.rfind(invocation.exit_prefix)]
        if head and sink is not None:
            sink(head)
