"""One-shot elevated commands.

Run a single argument vector through sudo or pkexec without going through
the persistent privileged shell. Useful for short commands that do not need
the shell's state; each call may prompt on its own if no credential is
cached.
"""
from __future__ import annotations

import shlex
import subprocess
from collections.abc import Callable, Mapping, Sequence


def run_elevated(
    cmd: Sequence[str],
    prefix: Sequence[str],
    interactive: bool = True,
    env: Mapping[str, str] | None = None,
    sink: Callable[[str], None] | None = None,
    run: Callable[..., subprocess.CompletedProcess] = subprocess.run,
) -> int:
    """Run ``prefix + cmd`` and return its exit code.

    With ``interactive`` the command shares the caller's terminal so sudo can
    ask for a password. Otherwise stdout and stderr are merged and each line
    is handed to ``sink``.
    """
    cmd_list = list(prefix) + list(cmd)
    if interactive:
        return run(cmd_list, env=env).returncode

    cp = run(cmd_list, stdin=subprocess.DEVNULL, stdout=subprocess.PIPE, stderr=subprocess.STDOUT, text=True, env=env)
    if sink is not None and cp.stdout:
        for line in cp.stdout.splitlines():
            sink(line)
    return cp.returncode


def render_command(cmd: Sequence[str], prefix: Sequence[str] = ()) -> str:
    """Return a shell-safe string representation of the command for logging or dry-run."""
    return ' '.join(shlex.quote(p) for p in (list(prefix) + list(cmd)))
