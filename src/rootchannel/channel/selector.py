"""Choose how to elevate: sudo in a terminal, pkexec behind a polkit agent.

sudo needs a terminal to read the password from, so terminal presence is
the deciding signal. pkexec is only preferred when no terminal is attached
and a polkit authentication agent is running to show the dialog.
"""
from __future__ import annotations

import logging
import os
import shutil
import subprocess
import sys
import threading
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from enum import Enum

from ..config import ChannelSettings

logger = logging.getLogger(__name__)

POLKIT_AGENT_PATTERN = 'polkit.*agent|lxpolkit|lxqt-policykit|mate-polkit|xfce-polkit'

# Variables the polkit dialog needs to reach the user's display
GRAPHICAL_ENV_VARS = ('DISPLAY', 'WAYLAND_DISPLAY', 'XDG_RUNTIME_DIR', 'XAUTHORITY')

NO_AGENT_ADVISORY = 'No polkit agent detected. You will be prompted for your password by sudo.'


class ElevationMode(Enum):
    SUDO = 'sudo'
    POLKIT_AGENT = 'pkexec'


@dataclass(frozen=True)
class ElevationProfile:
    """Startup parameters that differ between the two elevation backends."""

    mode: ElevationMode
    shell_argv: tuple[str, ...]
    oneshot_prefix: tuple[str, ...]
    settle_delay: float
    ready_timeout: float
    prime_argv: tuple[str, ...] | None = None
    refresh_argv: tuple[str, ...] | None = None
    propagate_env: bool = False


def profile_for(mode: ElevationMode, settings: ChannelSettings) -> ElevationProfile:
    if mode is ElevationMode.SUDO:
        sudo = settings.sudo_binary
        return ElevationProfile(
            mode=mode,
            shell_argv=(sudo, '-n', settings.shell, '-s'),
            oneshot_prefix=(sudo,),
            settle_delay=settings.sudo_settle_delay,
            ready_timeout=settings.sudo_ready_timeout,
            prime_argv=(sudo, '-v'),
            refresh_argv=(sudo, '-n', '-v'),
        )
    pkexec = settings.pkexec_binary
    return ElevationProfile(
        mode=mode,
        shell_argv=(pkexec, settings.shell, '-s'),
        oneshot_prefix=(pkexec,),
        settle_delay=settings.pkexec_settle_delay,
        ready_timeout=settings.pkexec_ready_timeout,
        propagate_env=True,
    )


def graphical_environment(
    base: Mapping[str, str] | None = None,
    desktop: Mapping[str, str] | None = None,
) -> dict[str, str]:
    """Return ``base`` with the desktop session's display variables set.

    ``base`` is the environment handed to the elevated process and
    ``desktop`` the session the display variables are read from; both
    default to the program's own environment. Display variables missing from
    ``desktop`` are removed so a stale value in ``base`` cannot point the
    agent at the wrong display.
    """
    env = dict(os.environ if base is None else base)
    session_env = os.environ if desktop is None else desktop
    for var in GRAPHICAL_ENV_VARS:
        value = session_env.get(var)
        if value is None:
            env.pop(var, None)
        else:
            env[var] = value
    return env


def has_terminal() -> bool:
    for stream in (sys.stdin, sys.stdout):
        if stream is None:
            return False
        try:
            if not stream.isatty():
                return False
        except ValueError:
            # closed stream
            return False
    return True


def is_sudo_available(binary: str = 'sudo') -> bool:
    return shutil.which(binary) is not None


def is_polkit_agent_running(run: Callable[..., subprocess.CompletedProcess] = subprocess.run) -> bool:
    try:
        cp = run(
            ['pgrep', '-f', POLKIT_AGENT_PATTERN],
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            timeout=5,
        )
    except (OSError, subprocess.SubprocessError) as e:
        logger.debug(f"Polkit agent probe failed: {e}")
        return False
    return cp.returncode == 0


class ElevationSelector:
    """Pick the elevation mode once and remember it.

    Args:
        settings: Channel settings; ``elevation_mode`` other than "auto" skips
            detection.
        terminal_probe: Returns True when an interactive terminal is attached.
        sudo_probe: Returns True when the sudo binary resolves on PATH.
        agent_probe: Returns True when a polkit agent is running.
        advisory: Receives the one-time notice shown when falling back to sudo
            without a terminal or agent.
    """

    def __init__(
        self,
        settings: ChannelSettings | None = None,
        terminal_probe: Callable[[], bool] | None = None,
        sudo_probe: Callable[[], bool] | None = None,
        agent_probe: Callable[[], bool] | None = None,
        advisory: Callable[[str], None] | None = None,
    ):
        self.settings = settings or ChannelSettings()
        self._terminal_probe = terminal_probe or has_terminal
        self._sudo_probe = sudo_probe or (lambda: is_sudo_available(self.settings.sudo_binary))
        self._agent_probe = agent_probe or is_polkit_agent_running
        self._advisory_cb = advisory or logger.warning
        self._lock = threading.Lock()
        self._mode: ElevationMode | None = None
        self.advisory: str | None = None

    @property
    def selected(self) -> ElevationMode | None:
        return self._mode

    def select(self) -> ElevationMode:
        with self._lock:
            if self._mode is None:
                self._mode = self._detect()
            return self._mode

    def _detect(self) -> ElevationMode:
        forced = self.settings.elevation_mode
        if forced == ElevationMode.SUDO.value:
            logger.info("Elevation mode forced to sudo by configuration")
            return ElevationMode.SUDO
        if forced == ElevationMode.POLKIT_AGENT.value:
            logger.info("Elevation mode forced to pkexec by configuration")
            return ElevationMode.POLKIT_AGENT

        if self._terminal_probe() and self._sudo_probe():
            logger.info("Running in terminal, using sudo for authentication")
            return ElevationMode.SUDO
        if self._agent_probe():
            logger.info("Polkit agent detected, using pkexec for authentication")
            return ElevationMode.POLKIT_AGENT

        logger.info("No polkit agent detected, using sudo for authentication")
        self.advisory = NO_AGENT_ADVISORY
        self._advisory_cb(NO_AGENT_ADVISORY)
        return ElevationMode.SUDO

    def profile(self) -> ElevationProfile:
        return profile_for(self.select(), self.settings)
