"""Privileged command channel.

Callers create (or share via ``get_default_session``) a ShellSession and use
``run_silent``/``run_captured`` for commands that need root.
"""
from .errors import AuthenticationFailed, AuthenticationPreviouslyFailed, SessionError
from .keepalive import KeepAliveLoop
from .protocol import Invocation, Response, read_response, wrap_command
from .selector import ElevationMode, ElevationProfile, ElevationSelector, profile_for
from .session import SessionState, ShellSession, get_default_session

__all__ = [
    'AuthenticationFailed',
    'AuthenticationPreviouslyFailed',
    'SessionError',
    'KeepAliveLoop',
    'Invocation',
    'Response',
    'read_response',
    'wrap_command',
    'ElevationMode',
    'ElevationProfile',
    'ElevationSelector',
    'profile_for',
    'SessionState',
    'ShellSession',
    'get_default_session',
]
