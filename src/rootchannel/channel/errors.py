"""Exceptions raised by the privileged shell channel.

Only session-establishment problems are exceptions. A command that exits
non-zero is reported as an integer exit code, and a malformed or truncated
response is recovered locally as exit code -1.
"""


class SessionError(RuntimeError):
    """The privileged shell could not be established or is no longer usable."""


class AuthenticationFailed(SessionError):
    """Authentication was rejected, cancelled or timed out.

    Fatal for the lifetime of the process: the session never prompts again.
    """


class AuthenticationPreviouslyFailed(AuthenticationFailed):
    """Raised on every call after an authentication failure."""

    def __init__(self, message: str = "Authentication was previously cancelled or failed"):
        super().__init__(message)
