import logging
import subprocess
import sys
from pathlib import Path

import pytest

# Ensure `src` is on sys.path for tests run from the repository root
ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from rootchannel.config import ChannelSettings  # noqa: E402


class UnprivilegedPopen:
    """Popen stand-in that drops the sudo/pkexec prefix and runs the shell as the test user."""

    def __init__(self, replacement=None):
        self.replacement = replacement
        self.calls = []
        self.kwargs = []

    def __call__(self, argv, **kwargs):
        self.calls.append(list(argv))
        self.kwargs.append(kwargs)
        real = list(self.replacement) if self.replacement else argv[argv.index('bash'):]
        return subprocess.Popen(real, **kwargs)


class RunSpy:
    """Records priming, refresh and one-shot invocations instead of calling sudo."""

    def __init__(self, prime_code=0, refresh_code=0, oneshot_code=0, oneshot_stdout=''):
        self.prime_code = prime_code
        self.refresh_code = refresh_code
        self.oneshot_code = oneshot_code
        self.oneshot_stdout = oneshot_stdout
        self.calls = []

    def __call__(self, argv, **kwargs):
        argv = list(argv)
        self.calls.append(argv)
        if argv[1:] == ['-v']:
            code, out = self.prime_code, ''
        elif argv[1:] == ['-n', '-v']:
            code, out = self.refresh_code, ''
        else:
            code, out = self.oneshot_code, self.oneshot_stdout
        return subprocess.CompletedProcess(argv, code, stdout=out, stderr='')

    def count(self, argv):
        return sum(1 for c in self.calls if c == list(argv))


@pytest.fixture(autouse=True)
def restore_root_logging():
    # the CLI reconfigures the root logger; keep that from leaking between tests
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def fast_settings():
    return ChannelSettings(
        elevation_mode='sudo',
        sudo_settle_delay=0.0,
        pkexec_settle_delay=0.0,
        sudo_ready_timeout=5.0,
        pkexec_ready_timeout=5.0,
        poll_interval=0.01,
        keepalive_interval=3600.0,
        close_timeout=1.0,
    )


@pytest.fixture
def popen_spy():
    return UnprivilegedPopen()


@pytest.fixture
def run_spy():
    return RunSpy()


@pytest.fixture
def exit_hooks():
    return []


@pytest.fixture
def make_session(fast_settings, popen_spy, run_spy, exit_hooks):
    from rootchannel.channel.session import ShellSession

    created = []

    def _make(settings=None, popen=None, run=None, sink=None):
        session = ShellSession(
            settings=settings or fast_settings,
            popen=popen or popen_spy,
            run=run or run_spy,
            register_exit=exit_hooks.append,
            sink=sink,
        )
        created.append(session)
        return session

    yield _make

    for s in created:
        s.close()
