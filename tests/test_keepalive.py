import logging
import subprocess
import time

from rootchannel.channel.keepalive import KeepAliveLoop


def _wait_for(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while not predicate() and time.monotonic() < deadline:
        time.sleep(0.01)
    return predicate()


def test_refresh_runs_independent_command():
    calls = []

    def fake_run(argv, **kwargs):
        calls.append((argv, kwargs))
        return subprocess.CompletedProcess(argv, 0, stdout='', stderr='')

    loop = KeepAliveLoop(['sudo', '-n', '-v'], interval=0.02, run=fake_run)
    loop.start()
    try:
        assert _wait_for(lambda: len(calls) >= 2)
    finally:
        loop.stop()

    argv, kwargs = calls[0]
    assert argv == ['sudo', '-n', '-v']
    assert kwargs['stdin'] is subprocess.DEVNULL
    assert loop.attempts >= 2


def test_stop_prevents_further_attempts():
    calls = []
    loop = KeepAliveLoop(['sudo', '-n', '-v'], interval=0.02, run=lambda argv, **kw: calls.append(argv) or subprocess.CompletedProcess(argv, 0))
    loop.start()
    assert _wait_for(lambda: len(calls) >= 1)
    loop.stop()
    assert not loop.is_running

    stopped_at = len(calls)
    time.sleep(0.2)
    assert len(calls) == stopped_at


def test_stop_before_first_interval_never_refreshes():
    calls = []
    loop = KeepAliveLoop(['sudo', '-n', '-v'], interval=60, run=lambda argv, **kw: calls.append(argv))
    loop.start()
    start = time.monotonic()
    loop.stop()
    assert time.monotonic() - start < 5
    assert calls == []


def test_start_is_idempotent():
    loop = KeepAliveLoop(['sudo', '-n', '-v'], interval=60, run=lambda argv, **kw: None)
    loop.start()
    first = loop._thread
    loop.start()
    assert loop._thread is first
    loop.stop()


def test_refresh_failure_is_logged_not_raised(caplog):
    caplog.set_level(logging.INFO, logger='rootchannel.channel.keepalive')
    loop = KeepAliveLoop(['sudo', '-n', '-v'], run=lambda argv, **kw: subprocess.CompletedProcess(argv, 1))
    assert loop.refresh() is False
    assert 'session may have expired' in caplog.text


def test_refresh_oserror_is_logged_not_raised(caplog):
    def broken(argv, **kwargs):
        raise FileNotFoundError('sudo')

    loop = KeepAliveLoop(['sudo', '-n', '-v'], run=broken)
    assert loop.refresh() is False
    assert 'Error in sudo keep-alive' in caplog.text


def test_refresh_success():
    loop = KeepAliveLoop(['sudo', '-n', '-v'], run=lambda argv, **kw: subprocess.CompletedProcess(argv, 0))
    assert loop.refresh() is True
    assert loop.attempts == 1
