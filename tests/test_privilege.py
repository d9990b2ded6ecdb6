import subprocess

from rootchannel.utils.privilege import render_command, run_elevated


def test_render_command_quotes_arguments():
    assert render_command(['rm', '-rf', '/tmp/a b'], ('sudo',)) == "sudo rm -rf '/tmp/a b'"
    assert render_command(['true']) == 'true'


def test_interactive_run_shares_terminal():
    seen = {}

    def fake_run(argv, **kwargs):
        seen['argv'] = argv
        seen['kwargs'] = kwargs
        return subprocess.CompletedProcess(argv, 0)

    assert run_elevated(['id'], ('sudo',), interactive=True, run=fake_run) == 0
    assert seen['argv'] == ['sudo', 'id']
    assert 'stdout' not in seen['kwargs']


def test_non_interactive_run_forwards_lines():
    out = []

    def fake_run(argv, **kwargs):
        assert kwargs['stderr'] is subprocess.STDOUT
        return subprocess.CompletedProcess(argv, 2, stdout='a\nb\n')

    code = run_elevated(['ls'], ('pkexec',), interactive=False, sink=out.append, run=fake_run)
    assert code == 2
    assert out == ['a', 'b']
