from rootchannel.channel.protocol import (
    DONE_MARKER_PREFIX,
    EXIT_MARKER_PREFIX,
    Invocation,
    parse_exit_line,
    read_response,
    readiness_probe,
    wrap_command,
)


def _feed(lines):
    it = iter(lines)
    return lambda: next(it, None)


def test_markers_are_pairwise_distinct():
    invocations = [Invocation.new() for _ in range(2000)]
    tokens = [i.exit_marker for i in invocations] + [i.done_marker for i in invocations]
    assert len(set(tokens)) == len(tokens)
    assert all(i.exit_marker.startswith(EXIT_MARKER_PREFIX) for i in invocations)
    assert all(i.done_marker.startswith(DONE_MARKER_PREFIX) for i in invocations)


def test_wrap_command_emits_markers_after_group():
    inv = Invocation(exit_marker='__EXIT_CODE__1', done_marker='__CMD_DONE__1')
    payload = wrap_command('apt-get update', inv)
    assert payload == '{ apt-get update\n} </dev/null; echo __EXIT_CODE__1:$?; echo __CMD_DONE__1\n'


def test_wrap_command_merges_stderr_for_captured_variant():
    inv = Invocation(exit_marker='__EXIT_CODE__1', done_marker='__CMD_DONE__1')
    payload = wrap_command('echo a; echo b 1>&2', inv, merge_stderr=True)
    assert payload.startswith('{ echo a; echo b 1>&2\n} 2>&1 </dev/null;')
    assert payload.endswith('\n')


def test_readiness_probe_is_a_single_echo_line():
    assert readiness_probe() == 'echo __SHELL_READY__\n'


def test_parse_exit_line():
    inv = Invocation(exit_marker='__EXIT_CODE__7', done_marker='__CMD_DONE__7')
    assert parse_exit_line('__EXIT_CODE__7:0', inv) == 0
    assert parse_exit_line('__EXIT_CODE__7: 100 ', inv) == 100
    assert parse_exit_line('__EXIT_CODE__7:abc', inv) == -1
    assert parse_exit_line('__EXIT_CODE__8:0', inv) is None
    assert parse_exit_line('plain output', inv) is None


def test_read_response_forwards_output_and_stops_at_done_marker():
    inv = Invocation(exit_marker='__EXIT_CODE__9', done_marker='__CMD_DONE__9')
    lines = ['hello', 'world', '__EXIT_CODE__9:3', '__CMD_DONE__9', 'next command output']
    feed = _feed(lines)
    seen = []

    resp = read_response(feed, inv, sink=seen.append)

    assert resp.exit_code == 3
    assert resp.completed is True
    assert seen == ['hello', 'world']
    # the line after the done marker is left for the next reader
    assert feed() == 'next command output'


def test_read_response_splits_output_glued_to_exit_marker():
    inv = Invocation(exit_marker='__EXIT_CODE__9', done_marker='__CMD_DONE__9')
    seen = []
    resp = read_response(_feed(['partial__EXIT_CODE__9:4', '__CMD_DONE__9']), inv, sink=seen.append)
    assert resp.exit_code == 4
    assert seen == ['partial']
    assert parse_exit_line('x__EXIT_CODE__9:0', inv) == 0


def test_read_response_without_sink_drops_output():
    inv = Invocation(exit_marker='__EXIT_CODE__9', done_marker='__CMD_DONE__9')
    resp = read_response(_feed(['noise', '__EXIT_CODE__9:0', '__CMD_DONE__9']), inv)
    assert resp.exit_code == 0
    assert resp.completed


def test_read_response_malformed_exit_defaults_to_minus_one():
    inv = Invocation(exit_marker='__EXIT_CODE__9', done_marker='__CMD_DONE__9')
    resp = read_response(_feed(['__EXIT_CODE__9:', '__CMD_DONE__9']), inv)
    assert resp.exit_code == -1
    assert resp.completed


def test_read_response_end_of_stream_returns_best_known_code():
    inv = Invocation(exit_marker='__EXIT_CODE__9', done_marker='__CMD_DONE__9')

    resp = read_response(_feed(['partial']), inv)
    assert resp.exit_code == -1
    assert resp.completed is False

    resp = read_response(_feed(['__EXIT_CODE__9:4']), inv)
    assert resp.exit_code == 4
    assert resp.completed is False


def test_read_response_ignores_foreign_marker_text():
    inv = Invocation(exit_marker='__EXIT_CODE__9', done_marker='__CMD_DONE__9')
    seen = []
    lines = ['__CMD_DONE__', '__EXIT_CODE__:5', '__CMD_DONE__8', '__EXIT_CODE__9:0', '__CMD_DONE__9']
    resp = read_response(_feed(lines), inv, sink=seen.append)
    assert resp.exit_code == 0
    assert seen == ['__CMD_DONE__', '__EXIT_CODE__:5', '__CMD_DONE__8']
