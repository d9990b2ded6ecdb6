from __future__ import annotations

import shlex

import click
from pathlib import Path
from typing import Optional

from rootchannel.channel.errors import SessionError
from rootchannel.channel.selector import (
    ElevationSelector,
    has_terminal,
    is_polkit_agent_running,
    is_sudo_available,
)
from rootchannel.channel.session import ShellSession

# Exit status used when the privileged shell could not be established
AUTH_FAILED_EXIT = 2


def _make_session() -> ShellSession:
    from rootchannel.config import load_settings

    settings = load_settings()
    # surface the no-agent notice on the terminal rather than only in the log
    selector = ElevationSelector(settings, advisory=lambda msg: click.echo(f"[rootchannel] {msg}", err=True))
    return ShellSession(settings=settings, selector=selector, sink=click.echo)


@click.group()
@click.option('--verbose', '-v', is_flag=True, help='Enable verbose logging')
@click.option('--quiet', '-q', is_flag=True, help='Suppress most output')
@click.option('--log-file', default=None, help='Also write logs to this file')
@click.pass_context
def cli(ctx, verbose: bool, quiet: bool, log_file: Optional[str]):
    """rootchannel CLI: run commands as root with a single authentication prompt."""
    from rootchannel.config import get_log_file
    from rootchannel.utils.logging_config import setup_cli_logging

    ctx.ensure_object(dict)
    ctx.obj['verbose'] = verbose
    ctx.obj['quiet'] = quiet

    setup_cli_logging(verbose=verbose, quiet=quiet, log_file=Path(log_file) if log_file else get_log_file())


@cli.command('mode')
def mode_cmd():
    """Show the environment signals and the elevation mode they select."""
    from rootchannel.config import load_settings

    settings = load_settings()
    terminal = has_terminal()
    sudo = is_sudo_available(settings.sudo_binary)
    agent = is_polkit_agent_running()
    click.echo(f"terminal: {terminal}")
    click.echo(f"sudo available: {sudo}")
    click.echo(f"polkit agent: {agent}")
    click.echo(f"configured: {settings.elevation_mode}")

    selector = ElevationSelector(
        settings,
        terminal_probe=lambda: terminal,
        sudo_probe=lambda: sudo,
        agent_probe=lambda: agent,
        advisory=lambda msg: None,
    )
    mode = selector.select()
    click.echo(f"mode: {click.style(mode.value, fg='cyan', bold=True)}")
    if selector.advisory:
        click.echo(f"note: {selector.advisory}")


@cli.command('run', context_settings={'ignore_unknown_options': True})
@click.argument('command', nargs=-1, required=True, type=click.UNPROCESSED)
@click.option('--silent', is_flag=True, help='Discard the command output')
@click.pass_context
def run_cmd(ctx, command: tuple[str, ...], silent: bool):
    """Run COMMAND as root through the persistent shell and exit with its status.

    A single argument is shell text and runs as written (pipes, redirects,
    `;`). Several arguments are an argument vector and are quoted so each
    one reaches the command unchanged.
    """
    body = command[0] if len(command) == 1 else shlex.join(command)
    session = _make_session()
    try:
        code = session.run_silent(body) if silent else session.run_captured(body)
    except SessionError as e:
        click.echo(f"Error: {e}", err=True)
        ctx.exit(AUTH_FAILED_EXIT)
    finally:
        session.close()
    ctx.exit(code)


@cli.command('batch')
@click.argument('step_file', type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option('--fail-fast', is_flag=True, help='Skip remaining steps after the first failure')
@click.option('--silent', is_flag=True, help='Discard step output')
@click.pass_context
def batch_cmd(ctx, step_file: Path, fail_fast: bool, silent: bool):
    """Run every command in STEP_FILE with a single authentication."""
    from rootchannel.managers.step_runner import StepRunner, load_steps

    try:
        steps = load_steps(step_file)
    except ValueError as e:
        click.echo(f"Error: {e}", err=True)
        ctx.exit(1)
    if not steps:
        click.echo('No steps found.')
        return
    if silent:
        for step in steps:
            step.capture = False

    session = _make_session()
    runner = StepRunner(session=session)
    try:
        results = runner.run_all(steps, fail_fast=fail_fast)
    except SessionError as e:
        click.echo(f"Error: {e}", err=True)
        ctx.exit(AUTH_FAILED_EXIT)
    finally:
        session.close()

    click.echo('\nResults:')
    for name, result in results.items():
        if result['skipped']:
            status = click.style('-', fg='yellow')
            click.echo(f"  {status} {name}: skipped")
            continue
        status = click.style('✓', fg='green') if result['success'] else click.style('✗', fg='red')
        click.echo(f"  {status} {name}: exit code {result['exit_code']}")

    ok = sum(1 for r in results.values() if r['success'])
    click.echo(f"\n{click.style('Succeeded:', bold=True)} {ok}/{len(results)}")
    if ok != len(results):
        ctx.exit(1)


@cli.command('exec', context_settings={'ignore_unknown_options': True})
@click.argument('argv', nargs=-1, required=True, type=click.UNPROCESSED)
@click.pass_context
def exec_cmd(ctx, argv: tuple[str, ...]):
    """Run ARGV once with elevation, without the persistent shell."""
    session = _make_session()
    try:
        code = session.run_elevated_argv(list(argv))
    except SessionError as e:
        click.echo(f"Error: {e}", err=True)
        ctx.exit(AUTH_FAILED_EXIT)
    except OSError as e:
        click.echo(f"Error: {e}", err=True)
        ctx.exit(127)
    ctx.exit(code)


def main():
    cli()


@cli.group('config')
def config_group():
    """Manage persistent configuration (XDG config)."""
    pass


@config_group.command('set')
@click.argument('key', type=str)
@click.argument('value', type=str)
@click.option('--yes', is_flag=True, help='Do not ask for confirmation')
def config_set(key: str, value: str, yes: bool):
    """Set a config key."""
    from rootchannel.config import set_config_value, get_allowed_keys, _config_file_path

    allowed = get_allowed_keys()
    if key not in allowed:
        click.echo(f'Unsupported config key: {key}')
        click.echo(f"Supported keys: {', '.join(sorted(allowed))}")
        return

    if not yes:
        click.echo(f'About to set {key} in {_config_file_path()} to {value}')
        if not click.confirm('Proceed?'):
            click.echo('Aborted.')
            return

    ok = set_config_value(key, value)
    if ok:
        click.echo(f'Set {key} = {value}')
    else:
        click.echo('Failed to set config (validation or IO error)')


@config_group.command('get')
@click.argument('key', type=str)
@click.option('--defaults', is_flag=True, help='Show environment/config/code defaults for the key')
def config_get(key: str, defaults: bool):
    from rootchannel.config import load_config, get_effective_value

    if defaults:
        eff = get_effective_value(key)
        if not eff:
            click.echo('')
            return
        click.echo(f"env: {eff.get('env')}")
        click.echo(f"config: {eff.get('config')}")
        click.echo(f"code_default: {eff.get('code_default')}")
        click.echo(f"effective: {eff.get('effective')}")
        return

    cfg = load_config() or {}
    if key in cfg:
        click.echo(cfg[key])
    else:
        click.echo('')
