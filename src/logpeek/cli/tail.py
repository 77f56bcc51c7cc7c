"""CLI tail command: last lines of a log file, optionally followed."""

import asyncio
import json
import sys

import click

from logpeek.cli.read import format_entry, guess_plugin_id
from logpeek.parser import LogParser, ParseResult
from logpeek.plugins import UnknownPluginError
from logpeek.reader import inspect, read_last_lines


async def follow_file(parser: LogParser, plugin_id: str, path: str, log_type: str, from_line: int, emit) -> None:
    """Deliver lines appended after from_line until cancelled."""
    follower = await parser.stream_parse(plugin_id, path, log_type, emit, follow_file=True, from_line=from_line)
    try:
        while follower is not None and not follower.closed:
            await asyncio.sleep(1)
    finally:
        if follower is not None:
            follower.cancel()


@click.command('tail')
@click.argument('path', type=click.Path(exists=True, dir_okay=False))
@click.option('--plugin', '-p', 'plugin_id', default=None, help='Plugin id (apache, nginx, host-system)')
@click.option('--type', '-t', 'log_type', default=None, help='Log type (derived from the file name by default)')
@click.option('--lines', '-n', 'num_lines', type=int, default=10, show_default=True, help='Number of last lines')
@click.option('--follow/--no-follow', '-f', default=False, help='Keep printing lines as the file grows')
@click.option('--json', 'json_output', is_flag=True, help='Output one JSON object per line')
@click.option('--no-color', is_flag=True, help='Disable colored output')
def tail_command(
    path: str,
    plugin_id: str | None,
    log_type: str | None,
    num_lines: int,
    follow: bool,
    json_output: bool,
    no_color: bool,
):
    """Print the last lines of a log file, parsed.

    With --follow new lines are printed as they are appended; rotation by
    truncation restarts from the top of the file. Stop with Ctrl+C.

    Examples:

        logpeek tail /var/log/nginx/error.log -n 50

        logpeek tail /var/log/syslog -f
    """
    info = inspect(path)
    if not info.readable:
        click.echo(f'Error: File not found or not readable: {path}', err=True)
        sys.exit(1)

    parser = LogParser()
    plugin_id = plugin_id or guess_plugin_id(path)
    try:
        plugin = parser.registry.get(plugin_id)
    except UnknownPluginError as e:
        click.echo(f'Error: {e}', err=True)
        sys.exit(1)
    log_type = log_type or plugin.determine_log_type(path)
    colorize = not no_color and sys.stdout.isatty()

    def emit(result: ParseResult):
        if json_output:
            click.echo(json.dumps(result.to_dict()))
        else:
            click.echo(format_entry(result, colorize))

    lines = read_last_lines(path, num_lines, read_compressed=parser.settings.read_compressed(plugin_id))
    for result in parser.parse_raw_lines(plugin_id, path, log_type, lines):
        emit(result)

    if not follow or info.compressed:
        return

    # With -n 0 nothing was printed; follow from the current last line
    last = lines or read_last_lines(path, 1)
    last_line = last[-1].line_number if last else 0
    try:
        asyncio.run(follow_file(parser, plugin_id, path, log_type, last_line, emit))
    except KeyboardInterrupt:
        click.echo('', err=True)
