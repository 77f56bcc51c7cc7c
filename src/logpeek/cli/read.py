"""CLI read command: bounded parsed or raw reads of a log file."""

import json
import sys

import click

from logpeek.parser import LogParser, ParseResult
from logpeek.plugins import UnknownPluginError
from logpeek.reader import inspect, read_lines


LEVEL_COLORS = {'error': 'bright_red', 'warning': 'yellow', 'debug': 'bright_black', 'notice': 'cyan'}


def guess_plugin_id(path: str) -> str:
    """Pick a plugin from the path when none is given."""
    lowered = path.lower()
    if 'nginx' in lowered:
        return 'nginx'
    if 'apache' in lowered or 'httpd' in lowered:
        return 'apache'
    if 'access' in lowered:
        return 'apache'
    return 'host-system'


def format_entry(result: ParseResult, colorize: bool) -> str:
    """One line of human output: line number, timestamp, level, message."""
    entry = result.parsed
    number = f'{result.raw.line_number:>6}'
    if not entry.get('isParsed'):
        return f'{click.style(number, fg="bright_black") if colorize else number}  {result.raw.content}'

    timestamp = entry.get('timestamp')
    stamp = timestamp.isoformat() if timestamp else '-'
    level = str(entry.get('level', 'info'))
    message = entry.get('message') or result.raw.content
    if not colorize:
        return f'{number}  {stamp} {level.upper():<7} {message}'
    return (
        click.style(number, fg='bright_black')
        + '  '
        + click.style(stamp, fg='cyan')
        + ' '
        + click.style(f'{level.upper():<7}', fg=LEVEL_COLORS.get(level, 'green'), bold=level == 'error')
        + ' '
        + message
    )


@click.command('read')
@click.argument('path', type=click.Path(exists=True, dir_okay=False))
@click.option('--plugin', '-p', 'plugin_id', default=None, help='Plugin id (apache, nginx, host-system)')
@click.option('--type', '-t', 'log_type', default=None, help='Log type (derived from the file name by default)')
@click.option('--max-lines', '-n', type=int, default=100, show_default=True, help='Maximum lines (0 for all)')
@click.option('--from-line', type=int, default=0, help='Number of leading lines to skip')
@click.option('--raw', is_flag=True, help='Print lines without parsing')
@click.option('--compressed', is_flag=True, help='Decode gzip files instead of skipping them')
@click.option('--json', 'json_output', is_flag=True, help='Output in JSON format')
@click.option('--no-color', is_flag=True, help='Disable colored output')
def read_command(
    path: str,
    plugin_id: str | None,
    log_type: str | None,
    max_lines: int,
    from_line: int,
    raw: bool,
    compressed: bool,
    json_output: bool,
    no_color: bool,
):
    """Read lines of a log file, parsed with the plugin's format or a stored custom regex.

    Examples:

        logpeek read /var/log/nginx/access.log -n 20

        logpeek read /var/log/apache2/error.log --from-line 1000 --json

        logpeek read /var/log/syslog.2.gz --compressed --raw
    """
    info = inspect(path)
    if not info.readable:
        click.echo(f'Error: File not found or not readable: {path}', err=True)
        sys.exit(1)

    if raw:
        lines = read_lines(path, max_lines=max_lines, from_line=from_line, read_compressed=compressed)
        if json_output:
            click.echo(json.dumps([{'line': r.content, 'lineNumber': r.line_number} for r in lines], indent=2))
        else:
            for r in lines:
                click.echo(r.content)
        return

    parser = LogParser()
    plugin_id = plugin_id or guess_plugin_id(path)
    try:
        plugin = parser.registry.get(plugin_id)
    except UnknownPluginError as e:
        click.echo(f'Error: {e}', err=True)
        sys.exit(1)

    log_type = log_type or plugin.determine_log_type(path)
    results = parser.parse_file(
        plugin_id,
        path,
        log_type,
        max_lines=max_lines,
        from_line=from_line,
        read_compressed=compressed or parser.settings.read_compressed(plugin_id),
    )

    if json_output:
        click.echo(json.dumps([r.to_dict() for r in results], indent=2))
        return

    colorize = not no_color and sys.stdout.isatty()
    for result in results:
        click.echo(format_entry(result, colorize))
