"""CLI analytics command: traffic statistics from web server access logs."""

import asyncio
import json
import sys

import click

from logpeek.analytics import ANALYTICS_PLUGINS, DEFAULT_TOP_LIMIT, get_all_analytics
from logpeek.parser import LogParser
from logpeek.timestamps import as_datetime


def _print_top(title: str, items: list[dict], colorize: bool):
    if not items:
        return
    click.echo('')
    click.echo(click.style(title, bold=True) if colorize else title)
    for item in items:
        click.echo(f'  {item["count"]:>8}  {item["percent"]:>3}%  {item["key"]}')


@click.command('analytics')
@click.option(
    '--plugin', '-p', 'plugin_id', type=click.Choice(['all', *ANALYTICS_PLUGINS]), default='all', show_default=True
)
@click.option('--bucket', type=click.Choice(['minute', 'hour', 'day']), default='hour', show_default=True)
@click.option('--top', 'top_limit', type=int, default=DEFAULT_TOP_LIMIT, show_default=True, help='Top-N size (max 50)')
@click.option('--from', 'date_from', default=None, help='Start of the range (ISO 8601)')
@click.option('--to', 'date_to', default=None, help='End of the range (ISO 8601)')
@click.option('--latest', is_flag=True, help='Only the most recent access log of each plugin')
@click.option('--include-compressed', is_flag=True, help='Include gzip archives when the plugin allows it')
@click.option('--json', 'json_output', is_flag=True, help='Output in JSON format')
@click.option('--no-color', is_flag=True, help='Disable colored output')
def analytics_command(
    plugin_id: str,
    bucket: str,
    top_limit: int,
    date_from: str | None,
    date_to: str | None,
    latest: bool,
    include_compressed: bool,
    json_output: bool,
    no_color: bool,
):
    """Aggregate access logs into an overview, a timeseries and top-N lists.

    Examples:

        logpeek analytics

        logpeek analytics -p nginx --bucket day --top 20

        logpeek analytics --from 2024-01-01T00:00:00Z --to 2024-01-02T00:00:00Z --json
    """
    start = as_datetime(date_from)
    end = as_datetime(date_to)
    for raw, parsed in ((date_from, start), (date_to, end)):
        if raw and parsed is None:
            click.echo(f'Error: Invalid date: {raw}', err=True)
            sys.exit(1)

    result = asyncio.run(
        get_all_analytics(
            LogParser(),
            plugin_id=plugin_id,
            date_from=start,
            date_to=end,
            bucket=bucket,
            top_limit=top_limit,
            file_scope='latest' if latest else 'all',
            include_compressed=include_compressed,
        )
    )

    if json_output:
        click.echo(json.dumps(result, indent=2))
        return

    colorize = not no_color and sys.stdout.isatty()
    overview = result['overview']
    click.echo(f'Files analyzed:   {overview["filesAnalyzed"]}')
    click.echo(f'Requests:         {overview["totalRequests"]}')
    click.echo(f'Unique IPs:       {overview["uniqueIps"]}')
    click.echo(f'2xx / 4xx / 5xx:  {overview["validRequests"]} / {overview["status4xx"]} / {overview["status5xx"]}')
    click.echo(f'Not found:        {overview["notFound"]}')
    click.echo(f'Bytes sent:       {overview["totalBytes"]}')
    click.echo(f'Range:            {overview["dateFrom"] or "-"} .. {overview["dateTo"] or "-"}')

    _print_top('Top URLs', result['top']['urls'], colorize)
    _print_top('Top IPs', result['top']['ips'], colorize)
    _print_top('Status codes', result['top']['status'], colorize)
    _print_top('Browsers', result['top']['browser'], colorize)
    _print_top('Referring sites', result['top']['referringSites'], colorize)
