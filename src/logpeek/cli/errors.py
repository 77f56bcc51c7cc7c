"""CLI errors command: error and warning density across recent log files."""

import asyncio
import json
import sys

import click

from logpeek.error_summary import ErrorSummaryService
from logpeek.plugins import default_registry
from logpeek.settings import ALLOWED_ANALYSIS_PLUGINS, ErrorAnalysisConfig, ErrorAnalysisStore, PluginSettingsStore
from logpeek.utils import format_file_size


class _FixedConfig:
    """Analysis settings overridden from the command line, never written back."""

    def __init__(self, config: ErrorAnalysisConfig):
        self._config = config

    def load(self) -> ErrorAnalysisConfig:
        return self._config


@click.command('errors')
@click.option(
    '--plugin',
    '-p',
    'plugins',
    multiple=True,
    type=click.Choice(ALLOWED_ANALYSIS_PLUGINS),
    help='Plugins to scan (default: the stored error analysis setting). Can be specified multiple times.',
)
@click.option(
    '--depth',
    type=click.Choice(['light', 'normal', 'deep']),
    default=None,
    help='Lines read from the end of each file: light=500, normal=1000, deep=2000',
)
@click.option('--max-files', type=int, default=None, help='Maximum files per plugin (1-100)')
@click.option('--json', 'json_output', is_flag=True, help='Output in JSON format')
@click.option('--no-color', is_flag=True, help='Disable colored output')
def errors_command(
    plugins: tuple[str, ...], depth: str | None, max_files: int | None, json_output: bool, no_color: bool
):
    """Count error and warning lines in the most relevant log files.

    Uses the stored error analysis settings, overridden by the options.
    Runs regardless of the errorSummaryEnabled switch of the web UI.

    Examples:

        logpeek errors

        logpeek errors -p nginx -p host-system --depth deep --json
    """
    plugin_settings = PluginSettingsStore()
    changes = {}
    if plugins:
        changes['enabledPlugins'] = list(plugins)
    if depth:
        changes['securityCheckDepth'] = depth
    if max_files is not None:
        changes['maxFilesPerPlugin'] = max_files
    stored = ErrorAnalysisStore().load().model_dump(by_alias=True)
    config = ErrorAnalysisConfig.model_validate({**stored, **changes})

    service = ErrorSummaryService(default_registry(), plugin_settings, _FixedConfig(config))
    result = asyncio.run(service.compute())

    if json_output:
        click.echo(json.dumps(result.to_dict(), indent=2))
        return

    colorize = not no_color and sys.stdout.isatty()
    if not result.files:
        click.echo('No errors or warnings found')
    for summary in result.files:
        counts = (
            f'{summary.error_count:>6} matches (5xx {summary.count_5xx}, 4xx {summary.count_4xx}, '
            f'3xx {summary.count_3xx}, error {summary.count_error_tag}, warn {summary.count_warn_tag})'
        )
        path = click.style(summary.file_path, fg='cyan', bold=True) if colorize else summary.file_path
        if colorize:
            counts = click.style(counts, fg='bright_red')
        click.echo(f'{counts}  [{summary.plugin_id}] {path}')

    for skipped in result.skipped_large_files:
        click.echo(f'Skipped (too large, {format_file_size(skipped.size_bytes)}): {skipped.file_path}', err=True)
    for error in result.analysis_errors:
        click.echo(f'Failed: {error.file_path}: {error.error_message}', err=True)
