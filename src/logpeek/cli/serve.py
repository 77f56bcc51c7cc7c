"""CLI serve command: run the web API with uvicorn."""

import os
import sys

import click
import uvicorn

from logpeek.plugins import UnknownPluginError, default_registry
from logpeek.utils import get_int_env, get_str_env, setup_shutdown_filter


def parse_base_dirs(values: tuple[str, ...]) -> dict[str, str]:
    """Parse PLUGIN=PATH pairs into {env var: path}."""
    registry = default_registry()
    overrides = {}
    for value in values:
        plugin_id, sep, path = value.partition('=')
        if not sep or not plugin_id.strip() or not path.strip():
            raise click.BadParameter(f'Expected PLUGIN=PATH, got: {value}', param_hint='--base-dir')
        try:
            plugin = registry.get(plugin_id.strip())
        except UnknownPluginError as e:
            raise click.BadParameter(str(e), param_hint='--base-dir')
        overrides[plugin.base_path_env] = os.path.abspath(path.strip())
    return overrides


@click.command('serve')
@click.option('--host', default=None, help='Host to bind to (default: LOGPEEK_HOST or 127.0.0.1)')
@click.option('--port', type=int, default=None, help='Port to bind to (default: LOGPEEK_PORT or 8000)')
@click.option(
    '--base-dir',
    'base_dirs',
    multiple=True,
    metavar='PLUGIN=PATH',
    help='Override a plugin log directory, e.g. nginx=/srv/logs/nginx. Can be specified multiple times.',
)
@click.option('--cache-dir', type=click.Path(file_okay=False), default=None, help='Settings and data directory')
def serve_command(host: str | None, port: int | None, base_dirs: tuple[str, ...], cache_dir: str | None):
    """Start the web API server.

    Examples:

        logpeek serve

        logpeek serve --host 0.0.0.0 --port 9000

        logpeek serve --base-dir nginx=/srv/logs/nginx --base-dir apache=/srv/logs/httpd
    """
    host = host or get_str_env('LOGPEEK_HOST', '127.0.0.1')
    port = port or get_int_env('LOGPEEK_PORT', 8000)

    # The app reads these at startup, so they are passed through the environment
    for env_var, path in parse_base_dirs(base_dirs).items():
        if not os.path.isdir(path):
            click.echo(f'Warning: {path} is not a directory', err=True)
        os.environ[env_var] = path
    if cache_dir:
        os.environ['LOGPEEK_CACHE_DIR'] = os.path.abspath(cache_dir)

    setup_shutdown_filter()
    click.echo(f'Starting logpeek on http://{host}:{port}')
    try:
        uvicorn.run('logpeek.web:app', host=host, port=port, log_level=os.getenv('LOGPEEK_LOG_LEVEL', 'info').lower())
    except KeyboardInterrupt:
        sys.exit(0)
