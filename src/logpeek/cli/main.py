"""Main CLI entry point with command groups"""

import click

from logpeek.__version__ import __version__
from logpeek.cli.analytics import analytics_command
from logpeek.cli.errors import errors_command
from logpeek.cli.read import read_command
from logpeek.cli.regex import regex_command
from logpeek.cli.serve import serve_command
from logpeek.cli.tail import tail_command


@click.group(invoke_without_command=True)
@click.version_option(version=__version__, prog_name='logpeek')
@click.pass_context
def cli(ctx):
    """
    logpeek - read, parse, tail and analyze web server and system logs.

    \b
    Commands:
      logpeek read <path>         Parsed or raw read of a log file
      logpeek tail <path>         Last lines of a log file, optionally followed
      logpeek regex <line>        Generate a named-group regex from a sample line
      logpeek errors              Error and warning density across log files
      logpeek analytics           Access log traffic statistics
      logpeek serve               Start web API server

    \b
    Examples:
      logpeek read /var/log/nginx/access.log -n 20
      logpeek tail /var/log/syslog -f
      logpeek regex '127.0.0.1 - - [01/Jan/2024:00:00:00 +0000] "GET / HTTP/1.1" 200 512'
      logpeek errors --depth deep
      logpeek serve --port 8000

    \b
    For more help on each command:
      logpeek read --help
      logpeek serve --help
    """
    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())
        ctx.exit(0)


cli.add_command(read_command, name='read')
cli.add_command(tail_command, name='tail')
cli.add_command(regex_command, name='regex')
cli.add_command(errors_command, name='errors')
cli.add_command(analytics_command, name='analytics')
cli.add_command(serve_command, name='serve')


def main():
    """Entry point for the CLI"""
    cli()


if __name__ == '__main__':
    main()
