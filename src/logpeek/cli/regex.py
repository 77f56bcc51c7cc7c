"""CLI regex command: synthesize a named-group regex from a sample line."""

import json
import sys

import click

from logpeek.regex_generator import RegexGenerationError, generate_regex


@click.command('regex')
@click.argument('sample')
@click.option('--json', 'json_output', is_flag=True, help='Output in JSON format')
@click.option('--no-color', is_flag=True, help='Disable colored output')
def regex_command(sample: str, json_output: bool, no_color: bool):
    """Generate a regex with named groups for SAMPLE and show what it captures.

    IPs, timestamps, request lines, status codes, sizes, URLs, referers and
    user agents are recognised; other tokens become field0, field1, ...

    Examples:

        logpeek regex '192.168.1.1 - - [01/Jan/2024:00:00:00 +0100] "GET / HTTP/1.1" 200 1234'

        logpeek regex "$(head -1 /var/log/nginx/access.log)" --json
    """
    try:
        generated = generate_regex(sample)
    except RegexGenerationError as e:
        click.echo(f'Error: {e}', err=True)
        sys.exit(1)

    if json_output:
        click.echo(json.dumps(generated.to_dict(), indent=2))
        return

    colorize = not no_color and sys.stdout.isatty()
    click.echo(click.style(generated.regex, fg='green') if colorize else generated.regex)
    if not generated.test_captures:
        click.echo('Warning: the generated regex does not match the sample line', err=True)
        return
    width = max(len(name) for name in generated.test_captures)
    for name, value in generated.test_captures.items():
        label = f'{name:<{width}}'
        click.echo(f'  {click.style(label, fg="cyan") if colorize else label}  {value}')
