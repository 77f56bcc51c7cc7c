"""Tests for the logpeek command line interface."""

import json
import os
import shutil
import tempfile

import click
import pytest
from click.testing import CliRunner

from logpeek.__version__ import __version__
from logpeek.cli.main import cli
from logpeek.cli.read import guess_plugin_id
from logpeek.cli.serve import parse_base_dirs


ACCESS_LINES = [
    '10.0.0.1 - - [01/Jan/2024:10:00:00 +0000] "GET / HTTP/1.1" 200 612 "-" "curl/8.0"',
    'garbage that no parser understands',
    '10.0.0.2 - - [01/Jan/2024:11:00:00 +0000] "GET /missing HTTP/1.1" 404 0 "-" "curl/8.0"',
]
ERROR_LINES = ['2024/01/01 12:00:00 [error] 1#1: boom']


class CliTestCase:
    """Creates an nginx style log directory before each test."""

    def setup_method(self):
        self.runner = CliRunner()
        self.temp_dir = tempfile.mkdtemp()
        self.nginx_dir = os.path.join(self.temp_dir, 'nginx')
        os.makedirs(self.nginx_dir)
        self.access_log = os.path.join(self.nginx_dir, 'access.log')
        with open(self.access_log, 'w') as f:
            f.write('\n'.join(ACCESS_LINES) + '\n')
        with open(os.path.join(self.nginx_dir, 'error.log'), 'w') as f:
            f.write('\n'.join(ERROR_LINES) + '\n')
        self.env = {
            'LOGPEEK_NGINX_BASE_PATH': self.nginx_dir,
            'LOGPEEK_APACHE_BASE_PATH': os.path.join(self.temp_dir, 'apache'),
        }

    def teardown_method(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)


class TestMainGroup:
    """Test the top level command group."""

    def test_help_without_command(self):
        result = CliRunner().invoke(cli, [])
        assert result.exit_code == 0
        assert 'logpeek read <path>' in result.output

    def test_version(self):
        result = CliRunner().invoke(cli, ['--version'])
        assert result.exit_code == 0
        assert f'logpeek, version {__version__}' in result.output

    def test_subcommands_registered(self):
        assert set(cli.commands) == {'read', 'tail', 'regex', 'errors', 'analytics', 'serve'}


class TestReadCommand(CliTestCase):
    """Test the read command."""

    def test_parsed_output(self):
        result = self.runner.invoke(cli, ['read', self.access_log])
        assert result.exit_code == 0
        lines = result.output.splitlines()
        assert len(lines) == 3
        assert '2024-01-01T10:00:00+00:00 INFO' in lines[0]
        assert lines[1].endswith('  garbage that no parser understands')
        assert 'WARNING' in lines[2]

    def test_json_output(self):
        result = self.runner.invoke(cli, ['read', self.access_log, '--json', '-n', '2'])
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert len(data) == 2
        assert data[0]['pluginId'] == 'nginx'
        assert data[0]['parsed']['status'] == 200
        assert data[1]['parsed']['isParsed'] is False

    def test_raw_with_from_line(self):
        result = self.runner.invoke(cli, ['read', self.access_log, '--raw', '--from-line', '2'])
        assert result.exit_code == 0
        assert result.output == ACCESS_LINES[2] + '\n'

    def test_unknown_plugin(self):
        result = self.runner.invoke(cli, ['read', self.access_log, '-p', 'npm'])
        assert result.exit_code == 1
        assert 'Plugin not found: npm' in result.output

    def test_missing_file(self):
        result = self.runner.invoke(cli, ['read', os.path.join(self.temp_dir, 'missing.log')])
        assert result.exit_code != 0

    @pytest.mark.parametrize(
        'path,expected',
        [
            ('/var/log/nginx/access.log', 'nginx'),
            ('/var/log/httpd/error_log', 'apache'),
            ('/srv/www/access.log', 'apache'),
            ('/var/log/syslog', 'host-system'),
        ],
    )
    def test_guess_plugin_id(self, path, expected):
        assert guess_plugin_id(path) == expected


class TestTailCommand(CliTestCase):
    """Test the tail command (without --follow)."""

    def test_last_lines(self):
        result = self.runner.invoke(cli, ['tail', self.access_log, '-n', '2', '--json'])
        assert result.exit_code == 0
        records = [json.loads(line) for line in result.output.splitlines()]
        assert [r['raw']['lineNumber'] for r in records] == [2, 3]

    def test_explicit_type(self):
        error_log = os.path.join(self.nginx_dir, 'error.log')
        result = self.runner.invoke(cli, ['tail', error_log, '-t', 'error', '--no-color'])
        assert result.exit_code == 0
        assert 'ERROR' in result.output
        assert 'boom' in result.output


class TestRegexCommand:
    """Test the regex command."""

    def setup_method(self):
        self.runner = CliRunner()
        self.sample = '192.168.1.1 - - [01/Jan/2024:00:00:00 +0100] "GET / HTTP/1.1" 200 1234'

    def test_json_output(self):
        result = self.runner.invoke(cli, ['regex', self.sample, '--json'])
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data['testCaptures']['ip'] == '192.168.1.1'
        assert data['regex'].startswith('^')

    def test_text_output(self):
        result = self.runner.invoke(cli, ['regex', self.sample])
        assert result.exit_code == 0
        assert 'request' in result.output
        assert 'GET / HTTP/1.1' in result.output

    def test_empty_sample(self):
        result = self.runner.invoke(cli, ['regex', '  '])
        assert result.exit_code == 1
        assert 'Log line cannot be empty' in result.output


class TestErrorsCommand(CliTestCase):
    """Test the errors command."""

    def test_json_output(self):
        result = self.runner.invoke(cli, ['errors', '-p', 'nginx', '--json'], env=self.env)
        assert result.exit_code == 0
        data = json.loads(result.output)
        counts = {f['fileName']: f['errorCount'] for f in data['files']}
        assert counts == {'error.log': 1, 'access.log': 1}

    def test_text_output(self):
        result = self.runner.invoke(cli, ['errors', '-p', 'nginx', '--depth', 'light'], env=self.env)
        assert result.exit_code == 0
        assert '[nginx]' in result.output
        assert 'matches' in result.output

    def test_nothing_found(self):
        result = self.runner.invoke(cli, ['errors', '-p', 'apache'], env=self.env)
        assert result.exit_code == 0
        assert 'No errors or warnings found' in result.output

    def test_invalid_plugin(self):
        result = self.runner.invoke(cli, ['errors', '-p', 'iis'])
        assert result.exit_code == 2


class TestAnalyticsCommand(CliTestCase):
    """Test the analytics command."""

    def test_json_output(self):
        result = self.runner.invoke(cli, ['analytics', '-p', 'nginx', '--json'], env=self.env)
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data['overview']['totalRequests'] == 2
        assert data['overview']['notFound'] == 1

    def test_text_output(self):
        result = self.runner.invoke(cli, ['analytics', '--no-color', '--bucket', 'day'], env=self.env)
        assert result.exit_code == 0
        assert 'Requests:         2' in result.output
        assert 'Top URLs' in result.output

    def test_date_filter(self):
        args = ['analytics', '--json', '--from', '2024-01-01T10:30:00Z']
        data = json.loads(self.runner.invoke(cli, args, env=self.env).output)
        assert data['overview']['totalRequests'] == 1

    def test_invalid_date(self):
        result = self.runner.invoke(cli, ['analytics', '--from', 'yesterday'])
        assert result.exit_code == 1
        assert 'Invalid date: yesterday' in result.output


class TestServeCommand:
    """Test the serve command without starting a server."""

    def test_parse_base_dirs(self):
        assert parse_base_dirs(('nginx=/srv/nginx', 'host-system=/srv/sys')) == {
            'LOGPEEK_NGINX_BASE_PATH': '/srv/nginx',
            'LOGPEEK_HOST_SYSTEM_BASE_PATH': '/srv/sys',
        }

    @pytest.mark.parametrize('value', ['nginx', '=/srv', 'nginx=', 'npm=/srv'])
    def test_parse_base_dirs_rejects(self, value):
        with pytest.raises(click.BadParameter):
            parse_base_dirs((value,))

    def test_serve_passes_settings(self, monkeypatch):
        calls = []
        runner = CliRunner()
        env = {'LOGPEEK_NGINX_BASE_PATH': None, 'LOGPEEK_PORT': None, 'LOGPEEK_HOST': None}
        observed = {}

        def run(app, **kwargs):
            calls.append((app, kwargs))
            observed['base_path'] = os.environ.get('LOGPEEK_NGINX_BASE_PATH')

        monkeypatch.setattr('logpeek.cli.serve.uvicorn.run', run)
        result = runner.invoke(cli, ['serve', '--port', '9001', '--base-dir', 'nginx=/srv/nginx'], env=env)

        assert result.exit_code == 0
        assert calls[0][0] == 'logpeek.web:app'
        assert calls[0][1]['host'] == '127.0.0.1'
        assert calls[0][1]['port'] == 9001
        assert observed['base_path'] == '/srv/nginx'
        assert 'Warning: /srv/nginx is not a directory' in result.output
