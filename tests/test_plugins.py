"""Tests for the built-in log source plugins"""

import os

import pytest

from logpeek.plugins import (
    ApachePlugin,
    HostSystemPlugin,
    NginxPlugin,
    PluginRegistry,
    UnknownPluginError,
    default_registry,
    glob_to_regex,
    parse_request,
)
from logpeek.plugins.base import level_from_status, normalize_level

from conftest import write_log


APACHE_COMMON = '192.168.1.1 - frank [10/Oct/2000:13:55:36 -0700] "GET /apache_pb.gif HTTP/1.0" 200 2326'
APACHE_COMBINED = (
    '127.0.0.1 - - [01/Jan/2024:00:00:00 +0000] "GET /index.html HTTP/1.1" 404 512 '
    '"http://example.com/start" "Mozilla/5.0 (X11; Linux x86_64) Firefox/121.0"'
)
APACHE_VHOST = 'example.com:443 10.0.0.1 - - [01/Jan/2024:00:00:00 +0000] "POST /api HTTP/1.1" 502 0 "-" "curl/8.0"'
APACHE_ERROR = (
    '[Fri Jan 02 14:52:58.123456 2026] [core:error] [pid 1234:tid 5678] [client 10.0.0.1:54321] '
    'AH00037: Symbolic link not allowed'
)
NGINX_EXTENDED = (
    '10.1.1.1 - - [01/Jan/2024:10:00:00 +0000] "GET /health HTTP/2.0" 200 - "-" "kube-probe/1.29" "10.2.2.2:8080"'
)
NGINX_ERROR = '2024/01/01 12:00:00 [error] 1234#5678: *1 open() "/srv/missing" failed (2: No such file or directory)'


class TestRegistry:
    """Tests for plugin lookup"""

    def test_default_plugins(self):
        assert default_registry().ids() == ['apache', 'nginx', 'host-system']

    def test_unknown_plugin(self):
        registry = PluginRegistry()
        with pytest.raises(UnknownPluginError) as exc_info:
            registry.get('npm')
        assert str(exc_info.value) == 'Plugin not found: npm'
        assert registry.find('npm') is None
        assert 'npm' not in registry


class TestHelpers:
    """Tests for shared parsing helpers"""

    def test_parse_request(self):
        assert parse_request('GET /a?b=1 HTTP/1.1') == {'method': 'GET', 'url': '/a?b=1', 'protocol': 'HTTP/1.1'}

    def test_parse_request_without_protocol(self):
        assert parse_request('DELETE /item/1') == {'method': 'DELETE', 'url': '/item/1', 'protocol': 'HTTP/1.1'}

    def test_parse_request_garbage(self):
        assert parse_request('\\x16\\x03')['method'] == 'UNKNOWN'

    def test_level_from_status(self):
        assert level_from_status(503) == 'error'
        assert level_from_status(404) == 'warning'
        assert level_from_status(301) == 'info'

    def test_normalize_level(self):
        assert normalize_level('CRIT') == 'error'
        assert normalize_level('warn') == 'warning'
        assert normalize_level('notice') == 'info'
        assert normalize_level('trace3') == 'debug'

    def test_glob_accepts_rotated_and_compressed(self):
        regex = glob_to_regex('access*.log')
        assert regex.match('access.log')
        assert regex.match('access_site.log.2')
        assert regex.match('access.log.3.gz')
        assert not regex.match('access.log.bak')
        assert not regex.match('error.log')


class TestApachePlugin:
    """Tests for Apache access and error parsing"""

    plugin = ApachePlugin()

    def test_common_format(self):
        entry = self.plugin.parse_log_line(APACHE_COMMON, 'access')
        assert entry['ip'] == '192.168.1.1'
        assert entry['user'] == 'frank'
        assert entry['method'] == 'GET'
        assert entry['url'] == '/apache_pb.gif'
        assert entry['protocol'] == 'HTTP/1.0'
        assert entry['status'] == 200
        assert entry['size'] == 2326
        assert entry['level'] == 'info'
        assert entry['message'] == APACHE_COMMON
        assert entry['timestamp'].utcoffset().total_seconds() == -7 * 3600

    def test_combined_format(self):
        entry = self.plugin.parse_log_line(APACHE_COMBINED, 'access')
        assert entry['status'] == 404
        assert entry['level'] == 'warning'
        assert entry['referer'] == 'http://example.com/start'
        assert 'Firefox' in entry['userAgent']

    def test_vhost_combined_format(self):
        entry = self.plugin.parse_log_line(APACHE_VHOST, 'access')
        assert entry['host'] == 'example.com'
        assert entry['port'] == 443
        assert entry['ip'] == '10.0.0.1'
        assert entry['status'] == 502
        assert entry['level'] == 'error'
        assert entry['size'] == 0

    def test_error_format(self):
        entry = self.plugin.parse_log_line(APACHE_ERROR, 'error')
        assert entry['level'] == 'error'
        assert entry['module'] == 'core'
        assert entry['pid'] == 1234
        assert entry['tid'] == 5678
        assert entry['clientIp'] == '10.0.0.1'
        assert entry['clientPort'] == 54321
        assert entry['message'].startswith('AH00037')
        assert entry['timestamp'].year == 2026

    def test_unknown_line(self):
        assert self.plugin.parse_log_line('not a log line', 'access') is None
        assert self.plugin.parse_log_line('', 'error') is None

    def test_unknown_type_tries_both(self):
        assert self.plugin.parse_log_line(APACHE_ERROR, 'other')['module'] == 'core'

    @pytest.mark.parametrize(
        'name,expected',
        [('access.log', 'access'), ('error.log.1.gz', 'error'), ('site_error.log', 'error'), ('other.log', 'access')],
    )
    def test_determine_log_type(self, name, expected):
        assert self.plugin.determine_log_type(f'/var/log/apache2/{name}') == expected

    def test_columns(self):
        assert self.plugin.get_columns('access')[0] == 'timestamp'
        assert 'module' in self.plugin.get_columns('error')

    def test_patterns_include_gzip(self):
        assert 'access*.log.gz' in self.plugin.get_default_file_patterns()


class TestNginxPlugin:
    """Tests for Nginx access and error parsing"""

    plugin = NginxPlugin()

    def test_extended_format(self):
        entry = self.plugin.parse_log_line(NGINX_EXTENDED, 'access')
        assert entry['ip'] == '10.1.1.1'
        assert entry['url'] == '/health'
        assert entry['size'] == 0
        assert entry['upstream'] == '10.2.2.2:8080'

    def test_error_format(self):
        entry = self.plugin.parse_log_line(NGINX_ERROR, 'error')
        assert entry['level'] == 'error'
        assert entry['pid'] == 1234
        assert entry['tid'] == 5678
        assert entry['message'].startswith('*1 open()')
        assert entry['timestamp'].hour == 12

    def test_determine_log_type(self):
        assert self.plugin.determine_log_type('/var/log/nginx/error.log') == 'error'
        assert self.plugin.determine_log_type('/var/log/nginx/access.log.1') == 'access'

    def test_patterns(self):
        assert self.plugin.get_default_file_patterns() == ['access*.log', 'error*.log']


class TestHostSystemPlugin:
    """Tests for syslog style parsing"""

    plugin = HostSystemPlugin()

    def test_classic_syslog(self):
        entry = self.plugin.parse_log_line('Jan  5 12:00:00 myhost sshd[1234]: Failed password for root', 'auth')
        assert entry['hostname'] == 'myhost'
        assert entry['tag'] == 'sshd'
        assert entry['pid'] == 1234
        assert entry['message'] == 'Failed password for root'
        assert entry['level'] == 'error'
        assert (entry['timestamp'].month, entry['timestamp'].day) == (1, 5)

    def test_iso_syslog(self):
        entry = self.plugin.parse_log_line('2024-01-01T12:00:00.123+01:00 host kernel: warning: low memory', 'kern')
        assert entry['tag'] == 'kernel'
        assert entry['level'] == 'warning'
        assert entry['timestamp'].utcoffset().total_seconds() == 3600

    def test_priority_prefix(self):
        entry = self.plugin.parse_log_line('<11>Jan  5 12:00:00 host app: started', 'syslog')
        assert entry['priority'] == 11
        assert entry['level'] == 'error'

    def test_bracketed_format(self):
        entry = self.plugin.parse_log_line('[2024-01-01 12:00:00] [WARN] disk almost full', 'syslog')
        assert entry['level'] == 'warning'
        assert entry['message'] == 'disk almost full'

    def test_unparsed(self):
        assert self.plugin.parse_log_line('random text', 'syslog') is None

    @pytest.mark.parametrize(
        'name,expected',
        [('auth.log', 'auth'), ('secure', 'auth'), ('kern.log.1', 'kern'), ('cron.log', 'cron'), ('syslog', 'syslog')],
    )
    def test_determine_log_type(self, name, expected):
        assert self.plugin.determine_log_type(f'/var/log/{name}') == expected


class TestScanLogFiles:
    """Tests for the directory scan shared by all plugins"""

    def test_scan_matches_patterns(self, log_dir):
        for name in ('access.log', 'access.log.1', 'error.log', 'notes.txt', 'sub/access.log'):
            write_log(log_dir, name, ['x'])

        files = NginxPlugin().scan_log_files(log_dir)
        paths = sorted(os.path.relpath(f.path, log_dir) for f in files)
        assert paths == ['access.log', 'access.log.1', 'error.log', os.path.join('sub', 'access.log')]
        by_name = {os.path.basename(f.path): f for f in files}
        assert by_name['error.log'].type == 'error'
        assert by_name['access.log'].size == 2

    def test_scan_missing_base_path(self, log_dir):
        assert NginxPlugin().scan_log_files(os.path.join(log_dir, 'missing')) == []

    def test_scan_depth_is_bounded(self, log_dir):
        write_log(log_dir, 'a/b/c/d/e/access.log', ['x'])
        write_log(log_dir, 'a/access.log', ['x'])
        files = NginxPlugin().scan_log_files(log_dir)
        assert [os.path.relpath(f.path, log_dir) for f in files] == [os.path.join('a', 'access.log')]

    def test_to_dict(self, log_dir):
        write_log(log_dir, 'access.log', ['x'])
        data = NginxPlugin().scan_log_files(log_dir)[0].to_dict()
        assert data['type'] == 'access'
        assert data['modified'].endswith('+00:00')


class TestPluginConfig:
    """Tests for base path resolution and settings validation"""

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv('LOGPEEK_HOST_SYSTEM_BASE_PATH', '/srv/logs')
        plugin = HostSystemPlugin()
        assert plugin.base_path_env == 'LOGPEEK_HOST_SYSTEM_BASE_PATH'
        assert plugin.get_default_base_path() == '/srv/logs'
        assert plugin.describe()['defaultBasePath'] == '/srv/logs'

    def test_default_base_path(self):
        assert NginxPlugin().get_default_base_path() == '/var/log/nginx'

    def test_validate_config(self):
        plugin = ApachePlugin()
        assert plugin.validate_config({'basePath': '/var/log/httpd', 'readCompressed': True})
        assert not plugin.validate_config({'basePath': ' '})
        assert not plugin.validate_config({'readCompressed': 'yes'})
        assert not plugin.validate_config({'customRegex': []})
        assert not plugin.validate_config('nope')
