"""Tests for access log analytics"""

import asyncio
import os
from datetime import UTC, datetime, timedelta, timezone

import pytest

from logpeek.analytics import (
    MAX_TOP_LIMIT,
    browser_family,
    build_analytics,
    collect_entries,
    compute_overview,
    compute_timeseries,
    compute_top,
    compute_top_urls_with_extras,
    get_all_analytics,
    in_range,
    is_static_file,
    referring_site,
    resolve_plugin_ids,
    truncate_key,
)
from logpeek.parser import LogParser
from logpeek.settings import PluginSettingsStore

from conftest import write_log


def entry(ip='10.0.0.1', status=200, url='/', size=100, ts=None, ua='curl/8.0', referer='-', method='GET'):
    return {
        'ip': ip,
        'status': status,
        'size': size,
        'url': url,
        'userAgent': ua,
        'referer': referer,
        'method': method,
        'host': None,
        'protocol': 'HTTP/1.1',
        'timestamp': ts,
    }


def at(hour, minute=0):
    return datetime(2024, 1, 1, hour, minute, tzinfo=UTC)


class TestClassifiers:
    """Tests for the per-entry key functions"""

    @pytest.mark.parametrize(
        'ua,expected',
        [
            ('Mozilla/5.0 (Windows NT 10.0) Chrome/120.0 Safari/537.36 Edg/120.0', 'Edge'),
            ('Mozilla/5.0 Chrome/120.0 Safari/537.36 OPR/105.0', 'Opera'),
            ('Mozilla/5.0 (X11; Linux x86_64) Chrome/120.0 Safari/537.36', 'Chrome'),
            ('Mozilla/5.0 (X11; Linux x86_64; rv:121.0) Gecko/20100101 Firefox/121.0', 'Firefox'),
            ('Mozilla/5.0 (Macintosh) AppleWebKit/605.1.15 Version/17.0 Safari/605.1.15', 'Safari'),
            ('curl/8.4.0', 'curl'),
            ('Wget/1.21', 'Wget'),
            ('Googlebot/2.1', 'Bot/Crawler'),
            ('-', 'Direct/Unknown'),
            (None, 'Direct/Unknown'),
            ('SomethingElse/1.0', 'Other'),
        ],
    )
    def test_browser_family(self, ua, expected):
        assert browser_family(ua) == expected

    def test_referring_site(self):
        assert referring_site('https://www.example.com/path?q=1') == 'www.example.com'
        assert referring_site('-') == 'Direct'
        assert referring_site('') == 'Direct'
        assert referring_site('android-app://com.example') == 'com.example'
        assert referring_site('not a url') == 'not a url'

    def test_static_files(self):
        assert is_static_file('/static/app.js?v=3')
        assert is_static_file('/logo.PNG')
        assert not is_static_file('/api/users')
        assert not is_static_file('-')

    def test_truncate_key(self):
        assert truncate_key('a' * 100) == 'a' * 77 + '...'
        assert truncate_key('short') == 'short'

    def test_in_range_keeps_entries_without_timestamp(self):
        assert in_range(None, at(1), at(2))
        assert in_range(at(1, 30), at(1), at(2))
        assert not in_range(at(3), at(1), at(2))
        assert not in_range(at(0), at(1), None)


class TestOverview:
    """Tests for compute_overview()"""

    def test_status_bands(self):
        entries = [
            entry(status=200, size=10, ts=at(1)),
            entry(status=201, ip='10.0.0.2', ts=at(3)),
            entry(status=404, url='/missing.png'),
            entry(status=403),
            entry(status=500, size=0),
            entry(status=301),
        ]
        overview = compute_overview(entries, files_analyzed=2)
        assert overview['totalRequests'] == 6
        assert overview['uniqueIps'] == 2
        assert overview['validRequests'] == 2
        assert overview['status4xx'] == 2
        assert overview['notFound'] == 1
        assert overview['status5xx'] == 1
        assert overview['failedRequests'] == 3
        assert overview['totalBytes'] == 10 + 100 * 4
        assert overview['staticFiles'] == 1
        assert overview['filesAnalyzed'] == 2
        assert overview['dateFrom'] == '2024-01-01T01:00:00+00:00'
        assert overview['dateTo'] == '2024-01-01T03:00:00+00:00'

    def test_empty(self):
        overview = compute_overview([], 0)
        assert overview['totalRequests'] == 0
        assert overview['dateFrom'] is None


class TestTimeseries:
    """Tests for compute_timeseries()"""

    def test_hour_buckets(self):
        entries = [
            entry(ts=at(10, 5)),
            entry(ts=at(10, 55), ip='10.0.0.2'),
            entry(ts=at(9, 0)),
            entry(ts=None),
        ]
        buckets = compute_timeseries(entries, 'hour')
        assert buckets == [
            {'label': '2024-01-01T09', 'count': 1, 'uniqueVisitors': 1},
            {'label': '2024-01-01T10', 'count': 2, 'uniqueVisitors': 2},
        ]

    def test_buckets_are_utc(self):
        local = datetime(2024, 1, 2, 0, 30, tzinfo=timezone(timedelta(hours=2)))
        assert compute_timeseries([entry(ts=local)], 'day')[0]['label'] == '2024-01-01'

    def test_minute_buckets(self):
        buckets = compute_timeseries([entry(ts=at(10, 5)), entry(ts=at(10, 6))], 'minute')
        assert [b['label'] for b in buckets] == ['2024-01-01T10:05', '2024-01-01T10:06']


class TestTopLists:
    """Tests for the ranked breakdowns"""

    def test_top_urls_with_percent(self):
        entries = [entry(url='/a'), entry(url='/a'), entry(url='/a'), entry(url='/b')]
        assert compute_top(entries, 'urls', 10) == [
            {'key': '/a', 'count': 3, 'percent': 75},
            {'key': '/b', 'count': 1, 'percent': 25},
        ]

    def test_ties_keep_first_seen_order(self):
        entries = [entry(url='/z'), entry(url='/y')]
        assert [item['key'] for item in compute_top(entries, 'urls', 10)] == ['/z', '/y']

    def test_limit_is_clamped(self):
        entries = [entry(url=f'/{i}') for i in range(MAX_TOP_LIMIT + 10)]
        assert len(compute_top(entries, 'urls', 1000)) == MAX_TOP_LIMIT

    def test_long_urls_truncated(self):
        assert compute_top([entry(url='/' + 'x' * 200)], 'urls', 1)[0]['key'].endswith('...')

    def test_urls_with_extras(self):
        entries = [
            entry(url='/up', method='POST', size=10),
            entry(url='/up', method='POST', size=20, ip='10.0.0.2'),
            entry(url='/up', method='GET', size=5),
        ]
        top = compute_top_urls_with_extras(entries, 5)[0]
        assert top['key'] == '/up'
        assert top['txAmount'] == 35
        assert top['method'] == 'POST'
        assert top['uniqueVisitors'] == 2

    def test_build_analytics_shape(self):
        result = build_analytics([entry(ts=at(1))], 1, top_limit=0)
        assert set(result) == {'overview', 'timeseries', 'distribution', 'top'}
        assert len(result['top']['urls']) == 1
        assert result['top']['browser'][0]['key'] == 'curl'
        assert result['top']['referringSites'][0]['key'] == 'Direct'
        assert result['distribution']['methods'][0] == {'key': 'GET', 'count': 1, 'percent': 100}


NGINX_LINES = [
    '10.0.0.1 - - [01/Jan/2024:10:00:00 +0000] "GET / HTTP/1.1" 200 612 "-" "curl/8.0"',
    '10.0.0.2 - - [01/Jan/2024:11:00:00 +0000] "GET /x HTTP/1.1" 404 0 "-" "curl/8.0"',
    '2024/01/01 12:00:00 [error] 1#1: not an access line',
]


@pytest.fixture
def web_logs(log_dir, monkeypatch):
    nginx_dir = os.path.join(log_dir, 'nginx')
    apache_dir = os.path.join(log_dir, 'apache')
    write_log(nginx_dir, 'access.log', NGINX_LINES)
    write_log(nginx_dir, 'error.log', ['2024/01/01 12:00:00 [error] 1#1: boom'])
    os.makedirs(apache_dir)
    monkeypatch.setenv('LOGPEEK_NGINX_BASE_PATH', nginx_dir)
    monkeypatch.setenv('LOGPEEK_APACHE_BASE_PATH', apache_dir)
    return log_dir


class TestCollection:
    """Tests for reading entries from the plugins' files"""

    def test_collects_access_entries_only(self, web_logs):
        entries, files = collect_entries(LogParser(), ['nginx', 'apache'])
        assert files == 1
        assert [e['status'] for e in entries] == [200, 404]

    def test_date_range(self, web_logs):
        entries, _ = collect_entries(LogParser(), ['nginx'], date_from=at(10, 30))
        assert [e['url'] for e in entries] == ['/x']

    def test_disabled_plugins_are_excluded(self):
        PluginSettingsStore().upsert('apache', enabled=False)
        parser = LogParser()
        assert resolve_plugin_ids(parser, 'all') == ['nginx']
        assert resolve_plugin_ids(parser, 'apache') == []
        assert resolve_plugin_ids(parser, 'nginx') == ['nginx']

    def test_get_all_analytics(self, web_logs):
        result = asyncio.run(get_all_analytics(LogParser(), bucket='hour'))
        assert result['overview']['totalRequests'] == 2
        assert result['overview']['filesAnalyzed'] == 1
        assert [b['label'] for b in result['timeseries']['buckets']] == ['2024-01-01T10', '2024-01-01T11']
