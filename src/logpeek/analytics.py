"""Access log analytics: overview KPIs, timeseries and top-N breakdowns.

Entries are collected once per request from a bounded set of files
(newest first, capped per plugin and per file) and every aggregation is
computed from that single collection. Nothing is persisted.
"""

import logging
import math
import re
import time
from collections import Counter, defaultdict
from collections.abc import Callable, Iterable
from datetime import UTC, datetime, timedelta
from typing import Any, Literal
from urllib.parse import urlsplit

import anyio

from logpeek import prometheus as prom
from logpeek.compression import is_compressed
from logpeek.parser import LogParser
from logpeek.plugins.base import ParsedEntry
from logpeek.settings import effective_base_path
from logpeek.timestamps import as_datetime


logger = logging.getLogger(__name__)

ANALYTICS_PLUGINS = ('apache', 'nginx')
MAX_LINES_PER_FILE = 5000
MAX_FILES_TOTAL = 20
MAX_TOP_LIMIT = 50
DEFAULT_TOP_LIMIT = 10
MAX_KEY_LENGTH = 80

Bucket = Literal['minute', 'hour', 'day']
FileScope = Literal['latest', 'all']

BUCKET_WIDTHS = {
    'minute': timedelta(minutes=1),
    'hour': timedelta(hours=1),
    'day': timedelta(days=1),
}
# Length of the ISO prefix used as bucket label: 2024-01-01T12:34 / 2024-01-01T12 / 2024-01-01
BUCKET_LABEL_LENGTHS = {'minute': 16, 'hour': 13, 'day': 10}

STATIC_FILE_RE = re.compile(r'\.(js|css|png|jpg|jpeg|gif|ico|svg|woff|woff2|ttf|eot|map|webp|avif)$')

_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


def truncate_key(value: str, length: int = MAX_KEY_LENGTH) -> str:
    if len(value) > length:
        return value[: length - 3] + '...'
    return value


def _text(value: Any, default: str = '-') -> str:
    text = str(value).strip() if value is not None else ''
    return text or default


def _percent(count: int, total: int) -> int:
    return round(count / total * 100) if total > 0 else 0


def is_static_file(url: str | None) -> bool:
    if not url or url == '-':
        return False
    return STATIC_FILE_RE.search(url.split('?')[0].lower()) is not None


def browser_family(user_agent: str | None) -> str:
    """Browser family from a user agent, checked in a fixed order."""
    if not user_agent or user_agent == '-':
        return 'Direct/Unknown'
    ua = user_agent.lower()
    if 'edg/' in ua or 'edge' in ua:
        return 'Edge'
    if 'opr/' in ua or 'opera' in ua:
        return 'Opera'
    if 'chrome' in ua and 'chromium' not in ua:
        return 'Chrome'
    if 'firefox' in ua or 'fxios' in ua:
        return 'Firefox'
    if 'safari' in ua and 'chrome' not in ua:
        return 'Safari'
    if 'curl' in ua:
        return 'curl'
    if 'wget' in ua:
        return 'Wget'
    if 'bot' in ua or 'crawler' in ua or 'spider' in ua:
        return 'Bot/Crawler'
    return 'Other'


def referring_site(referer: str | None) -> str:
    """Host name of a referrer URL; Direct when there is none."""
    if not referer or not referer.strip() or referer.strip().startswith('-'):
        return 'Direct'
    try:
        host = urlsplit(referer.strip()).hostname
    except ValueError:
        host = None
    if host:
        return host
    if '://' not in referer:
        return truncate_key(referer.strip(), 60)
    return 'Direct'


def _bucket_start(ts: datetime, width: timedelta) -> datetime:
    """Start of the UTC bucket containing ts."""
    ts = ts.astimezone(UTC)
    return ts - (ts - _EPOCH) % width


# Collection


def has_access_fields(entry: ParsedEntry) -> bool:
    return isinstance(entry.get('status'), int)


def to_access_entry(entry: ParsedEntry) -> ParsedEntry:
    """Keep only the fields used by the aggregations."""
    return {
        'ip': entry.get('ip'),
        'status': entry.get('status'),
        'size': entry['size'] if isinstance(entry.get('size'), int) else 0,
        'url': entry.get('url'),
        'userAgent': entry.get('userAgent'),
        'referer': entry.get('referer'),
        'method': entry.get('method'),
        'host': entry.get('host') or entry.get('vhost'),
        'protocol': entry.get('protocol'),
        'timestamp': as_datetime(entry.get('timestamp')),
    }


def in_range(ts: datetime | None, date_from: datetime | None, date_to: datetime | None) -> bool:
    """Entries without a timestamp are kept."""
    if ts is None:
        return True
    if date_from and ts < date_from:
        return False
    if date_to and ts > date_to:
        return False
    return True


def collect_entries(
    parser: LogParser,
    plugin_ids: list[str],
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    file_scope: FileScope = 'all',
    include_compressed: bool = False,
    base_paths: dict[str, str] | None = None,
) -> tuple[list[ParsedEntry], int]:
    """Collect access entries across plugins. Returns (entries, files analyzed).

    Entries outside [date_from, date_to] are discarded while reading. A
    file that fails to parse is logged and skipped.
    """
    entries: list[ParsedEntry] = []
    files_analyzed = 0
    per_plugin_cap = 1 if file_scope == 'latest' else math.ceil(MAX_FILES_TOTAL / max(len(plugin_ids), 1))

    for plugin_id in plugin_ids:
        plugin = parser.registry.find(plugin_id)
        if plugin is None:
            continue
        read_compressed = parser.settings.read_compressed(plugin_id)
        allow_compressed = include_compressed and read_compressed
        base_path = effective_base_path(plugin, parser.settings, (base_paths or {}).get(plugin_id))

        try:
            scanned = plugin.scan_log_files(base_path, plugin.get_default_file_patterns())
        except OSError as e:
            logger.warning(f'Failed to scan plugin {plugin_id}: {e}')
            continue

        access_files = [
            f for f in scanned if (f.type or 'access') == 'access' and (allow_compressed or not is_compressed(f.path))
        ]
        access_files.sort(key=lambda f: f.modified, reverse=True)

        for file in access_files[:per_plugin_cap]:
            if files_analyzed >= MAX_FILES_TOTAL:
                break
            try:
                results = parser.parse_file(
                    plugin_id,
                    file.path,
                    'access',
                    max_lines=MAX_LINES_PER_FILE,
                    read_compressed=read_compressed,
                )
            except (OSError, ValueError) as e:
                logger.warning(f'Failed to parse {file.path}: {e}')
                continue

            for result in results:
                if not has_access_fields(result.parsed):
                    continue
                entry = to_access_entry(result.parsed)
                if in_range(entry['timestamp'], date_from, date_to):
                    entries.append(entry)
            files_analyzed += 1
            prom.record_file_scanned('analytics')

    return entries, files_analyzed


# Aggregations


def compute_overview(entries: list[ParsedEntry], files_analyzed: int) -> dict[str, Any]:
    ips = set()
    valid = not_found = status_4xx = status_5xx = 0
    total_bytes = 0
    static_files = 0
    first: datetime | None = None
    last: datetime | None = None

    for e in entries:
        if e.get('ip'):
            ips.add(e['ip'])
        status = e.get('status')
        if isinstance(status, int):
            if 200 <= status < 300:
                valid += 1
            elif 400 <= status < 500:
                status_4xx += 1
                if status == 404:
                    not_found += 1
            elif status >= 500:
                status_5xx += 1
        total_bytes += e.get('size') or 0
        if is_static_file(e.get('url')):
            static_files += 1
        ts = e.get('timestamp')
        if ts is not None:
            first = ts if first is None or ts < first else first
            last = ts if last is None or ts > last else last

    return {
        'totalRequests': len(entries),
        'uniqueIps': len(ips),
        'validRequests': valid,
        'status4xx': status_4xx,
        'status5xx': status_5xx,
        'failedRequests': status_4xx + status_5xx,
        'notFound': not_found,
        'totalBytes': total_bytes,
        'staticFiles': static_files,
        'filesAnalyzed': files_analyzed,
        'dateFrom': first.isoformat() if first else None,
        'dateTo': last.isoformat() if last else None,
    }


def compute_timeseries(entries: list[ParsedEntry], bucket: Bucket = 'hour') -> list[dict[str, Any]]:
    """Count entries and unique visitors per time bucket, ordered by bucket start."""
    width = BUCKET_WIDTHS[bucket]
    label_length = BUCKET_LABEL_LENGTHS[bucket]
    counts: Counter[datetime] = Counter()
    visitors: dict[datetime, set] = defaultdict(set)

    for e in entries:
        ts = e.get('timestamp')
        if ts is None:
            continue
        start = _bucket_start(ts, width)
        counts[start] += 1
        if e.get('ip'):
            visitors[start].add(e['ip'])

    return [
        {
            'label': start.isoformat()[:label_length],
            'count': counts[start],
            'uniqueVisitors': len(visitors.get(start, ())),
        }
        for start in sorted(counts)
    ]


def _aggregate(
    entries: Iterable[ParsedEntry], key_fn: Callable[[ParsedEntry], str]
) -> tuple[Counter[str], dict[str, set]]:
    counts: Counter[str] = Counter()
    visitors: dict[str, set] = defaultdict(set)
    for e in entries:
        key = key_fn(e)
        counts[key] += 1
        if e.get('ip'):
            visitors[key].add(e['ip'])
    return counts, visitors


def _ranked(counts: Counter[str], limit: int | None = None) -> list[tuple[str, int]]:
    # Stable sort keeps first-seen order between equal counts
    ranked = sorted(counts.items(), key=lambda item: item[1], reverse=True)
    return ranked if limit is None else ranked[:limit]


def _method_key(e: ParsedEntry) -> str:
    return _text(e.get('method'), 'UNKNOWN')


def _status_key(e: ParsedEntry) -> str:
    return _text(e.get('status'))


TOP_KEYS: dict[str, Callable[[ParsedEntry], str]] = {
    'urls': lambda e: truncate_key(_text(e.get('url'))),
    'ips': lambda e: _text(e.get('ip')),
    'status': _status_key,
    'ua': lambda e: truncate_key(_text(e.get('userAgent'))),
    'referrer': lambda e: truncate_key(_text(e.get('referer'))),
    'browser': lambda e: browser_family(e.get('userAgent')),
    'host': lambda e: _text(e.get('host')),
}

TOP_VISITOR_KEYS: dict[str, Callable[[ParsedEntry], str]] = {
    'referrer': lambda e: truncate_key(_text(e.get('referer'))),
    'referringSite': lambda e: referring_site(e.get('referer')),
    'host': lambda e: _text(e.get('host')),
    'urls': lambda e: truncate_key(_text(e.get('url'))),
}

DISTRIBUTION_KEYS: dict[str, Callable[[ParsedEntry], str]] = {
    'method': _method_key,
    'status': _status_key,
    'browser': lambda e: browser_family(e.get('userAgent')),
}


def compute_distribution(entries: list[ParsedEntry], metric: str) -> list[dict[str, Any]]:
    counts, _ = _aggregate(entries, DISTRIBUTION_KEYS[metric])
    total = len(entries)
    return [{'key': k, 'count': c, 'percent': _percent(c, total)} for k, c in _ranked(counts)]


def compute_distribution_with_visitors(entries: list[ParsedEntry], metric: str = 'status') -> list[dict[str, Any]]:
    counts, visitors = _aggregate(entries, DISTRIBUTION_KEYS[metric])
    total = len(entries)
    return [
        {'key': k, 'count': c, 'percent': _percent(c, total), 'uniqueVisitors': len(visitors.get(k, ()))}
        for k, c in _ranked(counts)
    ]


def compute_top(entries: list[ParsedEntry], metric: str, limit: int) -> list[dict[str, Any]]:
    counts, _ = _aggregate(entries, TOP_KEYS[metric])
    total = len(entries)
    ranked = _ranked(counts, min(limit, MAX_TOP_LIMIT))
    return [{'key': k, 'count': c, 'percent': _percent(c, total)} for k, c in ranked]


def compute_top_with_visitors(entries: list[ParsedEntry], metric: str, limit: int) -> list[dict[str, Any]]:
    counts, visitors = _aggregate(entries, TOP_VISITOR_KEYS[metric])
    total = len(entries)
    return [
        {'key': k, 'count': c, 'percent': _percent(c, total), 'uniqueVisitors': len(visitors.get(k, ()))}
        for k, c in _ranked(counts, min(limit, MAX_TOP_LIMIT))
    ]


def compute_top_urls_with_extras(entries: list[ParsedEntry], limit: int) -> list[dict[str, Any]]:
    """Top URLs with transferred bytes and their most frequent method and protocol."""
    key_fn = TOP_VISITOR_KEYS['urls']
    counts, visitors = _aggregate(entries, key_fn)
    tx: Counter[str] = Counter()
    methods: dict[str, Counter] = defaultdict(Counter)
    protocols: dict[str, Counter] = defaultdict(Counter)
    for e in entries:
        key = key_fn(e)
        tx[key] += e.get('size') or 0
        methods[key][_method_key(e)] += 1
        protocols[key][_text(e.get('protocol'))] += 1

    total = len(entries)
    return [
        {
            'key': k,
            'count': c,
            'percent': _percent(c, total),
            'uniqueVisitors': len(visitors.get(k, ())),
            'txAmount': tx[k],
            'method': methods[k].most_common(1)[0][0],
            'protocol': protocols[k].most_common(1)[0][0],
        }
        for k, c in _ranked(counts, min(limit, MAX_TOP_LIMIT))
    ]


def compute_status_by_host(entries: list[ParsedEntry], limit: int) -> list[dict[str, Any]]:
    counts: Counter[tuple[str, str]] = Counter()
    visitors: dict[tuple[str, str], set] = defaultdict(set)
    for e in entries:
        key = (_text(e.get('host')), _status_key(e))
        counts[key] += 1
        if e.get('ip'):
            visitors[key].add(e['ip'])
    ranked = sorted(counts.items(), key=lambda item: item[1], reverse=True)[:limit]
    return [
        {'host': host, 'status': status, 'count': c, 'uniqueVisitors': len(visitors.get((host, status), ()))}
        for (host, status), c in ranked
    ]


def resolve_plugin_ids(parser: LogParser, plugin_id: str | None) -> list[str]:
    """Enabled analytics plugins, or the requested one if it is one of them."""
    enabled = [p for p in ANALYTICS_PLUGINS if parser.settings.is_enabled(p) and p in parser.registry]
    if not plugin_id or plugin_id == 'all':
        return enabled
    return [plugin_id] if plugin_id in enabled else []


def build_analytics(
    entries: list[ParsedEntry], files_analyzed: int, bucket: Bucket = 'hour', top_limit: int = DEFAULT_TOP_LIMIT
) -> dict[str, Any]:
    limit = max(1, min(top_limit, MAX_TOP_LIMIT))
    return {
        'overview': compute_overview(entries, files_analyzed),
        'timeseries': {'buckets': compute_timeseries(entries, bucket)},
        'distribution': {
            'methods': compute_distribution(entries, 'method'),
            'status': compute_distribution(entries, 'status'),
            'statusWithVisitors': compute_distribution_with_visitors(entries, 'status'),
        },
        'top': {
            'urls': compute_top(entries, 'urls', limit),
            'ips': compute_top(entries, 'ips', limit),
            'status': compute_top(entries, 'status', limit),
            'ua': compute_top(entries, 'ua', limit),
            'referrer': compute_top(entries, 'referrer', limit),
            'browser': compute_top(entries, 'browser', limit),
            'host': compute_top(entries, 'host', limit),
            'referringSites': compute_top_with_visitors(entries, 'referringSite', limit),
            'referrerWithVisitors': compute_top_with_visitors(entries, 'referrer', limit),
            'hostWithVisitors': compute_top_with_visitors(entries, 'host', limit),
            'urlsWithExtras': compute_top_urls_with_extras(entries, limit),
            'statusByHost': compute_status_by_host(entries, limit * 2),
        },
    }


async def get_all_analytics(
    parser: LogParser,
    plugin_id: str | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    bucket: Bucket = 'hour',
    top_limit: int = DEFAULT_TOP_LIMIT,
    file_scope: FileScope = 'all',
    include_compressed: bool = False,
) -> dict[str, Any]:
    """Collect entries in a worker thread and compute every aggregation from them."""
    start = time.time()
    plugin_ids = resolve_plugin_ids(parser, plugin_id)
    entries, files_analyzed = await anyio.to_thread.run_sync(
        lambda: collect_entries(
            parser,
            plugin_ids,
            date_from=date_from,
            date_to=date_to,
            file_scope=file_scope,
            include_compressed=include_compressed,
        )
    )
    result = build_analytics(entries, files_analyzed, bucket=bucket, top_limit=top_limit)
    prom.record_analytics_request('success', time.time() - start)
    logger.info(f'Analytics over {files_analyzed} files, {len(entries)} entries in {time.time() - start:.2f}s')
    return result
