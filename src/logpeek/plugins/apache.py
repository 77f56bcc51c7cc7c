"""Apache HTTP Server access and error logs."""

import os
import re

from logpeek.plugins.base import LogSourcePlugin, ParsedEntry, access_entry, normalize_level, to_int
from logpeek.timestamps import parse_timestamp


# IPv4 or IPv6
IP_PATTERN = r'(?:\d{1,3}(?:\.\d{1,3}){3}|[0-9a-fA-F:]+(?:::[0-9a-fA-F:]*)?)'

_TAIL_COMMON = r'\[(?P<timestamp>[^\]]+)\]\s+"(?P<request>[^"]*)"\s+(?P<status>\d{3})\s+(?P<size>\d+|-)'
_TAIL_COMBINED = _TAIL_COMMON + r'\s+"(?P<referer>[^"]*)"\s+"(?P<userAgent>[^"]*)"'

# Most specific first
ACCESS_FORMATS: list[tuple[str, re.Pattern]] = [
    (
        'forwarded',
        re.compile(
            rf'^\[(?P<timestamp>[^\]]+)\]\s+(?P<ip>{IP_PATTERN})\s+(?P<forwardedFor>{IP_PATTERN})\s+\S+\s+'
            rf'(?P<user>\S+)\s+(?P<host>\S+)\s+"(?P<request>[^"]*)"\s+(?P<status>\d{{3}})\s+(?P<size>\d+|-)\s+'
            r'"(?P<referer>[^"]*)"\s+"(?P<userAgent>[^"]*)"'
        ),
    ),
    (
        'vhost_combined',
        re.compile(
            rf'^(?P<host>[^:\s]+):(?P<port>\d+)\s+(?P<ip>{IP_PATTERN})\s+\S+\s+(?P<user>\S+)\s+{_TAIL_COMBINED}'
        ),
    ),
    (
        'vhost_common',
        re.compile(rf'^(?P<host>[^:\s]+):(?P<port>\d+)\s+(?P<ip>{IP_PATTERN})\s+\S+\s+(?P<user>\S+)\s+{_TAIL_COMMON}'),
    ),
    (
        'vhost_simple',
        re.compile(rf'^(?P<host>\S+)\s+(?P<ip>{IP_PATTERN})\s+\S+\s+(?P<user>\S+)\s+{_TAIL_COMMON}'),
    ),
    ('combined', re.compile(rf'^(?P<ip>{IP_PATTERN})\s+\S+\s+(?P<user>\S+)\s+{_TAIL_COMBINED}')),
    ('common', re.compile(rf'^(?P<ip>{IP_PATTERN})\s+\S+\s+(?P<user>\S+)\s+{_TAIL_COMMON}')),
]

_IPV4_RE = re.compile(r'^\d+\.\d+\.\d+\.\d+$')

ERROR_FORMATS: list[tuple[str, re.Pattern]] = [
    (
        'module_level',
        re.compile(
            r'^\[(?P<timestamp>[^\]]+)\]\s+\[(?P<module>[^:\]]+):(?P<level>\w+)\]\s+'
            r'(?:\[pid\s+(?P<pid>\d+)(?::tid\s+(?P<tid>\d+))?\]\s+)?'
            r'(?:\[client\s+(?P<client>[^\]]+)\]\s+)?(?P<message>.+)$'
        ),
    ),
    (
        'client',
        re.compile(
            r'^\[(?P<timestamp>[^\]]+)\]\s+\[(?P<level>\w+)\]\s+\[client\s+(?P<client>[^\]]+)\]\s+(?P<message>.+)$'
        ),
    ),
    (
        'pid',
        re.compile(
            r'^\[(?P<timestamp>[^\]]+)\]\s+\[(?P<level>\w+)\]\s+\[pid\s+(?P<pid>\d+)(?::tid\s+(?P<tid>\d+))?\]\s+'
            r'(?:\[(?P<module>[^\]]+)\]\s+)?(?P<message>.+)$'
        ),
    ),
    (
        'standard',
        re.compile(r'^\[(?P<timestamp>[^\]]+)\]\s+\[(?P<level>\w+)\]\s+(?:\[(?P<module>[^\]]+)\]\s+)?(?P<message>.+)$'),
    ),
]

_ERROR_FALLBACK_RE = re.compile(r'^\[(?P<timestamp>[^\]]+)\]\s+(?P<rest>.+)$')
_MODULE_LEVEL_RE = re.compile(r'\[([^:\]]+):(\w+)\]')
_LEVEL_RE = re.compile(r'\[(\w+)\]')
_CLIENT_RE = re.compile(r'\[client\s+([^\]]+)\]')
_CLIENT_ADDR_RE = re.compile(r'^([^:]+)(?::(\d+))?$')


def _apply_client(entry: ParsedEntry, client: str | None):
    if not client:
        return
    match = _CLIENT_ADDR_RE.match(client)
    if not match:
        entry['clientIp'] = client
        return
    entry['clientIp'] = match.group(1)
    if match.group(2):
        entry['clientPort'] = int(match.group(2))


def parse_access_line(line: str) -> ParsedEntry | None:
    """Parse an Apache access log line, trying each known format in turn."""
    if not line or not line.strip():
        return None
    for name, regex in ACCESS_FORMATS:
        match = regex.match(line)
        if not match:
            continue
        groups = match.groupdict()
        if name == 'vhost_simple' and (_IPV4_RE.match(groups['host']) or ':' in groups['host']):
            continue
        return access_entry(groups, line)
    return None


def parse_error_line(line: str) -> ParsedEntry | None:
    """Parse an Apache error log line ([timestamp] [module:level] ... message)."""
    if not line or not line.strip():
        return None

    for _, regex in ERROR_FORMATS:
        match = regex.match(line)
        if not match:
            continue
        groups = match.groupdict()
        entry: ParsedEntry = {
            'level': groups['level'].lower(),
            'message': groups['message'].strip(),
        }
        timestamp = parse_timestamp(groups['timestamp'])
        if timestamp:
            entry['timestamp'] = timestamp
        if groups.get('module'):
            entry['module'] = groups['module']
        for key in ('pid', 'tid'):
            value = to_int(groups.get(key))
            if value is not None:
                entry[key] = value
        _apply_client(entry, groups.get('client'))
        return entry

    match = _ERROR_FALLBACK_RE.match(line)
    if not match:
        return None
    rest = match.group('rest')
    entry = {'level': 'info', 'message': rest.strip()}
    timestamp = parse_timestamp(match.group('timestamp'))
    if timestamp:
        entry['timestamp'] = timestamp
    module_level = _MODULE_LEVEL_RE.search(rest)
    if module_level:
        entry['module'] = module_level.group(1)
        entry['level'] = normalize_level(module_level.group(2))
    else:
        level = _LEVEL_RE.search(rest)
        if level:
            entry['level'] = normalize_level(level.group(1))
    client = _CLIENT_RE.search(rest)
    if client:
        _apply_client(entry, client.group(1))
    return entry


class ApachePlugin(LogSourcePlugin):
    plugin_id = 'apache'
    name = 'Apache'
    description = 'Apache HTTP Server access and error logs'
    default_base_path = '/var/log/apache2'
    default_file_patterns = ['access*.log', 'access*.log.gz', 'error*.log', 'error*.log.gz']

    def determine_log_type(self, path: str) -> str:
        filename = re.sub(r'\.(gz|bz2|xz)$', '', os.path.basename(path).lower())
        if 'access' in filename:
            return 'access'
        if 'error' in filename:
            return 'error'
        return 'access'

    def parse_log_line(self, line: str, log_type: str) -> ParsedEntry | None:
        if log_type == 'access':
            return parse_access_line(line)
        if log_type == 'error':
            return parse_error_line(line)
        return parse_access_line(line) or parse_error_line(line)

    def get_columns(self, log_type: str) -> list[str]:
        if log_type == 'access':
            return ['timestamp', 'host', 'port', 'ip', 'method', 'url', 'status', 'size', 'referer', 'userAgent']
        if log_type == 'error':
            return ['timestamp', 'level', 'module', 'clientIp', 'message']
        return ['timestamp', 'level', 'message']
