"""Host system logs (syslog, auth, kernel, daemon, mail, cron)."""

import os
import re

from logpeek.plugins.base import LogSourcePlugin, ParsedEntry, normalize_level
from logpeek.timestamps import parse_timestamp


_ISO = r'\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}(?:\.\d+)?(?:Z|[+-]\d{2}:?\d{2})?'
_CLASSIC = r'\w{3}\s+\d{1,2}\s+\d{2}:\d{2}:\d{2}'
_TAG = r'(?P<tag>[^\s\[:]+)(?:\[(?P<pid>\d+)\])?:\s*(?P<message>.*)$'

SYSLOG_FORMATS = [
    re.compile(rf'^(?P<timestamp>{_ISO})\s+(?P<hostname>\S+)\s+{_TAG}'),
    re.compile(rf'^<(?P<priority>\d+)>(?P<timestamp>{_CLASSIC})\s+(?P<hostname>\S+)\s+{_TAG}'),
    re.compile(rf'^(?P<timestamp>{_CLASSIC})\s+(?P<hostname>\S+)\s+{_TAG}'),
]
_BRACKETED_RE = re.compile(
    r'^\[(?P<date>\d{4}-\d{2}-\d{2})\s+(?P<time>\d{2}:\d{2}:\d{2})\]\s+\[(?P<level>\w+)\]\s+(?P<message>.*)$'
)
_ISO_PREFIX_RE = re.compile(rf'^(?P<timestamp>{_ISO})\s+(?P<message>.*)$')

_ERROR_WORDS_RE = re.compile(r'\b(error|err|fail(ed|ure)?|crit(ical)?|alert|emerg(ency)?|panic|fatal)\b', re.IGNORECASE)
_WARN_WORDS_RE = re.compile(r'\b(warn(ing)?)\b', re.IGNORECASE)

# File name prefix -> log type
_TYPE_PREFIXES = [
    ('auth', 'auth'),
    ('secure', 'auth'),
    ('kern', 'kern'),
    ('daemon', 'daemon'),
    ('mail', 'mail'),
    ('cron', 'cron'),
]


def level_from_priority(priority: int) -> str:
    severity = priority % 8
    if severity <= 3:
        return 'error'
    if severity == 4:
        return 'warning'
    if severity == 7:
        return 'debug'
    return 'info'


def level_from_message(message: str) -> str:
    if _ERROR_WORDS_RE.search(message):
        return 'error'
    if _WARN_WORDS_RE.search(message):
        return 'warning'
    return 'info'


def parse_syslog_line(line: str) -> ParsedEntry | None:
    if not line or not line.strip():
        return None

    for regex in SYSLOG_FORMATS:
        match = regex.match(line)
        if not match:
            continue
        groups = match.groupdict()
        entry: ParsedEntry = {
            'hostname': groups['hostname'],
            'tag': groups['tag'],
            'message': groups['message'],
        }
        timestamp = parse_timestamp(groups['timestamp'])
        if timestamp:
            entry['timestamp'] = timestamp
        if groups.get('pid'):
            entry['pid'] = int(groups['pid'])
        if groups.get('priority'):
            entry['priority'] = int(groups['priority'])
            entry['level'] = level_from_priority(entry['priority'])
        else:
            entry['level'] = level_from_message(groups['message'])
        return entry

    match = _BRACKETED_RE.match(line)
    if match:
        entry = {'level': normalize_level(match.group('level')), 'message': match.group('message')}
        timestamp = parse_timestamp(f'{match.group("date")} {match.group("time")}')
        if timestamp:
            entry['timestamp'] = timestamp
        return entry

    match = _ISO_PREFIX_RE.match(line)
    if match:
        entry = {'message': match.group('message'), 'level': level_from_message(match.group('message'))}
        timestamp = parse_timestamp(match.group('timestamp'))
        if timestamp:
            entry['timestamp'] = timestamp
        return entry

    return None


class HostSystemPlugin(LogSourcePlugin):
    plugin_id = 'host-system'
    name = 'Host system'
    description = 'System logs from /var/log (syslog, auth, kernel, daemon, mail, cron)'
    default_base_path = '/var/log'
    default_file_patterns = [
        'syslog*',
        'messages*',
        'auth.log*',
        'secure*',
        'kern.log*',
        'daemon.log*',
        'mail.log*',
        'maillog*',
        'mail.err*',
        'cron*',
        '*.log',
    ]

    def determine_log_type(self, path: str) -> str:
        filename = os.path.basename(path).lower()
        for prefix, log_type in _TYPE_PREFIXES:
            if filename.startswith(prefix):
                return log_type
        return 'syslog'

    def parse_log_line(self, line: str, log_type: str) -> ParsedEntry | None:
        return parse_syslog_line(line)

    def get_columns(self, log_type: str) -> list[str]:
        if log_type in ('syslog', 'kern', 'cron'):
            return ['timestamp', 'hostname', 'tag', 'level', 'message']
        if log_type in ('auth', 'daemon', 'mail'):
            return ['timestamp', 'hostname', 'tag', 'pid', 'level', 'message']
        return ['timestamp', 'level', 'message']
