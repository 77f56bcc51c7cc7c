"""Nginx access and error logs."""

import os
import re

from logpeek.plugins.base import LogSourcePlugin, ParsedEntry, access_entry, to_int
from logpeek.timestamps import parse_timestamp


_PREFIX = r'^(?P<ip>\S+)\s+\S+\s+(?P<user>\S+)\s+\[(?P<timestamp>[^\]]+)\]\s+"(?P<request>[^"]*)"\s+'
_STATUS_SIZE = r'(?P<status>\d{3})\s+(?P<size>\d+|-)'

ACCESS_FORMATS: list[tuple[str, re.Pattern]] = [
    (
        'extended',
        re.compile(
            _PREFIX
            + _STATUS_SIZE
            + r'\s+"(?P<referer>[^"]*)"\s+"(?P<userAgent>[^"]*)"\s+"(?P<upstream>[^"]*)"'
        ),
    ),
    ('combined', re.compile(_PREFIX + _STATUS_SIZE + r'\s+"(?P<referer>[^"]*)"\s+"(?P<userAgent>[^"]*)"')),
    ('common', re.compile(_PREFIX + _STATUS_SIZE)),
]

ERROR_FORMATS = [
    re.compile(
        r'^(?P<timestamp>\d{4}/\d{2}/\d{2}\s+\d{2}:\d{2}:\d{2})\s+\[(?P<level>\w+)\]\s+'
        r'(?P<pid>\d+)#(?P<tid>\d+):\s+(?P<message>.+)$'
    ),
    re.compile(r'^(?P<timestamp>\d{4}/\d{2}/\d{2}\s+\d{2}:\d{2}:\d{2})\s+\[(?P<level>\w+)\]\s+(?P<message>.+)$'),
]


def parse_access_line(line: str) -> ParsedEntry | None:
    if not line or not line.strip():
        return None
    for _, regex in ACCESS_FORMATS:
        match = regex.match(line)
        if match:
            return access_entry(match.groupdict(), line)
    return None


def parse_error_line(line: str) -> ParsedEntry | None:
    if not line or not line.strip():
        return None
    for regex in ERROR_FORMATS:
        match = regex.match(line)
        if not match:
            continue
        groups = match.groupdict()
        entry: ParsedEntry = {'level': groups['level'].lower(), 'message': groups['message'].strip()}
        timestamp = parse_timestamp(groups['timestamp'])
        if timestamp:
            entry['timestamp'] = timestamp
        for key in ('pid', 'tid'):
            value = to_int(groups.get(key))
            if value is not None:
                entry[key] = value
        return entry
    return None


class NginxPlugin(LogSourcePlugin):
    plugin_id = 'nginx'
    name = 'Nginx'
    description = 'Nginx access and error logs'
    default_base_path = '/var/log/nginx'
    default_file_patterns = ['access*.log', 'error*.log']

    def determine_log_type(self, path: str) -> str:
        filename = os.path.basename(path).lower()
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
            return ['timestamp', 'ip', 'method', 'url', 'status', 'size', 'referer', 'userAgent', 'upstream']
        if log_type == 'error':
            return ['timestamp', 'level', 'pid', 'tid', 'message']
        return ['timestamp', 'level', 'message']
