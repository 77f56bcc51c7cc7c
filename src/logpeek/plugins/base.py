"""Base classes and shared helpers for log source plugins."""

import logging
import os
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from logpeek.timestamps import parse_timestamp


logger = logging.getLogger(__name__)

# Directory levels below the base path visited while scanning
MAX_SCAN_DEPTH = 4

ParsedEntry = dict[str, Any]

ERROR_LEVELS = frozenset({'error', 'err', 'crit', 'critical', 'alert', 'emerg', 'emergency'})
WARNING_LEVELS = frozenset({'warn', 'warning'})

_REQUEST_RE = re.compile(r'^(\S+)\s+(.+?)\s+(\S+)$')
_REQUEST_NO_PROTOCOL_RE = re.compile(r'^(\S+)\s+(.+)$')


@dataclass
class LogFileInfo:
    """A log file found by a plugin scan."""

    path: str
    type: str
    size: int
    modified: datetime

    def to_dict(self) -> dict:
        return {
            'path': self.path,
            'type': self.type,
            'size': self.size,
            'modified': self.modified.isoformat(),
        }


def glob_to_regex(pattern: str) -> re.Pattern:
    """Convert a file name glob to a regex.

    Patterns ending in .log also accept rotation numbers and compression
    extensions, so access*.log matches access.log.1 and access.log.2.gz.
    """
    parts = []
    i = 0
    while i < len(pattern):
        char = pattern[i]
        if pattern.startswith('**', i):
            parts.append('.*')
            i += 2
            continue
        if char == '*':
            parts.append('[^/]*')
        elif char == '?':
            parts.append('.')
        else:
            parts.append(re.escape(char))
        i += 1
    regex = ''.join(parts)
    if pattern.endswith('.log'):
        regex += r'(?:\.\d+)?(?:\.(?:gz|bz2|xz))?'
    return re.compile(f'^{regex}$')


def parse_request(request: str) -> dict[str, str]:
    """Split an HTTP request line ("GET /path HTTP/1.1") into method, url, protocol."""
    match = _REQUEST_RE.match(request)
    if match:
        return {'method': match.group(1), 'url': match.group(2), 'protocol': match.group(3)}
    match = _REQUEST_NO_PROTOCOL_RE.match(request)
    if match:
        return {'method': match.group(1), 'url': match.group(2), 'protocol': 'HTTP/1.1'}
    return {'method': 'UNKNOWN', 'url': request, 'protocol': 'HTTP/1.1'}


def level_from_status(status: int) -> str:
    if status >= 500:
        return 'error'
    if status >= 400:
        return 'warning'
    return 'info'


def normalize_level(level: str) -> str:
    """Map server specific severities onto error/warning/info/debug."""
    lowered = level.lower()
    if lowered in ERROR_LEVELS:
        return 'error'
    if lowered in WARNING_LEVELS:
        return 'warning'
    if lowered in ('notice', 'info'):
        return 'info'
    if lowered.startswith('debug') or lowered.startswith('trace'):
        return 'debug'
    return lowered


def to_int(value: str | None) -> int | None:
    if value is None or not value.isdigit():
        return None
    return int(value)


def access_entry(groups: dict[str, str | None], line: str) -> ParsedEntry:
    """Build a structured entry from access-log named groups.

    Optional fields that were not captured are left out of the entry.
    """
    entry: ParsedEntry = {}
    timestamp = parse_timestamp(groups.get('timestamp'))
    if timestamp:
        entry['timestamp'] = timestamp
    for key in ('ip', 'forwardedFor', 'host', 'user', 'referer', 'userAgent', 'upstream'):
        value = groups.get(key)
        if value is not None:
            entry[key] = value
    port = to_int(groups.get('port'))
    if port is not None:
        entry['port'] = port
    request = groups.get('request')
    if request is not None:
        entry.update(parse_request(request))
    status = to_int(groups.get('status'))
    if status is not None:
        entry['status'] = status
        entry['level'] = level_from_status(status)
    size = groups.get('size')
    if size is not None:
        entry['size'] = to_int(size) or 0
    entry['message'] = line
    return entry


class LogSourcePlugin(ABC):
    """Base class for log source plugins.

    A plugin knows where a source keeps its logs, how to find them and how
    to turn one raw line of each of its log types into a structured entry.
    """

    plugin_id: str = ''
    name: str = ''
    description: str = ''
    default_base_path: str = '/var/log'
    default_file_patterns: list[str] = []

    @property
    def base_path_env(self) -> str:
        """Environment variable overriding the default base path."""
        return f'LOGPEEK_{self.plugin_id.upper().replace("-", "_")}_BASE_PATH'

    def get_default_base_path(self) -> str:
        override = os.environ.get(self.base_path_env)
        if override and override.strip():
            return override.strip()
        return self.default_base_path

    def get_default_file_patterns(self) -> list[str]:
        return list(self.default_file_patterns)

    @abstractmethod
    def determine_log_type(self, path: str) -> str:
        """Log type of a file, derived from its name."""
        pass

    @abstractmethod
    def parse_log_line(self, line: str, log_type: str) -> ParsedEntry | None:
        """Parse one raw line, returning None when no built-in format matches."""
        pass

    @abstractmethod
    def get_columns(self, log_type: str) -> list[str]:
        """Display columns for a log type."""
        pass

    def validate_config(self, config: dict) -> bool:
        """Check plugin settings before they are stored."""
        if not isinstance(config, dict):
            return False
        base_path = config.get('basePath')
        if base_path is not None and (not isinstance(base_path, str) or not base_path.strip()):
            return False
        read_compressed = config.get('readCompressed')
        if read_compressed is not None and not isinstance(read_compressed, bool):
            return False
        custom_regex = config.get('customRegex')
        if custom_regex is not None and not isinstance(custom_regex, dict):
            return False
        return True

    def scan_log_files(self, base_path: str, patterns: list[str] | None = None) -> list[LogFileInfo]:
        """Find files under base_path whose names match any of the glob patterns.

        Unreadable directories and files that vanish during the scan are skipped.
        """
        regexes = [glob_to_regex(p) for p in (patterns or self.get_default_file_patterns())]
        if not os.path.isdir(base_path):
            logger.debug(f'[{self.plugin_id}] base path does not exist: {base_path}')
            return []

        results: list[LogFileInfo] = []
        base_depth = base_path.rstrip(os.sep).count(os.sep)
        for dirpath, dirnames, filenames in os.walk(base_path, onerror=self._log_walk_error):
            if dirpath.rstrip(os.sep).count(os.sep) - base_depth >= MAX_SCAN_DEPTH:
                dirnames[:] = []
            dirnames.sort()
            for filename in sorted(filenames):
                if not any(regex.match(filename) for regex in regexes):
                    continue
                full_path = os.path.join(dirpath, filename)
                try:
                    st = os.stat(full_path)
                except OSError:
                    continue
                results.append(
                    LogFileInfo(
                        path=full_path,
                        type=self.determine_log_type(full_path),
                        size=st.st_size,
                        modified=datetime.fromtimestamp(st.st_mtime, tz=UTC),
                    )
                )
        return results

    def _log_walk_error(self, error: OSError):
        logger.debug(f'[{self.plugin_id}] cannot scan {error.filename}: {error}')

    def describe(self) -> dict:
        return {
            'id': self.plugin_id,
            'name': self.name,
            'description': self.description,
            'defaultBasePath': self.get_default_base_path(),
            'defaultFilePatterns': self.get_default_file_patterns(),
        }
