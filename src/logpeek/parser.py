"""Line parsing: custom regexes take precedence over the plugin's built-in parser.

Lines that no parser understands are kept as unparsed entries
(message = raw line, level = info, isParsed = False) so line counts stay
exact even when patterns are imperfect.
"""

import logging
import os
import re
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import anyio

from logpeek import prometheus as prom
from logpeek.compression import normalize_log_path
from logpeek.custom_parser import parse_custom_line
from logpeek.plugins import PluginRegistry, default_registry
from logpeek.plugins.base import ParsedEntry
from logpeek.reader import MAX_REPLAY_LINES, FileFollower, RawLine, follow, read_lines
from logpeek.settings import PluginSettingsStore
from logpeek.timestamps import to_iso


logger = logging.getLogger(__name__)

DEFAULT_COLUMNS = ['timestamp', 'level', 'message']

# Generic keys a custom regex can be stored under so one pattern covers a family of files
APACHE_REGEX_KEYS = {'access': 'access.log', 'error': 'error.log', 'vhost': 'access_*.log'}

_APACHE_VHOST_RE = re.compile(r'^access_.*\.log$|^access\..+\.log$')


def apache_regex_key(file_path: str) -> str | None:
    """Generic Apache key for a path: access.log, error.log or access_*.log."""
    basename = os.path.basename(normalize_log_path(file_path))
    if basename == 'access.log':
        return APACHE_REGEX_KEYS['access']
    if basename == 'error.log':
        return APACHE_REGEX_KEYS['error']
    if _APACHE_VHOST_RE.match(basename):
        return APACHE_REGEX_KEYS['vhost']
    return None


def nginx_regex_key(file_path: str) -> str | None:
    basename = os.path.basename(normalize_log_path(file_path)).lower()
    if 'error' in basename:
        return 'error.log'
    if 'access' in basename:
        return 'access.log'
    return None


def serialize_entry(entry: ParsedEntry) -> dict[str, Any]:
    """JSON-ready copy of an entry (timestamps as ISO strings)."""
    data = dict(entry)
    if 'timestamp' in data:
        data['timestamp'] = to_iso(data['timestamp'])
    return data


def unparsed_entry(line: str) -> ParsedEntry:
    return {'message': line, 'level': 'info', 'isParsed': False}


@dataclass
class CustomRegex:
    regex: str
    log_type: str


@dataclass
class ParseResult:
    """A parsed-or-fallback entry together with the raw line it came from."""

    parsed: ParsedEntry
    raw: RawLine
    plugin_id: str
    log_type: str

    def to_dict(self) -> dict[str, Any]:
        return {
            'parsed': serialize_entry(self.parsed),
            'raw': {
                'line': self.raw.content,
                'lineNumber': self.raw.line_number,
                'filePath': self.raw.source_path,
            },
            'pluginId': self.plugin_id,
            'logType': self.log_type,
        }


class LogParser:
    """Resolves the parser for a file and applies it line by line."""

    def __init__(self, registry: PluginRegistry | None = None, settings: PluginSettingsStore | None = None):
        self.registry = registry or default_registry()
        self.settings = settings or PluginSettingsStore()

    def find_custom_regex(self, plugin_id: str, file_path: str) -> CustomRegex | None:
        """Custom regex for a file.

        Tried in order: the exact path, the normalized path (rotation and
        compression stripped), then the plugin's generic keys. Every key is
        also tried by basename.
        """
        custom = self.settings.get_custom_regex_map(plugin_id)
        if not custom:
            return None

        candidates: list[tuple[str, str]] = []
        normalized = normalize_log_path(file_path)
        for key in (file_path, normalized):
            candidates.append((key, 'custom'))
            candidates.append((os.path.basename(key), 'custom'))

        generic = None
        if plugin_id == 'apache':
            generic = apache_regex_key(file_path)
        elif plugin_id == 'nginx':
            generic = nginx_regex_key(file_path)
        if generic:
            candidates.append((generic, 'access'))

        for key, default_type in candidates:
            entry = custom.get(key)
            if isinstance(entry, dict) and entry.get('regex'):
                return CustomRegex(regex=entry['regex'], log_type=entry.get('logType') or default_type)
        return None

    def _line_parser(self, plugin_id: str, file_path: str | None, log_type: str) -> tuple[Callable, str]:
        plugin = self.registry.get(plugin_id)
        custom = self.find_custom_regex(plugin_id, file_path) if file_path else None
        if custom is not None:
            logger.debug(f'Using custom regex for {file_path}')
            return (lambda line: parse_custom_line(line, custom.regex)), custom.log_type
        return (lambda line: plugin.parse_log_line(line, log_type)), log_type

    @staticmethod
    def _to_result(parse: Callable, raw: RawLine, plugin_id: str, log_type: str) -> ParseResult:
        parsed = parse(raw.content)
        if parsed:
            entry = {**parsed, 'isParsed': True}
        else:
            entry = unparsed_entry(raw.content)
        return ParseResult(parsed=entry, raw=raw, plugin_id=plugin_id, log_type=log_type)

    def parse_file(
        self,
        plugin_id: str,
        file_path: str,
        log_type: str,
        max_lines: int = 0,
        from_line: int = 0,
        read_compressed: bool = False,
    ) -> list[ParseResult]:
        """Read a file and parse every line. Raises UnknownPluginError for unknown plugins."""
        lines = read_lines(file_path, max_lines=max_lines, from_line=from_line, read_compressed=read_compressed)
        return self.parse_raw_lines(plugin_id, file_path, log_type, lines)

    def parse_raw_lines(self, plugin_id: str, file_path: str, log_type: str, lines: list[RawLine]) -> list[ParseResult]:
        """Parse lines already read from file_path, keeping their line numbers."""
        parse, effective_type = self._line_parser(plugin_id, file_path, log_type)
        prom.record_lines_read(len(lines))
        return [self._to_result(parse, raw, plugin_id, effective_type) for raw in lines]

    async def stream_parse(
        self,
        plugin_id: str,
        file_path: str,
        log_type: str,
        on_result: Callable[[ParseResult], None],
        follow_file: bool = True,
        from_line: int = 0,
        read_compressed: bool = False,
        **follow_options,
    ) -> FileFollower | None:
        """Parse lines as they are read and hand each result to on_result.

        With follow_file the existing lines are replayed and new ones keep
        arriving until the returned follower is cancelled. Without it a
        bounded read is delivered and None is returned.
        """
        parse, effective_type = self._line_parser(plugin_id, file_path, log_type)

        def on_line(raw: RawLine):
            prom.record_lines_read(1)
            on_result(self._to_result(parse, raw, plugin_id, effective_type))

        if not follow_file:
            lines = await anyio.to_thread.run_sync(read_lines, file_path, MAX_REPLAY_LINES, from_line, read_compressed)
            for raw in lines:
                on_line(raw)
            return None

        return await follow(file_path, on_line, from_line=from_line, read_compressed=read_compressed, **follow_options)

    def parse_line(self, plugin_id: str, line: str, log_type: str, file_path: str | None = None) -> ParsedEntry | None:
        """Parse one line. Custom regexes are consulted only when file_path is given."""
        if plugin_id not in self.registry:
            return None
        parse, _ = self._line_parser(plugin_id, file_path, log_type)
        return parse(line)

    def get_columns(self, plugin_id: str, log_type: str) -> list[str]:
        plugin = self.registry.find(plugin_id)
        if plugin is None:
            return list(DEFAULT_COLUMNS)
        return plugin.get_columns(log_type)
