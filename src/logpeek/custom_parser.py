"""User supplied named-group regexes as line parsers."""

import logging
import re
from functools import lru_cache

from logpeek.plugins.base import ParsedEntry, level_from_status, normalize_level, parse_request, to_int
from logpeek.timestamps import parse_timestamp


logger = logging.getLogger(__name__)

# JavaScript style named groups (?<name>...) are accepted; lookbehinds (?<= and (?<! are left alone
_JS_NAMED_GROUP_RE = re.compile(r'\(\?<(?![=!])')

_INT_FIELDS = ('status', 'size', 'port', 'pid', 'tid', 'clientPort')


class InvalidRegexError(ValueError):
    """A custom pattern that does not compile."""


def to_python_regex(pattern: str) -> str:
    return _JS_NAMED_GROUP_RE.sub('(?P<', pattern)


@lru_cache(maxsize=256)
def compile_custom_regex(pattern: str) -> re.Pattern:
    """Compile a custom pattern, raising InvalidRegexError with the reason."""
    if not pattern or not pattern.strip():
        raise InvalidRegexError('Regex cannot be empty')
    try:
        return re.compile(to_python_regex(pattern))
    except re.error as e:
        raise InvalidRegexError(str(e)) from e


def parse_custom_line(line: str, pattern: str) -> ParsedEntry | None:
    """Parse a line with a custom regex.

    Named groups become entry fields. A captured `request` is split into
    method/url/protocol, numeric fields are converted to int and the level
    falls back to one derived from the status code. Returns None when the
    line does not match or the pattern is invalid.
    """
    if not line or not line.strip():
        return None
    try:
        regex = compile_custom_regex(pattern)
    except InvalidRegexError as e:
        logger.debug(f'Ignoring invalid custom regex {pattern!r}: {e}')
        return None

    match = regex.search(line)
    if not match:
        return None

    entry: ParsedEntry = {}
    for name, value in match.groupdict().items():
        if value is None:
            continue
        entry[name] = value

    if 'timestamp' in entry:
        timestamp = parse_timestamp(entry['timestamp'])
        if timestamp:
            entry['timestamp'] = timestamp
        else:
            del entry['timestamp']

    if 'request' in entry:
        for key, value in parse_request(entry.pop('request')).items():
            entry.setdefault(key, value)

    for key in _INT_FIELDS:
        if key in entry:
            value = to_int(entry[key])
            if value is None and key == 'size':
                value = 0
            if value is None:
                del entry[key]
            else:
                entry[key] = value

    if 'level' in entry:
        entry['level'] = normalize_level(entry['level'])
    elif 'status' in entry:
        entry['level'] = level_from_status(entry['status'])
    else:
        entry['level'] = 'info'

    if not entry.get('message'):
        entry['message'] = line.strip()
    return entry
