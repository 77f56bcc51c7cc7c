"""Build a named-group regex from one sample log line.

The line is split into tokens (quoted strings and bracketed sections stay
whole), each token is classified (ip, timestamp, request, status, ...) and
turned into a named capture group. The generated pattern is run against
the sample so callers can check the captures before saving it as a custom
regex.
"""

import re
from dataclasses import dataclass, field


IPV4_RE = re.compile(r'^\d{1,3}\.\d{1,3}\.\d{1,3}\.\d{1,3}$')
# Requires a colon so plain numbers and hex-looking words are not taken for addresses
IPV6_RE = re.compile(r'^(?=.*:)[0-9a-fA-F:]+(::[0-9a-fA-F:]*)?$')
HTTP_METHOD_RE = re.compile(r'^(GET|POST|PUT|DELETE|PATCH|HEAD|OPTIONS|TRACE|CONNECT)$', re.IGNORECASE)
REQUEST_LINE_RE = re.compile(r'^(GET|POST|PUT|DELETE|PATCH|HEAD|OPTIONS|TRACE|CONNECT)\s+', re.IGNORECASE)
STATUS_RE = re.compile(r'^\d{3}$')
NUMBER_RE = re.compile(r'^\d+$')

USER_AGENT_MARKERS = ('Mozilla', 'Chrome', 'Safari', 'Firefox', 'curl', 'wget', 'Wget')
REFERER_LABELS = ('referer', 'referrer')


class RegexGenerationError(ValueError):
    pass


@dataclass
class Token:
    value: str
    kind: str  # text, quoted or bracketed
    group_name: str | None = None


@dataclass
class GeneratedRegex:
    regex: str
    group_names: list[str] = field(default_factory=list)
    test_captures: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {'regex': self.regex, 'groupNames': self.group_names, 'testCaptures': self.test_captures}


def tokenize(line: str) -> list[Token]:
    """Split on spaces and tabs, keeping "..." and [...] sections as single tokens."""
    tokens: list[Token] = []
    current = ''
    quote = ''
    in_brackets = False

    def flush(kind: str = 'text'):
        nonlocal current
        if current.strip():
            tokens.append(Token(current.strip(), kind))
        current = ''

    for i, char in enumerate(line):
        escaped = i > 0 and line[i - 1] == '\\'

        if char in ('"', "'") and not escaped and not in_brackets:
            if quote and char == quote:
                current += char
                tokens.append(Token(current, 'quoted'))
                current = ''
                quote = ''
                continue
            if not quote:
                flush()
                quote = char
                current = char
                continue

        if not quote and not escaped:
            if char == '[' and not in_brackets:
                flush()
                in_brackets = True
                current = char
                continue
            if char == ']' and in_brackets:
                current += char
                tokens.append(Token(current, 'bracketed'))
                current = ''
                in_brackets = False
                continue

        if char in (' ', '\t') and not quote and not in_brackets:
            flush()
            continue

        current += char

    if current.strip():
        kind = 'quoted' if quote else 'bracketed' if in_brackets else 'text'
        tokens.append(Token(current.strip(), kind))
    return tokens


def classify_token(token: Token, previous: Token | None, before_previous: Token | None) -> tuple[str | None, str]:
    """Return (base group name or None, regex fragment) for a token.

    Fragments for quoted and bracketed tokens keep the delimiters outside
    the capture; the caller wraps the capture in a named group.
    """
    if token.kind == 'bracketed':
        return 'timestamp', r'\[([^\]]+)\]'

    if token.kind == 'quoted':
        content = token.value[1:-1]
        q = token.value[0]
        if REQUEST_LINE_RE.match(content):
            return 'request', f'{q}([^{q}]+){q}'
        labels = [t.value.lower() for t in (previous, before_previous) if t is not None]
        if any(label in REFERER_LABELS for label in labels):
            return 'referer', f'{q}([^{q}]*){q}'
        if any(marker in content for marker in USER_AGENT_MARKERS):
            return 'userAgent', f'{q}([^{q}]*){q}'
        return 'quoted', f'{q}([^{q}]*){q}'

    value = token.value
    if IPV4_RE.match(value):
        return 'ip', r'([\d\.]+)'
    if IPV6_RE.match(value):
        return 'ip', r'([\da-fA-F:]+)'
    if HTTP_METHOD_RE.match(value):
        return 'method', f'({re.escape(value)})'
    if STATUS_RE.match(value) and 100 <= int(value) < 600:
        return 'status', r'(\d{3})'
    if NUMBER_RE.match(value):
        if previous is not None and previous.group_name == 'status':
            return 'size', r'(\d+)'
        if (previous is not None and ':' in previous.value) or len(value) <= 5:
            return 'number', r'(\d+)'
        return 'size', r'(\d+)'
    if value.startswith('/') or value.startswith('http'):
        return 'url', r'([^\s"]+)'
    if value == '-':
        return None, '-'
    return 'field', r'([^\s"]+)'


def _named(fragment: str, name: str) -> str:
    """Turn the single capture of a fragment into a named group."""
    return fragment.replace('(', f'(?P<{name}>', 1)


def generate_regex(line: str) -> GeneratedRegex:
    """Generate a regex for a sample line and run it against the line.

    Raises RegexGenerationError for an empty line.
    """
    if not line or not line.strip():
        raise RegexGenerationError('Log line cannot be empty')

    tokens = tokenize(line)
    parts: list[str] = []
    group_names: list[str] = []
    name_counts: dict[str, int] = {}
    field_index = 0

    for i, token in enumerate(tokens):
        previous = tokens[i - 1] if i > 0 else None
        before_previous = tokens[i - 2] if i > 1 else None
        base_name, fragment = classify_token(token, previous, before_previous)

        if base_name is None:
            parts.append(re.escape(token.value))
        else:
            if base_name == 'field':
                base_name = f'field{field_index}'
                field_index += 1
            count = name_counts.get(base_name, 0)
            name_counts[base_name] = count + 1
            name = base_name if count == 0 else f'{base_name}{count}'
            token.group_name = name
            group_names.append(name)
            parts.append(_named(fragment, name))

    regex = '^' + r'\s+'.join(parts) + '$'

    match = re.match(regex, line.strip())
    captures = {k: v for k, v in match.groupdict().items() if v is not None} if match else {}
    return GeneratedRegex(regex=regex, group_names=group_names, test_captures=captures)
