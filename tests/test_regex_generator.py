"""Tests for regex generation from a sample line"""

import re

import pytest

from logpeek.regex_generator import RegexGenerationError, generate_regex, tokenize


ACCESS_LINE = '192.168.1.1 - - [01/Jan/2024:00:00:00 +0100] "GET /index.php HTTP/1.1" 200 1234'


class TestTokenize:
    """Tests for tokenize()"""

    def test_quoted_and_bracketed_kept_whole(self):
        tokens = tokenize(ACCESS_LINE)
        assert [t.kind for t in tokens] == ['text', 'text', 'text', 'bracketed', 'quoted', 'text', 'text']
        assert tokens[3].value == '[01/Jan/2024:00:00:00 +0100]'
        assert tokens[4].value == '"GET /index.php HTTP/1.1"'

    def test_tabs_separate_tokens(self):
        assert [t.value for t in tokenize('a\tb  c')] == ['a', 'b', 'c']

    def test_unterminated_quote(self):
        tokens = tokenize('x "open ended')
        assert tokens[-1].kind == 'quoted'


class TestGenerateRegex:
    """Tests for generate_regex()"""

    def test_access_line_captures(self):
        generated = generate_regex(ACCESS_LINE)
        assert generated.test_captures == {
            'ip': '192.168.1.1',
            'timestamp': '01/Jan/2024:00:00:00 +0100',
            'request': 'GET /index.php HTTP/1.1',
            'status': '200',
            'size': '1234',
        }
        assert generated.group_names == ['ip', 'timestamp', 'request', 'status', 'size']

    def test_generated_regex_matches_similar_lines(self):
        regex = re.compile(generate_regex(ACCESS_LINE).regex)
        match = regex.match('10.0.0.7 - - [02/Feb/2024:10:11:12 +0000] "POST /login HTTP/2.0" 302 0')
        assert match
        assert match.group('status') == '302'

    def test_combined_line_referer_and_user_agent(self):
        line = ACCESS_LINE + ' "http://example.com/" "Mozilla/5.0 (X11)"'
        captures = generate_regex(line).test_captures
        assert captures['quoted'] == 'http://example.com/'
        assert captures['userAgent'] == 'Mozilla/5.0 (X11)'

    def test_labelled_referer(self):
        captures = generate_regex('referer "http://a.example/"').test_captures
        assert captures['referer'] == 'http://a.example/'

    def test_ipv6_and_url(self):
        captures = generate_regex('2001:db8::1 /static/app.js').test_captures
        assert captures['ip'] == '2001:db8::1'
        assert captures['url'] == '/static/app.js'

    def test_plain_words_become_numbered_fields(self):
        generated = generate_regex('alpha beta')
        assert generated.group_names == ['field0', 'field1']
        assert generated.test_captures == {'field0': 'alpha', 'field1': 'beta'}

    def test_duplicate_names_are_suffixed(self):
        generated = generate_regex('10.0.0.1 10.0.0.2')
        assert generated.group_names == ['ip', 'ip1']

    def test_hex_word_is_not_an_ip(self):
        assert generate_regex('deadbeef').group_names == ['field0']

    def test_empty_line(self):
        with pytest.raises(RegexGenerationError):
            generate_regex('   ')

    def test_to_dict(self):
        data = generate_regex('alpha').to_dict()
        assert set(data) == {'regex', 'groupNames', 'testCaptures'}
