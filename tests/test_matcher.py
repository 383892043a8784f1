"""Tests for TXT/REGEXP pattern matching."""
import pytest

from macros.matcher import PatternFormatError, parse_source, search, search_regexp, search_text


def test_text_wildcard():
    assert not search_text('Hello World', 'Hello*Foo').found
    assert search_text('Hello World Foo', 'Hello*Foo').found


def test_text_space_matches_any_whitespace():
    result = search_text('total:\t\n  42', 'total: 42')

    assert result.found
    assert result.index == 0


def test_text_is_literal_apart_from_placeholders():
    assert search_text('cost (USD) $5.00', '(USD) $5.00').found
    assert not search_text('cost 5x00', '5.00').found


def test_text_ignore_case():
    assert not search_text('HELLO', 'hello').found
    assert search_text('HELLO', 'hello', ignore_case=True).found


def test_regexp_returns_first_group():
    result = search_regexp('Price: $42.99', r'\$(\d+\.\d+)')

    assert result.found
    assert result.match == '42.99'
    assert result.groups == ('42.99',)


def test_regexp_without_groups_returns_whole_match():
    assert search_regexp('abc 123 def', r'\d+').match == '123'


def test_regexp_extract_template():
    result = search_regexp('John Smith', r'(\w+) (\w+)', extract_pattern='$2, $1 [$3]')

    assert result.match == 'Smith, John []'


def test_invalid_regexp_reports_error():
    result = search_regexp('anything', '[invalid')

    assert not result.found
    assert result.error


def test_parse_source_prefixes():
    assert parse_source('TXT:abc') == ('TXT', 'abc')
    assert parse_source('text:a:b') == ('TXT', 'a:b')
    assert parse_source('REGEX:\\d') == ('REGEXP', '\\d')
    assert parse_source('TXT:"a b"') == ('TXT', 'a b')
    assert parse_source('REGEXP:"\\d \\d"') == ('REGEXP', '\\d \\d')

    with pytest.raises(PatternFormatError):
        parse_source('abc')
    with pytest.raises(PatternFormatError):
        parse_source('XPATH://div')


def test_search_dispatches_on_prefix():
    assert search('id=17;', 'REGEXP:id=(\\d+)').match == '17'
    assert search('id=17;', 'TXT:id=*;').match == 'id=17;'
