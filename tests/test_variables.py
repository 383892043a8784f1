"""Tests for the variable store."""
from datetime import datetime

from macros.variables import VariableStore, is_enabled, stringify, to_number


def test_expand_set_and_unset_variables():
    store = VariableStore()
    store.set('!VAR1', 'x')

    expanded, used = store.expand('a={{!VAR1}} b={{missing}}')

    assert expanded == 'a=x b='
    assert used == {'!VAR1', 'missing'}


def test_set_returns_previous_value():
    store = VariableStore()
    before = store.get('!VAR2')

    result = store.set('!VAR2', 'new')

    assert result.success
    assert result.previous_value == before
    assert store.get('!VAR2') == store.get('!VAR2') == 'new'


def test_lookup_is_case_insensitive_and_keeps_first_case():
    store = VariableStore()
    store.set('myVar', 1)
    store.set('MYVAR', 2)

    assert store.get('myvar') == 2
    assert 'myVar' in store.snapshot()


def test_expand_is_single_pass():
    store = VariableStore()
    store.set('A', '{{B}}')
    store.set('B', 'boom')

    assert store.expand('{{A}}')[0] == '{{B}}'


def test_read_only_variables_refuse_set_but_accept_set_system():
    store = VariableStore()

    refused = store.set('!URLCURRENT', 'https://evil')
    assert not refused.success
    assert store.get('!URLCURRENT') == ''

    store.set_system('!URLCURRENT', 'https://example.com')
    assert store.get('!URLCURRENT') == 'https://example.com'


def test_extract_accumulates_and_cannot_be_assigned():
    store = VariableStore()
    store.add_extract('one')
    store.add_extract(2)

    assert store.get('!EXTRACT') == 'one[EXTRACT]2'
    assert not store.set('!EXTRACT', 'x').success

    store.clear_extract()
    assert store.extract_values() == []


def test_now_uses_injected_clock():
    store = VariableStore(now=lambda: datetime(2024, 1, 2, 3, 4, 5))

    assert store.get('!NOW:yyyy-mm-dd hh:nn:ss') == '2024-01-02 03:04:05'
    assert store.expand('{{!NOW:yymmdd}}')[0] == '240102'


def test_reset_restores_defaults():
    store = VariableStore()
    store.set('!TIMEOUT', 5)
    store.set('custom', 'x')

    store.reset()

    assert store.get('!TIMEOUT') == 60
    assert store.get('custom') is None


def test_value_helpers():
    assert stringify(True) == 'true'
    assert stringify(60.0) == '60'
    assert stringify(None) == ''
    assert to_number(' 2.5 ') == 2.5
    assert to_number('') == 0
    assert is_enabled('yes') and is_enabled('TRUE') and not is_enabled('NO')
