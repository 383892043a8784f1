"""Tests for IF condition evaluation."""
from macros.conditions import evaluate_condition
from macros.variables import VariableStore


def test_numeric_comparisons():
    store = VariableStore()

    assert evaluate_condition('5>3', store)
    assert not evaluate_condition('3>5', store)
    assert evaluate_condition('10 >= 10', store)
    assert evaluate_condition('2 < 10', store)


def test_equality_is_numeric_when_both_sides_are_numbers():
    store = VariableStore()

    assert evaluate_condition('10 == 10.0', store)
    assert not evaluate_condition('abc == ABC', store)
    assert evaluate_condition('abc != ABC', store)


def test_variables_are_resolved():
    store = VariableStore()
    store.set('!VAR1', 'hello world')
    store.set('count', 7)

    assert evaluate_condition('{{!VAR1}} CONTAINS world', store)
    assert evaluate_condition('"{{!VAR1}}" !CONTAINS bye', store)
    assert evaluate_condition('count > 5', store)


def test_non_numeric_ordering_is_false():
    store = VariableStore()

    assert not evaluate_condition('abc > 1', store)
    assert not evaluate_condition('abc < 1', store)


def test_truthiness_without_operator():
    store = VariableStore()
    store.set('!VAR1', '0')
    store.set('!VAR2', 'yes')

    assert not evaluate_condition('{{!VAR1}}', store)
    assert evaluate_condition('{{!VAR2}}', store)
    assert not evaluate_condition('{{!VAR3}}', store)
