"""Unit tests for pattern compiler"""
import pytest

from stepcover.parser.pattern_compiler import (
    coerce_argument,
    coerce_arguments,
    compile_to_matcher,
    extract_parameter_names,
    matches,
    parameterize,
    placeholder_types,
)


def test_parameterize_integer():
    assert parameterize('I have 2 apples') == 'I have {int} apples'


def test_parameterize_float_before_integer():
    assert parameterize('the price is 2.50 euro') == 'the price is {float} euro'


def test_parameterize_quoted_strings():
    assert parameterize('I click the "Login" button') == 'I click the {string} button'
    assert parameterize("I type 'hello' into the field") == 'I type {string} into the field'


def test_parameterize_quoted_number_becomes_string():
    assert parameterize('I add "3" apples') == 'I add {string} apples'


def test_parameterize_leaves_free_text_unchanged():
    assert parameterize('I click the Submit button') == 'I click the Submit button'


def test_parameterize_mixed_literals_round_trip():
    text = 'I pay 3 coins for 2.5 kg of "golden" apples'
    pattern = parameterize(text)

    assert pattern.count('{int}') == 1
    assert pattern.count('{float}') == 1
    assert pattern.count('{string}') == 1
    assert matches(pattern, text)


def test_extract_parameter_names_disambiguates_repeats():
    pattern = 'move {int} from {string} to {string} after {int} and {int} seconds at {float}'

    assert extract_parameter_names(pattern) == ['int', 'string', 'string2', 'int2', 'int3', 'float']


def test_extract_parameter_names_without_placeholders():
    assert extract_parameter_names('the basket is empty') == []


def test_matcher_is_anchored():
    matcher = compile_to_matcher('I have {int} apples')

    assert matcher.match('I have 12 apples')
    assert not matcher.match('I have 12 apples today')
    assert not matcher.match('Now I have 12 apples')


def test_matcher_treats_other_braces_literally():
    matcher = compile_to_matcher('the payload is {name} with {int} items')

    assert matcher.match('the payload is {name} with 3 items')
    assert not matcher.match('the payload is bob with 3 items')


def test_matcher_escapes_regex_characters():
    assert matches('is it (really) done?', 'is it (really) done?')
    assert not matches('is it (really) done?', 'is it really done')


def test_integer_placeholder_rejects_float():
    assert not matches('I weigh {int} kg', 'I weigh 2.5 kg')
    assert matches('I weigh {float} kg', 'I weigh 2.5 kg')


def test_string_placeholder_requires_quotes():
    assert matches('I see {string}', 'I see "hello"')
    assert matches('I see {string}', "I see 'hello'")
    assert not matches('I see {string}', 'I see hello')


def test_placeholder_types_in_order():
    assert placeholder_types('{string} then {float} then {int}') == ['string', 'float', 'int']


@pytest.mark.parametrize('placeholder, raw, expected', [
    ('int', '42', 42),
    ('int', '-7', -7),
    ('float', '2.5', 2.5),
    ('float', '.5', 0.5),
    ('string', '"quoted"', 'quoted'),
    ('string', "'single'", 'single'),
])
def test_coerce_argument(placeholder, raw, expected):
    value = coerce_argument(placeholder, raw)

    assert value == expected
    assert type(value) is type(expected)


def test_coerce_arguments_follow_pattern_order():
    pattern = 'I move {int} boxes of {float} kg to {string}'
    match = compile_to_matcher(pattern).match('I move 3 boxes of 1.5 kg to "the shed"')

    assert match is not None
    assert coerce_arguments(pattern, match.groups()) == [3, 1.5, 'the shed']


def test_parameterize_escapes_literal_placeholders():
    text = 'the template shows {int} literally and 5 items'
    pattern = parameterize(text)

    assert pattern == 'the template shows {{int}} literally and {int} items'
    assert extract_parameter_names(pattern) == ['int']
    assert matches(pattern, text)
    assert not matches(pattern, 'the template shows 7 literally and 5 items')


def test_parameterize_escapes_braces_around_numbers():
    text = 'the set {5} has {"a"}'
    pattern = parameterize(text)

    assert pattern == 'the set {{{int}}} has {{{string}}}'
    assert placeholder_types(pattern) == ['int', 'string']
    assert compile_to_matcher(pattern).match(text).groups() == ('5', '"a"')


def test_doubled_braces_match_single_brace():
    assert matches('render {{string}} as {string}', 'render {string} as "text"')
    assert not matches('render {{string}} as {string}', 'render "x" as "text"')
