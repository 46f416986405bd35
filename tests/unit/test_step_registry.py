"""Unit tests for step registry"""
import pytest

import stepcover
from stepcover.core.exceptions import DuplicateStepError, NoMatchingStepError
from stepcover.registry.step_registry import StepRegistry, is_stub_body, normalize_keyword


@pytest.fixture
def registry():
    return StepRegistry()


def have_apples(context, count):
    context.state['apples'] = count


def not_ready(context):
    raise NotImplementedError("Step definition not implemented: Then it works")


def test_register_and_match(registry):
    definition = registry.register('Given', 'I have {int} apples', have_apples)

    step_match = registry.match('Given', 'I have 2 apples')

    assert step_match.definition == definition
    assert step_match.arguments == (2,)
    assert definition.parameters == ('int',)
    assert definition.function_name == 'have_apples'
    assert definition.file.endswith('test_step_registry.py')
    assert definition.implemented


def test_duplicate_registration_raises(registry):
    registry.register('Given', 'I have {int} apples', have_apples)

    with pytest.raises(DuplicateStepError) as error:
        registry.register('Given', 'I have {int} apples', lambda context, count: None)

    assert error.value.key == ('Given', 'I have {int} apples')
    assert len(registry) == 1


def test_same_pattern_under_other_keyword_is_allowed(registry):
    registry.register('Given', 'the basket is empty', have_apples)
    registry.register('Then', 'the basket is empty', have_apples)

    assert len(registry) == 2
    assert ('Then', 'the basket is empty') in registry


def test_empty_registry_raises_no_matching_step(registry):
    with pytest.raises(NoMatchingStepError) as error:
        registry.match('When', 'I do something')

    assert error.value.keyword == 'When'
    assert error.value.text == 'I do something'
    assert registry.find('When', 'I do something') is None


def test_first_registered_match_wins(registry):
    registry.register('When', 'I pick {string}', lambda context, name: 'specific')
    registry.register('When', 'I pick {string}{string}', lambda context, a, b: 'general')
    registry.register('When', 'I pick "apples"', lambda context: 'literal')

    step_match = registry.match('When', 'I pick "apples"')

    assert step_match.definition.pattern == 'I pick {string}'
    assert step_match.arguments == ('apples',)


def test_keyword_must_match(registry):
    registry.register('Given', 'I have {int} apples', have_apples)

    assert registry.find('Then', 'I have 2 apples') is None
    assert registry.find('given', 'I have 2 apples') is not None


def test_stub_handler_is_not_implemented(registry):
    definition = registry.register('Then', 'it works', not_ready)

    assert not definition.implemented


def pending(context):
    pass


def broken(context):
    raise RuntimeError('placeholder')


def reminder(context):
    # TODO: count the apples
    context.state['apples'] = 0


@pytest.mark.parametrize('handler', [pending, broken, reminder])
def test_placeholder_handlers_are_not_implemented(registry, handler):
    definition = registry.register('Then', 'it is pending', handler)

    assert not definition.implemented


def test_explicit_implemented_flag(registry):
    definition = registry.register('Then', 'it works', not_ready, implemented=True)

    assert definition.implemented


def test_decorators(registry):
    @registry.given('I have {float} kg')
    def have_weight(context, weight):
        return weight

    @registry.then('the total is {int}')
    def total(context, value):
        return value

    assert have_weight(None, 1.5) == 1.5
    assert [definition.keyword for definition in registry] == ['Given', 'Then']
    assert registry.match('Given', 'I have 1.5 kg').arguments == (1.5,)


def test_invalid_keyword(registry):
    with pytest.raises(ValueError):
        registry.register('And', 'something', have_apples)

    with pytest.raises(ValueError):
        normalize_keyword('Whenever')


def test_normalize_keyword():
    assert normalize_keyword(' then ') == 'Then'


def test_clear(registry):
    registry.register('Given', 'I have {int} apples', have_apples)
    registry.clear()

    assert len(registry) == 0
    assert registry.definitions() == []


def test_to_dict(registry):
    definition = registry.register('Given', 'I have {int} apples', have_apples, file='steps.py', line_number=3)

    assert definition.to_dict() == {
        'keyword': 'Given',
        'pattern': 'I have {int} apples',
        'file': 'steps.py',
        'lineNumber': 3,
        'functionName': 'have_apples',
        'parameters': ['int'],
        'implemented': True,
    }


@pytest.mark.parametrize('body, expected', [
    ('    raise NotImplementedError', True),
    ('    raise AssertionError("Not implemented yet")', True),
    ('    context.state["x"] = 1', False),
    ('    pass', True),
    ('    """Docstring only"""', True),
    ('    ...', True),
    ('    raise RuntimeError("placeholder")', True),
    ('    # TODO: wire up the basket\n    context.state["x"] = 1', True),
    ('    if not ready:\n        raise RuntimeError()\n    return 1', False),
    ('    return (', False),
])
def test_is_stub_body(body, expected):
    assert is_stub_body(body) is expected


def test_default_registry_decorators():
    stepcover.clear_registry()
    try:
        @stepcover.when('I press {string}')
        def press(context, key):
            return key

        assert ('When', 'I press {string}') in stepcover.default_registry
        assert stepcover.default_registry.match('When', 'I press "enter"').arguments == ('enter',)
    finally:
        stepcover.clear_registry()

    assert len(stepcover.default_registry) == 0
