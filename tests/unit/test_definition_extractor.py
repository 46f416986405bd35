"""Unit tests for step definition extractor"""
from stepcover.discovery.definition_extractor import DefinitionExtractor, extract_definitions

DECORATED_STEPS = r'''
from stepcover import given, when, then


@given("I have {int} apples")
def i_have_apples(context, count):
    context.state["apples"] = count


@when('I add {string} apples')
def add_apples(context, amount):
    raise NotImplementedError("Step definition not implemented")


@then(parsers.parse("I should have {int} apples"))
def check_apples(context, count):
    assert context.state["apples"] == count


@registry.then("I see \"quoted\" text")
async def quoted(context):
    pass
'''

CALL_STEPS = '''
def have_apples(context, count):
    pass


def not_done(context):
    raise NotImplementedError


Given("I have {int} apples", have_apples)
When('I eat {int} apples', lambda context, count: None)
Then("nothing is left", not_done)
registry.register("Then", "the basket is empty", check_nothing)
'''


def test_decorated_definitions():
    definitions = extract_definitions(DECORATED_STEPS, 'tests/steps/apple_steps.py')

    assert [(d.keyword, d.pattern) for d in definitions] == [
        ('Given', 'I have {int} apples'),
        ('When', 'I add {string} apples'),
        ('Then', 'I should have {int} apples'),
        ('Then', 'I see "quoted" text'),
    ]
    assert [d.function_name for d in definitions] == ['i_have_apples', 'add_apples', 'check_apples', 'quoted']
    assert definitions[0].line_number == 5
    assert definitions[0].file == 'tests/steps/apple_steps.py'
    assert definitions[0].parameters == ('int',)
    assert definitions[0].handler is None


def test_stub_bodies_are_not_implemented():
    definitions = extract_definitions(DECORATED_STEPS)

    assert [d.implemented for d in definitions] == [True, False, True, False]


def test_call_style_definitions():
    definitions = DefinitionExtractor().extract_definitions(CALL_STEPS, 'steps.py')

    assert [(d.keyword, d.pattern, d.function_name) for d in definitions] == [
        ('Given', 'I have {int} apples', 'have_apples'),
        ('When', 'I eat {int} apples', 'anonymous'),
        ('Then', 'nothing is left', 'not_done'),
        ('Then', 'the basket is empty', 'check_nothing'),
    ]
    assert [d.implemented for d in definitions] == [False, True, False, True]
    assert definitions[0].line_number == 10


def test_no_definitions():
    assert extract_definitions('import os\n\n\ndef helper():\n    return 1\n') == []


PLACEHOLDER_STEPS = '''
@given("a thing")
def a_thing(context):
    # TODO
    pass


@given("b thing")
def b_thing(context):
    raise RuntimeError("placeholder")


@given("c thing")
def c_thing(context):
    """Set up c"""
    ...


@given("d thing")
def d_thing(context):
    if not context.ready:
        raise RuntimeError("not ready")
    context.state["d"] = True
'''


def test_placeholder_bodies_are_not_implemented():
    definitions = extract_definitions(PLACEHOLDER_STEPS)

    assert [(d.pattern, d.implemented) for d in definitions] == [
        ('a thing', False),
        ('b thing', False),
        ('c thing', False),
        ('d thing', True),
    ]
