"""Integration tests for complete discovery flow"""
import json

import pytest

from stepcover.discovery.step_discovery import (
    DiscoveryOptions,
    StepDiscoveryEngine,
    discover_steps,
    generate_coverage_report,
    generate_missing_steps,
)
from stepcover.parser.feature_parser import FeatureParser
from stepcover.registry.step_registry import StepRegistry

APPLE_STEPS = '''from stepcover import given, when, then


@given("the basket is empty")
def empty_basket(context):
    context.state["apples"] = 0


@given("I have {int} apples")
def have_apples(context, count):
    context.state["apples"] = count


@when('I add {string} apples')
def add_apples(context, amount):
    context.state["apples"] += int(amount)


@then("I should have {int} apples")
def check_apples(context, count):
    assert context.state["apples"] == count


@then("the basket is full")
def basket_full(context):
    raise NotImplementedError("Step definition not implemented: Then the basket is full")


@when("I eat {int} apples")
def eat_apples(context, count):
    context.state["apples"] -= count
'''

APPLES_FEATURE = '''Feature: Apples
  Background:
    Given the basket is empty

  Scenario: Add
    Given I have 2 apples
    When I add "3" apples
    Then I should have 5 apples
    And the basket is full

  Scenario: Click
    When I click the Submit button
'''

OUTLINE_FEATURE = '''Feature: Pears
  Scenario Outline: Count pears
    Given I have <count> pears
    Then I should have <count> pears

    Examples:
      | count |
      | 1     |

    Examples:
      | count |
      | 2     |
'''


def write(path, content):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding='utf-8')
    return path


@pytest.fixture
def project(tmp_path):
    write(tmp_path / 'tests' / 'steps' / 'apple_steps.py', APPLE_STEPS)
    write(tmp_path / 'features' / 'apples.feature', APPLES_FEATURE)
    return tmp_path


def test_discover_steps(project):
    result = discover_steps(project)
    coverage = result.coverage

    assert len(result.definitions) == 6
    assert len(result.usage) == 6
    assert coverage.total_steps == 6
    assert coverage.covered_steps == 5
    assert coverage.covered_steps + len(result.missing) == coverage.total_steps
    assert coverage.coverage_percentage == 83.33
    assert coverage.implemented_definitions == 5
    assert coverage.implementation_percentage == 83.33
    assert coverage.keyword_stats['And'] == {'count': 1, 'percentage': 16.67}
    assert result.skipped_files == ()


def test_missing_and_unused(project):
    result = discover_steps(project)

    assert len(result.missing) == 1
    missing = result.missing[0]
    assert missing.step == 'I click the Submit button'
    assert missing.keyword == 'When'
    assert missing.scenario == 'Click'
    assert missing.line_number == 12
    assert missing.feature == str(project / 'features' / 'apples.feature')
    assert missing.suggested_pattern == 'I click the Submit button'

    assert [definition.pattern for definition in result.unused] == ['I eat {int} apples']
    assert all(definition.pattern != 'I have {int} apples' for definition in result.unused)


def test_usage_provenance(project):
    usage = discover_steps(project).usage

    assert usage[0].scenario == 'Background'
    assert usage[0].step == 'the basket is empty'
    assert usage[4].keyword == 'And'
    assert usage[4].effective_keyword == 'Then'


def test_validation_results_are_kept(project):
    write(project / 'features' / 'broken.feature', 'Feature: Broken\n')

    result = discover_steps(project)

    broken = str(project / 'features' / 'broken.feature')
    assert not result.validation[broken].is_valid
    assert result.validation[str(project / 'features' / 'apples.feature')].is_valid


def test_no_features_is_full_coverage(tmp_path):
    write(tmp_path / 'tests' / 'steps' / 'apple_steps.py', APPLE_STEPS)

    result = discover_steps(tmp_path)

    assert result.coverage.total_steps == 0
    assert result.coverage.coverage_percentage == 100.0
    assert len(result.unused) == 6


def test_unreadable_feature_is_skipped(project):
    binary = project / 'features' / 'binary.feature'
    binary.write_bytes(b'\xff\xfe\x00Feature: \x80\x81')

    result = discover_steps(project)

    assert [path for path, _ in result.skipped_files] == [str(binary)]
    assert result.coverage.total_steps == 6


def test_strict_structure_errors_are_skipped(project):
    write(project / 'features' / 'loose.feature', 'Given an orphan step\n')
    engine = StepDiscoveryEngine(parser=FeatureParser(strict_structure=True))

    result = engine.discover_steps(project)

    assert [path for path, _ in result.skipped_files] == [str(project / 'features' / 'loose.feature')]


def test_parallel_discovery_matches_sequential(project):
    write(project / 'features' / 'pears.feature', OUTLINE_FEATURE)
    write(project / 'features' / 'nested' / 'more.feature', APPLES_FEATURE)

    sequential = StepDiscoveryEngine().discover_steps(project)
    parallel = StepDiscoveryEngine(DiscoveryOptions(parallel=4)).discover_steps(project)

    assert parallel.usage == sequential.usage
    assert parallel.missing == sequential.missing
    assert parallel.coverage == sequential.coverage


def test_multiple_examples_blocks_are_counted(project):
    path = write(project / 'features' / 'pears.feature', OUTLINE_FEATURE)

    result = discover_steps(project)

    assert result.validation[str(path)].statistics.examples == 2
    assert {step.step for step in result.missing} >= {'I have <count> pears'}


def test_registry_definitions_are_included(project):
    registry = StepRegistry()
    registry.register('When', 'I click the Submit button', lambda context: None)
    registry.register('Given', 'I have {int} apples', lambda context, count: None)

    result = StepDiscoveryEngine(registry=registry).discover_steps(project)

    assert result.missing == ()
    assert len(result.definitions) == 7
    assert result.definitions[-1].pattern == 'I click the Submit button'


def test_custom_directories(tmp_path):
    write(tmp_path / 'acceptance' / 'apples.feature', APPLES_FEATURE)
    write(tmp_path / 'glue' / 'apples.py', APPLE_STEPS)
    options = DiscoveryOptions(
        step_directories=['glue'],
        feature_directories=['acceptance'],
        step_file_patterns=['*.py'],
    )

    result = StepDiscoveryEngine(options).discover_steps(tmp_path)

    assert result.coverage.covered_steps == 5


def test_generated_steps_close_the_gap(project):
    result = discover_steps(project)
    code = generate_missing_steps(result.missing)

    assert "@when('I click the Submit button')" in code
    assert 'def i_click_the_submit_button(context):' in code
    assert f"# Missing step definitions for {project / 'features' / 'apples.feature'}" in code

    write(project / 'tests' / 'steps' / 'generated_steps.py', code)
    regenerated = discover_steps(project)

    assert regenerated.missing == ()
    assert regenerated.coverage.coverage_percentage == 100.0
    assert regenerated.coverage.implemented_definitions == 5
    assert regenerated.coverage.total_definitions == 7


def test_reports(project):
    result = discover_steps(project)

    text = generate_coverage_report(result)
    data = json.loads(generate_coverage_report(result, format='json'))

    assert 'Coverage: 83.33%' in text
    assert 'Missing Step Definitions (1):' in text
    assert data['summary']['missingSteps'] == 1
    assert data['coverage']['coveredSteps'] == 5


def test_find_definitions_and_usage(project):
    engine = StepDiscoveryEngine()

    definitions = engine.find_step_definitions(project)
    usage = engine.find_step_usage(project)

    assert [definition.function_name for definition in definitions][:2] == ['empty_basket', 'have_apples']
    assert definitions[0].line_number == 4
    assert [use.step for use in usage][-1] == 'I click the Submit button'
