#!/usr/bin/env python3
"""
stepcover - BDD step coverage analysis
Main entry point for scanning, validating and generating step definitions
"""

import sys
from pathlib import Path

import click

from stepcover import __version__
from stepcover.core.config_manager import DEFAULT_CONFIG_PATH, DEFAULT_ENVIRONMENT, ConfigManager
from stepcover.core.exceptions import StepcoverError
from stepcover.discovery.coverage_report import REPORT_FORMATS, render_coverage_report
from stepcover.discovery.step_discovery import DiscoveryOptions, StepDiscoveryEngine
from stepcover.parser.feature_parser import FeatureParser
from stepcover.utils.logger import set_log_level, setup_logger

# Initialize logger
logger = setup_logger(__name__)


def _write_output(text: str, output: str) -> None:
    if output:
        Path(output).write_text(text + '\n', encoding='utf-8')
        logger.info(f"Written to {output}")
    else:
        click.echo(text)


def _engine(config: ConfigManager) -> StepDiscoveryEngine:
    return StepDiscoveryEngine(
        options=DiscoveryOptions.from_config(config.section('discovery')),
        parser=FeatureParser.from_config(config.section('parser')),
    )


@click.group()
@click.version_option(__version__, prog_name='stepcover')
@click.option('--config', '-c', default=DEFAULT_CONFIG_PATH, help='Path to config file')
@click.option('--env', '-e', default=DEFAULT_ENVIRONMENT, help='Environment overlay to apply')
@click.option('--verbose', '-v', is_flag=True, help='Enable debug logging')
@click.pass_context
def cli(ctx, config, env, verbose):
    """
    stepcover - find missing and unused BDD step definitions

    Examples:
        # Coverage report for the current project
        stepcover scan

        # Fail the build below 80% coverage
        stepcover --env ci scan --fail-under 80

        # Skeletons for every missing step
        stepcover generate --output tests/steps/missing_steps.py
    """
    try:
        config_manager = ConfigManager(config, env)
        config_manager.load_config()
    except StepcoverError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(1)

    set_log_level('DEBUG' if verbose else config_manager.get('logging.level', 'INFO'))
    ctx.obj = config_manager


@cli.command()
@click.option('--root', '-r', default='.', type=click.Path(exists=True, file_okay=False), help='Project root')
@click.option('--format', '-f', 'report_format', type=click.Choice(REPORT_FORMATS), default=None,
              help='Report format (text/json)')
@click.option('--details/--no-details', default=None, help='List missing and unused steps')
@click.option('--output', '-o', default=None, help='Write the report to a file')
@click.option('--fail-under', type=float, default=None, help='Minimum coverage percentage')
@click.pass_obj
def scan(config, root, report_format, details, output, fail_under):
    """Report step coverage of a project"""
    report_format = report_format or config.get('report.format', 'text')
    details = config.get('report.include_details', True) if details is None else details
    fail_under = float(config.get('report.fail_under', 0) if fail_under is None else fail_under)

    try:
        result = _engine(config).discover_steps(root)
        report = render_coverage_report(
            result,
            format=report_format,
            include_details=details,
            color=output is None and report_format == 'text' and sys.stdout.isatty(),
        )
    except (StepcoverError, ValueError) as e:
        logger.error(f"Scan failed: {e}")
        sys.exit(1)

    _write_output(report, output)

    if result.coverage.coverage_percentage < fail_under:
        logger.error(f"Coverage {result.coverage.coverage_percentage}% is below {fail_under}%")
        sys.exit(1)


@cli.command()
@click.argument('files', nargs=-1, required=True, type=click.Path(exists=True, dir_okay=False))
@click.option('--strict/--no-strict', default=None, help='Warn about scenarios without Given, When or Then steps')
@click.pass_obj
def validate(config, files, strict):
    """Parse and validate feature files"""
    parser_config = dict(config.section('parser'))
    if strict is not None:
        parser_config['strict_validation'] = strict
    parser = FeatureParser.from_config(parser_config)

    failed = 0
    for file_path in files:
        try:
            feature = parser.parse_file(file_path)
        except (StepcoverError, OSError, UnicodeDecodeError) as e:
            logger.error(f"{file_path}: {e}")
            failed += 1
            continue

        validation = parser.validate_feature(feature)
        status = 'OK' if validation.is_valid else 'INVALID'
        click.echo(f"{file_path}: {status} ({validation.statistics.total_steps} steps)")
        for error in validation.errors:
            click.echo(f"  error: {error}")
        for warning in validation.warnings:
            click.echo(f"  warning: {warning}")

        if not validation.is_valid:
            failed += 1

    if failed:
        logger.error(f"{failed} of {len(files)} feature files failed validation")
        sys.exit(1)


@cli.command()
@click.option('--root', '-r', default='.', type=click.Path(exists=True, file_okay=False), help='Project root')
@click.option('--flat', is_flag=True, help='Do not group skeletons by feature file')
@click.option('--output', '-o', default=None, help='Write the skeletons to a file')
@click.pass_obj
def generate(config, root, flat, output):
    """Generate skeleton step definitions for missing steps"""
    try:
        engine = _engine(config)
        result = engine.discover_steps(root)
    except StepcoverError as e:
        logger.error(f"Generation failed: {e}")
        sys.exit(1)

    if not result.missing:
        logger.info("No missing step definitions")
        return

    logger.info(f"Generating {len(result.missing)} missing step definitions")
    _write_output(engine.generate_missing_steps(result.missing, group_by_file=not flat).rstrip('\n'), output)


@cli.command()
@click.argument('file', type=click.Path(exists=True, dir_okay=False))
@click.pass_obj
def patterns(config, file):
    """Print the distinct step patterns of a feature file"""
    parser = FeatureParser.from_config(config.section('parser'))
    try:
        feature = parser.parse_file(file)
    except (StepcoverError, OSError, UnicodeDecodeError) as e:
        logger.error(f"{file}: {e}")
        sys.exit(1)

    for step_pattern in parser.extract_step_patterns(feature):
        click.echo(step_pattern.full_pattern)


def main():
    cli(obj=None)


if __name__ == '__main__':
    main()
