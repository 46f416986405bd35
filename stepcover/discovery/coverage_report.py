"""
Coverage report rendering
Text and JSON views of a discovery result
"""

import json
from typing import TYPE_CHECKING, Dict, List

from colorama import Fore, Style

if TYPE_CHECKING:
    from stepcover.discovery.step_discovery import DiscoveryResult

REPORT_FORMATS = ('text', 'json')


def _paint(text: str, color: str, enabled: bool) -> str:
    return f"{color}{text}{Style.RESET_ALL}" if enabled else text


def _percentage_color(value: float) -> str:
    if value >= 90:
        return Fore.GREEN
    if value >= 60:
        return Fore.YELLOW
    return Fore.RED


def coverage_to_dict(result: 'DiscoveryResult') -> Dict:
    """JSON-ready view of a discovery result"""
    return {
        'coverage': result.coverage.to_dict(),
        'summary': {
            'totalSteps': len(result.usage),
            'totalDefinitions': len(result.definitions),
            'missingSteps': len(result.missing),
            'unusedDefinitions': len(result.unused),
        },
        'missing': [step.to_dict() for step in result.missing],
        'unused': [definition.to_dict() for definition in result.unused],
        'definitions': [definition.to_dict() for definition in result.definitions],
        'usage': [use.to_dict() for use in result.usage],
        'validation': {path: validation.to_dict() for path, validation in result.validation.items()},
        'skipped_files': [{'file': path, 'reason': reason} for path, reason in result.skipped_files],
    }


def render_text_report(result: 'DiscoveryResult', include_details: bool = True, color: bool = False) -> str:
    coverage = result.coverage
    lines: List[str] = []

    title = 'BDD Step Coverage Report'
    lines.append(_paint(title, Style.BRIGHT, color))
    lines.append('=' * len(title))
    lines.append('')
    lines.append(f"Total Steps: {coverage.total_steps}")
    lines.append(f"Covered Steps: {coverage.covered_steps}")
    lines.append('Coverage: ' + _paint(f"{coverage.coverage_percentage}%",
                                       _percentage_color(coverage.coverage_percentage), color))
    lines.append('Implementation: ' + _paint(f"{coverage.implementation_percentage}%",
                                             _percentage_color(coverage.implementation_percentage), color))
    lines.append('')
    lines.append('Step Distribution:')

    for keyword, stats in coverage.keyword_stats.items():
        lines.append(f"  {keyword}: {stats['count']} ({stats['percentage']}%)")

    if not include_details:
        return '\n'.join(lines)

    if result.missing:
        lines.append('')
        lines.append(_paint(f"Missing Step Definitions ({len(result.missing)}):", Fore.RED, color))
        for step in result.missing:
            lines.append(f"  {step.keyword} {step.step} ({step.feature}:{step.line_number})")

    if result.unused:
        lines.append('')
        lines.append(_paint(f"Unused Step Definitions ({len(result.unused)}):", Fore.YELLOW, color))
        for definition in result.unused:
            lines.append(f"  {definition.keyword} {definition.pattern} ({definition.file}:{definition.line_number})")

    problems = {path: validation for path, validation in result.validation.items()
                if validation.errors or validation.warnings}
    if problems:
        lines.append('')
        lines.append('Validation:')
        for path, validation in problems.items():
            lines.append(f"  {path}")
            for error in validation.errors:
                lines.append('    ' + _paint(f"error: {error}", Fore.RED, color))
            for warning in validation.warnings:
                lines.append('    ' + _paint(f"warning: {warning}", Fore.YELLOW, color))

    if result.skipped_files:
        lines.append('')
        lines.append(f"Skipped Files ({len(result.skipped_files)}):")
        for path, reason in result.skipped_files:
            lines.append(f"  {path}: {reason}")

    return '\n'.join(lines)


def render_coverage_report(result: 'DiscoveryResult', format: str = 'text',
                           include_details: bool = True, color: bool = False) -> str:
    """Render a discovery result as a text or JSON report"""
    if format == 'json':
        return json.dumps(coverage_to_dict(result), indent=2)
    if format == 'text':
        return render_text_report(result, include_details=include_details, color=color)
    raise ValueError(f"Unsupported report format: {format}")
