"""
Pattern compiler
Converts between literal step text and parameterized step patterns
"""

import re
from functools import lru_cache
from typing import Any, List, Sequence

PLACEHOLDER_TYPES = ('int', 'float', 'string')

# Capture expression for each placeholder type
PLACEHOLDER_EXPRESSIONS = {
    'int': r'(-?\d+)',
    'float': r'(-?\d*\.?\d+)',
    'string': r'("[^"]*"|\'[^\']*\')',
}

# Doubled braces are literal braces, single braces only delimit placeholders
_TOKEN_RE = re.compile(r'\{\{|\}\}|\{(int|float|string)\}')

# Order matters: a float must not be partially consumed by the integer rule
_PARAMETERIZE_RULES = (
    (re.compile(r'\d+\.\d+'), '{float}'),
    (re.compile(r'\d+'), '{int}'),
    (re.compile(r'"([^"]+)"'), '{string}'),
    (re.compile(r"'([^']+)'"), '{string}'),
)


def escape_braces(text: str) -> str:
    """Double every brace so literal text never reads as a placeholder"""
    return text.replace('{', '{{').replace('}', '}}')


def parameterize(text: str) -> str:
    """Replace float, integer and quoted literals with typed placeholders"""
    pattern = escape_braces(text)
    for expression, placeholder in _PARAMETERIZE_RULES:
        pattern = expression.sub(placeholder, pattern)
    return pattern


def placeholder_types(pattern: str) -> List[str]:
    """Placeholder types of a pattern, left to right"""
    return [match.group(1) for match in _TOKEN_RE.finditer(pattern) if match.group(1)]


def extract_parameter_names(pattern: str) -> List[str]:
    """Name placeholders left to right: int, int2, int3, string, ..."""
    counts = {placeholder: 0 for placeholder in PLACEHOLDER_TYPES}
    names = []

    for placeholder in placeholder_types(pattern):
        counts[placeholder] += 1
        count = counts[placeholder]
        names.append(placeholder if count == 1 else f"{placeholder}{count}")

    return names


@lru_cache(maxsize=1024)
def compile_to_matcher(pattern: str) -> 're.Pattern[str]':
    """Build an anchored regular expression for a step pattern

    Only {int}, {float} and {string} become capture groups. Doubled braces
    match a single literal brace, every other character is matched literally.
    """
    parts = []
    position = 0

    for match in _TOKEN_RE.finditer(pattern):
        parts.append(re.escape(pattern[position:match.start()]))
        if match.group(1):
            parts.append(PLACEHOLDER_EXPRESSIONS[match.group(1)])
        else:
            parts.append(re.escape(match.group(0)[0]))
        position = match.end()

    parts.append(re.escape(pattern[position:]))

    return re.compile('^' + ''.join(parts) + '$')


def matches(pattern: str, text: str) -> bool:
    """Whether the literal text is accepted by the pattern"""
    return compile_to_matcher(pattern).match(text) is not None


def coerce_argument(placeholder: str, raw: str) -> Any:
    """Convert a captured placeholder value into a Python value"""
    if placeholder == 'float':
        return float(raw)
    if placeholder == 'int':
        return int(raw)
    if placeholder == 'string' and len(raw) >= 2 and raw[0] == raw[-1] and raw[0] in '"\'':
        return raw[1:-1]
    return raw


def coerce_arguments(pattern: str, groups: Sequence[str]) -> List[Any]:
    """Convert all captured groups of a match against pattern"""
    return [coerce_argument(placeholder, raw)
            for placeholder, raw in zip(placeholder_types(pattern), groups)]
