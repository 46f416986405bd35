"""Helper utilities"""
import keyword
import re
from typing import Any, Dict, Iterable, List, TypeVar

T = TypeVar('T')

FUNCTION_NAME_LIMIT = 50


def function_name_for(text: str, limit: int = FUNCTION_NAME_LIMIT) -> str:
    """Derive a deterministic Python function name from step text"""
    name = text.lower()
    name = re.sub(r'[^a-z0-9\s]', '', name)
    name = re.sub(r'\s+', '_', name).strip('_')
    name = name[:limit].rstrip('_')

    if not name:
        return 'step_function'

    if name[0].isdigit() or keyword.iskeyword(name):
        name = f"step_{name}"

    return name


def unique_name(name: str, taken: set) -> str:
    """Append _2, _3, ... until name is not in taken"""
    candidate = name
    counter = 2
    while candidate in taken:
        candidate = f"{name}_{counter}"
        counter += 1
    taken.add(candidate)
    return candidate


def deep_get(dictionary: Dict, keys: str, default: Any = None) -> Any:
    """Get nested dictionary value using dot notation"""
    value: Any = dictionary

    for key in keys.split('.'):
        if isinstance(value, dict) and key in value:
            value = value[key]
        else:
            return default

    return value


def dedupe(items: Iterable[T]) -> List[T]:
    """Remove duplicates while keeping first-seen order"""
    seen = set()
    result = []
    for item in items:
        if item in seen:
            continue
        seen.add(item)
        result.append(item)
    return result


def percentage(part: int, total: int) -> float:
    """Percentage rounded to two decimals, 100.0 when total is zero"""
    if total <= 0:
        return 100.0
    value = (part / total) * 100
    return round(min(max(value, 0.0), 100.0), 2)
