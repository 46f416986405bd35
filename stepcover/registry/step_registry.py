"""
Step registry
Insertion-ordered table of step definitions matched against live step text
"""

import ast
import inspect
import re
import textwrap
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

from stepcover.core.exceptions import DuplicateStepError, NoMatchingStepError
from stepcover.parser.pattern_compiler import (
    coerce_arguments,
    compile_to_matcher,
    extract_parameter_names,
)
from stepcover.utils.logger import setup_logger

logger = setup_logger(__name__)

REGISTRATION_KEYWORDS = ('Given', 'When', 'Then')

STUB_MARKERS = (
    re.compile(r'\bNotImplementedError\b'),
    re.compile(r'not\s+implemented', re.IGNORECASE),
    re.compile(r'\bTODO\b'),
)


def _is_placeholder_body(body: str) -> bool:
    """Whether a body only holds a docstring, pass, ... or a single raise"""
    try:
        tree = ast.parse(textwrap.dedent(body))
    except SyntaxError:
        return False

    if not tree.body:
        return False

    statements = [node for node in tree.body
                  if not (isinstance(node, ast.Expr) and isinstance(node.value, ast.Constant))]
    if all(isinstance(node, ast.Pass) for node in statements):
        return True
    return len(statements) == 1 and isinstance(statements[0], ast.Raise)


def is_stub_body(body: str) -> bool:
    """Whether an implementation body is a placeholder rather than a real step"""
    return any(marker.search(body) for marker in STUB_MARKERS) or _is_placeholder_body(body)


def normalize_keyword(keyword: str) -> str:
    """Title-case a registration keyword and check it is Given, When or Then"""
    normalized = keyword.strip().capitalize()
    if normalized not in REGISTRATION_KEYWORDS:
        raise ValueError(f"Invalid step keyword: {keyword}")
    return normalized


@dataclass(frozen=True)
class StepDefinition:
    """A declared step: keyword, pattern and where it comes from"""
    keyword: str
    pattern: str
    file: Optional[str] = None
    line_number: int = 0
    function_name: str = 'anonymous'
    parameters: Tuple[str, ...] = ()
    implemented: bool = True
    handler: Optional[Callable[..., Any]] = field(default=None, compare=False, repr=False)

    @property
    def key(self) -> Tuple[str, str]:
        return self.keyword, self.pattern

    def matches(self, text: str) -> Optional['re.Match[str]']:
        return compile_to_matcher(self.pattern).match(text)

    def to_dict(self) -> Dict:
        return {
            'keyword': self.keyword,
            'pattern': self.pattern,
            'file': self.file,
            'lineNumber': self.line_number,
            'functionName': self.function_name,
            'parameters': list(self.parameters),
            'implemented': self.implemented,
        }


@dataclass(frozen=True)
class StepMatch:
    definition: StepDefinition
    arguments: Tuple[Any, ...]


def _handler_is_stub(handler: Callable[..., Any]) -> bool:
    try:
        source = inspect.getsource(handler)
    except (OSError, TypeError):
        return False

    # Skip decorator lines, their patterns may mention "not implemented"
    lines = source.splitlines()
    for index, line in enumerate(lines):
        if re.match(r'\s*(?:async\s+)?def\s', line):
            return is_stub_body('\n'.join(lines[index + 1:]))
    return is_stub_body(source)


class StepRegistry:
    """Append-only registry of step definitions keyed by (keyword, pattern)

    Matching walks definitions in registration order and the first match
    wins, so more specific patterns must be registered before general ones.
    """

    def __init__(self):
        self._definitions: Dict[Tuple[str, str], StepDefinition] = {}

    def register(self, keyword: str, pattern: str, handler: Callable[..., Any],
                 file: Optional[str] = None, line_number: Optional[int] = None,
                 implemented: Optional[bool] = None) -> StepDefinition:
        """Register a handler, raising DuplicateStepError for a known key"""
        keyword = normalize_keyword(keyword)
        key = (keyword, pattern)

        if key in self._definitions:
            raise DuplicateStepError(key)

        code = getattr(handler, '__code__', None)
        if file is None and code is not None:
            file = code.co_filename
        if line_number is None:
            line_number = code.co_firstlineno if code is not None else 0
        if implemented is None:
            implemented = not _handler_is_stub(handler)

        definition = StepDefinition(
            keyword=keyword,
            pattern=pattern,
            file=file,
            line_number=line_number,
            function_name=getattr(handler, '__name__', 'anonymous'),
            parameters=tuple(extract_parameter_names(pattern)),
            implemented=implemented,
            handler=handler,
        )
        self._definitions[key] = definition
        logger.debug(f"Registered step: {keyword} {pattern}")
        return definition

    def step(self, keyword: str, pattern: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
        """Decorator form of register"""
        def decorator(handler: Callable[..., Any]) -> Callable[..., Any]:
            self.register(keyword, pattern, handler)
            return handler
        return decorator

    def given(self, pattern: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
        return self.step('Given', pattern)

    def when(self, pattern: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
        return self.step('When', pattern)

    def then(self, pattern: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
        return self.step('Then', pattern)

    def find(self, keyword: str, text: str) -> Optional[StepMatch]:
        """First definition for keyword whose pattern accepts text, or None"""
        keyword = keyword.strip().capitalize()

        for definition in self._definitions.values():
            if definition.keyword != keyword:
                continue
            match = definition.matches(text)
            if match:
                arguments = coerce_arguments(definition.pattern, match.groups())
                return StepMatch(definition=definition, arguments=tuple(arguments))

        return None

    def match(self, keyword: str, text: str) -> StepMatch:
        """Like find, but raises NoMatchingStepError when nothing matches"""
        step_match = self.find(keyword, text)
        if step_match is None:
            raise NoMatchingStepError(keyword, text)
        return step_match

    def definitions(self) -> List[StepDefinition]:
        return list(self._definitions.values())

    def clear(self) -> None:
        """Remove every definition, for test isolation"""
        self._definitions.clear()

    def __len__(self) -> int:
        return len(self._definitions)

    def __iter__(self) -> Iterator[StepDefinition]:
        return iter(list(self._definitions.values()))

    def __contains__(self, key: object) -> bool:
        return key in self._definitions


# Process-wide default registry
default_registry = StepRegistry()


def given(pattern: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    return default_registry.given(pattern)


def when(pattern: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    return default_registry.when(pattern)


def then(pattern: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    return default_registry.then(pattern)


def clear_registry() -> None:
    default_registry.clear()
