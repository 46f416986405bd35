"""
Step definition extractor
Finds step registrations in Python step files by scanning their source text
"""

import re
from typing import List, Optional, Tuple

from stepcover.parser.pattern_compiler import extract_parameter_names
from stepcover.registry.step_registry import StepDefinition, is_stub_body
from stepcover.utils.logger import setup_logger

logger = setup_logger(__name__)

# A string literal, with optional r/u prefix and escaped quotes
_STRING = r'[rRuU]?(?P<quote>["\'])(?P<pattern>(?:\\.|(?!(?P=quote)).)*)(?P=quote)'

# Optional wrapper such as parsers.parse( around the pattern
_WRAPPER = r'(?:[A-Za-z_][\w.]*\(\s*)?'


class DefinitionExtractor:
    """Extract step definitions from Python source text

    Two registration styles are recognized:
        @given("pattern") above a function definition
        Given("pattern", handler) or registry.register("Given", "pattern", handler)
    """

    decorator_pattern = re.compile(
        r'^(?P<indent>[ \t]*)@(?:[A-Za-z_][\w.]*\.)?(?P<keyword>given|when|then)\s*\(\s*'
        + _WRAPPER + _STRING,
        re.IGNORECASE | re.MULTILINE,
    )

    call_pattern = re.compile(
        r'(?<![@\w.])(?:[A-Za-z_][\w]*\.)?(?P<keyword>Given|When|Then)\s*\(\s*'
        + _WRAPPER + _STRING + r'\s*\)?\s*,\s*(?P<handler>lambda\b[^\n]*|[A-Za-z_][\w.]*)',
    )

    register_pattern = re.compile(
        r'\.register\(\s*["\'](?P<keyword>Given|When|Then)["\']\s*,\s*'
        + _STRING + r'\s*,\s*(?P<handler>lambda\b[^\n]*|[A-Za-z_][\w.]*)',
        re.IGNORECASE,
    )

    def extract_definitions(self, file_text: str, file_path: str = 'unknown') -> List[StepDefinition]:
        """Return the step definitions declared in file_text, in source order"""
        lines = file_text.splitlines()
        found: List[Tuple[int, StepDefinition]] = []

        for match in self.decorator_pattern.finditer(file_text):
            line_number = file_text.count('\n', 0, match.start()) + 1
            function_name, body = self._decorated_function(lines, line_number)
            found.append((match.start(), self._definition(
                match.group('keyword'), match.group('pattern'), file_path, line_number, function_name, body,
            )))

        for expression in (self.call_pattern, self.register_pattern):
            for match in expression.finditer(file_text):
                line_number = file_text.count('\n', 0, match.start()) + 1
                handler = match.group('handler').strip()
                if handler.startswith('lambda'):
                    function_name, body = 'anonymous', handler
                else:
                    function_name = handler.rsplit('.', 1)[-1]
                    body = self._function_body(lines, function_name)
                found.append((match.start(), self._definition(
                    match.group('keyword'), match.group('pattern'), file_path, line_number, function_name, body,
                )))

        found.sort(key=lambda item: item[0])
        return [definition for _, definition in found]

    @staticmethod
    def _definition(keyword: str, pattern: str, file_path: str, line_number: int,
                    function_name: str, body: Optional[str]) -> StepDefinition:
        pattern = re.sub(r'\\(["\'\\])', r'\1', pattern)
        return StepDefinition(
            keyword=keyword.capitalize(),
            pattern=pattern,
            file=file_path,
            line_number=line_number,
            function_name=function_name,
            parameters=tuple(extract_parameter_names(pattern)),
            # Handlers defined elsewhere cannot be inspected and count as implemented
            implemented=body is None or not is_stub_body(body),
        )

    def _decorated_function(self, lines: List[str], line_number: int) -> Tuple[str, Optional[str]]:
        """Name and body of the function below a decorator on line_number"""
        for index in range(line_number - 1, len(lines)):
            match = re.match(r'^([ \t]*)(?:async\s+)?def\s+([A-Za-z_]\w*)', lines[index])
            if match:
                return match.group(2), self._indented_block(lines, index, len(match.group(1)))
        return 'anonymous', None

    def _function_body(self, lines: List[str], function_name: str) -> Optional[str]:
        """Body of a module-level or nested def called function_name"""
        definition = re.compile(r'^([ \t]*)(?:async\s+)?def\s+' + re.escape(function_name) + r'\s*\(')
        for index, line in enumerate(lines):
            match = definition.match(line)
            if match:
                return self._indented_block(lines, index, len(match.group(1)))
        return None

    @staticmethod
    def _indented_block(lines: List[str], def_index: int, indent: int) -> str:
        """Lines after def_index that are indented deeper than indent"""
        body = []
        for line in lines[def_index + 1:]:
            if line.strip() and len(line) - len(line.lstrip()) <= indent:
                break
            body.append(line)
        return '\n'.join(body)


# Default extractor instance
definition_extractor = DefinitionExtractor()


def extract_definitions(file_text: str, file_path: str = 'unknown') -> List[StepDefinition]:
    return definition_extractor.extract_definitions(file_text, file_path)
