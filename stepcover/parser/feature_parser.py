"""
Feature parser
Parses Gherkin feature files into structured documents, validates them and
extracts the step patterns they use
"""

import re
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Dict, Iterable, List, NamedTuple, Optional, Tuple, Union

from stepcover.codegen.code_generator import CodeGenerator
from stepcover.core.exceptions import StructuralParseError
from stepcover.parser.pattern_compiler import parameterize
from stepcover.utils.helpers import dedupe
from stepcover.utils.logger import setup_logger

logger = setup_logger(__name__)


class StepType(Enum):
    GIVEN = "Given"
    WHEN = "When"
    THEN = "Then"
    AND = "And"
    BUT = "But"


STEP_KEYWORDS = tuple(step_type.value for step_type in StepType)
PRIMARY_KEYWORDS = (StepType.GIVEN.value, StepType.WHEN.value, StepType.THEN.value)

DataTable = Tuple[Tuple[str, ...], ...]


def resolve_keywords(keywords: Iterable[str]) -> List[Optional[str]]:
    """Effective keyword of each step, And/But inherit the previous primary keyword

    A leading And/But has no primary keyword to inherit and resolves to None.
    """
    resolved: List[Optional[str]] = []
    previous: Optional[str] = None

    for keyword in keywords:
        if keyword in PRIMARY_KEYWORDS:
            previous = keyword
        resolved.append(previous)

    return resolved


@dataclass(frozen=True)
class DocString:
    language: str
    content: str


@dataclass(frozen=True)
class Step:
    keyword: str
    text: str
    line_number: int
    data_table: Optional[DataTable] = None
    doc_string: Optional[DocString] = None


@dataclass(frozen=True)
class Background:
    steps: Tuple[Step, ...]
    line_number: int = 0
    title: str = ""
    description: str = ""


@dataclass(frozen=True)
class Scenario:
    title: str
    steps: Tuple[Step, ...]
    tags: Tuple[str, ...] = ()
    line_number: int = 0
    description: str = ""


@dataclass(frozen=True)
class ExamplesTable:
    headers: Tuple[str, ...]
    rows: Tuple[Tuple[str, ...], ...]
    tags: Tuple[str, ...] = ()
    line_number: int = 0

    def as_dicts(self) -> List[Dict[str, str]]:
        """Rows keyed by header, rows with a wrong width are left out"""
        return [dict(zip(self.headers, row)) for row in self.rows if len(row) == len(self.headers)]


@dataclass(frozen=True)
class ScenarioOutline(Scenario):
    examples: Tuple[ExamplesTable, ...] = ()


@dataclass(frozen=True)
class FeatureMetadata:
    filename: str
    line_count: int


@dataclass(frozen=True)
class FeatureDocument:
    title: str
    description: str
    scenarios: Tuple[Scenario, ...]
    scenario_outlines: Tuple[ScenarioOutline, ...]
    metadata: FeatureMetadata
    tags: Tuple[str, ...] = ()
    background: Optional[Background] = None
    parse_issues: Tuple[str, ...] = ()

    def step_groups(self) -> List[Tuple[str, Tuple[Step, ...]]]:
        """(section title, steps) for the background, scenarios and outlines"""
        groups: List[Tuple[str, Tuple[Step, ...]]] = []
        if self.background:
            groups.append(('Background', self.background.steps))
        for scenario in self.scenarios:
            groups.append((scenario.title, scenario.steps))
        for outline in self.scenario_outlines:
            groups.append((outline.title, outline.steps))
        return groups

    def all_steps(self) -> List[Step]:
        """Background, scenario and outline steps in that order"""
        return [step for _, steps in self.step_groups() for step in steps]


@dataclass(frozen=True)
class FeatureStatistics:
    scenarios: int
    scenario_outlines: int
    total_steps: int
    background_steps: int
    step_keywords: Dict[str, int]
    examples: int
    has_background: bool
    avg_steps_per_scenario: float

    def to_dict(self) -> Dict:
        return {
            'scenarios': self.scenarios,
            'scenarioOutlines': self.scenario_outlines,
            'totalSteps': self.total_steps,
            'backgroundSteps': self.background_steps,
            'stepKeywords': dict(self.step_keywords),
            'examples': self.examples,
            'hasBackground': self.has_background,
            'avgStepsPerScenario': self.avg_steps_per_scenario,
        }


@dataclass(frozen=True)
class ValidationResult:
    errors: Tuple[str, ...]
    warnings: Tuple[str, ...]
    statistics: FeatureStatistics

    @property
    def is_valid(self) -> bool:
        return len(self.errors) == 0

    def to_dict(self) -> Dict:
        return {
            'isValid': self.is_valid,
            'errors': list(self.errors),
            'warnings': list(self.warnings),
            'statistics': self.statistics.to_dict(),
        }


class StepPattern(NamedTuple):
    keyword: str
    pattern: str

    @property
    def full_pattern(self) -> str:
        return f"{self.keyword} {self.pattern}"


# Mutable drafts used while scanning, frozen into the records above at the end

@dataclass
class _StepDraft:
    keyword: str
    text: str
    line_number: int
    data_table: List[Tuple[str, ...]] = field(default_factory=list)
    doc_string: Optional[DocString] = None

    def freeze(self) -> Step:
        return Step(
            keyword=self.keyword,
            text=self.text,
            line_number=self.line_number,
            data_table=tuple(self.data_table) if self.data_table else None,
            doc_string=self.doc_string,
        )


@dataclass
class _ExamplesDraft:
    tags: List[str]
    line_number: int
    headers: Optional[Tuple[str, ...]] = None
    rows: List[Tuple[str, ...]] = field(default_factory=list)

    def freeze(self) -> ExamplesTable:
        return ExamplesTable(
            headers=self.headers or (),
            rows=tuple(self.rows),
            tags=tuple(self.tags),
            line_number=self.line_number,
        )


@dataclass
class _SectionDraft:
    kind: str
    title: str
    line_number: int
    tags: List[str] = field(default_factory=list)
    description: List[str] = field(default_factory=list)
    steps: List[_StepDraft] = field(default_factory=list)
    examples: List[_ExamplesDraft] = field(default_factory=list)

    def freeze(self) -> Union[Background, Scenario, ScenarioOutline]:
        steps = tuple(step.freeze() for step in self.steps)
        description = '\n'.join(self.description)

        if self.kind == 'background':
            return Background(steps=steps, line_number=self.line_number, title=self.title,
                              description=description)
        if self.kind == 'scenario-outline':
            return ScenarioOutline(
                title=self.title,
                steps=steps,
                tags=tuple(self.tags),
                line_number=self.line_number,
                description=description,
                examples=tuple(examples.freeze() for examples in self.examples),
            )
        return Scenario(title=self.title, steps=steps, tags=tuple(self.tags),
                        line_number=self.line_number, description=description)


@dataclass
class _DocStringDraft:
    delimiter: str
    language: str
    indent: int
    line_number: int
    step: Optional[_StepDraft]
    lines: List[str] = field(default_factory=list)


class _ParseState:
    """Scanner state for a single feature file"""

    def __init__(self, filename: str, strict: bool):
        self.filename = filename
        self.strict = strict
        self.mode: Optional[str] = None
        self.feature_seen = False
        self.title = ""
        self.description: List[str] = []
        self.feature_tags: List[str] = []
        self.pending_tags: List[str] = []
        self.background: Optional[_SectionDraft] = None
        self.sections: List[_SectionDraft] = []
        self.current_section: Optional[_SectionDraft] = None
        self.current_step: Optional[_StepDraft] = None
        self.current_examples: Optional[_ExamplesDraft] = None
        self.doc_string: Optional[_DocStringDraft] = None
        self.issues: List[str] = []

    def issue(self, message: str, line_number: int) -> None:
        if self.strict:
            raise StructuralParseError(message, line_number, self.filename)
        logger.debug(f"{self.filename}:{line_number}: {message}")
        self.issues.append(f"Line {line_number}: {message}")

    def take_tags(self) -> List[str]:
        tags = self.pending_tags
        self.pending_tags = []
        return tags

    def open_section(self, kind: str, title: str, line_number: int) -> _SectionDraft:
        if not self.feature_seen:
            self.issue(f"{kind} section before Feature header", line_number)

        tags = self.take_tags()
        if kind == 'background':
            # Tags cannot be attached to a background
            tags = []

        section = _SectionDraft(kind=kind, title=title, line_number=line_number, tags=tags)
        if kind == 'background':
            if self.background is not None:
                self.issue("more than one Background section", line_number)
            self.background = section
        else:
            self.sections.append(section)

        self.current_section = section
        self.current_step = None
        self.current_examples = None
        self.mode = kind
        return section

    def build(self, line_count: int) -> FeatureDocument:
        scenarios = []
        outlines = []
        for section in self.sections:
            frozen = section.freeze()
            if isinstance(frozen, ScenarioOutline):
                outlines.append(frozen)
            else:
                scenarios.append(frozen)

        return FeatureDocument(
            title=self.title,
            description='\n'.join(self.description),
            scenarios=tuple(scenarios),
            scenario_outlines=tuple(outlines),
            metadata=FeatureMetadata(filename=self.filename, line_count=line_count),
            tags=tuple(self.feature_tags),
            background=self.background.freeze() if self.background else None,
            parse_issues=tuple(self.issues),
        )


class FeatureParser:
    """Parse and validate Gherkin feature files"""

    gherkin_keywords = {
        'doc_string_fence': re.compile(r'^(?P<indent>\s*)(?P<delimiter>```|""")\s*(?P<language>[\w+-]*)\s*$'),
        'comment': re.compile(r'^\s*#'),
        'tag': re.compile(r'^\s*@\S+(?:\s+@\S+)*\s*$'),
        'feature': re.compile(r'^\s*Feature:\s*(.*?)\s*$'),
        'background': re.compile(r'^\s*Background:\s*(.*?)\s*$'),
        'scenario': re.compile(r'^\s*Scenario:\s*(.*?)\s*$'),
        'scenario_outline': re.compile(r'^\s*Scenario (?:Outline|Template):\s*(.*?)\s*$'),
        'examples': re.compile(r'^\s*(?:Examples|Scenarios):\s*(.*?)\s*$'),
        'step': re.compile(r'^\s*(Given|When|Then|And|But)(?:\s+(.*?))?\s*$'),
        'table_row': re.compile(r'^\s*\|(.*)\|\s*$'),
    }

    placeholder = re.compile(r'<([^<>\s][^<>]*)>')

    def __init__(self, strict_validation: bool = True,
                 allowed_keywords: Optional[Iterable[str]] = None,
                 require_background: bool = False,
                 strict_structure: bool = False,
                 code_generator: Optional[CodeGenerator] = None):
        self.strict_validation = strict_validation
        self.allowed_keywords = tuple(allowed_keywords) if allowed_keywords else STEP_KEYWORDS
        self.require_background = require_background
        self.strict_structure = strict_structure
        self.code_generator = code_generator or CodeGenerator()

    @classmethod
    def from_config(cls, config: Dict) -> 'FeatureParser':
        """Create a parser from the `parser` configuration section"""
        return cls(
            strict_validation=config.get('strict_validation', True),
            allowed_keywords=config.get('allowed_keywords'),
            require_background=config.get('require_background', False),
            strict_structure=config.get('strict_structure', False),
        )

    # Parsing

    def parse_file(self, file_path: Union[str, Path]) -> FeatureDocument:
        """Parse a single feature file from disk"""
        path = Path(file_path)
        content = path.read_text(encoding='utf-8')
        return self.parse_feature(content, str(path))

    def parse_directory(self, features_dir: Union[str, Path],
                        tags: Optional[List[str]] = None) -> List[FeatureDocument]:
        """Parse every .feature file below a directory, optionally filtered by tags"""
        documents = []

        for feature_file in sorted(Path(features_dir).glob("**/*.feature")):
            try:
                document = self.parse_file(feature_file)
            except (OSError, UnicodeDecodeError, StructuralParseError) as e:
                logger.warning(f"Error parsing feature file {feature_file}: {e}")
                continue

            if tags:
                document = self.filter_by_tags(document, tags)
                if not document.scenarios and not document.scenario_outlines:
                    continue

            documents.append(document)

        return documents

    @staticmethod
    def filter_by_tags(document: FeatureDocument, tags: List[str]) -> FeatureDocument:
        """Keep scenarios carrying any of the tags, feature tags are inherited"""
        wanted = set(tags)

        def keep(scenario: Scenario) -> bool:
            return bool(wanted.intersection(scenario.tags) or wanted.intersection(document.tags))

        return replace(
            document,
            scenarios=tuple(s for s in document.scenarios if keep(s)),
            scenario_outlines=tuple(o for o in document.scenario_outlines if keep(o)),
        )

    def parse_feature(self, content: str, filename: str = 'unknown') -> FeatureDocument:
        """Parse feature file content into a FeatureDocument"""
        lines = content.splitlines()
        state = _ParseState(filename, self.strict_structure)

        for line_number, line in enumerate(lines, 1):
            self._parse_line(state, line.rstrip('\r'), line_number)

        if state.doc_string is not None:
            state.issue("unterminated doc string", state.doc_string.line_number)
            self._close_doc_string(state)

        return state.build(len(lines))

    def _parse_line(self, state: _ParseState, line: str, line_number: int) -> None:
        keywords = self.gherkin_keywords
        stripped = line.strip()

        # Doc string fences
        fence = keywords['doc_string_fence'].match(line)
        if fence and (state.doc_string is None or fence.group('delimiter') == state.doc_string.delimiter):
            if state.doc_string is None:
                if state.current_step is None:
                    state.issue("doc string without a preceding step", line_number)
                state.doc_string = _DocStringDraft(
                    delimiter=fence.group('delimiter'),
                    language=fence.group('language') or '',
                    indent=len(fence.group('indent')),
                    line_number=line_number,
                    step=state.current_step,
                )
            else:
                self._close_doc_string(state)
            return

        # Doc string content is kept verbatim, minus the fence indentation
        if state.doc_string is not None:
            indent = state.doc_string.indent
            if line[:indent].strip() == '':
                line = line[indent:]
            state.doc_string.lines.append(line)
            return

        # Skip empty lines and comments
        if not stripped or keywords['comment'].match(line):
            return

        # Tags accumulate until the next Feature, Scenario or Examples line
        if keywords['tag'].match(line):
            state.pending_tags.extend(stripped.split())
            return

        match = keywords['feature'].match(line)
        if match:
            if state.feature_seen:
                state.issue("more than one Feature header", line_number)
                return
            state.feature_seen = True
            state.title = match.group(1)
            state.feature_tags = state.take_tags()
            state.mode = 'feature-header'
            return

        match = keywords['background'].match(line)
        if match:
            state.open_section('background', match.group(1), line_number)
            return

        match = keywords['scenario'].match(line)
        if match:
            state.open_section('scenario', match.group(1), line_number)
            return

        match = keywords['scenario_outline'].match(line)
        if match:
            state.open_section('scenario-outline', match.group(1), line_number)
            return

        match = keywords['examples'].match(line)
        if match:
            section = state.current_section
            if section is None or section.kind != 'scenario-outline':
                state.issue("Examples outside of a Scenario Outline", line_number)
                state.take_tags()
                return
            examples = _ExamplesDraft(tags=state.take_tags(), line_number=line_number)
            section.examples.append(examples)
            state.current_examples = examples
            state.current_step = None
            state.mode = 'examples'
            return

        match = keywords['step'].match(line)
        if match:
            self._add_step(state, match.group(1), match.group(2) or '', line_number)
            return

        match = keywords['table_row'].match(line)
        if match:
            self._add_table_row(state, self._split_cells(match.group(1)), line_number)
            return

        # Free text
        if state.mode == 'feature-header':
            state.description.append(stripped)
        elif state.current_section is not None and not state.current_section.steps and state.mode != 'examples':
            state.current_section.description.append(stripped)
        else:
            state.issue(f"unrecognized line: {stripped}", line_number)

    def _add_step(self, state: _ParseState, keyword: str, text: str, line_number: int) -> None:
        step = _StepDraft(keyword=keyword, text=text, line_number=line_number)

        if state.current_section is None:
            state.issue(f"step before any scenario: {keyword} {text}", line_number)
            state.current_step = None
            return

        if state.mode == 'examples':
            state.issue(f"step after Examples: {keyword} {text}", line_number)
            state.mode = state.current_section.kind
            state.current_examples = None

        state.current_section.steps.append(step)
        state.current_step = step

    def _add_table_row(self, state: _ParseState, cells: Tuple[str, ...], line_number: int) -> None:
        if state.mode == 'examples' and state.current_examples is not None:
            examples = state.current_examples
            if examples.headers is None:
                examples.headers = cells
            else:
                examples.rows.append(cells)
            return

        if state.current_step is None:
            state.issue("table row without a preceding step", line_number)
            return

        state.current_step.data_table.append(cells)

    @staticmethod
    def _split_cells(inner: str) -> Tuple[str, ...]:
        cells = re.split(r'(?<!\\)\|', inner)
        return tuple(cell.strip().replace('\\|', '|') for cell in cells)

    @staticmethod
    def _close_doc_string(state: _ParseState) -> None:
        draft = state.doc_string
        state.doc_string = None
        if draft is None or draft.step is None:
            return
        draft.step.doc_string = DocString(language=draft.language, content='\n'.join(draft.lines))

    # Validation

    def validate_feature(self, feature: FeatureDocument) -> ValidationResult:
        """Validate feature structure and content"""
        errors: List[str] = []
        warnings: List[str] = []

        if not feature.title:
            errors.append("Feature must have a title")

        if not feature.scenarios and not feature.scenario_outlines:
            errors.append("Feature must have at least one scenario")

        if self.require_background and not feature.background:
            warnings.append("Background section is recommended")

        if feature.background:
            self._validate_steps(feature.background.steps, errors)

        for scenario in feature.scenarios:
            self._validate_scenario(scenario, 'Scenario', errors, warnings)

        for outline in feature.scenario_outlines:
            self._validate_scenario(outline, 'Scenario Outline', errors, warnings)
            self._validate_examples(outline, errors, warnings)

        warnings.extend(feature.parse_issues)

        return ValidationResult(
            errors=tuple(errors),
            warnings=tuple(warnings),
            statistics=self.calculate_statistics(feature),
        )

    def _validate_scenario(self, scenario: Scenario, label: str,
                           errors: List[str], warnings: List[str]) -> None:
        if not scenario.title:
            errors.append(f"{label} at line {scenario.line_number} must have a title")

        if not scenario.steps:
            errors.append(f'{label} "{scenario.title}" must have at least one step')

        self._validate_steps(scenario.steps, errors)

        if self.strict_validation and scenario.steps:
            keywords = {step.keyword for step in scenario.steps}
            if StepType.GIVEN.value not in keywords:
                warnings.append(f'{label} "{scenario.title}" should have Given steps (preconditions)')
            if StepType.WHEN.value not in keywords:
                warnings.append(f'{label} "{scenario.title}" should have When steps (actions)')
            if StepType.THEN.value not in keywords:
                warnings.append(f'{label} "{scenario.title}" should have Then steps (assertions)')

    def _validate_steps(self, steps: Iterable[Step], errors: List[str]) -> None:
        for step in steps:
            if step.keyword not in self.allowed_keywords:
                errors.append(f'Invalid step keyword "{step.keyword}" at line {step.line_number}')

            if not step.text:
                errors.append(f"Step at line {step.line_number} must have text")

            if step.data_table:
                widths = {len(row) for row in step.data_table}
                if len(widths) > 1:
                    errors.append(f"Data table of step at line {step.line_number} has rows of different widths")

    def _validate_examples(self, outline: ScenarioOutline,
                           errors: List[str], warnings: List[str]) -> None:
        if not outline.examples:
            errors.append(f'Scenario Outline "{outline.title}" must have examples')
            return

        used = set()
        for step in outline.steps:
            used.update(self.placeholder.findall(step.text))
            for row in step.data_table or ():
                for cell in row:
                    used.update(self.placeholder.findall(cell))

        headers = set()
        for examples in outline.examples:
            if not examples.headers:
                errors.append(f'Examples at line {examples.line_number} of "{outline.title}" must have a header row')
                continue

            duplicates = sorted({h for h in examples.headers if examples.headers.count(h) > 1})
            for header in duplicates:
                errors.append(f'Duplicate example column "{header}" in scenario outline "{outline.title}"')

            if not examples.rows:
                errors.append(f'Examples at line {examples.line_number} of "{outline.title}" must have at least one row')

            for index, row in enumerate(examples.rows, 1):
                if len(row) != len(examples.headers):
                    errors.append(
                        f'Example row {index} of "{outline.title}" has {len(row)} cells, '
                        f'expected {len(examples.headers)}'
                    )

            headers.update(examples.headers)

        for name in dedupe(n for step in outline.steps for n in self.placeholder.findall(step.text)):
            if name not in headers:
                warnings.append(f'Placeholder "<{name}>" in scenario outline "{outline.title}" has no example column')

        for header in dedupe(h for examples in outline.examples for h in examples.headers):
            if header not in used:
                warnings.append(f'Example parameter "{header}" is not used in scenario outline "{outline.title}"')

    def calculate_statistics(self, feature: FeatureDocument) -> FeatureStatistics:
        """Count scenarios, steps, keywords and example rows"""
        scenario_steps = sum(len(s.steps) for s in feature.scenarios)
        outline_steps = sum(len(o.steps) for o in feature.scenario_outlines)
        background_steps = len(feature.background.steps) if feature.background else 0

        step_keywords: Dict[str, int] = {}
        for step in feature.all_steps():
            step_keywords[step.keyword] = step_keywords.get(step.keyword, 0) + 1

        examples = sum(len(ex.rows) for outline in feature.scenario_outlines for ex in outline.examples)
        scenario_count = len(feature.scenarios) + len(feature.scenario_outlines)
        average = (scenario_steps + outline_steps) / scenario_count if scenario_count else 0.0

        return FeatureStatistics(
            scenarios=len(feature.scenarios),
            scenario_outlines=len(feature.scenario_outlines),
            total_steps=scenario_steps + outline_steps + background_steps,
            background_steps=background_steps,
            step_keywords=step_keywords,
            examples=examples,
            has_background=feature.background is not None,
            avg_steps_per_scenario=round(average, 2),
        )

    # Pattern extraction and generation

    def extract_step_patterns(self, feature: FeatureDocument) -> List[StepPattern]:
        """Unique (keyword, parameterized pattern) pairs in first-seen order"""
        return dedupe(StepPattern(step.keyword, parameterize(step.text)) for step in feature.all_steps())

    def generate_step_definitions(self, feature: FeatureDocument, include_imports: bool = True) -> str:
        """Skeleton step definitions for every pattern used by the feature"""
        patterns = []
        for _, steps in feature.step_groups():
            effective = resolve_keywords(step.keyword for step in steps)
            for step, keyword in zip(steps, effective):
                patterns.append(StepPattern(keyword or StepType.GIVEN.value, parameterize(step.text)))

        templates = []
        taken: set = set()
        for step_pattern in dedupe(patterns):
            description = step_pattern.pattern.replace('{', '').replace('}', '')
            templates.append(self.code_generator.build_template(
                step_pattern.keyword, step_pattern.pattern, description, taken,
            ))

        return self.code_generator.render_module([(None, templates)], include_imports=include_imports)


# Default feature parser instance
feature_parser = FeatureParser()


def _ensure_document(feature: Union[FeatureDocument, str]) -> FeatureDocument:
    if isinstance(feature, str):
        return feature_parser.parse_feature(feature)
    return feature


def parse_feature(content: str, filename: str = 'unknown') -> FeatureDocument:
    return feature_parser.parse_feature(content, filename)


def validate_feature(feature: Union[FeatureDocument, str]) -> ValidationResult:
    return feature_parser.validate_feature(_ensure_document(feature))


def extract_step_patterns(feature: Union[FeatureDocument, str]) -> List[StepPattern]:
    return feature_parser.extract_step_patterns(_ensure_document(feature))


def generate_step_definitions(feature: Union[FeatureDocument, str]) -> str:
    return feature_parser.generate_step_definitions(_ensure_document(feature))
