"""
Step discovery
Correlates step usage in feature files with step definitions in step files
and reports missing and unused steps
"""

import concurrent.futures
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple, TypeVar, Union

from stepcover.codegen.code_generator import CodeGenerator, StepTemplate
from stepcover.core.exceptions import StructuralParseError
from stepcover.discovery.coverage_report import render_coverage_report
from stepcover.discovery.definition_extractor import DefinitionExtractor
from stepcover.parser.feature_parser import (
    FeatureParser,
    StepType,
    ValidationResult,
    resolve_keywords,
)
from stepcover.parser.pattern_compiler import compile_to_matcher, parameterize
from stepcover.registry.step_registry import StepDefinition, StepRegistry
from stepcover.utils.helpers import percentage
from stepcover.utils.logger import setup_logger

logger = setup_logger(__name__)

T = TypeVar('T')
PathLike = Union[str, Path]

# Per-file failures that are logged and skipped instead of aborting the scan
FILE_ERRORS = (OSError, UnicodeDecodeError, StructuralParseError, ValueError)


@dataclass
class DiscoveryOptions:
    step_directories: List[str] = field(default_factory=lambda: [
        'tests/steps', 'test/steps', 'spec/steps', 'features/steps', 'tests/step_defs',
    ])
    feature_directories: List[str] = field(default_factory=lambda: [
        'tests/features', 'test/features', 'spec/features', 'features',
    ])
    step_file_patterns: List[str] = field(default_factory=lambda: [
        '*_steps.py', '*_step.py', 'steps.py', 'test_*.py',
    ])
    feature_file_patterns: List[str] = field(default_factory=lambda: ['*.feature'])
    parallel: int = 1

    @classmethod
    def from_config(cls, config: Optional[Dict]) -> 'DiscoveryOptions':
        """Build options from the `discovery` configuration section"""
        options = cls()
        for key, value in (config or {}).items():
            if not hasattr(options, key):
                logger.warning(f"Unknown discovery option: {key}")
                continue
            if value is None:
                continue
            if key == 'parallel':
                value = max(1, int(value))
            elif isinstance(value, str):
                value = [value]
            setattr(options, key, list(value) if isinstance(value, (list, tuple)) else value)
        return options


@dataclass(frozen=True)
class StepUsage:
    step: str
    keyword: str
    effective_keyword: Optional[str]
    feature: str
    scenario: str
    line_number: int

    def to_dict(self) -> Dict:
        return {
            'step': self.step,
            'keyword': self.keyword,
            'effectiveKeyword': self.effective_keyword,
            'feature': self.feature,
            'scenario': self.scenario,
            'lineNumber': self.line_number,
        }


@dataclass(frozen=True)
class MissingStep:
    step: str
    keyword: str
    effective_keyword: Optional[str]
    feature: str
    scenario: str
    line_number: int
    suggested_pattern: str
    suggested_implementation: str

    @property
    def generation_keyword(self) -> str:
        return self.effective_keyword or StepType.GIVEN.value

    def to_dict(self) -> Dict:
        return {
            'step': self.step,
            'keyword': self.keyword,
            'feature': self.feature,
            'scenario': self.scenario,
            'lineNumber': self.line_number,
            'suggestedPattern': self.suggested_pattern,
            'suggestedImplementation': self.suggested_implementation,
        }


@dataclass(frozen=True)
class CoverageReport:
    total_steps: int
    covered_steps: int
    missing_steps: int
    unused_definitions: int
    coverage_percentage: float
    implementation_percentage: float
    total_definitions: int
    implemented_definitions: int
    keyword_stats: Dict[str, Dict[str, float]]

    def to_dict(self) -> Dict:
        return {
            'totalSteps': self.total_steps,
            'coveredSteps': self.covered_steps,
            'missingSteps': self.missing_steps,
            'unusedDefinitions': self.unused_definitions,
            'coveragePercentage': self.coverage_percentage,
            'implementationPercentage': self.implementation_percentage,
            'totalDefinitions': self.total_definitions,
            'implementedDefinitions': self.implemented_definitions,
            'keywordStats': {k: dict(v) for k, v in self.keyword_stats.items()},
        }


@dataclass(frozen=True)
class DiscoveryResult:
    definitions: Tuple[StepDefinition, ...]
    usage: Tuple[StepUsage, ...]
    missing: Tuple[MissingStep, ...]
    unused: Tuple[StepDefinition, ...]
    coverage: CoverageReport
    validation: Dict[str, ValidationResult] = field(default_factory=dict)
    skipped_files: Tuple[Tuple[str, str], ...] = ()


@dataclass(frozen=True)
class _FileResult:
    """Extraction result of a single file, merged in the final reduction"""
    definitions: Tuple[StepDefinition, ...] = ()
    usage: Tuple[StepUsage, ...] = ()
    validation: Optional[ValidationResult] = None
    error: Optional[str] = None


class StepDiscoveryEngine:
    """Discover step definitions and step usage across a project"""

    def __init__(self, options: Optional[DiscoveryOptions] = None,
                 parser: Optional[FeatureParser] = None,
                 extractor: Optional[DefinitionExtractor] = None,
                 registry: Optional[StepRegistry] = None,
                 code_generator: Optional[CodeGenerator] = None):
        self.options = options or DiscoveryOptions()
        self.parser = parser or FeatureParser()
        self.extractor = extractor or DefinitionExtractor()
        self.registry = registry
        self.code_generator = code_generator or CodeGenerator()

    def discover_steps(self, project_root: PathLike) -> DiscoveryResult:
        """Discover all step definitions and usage below project_root"""
        root = Path(project_root)
        logger.info(f"Discovering steps in {root}")

        definition_results = self._run_per_file(self._step_files(root), self._parse_step_file)
        usage_results = self._run_per_file(self._feature_files(root), self._parse_feature_file)

        definitions: List[StepDefinition] = []
        usage: List[StepUsage] = []
        validation: Dict[str, ValidationResult] = {}
        skipped: List[Tuple[str, str]] = []

        for file_path, result in definition_results + usage_results:
            if result.error is not None:
                skipped.append((file_path, result.error))
                continue
            definitions.extend(result.definitions)
            usage.extend(result.usage)
            if result.validation is not None:
                validation[file_path] = result.validation

        definitions.extend(self._registry_definitions(definitions))

        missing, unused = self.analyze_step_coverage(definitions, usage)
        coverage = self.calculate_coverage(definitions, usage, missing, unused)

        logger.info(
            f"Found {len(definitions)} definitions and {len(usage)} step usages: "
            f"{len(missing)} missing, {len(unused)} unused, {coverage.coverage_percentage}% covered"
        )

        return DiscoveryResult(
            definitions=tuple(definitions),
            usage=tuple(usage),
            missing=tuple(missing),
            unused=tuple(unused),
            coverage=coverage,
            validation=validation,
            skipped_files=tuple(skipped),
        )

    def find_step_definitions(self, project_root: PathLike) -> List[StepDefinition]:
        """Step definitions declared in the configured step directories"""
        definitions: List[StepDefinition] = []
        for _, result in self._run_per_file(self._step_files(Path(project_root)), self._parse_step_file):
            definitions.extend(result.definitions)
        return definitions

    def find_step_usage(self, project_root: PathLike) -> List[StepUsage]:
        """Step usage in the configured feature directories"""
        usage: List[StepUsage] = []
        for _, result in self._run_per_file(self._feature_files(Path(project_root)), self._parse_feature_file):
            usage.extend(result.usage)
        return usage

    # File handling

    def _step_files(self, root: Path) -> List[Path]:
        return self._collect(root, self.options.step_directories, self.options.step_file_patterns)

    def _feature_files(self, root: Path) -> List[Path]:
        return self._collect(root, self.options.feature_directories, self.options.feature_file_patterns)

    def _collect(self, root: Path, directories: Iterable[str], patterns: Sequence[str]) -> List[Path]:
        files: Dict[Path, Path] = {}
        for directory in directories:
            for file_path in self.find_files(root / directory, patterns):
                files.setdefault(file_path.resolve(), file_path)
        return [files[key] for key in sorted(files)]

    @staticmethod
    def find_files(directory: PathLike, patterns: Sequence[str]) -> List[Path]:
        """Files below directory matching any of the glob patterns"""
        directory = Path(directory)
        if not directory.is_dir():
            logger.debug(f"Skipping missing directory: {directory}")
            return []

        files = set()
        for pattern in patterns:
            files.update(path for path in directory.rglob(pattern) if path.is_file())
        return sorted(files)

    def _run_per_file(self, files: List[Path],
                      worker: Callable[[Path], T]) -> List[Tuple[str, T]]:
        """Apply worker to every file, on a thread pool when parallel > 1"""
        if self.options.parallel > 1 and len(files) > 1:
            with concurrent.futures.ThreadPoolExecutor(max_workers=self.options.parallel) as executor:
                results = list(executor.map(worker, files))
        else:
            results = [worker(file_path) for file_path in files]

        return [(str(file_path), result) for file_path, result in zip(files, results)]

    def _parse_step_file(self, file_path: Path) -> _FileResult:
        try:
            content = file_path.read_text(encoding='utf-8')
            definitions = self.extractor.extract_definitions(content, str(file_path))
        except FILE_ERRORS as e:
            logger.warning(f"Skipping step file {file_path}: {e}")
            return _FileResult(error=str(e))

        logger.debug(f"{file_path}: {len(definitions)} step definitions")
        return _FileResult(definitions=tuple(definitions))

    def _parse_feature_file(self, file_path: Path) -> _FileResult:
        try:
            feature = self.parser.parse_file(file_path)
        except FILE_ERRORS as e:
            logger.warning(f"Skipping feature file {file_path}: {e}")
            return _FileResult(error=str(e))

        usage = []
        for scenario_title, steps in feature.step_groups():
            effective = resolve_keywords(step.keyword for step in steps)
            for step, keyword in zip(steps, effective):
                usage.append(StepUsage(
                    step=step.text,
                    keyword=step.keyword,
                    effective_keyword=keyword,
                    feature=str(file_path),
                    scenario=scenario_title,
                    line_number=step.line_number,
                ))

        logger.debug(f"{file_path}: {len(usage)} step usages")
        return _FileResult(usage=tuple(usage), validation=self.parser.validate_feature(feature))

    def _registry_definitions(self, extracted: List[StepDefinition]) -> List[StepDefinition]:
        """Registry definitions not already found in step files"""
        if self.registry is None:
            return []
        known = {definition.key for definition in extracted}
        return [definition for definition in self.registry.definitions() if definition.key not in known]

    # Analysis

    def analyze_step_coverage(self, definitions: Sequence[StepDefinition],
                              usage: Sequence[StepUsage]) -> Tuple[List[MissingStep], List[StepDefinition]]:
        """Split usage into covered and missing steps, and find unused definitions"""
        missing: List[MissingStep] = []
        used_keys = set()

        for use in usage:
            definition = self._matching_definition(definitions, use)
            if definition is not None:
                used_keys.add(definition.key)
                continue

            missing.append(MissingStep(
                step=use.step,
                keyword=use.keyword,
                effective_keyword=use.effective_keyword,
                feature=use.feature,
                scenario=use.scenario,
                line_number=use.line_number,
                suggested_pattern=parameterize(use.step),
                suggested_implementation=self.generate_step_implementation(
                    use.effective_keyword or StepType.GIVEN.value, use.step,
                ),
            ))

        unused = [definition for definition in definitions if definition.key not in used_keys]
        return missing, unused

    @staticmethod
    def _matching_definition(definitions: Sequence[StepDefinition],
                             use: StepUsage) -> Optional[StepDefinition]:
        for definition in definitions:
            # A leading And/But has no keyword of its own and may match any definition
            if use.effective_keyword is not None and definition.keyword != use.effective_keyword:
                continue
            if compile_to_matcher(definition.pattern).match(use.step):
                return definition
        return None

    def calculate_coverage(self, definitions: Sequence[StepDefinition], usage: Sequence[StepUsage],
                           missing: Sequence[MissingStep],
                           unused: Sequence[StepDefinition]) -> CoverageReport:
        """Aggregate coverage statistics"""
        total_steps = len(usage)
        covered_steps = total_steps - len(missing)
        implemented = sum(1 for definition in definitions if definition.implemented)

        return CoverageReport(
            total_steps=total_steps,
            covered_steps=covered_steps,
            missing_steps=len(missing),
            unused_definitions=len(unused),
            coverage_percentage=percentage(covered_steps, total_steps),
            implementation_percentage=percentage(implemented, len(definitions)),
            total_definitions=len(definitions),
            implemented_definitions=implemented,
            keyword_stats=self.calculate_keyword_statistics(usage),
        )

    @staticmethod
    def calculate_keyword_statistics(usage: Sequence[StepUsage]) -> Dict[str, Dict[str, float]]:
        """Usage count and share per step keyword as written"""
        counts: Dict[str, int] = {}
        for use in usage:
            counts[use.keyword] = counts.get(use.keyword, 0) + 1

        return {
            keyword: {'count': count, 'percentage': percentage(count, len(usage))}
            for keyword, count in counts.items()
        }

    # Code generation

    def _template_for(self, keyword: str, text: str, taken: Optional[set] = None) -> StepTemplate:
        return self.code_generator.build_template(keyword, parameterize(text), text, taken)

    def generate_step_implementation(self, keyword: str, step_text: str) -> str:
        """Skeleton implementation for a single missing step"""
        return self.code_generator.render_step(self._template_for(keyword, step_text))

    def generate_missing_steps(self, missing: Sequence[MissingStep], group_by_file: bool = True,
                               include_comments: bool = True, include_imports: bool = True) -> str:
        """Skeleton code for missing steps, one registration per distinct pattern"""
        groups: Dict[Optional[str], List[StepTemplate]] = {}
        seen = set()
        taken: set = set()

        for step in missing:
            key = (step.generation_keyword, step.suggested_pattern)
            if key in seen:
                continue
            seen.add(key)

            group = step.feature if group_by_file else None
            groups.setdefault(group, []).append(
                self._template_for(step.generation_keyword, step.step, taken)
            )

        return self.code_generator.render_module(
            list(groups.items()),
            include_imports=include_imports,
            include_comments=include_comments,
        )


# Default step discovery instance
step_discovery = StepDiscoveryEngine()


def discover_steps(project_root: PathLike) -> DiscoveryResult:
    return step_discovery.discover_steps(project_root)


def generate_missing_steps(missing: Sequence[MissingStep], group_by_file: bool = True,
                           include_comments: bool = True, include_imports: bool = True) -> str:
    return step_discovery.generate_missing_steps(
        missing, group_by_file=group_by_file,
        include_comments=include_comments, include_imports=include_imports,
    )


def generate_coverage_report(result: DiscoveryResult, format: str = 'text',
                             include_details: bool = True, color: bool = False) -> str:
    return render_coverage_report(result, format=format, include_details=include_details, color=color)
