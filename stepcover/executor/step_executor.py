"""
Step executor
Dispatches live step invocations to registered step definitions
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from stepcover.core.exceptions import NoMatchingStepError
from stepcover.parser.feature_parser import (
    DataTable,
    DocString,
    FeatureDocument,
    PRIMARY_KEYWORDS,
    Step,
    resolve_keywords,
)
from stepcover.registry.step_registry import StepMatch, StepRegistry, default_registry
from stepcover.utils.logger import setup_logger

logger = setup_logger(__name__)

# mount(component, **config) -> wrapper, supplied by the UI test harness
MountFunction = Callable[..., Any]


@dataclass
class StepContext:
    """State shared by step handlers of one scenario"""
    wrapper: Any = None
    state: Dict[str, Any] = field(default_factory=dict)
    mocks: Dict[str, Any] = field(default_factory=dict)
    table: Optional[DataTable] = None
    text: Optional[str] = None


@dataclass(frozen=True)
class FeatureCheck:
    found: Tuple[Tuple[Step, StepMatch], ...]
    missing: Tuple[Step, ...]
    total_steps: int

    @property
    def is_valid(self) -> bool:
        return not self.missing


class StepExecutor:
    """Execute individual steps against a step registry"""

    def __init__(self, registry: Optional[StepRegistry] = None,
                 mount: Optional[MountFunction] = None):
        self.registry = registry if registry is not None else default_registry
        self.mount = mount
        self.context = StepContext()
        self.last_keyword: Optional[str] = None

    def _resolve_keyword(self, keyword: str, text: str) -> str:
        keyword = keyword.strip().capitalize()
        if keyword in PRIMARY_KEYWORDS:
            self.last_keyword = keyword
            return keyword

        # And/But continue the previous primary keyword
        if self.last_keyword is None:
            raise NoMatchingStepError(keyword, text)
        return self.last_keyword

    def execute_step(self, keyword: str, text: str,
                     data_table: Optional[DataTable] = None,
                     doc_string: Optional[DocString] = None) -> Any:
        """Match a step and call its handler with the context and coerced arguments"""
        effective = self._resolve_keyword(keyword, text)
        step_match = self.registry.match(effective, text)

        self.context.table = data_table
        self.context.text = doc_string.content if doc_string else None

        definition = step_match.definition
        logger.debug(f"Executing step: {keyword} {text} -> {definition.function_name}")
        return definition.handler(self.context, *step_match.arguments)

    def execute_steps(self, steps: Iterable[Step]) -> List[Any]:
        """Execute parsed steps in order, stopping at the first error"""
        self.last_keyword = None
        return [self.execute_step(step.keyword, step.text, step.data_table, step.doc_string)
                for step in steps]

    def check_feature(self, feature: FeatureDocument) -> FeatureCheck:
        """Look up every step of a feature without executing anything"""
        found: List[Tuple[Step, StepMatch]] = []
        missing: List[Step] = []

        for _, steps in feature.step_groups():
            for step, keyword in zip(steps, resolve_keywords(step.keyword for step in steps)):
                step_match = self.registry.find(keyword, step.text) if keyword else None
                if step_match is None:
                    missing.append(step)
                else:
                    found.append((step, step_match))

        return FeatureCheck(found=tuple(found), missing=tuple(missing),
                            total_steps=len(found) + len(missing))

    def mount_component(self, component: Any, **config: Any) -> Any:
        """Mount a component through the injected harness and keep the wrapper"""
        if self.mount is None:
            raise RuntimeError("No mount function configured for this executor")

        self.context.wrapper = self.mount(component, **config)
        return self.context.wrapper

    def cleanup(self) -> None:
        """Unmount the current wrapper and reset shared state"""
        wrapper = self.context.wrapper
        if wrapper is not None and callable(getattr(wrapper, 'unmount', None)):
            wrapper.unmount()

        self.context = StepContext()
        self.last_keyword = None
