"""stepcover - Gherkin parsing, step matching and step coverage analysis"""

from stepcover.registry.step_registry import (
    StepDefinition,
    StepRegistry,
    clear_registry,
    default_registry,
    given,
    then,
    when,
)

__version__ = "1.0.0"

__all__ = [
    'StepDefinition',
    'StepRegistry',
    'clear_registry',
    'default_registry',
    'given',
    'then',
    'when',
    '__version__',
]
