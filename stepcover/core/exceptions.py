"""Error taxonomy for stepcover"""
from typing import Optional, Tuple


class StepcoverError(Exception):
    """Base class for all stepcover errors"""


class StructuralParseError(StepcoverError):
    """Malformed section ordering in a feature file"""

    def __init__(self, message: str, line_number: Optional[int] = None, filename: str = "unknown"):
        self.line_number = line_number
        self.filename = filename
        location = f"{filename}:{line_number}" if line_number is not None else filename
        super().__init__(f"{location}: {message}")


class DuplicateStepError(StepcoverError):
    """A (keyword, pattern) pair was registered twice"""

    def __init__(self, key: Tuple[str, str]):
        self.key = key
        keyword, pattern = key
        super().__init__(f"Step definition already registered: {keyword} '{pattern}'")


class NoMatchingStepError(StepcoverError):
    """No registered step definition accepts the step text"""

    def __init__(self, keyword: str, text: str):
        self.keyword = keyword
        self.text = text
        super().__init__(f"No step definition matches: {keyword} {text}")


class ConfigError(StepcoverError):
    """Configuration file could not be loaded"""
