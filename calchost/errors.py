"""Error types for calculator plugin discovery and invocation.

Discovery-time errors (DirectoryNotFoundError, DirectoryAccessError,
LoadFailureError, InstantiationFailureError) are raised by the locator, loader and scanner.
The registry isolates them per candidate unless configured to abort.
UserInputError and ComputationError are surfaced to the caller as-is.
"""

from pathlib import Path
from typing import List, Optional, Union


class CalculatorPluginError(Exception):
    """Base class for all calchost errors."""

    pass


class DirectoryNotFoundError(CalculatorPluginError, FileNotFoundError):
    """The plugin root directory does not exist or is not a directory."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        super().__init__(f"Plugin directory not found: {self.path}")


class DirectoryAccessError(CalculatorPluginError, OSError):
    """The plugin root directory exists but cannot be listed."""

    def __init__(self, path: Union[str, Path], reason: str):
        self.path = Path(path)
        self.reason = reason
        super().__init__(f"Cannot read plugin directory {self.path}: {reason}")


class LoadFailureError(CalculatorPluginError):
    """A candidate module file could not be loaded.

    Raised when the file is missing, cannot be compiled, or raises while
    its top-level code executes.
    """

    def __init__(self, path: Union[str, Path], reason: str):
        self.path = Path(path)
        self.reason = reason
        super().__init__(f"Failed to load plugin module {self.path}: {reason}")


class InstantiationFailureError(CalculatorPluginError):
    """A loaded module did not produce usable plugin instances."""

    def __init__(self, source: str, reason: str):
        self.source = source
        self.reason = reason
        super().__init__(f"Failed to instantiate plugins from {source}: {reason}")


class UserInputError(CalculatorPluginError, ValueError):
    """Invalid user-supplied value (non-integer input, bad menu index)."""

    pass


class SelectionOutOfRangeError(UserInputError, IndexError):
    """A menu index outside the registry bounds."""

    def __init__(self, index: int, count: int):
        self.index = index
        self.count = count
        if count:
            message = f"Selection {index} is out of range (0-{count - 1})"
        else:
            message = f"Selection {index} is out of range (no plugins available)"
        super().__init__(message)


class ComputationError(CalculatorPluginError, ArithmeticError):
    """A plugin could not compute a result for its inputs."""

    pass


class CalculationOverflowError(ComputationError):
    """A result does not fit the 32-bit signed integer range."""

    def __init__(self, value: int, message: Optional[str] = None):
        self.value = value
        super().__init__(message or f"Result {value} overflows a 32-bit signed integer")


class ConfigValidationError(CalculatorPluginError):
    """Raised when configuration validation fails."""

    def __init__(self, errors: List[str]):
        self.errors = errors
        super().__init__(f"Configuration validation failed: {'; '.join(errors)}")
