"""Base protocol for calculator plugins."""

from dataclasses import dataclass
from enum import Enum
from typing import Protocol, runtime_checkable

from .errors import CalculationOverflowError


INT32_MIN = -(2 ** 31)
INT32_MAX = 2 ** 31 - 1


@runtime_checkable
class Calculator(Protocol):
    """Interface that all calculator plugins must implement.

    A plugin is any object exposing a display name and a two-argument
    integer operation. Plugins do not need to inherit from this class;
    conformance is checked structurally when the plugin is discovered.

    The operation should be deterministic and free of side effects. A
    plugin that cannot produce a result for its inputs (for example a
    division by zero) raises ComputationError instead of returning.
    """

    @property
    def name(self) -> str:
        """Human-readable name shown in the plugin menu."""
        ...

    def calculate(self, a: int, b: int) -> int:
        """Compute the result for two integers."""
        ...


@dataclass
class PluginInfo:
    """Descriptive record for one registry entry.

    Attributes:
        index: Zero-based menu position.
        name: The plugin's display name.
        source: File path or entry point the plugin was loaded from.
        type_name: Qualified class name of the plugin instance.
    """
    index: int
    name: str
    source: str
    type_name: str


class OverflowPolicy(str, Enum):
    """What to do with results outside the 32-bit signed range."""

    ERROR = "error"
    WRAP = "wrap"
    SATURATE = "saturate"


def in_int32_range(value: int) -> bool:
    """Check whether value fits a 32-bit signed integer."""
    return INT32_MIN <= value <= INT32_MAX


def apply_overflow_policy(value: int, policy: OverflowPolicy = OverflowPolicy.ERROR) -> int:
    """Bring a result into the 32-bit signed range according to policy.

    Args:
        value: Raw result returned by a plugin.
        policy: ERROR raises, WRAP uses two's complement wrap-around,
            SATURATE clamps to the nearest bound.

    Returns:
        The value, unchanged when it already fits.

    Raises:
        CalculationOverflowError: If policy is ERROR and value does not fit.
    """
    if in_int32_range(value):
        return value

    policy = OverflowPolicy(policy)
    if policy is OverflowPolicy.WRAP:
        return (value - INT32_MIN) % 2 ** 32 + INT32_MIN
    if policy is OverflowPolicy.SATURATE:
        return INT32_MAX if value > INT32_MAX else INT32_MIN
    raise CalculationOverflowError(value)
