"""Integer division plugin.

Division truncates toward zero, so -7 / 2 is -3 rather than the -4 that
Python's floor division would give.
"""

from calchost.errors import ComputationError


class DivCalculator:
    """Divides the first integer by the second."""

    @property
    def name(self) -> str:
        return "割り算"

    def calculate(self, a: int, b: int) -> int:
        if b == 0:
            raise ComputationError("Division by zero is not allowed")
        quotient = abs(a) // abs(b)
        return quotient if (a < 0) == (b < 0) else -quotient


def create_plugins():
    """Factory function called by the registry."""
    return [DivCalculator()]
