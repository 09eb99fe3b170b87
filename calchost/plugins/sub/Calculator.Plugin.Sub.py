"""Subtraction plugin."""


class SubCalculator:
    """Subtracts the second integer from the first."""

    @property
    def name(self) -> str:
        return "引き算"

    def calculate(self, a: int, b: int) -> int:
        return a - b


def create_plugins():
    """Factory function called by the registry."""
    return [SubCalculator()]
