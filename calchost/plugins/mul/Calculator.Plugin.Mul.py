"""Multiplication plugin."""


class MulCalculator:

    name = "掛け算"

    def calculate(self, a: int, b: int) -> int:
        return a * b


def create_plugins():
    """Factory function called by the registry."""
    return [MulCalculator()]
