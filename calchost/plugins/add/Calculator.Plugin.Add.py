"""Addition plugin."""


class AddCalculator:
    """Adds two integers."""

    @property
    def name(self) -> str:
        return "足し算"

    def calculate(self, a: int, b: int) -> int:
        return a + b


def create_plugins():
    """Factory function called by the registry."""
    return [AddCalculator()]
