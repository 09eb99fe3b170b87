"""Shared fixtures for building plugin trees on disk."""

import textwrap
from pathlib import Path

import pytest


CALCULATOR_TEMPLATE = '''
class {class_name}:

    name = {name!r}

    def calculate(self, a, b):
        return {expression}


def create_plugins():
    return [{class_name}()]
'''


def write_plugin_file(root: Path, directory: str, filename: str, source: str) -> Path:
    """Write a plugin module file under root/directory and return its path."""
    plugin_dir = root / directory
    plugin_dir.mkdir(parents=True, exist_ok=True)
    path = plugin_dir / filename
    path.write_text(textwrap.dedent(source), encoding="utf-8")
    return path


def write_calculator(
    root: Path,
    directory: str,
    name: str,
    expression: str,
    class_name: str = "TestCalculator",
    filename: str = None
) -> Path:
    """Write a single-plugin module computing expression from a and b."""
    filename = filename or f"Calculator.Plugin.{directory.title()}.py"
    source = CALCULATOR_TEMPLATE.format(class_name=class_name, name=name, expression=expression)
    return write_plugin_file(root, directory, filename, source)


@pytest.fixture
def plugin_root(tmp_path):
    """An empty plugin root directory."""
    root = tmp_path / "plugins"
    root.mkdir()
    return root


@pytest.fixture
def arithmetic_root(plugin_root):
    """Plugin root with add, subtract and multiply packages, in that order."""
    write_calculator(plugin_root, "01_add", "足し算", "a + b", "AddCalculator",
                     "Calculator.Plugin.Add.py")
    write_calculator(plugin_root, "02_subtract", "引き算", "a - b", "SubCalculator",
                     "Calculator.Plugin.Sub.py")
    write_calculator(plugin_root, "03_multiply", "掛け算", "a * b", "MulCalculator",
                     "Calculator.Plugin.Mul.py")
    return plugin_root


@pytest.fixture
def plugin_writer():
    """Function writing arbitrary plugin module source."""
    return write_plugin_file


@pytest.fixture
def calculator_writer():
    """Function writing a single-calculator plugin module."""
    return write_calculator
