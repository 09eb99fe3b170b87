"""calchost - a host that discovers calculator plugins at runtime.

Usage:
    from calchost import PluginRegistry

    registry = PluginRegistry()
    registry.discover()

    print(registry.list_available())  # ['足し算', '割り算', '掛け算', '引き算']
    print(registry.calculate(2, 6, 7))  # 42

Writing a plugin:
    Put a file named ``Calculator.Plugin.<Name>.py`` in its own
    subdirectory of the plugin root, defining any class with a ``name``
    and a ``calculate(a, b)`` method plus a ``create_plugins()`` factory
    returning instances of it.
"""

from .base import (
    Calculator,
    INT32_MAX,
    INT32_MIN,
    OverflowPolicy,
    PluginInfo,
    apply_overflow_policy,
)
from .config_loader import HostConfig, load_config
from .errors import (
    CalculationOverflowError,
    CalculatorPluginError,
    ComputationError,
    ConfigValidationError,
    DirectoryAccessError,
    DirectoryNotFoundError,
    InstantiationFailureError,
    LoadFailureError,
    SelectionOutOfRangeError,
    UserInputError,
)
from .loader import ModuleLoader
from .locator import CandidatePaths, PLUGIN_FILE_PATTERN, iter_candidate_paths
from .registry import DiscoveryFailure, PluginRegistry
from .scanner import scan_module

__all__ = [
    # Contract
    "Calculator",
    "PluginInfo",
    "OverflowPolicy",
    "apply_overflow_policy",
    "INT32_MIN",
    "INT32_MAX",
    # Discovery
    "CandidatePaths",
    "PLUGIN_FILE_PATTERN",
    "iter_candidate_paths",
    "ModuleLoader",
    "scan_module",
    "PluginRegistry",
    "DiscoveryFailure",
    # Configuration
    "HostConfig",
    "load_config",
    # Errors
    "CalculatorPluginError",
    "DirectoryAccessError",
    "DirectoryNotFoundError",
    "LoadFailureError",
    "InstantiationFailureError",
    "UserInputError",
    "SelectionOutOfRangeError",
    "ComputationError",
    "CalculationOverflowError",
    "ConfigValidationError",
]
