"""Plugin registry for discovering, loading, and invoking calculator plugins."""

import importlib.metadata
import logging
import sys
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterator, List, NamedTuple, Optional, Set, Union

from .base import Calculator, PluginInfo, apply_overflow_policy, in_int32_range
from .config_loader import HostConfig
from .errors import (
    CalculatorPluginError,
    ComputationError,
    DirectoryNotFoundError,
    InstantiationFailureError,
    LoadFailureError,
    SelectionOutOfRangeError,
    UserInputError,
)
from .loader import ModuleLoader
from .locator import CandidatePaths, build_file_pattern
from .scanner import collect_instances, conforms, scan_module

logger = logging.getLogger(__name__)

# Installed packages register plugin factories under this group:
#     [project.entry-points."calchost.plugins"]
#     my_plugin = "my_package.plugins:create_plugins"
PLUGIN_ENTRY_POINT_GROUP = "calchost.plugins"

ENTRY_POINT_SOURCE_PREFIX = "entry-point:"


@dataclass
class DiscoveryFailure:
    """A candidate that was skipped during discovery.

    Attributes:
        source: File path or entry point label of the candidate.
        error: The load or instantiation error that caused the skip.
    """
    source: str
    error: CalculatorPluginError


class _ScanResult(NamedTuple):
    source: str
    instances: List[Calculator]
    error: Optional[CalculatorPluginError]


class _Entry(NamedTuple):
    plugin: Calculator
    source: str


class PluginRegistry:
    """Ordered collection of discovered calculator plugins.

    Plugins are kept in discovery order: plugin package directories by
    name, then files within a directory by name, then the order each
    module's factory returns its instances. Entry-point plugins follow
    the directory plugins. The menu index of a plugin is its position.

    Usage:
        registry = PluginRegistry()
        registry.discover()

        for info in registry.describe():
            print(f"{info.index}: {info.name}")

        result = registry.calculate(2, 6, 7)

    Each registry owns its module loader, so separate registries (for
    example in tests) never share discovery state. Calling discover()
    again skips files and entry points that are already registered.
    """

    def __init__(
        self,
        config: Optional[HostConfig] = None,
        loader: Optional[ModuleLoader] = None
    ):
        """Initialize the plugin registry.

        Args:
            config: Host configuration. Defaults to HostConfig() (bundled
                plugin directory, hard failure on a missing root, per
                candidate isolation of load errors).
            loader: Module loader to use. A new one is created if omitted.
        """
        self._config = config or HostConfig()
        self._loader = loader or ModuleLoader()
        self._entries: List[_Entry] = []
        self._sources: Set[str] = set()
        self.failures: List[DiscoveryFailure] = []

    @property
    def config(self) -> HostConfig:
        return self._config

    @property
    def loader(self) -> ModuleLoader:
        return self._loader

    # ==================== Discovery ====================

    def discover(
        self,
        root: Optional[Union[str, Path]] = None,
        include_entry_points: Optional[bool] = None
    ) -> List[str]:
        """Discover plugins from the plugin directory and entry points.

        Discovery order:
        1. Plugin files under root (directory, then file, then factory order)
        2. Entry points in the calchost.plugins group (installed packages)

        Args:
            root: Plugin root directory. Defaults to config.plugin_root.
            include_entry_points: Also load plugins registered via entry
                points. Defaults to config.entry_points.

        Returns:
            Names of the plugins added by this call, in registry order.

        Raises:
            DirectoryNotFoundError: If root is missing and the missing_root
                policy is "error". The registry is left unchanged.
            DirectoryAccessError: If root exists but cannot be listed.
            LoadFailureError, InstantiationFailureError: Only when the
                on_error policy is "abort". Plugins added earlier in the
                same call are removed again before the error propagates.
        """
        root = Path(root) if root is not None else Path(self._config.plugin_root)
        if include_entry_points is None:
            include_entry_points = self._config.entry_points

        pattern = build_file_pattern(self._config.file_prefix, self._config.extensions)
        candidates = CandidatePaths(root, pattern)

        try:
            directories = candidates.directories()
        except DirectoryNotFoundError:
            if self._config.missing_root != "empty":
                raise
            logger.warning("Plugin directory %s does not exist; no directory plugins loaded", root)
            directories = []

        checkpoint = len(self._entries)
        sources_checkpoint = set(self._sources)
        failures_checkpoint = list(self.failures)
        skipped = 0

        try:
            for results in self._scan_directories(candidates, directories):
                for result in results:
                    skipped += not self._accept(result)

            if include_entry_points:
                for result in self._scan_entry_points():
                    skipped += not self._accept(result)
        except CalculatorPluginError:
            del self._entries[checkpoint:]
            self.failures = failures_checkpoint
            self._sources = sources_checkpoint
            raise

        added = [entry.plugin.name for entry in self._entries[checkpoint:]]
        logger.info(
            "Discovered %d plugin(s) under %s (%d skipped)",
            len(added), root, skipped
        )
        return added

    def _scan_directories(
        self,
        candidates: CandidatePaths,
        directories: List[Path]
    ) -> List[List[_ScanResult]]:
        """Load and scan every plugin package directory.

        With more than one worker, directories are processed in parallel.
        Executor.map returns results in input order, so the merged order
        is the same as a sequential pass.
        """
        workers = max(1, int(self._config.workers))
        if workers == 1 or len(directories) < 2:
            return [self._scan_directory(candidates, d) for d in directories]

        with ThreadPoolExecutor(max_workers=workers) as executor:
            return list(executor.map(lambda d: self._scan_directory(candidates, d), directories))

    def _scan_directory(self, candidates: CandidatePaths, directory: Path) -> List[_ScanResult]:
        results = []
        for path in candidates.files_in(directory):
            source = str(path.resolve())
            if source in self._sources:
                logger.debug("Skipping already registered module %s", source)
                continue
            try:
                module = self._loader.load(path)
                instances = scan_module(module, source=source)
            except (LoadFailureError, InstantiationFailureError) as exc:
                results.append(_ScanResult(source, [], exc))
                continue
            results.append(_ScanResult(source, instances, None))
        return results

    def _scan_entry_points(self) -> List[_ScanResult]:
        """Load plugin factories registered via entry points.

        External packages can register plugins by adding to the
        calchost.plugins entry point group in their pyproject.toml.
        """
        # Python 3.10+ API
        if sys.version_info >= (3, 10):
            eps = importlib.metadata.entry_points(group=PLUGIN_ENTRY_POINT_GROUP)
        else:
            # Python 3.9 compatibility
            eps = importlib.metadata.entry_points().get(PLUGIN_ENTRY_POINT_GROUP, [])

        results = []
        for ep in sorted(eps, key=lambda e: e.name):
            source = f"{ENTRY_POINT_SOURCE_PREFIX}{ep.name}"
            if source in self._sources:
                continue

            try:
                factory = ep.load()
            except Exception as exc:
                error = LoadFailureError(ep.value, f"{type(exc).__name__}: {exc}")
                error.__cause__ = exc
                results.append(_ScanResult(source, [], error))
                continue

            try:
                produced = factory() if callable(factory) else factory
                instances = collect_instances(produced, source)
            except InstantiationFailureError as exc:
                results.append(_ScanResult(source, [], exc))
                continue
            except Exception as exc:
                error = InstantiationFailureError(source, f"{type(exc).__name__}: {exc}")
                error.__cause__ = exc
                results.append(_ScanResult(source, [], error))
                continue
            results.append(_ScanResult(source, instances, None))
        return results

    def _accept(self, result: _ScanResult) -> bool:
        """Merge one scan result into the registry, applying on_error.

        failures holds at most one record per source: the error from the
        latest pass that tried it. A source that loads on a later pass
        drops its record.

        Returns:
            False if the candidate was skipped.
        """
        self.failures = [f for f in self.failures if f.source != result.source]
        if result.error is not None:
            if self._config.on_error == "abort":
                raise result.error
            logger.warning("Skipping plugin candidate %s: %s", result.source, result.error)
            self.failures.append(DiscoveryFailure(result.source, result.error))
            return False

        self._sources.add(result.source)
        for plugin in result.instances:
            self._entries.append(_Entry(plugin, result.source))
            logger.debug("Registered plugin '%s' from %s", plugin.name, result.source)
        return True

    def register_plugin(self, plugin: Calculator, source: str = "manual") -> int:
        """Manually register a plugin instance.

        Use this for plugins constructed by the host itself rather than
        discovered on disk.

        Args:
            plugin: The plugin instance to register.
            source: Label recorded as the plugin's origin.

        Returns:
            The menu index assigned to the plugin.

        Raises:
            InstantiationFailureError: If plugin does not implement Calculator.
        """
        if not conforms(plugin):
            raise InstantiationFailureError(source, f"{plugin!r} does not implement the Calculator protocol")
        self._entries.append(_Entry(plugin, source))
        return len(self._entries) - 1

    # ==================== Lookup ====================

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[Calculator]:
        return iter(self.plugins())

    def __getitem__(self, index: int) -> Calculator:
        return self.get(index)

    def plugins(self) -> List[Calculator]:
        """List registered plugins in menu order."""
        return [entry.plugin for entry in self._entries]

    def list_available(self) -> List[str]:
        """List registered plugin names in menu order."""
        return [entry.plugin.name for entry in self._entries]

    def describe(self) -> List[PluginInfo]:
        """Describe every registered plugin for menus and listings."""
        return [
            PluginInfo(
                index=i,
                name=entry.plugin.name,
                source=entry.source,
                type_name=f"{type(entry.plugin).__module__}.{type(entry.plugin).__qualname__}",
            )
            for i, entry in enumerate(self._entries)
        ]

    def get(self, index: int) -> Calculator:
        """Get a plugin by menu index.

        Args:
            index: Zero-based menu index. Negative indices are out of range.

        Raises:
            UserInputError: If index is not an integer.
            SelectionOutOfRangeError: If index is outside the registry.
        """
        if isinstance(index, bool) or not isinstance(index, int):
            raise UserInputError(f"Selection must be an integer, got {index!r}")
        if not 0 <= index < len(self._entries):
            raise SelectionOutOfRangeError(index, len(self._entries))
        return self._entries[index].plugin

    def find(self, name: str) -> Optional[Calculator]:
        """Get the first plugin with the given name, or None if not found."""
        for entry in self._entries:
            if entry.plugin.name == name:
                return entry.plugin
        return None

    # ==================== Invocation ====================

    def calculate(self, index: int, a: int, b: int) -> int:
        """Run the plugin at index on two integers.

        The index and both operands are validated before the plugin is
        called. The result is checked against the configured overflow
        policy.

        Raises:
            UserInputError: If the index or an operand is invalid.
            ComputationError: If the plugin fails or returns a non-integer.
            CalculationOverflowError: If the result overflows and the
                overflow policy is "error".
        """
        plugin = self.get(index)
        for label, value in (("a", a), ("b", b)):
            _validate_operand(label, value)

        try:
            result = plugin.calculate(a, b)
        except ComputationError:
            raise
        except Exception as exc:
            raise ComputationError(f"Plugin '{plugin.name}' failed: {type(exc).__name__}: {exc}") from exc

        if isinstance(result, bool) or not isinstance(result, int):
            raise ComputationError(
                f"Plugin '{plugin.name}' returned {type(result).__name__}, expected int"
            )
        return apply_overflow_policy(result, self._config.overflow)


def _validate_operand(label: str, value: Any) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise UserInputError(f"Operand {label} must be an integer, got {value!r}")
    if not in_int32_range(value):
        raise UserInputError(f"Operand {label}={value} is outside the 32-bit integer range")
