"""Tests for PluginRegistry discovery, lookup and invocation."""

import importlib.metadata
from types import SimpleNamespace

import pytest

from calchost.base import OverflowPolicy
from calchost.config_loader import HostConfig
from calchost.errors import (
    CalculationOverflowError,
    ComputationError,
    DirectoryNotFoundError,
    InstantiationFailureError,
    LoadFailureError,
    SelectionOutOfRangeError,
    UserInputError,
)
from calchost.registry import PLUGIN_ENTRY_POINT_GROUP, PluginRegistry
from calchost.scanner import conforms


def make_registry(root, **overrides):
    config = HostConfig(plugin_root=root, entry_points=False, **overrides)
    return PluginRegistry(config)


class TestDiscovery:
    """Tests for discovering plugins under a plugin root."""

    def test_single_plugin(self, plugin_root, calculator_writer):
        calculator_writer(plugin_root, "add", "足し算", "a + b", filename="Calculator.Plugin.Add.py")
        registry = make_registry(plugin_root)

        discovered = registry.discover()

        assert discovered == ["足し算"]
        assert len(registry) == 1
        assert registry.calculate(0, 3, 4) == 7

    def test_three_packages(self, arithmetic_root):
        registry = make_registry(arithmetic_root)

        registry.discover()

        assert registry.list_available() == ["足し算", "引き算", "掛け算"]
        assert registry.calculate(2, 6, 7) == 42

    @pytest.mark.parametrize("count", [0, 1, 4, 7])
    def test_one_entry_per_package(self, plugin_root, calculator_writer, count):
        for i in range(count):
            calculator_writer(plugin_root, f"pkg{i:02d}", f"plugin {i}", f"a + {i}")
        registry = make_registry(plugin_root)

        registry.discover()

        assert len(registry) == count
        assert all(conforms(plugin) for plugin in registry)

    def test_every_entry_conforms(self, plugin_root, plugin_writer):
        plugin_writer(plugin_root, "mixed", "Calculator.Plugin.Mixed.py", """
            class Good:
                name = "good"

                def calculate(self, a, b):
                    return a + b


            class MissingCalculate:
                name = "missing"


            class NotAPlugin:
                pass


            def create_plugins():
                return [MissingCalculate(), Good(), NotAPlugin(), None]
        """)
        registry = make_registry(plugin_root)

        registry.discover()

        assert registry.list_available() == ["good"]
        assert registry.failures == []

    def test_module_with_many_plugins(self, plugin_root, plugin_writer):
        plugin_writer(plugin_root, "multi", "Calculator.Plugin.Multi.py", """
            class Max:
                name = "max"

                def calculate(self, a, b):
                    return max(a, b)


            class Min:
                name = "min"

                def calculate(self, a, b):
                    return min(a, b)


            def create_plugins():
                return [Max(), Min()]
        """)
        registry = make_registry(plugin_root)

        registry.discover()

        assert registry.list_available() == ["max", "min"]

    def test_identical_plugins_in_two_modules_both_kept(self, plugin_root, calculator_writer):
        calculator_writer(plugin_root, "one", "same", "a + b")
        calculator_writer(plugin_root, "two", "same", "a + b")
        registry = make_registry(plugin_root)

        registry.discover()

        assert registry.list_available() == ["same", "same"]
        assert registry[0] is not registry[1]

    def test_stable_order_across_runs(self, plugin_root, calculator_writer):
        for directory in ["zeta", "alpha", "mid", "beta"]:
            calculator_writer(plugin_root, directory, directory, "a")

        runs = []
        for _ in range(3):
            registry = make_registry(plugin_root)
            registry.discover()
            runs.append(registry.list_available())

        assert runs[0] == ["alpha", "beta", "mid", "zeta"]
        assert runs[0] == runs[1] == runs[2]

    def test_default_root_from_config(self, arithmetic_root):
        registry = PluginRegistry(HostConfig(plugin_root=arithmetic_root, entry_points=False))

        registry.discover()

        assert len(registry) == 3

    def test_explicit_root_overrides_config(self, arithmetic_root, tmp_path):
        registry = make_registry(tmp_path / "elsewhere")

        registry.discover(arithmetic_root)

        assert len(registry) == 3

    def test_describe(self, arithmetic_root):
        registry = make_registry(arithmetic_root)
        registry.discover()

        infos = registry.describe()

        assert [(i.index, i.name) for i in infos] == [(0, "足し算"), (1, "引き算"), (2, "掛け算")]
        assert infos[0].source.endswith("Calculator.Plugin.Add.py")
        assert infos[2].type_name.endswith(".MulCalculator")


class TestRepeatedDiscovery:
    """Tests for calling discover() more than once."""

    def test_no_duplicates(self, arithmetic_root):
        registry = make_registry(arithmetic_root)

        registry.discover()
        second = registry.discover()

        assert second == []
        assert len(registry) == 3

    def test_modules_not_reloaded(self, arithmetic_root):
        registry = make_registry(arithmetic_root)

        registry.discover()
        loaded = registry.loader.loaded_paths()
        registry.discover()

        assert registry.loader.loaded_paths() == loaded

    def test_picks_up_new_packages(self, arithmetic_root, calculator_writer):
        registry = make_registry(arithmetic_root)
        registry.discover()

        calculator_writer(arithmetic_root, "04_divide", "割り算", "a // b")
        added = registry.discover()

        assert added == ["割り算"]
        assert registry.list_available()[-1] == "割り算"

    def test_failures_not_duplicated(self, plugin_root, plugin_writer):
        plugin_writer(plugin_root, "a", "Calculator.Plugin.A.py", """
            class Lonely:
                name = "lonely"

                def calculate(self, a, b):
                    return a
        """)
        registry = make_registry(plugin_root)

        registry.discover()
        registry.discover()

        assert len(registry.failures) == 1

    def test_failure_cleared_after_fix(self, arithmetic_root, plugin_writer, calculator_writer):
        plugin_writer(arithmetic_root, "04_divide", "Calculator.Plugin.Div.py", "this is not python\n")
        registry = make_registry(arithmetic_root)
        registry.discover()
        assert len(registry.failures) == 1

        calculator_writer(arithmetic_root, "04_divide", "割り算", "a // b",
                          filename="Calculator.Plugin.Div.py")
        added = registry.discover()

        assert added == ["割り算"]
        assert registry.failures == []

    def test_separate_registries_are_independent(self, arithmetic_root):
        first = make_registry(arithmetic_root)
        second = make_registry(arithmetic_root)

        first.discover()
        second.discover()

        assert len(first) == len(second) == 3
        assert first[0] is not second[0]


class TestMissingRoot:
    """Tests for a plugin root that does not exist."""

    def test_raises_by_default(self, tmp_path):
        registry = make_registry(tmp_path / "missing")

        with pytest.raises(DirectoryNotFoundError):
            registry.discover()

        assert len(registry) == 0

    def test_existing_entries_untouched(self, arithmetic_root, tmp_path):
        registry = make_registry(arithmetic_root)
        registry.discover()

        with pytest.raises(DirectoryNotFoundError):
            registry.discover(tmp_path / "missing")

        assert len(registry) == 3

    def test_empty_policy(self, tmp_path):
        registry = make_registry(tmp_path / "missing", missing_root="empty")

        assert registry.discover() == []
        assert len(registry) == 0


class TestFailureIsolation:
    """Tests for broken candidates under the default skip policy."""

    def test_invalid_module_skipped(self, arithmetic_root, plugin_writer):
        plugin_writer(arithmetic_root, "02a_broken", "Calculator.Plugin.Broken.py", "this is not python\n")
        registry = make_registry(arithmetic_root)

        registry.discover()

        assert registry.list_available() == ["足し算", "引き算", "掛け算"]
        assert len(registry.failures) == 1
        assert isinstance(registry.failures[0].error, LoadFailureError)
        assert registry.failures[0].source.endswith("Calculator.Plugin.Broken.py")

    def test_missing_factory_skipped(self, arithmetic_root, plugin_writer):
        plugin_writer(arithmetic_root, "00_nofactory", "Calculator.Plugin.NoFactory.py", """
            class Lonely:
                name = "lonely"

                def calculate(self, a, b):
                    return a
        """)
        registry = make_registry(arithmetic_root)

        registry.discover()

        assert len(registry) == 3
        assert isinstance(registry.failures[0].error, InstantiationFailureError)

    def test_factory_error_skipped(self, arithmetic_root, plugin_writer):
        plugin_writer(arithmetic_root, "00_raises", "Calculator.Plugin.Raises.py", """
            def create_plugins():
                raise RuntimeError("cannot construct")
        """)
        registry = make_registry(arithmetic_root)

        registry.discover()

        assert len(registry) == 3
        assert "cannot construct" in str(registry.failures[0].error)

    def test_generator_factory_error_skipped(self, plugin_root, calculator_writer, plugin_writer):
        calculator_writer(plugin_root, "01_add", "足し算", "a + b", filename="Calculator.Plugin.Add.py")
        plugin_writer(plugin_root, "02_bad", "Calculator.Plugin.Bad.py", """
            class Good:
                name = "good"

                def calculate(self, a, b):
                    return a

            def create_plugins():
                yield Good()
                raise ValueError("plugin bug")
        """)
        registry = make_registry(plugin_root)

        registry.discover()

        assert registry.list_available() == ["足し算"]
        assert len(registry.failures) == 1
        assert isinstance(registry.failures[0].error, InstantiationFailureError)
        assert "plugin bug" in str(registry.failures[0].error)

    def test_all_broken(self, plugin_root, plugin_writer):
        plugin_writer(plugin_root, "a", "Calculator.Plugin.A.py", "raise ImportError('x')\n")
        plugin_writer(plugin_root, "b", "Calculator.Plugin.B.py", "def create_plugins(:\n")
        registry = make_registry(plugin_root)

        assert registry.discover() == []
        assert len(registry.failures) == 2


class TestAbortPolicy:
    """Tests for on_error='abort'."""

    def test_first_failure_raises(self, arithmetic_root, plugin_writer):
        plugin_writer(arithmetic_root, "02a_broken", "Calculator.Plugin.Broken.py", "this is not python\n")
        registry = make_registry(arithmetic_root, on_error="abort")

        with pytest.raises(LoadFailureError):
            registry.discover()

    def test_no_partial_registry(self, arithmetic_root, plugin_writer):
        plugin_writer(arithmetic_root, "02a_broken", "Calculator.Plugin.Broken.py", "this is not python\n")
        registry = make_registry(arithmetic_root, on_error="abort")

        with pytest.raises(LoadFailureError):
            registry.discover()

        assert len(registry) == 0
        assert registry.failures == []

    def test_retry_after_fix(self, arithmetic_root, plugin_writer):
        broken = plugin_writer(arithmetic_root, "02a_broken", "Calculator.Plugin.Broken.py",
                               "this is not python\n")
        registry = make_registry(arithmetic_root, on_error="abort")
        with pytest.raises(LoadFailureError):
            registry.discover()

        broken.unlink()

        assert registry.discover() == ["足し算", "引き算", "掛け算"]


class TestParallelDiscovery:
    """Tests for loading directories with several workers."""

    def test_same_order_as_sequential(self, plugin_root, calculator_writer):
        for i in range(12):
            calculator_writer(plugin_root, f"pkg{i:02d}", f"plugin {i}", f"a * {i}")

        sequential = make_registry(plugin_root)
        sequential.discover()
        parallel = make_registry(plugin_root, workers=4)
        parallel.discover()

        assert parallel.list_available() == sequential.list_available()

    def test_failures_isolated(self, arithmetic_root, plugin_writer):
        plugin_writer(arithmetic_root, "02a_broken", "Calculator.Plugin.Broken.py", "this is not python\n")
        registry = make_registry(arithmetic_root, workers=3)

        registry.discover()

        assert registry.list_available() == ["足し算", "引き算", "掛け算"]
        assert len(registry.failures) == 1


class TestEntryPoints:
    """Tests for plugins registered through package entry points."""

    def _fake_entry_points(self, monkeypatch, entries):
        def entry_points(**kwargs):
            assert kwargs.get("group") == PLUGIN_ENTRY_POINT_GROUP
            return entries

        monkeypatch.setattr(importlib.metadata, "entry_points", entry_points)

    def _entry(self, name, factory):
        return SimpleNamespace(name=name, value=f"pkg:{name}", load=lambda: factory)

    def test_entry_point_plugins_follow_directory_plugins(self, arithmetic_root, monkeypatch):
        class Power:
            name = "累乗"

            def calculate(self, a, b):
                return a ** b

        self._fake_entry_points(monkeypatch, [self._entry("power", lambda: [Power()])])
        registry = PluginRegistry(HostConfig(plugin_root=arithmetic_root))

        registry.discover()

        assert registry.list_available() == ["足し算", "引き算", "掛け算", "累乗"]
        assert registry.calculate(3, 2, 10) == 1024
        assert registry.describe()[3].source == "entry-point:power"

    def test_entry_point_loaded_once(self, plugin_root, monkeypatch):
        class One:
            name = "one"

            def calculate(self, a, b):
                return 1

        self._fake_entry_points(monkeypatch, [self._entry("one", lambda: One())])
        registry = PluginRegistry(HostConfig(plugin_root=plugin_root))

        registry.discover()
        registry.discover()

        assert registry.list_available() == ["one"]

    def test_broken_entry_point_skipped(self, plugin_root, monkeypatch):
        def failing_load():
            raise ImportError("package missing")

        broken = SimpleNamespace(name="broken", value="pkg:broken", load=failing_load)
        self._fake_entry_points(monkeypatch, [broken])
        registry = PluginRegistry(HostConfig(plugin_root=plugin_root))

        registry.discover()

        assert len(registry) == 0
        assert registry.failures[0].source == "entry-point:broken"

    def test_disabled(self, plugin_root, monkeypatch):
        self._fake_entry_points(monkeypatch, [self._entry("x", lambda: pytest.fail("loaded"))])
        registry = PluginRegistry(HostConfig(plugin_root=plugin_root))

        registry.discover(include_entry_points=False)

        assert len(registry) == 0


class TestSelection:
    """Tests for bounds-checked lookup."""

    def test_get(self, arithmetic_root):
        registry = make_registry(arithmetic_root)
        registry.discover()

        assert registry.get(1).name == "引き算"
        assert registry[1] is registry.get(1)

    @pytest.mark.parametrize("index", [3, 5, 100, -1])
    def test_out_of_range(self, arithmetic_root, index):
        registry = make_registry(arithmetic_root)
        registry.discover()

        with pytest.raises(SelectionOutOfRangeError) as exc_info:
            registry.get(index)

        assert exc_info.value.index == index
        assert exc_info.value.count == 3

    def test_out_of_range_is_user_input_error(self, arithmetic_root):
        registry = make_registry(arithmetic_root)
        registry.discover()

        with pytest.raises(UserInputError):
            registry.get(5)

    def test_out_of_range_before_invocation(self, plugin_root, plugin_writer):
        plugin_writer(plugin_root, "spy", "Calculator.Plugin.Spy.py", """
            calls = []


            class Spy:
                name = "spy"

                def calculate(self, a, b):
                    calls.append((a, b))
                    return 0


            def create_plugins():
                return [Spy(), Spy(), Spy()]
        """)
        registry = make_registry(plugin_root)
        registry.discover()
        module = registry.loader.load(plugin_root / "spy" / "Calculator.Plugin.Spy.py")

        with pytest.raises(UserInputError):
            registry.calculate(5, 1, 2)

        assert module.calls == []

    @pytest.mark.parametrize("index", ["1", 1.0, None, True])
    def test_non_integer_index(self, arithmetic_root, index):
        registry = make_registry(arithmetic_root)
        registry.discover()

        with pytest.raises(UserInputError):
            registry.get(index)

    def test_empty_registry(self, plugin_root):
        registry = make_registry(plugin_root)
        registry.discover()

        with pytest.raises(SelectionOutOfRangeError, match="no plugins"):
            registry.get(0)

    def test_find(self, arithmetic_root):
        registry = make_registry(arithmetic_root)
        registry.discover()

        assert registry.find("掛け算") is registry[2]
        assert registry.find("割り算") is None


class TestCalculate:
    """Tests for invoking plugins through the registry."""

    def test_deterministic(self, arithmetic_root):
        registry = make_registry(arithmetic_root)
        registry.discover()

        for index in range(len(registry)):
            assert registry.calculate(index, 12, -5) == registry.calculate(index, 12, -5)

    @pytest.mark.parametrize("a,b", [(1.5, 2), (1, "2"), (True, 1), (2 ** 31, 0), (0, -(2 ** 31) - 1)])
    def test_invalid_operands(self, arithmetic_root, a, b):
        registry = make_registry(arithmetic_root)
        registry.discover()

        with pytest.raises(UserInputError):
            registry.calculate(0, a, b)

    def test_overflow_error_by_default(self, arithmetic_root):
        registry = make_registry(arithmetic_root)
        registry.discover()

        with pytest.raises(CalculationOverflowError) as exc_info:
            registry.calculate(2, 2 ** 20, 2 ** 20)

        assert exc_info.value.value == 2 ** 40

    def test_overflow_wrap(self, arithmetic_root):
        registry = make_registry(arithmetic_root, overflow=OverflowPolicy.WRAP)
        registry.discover()

        assert registry.calculate(0, 2 ** 31 - 1, 1) == -(2 ** 31)

    def test_overflow_saturate(self, arithmetic_root):
        registry = make_registry(arithmetic_root, overflow=OverflowPolicy.SATURATE)
        registry.discover()

        assert registry.calculate(1, -(2 ** 31), 1) == -(2 ** 31)

    def test_plugin_computation_error_propagates(self, plugin_root, plugin_writer):
        plugin_writer(plugin_root, "div", "Calculator.Plugin.Div.py", """
            from calchost.errors import ComputationError


            class Div:
                name = "div"

                def calculate(self, a, b):
                    if b == 0:
                        raise ComputationError("division by zero")
                    return a // b


            def create_plugins():
                return [Div()]
        """)
        registry = make_registry(plugin_root)
        registry.discover()

        with pytest.raises(ComputationError, match="division by zero"):
            registry.calculate(0, 1, 0)

    def test_unexpected_exception_wrapped(self, plugin_root, calculator_writer):
        calculator_writer(plugin_root, "div", "div", "a // b")
        registry = make_registry(plugin_root)
        registry.discover()

        with pytest.raises(ComputationError) as exc_info:
            registry.calculate(0, 1, 0)

        assert isinstance(exc_info.value.__cause__, ZeroDivisionError)

    def test_non_integer_result(self, plugin_root, calculator_writer):
        calculator_writer(plugin_root, "div", "true div", "a / b")
        registry = make_registry(plugin_root)
        registry.discover()

        with pytest.raises(ComputationError, match="expected int"):
            registry.calculate(0, 7, 2)


class TestRegisterPlugin:
    """Tests for manual registration."""

    def test_register(self, plugin_root):
        class Mod:
            name = "mod"

            def calculate(self, a, b):
                return a % b

        registry = make_registry(plugin_root)

        index = registry.register_plugin(Mod())

        assert index == 0
        assert registry.calculate(index, 7, 3) == 1
        assert registry.describe()[0].source == "manual"

    def test_register_non_conforming(self, plugin_root):
        registry = make_registry(plugin_root)

        with pytest.raises(InstantiationFailureError):
            registry.register_plugin(object())

        assert len(registry) == 0
