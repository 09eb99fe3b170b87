"""Collecting plugin instances from loaded modules.

A plugin module declares what it provides through a factory function:

    def create_plugins():
        return [AddCalculator()]

The single-instance form used by other plugin packages is also accepted:

    def create_plugin():
        return AddCalculator()

When a module defines both, ``create_plugins`` is used.
"""

import logging
from types import ModuleType
from typing import Any, Callable, List, Optional

from .base import Calculator
from .errors import InstantiationFailureError

logger = logging.getLogger(__name__)

FACTORY_NAMES = ("create_plugins", "create_plugin")

# Called with (source, rejected object, reason)
RejectCallback = Callable[[str, Any, str], None]


def conforms(obj: Any) -> bool:
    """Check whether an object satisfies the Calculator protocol.

    Besides the structural protocol check, the name must be a string and
    calculate must be callable.
    """
    if obj is None or isinstance(obj, type):
        return False
    try:
        if not isinstance(obj, Calculator):
            return False
        name = obj.name
    except Exception:
        return False
    return isinstance(name, str) and callable(getattr(obj, "calculate", None))


def _log_rejected(source: str, obj: Any, reason: str) -> None:
    logger.warning("Skipping %r from %s: %s", obj, source, reason)


def find_factory(module: ModuleType) -> Optional[Callable[[], Any]]:
    """Return the module's plugin factory, or None if it has none."""
    for factory_name in FACTORY_NAMES:
        factory = getattr(module, factory_name, None)
        if callable(factory):
            return factory
    return None


def collect_instances(
    produced: Any,
    source: str,
    on_rejected: Optional[RejectCallback] = None
) -> List[Calculator]:
    """Filter a factory's return value down to conforming instances.

    Args:
        produced: A single plugin instance or an iterable of them.
        source: Label used in messages (file path or entry point name).
        on_rejected: Called for each non-conforming element.

    Returns:
        Conforming instances in the order the factory produced them.

    Raises:
        InstantiationFailureError: If the value is neither a plugin nor iterable,
            or iterating it raises.
    """
    on_rejected = on_rejected or _log_rejected

    if conforms(produced):
        return [produced]
    if produced is None or isinstance(produced, (str, bytes, dict)):
        raise InstantiationFailureError(
            source, f"factory returned {type(produced).__name__}, expected a list of plugins"
        )
    try:
        candidates = list(produced)
    except TypeError as exc:
        raise InstantiationFailureError(
            source, f"factory returned {type(produced).__name__}, expected a list of plugins"
        ) from exc
    except Exception as exc:
        # Generators run the factory body lazily, so plugin errors surface here
        raise InstantiationFailureError(source, f"{type(exc).__name__}: {exc}") from exc

    instances: List[Calculator] = []
    for obj in candidates:
        if conforms(obj):
            instances.append(obj)
        else:
            on_rejected(source, obj, "does not implement the Calculator protocol")
    return instances


def scan_module(
    module: ModuleType,
    source: Optional[str] = None,
    on_rejected: Optional[RejectCallback] = None
) -> List[Calculator]:
    """Instantiate the plugins a loaded module provides.

    Args:
        module: Module returned by ModuleLoader.load().
        source: Label for messages. Defaults to the module's file path.
        on_rejected: Called for each non-conforming object the factory returns.

    Returns:
        Conforming plugin instances, possibly empty.

    Raises:
        InstantiationFailureError: If the module has no factory, the factory
            raises, or its return value is not a plugin or list of plugins.
    """
    source = source or getattr(module, "__file__", None) or module.__name__

    factory = find_factory(module)
    if factory is None:
        raise InstantiationFailureError(
            source, f"module defines none of {', '.join(FACTORY_NAMES)}()"
        )

    try:
        produced = factory()
    except Exception as exc:
        raise InstantiationFailureError(source, f"{type(exc).__name__}: {exc}") from exc

    return collect_instances(produced, source, on_rejected)
