"""Loading plugin module files into the running interpreter."""

import hashlib
import importlib.machinery
import importlib.util
import logging
import re
import sys
from pathlib import Path
from types import ModuleType
from typing import Dict, List, Union

from .errors import LoadFailureError

logger = logging.getLogger(__name__)

# Package-like prefix for the synthetic names plugin modules get in sys.modules
MODULE_NAMESPACE = "calchost_plugins"


def module_name_for(path: Path) -> str:
    """Build a unique, importable module name for a plugin file.

    File names like ``Calculator.Plugin.Add.py`` contain dots, so the stem
    is sanitized and a short hash of the resolved path keeps two files with
    the same name in different directories apart.
    """
    stem = re.sub(r"\W", "_", path.stem)
    digest = hashlib.sha1(str(path).encode("utf-8")).hexdigest()[:10]
    return f"{MODULE_NAMESPACE}.{stem}_{digest}"


class ModuleLoader:
    """Loads plugin modules from file paths and keeps them resident.

    The loader owns its table of loaded modules. Loading the same path a
    second time returns the module from the first load without executing
    it again.

    Usage:
        loader = ModuleLoader()
        module = loader.load(Path("plugins/add/Calculator.Plugin.Add.py"))
    """

    def __init__(self):
        self._modules: Dict[Path, ModuleType] = {}

    def __len__(self) -> int:
        return len(self._modules)

    def is_loaded(self, path: Union[str, Path]) -> bool:
        """Check whether a file has already been loaded by this loader."""
        return Path(path).resolve() in self._modules

    def loaded_paths(self) -> List[Path]:
        """List loaded file paths in load order."""
        return list(self._modules.keys())

    def load(self, path: Union[str, Path]) -> ModuleType:
        """Load a plugin module from a file.

        Args:
            path: Path to the module file.

        Returns:
            The loaded module.

        Raises:
            LoadFailureError: If the file is missing, cannot be compiled,
                or raises while executing.
        """
        resolved = Path(path).resolve()
        cached = self._modules.get(resolved)
        if cached is not None:
            logger.debug("Module already loaded: %s", resolved)
            return cached

        if not resolved.is_file():
            raise LoadFailureError(resolved, "file does not exist")

        name = module_name_for(resolved)
        spec = importlib.util.spec_from_file_location(name, str(resolved))
        if spec is None:
            # Suffixes without a registered loader are read as Python source
            spec = importlib.util.spec_from_file_location(
                name, str(resolved), loader=importlib.machinery.SourceFileLoader(name, str(resolved))
            )
        if spec is None or spec.loader is None:
            raise LoadFailureError(resolved, "no module loader for this file type")

        module = importlib.util.module_from_spec(spec)
        # Registered before execution so the module can reference itself
        # (dataclasses and pickling look it up in sys.modules)
        sys.modules[name] = module
        try:
            spec.loader.exec_module(module)
        except SyntaxError as exc:
            sys.modules.pop(name, None)
            raise LoadFailureError(resolved, f"invalid syntax at line {exc.lineno}: {exc.msg}") from exc
        except Exception as exc:
            sys.modules.pop(name, None)
            raise LoadFailureError(resolved, f"{type(exc).__name__}: {exc}") from exc

        self._modules[resolved] = module
        logger.debug("Loaded plugin module %s as %s", resolved, name)
        return module
