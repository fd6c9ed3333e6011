"""
Plugin module loader.

Bundles are plain Python modules: either a single ``.py`` file or a
directory holding ``main.py`` or ``__init__.py``.
"""

import importlib.util
import re
import sys
from pathlib import Path
from types import ModuleType

from headless_host.utils.errors import PluginLoadError
from headless_host.utils.logging import setup_logging

logger = setup_logging(__name__)

PLUGIN_MODULE_PREFIX = "headless_host.plugins"


def resolve_module_file(bundle_path: Path) -> Path:
    """Find the file to execute for a bundle.

    Raises:
        PluginLoadError: If the bundle does not exist or holds no entry file
    """
    if not bundle_path.exists():
        raise PluginLoadError(f"Extension bundle not found: {bundle_path}", str(bundle_path))

    if bundle_path.is_file():
        if bundle_path.suffix != ".py":
            raise PluginLoadError(f"Extension bundle must be a .py file or a directory: {bundle_path}", str(bundle_path))
        return bundle_path

    # Try main.py first, then __init__.py
    main_file = bundle_path / "main.py"
    init_file = bundle_path / "__init__.py"

    module_file = main_file if main_file.exists() else init_file
    if not module_file.exists():
        raise PluginLoadError(f"No main.py or __init__.py found in {bundle_path}", str(bundle_path))
    return module_file


def module_name_for(bundle_path: Path) -> str:
    stem = bundle_path.stem if bundle_path.is_file() else bundle_path.name
    return f"{PLUGIN_MODULE_PREFIX}.{re.sub(r'[^0-9A-Za-z_]', '_', stem)}"


def load_plugin_module(bundle_path: Path) -> ModuleType:
    """Load a plugin module from disk.

    A previously loaded copy of the same bundle is replaced.

    Args:
        bundle_path: Path to the ``.py`` file or package directory

    Returns:
        Loaded module exporting a callable ``activate``

    Raises:
        PluginLoadError: If the module cannot be found, executed or validated
    """
    bundle_path = Path(bundle_path).expanduser().resolve()
    module_file = resolve_module_file(bundle_path)
    module_name = module_name_for(bundle_path)

    spec = importlib.util.spec_from_file_location(
        module_name,
        module_file,
        submodule_search_locations=[str(bundle_path)] if bundle_path.is_dir() else None,
    )
    if spec is None or spec.loader is None:
        raise PluginLoadError(f"Could not create module spec for {bundle_path}", str(bundle_path))

    previous = sys.modules.pop(module_name, None)
    if previous is not None:
        logger.debug(f"Replacing previously loaded plugin module {module_name}")

    module = importlib.util.module_from_spec(spec)
    sys.modules[module_name] = module
    try:
        spec.loader.exec_module(module)
    except Exception as e:
        sys.modules.pop(module_name, None)
        raise PluginLoadError(f"Failed to execute plugin module {module_file}: {e}", str(bundle_path), e) from e

    validate_plugin_module(module, str(bundle_path))
    logger.info(f"Loaded plugin module {module_name} from {module_file}")
    return module


def validate_plugin_module(module: object, bundle_path: str | None = None) -> None:
    """Check that a module exports a callable ``activate``.

    Raises:
        PluginLoadError: If ``activate`` is missing or not callable
    """
    if not callable(getattr(module, "activate", None)):
        raise PluginLoadError("Extension module does not export an activate function", bundle_path)
