"""Process-wide plugin registry.

Plugins come from two places: modules listed in ``BUILTIN_PLUGINS`` and
distributions advertising a ``vcmanager_plugins`` entry point. Either way the
registry ends up holding one instance per plugin name.
"""

import importlib
import inspect
import logging
from importlib.metadata import entry_points

from .base import PluginBase

logger = logging.getLogger(__name__)

BUILTIN_PLUGINS = [
    "vcmanager.plugins.tenancy",
]

ENTRY_POINT_GROUP = "vcmanager_plugins"


def plugin_classes(module):
    """Concrete PluginBase subclasses defined in ``module``."""
    return [
        obj
        for _, obj in inspect.getmembers(module, inspect.isclass)
        if issubclass(obj, PluginBase)
        and not inspect.isabstract(obj)
        and obj.__module__ == module.__name__
    ]


class PluginRegistry:
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._plugins = {}
        return cls._instance

    def discover_plugins(self, builtin_only=False):
        """Load builtin plugins and, unless ``builtin_only``, entry point plugins.

        Returns:
            int: Number of plugins newly registered
        """
        builtin = sum(self._load_module(path) for path in BUILTIN_PLUGINS)
        external = 0 if builtin_only else self._load_entry_points()
        logger.info(f"Discovered {builtin + external} plugins ({builtin} builtin, {external} external)")
        return builtin + external

    def _load_module(self, module_path):
        try:
            module = importlib.import_module(module_path)
        except ImportError as e:
            logger.warning(f"Could not load builtin plugin {module_path}: {e}")
            return 0
        return sum(1 for plugin_class in plugin_classes(module) if self.register_plugin(plugin_class()))

    def _load_entry_points(self):
        count = 0
        for entry_point in entry_points(group=ENTRY_POINT_GROUP):
            try:
                plugin_class = entry_point.load()
            except Exception as e:
                logger.error(f"Failed to load external plugin {entry_point.name}: {e}")
                continue
            if not (inspect.isclass(plugin_class) and issubclass(plugin_class, PluginBase)):
                logger.error(f"Entry point {entry_point.name} is not a PluginBase subclass")
                continue
            if self.register_plugin(plugin_class()):
                logger.info(f"Loaded external plugin: {entry_point.name}")
                count += 1
        return count

    def register_plugin(self, plugin):
        """Add ``plugin`` unless its name is taken. Returns True when added."""
        if not isinstance(plugin, PluginBase):
            logger.error(f"Not a plugin: {type(plugin)}")
            return False
        existing = self._plugins.get(plugin.name)
        if existing is not None:
            logger.warning(
                f"Plugin {plugin.name} already registered (existing: {existing.version}, new: {plugin.version})"
            )
            return False
        self._plugins[plugin.name] = plugin
        logger.debug(f"Registered plugin: {plugin.name} v{plugin.version}")
        return True

    def _active(self):
        return [plugin for plugin in self._plugins.values() if plugin.initialised]

    def initialise_all_plugins(self, config=None):
        """Initialise every plugin with the shared ``config``.

        Returns:
            Dict[str, bool]: plugin name -> initialised
        """
        results = {name: plugin.initialise(config) for name, plugin in self._plugins.items()}
        logger.info(f"Initialised {sum(results.values())}/{len(results)} plugins")
        return results

    def register_all_handlers(self):
        for name, plugin in self._plugins.items():
            if not plugin.initialised:
                logger.warning(f"Skipping handlers of uninitialised plugin {name}")
                continue
            plugin.register_handlers()

    async def start_all_plugins(self):
        for plugin in self._active():
            await plugin.start()

    async def stop_all_plugins(self):
        for plugin in self._active():
            try:
                await plugin.stop()
            except Exception as e:
                logger.error(f"Error stopping plugin {plugin.name}: {e}")

    def shutdown_all_plugins(self):
        for plugin in self._active():
            plugin.shutdown()

    def get_plugin(self, name):
        return self._plugins.get(name)

    def list_plugin_names(self):
        return list(self._plugins)

    def get_plugins_metadata(self):
        return [plugin.get_metadata() for plugin in self._plugins.values()]
