"""Log source plugins and the registry that resolves them by id."""

from .apache import ApachePlugin
from .base import LogFileInfo, LogSourcePlugin, ParsedEntry, glob_to_regex, parse_request
from .host_system import HostSystemPlugin
from .nginx import NginxPlugin


class UnknownPluginError(KeyError):
    """Raised when a plugin id is not registered."""

    def __init__(self, plugin_id: str):
        super().__init__(plugin_id)
        self.plugin_id = plugin_id

    def __str__(self):
        return f'Plugin not found: {self.plugin_id}'


class PluginRegistry:
    """Maps plugin ids to plugin instances."""

    def __init__(self, plugins: list[LogSourcePlugin] | None = None):
        self._plugins: dict[str, LogSourcePlugin] = {}
        for plugin in plugins or []:
            self.register(plugin)

    def register(self, plugin: LogSourcePlugin):
        self._plugins[plugin.plugin_id] = plugin

    def get(self, plugin_id: str) -> LogSourcePlugin:
        try:
            return self._plugins[plugin_id]
        except KeyError:
            raise UnknownPluginError(plugin_id) from None

    def find(self, plugin_id: str) -> LogSourcePlugin | None:
        return self._plugins.get(plugin_id)

    def ids(self) -> list[str]:
        return list(self._plugins)

    def all(self) -> list[LogSourcePlugin]:
        return list(self._plugins.values())

    def __contains__(self, plugin_id: str) -> bool:
        return plugin_id in self._plugins


def default_registry() -> PluginRegistry:
    """Registry with the built-in plugins."""
    return PluginRegistry([ApachePlugin(), NginxPlugin(), HostSystemPlugin()])


__all__ = [
    # Base classes and data models
    'LogFileInfo',
    'LogSourcePlugin',
    'ParsedEntry',
    # Plugins
    'ApachePlugin',
    'HostSystemPlugin',
    'NginxPlugin',
    # Registry
    'PluginRegistry',
    'UnknownPluginError',
    'default_registry',
    # Helpers
    'glob_to_regex',
    'parse_request',
]
