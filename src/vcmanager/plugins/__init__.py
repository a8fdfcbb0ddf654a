"""Plugin system for the VirtualCluster operator."""

from .base import PluginBase
from .registry import PluginRegistry

__all__ = ["PluginBase", "PluginRegistry"]
