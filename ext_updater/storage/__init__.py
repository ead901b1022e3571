"""
Storage Layer.

This package handles all state, including the configuration file, the
persisted scheduler settings, and the in-memory extension inventory.
"""

from .config_manager import ConfigManager
from .inventory import InventoryStore
from .settings import SettingsStore

__all__ = ["ConfigManager", "InventoryStore", "SettingsStore"]
