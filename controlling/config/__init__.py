"""
Delivery Controlling Engine
Configuration Module
"""
from .settings import HierarchySettings, Settings, get_settings
from .logging import configure_logging

__all__ = ["HierarchySettings", "Settings", "get_settings", "configure_logging"]
