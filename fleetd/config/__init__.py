"""
Alert engine configuration.
"""

from .settings import FleetSettings, load_settings

__all__ = ["FleetSettings", "load_settings"]
