"""Process-wide configuration."""

from subscription_worker.config.settings import Settings, get_settings

__all__ = ["Settings", "get_settings"]
