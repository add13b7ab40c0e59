"""Configuration helpers."""

from seo_aggregator.config.settings import Settings, get_settings

__all__ = ["Settings", "get_settings"]
