"""Configuration package: environment-driven settings and logging setup."""

from terra_verify.config.settings import Settings, settings

__all__ = ["Settings", "settings"]
