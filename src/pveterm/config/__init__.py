"""Configuration management for pveterm.

Loads and validates YAML-based configuration with Pydantic models.
Supports environment variable overrides for sensitive values like
passwords.
"""

from pveterm.config.settings import Settings, load_settings

__all__ = ["Settings", "load_settings"]
