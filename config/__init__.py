"""
Configuration package for the mention bot.

Modules:
    settings: Centralized configuration using Pydantic Settings
    prompts: Answer engine system prompts and templates
"""

from config.settings import ConfigurationError, Settings, settings

__all__ = ["settings", "Settings", "ConfigurationError"]
