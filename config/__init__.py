"""Configuration management for the voting engine."""

from .config import MaciConfig, TreeConfig, ZKConfig, ConfigError, load_config, save_config

__all__ = ['MaciConfig', 'TreeConfig', 'ZKConfig', 'ConfigError', 'load_config', 'save_config']
