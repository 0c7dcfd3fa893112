"""Configuration module for chanbot."""

from chanbot.config.loader import load_config, save_config, get_config_path
from chanbot.config.schema import Config

__all__ = ["Config", "load_config", "save_config", "get_config_path"]
