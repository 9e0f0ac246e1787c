"""Configuration module for loading and managing application settings"""
from typing import Dict, Any, Optional
from .lib.load_settings_conf import load_settings_conf, SettingsError, DEFAULTS

__all__ = ['load_config', 'load_settings_conf', 'SettingsError', 'DEFAULTS']

def load_config(settings_path: Optional[str] = None) -> Dict[str, Any]:
    """Load settings for the running process.

    Args:
        settings_path: Optional directory containing settings.conf. If not
                       provided, SETTINGS_PATH or the current directory is used.

    Returns:
        Dict of validated settings

    Raises:
        SettingsError: If the settings are invalid
    """
    import os

    path = settings_path or os.environ.get('SETTINGS_PATH', '.')

    try:
        return load_settings_conf(path)
    except SettingsError as e:
        # Re-raise the error but provide more context
        raise SettingsError(
            f"Configuration Error\n"
            "=================\n\n"
            f"{str(e)}\n\n"
            "Please ensure settings.conf and the environment are properly configured."
        ) from e
