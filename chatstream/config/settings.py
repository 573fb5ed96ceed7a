"""
Configuration Helpers

Module-level access to the user's configuration file, backed by
ConfigService.
"""

from pathlib import Path
from typing import Dict, Any, Optional

from chatstream.services.config_service import ConfigService


# Global config service instance
_config_service: Optional[ConfigService] = None


def get_config_service(config_path: Optional[Path] = None) -> ConfigService:
    """
    Get or create the global config service.

    Passing a path replaces the cached instance (used by the CLI's
    --config flag).
    """
    global _config_service
    if _config_service is None or config_path is not None:
        _config_service = ConfigService(config_path=config_path)
    return _config_service


def load_config() -> Dict[str, Any]:
    """
    Load config.json from ~/.chatstream/.
    Raises FileNotFoundError if missing.
    """
    return get_config_service().load()


def save_config(data: Dict[str, Any]) -> None:
    """Write configuration back to config.json."""
    get_config_service().save(data)
