"""
Configuration Service

JSON-backed configuration: provider credentials, endpoint overrides,
generation defaults and storage location.

Layout::

    {
        "providers": {
            "openai": {"api_key": "...", "base_url": "..."},
            "ollama": {"base_url": "http://127.0.0.1:11434"}
        },
        "defaults": {"model": "ollama:llama3", "temperature": 0.7, "max_tokens": 4000},
        "storage": {"path": "~/.chatstream/conversations.json"},
        "transport": {"timeout": 60}
    }
"""

import json
import logging
from pathlib import Path
from typing import Dict, Any, Optional

logger = logging.getLogger("ChatStream.ConfigService")

DEFAULT_CONFIG_DIR = Path.home() / ".chatstream"


class ConfigService:
    """
    Service class for configuration management.

    Provides:
    - Configuration loading / saving
    - Dot-notation access ("providers.openai.api_key")
    - Provider credential and endpoint lookup
    """

    def __init__(self, config_path: Optional[Path] = None, data: Optional[Dict[str, Any]] = None):
        """
        Initialize config service.

        Args:
            config_path: Path to config file
            data: Initial configuration (skips reading the file)
        """
        if config_path is None:
            config_path = DEFAULT_CONFIG_DIR / "config.json"

        self.config_path = Path(config_path).expanduser()
        self._config: Dict[str, Any] = dict(data) if data is not None else {}

        # Missing or broken files leave an empty config
        if data is None and self.config_path.exists():
            self._load_config()

    def _load_config(self) -> None:
        """Load configuration from file (internal method)."""
        try:
            with self.config_path.open("r", encoding="utf-8") as f:
                self._config = json.load(f)
            logger.info(f"Configuration loaded from {self.config_path}")
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Failed to load config: {e}")
            self._config = {}

    def load(self) -> Dict[str, Any]:
        """
        Load configuration from file.

        Returns:
            Configuration dictionary

        Raises:
            FileNotFoundError: If config file doesn't exist
            ValueError: If config file is invalid JSON
        """
        if not self.config_path.exists():
            logger.error(f"Config file not found at: {self.config_path}")
            raise FileNotFoundError(
                f"Config file not found at: {self.config_path}\n"
                "Create config.json with a 'providers' section holding your API keys."
            )

        try:
            with self.config_path.open("r", encoding="utf-8") as f:
                self._config = json.load(f)
            logger.info(f"Configuration loaded from {self.config_path}")
            return self._config.copy()
        except json.JSONDecodeError as e:
            logger.error(f"Error parsing config.json: {e}")
            raise ValueError(
                f"Error parsing config.json: {e}\n"
                "Please ensure config.json is valid JSON."
            )

    def save(self, data: Optional[Dict[str, Any]] = None) -> bool:
        """
        Save configuration to file.

        Args:
            data: Optional data to save (uses internal config if None)

        Returns:
            True if successful
        """
        try:
            if data is not None:
                self._config = data

            self.config_path.parent.mkdir(parents=True, exist_ok=True)
            with self.config_path.open("w", encoding="utf-8") as f:
                json.dump(self._config, f, indent=4)
            logger.info(f"Configuration saved to {self.config_path}")
            return True
        except OSError as e:
            logger.error(f"Failed to save config: {e}")
            return False

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get configuration value.

        Args:
            key: Configuration key (supports dot notation: "providers.openai.api_key")
            default: Default value if key not found

        Returns:
            Configuration value
        """
        keys = key.split(".")
        value = self._config
        for k in keys:
            if isinstance(value, dict):
                value = value.get(k)
                if value is None:
                    return default
            else:
                return default
        return value if value is not None else default

    def set(self, key: str, value: Any) -> None:
        """
        Set configuration value.

        Args:
            key: Configuration key (supports dot notation)
            value: Value to set
        """
        keys = key.split(".")
        config = self._config
        for k in keys[:-1]:
            if not isinstance(config.get(k), dict):
                config[k] = {}
            config = config[k]
        config[keys[-1]] = value

    def get_all(self) -> Dict[str, Any]:
        return self._config.copy()

    # ------------------------------------------------------------------
    # Provider helpers
    # ------------------------------------------------------------------
    def get_provider_settings(self, provider_id: str) -> Dict[str, Any]:
        settings = self.get(f"providers.{provider_id}", {})
        return settings if isinstance(settings, dict) else {}

    def get_api_key(self, provider_id: str) -> Optional[str]:
        key = self.get_provider_settings(provider_id).get("api_key")
        if isinstance(key, str) and key.strip():
            return key.strip()
        return None

    def set_api_key(self, provider_id: str, api_key: str) -> None:
        self.set(f"providers.{provider_id}.api_key", api_key)

    def get_base_url(self, provider_id: str) -> Optional[str]:
        url = self.get_provider_settings(provider_id).get("base_url")
        if isinstance(url, str) and url.strip():
            return url.strip()
        return None

    def get_storage_path(self) -> Path:
        raw = self.get("storage.path")
        if raw:
            return Path(raw).expanduser()
        return self.config_path.parent / "conversations.json"
