"""Configuration management for the Dify chat client."""

import os
from typing import Any

import yaml
from dotenv import load_dotenv

DEFAULT_CONFIG_PATH = os.path.join(os.path.dirname(__file__), "config.yaml")


class Configuration:
    """Manages configuration and environment variables for the Dify client."""

    def __init__(self, config_path: str | None = None) -> None:
        """Initialize configuration from YAML and environment variables."""
        self.load_env()  # Load .env for the API key
        self.config_path = config_path or DEFAULT_CONFIG_PATH
        self._config = self._load_yaml_config(self.config_path)

    @staticmethod
    def load_env() -> None:
        """Load environment variables from .env file."""
        load_dotenv()

    @staticmethod
    def _load_yaml_config(config_path: str) -> dict[str, Any]:
        """Load configuration from YAML file."""
        with open(config_path) as file:
            config = yaml.safe_load(file)
            if not isinstance(config, dict):
                raise ValueError(
                    f"Config file must be YAML dict, got {type(config)}"
                )
            return config

    @property
    def api_key(self) -> str:
        """Get the Dify application API key.

        Returns:
            The API key as a string.

        Raises:
            ValueError: If the API key is not found in environment variables.
        """
        env_key = self._config.get("api", {}).get("api_key_env", "DIFY_API_KEY")
        api_key = os.getenv(env_key)
        if not api_key:
            raise ValueError(
                f"API key '{env_key}' not found in environment variables"
            )
        return api_key

    def get_config_dict(self) -> dict[str, Any]:
        """Get the full configuration dictionary.

        Returns:
            The complete configuration dictionary.
        """
        return self._config

    def get_api_config(self) -> dict[str, Any]:
        """Get API endpoint and HTTP timeout configuration from YAML.

        Returns:
            API configuration dictionary with validated values.

        Raises:
            ValueError: If required API parameters are missing or invalid.
        """
        api_config = self._config.get("api", {})

        if "base_url" not in api_config:
            raise ValueError(
                "base_url must be explicitly configured in config.yaml under api"
            )
        if "timeout" not in api_config:
            raise ValueError(
                "timeout must be explicitly configured in config.yaml under api"
            )

        timeout_config = api_config["timeout"]
        required_keys = ["connect", "read", "write", "pool"]
        for key in required_keys:
            if key not in timeout_config:
                raise ValueError(
                    f"api.timeout.{key} must be explicitly configured "
                    "in config.yaml"
                )
            value = timeout_config[key]
            # read may be null to wait indefinitely on a quiet stream
            if value is None and key == "read":
                continue
            if not isinstance(value, int | float) or value <= 0:
                raise ValueError(f"api.timeout.{key} must be positive")

        base_url = api_config["base_url"]
        if not isinstance(base_url, str) or not base_url.startswith(
            ("http://", "https://")
        ):
            raise ValueError("api.base_url must be an http(s) URL")

        return {
            "base_url": base_url.rstrip("/"),
            "timeout": {key: timeout_config[key] for key in required_keys},
        }

    def get_streaming_config(self) -> dict[str, Any]:
        """Get stream decoding configuration from YAML.

        Returns:
            Streaming configuration dictionary.

        Raises:
            ValueError: If read_chunk_size is missing or invalid.
        """
        streaming_config = self._config.get("streaming", {})

        if "read_chunk_size" not in streaming_config:
            raise ValueError(
                "read_chunk_size must be explicitly configured in config.yaml "
                "under streaming"
            )

        chunk_size = streaming_config["read_chunk_size"]
        if not isinstance(chunk_size, int) or chunk_size < 1:
            raise ValueError("read_chunk_size must be a positive integer")

        return {"read_chunk_size": chunk_size}

    def get_logging_config(self) -> dict[str, Any]:
        """Get logging configuration from YAML.

        Returns:
            Logging configuration dictionary.
        """
        logging_config = self._config.get("logging", {})
        return {"level": logging_config.get("level", "INFO")}
