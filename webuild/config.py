"""
Configuration module for loading and validating environment variables.
"""

import os
from pathlib import Path
from typing import FrozenSet, Optional
from dotenv import load_dotenv

class ConfigError(Exception):
    """Raised when configuration is invalid or missing."""
    pass


# File extensions the block parser accepts by default
DEFAULT_ALLOWED_EXTENSIONS = frozenset({
    ".js", ".jsx", ".mjs", ".cjs", ".ts", ".tsx", ".mts", ".cts",
    ".json", ".html", ".htm", ".css", ".scss", ".sass", ".less",
    ".md", ".mdx", ".txt", ".svg", ".yaml", ".yml", ".toml",
    ".vue", ".svelte", ".astro", ".graphql", ".gql", ".xml",
    ".sh", ".lock", ".example", ".local",
})


def _parse_bool(value: Optional[str], default: bool) -> bool:
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _parse_extensions(value: Optional[str]) -> FrozenSet[str]:
    if not value:
        return DEFAULT_ALLOWED_EXTENSIONS
    extensions = set()
    for item in value.split(","):
        item = item.strip().lower()
        if not item:
            continue
        extensions.add(item if item.startswith(".") else f".{item}")
    return frozenset(extensions)


class Config:
    """Application configuration loaded from environment variables."""

    def __init__(self, env_file: Optional[Path] = None):
        # Load .env file from project root
        env_path = env_file or Path(__file__).parent.parent / ".env"
        load_dotenv(dotenv_path=env_path)

        # Azure OpenAI settings
        self.azure_openai_api_key = os.getenv("AZURE_OPENAI_API_KEY")
        self.azure_openai_endpoint = os.getenv("AZURE_OPENAI_ENDPOINT")
        self.azure_openai_deployment_name = os.getenv("AZURE_OPENAI_DEPLOYMENT_NAME")
        self.azure_openai_api_version = os.getenv("AZURE_OPENAI_API_VERSION", "2024-02-15-preview")

        # Block parser settings
        self.tag_name = os.getenv("WEBUILD_TAG_NAME", "weBuild")
        self.max_file_size = self._int_setting("WEBUILD_MAX_FILE_SIZE", 1_048_576)
        self.allowed_extensions = _parse_extensions(os.getenv("WEBUILD_ALLOWED_EXTENSIONS"))

        # Coordinator settings
        self.debounce_ms = self._int_setting("WEBUILD_DEBOUNCE_MS", 500)
        self.max_retries = self._int_setting("WEBUILD_MAX_RETRIES", 3)

        # Sandbox lifecycle settings
        self.ready_timeout = float(self._int_setting("WEBUILD_READY_TIMEOUT", 120))
        self.install_command = os.getenv("WEBUILD_INSTALL_COMMAND", "npm install")
        self.dev_command = os.getenv("WEBUILD_DEV_COMMAND", "npm run dev")
        self.default_url = os.getenv("WEBUILD_DEFAULT_URL", "http://localhost:3000")
        self.heuristic_readiness = _parse_bool(os.getenv("WEBUILD_HEURISTIC_READINESS"), True)

        # Docker runtime settings
        self.sandbox_image = os.getenv("WEBUILD_SANDBOX_IMAGE", "node:20-slim")
        self.port_range_start = self._int_setting("WEBUILD_PORT_RANGE_START", 8100)
        self.port_range_end = self._int_setting("WEBUILD_PORT_RANGE_END", 8200)

        # Logging
        self.log_level = os.getenv("WEBUILD_LOG_LEVEL", "INFO").upper()
        self.log_json = _parse_bool(os.getenv("WEBUILD_LOG_JSON"), False)

        # Validate settings
        self._validate()

    def _int_setting(self, name: str, default: int) -> int:
        raw = os.getenv(name)
        if raw is None or raw.strip() == "":
            return default
        try:
            return int(raw)
        except ValueError:
            raise ConfigError(f"{name} must be an integer, got {raw!r}")

    def _validate(self):
        """Validate numeric and structural settings."""
        problems = []

        if not self.tag_name or not self.tag_name.replace("_", "").replace("-", "").isalnum():
            problems.append("WEBUILD_TAG_NAME must be a non-empty alphanumeric tag name")
        if self.max_file_size <= 0:
            problems.append("WEBUILD_MAX_FILE_SIZE must be positive")
        if self.debounce_ms < 0:
            problems.append("WEBUILD_DEBOUNCE_MS must not be negative")
        if self.max_retries < 1:
            problems.append("WEBUILD_MAX_RETRIES must be at least 1")
        if self.ready_timeout <= 0:
            problems.append("WEBUILD_READY_TIMEOUT must be positive")
        if self.port_range_start >= self.port_range_end:
            problems.append("WEBUILD_PORT_RANGE_START must be lower than WEBUILD_PORT_RANGE_END")

        if problems:
            raise ConfigError("Invalid configuration:\n- " + "\n- ".join(problems))

    def validate_llm(self):
        """Validate that the model credentials are set."""
        missing = []

        if not self.azure_openai_api_key:
            missing.append("AZURE_OPENAI_API_KEY")
        if not self.azure_openai_endpoint:
            missing.append("AZURE_OPENAI_ENDPOINT")
        if not self.azure_openai_deployment_name:
            missing.append("AZURE_OPENAI_DEPLOYMENT_NAME")

        if missing:
            raise ConfigError(
                f"Missing required environment variables: {', '.join(missing)}\n"
                "Please create a .env file with these variables. See .env.example for reference."
            )


# Global config instance
_config: Optional[Config] = None


def get_config() -> Config:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = Config()
    return _config


def reset_config() -> None:
    """Drop the cached configuration so the next get_config() reloads it."""
    global _config
    _config = None
