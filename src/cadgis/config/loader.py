# src/cadgis/config/loader.py
"""
Configuration loader supporting separate environment files and secret management
"""

import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError
from rich.console import Console

from cadgis.config.exceptions import (
    ConfigurationNotFoundError,
    ConfigurationValidationError,
)
from cadgis.config.models import AppConfig

console = Console(stderr=True)

SECTIONS = ["global", "arcgis", "postgis", "drawing", "ledger", "symbols"]


class ConfigManager:
    """Config manager supporting separate environment files and secrets"""

    def __init__(self):
        self._config: AppConfig | None = None
        self._secrets_loaded = False
        self.quiet = False

    def load_config(
        self,
        config_path: Path | None = None,
        environment: str = "development",
        load_secrets: bool = True,
    ) -> AppConfig:
        """Load configuration with separate environment files and secret management"""
        self._log(f"[blue]Environment: {environment}[/blue]")

        # 1. Secrets first (.env files and environment)
        if load_secrets and not self._secrets_loaded:
            self._load_secrets(environment)

        # 2. Base configuration (built-in defaults when no file exists)
        if config_path is not None:
            config_path = Path(config_path)
            if not config_path.exists():
                raise ConfigurationNotFoundError(f"Configuration file not found: {config_path}", path=config_path)
        base_config_data = self._load_base_config(config_path)

        # 3. Environment-specific overrides
        env_config_data = self._load_environment_config(config_path, environment)
        if env_config_data:
            self._merge_configs(base_config_data, env_config_data)

        # 4. CADGIS_<SECTION>_<KEY> variables
        self._apply_env_overrides(base_config_data)

        # 5. ${VAR} substitution
        if load_secrets:
            self._substitute_secrets(base_config_data)

        try:
            self._config = AppConfig(**base_config_data)
        except ValidationError as e:
            raise ConfigurationValidationError(str(e)) from e
        return self._config

    def get_config(self) -> AppConfig:
        """Get loaded configuration"""
        if self._config is None:
            raise ValueError("Configuration not loaded. Call load_config() first.")
        return self._config

    def _log(self, message: str) -> None:
        if not self.quiet:
            console.log(message)

    def _load_secrets(self, environment: str) -> None:
        """Load secrets from .env files, never overriding existing variables"""
        from dotenv import load_dotenv

        for env_file in self._find_env_files(environment):
            if env_file.exists():
                self._log(f"🔐 Loading secrets from: [blue]{env_file}[/blue]")
                load_dotenv(env_file, override=False)

        self._secrets_loaded = True

    def _find_env_files(self, environment: str) -> list[Path]:
        """Find .env files in priority order"""
        return [
            Path(f".env.{environment}.local"),  # Highest priority
            Path(f".env.{environment}"),
            Path(".env.local"),
            Path(".env"),
            Path("config") / f".env.{environment}",
            Path("config") / ".env",
            Path.home() / ".cadgis" / f".env.{environment}",
            Path.home() / ".cadgis" / ".env",
        ]

    def _substitute_secrets(self, config: dict | list | Any, key: str = "") -> None:
        """Recursively substitute ${VAR} references in string values"""
        if isinstance(config, dict):
            for k, value in config.items():
                if isinstance(value, (dict, list)):
                    self._substitute_secrets(value, k)
                elif isinstance(value, str):
                    config[k] = self._substitute_secret_value(value, k)
        elif isinstance(config, list):
            for i, item in enumerate(config):
                if isinstance(item, (dict, list)):
                    self._substitute_secrets(item, key)
                elif isinstance(item, str):
                    config[i] = self._substitute_secret_value(item, key)

    def _substitute_secret_value(self, value: str, key: str) -> str | None:
        """Substitute ${VAR} references, supporting partial replacement"""
        if "${" not in value:
            return value

        matches = re.findall(r"\$\{([^}]+)\}", value)
        if not matches:
            return value

        result_value = value
        missing_vars = []

        for env_var in matches:
            env_value = os.getenv(env_var)
            if env_value is None or env_value == "":
                self._log(f"[yellow]⚠️  Environment variable not set: {env_var}[/yellow]")
                missing_vars.append(env_var)
                continue
            result_value = result_value.replace(f"${{{env_var}}}", env_value)
            self._log(
                f"🔐 Secret substituted: {env_var} -> {self._safe_log_value(key, env_value)}"
            )

        if missing_vars:
            # Credentials and paths may legitimately be unset
            if self._is_optional_field(key):
                return None
            raise ConfigurationValidationError(
                f"Missing environment variables for field '{key}': {', '.join(missing_vars)}"
            )

        return result_value

    def _is_optional_field(self, field_name: str) -> bool:
        optional_keywords = ["username", "password", "document", "path", "library", "url"]
        field_lower = field_name.lower()
        return any(keyword in field_lower for keyword in optional_keywords)

    def _is_secret_field(self, field_name: str) -> bool:
        """Detect if a field contains sensitive information"""
        secret_keywords = ["secret", "password", "passwd", "pwd", "token", "credential"]
        field_lower = field_name.lower()
        return any(keyword in field_lower for keyword in secret_keywords)

    def _load_base_config(self, config_path: Path | None) -> dict:
        """Load the base configuration file"""
        if config_path is None:
            config_path = self._find_base_config_file()
            if config_path is None:
                self._log("⚠️  No base config file found, using built-in defaults")
                return {}

        self._log(f"🔧 Loading base config: {config_path}")

        with open(config_path, "r", encoding="utf-8") as f:
            configs = list(yaml.safe_load_all(f))

        base_config = configs[0] if configs and configs[0] else {}

        # Extra documents in the same file that are not environment sections
        for config in configs[1:]:
            if config and not self._is_environment_section(config):
                self._merge_configs(base_config, config)

        return base_config

    def _load_environment_config(
        self, base_config_path: Path | None, environment: str
    ) -> dict | None:
        """Load environment-specific configuration file"""
        for env_path in self._find_environment_config_paths(base_config_path, environment):
            if env_path.exists():
                self._log(f"🔧 Loading environment config: {env_path}")

                with open(env_path, "r", encoding="utf-8") as f:
                    env_config = yaml.safe_load(f)

                if env_config:
                    return env_config
                self._log(f"[yellow]⚠️  Environment config is empty: {env_path}[/yellow]")

        return None

    def _find_base_config_file(self) -> Path | None:
        """Find the base configuration file"""
        from cadgis.config import get_config_dir

        search_paths = [
            Path("config/cadgis_config.yaml"),
            Path("config/config.yaml"),
            get_config_dir() / "config.yaml",
            Path("/etc/cadgis/config.yaml"),
        ]

        for path in search_paths:
            if path.exists():
                return path
        return None

    def _find_environment_config_paths(
        self, base_config_path: Path | None, environment: str
    ) -> list[Path]:
        base_dir = base_config_path.parent if base_config_path else Path("config")
        return [
            base_dir / "environments" / f"{environment}.yaml",
            base_dir / "environments" / f"{environment}.yml",
            base_dir / f"{environment}.yaml",
            base_dir / f"{environment}.yml",
        ]

    def _is_environment_section(self, config: dict) -> bool:
        env_keys = ["environment", "env", "_environment"]
        return any(key in config for key in env_keys)

    def _merge_configs(self, base: dict, override: dict) -> None:
        """Recursively merge configuration dictionaries"""
        for key, value in override.items():
            if key.startswith("_"):  # Skip meta keys like _environment
                continue

            if key in base and isinstance(base[key], dict) and isinstance(value, dict):
                self._merge_configs(base[key], value)
            else:
                base[key] = value
                self._log(f"🔧 Override: {key} = {self._safe_log_value(key, value)}")

    def _safe_log_value(self, key: str, value: Any) -> str:
        """Safely log configuration values (hide secrets)"""
        if self._is_secret_field(key) and isinstance(value, str):
            return "***" if value else "None"
        return str(value)

    def _apply_env_overrides(self, config: dict) -> None:
        """Apply CADGIS_<SECTION>_<KEY> environment variable overrides"""
        for section in SECTIONS:
            prefix = f"CADGIS_{section.upper()}_"
            if not any(env_var.startswith(prefix) for env_var in os.environ):
                continue
            section_config = config.setdefault(section, {})
            if section_config is None:
                section_config = config[section] = {}
            for env_var, value in os.environ.items():
                if env_var.startswith(prefix):
                    # Keys are flat within a section, so the remainder is the key
                    key = env_var[len(prefix):].lower()
                    section_config[key] = value
                    safe_value = "***" if self._is_secret_field(key) else value
                    self._log(f"🔧 Env override: {env_var} = {safe_value}")


# Global instance
_config_manager = ConfigManager()


def load_config(
    config_path: Path | None = None,
    environment: str = "development",
    load_secrets: bool = True,
) -> AppConfig:
    """Load configuration with separate environment files"""
    return _config_manager.load_config(config_path, environment, load_secrets)


def get_config() -> AppConfig:
    """Get the loaded configuration, loading defaults on first use"""
    if _config_manager._config is None:
        return _config_manager.load_config()
    return _config_manager.get_config()


def set_quiet(quiet: bool = True) -> None:
    _config_manager.quiet = quiet


def debug_config_loading(
    config_path: Path | None = None, environment: str = "development"
) -> None:
    """Debug configuration loading process"""
    console.print(f"\n🔍 DEBUG: Loading config for environment '{environment}'")

    manager = ConfigManager()

    try:
        app_config = manager.load_config(config_path, environment)
        console.print(f"✅ Final log_level: {app_config.global_.log_level}")
        console.print(f"✅ Target EPSG: {app_config.global_.target_epsg}")
        console.print(f"✅ PostGIS: {app_config.postgis.host}:{app_config.postgis.port}/{app_config.postgis.database}")
    except Exception as e:
        console.print(f"❌ Error: {e}")
