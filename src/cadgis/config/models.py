# src/cadgis/config/models.py
"""
Pydantic configuration models for every cadgis section
"""

import re
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class FileLoggingConfig(BaseModel):
    """File logging configuration with template support"""

    enabled: bool = False
    path: str = "logs/cadgis_{environment}_{date}.log"  # Keep as string template
    rotation: str = "10 MB"
    retention: str = "30 days"
    compression: str = "gz"

    @field_validator("path")
    @classmethod
    def validate_path_template(cls, v):
        """Validate that path template has valid placeholders"""
        valid_placeholders = {"{environment}", "{date}", "{datetime}", "{timestamp}"}
        found_placeholders = set(re.findall(r"\{[^}]+\}", v))

        invalid_placeholders = found_placeholders - valid_placeholders
        if invalid_placeholders:
            raise ValueError(
                f"Invalid placeholders in path: {invalid_placeholders}. "
                f"Valid placeholders: {valid_placeholders}"
            )
        return v

    def get_resolved_path(self, environment: str) -> Path:
        """
        Resolve template placeholders in the path.

        Args:
            environment: Environment name (e.g., 'development', 'production')

        Returns:
            Path with placeholders resolved
        """
        now = datetime.now()

        resolved_path = self.path.format(
            environment=environment,
            date=now.strftime("%Y%m%d"),
            datetime=now.strftime("%Y%m%d_%H%M%S"),
            timestamp=now.strftime("%Y%m%d_%H%M%S"),
        )

        return Path(resolved_path)

    @field_validator("rotation")
    @classmethod
    def validate_rotation(cls, v):
        """Validate rotation format (e.g., '10 MB', '1 GB', '1 day')"""
        if not re.match(r"^\d+\s*(MB|GB|KB|day|days|hour|hours)$", v, re.IGNORECASE):
            raise ValueError(
                "rotation must be in format like '10 MB', '1 GB', or '1 day'"
            )
        return v

    @field_validator("retention")
    @classmethod
    def validate_retention(cls, v):
        """Validate retention format (e.g., '30 days', '1 week')"""
        if not re.match(
            r"^\d+\s*(day|days|week|weeks|month|months)$", v, re.IGNORECASE
        ):
            raise ValueError(
                "retention must be in format like '30 days', '1 week', '6 months'"
            )
        return v


class ConsoleLoggingConfig(BaseModel):
    """Console logging configuration"""

    format: str = "simple"  # "simple" or "detailed"
    show_time: bool = True
    show_level: bool = True
    show_path: bool = False

    @field_validator("format")
    @classmethod
    def validate_format(cls, v):
        if v not in ["simple", "detailed"]:
            raise ValueError("format must be 'simple' or 'detailed'")
        return v


class LoggingConfig(BaseModel):
    """Complete logging configuration"""

    file: FileLoggingConfig = FileLoggingConfig()
    console: ConsoleLoggingConfig = ConsoleLoggingConfig()
    modules: Dict[str, str] = {}

    @field_validator("modules")
    @classmethod
    def validate_module_levels(cls, v):
        """Validate that log levels are valid"""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}

        for module, level in v.items():
            if level.upper() not in valid_levels:
                raise ValueError(
                    f"Invalid log level '{level}' for module '{module}'. "
                    f"Valid levels: {valid_levels}"
                )
            v[module] = level.upper()
        return v

    def get_file_path(self, environment: str) -> Optional[Path]:
        if self.file.enabled:
            return self.file.get_resolved_path(environment)
        return None

    def get_log_config_for_environment(self, environment: str) -> Dict[str, Any]:
        """
        Get complete logging configuration for a specific environment.

        Args:
            environment: Environment name

        Returns:
            Dict with resolved configuration for logging setup
        """
        return {
            "file": {
                "enabled": self.file.enabled,
                "path": self.get_file_path(environment),
                "rotation": self.file.rotation,
                "retention": self.file.retention,
                "compression": self.file.compression,
            },
            "console": {
                "format": self.console.format,
                "show_time": self.console.show_time,
                "show_level": self.console.show_level,
                "show_path": self.console.show_path,
            },
            "modules": self.modules,
        }


class GlobalConfig(BaseModel):
    """Global configuration settings"""

    log_level: str = "INFO"
    temp_dir: Path = Path("/tmp/cadgis")
    target_epsg: int = 27700
    logging: LoggingConfig = LoggingConfig()

    @field_validator("log_level")
    @classmethod
    def log_level_must_be_valid(cls, v):
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"log_level must be one of {valid_levels}")
        return v.upper()

    @field_validator("target_epsg", mode="before")
    @classmethod
    def blank_epsg_is_default(cls, v):
        # An empty or zero code means "use the default grid"
        if v in (None, "", 0, "0"):
            return 27700
        return v

    def get_logging_config(self, environment: str) -> Dict[str, Any]:
        return self.logging.get_log_config_for_environment(environment)


class ArcGISConfig(BaseModel):
    """ArcGIS Online portal access"""

    portal_url: str = "https://www.arcgis.com/sharing/rest"
    token_url: str = "https://www.arcgis.com/sharing/rest/generateToken"
    referer: str = "https://www.arcgis.com"
    username: Optional[str] = None
    password: Optional[str] = None
    token_expiration: int = Field(60, ge=1, le=20160, description="Token lifetime in minutes")
    page_size: int = Field(1000, ge=1, le=32000)
    request_timeout: int = Field(60, ge=1)
    source_epsg: int = 3857
    reserved_prefixes: List[str] = ["ESRI"]

    @field_validator("portal_url", "token_url", "referer")
    @classmethod
    def validate_url(cls, v):
        if not re.match(r"^https?://[^\s/$.?#].[^\s]*$", v):
            raise ValueError("must be a valid HTTP/HTTPS URL")
        return v.rstrip("/")

    @property
    def has_credentials(self) -> bool:
        return bool(self.username and self.password)


class PostGISConfig(BaseModel):
    """PostGIS connection settings"""

    host: str = "localhost"
    port: int = 5432
    database: str = "postgres"
    username: Optional[str] = None
    password: Optional[str] = None
    connect_timeout: int = 10
    distinct_values_limit: int = 100

    @field_validator("port")
    @classmethod
    def port_must_be_valid(cls, v):
        if not 1 <= v <= 65535:
            raise ValueError("port must be between 1 and 65535")
        return v

    @field_validator("connect_timeout", "distinct_values_limit")
    @classmethod
    def must_be_positive(cls, v):
        if v <= 0:
            raise ValueError("must be positive")
        return v


class DrawingConfig(BaseModel):
    """Drawing document defaults"""

    document: Optional[Path] = None
    marker_radius: float = 1.0

    @field_validator("marker_radius")
    @classmethod
    def radius_must_be_positive(cls, v):
        if v <= 0:
            raise ValueError("marker_radius must be positive")
        return v


class LedgerConfig(BaseModel):
    """Layer metadata file location (None = user config directory)"""

    path: Optional[Path] = None


class SymbolsConfig(BaseModel):
    """Symbol library location (None = bundled standard library)"""

    library: Optional[Path] = None


class AppConfig(BaseModel):
    """Main application configuration"""

    model_config = ConfigDict(populate_by_name=True)

    global_: GlobalConfig = Field(default_factory=GlobalConfig, alias="global")
    arcgis: ArcGISConfig = ArcGISConfig()
    postgis: PostGISConfig = PostGISConfig()
    drawing: DrawingConfig = DrawingConfig()
    ledger: LedgerConfig = LedgerConfig()
    symbols: SymbolsConfig = SymbolsConfig()
