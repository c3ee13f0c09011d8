# src/cadgis/config/exceptions.py
"""
Errors raised while loading cadgis settings.

They are kept apart from ``CadGisError``: a bad settings file stops the CLI
before any source or drawing is opened.
"""

from pathlib import Path
from typing import Optional, Union


class ConfigurationError(Exception):
    """A cadgis settings file or ``CADGIS_*`` override could not be used."""

    def __init__(self, message: str, path: Optional[Union[str, Path]] = None):
        super().__init__(message)
        self.path = Path(path) if path is not None else None


class ConfigurationNotFoundError(ConfigurationError):
    """The file given with ``--config`` does not exist."""


class ConfigurationValidationError(ConfigurationError):
    """
    Merged settings do not validate against ``AppConfig``.

    Also raised for a ``${VAR}`` placeholder whose variable is unset.
    """
