"""Exceptions for layered-settings."""

from pathlib import Path


class ConfigError(Exception):
    """Base exception for layered-settings errors."""

    pass


class ConfigFileError(ConfigError):
    """Error reading, parsing or writing a configuration file."""

    def __init__(self, message: str, path: Path | None = None):
        super().__init__(message)
        self.path = path


class ConfigValidationError(ConfigError):
    """A settings element is missing required attributes."""

    pass


class InvalidSettingsOperationError(ConfigError):
    """Operation is not supported by this settings instance."""

    pass
