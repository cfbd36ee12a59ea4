"""Environment expansion and path resolution for setting values."""

import os
import re
from pathlib import Path

from .models import SETTINGS_HOME_ENVIRONMENT_VARIABLE

_VARIABLE_PATTERN = re.compile(r"%([^%]+)%")
_URL_SCHEME_PATTERN = re.compile(r"^[A-Za-z][A-Za-z0-9+.\-]+://")
_SEPARATORS = ("/", "\\")
_UNC_PREFIXES = ("\\\\", "//")


def apply_environment_transform(value: str | None) -> str | None:
    """Expand %NAME% placeholders from the process environment.

    Unknown variables are left untouched.

    Examples:
        >>> apply_environment_transform("plain value")
        'plain value'
        >>> apply_environment_transform("%NOT_DEFINED_ANYWHERE%")
        '%NOT_DEFINED_ANYWHERE%'
    """
    if not value:
        return value

    return _VARIABLE_PATTERN.sub(lambda m: os.environ.get(m.group(1), m.group(0)), value)


def resolve_relative_path(origin, path: str | None) -> str | None:
    """Resolve a setting value against the directory of the file it came from.

    Rules:
    1. URLs, absolute paths with a drive and UNC paths are returned as-is
    2. Drive-relative paths (leading separator, no drive) are joined to the
       drive root of the owning file's directory
    3. Anything else is joined to the owning file's directory

    Args:
        origin: SettingsFile the value was read from
        path: Value after environment expansion

    Returns:
        Resolved path, the unchanged value for empty input, or None without origin
    """
    if origin is None:
        return None

    if not path:
        return path

    if _URL_SCHEME_PATTERN.match(path) or path.startswith(_UNC_PREFIXES):
        return path

    drive, _ = os.path.splitdrive(path)
    if drive:
        return path

    directory = str(origin.directory)
    if path[0] in _SEPARATORS:
        config_drive, _ = os.path.splitdrive(directory)
        return os.path.join(config_drive + os.sep, path[1:])

    return os.path.join(directory, path)


def get_user_settings_directory() -> Path:
    """Directory of the user-wide settings file.

    Honours $LAYERED_SETTINGS_HOME, falling back to ~/.layered-settings.
    """
    override = os.environ.get(SETTINGS_HOME_ENVIRONMENT_VARIABLE)
    if override:
        return Path(override)
    return Path.home() / ".layered-settings"
