"""layered-settings: Layered XML settings with write-back to the owning file.

This library loads a chain of settings files, merges them into one view, and
writes every change back to the physical file that owns the changed value:
- Settings files found walking up from a working directory (nearest wins)
- The user-wide file (typically ~/.layered-settings/settings.config)
- Machine-wide *.config files (read-only)

A <clear /> element inside a section stops values from farther files leaking
into it. Comments and formatting of hand-edited files survive every write.

Public API:
    Settings: Merged view over a precedence chain of files
    SettingsFile: One physical settings file
    NullSettings: Empty view returned when nothing could be loaded
    load_default_settings, load_specific_settings, load_machine_wide_settings,
    load_settings_given_config_paths: Entry points that build Settings
    PackageSourceProvider: Package source registry on top of Settings
    ConfigPaths: Dataclass defining the user-wide and machine-wide locations
    ClearPolicy: Enum selecting how <clear /> acts across files
    ConfigError, ConfigFileError, ConfigValidationError,
    InvalidSettingsOperationError: Exception types

Example:
    ```python
    from pathlib import Path
    from layered_settings import ConfigPaths, load_default_settings
    from layered_settings.nodes import AddElement

    # Application injects paths (policy)
    paths = ConfigPaths(
        user=Path.home() / ".myapp" / "settings.config",
        machine_wide=Path("/etc/myapp"),
    )

    # Library provides mechanism
    settings = load_default_settings(Path.cwd(), paths=paths)

    # Read merged settings
    feeds = settings.sections.get("packageSources")

    # Write to the nearest writable file
    settings.try_create_section("config")
    settings.sections["config"].try_add_child(AddElement("http_proxy", "http://proxy:8080"))
    ```
"""

from .exceptions import ConfigError
from .exceptions import ConfigFileError
from .exceptions import ConfigValidationError
from .exceptions import InvalidSettingsOperationError
from .manager import NullSettings
from .manager import Settings
from .manager import load_default_settings
from .manager import load_machine_wide_settings
from .manager import load_settings_given_config_paths
from .manager import load_specific_settings
from .models import ClearPolicy
from .models import ConfigPaths
from .models import PackageSource
from .models import PackageSourceCredential
from .settings_file import SettingsFile
from .sources import PackageSourceProvider

__version__ = "0.1.0"

__all__ = [
    "Settings",
    "SettingsFile",
    "NullSettings",
    "load_default_settings",
    "load_specific_settings",
    "load_machine_wide_settings",
    "load_settings_given_config_paths",
    "PackageSourceProvider",
    "PackageSource",
    "PackageSourceCredential",
    "ConfigPaths",
    "ClearPolicy",
    "ConfigError",
    "ConfigFileError",
    "ConfigValidationError",
    "InvalidSettingsOperationError",
]
