"""Data models and constants for layered-settings."""

from dataclasses import dataclass
from enum import Enum
from pathlib import Path

# ===== Markup vocabulary =====

CONFIGURATION = "configuration"
ADD = "add"
CLEAR = "clear"
KEY_ATTRIBUTE = "key"
VALUE_ATTRIBUTE = "value"
PROTOCOL_VERSION_ATTRIBUTE = "protocolVersion"

# ===== Well-known sections =====

PACKAGE_SOURCES = "packageSources"
DISABLED_PACKAGE_SOURCES = "disabledPackageSources"
ACTIVE_PACKAGE_SOURCE = "activePackageSource"
CREDENTIALS_SECTION = "packageSourceCredentials"
CONFIG_SECTION = "config"
API_KEYS = "apikeys"
BINDING_REDIRECTS = "bindingRedirects"
PACKAGE_RESTORE = "packageRestore"

# Sections that honour a <clear /> marker
CLEARABLE_SECTIONS = frozenset(
    {
        PACKAGE_SOURCES,
        DISABLED_PACKAGE_SOURCES,
        ACTIVE_PACKAGE_SOURCE,
        CREDENTIALS_SECTION,
        API_KEYS,
        CONFIG_SECTION,
        BINDING_REDIRECTS,
        PACKAGE_RESTORE,
    }
)

# Credential tokens inside packageSourceCredentials/<source>
USERNAME_TOKEN = "Username"
PASSWORD_TOKEN = "Password"
CLEAR_TEXT_PASSWORD_TOKEN = "ClearTextPassword"

# ===== Files =====

DEFAULT_SETTINGS_FILE_NAME = "settings.config"

# Candidate names per directory, most preferred first
ORDERED_SETTINGS_FILE_NAMES = ("settings.config", "Settings.config", "Settings.Config")

MACHINE_WIDE_CONFIG_PATTERNS = ("*.config", "*.Config")

SETTINGS_HOME_ENVIRONMENT_VARIABLE = "LAYERED_SETTINGS_HOME"

# ===== Package sources =====

DEFAULT_PROTOCOL_VERSION = 2
MAX_SUPPORTED_PROTOCOL_VERSION = 3
CREDENTIALS_ENVIRONMENT_PREFIX = "PackageSourceCredentials_"


class ClearPolicy(Enum):
    """How <clear /> markers interact across the precedence chain.

    ALWAYS: a marker wins regardless of which file holds it. A nearer marker
        stops inheritance from farther files, and a farther marker also erases
        what nearer files contributed to the section.
    NEAREST_WINS: a marker only stops inheritance from files farther than
        the one holding it; nearer values always survive.
    """

    ALWAYS = "always"
    NEAREST_WINS = "nearest-wins"


@dataclass(frozen=True)
class ConfigPaths:
    """Locations of the user-wide and machine-wide settings.

    Applications inject these paths to define their configuration policy.

    Attributes:
        user: Path to the user-wide settings file (created on first load)
        machine_wide: Directory holding machine-wide *.config files (optional)
    """

    user: Path
    machine_wide: Path | None = None


@dataclass
class PackageSourceCredential:
    """Credential pair for a package source."""

    source: str
    username: str
    password_text: str
    is_password_clear_text: bool = True

    def is_valid(self) -> bool:
        return bool(self.username) and bool(self.password_text)


@dataclass
class PackageSource:
    """A package source resolved from the merged settings.

    Attributes:
        source: Resolved location (URL or path)
        name: Source key as written in the settings
        is_enabled: False when listed under disabledPackageSources
        is_machine_wide: True when read from a machine-wide file
        protocol_version: Protocol version advertised by the entry
        credentials: Credentials from the environment or settings, if any
    """

    source: str
    name: str
    is_enabled: bool = True
    is_machine_wide: bool = False
    protocol_version: int = DEFAULT_PROTOCOL_VERSION
    credentials: PackageSourceCredential | None = None
