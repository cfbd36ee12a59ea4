"""Package source registry backed by merged settings."""

import logging
import os
import re
from collections.abc import Callable
from collections.abc import Iterable

from .environment import apply_environment_transform
from .exceptions import ConfigError
from .models import ACTIVE_PACKAGE_SOURCE
from .models import CLEAR_TEXT_PASSWORD_TOKEN
from .models import CREDENTIALS_ENVIRONMENT_PREFIX
from .models import CREDENTIALS_SECTION
from .models import DEFAULT_PROTOCOL_VERSION
from .models import DISABLED_PACKAGE_SOURCES
from .models import KEY_ATTRIBUTE
from .models import MAX_SUPPORTED_PROTOCOL_VERSION
from .models import PACKAGE_SOURCES
from .models import PASSWORD_TOKEN
from .models import PROTOCOL_VERSION_ATTRIBUTE
from .models import USERNAME_TOKEN
from .models import PackageSource
from .models import PackageSourceCredential
from .nodes import AddElement
from .nodes import SettingSection
from .xml_utils import encode_local_name

logger = logging.getLogger(__name__)

_ENVIRONMENT_CREDENTIAL = re.compile(r"^Username=(?P<username>.*?);\s*Password=(?P<password>.*)$", re.IGNORECASE)


class PackageSourceProvider:
    """Reads and updates package sources in merged settings.

    Sources come from packageSources; disabledPackageSources,
    packageSourceCredentials and activePackageSource add state to them.

    Args:
        settings: Merged settings to read from and write through
        default_sources: Sources offered when the settings do not list them
    """

    def __init__(self, settings, default_sources: Iterable[PackageSource] | None = None):
        if settings is None:
            raise ValueError("settings cannot be None")

        self.settings = settings
        self._default_sources = _deduplicate(default_sources or ())
        self._subscribers: list[Callable[[], None]] = []
        settings.subscribe(self._on_settings_changed)

    # ===== Reading =====

    def load_package_sources(self) -> list[PackageSource]:
        """Package sources in merged order, deduplicated by name.

        Returns:
            Sources with enablement, credentials and protocol version filled in
        """
        section = self.settings.sections.get(PACKAGE_SOURCES)
        entries = [child for child in section.children if isinstance(child, AddElement)] if section else []
        disabled = self._disabled_source_names()

        package_sources = _deduplicate(
            self._read_package_source(entry, is_enabled=entry.key.lower() not in disabled) for entry in entries
        )

        if self._default_sources:
            self._add_default_sources(package_sources)

        return package_sources

    def is_package_source_enabled(self, source: PackageSource) -> bool:
        if source is None:
            raise ValueError("source cannot be None")

        section = self.settings.sections.get(DISABLED_PACKAGE_SOURCES)
        return section is None or section.get_child_element(KEY_ATTRIBUTE, source.name) is None

    @property
    def active_package_source_name(self) -> str | None:
        section = self.settings.sections.get(ACTIVE_PACKAGE_SOURCE)
        if section is None:
            return None

        entry = next((child for child in section.children if isinstance(child, AddElement)), None)
        return entry.key if entry is not None else None

    # ===== Writing =====

    def disable_package_source(self, source: PackageSource) -> None:
        """List a source under disabledPackageSources.

        Raises:
            ConfigError: If the entry cannot be written
        """
        if source is None:
            raise ValueError("source cannot be None")

        if self.settings.sections.get(DISABLED_PACKAGE_SOURCES) is None:
            if not self.settings.try_create_section(DISABLED_PACKAGE_SOURCES):
                raise ConfigError(f"Unable to create section '{DISABLED_PACKAGE_SOURCES}'")

        section = self.settings.sections[DISABLED_PACKAGE_SOURCES]
        if section.get_child_element(KEY_ATTRIBUTE, source.name) is not None:
            return

        if not section.try_add_child(AddElement(source.name, "true")):
            raise ConfigError(f"Unable to disable package source '{source.name}'")

        logger.info(f"Disabled package source '{source.name}'")

    def enable_package_source(self, source: PackageSource) -> bool:
        """Remove a source from disabledPackageSources.

        Returns:
            False if the source was not disabled or is disabled machine-wide
        """
        if source is None:
            raise ValueError("source cannot be None")

        section = self.settings.sections.get(DISABLED_PACKAGE_SOURCES)
        entry = section.get_child_element(KEY_ATTRIBUTE, source.name) if section is not None else None
        if entry is None:
            return False

        enabled = entry.try_remove()
        if enabled:
            logger.info(f"Enabled package source '{source.name}'")
        return enabled

    def save_active_package_source(self, source: PackageSource) -> None:
        """Replace the activePackageSource section with this source."""
        try:
            section = self.settings.sections.get(ACTIVE_PACKAGE_SOURCE)
            if section is not None:
                section.try_remove()

            if self.settings.try_create_section(ACTIVE_PACKAGE_SOURCE):
                self.settings.sections[ACTIVE_PACKAGE_SOURCE].try_add_child(AddElement(source.name, source.source))
        except Exception as e:
            # best effort: callers never see a failure here
            logger.debug(f"Failed to save active package source '{getattr(source, 'name', source)}': {e}")

    # ===== Change notification =====

    def subscribe(self, callback: Callable[[], None]) -> None:
        """Register a callback invoked whenever the underlying settings change."""
        self._subscribers.append(callback)

    def unsubscribe(self, callback: Callable[[], None]) -> None:
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    def _on_settings_changed(self) -> None:
        for callback in list(self._subscribers):
            callback()

    # ===== Private Helpers =====

    def _disabled_source_names(self) -> set[str]:
        section = self.settings.sections.get(DISABLED_PACKAGE_SOURCES)
        if section is None:
            return set()
        return {child.key.lower() for child in section.children if isinstance(child, AddElement)}

    def _read_package_source(self, entry: AddElement, is_enabled: bool) -> PackageSource:
        name = entry.key
        return PackageSource(
            source=entry.value,
            name=name,
            is_enabled=is_enabled,
            is_machine_wide=entry.origin is not None and entry.origin.is_machine_wide,
            protocol_version=_read_protocol_version(entry),
            credentials=self._read_credential(name),
        )

    def _read_credential(self, source_name: str) -> PackageSourceCredential | None:
        credential = _read_credential_from_environment(source_name)
        if credential is not None:
            return credential

        section = self.settings.sections.get(CREDENTIALS_SECTION)
        if section is None:
            return None

        encoded_name = encode_local_name(source_name)
        source_section = next(
            (child for child in section.children if isinstance(child, SettingSection) and child.name == encoded_name),
            None,
        )
        if source_section is None:
            return None

        username = _entry_value(source_section, USERNAME_TOKEN)
        password = _entry_value(source_section, PASSWORD_TOKEN)
        if password is not None:
            return PackageSourceCredential(source_name, username, password, is_password_clear_text=False)

        clear_text_password = _entry_value(source_section, CLEAR_TEXT_PASSWORD_TOKEN)
        if clear_text_password is not None:
            return PackageSourceCredential(source_name, username, clear_text_password, is_password_clear_text=True)

        return None

    def _add_default_sources(self, package_sources: list[PackageSource]) -> None:
        """Insert unknown default sources before the first machine-wide source."""
        index = next((i for i, source in enumerate(package_sources) if source.is_machine_wide), len(package_sources))

        known_names = {source.name.lower() for source in package_sources}
        known_locations = {source.source.lower() for source in package_sources if source.source}
        for default in self._default_sources:
            if default.name.lower() in known_names or (default.source or "").lower() in known_locations:
                continue
            package_sources.insert(index, default)
            index += 1


def _deduplicate(package_sources: Iterable[PackageSource]) -> list[PackageSource]:
    """Keep one source per name (case-insensitive) at its first position.

    A later duplicate replaces the kept one only when it advertises a higher,
    still supported, protocol version.
    """
    by_name: dict[str, PackageSource] = {}
    for source in package_sources:
        key = source.name.lower()
        existing = by_name.get(key)
        if existing is None:
            by_name[key] = source
        elif existing.protocol_version < source.protocol_version <= MAX_SUPPORTED_PROTOCOL_VERSION:
            logger.debug(f"Package source '{source.name}' upgraded to protocol version {source.protocol_version}")
            by_name[key] = source
    return list(by_name.values())


def _read_protocol_version(entry: AddElement) -> int:
    raw = apply_environment_transform(entry.get_attribute(PROTOCOL_VERSION_ATTRIBUTE))
    if not raw:
        return DEFAULT_PROTOCOL_VERSION
    try:
        return int(raw)
    except ValueError:
        logger.debug(f"Ignoring invalid protocol version '{raw}' for package source '{entry.key}'")
        return DEFAULT_PROTOCOL_VERSION


def _read_credential_from_environment(source_name: str) -> PackageSourceCredential | None:
    raw = os.environ.get(CREDENTIALS_ENVIRONMENT_PREFIX + source_name)
    if not raw:
        return None

    match = _ENVIRONMENT_CREDENTIAL.match(raw.strip())
    if match is None:
        logger.debug(f"Ignoring malformed credentials in ${CREDENTIALS_ENVIRONMENT_PREFIX}{source_name}")
        return None

    return PackageSourceCredential(source_name, match.group("username"), match.group("password"))


def _entry_value(section: SettingSection, key: str) -> str | None:
    entry = section.get_child_element(KEY_ATTRIBUTE, key)
    return entry.value if isinstance(entry, AddElement) else None
