"""Composed settings view over a precedence chain of settings files."""

import logging
import os
from collections.abc import Callable
from collections.abc import Iterator
from collections.abc import Sequence
from pathlib import Path
from typing import Any

import yaml

from .environment import get_user_settings_directory
from .exceptions import ConfigFileError
from .exceptions import InvalidSettingsOperationError
from .merge import ComputedSection
from .models import DEFAULT_SETTINGS_FILE_NAME
from .models import MACHINE_WIDE_CONFIG_PATTERNS
from .models import ORDERED_SETTINGS_FILE_NAMES
from .models import ClearPolicy
from .models import ConfigPaths
from .nodes import AddElement
from .nodes import ConfigurationRoot
from .nodes import SettingElement
from .nodes import SettingSection
from .nodes import SettingTextContent
from .settings_file import SettingsFile

logger = logging.getLogger(__name__)


class Settings:
    """Merged view over settings files ordered nearest-to-consumer first.

    Reads see one logical tree. Writes to existing values go to the file that
    owns them; new top-level sections go to the nearest writable file. Any
    save in the chain rebuilds the view and notifies subscribers.

    Resolution order (highest to lowest priority):
    1. Settings files found walking up from the working directory
    2. User-wide settings file
    3. Machine-wide settings files

    Args:
        settings_files: Files in precedence order, nearest first
        clear_policy: How <clear /> markers act across files
    """

    def __init__(self, settings_files: Sequence[SettingsFile], clear_policy: ClearPolicy = ClearPolicy.ALWAYS):
        if not settings_files:
            raise ValueError("settings_files cannot be empty")

        files = list(settings_files)
        SettingsFile.connect_settings_files_linked_list(files)
        self._head = files[0]
        self.clear_policy = clear_policy
        self._priority = list(self._walk_chain())
        self._subscribers: list[Callable[[], None]] = []
        self._notifying = False
        self._computed = ConfigurationRoot()

        for settings_file in self._priority:
            settings_file.subscribe(self._on_file_changed)

        self.rebuild()

    def __repr__(self) -> str:
        return f"Settings({[str(path) for path in self.get_config_file_paths()]!r})"

    # ===== Read surface =====

    @property
    def sections(self) -> dict[str, SettingSection]:
        """Merged sections by name."""
        return self._computed.sections

    @property
    def priority(self) -> list[SettingsFile]:
        """Files of the chain, nearest first."""
        return list(self._priority)

    @property
    def default_output_file(self) -> SettingsFile | None:
        """Nearest file that is not machine-wide."""
        return next((f for f in self._priority if not f.is_machine_wide), None)

    def get_config_file_paths(self) -> list[Path]:
        return [settings_file.config_file_path for settings_file in self._priority]

    def get_config_roots(self) -> list[Path]:
        roots = []
        for settings_file in self._priority:
            if settings_file.root not in roots:
                roots.append(settings_file.root)
        return roots

    def rebuild(self) -> None:
        """Recompute the merged tree from every file in the chain."""
        computed = ConfigurationRoot()
        for settings_file in self._priority:
            for name, section in settings_file.root_element.sections.items():
                merged = computed.sections.get(name)
                if merged is None:
                    merged = ComputedSection(section, self.clear_policy)
                    merged._set_parent(computed)
                    computed.sections[name] = merged
                else:
                    merged.merge(section)

        self._computed = computed
        logger.debug(f"Merged {len(computed.sections)} section(s) from {len(self._priority)} file(s)")

    # ===== Write surface =====

    def try_create_section(self, name: str) -> bool:
        """Add an empty section to the nearest writable file.

        Returns:
            False if the section already exists there, no file is writable,
            or the save fails
        """
        if not name:
            raise ValueError("name cannot be None or empty")

        target = self.default_output_file
        if target is None:
            logger.warning(f"Cannot create section '{name}': every settings file is machine-wide")
            return False

        try:
            return target.root_element.try_add_child(SettingSection(name))
        except ConfigFileError as e:
            logger.warning(f"Failed to create section '{name}' in {target.config_file_path}: {e}")
            return False

    # ===== Change notification =====

    def subscribe(self, callback: Callable[[], None]) -> None:
        """Register a callback invoked after the merged view changes."""
        self._subscribers.append(callback)

    def unsubscribe(self, callback: Callable[[], None]) -> None:
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    def _on_file_changed(self, settings_file: SettingsFile) -> None:
        self.rebuild()

        if self._notifying:
            logger.debug(f"{settings_file.config_file_path} saved during notification; rebuilt only")
            return

        self._notifying = True
        try:
            for callback in list(self._subscribers):
                callback()
        finally:
            self._notifying = False

    # ===== Export =====

    def get_merged_settings(self) -> dict[str, Any]:
        """Merged view as nested dictionaries of section name to values."""
        return {name: _element_to_dict(section) for name, section in self.sections.items()}

    def to_yaml(self) -> str:
        return yaml.safe_dump(self.get_merged_settings(), default_flow_style=False, sort_keys=False)

    # ===== Private Helpers =====

    def _walk_chain(self) -> Iterator[SettingsFile]:
        seen = set()
        current = self._head
        while current is not None:
            if current.canonical_path in seen:
                logger.debug(f"Stopping at duplicate settings file {current.config_file_path}")
                return
            seen.add(current.canonical_path)
            yield current
            current = current.next


class NullSettings:
    """Empty, read-only settings returned when nothing could be loaded."""

    clear_policy = ClearPolicy.ALWAYS

    def __repr__(self) -> str:
        return "NullSettings()"

    @property
    def sections(self) -> dict[str, SettingSection]:
        return {}

    @property
    def priority(self) -> list[SettingsFile]:
        return []

    @property
    def default_output_file(self) -> None:
        return None

    def get_config_file_paths(self) -> list[Path]:
        return []

    def get_config_roots(self) -> list[Path]:
        return []

    def rebuild(self) -> None:
        pass

    def try_create_section(self, name: str) -> bool:
        raise InvalidSettingsOperationError(f"Cannot create section '{name}': no settings file is loaded")

    def subscribe(self, callback: Callable[[], None]) -> None:
        pass

    def unsubscribe(self, callback: Callable[[], None]) -> None:
        pass

    def get_merged_settings(self) -> dict[str, Any]:
        return {}

    def to_yaml(self) -> str:
        return yaml.safe_dump({}, default_flow_style=False, sort_keys=False)


# ===== Loading =====


def load_default_settings(
    root: str | Path | None,
    config_file_name: str | None = None,
    machine_wide_settings: "Settings | NullSettings | None" = None,
    paths: ConfigPaths | None = None,
    clear_policy: ClearPolicy = ClearPolicy.ALWAYS,
) -> Settings | NullSettings:
    """Load the settings that apply to a working directory.

    Without config_file_name the chain is: every settings file found walking
    up from root, then the user-wide file, then the machine-wide files. With
    config_file_name only root/config_file_name is used.

    Args:
        root: Working directory to start from (None skips the walk)
        config_file_name: Single file to load instead of discovering
        machine_wide_settings: Machine-wide settings to append
        paths: Injected user-wide file and machine-wide directory
        clear_policy: How <clear /> markers act across files

    Raises:
        ConfigFileError: If config_file_name does not exist or is malformed
    """
    return load_settings(
        root,
        config_file_name,
        machine_wide_settings,
        load_user_wide_settings=True,
        paths=paths,
        clear_policy=clear_policy,
    )


def load_specific_settings(root: str | Path, config_file_name: str) -> Settings | NullSettings:
    """Load only root/config_file_name."""
    if not config_file_name:
        raise ValueError("config_file_name cannot be None or empty")

    return load_settings(root, config_file_name, None, load_user_wide_settings=True)


def load_settings(
    root: str | Path | None,
    config_file_name: str | None = None,
    machine_wide_settings: "Settings | NullSettings | None" = None,
    load_user_wide_settings: bool = True,
    paths: ConfigPaths | None = None,
    clear_policy: ClearPolicy = ClearPolicy.ALWAYS,
) -> Settings | NullSettings:
    settings_files: list[SettingsFile] = []

    if root is not None and not config_file_name:
        for path in get_settings_files_full_path(root):
            settings_file = read_settings(path.parent, path.name)
            if settings_file is not None:
                settings_files.append(settings_file)

    if load_user_wide_settings:
        user_settings = _load_user_specific_settings(root, config_file_name, paths)
        if user_settings is not None:
            settings_files.append(user_settings)

    if not config_file_name:
        if machine_wide_settings is None and paths is not None and paths.machine_wide is not None:
            machine_wide_settings = load_machine_wide_settings(paths.machine_wide)
        if machine_wide_settings is not None:
            # fresh handles keep the caller's chain links intact
            settings_files.extend(
                SettingsFile(f.root, f.file_name, is_machine_wide=True) for f in machine_wide_settings.priority
            )

    if not settings_files:
        logger.warning("No settings file could be loaded")
        return NullSettings()

    return Settings(settings_files, clear_policy)


def load_settings_given_config_paths(config_file_paths: Sequence[str | Path]) -> Settings | NullSettings:
    """Load exactly these files, in this order (nearest first).

    Raises:
        ConfigFileError: If any of the files is malformed
    """
    if not config_file_paths:
        return NullSettings()

    settings_files = [SettingsFile(Path(path).parent, Path(path).name) for path in config_file_paths]
    return Settings(settings_files)


def load_machine_wide_settings(root: str | Path, *paths: str) -> Settings | NullSettings:
    """Collect machine-wide *.config files from root/paths[0]/.../paths[-1] up to root.

    Files in deeper directories come first. Unparsable files are skipped.
    """
    if not root:
        raise ValueError("root cannot be None or empty")

    root = Path(root)
    sub_paths = list(paths)
    settings_files: list[SettingsFile] = []

    while True:
        directory = root.joinpath(*sub_paths)
        for config_file in _machine_wide_config_files(directory):
            settings_file = read_settings(directory, config_file.name, is_machine_wide=True)
            if settings_file is not None:
                settings_files.append(settings_file)
        if not sub_paths:
            break
        sub_paths.pop()

    if not settings_files:
        return NullSettings()

    return Settings(settings_files)


def read_settings(root: str | Path, settings_path: str | Path, is_machine_wide: bool = False) -> SettingsFile | None:
    """Open one settings file, returning None (with a warning) if it cannot be loaded."""
    directory, file_name = get_file_name_and_root(root, settings_path)
    try:
        return SettingsFile(directory, file_name, is_machine_wide)
    except ConfigFileError as e:
        logger.warning(f"Skipping settings file {directory / file_name}: {e}")
        return None


def get_file_name_and_root(root: str | Path | None, settings_path: str | Path) -> tuple[Path, str]:
    """Split a possibly relative settings path into (directory, file name)."""
    path = Path(settings_path)
    if not path.is_absolute():
        path = Path(root or "") / path
    return path.parent, path.name


def get_settings_files_full_path(root: str | Path) -> Iterator[Path]:
    """Settings files from root up to the filesystem root, nearest first."""
    start = Path(root).absolute()
    for directory in (start, *start.parents):
        file_name = _settings_file_name_in(directory)
        if file_name is not None:
            yield directory / file_name


# ===== Private Helpers =====


def _settings_file_name_in(directory: Path) -> str | None:
    for candidate in ORDERED_SETTINGS_FILE_NAMES:
        if (directory / candidate).is_file():
            return candidate
    return None


def _machine_wide_config_files(directory: Path) -> list[Path]:
    if not directory.is_dir():
        return []

    found: dict[str, Path] = {}
    for pattern in MACHINE_WIDE_CONFIG_PATTERNS:
        for path in directory.glob(pattern):
            if path.is_file():
                found.setdefault(os.path.normcase(str(path)), path)
    return sorted(found.values())


def _load_user_specific_settings(
    root: str | Path | None,
    config_file_name: str | None,
    paths: ConfigPaths | None,
) -> SettingsFile | None:
    if config_file_name:
        path = Path(root or "") / config_file_name
        if not path.is_file():
            raise ConfigFileError(f"File '{path.absolute()}' does not exist.", path)
        return SettingsFile(path.parent, path.name)

    if paths is not None:
        user_file = Path(paths.user)
    else:
        user_file = get_user_settings_directory() / DEFAULT_SETTINGS_FILE_NAME
    return read_settings(user_file.parent, user_file.name)


def _element_to_dict(element: SettingElement) -> dict[str, Any]:
    values: dict[str, Any] = {}
    for child in element.children:
        if isinstance(child, AddElement):
            values.setdefault(child.key, child.value)
        elif isinstance(child, SettingSection):
            values.setdefault(child.name, _element_to_dict(child))
        elif isinstance(child, SettingTextContent):
            values.setdefault("#text", child.value)
    return values
