"""One physical settings file in the precedence chain."""

import logging
import os
from collections.abc import Callable
from collections.abc import Sequence
from pathlib import Path
from xml.etree import ElementTree as ET

from .exceptions import ConfigFileError
from .exceptions import ConfigValidationError
from .factory import parse_configuration
from .models import CONFIGURATION
from .models import DEFAULT_SETTINGS_FILE_NAME
from .nodes import ConfigurationRoot
from .xml_utils import DEFAULT_INDENT
from .xml_utils import has_declaration
from .xml_utils import indentation_unit
from .xml_utils import local_name
from .xml_utils import parse_document
from .xml_utils import serialize

logger = logging.getLogger(__name__)

_EMPTY_DOCUMENT = b'<?xml version="1.0" encoding="utf-8"?>\n<configuration />\n'


class SettingsFile:
    """A settings file on disk and the setting tree parsed from it.

    The file is parsed once. Every mutation of a node it owns rewrites the
    file immediately and notifies the subscribers.

    Args:
        root: Directory holding the file
        file_name: File name, relative to root
        is_machine_wide: Machine-wide files are never written

    Raises:
        ConfigFileError: If the file is malformed, unreadable, or a missing
            machine-wide file
    """

    def __init__(
        self,
        root: str | Path,
        file_name: str = DEFAULT_SETTINGS_FILE_NAME,
        is_machine_wide: bool = False,
    ):
        if root is None:
            raise ValueError("root cannot be None")
        if not file_name:
            raise ValueError("file_name cannot be None or empty")

        self.root = Path(root)
        self.file_name = file_name
        self.is_machine_wide = is_machine_wide
        self.next: SettingsFile | None = None
        self._subscribers: list[Callable[[SettingsFile], None]] = []
        self._xml_declaration = True
        self._indent_unit = DEFAULT_INDENT
        self.root_element: ConfigurationRoot = self._load()

    def __repr__(self) -> str:
        flag = ", machine-wide" if self.is_machine_wide else ""
        return f"SettingsFile({str(self.config_file_path)!r}{flag})"

    @property
    def config_file_path(self) -> Path:
        return self.root / self.file_name

    @property
    def canonical_path(self) -> str:
        """Absolute, case-normalized path used to spot the same file twice."""
        return os.path.normcase(os.path.abspath(self.config_file_path))

    @property
    def directory(self) -> Path:
        """Directory that relative values in this file resolve against."""
        return self.config_file_path.parent

    @property
    def xml_root(self) -> ET.Element:
        return self.root_element.as_xml_node()

    @property
    def indent_unit(self) -> str:
        return self._indent_unit

    def is_empty(self) -> bool:
        return self.root_element.is_empty()

    # ===== Persistence =====

    def save(self, rollback: Callable[[], None] | None = None) -> None:
        """Write the document back to disk and notify subscribers.

        Subscribers are only notified once the write succeeded.

        Args:
            rollback: Undoes the pending in-memory change when the write fails

        Raises:
            ConfigFileError: If the write fails (after rollback has run)
        """
        try:
            self._write(serialize(self.xml_root, xml_declaration=self._xml_declaration))
        except ConfigFileError:
            if rollback is not None:
                rollback()
            logger.warning(f"Failed to save settings to {self.config_file_path}, change discarded")
            raise
        logger.info(f"Saved settings to {self.config_file_path}")
        self._notify()

    def _load(self) -> ConfigurationRoot:
        path = self.config_file_path

        if not path.exists():
            if self.is_machine_wide:
                raise ConfigFileError(f"Unable to parse config file '{path}'.", path)
            self._write(_EMPTY_DOCUMENT)
            logger.info(f"Created empty settings file {path}")

        try:
            data = path.read_bytes()
        except OSError as e:
            raise ConfigFileError(f"Failed to read configuration from {path}: {e}", path) from e

        try:
            xml_root = parse_document(data)
            if local_name(xml_root.tag) != CONFIGURATION:
                raise ConfigValidationError(f"Root element must be <{CONFIGURATION}>, found <{xml_root.tag}>")
            root_element = parse_configuration(xml_root, self)
        except (ET.ParseError, ConfigValidationError) as e:
            raise ConfigFileError(f"Unable to parse config file '{path}'.", path) from e

        self._xml_declaration = has_declaration(data)
        self._indent_unit = indentation_unit(xml_root)
        logger.debug(f"Loaded {len(root_element.sections)} section(s) from {path}")
        return root_element

    def _write(self, data: bytes) -> None:
        path = self.config_file_path
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
        except OSError as e:
            raise ConfigFileError(f"Failed to write configuration to {path}: {e}", path) from e

    # ===== Change notification =====

    def subscribe(self, callback: Callable[["SettingsFile"], None]) -> None:
        """Register a callback invoked with this file after every save."""
        self._subscribers.append(callback)

    def unsubscribe(self, callback: Callable[["SettingsFile"], None]) -> None:
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    def _notify(self) -> None:
        for callback in list(self._subscribers):
            callback(self)

    @staticmethod
    def connect_settings_files_linked_list(settings_files: Sequence["SettingsFile"]) -> None:
        """Link files through next in the given order (nearest first).

        Linking stops at the first file whose path is already in the chain,
        so a repeated entry never rewires the links made before it.
        """
        seen = set()
        previous = None
        for settings_file in settings_files:
            if settings_file.canonical_path in seen:
                logger.debug(f"Not linking duplicate settings file {settings_file.config_file_path}")
                break
            seen.add(settings_file.canonical_path)
            if previous is not None:
                previous.next = settings_file
            previous = settings_file
        if previous is not None:
            previous.next = None
