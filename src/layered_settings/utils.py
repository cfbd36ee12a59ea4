"""Helpers for reading and writing single values through merged settings."""

import logging

from .environment import resolve_relative_path
from .models import CONFIG_SECTION
from .models import KEY_ATTRIBUTE
from .nodes import AddElement

logger = logging.getLogger(__name__)


def get_value_for_add_item(settings, section: str, key: str, is_path: bool = False) -> str | None:
    """Value of <add key="key"> in a merged section.

    Args:
        settings: Settings to read from
        section: Section name
        key: Entry key (exact match)
        is_path: Resolve the value against the directory of its file

    Returns:
        Environment-expanded value, or None if the entry is not present
    """
    if not section:
        raise ValueError("section cannot be None or empty")
    if not key:
        raise ValueError("key cannot be None or empty")

    merged = settings.sections.get(section)
    item = merged.get_child_element(KEY_ATTRIBUTE, key) if merged is not None else None
    if not isinstance(item, AddElement):
        return None

    if is_path:
        return resolve_relative_path(item.origin, item.value)
    return item.value


def get_config_value(settings, key: str, default: str | None = None, is_path: bool = False) -> str | None:
    """Value of a key in the config section, or default."""
    value = get_value_for_add_item(settings, CONFIG_SECTION, key, is_path)
    return value if value is not None else default


def set_config_value(settings, key: str, value: str) -> bool:
    """Set a key in the config section.

    An existing writable entry is updated in its own file. Otherwise a new
    entry goes to the nearest file holding the section, or to a section
    created in the nearest writable file.

    Returns:
        True if the value was written
    """
    if not key:
        raise ValueError("key cannot be None or empty")
    if not value:
        raise ValueError("value cannot be None or empty")

    section = settings.sections.get(CONFIG_SECTION)
    existing = section.get_child_element(KEY_ATTRIBUTE, key) if section is not None else None
    if isinstance(existing, AddElement) and existing.try_update(value):
        logger.info(f"Updated config '{key}' in {existing.origin.config_file_path}")
        return True

    if section is None or section.origin is None or section.origin.is_machine_wide:
        if not settings.try_create_section(CONFIG_SECTION):
            return False
        section = settings.sections[CONFIG_SECTION]

    return section.try_add_child(AddElement(key, value))


def delete_config_value(settings, key: str) -> bool:
    """Remove a key from the config section.

    Returns:
        True if removed, False if not found or read-only
    """
    if not key:
        raise ValueError("key cannot be None or empty")

    section = settings.sections.get(CONFIG_SECTION)
    existing = section.get_child_element(KEY_ATTRIBUTE, key) if section is not None else None
    if existing is None:
        return False

    removed = existing.try_remove()
    if removed:
        logger.info(f"Removed config '{key}'")
    return removed
