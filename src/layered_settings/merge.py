"""Merge rules for sibling settings and for sections across files."""

import logging

from .models import ClearPolicy
from .nodes import ClearElement
from .nodes import SettingElement
from .nodes import SettingNode
from .nodes import SettingSection

logger = logging.getLogger(__name__)


def merge_descendants(
    can_be_cleared: bool,
    children: list[SettingNode],
    descendants: list[SettingNode],
    *,
    fold_sections: bool = False,
) -> bool:
    """Fold descendants into children in place.

    Merge rules:
    1. In a clearable section the first <clear /> in descendants discards every
       existing child; only the marker and what follows it are folded in
    2. Later markers, and every marker of a non-clearable section, are dropped
    3. A node equal to an existing child is ignored (the first one seen wins)
    4. With fold_sections, an equal section is merged into the existing one

    Args:
        can_be_cleared: Whether the owning section honours <clear />
        children: Existing children, modified in place
        descendants: Incoming nodes in document order
        fold_sections: Merge duplicate sub-sections instead of dropping them

    Returns:
        True if a marker cleared the existing children
    """
    incoming = [node for node in descendants if node is not None]
    marker_index = next((i for i, node in enumerate(incoming) if isinstance(node, ClearElement)), None)

    cleared = False
    if marker_index is not None:
        if can_be_cleared:
            if children:
                logger.debug(f"<clear /> discards {len(children)} inherited setting(s)")
            children.clear()
            tail = [node for node in incoming[marker_index + 1 :] if not isinstance(node, ClearElement)]
            incoming = [incoming[marker_index], *tail]
            cleared = True
        else:
            incoming = [node for node in incoming if not isinstance(node, ClearElement)]

    for node in incoming:
        existing = next((child for child in children if child == node), None)
        if existing is None:
            children.append(node)
        elif fold_sections and existing is not node and isinstance(existing, SettingSection):
            existing.merge(node)

    return cleared


class ComputedSection(SettingSection):
    """Merged view of one section across the precedence chain.

    Contributors are the per-file sections that were folded in, nearest file
    first. The children are the contributors' own nodes, so a write through
    any of them lands in the file that owns it. Markers are never exposed;
    is_cleared reports whether one sealed the section.
    """

    def __init__(self, section: SettingSection, clear_policy: ClearPolicy = ClearPolicy.ALWAYS):
        SettingElement.__init__(self)
        self._name = section.name
        self.can_be_cleared = section.can_be_cleared
        self.clear_policy = clear_policy
        self._contributors: list[SettingSection] = []
        self._cleared = False
        self.merge(section)

    @property
    def origin(self):
        """File of the nearest contributor, where new children are written."""
        return self._contributors[0].origin if self._contributors else None

    @property
    def contributors(self) -> list[SettingSection]:
        return list(self._contributors)

    @property
    def is_cleared(self) -> bool:
        return self._cleared

    def merge(self, other: SettingSection) -> "ComputedSection":
        """Fold the same section from the next (farther) file."""
        if self != other:
            raise ValueError("Cannot merge two different sections")

        incoming_cleared = other.is_cleared
        if self._cleared and (self.clear_policy is ClearPolicy.NEAREST_WINS or not incoming_cleared):
            logger.debug(f"Section '{self.name}' is cleared; ignoring {other.origin and other.origin.config_file_path}")
            return self

        can_clear = self.can_be_cleared and self.clear_policy is ClearPolicy.ALWAYS
        merge_descendants(can_clear, self._children, other._children)
        self._children = [child for child in self._children if not isinstance(child, ClearElement)]
        self._contributors.append(other)
        self._cleared = self._cleared or incoming_cleared
        return self

    def try_add_child(self, child: SettingNode) -> bool:
        """Add to the nearest contributing file's section."""
        if child is None:
            raise ValueError("child cannot be None")

        if not self._contributors:
            return False

        return self._contributors[0].try_add_child(child)

    def try_remove_child(self, child: SettingNode) -> bool:
        if child is None:
            raise ValueError("child cannot be None")

        if not any(existing is child for existing in self._children):
            return False

        return child.try_remove()

    def try_remove(self) -> bool:
        """Remove the section from every contributing file.

        Returns:
            False if any contributor is machine-wide
        """
        if any(section.origin is not None and section.origin.is_machine_wide for section in self._contributors):
            return False

        removed = True
        for section in list(self._contributors):
            removed = section.try_remove() and removed

        return removed

    def try_update_attribute(self, name: str, new_value: str) -> bool:
        if not self._contributors:
            return False

        return self._contributors[0].try_update_attribute(name, new_value)
