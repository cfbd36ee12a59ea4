"""Setting nodes: the in-memory mirror of a settings file's element tree.

The variant set is closed:

    SettingSection      named grouping, equal by name
    AddElement          key/value entry, equal by its full attribute set
    SourceElement       AddElement whose value resolves relative to its file
    ClearElement        <clear /> marker, equal only to itself
    SettingTextContent  text inside an element, equal by value

ConfigurationRoot holds the top-level sections of one file (or of the merged
view). Every node keeps a handle on its backing ElementTree node so that a
mutation can be written back in place, leaving the rest of the file untouched.
"""

import logging
import weakref
from abc import ABC, abstractmethod
from collections.abc import Iterable, Iterator, Mapping, MutableMapping
from typing import TYPE_CHECKING
from xml.etree import ElementTree as ET

from .environment import apply_environment_transform
from .environment import resolve_relative_path
from .exceptions import ConfigValidationError
from .models import ADD
from .models import CLEAR
from .models import CLEARABLE_SECTIONS
from .models import CONFIGURATION
from .models import KEY_ATTRIBUTE
from .models import PROTOCOL_VERSION_ATTRIBUTE
from .models import VALUE_ATTRIBUTE
from .xml_utils import add_indented
from .xml_utils import encode_local_name
from .xml_utils import find_parent
from .xml_utils import local_name
from .xml_utils import remove_indented
from .xml_utils import restore_layout
from .xml_utils import snapshot_layout

if TYPE_CHECKING:
    from .settings_file import SettingsFile

logger = logging.getLogger(__name__)


class AttributeMap(MutableMapping[str, str]):
    """Attribute mapping with case-insensitive names.

    The spelling and order of the first write of each name are kept so the
    markup can be regenerated faithfully.
    """

    def __init__(self, attributes: Mapping[str, str] | None = None):
        self._data: dict[str, tuple[str, str]] = {}
        if attributes:
            for name, value in attributes.items():
                self[name] = value

    def __getitem__(self, name: str) -> str:
        return self._data[name.lower()][1]

    def __setitem__(self, name: str, value: str) -> None:
        folded = name.lower()
        spelling = self._data[folded][0] if folded in self._data else name
        self._data[folded] = (spelling, value)

    def __delitem__(self, name: str) -> None:
        del self._data[name.lower()]

    def __iter__(self) -> Iterator[str]:
        return (spelling for spelling, _ in self._data.values())

    def __len__(self) -> int:
        return len(self._data)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name.lower() in self._data

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, AttributeMap):
            return NotImplemented
        return self._folded() == other._folded()

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return f"AttributeMap({dict(self)!r})"

    def spelling(self, name: str) -> str:
        """Name as it is written in the markup."""
        return self._data[name.lower()][0]

    def _folded(self) -> dict[str, str]:
        return {folded: value for folded, (_, value) in self._data.items()}


class SettingNode(ABC):
    """Base of every node parsed from, or destined for, a settings file.

    Attributes:
        origin: SettingsFile the node was read from (None until first attached)
        parent: Container holding the node (held weakly)
    """

    def __init__(self):
        self._node: ET.Element | str | None = None
        self._parent_ref: weakref.ref | None = None
        self._origin: "SettingsFile | None" = None

    @property
    def origin(self) -> "SettingsFile | None":
        return self._origin

    @origin.setter
    def origin(self, value: "SettingsFile | None") -> None:
        self._origin = value

    @property
    def parent(self) -> "SettingElement | ConfigurationRoot | None":
        return self._parent_ref() if self._parent_ref is not None else None

    def _set_parent(self, parent: "SettingElement | ConfigurationRoot | None") -> None:
        self._parent_ref = weakref.ref(parent) if parent is not None else None

    def _bind(
        self,
        node: ET.Element | str,
        parent: "SettingElement | ConfigurationRoot",
        origin: "SettingsFile",
    ) -> None:
        """Attach a node freshly read from a file."""
        if node is None:
            raise ValueError("node cannot be None")
        if parent is None:
            raise ValueError("parent cannot be None")
        if origin is None:
            raise ValueError("origin cannot be None")
        self._node = node
        self._set_parent(parent)
        self.origin = origin

    @abstractmethod
    def __eq__(self, other: object) -> bool: ...

    @abstractmethod
    def as_xml_node(self):
        """Backing markup node, built on first use for in-memory nodes."""

    def try_remove(self) -> bool:
        """Detach this node through its parent.

        Returns:
            False if the node has no parent or the parent refuses the removal
        """
        parent = self.parent
        if parent is None:
            return False
        return parent.try_remove_child(self)

    def _attach(
        self,
        parent: "SettingElement | ConfigurationRoot",
        origin: "SettingsFile | None" = None,
    ) -> None:
        """Attach to a container, taking on an origin.

        With no origin argument the container's origin is inherited, so the
        container must have one. An explicit origin is only accepted for a
        container that has none yet.
        """
        if parent is None:
            raise ValueError("parent cannot be None")

        if origin is None:
            if parent.origin is None:
                raise ValueError("Cannot attach to a container without an origin; pass one explicitly")
            origin = parent.origin
        elif parent.origin is not None:
            raise ValueError("Container already has an origin; attach without an explicit one")

        self._set_parent(parent)
        self.origin = origin
        self._node = self.as_xml_node()

    def _depth(self) -> int:
        depth = 0
        current = self.parent
        while current is not None:
            depth += 1
            current = current.parent
        return depth

    def _insert_markup(self, parent) -> None:
        add_indented(parent.as_xml_node(), self._node, parent._depth(), self.origin.indent_unit)

    def _markup_container(self, parent) -> ET.Element | None:
        """Element whose children include this node's markup."""
        node = self._node
        if not isinstance(node, ET.Element):
            return None
        container = parent._node if parent is not None else None
        if isinstance(container, ET.Element) and any(child is node for child in container):
            return container
        # merged duplicates keep their children under the original element
        return find_parent(self.origin.xml_root, node)

    def _detach_markup(self, parent) -> None:
        container = self._markup_container(parent)
        if container is not None:
            remove_indented(container, self._node)


AttachmentState = list[tuple[SettingNode, weakref.ref | None, "SettingsFile | None", ET.Element | str | None]]


def _capture_attachment(node: SettingNode) -> AttachmentState:
    """Record the parent, origin and markup of node and everything below it."""
    state = [(node, node._parent_ref, node._origin, node._node)]
    if isinstance(node, SettingElement):
        for child in node._children:
            state.extend(_capture_attachment(child))
    return state


def _restore_attachment(state: AttachmentState) -> None:
    for node, parent_ref, origin, markup in state:
        node._parent_ref = parent_ref
        node._origin = origin
        node._node = markup


class SettingTextContent(SettingNode):
    """Text held directly by an element."""

    def __init__(self, value: str):
        super().__init__()
        self._value = value

    @classmethod
    def _from_xml(cls, text: str, parent, origin) -> "SettingTextContent":
        instance = cls(text)
        instance._bind(text, parent, origin)
        return instance

    @property
    def value(self) -> str:
        return self._value

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SettingTextContent):
            return NotImplemented
        return self._value == other._value

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return f"SettingTextContent({self._value!r})"

    def as_xml_node(self) -> str:
        return self._value

    def try_update(self, new_value: str) -> bool:
        """Replace the text, saving the owning file.

        Returns:
            False if the owning file is machine-wide

        Raises:
            ConfigFileError: If the file cannot be written; the old text is kept
        """
        if not new_value:
            raise ValueError("new_value cannot be None or empty")

        if self.origin is not None and self.origin.is_machine_wide:
            return False

        previous_value, previous_node = self._value, self._node
        self._value = new_value
        parent = self.parent
        if self.origin is not None and parent is not None and isinstance(parent._node, ET.Element):
            container = parent._node
            previous_text = container.text

            def rollback() -> None:
                self._value, self._node = previous_value, previous_node
                container.text = previous_text

            container.text = new_value
            self._node = new_value
            self.origin.save(rollback)

        return True

    def _insert_markup(self, parent) -> None:
        parent.as_xml_node().text = self._value

    def _markup_container(self, parent) -> ET.Element | None:
        if parent is not None and isinstance(parent._node, ET.Element):
            return parent._node
        return None

    def _detach_markup(self, parent) -> None:
        container = self._markup_container(parent)
        if container is not None:
            container.text = None


class SettingElement(SettingNode):
    """A node that carries attributes and children."""

    can_be_cleared = False

    def __init__(self, attributes: Mapping[str, str] | None = None):
        super().__init__()
        self._attributes = AttributeMap(attributes)
        self._children: list[SettingNode] = []

    @classmethod
    def _from_xml(cls, element: ET.Element, parent, origin) -> "SettingElement":
        """Build the element read from a file; children are parsed by the factory."""
        instance = cls.__new__(cls)
        SettingElement.__init__(instance, element.attrib)
        instance._bind(element, parent, origin)
        instance._load(element)
        return instance

    def _load(self, element: ET.Element) -> None:
        pass

    @property
    @abstractmethod
    def name(self) -> str: ...

    @property
    def attributes(self) -> dict[str, str]:
        return dict(self._attributes)

    @property
    def children(self) -> list[SettingNode]:
        """Snapshot of the children, without <clear /> markers."""
        return [child for child in self._children if not isinstance(child, ClearElement)]

    def get_attribute(self, name: str, default: str | None = None) -> str | None:
        return self._attributes.get(name, default)

    def get_child_element(self, key: str, value: str) -> "SettingElement | None":
        """First child element whose attribute `key` equals `value` exactly."""
        for child in self._children:
            if isinstance(child, SettingElement) and child._attributes.get(key) == value:
                return child
        return None

    def is_empty(self) -> bool:
        return not self._children and not self._attributes

    def as_xml_node(self) -> ET.Element:
        if self._node is None:
            element = ET.Element(self.name, dict(self._attributes))
            for child in self._children:
                child_node = child.as_xml_node()
                if isinstance(child_node, str):
                    element.text = child_node
                else:
                    element.append(child_node)
            self._node = element
        return self._node

    def _attach(self, parent: "SettingElement | ConfigurationRoot", origin: "SettingsFile | None" = None) -> None:
        super()._attach(parent, origin)
        for child in self._children:
            if child.origin is None:
                child._attach(self)

    def try_update_attribute(self, name: str, new_value: str) -> bool:
        """Rewrite an existing attribute and save the owning file.

        Returns:
            False if the attribute does not exist or the file is machine-wide

        Raises:
            ConfigFileError: If the file cannot be written; the old value is kept
        """
        if not new_value:
            raise ValueError("new_value cannot be None or empty")

        if self.origin is not None and self.origin.is_machine_wide:
            return False

        if name not in self._attributes:
            return False

        spelling = self._attributes.spelling(name)
        previous = self._attributes[name]
        self._attributes[name] = new_value
        if isinstance(self._node, ET.Element):
            node = self._node

            def rollback() -> None:
                self._attributes[name] = previous
                node.set(spelling, previous)

            node.set(spelling, new_value)
            if self.origin is not None:
                self.origin.save(rollback)

        return True

    def try_remove_child(self, child: SettingNode) -> bool:
        """Remove a child and save its file.

        A section left without children or attributes is removed from its
        own parent as well.

        Returns:
            False if the child is not present or the file is machine-wide

        Raises:
            ConfigFileError: If the file cannot be written; the child is put
                back first. When the cascade to the parent fails, only that
                last step is undone.
        """
        if child is None:
            raise ValueError("child cannot be None")

        if self.origin is not None and self.origin.is_machine_wide:
            return False

        index = self._index_of(child)
        if index is None:
            return False

        removed = self._children.pop(index)
        if removed.origin is not None:
            container = removed._markup_container(self)
            layout = snapshot_layout(container) if container is not None else None

            def rollback() -> None:
                self._children.insert(index, removed)
                if container is not None:
                    restore_layout(container, layout)

            removed._detach_markup(self)
            removed.origin.save(rollback)
            logger.debug(f"Removed {removed!r} from '{self.name}' in {removed.origin.config_file_path}")

        parent = self.parent
        if self.is_empty() and parent is not None:
            return parent.try_remove_child(self)

        return True

    def try_add_child(self, child: SettingNode) -> bool:
        """Add a child that is not already present and save the file.

        Returns:
            False if an equal child exists or the file is machine-wide

        Raises:
            ConfigFileError: If the file cannot be written; the child is
                dropped again and left detached
        """
        if child is None:
            raise ValueError("child cannot be None")

        if self.origin is not None and self.origin.is_machine_wide:
            return False

        if self._index_of(child) is not None:
            return False

        if self.origin is not None:
            container = self.as_xml_node()
            layout = snapshot_layout(container)
            attachment = _capture_attachment(child)

            def rollback() -> None:
                self._children[:] = [existing for existing in self._children if existing is not child]
                restore_layout(container, layout)
                _restore_attachment(attachment)

            self._children.append(child)
            child._attach(self)
            child._insert_markup(self)
            self.origin.save(rollback)
            logger.debug(f"Added {child!r} to '{self.name}' in {self.origin.config_file_path}")
            return True

        self._children.append(child)
        child._set_parent(self)
        if isinstance(self._node, ET.Element):
            child_node = child.as_xml_node()
            if isinstance(child_node, str):
                self._node.text = child_node
            else:
                self._node.append(child_node)

        return True

    def _index_of(self, child: SettingNode) -> int | None:
        for index, existing in enumerate(self._children):
            if existing is child:
                return index
        for index, existing in enumerate(self._children):
            if existing == child:
                return index
        return None


class SettingSection(SettingElement):
    """Named grouping of settings, equal to any section with the same name."""

    def __init__(self, name: str, children: Iterable[SettingNode] | None = None):
        if not name:
            raise ValueError("name cannot be None or empty")
        super().__init__()
        self._name = encode_local_name(name)
        self.can_be_cleared = self._name in CLEARABLE_SECTIONS
        for child in children or ():
            if self._index_of(child) is None:
                self._children.append(child)
                child._set_parent(self)

    def _load(self, element: ET.Element) -> None:
        self._name = local_name(element.tag)
        self.can_be_cleared = self._name in CLEARABLE_SECTIONS

    @property
    def name(self) -> str:
        return self._name

    @property
    def is_cleared(self) -> bool:
        """Whether a <clear /> marker stops inheritance for this section."""
        return self.can_be_cleared and any(isinstance(child, ClearElement) for child in self._children)

    def merge(self, other: "SettingSection") -> "SettingSection":
        """Fold another section with the same name into this one."""
        from .merge import merge_descendants

        if self != other:
            raise ValueError("Cannot merge two different sections")

        merge_descendants(self.can_be_cleared, self._children, other._children, fold_sections=True)
        for child in self._children:
            if child.parent is other:
                child._set_parent(self)

        return self

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SettingSection):
            return NotImplemented
        return self._name == other._name

    def __hash__(self) -> int:
        return hash(self._name)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self._name!r}, children={len(self._children)})"


class AddElement(SettingElement):
    """A key/value entry: <add key="..." value="..." />.

    Extra attributes are kept and take part in equality.
    """

    def __init__(self, key: str, value: str, attributes: Mapping[str, str] | None = None):
        if not key:
            raise ValueError("key cannot be None or empty")
        if value is None:
            raise ValueError("value cannot be None")
        super().__init__()
        self._attributes[KEY_ATTRIBUTE] = key
        self._attributes[VALUE_ATTRIBUTE] = value
        for name, extra in (attributes or {}).items():
            if name not in self._attributes:
                self._attributes[name] = extra

    def _load(self, element: ET.Element) -> None:
        # required attribute names are matched exactly
        missing = [name for name in (KEY_ATTRIBUTE, VALUE_ATTRIBUTE) if name not in element.attrib]
        if missing:
            raise ConfigValidationError(f"<{ADD}> element is missing required attribute(s): {', '.join(missing)}")

    @property
    def name(self) -> str:
        return ADD

    @property
    def key(self) -> str:
        return self._attributes[KEY_ATTRIBUTE]

    @property
    def value(self) -> str:
        return apply_environment_transform(self._attributes[VALUE_ATTRIBUTE])

    @property
    def additional_attributes(self) -> dict[str, str]:
        return {
            name: value
            for name, value in self._attributes.items()
            if name.lower() not in (KEY_ATTRIBUTE, VALUE_ATTRIBUTE)
        }

    def try_update(self, new_value: str) -> bool:
        """Rewrite the value attribute and save the owning file."""
        return self.try_update_attribute(VALUE_ATTRIBUTE, new_value)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, AddElement):
            return NotImplemented
        return self is other or self._attributes == other._attributes

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.key!r}, {self._attributes[VALUE_ATTRIBUTE]!r})"


class SourceElement(AddElement):
    """Entry of packageSources; its value resolves against the file's directory."""

    def __init__(self, key: str, value: str, protocol_version: str | None = None):
        super().__init__(key, value)
        if protocol_version:
            self._attributes[PROTOCOL_VERSION_ATTRIBUTE] = protocol_version

    @property
    def value(self) -> str:
        expanded = apply_environment_transform(self._attributes[VALUE_ATTRIBUTE])
        if self.origin is None:
            return expanded
        return resolve_relative_path(self.origin, expanded)

    @property
    def protocol_version(self) -> str | None:
        return apply_environment_transform(self._attributes.get(PROTOCOL_VERSION_ATTRIBUTE))

    @protocol_version.setter
    def protocol_version(self, value: str) -> None:
        self._attributes[PROTOCOL_VERSION_ATTRIBUTE] = value


class ClearElement(SettingElement):
    """<clear /> marker: stops inheritance of a clearable section."""

    @property
    def name(self) -> str:
        return CLEAR

    def __eq__(self, other: object) -> bool:
        return self is other

    def __hash__(self) -> int:
        return id(self)

    def __repr__(self) -> str:
        return "ClearElement()"


class ConfigurationRoot:
    """Top-level <configuration> container of one file, or of the merged view."""

    name = CONFIGURATION

    def __init__(self, sections: Iterable[SettingSection] = (), origin=None, node: ET.Element | None = None):
        self.origin = origin
        self._node = node
        self.sections: dict[str, SettingSection] = {}
        for section in sections:
            self._fold_section(section)

    @property
    def parent(self):
        return None

    def _depth(self) -> int:
        return 0

    def _fold_section(self, section: SettingSection) -> None:
        existing = self.sections.get(section.name)
        if existing is None:
            self.sections[section.name] = section
        else:
            existing.merge(section)

    def as_xml_node(self) -> ET.Element:
        if self._node is None:
            element = ET.Element(self.name)
            for section in self.sections.values():
                element.append(section.as_xml_node())
            self._node = element
        return self._node

    def is_empty(self) -> bool:
        return all(section.is_empty() for section in self.sections.values())

    def try_remove_child(self, child: SettingNode) -> bool:
        if child is None:
            raise ValueError("child cannot be None")

        if self.origin is not None and self.origin.is_machine_wide:
            return False

        if isinstance(child, SettingSection) and child.name in self.sections:
            return self._remove(child.name)

        return False

    def try_remove_section(self, section_name: str) -> bool:
        if section_name is None:
            raise ValueError("section_name cannot be None")

        if self.origin is not None and self.origin.is_machine_wide:
            return False

        if section_name in self.sections:
            return self._remove(section_name)

        return False

    def _remove(self, section_name: str) -> bool:
        before = list(self.sections.items())
        section = self.sections.pop(section_name)
        if section.origin is not None:
            container = section._markup_container(self)
            layout = snapshot_layout(container) if container is not None else None

            def rollback() -> None:
                self.sections.clear()
                self.sections.update(before)
                if container is not None:
                    restore_layout(container, layout)

            section._detach_markup(self)
            section.origin.save(rollback)
        return True

    def try_add_child(self, child: SettingNode) -> bool:
        """Add a new top-level section to this file and save it.

        Raises:
            RuntimeError: If this root does not belong to a file
            ConfigFileError: If the file cannot be written; the section is
                dropped again so a later attempt can retry
        """
        if child is None:
            raise ValueError("child cannot be None")

        if self.origin is None:
            raise RuntimeError("Sections can only be added to a configuration read from a file")

        if self.origin.is_machine_wide:
            return False

        if not isinstance(child, SettingSection) or child.name in self.sections:
            return False

        container = self.as_xml_node()
        layout = snapshot_layout(container)
        attachment = _capture_attachment(child)

        def rollback() -> None:
            del self.sections[child.name]
            restore_layout(container, layout)
            _restore_attachment(attachment)

        self.sections[child.name] = child
        child._attach(self)
        child._insert_markup(self)
        self.origin.save(rollback)
        logger.info(f"Created section '{child.name}' in {self.origin.config_file_path}")
        return True
