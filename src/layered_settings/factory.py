"""Builds setting nodes from parsed markup."""

import logging
from xml.etree import ElementTree as ET

from .merge import merge_descendants
from .models import ADD
from .models import CLEAR
from .models import PACKAGE_SOURCES
from .nodes import AddElement
from .nodes import ClearElement
from .nodes import ConfigurationRoot
from .nodes import SettingElement
from .nodes import SettingNode
from .nodes import SettingSection
from .nodes import SettingTextContent
from .nodes import SourceElement
from .xml_utils import local_name

logger = logging.getLogger(__name__)


def parse(node: ET.Element | str, parent, origin) -> SettingNode | None:
    """Convert one markup node into the setting node its context calls for.

    Returns:
        The new node, or None for comments, processing instructions and
        whitespace-only text

    Raises:
        ConfigValidationError: If an <add> element lacks key or value
    """
    if node is None:
        raise ValueError("node cannot be None")
    if parent is None:
        raise ValueError("parent cannot be None")

    if isinstance(node, str):
        if not node.strip():
            return None
        return SettingTextContent._from_xml(node, parent, origin)

    name = local_name(node.tag)
    if name is None:
        return None

    if name == ADD:
        node_type = SourceElement if parent.name == PACKAGE_SOURCES else AddElement
    elif name == CLEAR:
        node_type = ClearElement
    else:
        node_type = SettingSection

    element = node_type._from_xml(node, parent, origin)
    element._children = parse_children(element, node, origin)
    return element


def parse_children(element: SettingElement, node: ET.Element, origin) -> list[SettingNode]:
    """Parse and fold the direct children of an element read from a file."""
    parsed = []
    if node.text:
        parsed.append(parse(node.text, element, origin))
    for child in node:
        parsed.append(parse(child, element, origin))

    children: list[SettingNode] = []
    merge_descendants(element.can_be_cleared, children, parsed, fold_sections=True)
    return children


def parse_configuration(node: ET.Element, origin) -> ConfigurationRoot:
    """Build the root of one file, merging duplicate top-level sections."""
    root = ConfigurationRoot(origin=origin, node=node)
    for child in node:
        parsed = parse(child, root, origin)
        if isinstance(parsed, SettingSection):
            root._fold_section(parsed)
        elif parsed is not None:
            logger.debug(f"Ignoring top-level {parsed!r} in {origin.config_file_path}")
    return root
