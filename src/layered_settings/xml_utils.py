"""ElementTree helpers that keep the layout of hand-edited settings files."""

import re
from xml.etree import ElementTree as ET

DEFAULT_INDENT = "  "

_ESCAPED_CHAR = re.compile(r"_x[0-9A-Fa-f]{4}_")
_BOM = b"\xef\xbb\xbf"


def local_name(tag) -> str | None:
    """Element name without its namespace, or None for comments and PIs."""
    if not isinstance(tag, str):
        return None
    return tag.rsplit("}", 1)[-1]


def encode_local_name(name: str) -> str:
    """Encode a name so it is a valid XML local name.

    Characters that cannot appear in an NCName are written as _xHHHH_, and an
    underscore that would otherwise read as such an escape is escaped itself.

    Examples:
        >>> encode_local_name("packageSources")
        'packageSources'
        >>> encode_local_name("my feed")
        'my_x0020_feed'
        >>> encode_local_name("1st")
        '_x0031_st'
    """
    encoded = []
    for index, char in enumerate(name):
        if char == "_" and _ESCAPED_CHAR.match(name, index):
            encoded.append("_x005F_")
        elif char.isalpha() or char == "_" or (index > 0 and (char.isdigit() or char in ".-")):
            encoded.append(char)
        else:
            encoded.append(f"_x{ord(char):04X}_")
    return "".join(encoded)


def parse_document(data: bytes) -> ET.Element:
    """Parse markup keeping comments and processing instructions.

    Raises:
        xml.etree.ElementTree.ParseError: If the markup is not well-formed
    """
    builder = ET.TreeBuilder(insert_comments=True, insert_pis=True)
    return ET.fromstring(data, parser=ET.XMLParser(target=builder))


def has_declaration(data: bytes) -> bool:
    """Whether raw markup starts with an <?xml ...?> declaration."""
    return data.removeprefix(_BOM).lstrip().startswith(b"<?xml")


def serialize(root: ET.Element, xml_declaration: bool = True) -> bytes:
    """Serialize a document root to UTF-8 bytes."""
    return ET.tostring(root, encoding="utf-8", xml_declaration=xml_declaration) + b"\n"


def indentation_unit(root: ET.Element) -> str:
    """Guess one level of indentation from the document's first line break."""
    text = root.text
    if text and not text.strip() and "\n" in text:
        unit = text.rsplit("\n", 1)[-1]
        if unit:
            return unit
    return DEFAULT_INDENT


def add_indented(parent: ET.Element, child: ET.Element, level: int, unit: str = DEFAULT_INDENT) -> None:
    """Append child to parent, indenting it like its future siblings.

    Args:
        parent: Element receiving the child
        child: Element to append (its own subtree is indented too)
        level: Depth of parent in the document (root element is 0)
        unit: One level of indentation
    """
    child_indent = "\n" + unit * (level + 1)
    closing_indent = "\n" + unit * level

    if len(parent):
        last = parent[-1]
        if not last.tail or not last.tail.strip():
            last.tail = child_indent
    elif not parent.text or not parent.text.strip():
        parent.text = child_indent

    child.tail = closing_indent
    ET.indent(child, space=unit, level=level + 1)
    parent.append(child)


def remove_indented(parent: ET.Element, child: ET.Element) -> bool:
    """Remove child from parent without leaving a blank line behind.

    Returns:
        True if child was found and removed
    """
    siblings = list(parent)
    index = next((i for i, el in enumerate(siblings) if el is child), None)
    if index is None:
        return False

    if index == len(siblings) - 1:
        if index > 0:
            siblings[index - 1].tail = child.tail
        elif parent.text is not None and not parent.text.strip():
            parent.text = None

    parent.remove(child)
    return True


Layout = tuple[str | None, list[tuple[ET.Element, str | None]]]


def snapshot_layout(parent: ET.Element) -> Layout:
    """Capture the children of parent and the whitespace around them."""
    return parent.text, [(child, child.tail) for child in parent]


def restore_layout(parent: ET.Element, layout: Layout) -> None:
    """Put parent back exactly as snapshot_layout saw it."""
    text, children = layout
    parent.text = text
    parent[:] = [child for child, _ in children]
    for child, tail in children:
        child.tail = tail


def find_parent(root: ET.Element, element: ET.Element) -> ET.Element | None:
    """Locate the element that directly contains element."""
    for candidate in root.iter():
        for child in candidate:
            if child is element:
                return candidate
    return None
