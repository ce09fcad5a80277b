"""
Minimal prefix-preserving XML tree
==================================

OOXML parts are edited as trees of ``xml.etree.ElementTree`` elements whose
tags are the *qualified names exactly as written* (``c:ser``, ``a:t``,
``ser``). Parsing runs expat with namespace processing switched off, so
namespace declarations stay ordinary attributes (``xmlns:c``) and survive a
round trip untouched. This matters for Office documents: ``mc:Ignorable``
lists prefixes by name, and a serializer that renames or drops "unused"
prefixes produces files Word refuses to open.

Chart XML comes in two serializations, with the DrawingML chart namespace
bound to a ``c:`` prefix or declared as the default namespace. A
``TagNaming`` strategy is detected once per part and passed to every lookup,
so the same traversal code serves both.

Comments and processing instructions inside the root element are kept as
``ET.Comment`` / ``ET.ProcessingInstruction`` nodes, so a rewritten
``document.xml`` still carries them. Their ``tag`` is not a string;
``local_name`` reads it as "". Anything before the root other than the XML
declaration is dropped.
"""

import re
from dataclasses import dataclass
from typing import Iterator, Protocol
from xml.etree import ElementTree as ET
from xml.parsers import expat

from docxcharts.exceptions import XmlSyntaxError

_DECLARATION_PATTERN = re.compile(rb"^\s*(<\?xml\s[^?]*\?>)")
_ENCODING_PATTERN = re.compile(r"""encoding=(["'])[^"']*\1""")


@dataclass
class XmlDocument:
    root: ET.Element
    # the original declaration text, without trailing whitespace
    declaration: str | None = None


def parse_xml(content: bytes | str, *, part: str | None = None) -> XmlDocument:
    """Parse a part into a prefix-preserving tree."""
    if isinstance(content, str):
        content = content.encode("utf-8")

    declaration = None
    match = _DECLARATION_PATTERN.match(content)
    if match:
        declaration = match.group(1).decode("ascii", errors="replace")

    builder = ET.TreeBuilder(insert_comments=True, insert_pis=True)
    parser = expat.ParserCreate()
    parser.buffer_text = True
    parser.StartElementHandler = builder.start
    parser.EndElementHandler = builder.end
    parser.CharacterDataHandler = builder.data
    parser.CommentHandler = builder.comment
    parser.ProcessingInstructionHandler = builder.pi
    try:
        parser.Parse(content, True)
    except expat.ExpatError as exc:
        raise XmlSyntaxError(str(exc), part=part, cause=exc) from exc
    return XmlDocument(root=builder.close(), declaration=declaration)


def serialize_xml(document: XmlDocument) -> bytes:
    """
    Serialize a tree back to UTF-8 bytes.

    The original declaration is re-emitted (with its encoding normalised to
    UTF-8) followed by a line break; strict OOXML consumers expect the root
    element on its own line.
    """
    body = ET.tostring(document.root, encoding="unicode")
    if document.declaration is None:
        return body.encode("utf-8")
    declaration = _ENCODING_PATTERN.sub('encoding="UTF-8"', document.declaration)
    return (declaration + "\n" + body).encode("utf-8")


def ensure_xml_declaration_newline(content: bytes) -> bytes:
    """Insert a line break right after the XML declaration if there is none."""
    end = content.find(b"?>")
    if end == -1:
        return content
    end += 2
    if content[end : end + 1] in (b"\n", b"\r"):
        return content
    return content[:end] + b"\n" + content[end:]


def local_name(tag: str) -> str:
    if not isinstance(tag, str):
        return ""
    return tag.rsplit(":", 1)[-1]


def prefix_of(tag: str) -> str:
    return tag.split(":", 1)[0] if ":" in tag else ""


def namespace_prefix(root: ET.Element, uri: str) -> str | None:
    """Prefix the root element binds to ``uri`` ("" for the default namespace)."""
    for key, value in root.attrib.items():
        if value != uri:
            continue
        if key == "xmlns":
            return ""
        if key.startswith("xmlns:"):
            return key[len("xmlns:") :]
    return None


def find_child(element: ET.Element, tag: str) -> ET.Element | None:
    for child in element:
        if child.tag == tag:
            return child
    return None


def find_children(element: ET.Element, tag: str) -> list[ET.Element]:
    return [child for child in element if child.tag == tag]


def find_descendant(element: ET.Element, tag: str) -> ET.Element | None:
    """First descendant (document order, excluding ``element``) with ``tag``."""
    for node in element.iter(tag):
        if node is not element:
            return node
    return None


def iter_local(element: ET.Element, name: str) -> Iterator[ET.Element]:
    """Descendants whose local name is ``name``, whatever their prefix."""
    for node in element.iter():
        if node is not element and local_name(node.tag) == name:
            yield node


def insert_after(parent: ET.Element, anchor: ET.Element, new: ET.Element) -> None:
    """Insert ``new`` as the sibling immediately following ``anchor``."""
    children = list(parent)
    position = next(i for i, child in enumerate(children) if child is anchor)
    parent.insert(position + 1, new)


def element_text(element: ET.Element | None) -> str:
    if element is None or element.text is None:
        return ""
    return element.text


class TagNaming(Protocol):
    """Turns a local element name into the qualified name used by one part."""

    def tag(self, local: str) -> str: ...


@dataclass(frozen=True)
class PrefixedNaming:
    prefix: str

    def tag(self, local: str) -> str:
        return f"{self.prefix}:{local}"


@dataclass(frozen=True)
class UnprefixedNaming:
    def tag(self, local: str) -> str:
        return local


UNPREFIXED = UnprefixedNaming()


def naming_for(element: ET.Element) -> TagNaming:
    """
    Naming strategy matching the prefix of ``element``'s own tag.

    Called on a part's root (``c:chartSpace`` or ``chartSpace``), this selects
    the convention every other element of the part follows.
    """
    prefix = prefix_of(element.tag)
    if prefix:
        return PrefixedNaming(prefix)
    return UNPREFIXED


def make_element(
    naming: TagNaming, local: str, attrib: dict[str, str] | None = None, text: str | None = None
) -> ET.Element:
    element = ET.Element(naming.tag(local), attrib or {})
    if text is not None:
        element.text = text
    return element


def sub_element(
    parent: ET.Element,
    naming: TagNaming,
    local: str,
    attrib: dict[str, str] | None = None,
    text: str | None = None,
) -> ET.Element:
    element = ET.SubElement(parent, naming.tag(local), attrib or {})
    if text is not None:
        element.text = text
    return element
