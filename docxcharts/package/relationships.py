"""
Relationship and content-type parts.

A ``.rels`` part lists ``(Id, Type, Target)`` triples for the part it serves:
``word/charts/_rels/chart1.xml.rels`` belongs to ``word/charts/chart1.xml``.
Targets are relative to the directory of the *source part*, not to the
``_rels`` folder, so ``../embeddings/Microsoft_Excel_Worksheet1.xlsx`` from a
chart resolves to ``word/embeddings/Microsoft_Excel_Worksheet1.xlsx``.

Both part kinds are edited through the prefix-preserving tree of
``xml_tree`` so unrelated entries and declarations are written back as read.
"""

import logging
import posixpath
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from docxcharts.charts.xml_tree import (
    TagNaming,
    XmlDocument,
    find_children,
    insert_after,
    make_element,
    naming_for,
    parse_xml,
    serialize_xml,
)
from docxcharts.exceptions import PackageError, RelationshipError, XmlSyntaxError
from docxcharts.package.constants import NAMESPACES, XML_DECLARATION

logger = logging.getLogger(__name__)


@dataclass
class Relationship:
    id: str
    type: str
    target: str
    target_mode: str = ""

    @property
    def is_external(self) -> bool:
        return self.target_mode == "External"


def rels_path_for(part_path: str) -> str:
    """``word/charts/chart1.xml`` -> ``word/charts/_rels/chart1.xml.rels``."""
    directory, name = posixpath.split(part_path.lstrip("/"))
    return posixpath.join(directory, "_rels", f"{name}.rels")


def resolve_target(part_path: str, target: str) -> str:
    """
    Package path a relationship target points at.

    Relative targets are joined to the source part's directory; absolute
    targets (leading ``/``) are taken from the package root.
    """
    if target.startswith("/"):
        resolved = posixpath.normpath(target.lstrip("/"))
    else:
        base = posixpath.dirname(part_path.lstrip("/"))
        resolved = posixpath.normpath(posixpath.join(base, target))
    if resolved == ".." or resolved.startswith("../"):
        raise RelationshipError(
            f"Relationship target {target!r} of {part_path} leaves the package"
        )
    return resolved


def relative_target(part_path: str, destination: str) -> str:
    """Inverse of ``resolve_target``: the relative Target for ``destination``."""
    base = posixpath.dirname(part_path.lstrip("/")) or "."
    return posixpath.relpath(destination.lstrip("/"), base)


class RelationshipsPart:
    """An editable ``.rels`` part on disk."""

    def __init__(self, path: Path, document: XmlDocument):
        self.path = path
        self.document = document
        self.naming: TagNaming = naming_for(document.root)

    @classmethod
    def load(cls, path: Path) -> "RelationshipsPart":
        if not path.is_file():
            raise RelationshipError(
                f"Relationships part not found: {path.name}", rels_path=str(path)
            )
        try:
            document = parse_xml(path.read_bytes(), part=path.name)
        except XmlSyntaxError as exc:
            raise RelationshipError(
                f"Failed to parse relationships part {path.name}",
                rels_path=str(path),
                cause=exc,
            ) from exc
        return cls(path, document)

    @classmethod
    def create(cls, path: Path) -> "RelationshipsPart":
        """An empty part for ``path``; nothing is written until ``save``."""
        if path.exists():
            raise RelationshipError(
                f"Relationships part already exists: {path.name}", rels_path=str(path)
            )
        content = f'{XML_DECLARATION}\n<Relationships xmlns="{NAMESPACES["rel"]}"></Relationships>'
        return cls(path, parse_xml(content, part=path.name))

    @classmethod
    def from_bytes(cls, name: str, content: bytes) -> "RelationshipsPart":
        """Wrap a .rels entry read from a nested package (never saved to disk)."""
        try:
            document = parse_xml(content, part=name)
        except XmlSyntaxError as exc:
            raise RelationshipError(
                f"Failed to parse relationships part {name}", rels_path=name, cause=exc
            ) from exc
        return cls(Path(name), document)

    def _elements(self):
        return find_children(self.document.root, self.naming.tag("Relationship"))

    @property
    def relationships(self) -> List[Relationship]:
        return [
            Relationship(
                id=element.get("Id", ""),
                type=element.get("Type", ""),
                target=element.get("Target", ""),
                target_mode=element.get("TargetMode", ""),
            )
            for element in self._elements()
        ]

    @property
    def ids(self) -> List[str]:
        return [element.get("Id", "") for element in self._elements()]

    def get(self, rel_id: str) -> Optional[Relationship]:
        for relationship in self.relationships:
            if relationship.id == rel_id:
                return relationship
        return None

    def require(self, rel_id: str) -> Relationship:
        relationship = self.get(rel_id)
        if relationship is None:
            raise RelationshipError(
                f"relationship {rel_id} not found in {self.path.name}",
                rel_id=rel_id,
                rels_path=str(self.path),
            )
        return relationship

    def find_by_target(
        self, target: str, rel_type: Optional[str] = None
    ) -> Optional[Relationship]:
        for relationship in self.relationships:
            if relationship.target != target:
                continue
            if rel_type is None or relationship.type == rel_type:
                return relationship
        return None

    def add(self, rel_id: str, rel_type: str, target: str) -> Relationship:
        if self.get(rel_id) is not None:
            raise RelationshipError(
                f"relationship {rel_id} already exists in {self.path.name}",
                rel_id=rel_id,
                rels_path=str(self.path),
            )
        element = make_element(
            self.naming,
            "Relationship",
            {"Id": rel_id, "Type": rel_type, "Target": target},
        )
        self.document.root.append(element)
        logger.debug(f"Added relationship {rel_id} -> {target} to {self.path.name}")
        return Relationship(id=rel_id, type=rel_type, target=target)

    def set_target(self, rel_id: str, target: str) -> None:
        for element in self._elements():
            if element.get("Id") == rel_id:
                element.set("Target", target)
                return
        raise RelationshipError(
            f"relationship {rel_id} not found in {self.path.name}",
            rel_id=rel_id,
            rels_path=str(self.path),
        )

    def to_bytes(self) -> bytes:
        return serialize_xml(self.document)

    def save(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_bytes(self.to_bytes())


def _load_content_types(path: Path) -> XmlDocument:
    if not path.is_file():
        raise PackageError(f"missing required file {path.name}")
    try:
        return parse_xml(path.read_bytes(), part=path.name)
    except XmlSyntaxError as exc:
        raise PackageError(f"Failed to parse {path.name}", cause=exc) from exc


def _insert_after_last(document: XmlDocument, naming: TagNaming, local: str, element) -> None:
    root = document.root
    siblings = find_children(root, naming.tag(local))
    if not siblings:
        root.append(element)
        return
    insert_after(root, siblings[-1], element)


def add_content_type_override(path: Path, part_name: str, content_type: str) -> bool:
    """
    Register an ``Override`` for ``part_name`` in ``[Content_Types].xml``.

    Returns ``False`` when the part already has one (compared
    case-insensitively, as OPC part names are).
    """
    part_name = "/" + part_name.lstrip("/")
    document = _load_content_types(path)
    naming = naming_for(document.root)
    for override in find_children(document.root, naming.tag("Override")):
        if override.get("PartName", "").lower() == part_name.lower():
            return False
    element = make_element(
        naming, "Override", {"PartName": part_name, "ContentType": content_type}
    )
    _insert_after_last(document, naming, "Override", element)
    path.write_bytes(serialize_xml(document))
    logger.debug(f"Added content type override for {part_name}")
    return True


def ensure_default_content_type(path: Path, extension: str, content_type: str) -> bool:
    """Add a ``Default`` for ``extension`` unless one exists; returns whether it was added."""
    extension = extension.lstrip(".")
    document = _load_content_types(path)
    naming = naming_for(document.root)
    for default in find_children(document.root, naming.tag("Default")):
        if default.get("Extension", "").lower() == extension.lower():
            return False
    element = make_element(
        naming, "Default", {"Extension": extension, "ContentType": content_type}
    )
    _insert_after_last(document, naming, "Default", element)
    path.write_bytes(serialize_xml(document))
    logger.debug(f"Added default content type for .{extension}")
    return True
