"""
Chart duplication.

Copying chart N into a package extracted at ``package_root`` creates:

- ``word/charts/chart{M}.xml`` and its ``.rels`` (M is one above the highest
  chart index in use),
- a private copy of the embedded workbook, so the two charts never share one,
- a ``chart`` relationship from ``word/document.xml`` to the new part,
- an inline drawing paragraph right after the paragraph holding chart N,
- a content-type override for the new part.

Everything is located and validated before the first file is written, so a
source chart that cannot be copied leaves the package untouched.
"""

import logging
import shutil
from pathlib import Path
from typing import Dict, Optional, Tuple
from xml.etree import ElementTree as ET

from docxcharts.charts.chart_parser import external_data_rel_id
from docxcharts.charts.xml_tree import (
    TagNaming,
    XmlDocument,
    insert_after,
    local_name,
    namespace_prefix,
    naming_for,
    parse_xml,
    serialize_xml,
)
from docxcharts.config import DEFAULT_DRAWING, ChartDrawingDefaults
from docxcharts.exceptions import (
    ChartCopyError,
    DocxChartsError,
    RelationshipError,
)
from docxcharts.package.allocator import IdAllocator, free_numbered_path
from docxcharts.package.constants import (
    CHART_CONTENT_TYPE,
    CHARTS_DIR,
    CONTENT_TYPES_PATH,
    DOCUMENT_PATH,
    DOCUMENT_RELS_PATH,
    NAMESPACES,
    REL_TYPE_CHART,
    XLSX_CONTENT_TYPE,
)
from docxcharts.package.relationships import (
    RelationshipsPart,
    add_content_type_override,
    ensure_default_content_type,
    relative_target,
    rels_path_for,
    resolve_target,
)
from docxcharts.workbook.workbook_sync import resolve_workbook

logger = logging.getLogger(__name__)

WP14_NAMESPACE = "http://schemas.microsoft.com/office/word/2010/wordprocessingDrawing"

_DRAWING_TEMPLATE = (
    "<{p}><{run}><{drawing}>"
    '<wp:inline distT="0" distB="0" distL="0" distR="0"{inline_attrs}>'
    '<wp:extent cx="{cx}" cy="{cy}"/>'
    '<wp:effectExtent l="0" t="0" r="15875" b="12700"/>'
    '<wp:docPr id="{doc_pr_id}" name="Chart {chart_index}"/>'
    "<wp:cNvGraphicFramePr/>"
    '<a:graphic xmlns:a="{a_ns}">'
    '<a:graphicData uri="{c_ns}">'
    '<c:chart xmlns:c="{c_ns}" xmlns:r="{r_ns}" r:id="{rel_id}"/>'
    "</a:graphicData></a:graphic></wp:inline>"
    "</{drawing}></{run}></{p}>"
)


def chart_part_name(chart_index: int) -> str:
    return f"{CHARTS_DIR}/chart{chart_index}.xml"


def document_chart_rel_id(document_rels: RelationshipsPart, chart_index: int) -> str:
    """ID of the document relationship that targets ``chart{chart_index}.xml``."""
    wanted = chart_part_name(chart_index)
    for relationship in document_rels.relationships:
        if relationship.type != REL_TYPE_CHART or relationship.is_external:
            continue
        if resolve_target(DOCUMENT_PATH, relationship.target) == wanted:
            return relationship.id
    raise RelationshipError(
        f"relationship for chart{chart_index}.xml not found",
        rels_path=DOCUMENT_RELS_PATH,
    )


def parent_map(root: ET.Element) -> Dict[int, ET.Element]:
    return {id(child): parent for parent in root.iter() for child in parent}


def find_chart_reference(root: ET.Element, rel_id: str) -> Optional[ET.Element]:
    """The element (normally ``c:chart``) carrying ``r:id="{rel_id}"``."""
    for element in root.iter():
        for key, value in element.attrib.items():
            if value == rel_id and key.endswith(":id") and not key.startswith("xmlns"):
                return element
    return None


def _ancestor(
    parents: Dict[int, ET.Element], element: ET.Element, tag: str
) -> Optional[ET.Element]:
    node = parents.get(id(element))
    while node is not None:
        if node.tag == tag:
            return node
        node = parents.get(id(node))
    return None


def _source_extent(
    parents: Dict[int, ET.Element], reference: ET.Element, drawing: ChartDrawingDefaults
) -> Tuple[str, str]:
    node = parents.get(id(reference))
    while node is not None and local_name(node.tag) not in ("inline", "anchor"):
        node = parents.get(id(node))
    if node is not None:
        for child in node:
            if local_name(child.tag) == "extent" and child.get("cx") and child.get("cy"):
                return child.get("cx"), child.get("cy")
    return str(drawing.extent_cx), str(drawing.extent_cy)


def build_drawing_paragraph(
    document_root: ET.Element,
    naming: TagNaming,
    *,
    chart_index: int,
    rel_id: str,
    doc_pr_id: int,
    extent: Tuple[str, str],
    drawing: ChartDrawingDefaults = DEFAULT_DRAWING,
) -> ET.Element:
    """
    A ``w:p`` holding an inline drawing of chart ``rel_id``.

    Namespaces the document root does not declare are declared on the
    ``wp:inline`` element; the ``wp14`` IDs are only written when the
    document declares that namespace.
    """
    inline_attrs = ""
    if namespace_prefix(document_root, NAMESPACES["wp"]) != "wp":
        inline_attrs += f' xmlns:wp="{NAMESPACES["wp"]}"'
    if namespace_prefix(document_root, WP14_NAMESPACE) == "wp14":
        anchor_id = (drawing.anchor_id_base + chart_index * drawing.id_increment) & 0xFFFFFFFF
        edit_id = (drawing.edit_id_base + chart_index * drawing.id_increment) & 0xFFFFFFFF
        inline_attrs += f' wp14:anchorId="{anchor_id:08X}" wp14:editId="{edit_id:08X}"'

    markup = _DRAWING_TEMPLATE.format(
        p=naming.tag("p"),
        run=naming.tag("r"),
        drawing=naming.tag("drawing"),
        inline_attrs=inline_attrs,
        cx=extent[0],
        cy=extent[1],
        doc_pr_id=doc_pr_id,
        chart_index=chart_index,
        a_ns=NAMESPACES["a"],
        c_ns=NAMESPACES["c"],
        r_ns=NAMESPACES["r"],
        rel_id=rel_id,
    )
    return parse_xml(markup, part="drawing").root


def load_document(package_root: Path) -> Tuple[str, XmlDocument]:
    raw = (package_root / DOCUMENT_PATH).read_bytes()
    return raw.decode("utf-8"), parse_xml(raw, part=DOCUMENT_PATH)


def copy_chart(
    package_root: Path,
    source_index: int,
    *,
    allocator: Optional[IdAllocator] = None,
    drawing: ChartDrawingDefaults = DEFAULT_DRAWING,
) -> int:
    """
    Duplicate chart ``source_index`` and place it right after the source.

    Returns the index of the new chart.

    Raises:
        ChartCopyError: any step fails; the cause is chained.
    """
    allocator = allocator or IdAllocator()
    source_part = chart_part_name(source_index)
    source_chart = package_root / source_part
    if not source_chart.is_file():
        raise ChartCopyError(source_index, f"chart{source_index}.xml not found")

    try:
        source_workbook = resolve_workbook(package_root, source_index)
        workbook_rel_id = external_data_rel_id(source_chart.read_bytes())

        document_rels = RelationshipsPart.load(package_root / DOCUMENT_RELS_PATH)
        source_rel_id = document_chart_rel_id(document_rels, source_index)

        document_text, document = load_document(package_root)
        root = document.root
        naming = naming_for(root)
        reference = find_chart_reference(root, source_rel_id)
        if reference is None:
            raise ChartCopyError(
                source_index,
                f"could not find drawing for source chart {source_index} ({source_rel_id})",
            )
        parents = parent_map(root)
        paragraph = _ancestor(parents, reference, naming.tag("p"))
        if paragraph is None:
            raise ChartCopyError(
                source_index, "could not find the paragraph enclosing the source chart"
            )
        paragraph_parent = parents[id(paragraph)]
        extent = _source_extent(parents, reference, drawing)
    except ChartCopyError:
        raise
    except (DocxChartsError, OSError) as exc:
        raise ChartCopyError(source_index, str(exc), cause=exc) from exc

    new_index = allocator.chart_index(package_root / CHARTS_DIR)
    new_part = chart_part_name(new_index)
    logger.debug(f"Copying chart{source_index} to chart{new_index}")

    try:
        shutil.copyfile(source_chart, package_root / new_part)
        new_rels_path = package_root / rels_path_for(new_part)
        new_rels_path.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(package_root / rels_path_for(source_part), new_rels_path)

        new_workbook = free_numbered_path(
            source_workbook.parent, source_workbook.name, new_index
        )
        shutil.copyfile(source_workbook, new_workbook)
        workbook_part = new_workbook.relative_to(package_root).as_posix()

        chart_rels = RelationshipsPart.load(new_rels_path)
        chart_rels.set_target(workbook_rel_id, relative_target(new_part, workbook_part))
        chart_rels.save()

        new_rel_id = allocator.relationship_id(DOCUMENT_RELS_PATH, document_rels.ids)
        document_rels.add(
            new_rel_id, REL_TYPE_CHART, relative_target(DOCUMENT_PATH, new_part)
        )
        document_rels.save()

        new_paragraph = build_drawing_paragraph(
            root,
            naming,
            chart_index=new_index,
            rel_id=new_rel_id,
            doc_pr_id=allocator.drawing_id(document_text),
            extent=extent,
            drawing=drawing,
        )
        insert_after(paragraph_parent, paragraph, new_paragraph)
        (package_root / DOCUMENT_PATH).write_bytes(serialize_xml(document))

        content_types = package_root / CONTENT_TYPES_PATH
        add_content_type_override(content_types, "/" + new_part, CHART_CONTENT_TYPE)
        if new_workbook.suffix.lower() == ".xlsx":
            ensure_default_content_type(content_types, "xlsx", XLSX_CONTENT_TYPE)
    except (DocxChartsError, OSError) as exc:
        raise ChartCopyError(source_index, str(exc), cause=exc) from exc

    logger.info(
        f"Copied chart{source_index} to chart{new_index} "
        f"(workbook {new_workbook.name}, relationship {new_rel_id})"
    )
    return new_index
