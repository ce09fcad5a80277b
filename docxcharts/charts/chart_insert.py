"""
Chart Insertion
===============

Adds a brand-new chart to a package extracted at ``package_root``.

What gets created
-----------------
::

    word/charts/chart{N}.xml                       the chart part
    word/charts/_rels/chart{N}.xml.rels            rId1 -> the workbook
    word/embeddings/Microsoft_Excel_Worksheet{N}.xlsx
    word/_rels/document.xml.rels                   + a chart relationship
    word/document.xml                              + an inline drawing paragraph
    [Content_Types].xml                            + chart override, xlsx default

The chart part is generated with the same series builder ``update_chart``
uses, against a plot area laid out the way Word writes a fresh chart: the
chart-type element, then its axes (none for pie charts; two value axes for
scatter charts). The embedded workbook is written with openpyxl in the grid
layout the synchronizer expects, so the new chart can be updated, copied and
read back like any other.

The drawing goes right after the first paragraph whose text contains
``ChartOptions.after_text``, or at the end of the body (before the final
``sectPr``) when no anchor is given.

As with copying, everything that can fail on the input is checked before the
first file is written.
"""

import io
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple
from xml.etree import ElementTree as ET

from openpyxl import Workbook
from openpyxl.utils.exceptions import IllegalCharacterError

from docxcharts.charts.chart_copy import (
    build_drawing_paragraph,
    chart_part_name,
    load_document,
    parent_map,
)
from docxcharts.charts.chart_mutation import replace_series
from docxcharts.charts.data_types import ChartData, ChartKind
from docxcharts.charts.xml_tree import (
    PrefixedNaming,
    TagNaming,
    XmlDocument,
    element_text,
    find_child,
    insert_after,
    make_element,
    naming_for,
    serialize_xml,
    sub_element,
)
from docxcharts.config import DEFAULT_DRAWING, ChartDrawingDefaults
from docxcharts.exceptions import (
    ChartDataValidationError,
    ChartInsertError,
    ChartParseError,
    DocxChartsError,
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
    REL_TYPE_PACKAGE,
    XLSX_CONTENT_TYPE,
    XML_DECLARATION,
)
from docxcharts.package.relationships import (
    RelationshipsPart,
    add_content_type_override,
    ensure_default_content_type,
    relative_target,
    rels_path_for,
)

logger = logging.getLogger(__name__)

EMBEDDINGS_DIR = "word/embeddings"
WORKBOOK_NAME = "Microsoft_Excel_Worksheet.xlsx"
LEGEND_POSITIONS = ("r", "l", "t", "b", "tr")

_CHART = PrefixedNaming("c")
_CATEGORY_AXIS_ID = "2071991400"
_VALUE_AXIS_ID = "2071991240"


@dataclass
class ChartOptions:
    """
    How a new chart is drawn and where it goes.

    ``kind`` falls back to ``ChartData.kind`` and then to a column chart.
    ``width`` and ``height`` are in EMU and default to the
    ``ChartDrawingDefaults`` extent.
    """

    kind: Optional[ChartKind] = None
    show_legend: bool = True
    legend_position: str = "r"
    width: Optional[int] = None
    height: Optional[int] = None
    # insert after the first paragraph containing this text
    after_text: Optional[str] = None

    def validate(self) -> None:
        if self.legend_position not in LEGEND_POSITIONS:
            raise ValueError(
                f"legend position must be one of {', '.join(LEGEND_POSITIONS)}, "
                f"got {self.legend_position!r}"
            )
        for name in ("width", "height"):
            value = getattr(self, name)
            if value is not None and (isinstance(value, bool) or int(value) <= 0):
                raise ValueError(f"{name} must be a positive number of EMU")
        if self.after_text is not None and not self.after_text.strip():
            raise ValueError("anchor text cannot be empty")

    def extent(self, drawing: ChartDrawingDefaults) -> Tuple[str, str]:
        cx = self.width if self.width is not None else drawing.extent_cx
        cy = self.height if self.height is not None else drawing.extent_cy
        return str(int(cx)), str(int(cy))


def _a(parent: ET.Element, local: str, attrib: Optional[dict] = None) -> ET.Element:
    return ET.SubElement(parent, f"a:{local}", attrib or {})


def _rich_title(parent: ET.Element, naming: TagNaming, text: str) -> None:
    title = sub_element(parent, naming, "title")
    rich = sub_element(sub_element(title, naming, "tx"), naming, "rich")
    _a(rich, "bodyPr")
    _a(rich, "lstStyle")
    paragraph = _a(rich, "p")
    _a(_a(paragraph, "pPr"), "defRPr")
    run = _a(paragraph, "r")
    _a(run, "rPr", {"lang": "en-US"})
    _a(run, "t").text = text
    sub_element(title, naming, "layout")
    sub_element(title, naming, "overlay", {"val": "0"})


def _chart_type_element(naming: TagNaming, kind: ChartKind) -> ET.Element:
    """The chart-type element in schema order, with room for the series."""
    chart_type = make_element(naming, kind.element_name)
    if kind is ChartKind.BAR:
        sub_element(chart_type, naming, "barDir", {"val": "col"})
        sub_element(chart_type, naming, "grouping", {"val": "clustered"})
    elif kind is ChartKind.SCATTER:
        sub_element(chart_type, naming, "scatterStyle", {"val": "lineMarker"})
    elif kind is not ChartKind.PIE:
        sub_element(chart_type, naming, "grouping", {"val": "standard"})
    sub_element(
        chart_type, naming, "varyColors", {"val": "1" if kind is ChartKind.PIE else "0"}
    )

    if kind is ChartKind.BAR:
        sub_element(chart_type, naming, "gapWidth", {"val": "150"})
    elif kind is ChartKind.LINE:
        sub_element(chart_type, naming, "marker", {"val": "1"})
    elif kind is ChartKind.PIE:
        sub_element(chart_type, naming, "firstSliceAng", {"val": "0"})
        return chart_type
    sub_element(chart_type, naming, "axId", {"val": _CATEGORY_AXIS_ID})
    sub_element(chart_type, naming, "axId", {"val": _VALUE_AXIS_ID})
    return chart_type


def _axis(
    plot_area: ET.Element,
    naming: TagNaming,
    tag: str,
    *,
    ax_id: str,
    cross_id: str,
    position: str,
    title: str,
    scatter: bool,
) -> None:
    axis = sub_element(plot_area, naming, tag)
    sub_element(axis, naming, "axId", {"val": ax_id})
    sub_element(sub_element(axis, naming, "scaling"), naming, "orientation", {"val": "minMax"})
    sub_element(axis, naming, "delete", {"val": "0"})
    sub_element(axis, naming, "axPos", {"val": position})
    if title:
        _rich_title(axis, naming, title)
    sub_element(axis, naming, "numFmt", {"formatCode": "General", "sourceLinked": "1"})
    sub_element(axis, naming, "majorTickMark", {"val": "out"})
    sub_element(axis, naming, "minorTickMark", {"val": "none"})
    sub_element(axis, naming, "tickLblPos", {"val": "nextTo"})
    sub_element(axis, naming, "crossAx", {"val": cross_id})
    sub_element(axis, naming, "crosses", {"val": "autoZero"})
    if tag == "catAx":
        sub_element(axis, naming, "auto", {"val": "1"})
        sub_element(axis, naming, "lblAlgn", {"val": "ctr"})
        sub_element(axis, naming, "lblOffset", {"val": "100"})
    else:
        sub_element(axis, naming, "crossBetween", {"val": "midCat" if scatter else "between"})


def build_chart_xml(
    data: ChartData,
    kind: ChartKind,
    options: ChartOptions,
    *,
    sheet_name: str = DEFAULT_DRAWING.sheet_name,
) -> bytes:
    """A complete chart part for ``data``, linked to its workbook as ``rId1``."""
    naming = _CHART
    root = make_element(
        naming,
        "chartSpace",
        {
            "xmlns:c": NAMESPACES["c"],
            "xmlns:a": NAMESPACES["a"],
            "xmlns:r": NAMESPACES["r"],
        },
    )
    sub_element(root, naming, "date1904", {"val": "0"})
    sub_element(root, naming, "lang", {"val": "en-US"})
    sub_element(root, naming, "roundedCorners", {"val": "0"})

    chart = sub_element(root, naming, "chart")
    if data.chart_title:
        _rich_title(chart, naming, data.chart_title)
    sub_element(chart, naming, "autoTitleDeleted", {"val": "0"})

    plot_area = sub_element(chart, naming, "plotArea")
    sub_element(plot_area, naming, "layout")
    chart_type = _chart_type_element(naming, kind)
    plot_area.append(chart_type)
    replace_series(
        chart_type, naming, kind, data, sheet_name=sheet_name, drawing_prefix="a"
    )

    scatter = kind is ChartKind.SCATTER
    if kind is not ChartKind.PIE:
        _axis(
            plot_area,
            naming,
            "valAx" if scatter else "catAx",
            ax_id=_CATEGORY_AXIS_ID,
            cross_id=_VALUE_AXIS_ID,
            position="b",
            title=data.category_axis_title,
            scatter=scatter,
        )
        _axis(
            plot_area,
            naming,
            "valAx",
            ax_id=_VALUE_AXIS_ID,
            cross_id=_CATEGORY_AXIS_ID,
            position="l",
            title=data.value_axis_title,
            scatter=scatter,
        )

    if options.show_legend:
        legend = sub_element(chart, naming, "legend")
        sub_element(legend, naming, "legendPos", {"val": options.legend_position})
        sub_element(legend, naming, "layout")
        sub_element(legend, naming, "overlay", {"val": "0"})
    sub_element(chart, naming, "plotVisOnly", {"val": "1"})
    sub_element(chart, naming, "dispBlanksAs", {"val": "gap"})

    external = sub_element(root, naming, "externalData", {"r:id": "rId1"})
    sub_element(external, naming, "autoUpdate", {"val": "0"})

    return serialize_xml(XmlDocument(root=root, declaration=XML_DECLARATION))


def _text_cell(sheet, row: int, column: int, value: str) -> None:
    cell = sheet.cell(row=row, column=column, value=value)
    # a leading "=" is label text here, not a formula
    cell.data_type = "s"


def build_workbook_bytes(
    data: ChartData,
    *,
    sheet_name: str = DEFAULT_DRAWING.sheet_name,
    numeric_categories: bool = False,
) -> bytes:
    """
    The embedded workbook of a new chart: series names in row 1 from column
    B, categories in column A from row 2, values in the grid.
    """
    workbook = Workbook()
    sheet = workbook.active
    sheet.title = sheet_name

    for column, name in enumerate(data.series_names, start=2):
        _text_cell(sheet, 1, column, name)
    x_values = data.x_values() if numeric_categories else None
    for offset, category in enumerate(data.categories):
        row = offset + 2
        if x_values is not None:
            sheet.cell(row=row, column=1, value=x_values[offset])
        else:
            _text_cell(sheet, row, 1, category)
        for column, series in enumerate(data.series, start=2):
            sheet.cell(row=row, column=column, value=float(series.values[offset]))

    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


def _paragraph_text(paragraph: ET.Element, naming: TagNaming) -> str:
    return "".join(element_text(node) for node in paragraph.iter(naming.tag("t")))


def _find_insertion_point(
    root: ET.Element, naming: TagNaming, after_text: Optional[str]
) -> Tuple[ET.Element, Optional[ET.Element]]:
    """
    ``(parent, anchor)``: the drawing goes right after ``anchor``, or before
    the body's ``sectPr`` (appended when there is none) if ``anchor`` is None.
    """
    body = find_child(root, naming.tag("body"))
    if body is None:
        raise ChartInsertError("document has no body element")

    if after_text is None:
        return body, None

    for paragraph in body.iter(naming.tag("p")):
        if after_text in _paragraph_text(paragraph, naming):
            return parent_map(body)[id(paragraph)], paragraph
    raise ChartInsertError(f"anchor text {after_text!r} not found in the document")


def _place(
    parent: ET.Element, anchor: Optional[ET.Element], new: ET.Element, naming: TagNaming
) -> None:
    if anchor is not None:
        insert_after(parent, anchor, new)
        return
    children = list(parent)
    if children and children[-1].tag == naming.tag("sectPr"):
        parent.insert(len(children) - 1, new)
    else:
        parent.append(new)


def insert_chart(
    package_root: Path,
    data: ChartData,
    options: Optional[ChartOptions] = None,
    *,
    allocator: Optional[IdAllocator] = None,
    drawing: ChartDrawingDefaults = DEFAULT_DRAWING,
) -> int:
    """
    Create a new chart from ``data`` and draw it in the document.

    Returns the index N of the new ``chartN.xml``.

    Raises:
        ValueError: ``options`` are out of range.
        ChartDataValidationError: ``data`` is structurally invalid, or a
            scatter chart has non-numeric categories.
        ChartInsertError: the document cannot take the chart; any failure
            while writing is chained.
    """
    options = options or ChartOptions()
    allocator = allocator or IdAllocator()
    options.validate()
    data.validate()
    kind = options.kind or data.kind or ChartKind.BAR
    scatter = kind is ChartKind.SCATTER
    if scatter:
        try:
            data.x_values()
        except ChartParseError as exc:
            raise ChartDataValidationError(str(exc), cause=exc) from exc

    try:
        chart_xml = build_chart_xml(data, kind, options, sheet_name=drawing.sheet_name)
        workbook = build_workbook_bytes(
            data, sheet_name=drawing.sheet_name, numeric_categories=scatter
        )
        document_rels = RelationshipsPart.load(package_root / DOCUMENT_RELS_PATH)
        document_text, document = load_document(package_root)
        root = document.root
        naming = naming_for(root)
        parent, anchor = _find_insertion_point(root, naming, options.after_text)
    except ChartInsertError:
        raise
    except IllegalCharacterError as exc:
        raise ChartInsertError(
            f"chart text cannot be stored in a workbook: {exc}", cause=exc
        ) from exc
    except (DocxChartsError, OSError) as exc:
        raise ChartInsertError(str(exc), cause=exc) from exc

    new_index = allocator.chart_index(package_root / CHARTS_DIR)
    new_part = chart_part_name(new_index)
    logger.debug(f"Inserting {kind.value} chart as chart{new_index}")

    try:
        chart_rels = RelationshipsPart.create(package_root / rels_path_for(new_part))

        embeddings = package_root / EMBEDDINGS_DIR
        embeddings.mkdir(parents=True, exist_ok=True)
        workbook_path = free_numbered_path(embeddings, WORKBOOK_NAME, new_index)
        workbook_path.write_bytes(workbook)
        workbook_part = workbook_path.relative_to(package_root).as_posix()

        chart_path = package_root / new_part
        chart_path.parent.mkdir(parents=True, exist_ok=True)
        chart_path.write_bytes(chart_xml)
        chart_rels.add("rId1", REL_TYPE_PACKAGE, relative_target(new_part, workbook_part))
        chart_rels.save()

        rel_id = allocator.relationship_id(DOCUMENT_RELS_PATH, document_rels.ids)
        document_rels.add(rel_id, REL_TYPE_CHART, relative_target(DOCUMENT_PATH, new_part))
        document_rels.save()

        paragraph = build_drawing_paragraph(
            root,
            naming,
            chart_index=new_index,
            rel_id=rel_id,
            doc_pr_id=allocator.drawing_id(document_text),
            extent=options.extent(drawing),
            drawing=drawing,
        )
        _place(parent, anchor, paragraph, naming)
        (package_root / DOCUMENT_PATH).write_bytes(serialize_xml(document))

        content_types = package_root / CONTENT_TYPES_PATH
        add_content_type_override(content_types, "/" + new_part, CHART_CONTENT_TYPE)
        ensure_default_content_type(content_types, "xlsx", XLSX_CONTENT_TYPE)
    except (DocxChartsError, OSError) as exc:
        raise ChartInsertError(str(exc), cause=exc, chart_index=new_index) from exc

    logger.info(
        f"Inserted {kind.value} chart{new_index}: {len(data.series)} series, "
        f"{len(data.categories)} categories (relationship {rel_id})"
    )
    return new_index
