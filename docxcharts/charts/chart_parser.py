"""
Chart Part Parser
=================

Reads the cached data of a DrawingML chart part (``word/charts/chartN.xml``)
into a ``ChartData``.

File Format Background
----------------------
A chart part looks like this (prefix optional, see below)::

    c:chartSpace
      c:chart
        c:title                      chart title (rich text or formula link)
        c:plotArea
          c:barChart                 one chart-type element per plot
            c:barDir, c:grouping, c:varyColors ...
            c:ser                    one per series
              c:idx, c:order
              c:tx                   series name (c:strRef/c:strCache or c:v)
              c:cat | c:xVal         category labels / scatter X values
              c:val | c:yVal         numeric values
            c:axId ...
          c:catAx | c:valAx          axes, each with an optional c:title
      c:externalData r:id="rId1"     link to the embedded workbook

Cached points (``c:pt``) carry an ``idx`` attribute; a cache may omit points
(blank cells), so points are placed by index rather than by position.

Word writes the chart namespace with a ``c:`` prefix; other producers declare
it as the default namespace. The naming strategy is taken from the root
element and used for every lookup.

Leniency
--------
The read path tolerates incomplete and hand-edited documents: missing titles
read as ``""``, unparsable numbers as ``0.0``, and value caches shorter or
longer than the category cache are padded with zeros or truncated. Only a
missing ``chartSpace`` root, malformed XML, and non-numeric scatter X values
are errors.
"""

import logging
import re
from typing import List, Optional, Tuple
from xml.etree import ElementTree as ET

from docxcharts.charts.data_types import (
    CHART_TYPE_SCAN_ORDER,
    ChartData,
    ChartKind,
    SeriesData,
)
from docxcharts.charts.xml_tree import (
    TagNaming,
    XmlDocument,
    element_text,
    find_child,
    find_children,
    find_descendant,
    iter_local,
    local_name,
    naming_for,
    parse_xml,
)
from docxcharts.config import DEFAULT_DRAWING
from docxcharts.exceptions import ChartParseError, XmlSyntaxError

logger = logging.getLogger(__name__)

_SHEET_REFERENCE_PATTERN = re.compile(r"^(?:'((?:[^']|'')+)'|([^!']+))!")
_CACHE_NAMES = ("strCache", "numCache", "multiLvlStrCache", "strLit", "numLit")


def load_chart(raw_xml: bytes | str) -> Tuple[XmlDocument, TagNaming]:
    """Parse a chart part and select its naming strategy."""
    marker = b"chartSpace" if isinstance(raw_xml, bytes) else "chartSpace"
    if marker not in raw_xml:
        raise ChartParseError(
            "content does not appear to be chart XML (missing chartSpace element)"
        )
    try:
        document = parse_xml(raw_xml)
    except XmlSyntaxError as exc:
        raise ChartParseError(f"chart XML is not well-formed: {exc}", cause=exc) from exc
    if local_name(document.root.tag) != "chartSpace":
        raise ChartParseError(
            f"unexpected chart root element <{document.root.tag}>, expected chartSpace"
        )
    return document, naming_for(document.root)


def find_chart_element(root: ET.Element, naming: TagNaming) -> Optional[ET.Element]:
    return find_child(root, naming.tag("chart"))


def find_plot_area(root: ET.Element, naming: TagNaming) -> Optional[ET.Element]:
    chart = find_chart_element(root, naming)
    if chart is None:
        return None
    return find_child(chart, naming.tag("plotArea"))


def find_chart_type_element(
    root: ET.Element, naming: TagNaming
) -> Tuple[Optional[ChartKind], Optional[ET.Element]]:
    """
    First chart-type element, scanning kinds in a fixed priority order
    (bar, line, scatter, pie, area) rather than document order.
    """
    plot_area = find_plot_area(root, naming)
    scope = plot_area if plot_area is not None else root
    for kind in CHART_TYPE_SCAN_ORDER:
        element = find_descendant(scope, naming.tag(kind.element_name))
        if element is not None:
            return kind, element
    return None, None


def _axis_position(axis: ET.Element, naming: TagNaming) -> str:
    ax_pos = find_child(axis, naming.tag("axPos"))
    return ax_pos.get("val", "") if ax_pos is not None else ""


def find_axes(
    root: ET.Element, naming: TagNaming, kind: Optional[ChartKind]
) -> Tuple[Optional[ET.Element], Optional[ET.Element]]:
    """
    Return ``(category_axis, value_axis)``.

    Scatter charts have two value axes; the horizontal one (``axPos`` b/t)
    plays the category role.
    """
    plot_area = find_plot_area(root, naming)
    if plot_area is None:
        return None, None

    value_axes = find_children(plot_area, naming.tag("valAx"))
    if kind is ChartKind.SCATTER:
        horizontal = [ax for ax in value_axes if _axis_position(ax, naming) in ("b", "t")]
        vertical = [ax for ax in value_axes if _axis_position(ax, naming) in ("l", "r")]
        category_axis = horizontal[0] if horizontal else None
        value_axis = vertical[0] if vertical else None
        return category_axis, value_axis

    category_axis = find_child(plot_area, naming.tag("catAx"))
    if category_axis is None:
        category_axis = find_child(plot_area, naming.tag("dateAx"))
    value_axis = value_axes[0] if value_axes else None
    return category_axis, value_axis


def find_title(owner: Optional[ET.Element], naming: TagNaming) -> Optional[ET.Element]:
    if owner is None:
        return None
    return find_child(owner, naming.tag("title"))


def title_text(title: Optional[ET.Element], naming: TagNaming) -> str:
    """
    Text of a title element: its rich-text runs joined, or the cached value
    when the title is linked to a cell.
    """
    if title is None:
        return ""
    runs = [element_text(node) for node in iter_local(title, "t")]
    if runs:
        return "".join(runs).strip()
    return element_text(find_descendant(title, naming.tag("v"))).strip()


def _find_cache(reference: ET.Element, naming: TagNaming) -> Optional[ET.Element]:
    for name in _CACHE_NAMES:
        cache = find_descendant(reference, naming.tag(name))
        if cache is not None:
            return cache
    return None


def cached_points(reference: Optional[ET.Element], naming: TagNaming) -> List[str]:
    """
    Text of the cached points of a ``tx``/``cat``/``val`` block, placed by
    ``idx``. Missing points read as ``""``.
    """
    if reference is None:
        return []
    cache = _find_cache(reference, naming)
    if cache is None:
        return []

    # multi-level category caches keep their points one level down
    container = cache
    if find_child(cache, naming.tag("pt")) is None:
        level = find_child(cache, naming.tag("lvl"))
        if level is not None:
            container = level

    points = {}
    for position, point in enumerate(find_children(container, naming.tag("pt"))):
        try:
            idx = int(point.get("idx", position))
        except ValueError:
            idx = position
        points[idx] = element_text(find_child(point, naming.tag("v"))).strip()

    # the size comes from ptCount, or from the points present; an idx never
    # grows the list, so a stray idx="3000000" cannot blow it up
    size = len(points)
    pt_count = find_child(cache, naming.tag("ptCount"))
    if pt_count is not None:
        try:
            size = max(int(pt_count.get("val", "")), 0)
        except ValueError:
            pass
    dropped = [idx for idx in points if not 0 <= idx < size]
    if dropped:
        logger.warning(
            f"Ignoring {len(dropped)} cached point(s) with idx outside 0..{size - 1}"
        )
    return [points.get(i, "") for i in range(size)]


def _parse_number(text: str) -> float:
    try:
        return float(text)
    except ValueError:
        return 0.0


def _series_name(series: ET.Element, naming: TagNaming) -> str:
    tx = find_child(series, naming.tag("tx"))
    if tx is None:
        return ""
    return element_text(find_descendant(tx, naming.tag("v"))).strip()


def _series_values(
    series: ET.Element, naming: TagNaming, value_tag: str, count: int, position: int
) -> List[float]:
    values = [
        _parse_number(text)
        for text in cached_points(find_child(series, naming.tag(value_tag)), naming)
    ]
    if len(values) < count:
        logger.warning(
            f"Series {position} caches {len(values)} values for {count} categories, padding with zeros"
        )
        values.extend([0.0] * (count - len(values)))
    elif len(values) > count > 0:
        logger.warning(
            f"Series {position} caches {len(values)} values for {count} categories, truncating"
        )
        values = values[:count]
    return values


def formula_sheet_name(root: ET.Element, naming: TagNaming) -> str:
    for formula in root.iter(naming.tag("f")):
        match = _SHEET_REFERENCE_PATTERN.match(element_text(formula).strip())
        if match is None:
            continue
        if match.group(1) is not None:
            return match.group(1).replace("''", "'")
        return match.group(2)
    return DEFAULT_DRAWING.sheet_name


def chart_sheet_name(raw_xml: bytes | str) -> str:
    """Worksheet the chart's series formulas point at (``Sheet1`` if none)."""
    document, naming = load_chart(raw_xml)
    return formula_sheet_name(document.root, naming)


def external_data_rel_id(raw_xml: bytes | str) -> str:
    """
    Relationship ID of the chart's ``externalData`` link, or ``""``.

    The attribute is ``r:id`` in Word's output, but any prefix bound to the
    relationships namespace is accepted.
    """
    document, _ = load_chart(raw_xml)
    for element in iter_local(document.root, "externalData"):
        for key, value in element.attrib.items():
            if key.endswith(":id") and not key.startswith("xmlns"):
                return value
        return ""
    return ""


def parse_chart(raw_xml: bytes | str) -> ChartData:
    """
    Read titles, categories and series from a chart part.

    Raises:
        ChartParseError: the content is not chart XML, is malformed, or is a
            scatter chart with non-numeric X values.
    """
    document, naming = load_chart(raw_xml)
    root = document.root

    kind, _ = find_chart_type_element(root, naming)
    category_axis, value_axis = find_axes(root, naming, kind)

    data = ChartData(
        chart_title=title_text(find_title(find_chart_element(root, naming), naming), naming),
        category_axis_title=title_text(find_title(category_axis, naming), naming),
        value_axis_title=title_text(find_title(value_axis, naming), naming),
        kind=kind,
    )

    plot_area = find_plot_area(root, naming)
    scope = plot_area if plot_area is not None else root
    series_elements = list(scope.iter(naming.tag("ser")))

    is_scatter = kind is ChartKind.SCATTER
    category_tag, value_tag = ("xVal", "yVal") if is_scatter else ("cat", "val")

    if series_elements:
        data.categories = cached_points(
            find_child(series_elements[0], naming.tag(category_tag)), naming
        )

    for position, series in enumerate(series_elements):
        data.series.append(
            SeriesData(
                name=_series_name(series, naming),
                values=_series_values(
                    series, naming, value_tag, len(data.categories), position
                ),
            )
        )

    if is_scatter:
        data.x_values()

    logger.debug(
        f"Parsed {kind.value if kind else 'unknown'} chart: "
        f"{len(data.series)} series, {len(data.categories)} categories"
    )
    return data
