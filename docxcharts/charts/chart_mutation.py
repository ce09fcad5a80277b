"""
Chart Part Rewriting
====================

Rewrites the cached data of a chart part from a ``ChartData``.

Every ``ser`` element of the chart-type element is replaced with a freshly
generated one, so a chart can shrink or grow its series count without stale
series being left behind. The generated series sit where the old ones were;
the chart-type configuration around them (``barDir``, ``grouping``,
``varyColors``, ``dLbls``, ``gapWidth``, ``overlap``, ``axId`` and so on) is
kept as-is, which preserves the element order Word validates against.

Presentation children of the old series at the same position (fill, marker,
pie explosion, smoothing) are carried over to the new one. Series formulas
are regenerated against the sheet the chart already points at::

    name        Sheet1!$B$1
    categories  Sheet1!$A$2:$A$4
    values      Sheet1!$B$2:$B$4

Titles are only written when a non-empty text is requested. A chart or axis
without a title element keeps its structure; the outcome is reported per
title in the returned ``ChartUpdateResult`` instead of raising.
"""

import copy
import logging
import re
from typing import List, Optional, Tuple
from xml.etree import ElementTree as ET

from openpyxl.utils import get_column_letter

from docxcharts.charts.chart_parser import (
    find_axes,
    find_chart_element,
    find_chart_type_element,
    find_title,
    formula_sheet_name,
    load_chart,
)
from docxcharts.charts.data_types import (
    ChartData,
    ChartKind,
    ChartUpdateResult,
    SeriesData,
    TitleUpdate,
    format_number,
)
from docxcharts.charts.xml_tree import (
    TagNaming,
    ensure_xml_declaration_newline,
    find_child,
    find_children,
    iter_local,
    local_name,
    make_element,
    namespace_prefix,
    serialize_xml,
    sub_element,
)
from docxcharts.exceptions import ChartMutationError
from docxcharts.package.constants import NAMESPACES

logger = logging.getLogger(__name__)

_PLAIN_SHEET_NAME_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_.]*$")

# Children of a chart-type element that precede its series
_LEADING_CONFIG = frozenset({"barDir", "grouping", "varyColors", "scatterStyle"})

# Old-series children carried over to the new series, in schema order
_CARRIED_PRESENTATION = ("invertIfNegative", "marker", "explosion")


def quote_sheet_name(sheet_name: str) -> str:
    """Sheet name as written in a formula, quoted when it needs to be."""
    if _PLAIN_SHEET_NAME_PATTERN.match(sheet_name):
        return sheet_name
    return "'" + sheet_name.replace("'", "''") + "'"


class _SeriesBuilder:
    """Generates ``ser`` elements for one chart-type element."""

    def __init__(
        self,
        naming: TagNaming,
        kind: ChartKind,
        data: ChartData,
        sheet_name: str,
        drawing_prefix: Optional[str],
    ):
        self.naming = naming
        self.kind = kind
        self.data = data
        self.sheet = quote_sheet_name(sheet_name)
        self.drawing_prefix = drawing_prefix
        self.last_row = len(data.categories) + 1
        self.x_values = data.x_values() if kind is ChartKind.SCATTER else None

    def build(
        self, position: int, series: SeriesData, original: Optional[ET.Element]
    ) -> ET.Element:
        naming = self.naming
        column = get_column_letter(position + 2)

        ser = make_element(naming, "ser")
        sub_element(ser, naming, "idx", {"val": str(position)})
        sub_element(ser, naming, "order", {"val": str(position)})

        tx = sub_element(ser, naming, "tx")
        str_ref = sub_element(tx, naming, "strRef")
        sub_element(str_ref, naming, "f", text=f"{self.sheet}!${column}$1")
        self._string_cache(str_ref, [series.name])

        self._presentation(ser, series, original)

        if self.x_values is not None:
            x_val = sub_element(ser, naming, "xVal")
            num_ref = sub_element(x_val, naming, "numRef")
            sub_element(
                num_ref, naming, "f", text=f"{self.sheet}!$A$2:$A${self.last_row}"
            )
            self._number_cache(num_ref, self.x_values, original, "xVal")
            value_tag = "yVal"
        else:
            cat = sub_element(ser, naming, "cat")
            cat_ref = sub_element(cat, naming, "strRef")
            sub_element(
                cat_ref, naming, "f", text=f"{self.sheet}!$A$2:$A${self.last_row}"
            )
            self._string_cache(cat_ref, self.data.categories)
            value_tag = "val"

        val = sub_element(ser, naming, value_tag)
        num_ref = sub_element(val, naming, "numRef")
        sub_element(
            num_ref,
            naming,
            "f",
            text=f"{self.sheet}!${column}$2:${column}${self.last_row}",
        )
        self._number_cache(num_ref, series.values, original, value_tag)

        if self.kind in (ChartKind.LINE, ChartKind.SCATTER) and original is not None:
            smooth = find_child(original, naming.tag("smooth"))
            if smooth is not None:
                ser.append(copy.deepcopy(smooth))
        return ser

    def _string_cache(self, parent: ET.Element, values: List[str]) -> None:
        cache = sub_element(parent, self.naming, "strCache")
        sub_element(cache, self.naming, "ptCount", {"val": str(len(values))})
        for i, value in enumerate(values):
            point = sub_element(cache, self.naming, "pt", {"idx": str(i)})
            sub_element(point, self.naming, "v", text=value)

    def _number_cache(
        self,
        parent: ET.Element,
        values: List[float],
        original: Optional[ET.Element],
        block: str,
    ) -> None:
        cache = sub_element(parent, self.naming, "numCache")
        sub_element(
            cache, self.naming, "formatCode", text=self._format_code(original, block)
        )
        sub_element(cache, self.naming, "ptCount", {"val": str(len(values))})
        for i, value in enumerate(values):
            point = sub_element(cache, self.naming, "pt", {"idx": str(i)})
            sub_element(point, self.naming, "v", text=format_number(value))

    def _format_code(self, original: Optional[ET.Element], block: str) -> str:
        if original is not None:
            reference = find_child(original, self.naming.tag(block))
            if reference is not None:
                for node in reference.iter(self.naming.tag("formatCode")):
                    if node.text:
                        return node.text
        return "General"

    def _presentation(
        self, ser: ET.Element, series: SeriesData, original: Optional[ET.Element]
    ) -> None:
        if series.color is not None:
            ser.append(self._fill(series.color))
        elif original is not None:
            sp_pr = find_child(original, self.naming.tag("spPr"))
            if sp_pr is not None:
                ser.append(copy.deepcopy(sp_pr))

        if original is None:
            return
        for name in _CARRIED_PRESENTATION:
            element = find_child(original, self.naming.tag(name))
            if element is not None:
                ser.append(copy.deepcopy(element))

    def _fill(self, color: str) -> ET.Element:
        prefix = self.drawing_prefix
        sp_pr = make_element(self.naming, "spPr")
        if not prefix:
            prefix = "a"
            sp_pr.set("xmlns:a", NAMESPACES["a"])
        parent = sp_pr
        # lines and markers take their color from the outline
        if self.kind in (ChartKind.LINE, ChartKind.SCATTER):
            parent = ET.SubElement(sp_pr, f"{prefix}:ln")
        fill = ET.SubElement(parent, f"{prefix}:solidFill")
        ET.SubElement(fill, f"{prefix}:srgbClr", {"val": color.upper()})
        return sp_pr


def _series_insert_position(chart_type: ET.Element, existing: List[ET.Element]) -> int:
    children = list(chart_type)
    if existing:
        return next(i for i, child in enumerate(children) if child is existing[0])
    for i, child in enumerate(children):
        if local_name(child.tag) not in _LEADING_CONFIG:
            return i
    return len(children)


def replace_series(
    chart_type: ET.Element,
    naming: TagNaming,
    kind: ChartKind,
    data: ChartData,
    *,
    sheet_name: str,
    drawing_prefix: Optional[str] = None,
) -> None:
    """Swap every ``ser`` child of ``chart_type`` for series built from ``data``."""
    existing = find_children(chart_type, naming.tag("ser"))
    position = _series_insert_position(chart_type, existing)
    builder = _SeriesBuilder(naming, kind, data, sheet_name, drawing_prefix)

    new_series = [
        builder.build(i, series, existing[i] if i < len(existing) else None)
        for i, series in enumerate(data.series)
    ]
    for old in existing:
        chart_type.remove(old)
    for offset, element in enumerate(new_series):
        chart_type.insert(position + offset, element)

    logger.debug(
        f"Replaced {len(existing)} series with {len(new_series)} in {chart_type.tag}"
    )


def set_title_text(title: Optional[ET.Element], text: str, naming: TagNaming) -> TitleUpdate:
    """
    Write ``text`` into the first text node of a title element.

    Rich-text runs (``a:t``) are preferred; a formula-linked title has its
    cached ``v`` updated instead. Any further runs are emptied so the title
    reads exactly ``text``.
    """
    if title is None:
        return TitleUpdate.ANCHOR_NOT_FOUND
    nodes = list(iter_local(title, "t"))
    if not nodes:
        nodes = list(title.iter(naming.tag("v")))
    if not nodes:
        return TitleUpdate.ANCHOR_NOT_FOUND
    nodes[0].text = text
    for node in nodes[1:]:
        node.text = ""
    return TitleUpdate.UPDATED


def _update_titles(
    root: ET.Element,
    naming: TagNaming,
    kind: ChartKind,
    data: ChartData,
    result: ChartUpdateResult,
) -> None:
    category_axis, value_axis = find_axes(root, naming, kind)
    requests: Tuple[Tuple[str, str, str, Optional[ET.Element]], ...] = (
        (
            "chart_title",
            "chart title",
            data.chart_title,
            find_title(find_chart_element(root, naming), naming),
        ),
        (
            "category_axis_title",
            "category axis title",
            data.category_axis_title,
            find_title(category_axis, naming),
        ),
        (
            "value_axis_title",
            "value axis title",
            data.value_axis_title,
            find_title(value_axis, naming),
        ),
    )
    for field_name, label, text, title in requests:
        if not text:
            continue
        outcome = set_title_text(title, text, naming)
        setattr(result, field_name, outcome)
        if outcome is TitleUpdate.ANCHOR_NOT_FOUND:
            where = f"chart{result.chart_index}" if result.chart_index else "chart"
            logger.warning(
                f"{where} has no {label} element to write {text!r} into; left unchanged"
            )


def update_chart_xml(
    raw_xml: bytes | str,
    data: ChartData,
    *,
    chart_index: Optional[int] = None,
) -> Tuple[bytes, ChartUpdateResult]:
    """
    Return the chart part rewritten from ``data`` and what was changed.

    Raises:
        ChartDataValidationError: ``data`` is structurally invalid; raised
            before the XML is looked at.
        ChartParseError: the content is not chart XML, or scatter categories
            are not numeric.
        ChartMutationError: no bar, line, scatter, pie or area chart element.
    """
    data.validate()

    document, naming = load_chart(raw_xml)
    root = document.root

    kind, chart_type = find_chart_type_element(root, naming)
    if chart_type is None:
        raise ChartMutationError(
            "unsupported or missing chart type", chart_index=chart_index
        )

    result = ChartUpdateResult(
        chart_index=chart_index,
        kind=kind,
        series_count=len(data.series),
        category_count=len(data.categories),
    )

    replace_series(
        chart_type,
        naming,
        kind,
        data,
        sheet_name=formula_sheet_name(root, naming),
        drawing_prefix=namespace_prefix(root, NAMESPACES["a"]),
    )
    _update_titles(root, naming, kind, data, result)

    content = ensure_xml_declaration_newline(serialize_xml(document))
    return content, result
