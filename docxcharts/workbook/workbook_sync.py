"""
Embedded Workbook Synchronizer
==============================

Keeps the spreadsheet embedded behind a chart consistent with the chart's
cached data.

File Format Background
----------------------
A chart's data lives twice in a .docx: as the point caches inside the chart
part, and in an embedded .xlsx package (``word/embeddings/*.xlsx``) that Word
opens when the user chooses "Edit Data". The chart part references the
workbook through ``c:externalData r:id="rIdN"``, resolved via the chart's own
``.rels`` part.

Inside the workbook only these parts are touched:

    xl/worksheets/sheetN.xml      the first sheet: cell grid, dimension,
                                  autoFilter
    xl/sharedStrings.xml          appended to when present
    xl/tables/tableN.xml          tables attached to that sheet: ref,
                                  autoFilter and column names

``xl/workbook.xml`` and its relationships are read (to find the first sheet)
but never written. Every other entry is copied byte for byte, in archive
order.

Grid Layout
-----------
::

          A            B          C
    1                  Series 1   Series 2
    2     Category 1   4          8
    3     Category 2   3          7

Shared Strings
--------------
When the workbook has a shared-string table, string cells reference it by
0-based index (``t="s"``). Existing entries are reused by exact value and new
strings are appended; nothing is removed or renumbered, so cells elsewhere in
the workbook keep pointing at the same text. Without a table, strings are
written inline (``t="inlineStr"``).

Known Limitations
-----------------
- The whole ``sheetData`` of the sheet is regenerated: cell styles, formulas
  and any cells outside the chart grid are dropped.
- Only the first worksheet is synchronized.
"""

import io
import logging
import re
import zipfile
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from openpyxl.utils import get_column_letter

from docxcharts.charts.chart_parser import external_data_rel_id
from docxcharts.charts.data_types import ChartData, format_number
from docxcharts.charts.xml_tree import (
    TagNaming,
    XmlDocument,
    find_child,
    find_children,
    iter_local,
    naming_for,
    parse_xml,
    serialize_xml,
    sub_element,
)
from docxcharts.exceptions import (
    ChartParseError,
    PackageZipBombError,
    RelationshipError,
    WorkbookResolutionError,
    WorkbookSyncError,
    XmlSyntaxError,
)
from docxcharts.package.constants import CHARTS_DIR, OFFICE_DOCUMENT_RELS
from docxcharts.package.relationships import (
    RelationshipsPart,
    rels_path_for,
    resolve_target,
)
from docxcharts.util.zip_bomb import DEFAULT_ZIP_BOMB_LIMITS, ZipBombLimits
from docxcharts.util.zip_context import ZipContext

logger = logging.getLogger(__name__)

WORKBOOK_PART = "xl/workbook.xml"
SHARED_STRINGS_PART = "xl/sharedStrings.xml"
REL_TYPE_TABLE = OFFICE_DOCUMENT_RELS + "/table"

_WORKSHEET_PATTERN = re.compile(r"^xl/worksheets/sheet(\d+)\.xml$")
_XML_SPACE = "xml:space"


def resolve_workbook(package_root: Path, chart_index: int) -> Path:
    """
    Path of the workbook embedded behind chart ``chart_index``.

    Raises:
        WorkbookResolutionError: the chart part, its externalData link, its
            .rels entry or the workbook file is missing.
    """
    chart_part = f"{CHARTS_DIR}/chart{chart_index}.xml"
    chart_path = package_root / chart_part
    if not chart_path.is_file():
        raise WorkbookResolutionError(chart_index, f"chart{chart_index}.xml not found")

    try:
        rel_id = external_data_rel_id(chart_path.read_bytes())
    except ChartParseError as exc:
        raise WorkbookResolutionError(
            chart_index, f"cannot read chart part: {exc}", cause=exc
        ) from exc
    if not rel_id:
        raise WorkbookResolutionError(
            chart_index, f"chart{chart_index}.xml has no externalData relationship ID"
        )

    try:
        relationship = RelationshipsPart.load(
            package_root / rels_path_for(chart_part)
        ).require(rel_id)
    except RelationshipError as exc:
        raise WorkbookResolutionError(
            chart_index, f"resolve relationship {rel_id}: {exc}", rel_id=rel_id, cause=exc
        ) from exc

    if not relationship.target:
        raise WorkbookResolutionError(
            chart_index, f"relationship {rel_id} has empty target", rel_id=rel_id
        )
    if relationship.is_external:
        raise WorkbookResolutionError(
            chart_index,
            f"relationship {rel_id} links an external workbook ({relationship.target})",
            rel_id=rel_id,
        )

    try:
        resolved = resolve_target(chart_part, relationship.target)
    except RelationshipError as exc:
        raise WorkbookResolutionError(
            chart_index, str(exc), rel_id=rel_id, cause=exc
        ) from exc

    workbook_path = package_root / resolved
    if not workbook_path.is_file():
        raise WorkbookResolutionError(
            chart_index, f"workbook file {resolved} not found", rel_id=rel_id
        )
    return workbook_path


class SharedStrings:
    """Append-only view of ``xl/sharedStrings.xml``."""

    def __init__(self, document: XmlDocument):
        self.document = document
        self.naming = naming_for(document.root)
        self._index: Dict[str, int] = {}
        self._size = 0
        for item in find_children(document.root, self.naming.tag("si")):
            self._index.setdefault(self._item_text(item), self._size)
            self._size += 1

    def _item_text(self, item) -> str:
        plain = find_child(item, self.naming.tag("t"))
        if plain is not None:
            return plain.text or ""
        # rich text: runs of <r><t>; phonetic runs (rPh) are not part of the value
        return "".join(
            node.text or ""
            for run in find_children(item, self.naming.tag("r"))
            for node in find_children(run, self.naming.tag("t"))
        )

    def __len__(self) -> int:
        return self._size

    def index_of(self, text: str) -> int:
        """Index of ``text``, appending a new entry when it is not there yet."""
        if text in self._index:
            return self._index[text]
        item = sub_element(self.document.root, self.naming, "si")
        node = sub_element(item, self.naming, "t", text=text)
        if text != text.strip():
            node.set(_XML_SPACE, "preserve")
        self._index[text] = self._size
        self._size += 1
        return self._size - 1

    def to_bytes(self) -> bytes:
        self.document.root.set("count", str(self._size))
        self.document.root.set("uniqueCount", str(self._size))
        return serialize_xml(self.document)


def _parse_entry(entries: Dict[str, bytes], name: str) -> XmlDocument:
    try:
        return parse_xml(entries[name], part=name)
    except XmlSyntaxError as exc:
        raise WorkbookSyncError(f"Failed to parse {name}", cause=exc) from exc


def find_worksheet_path(entries: Dict[str, bytes]) -> str:
    """
    Entry name of the first worksheet: the first ``<sheet>`` of
    ``xl/workbook.xml`` followed through the workbook relationships, or the
    lowest-numbered ``xl/worksheets/sheetN.xml`` when that chain is broken.
    """
    rels_name = rels_path_for(WORKBOOK_PART)
    if WORKBOOK_PART in entries and rels_name in entries:
        workbook = _parse_entry(entries, WORKBOOK_PART)
        first_sheet = next(iter_local(workbook.root, "sheet"), None)
        rel_id = ""
        if first_sheet is not None:
            rel_id = next(
                (
                    value
                    for key, value in first_sheet.attrib.items()
                    if key.endswith(":id") and not key.startswith("xmlns")
                ),
                "",
            )
        if rel_id:
            try:
                relationship = RelationshipsPart.from_bytes(
                    rels_name, entries[rels_name]
                ).get(rel_id)
            except RelationshipError as exc:
                raise WorkbookSyncError(str(exc), cause=exc) from exc
            if relationship is not None:
                try:
                    target = resolve_target(WORKBOOK_PART, relationship.target)
                except RelationshipError:
                    target = ""
                if target in entries:
                    return target
        logger.debug("First sheet of workbook.xml did not resolve, scanning worksheets")

    numbered = sorted(
        (int(match.group(1)), name)
        for name in entries
        for match in [_WORKSHEET_PATTERN.match(name)]
        if match
    )
    if not numbered:
        raise WorkbookSyncError("workbook contains no worksheet")
    return numbered[0][1]


def find_sheet_tables(entries: Dict[str, bytes], sheet_path: str) -> List[str]:
    """Entry names of the table parts attached to ``sheet_path``."""
    rels_name = rels_path_for(sheet_path)
    if rels_name not in entries:
        return []
    try:
        rels = RelationshipsPart.from_bytes(rels_name, entries[rels_name])
    except RelationshipError as exc:
        raise WorkbookSyncError(str(exc), cause=exc) from exc
    tables = []
    for relationship in rels.relationships:
        if relationship.type != REL_TYPE_TABLE or relationship.is_external:
            continue
        try:
            target = resolve_target(sheet_path, relationship.target)
        except RelationshipError as exc:
            raise WorkbookSyncError(str(exc), cause=exc) from exc
        if target in entries:
            tables.append(target)
    return tables


def unique_headers(names: List[str]) -> List[str]:
    """Make header names unique the way Excel does (``Name``, ``Name2``...)."""
    seen = set()
    result = []
    for name in names:
        candidate = name
        suffix = 2
        while candidate.lower() in seen:
            candidate = f"{name}{suffix}"
            suffix += 1
        seen.add(candidate.lower())
        result.append(candidate)
    return result


class _CellWriter:
    def __init__(self, naming: TagNaming, shared: Optional[SharedStrings]):
        self.naming = naming
        self.shared = shared

    def string(self, row, ref: str, text: str) -> None:
        if self.shared is not None:
            cell = sub_element(row, self.naming, "c", {"r": ref, "t": "s"})
            sub_element(cell, self.naming, "v", text=str(self.shared.index_of(text)))
            return
        cell = sub_element(row, self.naming, "c", {"r": ref, "t": "inlineStr"})
        inline = sub_element(cell, self.naming, "is")
        node = sub_element(inline, self.naming, "t", text=text)
        if text != text.strip():
            node.set(_XML_SPACE, "preserve")

    def number(self, row, ref: str, value: float) -> None:
        cell = sub_element(row, self.naming, "c", {"r": ref})
        sub_element(cell, self.naming, "v", text=format_number(value))


def data_range(data: ChartData) -> str:
    return f"A1:{get_column_letter(len(data.series) + 1)}{len(data.categories) + 1}"


def rewrite_worksheet(
    content: bytes,
    data: ChartData,
    *,
    shared: Optional[SharedStrings] = None,
    headers: Optional[List[str]] = None,
    numeric_categories: bool = False,
    part: str = "worksheet",
) -> bytes:
    """
    Regenerate ``sheetData`` from ``data`` and widen the sheet's dimension
    and autoFilter to the new extent.

    ``headers`` is the full header row (A1 first); by default A1 stays blank
    and the series names follow.
    """
    try:
        document = parse_xml(content, part=part)
    except XmlSyntaxError as exc:
        raise WorkbookSyncError(f"Failed to parse {part}", cause=exc) from exc
    root = document.root
    naming = naming_for(root)

    sheet_data = find_child(root, naming.tag("sheetData"))
    if sheet_data is None:
        raise WorkbookSyncError(f"{part} has no sheetData element")
    for child in list(sheet_data):
        sheet_data.remove(child)
    sheet_data.text = None

    if headers is None:
        headers = [""] + data.series_names
    column_count = len(data.series) + 1
    spans = f"1:{column_count}"
    writer = _CellWriter(naming, shared)

    header_row = sub_element(sheet_data, naming, "row", {"r": "1", "spans": spans})
    for column, header in enumerate(headers, start=1):
        if header:
            writer.string(header_row, f"{get_column_letter(column)}1", header)

    x_values = data.x_values() if numeric_categories else None
    for i, category in enumerate(data.categories):
        row_number = i + 2
        row = sub_element(
            sheet_data, naming, "row", {"r": str(row_number), "spans": spans}
        )
        if x_values is not None:
            writer.number(row, f"A{row_number}", x_values[i])
        else:
            writer.string(row, f"A{row_number}", category)
        for j, series in enumerate(data.series):
            writer.number(row, f"{get_column_letter(j + 2)}{row_number}", series.values[i])

    ref = data_range(data)
    for local in ("dimension", "autoFilter"):
        element = find_child(root, naming.tag(local))
        if element is not None:
            element.set("ref", ref)

    return serialize_xml(document)


def first_table_column_name(content: bytes, part: str) -> str:
    try:
        document = parse_xml(content, part=part)
    except XmlSyntaxError as exc:
        raise WorkbookSyncError(f"Failed to parse {part}", cause=exc) from exc
    naming = naming_for(document.root)
    columns = find_child(document.root, naming.tag("tableColumns"))
    if columns is None:
        return ""
    first = find_child(columns, naming.tag("tableColumn"))
    return first.get("name", "") if first is not None else ""


def rewrite_table(content: bytes, ref: str, headers: List[str], part: str) -> bytes:
    """Point a table part at ``ref`` and rename its columns after ``headers``."""
    try:
        document = parse_xml(content, part=part)
    except XmlSyntaxError as exc:
        raise WorkbookSyncError(f"Failed to parse {part}", cause=exc) from exc
    root = document.root
    naming = naming_for(root)

    root.set("ref", ref)
    auto_filter = find_child(root, naming.tag("autoFilter"))
    if auto_filter is not None:
        auto_filter.set("ref", ref)

    columns = find_child(root, naming.tag("tableColumns"))
    if columns is not None:
        existing = find_children(columns, naming.tag("tableColumn"))
        next_id = max([int(c.get("id", "0")) for c in existing] + [0]) + 1
        for child in existing:
            columns.remove(child)
        for position, name in enumerate(headers):
            if position < len(existing):
                column = existing[position]
                column.set("name", name)
                columns.append(column)
            else:
                sub_element(columns, naming, "tableColumn", {"id": str(next_id), "name": name})
                next_id += 1
        columns.set("count", str(len(headers)))

    return serialize_xml(document)


def _read_entries(
    workbook_path: Path, limits: ZipBombLimits
) -> Tuple[List[zipfile.ZipInfo], Dict[str, bytes]]:
    try:
        content = workbook_path.read_bytes()
    except OSError as exc:
        raise WorkbookSyncError(f"Failed to read {workbook_path.name}", cause=exc) from exc
    try:
        with ZipContext(io.BytesIO(content), limits=limits, source=workbook_path.name) as ctx:
            return list(ctx.infolist), ctx.read_all()
    except PackageZipBombError as exc:
        raise WorkbookSyncError(
            f"Refusing to open embedded workbook {workbook_path.name}: {exc}", cause=exc
        ) from exc
    except zipfile.BadZipFile as exc:
        raise WorkbookSyncError(
            f"{workbook_path.name} is not a valid xlsx package", cause=exc
        ) from exc


def _write_entries(
    workbook_path: Path, infos: List[zipfile.ZipInfo], entries: Dict[str, bytes]
) -> None:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as zf:
        for info in infos:
            clone = zipfile.ZipInfo(info.filename, date_time=info.date_time)
            clone.compress_type = info.compress_type
            clone.external_attr = info.external_attr
            zf.writestr(clone, b"" if info.is_dir() else entries[info.filename])
    workbook_path.write_bytes(buffer.getvalue())


def sync_workbook(
    workbook_path: Path,
    data: ChartData,
    *,
    numeric_categories: bool = False,
    limits: ZipBombLimits = DEFAULT_ZIP_BOMB_LIMITS,
) -> None:
    """
    Rewrite the first worksheet of an embedded workbook from ``data``.

    ``numeric_categories`` writes column A as numbers (scatter X values).

    Raises:
        ChartDataValidationError: ``data`` is structurally invalid.
        WorkbookSyncError: the file is not a usable xlsx package.
    """
    data.validate()
    infos, entries = _read_entries(workbook_path, limits)

    sheet_path = find_worksheet_path(entries)
    tables = find_sheet_tables(entries, sheet_path)

    shared = None
    if SHARED_STRINGS_PART in entries:
        shared = SharedStrings(_parse_entry(entries, SHARED_STRINGS_PART))

    headers = None
    if tables:
        # a table needs a named header in every column, A1 included
        first = first_table_column_name(entries[tables[0]], tables[0]) or " "
        headers = unique_headers([first] + data.series_names)

    entries[sheet_path] = rewrite_worksheet(
        entries[sheet_path],
        data,
        shared=shared,
        headers=headers,
        numeric_categories=numeric_categories,
        part=sheet_path,
    )
    if shared is not None:
        entries[SHARED_STRINGS_PART] = shared.to_bytes()

    ref = data_range(data)
    for table in tables:
        entries[table] = rewrite_table(entries[table], ref, headers, table)

    _write_entries(workbook_path, infos, entries)
    logger.debug(
        f"Synchronized {workbook_path.name} ({sheet_path}, range {ref}, "
        f"{len(tables)} table(s), shared strings: {shared is not None})"
    )
