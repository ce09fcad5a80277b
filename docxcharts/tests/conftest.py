import io
import zipfile
from pathlib import Path
from xml.sax.saxutils import escape

import pytest
from openpyxl import Workbook
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.table import Table

from docxcharts.package.constants import (
    CHART_CONTENT_TYPE,
    NAMESPACES,
    REL_TYPE_CHART,
    REL_TYPE_PACKAGE,
    XLSX_CONTENT_TYPE,
    XML_DECLARATION,
)

_W_NS = NAMESPACES["w"]
_R_NS = NAMESPACES["r"]
_A_NS = NAMESPACES["a"]
_C_NS = NAMESPACES["c"]
_WP_NS = NAMESPACES["wp"]
_WP14_NS = "http://schemas.microsoft.com/office/word/2010/wordprocessingDrawing"
_REL_NS = NAMESPACES["rel"]
_CT_NS = NAMESPACES["ct"]
_S_NS = NAMESPACES["s"]
_OFFICE_DOCUMENT = (
    "http://schemas.openxmlformats.org/officeDocument/2006/relationships/officeDocument"
)
_WORKSHEET_REL = "http://schemas.openxmlformats.org/officeDocument/2006/relationships/worksheet"
_STYLES_REL = "http://schemas.openxmlformats.org/officeDocument/2006/relationships/styles"
_SHARED_STRINGS_REL = (
    "http://schemas.openxmlformats.org/officeDocument/2006/relationships/sharedStrings"
)


def _zip(parts: dict) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as zf:
        for name, content in parts.items():
            if isinstance(content, str):
                content = content.encode("utf-8")
            zf.writestr(name, content)
    return buffer.getvalue()


# --- chart parts -----------------------------------------------------------


def _rich_title(p: str, text: str) -> str:
    return (
        f"<{p}title><{p}tx><{p}rich><a:bodyPr/><a:lstStyle/>"
        f"<a:p><a:r><a:t>{escape(text)}</a:t></a:r></a:p>"
        f'</{p}rich></{p}tx><{p}overlay val="0"/></{p}title>'
    )


def _str_cache(p: str, values) -> str:
    points = "".join(
        f'<{p}pt idx="{i}"><{p}v>{escape(str(v))}</{p}v></{p}pt>'
        for i, v in enumerate(values)
    )
    return f'<{p}strCache><{p}ptCount val="{len(values)}"/>{points}</{p}strCache>'


def _num_cache(p: str, values, format_code: str = "General") -> str:
    points = "".join(
        f'<{p}pt idx="{i}"><{p}v>{v}</{p}v></{p}pt>' for i, v in enumerate(values)
    )
    return (
        f"<{p}numCache><{p}formatCode>{format_code}</{p}formatCode>"
        f'<{p}ptCount val="{len(values)}"/>{points}</{p}numCache>'
    )


def _series(p: str, kind: str, i: int, name: str, categories, values, sheet: str) -> str:
    column = get_column_letter(i + 2)
    last = len(categories) + 1
    parts = [
        f'<{p}ser><{p}idx val="{i}"/><{p}order val="{i}"/>',
        f"<{p}tx><{p}strRef><{p}f>{sheet}!${column}$1</{p}f>"
        f"{_str_cache(p, [name])}</{p}strRef></{p}tx>",
        f'<{p}spPr><a:solidFill><a:srgbClr val="4472C4"/></a:solidFill></{p}spPr>',
    ]
    if kind == "bar":
        parts.append(f'<{p}invertIfNegative val="0"/>')
    if kind in ("line", "scatter"):
        parts.append(f'<{p}marker><{p}symbol val="none"/></{p}marker>')
    if kind == "pie":
        parts.append(f'<{p}explosion val="5"/>')
    if kind == "scatter":
        parts.append(
            f"<{p}xVal><{p}numRef><{p}f>{sheet}!$A$2:$A${last}</{p}f>"
            f"{_num_cache(p, categories)}</{p}numRef></{p}xVal>"
        )
        parts.append(
            f"<{p}yVal><{p}numRef><{p}f>{sheet}!${column}$2:${column}${last}</{p}f>"
            f"{_num_cache(p, values, '0.0')}</{p}numRef></{p}yVal>"
        )
    else:
        parts.append(
            f"<{p}cat><{p}strRef><{p}f>{sheet}!$A$2:$A${last}</{p}f>"
            f"{_str_cache(p, categories)}</{p}strRef></{p}cat>"
        )
        parts.append(
            f"<{p}val><{p}numRef><{p}f>{sheet}!${column}$2:${column}${last}</{p}f>"
            f"{_num_cache(p, values, '0.0')}</{p}numRef></{p}val>"
        )
    if kind in ("line", "scatter"):
        parts.append(f'<{p}smooth val="1"/>')
    parts.append(f"</{p}ser>")
    return "".join(parts)


def _axis(p: str, tag: str, ax_id: int, cross: int, position: str, title) -> str:
    title_xml = _rich_title(p, title) if title else ""
    return (
        f'<{p}{tag}><{p}axId val="{ax_id}"/><{p}scaling><{p}orientation val="minMax"/>'
        f'</{p}scaling><{p}delete val="0"/><{p}axPos val="{position}"/>{title_xml}'
        f'<{p}crossAx val="{cross}"/></{p}{tag}>'
    )


def build_chart_xml(
    categories,
    series,
    *,
    kind: str = "bar",
    prefixed: bool = True,
    title=None,
    category_axis_title=None,
    value_axis_title=None,
    rel_id: str = "rId1",
    sheet: str = "Sheet1",
) -> bytes:
    """
    Chart part in Word's layout. ``series`` is a list of ``(name, values)``;
    ``prefixed=False`` declares the chart namespace as the default namespace.
    """
    p = "c:" if prefixed else ""
    chart_ns = f'xmlns:c="{_C_NS}"' if prefixed else f'xmlns="{_C_NS}"'
    ser = "".join(
        _series(p, kind, i, name, categories, values, sheet)
        for i, (name, values) in enumerate(series)
    )
    ax_ids = f'<{p}axId val="111"/><{p}axId val="222"/>'
    if kind == "bar":
        plot = (
            f'<{p}barChart><{p}barDir val="col"/><{p}grouping val="clustered"/>'
            f'<{p}varyColors val="0"/>{ser}<{p}gapWidth val="150"/>{ax_ids}</{p}barChart>'
        )
    elif kind == "line":
        plot = (
            f'<{p}lineChart><{p}grouping val="standard"/><{p}varyColors val="0"/>'
            f'{ser}<{p}marker val="1"/>{ax_ids}</{p}lineChart>'
        )
    elif kind == "area":
        plot = (
            f'<{p}areaChart><{p}grouping val="standard"/><{p}varyColors val="0"/>'
            f"{ser}{ax_ids}</{p}areaChart>"
        )
    elif kind == "pie":
        plot = (
            f'<{p}pieChart><{p}varyColors val="1"/>{ser}'
            f'<{p}firstSliceAng val="0"/></{p}pieChart>'
        )
    elif kind == "scatter":
        plot = (
            f'<{p}scatterChart><{p}scatterStyle val="lineMarker"/><{p}varyColors val="0"/>'
            f"{ser}{ax_ids}</{p}scatterChart>"
        )
    else:
        plot = f'<{p}{kind}><{p}varyColors val="0"/></{p}{kind}>'

    if kind == "pie":
        axes = ""
    elif kind == "scatter":
        axes = _axis(p, "valAx", 111, 222, "b", category_axis_title) + _axis(
            p, "valAx", 222, 111, "l", value_axis_title
        )
    else:
        axes = _axis(p, "catAx", 111, 222, "b", category_axis_title) + _axis(
            p, "valAx", 222, 111, "l", value_axis_title
        )

    title_xml = _rich_title(p, title) if title else ""
    xml = (
        f"{XML_DECLARATION}\n"
        f'<{p}chartSpace {chart_ns} xmlns:a="{_A_NS}" xmlns:r="{_R_NS}">'
        f'<{p}roundedCorners val="0"/>'
        f'<{p}chart>{title_xml}<{p}autoTitleDeleted val="0"/>'
        f"<{p}plotArea><{p}layout/>{plot}{axes}</{p}plotArea>"
        f'<{p}plotVisOnly val="1"/></{p}chart>'
        f'<{p}externalData r:id="{rel_id}"><{p}autoUpdate val="0"/></{p}externalData>'
        f"</{p}chartSpace>"
    )
    return xml.encode("utf-8")


# --- embedded workbooks ----------------------------------------------------


def build_workbook(categories, series, *, sheet: str = "Sheet1", table: bool = False) -> bytes:
    """An .xlsx saved by openpyxl; used for tables and for reading back."""
    wb = Workbook()
    ws = wb.active
    ws.title = sheet
    ws.append(["Category" if table else None] + [name for name, _ in series])
    for i, category in enumerate(categories):
        ws.append([category] + [values[i] for _, values in series])
    if table:
        ref = f"A1:{get_column_letter(len(series) + 1)}{len(categories) + 1}"
        ws.add_table(Table(displayName="Table1", ref=ref))
    buffer = io.BytesIO()
    wb.save(buffer)
    return buffer.getvalue()


class _CellStrings:
    """Writes string cells inline, or through a shared-string table."""

    def __init__(self, shared: bool, existing=()):
        self.shared = shared
        self.table = list(existing)

    def cell(self, ref: str, value) -> str:
        if not isinstance(value, str):
            return f'<c r="{ref}"><v>{value}</v></c>'
        if not self.shared:
            return f'<c r="{ref}" t="inlineStr"><is><t>{escape(value)}</t></is></c>'
        if value not in self.table:
            self.table.append(value)
        return f'<c r="{ref}" t="s"><v>{self.table.index(value)}</v></c>'

    def part(self) -> str:
        items = "".join(f"<si><t>{escape(text)}</t></si>" for text in self.table)
        return (
            f'{XML_DECLARATION}\n<sst xmlns="{_S_NS}" count="{len(self.table)}" '
            f'uniqueCount="{len(self.table)}">{items}</sst>'
        )


def _build_xlsx(categories, series, *, strings: _CellStrings, extra_sheet: bool = False) -> bytes:
    rows = []
    header = [strings.cell(f"{get_column_letter(j + 2)}1", name) for j, (name, _) in enumerate(series)]
    rows.append(f'<row r="1">{"".join(header)}</row>')
    for i, category in enumerate(categories):
        cells = [strings.cell(f"A{i + 2}", category)]
        cells += [
            strings.cell(f"{get_column_letter(j + 2)}{i + 2}", values[i])
            for j, (_, values) in enumerate(series)
        ]
        rows.append(f'<row r="{i + 2}">{"".join(cells)}</row>')
    ref = f"A1:{get_column_letter(len(series) + 1)}{len(categories) + 1}"
    sheet = (
        f'{XML_DECLARATION}\n<worksheet xmlns="{_S_NS}" xmlns:r="{_R_NS}">'
        f'<dimension ref="{ref}"/><sheetData>{"".join(rows)}</sheetData>'
        f'<autoFilter ref="{ref}"/></worksheet>'
    )
    sheets = '<sheet name="Sheet1" sheetId="1" r:id="rId1"/>'
    workbook_rels = (
        f'<Relationship Id="rId1" Type="{_WORKSHEET_REL}" Target="worksheets/sheet1.xml"/>'
    )
    overrides = (
        '<Override PartName="/xl/workbook.xml" ContentType="application/'
        'vnd.openxmlformats-officedocument.spreadsheetml.sheet.main+xml"/>'
        '<Override PartName="/xl/worksheets/sheet1.xml" ContentType="application/'
        'vnd.openxmlformats-officedocument.spreadsheetml.worksheet+xml"/>'
    )
    parts = {
        "[Content_Types].xml": "",
        "_rels/.rels": (
            f'{XML_DECLARATION}\n<Relationships xmlns="{_REL_NS}">'
            f'<Relationship Id="rId1" Type="{_OFFICE_DOCUMENT}" Target="xl/workbook.xml"/>'
            "</Relationships>"
        ),
        "xl/worksheets/sheet1.xml": sheet,
    }
    if extra_sheet:
        # sheet2 is listed first in workbook.xml, so it is the first sheet
        sheets = '<sheet name="Notes" sheetId="2" r:id="rId2"/>' + sheets
        workbook_rels += (
            f'<Relationship Id="rId2" Type="{_WORKSHEET_REL}" Target="worksheets/sheet2.xml"/>'
        )
        overrides += (
            '<Override PartName="/xl/worksheets/sheet2.xml" ContentType="application/'
            'vnd.openxmlformats-officedocument.spreadsheetml.worksheet+xml"/>'
        )
        parts["xl/worksheets/sheet2.xml"] = (
            f'{XML_DECLARATION}\n<worksheet xmlns="{_S_NS}">'
            '<dimension ref="A1"/><sheetData/></worksheet>'
        )
    if strings.shared:
        workbook_rels += (
            f'<Relationship Id="rId9" Type="{_SHARED_STRINGS_REL}" Target="sharedStrings.xml"/>'
        )
        overrides += (
            '<Override PartName="/xl/sharedStrings.xml" ContentType="application/'
            'vnd.openxmlformats-officedocument.spreadsheetml.sharedStrings+xml"/>'
        )
        parts["xl/sharedStrings.xml"] = strings.part()
    parts["[Content_Types].xml"] = (
        f'{XML_DECLARATION}\n<Types xmlns="{_CT_NS}">'
        '<Default Extension="rels" ContentType="application/vnd.openxmlformats-package.relationships+xml"/>'
        '<Default Extension="xml" ContentType="application/xml"/>'
        f"{overrides}</Types>"
    )
    parts["xl/workbook.xml"] = (
        f'{XML_DECLARATION}\n<workbook xmlns="{_S_NS}" xmlns:r="{_R_NS}">'
        f"<sheets>{sheets}</sheets></workbook>"
    )
    parts["xl/_rels/workbook.xml.rels"] = (
        f'{XML_DECLARATION}\n<Relationships xmlns="{_REL_NS}">{workbook_rels}</Relationships>'
    )
    parts["docProps/app.xml"] = "<Properties><Application>Microsoft Excel</Application></Properties>"
    return _zip(parts)


def build_inline_workbook(categories, series, *, extra_sheet: bool = False) -> bytes:
    """A hand-written .xlsx with inline strings and no shared-string table."""
    return _build_xlsx(
        categories, series, strings=_CellStrings(shared=False), extra_sheet=extra_sheet
    )


def build_shared_workbook(categories, series, *, existing=("Legacy note",)) -> bytes:
    """
    A hand-written .xlsx whose string cells are ``t="s"`` references into
    ``xl/sharedStrings.xml``. ``existing`` entries come first in the table and
    are not used by the chart grid, as in a workbook someone has edited.
    """
    return _build_xlsx(categories, series, strings=_CellStrings(shared=True, existing=existing))


# --- documents -------------------------------------------------------------


def workbook_name(chart_index: int) -> str:
    return f"Microsoft_Excel_Worksheet{chart_index}.xlsx"


def _drawing_paragraph(chart_index: int, rel_id: str) -> str:
    return (
        "<w:p><w:r><w:drawing>"
        f'<wp:inline distT="0" distB="0" distL="0" distR="0" wp14:anchorId="1A2B3C4D">'
        f'<wp:extent cx="5486400" cy="3200400"/>'
        f'<wp:docPr id="{chart_index}" name="Chart {chart_index}"/>'
        f'<a:graphic><a:graphicData uri="{_C_NS}">'
        f'<c:chart r:id="{rel_id}"/>'
        "</a:graphicData></a:graphic></wp:inline>"
        "</w:drawing></w:r></w:p>"
    )


def build_docx(charts, *, xlsx_default: bool = False, indexes=None) -> bytes:
    """
    A .docx holding one chart per ``(chart_xml, workbook_bytes)`` pair.

    ``indexes`` numbers the chart parts (default 1, 2, ...); gaps are allowed.

    Chart N is related from the document as ``rId{N + 1}`` (``rId1`` is the
    styles part) and drawn in its own paragraph with ``docPr id="N"``.
    """
    paragraphs = ["<w:p><w:r><w:t>Vulnerability report</w:t></w:r></w:p>"]
    document_rels = [
        f'<Relationship Id="rId1" Type="{_STYLES_REL}" Target="styles.xml"/>'
    ]
    overrides = [
        '<Override PartName="/word/document.xml" ContentType="application/'
        'vnd.openxmlformats-officedocument.wordprocessingml.document.main+xml"/>'
    ]
    parts = {}
    if indexes is None:
        indexes = range(1, len(charts) + 1)
    for index, (chart_xml, workbook) in zip(indexes, charts):
        rel_id = f"rId{index + 1}"
        paragraphs.append(_drawing_paragraph(index, rel_id))
        paragraphs.append(f"<w:p><w:r><w:t>After chart {index}</w:t></w:r></w:p>")
        document_rels.append(
            f'<Relationship Id="{rel_id}" Type="{REL_TYPE_CHART}" Target="charts/chart{index}.xml"/>'
        )
        overrides.append(
            f'<Override PartName="/word/charts/chart{index}.xml" ContentType="{CHART_CONTENT_TYPE}"/>'
        )
        parts[f"word/charts/chart{index}.xml"] = chart_xml
        parts[f"word/charts/_rels/chart{index}.xml.rels"] = (
            f'{XML_DECLARATION}\n<Relationships xmlns="{_REL_NS}">'
            f'<Relationship Id="rId1" Type="{REL_TYPE_PACKAGE}" '
            f'Target="../embeddings/{workbook_name(index)}"/></Relationships>'
        )
        parts[f"word/embeddings/{workbook_name(index)}"] = workbook

    defaults = (
        '<Default Extension="rels" ContentType="application/vnd.openxmlformats-package.relationships+xml"/>'
        '<Default Extension="xml" ContentType="application/xml"/>'
    )
    if xlsx_default:
        defaults += f'<Default Extension="xlsx" ContentType="{XLSX_CONTENT_TYPE}"/>'

    document = (
        f"{XML_DECLARATION}\n"
        f'<w:document xmlns:w="{_W_NS}" xmlns:r="{_R_NS}" xmlns:wp="{_WP_NS}" '
        f'xmlns:wp14="{_WP14_NS}" xmlns:a="{_A_NS}" xmlns:c="{_C_NS}">'
        f'<w:body>{"".join(paragraphs)}<w:sectPr/></w:body></w:document>'
    )
    base = {
        "[Content_Types].xml": (
            f'{XML_DECLARATION}\n<Types xmlns="{_CT_NS}">{defaults}{"".join(overrides)}</Types>'
        ),
        "_rels/.rels": (
            f'{XML_DECLARATION}\n<Relationships xmlns="{_REL_NS}">'
            f'<Relationship Id="rId1" Type="{_OFFICE_DOCUMENT}" Target="word/document.xml"/>'
            "</Relationships>"
        ),
        "word/document.xml": document,
        "word/_rels/document.xml.rels": (
            f'{XML_DECLARATION}\n<Relationships xmlns="{_REL_NS}">'
            f'{"".join(document_rels)}</Relationships>'
        ),
        "word/styles.xml": f'{XML_DECLARATION}\n<w:styles xmlns:w="{_W_NS}"/>',
    }
    base.update(parts)
    return _zip(base)


def read_entry(docx: bytes | Path, name: str) -> bytes:
    if isinstance(docx, Path):
        docx = docx.read_bytes()
    with zipfile.ZipFile(io.BytesIO(docx)) as zf:
        return zf.read(name)


# --- fixtures --------------------------------------------------------------

SAMPLE_CATEGORIES = ["Old 1", "Old 2"]
SAMPLE_SERIES = [("Critical", [1, 2]), ("Non-critical", [2, 3])]
LINE_CATEGORIES = ["Jan", "Feb", "Mar"]
LINE_SERIES = [("Open", [5, 4, 3])]


@pytest.fixture
def chart_xml():
    return build_chart_xml


@pytest.fixture
def make_workbook():
    return build_workbook


@pytest.fixture
def make_inline_workbook():
    return build_inline_workbook


@pytest.fixture
def make_shared_workbook():
    return build_shared_workbook


@pytest.fixture
def make_docx():
    return build_docx


@pytest.fixture
def entry():
    return read_entry


@pytest.fixture
def sample_docx_bytes() -> bytes:
    """
    Two charts: a titled bar chart backed by a shared-string workbook and a
    line chart backed by an inline-string workbook.
    """
    return build_docx(
        [
            (
                build_chart_xml(
                    SAMPLE_CATEGORIES,
                    SAMPLE_SERIES,
                    title="Findings",
                    category_axis_title="Device",
                    value_axis_title="Count",
                ),
                build_shared_workbook(SAMPLE_CATEGORIES, SAMPLE_SERIES),
            ),
            (
                build_chart_xml(LINE_CATEGORIES, LINE_SERIES, kind="line"),
                build_inline_workbook(LINE_CATEGORIES, LINE_SERIES),
            ),
        ]
    )


@pytest.fixture
def sample_docx(tmp_path: Path, sample_docx_bytes: bytes) -> Path:
    path = tmp_path / "report.docx"
    path.write_bytes(sample_docx_bytes)
    return path
