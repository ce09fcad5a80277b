"""
DOCX package façade
===================

``DocxPackage`` owns one extracted .docx: the archive is validated against
ZIP-bomb heuristics, unpacked into a private temporary directory, edited
part by part, and zipped again on ``save``.

Every operation reads the parts it needs from disk and writes its changes
back before returning; nothing is cached between calls. A package is meant
for one editing session on one thread. Concurrent calls on the same instance
can interleave writes to the shared relationship and content-type parts.

Usage
-----
    >>> from docxcharts import ChartData, ChartKind, SeriesData, open_docx
    >>>
    >>> with open_docx("report.docx") as package:
    ...     print(package.get_chart_data(1).categories)
    ...     package.update_chart(
    ...         1,
    ...         ChartData(
    ...             categories=["Device A", "Device B"],
    ...             series=[SeriesData("Critical", [4, 3])],
    ...         ),
    ...     )
    ...     copy_index = package.copy_chart(1)
    ...     new_index = package.insert_chart(
    ...         ChartData(
    ...             categories=["Q1", "Q2"],
    ...             series=[SeriesData("Open", [5, 2])],
    ...             chart_title="Open findings",
    ...         ),
    ...         kind=ChartKind.LINE,
    ...     )
    ...     package.save("report-updated.docx")
"""

import datetime
import io
import logging
import shutil
import tempfile
import zipfile
from pathlib import Path
from typing import BinaryIO, List, Optional

from docxcharts.charts.chart_copy import copy_chart
from docxcharts.charts.chart_insert import ChartOptions, insert_chart
from docxcharts.charts.chart_mutation import update_chart_xml
from docxcharts.charts.chart_parser import parse_chart
from docxcharts.charts.data_types import ChartData, ChartKind, ChartUpdateResult
from docxcharts.config import DEFAULT_DRAWING, ChartDrawingDefaults
from docxcharts.exceptions import ChartNotFoundError, PackageError
from docxcharts.package.allocator import IdAllocator, chart_indexes
from docxcharts.package.constants import (
    CHARTS_DIR,
    CONTENT_TYPES_PATH,
    REQUIRED_PARTS,
)
from docxcharts.util.encryption import is_ooxml_encrypted
from docxcharts.util.zip_bomb import (
    DEFAULT_ZIP_BOMB_LIMITS,
    ZipBombLimits,
    extract_zip_safely,
)
from docxcharts.workbook.workbook_reader import read_workbook_data
from docxcharts.workbook.workbook_sync import resolve_workbook, sync_workbook

logger = logging.getLogger(__name__)

_BLANK_CONTENT_TYPES = """<?xml version="1.0" encoding="UTF-8" standalone="yes"?>
<Types xmlns="http://schemas.openxmlformats.org/package/2006/content-types">\
<Default Extension="rels" ContentType="application/vnd.openxmlformats-package.relationships+xml"/>\
<Default Extension="xml" ContentType="application/xml"/>\
<Override PartName="/word/document.xml" ContentType="application/vnd.openxmlformats-officedocument.wordprocessingml.document.main+xml"/>\
<Override PartName="/docProps/core.xml" ContentType="application/vnd.openxmlformats-package.core-properties+xml"/>\
<Override PartName="/docProps/app.xml" ContentType="application/vnd.openxmlformats-officedocument.extended-properties+xml"/>\
</Types>"""

_BLANK_PACKAGE_RELS = """<?xml version="1.0" encoding="UTF-8" standalone="yes"?>
<Relationships xmlns="http://schemas.openxmlformats.org/package/2006/relationships">\
<Relationship Id="rId1" Type="http://schemas.openxmlformats.org/officeDocument/2006/relationships/officeDocument" Target="word/document.xml"/>\
<Relationship Id="rId2" Type="http://schemas.openxmlformats.org/package/2006/relationships/metadata/core-properties" Target="docProps/core.xml"/>\
<Relationship Id="rId3" Type="http://schemas.openxmlformats.org/officeDocument/2006/relationships/extended-properties" Target="docProps/app.xml"/>\
</Relationships>"""

_BLANK_DOCUMENT = """<?xml version="1.0" encoding="UTF-8" standalone="yes"?>
<w:document \
xmlns:mc="http://schemas.openxmlformats.org/markup-compatibility/2006" \
xmlns:r="http://schemas.openxmlformats.org/officeDocument/2006/relationships" \
xmlns:wp14="http://schemas.microsoft.com/office/word/2010/wordprocessingDrawing" \
xmlns:wp="http://schemas.openxmlformats.org/drawingml/2006/wordprocessingDrawing" \
xmlns:w="http://schemas.openxmlformats.org/wordprocessingml/2006/main" \
xmlns:w14="http://schemas.microsoft.com/office/word/2010/wordml" \
mc:Ignorable="w14 wp14">\
<w:body><w:sectPr><w:pgSz w:w="12240" w:h="15840"/>\
<w:pgMar w:top="1440" w:right="1440" w:bottom="1440" w:left="1440" w:header="720" w:footer="720" w:gutter="0"/>\
</w:sectPr></w:body></w:document>"""

_BLANK_DOCUMENT_RELS = """<?xml version="1.0" encoding="UTF-8" standalone="yes"?>
<Relationships xmlns="http://schemas.openxmlformats.org/package/2006/relationships"></Relationships>"""

_BLANK_CORE = """<?xml version="1.0" encoding="UTF-8" standalone="yes"?>
<cp:coreProperties \
xmlns:cp="http://schemas.openxmlformats.org/package/2006/metadata/core-properties" \
xmlns:dc="http://purl.org/dc/elements/1.1/" xmlns:dcterms="http://purl.org/dc/terms/" \
xmlns:xsi="http://www.w3.org/2001/XMLSchema-instance">\
<cp:revision>1</cp:revision>\
<dcterms:created xsi:type="dcterms:W3CDTF">{now}</dcterms:created>\
<dcterms:modified xsi:type="dcterms:W3CDTF">{now}</dcterms:modified>\
</cp:coreProperties>"""

_BLANK_APP = """<?xml version="1.0" encoding="UTF-8" standalone="yes"?>
<Properties xmlns="http://schemas.openxmlformats.org/officeDocument/2006/extended-properties" \
xmlns:vt="http://schemas.openxmlformats.org/officeDocument/2006/docPropsVTypes">\
<Application>docx-charts</Application><DocSecurity>0</DocSecurity></Properties>"""


class DocxPackage:
    """An extracted .docx being edited in a temporary directory."""

    def __init__(
        self,
        root: Path,
        *,
        source: Optional[str] = None,
        entry_order: Optional[List[str]] = None,
        limits: ZipBombLimits = DEFAULT_ZIP_BOMB_LIMITS,
        drawing: ChartDrawingDefaults = DEFAULT_DRAWING,
    ):
        self.root = root
        self.source = source
        self._entry_order = entry_order or []
        self._limits = limits
        self._drawing = drawing
        self._allocator = IdAllocator()
        self._closed = False

    @classmethod
    def open(cls, path: str | Path, **kwargs) -> "DocxPackage":
        """Open a .docx file from disk."""
        path = Path(path)
        with path.open("rb") as handle:
            return cls.from_stream(handle, source=str(path), **kwargs)

    @classmethod
    def from_bytes(cls, data: bytes, **kwargs) -> "DocxPackage":
        """Open a .docx held in memory (an upload, a database blob...)."""
        if not data:
            raise ValueError("docx data is empty")
        return cls.from_stream(io.BytesIO(data), **kwargs)

    @classmethod
    def from_stream(
        cls,
        stream: BinaryIO,
        *,
        source: Optional[str] = None,
        limits: ZipBombLimits = DEFAULT_ZIP_BOMB_LIMITS,
        drawing: ChartDrawingDefaults = DEFAULT_DRAWING,
    ) -> "DocxPackage":
        """Open a .docx from a binary stream; the stream is read to the end."""
        if stream is None:
            raise ValueError("stream is None")
        file_like = io.BytesIO(stream.read())
        label = source or "<stream>"

        if is_ooxml_encrypted(file_like):
            raise PackageError(f"{label} is password protected and cannot be edited")

        root = Path(tempfile.mkdtemp(prefix="docx-update-"))
        try:
            names = extract_zip_safely(file_like, root, limits=limits, source=label)
            package = cls(
                root, source=source, entry_order=names, limits=limits, drawing=drawing
            )
            package.validate_structure()
        except zipfile.BadZipFile as exc:
            shutil.rmtree(root, ignore_errors=True)
            raise PackageError(f"{label} is not a valid docx package", cause=exc) from exc
        except Exception:
            shutil.rmtree(root, ignore_errors=True)
            raise

        logger.debug(f"Extracted {label} ({len(names)} entries) to {root}")
        return package

    @classmethod
    def blank(
        cls,
        *,
        limits: ZipBombLimits = DEFAULT_ZIP_BOMB_LIMITS,
        drawing: ChartDrawingDefaults = DEFAULT_DRAWING,
    ) -> "DocxPackage":
        """A minimal empty document, built without a template."""
        now = datetime.datetime.now(datetime.timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
        parts = {
            CONTENT_TYPES_PATH: _BLANK_CONTENT_TYPES,
            "_rels/.rels": _BLANK_PACKAGE_RELS,
            "word/document.xml": _BLANK_DOCUMENT,
            "word/_rels/document.xml.rels": _BLANK_DOCUMENT_RELS,
            "docProps/core.xml": _BLANK_CORE.format(now=now),
            "docProps/app.xml": _BLANK_APP,
        }
        root = Path(tempfile.mkdtemp(prefix="docx-blank-"))
        for name, content in parts.items():
            target = root / name
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content, encoding="utf-8")
        package = cls(root, entry_order=list(parts), limits=limits, drawing=drawing)
        package.validate_structure()
        return package

    def _ensure_open(self) -> None:
        if self._closed:
            raise PackageError("package has been cleaned up")

    def validate_structure(self) -> None:
        """Check that the parts every .docx needs are present."""
        for part in REQUIRED_PARTS:
            if not (self.root / part).is_file():
                raise PackageError(f"invalid DOCX: missing required file {part}")

    @property
    def charts_dir(self) -> Path:
        return self.root / CHARTS_DIR

    def chart_indexes(self) -> List[int]:
        """
        Indexes N of the ``chartN.xml`` parts present, ascending.

        Numbering can have gaps once charts have been removed by hand, so
        iterate over these rather than ``range(1, chart_count() + 1)``.
        """
        self._ensure_open()
        return chart_indexes(self.charts_dir)

    def chart_count(self) -> int:
        """Number of ``chartN.xml`` parts in the package (0 when there are none)."""
        return len(self.chart_indexes())

    def chart_path(self, chart_index: int) -> Path:
        self._ensure_open()
        if chart_index < 1:
            raise ValueError("chart index must be >= 1")
        path = self.charts_dir / f"chart{chart_index}.xml"
        if not path.is_file():
            raise ChartNotFoundError(chart_index)
        return path

    def get_chart_data(self, chart_index: int) -> ChartData:
        """Categories, series and titles cached in chart ``chart_index``."""
        return parse_chart(self.chart_path(chart_index).read_bytes())

    def update_chart(self, chart_index: int, data: ChartData) -> ChartUpdateResult:
        """
        Rewrite chart ``chart_index`` and its embedded workbook from ``data``.

        The data is validated and the workbook resolved before anything is
        written; the chart part is written last, after the workbook.
        """
        if chart_index < 1:
            raise ValueError("chart index must be >= 1")
        data.validate()
        chart_path = self.chart_path(chart_index)
        logger.debug(f"Updating chart {chart_index}")

        workbook_path = resolve_workbook(self.root, chart_index)
        content, result = update_chart_xml(
            chart_path.read_bytes(), data, chart_index=chart_index
        )
        sync_workbook(
            workbook_path,
            data,
            numeric_categories=result.kind is ChartKind.SCATTER,
            limits=self._limits,
        )
        chart_path.write_bytes(content)

        result.workbook_path = workbook_path
        logger.info(
            f"Updated chart {chart_index}: {result.series_count} series, "
            f"{result.category_count} categories"
        )
        return result

    def copy_chart(self, chart_index: int) -> int:
        """Duplicate chart ``chart_index`` (with its own workbook); returns the new index."""
        self._ensure_open()
        if chart_index < 1:
            raise ValueError("source chart index must be >= 1")
        return copy_chart(
            self.root, chart_index, allocator=self._allocator, drawing=self._drawing
        )

    def insert_chart(
        self,
        data: ChartData,
        options: Optional[ChartOptions] = None,
        **option_fields,
    ) -> int:
        """
        Add a new chart drawn from ``data``; returns its index.

        ``options`` (or the same fields as keywords, e.g. ``kind=ChartKind.LINE,
        after_text="Summary"``) choose the chart type, legend, size and
        placement. The chart gets its own embedded workbook.
        """
        self._ensure_open()
        if options is not None and option_fields:
            raise ValueError("pass either options or option keywords, not both")
        if options is None:
            options = ChartOptions(**option_fields)
        return insert_chart(
            self.root, data, options, allocator=self._allocator, drawing=self._drawing
        )

    def get_workbook_data(self, chart_index: int) -> ChartData:
        """The grid of the workbook embedded behind chart ``chart_index``."""
        self.chart_path(chart_index)
        return read_workbook_data(
            resolve_workbook(self.root, chart_index), limits=self._limits
        )

    def _ordered_entries(self) -> List[str]:
        present = {
            path.relative_to(self.root).as_posix()
            for path in self.root.rglob("*")
            if path.is_file()
        }
        ordered = [name for name in self._entry_order if name in present]
        ordered += sorted(present.difference(ordered))
        # [Content_Types].xml goes first, as Office writes it
        if CONTENT_TYPES_PATH in ordered:
            ordered.remove(CONTENT_TYPES_PATH)
            ordered.insert(0, CONTENT_TYPES_PATH)
        return ordered

    def save_to_stream(self, stream: BinaryIO) -> None:
        """Write the package as a .docx archive to ``stream``."""
        self._ensure_open()
        if stream is None:
            raise ValueError("stream is None")
        with zipfile.ZipFile(stream, "w", zipfile.ZIP_DEFLATED) as zf:
            for name in self._ordered_entries():
                zf.write(self.root / name, arcname=name)

    def to_bytes(self) -> bytes:
        buffer = io.BytesIO()
        self.save_to_stream(buffer)
        return buffer.getvalue()

    def save(self, output_path: str | Path) -> Path:
        """Write the package to ``output_path``, creating parent directories."""
        if not output_path:
            raise ValueError("output path is required")
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_bytes(self.to_bytes())
        logger.info(f"Saved {output_path}")
        return output_path

    def cleanup(self) -> None:
        """Remove the temporary directory; the package is unusable afterwards."""
        if self._closed:
            return
        shutil.rmtree(self.root, ignore_errors=True)
        self._closed = True

    def __enter__(self) -> "DocxPackage":
        return self

    def __exit__(self, *exc_info) -> None:
        self.cleanup()


def open_docx(path: str | Path, **kwargs) -> DocxPackage:
    """Open ``path`` for editing; use as a context manager to clean up."""
    return DocxPackage.open(path, **kwargs)
