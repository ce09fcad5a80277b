"""
docx-charts: chart editing for Word documents.

A Python library for reading and rewriting the charts embedded in .docx
files. A chart's cached data, its embedded workbook and the package's
relationship and content-type parts are kept consistent when a chart is
updated, duplicated or inserted.
"""

from pathlib import Path

from docxcharts.charts.chart_insert import ChartOptions
from docxcharts.charts.data_types import (
    ChartData,
    ChartKind,
    ChartUpdateResult,
    SeriesData,
    TitleUpdate,
)
from docxcharts.exceptions import (
    ChartCopyError,
    ChartDataValidationError,
    ChartInsertError,
    ChartMutationError,
    ChartNotFoundError,
    ChartParseError,
    DocxChartsError,
    PackageError,
    PackageZipBombError,
    RelationshipError,
    WorkbookResolutionError,
    WorkbookSyncError,
)
from docxcharts.package.docx_package import DocxPackage, open_docx

__version__ = "0.1.0"


def read_charts(path: str | Path) -> list[ChartData]:
    """
    Read the cached data of every chart in a .docx file.

    Args:
        path: Path to the .docx file.

    Returns:
        One ``ChartData`` per ``word/charts/chartN.xml``, ordered by N.

    Example:
        >>> import docxcharts
        >>> for chart in docxcharts.read_charts("report.docx"):
        ...     print(chart.chart_title, chart.categories)
    """
    with open_docx(path) as package:
        return [
            package.get_chart_data(index)
            for index in package.chart_indexes()
        ]


def update_chart_bytes(docx: bytes, chart_index: int, data: ChartData) -> bytes:
    """Update one chart of an in-memory .docx and return the new document bytes."""
    with DocxPackage.from_bytes(docx) as package:
        package.update_chart(chart_index, data)
        return package.to_bytes()


__all__ = [
    # Version
    "__version__",
    # Main functions
    "open_docx",
    "read_charts",
    "update_chart_bytes",
    "DocxPackage",
    # Data types
    "ChartData",
    "ChartKind",
    "ChartOptions",
    "ChartUpdateResult",
    "SeriesData",
    "TitleUpdate",
    # Exceptions
    "DocxChartsError",
    "ChartCopyError",
    "ChartDataValidationError",
    "ChartInsertError",
    "ChartMutationError",
    "ChartNotFoundError",
    "ChartParseError",
    "PackageError",
    "PackageZipBombError",
    "RelationshipError",
    "WorkbookResolutionError",
    "WorkbookSyncError",
]
