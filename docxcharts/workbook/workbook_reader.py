import datetime
import io
import logging
import zipfile
from pathlib import Path
from typing import Any, List, Sequence

from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException

from docxcharts.charts.data_types import ChartData, SeriesData, format_number
from docxcharts.exceptions import PackageZipBombError, WorkbookSyncError
from docxcharts.util.zip_bomb import DEFAULT_ZIP_BOMB_LIMITS, ZipBombLimits, open_zipfile

logger = logging.getLogger(__name__)


def _cell_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, (int, float)):
        return format_number(value)
    if isinstance(value, (datetime.datetime, datetime.date, datetime.time)):
        return value.isoformat()
    return str(value)


def _cell_number(value: Any) -> float:
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float)):
        return float(value)
    try:
        return float(str(value).strip())
    except (TypeError, ValueError):
        return 0.0


def _last_filled(row: Sequence[Any]) -> int:
    for i in range(len(row) - 1, -1, -1):
        if row[i] is not None and _cell_text(row[i]).strip():
            return i + 1
    return 0


def read_workbook_data(
    workbook_path: Path, *, limits: ZipBombLimits = DEFAULT_ZIP_BOMB_LIMITS
) -> ChartData:
    """
    Read the chart grid back from the first worksheet of an embedded workbook.

    Row 1 from column B gives the series names, column A from row 2 the
    categories. Trailing empty rows are ignored; empty value cells read as 0.
    """
    content = workbook_path.read_bytes()
    try:
        # openpyxl does its own unzipping; check the container first
        open_zipfile(io.BytesIO(content), limits=limits, source=workbook_path.name).close()
        workbook = load_workbook(io.BytesIO(content), data_only=True)
    except PackageZipBombError as exc:
        raise WorkbookSyncError(
            f"Refusing to open embedded workbook {workbook_path.name}: {exc}", cause=exc
        ) from exc
    except (InvalidFileException, zipfile.BadZipFile, KeyError, ValueError) as exc:
        raise WorkbookSyncError(
            f"Failed to read embedded workbook {workbook_path.name}", cause=exc
        ) from exc

    try:
        sheet = workbook.worksheets[0]
        logger.debug(f"Reading sheet: [{sheet.title}] of {workbook_path.name}")
        rows: List[tuple] = list(sheet.iter_rows(values_only=True))
    finally:
        workbook.close()

    if not rows:
        return ChartData()

    header = rows[0]
    series_count = max(_last_filled(header) - 1, 0)
    body = list(rows[1:])
    while body and _last_filled(body[-1]) == 0:
        body.pop()

    data = ChartData(
        categories=[_cell_text(row[0] if row else None) for row in body],
        series=[
            SeriesData(name=_cell_text(header[column]), values=[])
            for column in range(1, series_count + 1)
        ],
    )
    for row in body:
        for j, series in enumerate(data.series):
            column = j + 1
            series.values.append(_cell_number(row[column]) if column < len(row) else 0.0)
    return data
