import enum
import math
from dataclasses import asdict, dataclass, field
from decimal import Decimal
from pathlib import Path
from typing import List, Optional

from docxcharts.exceptions import ChartDataValidationError, ChartParseError

_HEX_COLOR_CHARS = set("0123456789abcdefABCDEF")


def format_number(value: float) -> str:
    """
    Shortest plain decimal text for a cached or cell value: integral values
    without a fraction, never exponent notation.
    """
    value = float(value)
    if value.is_integer():
        return str(int(value))
    text = repr(value)
    if "e" in text:
        text = format(Decimal(text), "f")
    return text


class ChartKind(str, enum.Enum):
    """Chart families the engine can read and rewrite."""

    BAR = "bar"
    LINE = "line"
    SCATTER = "scatter"
    PIE = "pie"
    AREA = "area"

    @property
    def element_name(self) -> str:
        """Local name of the plot-area element (``barChart``, ``lineChart``...)."""
        return f"{self.value}Chart"


# Scan order used to find the chart-type element of a plot area
CHART_TYPE_SCAN_ORDER = (
    ChartKind.BAR,
    ChartKind.LINE,
    ChartKind.SCATTER,
    ChartKind.PIE,
    ChartKind.AREA,
)


@dataclass
class SeriesData:
    name: str
    values: List[float] = field(default_factory=list)
    # 6-digit hex RGB fill, e.g. "FF0000"
    color: Optional[str] = None


@dataclass
class ChartData:
    """
    The semantic content of one chart part.

    ``categories`` are the shared category labels; for scatter charts they
    are the textual form of the numeric X values (see ``x_values``). Titles
    left empty are not touched when the data is written to a chart.
    """

    categories: List[str] = field(default_factory=list)
    series: List[SeriesData] = field(default_factory=list)
    chart_title: str = ""
    category_axis_title: str = ""
    value_axis_title: str = ""
    kind: Optional[ChartKind] = None

    def validate(self) -> None:
        """Structural checks run before any part is touched."""
        if len(self.categories) == 0:
            raise ChartDataValidationError("categories cannot be empty")
        if len(self.series) == 0:
            raise ChartDataValidationError("series cannot be empty")
        for i, series in enumerate(self.series):
            if not series.name or not series.name.strip():
                raise ChartDataValidationError(
                    f"series[{i}] name cannot be empty", series_index=i
                )
            if len(series.values) != len(self.categories):
                raise ChartDataValidationError(
                    f"series[{i}] values length ({len(series.values)}) must match "
                    f"categories length ({len(self.categories)})",
                    series_index=i,
                )
            if not all(math.isfinite(value) for value in series.values):
                raise ChartDataValidationError(
                    f"series[{i}] values must be finite numbers", series_index=i
                )
            if series.color is not None and (
                len(series.color) != 6 or not set(series.color) <= _HEX_COLOR_CHARS
            ):
                raise ChartDataValidationError(
                    f"series[{i}] color must be a 6-digit hex RGB value, got {series.color!r}",
                    series_index=i,
                )

    def x_values(self) -> List[float]:
        """Categories as numbers, the way scatter charts store them."""
        values = []
        for category in self.categories:
            clean = category.strip()
            try:
                values.append(float(clean))
            except ValueError as exc:
                raise ChartParseError(
                    f"scatter chart categories must be numeric, got {category!r}",
                    cause=exc,
                ) from exc
        return values

    @property
    def series_names(self) -> List[str]:
        return [series.name for series in self.series]

    def to_dict(self) -> dict:
        data = asdict(self)
        data["kind"] = self.kind.value if self.kind else None
        return data


class TitleUpdate(str, enum.Enum):
    NOT_REQUESTED = "not_requested"
    UPDATED = "updated"
    # the chart has no title element (or no text node in it) to write into
    ANCHOR_NOT_FOUND = "anchor_not_found"


@dataclass
class ChartUpdateResult:
    """What an update actually changed, so ignored title requests are visible."""

    chart_index: Optional[int] = None
    kind: Optional[ChartKind] = None
    series_count: int = 0
    category_count: int = 0
    chart_title: TitleUpdate = TitleUpdate.NOT_REQUESTED
    category_axis_title: TitleUpdate = TitleUpdate.NOT_REQUESTED
    value_axis_title: TitleUpdate = TitleUpdate.NOT_REQUESTED
    workbook_path: Optional[Path] = None

    @property
    def skipped_titles(self) -> List[str]:
        """Names of the title fields that were requested but had no anchor."""
        return [
            name
            for name in ("chart_title", "category_axis_title", "value_axis_title")
            if getattr(self, name) is TitleUpdate.ANCHOR_NOT_FOUND
        ]
