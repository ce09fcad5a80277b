class DocxChartsError(Exception):
    """Base class for every error raised while editing a package."""

    def __init__(self, message: str, *, cause: Exception = None, **context):
        self.context = context
        super().__init__(message)
        # Use exception chaining if cause is provided
        if cause is not None:
            self.__cause__ = cause


class XmlSyntaxError(DocxChartsError):
    """Raised when a part is not well-formed XML."""

    def __init__(self, message: str, *, part: str | None = None, cause: Exception = None):
        self.part = part
        if part:
            message = f"{part}: {message}"
        super().__init__(message, cause=cause, part=part)


class ChartDataValidationError(DocxChartsError):
    """Raised when chart data fails structural validation before any write."""


class PackageError(DocxChartsError):
    """Raised when the outer package is missing required parts or is unreadable."""


class PackageZipBombError(PackageError):
    """Raised when a ZIP container trips one of the ZIP-bomb heuristics."""


class ChartNotFoundError(DocxChartsError):
    """Raised when chart{N}.xml does not exist in the package."""

    def __init__(self, chart_index: int, message: str = None, *, cause: Exception = None):
        self.chart_index = chart_index
        if message is None:
            message = f"Chart not found: chart{chart_index}.xml"
        super().__init__(message, cause=cause, chart_index=chart_index)


class RelationshipError(DocxChartsError):
    """Raised when a .rels part is missing, unparsable, or lacks an ID."""

    def __init__(
        self,
        message: str,
        *,
        rel_id: str | None = None,
        rels_path: str | None = None,
        cause: Exception = None,
    ):
        self.rel_id = rel_id
        self.rels_path = rels_path
        super().__init__(message, cause=cause, rel_id=rel_id, rels_path=rels_path)


class WorkbookResolutionError(RelationshipError):
    """Raised when a chart's externalData link does not lead to a workbook."""

    def __init__(
        self,
        chart_index: int,
        message: str,
        *,
        rel_id: str | None = None,
        cause: Exception = None,
    ):
        self.chart_index = chart_index
        super().__init__(
            f"chart{chart_index}: {message}", rel_id=rel_id, cause=cause
        )
        self.context["chart_index"] = chart_index


class WorkbookSyncError(DocxChartsError):
    """Raised when the embedded workbook cannot be rewritten."""


class ChartParseError(DocxChartsError):
    """Raised when chart XML is structurally unusable."""


class ChartMutationError(DocxChartsError):
    """Raised when chart XML cannot be rewritten (e.g. unsupported chart type)."""


class ChartCopyError(DocxChartsError):
    """Raised when a chart cannot be duplicated."""

    def __init__(self, source_index: int, message: str, *, cause: Exception = None):
        self.source_index = source_index
        super().__init__(
            f"copy chart{source_index}: {message}",
            cause=cause,
            source_index=source_index,
        )


class ChartInsertError(DocxChartsError):
    """Raised when a new chart cannot be added to the document."""
