# XML namespaces used by the parts this package touches
NAMESPACES = {
    "w": "http://schemas.openxmlformats.org/wordprocessingml/2006/main",
    "r": "http://schemas.openxmlformats.org/officeDocument/2006/relationships",
    "a": "http://schemas.openxmlformats.org/drawingml/2006/main",
    "c": "http://schemas.openxmlformats.org/drawingml/2006/chart",
    "wp": "http://schemas.openxmlformats.org/drawingml/2006/wordprocessingDrawing",
    "rel": "http://schemas.openxmlformats.org/package/2006/relationships",
    "ct": "http://schemas.openxmlformats.org/package/2006/content-types",
    "s": "http://schemas.openxmlformats.org/spreadsheetml/2006/main",
}

OFFICE_DOCUMENT_RELS = (
    "http://schemas.openxmlformats.org/officeDocument/2006/relationships"
)
REL_TYPE_CHART = OFFICE_DOCUMENT_RELS + "/chart"
REL_TYPE_PACKAGE = OFFICE_DOCUMENT_RELS + "/package"

CHART_CONTENT_TYPE = (
    "application/vnd.openxmlformats-officedocument.drawingml.chart+xml"
)
XLSX_CONTENT_TYPE = (
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
)

# Package layout
CONTENT_TYPES_PATH = "[Content_Types].xml"
DOCUMENT_PATH = "word/document.xml"
DOCUMENT_RELS_PATH = "word/_rels/document.xml.rels"
CHARTS_DIR = "word/charts"

REQUIRED_PARTS = (DOCUMENT_PATH, DOCUMENT_RELS_PATH, CONTENT_TYPES_PATH)

XML_DECLARATION = '<?xml version="1.0" encoding="UTF-8" standalone="yes"?>'
