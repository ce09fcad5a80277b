"""
Chart Part Engine
=================

Reading and rewriting DrawingML chart parts (``word/charts/chartN.xml``)
without a schema-bound object model; charts can also be copied or created.

Chart XML is parsed into a plain element tree that keeps qualified names
exactly as written, so the same code handles charts that use the usual
``c:`` prefix and charts whose chart namespace is the default namespace.

Modules
-------

xml_tree:
    Parsing, serialization and prefix-aware lookup helpers.

chart_parser:
    Categories, series, titles and chart type from the cached chart data.

chart_mutation:
    Series regeneration and title replacement from a ``ChartData``.

chart_copy:
    Duplication of a chart, its relationships and its embedded workbook.

chart_insert:
    New charts: chart part, embedded workbook and inline drawing.

Supported chart types: bar (including column), line, scatter, pie and area.
"""
