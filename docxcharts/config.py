from dataclasses import dataclass


@dataclass(frozen=True)
class ChartDrawingDefaults:
    """
    Defaults used when a chart drawing has to be generated.

    Extents are in EMU (914400 per inch); the default frame spans the text
    width of a Letter page with 1" margins.
    """

    extent_cx: int = 6_099_523
    extent_cy: int = 3_340_467
    # wp14:anchorId / wp14:editId are derived from the chart index
    anchor_id_base: int = 0x30000000
    edit_id_base: int = 0x0D000000
    id_increment: int = 0x1000
    sheet_name: str = "Sheet1"


DEFAULT_DRAWING = ChartDrawingDefaults()
