"""
Identifier allocation for package parts.

Every allocator here is the same scan: collect the numeric suffixes matched
by a pattern, take the maximum, add one. The patterns cover relationship IDs
(``rId7``), chart part names (``chart3.xml``), drawing-object IDs
(``<wp:docPr id="12" .../>``), bookmark IDs and numbered embedding names.

``IdAllocator`` adds a per-package high-water mark on top of the stateless
scan so a number handed out once is never handed out again during the same
editing session, even if the part that used it disappears in between.
"""

import logging
import re
from pathlib import Path
from typing import Iterable

logger = logging.getLogger(__name__)

REL_ID_PATTERN = re.compile(r"^rId(\d+)$")
CHART_FILE_PATTERN = re.compile(r"^chart(\d+)\.xml$")
DRAWING_ID_PATTERN = re.compile(r"<(?:[\w.-]+:)?docPr\b[^>]*?\sid=\"(\d+)\"")
BOOKMARK_ID_PATTERN = re.compile(
    r"<(?:[\w.-]+:)?bookmark(?:Start|End)\b[^>]*?\s(?:[\w.-]+:)?id=\"(\d+)\""
)
TRAILING_NUMBER_PATTERN = re.compile(r"^(.*?)(\d+)$")


def next_numeric_id(
    candidates: Iterable[str], pattern: re.Pattern, *, floor: int = 0
) -> int:
    """
    Return one more than the highest number captured by ``pattern``.

    Each candidate string may contain several matches (a whole XML part) or
    exactly one (an ID or a filename). ``floor`` is the highest number already
    issued by the caller; the result is always above it.
    """
    highest = floor
    for candidate in candidates:
        for match in pattern.finditer(candidate):
            highest = max(highest, int(match.group(1)))
    return highest + 1


def next_relationship_id(existing_ids: Iterable[str], *, floor: int = 0) -> str:
    return f"rId{next_numeric_id(existing_ids, REL_ID_PATTERN, floor=floor)}"


def chart_indexes(charts_dir: Path) -> list[int]:
    """1-based indexes of the chart{N}.xml parts present in ``charts_dir``."""
    if not charts_dir.is_dir():
        return []
    indexes = []
    for entry in charts_dir.iterdir():
        match = CHART_FILE_PATTERN.match(entry.name)
        if match and entry.is_file():
            indexes.append(int(match.group(1)))
    return sorted(indexes)


def next_chart_index(charts_dir: Path, *, floor: int = 0) -> int:
    return max(chart_indexes(charts_dir) + [floor]) + 1


def next_drawing_id(document_xml: str, *, floor: int = 0) -> int:
    return next_numeric_id([document_xml], DRAWING_ID_PATTERN, floor=floor)


def next_bookmark_id(document_xml: str, *, floor: int = 0) -> int:
    return next_numeric_id([document_xml], BOOKMARK_ID_PATTERN, floor=floor)


def numbered_filename(source_name: str, number: int) -> str:
    """
    Rewrite the trailing number of a filename stem, or append one.

    ``Microsoft_Excel_Worksheet1.xlsx`` with 4 gives
    ``Microsoft_Excel_Worksheet4.xlsx``; ``data.xlsx`` gives ``data4.xlsx``.
    """
    path = Path(source_name)
    match = TRAILING_NUMBER_PATTERN.match(path.stem)
    stem = match.group(1) if match else path.stem
    return f"{stem}{number}{path.suffix}"


def free_numbered_path(directory: Path, source_name: str, preferred: int) -> Path:
    """
    ``numbered_filename`` in ``directory``, moving to the next free number
    when the preferred one is already taken.
    """
    candidate = directory / numbered_filename(source_name, preferred)
    if not candidate.exists():
        return candidate

    stem = TRAILING_NUMBER_PATTERN.match(Path(source_name).stem)
    prefix = re.escape(stem.group(1) if stem else Path(source_name).stem)
    pattern = re.compile(
        rf"^{prefix}(\d+){re.escape(Path(source_name).suffix)}$"
    )
    number = next_numeric_id(
        (entry.name for entry in directory.iterdir()), pattern, floor=preferred
    )
    candidate = directory / numbered_filename(source_name, number)
    logger.debug(f"{directory / numbered_filename(source_name, preferred)} taken, using {candidate.name}")
    return candidate


class IdAllocator:
    """
    Session-scoped allocator: one per open package.

    Wraps the stateless scans and remembers the highest number issued per
    kind, so numbers are never reused within one editing session.
    """

    def __init__(self):
        self._issued: dict[str, int] = {}

    def _record(self, kind: str, number: int) -> int:
        self._issued[kind] = max(self._issued.get(kind, 0), number)
        return number

    def relationship_id(self, rels_key: str, existing_ids: Iterable[str]) -> str:
        """Next ``rId<N>`` for the .rels part identified by ``rels_key``."""
        kind = f"rel:{rels_key}"
        number = next_numeric_id(
            existing_ids, REL_ID_PATTERN, floor=self._issued.get(kind, 0)
        )
        return f"rId{self._record(kind, number)}"

    def chart_index(self, charts_dir: Path) -> int:
        number = next_chart_index(charts_dir, floor=self._issued.get("chart", 0))
        return self._record("chart", number)

    def drawing_id(self, document_xml: str) -> int:
        number = next_drawing_id(document_xml, floor=self._issued.get("drawing", 0))
        return self._record("drawing", number)

    def bookmark_id(self, document_xml: str) -> int:
        number = next_bookmark_id(
            document_xml, floor=self._issued.get("bookmark", 0)
        )
        return self._record("bookmark", number)
