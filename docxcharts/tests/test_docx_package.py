import io
import logging
import re
import zipfile
from unittest import TestCase

import pytest
from openpyxl import load_workbook

import docxcharts
from docxcharts import (
    ChartData,
    ChartDataValidationError,
    ChartNotFoundError,
    DocxPackage,
    PackageError,
    SeriesData,
    open_docx,
)
from docxcharts.workbook.workbook_sync import resolve_workbook

logger = logging.getLogger(__name__)

tc = TestCase()
tc.maxDiff = None

WORKBOOK1 = "word/embeddings/Microsoft_Excel_Worksheet1.xlsx"
WORKBOOK2 = "word/embeddings/Microsoft_Excel_Worksheet2.xlsx"


def _devices() -> ChartData:
    return ChartData(
        categories=["Device A", "Device B", "Device C"],
        series=[
            SeriesData("Critical", [4, 3, 2]),
            SeriesData("Non-critical", [8, 7, 6]),
        ],
    )


def _snapshot(package: DocxPackage) -> dict:
    return {
        path.relative_to(package.root).as_posix(): path.read_bytes()
        for path in package.root.rglob("*")
        if path.is_file()
    }


def test_open_and_read_charts(sample_docx) -> None:
    with open_docx(sample_docx) as package:
        tc.assertEqual(2, package.chart_count())
        first = package.get_chart_data(1)
        second = package.get_chart_data(2)

    tc.assertEqual(["Old 1", "Old 2"], first.categories)
    tc.assertEqual(["Critical", "Non-critical"], first.series_names)
    tc.assertEqual("Findings", first.chart_title)
    tc.assertEqual("Device", first.category_axis_title)
    tc.assertEqual(["Jan", "Feb", "Mar"], second.categories)
    tc.assertEqual([5.0, 4.0, 3.0], second.series[0].values)


def test_scenario_a_update_chart_and_workbook(sample_docx, tmp_path, entry) -> None:
    output = tmp_path / "out" / "updated.docx"
    with open_docx(sample_docx) as package:
        result = package.update_chart(1, _devices())
        package.save(output)

    chart = entry(output, "word/charts/chart1.xml")
    assert b"Device A" in chart
    assert b"<c:v>8</c:v>" in chart
    tc.assertEqual(1, result.chart_index)
    tc.assertEqual("Microsoft_Excel_Worksheet1.xlsx", result.workbook_path.name)

    ws = load_workbook(io.BytesIO(entry(output, WORKBOOK1))).worksheets[0]
    tc.assertEqual("Critical", ws["B1"].value)
    tc.assertEqual("Device A", ws["A2"].value)
    tc.assertEqual(6, ws["C4"].value)


def test_scenario_b_length_mismatch_writes_nothing(sample_docx) -> None:
    data = ChartData(categories=["A", "B"], series=[SeriesData("Critical", [1])])
    with open_docx(sample_docx) as package:
        before = _snapshot(package)
        with pytest.raises(ChartDataValidationError, match="must match categories length"):
            package.update_chart(1, data)
        tc.assertEqual(before, _snapshot(package))


def test_scenario_c_other_charts_stay_byte_identical(sample_docx, tmp_path, entry) -> None:
    output = tmp_path / "updated.docx"
    with open_docx(sample_docx) as package:
        package.update_chart(2, _devices())
        package.save(output)

    for name in ("word/charts/chart1.xml", WORKBOOK1):
        tc.assertEqual(entry(sample_docx, name), entry(output, name))
    tc.assertNotEqual(entry(sample_docx, WORKBOOK2), entry(output, WORKBOOK2))

    with open_docx(output) as package:
        tc.assertEqual(_devices().categories, package.get_chart_data(2).categories)
        tc.assertEqual(_devices().series_names, package.get_workbook_data(2).series_names)


def test_scenario_d_copy_then_shrink(sample_docx, tmp_path, entry) -> None:
    output = tmp_path / "copied.docx"
    one_series = ChartData(categories=["X", "Y"], series=[SeriesData("Only", [1, 2])])
    with open_docx(sample_docx) as package:
        new_index = package.copy_chart(1)
        package.update_chart(new_index, one_series)
        package.save(output)

    tc.assertEqual(3, new_index)
    tc.assertEqual(1, entry(output, "word/charts/chart3.xml").count(b"<c:ser>"))
    tc.assertEqual(2, entry(output, "word/charts/chart1.xml").count(b"<c:ser>"))


def test_copied_workbooks_diverge_independently(sample_docx) -> None:
    with open_docx(sample_docx) as package:
        new_index = package.copy_chart(1)
        source = resolve_workbook(package.root, 1)
        copy = resolve_workbook(package.root, new_index)
        tc.assertNotEqual(source, copy)
        tc.assertEqual(source.read_bytes(), copy.read_bytes())

        original = source.read_bytes()
        package.update_chart(new_index, _devices())
        tc.assertEqual(original, source.read_bytes())
        tc.assertNotEqual(original, copy.read_bytes())
        tc.assertEqual(["Old 1", "Old 2"], package.get_workbook_data(1).categories)


def test_round_trip_and_truncation(sample_docx) -> None:
    data = ChartData(categories=["only"], series=[SeriesData("Solo", [42])])
    with open_docx(sample_docx) as package:
        package.update_chart(1, data)
        parsed = package.get_chart_data(1)
        workbook = package.get_workbook_data(1)

    tc.assertEqual(["only"], parsed.categories)
    tc.assertEqual(["Solo"], parsed.series_names)
    tc.assertEqual([42.0], parsed.series[0].values)
    tc.assertEqual(parsed.categories, workbook.categories)
    tc.assertEqual(parsed.series_names, workbook.series_names)


def test_update_logs_summary(sample_docx, caplog) -> None:
    with caplog.at_level(logging.INFO, logger="docxcharts"):
        with open_docx(sample_docx) as package:
            package.update_chart(2, _devices())
    assert "Updated chart 2: 2 series, 3 categories" in caplog.text


def test_chart_index_checks(sample_docx) -> None:
    with open_docx(sample_docx) as package:
        with pytest.raises(ValueError, match=">= 1"):
            package.get_chart_data(0)
        with pytest.raises(ValueError):
            package.update_chart(0, _devices())
        with pytest.raises(ChartNotFoundError) as info:
            package.update_chart(5, _devices())
    tc.assertEqual(5, info.value.chart_index)


def test_save_puts_content_types_first(sample_docx, tmp_path) -> None:
    output = tmp_path / "saved.docx"
    with open_docx(sample_docx) as package:
        package.copy_chart(2)
        package.save(output)

    with zipfile.ZipFile(output) as zf:
        names = zf.namelist()
        tc.assertEqual("[Content_Types].xml", names[0])
        tc.assertIn("word/charts/chart3.xml", names)
        tc.assertEqual(len(names), len(set(names)))
        assert all(info.compress_type == zipfile.ZIP_DEFLATED for info in zf.infolist())


def test_from_bytes_and_to_bytes(sample_docx_bytes) -> None:
    with DocxPackage.from_bytes(sample_docx_bytes) as package:
        content = package.to_bytes()
    with DocxPackage.from_bytes(content) as package:
        tc.assertEqual(2, package.chart_count())


def test_from_bytes_rejects_empty_data() -> None:
    with pytest.raises(ValueError, match="docx data is empty"):
        DocxPackage.from_bytes(b"")


def test_not_a_zip_is_a_package_error() -> None:
    with pytest.raises(PackageError, match="not a valid docx package"):
        DocxPackage.from_bytes(b"plain text, not a document")


def test_missing_required_part(sample_docx_bytes) -> None:
    buffer = io.BytesIO()
    with zipfile.ZipFile(io.BytesIO(sample_docx_bytes)) as source:
        with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as target:
            for name in source.namelist():
                if name != "word/document.xml":
                    target.writestr(name, source.read(name))

    with pytest.raises(PackageError, match="invalid DOCX: missing required file word/document.xml"):
        DocxPackage.from_bytes(buffer.getvalue())


def test_blank_package_round_trips(tmp_path) -> None:
    output = tmp_path / "blank.docx"
    with DocxPackage.blank() as package:
        tc.assertEqual(0, package.chart_count())
        package.save(output)

    with open_docx(output) as package:
        tc.assertEqual(0, package.chart_count())
        document = (package.root / "word/document.xml").read_text(encoding="utf-8")
        tc.assertIn('<w:pgSz w:w="12240" w:h="15840"/>', document)


def test_cleanup_removes_temporary_directory(sample_docx) -> None:
    package = open_docx(sample_docx)
    root = package.root
    assert root.is_dir()
    package.cleanup()
    assert not root.exists()
    with pytest.raises(PackageError, match="cleaned up"):
        package.chart_count()
    # a second cleanup is a no-op
    package.cleanup()


def test_read_charts(sample_docx) -> None:
    charts = docxcharts.read_charts(sample_docx)
    tc.assertEqual(2, len(charts))
    tc.assertEqual("Findings", charts[0].chart_title)


def test_update_chart_bytes(sample_docx_bytes) -> None:
    content = docxcharts.update_chart_bytes(sample_docx_bytes, 1, _devices())
    with DocxPackage.from_bytes(content) as package:
        tc.assertEqual(_devices().categories, package.get_chart_data(1).categories)


@pytest.fixture
def gapped_docx(tmp_path, make_docx, chart_xml, make_inline_workbook):
    # chart2 was removed; chart1 and chart3 remain
    path = tmp_path / "gapped.docx"
    path.write_bytes(
        make_docx(
            [
                (chart_xml(["a"], [("First", [1])]), make_inline_workbook(["a"], [("First", [1])])),
                (chart_xml(["b"], [("Third", [3])]), make_inline_workbook(["b"], [("Third", [3])])),
            ],
            indexes=[1, 3],
        )
    )
    return path


def test_chart_indexes_follow_the_parts_present(gapped_docx) -> None:
    with open_docx(gapped_docx) as package:
        tc.assertEqual([1, 3], package.chart_indexes())
        tc.assertEqual(2, package.chart_count())
        with pytest.raises(ChartNotFoundError):
            package.get_chart_data(2)


def test_read_charts_skips_numbering_gaps(gapped_docx) -> None:
    charts = docxcharts.read_charts(gapped_docx)
    tc.assertEqual([["First"], ["Third"]], [chart.series_names for chart in charts])


def _shared_strings(workbook: bytes) -> list[str]:
    with zipfile.ZipFile(io.BytesIO(workbook)) as zf:
        sst = zf.read("xl/sharedStrings.xml").decode("utf-8")
    return re.findall(r"<t>([^<]*)</t>", sst)


def test_update_keeps_shared_string_indexes(sample_docx, tmp_path, entry) -> None:
    before = _shared_strings(entry(sample_docx, WORKBOOK1))
    tc.assertEqual(["Legacy note", "Critical", "Non-critical", "Old 1", "Old 2"], before)

    output = tmp_path / "updated.docx"
    with open_docx(sample_docx) as package:
        package.update_chart(1, _devices())
        package.save(output)

    workbook = entry(output, WORKBOOK1)
    after = _shared_strings(workbook)
    tc.assertEqual(before, after[: len(before)])
    tc.assertEqual(before + ["Device A", "Device B", "Device C"], after)
    with zipfile.ZipFile(io.BytesIO(workbook)) as zf:
        sheet = zf.read("xl/worksheets/sheet1.xml")
    # B1 still points at the entry "Critical" had before the update
    assert b'<c r="B1" t="s"><v>1</v></c>' in sheet
    assert b't="inlineStr"' not in sheet
