import json
import logging
import unittest

import pytest

from docxcharts.charts.data_types import ChartData, ChartKind, SeriesData
from docxcharts.serialization import deserialize_chart_data, serialize_chart_data

logger = logging.getLogger(__name__)

tc = unittest.TestCase()
tc.maxDiff = None


def _sample() -> ChartData:
    return ChartData(
        categories=["Q1", "Q2"],
        series=[SeriesData("Revenue", [10.0, 12.5], color="4472C4")],
        chart_title="Revenue",
        value_axis_title="EUR",
        kind=ChartKind.BAR,
    )


def test_serialize_chart_data_is_json_serializable() -> None:
    payload = serialize_chart_data(_sample())
    tc.assertIsInstance(payload, dict)

    try:
        json.dumps(payload)
    except Exception as e:
        tc.fail("Unexpected exception: {}".format(e))

    tc.assertEqual("ChartData", payload["_type"])
    tc.assertEqual("bar", payload["kind"])
    tc.assertEqual("SeriesData", payload["series"][0]["_type"])


def test_serialized_chart_data_restores() -> None:
    original = _sample()
    restored = deserialize_chart_data(json.loads(json.dumps(serialize_chart_data(original))))

    tc.assertIsInstance(restored, ChartData)
    tc.assertEqual(original, restored)
    assert restored.kind is ChartKind.BAR


def test_deserialize_plain_json_shape() -> None:
    restored = deserialize_chart_data(
        {
            "categories": ["A", "B"],
            "series": [{"name": "Critical", "values": [4, 3]}],
            "category_axis_title": "Device",
        }
    )

    tc.assertEqual(["A", "B"], restored.categories)
    tc.assertIsInstance(restored.series[0], SeriesData)
    tc.assertEqual([4.0, 3.0], restored.series[0].values)
    tc.assertIsInstance(restored.series[0].values[0], float)
    tc.assertEqual("Device", restored.category_axis_title)
    assert restored.kind is None
    restored.validate()


def test_deserialize_rejects_other_payloads() -> None:
    with pytest.raises(ValueError, match="dictionary"):
        deserialize_chart_data(["not", "a", "dict"])
    with pytest.raises(ValueError, match="Expected ChartData"):
        deserialize_chart_data({"_type": "SeriesData", "name": "x"})
    with pytest.raises(ValueError, match="Invalid chart data"):
        deserialize_chart_data({"categories": ["A"], "series": [{"values": [1]}]})
