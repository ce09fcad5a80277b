import enum
import typing
from dataclasses import fields, is_dataclass
from pathlib import PurePath

from docxcharts.charts.data_types import ChartData

# Type marker key used for serialization/deserialization
_TYPE_KEY = "_type"

# Registry mapping type names to classes (populated lazily)
_TYPE_REGISTRY: dict[str, type] = {}


def _serialize_for_json(value: typing.Any) -> typing.Any:
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, PurePath):
        return str(value)
    if is_dataclass(value) and not isinstance(value, type):
        result = {
            _TYPE_KEY: type(value).__name__,
        }
        for item in fields(value):
            result[item.name] = _serialize_for_json(getattr(value, item.name))
        return result
    if isinstance(value, dict):
        return {str(key): _serialize_for_json(val) for key, val in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_serialize_for_json(item) for item in value]
    return value


def serialize_chart_data(value: typing.Any) -> dict:
    """JSON-safe dict of a ``ChartData`` (or any other dataclass of this package)."""
    serialized = _serialize_for_json(value)
    if isinstance(serialized, dict):
        return serialized
    return {"value": serialized}


def _get_type_registry() -> dict[str, type]:
    """Lazily populate and return the type registry."""
    if _TYPE_REGISTRY:
        return _TYPE_REGISTRY

    from docxcharts.charts import data_types

    for name in dir(data_types):
        obj = getattr(data_types, name)
        if isinstance(obj, type) and is_dataclass(obj):
            _TYPE_REGISTRY[name] = obj

    return _TYPE_REGISTRY


def _unwrap_optional(tp: typing.Any) -> tuple[typing.Any, bool]:
    """Unwrap Optional[X] to (X, True) or return (tp, False) if not Optional."""
    origin = typing.get_origin(tp)
    if origin is typing.Union:
        args = typing.get_args(tp)
        # Optional[X] is Union[X, None]
        non_none_args = [a for a in args if a is not type(None)]
        if len(non_none_args) == 1 and len(args) == 2:
            return non_none_args[0], True
    return tp, False


def _deserialize_value(value: typing.Any, expected_type: typing.Any) -> typing.Any:
    """Deserialize a value according to its expected type."""
    if value is None:
        return None

    inner_type, is_optional = _unwrap_optional(expected_type)
    if is_optional:
        expected_type = inner_type

    if isinstance(value, dict) and _TYPE_KEY in value:
        return _deserialize_dataclass(value)

    origin = typing.get_origin(expected_type)
    if origin is list:
        item_type = typing.get_args(expected_type)
        item_type = item_type[0] if item_type else typing.Any
        if isinstance(value, list):
            return [_deserialize_value(item, item_type) for item in value]
        return value

    if isinstance(expected_type, type) and issubclass(expected_type, enum.Enum):
        return expected_type(value)

    if isinstance(expected_type, type) and issubclass(expected_type, PurePath):
        return expected_type(value)

    # Plain JSON numbers arrive as int; chart values are floats
    if expected_type is float and isinstance(value, (int, float)) and not isinstance(
        value, bool
    ):
        return float(value)

    registry = _get_type_registry()
    if isinstance(expected_type, type) and expected_type.__name__ in registry:
        if isinstance(value, dict):
            return _deserialize_dataclass(value, expected_type)
        return value

    return value


def _deserialize_dataclass(
    data: dict, expected_class: typing.Optional[type] = None
) -> typing.Any:
    """Deserialize a dictionary to a dataclass instance."""
    registry = _get_type_registry()

    type_name = data.get(_TYPE_KEY)
    if type_name and type_name in registry:
        cls = registry[type_name]
    elif expected_class is not None:
        cls = expected_class
    else:
        return data

    field_types = typing.get_type_hints(cls)
    field_names = {f.name for f in fields(cls)}

    kwargs = {}
    for field_name in field_names:
        if field_name in data:
            field_type = field_types.get(field_name, typing.Any)
            kwargs[field_name] = _deserialize_value(data[field_name], field_type)

    return cls(**kwargs)


def deserialize_chart_data(data: dict) -> ChartData:
    """
    Build a ``ChartData`` from a dictionary.

    Accepts both the output of ``serialize_chart_data()`` and the plain JSON
    shape the command line reads::

        {
            "categories": ["Q1", "Q2"],
            "series": [{"name": "Revenue", "values": [10, 12]}],
            "chart_title": "Revenue by quarter"
        }

    Raises:
        ValueError: If the data is not a dictionary, describes another type,
            or a series lacks its name
    """
    if not isinstance(data, dict):
        raise ValueError("Input must be a dictionary")

    type_name = data.get(_TYPE_KEY, ChartData.__name__)
    if type_name != ChartData.__name__:
        raise ValueError(f"Expected {ChartData.__name__} data, got {type_name!r}")

    try:
        return _deserialize_dataclass(data, ChartData)
    except TypeError as exc:
        # a series without "name", or an unexpected nesting
        raise ValueError(f"Invalid chart data: {exc}") from exc
