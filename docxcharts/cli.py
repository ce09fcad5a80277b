from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Sequence

import docxcharts
from docxcharts.charts.chart_insert import LEGEND_POSITIONS, ChartOptions
from docxcharts.charts.data_types import ChartData, ChartKind
from docxcharts.serialization import deserialize_chart_data, serialize_chart_data


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="docxcharts",
        description="Read, update, copy and add charts in a .docx document.",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Log progress to stderr.",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    show = commands.add_parser("show", help="Print the data cached in the charts.")
    show.add_argument("path", type=Path, help="Path to the .docx file.")
    show.add_argument(
        "--chart",
        type=int,
        default=None,
        help="Only show this chart (1-based). Defaults to every chart.",
    )
    show.add_argument(
        "--json",
        action="store_true",
        help="Emit structured JSON instead of a text summary.",
    )

    update = commands.add_parser(
        "update", help="Rewrite a chart and its workbook from a JSON data file."
    )
    update.add_argument("path", type=Path, help="Path to the .docx file.")
    update.add_argument("chart", type=int, help="Chart number (1-based).")
    update.add_argument("data", type=Path, help="JSON file with the chart data.")
    update.add_argument(
        "-o", "--output", type=Path, required=True, help="Where to write the result."
    )

    copy = commands.add_parser("copy", help="Duplicate a chart below itself.")
    copy.add_argument("path", type=Path, help="Path to the .docx file.")
    copy.add_argument("chart", type=int, help="Chart number (1-based).")
    copy.add_argument(
        "-o", "--output", type=Path, required=True, help="Where to write the result."
    )

    insert = commands.add_parser(
        "insert", help="Add a new chart built from a JSON data file."
    )
    insert.add_argument("path", type=Path, help="Path to the .docx file.")
    insert.add_argument("data", type=Path, help="JSON file with the chart data.")
    insert.add_argument(
        "--kind",
        choices=[kind.value for kind in ChartKind],
        default=None,
        help="Chart type. Defaults to the data's kind, then to a column chart.",
    )
    insert.add_argument(
        "--after",
        default=None,
        help="Place the chart after the first paragraph containing this text.",
    )
    insert.add_argument(
        "--legend",
        choices=list(LEGEND_POSITIONS),
        default="r",
        help="Legend position.",
    )
    insert.add_argument("--no-legend", action="store_true", help="Omit the legend.")
    insert.add_argument(
        "-o", "--output", type=Path, required=True, help="Where to write the result."
    )
    return parser


def _format_chart(index: int, data: ChartData) -> str:
    kind = data.kind.value if data.kind else "unknown"
    lines = [f"Chart {index} ({kind})"]
    for label, title in (
        ("title", data.chart_title),
        ("category axis", data.category_axis_title),
        ("value axis", data.value_axis_title),
    ):
        if title:
            lines.append(f"  {label}: {title}")
    lines.append(f"  categories: {', '.join(data.categories)}")
    for series in data.series:
        values = ", ".join(f"{value:g}" for value in series.values)
        lines.append(f"  {series.name}: {values}")
    return "\n".join(lines)


def _show(args: argparse.Namespace) -> None:
    with docxcharts.open_docx(args.path) as package:
        if args.chart is not None:
            indexes = [args.chart]
        else:
            indexes = package.chart_indexes()
        charts = [(index, package.get_chart_data(index)) for index in indexes]

    if args.json:
        payload = [
            {"chart": index, "data": serialize_chart_data(data)}
            for index, data in charts
        ]
        json.dump(payload, sys.stdout)
        sys.stdout.write("\n")
        return
    if not charts:
        sys.stdout.write(f"{args.path} has no charts\n")
        return
    sys.stdout.write("\n\n".join(_format_chart(i, data) for i, data in charts))
    sys.stdout.write("\n")


def _update(args: argparse.Namespace) -> None:
    with args.data.open("r", encoding="utf-8") as handle:
        data = deserialize_chart_data(json.load(handle))
    with docxcharts.open_docx(args.path) as package:
        result = package.update_chart(args.chart, data)
        package.save(args.output)
    for name in result.skipped_titles:
        print(
            f"docxcharts: warning: chart {args.chart} has no {name.replace('_', ' ')} to update",
            file=sys.stderr,
        )
    sys.stdout.write(
        f"Updated chart {args.chart}: {result.series_count} series, "
        f"{result.category_count} categories -> {args.output}\n"
    )


def _copy(args: argparse.Namespace) -> None:
    with docxcharts.open_docx(args.path) as package:
        new_index = package.copy_chart(args.chart)
        package.save(args.output)
    sys.stdout.write(f"Copied chart {args.chart} to chart {new_index} -> {args.output}\n")


def _insert(args: argparse.Namespace) -> None:
    with args.data.open("r", encoding="utf-8") as handle:
        data = deserialize_chart_data(json.load(handle))
    options = ChartOptions(
        kind=ChartKind(args.kind) if args.kind else None,
        show_legend=not args.no_legend,
        legend_position=args.legend,
        after_text=args.after,
    )
    with docxcharts.open_docx(args.path) as package:
        new_index = package.insert_chart(data, options)
        package.save(args.output)
    sys.stdout.write(f"Inserted chart {new_index} -> {args.output}\n")


_COMMANDS = {"show": _show, "update": _update, "copy": _copy, "insert": _insert}


def main(argv: Sequence[str] | None = None) -> int:
    parser = _build_parser()
    try:
        args, unknown = parser.parse_known_args(argv)
    except SystemExit as exc:
        code = exc.code if isinstance(exc.code, int) else 1
        return code

    if unknown:
        unknown_str = " ".join(unknown)
        print(
            f"docxcharts: warning: unsupported arguments: {unknown_str}",
            file=sys.stderr,
        )
        return 1

    if args.verbose:
        logging.basicConfig(
            level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s"
        )

    try:
        _COMMANDS[args.command](args)
        return 0
    except Exception as exc:
        print(f"docxcharts: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
