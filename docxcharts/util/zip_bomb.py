from __future__ import annotations

import io
import zipfile
from dataclasses import dataclass
from pathlib import Path

from docxcharts.exceptions import PackageZipBombError


@dataclass(frozen=True)
class ZipBombLimits:
    """
    Heuristics for rejecting probable ZIP bombs.

    Applied both to the outer .docx and to every embedded workbook before it
    is rewritten. The defaults are far above anything a real document needs.
    """

    max_entries: int = 50_000
    max_total_uncompressed_bytes: int = 4 * 1024 * 1024 * 1024  # 4 GiB
    max_single_uncompressed_bytes: int = 1 * 1024 * 1024 * 1024  # 1 GiB
    max_total_compression_ratio: float = 200.0
    max_entry_compression_ratio: float = 500.0


DEFAULT_ZIP_BOMB_LIMITS = ZipBombLimits()


def validate_zipfile(
    zf: zipfile.ZipFile,
    *,
    limits: ZipBombLimits = DEFAULT_ZIP_BOMB_LIMITS,
    source: str | None = None,
) -> None:
    """
    Validate a ZIP container against high-confidence ZIP-bomb indicators.

    This is a best-effort DoS mitigation, not a complete sandbox.
    """
    suffix = f" [{source}]" if source else ""
    try:
        infos = zf.infolist()
    except (zipfile.BadZipFile, OSError) as exc:
        raise PackageZipBombError(
            "Failed to inspect ZIP container" + suffix, cause=exc
        ) from exc

    if len(infos) > limits.max_entries:
        raise PackageZipBombError(
            f"ZIP container has too many entries ({len(infos)} > {limits.max_entries})"
            + suffix
        )

    total_uncompressed = 0
    total_compressed = 0

    for info in infos:
        if info.is_dir():
            continue

        file_size = int(info.file_size or 0)
        compressed_size = int(info.compress_size or 0)

        if file_size > limits.max_single_uncompressed_bytes:
            raise PackageZipBombError(
                f"ZIP entry too large ({file_size} bytes > {limits.max_single_uncompressed_bytes})"
                + suffix
            )

        if file_size > 0:
            if compressed_size <= 0:
                raise PackageZipBombError(
                    "ZIP entry has zero compressed size but non-zero uncompressed size"
                    + suffix
                )
            ratio = file_size / compressed_size
            if ratio > limits.max_entry_compression_ratio:
                raise PackageZipBombError(
                    f"ZIP entry compression ratio too high ({ratio:.1f} > {limits.max_entry_compression_ratio})"
                    + suffix
                )

        total_uncompressed += file_size
        total_compressed += compressed_size

        if total_uncompressed > limits.max_total_uncompressed_bytes:
            raise PackageZipBombError(
                f"ZIP total uncompressed size too large ({total_uncompressed} bytes > {limits.max_total_uncompressed_bytes})"
                + suffix
            )

    if total_uncompressed > 0:
        if total_compressed <= 0:
            raise PackageZipBombError(
                "ZIP container has non-zero uncompressed content but zero total compressed size"
                + suffix
            )
        total_ratio = total_uncompressed / total_compressed
        if total_ratio > limits.max_total_compression_ratio:
            raise PackageZipBombError(
                f"ZIP total compression ratio too high ({total_ratio:.1f} > {limits.max_total_compression_ratio})"
                + suffix
            )


def open_zipfile(
    file_like: io.BytesIO,
    *,
    limits: ZipBombLimits = DEFAULT_ZIP_BOMB_LIMITS,
    source: str | None = None,
) -> zipfile.ZipFile:
    """
    Open a ZIP file and validate it for ZIP-bomb indicators.

    Caller owns the returned ZipFile and must close it.
    """
    file_like.seek(0)
    zf = zipfile.ZipFile(file_like, "r")
    try:
        validate_zipfile(zf, limits=limits, source=source)
    except Exception:
        zf.close()
        raise
    return zf


def extract_zip_safely(
    file_like: io.BytesIO,
    destination: Path,
    *,
    limits: ZipBombLimits = DEFAULT_ZIP_BOMB_LIMITS,
    source: str | None = None,
) -> list[str]:
    """
    Validate and extract a ZIP container into ``destination``.

    Entry names that would escape the destination directory are rejected.
    Returns the entry names in archive order.
    """
    destination = destination.resolve()
    names = []
    with open_zipfile(file_like, limits=limits, source=source) as zf:
        for info in zf.infolist():
            target = (destination / info.filename).resolve()
            if target != destination and destination not in target.parents:
                raise PackageZipBombError(
                    f"ZIP entry escapes extraction directory: {info.filename}"
                    + (f" [{source}]" if source else "")
                )
            names.append(info.filename)
        zf.extractall(destination)
    return names
