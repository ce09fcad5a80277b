import io
import zipfile

from docxcharts.util.zip_bomb import DEFAULT_ZIP_BOMB_LIMITS, ZipBombLimits, open_zipfile


class ZipContext:
    """Reusable ZIP context for reading nested OOXML packages (embedded workbooks)."""

    def __init__(
        self,
        file_like: io.BytesIO,
        *,
        limits: ZipBombLimits = DEFAULT_ZIP_BOMB_LIMITS,
        source: str | None = None,
    ):
        self.file_like = file_like
        self.file_like.seek(0)
        self._zip = open_zipfile(
            self.file_like, limits=limits, source=source or type(self).__name__
        )
        self._infos = self._zip.infolist()

    @property
    def infolist(self) -> list[zipfile.ZipInfo]:
        """Entries in archive order."""
        return self._infos

    def read_all(self) -> dict[str, bytes]:
        """Read every non-directory entry, keyed by name, in archive order."""
        return {
            info.filename: self._zip.read(info.filename)
            for info in self._infos
            if not info.is_dir()
        }

    def close(self) -> None:
        self._zip.close()

    def __enter__(self) -> "ZipContext":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
