"""Writes converted images to the export directory."""

from __future__ import annotations

import contextlib
import os
import tempfile
from pathlib import Path

from photo_converter.core.errors import ExportFailed
from photo_converter.core.logging import get_logger
from photo_converter.models.job import ConversionFormat

logger = get_logger(__name__)

EXPORT_STEM = "converted_image"


def export_filename(fmt: ConversionFormat) -> str:
    return f"{EXPORT_STEM}.{fmt.extension}"


class ExportSink:
    """File sink for finished conversions; an existing export is replaced."""

    def __init__(self, directory: Path) -> None:
        self._directory = Path(directory)

    @property
    def directory(self) -> Path:
        return self._directory

    def write(self, data: bytes, fmt: ConversionFormat) -> Path:
        """Write ``data`` to ``converted_image.<ext>`` and return the path."""

        target = self._directory / export_filename(fmt)
        tmp_name = None
        try:
            self._directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=self._directory, prefix=".export-")
            with os.fdopen(fd, "wb") as handle:
                handle.write(data)
            os.replace(tmp_name, target)
        except OSError as exc:
            if tmp_name is not None:
                with contextlib.suppress(FileNotFoundError):
                    os.unlink(tmp_name)
            logger.error("export_failed", path=str(target), error=str(exc))
            raise ExportFailed(f"could not write {target}: {exc}") from exc

        logger.info("export_written", path=str(target), bytes=len(data))
        return target
