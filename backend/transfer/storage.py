"""
Source and destination byte streams for the transfer engine.

The wire carries no file name or type, so the receiver synthesizes a
name (received_image_<unix-millis>.jpg) and a fixed MIME type for every
incoming file.
"""

import logging
import os
import time
from pathlib import Path
from typing import BinaryIO, Protocol

from config import (
    DEFAULT_SAVE_DIR,
    RECEIVED_MIME_TYPE,
    RECEIVED_NAME_PREFIX,
    RECEIVED_NAME_SUFFIX,
)
from errors import DestinationUnavailable, SourceUnavailable

logger = logging.getLogger(__name__)


def received_file_name(now_ms: int | None = None) -> str:
    """Name for an incoming file, e.g. received_image_1700000000000.jpg."""
    if now_ms is None:
        now_ms = time.time_ns() // 1_000_000
    return f"{RECEIVED_NAME_PREFIX}{now_ms}{RECEIVED_NAME_SUFFIX}"


class Destination:
    """A writable stream plus where its bytes end up."""

    def __init__(self, stream: BinaryIO, location: str, mime_type: str = RECEIVED_MIME_TYPE):
        self.stream = stream
        self.location = location
        self.mime_type = mime_type

    def write(self, data) -> None:
        self.stream.write(data)

    def close(self) -> None:
        self.stream.close()


class SourceProvider(Protocol):
    def open_source(self, reference) -> BinaryIO:
        """Open a user-selected file reference. Raises SourceUnavailable."""


class DestinationProvider(Protocol):
    def create(self, name: str, mime_type: str) -> Destination:
        """Create a new destination. Raises DestinationUnavailable."""


class FileSourceProvider:
    """Opens file references that are local filesystem paths."""

    def open_source(self, reference) -> BinaryIO:
        if reference is None:
            raise SourceUnavailable("No file selected")

        path = Path(reference)
        if not path.is_file():
            raise SourceUnavailable(f"Not a readable file: {path}")
        try:
            return open(path, "rb")
        except OSError as e:
            raise SourceUnavailable(f"Could not open {path}: {e}") from e


class DownloadsDestinationProvider:
    """Creates new files in the downloads folder; never overwrites."""

    def __init__(self, save_dir: str | os.PathLike = DEFAULT_SAVE_DIR) -> None:
        self._save_dir = Path(save_dir)

    @property
    def save_dir(self) -> Path:
        return self._save_dir

    @save_dir.setter
    def save_dir(self, path: str | os.PathLike) -> None:
        self._save_dir = Path(path)

    def create(self, name: str, mime_type: str = RECEIVED_MIME_TYPE) -> Destination:
        path = self._save_dir / name
        try:
            self._save_dir.mkdir(parents=True, exist_ok=True)
            stream = open(path, "xb")
        except OSError as e:
            raise DestinationUnavailable(f"Could not create {path}: {e}") from e

        logger.debug(f"Created destination {path} ({mime_type})")
        return Destination(stream, str(path), mime_type)
