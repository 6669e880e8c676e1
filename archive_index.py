"""File collection and lookups for a ChatGPT data export.

An export arrives either as an unpacked folder or as the original zip
archive.  Both are presented as an ``ArchiveFiles`` collection of
``ArchiveFile`` entries, each carrying a ``/``-separated relative path and
a byte source.  The lookup helpers locate ``conversations.json``,
``sora.json`` and generated images inside that collection.
"""

from __future__ import annotations

import asyncio
import io
import logging
import os
import zipfile
from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import BinaryIO, overload

logger = logging.getLogger(__name__)

CONVERSATIONS_FILENAME = "conversations.json"
SORA_FILENAME = "sora.json"

# Generated images live under folders such as "user-AbC123/".
USER_CONTENT_MARKER = "user-"
IMAGE_EXTENSIONS = frozenset({"png", "jpg", "jpeg", "gif", "webp"})


class ArchiveError(Exception):
    """Raised when an upload cannot be turned into a file collection."""


@dataclass(frozen=True)
class ArchiveFile:
    """One file of an export: a relative path plus its byte source.

    ``source`` is either a filesystem ``Path`` (folder uploads) or the
    file's bytes (zip uploads, extracted into memory).
    """

    path: str
    source: Path | bytes = field(repr=False)

    @property
    def name(self) -> str:
        return self.path.rsplit("/", 1)[-1]

    @property
    def extension(self) -> str:
        _, dot, ext = self.name.rpartition(".")
        return ext.lower() if dot else ""

    def read_bytes(self) -> bytes:
        if isinstance(self.source, bytes):
            return self.source
        return self.source.read_bytes()

    async def read_text(self) -> str:
        """Read the file off the event loop and decode it as UTF-8."""
        data = await asyncio.to_thread(self.read_bytes)
        return data.decode("utf-8-sig")


class ArchiveFiles(Sequence[ArchiveFile]):
    """Read-only, ordered collection of export files."""

    def __init__(self, files: list[ArchiveFile] | tuple[ArchiveFile, ...] = ()) -> None:
        self._files = tuple(files)

    @overload
    def __getitem__(self, index: int) -> ArchiveFile: ...

    @overload
    def __getitem__(self, index: slice) -> ArchiveFiles: ...

    def __getitem__(self, index):
        if isinstance(index, slice):
            return ArchiveFiles(self._files[index])
        return self._files[index]

    def __len__(self) -> int:
        return len(self._files)

    def __iter__(self) -> Iterator[ArchiveFile]:
        return iter(self._files)

    def __repr__(self) -> str:
        return f"ArchiveFiles({len(self._files)} files)"

    @classmethod
    def from_directory(cls, root: str | os.PathLike) -> ArchiveFiles:
        """Collect every regular file below *root*.

        Paths are relative to the parent of *root*, so the top folder name
        is kept (``"export/conversations.json"``), matching what a browser
        folder picker reports.

        Raises:
            FileNotFoundError: If *root* is not a directory.
        """
        root = Path(root)
        if not root.is_dir():
            raise FileNotFoundError(f"Not a directory: {root}")

        base = root.parent
        files = [
            ArchiveFile(path=p.relative_to(base).as_posix(), source=p)
            for p in sorted(root.rglob("*"))
            if p.is_file()
        ]
        logger.debug("Collected %d files from %s", len(files), root)
        return cls(files)

    @classmethod
    def from_zip(cls, source: str | os.PathLike | bytes | BinaryIO) -> ArchiveFiles:
        """Extract every non-directory entry of a zip archive into memory.

        Args:
            source: Path to a zip file, its raw bytes, or a binary file object.

        Raises:
            ArchiveError: If *source* is not a valid zip archive.
        """
        if isinstance(source, bytes):
            source = io.BytesIO(source)
        try:
            with zipfile.ZipFile(source, "r") as zf:
                files = [
                    ArchiveFile(path=info.filename, source=zf.read(info))
                    for info in zf.infolist()
                    if not info.is_dir()
                ]
        except (zipfile.BadZipFile, zipfile.LargeZipFile) as e:
            raise ArchiveError(
                "Failed to extract zip file. Please ensure it is a valid zip archive."
            ) from e
        logger.debug("Extracted %d files from zip archive", len(files))
        return cls(files)

    @classmethod
    def open(cls, path: str | os.PathLike) -> ArchiveFiles:
        """Load a folder or a zip archive from disk.

        Raises:
            FileNotFoundError: If *path* does not exist.
            ArchiveError: If *path* is a file but not a valid zip archive.
        """
        path = Path(path)
        if path.is_dir():
            return cls.from_directory(path)
        if not path.exists():
            raise FileNotFoundError(f"No such file or directory: {path}")
        if not is_zip_path(path):
            raise ArchiveError(f"Expected an export folder or a .zip archive: {path}")
        return cls.from_zip(path)


def is_zip_path(path: str | os.PathLike) -> bool:
    """Return True when *path* names a zip archive."""
    return str(path).lower().endswith(".zip")


def _matches_filename(file: ArchiveFile, filename: str) -> bool:
    return file.path == filename or file.path.endswith("/" + filename)


def _find_file(files: Sequence[ArchiveFile], filename: str) -> ArchiveFile | None:
    # First match wins when an archive carries duplicates.
    for file in files:
        if _matches_filename(file, filename):
            return file
    return None


def find_conversations_file(files: Sequence[ArchiveFile]) -> ArchiveFile | None:
    """Locate ``conversations.json`` at the root or in any subfolder."""
    return _find_file(files, CONVERSATIONS_FILENAME)


def find_sora_file(files: Sequence[ArchiveFile]) -> ArchiveFile | None:
    """Locate the optional ``sora.json`` video-task log."""
    return _find_file(files, SORA_FILENAME)


def is_generated_image(file: ArchiveFile) -> bool:
    """True for image files stored under a user-content folder."""
    return USER_CONTENT_MARKER in file.path and file.extension in IMAGE_EXTENSIONS


def find_generated_images(files: Sequence[ArchiveFile]) -> list[ArchiveFile]:
    """Return every generated image, in collection order."""
    return [f for f in files if is_generated_image(f)]
