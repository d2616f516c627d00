"""
File Model: file and directory operations rooted at the workspace root.
"""

import base64
import binascii
import logging
import mimetypes
import os
import shutil
import threading
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from notebook_ctl.errors import ConflictError, InvalidPathError, NotFoundError, ProtocolError
from notebook_ctl.models import (
    FileDetailsResponse,
    FileInfo,
    FileListResponse,
    FileOperationResponse,
)
from notebook_ctl.notebook import is_notebook_path
from notebook_ctl.utils import atomic_write

logger = logging.getLogger(__name__)

IGNORED_NAMES = {"__pycache__", "node_modules"}


def _overlaps(a: Path, b: Path) -> bool:
    return a == b or a in b.parents or b in a.parents


class PathLocks:
    """
    Non-blocking locks over filesystem paths.

    Holding a path also covers its ancestors and descendants, so a delete
    of a directory conflicts with a move of a file inside it.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._held: list[Path] = []

    @contextmanager
    def hold(self, *paths: Path) -> Iterator[None]:
        with self._lock:
            for path in paths:
                if any(_overlaps(path, held) for held in self._held):
                    raise ConflictError(
                        f"Another operation on {path.as_posix()} is in progress",
                        path=path.as_posix(),
                    )
            self._held.extend(paths)
        try:
            yield
        finally:
            with self._lock:
                for path in paths:
                    self._held.remove(path)


def _failure(message: str) -> FileOperationResponse:
    return FileOperationResponse(success=False, message=message)


def _present(path: Path) -> bool:
    return path.exists() or path.is_symlink()


class FileSystem:
    """
    Operations over files below a single workspace root.

    Paths on the wire are forward-slash strings, either absolute (inside the
    root) or relative to it. Every returned path is absolute.
    """

    def __init__(self, root: Path):
        self.root = Path(root).resolve()
        self.locks = PathLocks()

    # ------------------------------------------------------------------ #
    # Helpers
    # ------------------------------------------------------------------ #

    def resolve(self, path: Optional[str], follow_symlinks: bool = True) -> Path:
        """
        Resolve a wire path to an absolute path inside the root.

        With ``follow_symlinks=False`` a symlink in the last component is
        kept as is, so the caller acts on the link and not on its target.

        Raises:
            InvalidPathError: If the path escapes the root
        """
        if not path:
            return self.root
        candidate = Path(path)
        if not candidate.is_absolute():
            candidate = self.root / candidate
        if follow_symlinks or candidate.name in ("", ".", ".."):
            resolved = candidate.resolve()
        else:
            resolved = candidate.parent.resolve() / candidate.name
        if resolved != self.root and self.root not in resolved.parents:
            raise InvalidPathError(f"{path} is outside the workspace root", path=path)
        return resolved

    def relative(self, path: Path) -> str:
        return path.relative_to(self.root).as_posix()

    def info(self, path: Path) -> FileInfo:
        """Describe a single existing path (children are not listed)."""
        stat = path.stat() if path.exists() else path.lstat()
        is_directory = path.is_dir()
        posix = path.as_posix()
        return FileInfo(
            id=posix,
            path=posix,
            name=path.name,
            last_modified=stat.st_mtime,
            is_directory=is_directory,
            is_notebook=not is_directory and is_notebook_path(path),
        )

    def existing(self, path: str, follow_symlinks: bool = True) -> Path:
        target = self.resolve(path, follow_symlinks)
        if not _present(target):
            raise NotFoundError(f"{path} does not exist", path=path)
        return target

    def _existing_parent(self, target: Path, path: str) -> Path:
        parent = target.parent
        if not parent.is_dir():
            raise InvalidPathError(f"Parent directory of {path} does not exist", path=path)
        return parent

    # ------------------------------------------------------------------ #
    # Operations
    # ------------------------------------------------------------------ #

    def list_files(self, path: Optional[str] = None) -> FileListResponse:
        """List the immediate children of ``path`` (the root if absent)."""
        directory = self.existing(path) if path else self.root
        if not directory.is_dir():
            raise InvalidPathError(f"{path} is not a directory", path=path)

        files = []
        for child in directory.iterdir():
            if child.name.startswith(".") or child.name in IGNORED_NAMES:
                continue
            try:
                files.append(self.info(child))
            except OSError as e:
                logger.warning("Skipping unreadable path %s: %s", child, e)
        files.sort(key=lambda f: (not f.is_directory, f.name.lower()))
        return FileListResponse(files=files, root=self.root.as_posix())

    def create(
        self,
        path: str,
        type: str,
        name: str,
        contents: Optional[str] = None,
    ) -> FileOperationResponse:
        """
        Create a file or directory named ``name`` inside directory ``path``.

        Args:
            path: Directory to create in
            type: "file" or "directory"
            name: Name of the new entry (a single path component)
            contents: Base64 file contents; ignored for directories
        """
        if not name or name in (".", "..") or "/" in name or "\\" in name:
            raise InvalidPathError(f"Invalid name {name!r}", name=name)
        parent = self.resolve(path)
        if not parent.is_dir():
            raise InvalidPathError(f"{path} is not an existing directory", path=path)
        target = parent / name

        data = b""
        if type == "file" and contents:
            try:
                data = base64.b64decode(contents, validate=True)
            except (binascii.Error, ValueError):
                raise ProtocolError("contents must be base64 encoded")

        with self.locks.hold(target):
            if _present(target):
                return _failure(f"{name} already exists in {parent.as_posix()}")
            try:
                if type == "directory":
                    target.mkdir()
                else:
                    atomic_write(target, data)
            except OSError as e:
                logger.warning("Failed to create %s: %s", target, e)
                return _failure(f"Failed to create {name}: {e.strerror or e}")
            logger.info("Created %s %s", type, target)
            return FileOperationResponse(success=True, info=self.info(target))

    def delete(self, path: str) -> FileOperationResponse:
        """
        Delete a file or a directory tree.

        Directories are first renamed aside, so a failure either leaves the
        tree untouched or removes it entirely from its original location.
        """
        target = self.existing(path, follow_symlinks=False)
        if target == self.root:
            raise InvalidPathError("The workspace root cannot be deleted", path=path)

        with self.locks.hold(target):
            if not _present(target):
                raise NotFoundError(f"{path} does not exist", path=path)
            info = self.info(target)
            try:
                if target.is_dir() and not target.is_symlink():
                    trash = target.with_name(f".{target.name}.{uuid.uuid4().hex[:8]}.deleted")
                    os.rename(target, trash)
                    shutil.rmtree(trash, ignore_errors=True)
                else:
                    target.unlink()
            except OSError as e:
                logger.warning("Failed to delete %s: %s", target, e)
                return _failure(f"Failed to delete {target.name}: {e.strerror or e}")
            logger.info("Deleted %s", target)
            return FileOperationResponse(success=True, info=info)

    def move(self, path: str, new_path: str) -> FileOperationResponse:
        """Move or rename a file or directory."""
        source = self.existing(path, follow_symlinks=False)
        destination = self.resolve(new_path, follow_symlinks=False)
        if source == self.root:
            raise InvalidPathError("The workspace root cannot be moved", path=path)
        self._existing_parent(destination, new_path)

        with self.locks.hold(source, destination):
            if not _present(source):
                raise NotFoundError(f"{path} does not exist", path=path)
            if source == destination:
                return FileOperationResponse(success=True, info=self.info(source))
            if _present(destination):
                return _failure(f"{destination.as_posix()} already exists")
            try:
                os.rename(source, destination)
            except OSError as e:
                logger.warning("Failed to move %s to %s: %s", source, destination, e)
                return _failure(f"Failed to move {source.name}: {e.strerror or e}")
            logger.info("Moved %s to %s", source, destination)
            return FileOperationResponse(success=True, info=self.info(destination))

    def update(self, path: str, contents: str) -> FileOperationResponse:
        """Replace the text contents of an existing file."""
        target = self.existing(path)
        if target.is_dir():
            return _failure(f"{target.name} is a directory")

        with self.locks.hold(target):
            if not target.exists():
                raise NotFoundError(f"{path} does not exist", path=path)
            try:
                atomic_write(target, contents.encode("utf-8"))
            except OSError as e:
                logger.warning("Failed to update %s: %s", target, e)
                return _failure(f"Failed to update {target.name}: {e.strerror or e}")
            return FileOperationResponse(success=True, info=self.info(target))

    def details(self, path: str) -> FileDetailsResponse:
        """Describe a path; text files include their contents."""
        target = self.existing(path)
        info = self.info(target)
        if target.is_dir():
            return FileDetailsResponse(file=info)

        mime_type, _ = mimetypes.guess_type(target.name)
        try:
            contents = target.read_bytes().decode("utf-8")
        except UnicodeDecodeError:
            contents = None
        if mime_type is None and contents is not None:
            mime_type = "text/plain"
        return FileDetailsResponse(file=info, mime_type=mime_type, contents=contents)
