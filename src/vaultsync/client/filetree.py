"""Local vault file tree.

This module provides:
- FileTree: Protocol of the file operations the sync engine needs
- LocalFileTree: FileTree over a directory on disk
- LocalFile: A file found while enumerating the vault

All paths crossing this interface are vault-relative POSIX paths.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Protocol

from vaultsync.client.sync.ignore import IgnorePatterns

logger = logging.getLogger(__name__)


@dataclass
class LocalFile:
    """A file in the vault.

    Attributes:
        path: Vault-relative POSIX path.
        extension: Lowercase extension without the dot ("" if none).
        size: Size in bytes.
        mtime: Modification time in epoch seconds.
    """

    path: str
    extension: str
    size: int
    mtime: float


class FileTree(Protocol):
    """File operations the sync engine relies on."""

    def read(self, path: str) -> str: ...

    def exists(self, path: str) -> bool: ...

    def create(self, path: str, content: str) -> None: ...

    def modify(self, path: str, content: str) -> None: ...

    def write(self, path: str, content: str) -> None: ...

    def create_folder(self, path: str) -> None: ...

    def delete(self, path: str) -> None: ...

    def stat(self, path: str) -> LocalFile: ...

    def iter_files(self) -> Iterator[LocalFile]: ...


def _extension(path: str) -> str:
    return PurePosixPath(path).suffix.lower().lstrip(".")


class LocalFileTree:
    """FileTree backed by a directory."""

    def __init__(self, root: Path, ignore: IgnorePatterns | None = None) -> None:
        """Initialize the tree.

        Args:
            root: Vault directory (created if missing).
            ignore: Patterns excluded from enumeration. Defaults to the
                built-in patterns plus the vault's .syncignore.
        """
        self._root = Path(root).resolve()
        self._root.mkdir(parents=True, exist_ok=True)
        if ignore is None:
            ignore = IgnorePatterns()
            ignore.load_from_file(self._root / ".syncignore")
        self._ignore = ignore

    @property
    def root(self) -> Path:
        """Get the vault directory."""
        return self._root

    @property
    def ignore(self) -> IgnorePatterns:
        """Get the ignore patterns."""
        return self._ignore

    def resolve(self, path: str) -> Path:
        """Map a vault path to an absolute path inside the root.

        Raises:
            ValueError: If the path is empty or escapes the vault.
        """
        rel = PurePosixPath(path.replace("\\", "/"))
        if not str(rel) or str(rel) == "." or rel.is_absolute() or ".." in rel.parts:
            raise ValueError(f"Invalid vault path: {path!r}")
        return self._root.joinpath(*rel.parts)

    def relative(self, absolute: Path) -> str:
        """Map an absolute path inside the root to a vault path."""
        return Path(absolute).resolve().relative_to(self._root).as_posix()

    def read(self, path: str) -> str:
        return self.resolve(path).read_text(encoding="utf-8")

    def exists(self, path: str) -> bool:
        return self.resolve(path).is_file()

    def create(self, path: str, content: str) -> None:
        """Create a new file.

        Raises:
            FileExistsError: If the path already exists.
        """
        target = self.resolve(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        with open(target, "x", encoding="utf-8", newline="") as f:
            f.write(content)

    def modify(self, path: str, content: str) -> None:
        """Replace the content of an existing file.

        Raises:
            FileNotFoundError: If the file does not exist.
        """
        target = self.resolve(path)
        if not target.is_file():
            raise FileNotFoundError(f"No such vault file: {path}")
        self._atomic_write(target, content)

    def write(self, path: str, content: str) -> None:
        """Create or replace a file, creating parent folders as needed."""
        target = self.resolve(path)
        parent = PurePosixPath(path.replace("\\", "/")).parent
        if str(parent) != ".":
            self.create_folder(str(parent))
        self._atomic_write(target, content)

    def create_folder(self, path: str) -> None:
        """Create a folder and its parents; existing folders are fine."""
        self.resolve(path).mkdir(parents=True, exist_ok=True)

    def delete(self, path: str) -> None:
        """Delete a file; missing files are ignored."""
        self.resolve(path).unlink(missing_ok=True)

    def stat(self, path: str) -> LocalFile:
        st = self.resolve(path).stat()
        return LocalFile(
            path=path,
            extension=_extension(path),
            size=st.st_size,
            mtime=st.st_mtime,
        )

    def iter_files(self) -> Iterator[LocalFile]:
        """Enumerate vault files, skipping ignored paths and symlinks."""
        # os.walk does not follow symlinked directories
        for root_str, dirs, files in os.walk(self._root):
            root = Path(root_str)
            dirs[:] = sorted(
                d for d in dirs if not self._ignore.should_ignore(root / d, self._root)
            )
            for filename in sorted(files):
                file_path = root / filename
                if self._ignore.should_ignore(file_path, self._root):
                    continue
                rel = file_path.relative_to(self._root).as_posix()
                try:
                    st = file_path.stat()
                except OSError:
                    # Deleted between listing and stat
                    continue
                yield LocalFile(
                    path=rel,
                    extension=_extension(rel),
                    size=st.st_size,
                    mtime=st.st_mtime,
                )

    @staticmethod
    def _atomic_write(target: Path, content: str) -> None:
        tmp = target.with_name(f".{target.name}.vaultsync-tmp")
        with open(tmp, "w", encoding="utf-8", newline="") as f:
            f.write(content)
        os.replace(tmp, target)
