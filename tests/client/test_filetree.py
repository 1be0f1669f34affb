"""Tests for the local vault file tree."""

import os
from pathlib import Path

import pytest

from vaultsync.client.filetree import LocalFileTree
from vaultsync.client.sync.ignore import IgnorePatterns


@pytest.fixture
def tree(tmp_path: Path) -> LocalFileTree:
    """Create a LocalFileTree over an empty vault."""
    return LocalFileTree(tmp_path / "vault")


class TestPaths:
    """Tests for path mapping."""

    def test_creates_root(self, tmp_path: Path) -> None:
        """Should create the vault directory."""
        LocalFileTree(tmp_path / "new" / "vault")

        assert (tmp_path / "new" / "vault").is_dir()

    def test_resolve(self, tree: LocalFileTree) -> None:
        """Should map vault paths inside the root."""
        assert tree.resolve("notes/a.md") == tree.root / "notes" / "a.md"

    @pytest.mark.parametrize("path", ["", ".", "/etc/passwd", "../outside.md", "a/../../b.md"])
    def test_resolve_rejects_escapes(self, tree: LocalFileTree, path: str) -> None:
        """Should reject empty, absolute and parent-relative paths."""
        with pytest.raises(ValueError):
            tree.resolve(path)

    def test_relative(self, tree: LocalFileTree) -> None:
        """Should map absolute paths back to POSIX vault paths."""
        assert tree.relative(tree.root / "notes" / "a.md") == "notes/a.md"


class TestFileOperations:
    """Tests for reading and writing files."""

    def test_create_and_read(self, tree: LocalFileTree) -> None:
        """Should create a file with parent folders."""
        tree.create("notes/deep/a.md", "hello")

        assert tree.read("notes/deep/a.md") == "hello"
        assert tree.exists("notes/deep/a.md") is True

    def test_create_existing_fails(self, tree: LocalFileTree) -> None:
        """Should refuse to overwrite an existing file."""
        tree.create("a.md", "first")

        with pytest.raises(FileExistsError):
            tree.create("a.md", "second")
        assert tree.read("a.md") == "first"

    def test_modify(self, tree: LocalFileTree) -> None:
        """Should replace the content of an existing file."""
        tree.create("a.md", "old")
        tree.modify("a.md", "new")

        assert tree.read("a.md") == "new"

    def test_modify_missing_fails(self, tree: LocalFileTree) -> None:
        """Should not create files through modify."""
        with pytest.raises(FileNotFoundError):
            tree.modify("missing.md", "x")

    def test_write_creates_or_replaces(self, tree: LocalFileTree) -> None:
        """Should create missing files and folders, and replace existing ones."""
        tree.write("a/b/c.md", "one")
        tree.write("a/b/c.md", "two")

        assert tree.read("a/b/c.md") == "two"
        assert not list(tree.root.rglob("*.vaultsync-tmp"))

    def test_preserves_line_endings(self, tree: LocalFileTree) -> None:
        """Should write content byte for byte."""
        tree.write("crlf.md", "a\r\nb\n")

        assert (tree.root / "crlf.md").read_bytes() == b"a\r\nb\n"

    def test_create_folder_idempotent(self, tree: LocalFileTree) -> None:
        """Should accept an existing folder."""
        tree.create_folder("notes")
        tree.create_folder("notes")

        assert (tree.root / "notes").is_dir()

    def test_delete(self, tree: LocalFileTree) -> None:
        """Should delete files and ignore missing ones."""
        tree.create("a.md", "x")
        tree.delete("a.md")
        tree.delete("a.md")

        assert tree.exists("a.md") is False

    def test_stat(self, tree: LocalFileTree) -> None:
        """Should report extension, size and mtime."""
        tree.create("Notes/A.MD", "12345")
        os.utime(tree.resolve("Notes/A.MD"), (1000.0, 1000.0))

        info = tree.stat("Notes/A.MD")

        assert info.extension == "md"
        assert info.size == 5
        assert info.mtime == 1000.0


class TestIterFiles:
    """Tests for vault enumeration."""

    def test_lists_files_sorted(self, tree: LocalFileTree) -> None:
        """Should list every file as a POSIX vault path."""
        for path in ("b.md", "a.md", "dir/c.txt", "dir/sub/d.json"):
            tree.write(path, "x")

        assert [f.path for f in tree.iter_files()] == [
            "a.md",
            "b.md",
            "dir/c.txt",
            "dir/sub/d.json",
        ]

    def test_skips_ignored(self, tree: LocalFileTree) -> None:
        """Should skip default ignore patterns."""
        tree.write("keep.md", "x")
        tree.write(".git/config", "x")
        tree.write(".trash/old.md", "x")
        tree.write("swap.md.swp", "x")

        assert [f.path for f in tree.iter_files()] == ["keep.md"]

    def test_loads_syncignore(self, tmp_path: Path) -> None:
        """Should honor the vault's .syncignore."""
        root = tmp_path / "vault"
        root.mkdir()
        (root / ".syncignore").write_text("# comment\nprivate/\n")
        (root / "private").mkdir()
        (root / "private" / "secret.md").write_text("x")
        (root / "public.md").write_text("x")

        tree = LocalFileTree(root)

        assert [f.path for f in tree.iter_files()] == [".syncignore", "public.md"]

    def test_custom_ignore(self, tmp_path: Path) -> None:
        """Should use the given patterns instead of loading .syncignore."""
        tree = LocalFileTree(tmp_path / "vault", ignore=IgnorePatterns(["*.log"]))
        tree.write("a.log", "x")
        tree.write("a.md", "x")

        assert [f.path for f in tree.iter_files()] == ["a.md"]

    @pytest.mark.skipif(os.name == "nt", reason="symlinks need privileges on Windows")
    def test_skips_symlinks(self, tree: LocalFileTree, tmp_path: Path) -> None:
        """Should not follow or list symlinks."""
        target = tmp_path / "outside.md"
        target.write_text("x")
        (tree.root / "link.md").symlink_to(target)

        assert list(tree.iter_files()) == []
