"""Ignore patterns for vault synchronization.

This module provides:
- IgnorePatterns: Handles gitignore-style pattern matching
- DEFAULT_IGNORE_PATTERNS: Paths never considered part of the vault
"""

from __future__ import annotations

import fnmatch
from pathlib import Path

DEFAULT_IGNORE_PATTERNS = [
    ".git",
    ".git/**",
    ".obsidian/workspace*",
    ".trash",
    ".trash/**",
    ".DS_Store",
    "Thumbs.db",
    "*.tmp",
    "*.swp",
    "*.vaultsync-tmp",
    ".vaultsync",
    ".vaultsync/**",
]


class IgnorePatterns:
    """Handles ignore pattern matching for vault paths."""

    def __init__(self, patterns: list[str] | None = None) -> None:
        """Initialize with patterns.

        Args:
            patterns: Extra gitignore-style patterns.
        """
        self._patterns = list(DEFAULT_IGNORE_PATTERNS)
        if patterns:
            self._patterns.extend(patterns)

    @property
    def patterns(self) -> list[str]:
        """Get all active patterns."""
        return list(self._patterns)

    def add_pattern(self, pattern: str) -> None:
        """Add an ignore pattern."""
        self._patterns.append(pattern)

    def load_from_file(self, path: Path) -> None:
        """Load patterns from a .syncignore file."""
        if path.exists():
            with open(path, encoding="utf-8") as f:
                for line in f:
                    line = line.strip()
                    if line and not line.startswith("#"):
                        self._patterns.append(line)

    def matches(self, rel_path: str) -> bool:
        """Check a vault-relative POSIX path against the patterns."""
        name = rel_path.rsplit("/", 1)[-1]
        top = rel_path.split("/", 1)[0]

        for pattern in self._patterns:
            if pattern.endswith("/"):
                # Directory pattern matches anything below it
                pattern = pattern[:-1]
                if fnmatch.fnmatch(top, pattern) or rel_path.startswith(pattern + "/"):
                    return True
            elif "**" in pattern:
                if fnmatch.fnmatch(rel_path, pattern):
                    return True
            elif fnmatch.fnmatch(rel_path, pattern) or fnmatch.fnmatch(name, pattern):
                return True

        return False

    def should_ignore(self, path: Path, base_path: Path) -> bool:
        """Check if an absolute path should be ignored.

        Args:
            path: Absolute path to check.
            base_path: Vault root.

        Returns:
            True if the path should be ignored.
        """
        if path.is_symlink():
            return True

        try:
            rel_path = path.relative_to(base_path)
        except ValueError:
            return False

        return self.matches(str(rel_path).replace("\\", "/"))
