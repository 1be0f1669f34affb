"""Tests for content hashing."""

from __future__ import annotations

import hashlib

from vaultsync.core.hashing import compute_content_hash


class TestComputeContentHash:
    """Tests for compute_content_hash."""

    def test_sha256_of_utf8(self) -> None:
        """Should hash the UTF-8 encoding of the text."""
        text = "Héllo, wörld"
        assert compute_content_hash(text) == hashlib.sha256(text.encode("utf-8")).hexdigest()

    def test_empty_content(self) -> None:
        """Should hash empty content to the well-known SHA-256 value."""
        assert compute_content_hash("") == (
            "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"
        )

    def test_different_content(self) -> None:
        """Should produce different hashes for different content."""
        assert compute_content_hash("a") != compute_content_hash("b")
