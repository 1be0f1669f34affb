"""Content fingerprints.

Files are hashed with SHA-256 over their UTF-8 encoded text, the same
fingerprint the server reports for each revision.
"""

import hashlib


def compute_content_hash(content: str) -> str:
    """Compute the SHA-256 hex digest of text content."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()
