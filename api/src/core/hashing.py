"""One-way hashing of client identifiers.

Raw IP addresses and user agents are never persisted or logged; only salted
SHA-256 digests of them are.
"""

import hashlib


def hash_identifier(value: str | None, salt: str) -> str | None:
    """Return the salted SHA-256 hex digest of a client identifier."""
    if not value:
        return None
    return hashlib.sha256(f"{value}{salt}".encode()).hexdigest()


def content_hash(content: str) -> str:
    """Fingerprint comment text for duplicate detection.

    The text is hashed exactly as posted, so only byte-identical content matches.
    """
    return hashlib.sha256(content.encode()).hexdigest()[:32]
