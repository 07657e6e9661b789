"""Stable finding identities.

A finding's fingerprint must survive re-runs in which the model words the
same issue differently, reports it on another line, or orders its output
differently. So only content that the model does not produce feeds the hash:
the file path plus the hash of the file's diff, or, for PR metadata findings,
the description text.
"""

from __future__ import annotations

import hashlib


def sha256_hex(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def content_hash(diff_text: str) -> str:
    """Hash of one file's diff text, used as FileDiff.content_hash."""
    return sha256_hex(diff_text)


def fingerprint_file(file_path: str, file_content_hash: str) -> str:
    return sha256_hex(f"{file_path}:{file_content_hash}")


def fingerprint_metadata(description: str) -> str:
    return sha256_hex(description)
