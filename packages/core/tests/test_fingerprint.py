"""Tests for finding fingerprints."""

import hashlib

from prwarden_core.fingerprint import content_hash, fingerprint_file, fingerprint_metadata


class TestFingerprintFile:
    def test_is_sha256_of_path_and_hash(self):
        expected = hashlib.sha256(b"src/app.py:abc123").hexdigest()
        assert fingerprint_file("src/app.py", "abc123") == expected

    def test_stable_across_calls(self):
        assert fingerprint_file("a.py", "h") == fingerprint_file("a.py", "h")

    def test_changes_with_path(self):
        assert fingerprint_file("a.py", "h") != fingerprint_file("b.py", "h")

    def test_changes_with_content_hash(self):
        assert fingerprint_file("a.py", content_hash("+x\n")) != fingerprint_file("a.py", content_hash("+y\n"))


class TestFingerprintMetadata:
    def test_is_sha256_of_description(self):
        assert fingerprint_metadata("Fix login") == hashlib.sha256(b"Fix login").hexdigest()

    def test_handles_non_ascii(self):
        assert fingerprint_metadata("ログイン修正") == hashlib.sha256("ログイン修正".encode("utf-8")).hexdigest()

    def test_independent_of_file_fingerprints(self):
        assert fingerprint_metadata("desc") != fingerprint_file("", "desc")


class TestContentHash:
    def test_hex_digest(self):
        digest = content_hash("+x\n")
        assert len(digest) == 64
        int(digest, 16)
