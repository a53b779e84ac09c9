"""
Tests for drive utilities.

Tests parse_resource_uri() - classifying push notification resources - and
parse_drive_folder_url() / parse_drive_file_url() - URL parsing for Google
Drive links.
"""

import pytest

from drivewatch.drive.utils import (
    CHANGES_RESOURCE,
    FILE_RESOURCE,
    parse_drive_file_url,
    parse_drive_folder_url,
    parse_resource_uri,
)


class TestParseResourceUri:
    """Tests for parse_resource_uri()."""

    def test_file_resource(self):
        """Files URIs yield the file id."""
        ref = parse_resource_uri("https://www.googleapis.com/drive/v3/files/1ABC_def-9?alt=json")
        assert ref.kind == FILE_RESOURCE
        assert ref.file_id == "1ABC_def-9"

    def test_changes_resource(self):
        """Changes URIs carry no file id."""
        ref = parse_resource_uri("https://www.googleapis.com/drive/v3/changes?alt=json&pageToken=42")
        assert ref.kind == CHANGES_RESOURCE
        assert ref.file_id is None

    def test_unrelated_resource(self):
        """Other API paths are not recognized."""
        assert parse_resource_uri("https://www.googleapis.com/drive/v3/about") is None

    def test_empty_header(self):
        """A missing header is not recognized."""
        assert parse_resource_uri("") is None
        assert parse_resource_uri(None) is None


class TestParseDriveFolderUrl:
    """Tests for parse_drive_folder_url()."""

    def test_standard_folder_url(self):
        """Standard Google Drive folder URL."""
        url = "https://drive.google.com/drive/folders/1ABC123def456789"
        folder_id, error = parse_drive_folder_url(url)
        assert folder_id == "1ABC123def456789"
        assert error is None

    def test_url_with_user_prefix(self):
        """URL with /u/0/ user selector."""
        url = "https://drive.google.com/drive/u/0/folders/1ABC123def456789"
        folder_id, error = parse_drive_folder_url(url)
        assert folder_id == "1ABC123def456789"
        assert error is None

    def test_url_with_sharing_param(self):
        """URL with ?usp=sharing query param."""
        url = "https://drive.google.com/drive/folders/1ABC123def456789?usp=sharing"
        folder_id, error = parse_drive_folder_url(url)
        assert folder_id == "1ABC123def456789"
        assert error is None

    def test_raw_folder_id(self):
        """Raw folder ID containing dashes and underscores."""
        folder_id, error = parse_drive_folder_url("1OTcP60EwXnT73FYy-yjbB2C7yU6mVMTf")
        assert folder_id == "1OTcP60EwXnT73FYy-yjbB2C7yU6mVMTf"
        assert error is None

    def test_whitespace_trimmed(self):
        """Whitespace around a URL is trimmed."""
        folder_id, error = parse_drive_folder_url("  https://drive.google.com/drive/folders/1ABC123def456789  ")
        assert folder_id == "1ABC123def456789"
        assert error is None

    def test_file_url_rejected(self):
        """File URLs should be rejected with helpful message."""
        folder_id, error = parse_drive_folder_url("https://drive.google.com/file/d/1ABC123def456/view")
        assert folder_id is None
        assert "file" in error.lower()

    @pytest.mark.parametrize("value", [
        "https://drive.google.com/drive/my-drive",
        "https://example.com/folder/123",
        "abc",
        "",
        "   ",
        "abc!@#$%^&*()",
    ])
    def test_invalid_rejected(self, value):
        """Non-folder values are rejected with a message."""
        folder_id, error = parse_drive_folder_url(value)
        assert folder_id is None
        assert error is not None


class TestParseDriveFileUrl:
    """Tests for parse_drive_file_url()."""

    @pytest.mark.parametrize("url", [
        "https://drive.google.com/file/d/1ABC123def456789/view?usp=sharing",
        "https://docs.google.com/document/d/1ABC123def456789/edit",
        "https://docs.google.com/spreadsheets/d/1ABC123def456789/edit#gid=0",
        "1ABC123def456789",
    ])
    def test_file_links(self, url):
        """Drive, Docs and Sheets links and raw ids are accepted."""
        file_id, error = parse_drive_file_url(url)
        assert file_id == "1ABC123def456789"
        assert error is None

    def test_folder_url_rejected(self):
        """Folder links are rejected with a helpful message."""
        file_id, error = parse_drive_file_url("https://drive.google.com/drive/u/1/folders/1ABC123def456789")
        assert file_id is None
        assert "folder" in error.lower()

    def test_non_drive_url_rejected(self):
        """Links to other services are rejected."""
        file_id, error = parse_drive_file_url("https://www.dropbox.com/sh/abc123/folder")
        assert file_id is None
        assert error is not None


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
