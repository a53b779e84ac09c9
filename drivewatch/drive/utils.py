"""
Drive-related utilities for Drive Watch.
"""

import re
from dataclasses import dataclass
from typing import Optional

ID_CHARS = r"[a-zA-Z0-9_-]"

FILE_RESOURCE = "file"
CHANGES_RESOURCE = "changes"


@dataclass(frozen=True)
class ResourceRef:
    """What a push notification points at."""
    kind: str  # FILE_RESOURCE or CHANGES_RESOURCE
    file_id: Optional[str] = None


def parse_resource_uri(resource_uri: str) -> Optional[ResourceRef]:
    """
    Classify the X-Goog-Resource-URI header of a push notification.

    Supports formats:
    - https://www.googleapis.com/drive/v3/files/FILE_ID?alt=json
    - https://www.googleapis.com/drive/v3/changes?alt=json&pageToken=123

    Returns:
        ResourceRef, or None if the URI matches neither form
    """
    match = re.search(rf"/files/({ID_CHARS}+)", resource_uri or "")
    if match:
        return ResourceRef(FILE_RESOURCE, match.group(1))
    if "/changes" in (resource_uri or ""):
        return ResourceRef(CHANGES_RESOURCE)
    return None


def parse_drive_folder_url(url_or_id: str) -> tuple[str | None, str | None]:
    """
    Extract Google Drive folder ID from a URL or raw ID.

    Supports formats:
    - https://drive.google.com/drive/folders/FOLDER_ID
    - https://drive.google.com/drive/folders/FOLDER_ID?usp=sharing
    - https://drive.google.com/drive/u/0/folders/FOLDER_ID
    - Raw folder ID (alphanumeric with - and _)

    Returns:
        Tuple of (folder_id, error_message)
        - (folder_id, None) if valid
        - (None, error_message) if invalid
    """
    url_or_id = url_or_id.strip()

    if re.search(rf"drive\.google\.com/file/d/({ID_CHARS}+)", url_or_id):
        return None, "That's a file link, not a folder link"

    match = re.search(rf"drive\.google\.com/drive(?:/u/\d+)?/folders/({ID_CHARS}+)", url_or_id)
    if match:
        return match.group(1), None

    if re.match(rf"^{ID_CHARS}{{10,}}$", url_or_id):
        return url_or_id, None

    if "drive.google.com" in url_or_id:
        return None, "Unrecognized Google Drive URL format"

    return None, "Not a Google Drive URL"


def parse_drive_file_url(url_or_id: str) -> tuple[str | None, str | None]:
    """
    Extract a file ID from a Drive, Docs or Sheets link, or a raw ID.

    Returns:
        Tuple of (file_id, error_message)
    """
    url_or_id = url_or_id.strip()

    match = re.search(
        rf"(?:drive\.google\.com/file/d|docs\.google\.com/(?:document|spreadsheets)/d)/({ID_CHARS}+)",
        url_or_id,
    )
    if match:
        return match.group(1), None

    if re.search(r"drive\.google\.com/drive(?:/u/\d+)?/folders/", url_or_id):
        return None, "That's a folder link, not a file link"

    if re.match(rf"^{ID_CHARS}{{10,}}$", url_or_id):
        return url_or_id, None

    return None, "Not a Google Drive file URL"
