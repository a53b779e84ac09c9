"""
Google Drive interaction module.

Handles authentication, the API client and notification URI parsing.
"""

from .auth import FileCredentialProvider, CredentialTokenSource
from .client import DriveClient, DriveClientConfig, DocumentMetadata, Change, ChangeBatch, Channel
from .utils import ResourceRef, parse_resource_uri, parse_drive_folder_url, parse_drive_file_url

__all__ = [
    "FileCredentialProvider",
    "CredentialTokenSource",
    "DriveClient",
    "DriveClientConfig",
    "DocumentMetadata",
    "Change",
    "ChangeBatch",
    "Channel",
    "ResourceRef",
    "parse_resource_uri",
    "parse_drive_folder_url",
    "parse_drive_file_url",
]
